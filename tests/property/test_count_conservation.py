"""Property tests: the chunk loop never loses or duplicates a record.

For any input, chunk size, skip limit, and set of invalid records:
- committed counters balance (read = write + skip)
- the skip count never exceeds the limit
- the step completes exactly when the invalid records fit the limit
- the sink holds exactly write_count items
- resuming a failed step with a larger limit finishes the input once
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from rebatch.contracts.enums import StepStatus
from rebatch.contracts.execution import READER_OFFSET_KEY, ExecutionContext, StepExecution
from rebatch.contracts.parameters import JobParameters
from rebatch.contracts.protocols import StepComponents
from rebatch.core.canonical import job_identity
from rebatch.core.fields import FieldOrder
from rebatch.core.state.database import StateDB
from rebatch.core.state.store import ExecutionStateStore
from rebatch.engine.chunk import ChunkExecutor
from rebatch.engine.skip import SkipClassifier, SkipPolicy
from rebatch.plugins.transforms.person import PersonTransform
from tests.fixtures.plugins import CollectSink, ListErrorSink, ListSource, people

ORDER = FieldOrder.of_names(["first_name", "last_name", "age"])


@st.composite
def batch_inputs(draw: st.DrawFn) -> tuple[int, int, int, frozenset[int]]:
    count = draw(st.integers(min_value=0, max_value=30))
    chunk_size = draw(st.integers(min_value=1, max_value=7))
    skip_limit = draw(st.integers(min_value=0, max_value=5))
    invalid = draw(st.frozensets(st.integers(min_value=0, max_value=max(count - 1, 0)), max_size=count))
    return count, chunk_size, skip_limit, invalid


def _execute(store: ExecutionStateStore, step: StepExecution, entries: list, sink: CollectSink, chunk_size: int, skip_limit: int) -> ListErrorSink:
    error_sink = ListErrorSink()
    components = StepComponents(
        source=ListSource(entries),
        transform=PersonTransform({}),
        sink=sink,
        error_sink=error_sink,
    )
    classifier = SkipClassifier(SkipPolicy(skip_limit), error_sink, ORDER)
    ChunkExecutor(store).run(step, components, chunk_size, classifier)
    return error_sink


def _job_execution(store: ExecutionStateStore) -> str:
    params = JobParameters.of({"input.file": "people.csv"})
    execution = store.create_job_execution(job_identity("importUserJob", params), params)
    store.mark_job_started(execution.job_execution_id)
    return execution.job_execution_id


@pytest.mark.slow
@given(batch_inputs())
def test_counts_are_conserved(case: tuple[int, int, int, frozenset[int]]) -> None:
    count, chunk_size, skip_limit, invalid = case
    entries = people(count, invalid=invalid)

    with StateDB.in_memory() as db:
        store = ExecutionStateStore(db)
        job_execution_id = _job_execution(store)
        sink = CollectSink()
        step = store.create_step_execution(job_execution_id, "step1", context=ExecutionContext({READER_OFFSET_KEY: 0}))

        error_sink = _execute(store, step, entries, sink, chunk_size, skip_limit)

        (stored,) = store.get_step_executions(job_execution_id)
        counters = stored.counters
        assert counters.is_balanced
        assert counters.skip_count <= skip_limit
        assert len(sink.items) == counters.write_count
        assert len(error_sink.records) == counters.skip_count
        assert stored.context.get_int(READER_OFFSET_KEY) == counters.read_count

        if len(invalid) <= skip_limit:
            assert stored.status is StepStatus.COMPLETED
            assert counters.read_count == count
            assert counters.skip_count == len(invalid)
            assert counters.commit_count == -(-count // chunk_size)
            return

        assert stored.status is StepStatus.FAILED
        assert counters.rollback_count == 1
        # Everything before the chunk holding the first record over the limit is committed
        breaking = sorted(invalid)[skip_limit]
        assert counters.read_count == (breaking // chunk_size) * chunk_size

        # Resume with a limit that fits every invalid record
        resumed = store.create_step_execution(job_execution_id, "step1-resumed", context=stored.context, counters=stored.counters)
        _execute(store, resumed, entries, sink, chunk_size, len(invalid))

        final = store.get_step_executions(job_execution_id)[-1]
        assert final.status is StepStatus.COMPLETED
        assert final.counters.read_count == count
        assert final.counters.write_count == count - len(invalid)
        assert final.counters.skip_count == len(invalid)
        written = [item.first_name for item in sink.items]
        assert len(written) == len(set(written)) == count - len(invalid)
