"""Tests for the execution-state domain model."""

import pytest

from rebatch.contracts.enums import JobStatus, SkipPhase, StepStatus, can_transition
from rebatch.contracts.errors import StateTransitionError
from rebatch.contracts.execution import (
    PARTITION_STEP_NAME,
    ExecutionContext,
    JobOutcome,
    StepCounters,
    StepExecution,
    StepOutcome,
    partition_step_name,
)


def _step(status: StepStatus = StepStatus.PENDING) -> StepExecution:
    return StepExecution(step_execution_id="s1", job_execution_id="j1", step_name="step1:partition0", status=status)


class TestStepStateMachine:
    """PENDING -> RUNNING -> {COMPLETED | FAILED}; terminal states are final."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (StepStatus.PENDING, StepStatus.RUNNING),
            (StepStatus.PENDING, StepStatus.FAILED),
            (StepStatus.RUNNING, StepStatus.COMPLETED),
            (StepStatus.RUNNING, StepStatus.FAILED),
        ],
    )
    def test_allowed_transitions(self, current: StepStatus, target: StepStatus) -> None:
        step = _step(current)
        step.transition(target)

        assert step.status is target

    @pytest.mark.parametrize("terminal", [StepStatus.COMPLETED, StepStatus.FAILED])
    def test_terminal_states_are_final(self, terminal: StepStatus) -> None:
        for target in StepStatus:
            assert not can_transition(terminal, target)

        step = _step(terminal)
        with pytest.raises(StateTransitionError):
            step.transition(StepStatus.RUNNING)

    def test_pending_cannot_complete_directly(self) -> None:
        with pytest.raises(StateTransitionError):
            _step().transition(StepStatus.COMPLETED)


class TestJobStatus:
    def test_flags(self) -> None:
        assert JobStatus.STARTED.is_running
        assert not JobStatus.STARTED.is_terminal
        assert JobStatus.FAILED.is_restartable
        assert JobStatus.STOPPED.is_restartable
        assert not JobStatus.COMPLETED.is_restartable

    @pytest.mark.parametrize("status", list(JobStatus))
    def test_each_status_is_running_completed_or_restartable(self, status: JobStatus) -> None:
        flags = [status.is_running, status is JobStatus.COMPLETED, status.is_restartable]
        assert flags.count(True) == 1


class TestStepCounters:
    """Counter arithmetic and the balance rule."""

    def test_record_skip_updates_total_and_phase(self) -> None:
        counters = StepCounters()
        counters.record_skip(SkipPhase.READ)
        counters.record_skip(SkipPhase.PROCESS)
        counters.record_skip(SkipPhase.WRITE)

        assert counters.skip_count == 3
        assert (counters.read_skip_count, counters.process_skip_count, counters.write_skip_count) == (1, 1, 1)

    def test_minus_and_plus(self) -> None:
        before = StepCounters(read_count=2, write_count=2)
        after = StepCounters(read_count=4, write_count=3, skip_count=1, process_skip_count=1, commit_count=1)

        delta = after.minus(before)

        assert delta.read_count == 2
        assert delta.write_count == 1
        assert before.plus(delta) == after

    def test_is_balanced(self) -> None:
        assert StepCounters(read_count=3, write_count=2, skip_count=1).is_balanced
        assert not StepCounters(read_count=3, write_count=1, skip_count=1).is_balanced

    def test_copy_is_independent(self) -> None:
        counters = StepCounters(read_count=1)
        copied = counters.copy()
        copied.read_count = 5

        assert counters.read_count == 1


class TestExecutionContext:
    """JSON-backed key-value state of a step."""

    def test_round_trips_through_json(self) -> None:
        context = ExecutionContext({"input.file": "/in/a.csv", "reader.offset": 4})

        assert ExecutionContext.from_json(context.to_json()) == context

    def test_from_empty_json(self) -> None:
        assert len(ExecutionContext.from_json(None)) == 0
        assert len(ExecutionContext.from_json("")) == 0

    def test_rejects_non_serializable_values(self) -> None:
        context = ExecutionContext()

        with pytest.raises(ValueError, match="not JSON-serializable"):
            context["bad"] = object()
        with pytest.raises(ValueError):
            context["nan"] = float("nan")

    def test_typed_getters(self) -> None:
        context = ExecutionContext({"reader.offset": 3, "input.file": "a.csv"})

        assert context.get_int("reader.offset") == 3
        assert context.get_int("missing") == 0
        assert context.get_str("input.file") == "a.csv"
        assert context.get_str("missing") is None
        with pytest.raises(TypeError):
            context.get_int("input.file")


class TestOutcomes:
    def test_job_outcome_exit_message_lists_failures_and_not_started(self) -> None:
        failed = StepOutcome("step1:partition0", StepStatus.FAILED, StepCounters(), RuntimeError("boom"))
        ok = StepOutcome("step1:partition1", StepStatus.COMPLETED, StepCounters())
        outcome = JobOutcome(JobStatus.FAILED, StepCounters(), (failed, ok), not_started=("step1:partition2",))

        assert outcome.failures == (failed,)
        assert outcome.exit_message == "step1:partition0: boom; not started: step1:partition2"

    def test_completed_outcome_has_no_exit_message(self) -> None:
        ok = StepOutcome("step1", StepStatus.COMPLETED, StepCounters())

        assert JobOutcome(JobStatus.COMPLETED, StepCounters(), (ok,)).exit_message is None


def test_step_names() -> None:
    assert partition_step_name(3) == "step1:partition3"
    assert PARTITION_STEP_NAME == "partition_step"
