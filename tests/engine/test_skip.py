"""Tests for SkipPolicy and SkipClassifier."""

import pytest

from rebatch.contracts.enums import ErrorKind, SkipDecision, SkipPhase, StepStatus
from rebatch.contracts.errors import (
    ParseError,
    RecordRejectedError,
    RecordValidationError,
    SinkError,
    SkipLimitExceededError,
)
from rebatch.contracts.execution import StepExecution
from rebatch.contracts.records import NOT_AVAILABLE, RawRecord, SkipRecord
from rebatch.core.fields import FieldOrder
from rebatch.engine.skip import SkipClassifier, SkipPolicy
from rebatch.plugins.transforms.person import Person
from tests.fixtures.plugins import ListErrorSink

ORDER = FieldOrder.of_names(["first_name", "last_name", "age"])


def _step() -> StepExecution:
    return StepExecution(step_execution_id="s", job_execution_id="j", step_name="step1", status=StepStatus.RUNNING)


def _classifier(skip_limit: int = 2, error_sink: ListErrorSink | None = None, **kwargs) -> SkipClassifier:
    return SkipClassifier(SkipPolicy(skip_limit), error_sink or ListErrorSink(), ORDER, ";", **kwargs)


class TestSkipPolicy:
    def test_default_kinds(self) -> None:
        policy = SkipPolicy(2)

        assert policy.is_skippable(ParseError("x", raw_input=""))
        assert policy.is_skippable(RecordValidationError("x"))
        assert not policy.is_skippable(SinkError("x"))
        assert not policy.is_skippable(RuntimeError("x"))

    def test_custom_kinds(self) -> None:
        policy = SkipPolicy(2, frozenset({ErrorKind.REJECTED}))

        assert policy.is_skippable(RecordRejectedError("x"))
        assert not policy.is_skippable(RecordValidationError("x"))

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(ValueError):
            SkipPolicy(-1)


class TestClassify:
    """SKIP within the limit, FAIL beyond it or for non-skippable kinds."""

    def test_skips_until_limit_then_fails(self) -> None:
        classifier = _classifier(skip_limit=2)
        step = _step()
        error = RecordValidationError("must be born")

        decisions = [classifier.classify(SkipPhase.PROCESS, error, step) for _ in range(3)]

        assert decisions == [SkipDecision.SKIP, SkipDecision.SKIP, SkipDecision.FAIL]
        assert step.counters.skip_count == 2
        assert step.counters.process_skip_count == 2

    def test_zero_limit_fails_first_skippable_error(self) -> None:
        step = _step()

        assert _classifier(skip_limit=0).classify(SkipPhase.READ, ParseError("x", raw_input="a"), step) is SkipDecision.FAIL
        assert step.counters.skip_count == 0

    def test_non_skippable_error_fails_without_counting(self) -> None:
        step = _step()

        assert _classifier().classify(SkipPhase.WRITE, SinkError("down"), step) is SkipDecision.FAIL
        assert step.counters.skip_count == 0

    def test_failure_wraps_skippable_errors(self) -> None:
        classifier = _classifier(skip_limit=1)
        validation = RecordValidationError("must be born")
        sink = SinkError("down")

        failure = classifier.failure(validation)

        assert isinstance(failure, SkipLimitExceededError)
        assert failure.cause is validation
        assert classifier.failure(sink) is sink


class TestSkipRecords:
    """What lands in the error sink."""

    def test_parse_error_record_uses_raw_input(self) -> None:
        error_sink = ListErrorSink()
        error = ParseError("Parsing error at line: 4", raw_input="jill;doe", line_number=4)

        classifier = _classifier(error_sink=error_sink)
        classifier.classify(SkipPhase.READ, error, _step())
        classifier.flush()

        (record,) = error_sink.records
        assert record.phase is SkipPhase.READ
        assert record.kind is ErrorKind.PARSE
        assert record.line_number == 4
        assert record.fields == {"first_name": "jill", "last_name": "doe", "age": NOT_AVAILABLE}

    def test_process_record_uses_raw_record_fields(self) -> None:
        error_sink = ListErrorSink()
        raw = RawRecord(line_number=5, raw="jill;doe;0", fields={"first_name": "jill", "last_name": "doe", "age": "0"})

        classifier = _classifier(error_sink=error_sink)
        classifier.classify(SkipPhase.PROCESS, RecordValidationError("must be born"), _step(), raw)
        classifier.flush()

        (record,) = error_sink.records
        assert record.line_number == 5
        assert record.message == "must be born"
        assert record.fields == {"first_name": "jill", "last_name": "doe", "age": "0"}

    def test_write_record_uses_item_fields_and_given_line(self) -> None:
        error_sink = ListErrorSink()
        policy = SkipPolicy(2, frozenset({ErrorKind.REJECTED}))
        classifier = SkipClassifier(policy, error_sink, ORDER, ";")
        item = Person(first_name="Jill", last_name="DOE", age=30)

        classifier.classify(SkipPhase.WRITE, RecordRejectedError("duplicate"), _step(), item, line_number=9)
        classifier.flush()

        (record,) = error_sink.records
        assert record.phase is SkipPhase.WRITE
        assert record.line_number == 9
        assert record.fields == {"first_name": "Jill", "last_name": "DOE", "age": "30"}

    def test_error_sink_failure_does_not_fail_the_record(self) -> None:
        step = _step()

        classifier = _classifier(error_sink=ListErrorSink(fail=True))
        decision = classifier.classify(SkipPhase.PROCESS, RecordValidationError("x"), step)
        classifier.flush()

        assert decision is SkipDecision.SKIP
        assert step.counters.skip_count == 1

    def test_listeners_are_called_and_their_failures_ignored(self) -> None:
        seen: list[SkipRecord] = []

        def broken(step: StepExecution, record: SkipRecord) -> None:
            raise RuntimeError("listener bug")

        classifier = _classifier(on_skip=lambda step, record: seen.append(record))
        decision = classifier.classify(SkipPhase.PROCESS, RecordValidationError("x"), _step(), on_skip=broken)

        assert decision is SkipDecision.SKIP
        assert seen == []
        classifier.flush()
        assert len(seen) == 1


class TestPendingRecords:
    """Skip records reach the error sink only when their chunk commits."""

    def test_records_wait_for_flush(self) -> None:
        error_sink = ListErrorSink()
        classifier = _classifier(error_sink=error_sink)
        step = _step()

        classifier.classify(SkipPhase.PROCESS, RecordValidationError("x"), step)

        assert error_sink.records == []
        assert classifier.pending == 1
        assert step.counters.skip_count == 1

        classifier.flush()

        assert len(error_sink.records) == 1
        assert classifier.pending == 0

    def test_discard_drops_records_and_listener_calls(self) -> None:
        error_sink = ListErrorSink()
        seen: list[SkipRecord] = []
        classifier = _classifier(error_sink=error_sink, on_skip=lambda step, record: seen.append(record))

        classifier.classify(SkipPhase.READ, ParseError("x", raw_input="a"), _step())
        classifier.classify(SkipPhase.PROCESS, RecordValidationError("x"), _step())

        assert classifier.discard() == 2
        classifier.flush()
        assert error_sink.records == []
        assert seen == []

    def test_flush_after_discard_keeps_later_records(self) -> None:
        error_sink = ListErrorSink()
        classifier = _classifier(skip_limit=5, error_sink=error_sink)
        step = _step()

        classifier.classify(SkipPhase.PROCESS, RecordValidationError("rolled back"), step)
        classifier.discard()
        classifier.classify(SkipPhase.PROCESS, RecordValidationError("kept"), step)
        classifier.flush()

        assert [record.message for record in error_sink.records] == ["kept"]
