"""Tests for PartitionCoordinator dispatch and aggregation."""

import threading
import time

import pytest

from rebatch.contracts.enums import JobStatus, StepStatus
from rebatch.contracts.execution import StepCounters, StepExecution, StepOutcome
from rebatch.engine.coordinator import PartitionCoordinator


def _steps(count: int) -> list[StepExecution]:
    return [
        StepExecution(step_execution_id=f"s{i}", job_execution_id="j", step_name=f"step1:partition{i}", status=StepStatus.PENDING)
        for i in range(count)
    ]


def _done(step: StepExecution, read: int = 10, skip: int = 2) -> StepOutcome:
    return StepOutcome(step.step_name, StepStatus.COMPLETED, StepCounters(read_count=read, write_count=read - skip, skip_count=skip))


class TestExecute:
    def test_all_steps_complete_and_counters_sum(self) -> None:
        outcome = PartitionCoordinator(2).execute(_steps(10), _done)

        assert outcome.status is JobStatus.COMPLETED
        assert (outcome.counters.read_count, outcome.counters.write_count, outcome.counters.skip_count) == (100, 80, 20)
        assert [o.step_name for o in outcome.step_outcomes] == [f"step1:partition{i}" for i in range(10)]

    def test_no_steps(self) -> None:
        outcome = PartitionCoordinator(2).execute([], _done)

        assert outcome.status is JobStatus.COMPLETED
        assert outcome.step_outcomes == ()

    def test_at_most_concurrency_steps_in_flight(self) -> None:
        lock = threading.Lock()
        active = 0
        peak = 0

        def run(step: StepExecution) -> StepOutcome:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with lock:
                active -= 1
            return _done(step)

        PartitionCoordinator(2).execute(_steps(6), run)

        assert peak <= 2

    def test_failure_stops_dispatch_of_remaining_steps(self) -> None:
        def run(step: StepExecution) -> StepOutcome:
            if step.step_name.endswith("partition1"):
                return StepOutcome(step.step_name, StepStatus.FAILED, StepCounters(), RuntimeError("boom"))
            return _done(step)

        outcome = PartitionCoordinator(1).execute(_steps(4), run)

        assert outcome.status is JobStatus.FAILED
        assert [o.step_name for o in outcome.step_outcomes] == ["step1:partition0", "step1:partition1"]
        assert outcome.not_started == ("step1:partition2", "step1:partition3")
        assert outcome.counters.read_count == 10

    def test_failure_does_not_abort_siblings_in_flight(self) -> None:
        sibling_started = threading.Event()

        def run(step: StepExecution) -> StepOutcome:
            if step.step_name.endswith("partition0"):
                sibling_started.wait(timeout=5)
                return StepOutcome(step.step_name, StepStatus.FAILED, StepCounters(), RuntimeError("boom"))
            sibling_started.set()
            time.sleep(0.05)
            return _done(step)

        outcome = PartitionCoordinator(2).execute(_steps(2), run)

        assert outcome.status is JobStatus.FAILED
        statuses = {o.step_name: o.status for o in outcome.step_outcomes}
        assert statuses == {"step1:partition0": StepStatus.FAILED, "step1:partition1": StepStatus.COMPLETED}

    def test_crashing_step_becomes_failed_outcome(self) -> None:
        def run(step: StepExecution) -> StepOutcome:
            raise RuntimeError("worker bug")

        outcome = PartitionCoordinator(1).execute(_steps(1), run)

        (failed,) = outcome.failures
        assert isinstance(failed.error, RuntimeError)
        assert outcome.exit_message == "step1:partition0: worker bug"

    def test_concurrency_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PartitionCoordinator(0)
