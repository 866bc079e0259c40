# src/rebatch/engine/coordinator.py
"""PartitionCoordinator: run partition steps on a fixed pool of worker threads.

Workers pull StepExecutions from a shared queue. Once any partition fails,
no new partition is taken from the queue; partitions already in flight run
to their own terminal status, because their committed chunks are
independent of the failure.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from queue import Empty, Queue
from threading import Event, Lock

from rebatch.contracts.enums import JobStatus, StepStatus
from rebatch.contracts.execution import JobOutcome, StepCounters, StepExecution, StepOutcome
from rebatch.core.logging import get_logger

logger = get_logger(__name__)

RunStep = Callable[[StepExecution], StepOutcome]


class PartitionCoordinator:
    """Dispatches partition steps to at most `concurrency` workers.

    Each worker runs one step at a time. Steps are only read by the
    coordinator after their worker has produced an outcome.

    Example:
        coordinator = PartitionCoordinator(concurrency=2)
        outcome = coordinator.execute(steps, run_step=lambda step: executor.run(step, ...))
    """

    def __init__(self, concurrency: int = 2) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def execute(self, steps: Sequence[StepExecution], run_step: RunStep) -> JobOutcome:
        """Run all steps and aggregate their outcomes.

        Returns:
            JobOutcome: FAILED if any step failed or was never dispatched,
            else COMPLETED. Counters are the sums over the step outcomes.
        """
        queue: Queue[StepExecution] = Queue()
        for step in steps:
            queue.put(step)

        stop = Event()
        outcomes: dict[str, StepOutcome] = {}
        outcomes_lock = Lock()

        def worker() -> None:
            while not stop.is_set():
                try:
                    step = queue.get_nowait()
                except Empty:
                    return
                outcome = self._run_one(step, run_step)
                with outcomes_lock:
                    outcomes[step.step_name] = outcome
                if outcome.failed:
                    stop.set()

        worker_count = max(1, min(self._concurrency, len(steps)))
        with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="rebatch-partition") as pool:
            futures = [pool.submit(worker) for _ in range(worker_count)]
            try:
                for future in futures:
                    future.result()
            except KeyboardInterrupt:
                # Let in-flight partitions finish their current step; dispatch nothing new
                stop.set()
                raise

        ordered = tuple(outcomes[s.step_name] for s in steps if s.step_name in outcomes)
        not_started = tuple(s.step_name for s in steps if s.step_name not in outcomes)
        if not_started:
            logger.warning("Partitions not started after failure", steps=list(not_started))

        counters = StepCounters()
        for outcome in ordered:
            counters = counters.plus(outcome.counters)
        failed = any(o.failed for o in ordered) or bool(not_started)
        return JobOutcome(
            status=JobStatus.FAILED if failed else JobStatus.COMPLETED,
            counters=counters,
            step_outcomes=ordered,
            not_started=not_started,
        )

    @staticmethod
    def _run_one(step: StepExecution, run_step: RunStep) -> StepOutcome:
        logger.debug("Partition dispatched", step_name=step.step_name)
        try:
            return run_step(step)
        except Exception as e:
            logger.exception("Partition crashed", step_name=step.step_name, error=str(e))
            return StepOutcome(step.step_name, StepStatus.FAILED, step.counters.copy(), e)
