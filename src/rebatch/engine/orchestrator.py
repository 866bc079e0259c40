# src/rebatch/engine/orchestrator.py
"""JobOrchestrator: launch, restart, and finalize job executions.

Launch decision for a job identity (name + identifying parameters):
- latest execution COMPLETED: refuse (JobAlreadyCompleteError)
- latest execution still running: refuse (JobAlreadyRunningError)
- latest execution FAILED or STOPPED: restart. Each partition is
  re-registered with its committed counters and context; completed
  partitions are carried over and not run again
- never launched: partition the input, register one step per partition,
  and run them

Partitioning happens before anything is written to the state store, so a
bad input directory or file leaves no trace.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from rebatch.contracts.enums import JobStatus, StepStatus
from rebatch.contracts.errors import (
    ConfigurationError,
    JobAlreadyCompleteError,
    JobAlreadyRunningError,
    error_message,
)
from rebatch.contracts.execution import (
    ERROR_FILE_KEY,
    INPUT_FILE_KEY,
    PARTITION_INDEX_KEY,
    PARTITION_STEP_NAME,
    READER_OFFSET_KEY,
    WORKER_STEP_NAME,
    ExecutionContext,
    JobExecution,
    JobOutcome,
    StepCounters,
    StepExecution,
    StepOutcome,
    partition_step_name,
)
from rebatch.contracts.parameters import INPUT_FILE, RUN_ID, JobIdentity, JobParameter, JobParameters
from rebatch.contracts.protocols import StepFactory, StepHooks
from rebatch.contracts.records import InputSpec, PartitionPlan
from rebatch.core.canonical import job_identity
from rebatch.core.logging import get_logger
from rebatch.engine.chunk import ChunkExecutor
from rebatch.engine.coordinator import PartitionCoordinator
from rebatch.engine.partitioner import Partitioner, input_spec_from_parameters
from rebatch.engine.skip import SkipClassifier, SkipListener, SkipPolicy

if TYPE_CHECKING:
    from rebatch.core.config import JobSettings
    from rebatch.core.fields import FieldOrder
    from rebatch.core.state.store import ExecutionStateStore
    from rebatch.engine.retry import RetryManager

logger = get_logger(__name__)

JobListener = Callable[[JobExecution], None]


class JobOrchestrator:
    """Entry point for running a job.

    Constructed explicitly with everything it needs; there is no container.

    Example:
        orchestrator = JobOrchestrator(
            store,
            Partitioner(),
            step_factory,
            settings.job,
            concurrency=2,
            field_order=FieldOrder.of_names(["first_name", "last_name", "age"]),
        )
        execution = orchestrator.launch("importUserJob", JobParameters.of({"input.dir": "/data/in"}))
    """

    def __init__(
        self,
        store: ExecutionStateStore,
        partitioner: Partitioner,
        step_factory: StepFactory,
        job_settings: JobSettings,
        concurrency: int = 2,
        *,
        field_order: FieldOrder,
        delimiter: str = ";",
        retry_manager: RetryManager | None = None,
        hooks: StepHooks | None = None,
        on_skip: SkipListener | None = None,
        on_job_complete: JobListener | None = None,
    ) -> None:
        self._store = store
        self._partitioner = partitioner
        self._step_factory = step_factory
        self._settings = job_settings
        self._coordinator = PartitionCoordinator(concurrency)
        self._executor = ChunkExecutor(
            store,
            retry_manager,
            isolate_write_failures=job_settings.isolate_write_failures,
        )
        self._policy = SkipPolicy.from_settings(job_settings)
        self._field_order = field_order
        self._delimiter = delimiter
        self._hooks = hooks
        self._on_skip = on_skip
        self._on_job_complete = on_job_complete

    @property
    def store(self) -> ExecutionStateStore:
        return self._store

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def launch(self, job_name: str, parameters: JobParameters) -> JobExecution:
        """Start or restart the job instance identified by name + parameters.

        Returns:
            The finalized JobExecution, reloaded from the store

        Raises:
            JobAlreadyCompleteError: The instance already completed
            JobAlreadyRunningError: The instance has a running execution
            ConfigurationError: No usable input parameter (nothing is persisted)
            ResourceError: Input missing (nothing is persisted)
        """
        identity = job_identity(job_name, parameters)
        latest = self._store.find_latest_execution(identity)
        if latest is not None:
            if latest.status is JobStatus.COMPLETED:
                raise JobAlreadyCompleteError(job_name, identity.job_key)
            if latest.status.is_running:
                raise JobAlreadyRunningError(job_name, latest.job_execution_id)
            if latest.status.is_restartable and latest.partition_steps:
                return self._restart(identity, latest, parameters)
            logger.info("Previous execution registered no steps, planning again", job_name=job_name)

        plans = self._plan(parameters)
        execution = self._store.create_job_execution(identity, parameters)
        logger.info(
            "Job launched",
            job_name=job_name,
            job_execution_id=execution.job_execution_id,
            attempt=execution.attempt,
            partitions=len(plans),
        )
        steps = [self._register_plan(execution.job_execution_id, plan) for plan in plans]
        return self._run(execution, steps)

    def next_parameters(self, job_name: str, parameters: JobParameters) -> JobParameters:
        """Add run.id = previous run.id + 1, forcing a new job instance."""
        last = self._store.get_last_parameters(job_name)
        previous = last.get_value(RUN_ID) if last is not None else None
        try:
            run_id = int(previous) if previous is not None else 0  # type: ignore[arg-type]  # a datetime run.id falls through to 0
        except (TypeError, ValueError):
            run_id = 0
        return parameters.with_parameter(RUN_ID, JobParameter.of(run_id + 1))

    def abandon(self, job_execution_id: str) -> JobExecution:
        """Fail a running execution whose process died, so it can be restarted.

        Raises:
            ValueError: If no such execution exists
            StateTransitionError: If the execution is already terminal
        """
        execution = self._store.get_job_execution(job_execution_id)
        if execution is None:
            raise ValueError(f"Unknown job execution: {job_execution_id}")
        abandoned = self._store.abandon_job_execution(job_execution_id, "Abandoned: owning process is no longer running")
        logger.warning("Job execution abandoned", job_name=execution.job_name, job_execution_id=job_execution_id)
        return abandoned

    # ------------------------------------------------------------------
    # Planning and registration
    # ------------------------------------------------------------------

    def _plan(self, parameters: JobParameters) -> list[PartitionPlan]:
        if self._settings.partitioned:
            return self._partitioner.partition(input_spec_from_parameters(parameters))
        input_file = parameters.get_string(INPUT_FILE)
        if input_file is None:
            raise ConfigurationError(f"Unpartitioned jobs require the {INPUT_FILE} parameter")
        return self._partitioner.partition(InputSpec(input_file=input_file))

    def _step_name(self, plan: PartitionPlan) -> str:
        return partition_step_name(plan.index) if self._settings.partitioned else WORKER_STEP_NAME

    def _register_plan(self, job_execution_id: str, plan: PartitionPlan) -> StepExecution:
        context = ExecutionContext(
            {
                INPUT_FILE_KEY: str(plan.input_path),
                ERROR_FILE_KEY: str(plan.error_path),
                PARTITION_INDEX_KEY: plan.index,
                READER_OFFSET_KEY: 0,
            }
        )
        return self._store.create_step_execution(job_execution_id, self._step_name(plan), context=context)

    def _restart(self, identity: JobIdentity, previous: JobExecution, parameters: JobParameters) -> JobExecution:
        execution = self._store.create_job_execution(identity, parameters)
        logger.info(
            "Job restarted",
            job_name=identity.job_name,
            job_execution_id=execution.job_execution_id,
            attempt=execution.attempt,
            previous_status=previous.status.value,
        )
        to_run: list[StepExecution] = []
        for prior in previous.partition_steps:
            if prior.status is StepStatus.COMPLETED:
                self._store.create_step_execution(
                    execution.job_execution_id,
                    prior.step_name,
                    context=prior.context,
                    status=StepStatus.COMPLETED,
                    counters=prior.counters,
                )
                logger.debug("Partition already complete, not rerun", step_name=prior.step_name)
                continue
            step = self._store.create_step_execution(
                execution.job_execution_id,
                prior.step_name,
                context=prior.context,
                counters=prior.counters,
            )
            to_run.append(step)
        return self._run(execution, to_run)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(self, execution: JobExecution, steps: list[StepExecution]) -> JobExecution:
        job_execution_id = execution.job_execution_id
        orchestrating: StepExecution | None = None
        try:
            if self._settings.partitioned:
                orchestrating = self._store.create_step_execution(job_execution_id, PARTITION_STEP_NAME)
                orchestrating.transition(StepStatus.RUNNING)
                orchestrating.started_at = datetime.now(UTC)
                self._store.update_step_execution(orchestrating)
            self._store.mark_job_started(job_execution_id)

            outcome = self._coordinator.execute(steps, self._run_step)
            self._fail_unfinished(steps, outcome)
        except KeyboardInterrupt:
            logger.warning("Job interrupted", job_name=execution.job_name, job_execution_id=job_execution_id)
            self._close_orchestrating_step(orchestrating, StepStatus.FAILED, "Interrupted")
            self._finish(execution, JobStatus.STOPPED, "Interrupted")
            raise
        except Exception as e:
            logger.exception("Job crashed", job_name=execution.job_name, job_execution_id=job_execution_id)
            self._close_orchestrating_step(orchestrating, StepStatus.FAILED, error_message(e))
            self._finish(execution, JobStatus.FAILED, error_message(e))
            raise

        step_status = StepStatus.COMPLETED if outcome.status is JobStatus.COMPLETED else StepStatus.FAILED
        self._close_orchestrating_step(orchestrating, step_status, outcome.exit_message)
        return self._finish(execution, outcome.status, outcome.exit_message)

    def _run_step(self, step: StepExecution) -> StepOutcome:
        """Build a partition's collaborators and run its chunk loop (worker thread)."""
        try:
            components = self._step_factory(step)
        except Exception as e:
            logger.error("Could not set up partition", step_name=step.step_name, error=error_message(e))
            step.transition(StepStatus.FAILED)
            step.ended_at = datetime.now(UTC)
            step.exit_message = error_message(e)
            self._store.update_step_execution(step)
            return StepOutcome(step.step_name, StepStatus.FAILED, step.counters.copy(), e)

        classifier = SkipClassifier(
            self._policy,
            components.error_sink,
            self._field_order,
            self._delimiter,
            on_skip=self._on_skip,
        )
        return self._executor.run(step, components, self._settings.chunk_size, classifier, self._hooks)

    def _fail_unfinished(self, steps: list[StepExecution], outcome: JobOutcome) -> None:
        """Persist FAILED for steps whose worker crashed before reaching a terminal status."""
        by_name = {step.step_name: step for step in steps}
        for step_outcome in outcome.failures:
            step = by_name[step_outcome.step_name]
            if step.status.is_terminal:
                continue
            step.transition(StepStatus.FAILED)
            step.ended_at = datetime.now(UTC)
            step.exit_message = error_message(step_outcome.error) if step_outcome.error is not None else None
            self._store.update_step_execution(step)

    def _close_orchestrating_step(self, step: StepExecution | None, status: StepStatus, message: str | None) -> None:
        if step is None or step.status.is_terminal:
            return
        counters = StepCounters()
        for worker_step in self._store.get_step_executions(step.job_execution_id):
            if worker_step.step_name != PARTITION_STEP_NAME:
                counters = counters.plus(worker_step.counters)
        step.counters = counters
        step.transition(status)
        step.ended_at = datetime.now(UTC)
        step.exit_message = message
        self._store.update_step_execution(step)

    def _finish(self, execution: JobExecution, status: JobStatus, message: str | None) -> JobExecution:
        final = self._store.finalize_job_execution(execution.job_execution_id, status, message)
        logger.info(
            "Job finished",
            job_name=final.job_name,
            job_execution_id=final.job_execution_id,
            status=final.status.value,
            read=final.read_count,
            write=final.write_count,
            skip=final.skip_count,
        )
        if self._on_job_complete is not None:
            try:
                self._on_job_complete(final)
            except Exception as e:
                logger.warning("Job completion listener failed", job_name=final.job_name, error=str(e))
        return final
