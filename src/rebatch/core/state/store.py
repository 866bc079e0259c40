# src/rebatch/core/state/store.py
"""ExecutionStateStore: durable job and step execution state.

Every public operation runs in one database transaction. A chunk commit
writes the step row (counters, context, status) and increments the job
execution's aggregate counters atomically, so a crash never leaves the
aggregates ahead of or behind the steps.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Connection, func, select, update

from rebatch.contracts.enums import JobStatus, StepStatus
from rebatch.contracts.errors import (
    JobAlreadyCompleteError,
    JobAlreadyRunningError,
    StateIntegrityError,
    StateTransitionError,
)
from rebatch.contracts.execution import ExecutionContext, JobExecution, JobInstance, StepCounters, StepExecution
from rebatch.contracts.parameters import JobIdentity, JobParameters
from rebatch.core.logging import get_logger
from rebatch.core.state._database_ops import DatabaseOps
from rebatch.core.state._helpers import generate_id, now
from rebatch.core.state.database import StateDB
from rebatch.core.state.repositories import (
    JobExecutionRepository,
    JobInstanceRepository,
    JobParametersRepository,
    StepExecutionRepository,
)
from rebatch.core.state.schema import (
    job_execution_params_table,
    job_executions_table,
    job_instances_table,
    step_executions_table,
)

logger = get_logger(__name__)

_RUNNING_JOB_STATUSES = (JobStatus.STARTING.value, JobStatus.STARTED.value)
_OPEN_STEP_STATUSES = (StepStatus.PENDING.value, StepStatus.RUNNING.value)


class ExecutionStateStore:
    """Persists JobInstances, JobExecutions, and StepExecutions.

    Thread-safe: workers share one store, each operation checks out its own
    connection from the engine pool.

    Example:
        store = ExecutionStateStore(StateDB.from_url("sqlite:///./state/rebatch.db"))
        execution = store.create_job_execution(identity, parameters)
        store.mark_job_started(execution.job_execution_id)
    """

    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._ops = DatabaseOps(db)
        self._instance_repo = JobInstanceRepository()
        self._params_repo = JobParametersRepository()
        self._step_repo = StepExecutionRepository()
        self._execution_repo = JobExecutionRepository()

    # ------------------------------------------------------------------
    # Job instances and executions
    # ------------------------------------------------------------------

    def find_job_instance(self, identity: JobIdentity) -> JobInstance | None:
        """Look up the instance for a job name + identifying parameters."""
        row = self._ops.execute_fetchone(
            select(job_instances_table).where(
                job_instances_table.c.job_name == identity.job_name,
                job_instances_table.c.job_key == identity.job_key,
            )
        )
        return self._instance_repo.load(row) if row is not None else None

    def find_latest_execution(self, identity: JobIdentity) -> JobExecution | None:
        """Latest execution (highest attempt) of the instance, or None if never launched."""
        with self._db.connection() as conn:
            row = conn.execute(
                self._execution_query()
                .where(
                    job_instances_table.c.job_name == identity.job_name,
                    job_instances_table.c.job_key == identity.job_key,
                )
                .order_by(job_executions_table.c.attempt.desc())
                .limit(1)
            ).fetchone()
            if row is None:
                return None
            return self._load_execution(conn, row)

    def create_job_execution(self, identity: JobIdentity, parameters: JobParameters) -> JobExecution:
        """Create the next launch attempt of an instance (creating the instance if new).

        The status check is repeated inside the transaction so two launchers
        racing on one instance cannot both start it.

        Raises:
            JobAlreadyCompleteError: If the latest execution COMPLETED
            JobAlreadyRunningError: If the latest execution is still running
        """
        timestamp = now()
        with self._db.connection() as conn:
            instance_row = conn.execute(
                select(job_instances_table.c.job_instance_id).where(
                    job_instances_table.c.job_name == identity.job_name,
                    job_instances_table.c.job_key == identity.job_key,
                )
            ).fetchone()

            attempt = 1
            if instance_row is None:
                job_instance_id = generate_id()
                self._ops.execute_insert(
                    job_instances_table.insert().values(
                        job_instance_id=job_instance_id,
                        job_name=identity.job_name,
                        job_key=identity.job_key,
                        created_at=timestamp,
                    ),
                    conn=conn,
                )
            else:
                job_instance_id = instance_row.job_instance_id
                latest = conn.execute(
                    select(
                        job_executions_table.c.job_execution_id,
                        job_executions_table.c.attempt,
                        job_executions_table.c.status,
                    )
                    .where(job_executions_table.c.job_instance_id == job_instance_id)
                    .order_by(job_executions_table.c.attempt.desc())
                    .limit(1)
                ).fetchone()
                if latest is not None:
                    latest_status = JobStatus(latest.status)
                    if latest_status is JobStatus.COMPLETED:
                        raise JobAlreadyCompleteError(identity.job_name, identity.job_key)
                    if latest_status.is_running:
                        raise JobAlreadyRunningError(identity.job_name, latest.job_execution_id)
                    attempt = latest.attempt + 1

            job_execution_id = generate_id()
            self._ops.execute_insert(
                job_executions_table.insert().values(
                    job_execution_id=job_execution_id,
                    job_instance_id=job_instance_id,
                    attempt=attempt,
                    status=JobStatus.STARTING.value,
                    created_at=timestamp,
                    last_updated=timestamp,
                    read_count=0,
                    write_count=0,
                    skip_count=0,
                ),
                conn=conn,
            )
            param_rows = self._params_repo.dump(job_execution_id, parameters)
            if param_rows:
                conn.execute(job_execution_params_table.insert(), param_rows)

            logger.debug(
                "Job execution created",
                job_name=identity.job_name,
                job_execution_id=job_execution_id,
                attempt=attempt,
            )
            return self._load_execution_by_id(conn, job_execution_id)

    def mark_job_started(self, job_execution_id: str) -> None:
        """Move a job execution from STARTING to STARTED."""
        timestamp = now()
        with self._db.connection() as conn:
            result = conn.execute(
                update(job_executions_table)
                .where(
                    job_executions_table.c.job_execution_id == job_execution_id,
                    job_executions_table.c.status == JobStatus.STARTING.value,
                )
                .values(status=JobStatus.STARTED.value, started_at=timestamp, last_updated=timestamp)
            )
            if result.rowcount == 0:
                self._raise_job_update_failure(conn, job_execution_id, JobStatus.STARTED)

    def finalize_job_execution(
        self,
        job_execution_id: str,
        status: JobStatus,
        exit_message: str | None = None,
    ) -> JobExecution:
        """Record the terminal status of a job execution.

        Raises:
            ValueError: If status is not terminal
            StateTransitionError: If the execution is already terminal
        """
        if not status.is_terminal:
            raise ValueError(f"finalize_job_execution requires a terminal status, got {status}")
        timestamp = now()
        with self._db.connection() as conn:
            result = conn.execute(
                update(job_executions_table)
                .where(
                    job_executions_table.c.job_execution_id == job_execution_id,
                    job_executions_table.c.status.in_(_RUNNING_JOB_STATUSES),
                )
                .values(status=status.value, ended_at=timestamp, last_updated=timestamp, exit_message=exit_message)
            )
            if result.rowcount == 0:
                self._raise_job_update_failure(conn, job_execution_id, status)
            return self._load_execution_by_id(conn, job_execution_id)

    def abandon_job_execution(self, job_execution_id: str, exit_message: str) -> JobExecution:
        """Fail a running execution left behind by a dead process, and its open steps.

        Committed step counters and contexts are kept, so a restart resumes
        from the last commit.

        Raises:
            StateTransitionError: If the execution is already terminal
        """
        timestamp = now()
        with self._db.connection() as conn:
            result = conn.execute(
                update(job_executions_table)
                .where(
                    job_executions_table.c.job_execution_id == job_execution_id,
                    job_executions_table.c.status.in_(_RUNNING_JOB_STATUSES),
                )
                .values(
                    status=JobStatus.FAILED.value,
                    ended_at=timestamp,
                    last_updated=timestamp,
                    exit_message=exit_message,
                )
            )
            if result.rowcount == 0:
                self._raise_job_update_failure(conn, job_execution_id, JobStatus.FAILED)
            conn.execute(
                update(step_executions_table)
                .where(
                    step_executions_table.c.job_execution_id == job_execution_id,
                    step_executions_table.c.status.in_(_OPEN_STEP_STATUSES),
                )
                .values(
                    status=StepStatus.FAILED.value,
                    ended_at=timestamp,
                    last_updated=timestamp,
                    exit_message=exit_message,
                )
            )
            return self._load_execution_by_id(conn, job_execution_id)

    # ------------------------------------------------------------------
    # Step executions
    # ------------------------------------------------------------------

    def create_step_execution(
        self,
        job_execution_id: str,
        step_name: str,
        *,
        context: ExecutionContext | None = None,
        status: StepStatus = StepStatus.PENDING,
        counters: StepCounters | None = None,
    ) -> StepExecution:
        """Register a step of a job execution.

        Carried-over counters (a restarted partition's committed progress)
        are added to the job execution's aggregates in the same transaction.
        """
        timestamp = now()
        step_counters = counters.copy() if counters is not None else StepCounters()
        step_context = context.copy() if context is not None else ExecutionContext()
        step_execution_id = generate_id()
        with self._db.connection() as conn:
            position = conn.execute(
                select(func.count())
                .select_from(step_executions_table)
                .where(step_executions_table.c.job_execution_id == job_execution_id)
            ).scalar_one()
            self._ops.execute_insert(
                step_executions_table.insert().values(
                    step_execution_id=step_execution_id,
                    job_execution_id=job_execution_id,
                    step_name=step_name,
                    position=position,
                    status=status.value,
                    started_at=None,
                    ended_at=timestamp if status.is_terminal else None,
                    last_updated=timestamp,
                    context_json=step_context.to_json(),
                    **step_counters.as_dict(),
                ),
                conn=conn,
            )
            if counters is not None:
                self._increment_job_counters(conn, job_execution_id, step_counters)

        return StepExecution(
            step_execution_id=step_execution_id,
            job_execution_id=job_execution_id,
            step_name=step_name,
            status=status,
            counters=step_counters,
            context=step_context,
            ended_at=timestamp if status.is_terminal else None,
            last_updated=timestamp,
        )

    def update_step_execution(self, step_execution: StepExecution, delta: StepCounters | None = None) -> None:
        """Persist a step's status, counters, and context.

        When delta is given, the job execution's aggregate counters are
        incremented by it in the same transaction (one chunk commit).

        Raises:
            StateTransitionError: If the stored step is already terminal
        """
        timestamp = now()
        with self._db.connection() as conn:
            result = conn.execute(
                update(step_executions_table)
                .where(
                    step_executions_table.c.step_execution_id == step_execution.step_execution_id,
                    step_executions_table.c.status.in_(_OPEN_STEP_STATUSES),
                )
                .values(
                    status=step_execution.status.value,
                    started_at=step_execution.started_at,
                    ended_at=step_execution.ended_at,
                    last_updated=timestamp,
                    exit_message=step_execution.exit_message,
                    context_json=step_execution.context.to_json(),
                    **step_execution.counters.as_dict(),
                )
            )
            if result.rowcount == 0:
                self._raise_step_update_failure(conn, step_execution)
            if delta is not None:
                self._increment_job_counters(conn, step_execution.job_execution_id, delta)
        step_execution.last_updated = timestamp

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job_execution(self, job_execution_id: str) -> JobExecution | None:
        with self._db.connection() as conn:
            row = conn.execute(
                self._execution_query().where(job_executions_table.c.job_execution_id == job_execution_id)
            ).fetchone()
            if row is None:
                return None
            return self._load_execution(conn, row)

    def get_step_executions(self, job_execution_id: str) -> list[StepExecution]:
        """Steps of a job execution in registration order."""
        rows = self._ops.execute_fetchall(
            select(step_executions_table)
            .where(step_executions_table.c.job_execution_id == job_execution_id)
            .order_by(step_executions_table.c.position)
        )
        return [self._step_repo.load(row) for row in rows]

    def list_job_executions(self, job_name: str | None = None, *, limit: int | None = None) -> list[JobExecution]:
        """Job executions, newest first."""
        query = self._execution_query().order_by(
            job_executions_table.c.created_at.desc(),
            job_executions_table.c.attempt.desc(),
        )
        if job_name is not None:
            query = query.where(job_instances_table.c.job_name == job_name)
        if limit is not None:
            query = query.limit(limit)
        with self._db.connection() as conn:
            rows = conn.execute(query).fetchall()
            return [self._load_execution(conn, row) for row in rows]

    def list_job_instances(self, job_name: str | None = None) -> list[JobInstance]:
        query = select(job_instances_table).order_by(job_instances_table.c.created_at)
        if job_name is not None:
            query = query.where(job_instances_table.c.job_name == job_name)
        return [self._instance_repo.load(row) for row in self._ops.execute_fetchall(query)]

    def get_last_parameters(self, job_name: str) -> JobParameters | None:
        """Parameters of the most recent execution of any instance of job_name."""
        with self._db.connection() as conn:
            row = conn.execute(
                self._execution_query()
                .where(job_instances_table.c.job_name == job_name)
                .order_by(job_executions_table.c.created_at.desc(), job_executions_table.c.attempt.desc())
                .limit(1)
            ).fetchone()
            if row is None:
                return None
            return self._load_parameters(conn, row.job_execution_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _execution_query() -> Any:
        return select(job_executions_table, job_instances_table.c.job_name).select_from(
            job_executions_table.join(
                job_instances_table,
                job_executions_table.c.job_instance_id == job_instances_table.c.job_instance_id,
            )
        )

    def _load_parameters(self, conn: Connection, job_execution_id: str) -> JobParameters:
        rows = conn.execute(
            select(job_execution_params_table).where(job_execution_params_table.c.job_execution_id == job_execution_id)
        ).fetchall()
        return self._params_repo.load(rows)

    def _load_execution(self, conn: Connection, row: Any) -> JobExecution:
        step_rows = conn.execute(
            select(step_executions_table)
            .where(step_executions_table.c.job_execution_id == row.job_execution_id)
            .order_by(step_executions_table.c.position)
        ).fetchall()
        return self._execution_repo.load(
            row,
            self._load_parameters(conn, row.job_execution_id),
            [self._step_repo.load(step_row) for step_row in step_rows],
        )

    def _load_execution_by_id(self, conn: Connection, job_execution_id: str) -> JobExecution:
        row = conn.execute(
            self._execution_query().where(job_executions_table.c.job_execution_id == job_execution_id)
        ).fetchone()
        if row is None:
            raise StateIntegrityError(f"Job execution {job_execution_id} not found")
        return self._load_execution(conn, row)

    def _increment_job_counters(self, conn: Connection, job_execution_id: str, delta: StepCounters) -> None:
        table = job_executions_table
        result = conn.execute(
            update(table)
            .where(
                table.c.job_execution_id == job_execution_id,
                table.c.status.in_(_RUNNING_JOB_STATUSES),
            )
            .values(
                read_count=table.c.read_count + delta.read_count,
                write_count=table.c.write_count + delta.write_count,
                skip_count=table.c.skip_count + delta.skip_count,
                last_updated=now(),
            )
        )
        if result.rowcount == 0:
            self._raise_job_update_failure(conn, job_execution_id, None)

    def _raise_job_update_failure(self, conn: Connection, job_execution_id: str, target: JobStatus | None) -> None:
        row = conn.execute(
            select(job_executions_table.c.status).where(job_executions_table.c.job_execution_id == job_execution_id)
        ).fetchone()
        if row is None:
            raise StateIntegrityError(f"Job execution {job_execution_id} not found")
        raise StateTransitionError(f"job execution {job_execution_id}", JobStatus(row.status), target or "counter update")

    def _raise_step_update_failure(self, conn: Connection, step_execution: StepExecution) -> None:
        row = conn.execute(
            select(step_executions_table.c.status).where(
                step_executions_table.c.step_execution_id == step_execution.step_execution_id
            )
        ).fetchone()
        if row is None:
            raise StateIntegrityError(f"Step execution {step_execution.step_execution_id} not found")
        raise StateTransitionError(f"step {step_execution.step_name}", StepStatus(row.status), step_execution.status)
