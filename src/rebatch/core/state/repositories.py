"""Repository layer for execution state models.

Handles the seam between SQLAlchemy rows (strings) and domain objects
(strict enum types). This is NOT a trust boundary - if the database has
bad data, we crash.
"""

from collections.abc import Iterable
from typing import Any

from sqlalchemy.engine import Row as SARow

from rebatch.contracts.enums import JobStatus, ParameterType, StepStatus
from rebatch.contracts.errors import StateIntegrityError
from rebatch.contracts.execution import ExecutionContext, JobExecution, JobInstance, StepCounters, StepExecution
from rebatch.contracts.parameters import JobParameter, JobParameters
from rebatch.core.state._helpers import as_utc

_COUNTER_COLUMNS = tuple(StepCounters().as_dict())


class JobInstanceRepository:
    """Repository for JobInstance records."""

    def load(self, row: SARow[Any]) -> JobInstance:
        return JobInstance(
            job_instance_id=row.job_instance_id,
            job_name=row.job_name,
            job_key=row.job_key,
            created_at=_required_timestamp(row.created_at, "job_instances.created_at"),
        )


class JobParametersRepository:
    """Repository for the parameter rows of one job execution."""

    def load(self, rows: Iterable[SARow[Any]]) -> JobParameters:
        """Rebuild JobParameters in their original order.

        Converts type strings to ParameterType. Crashes on invalid data.
        """
        parameters: dict[str, JobParameter] = {}
        for row in sorted(rows, key=lambda r: r.position):
            parameters[row.key] = JobParameter.from_text(
                row.value,
                ParameterType(row.type),
                identifying=bool(row.identifying),
            )
        return JobParameters(parameters)

    def dump(self, job_execution_id: str, parameters: JobParameters) -> list[dict[str, Any]]:
        return [
            {
                "job_execution_id": job_execution_id,
                "position": position,
                "key": key,
                "type": parameter.type.value,
                "value": parameter.as_text(),
                "identifying": parameter.identifying,
            }
            for position, (key, parameter) in enumerate(parameters.items())
        ]


class StepExecutionRepository:
    """Repository for StepExecution records."""

    def load(self, row: SARow[Any]) -> StepExecution:
        """Load StepExecution from database row.

        Converts status to StepStatus and context_json to ExecutionContext.
        """
        counters = StepCounters(**{name: getattr(row, name) for name in _COUNTER_COLUMNS})
        if not counters.is_balanced:
            raise StateIntegrityError(
                f"Step execution {row.step_execution_id} is unbalanced: "
                f"read={counters.read_count} write={counters.write_count} skip={counters.skip_count}"
            )
        return StepExecution(
            step_execution_id=row.step_execution_id,
            job_execution_id=row.job_execution_id,
            step_name=row.step_name,
            status=StepStatus(row.status),  # Convert HERE
            counters=counters,
            context=ExecutionContext.from_json(row.context_json),
            started_at=as_utc(row.started_at),
            ended_at=as_utc(row.ended_at),
            last_updated=as_utc(row.last_updated),
            exit_message=row.exit_message,
        )


class JobExecutionRepository:
    """Repository for JobExecution records."""

    def load(
        self,
        row: SARow[Any],
        parameters: JobParameters,
        steps: list[StepExecution],
    ) -> JobExecution:
        """Load JobExecution from a job_executions row joined to job_instances."""
        return JobExecution(
            job_execution_id=row.job_execution_id,
            job_instance_id=row.job_instance_id,
            job_name=row.job_name,
            attempt=row.attempt,
            status=JobStatus(row.status),  # Convert HERE
            parameters=parameters,
            created_at=_required_timestamp(row.created_at, "job_executions.created_at"),
            started_at=as_utc(row.started_at),
            ended_at=as_utc(row.ended_at),
            read_count=row.read_count,
            write_count=row.write_count,
            skip_count=row.skip_count,
            exit_message=row.exit_message,
            step_executions=steps,
        )


def _required_timestamp(value: Any, column: str) -> Any:
    result = as_utc(value)
    if result is None:
        raise StateIntegrityError(f"{column} is NULL")
    return result
