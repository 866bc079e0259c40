"""All status codes, phases, and kinds used across subsystem boundaries.

Statuses are stored as their string values in the execution state database.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """Status of one job execution (launch attempt).

    Stored in the database (job_executions.status).
    """

    STARTING = "starting"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_JOB_STATUSES

    @property
    def is_running(self) -> bool:
        return self in (JobStatus.STARTING, JobStatus.STARTED)

    @property
    def is_restartable(self) -> bool:
        return self in (JobStatus.FAILED, JobStatus.STOPPED)


_TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.STOPPED})


class StepStatus(StrEnum):
    """Status of a step execution.

    Stored in the database (step_executions.status).

    Transitions: PENDING -> RUNNING -> {COMPLETED | FAILED}. Nothing leaves
    a terminal state.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED)


_STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.FAILED}),
    StepStatus.RUNNING: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
}


def can_transition(current: StepStatus, target: StepStatus) -> bool:
    """Check whether a step may move from current to target status."""
    return target in _STEP_TRANSITIONS[current]


class SkipPhase(StrEnum):
    """Phase of the chunk loop in which a record failed.

    Written to the error file and used to pick the per-phase skip counter.
    """

    READ = "read"
    PROCESS = "process"
    WRITE = "write"


class SkipDecision(StrEnum):
    """Outcome of classifying a failure."""

    SKIP = "skip"
    FAIL = "fail"


class ErrorKind(StrEnum):
    """Kind of a batch error, used by the skip policy.

    Values:
        CONFIGURATION: Bad or missing job input parameters
        RESOURCE: Input file or directory missing or unreadable
        PARSE: Malformed input record (tokenizer failure)
        VALIDATION: Business-rule rejection of a record
        SINK: Destination write failure
        REJECTED: Destination refused a specific record (constraint violation)
        SKIP_LIMIT: Skip limit exhausted
        INTERNAL: Anything not raised by rebatch itself
    """

    CONFIGURATION = "configuration"
    RESOURCE = "resource"
    PARSE = "parse"
    VALIDATION = "validation"
    SINK = "sink"
    REJECTED = "rejected"
    SKIP_LIMIT = "skip_limit"
    INTERNAL = "internal"


class ParameterType(StrEnum):
    """Type tag of a job parameter.

    Names follow the classic batch launcher syntax: key(type)=value.
    """

    STRING = "string"
    LONG = "long"
    DOUBLE = "double"
    DATE = "date"
