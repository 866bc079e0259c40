"""Exception taxonomy for batch execution.

Every rebatch error carries an ErrorKind. The skip policy decides on the
kind, never on the class, so a plugin can raise its own subclass and still
be classified correctly.

Kinds that are skip-eligible by default: PARSE and VALIDATION. Everything
else fails the owning step.
"""

from typing import Any, ClassVar

from rebatch.contracts.enums import ErrorKind


class BatchError(Exception):
    """Base class for all errors raised by rebatch."""

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL


def error_kind(error: BaseException) -> ErrorKind:
    """Return the ErrorKind of any exception (INTERNAL for foreign ones)."""
    if isinstance(error, BatchError):
        return error.kind
    return ErrorKind.INTERNAL


def error_message(error: BaseException) -> str:
    """Human-readable message for an error, falling back to the class name."""
    message = str(error)
    return message if message else type(error).__name__


# =============================================================================
# Job setup errors
# =============================================================================


class ConfigurationError(BatchError):
    """Raised when the job input parameters are missing or contradictory."""

    kind = ErrorKind.CONFIGURATION


class ResourceError(BatchError):
    """Raised when an input file or directory does not exist or cannot be read."""

    kind = ErrorKind.RESOURCE

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


# =============================================================================
# Record-level errors (skip-eligible by default)
# =============================================================================


class ParseError(BatchError):
    """Raised by a record source when an input line cannot be tokenized.

    Attributes:
        raw_input: The offending input text, used to reconstruct the record's
            identifying fields for the error file
        line_number: Physical line number in the input resource
    """

    kind = ErrorKind.PARSE

    def __init__(self, message: str, *, raw_input: str, line_number: int | None = None) -> None:
        super().__init__(message)
        self.raw_input = raw_input
        self.line_number = line_number


class RecordValidationError(BatchError):
    """Raised by a transform when a record breaks a business rule."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


# =============================================================================
# Destination errors
# =============================================================================


class SinkError(BatchError):
    """Raised by a record sink when a batch cannot be written.

    Attributes:
        retryable: True when the failure is transient (locked database,
            dropped connection) and the same write may succeed later
    """

    kind = ErrorKind.SINK

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class RecordRejectedError(SinkError):
    """Raised when the destination refuses the data itself (constraint violation).

    Only meaningful for item-level write isolation: re-writing the chunk one
    item at a time pins the rejection to specific records.
    """

    kind = ErrorKind.REJECTED


# =============================================================================
# Step and job control errors
# =============================================================================


class SkipLimitExceededError(BatchError):
    """Raised when a skip-eligible failure would exceed the step's skip limit.

    The triggering error is chained as __cause__.
    """

    kind = ErrorKind.SKIP_LIMIT

    def __init__(self, skip_limit: int, cause: BaseException) -> None:
        self.skip_limit = skip_limit
        self.cause = cause
        super().__init__(f"Skip limit of {skip_limit} exceeded: {error_message(cause)}")


class JobAlreadyCompleteError(BatchError):
    """Raised when launching a job instance whose latest execution completed.

    Launch again with different identifying parameters (for example a new
    run.id) to force a fresh instance.
    """

    def __init__(self, job_name: str, job_key: str) -> None:
        self.job_name = job_name
        self.job_key = job_key
        super().__init__(
            f"A job instance already exists and is complete for job '{job_name}' (key {job_key[:12]}). "
            "Change the identifying parameters to run it again."
        )


class JobAlreadyRunningError(BatchError):
    """Raised when launching a job instance that has an execution in flight."""

    def __init__(self, job_name: str, job_execution_id: str) -> None:
        self.job_name = job_name
        self.job_execution_id = job_execution_id
        super().__init__(
            f"Job '{job_name}' already has a running execution ({job_execution_id}). "
            "If the process that owned it has died, abandon it first."
        )


class StateTransitionError(BatchError):
    """Raised when a step or job is moved out of a terminal state."""

    def __init__(self, entity: str, current: Any, target: Any) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Illegal status transition for {entity}: {current} -> {target}")


class StateIntegrityError(BatchError):
    """Raised when the execution state database contradicts itself.

    The state database is our own data. A missing row or a value that cannot
    be loaded means a bug or corruption, never something to paper over.
    """
