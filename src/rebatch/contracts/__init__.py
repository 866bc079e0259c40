"""Shared contracts for cross-boundary data types.

All dataclasses, enums, protocols, and exceptions that cross subsystem
boundaries are defined here.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
rebatch.core.config.
"""

from rebatch.contracts.enums import (
    ErrorKind,
    JobStatus,
    ParameterType,
    SkipDecision,
    SkipPhase,
    StepStatus,
    can_transition,
)
from rebatch.contracts.errors import (
    BatchError,
    ConfigurationError,
    JobAlreadyCompleteError,
    JobAlreadyRunningError,
    ParseError,
    RecordRejectedError,
    RecordValidationError,
    ResourceError,
    SinkError,
    SkipLimitExceededError,
    StateIntegrityError,
    StateTransitionError,
    error_kind,
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
    JobInstance,
    JobOutcome,
    StepCounters,
    StepExecution,
    StepOutcome,
    partition_step_name,
)
from rebatch.contracts.parameters import (
    INPUT_DIR,
    INPUT_FILE,
    RUN_ID,
    JobIdentity,
    JobParameter,
    JobParameters,
)
from rebatch.contracts.protocols import (
    ErrorSink,
    RecordSink,
    RecordSource,
    RecordTransform,
    StepComponents,
    StepFactory,
    StepHooks,
)
from rebatch.contracts.records import (
    NOT_AVAILABLE,
    InputSpec,
    PartitionPlan,
    RawRecord,
    SkipRecord,
)

__all__ = [
    "ERROR_FILE_KEY",
    "INPUT_DIR",
    "INPUT_FILE",
    "INPUT_FILE_KEY",
    "NOT_AVAILABLE",
    "PARTITION_INDEX_KEY",
    "PARTITION_STEP_NAME",
    "READER_OFFSET_KEY",
    "RUN_ID",
    "WORKER_STEP_NAME",
    "BatchError",
    "ConfigurationError",
    "ErrorKind",
    "ErrorSink",
    "ExecutionContext",
    "InputSpec",
    "JobAlreadyCompleteError",
    "JobAlreadyRunningError",
    "JobExecution",
    "JobIdentity",
    "JobInstance",
    "JobOutcome",
    "JobParameter",
    "JobParameters",
    "JobStatus",
    "ParameterType",
    "ParseError",
    "PartitionPlan",
    "RawRecord",
    "RecordRejectedError",
    "RecordSink",
    "RecordSource",
    "RecordTransform",
    "RecordValidationError",
    "ResourceError",
    "SinkError",
    "SkipDecision",
    "SkipLimitExceededError",
    "SkipPhase",
    "SkipRecord",
    "StateIntegrityError",
    "StateTransitionError",
    "StepComponents",
    "StepCounters",
    "StepExecution",
    "StepFactory",
    "StepHooks",
    "StepOutcome",
    "StepStatus",
    "can_transition",
    "error_kind",
    "error_message",
    "partition_step_name",
]
