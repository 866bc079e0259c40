"""Execution-state domain model.

These types answer: "What has run, and how far did it get?"

JobInstance -> JobExecution (one per launch attempt) -> StepExecution (one
per partition, plus the orchestrating step). Each StepExecution owns an
ExecutionContext holding the resume position of its input.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping, MutableMapping
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any

from rebatch.contracts.enums import JobStatus, SkipPhase, StepStatus, can_transition
from rebatch.contracts.errors import StateTransitionError
from rebatch.contracts.parameters import JobParameters

# Standard ExecutionContext keys
INPUT_FILE_KEY = "input.file"
ERROR_FILE_KEY = "output.error.file"
READER_OFFSET_KEY = "reader.offset"
PARTITION_INDEX_KEY = "partition.index"

# Step names
PARTITION_STEP_NAME = "partition_step"
WORKER_STEP_NAME = "step1"


def partition_step_name(index: int) -> str:
    """Name of the worker step for partition `index` (unique per job execution)."""
    return f"{WORKER_STEP_NAME}:partition{index}"


class ExecutionContext(MutableMapping[str, Any]):
    """Persisted key-value state of a step execution.

    Values must be JSON-serializable. NaN and Infinity are rejected at put
    time so a bad value fails where it is written, not at checkpoint time.
    """

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = {}
        for key, value in (values or {}).items():
            self[key] = value

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        try:
            json.dumps(value, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ValueError(f"ExecutionContext value for {key!r} is not JSON-serializable: {e}") from e
        self._values[key] = value

    def __delitem__(self, key: str) -> None:
        del self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ExecutionContext({self._values!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ExecutionContext):
            return self._values == other._values
        if isinstance(other, Mapping):
            return self._values == dict(other)
        return NotImplemented

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._values.get(key, default)
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f"ExecutionContext key {key!r} holds {type(value).__name__}, expected int")
        return value

    def get_str(self, key: str) -> str | None:
        value = self._values.get(key)
        if value is not None and not isinstance(value, str):
            raise TypeError(f"ExecutionContext key {key!r} holds {type(value).__name__}, expected str")
        return value

    def copy(self) -> ExecutionContext:
        return ExecutionContext(self._values)

    def to_json(self) -> str:
        return json.dumps(self._values, allow_nan=False, sort_keys=True)

    @classmethod
    def from_json(cls, text: str | None) -> ExecutionContext:
        if not text:
            return cls()
        return cls(json.loads(text))


@dataclass
class StepCounters:
    """Read/write/skip bookkeeping for one step execution.

    Holds after every commit: read_count == write_count + skip_count.
    skip_count is the sum of the three per-phase skip counters.
    """

    read_count: int = 0
    write_count: int = 0
    skip_count: int = 0
    read_skip_count: int = 0
    process_skip_count: int = 0
    write_skip_count: int = 0
    commit_count: int = 0
    rollback_count: int = 0

    def copy(self) -> StepCounters:
        return StepCounters(**{f.name: getattr(self, f.name) for f in fields(self)})

    def minus(self, other: StepCounters) -> StepCounters:
        """Field-wise difference, used to compute the delta of one commit."""
        return StepCounters(**{f.name: getattr(self, f.name) - getattr(other, f.name) for f in fields(self)})

    def plus(self, other: StepCounters) -> StepCounters:
        return StepCounters(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    def record_skip(self, phase: SkipPhase) -> None:
        self.skip_count += 1
        if phase is SkipPhase.READ:
            self.read_skip_count += 1
        elif phase is SkipPhase.PROCESS:
            self.process_skip_count += 1
        else:
            self.write_skip_count += 1

    @property
    def is_balanced(self) -> bool:
        return self.read_count == self.write_count + self.skip_count

    def as_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class JobInstance:
    """A unique (job name, identifying parameters) pair. Immutable."""

    job_instance_id: str
    job_name: str
    job_key: str
    created_at: datetime


@dataclass
class StepExecution:
    """One unit of work inside a job execution.

    Mutated only by the worker running it; the coordinator reads it after
    the worker reaches a terminal status.
    """

    step_execution_id: str
    job_execution_id: str
    step_name: str
    status: StepStatus
    counters: StepCounters = field(default_factory=StepCounters)
    context: ExecutionContext = field(default_factory=ExecutionContext)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_updated: datetime | None = None
    exit_message: str | None = None

    @property
    def read_count(self) -> int:
        return self.counters.read_count

    @property
    def write_count(self) -> int:
        return self.counters.write_count

    @property
    def skip_count(self) -> int:
        return self.counters.skip_count

    def transition(self, target: StepStatus) -> None:
        """Move to target status, enforcing the step state machine.

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        if not can_transition(self.status, target):
            raise StateTransitionError(f"step {self.step_name}", self.status, target)
        self.status = target


@dataclass
class JobExecution:
    """One launch attempt of a job instance."""

    job_execution_id: str
    job_instance_id: str
    job_name: str
    attempt: int
    status: JobStatus
    parameters: JobParameters
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    read_count: int = 0
    write_count: int = 0
    skip_count: int = 0
    exit_message: str | None = None
    step_executions: list[StepExecution] = field(default_factory=list)

    def get_step(self, step_name: str) -> StepExecution | None:
        for step in self.step_executions:
            if step.step_name == step_name:
                return step
        return None

    @property
    def partition_steps(self) -> list[StepExecution]:
        """Worker steps, excluding the orchestrating step."""
        return [s for s in self.step_executions if s.step_name != PARTITION_STEP_NAME]


@dataclass(frozen=True)
class StepOutcome:
    """Terminal result of running one step."""

    step_name: str
    status: StepStatus
    counters: StepCounters
    error: BaseException | None = None

    @property
    def failed(self) -> bool:
        return self.status is StepStatus.FAILED


@dataclass(frozen=True)
class JobOutcome:
    """Aggregated result of running all partitions of a job execution."""

    status: JobStatus
    counters: StepCounters
    step_outcomes: tuple[StepOutcome, ...]
    not_started: tuple[str, ...] = ()

    @property
    def failures(self) -> tuple[StepOutcome, ...]:
        return tuple(o for o in self.step_outcomes if o.failed)

    @property
    def exit_message(self) -> str | None:
        parts = [f"{o.step_name}: {o.error}" for o in self.failures if o.error is not None]
        if self.not_started:
            parts.append(f"not started: {', '.join(self.not_started)}")
        return "; ".join(parts) or None
