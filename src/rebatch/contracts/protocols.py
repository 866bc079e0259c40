"""Collaborator protocols consumed by the chunk engine.

The engine never knows what it reads from or writes to. A step is wired
from four capabilities:

- RecordSource: yields raw records, resumable by offset
- RecordTransform: turns a raw record into an item (may reject it)
- RecordSink: writes a chunk of items all-or-nothing
- ErrorSink: durably records skipped inputs (best-effort)

A StepFactory builds these per step execution from its ExecutionContext,
so each partition gets its own input and error file.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from rebatch.contracts.execution import StepExecution
    from rebatch.contracts.records import RawRecord, SkipRecord


@runtime_checkable
class RecordSource(Protocol):
    """Sequential, resumable reader of raw records.

    The offset is the number of records consumed so far, counting records
    that failed to parse. seek(n) positions the source so that the next
    call to next() returns record n.
    """

    def open(self) -> None:
        """Open the underlying resource. Raises ResourceError if missing."""
        ...

    def next(self) -> RawRecord | None:
        """Return the next record, or None at end of input.

        Raises:
            ParseError: If the record cannot be tokenized. The record is
                consumed (the offset advances) either way.
        """
        ...

    def seek(self, offset: int) -> None:
        """Skip forward so that `offset` records have been consumed."""
        ...

    def current_offset(self) -> int:
        """Number of records consumed so far."""
        ...

    def close(self) -> None: ...


@runtime_checkable
class RecordTransform(Protocol):
    """Pure per-record transformation."""

    def apply(self, record: RawRecord) -> Any:
        """Transform one record.

        Raises:
            RecordValidationError: If the record breaks a business rule
        """
        ...


@runtime_checkable
class RecordSink(Protocol):
    """Destination for committed chunks."""

    def write_all(self, items: Sequence[Any]) -> None:
        """Write all items as one unit: either every item lands or none does.

        Raises:
            SinkError: If the write failed (nothing was written)
        """
        ...


@runtime_checkable
class ErrorSink(Protocol):
    """Durable record of skipped inputs."""

    def append(self, record: SkipRecord) -> None: ...

    def close(self) -> None: ...


@dataclass
class StepComponents:
    """Everything one step execution reads from and writes to."""

    source: RecordSource
    transform: RecordTransform
    sink: RecordSink
    error_sink: ErrorSink


StepFactory = Callable[["StepExecution"], StepComponents]


@dataclass(frozen=True)
class StepHooks:
    """Optional callbacks invoked synchronously by the chunk executor.

    Attributes:
        before_chunk: (step, chunk_number) before the first read of a chunk
        after_chunk: (step, chunk_number) after the chunk is committed
        on_chunk_error: (step, chunk_number, error) when a chunk fails fatally
        on_skip: (step, skip_record) after a skipped record reached the error sink
    """

    before_chunk: Callable[[StepExecution, int], None] | None = None
    after_chunk: Callable[[StepExecution, int], None] | None = None
    on_chunk_error: Callable[[StepExecution, int, BaseException], None] | None = None
    on_skip: Callable[[StepExecution, SkipRecord], None] | None = field(default=None)
