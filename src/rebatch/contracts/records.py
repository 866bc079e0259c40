"""Records that flow through the chunk loop.

These types answer: "What is being read, skipped, and partitioned?"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rebatch.contracts.enums import ErrorKind, SkipPhase

# Placeholder for identifying fields that could not be recovered
NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class RawRecord:
    """One tokenized input record, before transformation.

    Attributes:
        line_number: Physical line in the input resource (1-based)
        raw: The input line as read, without the line terminator
        fields: Column name -> string value, in column order
    """

    line_number: int
    raw: str
    fields: dict[str, str]

    @property
    def values(self) -> tuple[str, ...]:
        return tuple(self.fields.values())


@dataclass(frozen=True)
class SkipRecord:
    """Description of one skipped record, written to the error sink.

    Attributes:
        phase: Chunk-loop phase in which the record failed
        kind: ErrorKind of the triggering error
        message: Error message
        fields: Best-effort identifying fields (name -> text)
        line_number: Input line, when known
        payload: The offending raw input text or item
    """

    phase: SkipPhase
    kind: ErrorKind
    message: str
    fields: dict[str, str]
    line_number: int | None = None
    payload: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class InputSpec:
    """Where a job's input comes from: a directory or a single file."""

    input_dir: str | None = None
    input_file: str | None = None


@dataclass(frozen=True)
class PartitionPlan:
    """One independently executable slice of a job's input."""

    index: int
    input_path: Path
    error_path: Path
