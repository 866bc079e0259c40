# src/rebatch/engine/skip.py
"""Skip policy: decide whether a failed record is skipped or fails its step.

A step has one shared skip limit across the read, process, and write
phases. A skip-eligible error that would push the step's skip count past
the limit is fatal and surfaces as SkipLimitExceededError.

Skip records are held until their chunk commits. The chunk executor calls
flush() after the commit and discard() on rollback, so the error file only
ever holds skips that are part of the committed counters.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from rebatch.contracts.enums import ErrorKind, SkipDecision, SkipPhase
from rebatch.contracts.errors import ParseError, SkipLimitExceededError, error_kind, error_message
from rebatch.contracts.records import RawRecord, SkipRecord
from rebatch.core.logging import get_logger

if TYPE_CHECKING:
    from rebatch.contracts.execution import StepExecution
    from rebatch.contracts.protocols import ErrorSink
    from rebatch.core.config import JobSettings
    from rebatch.core.fields import FieldOrder

logger = get_logger(__name__)

SkipListener = Callable[["StepExecution", SkipRecord], None]


@dataclass(frozen=True)
class SkipPolicy:
    """Which error kinds may be skipped, and how many skips a step may take."""

    skip_limit: int
    skippable_kinds: frozenset[ErrorKind] = frozenset({ErrorKind.PARSE, ErrorKind.VALIDATION})

    def __post_init__(self) -> None:
        if self.skip_limit < 0:
            raise ValueError("skip_limit must be >= 0")

    @classmethod
    def from_settings(cls, settings: JobSettings) -> SkipPolicy:
        return cls(skip_limit=settings.skip_limit, skippable_kinds=frozenset(settings.skippable_kinds))

    def is_skippable(self, error: BaseException) -> bool:
        return error_kind(error) in self.skippable_kinds


class SkipClassifier:
    """Classifies chunk-loop failures and records the skipped ones.

    One classifier serves one step execution: it writes to that partition's
    error sink and mutates that step's skip counters.

    Example:
        classifier = SkipClassifier(policy, error_sink, FieldOrder.of_names(["first_name"]), ";")
        decision = classifier.classify(SkipPhase.PROCESS, error, step, item=record)
        if decision is SkipDecision.FAIL:
            raise classifier.failure(error) from error
        ...
        store.update_step_execution(step, delta)
        classifier.flush()
    """

    def __init__(
        self,
        policy: SkipPolicy,
        error_sink: ErrorSink,
        field_order: FieldOrder,
        delimiter: str = ";",
        on_skip: SkipListener | None = None,
    ) -> None:
        self._policy = policy
        self._error_sink = error_sink
        self._field_order = field_order
        self._delimiter = delimiter
        self._on_skip = on_skip
        self._pending: list[tuple[StepExecution, SkipRecord, SkipListener | None]] = []

    @property
    def policy(self) -> SkipPolicy:
        return self._policy

    def classify(
        self,
        phase: SkipPhase,
        error: BaseException,
        step_execution: StepExecution,
        item: Any = None,
        *,
        line_number: int | None = None,
        on_skip: SkipListener | None = None,
    ) -> SkipDecision:
        """Decide SKIP or FAIL for one failed record.

        On SKIP the step's total and per-phase skip counters are incremented
        and the record is queued for flush(). Never raises.

        Args:
            phase: Chunk-loop phase in which the record failed
            error: The failure
            step_execution: Step whose counters take the skip
            item: Raw record (process phase) or transformed item (write phase)
            line_number: Input line of the record, when the item doesn't carry it
            on_skip: Extra listener for this call, after the classifier's own
        """
        if not self._policy.is_skippable(error):
            return SkipDecision.FAIL
        if step_execution.counters.skip_count + 1 > self._policy.skip_limit:
            logger.warning(
                "Skip limit reached",
                step_name=step_execution.step_name,
                phase=phase.value,
                skip_limit=self._policy.skip_limit,
                error=error_message(error),
            )
            return SkipDecision.FAIL

        step_execution.counters.record_skip(phase)
        record = self._build_record(phase, error, item, line_number)
        logger.info(
            "Skipping record",
            step_name=step_execution.step_name,
            phase=phase.value,
            line=record.line_number,
            error=record.message,
        )

        self._pending.append((step_execution, record, on_skip))
        return SkipDecision.SKIP

    @property
    def pending(self) -> int:
        """Skip records waiting for their chunk to commit."""
        return len(self._pending)

    def flush(self) -> None:
        """Append the committed chunk's skip records and notify the listeners.

        Never raises: error sink and listener failures are logged.
        """
        pending, self._pending = self._pending, []
        for step_execution, record, on_skip in pending:
            try:
                self._error_sink.append(record)
            except Exception as e:
                logger.warning(
                    "Failed to write skipped record to error sink",
                    step_name=step_execution.step_name,
                    phase=record.phase.value,
                    line=record.line_number,
                    error=str(e),
                )

            for listener in (self._on_skip, on_skip):
                if listener is None:
                    continue
                try:
                    listener(step_execution, record)
                except Exception as e:
                    logger.warning("Skip listener failed", step_name=step_execution.step_name, error=str(e))

    def discard(self) -> int:
        """Drop the skip records of a rolled-back chunk; return how many."""
        dropped = len(self._pending)
        self._pending = []
        return dropped

    def failure(self, error: BaseException) -> BaseException:
        """The exception that fails the step for an error classified FAIL.

        Skip-eligible errors only fail when the limit is reached, so they
        become SkipLimitExceededError. Anything else fails as itself.
        """
        if self._policy.is_skippable(error):
            return SkipLimitExceededError(self._policy.skip_limit, error)
        return error

    def _build_record(self, phase: SkipPhase, error: BaseException, item: Any, line_number: int | None) -> SkipRecord:
        if isinstance(error, ParseError):
            fields = self._field_order.from_raw(error.raw_input, self._delimiter)
            return SkipRecord(
                phase=phase,
                kind=error_kind(error),
                message=error_message(error),
                fields=fields,
                line_number=error.line_number if error.line_number is not None else line_number,
                payload=error.raw_input,
            )

        if item is None:
            fields = self._field_order.not_available()
        else:
            fields = self._field_order.extract(item)
        if line_number is None and isinstance(item, RawRecord):
            line_number = item.line_number
        return SkipRecord(
            phase=phase,
            kind=error_kind(error),
            message=error_message(error),
            fields=fields,
            line_number=line_number,
            payload=item,
        )
