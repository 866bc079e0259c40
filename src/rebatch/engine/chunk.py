# src/rebatch/engine/chunk.py
"""ChunkExecutor: the read-process-write loop of one step execution.

A chunk is a window of at most chunk_size records consumed from the source,
skipped ones included. Accepted items of a window are written as one unit,
then the step's counters and reader offset are committed to the state
store before anything else is read. A restart therefore seeks straight to
the first record of the first uncommitted chunk.

Failure handling per phase:
- read/process: SkipClassifier decides; skipped records go to the error sink
  once their chunk commits
- write: the chunk write is retried on transient sink errors; a failure that
  survives the retries fails the step, unless item-level write isolation is
  enabled and the error kind is skippable
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from rebatch.contracts.enums import SkipDecision, SkipPhase, StepStatus
from rebatch.contracts.errors import ParseError, error_message
from rebatch.contracts.execution import READER_OFFSET_KEY, ExecutionContext, StepCounters, StepExecution, StepOutcome
from rebatch.contracts.protocols import RecordSink, StepComponents, StepHooks
from rebatch.core.logging import get_logger
from rebatch.engine.retry import MaxRetriesExceeded, RetryManager

if TYPE_CHECKING:
    from rebatch.core.state.store import ExecutionStateStore
    from rebatch.engine.skip import SkipClassifier

logger = get_logger(__name__)


def logging_hooks() -> StepHooks:
    """Hooks that log chunk boundaries and fatal chunk errors."""

    def before_chunk(step: StepExecution, chunk: int) -> None:
        logger.debug("Chunk started", step_name=step.step_name, chunk=chunk)

    def after_chunk(step: StepExecution, chunk: int) -> None:
        logger.debug(
            "Chunk committed",
            step_name=step.step_name,
            chunk=chunk,
            read=step.read_count,
            write=step.write_count,
            skip=step.skip_count,
            offset=step.context.get(READER_OFFSET_KEY),
        )

    def on_chunk_error(step: StepExecution, chunk: int, error: BaseException) -> None:
        logger.error("Chunk failed", step_name=step.step_name, chunk=chunk, error=error_message(error))

    return StepHooks(before_chunk=before_chunk, after_chunk=after_chunk, on_chunk_error=on_chunk_error)


class ChunkExecutor:
    """Runs one StepExecution to a terminal status.

    Only the worker running a step mutates it. The executor persists the
    step on start, after every committed chunk, and at the end.

    Example:
        executor = ChunkExecutor(store, RetryManager(RetryConfig(max_attempts=3)))
        outcome = executor.run(step, components, chunk_size=2, skip_classifier=classifier)
    """

    def __init__(
        self,
        store: ExecutionStateStore,
        retry_manager: RetryManager | None = None,
        *,
        isolate_write_failures: bool = False,
    ) -> None:
        self._store = store
        self._retry_manager = retry_manager
        self._isolate_write_failures = isolate_write_failures

    def run(
        self,
        step_execution: StepExecution,
        components: StepComponents,
        chunk_size: int,
        skip_classifier: SkipClassifier,
        hooks: StepHooks | None = None,
    ) -> StepOutcome:
        """Execute the chunk loop until the source is exhausted or a fatal error.

        Returns:
            StepOutcome with status COMPLETED or FAILED. Fatal errors are
            carried in the outcome, not raised.

        Raises:
            StateTransitionError: If the step is not PENDING
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        hooks = hooks if hooks is not None else logging_hooks()
        step = step_execution

        step.transition(StepStatus.RUNNING)
        step.started_at = datetime.now(UTC)
        self._store.update_step_execution(step)

        committed = step.counters.copy()
        committed_context = step.context.copy()
        chunk_number = 0
        try:
            try:
                components.source.open()
                offset = step.context.get_int(READER_OFFSET_KEY)
                if offset > 0:
                    logger.info("Resuming step", step_name=step.step_name, offset=offset)
                    components.source.seek(offset)

                exhausted = False
                while not exhausted:
                    chunk_number += 1
                    if hooks.before_chunk is not None:
                        hooks.before_chunk(step, chunk_number)
                    consumed, exhausted = self._run_chunk(step, components, chunk_size, skip_classifier, hooks)
                    if consumed == 0:
                        break
                    step.counters.commit_count += 1
                    step.context[READER_OFFSET_KEY] = components.source.current_offset()
                    self._store.update_step_execution(step, step.counters.minus(committed))
                    committed = step.counters.copy()
                    committed_context = step.context.copy()
                    skip_classifier.flush()
                    if hooks.after_chunk is not None:
                        hooks.after_chunk(step, chunk_number)
            except Exception as error:
                skip_classifier.discard()
                return self._fail(step, committed, committed_context, chunk_number, error, hooks)
        finally:
            _close_quietly(step, components)

        step.transition(StepStatus.COMPLETED)
        step.ended_at = datetime.now(UTC)
        self._store.update_step_execution(step)
        logger.info(
            "Step completed",
            step_name=step.step_name,
            read=step.read_count,
            write=step.write_count,
            skip=step.skip_count,
            commits=step.counters.commit_count,
        )
        return StepOutcome(step.step_name, StepStatus.COMPLETED, step.counters.copy())

    def _run_chunk(
        self,
        step: StepExecution,
        components: StepComponents,
        chunk_size: int,
        classifier: SkipClassifier,
        hooks: StepHooks,
    ) -> tuple[int, bool]:
        """Consume one window and write its accepted items.

        Returns:
            (records consumed, source exhausted)
        """
        items: list[tuple[int | None, Any]] = []
        consumed = 0
        exhausted = False
        while consumed < chunk_size:
            try:
                record = components.source.next()
            except Exception as error:
                # A record that fails to parse is still consumed
                consumed += 1
                step.counters.read_count += 1
                line_number = error.line_number if isinstance(error, ParseError) else None
                self._classify(SkipPhase.READ, error, step, classifier, hooks, None, line_number)
                continue

            if record is None:
                exhausted = True
                break
            consumed += 1
            step.counters.read_count += 1

            try:
                item = components.transform.apply(record)
            except Exception as error:
                self._classify(SkipPhase.PROCESS, error, step, classifier, hooks, record, record.line_number)
                continue
            items.append((record.line_number, item))

        if items:
            step.counters.write_count += self._write(step, components.sink, items, classifier, hooks)
        return consumed, exhausted

    def _write(
        self,
        step: StepExecution,
        sink: RecordSink,
        items: Sequence[tuple[int | None, Any]],
        classifier: SkipClassifier,
        hooks: StepHooks,
    ) -> int:
        """Write a chunk; return the number of items written."""
        try:
            self._write_all(step, sink, [item for _, item in items])
            return len(items)
        except Exception as error:
            if not self._isolate_write_failures or not classifier.policy.is_skippable(error):
                raise
            logger.info(
                "Chunk write failed, writing items one at a time",
                step_name=step.step_name,
                items=len(items),
                error=error_message(error),
            )

        written = 0
        for line_number, item in items:
            try:
                self._write_all(step, sink, [item])
            except Exception as error:
                self._classify(SkipPhase.WRITE, error, step, classifier, hooks, item, line_number)
                continue
            written += 1
        return written

    def _write_all(self, step: StepExecution, sink: RecordSink, items: list[Any]) -> None:
        if self._retry_manager is None:
            sink.write_all(items)
            return

        def on_retry(attempt: int, error: BaseException) -> None:
            logger.warning(
                "Transient write failure, retrying",
                step_name=step.step_name,
                attempt=attempt,
                error=error_message(error),
            )

        try:
            self._retry_manager.execute_with_retry(lambda: sink.write_all(items), on_retry=on_retry)
        except MaxRetriesExceeded as e:
            raise e.last_error from e

    def _classify(
        self,
        phase: SkipPhase,
        error: Exception,
        step: StepExecution,
        classifier: SkipClassifier,
        hooks: StepHooks,
        item: Any,
        line_number: int | None,
    ) -> None:
        """Skip the record, or raise the error that fails the step."""
        decision = classifier.classify(phase, error, step, item, line_number=line_number, on_skip=hooks.on_skip)
        if decision is SkipDecision.SKIP:
            return
        failure = classifier.failure(error)
        if failure is error:
            raise error
        raise failure from error

    def _fail(
        self,
        step: StepExecution,
        committed: StepCounters,
        committed_context: ExecutionContext,
        chunk_number: int,
        error: Exception,
        hooks: StepHooks,
    ) -> StepOutcome:
        # Discard the uncommitted chunk; the stored counters stay the last committed ones
        step.counters = committed.copy()
        step.context = committed_context.copy()
        step.counters.rollback_count += 1
        step.transition(StepStatus.FAILED)
        step.ended_at = datetime.now(UTC)
        step.exit_message = error_message(error)

        if hooks.on_chunk_error is not None:
            try:
                hooks.on_chunk_error(step, chunk_number, error)
            except Exception as hook_error:
                logger.warning("on_chunk_error hook failed", step_name=step.step_name, error=str(hook_error))

        self._store.update_step_execution(step)
        logger.error(
            "Step failed",
            step_name=step.step_name,
            chunk=chunk_number,
            read=step.read_count,
            write=step.write_count,
            skip=step.skip_count,
            error=step.exit_message,
        )
        return StepOutcome(step.step_name, StepStatus.FAILED, step.counters.copy(), error)


def _close_quietly(step: StepExecution, components: StepComponents) -> None:
    for name, resource in (("source", components.source), ("error_sink", components.error_sink)):
        try:
            resource.close()
        except Exception as e:
            logger.warning("Failed to close step resource", step_name=step.step_name, resource=name, error=str(e))
