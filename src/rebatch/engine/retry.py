# src/rebatch/engine/retry.py
"""Retries for chunk writes that hit a transient destination failure.

A locked SQLite file or a dropped connection surfaces from a sink as
SinkError(retryable=True). Those writes are tried again with exponential
backoff before the chunk loop sees a write failure. Anything else is
raised on the first attempt.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter
from tenacity.wait import wait_base

from rebatch.contracts.errors import SinkError

if TYPE_CHECKING:
    from rebatch.core.config import RetrySettings

T = TypeVar("T")

RetryListener = Callable[[int, BaseException], None]


class MaxRetriesExceeded(Exception):
    """Every attempt of a retryable write failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Write still failing after {attempts} attempt(s): {last_error}")


def is_transient_sink_error(error: BaseException) -> bool:
    return isinstance(error, SinkError) and error.retryable


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters for chunk writes.

    max_attempts counts every try, the first one included.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 1.0
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            exponential_base=settings.exponential_base,
        )

    def wait(self) -> wait_base:
        return wait_exponential_jitter(
            initial=self.base_delay,
            max=self.max_delay,
            exp_base=self.exponential_base,
            jitter=self.jitter,
        )


class RetryManager:
    """Runs an operation under a RetryConfig.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3))
        manager.execute_with_retry(
            lambda: sink.write_all(items),
            on_retry=lambda attempt, error: logger.warning("Retrying", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool] = is_transient_sink_error,
        on_retry: RetryListener | None = None,
    ) -> T:
        """Call operation until it succeeds, fails for good, or attempts run out.

        on_retry(attempt, error) is called before each backoff sleep, so it
        only sees attempts that are followed by another one.

        Raises:
            MaxRetriesExceeded: If the last allowed attempt failed retryably
            Exception: The first error that is_retryable rejects, unchanged
        """
        options: dict[str, Any] = {
            "stop": stop_after_attempt(self._config.max_attempts),
            "wait": self._config.wait(),
            "retry": retry_if_exception(is_retryable),
        }
        if on_retry is not None:
            options["before_sleep"] = _notify(on_retry)

        try:
            return Retrying(**options)(operation)
        except RetryError as e:
            last = e.last_attempt
            error = last.exception()
            if error is None:  # pragma: no cover
                raise
            raise MaxRetriesExceeded(last.attempt_number, error) from error


def _notify(listener: RetryListener) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        if state.outcome is not None and state.outcome.failed:
            error = state.outcome.exception()
            if error is not None:
                listener(state.attempt_number, error)

    return before_sleep
