"""Tests for RetryManager."""

import pytest

from rebatch.contracts.errors import SinkError
from rebatch.core.config import RetrySettings
from rebatch.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager, is_transient_sink_error

FAST = RetryConfig(max_attempts=3, base_delay=0.0, jitter=0.0)


class _Flaky:
    def __init__(self, failures: list[Exception]) -> None:
        self.failures = failures
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


class TestRetryManager:
    def test_succeeds_after_transient_failures(self) -> None:
        op = _Flaky([SinkError("locked", retryable=True), SinkError("locked", retryable=True)])
        retries: list[int] = []

        result = RetryManager(FAST).execute_with_retry(op, on_retry=lambda attempt, error: retries.append(attempt))

        assert result == "ok"
        assert op.calls == 3
        assert retries == [1, 2]

    def test_non_retryable_error_raised_immediately(self) -> None:
        op = _Flaky([SinkError("constraint")])

        with pytest.raises(SinkError, match="constraint"):
            RetryManager(FAST).execute_with_retry(op)
        assert op.calls == 1

    def test_max_retries_exceeded(self) -> None:
        op = _Flaky([SinkError("locked", retryable=True) for _ in range(5)])

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            RetryManager(FAST).execute_with_retry(op)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, SinkError)
        assert op.calls == 3

    def test_single_attempt_config_tries_once(self) -> None:
        op = _Flaky([SinkError("locked", retryable=True)])

        with pytest.raises(MaxRetriesExceeded):
            RetryManager(RetryConfig(max_attempts=1, base_delay=0.0, jitter=0.0)).execute_with_retry(op)
        assert op.calls == 1


class TestRetryConfig:
    def test_from_settings(self) -> None:
        config = RetryConfig.from_settings(RetrySettings(max_attempts=5, initial_delay_seconds=0.5))

        assert config.max_attempts == 5
        assert config.base_delay == 0.5

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)


def test_only_retryable_sink_errors_are_transient() -> None:
    assert is_transient_sink_error(SinkError("x", retryable=True))
    assert not is_transient_sink_error(SinkError("x"))
    assert not is_transient_sink_error(OSError("x"))
