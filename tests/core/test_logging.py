"""Tests for structured logging configuration."""

import io
import json
import logging
from collections.abc import Iterator

import pytest

from rebatch.core.logging import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _restore_root_handlers() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_json_output(self) -> None:
        stream = io.StringIO()
        configure_logging(json_output=True, stream=stream)

        get_logger("rebatch.test").info("Chunk committed", step_name="step1:partition0", chunk=3)

        data = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert data["event"] == "Chunk committed"
        assert data["step_name"] == "step1:partition0"
        assert data["chunk"] == 3
        assert data["level"] == "info"
        assert "_record" not in data

    def test_console_output_without_colors_on_plain_stream(self) -> None:
        stream = io.StringIO()
        configure_logging(stream=stream)

        get_logger("rebatch.test").warning("Skip limit reached", skip_limit=2)

        output = stream.getvalue()
        assert "Skip limit reached" in output
        assert "skip_limit=2" in output
        assert "\x1b[" not in output

    def test_stdlib_records_share_the_format(self) -> None:
        stream = io.StringIO()
        configure_logging(json_output=True, stream=stream)

        logging.getLogger("some.library").warning("plain %s", "message")

        data = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert data["event"] == "plain message"

    def test_level_filters_debug(self) -> None:
        stream = io.StringIO()
        configure_logging(level="INFO", stream=stream)

        get_logger("rebatch.test").debug("hidden")

        assert stream.getvalue() == ""

    def test_noisy_loggers_stay_at_warning_in_debug_mode(self) -> None:
        configure_logging(level="DEBUG", stream=io.StringIO())

        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
