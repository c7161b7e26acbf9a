"""
Tests for JSON logging setup.
"""

import io
import json
import logging

import pytest

from content_flow.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:

    def test_records_are_single_line_json(self):
        stream = io.StringIO()
        setup_logging("content-flow-test", level="DEBUG", stream=stream)

        get_logger("content_flow.core.cache").debug("Cache HIT for key %s", "cf:generate:ab")

        lines = stream.getvalue().strip().splitlines()
        record = json.loads(lines[-1])
        assert record["level"] == "DEBUG"
        assert record["service"] == "content-flow-test"
        assert record["logger"] == "content_flow.core.cache"
        assert record["message"] == "Cache HIT for key cf:generate:ab"

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        stream = io.StringIO()
        setup_logging(stream=stream)

        get_logger("content_flow.test").info("hidden")
        get_logger("content_flow.test").warning("shown")

        output = stream.getvalue()
        assert "hidden" not in output
        assert "shown" in output

    def test_exceptions_are_included(self):
        stream = io.StringIO()
        setup_logging(level="INFO", stream=stream)

        try:
            raise RuntimeError("subscriber blew up")
        except RuntimeError:
            get_logger("content_flow.core.events").exception("Subscriber failed")

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert "RuntimeError: subscriber blew up" in record["exception"]

    def test_sdk_loggers_are_quieted(self):
        setup_logging(level="DEBUG", stream=io.StringIO())

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("openai").level == logging.WARNING
