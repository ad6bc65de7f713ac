"""Tests for the structured logging helpers."""

import logging
from datetime import timezone

import pytest

from comfylink.client.errors import DuplicateJobError
from comfylink.utils.logging import ContextKeys, LogFormat, LoggerFactory, StructuredLogger


class _Recorder:
    def __init__(self):
        self.entries = []

    def debug(self, message, **context):
        self.entries.append(("debug", message, context))

    def error(self, message, **context):
        self.entries.append(("error", message, context))


@pytest.fixture
def recorded_logger():
    name = "comfylink.tests.operations"
    stdlib_logger = logging.getLogger(name)
    previous = stdlib_logger.level
    stdlib_logger.setLevel(logging.DEBUG)
    logger = StructuredLogger("tests", logger_name=name)
    logger._logger = _Recorder()
    yield logger
    stdlib_logger.setLevel(previous)


def test_operation_context_logs_failure_and_reraises(recorded_logger):
    with pytest.raises(RuntimeError, match="boom"):
        with recorded_logger.operation_context("fetch", job_id="job-1"):
            raise RuntimeError("boom")

    level, message, context = recorded_logger._logger.entries[-1]
    assert level == "error"
    assert message == "Operation 'fetch' failed"
    assert context[ContextKeys.OPERATION] == "fetch"
    assert context["job_id"] == "job-1"
    assert context[ContextKeys.ERROR_TYPE] == "RuntimeError"
    assert context[ContextKeys.DURATION_MS] >= 0


def test_operation_context_logs_completion(recorded_logger):
    with recorded_logger.operation_context("submit") as op_logger:
        op_logger.debug("halfway")

    messages = [message for _, message, _ in recorded_logger._logger.entries]
    assert messages == ["Starting operation: submit", "halfway", "Operation 'submit' completed"]
    assert all(level == "debug" for level, _, _ in recorded_logger._logger.entries)


def test_performance_timer_respects_threshold(recorded_logger):
    with recorded_logger.performance_timer("fast", threshold_ms=60_000):
        pass
    assert recorded_logger._logger.entries == []

    with recorded_logger.performance_timer("any"):
        pass
    _, message, context = recorded_logger._logger.entries[-1]
    assert message == "Operation 'any' completed"
    assert context[ContextKeys.OPERATION] == "any"


def test_configure_logging_rejects_unknown_level():
    with pytest.raises(ValueError, match="Unknown log level: VERBOSE"):
        LoggerFactory.configure_logging(level="verbose", format_type=LogFormat.SIMPLE.value)


def test_configure_logging_rejects_unknown_format():
    with pytest.raises(ValueError):
        LoggerFactory.configure_logging(level="INFO", format_type="xml")


def test_error_timestamp_is_timezone_aware():
    error = DuplicateJobError("job-1")

    assert error.timestamp.tzinfo is timezone.utc
    assert error.context["timestamp"].endswith("+00:00")
