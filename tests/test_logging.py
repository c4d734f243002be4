"""Tests for the JSON logging helpers."""

from __future__ import annotations

import json
import logging

import pytest

from appframe.shared.infrastructure.logging import (
    REDACTED,
    CustomJsonFormatter,
    get_context_logger,
    log_latency,
)


class _Capture(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def capture() -> _Capture:
    handler = _Capture()
    logger = logging.getLogger("appframe.tests")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield handler
    logger.removeHandler(handler)


def test_formatter_redacts_secrets_and_adds_environment() -> None:
    formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="test")
    record = logging.makeLogRecord(
        {"name": "x", "levelname": "INFO", "msg": "opened", "dbpassword": "hunter2", "dsn": "sqlite://"}
    )

    payload = json.loads(formatter.format(record))

    assert payload["dbpassword"] == REDACTED
    assert payload["dsn"] == "sqlite://"
    assert payload["environment"] == "test"
    assert "timestamp" in payload


def test_context_logger_keeps_call_extra(capture: _Capture) -> None:
    get_context_logger("appframe.tests", "abc-123").info("done", extra={"kind": "fatal"})

    record = capture.records[0]
    assert record.correlation_id == "abc-123"
    assert record.kind == "fatal"


def test_context_logger_without_id_is_plain_logger() -> None:
    assert isinstance(get_context_logger("appframe.tests"), logging.Logger)


def test_log_latency_records_operation(capture: _Capture) -> None:
    with log_latency(logging.getLogger("appframe.tests"), "database_connect", dsn="sqlite://"):
        pass

    record = capture.records[0]
    assert record.operation == "database_connect"
    assert record.dsn == "sqlite://"
    assert record.latency_ms >= 0
