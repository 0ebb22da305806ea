"""Tests for the JSON log formatter."""

import json
import logging
import sys
from datetime import UTC, datetime

import pytest

from libs.common.logging.formatter import JSONFormatter


def _record(msg: str = "Test message", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="/path/to/file.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    @pytest.fixture()
    def formatter(self) -> JSONFormatter:
        return JSONFormatter(service_name="auth_gateway")

    def test_basic_log_format(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(formatter.format(_record(trace_id="trace-123")))

        assert log_dict["level"] == "INFO"
        assert log_dict["service"] == "auth_gateway"
        assert log_dict["trace_id"] == "trace-123"
        assert log_dict["message"] == "Test message"
        assert log_dict["source"] == {
            "file": "/path/to/file.py",
            "line": 42,
            "function": None,
        }

    def test_timestamp_is_utc_iso8601(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(formatter.format(_record()))

        timestamp = log_dict["timestamp"]
        assert timestamp.endswith("Z")
        dt = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
        assert dt.tzinfo == UTC

    def test_context_dict_is_included(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(
            formatter.format(_record(context={"code": "account_locked", "attempts": 5}))
        )

        assert log_dict["context"] == {"code": "account_locked", "attempts": 5}

    def test_plain_extra_fields_become_context(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(formatter.format(_record(backend="redis", operation="eval")))

        assert log_dict["context"] == {"backend": "redis", "operation": "eval"}

    def test_no_context_key_without_extra(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(formatter.format(_record()))

        assert "context" not in log_dict

    def test_email_context_is_masked(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(
            formatter.format(_record(email="alice@example.com", code="invalid_credentials"))
        )

        assert log_dict["context"]["email"] == "***.com"
        assert log_dict["context"]["code"] == "invalid_credentials"

    def test_masking_can_be_disabled(self) -> None:
        formatter = JSONFormatter(service_name="test", mask_pii=False)

        log_dict = json.loads(formatter.format(_record(email="alice@example.com")))

        assert log_dict["context"]["email"] == "alice@example.com"

    def test_exception_info(self, formatter: JSONFormatter) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        log_dict = json.loads(formatter.format(record))

        assert log_dict["exception"]["type"] == "ValueError"
        assert log_dict["exception"]["message"] == "boom"
        assert "ValueError: boom" in log_dict["exception"]["traceback"]

    def test_non_serializable_values_use_str(self, formatter: JSONFormatter) -> None:
        when = datetime(2026, 1, 1, tzinfo=UTC)

        log_dict = json.loads(formatter.format(_record(context={"lock_until": when})))

        assert log_dict["context"]["lock_until"] == str(when)
