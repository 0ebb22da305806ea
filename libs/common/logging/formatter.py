"""JSON log formatter.

Every record is one JSON object:

    {
        "timestamp": "2026-10-18T10:30:00.000Z",
        "level": "INFO",
        "service": "auth_gateway",
        "trace_id": "abc123-def456",
        "message": "login_rejected",
        "context": {"email": "***.com", "code": "invalid_credentials"},
        "source": {"file": "...", "line": 42, "function": "authorize"}
    }

Context comes from ``extra={"context": {...}}`` when given, otherwise from the
non-standard attributes passed through ``extra=``. PII keys in the context are
masked (see ``libs.common.logging.pii``).
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from types import TracebackType
from typing import Any

from libs.common.logging.pii import mask_context

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_FIELDS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
    | {"message", "asctime", "trace_id", "context"}
)


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON with a fixed schema."""

    def __init__(
        self,
        service_name: str,
        include_context: bool = True,
        mask_pii: bool = True,
        *args: Any,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.service_name = service_name
        self.include_context = include_context
        self.mask_pii = mask_pii

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "trace_id": getattr(record, "trace_id", None),
            "message": record.getMessage(),
        }

        if self.include_context:
            context = self._extract_context(record)
            if context:
                log_entry["context"] = mask_context(context) if self.mask_pii else context

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self._format_exception(record.exc_info),
            }

        log_entry["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_entry, default=str)

    def _format_timestamp(self, created: float) -> str:
        """ISO 8601 UTC with millisecond precision, e.g. 2023-10-21T10:30:00.000Z"""
        dt = datetime.fromtimestamp(created, tz=UTC)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def _extract_context(self, record: logging.LogRecord) -> dict[str, Any] | None:
        context = getattr(record, "context", None)
        if context and isinstance(context, dict):
            return dict(context)

        extra = {
            key: value for key, value in record.__dict__.items() if key not in _RESERVED_FIELDS
        }
        return extra or None

    def _format_exception(
        self,
        exc_info: tuple[type[BaseException] | None, BaseException | None, TracebackType | None],
    ) -> str:
        return "".join(traceback.format_exception(*exc_info))
