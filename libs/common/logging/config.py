"""Logging setup shared by every service.

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> logger = configure_logging(service_name="auth_gateway", log_level="INFO")
    >>> logger.info("service_started", extra={"context": {"port": 8000}})
"""

import logging
import sys

from libs.common.logging.context import get_trace_id
from libs.common.logging.formatter import JSONFormatter


class TraceIDFilter(logging.Filter):
    """Stamps the current context trace ID onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
    mask_pii: bool = True,
) -> logging.Logger:
    """Install a single JSON stdout handler on the root logger.

    Call once at service startup. Existing root handlers are replaced.

    Args:
        service_name: Value of the ``service`` field on every record
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_context: Whether to serialize ``extra`` context
        mask_pii: Whether to mask email-like context keys

    Returns:
        The configured root logger

    Raises:
        ValueError: If log_level is not a known level name
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(
        JSONFormatter(
            service_name=service_name,
            include_context=include_context,
            mask_pii=mask_pii,
        )
    )
    handler.addFilter(TraceIDFilter())
    root_logger.addHandler(handler)

    return root_logger


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context_fields: object,
) -> None:
    """Log ``message`` with ``context_fields`` under the ``context`` key."""
    log_method = getattr(logger, level.lower())
    log_method(message, extra={"context": context_fields})
