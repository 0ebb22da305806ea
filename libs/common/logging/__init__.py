"""Structured JSON logging with trace ID correlation and PII masking.

Usage:
    # At service startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="auth_gateway", log_level="INFO")

    # In library code
    logger = logging.getLogger(__name__)
    logger.info("login_rejected", extra={"email": email, "code": "account_locked"})
"""

from libs.common.logging.config import (
    TraceIDFilter,
    configure_logging,
    log_with_context,
)
from libs.common.logging.context import (
    TRACE_ID_HEADER,
    LogContext,
    clear_trace_id,
    generate_trace_id,
    get_or_create_trace_id,
    get_trace_id,
    set_trace_id,
)
from libs.common.logging.formatter import JSONFormatter
from libs.common.logging.middleware import TraceIDMiddleware
from libs.common.logging.pii import mask_context, mask_email, mask_token

__all__ = [
    # Configuration
    "configure_logging",
    "log_with_context",
    "TraceIDFilter",
    # Trace ID management
    "generate_trace_id",
    "get_trace_id",
    "set_trace_id",
    "clear_trace_id",
    "get_or_create_trace_id",
    "LogContext",
    "TRACE_ID_HEADER",
    "TraceIDMiddleware",
    # Formatting and masking
    "JSONFormatter",
    "mask_email",
    "mask_token",
    "mask_context",
]
