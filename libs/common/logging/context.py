"""Trace ID propagation for request correlation.

Trace IDs are UUIDv4 strings held in a context variable, so every log record
emitted while handling one request carries the same id.

Example:
    >>> with LogContext("request-123"):
    ...     get_trace_id()
    'request-123'
"""

import contextvars
import uuid
from types import TracebackType

_trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)

TRACE_ID_HEADER = "X-Trace-ID"


def generate_trace_id() -> str:
    return str(uuid.uuid4())


def get_trace_id() -> str | None:
    return _trace_id_var.get()


def set_trace_id(trace_id: str) -> None:
    """Set the trace ID for the current context.

    Raises:
        ValueError: If trace_id is empty
    """
    if not trace_id:
        raise ValueError("Trace ID cannot be empty")
    _trace_id_var.set(trace_id)


def clear_trace_id() -> None:
    _trace_id_var.set(None)


def get_or_create_trace_id() -> str:
    """Return the current trace ID, generating and storing one if unset."""
    trace_id = get_trace_id()
    if trace_id is None:
        trace_id = generate_trace_id()
        set_trace_id(trace_id)
    return trace_id


class LogContext:
    """Scoped trace ID; the previous value is restored on exit.

    Used by background jobs and tests that run outside a request.
    """

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or generate_trace_id()
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> str:
        self._token = _trace_id_var.set(self.trace_id)
        return self.trace_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _trace_id_var.reset(self._token)
            self._token = None
