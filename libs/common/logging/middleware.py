"""ASGI middleware binding a trace ID to each HTTP request.

The inbound ``X-Trace-ID`` header is reused when present, otherwise a new id
is generated. The id is echoed on the response, including error responses
produced further down the stack.

Example:
    >>> from fastapi import FastAPI
    >>> app = FastAPI()
    >>> app.add_middleware(TraceIDMiddleware)
"""

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from libs.common.logging.context import (
    TRACE_ID_HEADER,
    clear_trace_id,
    generate_trace_id,
    set_trace_id,
)

_HEADER_KEY = TRACE_ID_HEADER.lower().encode("latin-1")
_MAX_TRACE_ID_LENGTH = 128


class TraceIDMiddleware:
    """Pure ASGI trace ID middleware; non-HTTP scopes pass through untouched."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        trace_id = _trace_id_from_headers(scope.get("headers", []))
        set_trace_id(trace_id)

        async def send_with_trace_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = [
                    (key, value)
                    for key, value in message.get("headers", [])
                    if key.lower() != _HEADER_KEY
                ]
                headers.append((_HEADER_KEY, trace_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_trace_id)
        finally:
            clear_trace_id()


def _trace_id_from_headers(raw_headers: list[tuple[bytes, bytes]]) -> str:
    for key, value in raw_headers:
        if key.lower() == _HEADER_KEY:
            candidate = value.decode("latin-1").strip()
            # Oversized ids are replaced rather than echoed back.
            if candidate and len(candidate) <= _MAX_TRACE_ID_LENGTH:
                return candidate
            break
    return generate_trace_id()
