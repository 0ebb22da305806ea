"""Audit trail for authentication events.

Each event is counted, written as a structured log record, and on success
handed to the matching optional callback. Callback failures are logged and
never break the auth flow that emitted the event.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from libs.guardian_auth.metrics import auth_events_total

logger = logging.getLogger(__name__)

AuthEvent = Literal[
    "sign_in",
    "sign_out",
    "registration",
    "email_verification_sent",
    "email_verified",
    "password_reset_requested",
    "password_reset",
]
EventOutcome = Literal["success", "rejected", "error"]
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class EventHandlers:
    on_sign_in: EventCallback | None = None
    on_registration: EventCallback | None = None
    on_password_reset: EventCallback | None = None
    on_email_verified: EventCallback | None = None


_CALLBACK_FOR_EVENT = {
    "sign_in": "on_sign_in",
    "registration": "on_registration",
    "password_reset": "on_password_reset",
    "email_verified": "on_email_verified",
}

_LEVEL_FOR_OUTCOME = {
    "success": logging.INFO,
    "rejected": logging.INFO,
    "error": logging.ERROR,
}


class AuthEventLogger:
    def __init__(self, handlers: EventHandlers | None = None) -> None:
        self.handlers = handlers or EventHandlers()

    async def emit(self, event: AuthEvent, outcome: EventOutcome, **context: Any) -> None:
        auth_events_total.labels(event=event, outcome=outcome).inc()
        logger.log(
            _LEVEL_FOR_OUTCOME[outcome],
            f"auth_{event}_{outcome}",
            extra={"context": {"event": event, "outcome": outcome, **context}},
        )

        if outcome != "success":
            return
        attribute = _CALLBACK_FOR_EVENT.get(event)
        callback = getattr(self.handlers, attribute) if attribute else None
        if callback is None:
            return
        try:
            await callback({"event": event, **context})
        except Exception:
            logger.exception("auth_event_handler_failed", extra={"event": event})


__all__ = ["AuthEvent", "EventOutcome", "EventCallback", "EventHandlers", "AuthEventLogger"]
