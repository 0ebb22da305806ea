"""Session lookup for requests.

A resolved session is a plain mapping shaped like::

    {"user": {"id": ..., "email": ..., "name": ..., "role": ...}, "expires": datetime}

It is stored on the ASGI scope state under ``"session"`` by the session
resolution middleware stage and read from there by later stages.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from starlette.requests import HTTPConnection

from libs.guardian_auth.adapters.base import CredentialStoreAdapter, call_adapter
from libs.guardian_auth.clock import Clock, utc_now

logger = logging.getLogger(__name__)

SESSION_STATE_KEY = "session"

SessionData = dict[str, Any]
SessionResolver = Callable[[HTTPConnection], Awaitable[SessionData | None]]

_SESSION_USER_FIELDS = ("id", "email", "name", "role")


def get_session(connection: HTTPConnection) -> SessionData | None:
    """Session already resolved for this request, if any."""
    state = connection.scope.get("state") or {}
    return state.get(SESSION_STATE_KEY)


def session_user_id(session: Mapping[str, Any] | None) -> str | None:
    if not session:
        return None
    user = session.get("user")
    if isinstance(user, Mapping) and user.get("id"):
        return str(user["id"])
    return None


class AdapterSessionResolver:
    """Resolves the session cookie through the credential store.

    Expired sessions resolve to ``None``. Store failures propagate as
    ``StorageError``.
    """

    def __init__(
        self,
        adapter: CredentialStoreAdapter,
        *,
        cookie_name: str,
        additional_user_fields: tuple[str, ...] = (),
        clock: Clock | None = None,
        storage_timeout: float | None = 5.0,
    ) -> None:
        self.adapter = adapter
        self.cookie_name = cookie_name
        self.additional_user_fields = additional_user_fields
        self.clock = clock or utc_now
        self.storage_timeout = storage_timeout

    async def __call__(self, connection: HTTPConnection) -> SessionData | None:
        token = connection.cookies.get(self.cookie_name)
        if not token:
            return None

        found = await call_adapter(
            self.adapter.get_session_and_user(token),
            operation="get_session_and_user",
            timeout=self.storage_timeout,
        )
        if found is None:
            return None

        session, user = found
        if session.expires <= self.clock():
            logger.debug("session_expired", extra={"user_id": session.user_id})
            return None

        user_data: dict[str, Any] = {field: getattr(user, field) for field in _SESSION_USER_FIELDS}
        for field in self.additional_user_fields:
            value = user.field_value(field)
            if value is not None:
                user_data[field] = value
        return {"user": user_data, "expires": session.expires}


__all__ = [
    "SESSION_STATE_KEY",
    "SessionData",
    "SessionResolver",
    "AdapterSessionResolver",
    "get_session",
    "session_user_id",
]
