"""In-process credential store for single-instance deployments and tests.

State is lost on restart. The lock only guards dictionary operations; nothing
is awaited while it is held.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from libs.guardian_auth.adapters.base import (
    Account,
    CredentialStoreAdapter,
    Session,
    TokenPurpose,
    User,
    VerificationToken,
    validate_user_changes,
)
from libs.guardian_auth.exceptions import RegistrationError
from libs.guardian_auth.validation import normalize_email


class InMemoryCredentialStore(CredentialStoreAdapter):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._users: dict[str, User] = {}
        self._user_ids_by_email: dict[str, str] = {}
        self._accounts: list[Account] = []
        self._tokens: dict[tuple[str, str], VerificationToken] = {}
        self._sessions: dict[str, Session] = {}

    async def get_user_by_email(self, email: str) -> User | None:
        async with self._lock:
            user_id = self._user_ids_by_email.get(normalize_email(email))
            return self._users.get(user_id) if user_id else None

    async def get_user(self, user_id: str) -> User | None:
        async with self._lock:
            return self._users.get(user_id)

    async def create_user(self, user: User) -> User:
        key = normalize_email(user.email)
        async with self._lock:
            if key in self._user_ids_by_email:
                raise RegistrationError("User already exists")
            self._users[user.id] = user
            self._user_ids_by_email[key] = user.id
        return user

    async def update_user(
        self,
        user_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> User | None:
        validate_user_changes(changes)
        async with self._lock:
            current = self._users.get(user_id)
            if current is None:
                return None
            if expected and any(
                getattr(current, field) != value for field, value in expected.items()
            ):
                return None
            updated = current.model_copy(update=dict(changes))
            self._users[user_id] = updated
            if "email" in changes:
                self._user_ids_by_email.pop(normalize_email(current.email), None)
                self._user_ids_by_email[normalize_email(updated.email)] = user_id
            return updated

    async def link_account(self, account: Account) -> Account:
        async with self._lock:
            self._accounts.append(account)
        return account

    async def accounts_for(self, user_id: str) -> list[Account]:
        async with self._lock:
            return [account for account in self._accounts if account.user_id == user_id]

    async def create_verification_token(self, token: VerificationToken) -> VerificationToken:
        async with self._lock:
            stale = [
                key
                for key, existing in self._tokens.items()
                if existing.identifier == token.identifier and existing.purpose == token.purpose
            ]
            for key in stale:
                del self._tokens[key]
            self._tokens[(token.identifier, token.token)] = token
        return token

    async def use_verification_token(
        self,
        identifier: str,
        token: str,
        *,
        purpose: TokenPurpose | None = None,
    ) -> VerificationToken | None:
        key = (identifier, token)
        async with self._lock:
            record = self._tokens.get(key)
            if record is None or (purpose is not None and record.purpose != purpose):
                return None
            return self._tokens.pop(key)

    async def create_session(self, session: Session) -> Session:
        async with self._lock:
            self._sessions[session.session_token] = session
        return session

    async def get_session_and_user(self, session_token: str) -> tuple[Session, User] | None:
        async with self._lock:
            session = self._sessions.get(session_token)
            if session is None:
                return None
            user = self._users.get(session.user_id)
            if user is None:
                return None
            return session, user

    async def delete_session(self, session_token: str) -> None:
        async with self._lock:
            self._sessions.pop(session_token, None)


__all__ = ["InMemoryCredentialStore"]
