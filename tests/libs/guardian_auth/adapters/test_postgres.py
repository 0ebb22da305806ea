from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from psycopg import errors, sql

from libs.guardian_auth.adapters.base import Session, User, VerificationToken
from libs.guardian_auth.adapters.postgres import PostgresCredentialStore
from libs.guardian_auth.exceptions import RegistrationError

NOW = datetime(2026, 1, 1, tzinfo=UTC)
USER_ID = "2f1b7a2e-8d7c-4b0a-9a53-3d4c1f0e9b11"


def _user_row(**overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": USER_ID,
        "email": "Alice@Example.com",
        "name": "Alice",
        "password_hash": "$argon2id$stub",
        "role": "user",
        "email_verified": None,
        "login_attempts": 0,
        "is_locked": False,
        "lock_until": None,
        "last_login_at": None,
        "extra": None,
    }
    row.update(overrides)
    return row


class _FakePool:
    """Pool double recording executed statements; ``rows`` feed ``fetchone``."""

    def __init__(self, *rows: dict[str, Any] | None) -> None:
        self.cursor = MagicMock()
        self.cursor.execute = AsyncMock()
        self.cursor.fetchone = AsyncMock(side_effect=list(rows) or [None])
        self.open = AsyncMock()
        self.close = AsyncMock()
        self.transactions = 0

    @asynccontextmanager
    async def _cursor(self, **kwargs: Any):
        yield self.cursor

    @asynccontextmanager
    async def _transaction(self):
        self.transactions += 1
        yield

    @asynccontextmanager
    async def connection(self):
        conn = MagicMock()
        conn.cursor = self._cursor
        conn.transaction = self._transaction
        yield conn

    def executed(self, index: int = -1) -> tuple[Any, tuple[Any, ...]]:
        return self.cursor.execute.await_args_list[index].args


@pytest.mark.asyncio()
class TestPostgresCredentialStore:
    async def test_pool_opens_lazily_once(self) -> None:
        pool = _FakePool(None, None)
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]

        await store.get_user("x")
        await store.get_user("y")

        pool.open.assert_awaited_once()

    async def test_lookup_uses_normalized_email(self) -> None:
        pool = _FakePool(_user_row())
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]

        user = await store.get_user_by_email("  ALICE@example.com ")

        query, params = pool.executed()
        assert "email_normalized = %s" in query
        assert params == ("alice@example.com",)
        assert user is not None
        assert user.id == USER_ID
        assert user.extra == {}

    async def test_create_user_maps_unique_violation(self) -> None:
        pool = _FakePool()
        pool.cursor.execute.side_effect = errors.UniqueViolation("duplicate key")
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]

        with pytest.raises(RegistrationError, match="already exists"):
            await store.create_user(User(email="alice@example.com"))

    async def test_create_user_stores_normalized_email(self) -> None:
        pool = _FakePool(_user_row())
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]

        await store.create_user(User(id=USER_ID, email="Alice@Example.com", name="Alice"))

        _, params = pool.executed()
        assert params[1] == "Alice@Example.com"
        assert params[2] == "alice@example.com"

    async def test_compare_and_set_update(self) -> None:
        pool = _FakePool(None)
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]

        result = await store.update_user(
            USER_ID, {"login_attempts": 3}, expected={"login_attempts": 2}
        )

        query, params = pool.executed()
        assert isinstance(query, sql.Composed)
        assert params == (3, USER_ID, 2)
        assert result is None

    async def test_empty_update_reads_user(self) -> None:
        pool = _FakePool(_user_row(login_attempts=4))
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]

        user = await store.update_user(USER_ID, {})

        assert user is not None
        assert user.login_attempts == 4

    async def test_token_take_is_delete_returning(self) -> None:
        row = {
            "identifier": "bob@example.com",
            "token": "123456",
            "kind": "otp",
            "purpose": "email_verification",
            "expires": NOW,
        }
        pool = _FakePool(row)
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]

        record = await store.use_verification_token(
            "bob@example.com", "123456", purpose="email_verification"
        )

        query, params = pool.executed()
        assert "DELETE FROM guardian_verification_tokens" in query
        assert "RETURNING" in query
        assert params == ("bob@example.com", "123456", "email_verification", "email_verification")
        assert record == VerificationToken(**row)

    async def test_issuing_token_replaces_earlier_ones_in_one_transaction(self) -> None:
        pool = _FakePool()
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]
        token = VerificationToken(
            identifier="bob@example.com",
            token="654321",
            kind="otp",
            purpose="password_reset",
            expires=NOW,
        )

        await store.create_verification_token(token)

        delete, delete_params = pool.executed(0)
        insert, insert_params = pool.executed(1)
        assert pool.transactions == 1
        assert "DELETE FROM guardian_verification_tokens" in delete
        assert delete_params == ("bob@example.com", "password_reset")
        assert "INSERT INTO guardian_verification_tokens" in insert
        assert insert_params == ("bob@example.com", "654321", "otp", "password_reset", NOW)

    async def test_session_join(self) -> None:
        row = {"session_token": "tok", "session_user_id": USER_ID, "expires": NOW, **_user_row()}
        pool = _FakePool(row)
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]

        found = await store.get_session_and_user("tok")

        assert found is not None
        session, user = found
        assert session == Session(session_token="tok", user_id=USER_ID, expires=NOW)
        assert user.email == "Alice@Example.com"

    async def test_close_only_after_open(self) -> None:
        pool = _FakePool(None)
        store = PostgresCredentialStore(pool)  # type: ignore[arg-type]

        await store.close()
        pool.close.assert_not_awaited()

        await store.get_user("x")
        await store.close()
        pool.close.assert_awaited_once()
