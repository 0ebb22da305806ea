"""Postgres credential store over a psycopg async connection pool.

Schema: see ``db/migrations/versions/*_add_guardian_auth_tables.py``.

Atomicity mostly comes from single statements: the token take is
``DELETE ... RETURNING`` and the compare-and-set update folds the expected
values into the ``WHERE`` clause. Issuing a token is the one explicit
transaction, deleting earlier tokens for the identifier and purpose before
the insert.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

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

logger = logging.getLogger(__name__)

_USER_COLUMNS = (
    "id, email, name, password_hash, role, email_verified, login_attempts, "
    "is_locked, lock_until, last_login_at, extra"
)


def _row_to_user(row: Mapping[str, Any]) -> User:
    values = dict(row)
    values["id"] = str(values["id"])
    values["extra"] = values.get("extra") or {}
    return User.model_validate(values)


def _adapt(field: str, value: Any) -> Any:
    return Jsonb(value) if field == "extra" else value


class PostgresCredentialStore(CredentialStoreAdapter):
    """Credential store backed by the ``guardian_*`` tables.

    The pool is opened lazily on first use so the store can be built outside
    a running event loop.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool
        self._opened = False
        self._open_lock = asyncio.Lock()

    @classmethod
    def from_dsn(cls, dsn: str, *, min_size: int = 1, max_size: int = 10) -> PostgresCredentialStore:
        pool = AsyncConnectionPool(
            dsn,
            min_size=min_size,
            max_size=max_size,
            open=False,
            kwargs={"row_factory": dict_row},
        )
        return cls(pool)

    async def _ensure_open(self) -> None:
        if self._opened:
            return
        async with self._open_lock:
            if not self._opened:
                await self._pool.open()
                self._opened = True
                logger.info("credential_store_pool_opened")

    async def _fetch_one(self, query: Any, params: tuple[Any, ...]) -> dict[str, Any] | None:
        await self._ensure_open()
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
        return row

    async def get_user_by_email(self, email: str) -> User | None:
        row = await self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM guardian_users WHERE email_normalized = %s",
            (normalize_email(email),),
        )
        return _row_to_user(row) if row else None

    async def get_user(self, user_id: str) -> User | None:
        row = await self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM guardian_users WHERE id = %s",
            (user_id,),
        )
        return _row_to_user(row) if row else None

    async def create_user(self, user: User) -> User:
        try:
            row = await self._fetch_one(
                f"""
                INSERT INTO guardian_users (
                    id, email, email_normalized, name, password_hash, role,
                    email_verified, login_attempts, is_locked, lock_until,
                    last_login_at, extra
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_USER_COLUMNS}
                """,
                (
                    user.id,
                    user.email,
                    normalize_email(user.email),
                    user.name,
                    user.password_hash,
                    user.role,
                    user.email_verified,
                    user.login_attempts,
                    user.is_locked,
                    user.lock_until,
                    user.last_login_at,
                    Jsonb(user.extra),
                ),
            )
        except errors.UniqueViolation as exc:
            raise RegistrationError("User already exists") from exc
        if row is None:
            raise RuntimeError("INSERT ... RETURNING produced no row")
        return _row_to_user(row)

    async def update_user(
        self,
        user_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> User | None:
        validate_user_changes(changes)
        if not changes:
            return await self.get_user(user_id)

        assignments = [
            sql.SQL("{} = %s").format(sql.Identifier(field)) for field in changes
        ]
        params: list[Any] = [_adapt(field, value) for field, value in changes.items()]
        if "email" in changes:
            assignments.append(sql.SQL("email_normalized = %s"))
            params.append(normalize_email(changes["email"]))

        conditions = [sql.SQL("id = %s")]
        params.append(user_id)
        for field, value in (expected or {}).items():
            conditions.append(
                sql.SQL("{} IS NOT DISTINCT FROM %s").format(sql.Identifier(field))
            )
            params.append(_adapt(field, value))

        query = sql.SQL("UPDATE guardian_users SET {} WHERE {} RETURNING {}").format(
            sql.SQL(", ").join(assignments),
            sql.SQL(" AND ").join(conditions),
            sql.SQL(_USER_COLUMNS),
        )
        row = await self._fetch_one(query, tuple(params))
        return _row_to_user(row) if row else None

    async def link_account(self, account: Account) -> Account:
        await self._fetch_one(
            """
            INSERT INTO guardian_accounts (user_id, type, provider, provider_account_id)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (provider, provider_account_id) DO NOTHING
            RETURNING user_id
            """,
            (account.user_id, account.type, account.provider, account.provider_account_id),
        )
        return account

    async def create_verification_token(self, token: VerificationToken) -> VerificationToken:
        await self._ensure_open()
        async with self._pool.connection() as conn, conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    DELETE FROM guardian_verification_tokens
                    WHERE identifier = %s AND purpose = %s
                    """,
                    (token.identifier, token.purpose),
                )
                await cur.execute(
                    """
                    INSERT INTO guardian_verification_tokens
                        (identifier, token, kind, purpose, expires)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (token.identifier, token.token, token.kind, token.purpose, token.expires),
                )
        return token

    async def use_verification_token(
        self,
        identifier: str,
        token: str,
        *,
        purpose: TokenPurpose | None = None,
    ) -> VerificationToken | None:
        row = await self._fetch_one(
            """
            DELETE FROM guardian_verification_tokens
            WHERE identifier = %s AND token = %s
              AND (%s::text IS NULL OR purpose = %s)
            RETURNING identifier, token, kind, purpose, expires
            """,
            (identifier, token, purpose, purpose),
        )
        return VerificationToken.model_validate(row) if row else None

    async def create_session(self, session: Session) -> Session:
        await self._fetch_one(
            """
            INSERT INTO guardian_sessions (session_token, user_id, expires)
            VALUES (%s, %s, %s)
            RETURNING session_token
            """,
            (session.session_token, session.user_id, session.expires),
        )
        return session

    async def get_session_and_user(self, session_token: str) -> tuple[Session, User] | None:
        columns = ", ".join(f"u.{column.strip()}" for column in _USER_COLUMNS.split(","))
        row = await self._fetch_one(
            f"""
            SELECT s.session_token, s.user_id AS session_user_id, s.expires, {columns}
            FROM guardian_sessions s
            JOIN guardian_users u ON u.id = s.user_id
            WHERE s.session_token = %s
            """,
            (session_token,),
        )
        if row is None:
            return None
        session = Session(
            session_token=row.pop("session_token"),
            user_id=str(row.pop("session_user_id")),
            expires=row.pop("expires"),
        )
        return session, _row_to_user(row)

    async def delete_session(self, session_token: str) -> None:
        await self._fetch_one(
            "DELETE FROM guardian_sessions WHERE session_token = %s RETURNING session_token",
            (session_token,),
        )

    async def close(self) -> None:
        if self._opened:
            await self._pool.close()
            self._opened = False


__all__ = ["PostgresCredentialStore"]
