from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from libs.guardian_auth.adapters.memory import InMemoryCredentialStore
from libs.guardian_auth.auth import (
    INVALID_EMAIL,
    REGISTRATION_DISABLED,
    USER_ALREADY_EXISTS,
    GuardianAuth,
)
from libs.guardian_auth.events import EventHandlers
from libs.guardian_auth.exceptions import AuthenticationError, ConfigError, EmailDeliveryError
from libs.guardian_auth.rate_limiting.base import RateLimiter, RateLimitResult
from libs.guardian_auth.routes import authorize_route
from libs.guardian_auth.security import verify_password
from libs.guardian_auth.session import get_session
from tests.libs.guardian_auth.fakes import FakeClock, RecordingEmailSender

PASSWORD = "Str0ng!Pass"
NEW_PASSWORD = "N3w!Password"

FLOWS: dict[str, Any] = {
    "security": {
        "email_verification": {"enabled": True},
        "password_reset": {"enabled": True},
    },
    "session": {"secure_cookie": False},
}


def _guardian(
    store: InMemoryCredentialStore,
    clock: FakeClock,
    config: dict[str, Any] | None = None,
    **kwargs: Any,
) -> GuardianAuth:
    return GuardianAuth(config or {}, adapter=store, clock=clock, **kwargs)


@pytest.mark.asyncio()
class TestCreateUser:
    async def test_register_then_duplicate(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = _guardian(store, clock)

        first = await guardian.create_user("alice@example.com", PASSWORD, name="Alice")
        second = await guardian.create_user("ALICE@example.com", PASSWORD)

        assert first.success is True
        assert first.user is not None
        assert first.user.role == "user"
        assert verify_password(first.user.password_hash, PASSWORD)
        assert await store.accounts_for(first.user.id) != []
        assert second.success is False
        assert second.error == USER_ALREADY_EXISTS

    async def test_weak_password(self, store: InMemoryCredentialStore, clock: FakeClock) -> None:
        result = await _guardian(store, clock).create_user("alice@example.com", "short")

        assert result.success is False
        assert result.error
        assert len(result.messages) > 1
        assert await store.get_user_by_email("alice@example.com") is None

    async def test_invalid_email(self, store: InMemoryCredentialStore, clock: FakeClock) -> None:
        result = await _guardian(store, clock).create_user("not-an-email", PASSWORD)

        assert result.error == INVALID_EMAIL

    async def test_registration_disabled(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = _guardian(store, clock, {"credentials": {"allow_registration": False}})

        result = await guardian.create_user("alice@example.com", PASSWORD)

        assert result.error == REGISTRATION_DISABLED

    async def test_extra_fields_and_role(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        result = await _guardian(store, clock).create_user(
            "alice@example.com", PASSWORD, role="admin", team="ops"
        )

        assert result.user is not None
        assert result.user.role == "admin"
        assert result.user.extra == {"team": "ops"}

    async def test_registration_callback(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        on_registration = AsyncMock()
        guardian = _guardian(
            store, clock, event_handlers=EventHandlers(on_registration=on_registration)
        )

        result = await guardian.create_user("alice@example.com", PASSWORD)

        assert result.user is not None
        on_registration.assert_awaited_once()
        assert on_registration.await_args.args[0]["user_id"] == result.user.id

    async def test_sends_verification_on_registration(
        self,
        store: InMemoryCredentialStore,
        clock: FakeClock,
        email_sender: RecordingEmailSender,
    ) -> None:
        config = {
            "security": {"email_verification": {"enabled": True, "send_on_registration": True}}
        }
        guardian = _guardian(store, clock, config, email_sender=email_sender)

        await guardian.create_user("alice@example.com", PASSWORD)

        assert email_sender.last.to == "alice@example.com"
        assert email_sender.last.subject == "Your Verification Code"

    async def test_failed_verification_email_keeps_user(
        self,
        store: InMemoryCredentialStore,
        clock: FakeClock,
        email_sender: RecordingEmailSender,
    ) -> None:
        config = {
            "security": {"email_verification": {"enabled": True, "send_on_registration": True}}
        }
        guardian = _guardian(store, clock, config, email_sender=email_sender)
        email_sender.fail_with = EmailDeliveryError("mailbox unavailable")

        result = await guardian.create_user("alice@example.com", PASSWORD)

        assert result.success is True
        assert await store.get_user_by_email("alice@example.com") is not None


@pytest.mark.asyncio()
class TestFlows:
    async def test_otp_cannot_be_replayed(
        self,
        store: InMemoryCredentialStore,
        clock: FakeClock,
        email_sender: RecordingEmailSender,
    ) -> None:
        guardian = _guardian(store, clock, FLOWS, email_sender=email_sender)
        await guardian.create_user("bob@example.com", PASSWORD)
        assert guardian.email_verification is not None

        otp = await guardian.email_verification.send_otp("bob@example.com")
        assert otp is not None

        first = await guardian.email_verification.verify_otp("bob@example.com", otp)
        replay = await guardian.email_verification.verify_otp("bob@example.com", otp)

        assert first.success is True
        assert replay.error == "OTP does not exist!"

    async def test_expired_reset_keeps_password(
        self,
        store: InMemoryCredentialStore,
        clock: FakeClock,
        email_sender: RecordingEmailSender,
    ) -> None:
        guardian = _guardian(store, clock, FLOWS, email_sender=email_sender)
        await guardian.create_user("bob@example.com", PASSWORD)
        assert guardian.password_reset is not None
        before = (await store.get_user_by_email("bob@example.com")).password_hash

        token = await guardian.password_reset.initiate_password_reset("bob@example.com")
        assert token is not None
        clock.advance(minutes=16)
        result = await guardian.password_reset.reset_password("bob@example.com", token, NEW_PASSWORD)

        assert result.error == "Link has expired!"
        assert (await store.get_user_by_email("bob@example.com")).password_hash == before

    async def test_features_off_without_config(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = _guardian(store, clock)

        assert guardian.email_verification is None
        assert guardian.password_reset is None


@pytest.mark.asyncio()
class TestSignIn:
    async def test_sign_in_and_out(self, store: InMemoryCredentialStore, clock: FakeClock) -> None:
        guardian = _guardian(store, clock, {"session": {"max_age_seconds": 3600}})
        await guardian.create_user("alice@example.com", PASSWORD)

        result = await guardian.sign_in("alice@example.com", PASSWORD)

        assert result.user["email"] == "alice@example.com"
        assert (result.expires - clock.now).total_seconds() == 3600
        assert await store.get_session_and_user(result.session_token) is not None

        await guardian.sign_out(result.session_token)

        assert await store.get_session_and_user(result.session_token) is None

    async def test_lockout(self, store: InMemoryCredentialStore, clock: FakeClock) -> None:
        guardian = _guardian(store, clock, {"security": {"max_login_attempts": 3}})
        await guardian.create_user("alice@example.com", PASSWORD)

        for _ in range(3):
            with pytest.raises(AuthenticationError) as excinfo:
                await guardian.sign_in("alice@example.com", "Wr0ng!Pass")
            assert excinfo.value.code == "invalid_credentials"

        with pytest.raises(AuthenticationError) as excinfo:
            await guardian.sign_in("alice@example.com", PASSWORD)
        assert excinfo.value.code == "account_locked"

        clock.advance(minutes=16)
        assert (await guardian.sign_in("alice@example.com", PASSWORD)).user["login_attempts"] == 0

    async def test_credentials_disabled(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = _guardian(store, clock, {"credentials": {"enabled": False}})

        with pytest.raises(ConfigError):
            await guardian.sign_in("alice@example.com", PASSWORD)


class TestConstruction:
    def test_requires_database_or_adapter(self) -> None:
        with pytest.raises(ConfigError, match="database"):
            GuardianAuth({})

    def test_email_flow_requires_sender(self, store: InMemoryCredentialStore) -> None:
        with pytest.raises(ConfigError, match="email provider"):
            GuardianAuth({"security": {"password_reset": {"enabled": True}}}, adapter=store)

    def test_memory_database_builds_adapter(self) -> None:
        guardian = GuardianAuth({"database": {"type": "memory"}})

        assert isinstance(guardian.adapter, InMemoryCredentialStore)


@pytest.mark.asyncio()
class TestUpdateConfig:
    async def test_merges_into_current(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = _guardian(store, clock, {"security": {"max_login_attempts": 3}})

        config = guardian.update_config({"security": {"level": "strict"}})

        assert config.security.level == "strict"
        assert config.security.max_login_attempts == 3
        assert guardian.config is config

    async def test_keeps_limiter_when_limits_unchanged(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = _guardian(store, clock)
        limiter = guardian.rate_limiter

        guardian.update_config({"security": {"level": "relaxed"}})

        assert guardian.rate_limiter is limiter

    async def test_replaced_limiter_closed_on_close(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = _guardian(store, clock)
        old = guardian.rate_limiter

        guardian.update_config({"security": {"rate_limiting": {"max_requests": 50}}})

        assert guardian.rate_limiter is not old
        with patch.object(old, "close", AsyncMock()) as close_old:
            await guardian.close()
        close_old.assert_awaited_once()

    async def test_route_table_update_replaces_previous_order(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        admin_only = {"allowed_roles": ["admin"]}
        guardian = _guardian(
            store,
            clock,
            {"security": {"route_protection": {"protected_routes": {"/admin": admin_only}}}},
        )

        config = guardian.update_config(
            {
                "security": {
                    "route_protection": {
                        "protected_routes": {
                            "/admin/reports": {"allowed_roles": ["admin", "analyst"]},
                            "/admin": admin_only,
                        }
                    }
                }
            }
        )

        routes = config.security.route_protection
        analyst = {"user": {"id": "u-1", "email": "a@example.com", "role": "analyst"}}
        assert list(routes.protected_routes) == ["/admin/reports", "/admin"]
        assert authorize_route("/admin/reports", analyst, routes).allowed is True
        assert authorize_route("/admin", analyst, routes).allowed is False

    async def test_database_cannot_change(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = GuardianAuth({"database": {"type": "memory"}}, clock=clock)

        with pytest.raises(ConfigError, match="runtime"):
            guardian.update_config({"database": {"type": "postgres", "dsn": "postgresql://db/x"}})
        assert guardian.config.database.type == "memory"

    async def test_invalid_update_leaves_config(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = _guardian(store, clock)

        with pytest.raises(ConfigError):
            guardian.update_config({"security": {"password_reset": {"enabled": True}}})
        assert guardian.password_reset is None

    async def test_new_config_applies_to_next_request(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        guardian = _guardian(store, clock)

        async with _client(guardian) as client:
            before = await client.get("/")
            guardian.update_config({"security": {"level": "strict"}})
            after = await client.get("/")

        assert "content-security-policy" not in before.headers
        assert "content-security-policy" in after.headers


@pytest.mark.asyncio()
class TestClose:
    async def test_closes_owned_adapter(self, clock: FakeClock) -> None:
        guardian = GuardianAuth({"database": {"type": "memory"}}, clock=clock)

        with patch.object(guardian.adapter, "close", AsyncMock()) as close:
            await guardian.close()

        close.assert_awaited_once()

    async def test_leaves_supplied_components(
        self, store: InMemoryCredentialStore, clock: FakeClock
    ) -> None:
        limiter = AsyncMock(spec=RateLimiter)
        guardian = _guardian(store, clock, rate_limiter=limiter)

        with patch.object(store, "close", AsyncMock()) as close_store:
            await guardian.close()

        close_store.assert_not_awaited()
        limiter.close.assert_not_awaited()


async def _page(request: Request) -> JSONResponse:
    session = get_session(request)
    return JSONResponse({"user": session["user"] if session else None})


def _client(guardian: GuardianAuth) -> httpx.AsyncClient:
    app = Starlette(routes=[Route("/", _page), Route("/dashboard", _page)])
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=guardian.middleware(app)),  # type: ignore[arg-type]
        base_url="http://testserver",
        follow_redirects=False,
    )


class _AllowAll(RateLimiter):
    backend = "test"

    async def check(self, key: str) -> RateLimitResult:
        return RateLimitResult(allowed=True, remaining=1, reset_time=0, limit=2)


@pytest.mark.asyncio()
async def test_sign_in_through_middleware(store: InMemoryCredentialStore, clock: FakeClock) -> None:
    config = {
        "session": {"secure_cookie": False},
        "security": {"route_protection": {"protected_routes": ["/dashboard"]}},
    }
    guardian = _guardian(store, clock, config, rate_limiter=_AllowAll())
    await guardian.create_user("alice@example.com", PASSWORD)

    async with _client(guardian) as client:
        anonymous = await client.get("/dashboard")
        signed_in = await client.post(
            "/auth/signin/credentials", json={"email": "alice@example.com", "password": PASSWORD}
        )
        dashboard = await client.get("/dashboard")
        await client.post("/auth/signout")
        after = await client.get("/dashboard")

    assert anonymous.status_code == 303
    assert signed_in.status_code == 200
    assert dashboard.status_code == 200
    assert dashboard.json()["user"]["email"] == "alice@example.com"
    assert after.status_code == 303
