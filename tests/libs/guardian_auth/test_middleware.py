from __future__ import annotations

from typing import Any

import pytest
from starlette.applications import Starlette
from starlette.requests import HTTPConnection, Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from libs.guardian_auth.config import resolve_config
from libs.guardian_auth.exceptions import StorageError
from libs.guardian_auth.middleware import (
    CHAIN_ORDER,
    STRICT_CONTENT_SECURITY_POLICY,
    ChainComponents,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
    create_middleware,
)
from libs.guardian_auth.rate_limiting.base import DisabledRateLimiter, RateLimiter, RateLimitResult
from libs.guardian_auth.rate_limiting.memory import InMemoryRateLimiter
from libs.guardian_auth.session import get_session

ROUTES = {
    "public_routes": ["/signin"],
    "protected_routes": {"/admin": {"allowed_roles": ["admin"]}, "/dashboard": {}},
    "redirect_path": "/signin",
    "authenticated_redirect": "/dashboard",
}


async def _whoami(request: Request) -> JSONResponse:
    return JSONResponse({"session": get_session(request) is not None})


def _app() -> Starlette:
    return Starlette(
        routes=[
            Route("/", _whoami),
            Route("/dashboard", _whoami),
            Route("/admin", _whoami),
            Route("/signin", _whoami),
        ]
    )


async def _cookie_resolver(connection: HTTPConnection) -> dict[str, Any] | None:
    role = connection.cookies.get("sid")
    if role is None:
        return None
    return {"user": {"id": f"u-{role}", "role": role}}


class _RecordingLimiter(RateLimiter):
    backend = "recording"

    def __init__(self) -> None:
        self.keys: list[str] = []

    async def check(self, key: str) -> RateLimitResult:
        self.keys.append(key)
        return RateLimitResult(allowed=True, remaining=5, reset_time=0, limit=10)


def _components(**overrides: Any) -> ChainComponents:
    level = overrides.pop("level", "moderate")
    values: dict[str, Any] = {
        "config": resolve_config({"security": {"level": level, "route_protection": ROUTES}}),
        "rate_limiter": DisabledRateLimiter(),
        "session_resolver": _cookie_resolver,
    }
    values.update(overrides)
    return ChainComponents(**values)


def _client(components: ChainComponents, cookies: dict[str, str] | None = None) -> TestClient:
    return TestClient(
        create_middleware(_app(), components), follow_redirects=False, cookies=cookies
    )


class TestChainOrder:
    def test_rate_limit_is_outermost(self) -> None:
        chain = create_middleware(_app(), _components())

        assert CHAIN_ORDER[0] is RateLimitMiddleware
        assert isinstance(chain, RateLimitMiddleware)
        assert CHAIN_ORDER[-1] is SecurityHeadersMiddleware


class TestRateLimitStage:
    def test_blocks_after_limit(self) -> None:
        limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60)
        client = _client(_components(rate_limiter=limiter))

        assert client.get("/").status_code == 200
        assert client.get("/").status_code == 200
        response = client.get("/")

        assert response.status_code == 429
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Too many requests"
        assert body["blocked_until"] is not None
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in response.headers
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_allowed_response_carries_limit_headers(self) -> None:
        limiter = InMemoryRateLimiter(max_requests=5, window_seconds=60)
        response = _client(_components(rate_limiter=limiter)).get("/")

        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"

    def test_signed_in_requests_keyed_by_user(self) -> None:
        limiter = _RecordingLimiter()

        _client(_components(rate_limiter=limiter), cookies={"sid": "admin"}).get("/")
        _client(_components(rate_limiter=limiter)).get("/")

        assert limiter.keys[0] == "user:u-admin"
        assert limiter.keys[1].startswith("ip:")

    def test_session_resolved_once(self) -> None:
        calls: list[str] = []

        async def resolver(connection: HTTPConnection) -> dict[str, Any] | None:
            calls.append(connection.url.path)
            return await _cookie_resolver(connection)

        response = _client(_components(session_resolver=resolver), cookies={"sid": "user"}).get(
            "/dashboard"
        )

        assert response.status_code == 200
        assert calls == ["/dashboard"]


class TestSessionStage:
    def test_store_failure_answers_503(self) -> None:
        async def broken(connection: HTTPConnection) -> dict[str, Any] | None:
            raise StorageError("get_session_and_user", "connection refused")

        response = _client(_components(session_resolver=broken)).get("/")

        assert response.status_code == 503
        assert response.json() == {"success": False, "error": "Session service unavailable"}
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_without_resolver_session_is_none(self) -> None:
        response = _client(_components(session_resolver=None)).get("/")

        assert response.json() == {"session": False}


class TestRouteStage:
    def test_anonymous_redirected_from_protected(self) -> None:
        response = _client(_components()).get("/dashboard")

        assert response.status_code == 303
        assert response.headers["location"] == "/signin"
        assert response.headers["Strict-Transport-Security"].startswith("max-age=31536000")

    def test_signed_in_redirected_from_signin(self) -> None:
        response = _client(_components(), cookies={"sid": "user"}).get("/signin")

        assert response.status_code == 303
        assert response.headers["location"] == "/dashboard"

    def test_role_gate(self) -> None:
        assert _client(_components(), cookies={"sid": "user"}).get("/admin").status_code == 303
        assert _client(_components(), cookies={"sid": "admin"}).get("/admin").status_code == 200


class TestEndpointStage:
    def test_dispatches_by_method_and_path(self) -> None:
        async def ping(request: Request) -> JSONResponse:
            return JSONResponse({"success": True})

        client = _client(_components(endpoints={"POST:/auth/ping": ping}))

        response = client.post("/auth/ping")
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert response.headers["X-Frame-Options"] == "DENY"
        # Other methods fall through to the application, which has no such route.
        assert client.get("/auth/ping").status_code == 404


class TestSecurityHeadersStage:
    def test_moderate_level_has_no_csp(self) -> None:
        response = _client(_components()).get("/")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Content-Security-Policy" not in response.headers

    def test_strict_level_adds_csp(self) -> None:
        response = _client(_components(level="strict")).get("/")

        assert response.headers["Content-Security-Policy"] == STRICT_CONTENT_SECURITY_POLICY

    def test_application_header_wins(self) -> None:
        async def framed(request: Request) -> PlainTextResponse:
            return PlainTextResponse("ok", headers={"X-Frame-Options": "SAMEORIGIN"})

        app = Starlette(routes=[Route("/", framed)])
        response = TestClient(create_middleware(app, _components())).get("/")

        assert response.headers["X-Frame-Options"] == "SAMEORIGIN"


class TestComponentsSource:
    def test_swapped_components_apply_to_next_request(self) -> None:
        current = {"components": _components()}
        client = TestClient(
            create_middleware(_app(), lambda: current["components"]), follow_redirects=False
        )

        assert "Content-Security-Policy" not in client.get("/").headers
        current["components"] = _components(level="strict")
        assert "Content-Security-Policy" in client.get("/").headers


@pytest.mark.asyncio()
async def test_non_http_scope_passes_through() -> None:
    seen: list[str] = []

    async def inner(scope: dict, receive: Any, send: Any) -> None:
        seen.append(scope["type"])

    chain = create_middleware(inner, _components())
    await chain({"type": "lifespan"}, None, None)

    assert seen == ["lifespan"]
