"""Ordered ASGI middleware chain.

Requests pass through the stages outermost first:

    RateLimitMiddleware            may answer 429
    SessionResolutionMiddleware    stores the session on scope state
    RouteProtectionMiddleware      may answer 303
    AuthEndpointsMiddleware        may answer with an auth-flow JSON body
    SecurityHeadersMiddleware      decorates the application's response
    application

A stage that answers itself never calls the stages after it, so it attaches
the security headers to its own response. Non-HTTP scopes (websocket,
lifespan) pass straight through every stage.

Stages read their collaborators through a ``ComponentsSource`` on every
request, so a configuration swap applies to the next request without
rebuilding the chain.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from libs.guardian_auth.config import GuardianAuthConfig, SecurityLevel
from libs.guardian_auth.exceptions import StorageError
from libs.guardian_auth.features.endpoints import EndpointHandler
from libs.guardian_auth.rate_limiting.base import (
    KeyGenerator,
    RateLimiter,
    default_key_generator,
)
from libs.guardian_auth.routes import REDIRECT_STATUS_CODE, authorize_route
from libs.guardian_auth.session import SESSION_STATE_KEY, SessionData, SessionResolver

logger = logging.getLogger(__name__)

BASE_SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
}
STRICT_CONTENT_SECURITY_POLICY = "default-src 'self'; script-src 'self' 'unsafe-inline'"

RATE_LIMITED_ERROR = "Too many requests"
SESSION_UNAVAILABLE_ERROR = "Session service unavailable"


def security_headers(level: SecurityLevel) -> dict[str, str]:
    headers = dict(BASE_SECURITY_HEADERS)
    if level == "strict":
        headers["Content-Security-Policy"] = STRICT_CONTENT_SECURITY_POLICY
    return headers


@dataclass(frozen=True)
class ChainComponents:
    config: GuardianAuthConfig
    rate_limiter: RateLimiter
    session_resolver: SessionResolver | None = None
    endpoints: Mapping[str, EndpointHandler] = field(default_factory=dict)
    key_generator: KeyGenerator = default_key_generator


ComponentsSource = Callable[[], ChainComponents]


def _as_source(components: ChainComponents | ComponentsSource) -> ComponentsSource:
    if isinstance(components, ChainComponents):
        return lambda: components
    return components


def _state(scope: Scope) -> dict:
    return scope.setdefault("state", {})


async def _respond(
    response: Response,
    components: ChainComponents,
    scope: Scope,
    receive: Receive,
    send: Send,
) -> None:
    for name, value in security_headers(components.config.security.level).items():
        response.headers.setdefault(name, value)
    await response(scope, receive, send)


class _Stage:
    def __init__(self, app: ASGIApp, components: ChainComponents | ComponentsSource) -> None:
        self.app = app
        self.components = _as_source(components)


class RateLimitMiddleware(_Stage):
    """Counts each request against its key; over-limit requests get a 429.

    When a session resolver is configured and the session is not yet known,
    it is resolved here so signed-in users are keyed by user id. A failed
    lookup falls back to the client IP key.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        components = self.components()
        request = Request(scope, receive)
        state = _state(scope)
        if components.session_resolver is not None and SESSION_STATE_KEY not in state:
            try:
                state[SESSION_STATE_KEY] = await components.session_resolver(request)
            except StorageError:
                logger.warning("rate_limit_session_lookup_failed", extra={"path": request.url.path})

        result = await components.rate_limiter.check(components.key_generator(request))
        headers = result.headers()

        if not result.allowed:
            logger.info(
                "rate_limit_rejected",
                extra={"path": request.url.path, "blocked_until": result.blocked_until},
            )
            response = JSONResponse(
                {
                    "success": False,
                    "error": RATE_LIMITED_ERROR,
                    "blocked_until": result.blocked_until,
                },
                status_code=429,
                headers=headers,
            )
            await _respond(response, components, scope, receive, send)
            return

        raw_headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()]

        async def send_with_limits(message: Message) -> None:
            if message["type"] == "http.response.start":
                message["headers"] = list(message.get("headers", [])) + raw_headers
            await send(message)

        await self.app(scope, receive, send_with_limits)


class SessionResolutionMiddleware(_Stage):
    """Stores the resolved session (or ``None``) under ``scope["state"]["session"]``."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        components = self.components()
        state = _state(scope)
        if SESSION_STATE_KEY not in state:
            session: SessionData | None = None
            if components.session_resolver is not None:
                try:
                    session = await components.session_resolver(Request(scope, receive))
                except StorageError:
                    logger.exception("session_resolution_failed", extra={"path": scope["path"]})
                    response = JSONResponse(
                        {"success": False, "error": SESSION_UNAVAILABLE_ERROR}, status_code=503
                    )
                    await _respond(response, components, scope, receive, send)
                    return
            state[SESSION_STATE_KEY] = session

        await self.app(scope, receive, send)


class RouteProtectionMiddleware(_Stage):
    """Redirects (303) requests the route tables deny."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        components = self.components()
        session = _state(scope).get(SESSION_STATE_KEY)
        decision = authorize_route(
            scope["path"], session, components.config.security.route_protection
        )
        if not decision.allowed and decision.redirect_to is not None:
            logger.info(
                "route_redirected",
                extra={
                    "path": scope["path"],
                    "reason": decision.reason,
                    "redirect_to": decision.redirect_to,
                },
            )
            response = RedirectResponse(decision.redirect_to, status_code=REDIRECT_STATUS_CODE)
            await _respond(response, components, scope, receive, send)
            return

        await self.app(scope, receive, send)


class AuthEndpointsMiddleware(_Stage):
    """Answers ``METHOD:path`` matches from the endpoint table directly."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        components = self.components()
        handler = components.endpoints.get(f"{scope['method']}:{scope['path']}")
        if handler is None:
            await self.app(scope, receive, send)
            return

        response = await handler(Request(scope, receive))
        await _respond(response, components, scope, receive, send)


class SecurityHeadersMiddleware(_Stage):
    """Adds hardening headers to every application response."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        components = self.components()
        extra = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in security_headers(components.config.security.level).items()
        ]

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                present = {key.lower() for key, _ in headers}
                headers.extend((key, value) for key, value in extra if key not in present)
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_headers)


CHAIN_ORDER: tuple[type[_Stage], ...] = (
    RateLimitMiddleware,
    SessionResolutionMiddleware,
    RouteProtectionMiddleware,
    AuthEndpointsMiddleware,
    SecurityHeadersMiddleware,
)


def create_middleware(app: ASGIApp, components: ChainComponents | ComponentsSource) -> ASGIApp:
    """Wrap ``app`` in the full chain, ``RateLimitMiddleware`` outermost."""
    wrapped = app
    for stage in reversed(CHAIN_ORDER):
        wrapped = stage(wrapped, components)
    return wrapped


__all__ = [
    "BASE_SECURITY_HEADERS",
    "STRICT_CONTENT_SECURITY_POLICY",
    "CHAIN_ORDER",
    "ChainComponents",
    "ComponentsSource",
    "RateLimitMiddleware",
    "SessionResolutionMiddleware",
    "RouteProtectionMiddleware",
    "AuthEndpointsMiddleware",
    "SecurityHeadersMiddleware",
    "create_middleware",
    "security_headers",
]
