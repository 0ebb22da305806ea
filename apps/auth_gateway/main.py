"""Example auth gateway.

A small FastAPI application showing Guardian Auth in front of an app:
- /auth/*: sign-in, sign-out, email verification and password reset flows
  served by the Guardian Auth middleware chain
- POST /signup: form registration
- GET /dashboard: any signed-in user
- GET /admin: users with the ``admin`` role
- /health, /metrics

Settings come from ``GUARDIAN_*`` environment variables (see
``GuardianSettings``). The ASGI entrypoint is ``application``::

    uvicorn apps.auth_gateway.main:application --port 8000
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Form, HTTPException, Request, status
from prometheus_client import make_asgi_app
from starlette.types import ASGIApp

from libs.common.logging import TraceIDMiddleware, configure_logging
from libs.guardian_auth import GuardianAuth, GuardianSettings, get_session

logger = logging.getLogger(__name__)

SERVICE_NAME = "auth_gateway"

ROUTE_PROTECTION: dict[str, Any] = {
    "public_routes": {"/signin": {}, "/signup": {}},
    "protected_routes": {
        "/admin": {"allowed_roles": ["admin"], "redirect_path": "/dashboard"},
        "/dashboard": {"authenticated": True},
    },
    "redirect_path": "/signin",
    "authenticated_redirect": "/dashboard",
}


def build_guardian(settings: GuardianSettings) -> GuardianAuth:
    overrides = settings.to_config_overrides()
    overrides["security"]["route_protection"] = ROUTE_PROTECTION
    return GuardianAuth(overrides)


def create_app(guardian: GuardianAuth) -> FastAPI:
    """FastAPI app whose routes rely on the session stored by the middleware."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("auth_gateway_starting", extra={"app_url": guardian.config.app_url})
        try:
            yield
        finally:
            await guardian.close()
            logger.info("auth_gateway_stopped")

    app = FastAPI(
        title="Auth Gateway",
        description="Example service protected by Guardian Auth",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.mount("/metrics", make_asgi_app())

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy", "service": SERVICE_NAME}

    @app.post("/signup", status_code=status.HTTP_201_CREATED)
    async def signup(
        email: str = Form(...),
        password: str = Form(...),
        name: str | None = Form(None),
    ) -> dict[str, Any]:
        result = await guardian.create_user(email, password, name=name)
        if not result.success or result.user is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": result.error, "messages": result.messages},
            )
        return {"success": True, "user_id": result.user.id}

    @app.get("/dashboard")
    async def dashboard(request: Request) -> dict[str, Any]:
        session = get_session(request) or {}
        return {"user": session.get("user")}

    @app.get("/admin")
    async def admin(request: Request) -> dict[str, Any]:
        session = get_session(request) or {}
        return {"admin": True, "user": session.get("user")}

    return app


def create_application(settings: GuardianSettings | None = None) -> ASGIApp:
    """Full ASGI stack: trace ids outermost, then Guardian Auth, then the app."""
    settings = settings or GuardianSettings()
    configure_logging(service_name=SERVICE_NAME, log_level=settings.log_level)
    guardian = build_guardian(settings)
    return TraceIDMiddleware(guardian.middleware(create_app(guardian)))


application = create_application()
