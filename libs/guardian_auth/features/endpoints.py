"""Auth-flow endpoints served by the middleware chain.

Handlers are keyed ``"METHOD:/path"`` and answer with a JSON body of the
form ``{"success": bool, "error"?: str}``. Request fields may arrive as JSON
or as a form.

Status codes: 200 for flow outcomes (including a wrong OTP), 400 for missing
fields or an unreadable body, 401 for rejected sign-ins and 503 when storage
or email delivery fails. Infrastructure failures are logged in full and answered generically.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from json import JSONDecodeError
from typing import Any

from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from libs.guardian_auth.config import SessionOptions
from libs.guardian_auth.exceptions import AuthenticationError, EmailDeliveryError, StorageError
from libs.guardian_auth.features.email_verification import EmailVerificationService
from libs.guardian_auth.features.password_reset import PasswordResetService
from libs.guardian_auth.features.results import FlowResult, SignInResult

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Request could not be processed"

EndpointHandler = Callable[[Request], Awaitable[Response]]
FieldHandler = Callable[[Request, Mapping[str, str]], Awaitable[Response]]
SignInFunc = Callable[[str, str], Awaitable[SignInResult]]
SignOutFunc = Callable[[str], Awaitable[None]]

VERIFY_EMAIL_PREFIX = "/auth/verify-email"
RESET_PASSWORD_PREFIX = "/auth/reset-password"


def _json(result: FlowResult, status_code: int = 200) -> JSONResponse:
    return JSONResponse(result.to_dict(), status_code=status_code)


async def read_fields(request: Request) -> dict[str, str]:
    """Request fields from a JSON object or a form body; non-strings are dropped."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except (JSONDecodeError, UnicodeDecodeError):
            return {}
        if not isinstance(payload, dict):
            return {}
        return {key: value for key, value in payload.items() if isinstance(value, str)}

    try:
        form = await request.form()
    except (HTTPException, MultiPartException) as exc:
        logger.warning(
            "auth_endpoint_malformed_form",
            extra={"path": request.url.path, "error": str(getattr(exc, "detail", exc))},
        )
        return {}
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _endpoint(required: tuple[str, ...], handler: FieldHandler) -> EndpointHandler:
    """Wrap ``handler`` with body parsing, field checks and error translation."""

    async def endpoint(request: Request) -> Response:
        fields = await read_fields(request)
        missing = [name for name in required if not fields.get(name)]
        if missing:
            return _json(FlowResult.fail(f"Missing fields: {', '.join(missing)}"), 400)
        try:
            return await handler(request, fields)
        except AuthenticationError as exc:
            return _json(FlowResult.fail(exc.code), 401)
        except (StorageError, EmailDeliveryError):
            logger.exception("auth_endpoint_failed", extra={"path": request.url.path})
            return _json(FlowResult.fail(GENERIC_FAILURE), 503)

    return endpoint


def _new_password(fields: Mapping[str, str]) -> str:
    return fields.get("newPassword") or fields.get("new_password") or ""


def build_endpoints(
    *,
    email_verification: EmailVerificationService | None = None,
    password_reset: PasswordResetService | None = None,
    sign_in: SignInFunc | None = None,
    sign_out: SignOutFunc | None = None,
    session_options: SessionOptions | None = None,
) -> dict[str, EndpointHandler]:
    """Build the endpoint table for the enabled features."""
    cookies = session_options or SessionOptions()
    endpoints: dict[str, EndpointHandler] = {}

    if email_verification is not None:
        service = email_verification

        async def initiate(request: Request, fields: Mapping[str, str]) -> Response:
            await service.initiate_email_verification(fields["email"])
            return _json(FlowResult.ok())

        async def send_otp(request: Request, fields: Mapping[str, str]) -> Response:
            await service.send_otp(fields["email"])
            return _json(FlowResult.ok())

        async def send_link(request: Request, fields: Mapping[str, str]) -> Response:
            await service.send_link(fields["email"])
            return _json(FlowResult.ok())

        async def verify_otp(request: Request, fields: Mapping[str, str]) -> Response:
            return _json(await service.verify_otp(fields["email"], fields["otp"]))

        async def verify_token(request: Request, fields: Mapping[str, str]) -> Response:
            return _json(await service.verify_token(fields["email"], fields["token"]))

        endpoints.update(
            {
                f"POST:{VERIFY_EMAIL_PREFIX}/initiate": _endpoint(("email",), initiate),
                f"POST:{VERIFY_EMAIL_PREFIX}/send-otp": _endpoint(("email",), send_otp),
                f"POST:{VERIFY_EMAIL_PREFIX}/send-link": _endpoint(("email",), send_link),
                f"POST:{VERIFY_EMAIL_PREFIX}/verify-otp": _endpoint(("email", "otp"), verify_otp),
                f"POST:{VERIFY_EMAIL_PREFIX}/verify-token": _endpoint(
                    ("email", "token"), verify_token
                ),
            }
        )

    if password_reset is not None:
        reset_service = password_reset

        async def initiate_reset(request: Request, fields: Mapping[str, str]) -> Response:
            await reset_service.initiate_password_reset(fields["email"])
            return _json(FlowResult.ok())

        async def reset(request: Request, fields: Mapping[str, str]) -> Response:
            new_password = _new_password(fields)
            if not new_password:
                return _json(FlowResult.fail("Missing fields: newPassword"), 400)
            return _json(
                await reset_service.reset_password(fields["email"], fields["token"], new_password)
            )

        endpoints.update(
            {
                f"POST:{RESET_PASSWORD_PREFIX}/initiate-reset": _endpoint(
                    ("email",), initiate_reset
                ),
                f"POST:{RESET_PASSWORD_PREFIX}/reset": _endpoint(("email", "token"), reset),
            }
        )

    if sign_in is not None:
        do_sign_in = sign_in

        async def signin(request: Request, fields: Mapping[str, str]) -> Response:
            result = await do_sign_in(fields["email"], fields["password"])
            body: dict[str, Any] = {"success": True, "user": result.public_user()}
            response = JSONResponse(body)
            response.set_cookie(
                cookies.cookie_name,
                result.session_token,
                max_age=cookies.max_age_seconds,
                httponly=True,
                secure=cookies.secure_cookie,
                samesite=cookies.same_site,
                path="/",
            )
            return response

        endpoints["POST:/auth/signin/credentials"] = _endpoint(("email", "password"), signin)

    if sign_out is not None:
        do_sign_out = sign_out

        async def signout(request: Request, fields: Mapping[str, str]) -> Response:
            token = request.cookies.get(cookies.cookie_name)
            if token:
                await do_sign_out(token)
            response = _json(FlowResult.ok())
            response.delete_cookie(
                cookies.cookie_name,
                path="/",
                secure=cookies.secure_cookie,
                httponly=True,
                samesite=cookies.same_site,
            )
            return response

        endpoints["POST:/auth/signout"] = _endpoint((), signout)

    return endpoints


__all__ = [
    "GENERIC_FAILURE",
    "EndpointHandler",
    "build_endpoints",
    "read_fields",
]
