"""Route access decisions from the public and protected route tables.

Tables are matched by prefix in declaration order and the first match wins,
so overlapping prefixes must be declared most-specific first::

    protected_routes = {"/admin/reports": {...}, "/admin": {...}}

Declaring ``"/admin"`` first would shadow ``"/admin/reports"``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from libs.guardian_auth.config import RouteProtectionConfig, RouteRule

REDIRECT_STATUS_CODE = 303

DecisionReason = Literal[
    "no_match",
    "public",
    "public_authenticated_redirect",
    "protected",
    "unauthenticated",
    "role_not_allowed",
]


@dataclass(frozen=True)
class RouteDecision:
    allowed: bool
    reason: DecisionReason
    redirect_to: str | None = None


def match_route(path: str, table: Mapping[str, RouteRule]) -> tuple[str, RouteRule] | None:
    for prefix, rule in table.items():
        if path == prefix or path.startswith(prefix):
            return prefix, rule
    return None


def _session_user(session: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if not session:
        return None
    user = session.get("user")
    return user if isinstance(user, Mapping) and user else None


def authorize_route(
    path: str,
    session: Mapping[str, Any] | None,
    route_protection: RouteProtectionConfig,
) -> RouteDecision:
    user = _session_user(session)

    public = match_route(path, route_protection.public_routes)
    if public is not None:
        _, rule = public
        if user is not None:
            target = rule.redirect_path or route_protection.authenticated_redirect
            if target:
                return RouteDecision(
                    allowed=False, reason="public_authenticated_redirect", redirect_to=target
                )

    protected = match_route(path, route_protection.protected_routes)
    if protected is not None:
        _, rule = protected
        fallback = rule.redirect_path or route_protection.redirect_path or "/"
        if user is None:
            return RouteDecision(allowed=False, reason="unauthenticated", redirect_to=fallback)
        if rule.allowed_roles is not None:
            role = user.get(route_protection.role_key)
            if role not in rule.allowed_roles:
                return RouteDecision(
                    allowed=False, reason="role_not_allowed", redirect_to=fallback
                )
        return RouteDecision(allowed=True, reason="protected")

    if public is not None:
        return RouteDecision(allowed=True, reason="public")
    return RouteDecision(allowed=True, reason="no_match")


__all__ = [
    "REDIRECT_STATUS_CODE",
    "DecisionReason",
    "RouteDecision",
    "authorize_route",
    "match_route",
]
