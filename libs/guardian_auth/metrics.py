"""Prometheus metrics for Guardian Auth."""

from __future__ import annotations

from prometheus_client import Counter

auth_events_total = Counter(
    "guardian_auth_events_total",
    "Authentication events by outcome",
    ["event", "outcome"],
)

rate_limit_checks_total = Counter(
    "guardian_rate_limit_checks_total",
    "Total rate limit checks",
    ["backend", "result"],
)

rate_limit_backend_errors_total = Counter(
    "guardian_rate_limit_backend_errors_total",
    "Rate limit backend failures (request allowed)",
    ["backend"],
)

__all__ = [
    "auth_events_total",
    "rate_limit_checks_total",
    "rate_limit_backend_errors_total",
]
