"""Client IP extraction honouring trusted reverse proxies."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Iterable

from starlette.requests import HTTPConnection

from libs.guardian_auth.exceptions import ConfigError

logger = logging.getLogger(__name__)

TrustedProxy = (
    ipaddress.IPv4Network
    | ipaddress.IPv6Network
    | ipaddress.IPv4Address
    | ipaddress.IPv6Address
)

UNKNOWN_CLIENT = "unknown"


def parse_trusted_proxies(values: Iterable[str]) -> tuple[TrustedProxy, ...]:
    """Parse addresses and CIDR ranges, e.g. ``("10.0.0.0/8", "127.0.0.1")``.

    Raises:
        ConfigError: If an entry is neither an address nor a network
    """
    parsed: list[TrustedProxy] = []
    for value in values:
        try:
            if "/" in value:
                parsed.append(ipaddress.ip_network(value, strict=False))
            else:
                parsed.append(ipaddress.ip_address(value))
        except ValueError as exc:
            raise ConfigError(f"Invalid trusted proxy entry: {value!r}") from exc
    return tuple(parsed)


def _is_trusted(
    ip: ipaddress.IPv4Address | ipaddress.IPv6Address,
    trusted_proxies: Iterable[TrustedProxy],
) -> bool:
    for proxy in trusted_proxies:
        if isinstance(proxy, ipaddress.IPv4Network | ipaddress.IPv6Network):
            if ip in proxy:
                return True
        elif ip == proxy:
            return True
    return False


def get_client_ip(request: HTTPConnection, trusted_proxies: Iterable[TrustedProxy] = ()) -> str:
    """Return the originating client IP.

    ``X-Forwarded-For`` is only read when the direct peer is a trusted
    proxy; it is then walked right to left and the first untrusted entry
    wins. Falls back to the peer address, or ``"unknown"`` without one.
    """
    connection_ip = request.client.host if request.client else ""
    if not connection_ip:
        return UNKNOWN_CLIENT

    try:
        connection_addr = ipaddress.ip_address(connection_ip)
    except ValueError:
        return connection_ip

    trusted = list(trusted_proxies)
    if not trusted or not _is_trusted(connection_addr, trusted):
        return connection_ip

    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return connection_ip

    parts = [part.strip() for part in forwarded.split(",") if part.strip()]
    for part in reversed(parts):
        try:
            addr = ipaddress.ip_address(part)
        except ValueError:
            logger.debug("forwarded_for_entry_invalid", extra={"entry": part})
            continue
        if _is_trusted(addr, trusted):
            continue
        return part

    return connection_ip


__all__ = ["TrustedProxy", "UNKNOWN_CLIENT", "parse_trusted_proxies", "get_client_ip"]
