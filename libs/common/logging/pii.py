"""PII masking for log output.

Convention: raw addresses are stored for delivery and lookups, masked in logs.
Log context keys listed in ``MASKED_CONTEXT_KEYS`` (addresses) or
``SECRET_CONTEXT_KEYS`` (tokens) are masked by the JSON formatter before
serialization, so call sites may pass raw values.
"""

MASKED_CONTEXT_KEYS = frozenset({"email", "recipient", "identifier", "to"})
SECRET_CONTEXT_KEYS = frozenset({"token", "otp", "session_token"})


def mask_email(email: str) -> str:
    """Mask email showing ONLY last 4 chars: alice@example.com -> ***.com"""
    if len(email) >= 4:
        return f"***{email[-4:]}"
    return "***"


def mask_token(token: str) -> str:
    """Mask a secret token keeping only a 4 char prefix for correlation."""
    if len(token) > 8:
        return f"{token[:4]}***"
    return "***"


def mask_context(context: dict[str, object]) -> dict[str, object]:
    """Return a copy of ``context`` with PII keys masked."""
    masked: dict[str, object] = {}
    for key, value in context.items():
        if key in MASKED_CONTEXT_KEYS and isinstance(value, str):
            masked[key] = mask_email(value)
        elif key in SECRET_CONTEXT_KEYS and isinstance(value, str):
            masked[key] = mask_token(value)
        else:
            masked[key] = value
    return masked


__all__ = [
    "MASKED_CONTEXT_KEYS",
    "SECRET_CONTEXT_KEYS",
    "mask_email",
    "mask_token",
    "mask_context",
]
