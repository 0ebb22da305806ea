"""Guardian Auth: embeddable authentication for ASGI applications.

Credential sign-in with lockout, sessions, route protection, rate limiting,
email verification and password reset, composed as one middleware chain.
"""

from libs.guardian_auth.adapters import (
    CredentialStoreAdapter,
    InMemoryCredentialStore,
    create_adapter,
)
from libs.guardian_auth.auth import GuardianAuth
from libs.guardian_auth.config import (
    DEFAULT_CONFIG,
    GuardianAuthConfig,
    GuardianSettings,
    check_config,
    deep_merge,
    resolve_config,
)
from libs.guardian_auth.email import EmailOptions, EmailSender, create_email_sender
from libs.guardian_auth.events import AuthEventLogger, EventHandlers
from libs.guardian_auth.exceptions import (
    AuthenticationError,
    ConfigError,
    EmailDeliveryError,
    GuardianAuthError,
    RegistrationError,
    StorageError,
)
from libs.guardian_auth.features import FlowResult, RegistrationResult, SignInResult
from libs.guardian_auth.middleware import create_middleware
from libs.guardian_auth.password_policy import PasswordValidationResult, validate_password
from libs.guardian_auth.providers import CredentialsProvider
from libs.guardian_auth.rate_limiting import RateLimiter, RateLimitResult, create_rate_limiter
from libs.guardian_auth.routes import RouteDecision, authorize_route
from libs.guardian_auth.session import get_session

__all__ = [
    "DEFAULT_CONFIG",
    "AuthEventLogger",
    "AuthenticationError",
    "ConfigError",
    "CredentialStoreAdapter",
    "CredentialsProvider",
    "EmailDeliveryError",
    "EmailOptions",
    "EmailSender",
    "EventHandlers",
    "FlowResult",
    "GuardianAuth",
    "GuardianAuthConfig",
    "GuardianAuthError",
    "GuardianSettings",
    "InMemoryCredentialStore",
    "PasswordValidationResult",
    "RateLimitResult",
    "RateLimiter",
    "RegistrationError",
    "RegistrationResult",
    "RouteDecision",
    "SignInResult",
    "StorageError",
    "authorize_route",
    "check_config",
    "create_adapter",
    "create_email_sender",
    "create_middleware",
    "create_rate_limiter",
    "deep_merge",
    "get_session",
    "resolve_config",
    "validate_password",
]
