"""Email verification, password reset and the auth endpoint table."""

from libs.guardian_auth.features.email_verification import EmailVerificationService
from libs.guardian_auth.features.endpoints import EndpointHandler, build_endpoints
from libs.guardian_auth.features.password_reset import PasswordResetService
from libs.guardian_auth.features.results import FlowResult, RegistrationResult, SignInResult
from libs.guardian_auth.features.tokens import TokenConsumeResult, VerificationTokenService

__all__ = [
    "EmailVerificationService",
    "EndpointHandler",
    "FlowResult",
    "PasswordResetService",
    "RegistrationResult",
    "SignInResult",
    "TokenConsumeResult",
    "VerificationTokenService",
    "build_endpoints",
]
