"""Configuration models for Guardian Auth.

The whole configuration is one frozen ``GuardianAuthConfig`` tree, resolved
once at startup from defaults plus user overrides. Overrides are merged
recursively (``deep_merge``) so that supplying one nested option, e.g.
``security.max_login_attempts``, keeps every sibling default such as
``security.password_policy``.

Runtime reconfiguration goes through ``GuardianAuth.update_config`` which
resolves a new tree and swaps it in one assignment.

Example:
    >>> config = resolve_config({"security": {"max_login_attempts": 3}})
    >>> config.security.max_login_attempts
    3
    >>> config.security.password_policy.min_length
    8
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from libs.guardian_auth.exceptions import ConfigError
from libs.guardian_auth.password_policy import (
    DEFAULT_MAX_LENGTH,
    DEFAULT_MIN_LENGTH,
    DEFAULT_SPECIAL_CHARS,
)

SecurityLevel = Literal["strict", "moderate", "relaxed"]
RateLimitStrategy = Literal["memory", "redis", "upstash"]


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class PasswordPolicy(_FrozenModel):
    """Rules for new passwords.

    ``require_*`` accepts ``True`` (at least one), an integer (at least N) or
    ``False`` (rule disabled).
    """

    min_length: int = Field(default=DEFAULT_MIN_LENGTH, ge=1)
    max_length: int = Field(default=DEFAULT_MAX_LENGTH, ge=1)
    require_uppercase: bool | int = True
    require_lowercase: bool | int = True
    require_numbers: bool | int = True
    require_special_chars: bool | int = True
    special_chars: str = DEFAULT_SPECIAL_CHARS


class RouteRule(_FrozenModel):
    redirect_path: str | None = None
    authenticated: bool = False
    allowed_roles: tuple[str, ...] | None = None


def _route_table(value: Any) -> Any:
    # A bare list of prefixes is shorthand for rules with no overrides.
    if isinstance(value, list | tuple):
        return {str(path): {} for path in value}
    return value


class RouteProtectionConfig(_FrozenModel):
    """Route tables matched by prefix in declaration order (first match wins)."""

    public_routes: dict[str, RouteRule] = Field(default_factory=dict)
    protected_routes: dict[str, RouteRule] = Field(default_factory=dict)
    redirect_path: str = "/"
    authenticated_redirect: str | None = None
    role_key: str = "role"

    @model_validator(mode="before")
    @classmethod
    def _expand_route_lists(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            data = dict(data)
            for key in ("public_routes", "protected_routes"):
                if key in data:
                    data[key] = _route_table(data[key])
        return data


class RedisConfig(_FrozenModel):
    """Connection settings for the networked rate-limit backends.

    ``url`` + ``token`` address an Upstash REST endpoint; ``url`` alone or
    ``host``/``port`` address a Redis server.
    """

    url: str | None = None
    host: str | None = None
    port: int = 6379
    username: str | None = None
    password: SecretStr | None = None
    db: int = 0
    tls: bool = False
    token: SecretStr | None = None
    connect_timeout_seconds: float = 2.0

    @property
    def has_server(self) -> bool:
        return bool(self.url or self.host)


class RateLimitingConfig(_FrozenModel):
    enabled: bool = True
    strategy: RateLimitStrategy = "memory"
    max_requests: int = Field(default=10, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    block_duration_seconds: float = Field(default=300.0, ge=0)
    requests_per_minute: int | None = Field(default=None, ge=1)
    redis: RedisConfig | None = None
    key_prefix: str = "rate_limit:"
    timeout_seconds: float = Field(default=0.5, gt=0)
    trusted_proxies: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _apply_requests_per_minute(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and data.get("requests_per_minute") is not None:
            data = dict(data)
            data["max_requests"] = data["requests_per_minute"]
            data["window_seconds"] = 60.0
        return data


class EmailVerificationOptions(_FrozenModel):
    enabled: bool = False
    method: Literal["otp", "link"] = "otp"
    otp_length: int = Field(default=6, ge=4, le=10)
    otp_expiration_minutes: float = Field(default=15, gt=0)
    token_expiration_minutes: float = Field(default=15, gt=0)
    send_on_registration: bool = False


class PasswordResetOptions(_FrozenModel):
    enabled: bool = False
    token_expiration_minutes: float = Field(default=15, gt=0)


class TwoFactorOptions(_FrozenModel):
    enabled: bool = False
    method: Literal["totp", "email", "sms"] | None = None


class SecurityConfig(_FrozenModel):
    level: SecurityLevel = "moderate"
    max_login_attempts: int = Field(default=5, ge=1)
    lockout_duration_seconds: float = Field(default=15 * 60, ge=0)
    require_email_verification: bool = False
    password_policy: PasswordPolicy = Field(default_factory=PasswordPolicy)
    route_protection: RouteProtectionConfig = Field(default_factory=RouteProtectionConfig)
    rate_limiting: RateLimitingConfig = Field(default_factory=RateLimitingConfig)
    email_verification: EmailVerificationOptions = Field(
        default_factory=EmailVerificationOptions
    )
    password_reset: PasswordResetOptions = Field(default_factory=PasswordResetOptions)
    two_factor: TwoFactorOptions = Field(default_factory=TwoFactorOptions)
    storage_timeout_seconds: float = Field(default=5.0, gt=0)


class CredentialsProviderConfig(_FrozenModel):
    enabled: bool = True
    allow_registration: bool = True
    additional_user_fields: tuple[str, ...] = ()


class SessionOptions(_FrozenModel):
    cookie_name: str = "guardian.session-token"
    max_age_seconds: int = Field(default=60 * 60 * 24 * 30, ge=60)
    secure_cookie: bool = True
    same_site: Literal["lax", "strict", "none"] = "lax"


class MemoryDatabaseConfig(_FrozenModel):
    type: Literal["memory"] = "memory"


class PostgresDatabaseConfig(_FrozenModel):
    type: Literal["postgres"] = "postgres"
    dsn: SecretStr | None = None
    min_size: int = Field(default=1, ge=0)
    max_size: int = Field(default=10, ge=1)


DatabaseConfig = Annotated[
    MemoryDatabaseConfig | PostgresDatabaseConfig, Field(discriminator="type")
]


class SmtpProviderConfig(_FrozenModel):
    type: Literal["smtp"] = "smtp"
    host: str = ""
    port: int = 587
    username: str | None = None
    password: SecretStr | None = None
    from_email: str = ""
    timeout_seconds: float = 10.0


class SendGridProviderConfig(_FrozenModel):
    type: Literal["sendgrid"] = "sendgrid"
    api_key: SecretStr | None = None
    from_email: str = ""
    timeout_seconds: float = 10.0


class ResendProviderConfig(_FrozenModel):
    type: Literal["resend"] = "resend"
    api_key: SecretStr | None = None
    from_email: str = "Acme <onboarding@resend.dev>"
    timeout_seconds: float = 10.0


EmailProviderConfig = Annotated[
    SmtpProviderConfig | SendGridProviderConfig | ResendProviderConfig,
    Field(discriminator="type"),
]


class GuardianAuthConfig(_FrozenModel):
    app_url: str = "http://localhost:8000"
    database: DatabaseConfig | None = None
    email_provider: EmailProviderConfig | None = None
    credentials: CredentialsProviderConfig = Field(default_factory=CredentialsProviderConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    session: SessionOptions = Field(default_factory=SessionOptions)


DEFAULT_CONFIG = GuardianAuthConfig()


_ORDERED_TABLES = frozenset({"public_routes", "protected_routes"})


def deep_merge(defaults: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overrides`` into ``defaults`` without mutating either.

    Nested mappings merge key by key. Tagged mappings (both sides carry a
    ``type`` key) whose tags differ are replaced wholesale, since merging two
    different provider kinds produces a config neither kind accepts. Route
    tables are also replaced wholesale: their order decides the first match.
    """
    merged: dict[str, Any] = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, BaseModel):
            value = value.model_dump(exclude_unset=True)
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            if key in _ORDERED_TABLES or (
                "type" in current and "type" in value and current["type"] != value["type"]
            ):
                merged[key] = dict(value)
            else:
                merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def resolve_config(
    overrides: Mapping[str, Any] | GuardianAuthConfig | None = None,
    *,
    base: GuardianAuthConfig | None = None,
) -> GuardianAuthConfig:
    """Build a validated config from ``base`` (defaults when omitted) plus overrides.

    Raises:
        ConfigError: If the merged config fails validation
    """
    if isinstance(overrides, GuardianAuthConfig):
        if base is None:
            return overrides
        overrides = overrides.model_dump(exclude_unset=True)

    base_values = (base or DEFAULT_CONFIG).model_dump()
    merged = deep_merge(base_values, overrides or {})
    try:
        return GuardianAuthConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid Guardian Auth configuration: {exc}") from exc


def check_config(
    config: GuardianAuthConfig,
    *,
    adapter_supplied: bool = False,
    email_sender_supplied: bool = False,
) -> None:
    """Cross-field startup checks that single-model validation cannot express.

    Raises:
        ConfigError: On the first inconsistency found
    """
    security = config.security

    if config.database is None and not adapter_supplied:
        raise ConfigError("A database configuration or adapter instance is required")
    if isinstance(config.database, PostgresDatabaseConfig) and config.database.dsn is None:
        raise ConfigError("Postgres database strategy requires a dsn")

    has_email = config.email_provider is not None or email_sender_supplied
    if security.email_verification.enabled and not has_email:
        raise ConfigError("Email verification is enabled but no email provider is configured")
    if security.password_reset.enabled and not has_email:
        raise ConfigError("Password reset is enabled but no email provider is configured")
    if security.require_email_verification and not security.email_verification.enabled:
        raise ConfigError("require_email_verification needs email_verification.enabled")

    policy = security.password_policy
    if policy.min_length > policy.max_length:
        raise ConfigError("password_policy.min_length exceeds max_length")

    rate_limiting = security.rate_limiting
    if rate_limiting.enabled and rate_limiting.strategy == "redis":
        if rate_limiting.redis is None or not rate_limiting.redis.has_server:
            raise ConfigError("Redis configuration is required for the redis strategy")
    if rate_limiting.enabled and rate_limiting.strategy == "upstash":
        redis_config = rate_limiting.redis
        if redis_config is None or not redis_config.url or redis_config.token is None:
            raise ConfigError("Upstash url and token are required for the upstash strategy")


class GuardianSettings(BaseSettings):
    """Deployment settings read from ``GUARDIAN_*`` environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="GUARDIAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_url: str = Field(default="http://localhost:8000", description="Public base URL")
    database_url: SecretStr | None = Field(
        default=None, description="Postgres DSN; in-memory store when unset"
    )
    log_level: str = Field(default="INFO")
    security_level: SecurityLevel = Field(default="moderate")

    rate_limit_enabled: bool = Field(default=True)
    rate_limit_strategy: RateLimitStrategy = Field(default="memory")
    rate_limit_max_requests: int = Field(default=10, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    redis_url: str | None = Field(default=None)
    upstash_url: str | None = Field(default=None)
    upstash_token: SecretStr | None = Field(default=None)

    smtp_host: str | None = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_user: str | None = Field(default=None)
    smtp_password: SecretStr | None = Field(default=None)
    email_from: str | None = Field(default=None)

    require_email_verification: bool = Field(default=False)
    secure_cookie: bool = Field(default=True)

    def to_config_overrides(self) -> dict[str, Any]:
        """Translate flat env settings into a nested config override mapping."""
        overrides: dict[str, Any] = {
            "app_url": self.app_url,
            "security": {
                "level": self.security_level,
                "rate_limiting": {
                    "enabled": self.rate_limit_enabled,
                    "strategy": self.rate_limit_strategy,
                    "max_requests": self.rate_limit_max_requests,
                    "window_seconds": self.rate_limit_window_seconds,
                },
            },
            "session": {"secure_cookie": self.secure_cookie},
        }

        if self.database_url is not None:
            overrides["database"] = {"type": "postgres", "dsn": self.database_url}
        else:
            overrides["database"] = {"type": "memory"}

        if self.rate_limit_strategy == "redis" and self.redis_url:
            overrides["security"]["rate_limiting"]["redis"] = {"url": self.redis_url}
        elif self.rate_limit_strategy == "upstash" and self.upstash_url:
            overrides["security"]["rate_limiting"]["redis"] = {
                "url": self.upstash_url,
                "token": self.upstash_token,
            }

        if self.smtp_host:
            overrides["email_provider"] = {
                "type": "smtp",
                "host": self.smtp_host,
                "port": self.smtp_port,
                "username": self.smtp_user,
                "password": self.smtp_password,
                "from_email": self.email_from or self.smtp_user or "",
            }
            overrides["security"]["email_verification"] = {"enabled": True}
            overrides["security"]["password_reset"] = {"enabled": True}

        if self.require_email_verification:
            overrides["security"]["require_email_verification"] = True

        return overrides


__all__ = [
    "SecurityLevel",
    "RateLimitStrategy",
    "PasswordPolicy",
    "RouteRule",
    "RouteProtectionConfig",
    "RedisConfig",
    "RateLimitingConfig",
    "EmailVerificationOptions",
    "PasswordResetOptions",
    "TwoFactorOptions",
    "SecurityConfig",
    "CredentialsProviderConfig",
    "SessionOptions",
    "MemoryDatabaseConfig",
    "PostgresDatabaseConfig",
    "DatabaseConfig",
    "SmtpProviderConfig",
    "SendGridProviderConfig",
    "ResendProviderConfig",
    "EmailProviderConfig",
    "GuardianAuthConfig",
    "DEFAULT_CONFIG",
    "GuardianSettings",
    "deep_merge",
    "resolve_config",
    "check_config",
]
