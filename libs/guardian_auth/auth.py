"""Guardian Auth facade.

``GuardianAuth`` wires configuration, storage, email, rate limiting and the
auth flows together and exposes the ASGI middleware chain.

Example:
    >>> auth = GuardianAuth(
    ...     {"database": {"type": "memory"}, "security": {"level": "strict"}}
    ... )
    >>> app = auth.middleware(app)  # doctest: +SKIP
    >>> result = await auth.create_user("alice@example.com", "Str0ng!Pass")  # doctest: +SKIP

Runtime reconfiguration (``update_config``) builds a complete new set of
services before swapping it in with a single assignment, so a request
always sees one consistent configuration.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from starlette.types import ASGIApp

from libs.guardian_auth.adapters import create_adapter
from libs.guardian_auth.adapters.base import (
    Account,
    CredentialStoreAdapter,
    Session,
    User,
    call_adapter,
)
from libs.guardian_auth.client_ip import parse_trusted_proxies
from libs.guardian_auth.clock import Clock, utc_now
from libs.guardian_auth.config import GuardianAuthConfig, check_config, resolve_config
from libs.guardian_auth.email import create_email_sender
from libs.guardian_auth.email.base import EmailSender
from libs.guardian_auth.events import AuthEventLogger, EventHandlers
from libs.guardian_auth.exceptions import (
    ConfigError,
    EmailDeliveryError,
    RegistrationError,
    StorageError,
)
from libs.guardian_auth.features.email_verification import EmailVerificationService
from libs.guardian_auth.features.endpoints import build_endpoints
from libs.guardian_auth.features.password_reset import PasswordResetService
from libs.guardian_auth.features.results import RegistrationResult, SignInResult
from libs.guardian_auth.middleware import ChainComponents, create_middleware
from libs.guardian_auth.password_policy import validate_password
from libs.guardian_auth.providers import CredentialsProvider
from libs.guardian_auth.rate_limiting import create_rate_limiter, make_key_generator
from libs.guardian_auth.rate_limiting.base import RateLimiter
from libs.guardian_auth.security import generate_session_token, hash_password
from libs.guardian_auth.session import AdapterSessionResolver, SessionResolver
from libs.guardian_auth.validation import validate_email

logger = logging.getLogger(__name__)

USER_ALREADY_EXISTS = "User already exists"
UNABLE_TO_CREATE_USER = "Unable to create user"
INVALID_EMAIL = "Invalid email address"
REGISTRATION_DISABLED = "Registration is disabled"


@dataclass(frozen=True)
class _Services:
    """Everything derived from one resolved config."""

    config: GuardianAuthConfig
    email_sender: EmailSender | None
    rate_limiter: RateLimiter
    provider: CredentialsProvider
    email_verification: EmailVerificationService | None
    password_reset: PasswordResetService | None
    chain: ChainComponents


class GuardianAuth:
    def __init__(
        self,
        config: Mapping[str, Any] | GuardianAuthConfig | None = None,
        *,
        adapter: CredentialStoreAdapter | None = None,
        email_sender: EmailSender | None = None,
        rate_limiter: RateLimiter | None = None,
        session_resolver: SessionResolver | None = None,
        clock: Clock | None = None,
        event_handlers: EventHandlers | None = None,
    ) -> None:
        """Resolve and check the config, then build every service.

        Raises:
            ConfigError: If the configuration is invalid or incomplete
        """
        resolved = resolve_config(config)
        check_config(
            resolved,
            adapter_supplied=adapter is not None,
            email_sender_supplied=email_sender is not None,
        )

        self.clock = clock or utc_now
        self.events = AuthEventLogger(event_handlers)
        self.adapter = adapter or create_adapter(resolved.database)
        self._owns_adapter = adapter is None
        self._supplied_email_sender = email_sender
        self._supplied_rate_limiter = rate_limiter
        self._supplied_session_resolver = session_resolver
        self._retired_limiters: list[RateLimiter] = []

        self._services = self._build_services(resolved, previous=None)
        logger.info(
            "guardian_auth_configured",
            extra={
                "security_level": resolved.security.level,
                "rate_limit_strategy": resolved.security.rate_limiting.strategy,
                "email_verification": resolved.security.email_verification.enabled,
                "password_reset": resolved.security.password_reset.enabled,
            },
        )

    @property
    def config(self) -> GuardianAuthConfig:
        return self._services.config

    @property
    def provider(self) -> CredentialsProvider:
        return self._services.provider

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._services.rate_limiter

    @property
    def email_verification(self) -> EmailVerificationService | None:
        return self._services.email_verification

    @property
    def password_reset(self) -> PasswordResetService | None:
        return self._services.password_reset

    def _epoch_clock(self) -> float:
        return self.clock().timestamp()

    def _build_services(
        self, config: GuardianAuthConfig, previous: _Services | None
    ) -> _Services:
        security = config.security
        storage_timeout = security.storage_timeout_seconds

        if self._supplied_email_sender is not None:
            email_sender: EmailSender | None = self._supplied_email_sender
        elif previous is not None and previous.config.email_provider == config.email_provider:
            email_sender = previous.email_sender
        elif config.email_provider is not None:
            email_sender = create_email_sender(config.email_provider)
        else:
            email_sender = None

        if self._supplied_rate_limiter is not None:
            rate_limiter = self._supplied_rate_limiter
        elif (
            previous is not None
            and previous.config.security.rate_limiting == security.rate_limiting
        ):
            rate_limiter = previous.rate_limiter
        else:
            rate_limiter = create_rate_limiter(
                security.rate_limiting,
                clock=self._epoch_clock if self.clock is not utc_now else None,
            )

        provider = CredentialsProvider(
            self.adapter,
            security,
            config.credentials,
            clock=self.clock,
            storage_timeout=storage_timeout,
            events=self.events,
        )

        email_verification = None
        if security.email_verification.enabled and email_sender is not None:
            email_verification = EmailVerificationService(
                security.email_verification,
                self.adapter,
                email_sender,
                app_url=config.app_url,
                clock=self.clock,
                storage_timeout=storage_timeout,
                events=self.events,
            )

        password_reset = None
        if security.password_reset.enabled and email_sender is not None:
            password_reset = PasswordResetService(
                security.password_reset,
                self.adapter,
                email_sender,
                app_url=config.app_url,
                password_policy=security.password_policy,
                clock=self.clock,
                storage_timeout=storage_timeout,
                events=self.events,
            )

        session_resolver = self._supplied_session_resolver or AdapterSessionResolver(
            self.adapter,
            cookie_name=config.session.cookie_name,
            additional_user_fields=config.credentials.additional_user_fields,
            clock=self.clock,
            storage_timeout=storage_timeout,
        )

        credentials_enabled = config.credentials.enabled
        endpoints = build_endpoints(
            email_verification=email_verification,
            password_reset=password_reset,
            sign_in=self.sign_in if credentials_enabled else None,
            sign_out=self.sign_out if credentials_enabled else None,
            session_options=config.session,
        )

        chain = ChainComponents(
            config=config,
            rate_limiter=rate_limiter,
            session_resolver=session_resolver,
            endpoints=endpoints,
            key_generator=make_key_generator(
                parse_trusted_proxies(security.rate_limiting.trusted_proxies)
            ),
        )
        return _Services(
            config=config,
            email_sender=email_sender,
            rate_limiter=rate_limiter,
            provider=provider,
            email_verification=email_verification,
            password_reset=password_reset,
            chain=chain,
        )

    def update_config(self, overrides: Mapping[str, Any]) -> GuardianAuthConfig:
        """Merge ``overrides`` into the current config and swap it in.

        Raises:
            ConfigError: If the merged config is invalid, or tries to change
                the database of a running instance
        """
        current = self._services
        resolved = resolve_config(overrides, base=current.config)
        check_config(
            resolved,
            adapter_supplied=True,
            email_sender_supplied=self._supplied_email_sender is not None,
        )
        if resolved.database != current.config.database:
            raise ConfigError("The database configuration cannot change at runtime")

        services = self._build_services(resolved, previous=current)
        if services.rate_limiter is not current.rate_limiter:
            self._retired_limiters.append(current.rate_limiter)
        self._services = services
        logger.info("guardian_auth_config_updated", extra={"keys": sorted(overrides)})
        return resolved

    def _chain_components(self) -> ChainComponents:
        return self._services.chain

    def middleware(self, app: ASGIApp) -> ASGIApp:
        """Wrap ``app`` in the rate limit, session, route, endpoint and header stages."""
        return create_middleware(app, self._chain_components)

    async def create_user(
        self,
        email: str,
        password: str,
        name: str | None = None,
        role: str = "user",
        **extra: Any,
    ) -> RegistrationResult:
        """Register a credentials user.

        Validation failures and duplicates come back as an unsuccessful
        result. Storage faults are logged and reported generically.
        """
        services = self._services
        config = services.config
        if not config.credentials.allow_registration:
            return RegistrationResult(success=False, error=REGISTRATION_DISABLED)
        if not validate_email(email):
            return RegistrationResult(success=False, error=INVALID_EMAIL)

        policy_result = validate_password(password, config.security.password_policy)
        if not policy_result.success:
            await self.events.emit("registration", "rejected", email=email, reason="password_policy")
            return RegistrationResult(
                success=False, error=policy_result.message, messages=policy_result.messages
            )

        timeout = config.security.storage_timeout_seconds
        try:
            existing = await call_adapter(
                self.adapter.get_user_by_email(email),
                operation="get_user_by_email",
                timeout=timeout,
            )
            if existing is not None:
                await self.events.emit("registration", "rejected", email=email, reason="duplicate")
                return RegistrationResult(success=False, error=USER_ALREADY_EXISTS)

            password_hash = await asyncio.to_thread(hash_password, password)
            user = await call_adapter(
                self.adapter.create_user(
                    User(
                        email=email.strip(),
                        name=name,
                        role=role,
                        password_hash=password_hash,
                        extra=extra,
                    )
                ),
                operation="create_user",
                timeout=timeout,
            )
            await call_adapter(
                self.adapter.link_account(Account(user_id=user.id, provider_account_id=user.id)),
                operation="link_account",
                timeout=timeout,
            )
        except RegistrationError:
            # Lost a race with a concurrent registration of the same address.
            await self.events.emit("registration", "rejected", email=email, reason="duplicate")
            return RegistrationResult(success=False, error=USER_ALREADY_EXISTS)
        except StorageError:
            logger.exception("registration_storage_failed", extra={"email": email})
            await self.events.emit("registration", "error", email=email)
            return RegistrationResult(success=False, error=UNABLE_TO_CREATE_USER)

        await self.events.emit("registration", "success", email=email, user_id=user.id)

        verification = services.email_verification
        if verification is not None and config.security.email_verification.send_on_registration:
            try:
                await verification.initiate_email_verification(user.email)
            except (StorageError, EmailDeliveryError):
                # The account exists; the user can request another email.
                logger.exception("registration_verification_email_failed", extra={"email": email})

        return RegistrationResult(success=True, user=user)

    async def sign_in(self, email: str, password: str) -> SignInResult:
        """Authenticate and open a session.

        Raises:
            AuthenticationError: If the attempt is rejected
            StorageError: If the credential store fails
        """
        services = self._services
        if not services.config.credentials.enabled:
            raise ConfigError("The credentials provider is disabled")

        user = await services.provider.authorize(email, password)
        expires = self.clock() + timedelta(seconds=services.config.session.max_age_seconds)
        session = await call_adapter(
            self.adapter.create_session(
                Session(
                    session_token=generate_session_token(),
                    user_id=user["id"],
                    expires=expires,
                )
            ),
            operation="create_session",
            timeout=services.config.security.storage_timeout_seconds,
        )
        return SignInResult(session_token=session.session_token, expires=session.expires, user=user)

    async def sign_out(self, session_token: str) -> None:
        await call_adapter(
            self.adapter.delete_session(session_token),
            operation="delete_session",
            timeout=self._services.config.security.storage_timeout_seconds,
        )
        await self.events.emit("sign_out", "success")

    async def close(self) -> None:
        """Release backend connections owned by this instance."""
        limiters = [self._services.rate_limiter, *self._retired_limiters]
        if self._supplied_rate_limiter is None:
            for limiter in limiters:
                await limiter.close()
        self._retired_limiters.clear()
        if self._owns_adapter:
            await self.adapter.close()


__all__ = [
    "GuardianAuth",
    "USER_ALREADY_EXISTS",
    "UNABLE_TO_CREATE_USER",
    "INVALID_EMAIL",
    "REGISTRATION_DISABLED",
]
