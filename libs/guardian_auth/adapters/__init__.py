"""Credential store adapters and the factory selecting one from config."""

from __future__ import annotations

from libs.guardian_auth.adapters.base import (
    Account,
    CredentialStoreAdapter,
    Session,
    TokenKind,
    TokenPurpose,
    User,
    VerificationToken,
    call_adapter,
)
from libs.guardian_auth.adapters.memory import InMemoryCredentialStore
from libs.guardian_auth.config import (
    DatabaseConfig,
    MemoryDatabaseConfig,
    PostgresDatabaseConfig,
)
from libs.guardian_auth.exceptions import ConfigError


def create_adapter(config: DatabaseConfig | None) -> CredentialStoreAdapter:
    """Build the credential store named by the config's ``type`` tag.

    Raises:
        ConfigError: If the config is missing or incomplete
    """
    match config:
        case MemoryDatabaseConfig():
            return InMemoryCredentialStore()
        case PostgresDatabaseConfig(dsn=None):
            raise ConfigError("Postgres database strategy requires a dsn")
        case PostgresDatabaseConfig(dsn=dsn, min_size=min_size, max_size=max_size):
            # Imported here so the memory backend works without a libpq install.
            from libs.guardian_auth.adapters.postgres import PostgresCredentialStore

            return PostgresCredentialStore.from_dsn(
                dsn.get_secret_value(), min_size=min_size, max_size=max_size
            )
        case None:
            raise ConfigError("A database configuration or adapter instance is required")
        case _:
            raise ConfigError(f"Unsupported database config: {type(config).__name__}")


__all__ = [
    "Account",
    "CredentialStoreAdapter",
    "DatabaseConfig",
    "InMemoryCredentialStore",
    "MemoryDatabaseConfig",
    "PostgresDatabaseConfig",
    "Session",
    "TokenKind",
    "TokenPurpose",
    "User",
    "VerificationToken",
    "call_adapter",
    "create_adapter",
]
