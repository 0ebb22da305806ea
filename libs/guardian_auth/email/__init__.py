"""Email senders and the factory selecting one from config."""

from __future__ import annotations

from libs.guardian_auth.config import (
    EmailProviderConfig,
    ResendProviderConfig,
    SendGridProviderConfig,
    SmtpProviderConfig,
)
from libs.guardian_auth.email.base import EmailKind, EmailOptions, EmailSender
from libs.guardian_auth.email.resend import ResendEmailSender
from libs.guardian_auth.email.sendgrid import SendGridEmailSender
from libs.guardian_auth.email.smtp import SmtpEmailSender
from libs.guardian_auth.email.templates import render_html, render_text
from libs.guardian_auth.exceptions import ConfigError


def create_email_sender(config: EmailProviderConfig) -> EmailSender:
    """Build the sender named by the config's ``type`` tag.

    Raises:
        ConfigError: If a required host, api key or sender address is missing
    """
    match config:
        case SmtpProviderConfig():
            if not config.host:
                raise ConfigError("SMTP email provider requires a host")
            from_email = config.from_email or config.username
            if not from_email:
                raise ConfigError("SMTP email provider requires from_email")
            return SmtpEmailSender(
                host=config.host,
                port=config.port,
                username=config.username,
                password=config.password.get_secret_value() if config.password else None,
                from_email=from_email,
                timeout=config.timeout_seconds,
            )
        case SendGridProviderConfig() | ResendProviderConfig():
            if config.api_key is None or not config.api_key.get_secret_value():
                raise ConfigError(f"{config.type} email provider requires an api_key")
            if not config.from_email:
                raise ConfigError(f"{config.type} email provider requires from_email")
            sender_class = (
                SendGridEmailSender
                if isinstance(config, SendGridProviderConfig)
                else ResendEmailSender
            )
            return sender_class(
                api_key=config.api_key.get_secret_value(),
                from_email=config.from_email,
                timeout=config.timeout_seconds,
            )
        case _:
            raise ConfigError(f"Unsupported email provider config: {type(config).__name__}")


__all__ = [
    "EmailKind",
    "EmailOptions",
    "EmailProviderConfig",
    "EmailSender",
    "ResendEmailSender",
    "SendGridEmailSender",
    "SmtpEmailSender",
    "create_email_sender",
    "render_html",
    "render_text",
]
