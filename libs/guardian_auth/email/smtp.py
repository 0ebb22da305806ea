"""SMTP email sender (aiosmtplib)."""

from __future__ import annotations

import logging
from email.message import EmailMessage
from email.utils import make_msgid

import aiosmtplib

from libs.common.logging.pii import mask_email
from libs.guardian_auth.email.base import EmailOptions, EmailSender
from libs.guardian_auth.email.templates import render_html, render_text
from libs.guardian_auth.exceptions import EmailDeliveryError

logger = logging.getLogger(__name__)


class SmtpEmailSender(EmailSender):
    provider = "smtp"

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        from_email: str,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.timeout = timeout

    def _sanitize_error(self, message: str, recipient: str) -> str:
        return (message or "").replace(recipient, mask_email(recipient))

    def build_message(self, options: EmailOptions) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.from_email
        message["To"] = options.to
        message["Subject"] = options.subject
        message["Message-ID"] = make_msgid()
        message.set_content(render_text(options))
        message.add_alternative(render_html(options), subtype="html")
        return message

    async def send(self, options: EmailOptions) -> None:
        message = self.build_message(options)
        recipient = options.to

        try:
            # Port 587 uses STARTTLS, port 465 uses implicit TLS
            async with aiosmtplib.SMTP(
                hostname=self.host,
                port=self.port,
                timeout=self.timeout,
                use_tls=self.port == 465,
                start_tls=self.port == 587,
            ) as smtp:
                if self.username and self.password:
                    await smtp.login(self.username, self.password)
                await smtp.send_message(message)

        except aiosmtplib.SMTPAuthenticationError as exc:
            logger.error("email_smtp_auth_error", extra={"recipient": recipient})
            raise EmailDeliveryError(
                self._sanitize_error(str(exc), recipient), retryable=False
            ) from exc

        except (aiosmtplib.SMTPConnectError, aiosmtplib.SMTPServerDisconnected, TimeoutError) as exc:
            logger.error("email_smtp_connection_error", extra={"recipient": recipient})
            raise EmailDeliveryError(
                self._sanitize_error(str(exc), recipient), retryable=True
            ) from exc

        except (aiosmtplib.SMTPRecipientsRefused, aiosmtplib.SMTPSenderRefused) as exc:
            logger.error("email_smtp_refused", extra={"recipient": recipient})
            raise EmailDeliveryError(
                self._sanitize_error(str(exc), recipient), retryable=False
            ) from exc

        except aiosmtplib.SMTPResponseException as exc:
            # SMTP: 4xx is transient, 5xx permanent
            retryable = 400 <= exc.code < 500
            logger.error(
                "email_smtp_response_error",
                extra={"recipient": recipient, "status": exc.code, "retryable": retryable},
            )
            raise EmailDeliveryError(
                self._sanitize_error(str(exc), recipient), retryable=retryable
            ) from exc

        except aiosmtplib.SMTPException as exc:
            logger.error("email_smtp_error", extra={"recipient": recipient})
            raise EmailDeliveryError(
                self._sanitize_error(str(exc), recipient), retryable=True
            ) from exc

        logger.info(
            "email_sent",
            extra={
                "recipient": recipient,
                "provider": self.provider,
                "kind": options.kind.value,
                "message_id": message["Message-ID"],
            },
        )


__all__ = ["SmtpEmailSender"]
