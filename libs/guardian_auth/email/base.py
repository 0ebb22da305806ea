"""Email sender contract.

Senders perform network I/O only. They do not retry; a failure raises
``EmailDeliveryError`` with ``retryable`` set for transient transport errors
so the caller can decide.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlparse


class EmailKind(StrEnum):
    MAGIC_LINK = "magic_link"
    OTP = "otp"
    PASSWORD_RESET = "password_reset"
    TWO_FACTOR = "two_factor"
    CUSTOM = "custom"


@dataclass(frozen=True)
class EmailOptions:
    to: str
    subject: str
    kind: EmailKind
    otp: str | None = None
    url: str | None = None
    custom_content: str | None = None
    host: str | None = None

    @property
    def display_host(self) -> str:
        """Host shown in the message body: explicit host, else the link's host."""
        if self.host:
            return self.host
        if self.url:
            return urlparse(self.url).netloc
        return ""


class EmailSender(ABC):
    """Delivers one rendered email per ``send`` call."""

    provider: str

    @abstractmethod
    async def send(self, options: EmailOptions) -> None:
        """Send the email.

        Raises:
            EmailDeliveryError: If the transport rejects or drops the message
        """
        raise NotImplementedError


__all__ = ["EmailKind", "EmailOptions", "EmailSender"]
