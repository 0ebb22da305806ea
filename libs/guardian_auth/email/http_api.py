"""Shared transport for JSON-over-HTTPS email APIs (httpx)."""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any

import httpx

from libs.guardian_auth.email.base import EmailOptions, EmailSender
from libs.guardian_auth.exceptions import EmailDeliveryError

logger = logging.getLogger(__name__)


class HttpApiEmailSender(EmailSender):
    """Posts one JSON payload per email; subclasses build the payload."""

    endpoint: str
    success_statuses: frozenset[int] = frozenset({200, 201, 202})

    def __init__(
        self,
        *,
        api_key: str,
        from_email: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout
        self._client = client

    @abstractmethod
    def build_payload(self, options: EmailOptions) -> dict[str, Any]:
        ...

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self._client is not None:
            return await self._client.post(self.endpoint, headers=headers, json=payload)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.endpoint, headers=headers, json=payload)

    async def send(self, options: EmailOptions) -> None:
        payload = self.build_payload(options)
        recipient = options.to

        try:
            response = await self._post(payload)
        except httpx.TimeoutException as exc:
            logger.error(
                "email_api_timeout", extra={"recipient": recipient, "provider": self.provider}
            )
            raise EmailDeliveryError(f"{self.provider} timeout", retryable=True) from exc
        except httpx.RequestError as exc:
            logger.error(
                "email_api_connection_error",
                extra={"recipient": recipient, "provider": self.provider},
            )
            raise EmailDeliveryError(
                f"{self.provider} connection error: {type(exc).__name__}", retryable=True
            ) from exc

        if response.status_code not in self.success_statuses:
            retryable = response.status_code == 429 or response.status_code >= 500
            logger.error(
                "email_api_failed",
                extra={
                    "recipient": recipient,
                    "provider": self.provider,
                    "status": response.status_code,
                    "retryable": retryable,
                },
            )
            raise EmailDeliveryError(
                f"{self.provider} HTTP {response.status_code}", retryable=retryable
            )

        logger.info(
            "email_sent",
            extra={
                "recipient": recipient,
                "provider": self.provider,
                "kind": options.kind.value,
                "status": response.status_code,
            },
        )


__all__ = ["HttpApiEmailSender"]
