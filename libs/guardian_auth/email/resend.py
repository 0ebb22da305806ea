"""Resend email API sender."""

from __future__ import annotations

from typing import Any

from libs.guardian_auth.email.base import EmailOptions
from libs.guardian_auth.email.http_api import HttpApiEmailSender
from libs.guardian_auth.email.templates import render_html, render_text


class ResendEmailSender(HttpApiEmailSender):
    provider = "resend"
    endpoint = "https://api.resend.com/emails"

    def build_payload(self, options: EmailOptions) -> dict[str, Any]:
        return {
            "from": self.from_email,
            "to": [options.to],
            "subject": options.subject,
            "html": render_html(options),
            "text": render_text(options),
        }


__all__ = ["ResendEmailSender"]
