"""SendGrid v3 mail API sender."""

from __future__ import annotations

from typing import Any

from libs.guardian_auth.email.base import EmailOptions
from libs.guardian_auth.email.http_api import HttpApiEmailSender
from libs.guardian_auth.email.templates import render_html, render_text


class SendGridEmailSender(HttpApiEmailSender):
    provider = "sendgrid"
    endpoint = "https://api.sendgrid.com/v3/mail/send"
    success_statuses = frozenset({202})

    def build_payload(self, options: EmailOptions) -> dict[str, Any]:
        return {
            "personalizations": [{"to": [{"email": options.to}]}],
            "from": {"email": self.from_email},
            "subject": options.subject,
            "content": [
                {"type": "text/plain", "value": render_text(options)},
                {"type": "text/html", "value": render_html(options)},
            ],
        }


__all__ = ["SendGridEmailSender"]
