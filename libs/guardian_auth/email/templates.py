"""HTML and plain-text bodies for each email kind.

Dots in the host are separated by a zero-width space in the HTML body so mail
clients do not auto-link it. The recipient address is never rendered.
"""

from __future__ import annotations

from html import escape

from libs.guardian_auth.email.base import EmailKind, EmailOptions

BRAND_COLOR = "#346df1"
BUTTON_TEXT_COLOR = "#fff"
TEXT_COLOR = "#444"
FOOTER = "If you did not request this email you can safely ignore it."

_FONT = "font-family: Helvetica, Arial, sans-serif;"


def _button(url: str, label: str) -> str:
    return f"""
    <tr>
      <td align="center" style="padding: 20px 0;">
        <a href="{escape(url)}" target="_blank"
           style="font-size: 18px; {_FONT} color: {BUTTON_TEXT_COLOR}; background: {BRAND_COLOR};
                  text-decoration: none; border-radius: 5px; padding: 10px 20px;
                  border: 1px solid {BRAND_COLOR}; display: inline-block; font-weight: bold;">
          {escape(label)}
        </a>
      </td>
    </tr>"""


def _paragraph(content: str) -> str:
    return f"""
    <tr>
      <td align="center" style="padding: 20px 0; font-size: 18px; {_FONT} color: {TEXT_COLOR};">
        {content}
      </td>
    </tr>"""


def _require(value: str | None, field: str, kind: EmailKind) -> str:
    if not value:
        raise ValueError(f"{kind.value} email requires {field}")
    return value


def render_html(options: EmailOptions) -> str:
    """Render the HTML body.

    Raises:
        ValueError: If a field the kind needs (url, otp, custom_content) is missing
    """
    kind = options.kind
    match kind:
        case EmailKind.MAGIC_LINK:
            content = _button(_require(options.url, "url", kind), "Sign in")
        case EmailKind.PASSWORD_RESET:
            content = _button(_require(options.url, "url", kind), "Reset Password")
        case EmailKind.OTP:
            otp = escape(_require(options.otp, "otp", kind))
            content = _paragraph(f"Your one-time password (OTP) is: <strong>{otp}</strong>")
            if options.url:
                content += _button(options.url, "Verify email")
        case EmailKind.TWO_FACTOR:
            otp = escape(_require(options.otp, "otp", kind))
            content = _paragraph(
                f"Your two-factor authentication code is: <strong>{otp}</strong>"
            )
        case EmailKind.CUSTOM:
            content = _paragraph(
                f"<p>{escape(_require(options.custom_content, 'custom_content', kind))}</p>"
            )

    host = escape(options.display_host).replace(".", "&#8203;.")
    heading = "Reset your password for" if kind is EmailKind.PASSWORD_RESET else "Sign in to"
    return f"""
<body style="background: #f9f9f9;">
  <table width="100%" border="0" cellspacing="20" cellpadding="0"
    style="background: #fff; max-width: 600px; margin: auto; border-radius: 10px;">
    <tr>
      <td align="center" style="padding: 10px 0px; font-size: 22px; {_FONT} color: {TEXT_COLOR};">
        {heading} <strong>{host}</strong>
      </td>
    </tr>{content}
    <tr>
      <td align="center"
        style="padding: 0px 0px 10px 0px; font-size: 16px; line-height: 22px; {_FONT} color: {TEXT_COLOR};">
        {FOOTER}
      </td>
    </tr>
  </table>
</body>
"""


def render_text(options: EmailOptions) -> str:
    """Plain-text fallback for clients that do not render HTML."""
    kind = options.kind
    host = options.display_host
    match kind:
        case EmailKind.MAGIC_LINK:
            body = f"Sign in to {host}\n{_require(options.url, 'url', kind)}\n"
        case EmailKind.PASSWORD_RESET:
            body = f"Reset your password for {host}\n{_require(options.url, 'url', kind)}\n"
        case EmailKind.OTP:
            body = f"Your one-time password (OTP) for {host} is: {_require(options.otp, 'otp', kind)}\n"
            if options.url:
                body += f"{options.url}\n"
        case EmailKind.TWO_FACTOR:
            body = (
                f"Your two-factor authentication code for {host} is: "
                f"{_require(options.otp, 'otp', kind)}\n"
            )
        case EmailKind.CUSTOM:
            body = f"{_require(options.custom_content, 'custom_content', kind)}\n"
    return f"{body}\n{FOOTER}\n"


__all__ = ["render_html", "render_text", "FOOTER"]
