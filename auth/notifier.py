"""
auth/notifier.py -- One-time code delivery by email.

The auth core depends only on the Notifier protocol:
    send(to_email, username, code, kind) -> None, raises NotifierError

SmtpNotifier is the production implementation: jinja2 renders one of two
HTML templates (verification, password reset) and smtplib delivers it over
STARTTLS. Tests substitute a recording fake.

Whether a failed send fails the calling operation is not decided here. Each
auth operation declares a NotifyPolicy and AuthService applies it.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from jinja2 import Environment, select_autoescape

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("peoplehub.auth.notifier")


class TemplateKind(str, Enum):
    VERIFICATION = "verification"
    PASSWORD_RESET = "passwordReset"


class NotifyPolicy(str, Enum):
    """How an operation treats the delivery call.

    FIRE_AND_FORGET -- dispatched off the request path; failure is logged.
    BLOCKING        -- awaited inline; the operation decides what a failure means.
    """

    FIRE_AND_FORGET = "fire_and_forget"
    BLOCKING = "blocking"


class NotifierError(Exception):
    """Delivery failed (transport down, auth rejected, not configured)."""


class Notifier(Protocol):
    def send(self, to_email: str, username: str, code: str, kind: TemplateKind) -> None: ...


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))

_TEMPLATES: dict[TemplateKind, tuple[str, str]] = {
    TemplateKind.VERIFICATION: (
        "Verify Your Email Address",
        """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #333;">Welcome {{ username }}!</h2>
  <p>Thank you for signing up. Please verify your email address to complete your registration.</p>
  <div style="background-color: #f5f5f5; padding: 20px; border-radius: 5px; text-align: center; margin: 20px 0;">
    <h3 style="color: #333; margin: 0;">Your Verification Code:</h3>
    <h1 style="color: #007bff; font-size: 32px; margin: 10px 0; letter-spacing: 5px;">{{ code }}</h1>
  </div>
  <p>This code will expire in {{ ttl_label }}.</p>
  <p>If you didn't create this account, please ignore this email.</p>
  <hr style="border: none; border-top: 1px solid #eee; margin: 30px 0;">
  <p style="color: #666; font-size: 12px;">This is an automated email. Please do not reply.</p>
</div>
""",
    ),
    TemplateKind.PASSWORD_RESET: (
        "Password Reset Request",
        """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #333;">Password Reset Request</h2>
  <p>Hello {{ username }},</p>
  <p>You requested to reset your password. Use the code below to reset your password:</p>
  <div style="background-color: #f5f5f5; padding: 20px; border-radius: 5px; text-align: center; margin: 20px 0;">
    <h3 style="color: #333; margin: 0;">Your Reset Code:</h3>
    <h1 style="color: #dc3545; font-size: 32px; margin: 10px 0; letter-spacing: 5px;">{{ code }}</h1>
  </div>
  <p><strong>This code will expire in {{ ttl_label }}.</strong></p>
  <p>If you didn't request this password reset, please ignore this email and your password will remain unchanged.</p>
  <hr style="border: none; border-top: 1px solid #eee; margin: 30px 0;">
  <p style="color: #666; font-size: 12px;">This is an automated email. Please do not reply.</p>
</div>
""",
    ),
}


def _ttl_label(seconds: int) -> str:
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return "1 hour" if hours == 1 else f"{hours} hours"
    minutes = max(seconds // 60, 1)
    return f"{minutes} minutes"


def render_message(kind: TemplateKind, username: str, code: str, ttl_seconds: int) -> tuple[str, str]:
    """Return (subject, html_body) for the given template kind.

    username is user-controlled; autoescaping keeps it from injecting markup.
    """
    subject, source = _TEMPLATES[TemplateKind(kind)]
    html = _env.from_string(source).render(username=username, code=code, ttl_label=_ttl_label(ttl_seconds))
    return subject, html


# ---------------------------------------------------------------------------
# SMTP implementation
# ---------------------------------------------------------------------------


class SmtpNotifier:
    """Sends code emails through an SMTP relay configured in Settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._ttls = {
            TemplateKind.VERIFICATION: settings.verification_code_ttl_seconds,
            TemplateKind.PASSWORD_RESET: settings.reset_code_ttl_seconds,
        }

    def send(self, to_email: str, username: str, code: str, kind: TemplateKind) -> None:
        s = self._settings
        if not s.smtp_host:
            raise NotifierError("SMTP is not configured (SMTP_HOST is empty).")

        kind = TemplateKind(kind)
        subject, html = render_message(kind, username, code, self._ttls[kind])
        sender = s.mail_from or s.smtp_username

        message = MIMEMultipart()
        message["From"] = formataddr((s.mail_sender_name, sender))
        message["To"] = to_email
        message["Subject"] = subject
        message.attach(MIMEText(html, "html"))

        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as server:
                server.starttls()
                if s.smtp_username:
                    server.login(s.smtp_username, s.smtp_password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotifierError(f"Failed to send {kind.value} email: {exc}") from exc
        logger.info("Sent %s email to %s", kind.value, to_email)
