"""
QA Track
Email Service: verification mail delivery.

When SMTP is not configured, emails are logged but not sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)


_TEMPLATES: dict[str, dict[str, str]] = {
    "verify_email": {
        "subject": "[QA Track] Confirma tu correo electrónico",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #1e293b;">Hola {full_name},</h2>
            <p style="color: #64748b; line-height: 1.6;">
                Confirma tu dirección de correo para activar tu cuenta.
            </p>
            <p><a href="{verify_url}">Verificar correo</a></p>
        </div>
        """,
    },
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @classmethod
    def send(cls, *, to_email: str, to_name: str | None = None,
             subject: str, html_body: str) -> bool:
        """
        Send an email. Returns True when delivered (or logged in dev mode).

        SMTP failures are logged and reported as False; callers decide
        whether the flow can continue without the mail.
        """
        if not cls.is_configured():
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
            return True

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email failed: to=%s error=%s", to_email, exc)
            return False
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return True

    @classmethod
    def send_from_template(cls, *, to_email: str, to_name: str | None = None,
                           template_name: str, context: dict[str, Any]) -> bool:
        """Send an email using a named template; placeholders come from ``context``."""
        template = _TEMPLATES.get(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return False

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=template["subject"].format_map(_SafeDict(context)),
            html_body=template["html"].format_map(_SafeDict(context)),
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


def send_verification_email(email: str, full_name: str | None, token: str) -> bool:
    """Send the confirmation link for a freshly signed-up identity."""
    base = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    verify_url = f"{base}/auth/verify-email?token={token}"
    logger.debug("Verification link for %s: %s", email, verify_url)
    return EmailService.send_from_template(
        to_email=email,
        to_name=full_name,
        template_name="verify_email",
        context={"full_name": full_name or email, "verify_url": verify_url},
    )


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
