"""
Precast Kanban backend
Email Service.

Sends templated transactional email for notification intents.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address

Every attempt is recorded in EmailLog.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from precast.models import db
from precast.models.notification import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_TEMPLATES: dict[str, dict[str, str]] = {
    "activity_notification": {
        "subject": "[Precast] {title}",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <div style="background: #334155; color: white; padding: 16px 24px;">
                <h2 style="margin: 0; font-size: 18px;">Precast Production</h2>
            </div>
            <div style="padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
                <p>Hello {recipient_name},</p>
                <h3 style="margin: 16px 0 8px;">{title}</h3>
                <p style="line-height: 1.6;">{body}</p>
                <p><a href="{action_url}">Open in Precast</a></p>
            </div>
        </div>
        """,
    },
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    recorded with status='logged' and not delivered.
    """

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        template_name: str,
        context: dict[str, Any],
        to_name: str | None = None,
        recipient_user_id: int | None = None,
    ) -> EmailLog | None:
        """
        Render a named template and send it.

        The EmailLog row is committed here; the caller runs after the
        transition transaction has already been committed.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        subject = template["subject"].format_map(_SafeDict(context))
        html_body = template["html"].format_map(_SafeDict(context))

        log = EmailLog(
            recipient_email=to_email,
            recipient_user_id=recipient_user_id,
            subject=subject[:500],
            template_name=template_name,
            status="logged",
        )
        db.session.add(log)

        if not cls.is_configured():
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
            db.session.commit()
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject, html_body=html_body)
            log.status = "sent"
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.warning("Email failed: to=%s error=%s", to_email, exc)
        db.session.commit()
        return log

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None, subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        sender = cfg.get("MAIL_DEFAULT_SENDER") or f"noreply@{server}"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            if cfg.get("MAIL_USERNAME") and cfg.get("MAIL_PASSWORD"):
                smtp.login(cfg["MAIL_USERNAME"], cfg["MAIL_PASSWORD"])
            smtp.send_message(msg)


class _SafeDict(dict):
    """Leaves unknown ``{key}`` placeholders in place."""

    def __missing__(self, key):
        return f"{{{key}}}"
