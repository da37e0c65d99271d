"""
Occurrence Tracker
Email Service.

Renders the occurrence notification email and hands it to SMTP. Every
attempt is written to DeliveryLog (channel "email") so delivery can be
audited next to the in-app Notification row.

Without MAIL_SERVER the service runs in log-only mode: the DeliveryLog is
marked sent and nothing leaves the process (development and tests).

Configuration (env vars):
    MAIL_SERVER          SMTP host (unset = log-only mode)
    MAIL_PORT            SMTP port (default 587)
    MAIL_USE_TLS         STARTTLS after connect (default true)
    MAIL_USERNAME        SMTP username
    MAIL_PASSWORD        SMTP password
    MAIL_DEFAULT_SENDER  From address
    APP_BASE_URL         Prefix for the "Open occurrence" link
"""

from __future__ import annotations

import html
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from occurrence_tracker.models import db
from occurrence_tracker.models.notification import DeliveryLog

logger = logging.getLogger(__name__)


# ── Templates ────────────────────────────────────────────────────────────────
# Placeholders are filled with str.format_map; unknown keys are left as-is.
# HTML placeholders take escaped text, plain_* placeholders take it raw.

_TEMPLATES: dict[str, dict[str, str]] = {
    "occurrence_notification": {
        "subject": "[Occurrence Tracker] {plain_title}",
        "text": (
            "{type_label}\n"
            "\n"
            "{plain_title}\n"
            "{plain_message}\n"
            "{plain_detail}"
            "{plain_link}"
            "\n"
            "-- \n"
            "You receive this because of your occurrence notification settings.\n"
        ),
        "html": """
        <table role="presentation" width="100%" cellpadding="0" cellspacing="0"
               style="font-family: Arial, sans-serif; max-width: 560px; margin: 0 auto;">
          <tr>
            <td style="border-top: 4px solid {accent}; padding: 20px 24px 8px;">
              <span style="color: {accent}; font-size: 12px; font-weight: bold; letter-spacing: .05em;">
                {type_label}
              </span>
              <h3 style="margin: 8px 0; color: #111827;">{title}</h3>
              <p style="margin: 0 0 12px; color: #374151; line-height: 1.5;">{message}</p>
              {detail}
              {occurrence_link}
            </td>
          </tr>
          <tr>
            <td style="padding: 12px 24px; color: #9ca3af; font-size: 11px; border-top: 1px solid #e5e7eb;">
              You receive this because of your occurrence notification settings.
            </td>
          </tr>
        </table>
        """,
    },
}

# notification type -> (label, accent colour)
TYPE_STYLES = {
    "OCCURRENCE_CREATED": ("New occurrence", "#dc2626"),
    "REFERRAL": ("Referral", "#2563eb"),
    "OCCURRENCE_UPDATED": ("New message", "#0891b2"),
    "ACTION_COMPLETED": ("Department response", "#16a34a"),
    "OCCURRENCE_RESOLVED": ("Resolved", "#4b5563"),
    "SYSTEM": ("System", "#6b7280"),
}


class EmailService:
    """Stateless email sender; every call leaves a DeliveryLog row behind."""

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        text_body: str | None = None,
        template_name: str | None = None,
        notification_id: str | None = None,
    ) -> DeliveryLog:
        """
        Deliver one email and record the outcome.

        SMTP and socket errors are not raised; the returned DeliveryLog has
        status "failed" and the error text. The log is flushed, not committed:
        the caller's transaction decides whether it is kept.
        """
        log = DeliveryLog(
            channel="email",
            recipient=to_email,
            subject=subject,
            template_name=template_name,
            status="queued",
            notification_id=notification_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email (log-only): to=%s subject=%r", to_email, subject,
                        extra={"channel": "email", "status": log.status})
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject,
                           html_body=html_body, text_body=text_body)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc,
                         extra={"channel": "email", "status": log.status})
        else:
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject=%r", to_email, subject,
                        extra={"channel": "email", "status": log.status})
        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        notification_id: str | None = None,
    ) -> DeliveryLog | None:
        """Render ``template_name`` with ``context`` and send it.

        Returns None (and sends nothing) for an unknown template.
        """
        template = cls.get_template(template_name)
        if template is None:
            logger.warning("Email template not found: %s", template_name)
            return None

        values = _SafeDict(context)
        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=template["subject"].format_map(values),
            html_body=template["html"].format_map(values),
            text_body=template["text"].format_map(values) if "text" in template else None,
            template_name=template_name,
            notification_id=notification_id,
        )

    @classmethod
    def send_notification_email(cls, notification, user) -> DeliveryLog | None:
        """Email ``user`` the content of a Notification row."""
        meta = notification.metadata_ or {}
        label, accent = TYPE_STYLES.get(notification.type, (notification.type, "#6b7280"))

        detail = plain_detail = ""
        if meta.get("messageSnippet"):
            snippet = meta["messageSnippet"]
            detail = (f'<blockquote style="margin: 0 0 12px; padding-left: 12px; '
                      f'border-left: 3px solid #e5e7eb; color: #4b5563;">{html.escape(snippet)}</blockquote>')
            plain_detail = f"\n> {snippet}\n"
        elif meta.get("rootCause"):
            root_cause = meta["rootCause"]
            detail = (f'<p style="margin: 0 0 12px; color: #4b5563;">'
                      f'<strong>Root cause:</strong> {html.escape(root_cause)}</p>')
            plain_detail = f"\nRoot cause: {root_cause}\n"

        link = plain_link = ""
        base_url = current_app.config.get("APP_BASE_URL")
        refs = notification.reference_ids or []
        if base_url and len(refs) == 1:
            url = f"{base_url.rstrip('/')}/occurrences/{refs[0]}"
            link = f'<a href="{html.escape(url)}" style="color: {accent};">Open occurrence</a>'
            plain_link = f"\nOpen occurrence: {url}\n"

        return cls.send_from_template(
            to_email=user.email,
            to_name=user.name,
            template_name="occurrence_notification",
            context={
                "title": html.escape(notification.title),
                "plain_title": notification.title,
                "message": html.escape(notification.message or ""),
                "plain_message": notification.message or "",
                "type_label": label,
                "accent": accent,
                "detail": detail,
                "plain_detail": plain_detail,
                "occurrence_link": link,
                "plain_link": plain_link,
            },
            notification_id=notification.id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None, subject: str,
                   html_body: str, text_body: str | None = None) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = cfg.get("MAIL_DEFAULT_SENDER") or f"noreply@{server}"
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP(server, cfg.get("MAIL_PORT", 587), timeout=30) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            username, password = cfg.get("MAIL_USERNAME"), cfg.get("MAIL_PASSWORD")
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """format_map mapping that leaves unknown {placeholders} untouched."""

    def __missing__(self, key):
        return f"{{{key}}}"
