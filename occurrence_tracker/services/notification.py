"""
Occurrence Tracker
Notification Service.

Central service for dispatching, querying and acknowledging notifications.

Dispatch writes one Notification row per recipient and then delivers it over
the recipient's resolved channel (email, SMS or both). Each recipient is
committed on its own: a failure for one recipient is rolled back and logged,
and dispatch moves on to the next one.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app

from occurrence_tracker.core.exceptions import NotFoundError, ValidationError
from occurrence_tracker.integrations.sms_gateway import mask_mobile_number, validate_mobile_number
from occurrence_tracker.models import db
from occurrence_tracker.models.notification import (
    CHANNEL_BOTH,
    CHANNEL_EMAIL,
    CHANNEL_MOBILE,
    NOTIFICATION_TYPES,
    DeliveryLog,
    Notification,
)
from occurrence_tracker.services.email_service import EmailService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    """A user paired with the channel the notification goes out on."""

    user: object
    channel: str = CHANNEL_EMAIL


def dedupe_recipients(recipients):
    """Keep the first entry per user id, preserving order."""
    seen = set()
    unique = []
    for r in recipients:
        if r.user.id in seen:
            continue
        seen.add(r.user.id)
        unique.append(r)
    return unique


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Dispatch ──────────────────────────────────────────────────────────

    @staticmethod
    def dispatch(recipients, *, title, message="", type="SYSTEM",
                 reference_ids=None, metadata=None, event_id=None):
        """
        Record and deliver a notification to every recipient.

        Recipients are de-duplicated by user id. When ``event_id`` is given,
        a user that already holds a notification for that event is skipped.
        The SMS body is the notification message.

        Raises:
            ValidationError: ``type`` is not a known notification type.

        Returns:
            List of Notification instances created by this call.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type: {type!r}",
                                  details={"type": f"must be one of {sorted(NOTIFICATION_TYPES)}"})

        created = []
        for recipient in dedupe_recipients(recipients):
            user = recipient.user
            if event_id and NotificationService._already_notified(event_id, user.id):
                logger.debug(
                    "Notification already recorded, skipping",
                    extra={"event_id": event_id, "user_id": user.id},
                )
                continue
            try:
                notif = Notification(
                    user_id=user.id,
                    title=title,
                    message=message,
                    type=type,
                    channel=recipient.channel,
                    reference_ids=list(reference_ids or []),
                    metadata_=dict(metadata or {}),
                    event_id=event_id,
                )
                db.session.add(notif)
                db.session.flush()
                NotificationService._deliver(notif, user, recipient.channel, message)
                db.session.commit()
                created.append(notif)
            except Exception:
                db.session.rollback()
                logger.warning(
                    "Notification dispatch failed for recipient",
                    exc_info=True,
                    extra={"event_id": event_id, "user_id": user.id, "channel": recipient.channel},
                )
        return created

    @staticmethod
    def _already_notified(event_id, user_id):
        return db.session.query(
            Notification.query.filter_by(event_id=event_id, user_id=user_id).exists()
        ).scalar()

    @staticmethod
    def _deliver(notif, user, channel, sms_text):
        if channel in (CHANNEL_EMAIL, CHANNEL_BOTH):
            if user.email:
                EmailService.send_notification_email(notif, user)
            else:
                logger.info("User has no email address, email skipped",
                            extra={"user_id": user.id, "channel": channel})
        if channel in (CHANNEL_MOBILE, CHANNEL_BOTH):
            NotificationService._deliver_sms(notif, user, sms_text)

    @staticmethod
    def _deliver_sms(notif, user, text):
        log = DeliveryLog(
            channel="sms",
            recipient=user.mobile_no or "",
            subject=notif.title,
            status="queued",
            notification_id=notif.id,
        )
        db.session.add(log)

        if not validate_mobile_number(user.mobile_no):
            log.status = "skipped"
            log.error_message = "Invalid or missing mobile number"
            logger.warning("SMS skipped: invalid mobile number %s", mask_mobile_number(user.mobile_no),
                           extra={"user_id": user.id, "channel": CHANNEL_MOBILE})
            return log

        gateway = current_app.extensions["sms_gateway"]
        result = gateway.send_sms(user.mobile_no, text)
        log.http_status_code = result.status_code
        if result.ok:
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
        else:
            log.status = "failed"
            log.error_message = (result.error or "")[:1000]
        return log

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.
        """
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read. Only the recipient may do this."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if not notif.read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a user as read."""
        now = datetime.now(timezone.utc)
        count = Notification.query.filter_by(user_id=user_id, read=False).update(
            {"read": True, "read_at": now}, synchronize_session="fetch",
        )
        db.session.commit()
        return count
