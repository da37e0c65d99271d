"""
Occurrence Tracker
Notification domain models.

Models:
    - Notification: in-app notification record with read tracking
    - NotificationPreference: per-user opt-in, channel and interest sets
    - DeliveryLog: outbound email / SMS audit trail
"""

import uuid
from datetime import datetime, timezone

from occurrence_tracker.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

CHANNEL_EMAIL = "EMAIL"
CHANNEL_MOBILE = "MOBILE"
CHANNEL_BOTH = "BOTH"
CHANNEL_TYPES = {CHANNEL_EMAIL, CHANNEL_MOBILE, CHANNEL_BOTH}

NOTIFICATION_TYPES = {
    "OCCURRENCE_CREATED",
    "REFERRAL",
    "OCCURRENCE_UPDATED",
    "ACTION_COMPLETED",
    "OCCURRENCE_RESOLVED",
    "SYSTEM",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event; (event_id, user_id) is unique so a
    redelivered event does not notify twice. Only the read flag is ever updated.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.UniqueConstraint("event_id", "user_id", name="uq_notification_event_user"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(30), default="SYSTEM")
    channel = db.Column(db.String(10), default=CHANNEL_EMAIL,
                        comment="Channel actually used: EMAIL | MOBILE | BOTH")

    reference_ids = db.Column(db.JSON, default=list, comment="Referenced entity IDs (occurrences)")
    metadata_ = db.Column("metadata", db.JSON, default=dict)
    event_id = db.Column(db.String(36), nullable=True, index=True,
                         comment="Lifecycle event that produced this notification")

    read = db.Column(db.Boolean, default=False, index=True)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    user = db.relationship("User")

    def mark_read(self):
        self.read = True
        self.read_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "channel": self.channel,
            "reference_ids": self.reference_ids or [],
            "metadata": self.metadata_ or {},
            "event_id": self.event_id,
            "read": self.read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id[:8]}: {self.title[:40]}>"


class NotificationPreference(db.Model):
    """
    Per-user notification preference.

    Interest sets are opt-in: an empty incident set or severity set matches
    nothing on that axis.
    """

    __tablename__ = "notification_preferences"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )
    enabled = db.Column(db.Boolean, default=False)
    channel = db.Column(db.String(10), default=CHANNEL_EMAIL,
                        comment="Delivery channel: EMAIL, MOBILE, BOTH")
    incident_ids = db.Column(db.JSON, default=list, comment="Top-level incident category IDs of interest")
    severity_ids = db.Column(db.JSON, default=list, comment="Severity IDs of interest")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = db.relationship("User", back_populates="notification_preference")

    def matches(self, incident_id, severity_id):
        """True if the preference subscribes to the incident or the severity."""
        if not self.enabled:
            return False
        incidents = self.incident_ids or []
        severities = self.severity_ids or []
        return (incident_id is not None and incident_id in incidents) or \
            (severity_id is not None and severity_id in severities)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "enabled": self.enabled,
            "channel": self.channel,
            "incident_ids": self.incident_ids or [],
            "severity_ids": self.severity_ids or [],
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<NotificationPreference {self.user_id}={self.channel} enabled={self.enabled}>"


class DeliveryLog(db.Model):
    """
    Outbound delivery audit log.

    Every email or SMS attempt made for a notification is logged here.
    """

    __tablename__ = "delivery_logs"

    id = db.Column(db.Integer, primary_key=True)
    channel = db.Column(db.String(10), nullable=False, comment="email | sms")
    recipient = db.Column(db.String(255), nullable=False, index=True,
                          comment="Email address or international mobile number")
    subject = db.Column(db.String(500), nullable=True)
    template_name = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), default="queued",
                       comment="queued, sent, failed, skipped")
    error_message = db.Column(db.Text, nullable=True)
    http_status_code = db.Column(db.Integer, nullable=True)

    notification_id = db.Column(
        db.String(36), db.ForeignKey("notifications.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "channel": self.channel,
            "recipient": self.recipient,
            "subject": self.subject,
            "template_name": self.template_name,
            "status": self.status,
            "error_message": self.error_message,
            "http_status_code": self.http_status_code,
            "notification_id": self.notification_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DeliveryLog {self.id}: {self.channel} → {self.recipient} [{self.status}]>"
