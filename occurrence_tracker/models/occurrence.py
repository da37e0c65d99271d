"""
Occurrence Tracker
Occurrence domain models.

Models:
    - Occurrence: the reported case tracked through department review
    - OccurrenceAssignment: referral of one occurrence to one department
    - OccurrenceMessage: thread message posted on an occurrence
    - FeedbackToken: single-use link for outside feedback on an assignment

Status lifecycle:
    OPEN → ASSIGNED → ANSWERED_PARTIALLY → ANSWERED → CLOSED

Status is derived from assignment state by
``occurrence_tracker.services.status_resolver``; only the administrative
resolve action writes CLOSED directly.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from occurrence_tracker.models import db


__all__ = [
    "OccurrenceStatus",
    "TERMINAL_STATUSES",
    "Occurrence",
    "OccurrenceAssignment",
    "OccurrenceMessage",
    "FeedbackToken",
]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

class OccurrenceStatus(str, Enum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    ANSWERED = "ANSWERED"
    ANSWERED_PARTIALLY = "ANSWERED_PARTIALLY"
    CLOSED = "CLOSED"


TERMINAL_STATUSES = {OccurrenceStatus.CLOSED.value}


# ═════════════════════════════════════════════════════════════════════════════
# Occurrence
# ═════════════════════════════════════════════════════════════════════════════

class Occurrence(db.Model):
    """
    Reported workplace-violence / aggression occurrence.

    occurrence_no format: OCC{yy}-{seq:04d}, sequence resets every year.
    created_by_id is NULL for anonymous reports.
    """

    __tablename__ = "occurrences"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    occurrence_no = db.Column(db.String(20), unique=True, nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    mrn = db.Column(db.String(10), nullable=True, comment="Medical record number")
    occurrence_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(
        db.String(30), nullable=False, default=OccurrenceStatus.OPEN.value, index=True,
        comment="OPEN | ASSIGNED | ANSWERED | ANSWERED_PARTIALLY | CLOSED",
    )

    incident_id = db.Column(
        db.String(36), db.ForeignKey("incidents.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    location_id = db.Column(
        db.String(36), db.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    created_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    updated_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True,
                            comment="Last referral round")
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    incident = db.relationship("Incident")
    location = db.relationship("Location")
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    updated_by = db.relationship("User", foreign_keys=[updated_by_id])
    assignments = db.relationship(
        "OccurrenceAssignment", back_populates="occurrence",
        order_by="OccurrenceAssignment.created_at",
    )
    messages = db.relationship(
        "OccurrenceMessage", back_populates="occurrence",
        order_by="OccurrenceMessage.created_at",
    )

    @property
    def is_closed(self):
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_assignments=False):
        d = {
            "id": self.id,
            "occurrence_no": self.occurrence_no,
            "description": self.description,
            "mrn": self.mrn,
            "occurrence_date": self.occurrence_date.isoformat() if self.occurrence_date else None,
            "status": self.status,
            "incident_id": self.incident_id,
            "location_id": self.location_id,
            "created_by_id": self.created_by_id,
            "updated_by_id": self.updated_by_id,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_assignments:
            d["assignments"] = [a.to_dict() for a in self.assignments]
        return d

    def __repr__(self):
        return f"<Occurrence {self.occurrence_no} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# OccurrenceAssignment
# ═════════════════════════════════════════════════════════════════════════════

class OccurrenceAssignment(db.Model):
    """
    One row per (occurrence, department).

    completed_at NULL = the department has not submitted a formal response in
    the current referral round. Re-referral clears it and moves referred_at,
    so thread messages from an earlier round no longer count as answers.
    """

    __tablename__ = "occurrence_assignments"
    __table_args__ = (
        db.UniqueConstraint("occurrence_id", "department_id", name="uq_assignment_occurrence_department"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    occurrence_id = db.Column(
        db.String(36), db.ForeignKey("occurrences.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    message = db.Column(db.Text, nullable=True, comment="Referral note from the referring actor")
    root_cause = db.Column(db.Text, nullable=True)
    action_plan = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    referred_at = db.Column(db.DateTime(timezone=True), default=_utcnow,
                            comment="Start of the current referral round")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    occurrence = db.relationship("Occurrence", back_populates="assignments")
    department = db.relationship("Department")

    @property
    def is_completed(self):
        return self.completed_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "occurrence_id": self.occurrence_id,
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "message": self.message,
            "root_cause": self.root_cause,
            "action_plan": self.action_plan,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "referred_at": self.referred_at.isoformat() if self.referred_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<OccurrenceAssignment {self.occurrence_id}→{self.department_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# OccurrenceMessage
# ═════════════════════════════════════════════════════════════════════════════

class OccurrenceMessage(db.Model):
    """Thread message. recipient_department_id NULL = visible to the whole group."""

    __tablename__ = "occurrence_messages"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    occurrence_id = db.Column(
        db.String(36), db.ForeignKey("occurrences.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    sender_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    sender_department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
        comment="Sender's department at posting time",
    )
    recipient_department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True,
    )
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    occurrence = db.relationship("Occurrence", back_populates="messages")
    sender = db.relationship("User")
    sender_department = db.relationship("Department", foreign_keys=[sender_department_id])

    def to_dict(self):
        return {
            "id": self.id,
            "occurrence_id": self.occurrence_id,
            "sender_id": self.sender_id,
            "sender_name": self.sender.name if self.sender else None,
            "sender_department_id": self.sender_department_id,
            "sender_department_name": self.sender_department.name if self.sender_department else None,
            "recipient_department_id": self.recipient_department_id,
            "message": self.message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<OccurrenceMessage {self.id[:8]} on {self.occurrence_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# FeedbackToken
# ═════════════════════════════════════════════════════════════════════════════

class FeedbackToken(db.Model):
    """
    Shareable feedback link for one assignment.

    A token is usable once and until expires_at. responded_at and
    response_message are filled when the feedback is submitted.
    """

    __tablename__ = "feedback_tokens"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    assignment_id = db.Column(
        db.String(36), db.ForeignKey("occurrence_assignments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    shared_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    used = db.Column(db.Boolean, nullable=False, default=False)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    response_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    assignment = db.relationship("OccurrenceAssignment")
    shared_by = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "shared_by_id": self.shared_by_id,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "used": self.used,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "response_message": self.response_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<FeedbackToken {self.assignment_id} used={self.used}>"
