"""
Assignment feedback tokens.

A user handling an assignment can share a link that lets someone outside the
tracker (a witness, the staff member involved) leave one written response.
The link carries a random token that expires after FEEDBACK_TOKEN_TTL and is
spent by the first submission.

Issuing a new token for an assignment removes any earlier token that is still
live (unused and unexpired); spent and expired tokens are kept as history.

Usage:
    from occurrence_tracker.services import feedback

    record = feedback.generate_feedback_token(assignment.id, shared_by_id=manager.id)
    feedback.submit_feedback(record.token, "The patient's relative raised their voice first.")
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from occurrence_tracker.core.exceptions import NotFoundError, ValidationError
from occurrence_tracker.models import db
from occurrence_tracker.models.occurrence import FeedbackToken, OccurrenceAssignment
from occurrence_tracker.services.directory import get_user

logger = logging.getLogger(__name__)

FEEDBACK_TOKEN_BYTES = 32
FEEDBACK_TOKEN_TTL = timedelta(hours=24)


def _utcnow():
    return datetime.now(timezone.utc)


def _as_utc(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _get_assignment(assignment_id):
    assignment = db.session.get(OccurrenceAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="OccurrenceAssignment", resource_id=assignment_id)
    return assignment


def generate_feedback_token(assignment_id, shared_by_id=None, *, now=None):
    """Issue a fresh token for ``assignment_id``, replacing any live one."""
    assignment = _get_assignment(assignment_id)
    if shared_by_id is not None:
        get_user(shared_by_id)
    now = now or _utcnow()

    try:
        replaced = FeedbackToken.query.filter(
            FeedbackToken.assignment_id == assignment.id,
            FeedbackToken.used.is_(False),
            FeedbackToken.expires_at > now,
        ).delete(synchronize_session="fetch")

        record = FeedbackToken(
            token=secrets.token_hex(FEEDBACK_TOKEN_BYTES),
            assignment_id=assignment.id,
            shared_by_id=shared_by_id,
            expires_at=now + FEEDBACK_TOKEN_TTL,
            used=False,
        )
        db.session.add(record)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info(
        "Feedback token issued (replaced=%d)", replaced,
        extra={"occurrence_id": assignment.occurrence_id,
               "department_id": assignment.department_id, "user_id": shared_by_id},
    )
    return record


def validate_feedback_token(token, *, now=None):
    """
    Return the token record if it can still be used.

    Raises:
        NotFoundError: no such token.
        ValidationError: the token expired or was already used.
    """
    record = FeedbackToken.query.filter_by(token=token).first() if token else None
    if record is None:
        raise NotFoundError(resource="FeedbackToken")

    now = now or _utcnow()
    if _as_utc(record.expires_at) < now:
        raise ValidationError("Token expired", details={"token": "expired"})
    if record.used:
        raise ValidationError("Token already used", details={"token": "used"})
    return record


def submit_feedback(token, message, *, now=None):
    """Store the response for ``token`` and spend it."""
    now = now or _utcnow()
    record = validate_feedback_token(token, now=now)

    message = (message or "").strip()
    if not message:
        raise ValidationError("Feedback message cannot be empty",
                              details={"message": "required"})

    stmt = (
        select(FeedbackToken)
        .where(FeedbackToken.id == record.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    try:
        record = db.session.execute(stmt).scalar_one()
        if record.used:
            raise ValidationError("Token already used", details={"token": "used"})
        record.responded_at = now
        record.response_message = message
        record.used = True
        db.session.commit()
    except (SQLAlchemyError, ValidationError):
        db.session.rollback()
        raise

    logger.info("Feedback submitted",
                extra={"occurrence_id": record.assignment.occurrence_id,
                       "department_id": record.assignment.department_id})
    return record


def list_feedback(assignment_id):
    """Every token issued for an assignment, oldest first, with any response."""
    _get_assignment(assignment_id)
    return (
        FeedbackToken.query
        .filter_by(assignment_id=assignment_id)
        .order_by(FeedbackToken.created_at)
        .all()
    )
