"""
Occurrence Lifecycle Service — referral, department response, thread
messages and administrative resolve.

Every mutating action follows the same shape:

  1. Validate input and look up records (no writes on failure)
  2. Lock the occurrence row (SELECT ... FOR UPDATE where supported)
  3. Write assignment / message rows
  4. Recompute status via status_resolver (skipped once CLOSED)
  5. Commit; roll back and re-raise on any store error
  6. Publish a lifecycle event for the notification targeting engine

Usage:
    from occurrence_tracker.services.occurrence_lifecycle import refer_to_departments

    assignments = refer_to_departments(occ.id, [er.id, security.id],
                                       message="Please review CCTV", actor_id=qa.id)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from occurrence_tracker.core.exceptions import NotFoundError, TransitionError, ValidationError
from occurrence_tracker.models import db
from occurrence_tracker.models.occurrence import (
    Occurrence,
    OccurrenceAssignment,
    OccurrenceMessage,
    OccurrenceStatus,
)
from occurrence_tracker.services.directory import get_departments, get_user, is_oversight_user
from occurrence_tracker.services.events import (
    DepartmentResponded,
    OccurrenceReferred,
    OccurrenceResolved,
    ThreadMessagePosted,
    publish,
)
from occurrence_tracker.services.occurrence_service import get_occurrence, replied_department_ids
from occurrence_tracker.services.status_resolver import resolve_status

logger = logging.getLogger(__name__)

MIN_ROOT_CAUSE_LENGTH = 5
MIN_ACTION_PLAN_LENGTH = 10


# ── Helpers ──────────────────────────────────────────────────────────────────

def _utcnow():
    return datetime.now(timezone.utc)


def _lock_occurrence(occurrence_id):
    """Reload the occurrence with a row lock for the rest of the transaction."""
    stmt = (
        select(Occurrence)
        .where(Occurrence.id == occurrence_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    occ = db.session.execute(stmt).scalar_one_or_none()
    if occ is None:
        raise NotFoundError(resource="Occurrence", resource_id=occurrence_id)
    return occ


def _ensure_open(occ, action):
    if occ.is_closed:
        raise TransitionError(occ.occurrence_no, action, occ.status,
                              "occurrence is closed")


def recompute_status(occ):
    """Derive and store the status from the current assignment set.

    No-op for CLOSED occurrences. Returns the (possibly unchanged) status.
    """
    if occ.is_closed:
        return OccurrenceStatus(occ.status)

    assignments = OccurrenceAssignment.query.filter_by(occurrence_id=occ.id).all()
    new_status = resolve_status(assignments, replied_department_ids(occ.id))
    if occ.status != new_status.value:
        logger.info(
            "Occurrence status %s → %s", occ.status, new_status.value,
            extra={"occurrence_id": occ.id, "occurrence_no": occ.occurrence_no,
                   "status": new_status.value},
        )
        occ.status = new_status.value
    return new_status


# ── Referral ─────────────────────────────────────────────────────────────────

def refer_to_departments(occurrence_id, department_ids, message=None, actor_id=None):
    """
    Refer one occurrence to one or more departments.

    Existing assignments are reset (completion cleared, message replaced,
    referral round restarted) instead of duplicated.

    Returns:
        The assignments for ``department_ids``, in the order given.
    """
    result = refer_many([occurrence_id], department_ids, message=message, actor_id=actor_id)
    return result[occurrence_id]


def refer_many(occurrence_ids, department_ids, message=None, actor_id=None):
    """
    Refer several occurrences to the same departments in one transaction.

    Returns:
        {occurrence_id: [OccurrenceAssignment, ...]}

    Raises:
        ValidationError: empty occurrence or department list.
        NotFoundError: unknown occurrence or department id.
        TransitionError: any occurrence is CLOSED.
    """
    occurrence_ids = list(dict.fromkeys(occurrence_ids or []))
    department_ids = list(dict.fromkeys(department_ids or []))
    if not occurrence_ids:
        raise ValidationError("At least one occurrence must be selected",
                              details={"occurrence_ids": "required"})
    if not department_ids:
        raise ValidationError("At least one department must be selected",
                              details={"department_ids": "required"})

    get_departments(department_ids)
    for occ_id in occurrence_ids:
        _ensure_open(get_occurrence(occ_id), "refer")

    now = _utcnow()
    referred = {}
    try:
        for occ_id in sorted(occurrence_ids):
            occ = _lock_occurrence(occ_id)
            _ensure_open(occ, "refer")

            existing = {
                a.department_id: a
                for a in OccurrenceAssignment.query.filter(
                    OccurrenceAssignment.occurrence_id == occ.id,
                    OccurrenceAssignment.department_id.in_(department_ids),
                ).all()
            }
            assignments = []
            for dept_id in department_ids:
                assignment = existing.get(dept_id)
                if assignment is None:
                    assignment = OccurrenceAssignment(occurrence_id=occ.id, department_id=dept_id)
                    db.session.add(assignment)
                assignment.message = message
                assignment.completed_at = None
                assignment.referred_at = now
                assignments.append(assignment)

            occ.status = OccurrenceStatus.ASSIGNED.value
            occ.assigned_at = now
            occ.updated_by_id = actor_id
            db.session.flush()
            recompute_status(occ)
            referred[occ_id] = assignments
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    for occ_id in occurrence_ids:
        logger.info("Occurrence referred to %d department(s)", len(department_ids),
                    extra={"occurrence_id": occ_id, "user_id": actor_id})

    publish(OccurrenceReferred(
        occurrence_ids=tuple(occurrence_ids),
        department_ids=tuple(department_ids),
        message=message,
        actor_id=actor_id,
    ))
    return {occ_id: referred[occ_id] for occ_id in occurrence_ids}


# ── Department response ──────────────────────────────────────────────────────

def _validate_response(root_cause, action_plan):
    errors = {}
    if len((root_cause or "").strip()) < MIN_ROOT_CAUSE_LENGTH:
        errors["root_cause"] = f"must be at least {MIN_ROOT_CAUSE_LENGTH} characters"
    if action_plan is not None and len(action_plan.strip()) < MIN_ACTION_PLAN_LENGTH:
        errors["action_plan"] = f"must be at least {MIN_ACTION_PLAN_LENGTH} characters"
    if errors:
        raise ValidationError("Department response validation failed", details=errors)


def record_department_response(assignment_id, root_cause, action_plan=None, actor_id=None):
    """
    Stamp an assignment as completed with its root cause and action plan,
    then recompute the occurrence status.

    Raises:
        ValidationError, NotFoundError, TransitionError (occurrence CLOSED).
    """
    _validate_response(root_cause, action_plan)

    assignment = db.session.get(OccurrenceAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="OccurrenceAssignment", resource_id=assignment_id)
    _ensure_open(get_occurrence(assignment.occurrence_id), "respond")

    try:
        occ = _lock_occurrence(assignment.occurrence_id)
        _ensure_open(occ, "respond")
        assignment.root_cause = root_cause.strip()
        assignment.action_plan = action_plan.strip() if action_plan is not None else None
        assignment.completed_at = _utcnow()
        occ.updated_by_id = actor_id
        db.session.flush()
        recompute_status(occ)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Department response recorded",
                extra={"occurrence_id": occ.id, "occurrence_no": occ.occurrence_no,
                       "department_id": assignment.department_id, "user_id": actor_id})
    publish(DepartmentResponded(
        occurrence_id=occ.id,
        assignment_id=assignment.id,
        department_id=assignment.department_id,
        root_cause=assignment.root_cause,
        actor_id=actor_id,
    ))
    return assignment


def record_department_response_for_user(occurrence_id, user_id, root_cause, action_plan=None):
    """Record a response on behalf of ``user_id``'s department."""
    user = get_user(user_id)
    if not user.department_id:
        raise ValidationError("User is not assigned to a department",
                              details={"user_id": "no department"})
    assignment = OccurrenceAssignment.query.filter_by(
        occurrence_id=occurrence_id, department_id=user.department_id,
    ).first()
    if assignment is None:
        get_occurrence(occurrence_id)
        raise NotFoundError(resource="OccurrenceAssignment",
                            resource_id=f"{occurrence_id}/{user.department_id}")
    return record_department_response(assignment.id, root_cause, action_plan, actor_id=user_id)


# ── Thread messages ──────────────────────────────────────────────────────────

def post_thread_message(occurrence_id, sender_id, text):
    """
    Append a group-visible message and recompute the status.

    A message from a member of an assigned department counts as that
    department's answer for the current referral round.

    Raises:
        ValidationError (empty text), NotFoundError, TransitionError (CLOSED).
    """
    if not (text or "").strip():
        raise ValidationError("Message cannot be empty", details={"text": "required"})
    sender = get_user(sender_id)
    _ensure_open(get_occurrence(occurrence_id), "message")

    try:
        occ = _lock_occurrence(occurrence_id)
        _ensure_open(occ, "message")
        msg = OccurrenceMessage(
            occurrence_id=occ.id,
            sender_id=sender.id,
            sender_department_id=sender.department_id,
            recipient_department_id=None,
            message=text.strip(),
        )
        db.session.add(msg)
        db.session.flush()
        recompute_status(occ)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Thread message posted",
                extra={"occurrence_id": occ.id, "occurrence_no": occ.occurrence_no,
                       "user_id": sender.id, "department_id": sender.department_id})
    publish(ThreadMessagePosted(
        occurrence_id=occ.id,
        message_id=msg.id,
        sender_id=sender.id,
        text=msg.message,
    ))
    return msg


def list_thread_messages(occurrence_id, viewer_id):
    """
    Messages for an occurrence, oldest first.

    Visible to oversight-role users and members of an assigned department;
    anyone else gets NotFoundError so the occurrence's existence is not leaked.
    """
    occ = get_occurrence(occurrence_id)
    viewer = get_user(viewer_id)

    allowed = is_oversight_user(viewer)
    if not allowed and viewer.department_id:
        allowed = OccurrenceAssignment.query.filter_by(
            occurrence_id=occ.id, department_id=viewer.department_id,
        ).first() is not None
    if not allowed:
        raise NotFoundError(resource="Occurrence", resource_id=occurrence_id)

    return (
        OccurrenceMessage.query
        .filter_by(occurrence_id=occ.id)
        .order_by(OccurrenceMessage.created_at)
        .all()
    )


# ── Resolve ──────────────────────────────────────────────────────────────────

def resolve_occurrence(occurrence_id, actor_id=None):
    """Force the occurrence to CLOSED regardless of assignment state.

    Resolving an already closed occurrence is a no-op and publishes nothing.
    """
    get_occurrence(occurrence_id)

    try:
        occ = _lock_occurrence(occurrence_id)
        previous = occ.status
        if occ.is_closed:
            db.session.rollback()
            logger.info("Occurrence already closed",
                        extra={"occurrence_id": occ.id, "occurrence_no": occ.occurrence_no})
            return occ
        occ.status = OccurrenceStatus.CLOSED.value
        occ.closed_at = _utcnow()
        occ.updated_by_id = actor_id
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Occurrence resolved (was %s)", previous,
                extra={"occurrence_id": occ.id, "occurrence_no": occ.occurrence_no,
                       "user_id": actor_id})
    publish(OccurrenceResolved(occurrence_id=occ.id, actor_id=actor_id))
    return occ
