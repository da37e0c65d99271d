"""
Notification Targeting Engine.

Turns a committed lifecycle event into a de-duplicated list of
(user, channel) recipients and hands them to NotificationService.dispatch.

Targeting rules per event:

    created     oversight-role users whose enabled preference matches the
                top-level incident category OR the incident's severity
    referred    enabled members of each referred department; one batched
                notification per department listing every occurrence number
    message     reporter (unless sender), enabled oversight users, enabled
                members of the other assigned departments; never the sender
    responded   reporter, enabled oversight users
    resolved    reporter, enabled members of every assigned department

The reporter is notified whenever known, independent of preference.
Channel: the preference channel when enabled, otherwise EMAIL. BOTH falls
back to EMAIL for users without a valid mobile number.

The engine is connected to ``events.occurrence_event`` by the app factory.
"""

import logging

from flask import current_app

from occurrence_tracker.integrations.sms_gateway import validate_mobile_number
from occurrence_tracker.models import db
from occurrence_tracker.models.auth import Department, User
from occurrence_tracker.models.notification import CHANNEL_BOTH, CHANNEL_EMAIL
from occurrence_tracker.models.occurrence import Occurrence, OccurrenceAssignment
from occurrence_tracker.services.directory import oversight_users, users_in_departments
from occurrence_tracker.services.events import (
    DepartmentResponded,
    OccurrenceCreated,
    OccurrenceReferred,
    OccurrenceResolved,
    ThreadMessagePosted,
)
from occurrence_tracker.services.notification import NotificationService, Recipient

logger = logging.getLogger(__name__)


# ── Preference helpers ───────────────────────────────────────────────────────

def has_enabled_preference(user):
    pref = user.notification_preference
    return bool(pref and pref.enabled)


def resolve_channel(user):
    """Channel to deliver on for ``user``."""
    pref = user.notification_preference
    channel = pref.channel if pref and pref.enabled and pref.channel else CHANNEL_EMAIL
    if channel == CHANNEL_BOTH and not validate_mobile_number(user.mobile_no):
        logger.info("Mobile number invalid, BOTH degraded to EMAIL",
                    extra={"user_id": user.id, "channel": CHANNEL_EMAIL})
        return CHANNEL_EMAIL
    return channel


def _recipients(users, exclude_ids=()):
    excluded = set(exclude_ids)
    return [Recipient(u, resolve_channel(u)) for u in users if u.id not in excluded]


def _enabled(users):
    return [u for u in users if has_enabled_preference(u)]


def _reporter(occ, exclude_ids=()):
    if occ.created_by_id is None or occ.created_by_id in exclude_ids:
        return []
    reporter = occ.created_by
    return [reporter] if reporter is not None else []


def message_snippet(text, length=None):
    """First ``length`` characters of ``text``, with "..." when truncated."""
    if length is None:
        length = current_app.config.get("NOTIFICATION_SNIPPET_LENGTH", 100)
    text = text or ""
    return text[:length] + ("..." if len(text) > length else "")


def _assigned_department_ids(occurrence_id):
    rows = (
        db.session.query(OccurrenceAssignment.department_id)
        .filter_by(occurrence_id=occurrence_id)
        .all()
    )
    return [r[0] for r in rows]


def _load_occurrence(occurrence_id, event):
    occ = db.session.get(Occurrence, occurrence_id)
    if occ is None:
        logger.warning("Occurrence vanished before notification",
                       extra={"occurrence_id": occurrence_id, "event_type": event.event_type})
    return occ


# ── Event handlers ───────────────────────────────────────────────────────────

def on_occurrence_created(event):
    occ = _load_occurrence(event.occurrence_id, event)
    if occ is None:
        return []

    top_level = occ.incident.top_level()
    severity_id = occ.incident.severity_id
    candidates = [
        u for u in oversight_users()
        if u.notification_preference is not None
        and u.notification_preference.matches(top_level.id, severity_id)
    ]

    return NotificationService.dispatch(
        _recipients(candidates),
        title=f"New Occurrence: {occ.occurrence_no}",
        message=f"A new occurrence has been created: {occ.occurrence_no}",
        type="OCCURRENCE_CREATED",
        reference_ids=[occ.id],
        metadata={
            "occurrenceNo": occ.occurrence_no,
            "incident": top_level.name,
            "severityLevel": occ.incident.severity.level if occ.incident.severity else None,
        },
        event_id=event.event_id,
    )


def on_occurrence_referred(event):
    occurrences = [o for o in (_load_occurrence(i, event) for i in event.occurrence_ids) if o]
    if not occurrences:
        return []
    numbers = [o.occurrence_no for o in occurrences]

    if len(occurrences) == 1:
        title = f"Occurrence Referral: {numbers[0]}"
        message = f"An occurrence has been referred to your department: {numbers[0]}"
    else:
        title = "Occurrences Referral"
        message = (f"You have received {len(numbers)} new occurrences for review: "
                   f"{', '.join(numbers)}")

    created = []
    for dept_id in event.department_ids:
        dept = db.session.get(Department, dept_id)
        members = _enabled(users_in_departments([dept_id]))
        created.extend(NotificationService.dispatch(
            _recipients(members),
            title=title,
            message=message,
            type="REFERRAL",
            reference_ids=[o.id for o in occurrences],
            metadata={
                "occurrenceNos": numbers,
                "departmentId": dept_id,
                "departmentName": dept.name if dept else None,
                "message": event.message,
            },
            event_id=event.event_id,
        ))
    return created


def on_thread_message(event):
    occ = _load_occurrence(event.occurrence_id, event)
    if occ is None:
        return []
    sender = db.session.get(User, event.sender_id)
    sender_name = sender.name if sender else "A user"
    sender_dept = sender.department if sender else None
    exclude = {event.sender_id}

    other_depts = [d for d in _assigned_department_ids(occ.id)
                   if sender is None or d != sender.department_id]
    users = (
        _reporter(occ, exclude)
        + _enabled(oversight_users())
        + _enabled(users_in_departments(other_depts))
    )

    return NotificationService.dispatch(
        _recipients(users, exclude_ids=exclude),
        title=f"New message on {occ.occurrence_no}",
        message=(f"{sender_name} from {sender_dept.name if sender_dept else 'another department'} "
                 f"has sent a message on occurrence {occ.occurrence_no}"),
        type="OCCURRENCE_UPDATED",
        reference_ids=[occ.id],
        metadata={
            "occurrenceNo": occ.occurrence_no,
            "messageSnippet": message_snippet(event.text),
            "senderName": sender_name,
            "senderDepartment": sender_dept.name if sender_dept else None,
        },
        event_id=event.event_id,
    )


def on_department_responded(event):
    occ = _load_occurrence(event.occurrence_id, event)
    if occ is None:
        return []
    dept = db.session.get(Department, event.department_id)
    dept_name = dept.name if dept else "A department"

    users = _reporter(occ) + _enabled(oversight_users())
    return NotificationService.dispatch(
        _recipients(users),
        title=f"Action completed on {occ.occurrence_no}",
        message=f"{dept_name} has submitted its root cause for occurrence {occ.occurrence_no}",
        type="ACTION_COMPLETED",
        reference_ids=[occ.id],
        metadata={
            "occurrenceNo": occ.occurrence_no,
            "departmentId": event.department_id,
            "departmentName": dept_name,
            "rootCause": event.root_cause,
        },
        event_id=event.event_id,
    )


def on_occurrence_resolved(event):
    occ = _load_occurrence(event.occurrence_id, event)
    if occ is None:
        return []
    resolver = db.session.get(User, event.actor_id) if event.actor_id else None

    users = _reporter(occ) + _enabled(users_in_departments(_assigned_department_ids(occ.id)))
    return NotificationService.dispatch(
        _recipients(users),
        title=f"Occurrence {occ.occurrence_no} Resolved",
        message=f"Occurrence {occ.occurrence_no} has been resolved and closed",
        type="OCCURRENCE_RESOLVED",
        reference_ids=[occ.id],
        metadata={
            "occurrenceNo": occ.occurrence_no,
            "resolvedBy": resolver.name if resolver else "A user",
        },
        event_id=event.event_id,
    )


_HANDLERS = {
    OccurrenceCreated: on_occurrence_created,
    OccurrenceReferred: on_occurrence_referred,
    ThreadMessagePosted: on_thread_message,
    DepartmentResponded: on_department_responded,
    OccurrenceResolved: on_occurrence_resolved,
}


def handle_event(event):
    """blinker receiver: route ``event`` to its targeting rule."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        logger.debug("No targeting rule for event %r", event)
        return []
    notifications = handler(event)
    logger.info("Dispatched %d notification(s)", len(notifications),
                extra={"event_type": event.event_type, "event_id": event.event_id})
    return notifications
