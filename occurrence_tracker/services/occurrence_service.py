"""
Occurrence Service — intake, update and read accessors.

Usage:
    from occurrence_tracker.services.occurrence_service import create_occurrence

    occ = create_occurrence(
        description="Visitor shouted at triage nurse and threw a chair",
        incident_id=incident.id,
        location_id=location.id,
        occurrence_date=datetime(2025, 3, 2, 14, 30, tzinfo=timezone.utc),
        created_by_id=user.id,       # None for anonymous reports
    )

Lifecycle actions (refer, respond, message, resolve) live in
occurrence_lifecycle.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError

from occurrence_tracker.core.exceptions import ConflictError, NotFoundError, ValidationError
from occurrence_tracker.models import db
from occurrence_tracker.models.auth import Location
from occurrence_tracker.models.occurrence import (
    Occurrence,
    OccurrenceAssignment,
    OccurrenceMessage,
    OccurrenceStatus,
)
from occurrence_tracker.models.taxonomy import Incident
from occurrence_tracker.services.code_generator import generate_occurrence_no
from occurrence_tracker.services.events import OccurrenceCreated, publish
from occurrence_tracker.services.status_resolver import is_answered

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 10
MRN_LENGTH = 10
NUMBER_ATTEMPTS = 3

EDITABLE_FIELDS = ("description", "mrn", "incident_id", "location_id", "occurrence_date")


# ── Validation ───────────────────────────────────────────────────────────────

def _as_utc(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _validate_fields(data, *, now=None):
    """Return {field: error} for every invalid field present in ``data``."""
    errors = {}
    now = now or datetime.now(timezone.utc)

    if "description" in data:
        description = (data["description"] or "").strip()
        if len(description) < MIN_DESCRIPTION_LENGTH:
            errors["description"] = f"must be at least {MIN_DESCRIPTION_LENGTH} characters"

    mrn = data.get("mrn")
    if mrn and len(mrn) != MRN_LENGTH:
        errors["mrn"] = f"must be exactly {MRN_LENGTH} characters"

    if "incident_id" in data:
        if not data["incident_id"]:
            errors["incident_id"] = "required"
        elif db.session.get(Incident, data["incident_id"]) is None:
            errors["incident_id"] = "unknown incident"

    if "location_id" in data:
        if not data["location_id"]:
            errors["location_id"] = "required"
        elif db.session.get(Location, data["location_id"]) is None:
            errors["location_id"] = "unknown location"

    if "occurrence_date" in data:
        occurred = data["occurrence_date"]
        if not isinstance(occurred, datetime):
            errors["occurrence_date"] = "required"
        elif _as_utc(occurred) > now:
            errors["occurrence_date"] = "cannot be in the future"

    contact_email = data.get("contact_email")
    if contact_email:
        try:
            validate_email(contact_email, check_deliverability=False)
        except EmailNotValidError as exc:
            errors["contact_email"] = str(exc)

    return errors


def _with_contact_block(description, contact_email=None, contact_phone=None):
    if not (contact_email or contact_phone):
        return description
    lines = [description, "", "Contact Information:"]
    if contact_email:
        lines.append(f"Email: {contact_email}")
    if contact_phone:
        lines.append(f"Phone: {contact_phone}")
    return "\n".join(lines)


# ── Intake ───────────────────────────────────────────────────────────────────

def create_occurrence(
    *,
    description,
    incident_id,
    location_id,
    occurrence_date,
    mrn=None,
    created_by_id=None,
    contact_email=None,
    contact_phone=None,
    now=None,
):
    """
    Record a new occurrence with status OPEN and an auto-assigned number.

    ``created_by_id`` is None for anonymous reports. Optional contact details
    are appended to the description as a "Contact Information" block.

    Raises:
        ValidationError: invalid intake fields (nothing written).
        ConflictError: no free occurrence number after NUMBER_ATTEMPTS tries.
    """
    now = now or datetime.now(timezone.utc)
    errors = _validate_fields(
        {
            "description": description,
            "mrn": mrn,
            "incident_id": incident_id,
            "location_id": location_id,
            "occurrence_date": occurrence_date,
            "contact_email": contact_email,
        },
        now=now,
    )
    if errors:
        raise ValidationError("Occurrence validation failed", details=errors)

    fields = dict(
        description=_with_contact_block(description.strip(), contact_email, contact_phone),
        mrn=mrn or None,
        incident_id=incident_id,
        location_id=location_id,
        occurrence_date=occurrence_date,
        created_by_id=created_by_id,
        status=OccurrenceStatus.OPEN.value,
    )

    occ = None
    for attempt in range(1, NUMBER_ATTEMPTS + 1):
        occ = Occurrence(occurrence_no=generate_occurrence_no(now), **fields)
        db.session.add(occ)
        try:
            db.session.commit()
            break
        except IntegrityError:
            db.session.rollback()
            logger.warning(
                "Occurrence number collision, retrying (attempt %d/%d)",
                attempt, NUMBER_ATTEMPTS,
                extra={"occurrence_no": occ.occurrence_no},
            )
    else:
        raise ConflictError(resource="Occurrence", field="occurrence_no", value=occ.occurrence_no)

    logger.info(
        "Occurrence created%s", " (anonymous)" if created_by_id is None else "",
        extra={"occurrence_id": occ.id, "occurrence_no": occ.occurrence_no, "user_id": created_by_id},
    )
    publish(OccurrenceCreated(occurrence_id=occ.id, actor_id=created_by_id))
    return occ


def update_occurrence(occurrence_id, *, updated_by_id=None, **changes):
    """
    Update editable intake fields. Status is never editable here.

    Raises:
        NotFoundError, ValidationError, ConflictError (duplicate MRN).
    """
    occ = get_occurrence(occurrence_id)

    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(
            f"Fields not editable: {', '.join(unknown)}",
            details={f: "not editable" for f in unknown},
        )

    errors = _validate_fields(changes)
    if errors:
        raise ValidationError("Occurrence validation failed", details=errors)

    mrn = changes.get("mrn")
    if mrn:
        duplicate = Occurrence.query.filter(
            Occurrence.mrn == mrn, Occurrence.id != occ.id,
        ).first()
        if duplicate is not None:
            raise ConflictError(resource="Occurrence", field="mrn", value=mrn)

    for field, value in changes.items():
        if field == "description":
            value = value.strip()
        elif field == "mrn":
            value = value or None
        setattr(occ, field, value)
    occ.updated_by_id = updated_by_id
    db.session.commit()

    logger.info("Occurrence updated: %s", ", ".join(sorted(changes)) or "no fields",
                extra={"occurrence_id": occ.id, "occurrence_no": occ.occurrence_no,
                       "user_id": updated_by_id})
    return occ


# ── Read accessors ───────────────────────────────────────────────────────────

def get_occurrence(occurrence_id):
    occ = db.session.get(Occurrence, occurrence_id)
    if occ is None:
        raise NotFoundError(resource="Occurrence", resource_id=occurrence_id)
    return occ


def get_occurrence_by_no(occurrence_no):
    occ = Occurrence.query.filter_by(occurrence_no=occurrence_no).first()
    if occ is None:
        raise NotFoundError(resource="Occurrence", resource_id=occurrence_no)
    return occ


def get_status(occurrence_id):
    """Current lifecycle status as an OccurrenceStatus."""
    return OccurrenceStatus(get_occurrence(occurrence_id).status)


def replied_department_ids(occurrence_id):
    """Assigned departments with a thread message posted since their last referral."""
    rows = (
        db.session.query(OccurrenceAssignment.department_id)
        .join(
            OccurrenceMessage,
            and_(
                OccurrenceMessage.occurrence_id == OccurrenceAssignment.occurrence_id,
                OccurrenceMessage.sender_department_id == OccurrenceAssignment.department_id,
                OccurrenceMessage.created_at >= OccurrenceAssignment.referred_at,
            ),
        )
        .filter(OccurrenceAssignment.occurrence_id == occurrence_id)
        .distinct()
        .all()
    )
    return {r[0] for r in rows}


def list_assignments(occurrence_id):
    get_occurrence(occurrence_id)
    return (
        OccurrenceAssignment.query
        .filter_by(occurrence_id=occurrence_id)
        .order_by(OccurrenceAssignment.created_at)
        .all()
    )


def assignment_states(occurrence_id):
    """Assignment dicts with the derived ``answered`` flag."""
    assignments = list_assignments(occurrence_id)
    replied = replied_department_ids(occurrence_id)
    result = []
    for a in assignments:
        d = a.to_dict()
        d["answered"] = is_answered(a, replied)
        result.append(d)
    return result
