"""
Notification preference read/write.

A user without a stored preference behaves as a disabled preference with
the EMAIL channel and empty interest sets.
"""

import logging

from occurrence_tracker.core.exceptions import NotFoundError, ValidationError
from occurrence_tracker.models import db
from occurrence_tracker.models.auth import User
from occurrence_tracker.models.notification import (
    CHANNEL_EMAIL,
    CHANNEL_TYPES,
    NotificationPreference,
)
from occurrence_tracker.models.taxonomy import Incident, Severity

logger = logging.getLogger(__name__)


def get_preference(user_id):
    """Stored preference for ``user_id`` or None."""
    return NotificationPreference.query.filter_by(user_id=user_id).first()


def get_preference_dict(user_id):
    pref = get_preference(user_id)
    if pref is not None:
        return pref.to_dict()
    return {
        "id": None,
        "user_id": user_id,
        "enabled": False,
        "channel": CHANNEL_EMAIL,
        "incident_ids": [],
        "severity_ids": [],
        "updated_at": None,
    }


def _known_ids(model, ids, field):
    ids = list(dict.fromkeys(ids or []))
    if not ids:
        return ids
    found = {row.id for row in model.query.filter(model.id.in_(ids)).all()}
    unknown = [i for i in ids if i not in found]
    if unknown:
        raise ValidationError(f"Unknown {field}: {', '.join(unknown)}",
                              details={field: "unknown id"})
    return ids


def save_preference(user_id, *, enabled, channel=CHANNEL_EMAIL, incident_ids=None, severity_ids=None):
    """Create or replace a user's notification preference."""
    if db.session.get(User, user_id) is None:
        raise NotFoundError(resource="User", resource_id=user_id)

    channel = (channel or "").upper()
    if channel not in CHANNEL_TYPES:
        raise ValidationError(f"Invalid channel: {channel!r}",
                              details={"channel": f"must be one of {sorted(CHANNEL_TYPES)}"})

    incident_ids = _known_ids(Incident, incident_ids, "incident_ids")
    severity_ids = _known_ids(Severity, severity_ids, "severity_ids")

    pref = get_preference(user_id)
    if pref is None:
        pref = NotificationPreference(user_id=user_id)
        db.session.add(pref)

    pref.enabled = bool(enabled)
    pref.channel = channel
    pref.incident_ids = incident_ids
    pref.severity_ids = severity_ids
    db.session.commit()

    logger.info("Notification preference saved",
                extra={"user_id": user_id, "channel": channel})
    return pref
