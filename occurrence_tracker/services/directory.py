"""
Directory lookups — incident taxonomy, departments and user pools.

Read-only helpers consumed by the occurrence lifecycle and the notification
targeting engine. Nothing here writes.
"""

import logging

from flask import current_app

from occurrence_tracker.core.exceptions import NotFoundError
from occurrence_tracker.models import db
from occurrence_tracker.models.auth import Department, Role, User
from occurrence_tracker.models.taxonomy import Incident, Severity

logger = logging.getLogger(__name__)


# ── Incident taxonomy ────────────────────────────────────────────────────────

def get_incident(incident_id):
    incident = db.session.get(Incident, incident_id)
    if incident is None:
        raise NotFoundError(resource="Incident", resource_id=incident_id)
    return incident


def top_level_incident(incident_id):
    """Root category of the branch ``incident_id`` belongs to."""
    return get_incident(incident_id).top_level()


def ancestor_chain(incident_id):
    """Incident followed by its ancestors, root last."""
    incident = get_incident(incident_id)
    return [incident, *incident.ancestors()]


def severities_at_or_above(level):
    """Severities with level >= ``level``, most severe first."""
    return (
        Severity.query
        .filter(Severity.level >= level)
        .order_by(Severity.level.desc())
        .all()
    )


# ── Departments ──────────────────────────────────────────────────────────────

def get_department(department_id):
    dept = db.session.get(Department, department_id)
    if dept is None:
        raise NotFoundError(resource="Department", resource_id=department_id)
    return dept


def get_departments(department_ids):
    """Load every department in ``department_ids``; raise on the first unknown id."""
    ids = list(dict.fromkeys(department_ids))
    found = {d.id: d for d in Department.query.filter(Department.id.in_(ids)).all()}
    for dept_id in ids:
        if dept_id not in found:
            raise NotFoundError(resource="Department", resource_id=dept_id)
    return [found[i] for i in ids]


# ── User pools ───────────────────────────────────────────────────────────────

def get_user(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def oversight_role_names():
    return list(current_app.config.get("OVERSIGHT_ROLES") or [])


def is_oversight_user(user):
    return bool(user.role and user.role.name in oversight_role_names())


def users_with_roles(role_names):
    """Active users holding any of ``role_names``."""
    if not role_names:
        return []
    return (
        User.query
        .join(Role, User.role_id == Role.id)
        .filter(Role.name.in_(list(role_names)), User.is_active.is_(True))
        .order_by(User.name)
        .all()
    )


def oversight_users():
    return users_with_roles(oversight_role_names())


def users_in_departments(department_ids):
    """Active members of any department in ``department_ids``."""
    ids = list(department_ids)
    if not ids:
        return []
    return (
        User.query
        .filter(User.department_id.in_(ids), User.is_active.is_(True))
        .order_by(User.name)
        .all()
    )
