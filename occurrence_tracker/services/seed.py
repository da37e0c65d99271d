"""
Reference data seeding — roles, departments, locations, severities and a
sample incident taxonomy.

Idempotent: rows are matched by name and only missing ones are inserted.
Used by ``flask seed-reference-data`` and scripts/seed_reference_data.py.
"""

import logging

from occurrence_tracker.models import db
from occurrence_tracker.models.auth import Department, Location, Role
from occurrence_tracker.models.taxonomy import Incident, Severity

logger = logging.getLogger(__name__)

ROLES = [
    ("ADMIN", "Full system access"),
    ("QUALITY_MANAGER", "Quality oversight across departments"),
    ("QUALITY_ASSURANCE", "Reviews and refers occurrences"),
    ("SAFETY_OFFICER", "Workplace safety follow-up"),
    ("DEPARTMENT_MANAGER", "Department-level access and responses"),
    ("EMPLOYEE", "Reports occurrences"),
]

DEPARTMENTS = ["Information Technology", "Human Resources", "Security", "Nursing", "Quality"]

LOCATIONS = ["Emergency Department", "Outpatient Clinics", "Inpatient Ward", "Parking Area"]

# (name, level)
SEVERITIES = [
    ("LOW", 1),
    ("MEDIUM", 2),
    ("HIGH", 3),
    ("CRITICAL", 4),
]

# top-level category -> (severity, [(child, severity), ...])
INCIDENTS = {
    "Verbal Aggression": ("LOW", [
        ("Shouting", "LOW"),
        ("Threats", "MEDIUM"),
    ]),
    "Physical Aggression": ("HIGH", [
        ("Pushing", "MEDIUM"),
        ("Assault", "CRITICAL"),
    ]),
    "Property Damage": ("MEDIUM", [
        ("Vandalism", "MEDIUM"),
    ]),
}


def _get_or_create(model, defaults=None, **lookup):
    row = model.query.filter_by(**lookup).first()
    if row is not None:
        return row, False
    row = model(**lookup, **(defaults or {}))
    db.session.add(row)
    db.session.flush()
    return row, True


def seed_reference_data():
    """Insert missing reference rows. Returns {table: inserted_count}."""
    counts = {"roles": 0, "departments": 0, "locations": 0, "severities": 0, "incidents": 0}

    for name, description in ROLES:
        _, created = _get_or_create(Role, name=name, defaults={"description": description})
        counts["roles"] += created

    for name in DEPARTMENTS:
        _, created = _get_or_create(Department, name=name)
        counts["departments"] += created

    for name in LOCATIONS:
        _, created = _get_or_create(Location, name=name)
        counts["locations"] += created

    severities = {}
    for name, level in SEVERITIES:
        severities[name], created = _get_or_create(Severity, name=name, defaults={"level": level})
        counts["severities"] += created

    for parent_name, (parent_severity, children) in INCIDENTS.items():
        parent, created = _get_or_create(
            Incident, name=parent_name, parent_id=None,
            defaults={"severity_id": severities[parent_severity].id},
        )
        counts["incidents"] += created
        for child_name, child_severity in children:
            _, created = _get_or_create(
                Incident, name=child_name, parent_id=parent.id,
                defaults={"severity_id": severities[child_severity].id},
            )
            counts["incidents"] += created

    db.session.commit()
    logger.info("Reference data seeded: %s", counts)
    return counts
