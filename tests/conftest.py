"""
Shared pytest fixtures for the Occurrence Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - make_user / make_department / make_incident / make_occurrence:
      ORM helper factories (commit immediately so service rollbacks keep them)
    - org: a small hospital directory with oversight users, two departments
      and a two-level incident tree
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from occurrence_tracker import create_app
from occurrence_tracker.models import db as _db
from occurrence_tracker.models.auth import Department, Location, Role, User
from occurrence_tracker.models.notification import NotificationPreference
from occurrence_tracker.models.occurrence import Occurrence
from occurrence_tracker.models.taxonomy import Incident, Severity


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


# ── ORM helper factories ─────────────────────────────────────────────────


def _save(obj):
    _db.session.add(obj)
    _db.session.commit()
    return obj


@pytest.fixture()
def make_role():
    def _make(name):
        role = Role.query.filter_by(name=name).first()
        return role or _save(Role(name=name))
    return _make


@pytest.fixture()
def make_department():
    def _make(name):
        return _save(Department(name=name))
    return _make


@pytest.fixture()
def make_user(make_role):
    counter = {"n": 0}

    def _make(name=None, *, role="EMPLOYEE", department=None, mobile_no=None,
              pref_enabled=None, channel="EMAIL", incident_ids=(), severity_ids=()):
        """Create a user; pass pref_enabled to also store a NotificationPreference."""
        counter["n"] += 1
        name = name or f"User {counter['n']}"
        user = User(
            name=name,
            email=f"user{counter['n']}@hospital.test",
            mobile_no=mobile_no,
            role_id=make_role(role).id,
            department_id=department.id if department else None,
        )
        _db.session.add(user)
        _db.session.flush()
        if pref_enabled is not None:
            _db.session.add(NotificationPreference(
                user_id=user.id,
                enabled=pref_enabled,
                channel=channel,
                incident_ids=list(incident_ids),
                severity_ids=list(severity_ids),
            ))
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def make_severity():
    def _make(name, level):
        return _save(Severity(name=name, level=level))
    return _make


@pytest.fixture()
def make_incident():
    def _make(name, severity, parent=None):
        return _save(Incident(
            name=name,
            severity_id=severity.id,
            parent_id=parent.id if parent else None,
        ))
    return _make


@pytest.fixture()
def location():
    return _save(Location(name="Emergency Department"))


@pytest.fixture()
def make_occurrence(location):
    counter = {"n": 0}

    def _make(incident, *, created_by=None, status="OPEN", occurrence_no=None):
        """Insert an occurrence row directly (no events, no numbering)."""
        counter["n"] += 1
        return _save(Occurrence(
            occurrence_no=occurrence_no or f"OCC99-{counter['n']:04d}",
            description="Patient relative shouted at reception staff",
            occurrence_date=datetime.now(timezone.utc) - timedelta(hours=1),
            status=status,
            incident_id=incident.id,
            location_id=location.id,
            created_by_id=created_by.id if created_by else None,
        ))
    return _make


# ── Scenario fixture ─────────────────────────────────────────────────────


@pytest.fixture()
def org(make_department, make_severity, make_incident, make_user, location):
    """
    Directory used by lifecycle and targeting tests.

        departments: security, nursing
        severities:  low (1), high (3)
        incidents:   verbal (root, low) → threats (child, high)
        users:       reporter (no preference), qa (oversight, enabled,
                     subscribed to the verbal category), sec_manager,
                     nurse (enabled members of their departments)
    """
    security = make_department("Security")
    nursing = make_department("Nursing")
    low = make_severity("LOW", 1)
    high = make_severity("HIGH", 3)
    verbal = make_incident("Verbal Aggression", low)
    threats = make_incident("Threats", high, parent=verbal)

    reporter = make_user("Reporter")
    qa = make_user("QA Officer", role="QUALITY_ASSURANCE", pref_enabled=True,
                   incident_ids=[verbal.id])
    sec_manager = make_user("Security Manager", role="DEPARTMENT_MANAGER",
                            department=security, pref_enabled=True)
    nurse = make_user("Charge Nurse", role="DEPARTMENT_MANAGER",
                      department=nursing, pref_enabled=True)

    return SimpleNamespace(
        security=security, nursing=nursing,
        low=low, high=high,
        verbal=verbal, threats=threats,
        location=location,
        reporter=reporter, qa=qa, sec_manager=sec_manager, nurse=nurse,
    )
