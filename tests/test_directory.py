"""
Directory lookup and reference-data seeding tests.
"""

import pytest

from occurrence_tracker.core.exceptions import NotFoundError
from occurrence_tracker.models.auth import Role
from occurrence_tracker.models.taxonomy import Incident, Severity
from occurrence_tracker.services import directory
from occurrence_tracker.services.seed import seed_reference_data


class TestTaxonomy:
    def test_top_level_and_chain(self, org, make_incident):
        leaf = make_incident("Threats to kill", org.high, parent=org.threats)

        assert directory.top_level_incident(leaf.id).id == org.verbal.id
        assert [i.name for i in directory.ancestor_chain(leaf.id)] == [
            "Threats to kill", "Threats", "Verbal Aggression",
        ]
        assert directory.top_level_incident(org.verbal.id).id == org.verbal.id

    def test_unknown_incident(self):
        with pytest.raises(NotFoundError):
            directory.get_incident("missing")

    def test_severities_at_or_above(self, org):
        assert [s.name for s in directory.severities_at_or_above(1)] == ["HIGH", "LOW"]
        assert [s.name for s in directory.severities_at_or_above(2)] == ["HIGH"]


class TestUsers:
    def test_oversight_users_use_configured_roles(self, org, make_user):
        make_user(role="ADMIN")
        names = {u.name for u in directory.oversight_users()}
        assert "QA Officer" in names
        assert "Security Manager" not in names
        assert len(names) == 2

    def test_inactive_users_excluded(self, org, session):
        org.sec_manager.is_active = False
        session.commit()

        assert directory.users_in_departments([org.security.id]) == []
        assert directory.users_in_departments([]) == []

    def test_is_oversight_user(self, org):
        assert directory.is_oversight_user(org.qa)
        assert not directory.is_oversight_user(org.nurse)

    def test_get_departments_preserves_order(self, org):
        depts = directory.get_departments([org.nursing.id, org.security.id])
        assert [d.name for d in depts] == ["Nursing", "Security"]

    def test_get_departments_unknown(self, org):
        with pytest.raises(NotFoundError):
            directory.get_departments([org.nursing.id, "missing"])


class TestSeed:
    def test_seed_is_idempotent(self):
        first = seed_reference_data()
        second = seed_reference_data()

        assert first["roles"] == 6
        assert first["severities"] == 4
        assert first["incidents"] == 8
        assert all(v == 0 for v in second.values())
        assert Role.query.count() == 6

    def test_seeded_taxonomy_links_children(self):
        seed_reference_data()
        assault = Incident.query.filter_by(name="Assault").one()
        assert assault.top_level().name == "Physical Aggression"
        assert assault.severity_id == Severity.query.filter_by(name="CRITICAL").one().id
