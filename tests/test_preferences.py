"""
Notification preference tests.
"""

import pytest

from occurrence_tracker.core.exceptions import NotFoundError, ValidationError
from occurrence_tracker.models.notification import NotificationPreference
from occurrence_tracker.services.preferences import (
    get_preference,
    get_preference_dict,
    save_preference,
)


class TestPreferences:
    def test_default_when_nothing_stored(self, org):
        d = get_preference_dict(org.reporter.id)
        assert d["enabled"] is False
        assert d["channel"] == "EMAIL"
        assert d["incident_ids"] == [] and d["severity_ids"] == []
        assert get_preference(org.reporter.id) is None

    def test_create_then_replace(self, org):
        save_preference(org.reporter.id, enabled=True, channel="mobile",
                        incident_ids=[org.verbal.id], severity_ids=[org.high.id])
        pref = save_preference(org.reporter.id, enabled=False, channel="BOTH")

        assert NotificationPreference.query.filter_by(user_id=org.reporter.id).count() == 1
        assert pref.enabled is False
        assert pref.channel == "BOTH"
        assert pref.incident_ids == [] and pref.severity_ids == []

    def test_channel_is_normalised(self, org):
        pref = save_preference(org.reporter.id, enabled=True, channel="email")
        assert pref.channel == "EMAIL"

    def test_invalid_channel(self, org):
        with pytest.raises(ValidationError) as exc_info:
            save_preference(org.reporter.id, enabled=True, channel="PIGEON")
        assert "channel" in exc_info.value.details

    def test_unknown_interest_ids(self, org):
        with pytest.raises(ValidationError):
            save_preference(org.reporter.id, enabled=True, incident_ids=["missing"])
        with pytest.raises(ValidationError):
            save_preference(org.reporter.id, enabled=True, severity_ids=["missing"])
        assert get_preference(org.reporter.id) is None

    def test_unknown_user(self):
        with pytest.raises(NotFoundError):
            save_preference("missing", enabled=True)


class TestMatching:
    def test_matches_incident_or_severity(self, org):
        pref = NotificationPreference(enabled=True, incident_ids=["i1"], severity_ids=["s1"])
        assert pref.matches("i1", "other")
        assert pref.matches("other", "s1")
        assert not pref.matches("other", "other")

    def test_disabled_never_matches(self):
        pref = NotificationPreference(enabled=False, incident_ids=["i1"], severity_ids=["s1"])
        assert not pref.matches("i1", "s1")

    def test_empty_sets_never_match(self):
        pref = NotificationPreference(enabled=True, incident_ids=[], severity_ids=[])
        assert not pref.matches("i1", "s1")
        assert not pref.matches(None, None)
