"""
Lifecycle event publishing tests.
"""

from unittest.mock import patch

import pytest

from occurrence_tracker.core.exceptions import TransitionError
from occurrence_tracker.models.occurrence import OccurrenceStatus
from occurrence_tracker.services import occurrence_lifecycle as lifecycle
from occurrence_tracker.services.events import (
    OccurrenceReferred,
    OccurrenceResolved,
    ThreadMessagePosted,
    occurrence_event,
    publish,
)
from occurrence_tracker.services.occurrence_service import get_status


class TestPublish:
    def test_every_event_gets_its_own_id(self):
        a = OccurrenceResolved(occurrence_id="o1")
        b = OccurrenceResolved(occurrence_id="o1")
        assert a.event_id != b.event_id
        assert a.event_type == "occurrence.resolved"

    def test_failing_receiver_is_isolated(self):
        received = []

        def broken(event):
            raise RuntimeError("boom")

        with occurrence_event.connected_to(broken), \
                occurrence_event.connected_to(received.append):
            publish(OccurrenceResolved(occurrence_id="o1"))

        assert len(received) == 1

    def test_targeting_failure_does_not_undo_state_change(self, org, make_occurrence):
        occ = make_occurrence(org.threats, created_by=org.reporter)

        with patch("occurrence_tracker.services.notification_targeting.NotificationService.dispatch",
                   side_effect=RuntimeError("transport down")):
            lifecycle.resolve_occurrence(occ.id)

        assert get_status(occ.id) == OccurrenceStatus.CLOSED


class TestLifecyclePublishes:
    @pytest.fixture()
    def captured(self):
        events = []
        with occurrence_event.connected_to(events.append):
            yield events

    def test_referral_event(self, org, make_occurrence, captured):
        occ = make_occurrence(org.threats)
        lifecycle.refer_to_departments(occ.id, [org.security.id], message="Review", actor_id=org.qa.id)

        [event] = [e for e in captured if isinstance(e, OccurrenceReferred)]
        assert event.occurrence_ids == (occ.id,)
        assert event.department_ids == (org.security.id,)
        assert event.message == "Review"
        assert event.actor_id == org.qa.id

    def test_message_event(self, org, make_occurrence, captured):
        occ = make_occurrence(org.threats)
        msg = lifecycle.post_thread_message(occ.id, org.qa.id, "Any update?")

        [event] = [e for e in captured if isinstance(e, ThreadMessagePosted)]
        assert event.message_id == msg.id
        assert event.sender_id == org.qa.id

    def test_failed_action_publishes_nothing(self, org, make_occurrence, captured):
        occ = make_occurrence(org.threats, status="CLOSED")
        with pytest.raises(TransitionError):
            lifecycle.post_thread_message(occ.id, org.qa.id, "Too late")
        assert captured == []
