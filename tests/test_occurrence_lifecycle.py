"""
Occurrence lifecycle tests: referral, department response, thread messages
and administrative resolve, with the status derived after every action.
"""

import pytest

from occurrence_tracker.core.exceptions import NotFoundError, TransitionError, ValidationError
from occurrence_tracker.models.occurrence import (
    OccurrenceAssignment,
    OccurrenceMessage,
    OccurrenceStatus,
)
from occurrence_tracker.services import occurrence_lifecycle as lifecycle
from occurrence_tracker.services.occurrence_service import (
    assignment_states,
    get_status,
    replied_department_ids,
)


@pytest.fixture()
def occ(org, make_occurrence):
    return make_occurrence(org.threats, created_by=org.reporter)


# ═════════════════════════════════════════════════════════════════════════════
# Scenario
# ═════════════════════════════════════════════════════════════════════════════


class TestFullLifecycle:
    def test_refer_respond_reply_resolve(self, org, occ):
        assert get_status(occ.id) == OccurrenceStatus.OPEN

        lifecycle.refer_to_departments(occ.id, [org.security.id, org.nursing.id],
                                       message="Please review", actor_id=org.qa.id)
        assert get_status(occ.id) == OccurrenceStatus.ASSIGNED

        lifecycle.record_department_response_for_user(
            occ.id, org.sec_manager.id, "Staffing shortfall at night",
        )
        assert get_status(occ.id) == OccurrenceStatus.ANSWERED_PARTIALLY

        lifecycle.post_thread_message(occ.id, org.nurse.id, "Nursing reviewed the roster")
        assert get_status(occ.id) == OccurrenceStatus.ANSWERED

        closed = lifecycle.resolve_occurrence(occ.id, actor_id=org.qa.id)
        assert closed.status == OccurrenceStatus.CLOSED.value
        assert closed.closed_at is not None

        with pytest.raises(TransitionError):
            lifecycle.post_thread_message(occ.id, org.nurse.id, "One more thing")
        assert OccurrenceMessage.query.filter_by(occurrence_id=occ.id).count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# Referral
# ═════════════════════════════════════════════════════════════════════════════


class TestReferral:
    def test_creates_one_assignment_per_department(self, org, occ):
        assignments = lifecycle.refer_to_departments(occ.id, [org.security.id, org.nursing.id])
        assert [a.department_id for a in assignments] == [org.security.id, org.nursing.id]
        assert OccurrenceAssignment.query.filter_by(occurrence_id=occ.id).count() == 2

    def test_duplicate_department_ids_collapse(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id, org.security.id])
        assert OccurrenceAssignment.query.filter_by(occurrence_id=occ.id).count() == 1

    def test_empty_department_list_rejected(self, occ):
        with pytest.raises(ValidationError):
            lifecycle.refer_to_departments(occ.id, [])
        assert get_status(occ.id) == OccurrenceStatus.OPEN

    def test_unknown_department_writes_nothing(self, org, occ):
        with pytest.raises(NotFoundError):
            lifecycle.refer_to_departments(occ.id, [org.security.id, "no-such-dept"])
        assert OccurrenceAssignment.query.count() == 0
        assert get_status(occ.id) == OccurrenceStatus.OPEN

    def test_unknown_occurrence(self, org):
        with pytest.raises(NotFoundError):
            lifecycle.refer_to_departments("missing", [org.security.id])

    def test_closed_occurrence_cannot_be_referred(self, org, occ):
        lifecycle.resolve_occurrence(occ.id)
        with pytest.raises(TransitionError):
            lifecycle.refer_to_departments(occ.id, [org.security.id])
        assert get_status(occ.id) == OccurrenceStatus.CLOSED

    def test_rereferral_resets_completion(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id])
        lifecycle.record_department_response_for_user(occ.id, org.sec_manager.id, "Door was unlocked")
        assert get_status(occ.id) == OccurrenceStatus.ANSWERED

        [assignment] = lifecycle.refer_to_departments(occ.id, [org.security.id], message="Need more detail")
        assert assignment.completed_at is None
        assert assignment.message == "Need more detail"
        assert get_status(occ.id) == OccurrenceStatus.ASSIGNED
        assert OccurrenceAssignment.query.filter_by(occurrence_id=occ.id).count() == 1

    def test_adding_department_keeps_other_answers(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id])
        lifecycle.record_department_response_for_user(occ.id, org.sec_manager.id, "Door was unlocked")

        lifecycle.refer_to_departments(occ.id, [org.nursing.id])
        assert get_status(occ.id) == OccurrenceStatus.ANSWERED_PARTIALLY

    def test_refer_many_batches_occurrences(self, org, make_occurrence):
        first = make_occurrence(org.threats)
        second = make_occurrence(org.verbal)

        result = lifecycle.refer_many([first.id, second.id], [org.security.id])

        assert set(result) == {first.id, second.id}
        assert get_status(first.id) == OccurrenceStatus.ASSIGNED
        assert get_status(second.id) == OccurrenceStatus.ASSIGNED

    def test_refer_many_rejects_empty_occurrence_list(self, org):
        with pytest.raises(ValidationError):
            lifecycle.refer_many([], [org.security.id])

    def test_refer_many_is_all_or_nothing(self, org, make_occurrence):
        open_occ = make_occurrence(org.threats)
        closed_occ = make_occurrence(org.threats, status="CLOSED")

        with pytest.raises(TransitionError):
            lifecycle.refer_many([open_occ.id, closed_occ.id], [org.security.id])
        assert OccurrenceAssignment.query.count() == 0
        assert get_status(open_occ.id) == OccurrenceStatus.OPEN


# ═════════════════════════════════════════════════════════════════════════════
# Department response
# ═════════════════════════════════════════════════════════════════════════════


class TestDepartmentResponse:
    def test_records_root_cause_and_plan(self, org, occ):
        [assignment] = lifecycle.refer_to_departments(occ.id, [org.security.id])

        done = lifecycle.record_department_response(
            assignment.id, "  Lighting failure  ", "Replace car park lighting", actor_id=org.sec_manager.id,
        )
        assert done.root_cause == "Lighting failure"
        assert done.action_plan == "Replace car park lighting"
        assert done.completed_at is not None

    @pytest.mark.parametrize("root_cause,action_plan", [
        ("", None),
        ("abc", None),
        ("Valid root cause", "short"),
    ])
    def test_validation(self, org, occ, root_cause, action_plan):
        [assignment] = lifecycle.refer_to_departments(occ.id, [org.security.id])
        with pytest.raises(ValidationError):
            lifecycle.record_department_response(assignment.id, root_cause, action_plan)
        assert get_status(occ.id) == OccurrenceStatus.ASSIGNED

    def test_unknown_assignment(self):
        with pytest.raises(NotFoundError):
            lifecycle.record_department_response("missing", "Root cause text")

    def test_user_without_assignment(self, org, occ, make_user, make_department):
        pharmacy = make_department("Pharmacy")
        pharmacist = make_user(department=pharmacy)
        lifecycle.refer_to_departments(occ.id, [org.security.id])

        with pytest.raises(NotFoundError):
            lifecycle.record_department_response_for_user(occ.id, pharmacist.id, "Root cause text")

    def test_user_without_department(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id])
        with pytest.raises(ValidationError):
            lifecycle.record_department_response_for_user(occ.id, org.reporter.id, "Root cause text")

    def test_closed_occurrence_rejects_response(self, org, occ):
        [assignment] = lifecycle.refer_to_departments(occ.id, [org.security.id])
        lifecycle.resolve_occurrence(occ.id)

        with pytest.raises(TransitionError):
            lifecycle.record_department_response(assignment.id, "Root cause text")


# ═════════════════════════════════════════════════════════════════════════════
# Thread messages
# ═════════════════════════════════════════════════════════════════════════════


class TestThreadMessages:
    def test_message_snapshots_sender_department(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id])
        msg = lifecycle.post_thread_message(occ.id, org.sec_manager.id, "  Looking into it  ")

        assert msg.message == "Looking into it"
        assert msg.sender_department_id == org.security.id
        assert msg.recipient_department_id is None

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_message_rejected(self, org, occ, text):
        with pytest.raises(ValidationError):
            lifecycle.post_thread_message(occ.id, org.qa.id, text)

    def test_message_from_unassigned_user_does_not_answer(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id])
        lifecycle.post_thread_message(occ.id, org.qa.id, "Any update?")
        lifecycle.post_thread_message(occ.id, org.nurse.id, "Nursing saw it too")

        assert replied_department_ids(occ.id) == set()
        assert get_status(occ.id) == OccurrenceStatus.ASSIGNED

    def test_message_before_rereferral_no_longer_counts(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id])
        lifecycle.post_thread_message(occ.id, org.sec_manager.id, "Guard was on break")
        assert get_status(occ.id) == OccurrenceStatus.ANSWERED

        lifecycle.refer_to_departments(occ.id, [org.security.id], message="Please add CCTV notes")
        assert replied_department_ids(occ.id) == set()
        assert get_status(occ.id) == OccurrenceStatus.ASSIGNED

        lifecycle.post_thread_message(occ.id, org.sec_manager.id, "CCTV attached")
        assert get_status(occ.id) == OccurrenceStatus.ANSWERED

    def test_assignment_states_report_answered_flag(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id, org.nursing.id])
        lifecycle.post_thread_message(occ.id, org.nurse.id, "Nursing statement attached")

        states = {s["department_id"]: s["answered"] for s in assignment_states(occ.id)}
        assert states == {org.security.id: False, org.nursing.id: True}

    def test_members_and_oversight_can_read_thread(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id])
        lifecycle.post_thread_message(occ.id, org.qa.id, "First")
        lifecycle.post_thread_message(occ.id, org.sec_manager.id, "Second")

        for viewer in (org.qa, org.sec_manager):
            msgs = lifecycle.list_thread_messages(occ.id, viewer.id)
            assert [m.message for m in msgs] == ["First", "Second"]

    def test_outsiders_cannot_read_thread(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id])
        for outsider in (org.nurse, org.reporter):
            with pytest.raises(NotFoundError):
                lifecycle.list_thread_messages(occ.id, outsider.id)


# ═════════════════════════════════════════════════════════════════════════════
# Resolve
# ═════════════════════════════════════════════════════════════════════════════


class TestResolve:
    def test_resolve_from_open(self, occ):
        assert lifecycle.resolve_occurrence(occ.id).status == OccurrenceStatus.CLOSED.value

    def test_resolve_from_partially_answered(self, org, occ):
        lifecycle.refer_to_departments(occ.id, [org.security.id, org.nursing.id])
        lifecycle.post_thread_message(occ.id, org.nurse.id, "Statement attached")

        lifecycle.resolve_occurrence(occ.id)
        assert get_status(occ.id) == OccurrenceStatus.CLOSED

    def test_closed_is_terminal(self, org, occ):
        [assignment] = lifecycle.refer_to_departments(occ.id, [org.security.id])
        lifecycle.resolve_occurrence(occ.id)

        with pytest.raises(TransitionError):
            lifecycle.record_department_response(assignment.id, "Root cause text")
        with pytest.raises(TransitionError):
            lifecycle.post_thread_message(occ.id, org.sec_manager.id, "Late reply")
        assert get_status(occ.id) == OccurrenceStatus.CLOSED

    def test_resolving_twice_is_a_noop(self, occ):
        first = lifecycle.resolve_occurrence(occ.id)
        closed_at = first.closed_at

        again = lifecycle.resolve_occurrence(occ.id)
        assert again.status == OccurrenceStatus.CLOSED.value
        assert again.closed_at == closed_at

    def test_unknown_occurrence(self):
        with pytest.raises(NotFoundError):
            lifecycle.resolve_occurrence("missing")
