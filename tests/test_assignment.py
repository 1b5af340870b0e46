from datetime import date

import pytest

from coursedesk.models.enums import GroupStatus, Milestone
from coursedesk.models.participant import Participant
from coursedesk.schemas.participant import ParticipantCreateRequest, ParticipantUpdateRequest
from coursedesk.services.assignment import (
    VirtualGroup,
    add_participant,
    delete_participant,
    get_suggested_group,
    reset_completed_override,
    resolve_assignment,
    set_milestone_bulk,
    update_participant,
)
from coursedesk.services.entitlement import EntitlementState, ReadOnlyError
from coursedesk.services.group_lifecycle import get_group_by_course_start
from coursedesk.services.validation import (
    CLOSED_WINDOW,
    DUPLICATE,
    GROUP_LOCKED,
    NUMBER_NOT_ALLOWED,
    SKIPS_GAP,
)

TODAY = date(2025, 3, 5)
FEB_24 = date(2025, 2, 24)
MAR_3 = date(2025, 3, 3)
MAR_10 = date(2025, 3, 10)
MAR_17 = date(2025, 3, 17)


def _request(medical_date: date, unique_number: str | None = None) -> ParticipantCreateRequest:
    return ParticipantCreateRequest(
        company_name=" Acme Logistics ",
        person_name="Ivan Petrov",
        national_id="8501011234",
        birth_place="Plovdiv",
        medical_date=medical_date,
        unique_number=unique_number,
    )


@pytest.fixture()
def active_week(make_group):
    return make_group(MAR_3, GroupStatus.active, group_number=12)


def test_suggested_group_is_virtual_until_written(db):
    suggestion = get_suggested_group(db, "2025-03-05")

    assert suggestion.group is None
    assert suggestion.creates_for_date == MAR_10
    assert isinstance(suggestion.target, VirtualGroup)
    assert get_group_by_course_start(db, MAR_10) is None


def test_resolve_active_window_proposes_number(db, active_week, make_participant):
    make_participant(MAR_3, unique_number="3531-001")
    make_participant(MAR_3, unique_number="3531-003")

    proposal = resolve_assignment(db, date(2025, 3, 1), today=TODAY)

    assert proposal.accepted
    assert proposal.status == GroupStatus.active
    assert proposal.gap_number == "3531-002"
    assert proposal.next_number == "3531-004"
    assert proposal.proposed_number == "3531-002"


def test_resolve_planned_window_has_no_number(db, active_week):
    proposal = resolve_assignment(db, date(2025, 3, 5), today=TODAY)

    assert proposal.accepted
    assert proposal.status == GroupStatus.planned
    assert proposal.proposed_number is None


def test_resolve_completed_window_is_closed(db, make_group):
    make_group(FEB_24, GroupStatus.completed, group_number=11, is_locked=True)

    proposal = resolve_assignment(db, date(2025, 2, 20), today=TODAY)

    assert not proposal.accepted
    assert [issue.code for issue in proposal.issues] == [CLOSED_WINDOW]
    assert proposal.proposed_number is None


def test_add_to_active_group_issues_number(db, gate, active_week):
    result = add_participant(db, _request(date(2025, 3, 1)), gate, today=TODAY)

    participant = result.participant
    assert result.issues == []
    assert participant.unique_number == "3531-001"
    assert participant.course_start_date == MAR_3
    assert participant.company_name == "Acme Logistics"
    assert participant.citizenship == "българско"


def test_add_to_future_window_persists_planned_group(db, gate, active_week):
    result = add_participant(db, _request(date(2025, 3, 12)), gate, today=TODAY)

    assert result.participant.unique_number is None
    group = get_group_by_course_start(db, MAR_17)
    assert group.status == GroupStatus.planned
    assert group.group_number is None


def test_add_to_closed_window_writes_nothing(db, gate, make_group):
    make_group(FEB_24, GroupStatus.completed, group_number=11, is_locked=True)

    result = add_participant(db, _request(date(2025, 2, 20)), gate, today=TODAY)

    assert result.participant is None
    assert result.issues[0].code == CLOSED_WINDOW
    assert db.query(Participant).count() == 0


def test_add_to_ended_window_without_group_is_closed(db, gate, active_week):
    result = add_participant(db, _request(date(2025, 2, 10)), gate, today=TODAY)

    assert result.participant is None
    assert result.issues[0].code == CLOSED_WINDOW


def test_manual_number_rejected_outside_active_group(db, gate, active_week):
    result = add_participant(db, _request(date(2025, 3, 12), "3531-001"), gate, today=TODAY)

    assert [issue.code for issue in result.issues] == [NUMBER_NOT_ALLOWED]


def test_manual_number_must_fill_nearest_gap(db, gate, active_week, make_participant):
    make_participant(MAR_3, unique_number="3531-001")
    make_participant(MAR_3, unique_number="3531-003")

    skipped = add_participant(db, _request(date(2025, 3, 1), "3531-004"), gate, today=TODAY)
    duplicate = add_participant(db, _request(date(2025, 3, 1), "3531-001"), gate, today=TODAY)
    filled = add_participant(db, _request(date(2025, 3, 1), "3531-002"), gate, today=TODAY)

    assert [issue.code for issue in skipped.issues] == [SKIPS_GAP]
    assert [issue.code for issue in duplicate.issues] == [DUPLICATE]
    assert filled.participant.unique_number == "3531-002"


def test_edit_may_skip_gap(db, gate, active_week, make_participant):
    make_participant(MAR_3, unique_number="3531-001")
    editing = make_participant(MAR_3, unique_number="3531-003")

    result = update_participant(
        db, editing.id, ParticipantUpdateRequest(unique_number="3531-007"), gate, today=TODAY
    )

    assert result.issues == []
    assert result.participant.unique_number == "3531-007"


def test_moving_windows_clears_number(db, gate, active_week, make_participant):
    moving = make_participant(MAR_3, unique_number="3531-001")

    result = update_participant(
        db, moving.id, ParticipantUpdateRequest(medical_date=date(2025, 3, 12)), gate, today=TODAY
    )

    assert result.participant.course_start_date == MAR_17
    assert result.participant.course_end_date == date(2025, 3, 24)
    assert result.participant.unique_number is None


def test_moving_into_active_window_requests_number(db, gate, active_week, make_participant):
    make_participant(MAR_3, unique_number="3531-001")
    later = make_participant(MAR_10)

    result = update_participant(
        db, later.id, ParticipantUpdateRequest(medical_date=date(2025, 2, 28)), gate, today=TODAY
    )

    assert result.participant.course_start_date == MAR_3
    assert result.participant.unique_number == "3531-002"


def test_moving_into_completed_window_is_rejected(db, gate, make_group, active_week, make_participant):
    make_group(FEB_24, GroupStatus.completed, group_number=11, is_locked=False)
    participant = make_participant(MAR_3, unique_number="3531-001")

    result = update_participant(
        db,
        participant.id,
        ParticipantUpdateRequest(medical_date=date(2025, 2, 20)),
        gate,
        today=TODAY,
    )

    assert [issue.code for issue in result.issues] == [CLOSED_WINDOW]
    assert participant.course_start_date == MAR_3
    assert participant.unique_number == "3531-001"


def test_locked_group_rejects_edits(db, gate, make_group, make_participant):
    make_group(FEB_24, GroupStatus.completed, group_number=11, is_locked=True)
    participant = make_participant(FEB_24, unique_number="3531-001")

    result = update_participant(
        db, participant.id, ParticipantUpdateRequest(person_name="Renamed"), gate, today=TODAY
    )

    assert [issue.code for issue in result.issues] == [GROUP_LOCKED]
    assert participant.person_name != "Renamed"


def test_milestones_drive_completion(db, gate, active_week, make_participant):
    participant = make_participant(MAR_3, unique_number="3531-001")

    update_participant(
        db,
        participant.id,
        ParticipantUpdateRequest(sent=True, documents=True, handed_over=True, paid=True),
        gate,
        today=TODAY,
    )
    assert participant.completed_computed is True
    assert participant.completed_at is not None

    update_participant(
        db, participant.id, ParticipantUpdateRequest(completed_override=False), gate, today=TODAY
    )
    assert participant.is_completed is False

    reset_completed_override(db, participant.id, gate)
    assert participant.completed_override is None
    assert participant.is_completed is True


def test_bulk_milestone_skips_locked_groups(db, gate, make_group, active_week, make_participant):
    make_group(FEB_24, GroupStatus.completed, group_number=11, is_locked=True)
    open_one = make_participant(MAR_3, unique_number="3531-002")
    locked_one = make_participant(FEB_24, unique_number="3531-001")

    result = set_milestone_bulk(
        db, [open_one.id, locked_one.id, "missing"], Milestone.paid, True, gate
    )

    assert result.success == 1
    assert result.failed == 2
    assert open_one.paid is True
    assert locked_one.paid is False


def test_delete_participant(db, gate, active_week, make_participant):
    participant = make_participant(MAR_3, unique_number="3531-001")

    delete_participant(db, participant.id, gate, today=TODAY)

    assert db.get(Participant, participant.id) is None
    with pytest.raises(ValueError, match="not found"):
        delete_participant(db, participant.id, gate, today=TODAY)


def test_read_only_blocks_writes(db, gate, active_week, make_participant):
    participant = make_participant(MAR_3, unique_number="3531-001")
    gate.set_state(EntitlementState(configured=True, authenticated=True, read_only=True))

    with pytest.raises(ReadOnlyError):
        add_participant(db, _request(date(2025, 3, 1)), gate, today=TODAY)
    with pytest.raises(ReadOnlyError):
        update_participant(db, participant.id, ParticipantUpdateRequest(paid=True), gate)
    with pytest.raises(ReadOnlyError):
        delete_participant(db, participant.id, gate)
    assert db.query(Participant).count() == 1
