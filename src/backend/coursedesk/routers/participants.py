from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursedesk.db.database import get_db
from coursedesk.models.group import Group
from coursedesk.models.participant import Participant
from coursedesk.routers.common import (
    raise_conflict,
    raise_issues,
    raise_read_only,
    raise_value_error,
    to_issue_response,
)
from coursedesk.routers.groups import to_group_response
from coursedesk.schemas.participant import (
    AssignmentRequest,
    AssignmentResponse,
    BulkMilestoneRequest,
    BulkMilestoneResponse,
    ParticipantCreateRequest,
    ParticipantResponse,
    ParticipantUpdateRequest,
)
from coursedesk.services.assignment import (
    ParticipantWriteResult,
    add_participant,
    delete_participant,
    list_participants,
    reset_completed_override,
    resolve_assignment,
    set_milestone_bulk,
    update_participant,
)
from coursedesk.services.entitlement import EntitlementGate, ReadOnlyError, get_entitlement_gate
from coursedesk.services.group_lifecycle import count_participants_in_window
from coursedesk.services.unique_numbers import NumberingExhaustedError

router = APIRouter(prefix="/api/participants", tags=["participants"])

DUPLICATE_NUMBER_MESSAGE = "Unique number was taken by a concurrent change; retry"


def _to_participant_response(participant: Participant) -> ParticipantResponse:
    return ParticipantResponse(
        id=participant.id,
        company_name=participant.company_name,
        person_name=participant.person_name,
        national_id=participant.national_id,
        birth_place=participant.birth_place,
        citizenship=participant.citizenship,
        medical_date=participant.medical_date,
        course_start_date=participant.course_start_date,
        course_end_date=participant.course_end_date,
        unique_number=participant.unique_number,
        sent=participant.sent,
        documents=participant.documents,
        handed_over=participant.handed_over,
        paid=participant.paid,
        completed_computed=participant.completed_computed,
        completed_override=participant.completed_override,
        completed=participant.is_completed,
        created_at=participant.created_at,
        updated_at=participant.updated_at,
        completed_at=participant.completed_at,
    )


def _commit_write(db: Session, result: ParticipantWriteResult) -> ParticipantResponse:
    if result.issues:
        db.rollback()
        raise_issues(result.issues)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise_conflict(exc, DUPLICATE_NUMBER_MESSAGE)
    return _to_participant_response(result.participant)


@router.get("", response_model=list[ParticipantResponse])
def list_all_participants(
    course_start_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return [_to_participant_response(p) for p in list_participants(db, course_start_date)]


@router.post("/resolve", response_model=AssignmentResponse)
def resolve(payload: AssignmentRequest, db: Session = Depends(get_db)):
    try:
        proposal = resolve_assignment(db, payload.medical_date)
    except NumberingExhaustedError as exc:
        raise_conflict(exc)

    group = proposal.group
    count = 0
    if isinstance(group, Group):
        count = count_participants_in_window(db, group.course_start_date)
    return AssignmentResponse(
        medical_date=proposal.medical_date,
        course_start_date=proposal.window.course_start_date,
        course_end_date=proposal.window.course_end_date,
        status=proposal.status,
        group=to_group_response(group, count),
        proposed_number=proposal.proposed_number,
        gap_number=proposal.gap_number,
        next_number=proposal.next_number,
        accepted=proposal.accepted,
        issues=[to_issue_response(issue) for issue in proposal.issues],
    )


@router.post("/bulk-milestone", response_model=BulkMilestoneResponse)
def bulk_milestone(
    payload: BulkMilestoneRequest,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        result = set_milestone_bulk(
            db, payload.participant_ids, payload.milestone, payload.value, gate
        )
        db.commit()
    except ReadOnlyError as exc:
        raise_read_only(exc)
    return BulkMilestoneResponse(success=result.success, failed=result.failed, errors=result.errors)


@router.get("/{participant_id}", response_model=ParticipantResponse)
def get_participant(participant_id: str, db: Session = Depends(get_db)):
    participant = db.get(Participant, participant_id)
    if not participant:
        raise HTTPException(status_code=404, detail="Participant not found")
    return _to_participant_response(participant)


@router.post("", response_model=ParticipantResponse, status_code=201)
def create_participant(
    payload: ParticipantCreateRequest,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        result = add_participant(db, payload, gate)
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except NumberingExhaustedError as exc:
        db.rollback()
        raise_conflict(exc)
    return _commit_write(db, result)


@router.patch("/{participant_id}", response_model=ParticipantResponse)
def patch_participant(
    participant_id: str,
    payload: ParticipantUpdateRequest,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        result = update_participant(db, participant_id, payload, gate)
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except ValueError as exc:
        db.rollback()
        raise_value_error(exc)
    except NumberingExhaustedError as exc:
        db.rollback()
        raise_conflict(exc)
    return _commit_write(db, result)


@router.delete("/{participant_id}", status_code=204)
def remove_participant(
    participant_id: str,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        delete_participant(db, participant_id, gate)
        db.commit()
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except ValueError as exc:
        db.rollback()
        raise_value_error(exc)


@router.post("/{participant_id}/reset-completion", response_model=ParticipantResponse)
def reset_completion(
    participant_id: str,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        participant = reset_completed_override(db, participant_id, gate)
        db.commit()
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except ValueError as exc:
        db.rollback()
        raise_value_error(exc)
    return _to_participant_response(participant)
