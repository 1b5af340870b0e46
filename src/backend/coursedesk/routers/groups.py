from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursedesk.db.database import get_db
from coursedesk.models.enums import GroupStatus
from coursedesk.models.group import Group
from coursedesk.routers.common import raise_conflict, raise_read_only, raise_value_error
from coursedesk.schemas.group import (
    ClassificationResponse,
    GroupActivateRequest,
    GroupActivateResponse,
    GroupResponse,
    MaintenanceResponse,
    SuggestedGroupResponse,
)
from coursedesk.services.assignment import VirtualGroup, get_suggested_group
from coursedesk.services.entitlement import EntitlementGate, ReadOnlyError, get_entitlement_gate
from coursedesk.services.group_lifecycle import (
    MaintenanceReport,
    activate_group,
    classify_course_start,
    close_active_group,
    count_participants_in_window,
    delete_group_if_empty,
    list_groups_with_counts,
    lock_group,
    maintenance_runner,
    unlock_group,
)
from coursedesk.services.unique_numbers import NumberingExhaustedError

router = APIRouter(prefix="/api/groups", tags=["groups"])


def to_group_response(group: Group | VirtualGroup, participant_count: int = 0) -> GroupResponse:
    if isinstance(group, VirtualGroup):
        return GroupResponse(
            id=None,
            group_number=None,
            course_start_date=group.course_start_date,
            course_end_date=group.course_end_date,
            status=group.status,
            is_locked=False,
            is_virtual=True,
        )
    return GroupResponse(
        id=group.id,
        group_number=group.group_number,
        course_start_date=group.course_start_date,
        course_end_date=group.course_end_date,
        status=group.status,
        is_locked=group.is_locked,
        participant_count=participant_count,
        activated_at=group.activated_at,
        closed_at=group.closed_at,
    )


def _to_maintenance_response(report: MaintenanceReport) -> MaintenanceResponse:
    return MaintenanceResponse(
        coalesced=report.coalesced,
        corrected_active=report.corrected_active,
        repaired_numbers=report.repaired_numbers,
        promoted=report.promoted,
        completed=report.completed,
        created=report.created,
        removed=report.removed,
    )


def _with_count(db: Session, group: Group) -> GroupResponse:
    return to_group_response(group, count_participants_in_window(db, group.course_start_date))


@router.get("", response_model=list[GroupResponse])
def list_all_groups(
    status: GroupStatus | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return [
        to_group_response(group, count)
        for group, count in list_groups_with_counts(db)
        if status is None or group.status == status
    ]


@router.get("/suggested", response_model=SuggestedGroupResponse)
def get_suggested(medical_date: date = Query(...), db: Session = Depends(get_db)):
    suggestion = get_suggested_group(db, medical_date)
    if suggestion.group is None:
        return SuggestedGroupResponse(
            group=to_group_response(suggestion.target),
            creates_for_date=suggestion.creates_for_date,
        )
    return SuggestedGroupResponse(
        group=_with_count(db, suggestion.group),
        creates_for_date=None,
    )


@router.get("/classify", response_model=ClassificationResponse)
def classify(course_start_date: date = Query(...), db: Session = Depends(get_db)):
    return ClassificationResponse(
        course_start_date=course_start_date,
        status=classify_course_start(db, course_start_date),
    )


@router.post("/maintenance", response_model=MaintenanceResponse)
def run_maintenance(
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        gate.ensure_writable()
        report = maintenance_runner.run(db)
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except NumberingExhaustedError as exc:
        db.rollback()
        raise_conflict(exc)
    return _to_maintenance_response(report)


@router.post("/close-active", response_model=GroupResponse)
def close_active(
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        gate.ensure_writable()
        group = close_active_group(db)
        db.commit()
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except ValueError as exc:
        db.rollback()
        raise_value_error(exc)
    return _with_count(db, group)


@router.post("/{group_id}/activate", response_model=GroupActivateResponse)
def activate(
    group_id: str,
    payload: GroupActivateRequest | None = None,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    force = payload.force if payload is not None else False
    try:
        gate.ensure_writable()
        result = activate_group(db, group_id, force=force)
        db.commit()
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except ValueError as exc:
        db.rollback()
        raise_value_error(exc)
    except (IntegrityError, NumberingExhaustedError) as exc:
        db.rollback()
        raise_conflict(exc, "Group activation conflicts with existing numbering")

    return GroupActivateResponse(
        success=result.success,
        needs_confirm=result.needs_confirm,
        current_active=(
            _with_count(db, result.current_active) if result.current_active is not None else None
        ),
    )


@router.post("/{group_id}/lock", response_model=GroupResponse)
def lock(
    group_id: str,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        gate.ensure_writable()
        group = lock_group(db, group_id)
        db.commit()
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except ValueError as exc:
        db.rollback()
        raise_value_error(exc)
    return _with_count(db, group)


@router.post("/{group_id}/unlock", response_model=GroupResponse)
def unlock(
    group_id: str,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        gate.ensure_writable()
        group = unlock_group(db, group_id)
        db.commit()
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except ValueError as exc:
        db.rollback()
        raise_value_error(exc)
    return _with_count(db, group)


@router.delete("/{group_id}", status_code=204)
def delete_group(
    group_id: str,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        gate.ensure_writable()
        deleted = delete_group_if_empty(db, group_id)
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except ValueError as exc:
        db.rollback()
        raise_value_error(exc)
    if not deleted:
        raise HTTPException(status_code=409, detail="Group still has participants")
    db.commit()
