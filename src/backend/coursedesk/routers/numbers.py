from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from coursedesk.db.database import get_db
from coursedesk.models.app_settings import AppSettings
from coursedesk.routers.common import raise_conflict, raise_read_only, raise_value_error
from coursedesk.schemas.numbering import (
    AvailabilityResponse,
    GapResponse,
    NextNumberResponse,
    NumberingSettingsResponse,
    ResetSequenceRequest,
)
from coursedesk.services.entitlement import EntitlementGate, ReadOnlyError, get_entitlement_gate
from coursedesk.services.unique_numbers import (
    NumberingExhaustedError,
    check_for_gaps,
    generate_next_unique_number,
    get_settings_record,
    is_unique_number_available,
    is_valid_unique_number_format,
    reset_sequence,
)

router = APIRouter(prefix="/api/numbers", tags=["numbers"])


def _to_settings_response(record: AppSettings) -> NumberingSettingsResponse:
    return NumberingSettingsResponse(
        unique_prefix=record.unique_prefix,
        last_unique_seq=record.last_unique_seq,
        last_reset_year=record.last_reset_year,
    )


@router.get("/settings", response_model=NumberingSettingsResponse)
def get_numbering_settings(db: Session = Depends(get_db)):
    return _to_settings_response(get_settings_record(db))


@router.get("/next", response_model=NextNumberResponse)
def get_next_number(db: Session = Depends(get_db)):
    try:
        return NextNumberResponse(unique_number=generate_next_unique_number(db))
    except NumberingExhaustedError as exc:
        raise_conflict(exc)


@router.get("/gap", response_model=GapResponse)
def get_gap(db: Session = Depends(get_db)):
    return GapResponse(gap=check_for_gaps(db))


@router.get("/availability", response_model=AvailabilityResponse)
def get_availability(
    candidate: str = Query(..., min_length=1),
    exclude_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    candidate = candidate.strip()
    valid_format = is_valid_unique_number_format(candidate)
    return AvailabilityResponse(
        candidate=candidate,
        valid_format=valid_format,
        available=valid_format
        and is_unique_number_available(db, candidate, exclude_participant_id=exclude_id),
    )


@router.post("/reset-sequence", response_model=NumberingSettingsResponse)
def post_reset_sequence(
    payload: ResetSequenceRequest,
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        gate.ensure_writable()
        record = reset_sequence(db, payload.new_prefix)
        db.commit()
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except ValueError as exc:
        db.rollback()
        raise_value_error(exc)
    return _to_settings_response(record)
