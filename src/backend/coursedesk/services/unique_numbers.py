import logging
import re
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from coursedesk.config import settings
from coursedesk.models.app_settings import SETTINGS_ROW_ID, AppSettings
from coursedesk.models.participant import Participant
from coursedesk.services.validation import (
    DUPLICATE,
    INVALID_FORMAT,
    SKIPS_GAP,
    ValidationIssue,
)

logger = logging.getLogger(__name__)

UNIQUE_NUMBER_PATTERN = re.compile(r"^(\d{4})-(\d{3})$")
MAX_PREFIX = 9999
MAX_SEQUENCE = 999


class NumberingExhaustedError(RuntimeError):
    pass


def format_unique_number(prefix: int, seq: int) -> str:
    return f"{prefix:04d}-{seq:03d}"


def parse_unique_number(value: str | None) -> tuple[int, int] | None:
    if not value:
        return None
    match = UNIQUE_NUMBER_PATTERN.match(value.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def is_valid_unique_number_format(candidate: str) -> bool:
    return parse_unique_number(candidate) is not None


def get_settings_record(db: Session) -> AppSettings:
    record = db.get(AppSettings, SETTINGS_ROW_ID)
    if record:
        return record
    record = AppSettings(
        id=SETTINGS_ROW_ID,
        unique_prefix=settings.unique_number_prefix,
        last_unique_seq=0,
        last_reset_year=None,
    )
    db.add(record)
    db.flush()
    return record


def current_prefix(db: Session) -> int:
    return get_settings_record(db).unique_prefix


def _sequences_for_prefix(db: Session, prefix: int) -> list[int]:
    numbers = db.scalars(
        select(Participant.unique_number).where(
            Participant.unique_number.like(f"{prefix:04d}-%")
        )
    ).all()
    sequences = set()
    for number in numbers:
        parsed = parse_unique_number(number)
        if parsed and parsed[0] == prefix:
            sequences.add(parsed[1])
    return sorted(sequences)


def generate_next_unique_number(db: Session) -> str:
    prefix = current_prefix(db)
    sequences = _sequences_for_prefix(db, prefix)
    next_seq = (sequences[-1] if sequences else 0) + 1
    if next_seq > MAX_SEQUENCE:
        raise NumberingExhaustedError(
            f"Sequence for prefix {prefix:04d} is exhausted; reset the sequence to continue"
        )
    return format_unique_number(prefix, next_seq)


def check_for_gaps(db: Session) -> str | None:
    """Smallest missing sequence strictly below the current maximum, if any."""
    prefix = current_prefix(db)
    sequences = _sequences_for_prefix(db, prefix)
    if not sequences:
        return None

    used = set(sequences)
    for seq in range(1, sequences[-1]):
        if seq not in used:
            return format_unique_number(prefix, seq)
    return None


def propose_unique_number(db: Session) -> str:
    return check_for_gaps(db) or generate_next_unique_number(db)


def is_unique_number_available(
    db: Session,
    candidate: str,
    exclude_participant_id: str | None = None,
) -> bool:
    holders = db.scalars(
        select(Participant.id).where(Participant.unique_number == candidate.strip())
    ).all()
    return all(holder == exclude_participant_id for holder in holders)


def validate_unique_number(
    db: Session,
    candidate: str,
    *,
    participant_id: str | None = None,
    key: str = "unique_number",
) -> list[ValidationIssue]:
    """Validate a manually entered number.

    ``participant_id`` is None for new participants; only those are held to
    the gap rule, and only against the nearest open gap.
    """
    candidate = candidate.strip()
    parsed = parse_unique_number(candidate)
    if parsed is None:
        return [
            ValidationIssue(
                key=key,
                code=INVALID_FORMAT,
                message="Unique number must have the format NNNN-NNN",
            )
        ]

    issues: list[ValidationIssue] = []
    if not is_unique_number_available(db, candidate, exclude_participant_id=participant_id):
        issues.append(
            ValidationIssue(
                key=key,
                code=DUPLICATE,
                message=f"Unique number {candidate} is already assigned",
            )
        )

    if participant_id is None:
        gap = check_for_gaps(db)
        gap_parsed = parse_unique_number(gap)
        if gap_parsed and parsed > gap_parsed:
            issues.append(
                ValidationIssue(
                    key=key,
                    code=SKIPS_GAP,
                    message=f"Number {gap} is free and must be used before {candidate}",
                )
            )
    return issues


def record_issued_number(db: Session, number: str) -> None:
    parsed = parse_unique_number(number)
    if not parsed:
        return
    record = get_settings_record(db)
    prefix, seq = parsed
    if prefix == record.unique_prefix and seq > record.last_unique_seq:
        record.last_unique_seq = seq


def assign_numbers_for_window(db: Session, course_start_date: date) -> list[str]:
    """Backfill numbers for participants of a window that just became active."""
    participants = db.scalars(
        select(Participant)
        .where(
            Participant.course_start_date == course_start_date,
            Participant.unique_number.is_(None),
        )
        .order_by(Participant.created_at.asc(), Participant.id.asc())
    ).all()
    if not participants:
        return []

    prefix = current_prefix(db)
    used = set(_sequences_for_prefix(db, prefix))
    assigned: list[str] = []
    seq = 0
    for participant in participants:
        seq += 1
        while seq in used:
            seq += 1
        if seq > MAX_SEQUENCE:
            raise NumberingExhaustedError(
                f"Sequence for prefix {prefix:04d} is exhausted; reset the sequence to continue"
            )
        number = format_unique_number(prefix, seq)
        participant.unique_number = number
        used.add(seq)
        assigned.append(number)
        record_issued_number(db, number)

    db.flush()
    logger.info(
        "Assigned %d unique numbers for window starting %s", len(assigned), course_start_date
    )
    return assigned


def reset_sequence(db: Session, new_prefix: int, today: date | None = None) -> AppSettings:
    """Start a new numbering epoch under ``new_prefix``."""
    if not 0 <= new_prefix <= MAX_PREFIX:
        raise ValueError(f"Prefix must be between 0 and {MAX_PREFIX}")
    record = get_settings_record(db)
    if new_prefix == record.unique_prefix:
        raise ValueError("New prefix must differ from the current prefix")

    today = today or date.today()
    previous = record.unique_prefix
    record.unique_prefix = new_prefix
    record.last_unique_seq = 0
    record.last_reset_year = today.year
    db.flush()
    logger.info("Numbering sequence reset: prefix %04d -> %04d", previous, new_prefix)
    return record
