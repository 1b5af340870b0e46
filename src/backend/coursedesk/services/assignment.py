import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from coursedesk.config import settings
from coursedesk.models.enums import GroupStatus, Milestone
from coursedesk.models.group import Group
from coursedesk.models.participant import Participant
from coursedesk.schemas.participant import ParticipantCreateRequest, ParticipantUpdateRequest
from coursedesk.services.date_engine import (
    CourseWindow,
    compute_course_dates,
    is_medical_valid_for_course,
)
from coursedesk.services.entitlement import EntitlementGate
from coursedesk.services.group_lifecycle import (
    create_group,
    get_group_by_course_start,
    is_group_read_only,
    sync_groups,
)
from coursedesk.services.unique_numbers import (
    check_for_gaps,
    generate_next_unique_number,
    propose_unique_number,
    record_issued_number,
    validate_unique_number,
)
from coursedesk.services.validation import (
    CLOSED_WINDOW,
    GROUP_LOCKED,
    MEDICAL_EXPIRED,
    NUMBER_NOT_ALLOWED,
    ValidationIssue,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VirtualGroup:
    """A group computed for display only; never written to the store."""

    course_start_date: date
    course_end_date: date
    status: GroupStatus = GroupStatus.planned
    group_number: None = None
    is_locked: bool = False


@dataclass
class SuggestedGroup:
    window: CourseWindow
    group: Group | None
    creates_for_date: date | None

    @property
    def target(self) -> Group | VirtualGroup:
        if self.group is not None:
            return self.group
        return VirtualGroup(
            course_start_date=self.window.course_start_date,
            course_end_date=self.window.course_end_date,
        )


@dataclass
class AssignmentProposal:
    medical_date: date
    window: CourseWindow
    group: Group | VirtualGroup
    proposed_number: str | None = None
    gap_number: str | None = None
    next_number: str | None = None
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def status(self) -> GroupStatus:
        return self.group.status

    @property
    def accepted(self) -> bool:
        return not self.issues


@dataclass
class ParticipantWriteResult:
    participant: Participant | None
    issues: list[ValidationIssue] = field(default_factory=list)


@dataclass
class BulkActionResult:
    success: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def get_suggested_group(db: Session, medical_date: date | str) -> SuggestedGroup:
    window = compute_course_dates(medical_date)
    group = get_group_by_course_start(db, window.course_start_date)
    if group is not None:
        return SuggestedGroup(window=window, group=group, creates_for_date=None)
    return SuggestedGroup(window=window, group=None, creates_for_date=window.course_start_date)


def _window_issues(
    medical_date: date,
    window: CourseWindow,
    target: Group | VirtualGroup,
    today: date,
) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if target.status == GroupStatus.completed:
        issues.append(
            ValidationIssue(
                key="medical_date",
                code=CLOSED_WINDOW,
                message="The group for this course window is closed to new participants",
            )
        )
    elif isinstance(target, VirtualGroup) and window.course_end_date <= today:
        issues.append(
            ValidationIssue(
                key="medical_date",
                code=CLOSED_WINDOW,
                message="This course window has already ended",
            )
        )

    if not is_medical_valid_for_course(medical_date, window.course_start_date):
        issues.append(
            ValidationIssue(
                key="medical_date",
                code=MEDICAL_EXPIRED,
                message=(
                    "The medical exam must be on or before the course start and not older "
                    f"than {settings.medical_validity_months} months"
                ),
            )
        )
    return issues


def resolve_assignment(
    db: Session,
    medical_date: date,
    today: date | None = None,
) -> AssignmentProposal:
    """Resolve window, group and number for a medical date without writing."""
    today = today or date.today()
    suggestion = get_suggested_group(db, medical_date)
    target = suggestion.target
    proposal = AssignmentProposal(
        medical_date=medical_date,
        window=suggestion.window,
        group=target,
        issues=_window_issues(medical_date, suggestion.window, target, today),
    )
    if proposal.issues or target.status != GroupStatus.active:
        return proposal

    proposal.gap_number = check_for_gaps(db)
    proposal.next_number = generate_next_unique_number(db)
    proposal.proposed_number = proposal.gap_number or proposal.next_number
    return proposal


def _persist_target(db: Session, target: Group | VirtualGroup) -> Group:
    if isinstance(target, Group):
        return target
    return create_group(db, target.course_start_date)


def _refresh_completion(participant: Participant, was_completed: bool) -> None:
    participant.completed_computed = all(
        getattr(participant, milestone.value) for milestone in Milestone
    )
    # completed_at is kept when a participant becomes incomplete again.
    if not was_completed and participant.is_completed:
        participant.completed_at = datetime.utcnow()


def add_participant(
    db: Session,
    payload: ParticipantCreateRequest,
    gate: EntitlementGate,
    today: date | None = None,
) -> ParticipantWriteResult:
    gate.ensure_writable()
    today = today or date.today()

    proposal = resolve_assignment(db, payload.medical_date, today)
    if proposal.issues:
        return ParticipantWriteResult(participant=None, issues=proposal.issues)

    unique_number: str | None = None
    requested = (payload.unique_number or "").strip()
    if requested:
        if proposal.status != GroupStatus.active:
            return ParticipantWriteResult(
                participant=None,
                issues=[
                    ValidationIssue(
                        key="unique_number",
                        code=NUMBER_NOT_ALLOWED,
                        message="Unique numbers are only issued in the active group",
                    )
                ],
            )
        issues = validate_unique_number(db, requested)
        if issues:
            return ParticipantWriteResult(participant=None, issues=issues)
        unique_number = requested
    elif proposal.status == GroupStatus.active:
        # Re-query at commit time; the earlier proposal is advisory.
        unique_number = propose_unique_number(db)

    group = _persist_target(db, proposal.group)
    participant = Participant(
        company_name=payload.company_name.strip(),
        person_name=payload.person_name.strip(),
        national_id=payload.national_id.strip(),
        birth_place=payload.birth_place.strip(),
        citizenship=(payload.citizenship or settings.default_citizenship).strip(),
        medical_date=payload.medical_date,
        course_start_date=group.course_start_date,
        course_end_date=group.course_end_date,
        unique_number=unique_number,
    )
    db.add(participant)
    db.flush()
    if unique_number:
        record_issued_number(db, unique_number)
    logger.info(
        "Added participant %s to window %s (number=%s)",
        participant.id,
        participant.course_start_date,
        unique_number,
    )

    sync_groups(db, today=today)
    db.refresh(participant)
    return ParticipantWriteResult(participant=participant)


def _require_participant(db: Session, participant_id: str) -> Participant:
    participant = db.get(Participant, participant_id)
    if not participant:
        raise ValueError("Participant not found")
    return participant


def update_participant(
    db: Session,
    participant_id: str,
    payload: ParticipantUpdateRequest,
    gate: EntitlementGate,
    today: date | None = None,
) -> ParticipantWriteResult:
    gate.ensure_writable()
    today = today or date.today()
    participant = _require_participant(db, participant_id)

    current_group = get_group_by_course_start(db, participant.course_start_date)
    if is_group_read_only(current_group):
        return ParticipantWriteResult(
            participant=None,
            issues=[
                ValidationIssue(
                    key="id",
                    code=GROUP_LOCKED,
                    message="The participant's group is locked; unlock it before editing",
                )
            ],
        )

    data = payload.model_dump(exclude_unset=True)
    issues: list[ValidationIssue] = []

    new_window: CourseWindow | None = None
    target: Group | VirtualGroup | None = None
    new_medical = data.get("medical_date")
    if new_medical is not None and new_medical != participant.medical_date:
        suggestion = get_suggested_group(db, new_medical)
        if suggestion.window.course_start_date != participant.course_start_date:
            new_window = suggestion.window
            target = suggestion.target
            issues.extend(_window_issues(new_medical, new_window, target, today))
        elif not is_medical_valid_for_course(new_medical, participant.course_start_date):
            issues.extend(
                issue
                for issue in _window_issues(new_medical, suggestion.window, suggestion.target, today)
                if issue.code == MEDICAL_EXPIRED
            )

    target_status = target.status if target is not None else (
        current_group.status if current_group is not None else GroupStatus.planned
    )
    requested_number: str | None = None
    number_changed = False
    if "unique_number" in data:
        requested_number = (data["unique_number"] or "").strip() or None
        number_changed = requested_number != participant.unique_number
        if number_changed and requested_number is not None:
            if target_status != GroupStatus.active:
                issues.append(
                    ValidationIssue(
                        key="unique_number",
                        code=NUMBER_NOT_ALLOWED,
                        message="Unique numbers are only issued in the active group",
                    )
                )
            else:
                issues.extend(
                    validate_unique_number(db, requested_number, participant_id=participant.id)
                )

    if issues:
        return ParticipantWriteResult(participant=None, issues=issues)

    was_completed = participant.is_completed
    for key in ("company_name", "person_name", "national_id", "birth_place", "citizenship"):
        if data.get(key) is not None:
            setattr(participant, key, data[key].strip())
    if new_medical is not None:
        participant.medical_date = new_medical

    if new_window is not None and target is not None:
        group = _persist_target(db, target)
        participant.course_start_date = group.course_start_date
        participant.course_end_date = group.course_end_date
        # Moving windows invalidates the previous numbering context.
        participant.unique_number = None
        db.flush()
        if group.status == GroupStatus.active:
            participant.unique_number = requested_number or propose_unique_number(db)
        logger.info(
            "Participant %s moved to window %s", participant.id, participant.course_start_date
        )
    elif number_changed:
        participant.unique_number = requested_number

    if participant.unique_number:
        record_issued_number(db, participant.unique_number)

    for milestone in Milestone:
        if data.get(milestone.value) is not None:
            setattr(participant, milestone.value, data[milestone.value])
    if "completed_override" in data:
        participant.completed_override = data["completed_override"]
    _refresh_completion(participant, was_completed)
    participant.updated_at = datetime.utcnow()
    db.flush()

    sync_groups(db, today=today)
    db.refresh(participant)
    return ParticipantWriteResult(participant=participant)


def delete_participant(
    db: Session,
    participant_id: str,
    gate: EntitlementGate,
    today: date | None = None,
) -> None:
    gate.ensure_writable()
    participant = _require_participant(db, participant_id)
    db.delete(participant)
    db.flush()
    logger.info("Deleted participant %s", participant_id)
    sync_groups(db, today=today)


def reset_completed_override(
    db: Session, participant_id: str, gate: EntitlementGate
) -> Participant:
    gate.ensure_writable()
    participant = _require_participant(db, participant_id)
    was_completed = participant.is_completed
    participant.completed_override = None
    _refresh_completion(participant, was_completed)
    participant.updated_at = datetime.utcnow()
    db.flush()
    return participant


def set_milestone_bulk(
    db: Session,
    participant_ids: list[str],
    milestone: Milestone,
    value: bool,
    gate: EntitlementGate,
) -> BulkActionResult:
    gate.ensure_writable()
    result = BulkActionResult()
    for participant_id in participant_ids:
        participant = db.get(Participant, participant_id)
        if not participant:
            result.failed += 1
            result.errors.append(f"Participant {participant_id} not found")
            continue

        group = get_group_by_course_start(db, participant.course_start_date)
        if is_group_read_only(group):
            result.failed += 1
            result.errors.append(
                f"Participant {participant.person_name} belongs to locked group "
                f"({participant.course_start_date.isoformat()})"
            )
            continue

        was_completed = participant.is_completed
        setattr(participant, milestone.value, value)
        _refresh_completion(participant, was_completed)
        participant.updated_at = datetime.utcnow()
        result.success += 1
    db.flush()
    return result


def list_participants(db: Session, course_start_date: date | None = None) -> list[Participant]:
    stmt = select(Participant)
    if course_start_date is not None:
        stmt = stmt.where(Participant.course_start_date == course_start_date)
    return list(
        db.scalars(
            stmt.order_by(Participant.course_start_date.asc(), Participant.created_at.asc())
        ).all()
    )
