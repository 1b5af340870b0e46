"""Group lifecycle: planned -> active -> completed.

At most one group is active. Promotion and completion happen inside the
maintenance pass (``sync_groups``), which also keeps the rolling window of
planned groups materialized. Everything here runs inside the caller's
session; committing is left to the caller except for ``MaintenanceRunner``.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursedesk.config import settings
from coursedesk.models.enums import GroupStatus
from coursedesk.models.group import Group
from coursedesk.models.participant import Participant
from coursedesk.services.date_engine import course_end_for, next_monday
from coursedesk.services.unique_numbers import assign_numbers_for_window

logger = logging.getLogger(__name__)

WEEK = timedelta(weeks=1)


@dataclass
class MaintenanceReport:
    corrected_active: int = 0
    repaired_numbers: int = 0
    promoted: list[date] = field(default_factory=list)
    completed: list[date] = field(default_factory=list)
    created: list[date] = field(default_factory=list)
    removed: list[date] = field(default_factory=list)
    coalesced: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.corrected_active
            or self.repaired_numbers
            or self.promoted
            or self.completed
            or self.created
            or self.removed
        )


@dataclass
class ActivationResult:
    success: bool
    needs_confirm: bool = False
    current_active: Group | None = None


def get_active_group(db: Session) -> Group | None:
    return db.scalar(
        select(Group)
        .where(Group.status == GroupStatus.active)
        .order_by(Group.course_start_date.asc())
    )


def get_group_by_course_start(db: Session, course_start_date: date) -> Group | None:
    return db.scalar(select(Group).where(Group.course_start_date == course_start_date))


def list_groups(db: Session, status: GroupStatus | None = None) -> list[Group]:
    stmt = select(Group)
    if status is not None:
        stmt = stmt.where(Group.status == status)
    return list(db.scalars(stmt.order_by(Group.course_start_date.asc())).all())


def count_participants_in_window(db: Session, course_start_date: date) -> int:
    return db.scalar(
        select(func.count(Participant.id)).where(
            Participant.course_start_date == course_start_date
        )
    ) or 0


def list_groups_with_counts(db: Session) -> list[tuple[Group, int]]:
    counts = dict(
        db.execute(
            select(Participant.course_start_date, func.count(Participant.id)).group_by(
                Participant.course_start_date
            )
        ).all()
    )
    return [(group, counts.get(group.course_start_date, 0)) for group in list_groups(db)]


def next_group_number(db: Session) -> int:
    current_max = db.scalar(select(func.max(Group.group_number)))
    return (current_max or 0) + 1


def classify_course_start(db: Session, course_start_date: date) -> GroupStatus:
    """Status of the group owning ``course_start_date``; planned when none exists."""
    group = get_group_by_course_start(db, course_start_date)
    if group is None:
        return GroupStatus.planned
    return group.status


def is_group_read_only(group: Group | None) -> bool:
    return bool(group and group.status == GroupStatus.completed and group.is_locked)


def create_group(
    db: Session,
    course_start_date: date,
    status: GroupStatus = GroupStatus.planned,
) -> Group:
    group = Group(
        course_start_date=course_start_date,
        course_end_date=course_end_for(course_start_date),
        status=status,
        is_locked=False,
    )
    if status == GroupStatus.active:
        group.group_number = next_group_number(db)
        group.activated_at = datetime.utcnow()
    db.add(group)
    db.flush()
    logger.info("Created %s group for %s", status.value, course_start_date)
    return group


def _promote(db: Session, group: Group, report: MaintenanceReport | None = None) -> None:
    if group.group_number is None:
        group.group_number = next_group_number(db)
    group.status = GroupStatus.active
    group.is_locked = False
    group.activated_at = datetime.utcnow()
    group.closed_at = None
    db.flush()
    assign_numbers_for_window(db, group.course_start_date)
    if report is not None:
        report.promoted.append(group.course_start_date)
    logger.info(
        "Group %s (%s) is now active", group.group_number, group.course_start_date
    )


def _complete(db: Session, group: Group, report: MaintenanceReport | None = None) -> None:
    group.status = GroupStatus.completed
    group.is_locked = True
    group.closed_at = datetime.utcnow()
    db.flush()
    if report is not None:
        report.completed.append(group.course_start_date)
    logger.info(
        "Group %s (%s) completed and locked", group.group_number, group.course_start_date
    )


def _discard_group(db: Session, group: Group, report: MaintenanceReport) -> None:
    report.removed.append(group.course_start_date)
    logger.info("Removing empty planned group for %s", group.course_start_date)
    db.delete(group)
    db.flush()


def _next_planned(
    db: Session,
    *,
    after: date | None,
    today: date,
    report: MaintenanceReport,
) -> Group | None:
    stmt = select(Group).where(Group.status == GroupStatus.planned)
    if after is not None:
        stmt = stmt.where(Group.course_start_date > after)
    for candidate in db.scalars(stmt.order_by(Group.course_start_date.asc())).all():
        stale = candidate.course_end_date <= today
        if (
            stale
            and candidate.group_number is None
            and count_participants_in_window(db, candidate.course_start_date) == 0
        ):
            _discard_group(db, candidate, report)
            continue
        return candidate
    return None


def _materialize_successor(
    db: Session, active: Group, today: date, report: MaintenanceReport
) -> Group:
    start = active.course_start_date + WEEK
    while course_end_for(start) <= today or get_group_by_course_start(db, start) is not None:
        start += WEEK
    group = create_group(db, start)
    report.created.append(start)
    return group


def _advance_lifecycle(db: Session, today: date, report: MaintenanceReport) -> bool:
    active = get_active_group(db)
    if active is None:
        successor = _next_planned(db, after=None, today=today, report=report)
        if successor is None:
            return False
        _promote(db, successor, report)
        return True

    if today < active.course_end_date:
        return False

    successor = _next_planned(
        db, after=active.course_start_date, today=today, report=report
    ) or _materialize_successor(db, active, today, report)
    _promote(db, successor, report)
    _complete(db, active, report)
    return True


def _rolling_slots(db: Session, today: date) -> list[date]:
    window = max(settings.planned_window_size, 0)
    active = get_active_group(db)
    if active is not None:
        return [active.course_start_date + WEEK * offset for offset in range(1, window + 1)]
    base = next_monday(today)
    return [base + WEEK * offset for offset in range(window)]


def _materialize_rolling_window(db: Session, today: date, report: MaintenanceReport) -> bool:
    created = False
    for slot in _rolling_slots(db, today):
        if get_group_by_course_start(db, slot) is None:
            create_group(db, slot)
            report.created.append(slot)
            created = True
    return created


def _participant_windows(db: Session) -> set[date]:
    return set(db.scalars(select(Participant.course_start_date).distinct()).all())


def _materialize_participant_windows(db: Session, report: MaintenanceReport) -> None:
    existing = set(db.scalars(select(Group.course_start_date)).all())
    for window_start in sorted(_participant_windows(db) - existing):
        create_group(db, window_start)
        report.created.append(window_start)


def _repair_active_number(db: Session, report: MaintenanceReport) -> None:
    active = get_active_group(db)
    if active is None or active.group_number is not None:
        return
    active.group_number = next_group_number(db)
    db.flush()
    report.repaired_numbers += 1
    logger.warning(
        "Active group %s had no group number; assigned %s",
        active.course_start_date,
        active.group_number,
    )


def _cleanup_planned(db: Session, today: date, report: MaintenanceReport) -> None:
    required = _participant_windows(db) | set(_rolling_slots(db, today))
    for group in list_groups(db, GroupStatus.planned):
        # A displaced group keeps its number and waits to be promoted again.
        if group.course_start_date in required or group.group_number is not None:
            continue
        if count_participants_in_window(db, group.course_start_date) > 0:
            continue
        _discard_group(db, group, report)


def ensure_single_active_group(db: Session, report: MaintenanceReport | None = None) -> int:
    """Keep the earliest active group, complete and lock any others."""
    active_groups = list_groups(db, GroupStatus.active)
    if len(active_groups) <= 1:
        return 0

    logger.warning("Found %d active groups; correcting", len(active_groups))
    keep, extras = active_groups[0], active_groups[1:]
    for group in extras:
        _complete(db, group)
        logger.warning(
            "Moved group %s (%s) from active to completed",
            group.group_number,
            group.course_start_date,
        )
    logger.info("Kept group %s (%s) active", keep.group_number, keep.course_start_date)
    if report is not None:
        report.corrected_active += len(extras)
    return len(extras)


def sync_groups(
    db: Session,
    today: date | None = None,
    report: MaintenanceReport | None = None,
) -> MaintenanceReport:
    """Materialize missing groups and promote overdue ones. Idempotent."""
    today = today or date.today()
    report = report or MaintenanceReport()

    _repair_active_number(db, report)
    _materialize_participant_windows(db, report)
    while True:
        advanced = _advance_lifecycle(db, today, report)
        created = _materialize_rolling_window(db, today, report)
        if not advanced and not created:
            break
    _cleanup_planned(db, today, report)
    return report


class MaintenanceRunner:
    """Single-flight wrapper around the startup maintenance pass.

    A trigger that arrives while a pass is running is coalesced into it
    instead of racing it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.last_report: MaintenanceReport | None = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def run(self, db: Session, today: date | None = None) -> MaintenanceReport:
        if not self._lock.acquire(blocking=False):
            logger.info("Maintenance pass already running; trigger coalesced")
            return MaintenanceReport(coalesced=True)
        try:
            report = MaintenanceReport()
            ensure_single_active_group(db, report)
            sync_groups(db, today=today, report=report)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            self._lock.release()

        if report.changed:
            logger.info(
                "Maintenance: promoted=%s completed=%s created=%s removed=%s corrected=%d",
                report.promoted,
                report.completed,
                report.created,
                report.removed,
                report.corrected_active,
            )
        self.last_report = report
        return report


maintenance_runner = MaintenanceRunner()


def _require_group(db: Session, group_id: str) -> Group:
    group = db.get(Group, group_id)
    if not group:
        raise ValueError("Group not found")
    return group


def activate_group(db: Session, group_id: str, *, force: bool = False) -> ActivationResult:
    """Make a planned group active, or reopen a completed one.

    Without ``force`` an existing active group is reported back for
    confirmation; with it, that group goes back to planned with its
    group number kept, so the next maintenance pass promotes it again.
    """
    group = _require_group(db, group_id)
    if group.status == GroupStatus.active:
        return ActivationResult(success=True)

    current = get_active_group(db)
    if current is not None and not force:
        return ActivationResult(success=False, needs_confirm=True, current_active=current)

    if current is not None:
        _demote_to_planned(db, current)
    _promote(db, group)
    return ActivationResult(success=True)


def _demote_to_planned(db: Session, group: Group) -> None:
    group.status = GroupStatus.planned
    group.activated_at = None
    db.flush()
    logger.info(
        "Group %s (%s) moved back to planned", group.group_number, group.course_start_date
    )


def close_active_group(db: Session) -> Group:
    """Archive the active group without activating a successor."""
    active = get_active_group(db)
    if active is None:
        raise ValueError("No active group to close")
    _complete(db, active)
    return active


def lock_group(db: Session, group_id: str) -> Group:
    group = _require_group(db, group_id)
    if group.status != GroupStatus.completed:
        raise ValueError("Only completed groups can be locked")
    group.is_locked = True
    db.flush()
    return group


def unlock_group(db: Session, group_id: str) -> Group:
    group = _require_group(db, group_id)
    if group.status != GroupStatus.completed:
        raise ValueError("Only completed groups can be unlocked")
    group.is_locked = False
    db.flush()
    logger.info("Group %s unlocked for corrections", group.group_number)
    return group


def delete_group_if_empty(db: Session, group_id: str) -> bool:
    group = _require_group(db, group_id)
    # Numbered groups are kept so their numbers are never handed out again.
    if group.status != GroupStatus.planned or group.group_number is not None:
        raise ValueError("Only unnumbered planned groups can be deleted")
    if count_participants_in_window(db, group.course_start_date) > 0:
        return False
    db.delete(group)
    db.flush()
    return True
