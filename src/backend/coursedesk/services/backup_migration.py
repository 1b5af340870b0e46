"""Versioned backup export/import.

Older payloads are upgraded by a chain of pure transforms, one version at a
time. Import is all-or-nothing: any failure leaves the store untouched.
"""
import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursedesk.config import settings
from coursedesk.models.app_settings import SETTINGS_ROW_ID, AppSettings
from coursedesk.models.enums import GroupStatus
from coursedesk.models.group import Group
from coursedesk.models.participant import Participant
from coursedesk.schemas.backup import (
    BackupGroup,
    BackupParticipant,
    BackupPayload,
    BackupSettings,
)
from coursedesk.services.entitlement import EntitlementGate
from coursedesk.services.group_lifecycle import ensure_single_active_group, sync_groups
from coursedesk.services.unique_numbers import get_settings_record

logger = logging.getLogger(__name__)

CURRENT_BACKUP_VERSION = 3


class BackupMigrationError(ValueError):
    def __init__(self, message: str, version: int | None = None) -> None:
        super().__init__(message)
        self.version = version


@dataclass
class ImportSummary:
    source_version: int
    version: int
    participants: int
    groups: int


def _migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    # v1 linked participants to groups by number; v2 links them by window only.
    participants = []
    for raw in data["participants"]:
        item = dict(raw)
        for obsolete in ("groupNumber", "autoGroup", "manualGroup"):
            item.pop(obsolete, None)
        participants.append(item)

    groups = []
    for raw in data["groups"]:
        item = dict(raw)
        if item.get("status") == GroupStatus.planned.value:
            item["groupNumber"] = None
        groups.append(item)

    return {**data, "version": 2, "participants": participants, "groups": groups}


def _migrate_v2_to_v3(data: dict[str, Any]) -> dict[str, Any]:
    # v3 stores the current numbering prefix instead of the last issued one.
    legacy_settings = dict(data.get("settings") or {})
    legacy_prefix = legacy_settings.pop("lastUniquePrefix", None)
    legacy_settings.setdefault(
        "uniquePrefix",
        int(legacy_prefix) if legacy_prefix is not None else settings.unique_number_prefix,
    )
    legacy_settings.pop("id", None)

    participants = []
    for raw in data["participants"]:
        item = dict(raw)
        if not item.get("uniqueNumber"):
            item["uniqueNumber"] = None
        participants.append(item)

    return {**data, "version": 3, "participants": participants, "settings": legacy_settings}


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_v1_to_v2,
    2: _migrate_v2_to_v3,
}


def backup_version(raw: Any) -> int:
    if not isinstance(raw, dict):
        raise BackupMigrationError("Invalid backup file: data is not an object")
    version = raw.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise BackupMigrationError(f"Invalid backup version: {version!r}")
    return version


def migrate_to_latest(raw: Any) -> dict[str, Any]:
    version = backup_version(raw)
    logger.info(
        "Starting import. Backup version: %d. Current version: %d",
        version,
        CURRENT_BACKUP_VERSION,
    )
    if version > CURRENT_BACKUP_VERSION:
        raise BackupMigrationError(
            f"Backup version {version} is newer than the supported version "
            f"({CURRENT_BACKUP_VERSION}); update the application to import this file",
            version,
        )

    data = copy.deepcopy(raw)
    while version < CURRENT_BACKUP_VERSION:
        migration = MIGRATIONS.get(version)
        if migration is None:
            raise BackupMigrationError(f"No migration strategy found for version {version}", version)
        try:
            data = migration(data)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.error("Backup migration failed at step v%d: %s", version, exc)
            raise BackupMigrationError(
                f"Migration failed: could not upgrade backup from v{version} to v{version + 1}",
                version,
            ) from exc
        logger.info("Migrated backup v%d -> v%d", version, version + 1)
        version += 1

    if not isinstance(data.get("participants"), list) or not isinstance(data.get("groups"), list):
        raise BackupMigrationError(
            "Migration finished but result is malformed (missing arrays)", version
        )
    return data


def _check_integrity(payload: BackupPayload) -> None:
    starts = [group.course_start_date for group in payload.groups]
    if len(starts) != len(set(starts)):
        raise BackupMigrationError(
            "Backup contains more than one group for the same course start date",
            payload.version,
        )
    numbers = [p.unique_number for p in payload.participants if p.unique_number]
    if len(numbers) != len(set(numbers)):
        raise BackupMigrationError(
            "Backup contains duplicate unique numbers", payload.version
        )


def parse_backup(raw: Any) -> BackupPayload:
    data = migrate_to_latest(raw)
    try:
        payload = BackupPayload.model_validate(data)
    except ValidationError as exc:
        raise BackupMigrationError(
            f"Backup v{CURRENT_BACKUP_VERSION} failed validation ({exc.error_count()} errors)",
            CURRENT_BACKUP_VERSION,
        ) from exc
    _check_integrity(payload)
    return payload


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _participant_from_backup(item: BackupParticipant) -> Participant:
    now = datetime.utcnow()
    return Participant(
        id=item.id,
        company_name=item.company_name,
        person_name=item.person_name,
        national_id=item.national_id,
        birth_place=item.birth_place,
        citizenship=item.citizenship,
        medical_date=item.medical_date,
        course_start_date=item.course_start_date,
        course_end_date=item.course_end_date,
        unique_number=item.unique_number,
        sent=item.sent,
        documents=item.documents,
        handed_over=item.handed_over,
        paid=item.paid,
        completed_computed=item.completed_computed,
        completed_override=item.completed_override,
        created_at=_naive_utc(item.created_at) or now,
        updated_at=_naive_utc(item.updated_at) or now,
        completed_at=_naive_utc(item.completed_at),
    )


def _group_from_backup(item: BackupGroup) -> Group:
    now = datetime.utcnow()
    return Group(
        id=item.id,
        group_number=item.group_number,
        course_start_date=item.course_start_date,
        course_end_date=item.course_end_date,
        status=item.status,
        is_locked=item.is_locked,
        created_at=_naive_utc(item.created_at) or now,
        updated_at=_naive_utc(item.updated_at) or now,
        activated_at=_naive_utc(item.activated_at),
        closed_at=_naive_utc(item.closed_at),
    )


def import_backup(
    db: Session,
    raw: Any,
    gate: EntitlementGate,
    today: date | None = None,
) -> ImportSummary:
    gate.ensure_writable()
    source_version = backup_version(raw)
    payload = parse_backup(raw)

    try:
        db.execute(delete(Participant))
        db.execute(delete(Group))
        db.execute(delete(AppSettings))
        db.add_all(_group_from_backup(item) for item in payload.groups)
        db.add_all(_participant_from_backup(item) for item in payload.participants)
        db.add(
            AppSettings(
                id=SETTINGS_ROW_ID,
                unique_prefix=payload.settings.unique_prefix,
                last_unique_seq=payload.settings.last_unique_seq,
                last_reset_year=payload.settings.last_reset_year,
            )
        )
        db.flush()
        ensure_single_active_group(db)
        sync_groups(db, today=today)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Backup import failed; nothing was written")
        raise

    logger.info(
        "Imported backup v%d: %d participants, %d groups",
        source_version,
        len(payload.participants),
        len(payload.groups),
    )
    return ImportSummary(
        source_version=source_version,
        version=CURRENT_BACKUP_VERSION,
        participants=len(payload.participants),
        groups=len(payload.groups),
    )


def export_backup(db: Session) -> dict[str, Any]:
    record = get_settings_record(db)
    participants = db.scalars(select(Participant).order_by(Participant.created_at.asc())).all()
    groups = db.scalars(select(Group).order_by(Group.course_start_date.asc())).all()
    payload = BackupPayload(
        version=CURRENT_BACKUP_VERSION,
        timestamp=datetime.utcnow(),
        participants=[
            BackupParticipant(
                id=p.id,
                company_name=p.company_name,
                person_name=p.person_name,
                national_id=p.national_id,
                birth_place=p.birth_place,
                citizenship=p.citizenship,
                medical_date=p.medical_date,
                course_start_date=p.course_start_date,
                course_end_date=p.course_end_date,
                unique_number=p.unique_number,
                sent=p.sent,
                documents=p.documents,
                handed_over=p.handed_over,
                paid=p.paid,
                completed_computed=p.completed_computed,
                completed_override=p.completed_override,
                created_at=p.created_at,
                updated_at=p.updated_at,
                completed_at=p.completed_at,
            )
            for p in participants
        ],
        groups=[
            BackupGroup(
                id=g.id,
                group_number=g.group_number,
                course_start_date=g.course_start_date,
                course_end_date=g.course_end_date,
                status=g.status,
                is_locked=g.is_locked,
                created_at=g.created_at,
                updated_at=g.updated_at,
                activated_at=g.activated_at,
                closed_at=g.closed_at,
            )
            for g in groups
        ],
        settings=BackupSettings(
            unique_prefix=record.unique_prefix,
            last_unique_seq=record.last_unique_seq,
            last_reset_year=record.last_reset_year,
        ),
    )
    return payload.model_dump(mode="json", by_alias=True)
