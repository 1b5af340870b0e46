from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursedesk.db.database import get_db
from coursedesk.routers.common import raise_read_only
from coursedesk.schemas.backup import BackupImportResponse
from coursedesk.services.backup_migration import (
    BackupMigrationError,
    export_backup,
    import_backup,
)
from coursedesk.services.entitlement import EntitlementGate, ReadOnlyError, get_entitlement_gate

router = APIRouter(prefix="/api/backup", tags=["backup"])


@router.get("/export")
def get_export(db: Session = Depends(get_db)) -> dict[str, Any]:
    payload = export_backup(db)
    # The settings row may have been created on first export.
    db.commit()
    return payload


@router.post("/import", response_model=BackupImportResponse)
def post_import(
    raw: Any = Body(...),
    db: Session = Depends(get_db),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    try:
        summary = import_backup(db, raw, gate)
    except ReadOnlyError as exc:
        raise_read_only(exc)
    except BackupMigrationError as exc:
        raise HTTPException(
            status_code=400, detail={"message": str(exc), "version": exc.version}
        ) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Backup import failed; no data was changed") from exc

    return BackupImportResponse(
        source_version=summary.source_version,
        version=summary.version,
        participants=summary.participants,
        groups=summary.groups,
    )
