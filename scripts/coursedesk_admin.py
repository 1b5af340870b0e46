#!/usr/bin/env python3
"""
Operator commands against the configured CourseDesk database.

Usage:
  python scripts/coursedesk_admin.py maintenance [--today 2025-03-10]
  python scripts/coursedesk_admin.py export --output backups/coursedesk.json
  python scripts/coursedesk_admin.py import backups/coursedesk.json [--today 2025-03-10]

Notes:
  - DATABASE_URL and the other settings are read from .env like the API.
  - Import replaces every participant, group and numbering setting.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path

import coursedesk.models  # noqa: F401
from coursedesk.config import settings
from coursedesk.db.database import Base, SessionLocal, engine
from coursedesk.services.backup_migration import (
    BackupMigrationError,
    export_backup,
    import_backup,
)
from coursedesk.services.entitlement import ReadOnlyError, entitlement_gate
from coursedesk.services.group_lifecycle import maintenance_runner


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CourseDesk maintenance and backup commands.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    maintenance = subparsers.add_parser(
        "maintenance", help="Correct active groups, promote overdue ones, refresh planned groups."
    )
    maintenance.add_argument(
        "--today",
        type=date.fromisoformat,
        default=None,
        help="Run as of this ISO date instead of the current day.",
    )

    export = subparsers.add_parser("export", help="Write a versioned JSON backup.")
    export.add_argument(
        "--output",
        default="-",
        help="Destination file (default: stdout).",
    )

    restore = subparsers.add_parser("import", help="Replace all data from a JSON backup.")
    restore.add_argument("path", help="Backup file to import.")
    restore.add_argument(
        "--today",
        type=date.fromisoformat,
        default=None,
        help="Run the post-import maintenance as of this ISO date.",
    )

    return parser.parse_args(argv)


def run_maintenance(args: argparse.Namespace) -> int:
    with SessionLocal() as db:
        report = maintenance_runner.run(db, today=args.today)
    print(
        f"Promoted: {[d.isoformat() for d in report.promoted]} | "
        f"Completed: {[d.isoformat() for d in report.completed]} | "
        f"Created: {len(report.created)} | Removed: {len(report.removed)} | "
        f"Corrected: {report.corrected_active}"
    )
    return 0


def run_export(args: argparse.Namespace) -> int:
    with SessionLocal() as db:
        payload = export_backup(db)
        db.commit()
    text = json.dumps(payload, ensure_ascii=False, indent=2)
    if args.output == "-":
        print(text)
        return 0

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    print(
        f"Wrote backup v{payload['version']}: {output} "
        f"({len(payload['participants'])} participants, {len(payload['groups'])} groups)"
    )
    return 0


def run_import(args: argparse.Namespace) -> int:
    path = Path(args.path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        print(f"Cannot read backup {path}: {exc}", file=sys.stderr)
        return 1

    with SessionLocal() as db:
        try:
            summary = import_backup(db, raw, entitlement_gate, today=args.today)
        except (BackupMigrationError, ReadOnlyError) as exc:
            print(f"Import failed: {exc}", file=sys.stderr)
            return 1
    print(
        f"Imported backup v{summary.source_version} as v{summary.version}: "
        f"{summary.participants} participants, {summary.groups} groups"
    )
    return 0


COMMANDS = {
    "maintenance": run_maintenance,
    "export": run_export,
    "import": run_import,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=settings.log_level.upper())
    Base.metadata.create_all(bind=engine)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
