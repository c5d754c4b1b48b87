"""
Import a student roster file (CSV, TSV or XLSX) into a cohort.

Uses the same parser, validation and duplicate handling as the web import.

Usage:
  python scripts/import_roster.py roster.xlsx --cohort-id 3 --actor-email lead@example.org
  python scripts/import_roster.py roster.csv --duplicate-mode update --dry-run
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.emslab.models import User
from app.emslab.modules.students.parsers.roster import decode_upload, parse_roster_text, validate_rows
from app.emslab.modules.students.service import (
    DUPLICATE_MODES,
    RosterImportError,
    find_existing_by_email,
    import_students,
)
from scripts._db_utils import script_session


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Import a student roster into the EMS lab database.")
    p.add_argument("path", type=Path, help="Roster file (.csv, .tsv, .txt or .xlsx)")
    p.add_argument("--cohort-id", type=int, default=None, help="Cohort to place students in")
    p.add_argument("--duplicate-mode", choices=DUPLICATE_MODES, default="skip")
    p.add_argument(
        "--actor-email",
        default=(os.environ.get("ADMIN_EMAIL") or "").strip().lower(),
        help="Account recorded in the audit trail (default: ADMIN_EMAIL)",
    )
    p.add_argument("--database-url", default=(os.environ.get("DATABASE_URL") or "sqlite:///emslab.db").strip())
    p.add_argument("--skip-warnings", action="store_true", help="Leave out rows flagged with warnings")
    p.add_argument("--dry-run", action="store_true", help="Validate and print the preview without importing")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if not args.path.exists():
        print(f"ERROR: {args.path} not found", file=sys.stderr)
        return 2

    parsed = parse_roster_text(decode_upload(args.path.name, args.path.read_bytes()))
    if not parsed:
        print("ERROR: no students found in the file", file=sys.stderr)
        return 2

    with script_session(args.database_url) as s:
        validate_rows(parsed, find_existing_by_email(s, [p.email for p in parsed]))

        for p in parsed:
            notes = "; ".join(p.validation.errors + p.validation.warnings)
            print(f"{p.row:>4}  {p.validation.status:<7}  {p.last_name}, {p.first_name}  {p.email}  {notes}")

        importable = {"valid"} if args.skip_warnings else {"valid", "warning"}
        rows = [p.to_import_dict() for p in parsed if p.validation.status in importable]
        print(f"{len(rows)} of {len(parsed)} row(s) selected for import.")
        if args.dry_run or not rows:
            return 0

        actor = s.query(User).filter(User.email == args.actor_email).one_or_none() if args.actor_email else None
        if not actor:
            print("ERROR: --actor-email must name an existing account", file=sys.stderr)
            return 2

        try:
            result = import_students(
                s,
                rows,
                cohort_id=args.cohort_id,
                duplicate_mode=args.duplicate_mode,
                user=actor,
                source=f"cli:{args.path.name}",
            )
        except RosterImportError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

        for r in result.failures:
            print(f"Row {r.row} failed: {r.error}")
        summary = result.summary
        print(
            f"Imported {summary['imported']}, updated {summary['updated']}, "
            f"skipped {summary['skipped']}, failed {summary['failed']}."
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
