from __future__ import annotations

import csv
import io
from datetime import date, datetime
from typing import TYPE_CHECKING

from app.emslab.audit import record_event
from app.emslab.modules.cohorts.models import Cohort, Program
from app.emslab.utils import normalize_text, parse_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.emslab.models import User


def validate_cohort_payload(s: "Session", payload: dict, *, existing: Cohort | None = None) -> list[str]:
    """Validate cohort create/edit payload. Returns list of errors."""
    errors: list[str] = []

    program_id = None
    try:
        program_id = int(normalize_text(payload.get("program_id")))
    except ValueError:
        errors.append("Program is required.")
    else:
        if not s.get(Program, program_id):
            errors.append("Unknown program.")
            program_id = None

    number = None
    try:
        number = int(normalize_text(payload.get("cohort_number")))
        if number <= 0:
            raise ValueError()
    except ValueError:
        errors.append("Cohort number must be a positive integer.")
        number = None

    start = end = None
    try:
        start = parse_date(payload.get("start_date"))
    except (TypeError, ValueError):
        errors.append("Start date must be YYYY-MM-DD.")
    try:
        end = parse_date(payload.get("expected_end_date"))
    except (TypeError, ValueError):
        errors.append("Expected end date must be YYYY-MM-DD.")
    if start and end and end < start:
        errors.append("Expected end date cannot be before the start date.")

    if program_id and number:
        q = s.query(Cohort).filter(Cohort.program_id == program_id, Cohort.cohort_number == number)
        if existing is not None:
            q = q.filter(Cohort.id != existing.id)
        if q.first():
            errors.append("A cohort with this program and number already exists.")

    return errors


def create_cohort(s: "Session", payload: dict, user: "User") -> Cohort:
    now = datetime.utcnow()
    cohort = Cohort(
        program_id=int(payload["program_id"]),
        cohort_number=int(payload["cohort_number"]),
        start_date=parse_date(payload.get("start_date")),
        expected_end_date=parse_date(payload.get("expected_end_date")),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(cohort)
    s.flush()
    s.refresh(cohort)

    record_event(
        s,
        actor=user,
        action="cohort.create",
        entity_type="Cohort",
        entity_id=str(cohort.id),
        metadata={"label": cohort.label},
    )
    return cohort


def update_cohort(s: "Session", cohort: Cohort, payload: dict, user: "User") -> Cohort:
    changes = {}
    new_program_id = int(payload["program_id"])
    if new_program_id != cohort.program_id:
        changes["program_id"] = {"old": cohort.program_id, "new": new_program_id}
        cohort.program_id = new_program_id
        cohort.program = s.get(Program, new_program_id)

    new_number = int(payload["cohort_number"])
    if new_number != cohort.cohort_number:
        changes["cohort_number"] = {"old": cohort.cohort_number, "new": new_number}
        cohort.cohort_number = new_number

    for field in ("start_date", "expected_end_date"):
        new_val = parse_date(payload.get(field))
        if new_val != getattr(cohort, field):
            changes[field] = {"old": str(getattr(cohort, field)), "new": str(new_val)}
            setattr(cohort, field, new_val)

    cohort.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="cohort.edit",
        entity_type="Cohort",
        entity_id=str(cohort.id),
        metadata={"label": cohort.label, "changes": changes},
    )
    return cohort


def set_cohort_archived(s: "Session", cohort: Cohort, *, archived: bool, user: "User", reason: str | None = None) -> Cohort:
    if archived == (not cohort.is_active):
        return cohort
    cohort.is_active = not archived
    cohort.archived_at = datetime.utcnow() if archived else None
    cohort.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="cohort.archive" if archived else "cohort.unarchive",
        entity_type="Cohort",
        entity_id=str(cohort.id),
        reason=reason,
        metadata={"label": cohort.label},
    )
    return cohort


def list_cohorts(s: "Session", *, show: str = "active") -> list[Cohort]:
    q = s.query(Cohort).join(Program)
    if show == "archived":
        q = q.filter(Cohort.is_active.is_(False))
    elif show != "all":
        q = q.filter(Cohort.is_active.is_(True))
    return q.order_by(Program.name.asc(), Cohort.cohort_number.desc()).all()


def roster_csv_bytes(cohort: Cohort) -> bytes:
    """Cohort roster as CSV in the same column order the roster importer accepts."""
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(["first_name", "last_name", "email", "phone", "agency", "status"])
    for st in sorted(cohort.students, key=lambda x: (x.last_name.lower(), x.first_name.lower())):
        w.writerow([st.first_name, st.last_name, st.email or "", st.phone or "", st.agency or "", st.status])
    return out.getvalue().encode("utf-8")


def cohort_weeks_remaining(cohort: Cohort, today: date | None = None) -> int | None:
    if not cohort.expected_end_date:
        return None
    today = today or date.today()
    days = (cohort.expected_end_date - today).days
    return max(days, 0) // 7
