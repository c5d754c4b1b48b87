from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from app.emslab.audit import record_event
from app.emslab.constants import STUDENT_STATUSES
from app.emslab.modules.cohorts.models import Cohort
from app.emslab.modules.students.models import Student
from app.emslab.modules.students.parsers.roster import DuplicateInfo
from app.emslab.utils import is_valid_email, normalize_text, optional_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.emslab.models import User

logger = logging.getLogger(__name__)

DUPLICATE_MODES = ("skip", "update", "import_new")


class RosterImportError(ValueError):
    pass


def validate_student_payload(s: "Session", payload: dict) -> list[str]:
    errors: list[str] = []
    if not normalize_text(payload.get("first_name")):
        errors.append("First name is required.")
    if not normalize_text(payload.get("last_name")):
        errors.append("Last name is required.")
    email = normalize_text(payload.get("email"))
    if email and not is_valid_email(email):
        errors.append("Invalid email format.")
    status = normalize_text(payload.get("status"))
    if status and status not in STUDENT_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(STUDENT_STATUSES)}")
    cohort_id = normalize_text(payload.get("cohort_id"))
    if cohort_id:
        try:
            if not s.get(Cohort, int(cohort_id)):
                errors.append("Unknown cohort.")
        except ValueError:
            errors.append("Cohort id must be numeric.")
    return errors


def _cohort_id(payload: dict) -> int | None:
    raw = normalize_text(payload.get("cohort_id"))
    return int(raw) if raw else None


def create_student(s: "Session", payload: dict, user: "User") -> Student:
    now = datetime.utcnow()
    st = Student(
        first_name=normalize_text(payload.get("first_name")),
        last_name=normalize_text(payload.get("last_name")),
        email=normalize_text(payload.get("email")).lower() or None,
        phone=optional_text(payload.get("phone")),
        agency=optional_text(payload.get("agency")),
        cohort_id=_cohort_id(payload),
        status=normalize_text(payload.get("status")) or "active",
        notes=optional_text(payload.get("notes")),
        created_at=now,
        updated_at=now,
    )
    s.add(st)
    s.flush()
    record_event(
        s,
        actor=user,
        action="student.create",
        entity_type="Student",
        entity_id=str(st.id),
        metadata={"name": st.full_name, "cohort_id": st.cohort_id},
    )
    return st


def update_student(s: "Session", st: Student, payload: dict, user: "User") -> Student:
    changes: dict[str, Any] = {}
    new_values = {
        "first_name": normalize_text(payload.get("first_name")),
        "last_name": normalize_text(payload.get("last_name")),
        "email": normalize_text(payload.get("email")).lower() or None,
        "phone": optional_text(payload.get("phone")),
        "agency": optional_text(payload.get("agency")),
        "cohort_id": _cohort_id(payload),
        "status": normalize_text(payload.get("status")) or st.status,
        "notes": optional_text(payload.get("notes")),
    }
    for key, new in new_values.items():
        old = getattr(st, key)
        if new != old:
            changes[key] = {"old": old, "new": new}
            setattr(st, key, new)

    st.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="student.edit",
        entity_type="Student",
        entity_id=str(st.id),
        metadata={"name": st.full_name, "changes": changes},
    )
    return st


def delete_student(s: "Session", st: Student, user: "User", reason: str) -> None:
    record_event(
        s,
        actor=user,
        action="student.delete",
        entity_type="Student",
        entity_id=str(st.id),
        reason=reason,
        metadata={"name": st.full_name, "email": st.email, "cohort_id": st.cohort_id},
    )
    s.delete(st)


def find_existing_by_email(s: "Session", emails: list[str]) -> dict[str, DuplicateInfo]:
    """Map lower-cased email -> first matching student already in the database."""
    wanted = sorted({normalize_text(e).lower() for e in emails if is_valid_email(e or "")})
    if not wanted:
        return {}
    found: dict[str, DuplicateInfo] = {}
    rows = s.query(Student).filter(func.lower(Student.email).in_(wanted)).order_by(Student.id.asc()).all()
    for st in rows:
        key = (st.email or "").lower()
        if key not in found:
            found[key] = DuplicateInfo(existing_name=st.full_name, student_id=st.id)
    return found


@dataclass
class ImportRowResult:
    row: int
    status: str  # imported | updated | skipped | failed
    student_id: int | None = None
    student_name: str | None = None
    error: str | None = None

    def as_dict(self) -> dict:
        d: dict[str, Any] = {"row": self.row, "status": self.status}
        if self.student_id is not None:
            d["student"] = {"id": self.student_id, "name": self.student_name}
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class ImportResult:
    results: list[ImportRowResult] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def summary(self) -> dict[str, int]:
        return {k: self.count(k) for k in ("imported", "updated", "skipped", "failed")}

    @property
    def failures(self) -> list[ImportRowResult]:
        return [r for r in self.results if r.status == "failed"]


def _import_one(s: "Session", row: dict, row_num: int, *, cohort_id: int | None, duplicate_mode: str) -> ImportRowResult:
    first = normalize_text(row.get("first_name"))
    last = normalize_text(row.get("last_name"))
    email = normalize_text(row.get("email")).lower() or None

    existing: Student | None = None
    if email and duplicate_mode != "import_new":
        existing = (
            s.query(Student)
            .filter(func.lower(Student.email) == email)
            .order_by(Student.id.asc())
            .first()
        )

    if existing and duplicate_mode == "skip":
        return ImportRowResult(row_num, "skipped", existing.id, existing.full_name)

    if existing and duplicate_mode == "update":
        existing.first_name = first
        existing.last_name = last
        if "phone" in row:
            existing.phone = optional_text(row.get("phone"))
        if "agency" in row:
            existing.agency = optional_text(row.get("agency"))
        if cohort_id:
            existing.cohort_id = cohort_id
        existing.updated_at = datetime.utcnow()
        s.flush()
        return ImportRowResult(row_num, "updated", existing.id, existing.full_name)

    now = datetime.utcnow()
    st = Student(
        first_name=first,
        last_name=last,
        email=email,
        phone=optional_text(row.get("phone")),
        agency=optional_text(row.get("agency")),
        cohort_id=cohort_id,
        status="active",
        created_at=now,
        updated_at=now,
    )
    s.add(st)
    s.flush()
    return ImportRowResult(row_num, "imported", st.id, st.full_name)


def import_students(
    s: "Session",
    rows: list[dict],
    *,
    cohort_id: int | None,
    duplicate_mode: str = "skip",
    user: "User",
    source: str = "paste",
) -> ImportResult:
    """
    Import roster rows into `students`.

    duplicate_mode (matched by lower-cased email):
    - skip: leave the existing student alone
    - update: overwrite names (and phone/agency/cohort when given)
    - import_new: always insert
    Each row runs in its own savepoint so one bad row does not sink the batch.
    """
    if not rows:
        raise RosterImportError("No students provided")
    if duplicate_mode not in DUPLICATE_MODES:
        raise RosterImportError(f"duplicate_mode must be one of: {', '.join(DUPLICATE_MODES)}")
    if cohort_id is not None and not s.get(Cohort, cohort_id):
        raise RosterImportError("Unknown cohort.")

    result = ImportResult()
    for index, row in enumerate(rows, start=1):
        row_num = index
        try:
            row_num = int(row.get("row") or index)
            if not normalize_text(row.get("first_name")) or not normalize_text(row.get("last_name")):
                raise RosterImportError("Missing first or last name")
            with s.begin_nested():
                result.results.append(_import_one(s, row, row_num, cohort_id=cohort_id, duplicate_mode=duplicate_mode))
        except RosterImportError as e:
            result.results.append(ImportRowResult(row_num, "failed", error=str(e)))
        except SQLAlchemyError as e:
            logger.warning("Roster import row %s failed: %s", row_num, e)
            result.results.append(ImportRowResult(row_num, "failed", error=str(getattr(e, "orig", None) or e)))
        except Exception as e:
            logger.exception("Roster import row %s failed", row_num)
            result.results.append(ImportRowResult(row_num, "failed", error=str(e) or e.__class__.__name__))

    summary = result.summary
    record_event(
        s,
        actor=user,
        action="student.import",
        entity_type="Student",
        entity_id="bulk",
        metadata={
            "source": source,
            "cohort_id": cohort_id,
            "duplicate_mode": duplicate_mode,
            "rows_processed": len(rows),
            **summary,
        },
    )
    logger.info("Roster import by %s: %s", user.email, summary)
    return result


def query_students(s: "Session", *, filters: dict):
    q = s.query(Student)
    search = normalize_text(filters.get("q"))
    if search:
        like = f"%{search}%"
        q = q.filter(
            (Student.first_name.ilike(like))
            | (Student.last_name.ilike(like))
            | (Student.email.ilike(like))
            | (Student.agency.ilike(like))
        )
    cohort_id = normalize_text(filters.get("cohort_id"))
    if cohort_id == "none":
        q = q.filter(Student.cohort_id.is_(None))
    elif cohort_id:
        q = q.filter(Student.cohort_id == int(cohort_id))
    status = normalize_text(filters.get("status"))
    if status:
        q = q.filter(Student.status == status)
    return q
