"""
Same-day scheduling conflict detection for lab days.

Conflicts are advisory: callers surface them as warnings and still save.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from typing import TYPE_CHECKING, Iterable

from app.emslab.models import User
from app.emslab.modules.cohorts.models import Cohort
from app.emslab.modules.lab_days.models import LabDay, LabDayRole, LabStation
from app.emslab.utils import human_join, normalize_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


@dataclass(frozen=True)
class Conflict:
    type: str  # cohort | room | instructor
    message: str
    severity: str = "warning"

    def as_dict(self) -> dict:
        return asdict(self)


def _instructor_label(user: User | None) -> str:
    if not user:
        return "An instructor"
    return (user.name or "").strip() or (user.email or "").strip() or "An instructor"


def check_schedule_conflicts(
    s: "Session",
    *,
    date: date,
    cohort_id: int | None = None,
    location: str | None = None,
    instructor_ids: Iterable[int] = (),
    exclude_lab_day_id: int | None = None,
) -> list[Conflict]:
    q = s.query(LabDay.id, LabDay.cohort_id).filter(LabDay.date == date)
    if exclude_lab_day_id is not None:
        q = q.filter(LabDay.id != exclude_lab_day_id)
    same_day = q.all()
    if not same_day:
        return []

    day_ids = [row.id for row in same_day]
    conflicts: list[Conflict] = []

    # Cohort double-booked
    if cohort_id is not None and any(row.cohort_id == cohort_id for row in same_day):
        cohort = s.get(Cohort, cohort_id)
        label = cohort.label if cohort else "this cohort"
        conflicts.append(Conflict("cohort", f"{label} already has a lab day scheduled on this date."))

    # Room already in use
    wanted_room = normalize_text(location).lower()
    if wanted_room:
        rooms = (
            s.query(LabStation.room)
            .filter(LabStation.lab_day_id.in_(day_ids), LabStation.room.isnot(None))
            .all()
        )
        if any(normalize_text(r.room).lower() == wanted_room for r in rooms):
            conflicts.append(
                Conflict("room", f'Room "{normalize_text(location)}" is already in use by another lab day on this date.')
            )

    # Instructors already assigned elsewhere (lab-day role or station instructor)
    wanted: list[int] = []
    for iid in instructor_ids:
        if iid is not None and iid not in wanted:
            wanted.append(iid)
    if wanted:
        busy: set[int] = set()
        for (iid,) in s.query(LabDayRole.instructor_id).filter(
            LabDayRole.lab_day_id.in_(day_ids), LabDayRole.instructor_id.in_(wanted)
        ):
            busy.add(iid)
        for primary, additional in s.query(LabStation.instructor_id, LabStation.additional_instructor_id).filter(
            LabStation.lab_day_id.in_(day_ids)
        ):
            busy.update(i for i in (primary, additional) if i in wanted)

        conflicted = [iid for iid in wanted if iid in busy]
        if conflicted:
            names = [_instructor_label(s.get(User, iid)) for iid in conflicted]
            verb = "is" if len(names) == 1 else "are"
            conflicts.append(
                Conflict("instructor", f"{human_join(names)} {verb} already assigned to another lab day on this date.")
            )

    return conflicts
