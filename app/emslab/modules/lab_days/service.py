from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING

from werkzeug.utils import secure_filename

from app.emslab.audit import record_event
from app.emslab.constants import LAB_DAY_ROLES, STATION_TYPES
from app.emslab.models import User
from app.emslab.modules.cohorts.models import Cohort
from app.emslab.modules.lab_days.conflicts import Conflict, check_schedule_conflicts
from app.emslab.modules.lab_days.models import LabDay, LabDayRole, LabStation, StationDocument
from app.emslab.storage import content_key
from app.emslab.utils import (
    file_digest_and_size,
    normalize_text,
    optional_text,
    parse_bool,
    parse_date,
    parse_int,
    parse_time,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.emslab.storage import Storage


class LabDayError(ValueError):
    pass


# ---------- Lab days ----------
def validate_lab_day_payload(s: "Session", payload: dict) -> list[str]:
    errors: list[str] = []

    try:
        if not parse_date(payload.get("date")):
            errors.append("Date is required.")
    except (TypeError, ValueError):
        errors.append("Date must be YYYY-MM-DD.")

    try:
        cohort_id = parse_int(payload.get("cohort_id"))
        if cohort_id is not None and not s.get(Cohort, cohort_id):
            errors.append("Unknown cohort.")
    except (TypeError, ValueError):
        errors.append("Cohort id must be numeric.")

    start = end = None
    try:
        start = parse_time(payload.get("start_time"))
    except (TypeError, ValueError):
        errors.append("Start time must be HH:MM.")
    try:
        end = parse_time(payload.get("end_time"))
    except (TypeError, ValueError):
        errors.append("End time must be HH:MM.")
    if start and end and end <= start:
        errors.append("End time must be after the start time.")

    for field, label in (
        ("semester", "Semester"),
        ("week_number", "Week number"),
        ("day_number", "Day number"),
        ("num_rotations", "Number of rotations"),
        ("rotation_duration", "Rotation duration"),
    ):
        try:
            v = parse_int(payload.get(field))
            if v is not None and v <= 0:
                raise ValueError()
        except (TypeError, ValueError):
            errors.append(f"{label} must be a positive integer.")

    return errors


def _lab_day_values(payload: dict) -> dict:
    return {
        "date": parse_date(payload.get("date")),
        "cohort_id": parse_int(payload.get("cohort_id")),
        "title": optional_text(payload.get("title")),
        "start_time": parse_time(payload.get("start_time")),
        "end_time": parse_time(payload.get("end_time")),
        "semester": parse_int(payload.get("semester")),
        "week_number": parse_int(payload.get("week_number")),
        "day_number": parse_int(payload.get("day_number")),
        "num_rotations": parse_int(payload.get("num_rotations")) or 4,
        "rotation_duration": parse_int(payload.get("rotation_duration")) or 30,
        "notes": optional_text(payload.get("notes")),
    }


def create_lab_day(s: "Session", payload: dict, user: User) -> LabDay:
    now = datetime.utcnow()
    lab_day = LabDay(**_lab_day_values(payload), created_by_user_id=user.id, created_at=now, updated_at=now)
    s.add(lab_day)
    s.flush()
    record_event(
        s,
        actor=user,
        action="lab_day.create",
        entity_type="LabDay",
        entity_id=str(lab_day.id),
        metadata={"date": lab_day.date.isoformat(), "cohort_id": lab_day.cohort_id, "title": lab_day.title},
    )
    return lab_day


def update_lab_day(s: "Session", lab_day: LabDay, payload: dict, user: User) -> LabDay:
    changes = {}
    for key, new in _lab_day_values(payload).items():
        old = getattr(lab_day, key)
        if new != old:
            changes[key] = {"old": str(old) if old is not None else None, "new": str(new) if new is not None else None}
            setattr(lab_day, key, new)
    lab_day.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="lab_day.edit",
        entity_type="LabDay",
        entity_id=str(lab_day.id),
        metadata={"changes": changes},
    )
    return lab_day


def delete_lab_day(s: "Session", lab_day: LabDay, user: User, reason: str | None = None) -> None:
    record_event(
        s,
        actor=user,
        action="lab_day.delete",
        entity_type="LabDay",
        entity_id=str(lab_day.id),
        reason=reason,
        metadata={
            "date": lab_day.date.isoformat(),
            "cohort_id": lab_day.cohort_id,
            "station_count": len(lab_day.stations),
        },
    )
    s.delete(lab_day)


def list_lab_days(
    s: "Session",
    *,
    cohort_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    past: bool = False,
    today: date | None = None,
) -> list[LabDay]:
    """Upcoming lab days (soonest first) unless `past` or an explicit range is given."""
    today = today or date.today()
    q = s.query(LabDay)
    if cohort_id is not None:
        q = q.filter(LabDay.cohort_id == cohort_id)
    if date_from:
        q = q.filter(LabDay.date >= date_from)
    if date_to:
        q = q.filter(LabDay.date <= date_to)
    if past:
        if not date_to:
            q = q.filter(LabDay.date < today)
        return q.order_by(LabDay.date.desc(), LabDay.start_time.desc()).all()
    if not date_from and not date_to:
        q = q.filter(LabDay.date >= today)
    return q.order_by(LabDay.date.asc(), LabDay.start_time.asc()).all()


def lab_day_instructor_ids(lab_day: LabDay) -> list[int]:
    ids: list[int] = []
    for r in lab_day.roles:
        if r.instructor_id not in ids:
            ids.append(r.instructor_id)
    for st in lab_day.stations:
        for iid in (st.instructor_id, st.additional_instructor_id):
            if iid is not None and iid not in ids:
                ids.append(iid)
    return ids


def lab_day_rooms(lab_day: LabDay) -> list[str]:
    rooms: list[str] = []
    for st in lab_day.stations:
        room = normalize_text(st.room)
        if room and room.lower() not in {r.lower() for r in rooms}:
            rooms.append(room)
    return rooms


def conflicts_for_lab_day(s: "Session", lab_day: LabDay) -> list[Conflict]:
    """Conflicts for a saved lab day against every other lab day on its date."""
    found: list[Conflict] = []
    rooms = lab_day_rooms(lab_day) or [None]
    for i, room in enumerate(rooms):
        for c in check_schedule_conflicts(
            s,
            date=lab_day.date,
            cohort_id=lab_day.cohort_id if i == 0 else None,
            location=room,
            instructor_ids=lab_day_instructor_ids(lab_day) if i == 0 else (),
            exclude_lab_day_id=lab_day.id,
        ):
            if c not in found:
                found.append(c)
    return found


def duplicate_lab_day(s: "Session", source: LabDay, new_date: date, user: User) -> LabDay:
    """Copy a lab day and its stations onto another date. Roles and documents stay behind."""
    now = datetime.utcnow()
    copy = LabDay(
        date=new_date,
        cohort_id=source.cohort_id,
        title=source.title,
        start_time=source.start_time,
        end_time=source.end_time,
        semester=source.semester,
        week_number=source.week_number,
        day_number=source.day_number,
        num_rotations=source.num_rotations,
        rotation_duration=source.rotation_duration,
        notes=source.notes,
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(copy)
    s.flush()

    for st in source.stations:
        s.add(
            LabStation(
                lab_day_id=copy.id,
                station_number=st.station_number,
                station_type=st.station_type,
                skill_name=st.skill_name,
                custom_title=st.custom_title,
                station_details=st.station_details,
                instructor_id=st.instructor_id,
                additional_instructor_id=st.additional_instructor_id,
                room=st.room,
                equipment_needed=st.equipment_needed,
                rotation_minutes=st.rotation_minutes,
                documentation_required=st.documentation_required,
                platinum_required=st.platinum_required,
                created_at=now,
                updated_at=now,
            )
        )
    s.flush()
    s.refresh(copy)

    record_event(
        s,
        actor=user,
        action="lab_day.duplicate",
        entity_type="LabDay",
        entity_id=str(copy.id),
        metadata={
            "source_lab_day_id": source.id,
            "source_date": source.date.isoformat(),
            "new_date": new_date.isoformat(),
            "station_count": len(source.stations),
        },
    )
    return copy


# ---------- Stations ----------
def next_station_number(s: "Session", lab_day: LabDay) -> int:
    numbers = [st.station_number for st in lab_day.stations]
    return (max(numbers) + 1) if numbers else 1


def validate_station_payload(
    s: "Session", lab_day: LabDay, payload: dict, *, existing: LabStation | None = None
) -> list[str]:
    errors: list[str] = []

    station_type = normalize_text(payload.get("station_type")) or "scenario"
    if station_type not in STATION_TYPES:
        errors.append(f"Invalid station type. Must be one of: {', '.join(STATION_TYPES)}")

    try:
        number = parse_int(payload.get("station_number"))
        if number is not None:
            if number <= 0:
                raise ValueError()
            clash = [st for st in lab_day.stations if st.station_number == number and st is not existing]
            if clash:
                errors.append(f"Station {number} already exists on this lab day.")
    except (TypeError, ValueError):
        errors.append("Station number must be a positive integer.")

    for field, label in (("instructor_id", "Instructor"), ("additional_instructor_id", "Additional instructor")):
        try:
            uid = parse_int(payload.get(field))
            if uid is not None and not s.get(User, uid):
                errors.append(f"{label} not found.")
        except (TypeError, ValueError):
            errors.append(f"{label} id must be numeric.")

    try:
        minutes = parse_int(payload.get("rotation_minutes"))
        if minutes is not None and minutes <= 0:
            raise ValueError()
    except (TypeError, ValueError):
        errors.append("Rotation minutes must be a positive integer.")

    return errors


def _station_values(payload: dict) -> dict:
    return {
        "station_type": normalize_text(payload.get("station_type")) or "scenario",
        "skill_name": optional_text(payload.get("skill_name")),
        "custom_title": optional_text(payload.get("custom_title")),
        "station_details": optional_text(payload.get("station_details")),
        "instructor_id": parse_int(payload.get("instructor_id")),
        "additional_instructor_id": parse_int(payload.get("additional_instructor_id")),
        "room": optional_text(payload.get("room")),
        "equipment_needed": optional_text(payload.get("equipment_needed")),
        "rotation_minutes": parse_int(payload.get("rotation_minutes")),
        "documentation_required": parse_bool(payload.get("documentation_required")),
        "platinum_required": parse_bool(payload.get("platinum_required")),
    }


def add_station(s: "Session", lab_day: LabDay, payload: dict, user: User) -> LabStation:
    now = datetime.utcnow()
    number = parse_int(payload.get("station_number")) or next_station_number(s, lab_day)
    station = LabStation(
        lab_day_id=lab_day.id,
        station_number=number,
        **_station_values(payload),
        created_at=now,
        updated_at=now,
    )
    s.add(station)
    s.flush()
    s.refresh(lab_day)
    record_event(
        s,
        actor=user,
        action="lab_station.create",
        entity_type="LabStation",
        entity_id=str(station.id),
        metadata={"lab_day_id": lab_day.id, "station_number": number, "station_type": station.station_type},
    )
    return station


def update_station(s: "Session", station: LabStation, payload: dict, user: User) -> LabStation:
    values = _station_values(payload)
    number = parse_int(payload.get("station_number"))
    if number is not None:
        values["station_number"] = number

    changes = {}
    for key, new in values.items():
        old = getattr(station, key)
        if new != old:
            changes[key] = {"old": old, "new": new}
            setattr(station, key, new)
    station.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="lab_station.edit",
        entity_type="LabStation",
        entity_id=str(station.id),
        metadata={"lab_day_id": station.lab_day_id, "changes": changes},
    )
    return station


def delete_station(s: "Session", station: LabStation, user: User) -> None:
    record_event(
        s,
        actor=user,
        action="lab_station.delete",
        entity_type="LabStation",
        entity_id=str(station.id),
        metadata={"lab_day_id": station.lab_day_id, "station_number": station.station_number},
    )
    s.delete(station)


# ---------- Lab-day roles ----------
def assign_role(
    s: "Session", lab_day: LabDay, *, instructor_id: int, role: str, user: User, notes: str | None = None
) -> LabDayRole:
    if role not in LAB_DAY_ROLES:
        raise LabDayError(f"Invalid role. Must be one of: {', '.join(LAB_DAY_ROLES)}")
    instructor = s.get(User, instructor_id)
    if not instructor:
        raise LabDayError("Instructor not found.")
    existing = (
        s.query(LabDayRole)
        .filter(
            LabDayRole.lab_day_id == lab_day.id,
            LabDayRole.instructor_id == instructor_id,
            LabDayRole.role == role,
        )
        .one_or_none()
    )
    if existing:
        raise LabDayError("Role already assigned")

    assignment = LabDayRole(lab_day_id=lab_day.id, instructor_id=instructor_id, role=role, notes=optional_text(notes))
    s.add(assignment)
    s.flush()
    record_event(
        s,
        actor=user,
        action="lab_day.role_assign",
        entity_type="LabDayRole",
        entity_id=str(assignment.id),
        metadata={"lab_day_id": lab_day.id, "instructor": instructor.email, "role": role},
    )
    return assignment


def remove_role(s: "Session", assignment: LabDayRole, user: User) -> None:
    record_event(
        s,
        actor=user,
        action="lab_day.role_remove",
        entity_type="LabDayRole",
        entity_id=str(assignment.id),
        metadata={
            "lab_day_id": assignment.lab_day_id,
            "instructor_id": assignment.instructor_id,
            "role": assignment.role,
        },
    )
    s.delete(assignment)


# ---------- Station documents ----------
def upload_station_document(
    s: "Session",
    storage: "Storage",
    station: LabStation,
    *,
    file_bytes: bytes,
    filename: str,
    content_type: str,
    user: User,
    description: str | None = None,
) -> StationDocument:
    sha256, size_bytes = file_digest_and_size(file_bytes)
    storage_key = content_key(f"stations/{station.id}", sha256, filename)
    storage.put_bytes(storage_key, file_bytes, content_type=content_type)

    doc = StationDocument(
        station_id=station.id,
        storage_key=storage_key,
        original_filename=secure_filename(filename) or "document.bin",
        content_type=content_type or "application/octet-stream",
        sha256=sha256,
        size_bytes=size_bytes,
        description=optional_text(description),
        uploaded_by_user_id=user.id,
    )
    s.add(doc)
    s.flush()
    record_event(
        s,
        actor=user,
        action="lab_station.document_upload",
        entity_type="StationDocument",
        entity_id=str(doc.id),
        metadata={"station_id": station.id, "filename": doc.original_filename, "sha256": sha256},
    )
    return doc


def delete_station_document(s: "Session", doc: StationDocument, user: User, reason: str | None = None) -> None:
    """Soft-delete a station document. The stored object is kept."""
    doc.is_deleted = True
    doc.deleted_at = datetime.utcnow()
    doc.deleted_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="lab_station.document_delete",
        entity_type="StationDocument",
        entity_id=str(doc.id),
        reason=reason,
        metadata={"station_id": doc.station_id, "filename": doc.original_filename},
    )


# ---------- iCalendar ----------
def _ics_escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\").replace(";", "\\;").replace(",", "\\,").replace("\r\n", "\\n").replace("\n", "\\n")
    )


def _ics_fold(line: str) -> list[str]:
    # RFC 5545: lines longer than 75 octets continue with a leading space.
    out = []
    while len(line.encode("utf-8")) > 75:
        cut = 75
        while len(line[:cut].encode("utf-8")) > 75:
            cut -= 1
        out.append(line[:cut])
        line = " " + line[cut:]
    out.append(line)
    return out


def lab_day_ics(lab_day: LabDay, *, now: datetime | None = None) -> str:
    """Single-event iCalendar document for a lab day (floating local times)."""
    now = now or datetime.utcnow()
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//EMS Lab//Lab Days//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:lab-day-{lab_day.id}@emslab",
        f"DTSTAMP:{now.strftime('%Y%m%dT%H%M%SZ')}",
    ]
    if lab_day.start_time:
        start = datetime.combine(lab_day.date, lab_day.start_time)
        lines.append(f"DTSTART:{start.strftime('%Y%m%dT%H%M%S')}")
        if lab_day.end_time:
            end = datetime.combine(lab_day.date, lab_day.end_time)
            lines.append(f"DTEND:{end.strftime('%Y%m%dT%H%M%S')}")
    else:
        lines.append(f"DTSTART;VALUE=DATE:{lab_day.date.strftime('%Y%m%d')}")

    lines.append(f"SUMMARY:{_ics_escape(lab_day.display_title)}")
    rooms = lab_day_rooms(lab_day)
    if rooms:
        lines.append(f"LOCATION:{_ics_escape(', '.join(rooms))}")
    description = []
    if lab_day.cohort:
        description.append(f"Cohort: {lab_day.cohort.label}")
    if lab_day.stations:
        description.append(f"Stations: {len(lab_day.stations)}")
    if lab_day.notes:
        description.append(lab_day.notes)
    if description:
        lines.append(f"DESCRIPTION:{_ics_escape(chr(10).join(description))}")
    lines += ["END:VEVENT", "END:VCALENDAR"]

    folded: list[str] = []
    for line in lines:
        folded.extend(_ics_fold(line))
    return "\r\n".join(folded) + "\r\n"


def lab_day_time_range(lab_day: LabDay) -> str:
    def fmt(t: time | None) -> str:
        return t.strftime("%H:%M") if t else ""

    if lab_day.start_time and lab_day.end_time:
        return f"{fmt(lab_day.start_time)}–{fmt(lab_day.end_time)}"
    return fmt(lab_day.start_time)
