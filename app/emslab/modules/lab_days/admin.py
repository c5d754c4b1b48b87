from __future__ import annotations

import calendar
import io
import logging
from datetime import date

from flask import (
    Blueprint,
    abort,
    current_app,
    flash,
    g,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    url_for,
)

from app.emslab.constants import LAB_DAY_ROLES, STATION_TYPES
from app.emslab.db import db_session
from app.emslab.models import User
from app.emslab.modules.cohorts.models import Cohort, Program
from app.emslab.modules.lab_days.conflicts import check_schedule_conflicts
from app.emslab.modules.lab_days.models import LabDay, LabDayRole, LabStation, StationDocument
from app.emslab.modules.lab_days.service import (
    LabDayError,
    add_station,
    assign_role,
    conflicts_for_lab_day,
    create_lab_day,
    delete_lab_day,
    delete_station,
    delete_station_document,
    duplicate_lab_day,
    lab_day_ics,
    list_lab_days,
    remove_role,
    update_lab_day,
    update_station,
    upload_station_document,
    validate_lab_day_payload,
    validate_station_payload,
)
from app.emslab.rbac import require_permission
from app.emslab.storage import StorageError, storage_from_config
from app.emslab.utils import parse_bool, parse_date, parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("lab_days", __name__)

_LAB_DAY_FIELDS = (
    "date",
    "cohort_id",
    "title",
    "start_time",
    "end_time",
    "semester",
    "week_number",
    "day_number",
    "num_rotations",
    "rotation_duration",
    "notes",
)

_STATION_FIELDS = (
    "station_number",
    "station_type",
    "skill_name",
    "custom_title",
    "station_details",
    "instructor_id",
    "additional_instructor_id",
    "room",
    "equipment_needed",
    "rotation_minutes",
    "documentation_required",
    "platinum_required",
)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_lab_day(s, lab_day_id: int) -> LabDay:
    lab_day = s.get(LabDay, lab_day_id)
    if not lab_day:
        abort(404)
    return lab_day


def _get_station(s, lab_day: LabDay, station_id: int) -> LabStation:
    station = s.get(LabStation, station_id)
    if not station or station.lab_day_id != lab_day.id:
        abort(404)
    return station


def _cohorts(s) -> list[Cohort]:
    return (
        s.query(Cohort)
        .join(Program)
        .filter(Cohort.is_active.is_(True))
        .order_by(Program.name.asc(), Cohort.cohort_number.desc())
        .all()
    )


def _instructors(s) -> list[User]:
    return s.query(User).filter(User.is_active.is_(True)).order_by(User.name.asc(), User.email.asc()).all()


def _flash_conflicts(conflicts) -> None:
    for c in conflicts:
        flash(c.message, "warning")


# ---------- List ----------
@bp.get("/lab-days")
@require_permission("lab_days.view")
def lab_days_list():
    s = db_session()
    cohort_filter = (request.args.get("cohort_id") or "").strip()
    past = request.args.get("past") == "1"

    try:
        date_from = parse_date(request.args.get("from"))
        date_to = parse_date(request.args.get("to"))
        cohort_id = parse_int(cohort_filter)
    except ValueError:
        flash("Dates must be YYYY-MM-DD and the cohort must be numeric.", "danger")
        return redirect(url_for("lab_days.lab_days_list"))

    lab_days = list_lab_days(s, cohort_id=cohort_id, date_from=date_from, date_to=date_to, past=past)
    return render_template(
        "admin/lab_days/list.html",
        lab_days=lab_days,
        cohorts=_cohorts(s),
        cohort_filter=cohort_filter,
        date_from=(request.args.get("from") or "").strip(),
        date_to=(request.args.get("to") or "").strip(),
        past=past,
    )


# ---------- New ----------
@bp.get("/lab-days/new")
@require_permission("lab_days.create")
def lab_days_new_get():
    s = db_session()
    return render_template(
        "admin/lab_days/form.html",
        lab_day=None,
        cohorts=_cohorts(s),
        preset_date=(request.args.get("date") or "").strip(),
        preset_cohort_id=request.args.get("cohort_id", type=int),
    )


@bp.post("/lab-days/new")
@require_permission("lab_days.create")
def lab_days_new_post():
    s = db_session()
    u = _current_user()
    payload = {k: request.form.get(k) for k in _LAB_DAY_FIELDS}

    errors = validate_lab_day_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("lab_days.lab_days_new_get"))

    lab_day = create_lab_day(s, payload, u)
    conflicts = conflicts_for_lab_day(s, lab_day)
    s.commit()
    flash(f"Lab day created for {lab_day.date.isoformat()}.", "success")
    _flash_conflicts(conflicts)
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day.id))


# ---------- Detail ----------
@bp.get("/lab-days/<int:lab_day_id>")
@require_permission("lab_days.view")
def lab_day_detail(lab_day_id: int):
    s = db_session()
    lab_day = _get_lab_day(s, lab_day_id)
    roles = sorted(lab_day.roles, key=lambda r: (LAB_DAY_ROLES.index(r.role), r.instructor.display_name.lower()))
    return render_template(
        "admin/lab_days/detail.html",
        lab_day=lab_day,
        stations=lab_day.stations,
        roles=roles,
        conflicts=conflicts_for_lab_day(s, lab_day),
        instructors=_instructors(s),
        role_choices=LAB_DAY_ROLES,
        station_types=STATION_TYPES,
    )


# ---------- Edit ----------
@bp.get("/lab-days/<int:lab_day_id>/edit")
@require_permission("lab_days.edit")
def lab_day_edit_get(lab_day_id: int):
    s = db_session()
    lab_day = _get_lab_day(s, lab_day_id)
    return render_template(
        "admin/lab_days/form.html",
        lab_day=lab_day,
        cohorts=_cohorts(s),
        preset_date=lab_day.date.isoformat(),
        preset_cohort_id=lab_day.cohort_id,
    )


@bp.post("/lab-days/<int:lab_day_id>/edit")
@require_permission("lab_days.edit")
def lab_day_edit_post(lab_day_id: int):
    s = db_session()
    u = _current_user()
    lab_day = _get_lab_day(s, lab_day_id)
    payload = {k: request.form.get(k) for k in _LAB_DAY_FIELDS}

    errors = validate_lab_day_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("lab_days.lab_day_edit_get", lab_day_id=lab_day_id))

    update_lab_day(s, lab_day, payload, u)
    s.flush()
    conflicts = conflicts_for_lab_day(s, lab_day)
    s.commit()
    flash("Lab day updated.", "success")
    _flash_conflicts(conflicts)
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))


# ---------- Delete ----------
@bp.post("/lab-days/<int:lab_day_id>/delete")
@require_permission("lab_days.delete")
def lab_day_delete(lab_day_id: int):
    s = db_session()
    u = _current_user()
    lab_day = _get_lab_day(s, lab_day_id)
    reason = (request.form.get("reason") or "").strip() or None
    when = lab_day.date.isoformat()
    delete_lab_day(s, lab_day, u, reason=reason)
    s.commit()
    flash(f"Lab day on {when} deleted.", "success")
    return redirect(url_for("lab_days.lab_days_list"))


# ---------- Duplicate ----------
@bp.post("/lab-days/<int:lab_day_id>/duplicate")
@require_permission("lab_days.create")
def lab_day_duplicate(lab_day_id: int):
    s = db_session()
    u = _current_user()
    source = _get_lab_day(s, lab_day_id)

    try:
        new_date = parse_date(request.form.get("new_date"))
    except ValueError:
        new_date = None
    if not new_date:
        flash("A new date (YYYY-MM-DD) is required to duplicate a lab day.", "danger")
        return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))

    copy = duplicate_lab_day(s, source, new_date, u)
    conflicts = conflicts_for_lab_day(s, copy)
    s.commit()
    flash(f"Lab day duplicated to {new_date.isoformat()} with {len(copy.stations)} station(s).", "success")
    _flash_conflicts(conflicts)
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=copy.id))


# ---------- Calendar export ----------
@bp.get("/lab-days/<int:lab_day_id>/calendar.ics")
@require_permission("lab_days.view")
def lab_day_calendar(lab_day_id: int):
    s = db_session()
    lab_day = _get_lab_day(s, lab_day_id)
    data = lab_day_ics(lab_day).encode("utf-8")
    return send_file(
        io.BytesIO(data),
        mimetype="text/calendar",
        as_attachment=True,
        download_name=f"lab_day_{lab_day.date.isoformat()}.ics",
        max_age=0,
    )


# ---------- Conflict check (JSON) ----------
@bp.post("/lab-days/conflicts")
@require_permission("lab_days.view")
def lab_days_conflicts():
    s = db_session()
    payload = request.get_json(silent=True) or {}

    try:
        on_date = parse_date(payload.get("date"))
    except (TypeError, ValueError):
        return jsonify({"error": "date must be YYYY-MM-DD"}), 400
    if not on_date:
        return jsonify({"error": "date is required"}), 400

    location = payload.get("location")
    if location is not None and not isinstance(location, str):
        return jsonify({"error": "location must be a string"}), 400
    raw_instructors = payload.get("instructor_ids") or []
    if not isinstance(raw_instructors, list):
        return jsonify({"error": "instructor_ids must be a list"}), 400
    try:
        cohort_id = parse_int(payload.get("cohort_id"))
        exclude_id = parse_int(payload.get("exclude_lab_day_id"))
        instructor_ids = [parse_int(i) for i in raw_instructors]
    except (TypeError, ValueError):
        return jsonify({"error": "ids must be integers"}), 400

    conflicts = check_schedule_conflicts(
        s,
        date=on_date,
        cohort_id=cohort_id,
        location=location,
        instructor_ids=[i for i in instructor_ids if i is not None],
        exclude_lab_day_id=exclude_id,
    )
    return jsonify({"conflicts": [c.as_dict() for c in conflicts]})


# ---------- Stations ----------
def _station_payload() -> dict:
    payload = {k: request.form.get(k) for k in _STATION_FIELDS}
    payload["documentation_required"] = parse_bool(request.form.get("documentation_required"))
    payload["platinum_required"] = parse_bool(request.form.get("platinum_required"))
    return payload


@bp.post("/lab-days/<int:lab_day_id>/stations")
@require_permission("lab_days.edit")
def station_add(lab_day_id: int):
    s = db_session()
    u = _current_user()
    lab_day = _get_lab_day(s, lab_day_id)
    payload = _station_payload()

    errors = validate_station_payload(s, lab_day, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))

    station = add_station(s, lab_day, payload, u)
    conflicts = conflicts_for_lab_day(s, lab_day)
    s.commit()
    flash(f"Station {station.station_number} added.", "success")
    _flash_conflicts(conflicts)
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))


@bp.get("/lab-days/<int:lab_day_id>/stations/<int:station_id>/edit")
@require_permission("lab_days.edit")
def station_edit_get(lab_day_id: int, station_id: int):
    s = db_session()
    lab_day = _get_lab_day(s, lab_day_id)
    station = _get_station(s, lab_day, station_id)
    return render_template(
        "admin/lab_days/station_form.html",
        lab_day=lab_day,
        station=station,
        instructors=_instructors(s),
        station_types=STATION_TYPES,
    )


@bp.post("/lab-days/<int:lab_day_id>/stations/<int:station_id>/edit")
@require_permission("lab_days.edit")
def station_edit_post(lab_day_id: int, station_id: int):
    s = db_session()
    u = _current_user()
    lab_day = _get_lab_day(s, lab_day_id)
    station = _get_station(s, lab_day, station_id)
    payload = _station_payload()

    errors = validate_station_payload(s, lab_day, payload, existing=station)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("lab_days.station_edit_get", lab_day_id=lab_day_id, station_id=station_id))

    update_station(s, station, payload, u)
    s.flush()
    conflicts = conflicts_for_lab_day(s, lab_day)
    s.commit()
    flash("Station updated.", "success")
    _flash_conflicts(conflicts)
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))


@bp.post("/lab-days/<int:lab_day_id>/stations/<int:station_id>/delete")
@require_permission("lab_days.edit")
def station_delete(lab_day_id: int, station_id: int):
    s = db_session()
    u = _current_user()
    lab_day = _get_lab_day(s, lab_day_id)
    station = _get_station(s, lab_day, station_id)
    number = station.station_number
    delete_station(s, station, u)
    s.commit()
    flash(f"Station {number} removed.", "success")
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))


# ---------- Roles ----------
@bp.post("/lab-days/<int:lab_day_id>/roles")
@require_permission("lab_days.edit")
def role_assign(lab_day_id: int):
    s = db_session()
    u = _current_user()
    lab_day = _get_lab_day(s, lab_day_id)
    data = request.get_json(silent=True) if request.is_json else request.form
    data = data or {}

    try:
        instructor_id = parse_int(data.get("instructor_id"))
    except (TypeError, ValueError):
        instructor_id = None
    role = (data.get("role") or "").strip()

    error = None
    status = 400
    if not instructor_id or not role:
        error = "instructor_id and role are required"
    else:
        try:
            assignment = assign_role(s, lab_day, instructor_id=instructor_id, role=role, user=u, notes=data.get("notes"))
        except LabDayError as e:
            error = str(e)
            status = 409 if error == "Role already assigned" else 400

    if error:
        if request.is_json:
            return jsonify({"error": error}), status
        flash(error, "danger")
        return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))

    s.commit()
    if request.is_json:
        return jsonify({"success": True, "id": assignment.id}), 201
    flash("Role assigned.", "success")
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))


@bp.post("/lab-days/<int:lab_day_id>/roles/<int:role_id>/delete")
@require_permission("lab_days.edit")
def role_remove(lab_day_id: int, role_id: int):
    s = db_session()
    u = _current_user()
    lab_day = _get_lab_day(s, lab_day_id)
    assignment = s.get(LabDayRole, role_id)
    if not assignment or assignment.lab_day_id != lab_day.id:
        abort(404)
    remove_role(s, assignment, u)
    s.commit()
    flash("Role removed.", "success")
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))


# ---------- Station documents ----------
@bp.post("/lab-days/<int:lab_day_id>/stations/<int:station_id>/documents")
@require_permission("lab_days.edit")
def station_document_upload(lab_day_id: int, station_id: int):
    s = db_session()
    u = _current_user()
    lab_day = _get_lab_day(s, lab_day_id)
    station = _get_station(s, lab_day, station_id)

    f = request.files.get("file")
    if not f or not f.filename:
        flash("Please select a file to upload.", "danger")
        return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))

    storage = storage_from_config(current_app.config)
    try:
        upload_station_document(
            s,
            storage,
            station,
            file_bytes=f.read(),
            filename=f.filename,
            content_type=(f.mimetype or "application/octet-stream").strip(),
            user=u,
            description=request.form.get("description"),
        )
    except StorageError as e:
        logger.error("Station document upload failed (station_id=%s): %s", station.id, e)
        flash("Upload failed: storage is unavailable.", "danger")
        return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))

    s.commit()
    flash("Document uploaded.", "success")
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))


@bp.get("/lab-days/documents/<int:doc_id>/download")
@require_permission("lab_days.view")
def station_document_download(doc_id: int):
    s = db_session()
    doc = s.get(StationDocument, doc_id)
    if not doc or doc.is_deleted:
        abort(404)

    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(doc.storage_key)
    except StorageError as e:
        logger.error("Station document missing from storage (doc_id=%s): %s", doc.id, e)
        abort(404)

    return send_file(
        fobj,
        mimetype=doc.content_type,
        as_attachment=True,
        download_name=doc.original_filename,
        max_age=0,
    )


@bp.post("/lab-days/documents/<int:doc_id>/delete")
@require_permission("lab_days.edit")
def station_document_delete(doc_id: int):
    s = db_session()
    u = _current_user()
    doc = s.get(StationDocument, doc_id)
    if not doc or doc.is_deleted:
        abort(404)
    lab_day_id = doc.station.lab_day_id
    delete_station_document(s, doc, u, reason=(request.form.get("reason") or "").strip() or None)
    s.commit()
    flash("Document removed.", "success")
    return redirect(url_for("lab_days.lab_day_detail", lab_day_id=lab_day_id))


@bp.get("/lab-days/calendar")
@require_permission("lab_days.view")
def lab_days_month():
    """Month grid of lab days (?month=YYYY-MM, default current month)."""
    s = db_session()
    raw = (request.args.get("month") or "").strip()
    today = date.today()
    try:
        year, month = (int(p) for p in raw.split("-")) if raw else (today.year, today.month)
        first = date(year, month, 1)
        # Both neighbours must exist too, which rules out 0001-01 and 9999-12.
        next_first = date(first.year + (first.month // 12), first.month % 12 + 1, 1)
        prev_first = date(first.year - (1 if first.month == 1 else 0), 12 if first.month == 1 else first.month - 1, 1)
    except ValueError:
        flash("month must be YYYY-MM", "danger")
        return redirect(url_for("lab_days.lab_days_month"))
    lab_days = (
        s.query(LabDay)
        .filter(LabDay.date >= first, LabDay.date < next_first)
        .order_by(LabDay.date.asc(), LabDay.start_time.asc())
        .all()
    )
    by_day: dict[date, list[LabDay]] = {}
    for ld in lab_days:
        by_day.setdefault(ld.date, []).append(ld)
    return render_template(
        "admin/lab_days/calendar.html",
        first=first,
        prev_month=prev_first.strftime("%Y-%m"),
        next_month=next_first.strftime("%Y-%m"),
        by_day=by_day,
        weeks=calendar.Calendar(firstweekday=6).monthdatescalendar(first.year, first.month),
        today=today,
    )
