from __future__ import annotations

import io

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, send_file, url_for

from app.emslab.constants import STUDENT_STATUSES
from app.emslab.db import db_session
from app.emslab.models import User
from app.emslab.modules.cohorts.models import Cohort, Program
from app.emslab.modules.students.models import Student
from app.emslab.modules.students.parsers.roster import (
    TEMPLATE_CSV,
    decode_upload,
    parse_roster_text,
    validate_rows,
)
from app.emslab.modules.students.service import (
    DUPLICATE_MODES,
    RosterImportError,
    create_student,
    delete_student,
    find_existing_by_email,
    import_students,
    query_students,
    update_student,
    validate_student_payload,
)
from app.emslab.rbac import require_permission
from app.emslab.utils import parse_int

bp = Blueprint("students", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload_from_form() -> dict:
    return {
        "first_name": request.form.get("first_name"),
        "last_name": request.form.get("last_name"),
        "email": request.form.get("email"),
        "phone": request.form.get("phone"),
        "agency": request.form.get("agency"),
        "cohort_id": request.form.get("cohort_id"),
        "status": request.form.get("status"),
        "notes": request.form.get("notes"),
    }


def _cohorts(s) -> list[Cohort]:
    return (
        s.query(Cohort)
        .join(Program)
        .filter(Cohort.is_active.is_(True))
        .order_by(Program.name.asc(), Cohort.cohort_number.desc())
        .all()
    )


# ---------- List ----------
@bp.get("/students")
@require_permission("students.view")
def students_list():
    s = db_session()

    search = (request.args.get("q") or "").strip()
    cohort_filter = (request.args.get("cohort_id") or "").strip()
    status_filter = (request.args.get("status") or "").strip()

    page = max(request.args.get("page", 1, type=int) or 1, 1)
    per_page = 50

    try:
        q = query_students(s, filters={"q": search, "cohort_id": cohort_filter, "status": status_filter})
    except ValueError:
        flash("Invalid cohort filter.", "danger")
        return redirect(url_for("students.students_list"))

    total = q.count()
    students = (
        q.order_by(Student.last_name.asc(), Student.first_name.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    total_pages = (total + per_page - 1) // per_page

    def build_url(p):
        args = dict(request.args)
        args["page"] = p
        return url_for("students.students_list", **args)

    return render_template(
        "admin/students/list.html",
        students=students,
        cohorts=_cohorts(s),
        statuses=STUDENT_STATUSES,
        search=search,
        cohort_filter=cohort_filter,
        status_filter=status_filter,
        page=page,
        total=total,
        total_pages=total_pages,
        build_url=build_url,
    )


# ---------- New ----------
@bp.get("/students/new")
@require_permission("students.manage")
def students_new_get():
    s = db_session()
    return render_template(
        "admin/students/form.html",
        student=None,
        cohorts=_cohorts(s),
        statuses=STUDENT_STATUSES,
        preset_cohort_id=request.args.get("cohort_id", type=int),
    )


@bp.post("/students/new")
@require_permission("students.manage")
def students_new_post():
    s = db_session()
    u = _current_user()
    payload = _payload_from_form()

    errors = validate_student_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("students.students_new_get"))

    st = create_student(s, payload, u)
    s.commit()
    flash(f"Student {st.full_name} created.", "success")
    return redirect(url_for("students.student_detail", student_id=st.id))


# ---------- Detail ----------
@bp.get("/students/<int:student_id>")
@require_permission("students.view")
def student_detail(student_id: int):
    s = db_session()
    st = s.get(Student, student_id)
    if not st:
        abort(404)
    return render_template("admin/students/detail.html", student=st)


# ---------- Edit ----------
@bp.get("/students/<int:student_id>/edit")
@require_permission("students.manage")
def student_edit_get(student_id: int):
    s = db_session()
    st = s.get(Student, student_id)
    if not st:
        abort(404)
    return render_template(
        "admin/students/form.html",
        student=st,
        cohorts=_cohorts(s),
        statuses=STUDENT_STATUSES,
        preset_cohort_id=st.cohort_id,
    )


@bp.post("/students/<int:student_id>/edit")
@require_permission("students.manage")
def student_edit_post(student_id: int):
    s = db_session()
    u = _current_user()
    st = s.get(Student, student_id)
    if not st:
        abort(404)

    payload = _payload_from_form()
    errors = validate_student_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("students.student_edit_get", student_id=student_id))

    update_student(s, st, payload, u)
    s.commit()
    flash("Student updated.", "success")
    return redirect(url_for("students.student_detail", student_id=student_id))


# ---------- Delete ----------
@bp.post("/students/<int:student_id>/delete")
@require_permission("students.manage")
def student_delete(student_id: int):
    s = db_session()
    u = _current_user()
    st = s.get(Student, student_id)
    if not st:
        abort(404)

    reason = (request.form.get("reason") or "").strip()
    if not reason:
        flash("A reason is required to delete a student.", "danger")
        return redirect(url_for("students.student_detail", student_id=student_id))

    name = st.full_name
    delete_student(s, st, u, reason)
    s.commit()
    flash(f"Student {name} deleted.", "success")
    return redirect(url_for("students.students_list"))


# ---------- Duplicate check (JSON) ----------
@bp.post("/students/check-duplicates")
@require_permission("students.view")
def students_check_duplicates():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    emails = payload.get("emails")
    if not isinstance(emails, list):
        return jsonify({"error": "emails must be a list"}), 400

    found = find_existing_by_email(s, [str(e) for e in emails if e])
    return jsonify(
        {
            "duplicates": [
                {"email": email, "existing_name": info.existing_name, "student_id": info.student_id}
                for email, info in sorted(found.items())
            ]
        }
    )


# ---------- Roster import ----------
@bp.get("/students/import")
@require_permission("students.import")
def students_import_get():
    s = db_session()
    return render_template(
        "admin/students/import.html",
        cohorts=_cohorts(s),
        duplicate_modes=DUPLICATE_MODES,
        preset_cohort_id=request.args.get("cohort_id", type=int),
    )


@bp.get("/students/import/template.csv")
@require_permission("students.import")
def students_import_template():
    return send_file(
        io.BytesIO(TEMPLATE_CSV.encode("utf-8")),
        mimetype="text/csv",
        as_attachment=True,
        download_name="student_roster_template.csv",
        max_age=0,
    )


def _roster_text_from_request() -> str:
    f = request.files.get("roster_file")
    if f and f.filename:
        return decode_upload(f.filename, f.read())
    return request.form.get("roster_text") or ""


@bp.post("/students/import/preview")
@require_permission("students.import")
def students_import_preview():
    s = db_session()
    cohort_id = parse_int(request.form.get("cohort_id"))
    duplicate_mode = (request.form.get("duplicate_mode") or "skip").strip()

    try:
        text = _roster_text_from_request()
    except Exception as e:
        flash(f"Could not read the uploaded file: {e}", "danger")
        return redirect(url_for("students.students_import_get"))

    parsed = parse_roster_text(text)
    if not parsed:
        flash("No students found in the pasted data.", "danger")
        return redirect(url_for("students.students_import_get"))

    existing = find_existing_by_email(s, [p.email for p in parsed])
    validate_rows(parsed, existing)

    counts = {
        "total": len(parsed),
        "valid": sum(1 for p in parsed if p.validation.status == "valid"),
        "warning": sum(1 for p in parsed if p.validation.status == "warning"),
        "error": sum(1 for p in parsed if p.validation.status == "error"),
    }
    return render_template(
        "admin/students/import_preview.html",
        rows=parsed,
        counts=counts,
        roster_text=text,
        cohort=s.get(Cohort, cohort_id) if cohort_id else None,
        cohort_id=cohort_id,
        duplicate_mode=duplicate_mode,
    )


@bp.post("/students/import")
@require_permission("students.import")
def students_import_post():
    s = db_session()
    u = _current_user()
    cohort_id = parse_int(request.form.get("cohort_id"))
    duplicate_mode = (request.form.get("duplicate_mode") or "skip").strip()
    selected = {parse_int(v) for v in request.form.getlist("selected_rows")}

    parsed = parse_roster_text(request.form.get("roster_text") or "")
    rows = [p.to_import_dict() for p in parsed if p.row in selected]

    try:
        result = import_students(s, rows, cohort_id=cohort_id, duplicate_mode=duplicate_mode, user=u)
    except RosterImportError as e:
        flash(str(e), "danger")
        return redirect(url_for("students.students_import_get"))

    s.commit()
    summary = result.summary
    flash(
        f"Import complete: {summary['imported']} imported, {summary['updated']} updated, "
        f"{summary['skipped']} skipped, {summary['failed']} failed.",
        "success" if not summary["failed"] else "warning",
    )
    return render_template(
        "admin/students/import_result.html",
        result=result,
        summary=summary,
        cohort=s.get(Cohort, cohort_id) if cohort_id else None,
    )


def _as_text(row: dict) -> dict:
    # JSON clients send numbers for phone or row; the importer works on strings.
    return {k: v if v is None or isinstance(v, str) else str(v) for k, v in row.items()}


@bp.post("/api/students/import")
@require_permission("students.import")
def api_students_import():
    s = db_session()
    u = _current_user()
    payload = request.get_json(silent=True) or {}

    students = payload.get("students")
    if not isinstance(students, list) or not students:
        return jsonify({"error": "No students provided"}), 400

    cohort_id = payload.get("cohort_id")
    try:
        cohort_id = int(cohort_id) if cohort_id not in (None, "") else None
    except (TypeError, ValueError):
        return jsonify({"error": "cohort_id must be an integer"}), 400

    rows = [{"row": i, **_as_text(r)} for i, r in enumerate(students, start=1) if isinstance(r, dict)]
    try:
        result = import_students(
            s,
            rows,
            cohort_id=cohort_id,
            duplicate_mode=(payload.get("duplicate_mode") or "skip"),
            user=u,
            source="api",
        )
    except RosterImportError as e:
        return jsonify({"error": str(e)}), 400

    s.commit()
    return jsonify(
        {
            "success": True,
            "results": [r.as_dict() for r in result.results],
            "summary": result.summary,
        }
    )
