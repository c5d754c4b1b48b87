from __future__ import annotations

import io
from datetime import date

from flask import Blueprint, abort, flash, g, redirect, render_template, request, send_file, url_for

from app.emslab.db import db_session
from app.emslab.models import User
from app.emslab.modules.cohorts.models import Cohort, Program
from app.emslab.modules.cohorts.service import (
    cohort_weeks_remaining,
    create_cohort,
    list_cohorts,
    roster_csv_bytes,
    set_cohort_archived,
    update_cohort,
    validate_cohort_payload,
)
from app.emslab.modules.lab_days.models import LabDay
from app.emslab.rbac import require_permission

bp = Blueprint("cohorts", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload_from_form() -> dict:
    return {
        "program_id": request.form.get("program_id"),
        "cohort_number": request.form.get("cohort_number"),
        "start_date": request.form.get("start_date"),
        "expected_end_date": request.form.get("expected_end_date"),
    }


def _programs(s) -> list[Program]:
    return s.query(Program).filter(Program.is_active.is_(True)).order_by(Program.name.asc()).all()


# ---------- List ----------
@bp.get("/cohorts")
@require_permission("cohorts.view")
def cohorts_list():
    s = db_session()
    show = (request.args.get("show") or "active").strip()
    cohorts = list_cohorts(s, show=show)
    return render_template("admin/cohorts/list.html", cohorts=cohorts, show=show)


# ---------- New ----------
@bp.get("/cohorts/new")
@require_permission("cohorts.manage")
def cohorts_new_get():
    s = db_session()
    return render_template("admin/cohorts/form.html", cohort=None, programs=_programs(s))


@bp.post("/cohorts/new")
@require_permission("cohorts.manage")
def cohorts_new_post():
    s = db_session()
    u = _current_user()
    payload = _payload_from_form()

    errors = validate_cohort_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("cohorts.cohorts_new_get"))

    cohort = create_cohort(s, payload, u)
    s.commit()
    flash(f"Cohort {cohort.label} created.", "success")
    return redirect(url_for("cohorts.cohort_detail", cohort_id=cohort.id))


# ---------- Detail ----------
@bp.get("/cohorts/<int:cohort_id>")
@require_permission("cohorts.view")
def cohort_detail(cohort_id: int):
    s = db_session()
    cohort = s.get(Cohort, cohort_id)
    if not cohort:
        abort(404)
    today = date.today()
    upcoming = (
        s.query(LabDay)
        .filter(LabDay.cohort_id == cohort.id, LabDay.date >= today)
        .order_by(LabDay.date.asc())
        .limit(20)
        .all()
    )
    students = sorted(cohort.students, key=lambda x: (x.last_name.lower(), x.first_name.lower()))
    return render_template(
        "admin/cohorts/detail.html",
        cohort=cohort,
        students=students,
        upcoming=upcoming,
        weeks_remaining=cohort_weeks_remaining(cohort, today),
    )


# ---------- Edit ----------
@bp.get("/cohorts/<int:cohort_id>/edit")
@require_permission("cohorts.manage")
def cohort_edit_get(cohort_id: int):
    s = db_session()
    cohort = s.get(Cohort, cohort_id)
    if not cohort:
        abort(404)
    return render_template("admin/cohorts/form.html", cohort=cohort, programs=_programs(s))


@bp.post("/cohorts/<int:cohort_id>/edit")
@require_permission("cohorts.manage")
def cohort_edit_post(cohort_id: int):
    s = db_session()
    u = _current_user()
    cohort = s.get(Cohort, cohort_id)
    if not cohort:
        abort(404)

    payload = _payload_from_form()
    errors = validate_cohort_payload(s, payload, existing=cohort)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("cohorts.cohort_edit_get", cohort_id=cohort_id))

    update_cohort(s, cohort, payload, u)
    s.commit()
    flash("Cohort updated.", "success")
    return redirect(url_for("cohorts.cohort_detail", cohort_id=cohort_id))


# ---------- Archive ----------
@bp.post("/cohorts/<int:cohort_id>/archive")
@require_permission("cohorts.manage")
def cohort_archive(cohort_id: int):
    s = db_session()
    u = _current_user()
    cohort = s.get(Cohort, cohort_id)
    if not cohort:
        abort(404)
    archived = (request.form.get("archived") or "1").strip() != "0"
    reason = (request.form.get("reason") or "").strip() or None
    set_cohort_archived(s, cohort, archived=archived, user=u, reason=reason)
    s.commit()
    flash(f"Cohort {cohort.label} {'archived' if archived else 'restored'}.", "success")
    return redirect(url_for("cohorts.cohort_detail", cohort_id=cohort_id))


# ---------- Roster export ----------
@bp.get("/cohorts/<int:cohort_id>/roster.csv")
@require_permission("students.view")
def cohort_roster_export(cohort_id: int):
    from app.emslab.audit import record_event

    s = db_session()
    u = _current_user()
    cohort = s.get(Cohort, cohort_id)
    if not cohort:
        abort(404)
    data = roster_csv_bytes(cohort)
    record_event(
        s,
        actor=u,
        action="cohort.roster_export",
        entity_type="Cohort",
        entity_id=str(cohort.id),
        metadata={"row_count": len(cohort.students)},
    )
    s.commit()
    filename = f"roster_{cohort.label.replace(' ', '_').lower()}_{date.today().strftime('%Y%m%d')}.csv"
    return send_file(
        io.BytesIO(data),
        mimetype="text/csv",
        as_attachment=True,
        download_name=filename,
        max_age=0,
    )
