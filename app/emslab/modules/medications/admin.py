from __future__ import annotations

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.emslab.db import db_session
from app.emslab.models import User
from app.emslab.modules.medications.models import Medication
from app.emslab.modules.medications.service import (
    LIST_FIELDS,
    TEXT_FIELDS,
    calculate_dose,
    create_medication,
    medication_to_dict,
    retire_medication,
    search_medications,
    update_medication,
    validate_medication_payload,
)
from app.emslab.rbac import require_permission

bp = Blueprint("medications", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload_from_form() -> dict:
    payload = {k: request.form.get(k) for k in ("name", "drug_class", "dose_per_kg", *LIST_FIELDS, *TEXT_FIELDS)}
    return payload


# ---------- List ----------
@bp.get("/medications")
@require_permission("medications.view")
def medications_list():
    s = db_session()
    search = (request.args.get("search") or "").strip()
    drug_class = (request.args.get("class") or "").strip()
    result = search_medications(s, search=search, drug_class=drug_class)
    return render_template(
        "admin/medications/list.html",
        medications=result.medications,
        classes=result.classes,
        total=result.total,
        search=search,
        drug_class=drug_class,
    )


# ---------- Detail ----------
@bp.get("/medications/<int:medication_id>")
@require_permission("medications.view")
def medication_detail(medication_id: int):
    s = db_session()
    med = s.get(Medication, medication_id)
    if not med or not med.is_active:
        abort(404)

    weight = (request.args.get("weight") or "").strip()
    dose = None
    if weight:
        try:
            dose = calculate_dose(med, weight)
        except ValueError as e:
            flash(str(e), "danger")
    return render_template("admin/medications/detail.html", med=med, weight=weight, dose=dose)


# ---------- New ----------
@bp.get("/medications/new")
@require_permission("medications.manage")
def medications_new_get():
    return render_template("admin/medications/form.html", med=None)


@bp.post("/medications/new")
@require_permission("medications.manage")
def medications_new_post():
    s = db_session()
    u = _current_user()
    payload = _payload_from_form()

    errors = validate_medication_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("medications.medications_new_get"))

    med = create_medication(s, payload, u)
    s.commit()
    flash(f"Medication {med.name} added.", "success")
    return redirect(url_for("medications.medication_detail", medication_id=med.id))


# ---------- Edit ----------
@bp.get("/medications/<int:medication_id>/edit")
@require_permission("medications.manage")
def medication_edit_get(medication_id: int):
    s = db_session()
    med = s.get(Medication, medication_id)
    if not med:
        abort(404)
    return render_template("admin/medications/form.html", med=med)


@bp.post("/medications/<int:medication_id>/edit")
@require_permission("medications.manage")
def medication_edit_post(medication_id: int):
    s = db_session()
    u = _current_user()
    med = s.get(Medication, medication_id)
    if not med:
        abort(404)

    payload = _payload_from_form()
    payload["is_active"] = "1" if request.form.get("is_active") else "0"
    errors = validate_medication_payload(payload, partial=True)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("medications.medication_edit_get", medication_id=medication_id))

    update_medication(s, med, payload, u)
    s.commit()
    flash("Medication updated.", "success")
    if not med.is_active:
        return redirect(url_for("medications.medications_list"))
    return redirect(url_for("medications.medication_detail", medication_id=medication_id))


# ---------- Delete (soft) ----------
@bp.post("/medications/<int:medication_id>/delete")
@require_permission("medications.manage")
def medication_delete(medication_id: int):
    s = db_session()
    u = _current_user()
    med = s.get(Medication, medication_id)
    if not med:
        abort(404)
    retire_medication(s, med, u, reason=(request.form.get("reason") or "").strip() or None)
    s.commit()
    flash(f"Medication {med.name} removed from the reference.", "success")
    return redirect(url_for("medications.medications_list"))


# ---------- JSON ----------
@bp.get("/api/medications")
@require_permission("medications.view")
def api_medications():
    s = db_session()
    med_id = request.args.get("id", type=int)
    if med_id is not None:
        med = s.get(Medication, med_id)
        if not med or not med.is_active:
            return jsonify({"error": "Medication not found"}), 404
        return jsonify({"medication": medication_to_dict(med)})

    result = search_medications(s, search=request.args.get("search"), drug_class=request.args.get("class"))
    return jsonify(
        {
            "medications": [medication_to_dict(m) for m in result.medications],
            "classes": result.classes,
            "total": result.total,
        }
    )
