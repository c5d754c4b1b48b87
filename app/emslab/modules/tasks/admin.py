from __future__ import annotations

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, url_for

from app.emslab.constants import TASK_COMPLETION_MODES, TASK_PRIORITIES, TASK_STATUSES
from app.emslab.db import db_session
from app.emslab.models import User
from app.emslab.modules.tasks.models import InstructorTask
from app.emslab.modules.tasks.service import (
    TASK_FILTERS,
    TASK_SORTS,
    TaskError,
    TaskPermissionError,
    add_comment,
    assignee_row,
    bulk_complete,
    bulk_delete,
    can_view,
    create_task,
    delete_task,
    is_assignee,
    is_assigner,
    list_tasks,
    update_task,
    validate_task_payload,
)
from app.emslab.rbac import require_permission

bp = Blueprint("tasks", __name__)

_UPDATE_FIELDS = ("title", "description", "due_date", "priority", "related_link", "status", "completion_notes")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_task(s, task_id: int) -> InstructorTask:
    task = s.get(InstructorTask, task_id)
    if not task:
        abort(404)
    return task


def _instructors(s) -> list[User]:
    return s.query(User).filter(User.is_active.is_(True)).order_by(User.name.asc(), User.email.asc()).all()


def _error_response(e: TaskError, fallback_url: str):
    status = 403 if isinstance(e, TaskPermissionError) else 400
    if request.is_json:
        return jsonify({"error": str(e)}), status
    flash(str(e), "danger")
    return redirect(fallback_url)


# ---------- List ----------
@bp.get("/tasks")
@require_permission("tasks.use")
def tasks_list():
    s = db_session()
    u = _current_user()
    scope = (request.args.get("filter") or "assigned_to_me").strip()
    if scope not in TASK_FILTERS:
        scope = "assigned_to_me"
    status = (request.args.get("status") or "").strip()
    priority = (request.args.get("priority") or "").strip()
    sort = (request.args.get("sort") or "due_date").strip()
    if sort not in TASK_SORTS:
        sort = "due_date"
    order = "desc" if (request.args.get("order") or "").strip().lower() == "desc" else "asc"

    rows = list_tasks(s, u, scope=scope, status=status, priority=priority, sort=sort, order=order)
    return render_template(
        "admin/tasks/list.html",
        rows=rows,
        scope=scope,
        status=status,
        priority=priority,
        sort=sort,
        order=order,
        filters=TASK_FILTERS,
        statuses=TASK_STATUSES,
        priorities=TASK_PRIORITIES,
        sorts=TASK_SORTS,
    )


# ---------- New ----------
@bp.get("/tasks/new")
@require_permission("tasks.use")
def tasks_new_get():
    s = db_session()
    return render_template(
        "admin/tasks/form.html",
        task=None,
        instructors=_instructors(s),
        priorities=TASK_PRIORITIES,
        completion_modes=[m for m in TASK_COMPLETION_MODES if m != "single"],
    )


@bp.post("/tasks/new")
@require_permission("tasks.use")
def tasks_new_post():
    s = db_session()
    u = _current_user()
    payload = {
        "title": request.form.get("title"),
        "description": request.form.get("description"),
        "assignee_ids": request.form.getlist("assignee_ids"),
        "due_date": request.form.get("due_date"),
        "priority": request.form.get("priority"),
        "completion_mode": request.form.get("completion_mode"),
        "related_link": request.form.get("related_link"),
    }

    errors = validate_task_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("tasks.tasks_new_get"))

    task = create_task(s, payload, u)
    s.commit()
    flash(f"Task \"{task.title}\" assigned.", "success")
    return redirect(url_for("tasks.task_detail", task_id=task.id))


# ---------- Detail ----------
@bp.get("/tasks/<int:task_id>")
@require_permission("tasks.use")
def task_detail(task_id: int):
    s = db_session()
    u = _current_user()
    task = _get_task(s, task_id)
    if not can_view(task, u):
        abort(403)
    mine = assignee_row(task, u)
    return render_template(
        "admin/tasks/detail.html",
        task=task,
        comments=task.comments,
        is_assigner=is_assigner(task, u),
        is_assignee=is_assignee(task, u),
        my_status=mine.status if mine else None,
        statuses=TASK_STATUSES,
    )


# ---------- Edit ----------
@bp.get("/tasks/<int:task_id>/edit")
@require_permission("tasks.use")
def task_edit_get(task_id: int):
    s = db_session()
    u = _current_user()
    task = _get_task(s, task_id)
    if not is_assigner(task, u):
        abort(403)
    return render_template(
        "admin/tasks/form.html",
        task=task,
        instructors=_instructors(s),
        priorities=TASK_PRIORITIES,
        completion_modes=[m for m in TASK_COMPLETION_MODES if m != "single"],
    )


@bp.post("/tasks/<int:task_id>/update")
@require_permission("tasks.use")
def task_update(task_id: int):
    s = db_session()
    u = _current_user()
    task = _get_task(s, task_id)

    source = (request.get_json(silent=True) or {}) if request.is_json else request.form
    payload = {k: source.get(k) for k in _UPDATE_FIELDS if k in source}

    try:
        update_task(s, task, payload, u)
    except TaskError as e:
        s.rollback()
        return _error_response(e, url_for("tasks.task_detail", task_id=task_id))

    s.commit()
    if request.is_json:
        return jsonify({"success": True, "status": task.status})
    flash("Task updated.", "success")
    return redirect(url_for("tasks.task_detail", task_id=task_id))


# ---------- Delete ----------
@bp.post("/tasks/<int:task_id>/delete")
@require_permission("tasks.use")
def task_delete(task_id: int):
    s = db_session()
    u = _current_user()
    task = _get_task(s, task_id)
    try:
        delete_task(s, task, u)
    except TaskError as e:
        return _error_response(e, url_for("tasks.task_detail", task_id=task_id))
    s.commit()
    if request.is_json:
        return jsonify({"success": True})
    flash("Task deleted.", "success")
    return redirect(url_for("tasks.tasks_list", filter="assigned_by_me"))


# ---------- Comments ----------
@bp.post("/tasks/<int:task_id>/comments")
@require_permission("tasks.use")
def task_comment(task_id: int):
    s = db_session()
    u = _current_user()
    task = _get_task(s, task_id)
    source = (request.get_json(silent=True) or {}) if request.is_json else request.form
    try:
        comment = add_comment(s, task, u, source.get("comment") or "")
    except TaskError as e:
        return _error_response(e, url_for("tasks.task_detail", task_id=task_id))
    s.commit()
    if request.is_json:
        return jsonify({"success": True, "id": comment.id}), 201
    return redirect(url_for("tasks.task_detail", task_id=task_id))


# ---------- Bulk ----------
def _bulk_ids_from_request():
    if request.is_json:
        return (request.get_json(silent=True) or {}).get("ids")
    return request.form.getlist("ids")


@bp.post("/tasks/bulk/complete")
@require_permission("tasks.use")
def tasks_bulk_complete():
    s = db_session()
    u = _current_user()
    try:
        result = bulk_complete(s, _bulk_ids_from_request(), u)
    except TaskError as e:
        return _error_response(e, url_for("tasks.tasks_list"))
    s.commit()
    if request.is_json:
        return jsonify({"success": True, **result})
    flash(f"{result['completed']} task(s) marked as completed.", "success")
    if result["recorded"] > result["completed"]:
        flash(
            f"{result['recorded'] - result['completed']} task(s) still wait on other assignees.",
            "info",
        )
    return redirect(url_for("tasks.tasks_list"))


@bp.post("/tasks/bulk/delete")
@require_permission("tasks.use")
def tasks_bulk_delete():
    s = db_session()
    u = _current_user()
    try:
        result = bulk_delete(s, _bulk_ids_from_request(), u)
    except TaskError as e:
        return _error_response(e, url_for("tasks.tasks_list"))
    s.commit()
    if request.is_json:
        return jsonify({"success": True, **result})
    flash(f"{result['deleted']} task(s) deleted.", "success")
    return redirect(url_for("tasks.tasks_list", filter="assigned_by_me"))
