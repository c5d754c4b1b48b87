from datetime import date, timedelta

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.emslab.accounts import (
    AccountError,
    assignable_roles,
    create_account,
    reset_password,
    update_account,
    update_profile_name,
)
from app.emslab.audit import search_events
from app.emslab.db import db_session
from app.emslab.models import User
from app.emslab.rbac import can_manage_account, require_permission, user_has_permission, user_permission_keys
from app.emslab.storage import storage_status
from app.emslab.utils import parse_date

bp = Blueprint("admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _safe_date(raw: str) -> date | None:
    try:
        return parse_date(raw)
    except ValueError:
        return None


def _system_status(s) -> dict:
    """DB round-trip plus storage settings; no storage network calls."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    status = {"env": current_app.config.get("ENV") or "development", "db_connected": False, "db_error": None}
    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except SQLAlchemyError as e:
        status["db_error"] = str(e)
    status.update(storage_status(current_app.config))
    return status


@bp.get("/")
@require_permission("admin.view")
def index():
    from app.emslab.modules.cohorts.models import Cohort
    from app.emslab.modules.lab_days.models import LabDay
    from app.emslab.modules.tasks.service import my_open_tasks

    s = db_session()
    u = _current_user()
    today = date.today()

    upcoming = []
    if user_has_permission(u, "lab_days.view"):
        upcoming = (
            s.query(LabDay)
            .filter(LabDay.date >= today, LabDay.date <= today + timedelta(days=current_app.config["UPCOMING_LAB_DAYS"]))
            .order_by(LabDay.date.asc(), LabDay.start_time.asc())
            .all()
        )

    open_tasks, overdue_count = [], 0
    if user_has_permission(u, "tasks.use"):
        open_tasks, overdue_count = my_open_tasks(s, u, today=today)

    active_cohorts = s.query(Cohort).filter(Cohort.is_active.is_(True)).count()

    return render_template(
        "admin/index.html",
        upcoming=upcoming,
        open_tasks=open_tasks,
        overdue_count=overdue_count,
        active_cohorts=active_cohorts,
        system_status=_system_status(s),
        today=today,
    )


@bp.get("/me")
@require_permission("admin.view")
def me():
    user = getattr(g, "current_user", None)
    role_keys = user.role_keys if user else []
    perm_keys = sorted(user_permission_keys(user))
    return render_template("admin/me.html", user=user, role_keys=role_keys, perm_keys=perm_keys)


@bp.post("/me")
@require_permission("admin.view")
def me_update():
    """Update the current user's display name."""
    s = db_session()
    try:
        update_profile_name(s, _current_user(), request.form.get("name"))
    except AccountError as e:
        _flash_errors(e)
        return redirect(url_for("admin.me"))
    s.commit()
    flash("Profile updated.", "success")
    return redirect(url_for("admin.me"))


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Audit trail (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    raw_from = (request.args.get("date_from") or "").strip()
    raw_to = (request.args.get("date_to") or "").strip()
    date_from = _safe_date(raw_from)
    date_to = _safe_date(raw_to)

    if raw_from and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if raw_to and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    events = search_events(s, action=action, actor_email=actor_email, date_from=date_from, date_to=date_to)
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=raw_from,
        date_to=raw_to,
    )


@bp.get("/login")
def login_redirect():
    return redirect(url_for("auth.login_get"))


# ============================================================================
# ACCOUNT MANAGEMENT
# ============================================================================

def _get_account(s, user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        abort(404)
    return user


def _flash_errors(e: AccountError) -> None:
    for msg in e.errors:
        flash(msg, "danger")


@bp.get("/accounts")
@require_permission("users.manage")
def accounts_list():
    s = db_session()
    users = s.query(User).order_by(User.is_active.desc(), User.email.asc()).all()
    return render_template("admin/accounts/list.html", users=users)


@bp.get("/accounts/new")
@require_permission("users.manage")
def accounts_new_get():
    s = db_session()
    return render_template("admin/accounts/new.html", roles=assignable_roles(s, _current_user()))


@bp.post("/accounts/new")
@require_permission("users.manage")
def accounts_new_post():
    s = db_session()
    try:
        user = create_account(
            s,
            _current_user(),
            email=request.form.get("email") or "",
            name=request.form.get("name"),
            password=request.form.get("password") or "",
            password_confirm=request.form.get("password_confirm") or "",
            role_ids=request.form.getlist("role_ids"),
        )
    except AccountError as e:
        _flash_errors(e)
        return redirect(url_for("admin.accounts_new_get"))
    s.commit()
    flash(f"Account created for {user.email}.", "success")
    return redirect(url_for("admin.accounts_list"))


@bp.get("/accounts/<int:user_id>")
@require_permission("users.manage")
def accounts_detail(user_id: int):
    s = db_session()
    u = _current_user()
    account = _get_account(s, user_id)
    return render_template(
        "admin/accounts/detail.html",
        account=account,
        roles=assignable_roles(s, u),
        refusal=can_manage_account(u, account),
    )


@bp.post("/accounts/<int:user_id>/update")
@require_permission("users.manage")
def accounts_update(user_id: int):
    s = db_session()
    account = _get_account(s, user_id)
    try:
        update_account(
            s,
            _current_user(),
            account,
            is_active=request.form.get("is_active") == "1",
            role_ids=request.form.getlist("role_ids"),
            name=request.form.get("name"),
            update_name="name" in request.form,
        )
    except AccountError as e:
        s.rollback()
        _flash_errors(e)
        return redirect(url_for("admin.accounts_detail", user_id=user_id))
    s.commit()
    flash(f"Account updated for {account.email}.", "success")
    return redirect(url_for("admin.accounts_detail", user_id=user_id))


@bp.post("/accounts/<int:user_id>/reset-password")
@require_permission("users.manage")
def accounts_reset_password(user_id: int):
    s = db_session()
    account = _get_account(s, user_id)
    try:
        reset_password(
            s,
            _current_user(),
            account,
            password=request.form.get("password") or "",
            password_confirm=request.form.get("password_confirm") or "",
        )
    except AccountError as e:
        _flash_errors(e)
        return redirect(url_for("admin.accounts_detail", user_id=user_id))
    s.commit()
    flash(f"Password reset for {account.email}.", "success")
    return redirect(url_for("admin.accounts_detail", user_id=user_id))
