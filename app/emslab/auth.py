from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash

from app.emslab.audit import record_event
from app.emslab.db import db_session
from app.emslab.models import User

bp = Blueprint("auth", __name__)


class LoginThrottle:
    """
    Login attempts per client IP inside a sliding window.

    Process-local: with several gunicorn workers each one keeps its own count.
    Every attempt counts; a successful login clears the IP.
    """

    def __init__(self) -> None:
        self._attempts: dict[str, list[datetime]] = defaultdict(list)

    def _prune(self, window_seconds: int, now: datetime) -> None:
        """Drop expired attempts, and IPs left with none."""
        cutoff = now - timedelta(seconds=window_seconds)
        for ip in list(self._attempts):
            recent = [t for t in self._attempts[ip] if t > cutoff]
            if recent:
                self._attempts[ip] = recent
            else:
                del self._attempts[ip]

    def blocked(self, ip: str, *, limit: int, window_seconds: int, now: datetime | None = None) -> bool:
        self._prune(window_seconds, now or datetime.utcnow())
        return len(self._attempts.get(ip, ())) >= limit

    def tracked_ips(self) -> int:
        return len(self._attempts)

    def hit(self, ip: str, now: datetime | None = None) -> None:
        self._attempts[ip].append(now or datetime.utcnow())

    def reset(self, ip: str) -> None:
        self._attempts.pop(ip, None)


throttle = LoginThrottle()


def _safe_next(raw: str | None) -> str | None:
    # Local paths only, so `next` cannot bounce to another host.
    nxt = (raw or "").strip()
    if nxt.startswith("/") and not nxt.startswith("//") and "\\" not in nxt:
        return nxt
    return None


def _failure_reason(user: User | None, password: str) -> str | None:
    if not user:
        return "unknown_email"
    if not user.is_active:
        return "inactive"
    if not check_password_hash(user.password_hash, password):
        return "bad_password"
    return None


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a per-request request_id (audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if not user_id:
        return

    try:
        user = db_session().get(User, int(user_id))
    except (SQLAlchemyError, TypeError, ValueError) as e:
        current_app.logger.error("load_current_user failed (clearing session): %s", e)
        session.pop("user_id", None)
        return
    if not user or not user.is_active:
        # Deactivated mid-session.
        session.pop("user_id", None)
        return
    g.current_user = user


@bp.get("/login")
def login_get():
    nxt = _safe_next(request.args.get("next")) or ""
    if getattr(g, "current_user", None):
        return redirect(nxt or url_for("admin.index"))
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = _safe_next(request.form.get("next"))
    ip = request.remote_addr or "unknown"
    limit = current_app.config["LOGIN_RATE_LIMIT"]
    window = current_app.config["LOGIN_RATE_WINDOW_SECONDS"]

    if throttle.blocked(ip, limit=limit, window_seconds=window):
        current_app.logger.warning("Login throttled (ip=%s email=%s)", ip, email)
        flash(f"Too many login attempts. Please wait {max(1, window // 60)} minutes.", "danger")
        return redirect(url_for("auth.login_get"))
    throttle.hit(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none() if email else None
    reason = _failure_reason(user, password)
    if reason:
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=str(user.id) if user else email,
            reason="Invalid credentials",
            metadata={"email": email, "cause": reason},
        )
        s.commit()
        flash("Invalid email or password.", "danger")
        return redirect(url_for("auth.login_get", next=nxt) if nxt else url_for("auth.login_get"))

    throttle.reset(ip)
    # Fresh session on sign-in; the CSRF token is reissued on the next request.
    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    user.last_login_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return redirect(nxt or url_for("admin.index"))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    flash("You have been logged out.", "success")
    return redirect(url_for("routes.index"))
