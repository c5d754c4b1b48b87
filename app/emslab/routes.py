from flask import Blueprint, current_app, g, redirect, render_template, url_for

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    if getattr(g, "current_user", None):
        return redirect(url_for("admin.index"))
    return render_template("public/index.html")


@bp.get("/health")
def health():
    """JSON health: process is up, plus the last schema check result (no query here)."""
    return {"ok": True, "schema_ok": bool(current_app.config.get("_schema_health_ok", True))}


@bp.get("/healthz")
def healthz():
    # Container probe: no session, no DB.
    return "ok", 200
