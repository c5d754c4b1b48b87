import logging
import os

from flask import Flask, g, render_template, request
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.emslab.config import load_config, missing_s3_settings, production_problems
from app.emslab.db import init_db, teardown_db_session
from app.emslab.routes import bp as routes_bp
from app.emslab.security import init_csrf
from app.emslab.auth import bp as auth_bp, load_current_user
from app.emslab.admin import bp as admin_bp
from app.emslab.modules.cohorts.admin import bp as cohorts_bp
from app.emslab.modules.students.admin import bp as students_bp
from app.emslab.modules.lab_days.admin import bp as lab_days_bp
from app.emslab.modules.medications.admin import bp as medications_bp
from app.emslab.modules.tasks.admin import bp as tasks_bp

logger = logging.getLogger(__name__)

# Tables the running code expects; missing ones mean `alembic upgrade head` was skipped.
REQUIRED_TABLES = (
    "users",
    "roles",
    "permissions",
    "audit_events",
    "programs",
    "cohorts",
    "students",
    "lab_days",
    "lab_stations",
    "lab_day_roles",
    "station_documents",
    "medications",
    "instructor_tasks",
    "task_assignees",
    "task_comments",
)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.emslab.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "—"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    init_csrf(app)

    problems = production_problems(app.config)
    if problems:
        raise RuntimeError(" ".join(problems))

    init_db(app)

    if hasattr(os, "register_at_fork"):
        def _after_fork_child():
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    # Logged, not fatal: only station documents use storage.
    missing_s3 = missing_s3_settings(app.config)
    if missing_s3:
        app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(cohorts_bp, url_prefix="/admin")
    app.register_blueprint(students_bp, url_prefix="/admin")
    app.register_blueprint(lab_days_bp, url_prefix="/admin")
    app.register_blueprint(medications_bp, url_prefix="/admin")
    app.register_blueprint(tasks_bp, url_prefix="/admin")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            existing = set(insp.get_table_names())
            missing = [f"{t} (table)" for t in REQUIRED_TABLES if t not in existing]
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        app.config["_schema_health_ok"] = not missing
        app.config["_schema_health_missing"] = missing
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok"):
            return None
        if not request.path.startswith("/admin"):
            return None
        # Tests and first boot create tables after create_app(); re-check lazily.
        _run_schema_health_check()
        if app.config.get("_schema_health_ok"):
            return None
        if getattr(g, "current_user", None):
            return render_template("errors/schema_out_of_date.html", missing=app.config.get("_schema_health_missing") or []), 500
        return None

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if request.path.startswith("/admin/api/"):
            return {"error": "Not found"}, 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if request.path.startswith("/admin/api/") or request.is_json:
            return {"error": "Forbidden", "missing_permission": missing}, 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        from flask import flash, redirect, url_for

        flash(f"File too large. Maximum size is {app.config['MAX_UPLOAD_MB']}MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("admin.index")), 302

    logger.info("create_app() complete; app ready to serve")

    return app
