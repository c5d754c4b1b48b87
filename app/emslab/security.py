import secrets

from flask import Flask, Request, render_template, request, session

UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
# Paths that never touch the session.
SESSIONLESS_PREFIXES = ("/static/", "/health", "/healthz")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def submitted_csrf_token(req: Request) -> str | None:
    """Token from the X-CSRF-Token header, a form field, or a JSON body field."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get("csrf_token")
    return str(token) if token else None


def validate_csrf(req: Request) -> bool:
    token = submitted_csrf_token(req)
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(token, str(expected)))


def init_csrf(app: Flask) -> None:
    """Session-bound CSRF tokens for every form and JSON write outside /auth."""

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(SESSIONLESS_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True) or request.method not in UNSAFE_METHODS:
            return None
        # Login has no session yet to bind a token to.
        if (request.endpoint or "").startswith("auth."):
            return None
        if not validate_csrf(request):
            app.logger.warning("CSRF rejected: %s %s", request.method, request.path)
            if request.is_json or request.path.startswith("/admin/api/"):
                return {"error": "CSRF token missing or invalid."}, 400
            return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
        return None
