from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, has_request_context, redirect, request, url_for

from app.emslab.models import User


def user_permission_keys(user: User | None) -> frozenset[str]:
    """Union of the user's role grants. Cached on `g` for the current user."""
    if not user or not user.is_active:
        return frozenset()
    cacheable = has_request_context() and getattr(g, "current_user", None) is user
    if cacheable and getattr(g, "permission_keys", None) is not None:
        return g.permission_keys
    keys = frozenset(p.key for r in user.roles for p in r.permissions)
    if cacheable:
        g.permission_keys = keys
    return keys


def user_has_permission(user: User | None, permission_key: str) -> bool:
    return permission_key in user_permission_keys(user)


def user_role_level(user: User | None) -> int:
    """Highest ladder level among the user's roles (0 for anonymous or unknown roles)."""
    if not user or not user.is_active:
        return 0
    return max((r.level for r in user.roles), default=0)


def can_manage_account(actor: User, target: User) -> str | None:
    """Why `actor` may not edit `target` from account management, or None when allowed."""
    if actor.id == target.id:
        return "You cannot modify your own account from this page."
    if user_role_level(target) > user_role_level(actor):
        return "You cannot modify an account with a higher role than your own."
    return None


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                nxt = request.full_path.rstrip("?") if request.query_string else request.path
                return redirect(url_for("auth.login_get", next=nxt))
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
