"""
Staff account management: creation, role changes, deactivation and password resets.

Role grants are capped at the acting user's own ladder level.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.emslab.audit import record_event
from app.emslab.models import Role, User
from app.emslab.rbac import can_manage_account, user_role_level
from app.emslab.utils import is_valid_email, normalize_text, optional_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

MIN_PASSWORD_LENGTH = 8
MAX_NAME_LENGTH = 255


class AccountError(ValueError):
    """Carries every validation message for the form at once."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


def password_errors(password: str, password_confirm: str) -> list[str]:
    if not password:
        return ["Password is required."]
    if len(password) < MIN_PASSWORD_LENGTH:
        return [f"Password must be at least {MIN_PASSWORD_LENGTH} characters."]
    if password != password_confirm:
        return ["Passwords do not match."]
    return []


def assignable_roles(s: "Session", actor: User) -> list[Role]:
    """Roles at or below the actor's own ladder level, lowest first."""
    level = user_role_level(actor)
    roles = sorted(s.query(Role).all(), key=lambda r: (r.level, r.name))
    return [r for r in roles if r.level <= level]


def pick_roles(s: "Session", actor: User, raw_ids: list[str]) -> list[Role]:
    """Requested role ids filtered to what the actor may grant. Unknown ids are dropped."""
    allowed = {r.id: r for r in assignable_roles(s, actor)}
    picked: list[Role] = []
    for raw in raw_ids:
        try:
            role = allowed.get(int(raw))
        except (TypeError, ValueError):
            continue
        if role and role not in picked:
            picked.append(role)
    return picked


def create_account(
    s: "Session",
    actor: User,
    *,
    email: str,
    name: str | None,
    password: str,
    password_confirm: str,
    role_ids: list[str],
) -> User:
    email = normalize_text(email).lower()
    errors: list[str] = []
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")
    elif s.query(User).filter(User.email == email).one_or_none():
        errors.append("An account with this email already exists.")
    errors.extend(password_errors(password, password_confirm))
    if errors:
        raise AccountError(errors)

    user = User(email=email, name=optional_text(name), password_hash=generate_password_hash(password), is_active=True)
    user.roles.extend(pick_roles(s, actor, role_ids))
    s.add(user)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "roles": user.role_keys},
    )
    return user


def update_account(
    s: "Session",
    actor: User,
    target: User,
    *,
    is_active: bool,
    role_ids: list[str],
    name: str | None = None,
    update_name: bool = False,
) -> User:
    refusal = can_manage_account(actor, target)
    if refusal:
        raise AccountError([refusal])

    before = {"is_active": target.is_active, "name": target.name, "roles": target.role_keys}

    target.is_active = is_active
    if update_name:
        target.name = optional_text(name)
    target.roles.clear()
    target.roles.extend(pick_roles(s, actor, role_ids))
    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(target.id),
        metadata={
            "before": before,
            "after": {"is_active": target.is_active, "name": target.name, "roles": target.role_keys},
        },
    )
    return target


def reset_password(s: "Session", actor: User, target: User, *, password: str, password_confirm: str) -> None:
    errors = password_errors(password, password_confirm)
    if errors:
        raise AccountError(errors)
    if target.id != actor.id and user_role_level(target) > user_role_level(actor):
        raise AccountError(["You cannot reset the password of an account with a higher role than your own."])
    target.password_hash = generate_password_hash(password)
    record_event(
        s,
        actor=actor,
        action="user.password_reset",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"target_email": target.email, "reset_by": actor.email},
    )


def update_profile_name(s: "Session", user: User, name: str | None) -> None:
    name = optional_text(name)
    if name and len(name) > MAX_NAME_LENGTH:
        raise AccountError([f"Name must be {MAX_NAME_LENGTH} characters or fewer."])
    before = user.name
    user.name = name
    record_event(
        s,
        actor=user,
        action="user.update_profile",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"before": {"name": before}, "after": {"name": user.name}},
    )
