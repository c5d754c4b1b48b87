import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.emslab.constants import PERMISSIONS, PROGRAMS, ROLE_LABELS, ROLE_LEVELS, permissions_for_role
from app.emslab.models import Permission, Role, User
from app.emslab.modules.cohorts.models import Program
from app.emslab.modules.medications.seed import COMMON_EMS_MEDICATIONS
from app.emslab.modules.medications.service import seed_medications
from scripts._db_utils import script_session


def seed_reference_data(s) -> dict[str, int]:
    """
    Permissions, the role ladder, programs and the medication reference.
    Idempotent: existing rows are kept; missing grants are added.
    """
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    for role_key in sorted(ROLE_LEVELS, key=ROLE_LEVELS.get):
        role = s.query(Role).filter(Role.key == role_key).one_or_none()
        if not role:
            role = Role(key=role_key, name=ROLE_LABELS[role_key])
            s.add(role)
        for perm_key in permissions_for_role(role_key):
            if perms[perm_key] not in role.permissions:
                role.permissions.append(perms[perm_key])

    programs_added = 0
    for name, display_name, abbreviation in PROGRAMS:
        if not s.query(Program).filter(Program.name == name).one_or_none():
            s.add(Program(name=name, display_name=display_name, abbreviation=abbreviation, is_active=True))
            programs_added += 1

    s.flush()
    meds_added = seed_medications(s, COMMON_EMS_MEDICATIONS)
    return {"permissions": len(perms), "programs_added": programs_added, "medications_added": meds_added}


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed reference data and the admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@emslab.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///emslab.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with script_session(db_url) as s:
        counts = seed_reference_data(s)

        role_super = s.query(Role).filter(Role.key == "superadmin").one()
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Administrator",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if role_super not in user.roles:
            user.roles.append(role_super)

    print("Initialized database (seed_only).")
    print(f"Programs added: {counts['programs_added']}, medications added: {counts['medications_added']}")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
