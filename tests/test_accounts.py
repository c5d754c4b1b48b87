"""Tests for account management, the audit trail view and the profile page."""
import pytest
from werkzeug.security import check_password_hash, generate_password_hash

from app.emslab import create_app
from app.emslab.accounts import AccountError, assignable_roles, pick_roles, reset_password
from app.emslab.constants import PERMISSIONS, ROLE_LEVELS, permissions_for_role
from app.emslab.db import session_scope
from app.emslab.models import AuditEvent, Base, Permission, Role, User


def _seed_roles(s) -> dict[str, Role]:
    perms = {key: Permission(key=key, name=name) for key, name in PERMISSIONS.items()}
    s.add_all(perms.values())
    roles = {}
    for key in ROLE_LEVELS:
        r = Role(key=key, name=key.replace("_", " ").title())
        for pk in permissions_for_role(key):
            r.permissions.append(perms[pk])
        s.add(r)
        roles[key] = r
    return roles


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = _seed_roles(s)
        for email, role in (
            ("admin@example.com", "admin"),
            ("root@example.com", "superadmin"),
            ("inst@example.com", "instructor"),
        ):
            u = User(email=email, password_hash=generate_password_hash("pw"), is_active=True)
            u.roles.append(roles[role])
            s.add(u)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com"):
    client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=True)


def _user(app, email) -> User:
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == email).one()
        _ = [r.key for r in u.roles]
        return u


def _role_id(app, key) -> int:
    with session_scope(app) as s:
        return s.query(Role).filter(Role.key == key).one().id


def test_accounts_require_users_manage(client):
    _login(client, "inst@example.com")
    r = client.get("/admin/accounts")
    assert r.status_code == 403


def test_create_account(client, app):
    _login(client)
    r = client.post(
        "/admin/accounts/new",
        data={
            "email": "New.Person@Example.com",
            "name": "New Person",
            "password": "longenough",
            "password_confirm": "longenough",
            "role_ids": [str(_role_id(app, "instructor"))],
        },
        follow_redirects=False,
    )
    assert r.status_code == 302
    u = _user(app, "new.person@example.com")
    assert u.name == "New Person"
    assert [r.key for r in u.roles] == ["instructor"]
    assert check_password_hash(u.password_hash, "longenough")

    # The new account can sign in
    client.get("/auth/logout")
    r = client.post("/auth/login", data={"email": "new.person@example.com", "password": "longenough"})
    assert r.status_code == 302
    assert client.get("/admin/lab-days").status_code == 200


def test_create_account_validation(client, app):
    _login(client)
    r = client.post(
        "/admin/accounts/new",
        data={"email": "admin@example.com", "password": "short", "password_confirm": "short"},
        follow_redirects=True,
    )
    assert b"An account with this email already exists." in r.data
    assert b"Password must be at least 8 characters." in r.data

    r = client.post(
        "/admin/accounts/new",
        data={"email": "x@example.com", "password": "longenough", "password_confirm": "different"},
        follow_redirects=True,
    )
    assert b"Passwords do not match." in r.data


def test_cannot_grant_role_above_own_level(client, app):
    _login(client)
    client.post(
        "/admin/accounts/new",
        data={
            "email": "sneaky@example.com",
            "password": "longenough",
            "password_confirm": "longenough",
            "role_ids": [str(_role_id(app, "superadmin")), str(_role_id(app, "lead_instructor"))],
        },
    )
    assert [r.key for r in _user(app, "sneaky@example.com").roles] == ["lead_instructor"]


def test_cannot_modify_self_or_higher_role(client, app):
    _login(client)
    me = _user(app, "admin@example.com")
    client.post(f"/admin/accounts/{me.id}/update", data={"is_active": "0"})
    assert _user(app, "admin@example.com").is_active is True

    root = _user(app, "root@example.com")
    r = client.post(f"/admin/accounts/{root.id}/update", data={"is_active": "0"}, follow_redirects=True)
    assert b"You cannot modify an account with a higher role than your own." in r.data
    assert _user(app, "root@example.com").is_active is True


def test_deactivate_and_change_roles(client, app):
    _login(client)
    inst = _user(app, "inst@example.com")
    client.post(
        f"/admin/accounts/{inst.id}/update",
        data={"name": "Ivy", "role_ids": [str(_role_id(app, "lead_instructor"))]},
    )
    u = _user(app, "inst@example.com")
    assert u.is_active is False
    assert u.name == "Ivy"
    assert [r.key for r in u.roles] == ["lead_instructor"]

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "user.update").one()
        assert '"is_active": false' in ev.metadata_json

    # Deactivated accounts cannot sign in
    client.get("/auth/logout")
    client.post("/auth/login", data={"email": "inst@example.com", "password": "pw"})
    assert client.get("/admin/", follow_redirects=False).status_code in (302, 403)
    _login(client)


def test_reset_password(client, app):
    _login(client)
    inst = _user(app, "inst@example.com")
    r = client.post(
        f"/admin/accounts/{inst.id}/reset-password",
        data={"password": "brandnewpw", "password_confirm": "brandnewpw"},
        follow_redirects=True,
    )
    assert b"Password reset for inst@example.com." in r.data
    assert check_password_hash(_user(app, "inst@example.com").password_hash, "brandnewpw")

    r = client.post(
        f"/admin/accounts/{inst.id}/reset-password",
        data={"password": "", "password_confirm": ""},
        follow_redirects=True,
    )
    assert b"Password is required." in r.data


def test_audit_trail_filters(client, app):
    _login(client)
    _login(client, "inst@example.com")
    _login(client)

    r = client.get("/admin/audit?action=auth.login&actor_email=INST@")
    assert r.status_code == 200
    assert b"inst@example.com" in r.data

    r = client.get("/admin/audit?date_from=not-a-date", follow_redirects=True)
    assert b"date_from must be YYYY-MM-DD" in r.data

    r = client.get("/admin/audit?date_from=2000-01-01&date_to=2000-01-02")
    assert b"inst@example.com" not in r.data


def test_audit_requires_permission(client):
    _login(client, "inst@example.com")
    assert client.get("/admin/audit").status_code == 403


def test_me_page_and_update(client, app):
    _login(client, "inst@example.com")
    r = client.get("/admin/me")
    assert r.status_code == 200
    assert b"lab_days.view" in r.data

    client.post("/admin/me", data={"name": "Ivy Instructor"})
    assert _user(app, "inst@example.com").name == "Ivy Instructor"

    r = client.post("/admin/me", data={"name": "x" * 300}, follow_redirects=True)
    assert b"Name must be 255 characters or fewer." in r.data


def test_assignable_roles_stop_at_actor_level(app):
    with session_scope(app) as s:
        admin = s.query(User).filter(User.email == "admin@example.com").one()
        keys = [r.key for r in assignable_roles(s, admin)]
        assert keys == ["guest", "instructor", "lead_instructor", "admin"]

        inst = s.query(User).filter(User.email == "inst@example.com").one()
        ids = [str(r.id) for r in s.query(Role).all()] + ["junk", ""]
        assert [r.key for r in pick_roles(s, inst, ids)] == ["guest", "instructor"]


def test_reset_password_blocked_for_higher_role(app):
    with session_scope(app) as s:
        admin = s.query(User).filter(User.email == "admin@example.com").one()
        root = s.query(User).filter(User.email == "root@example.com").one()
        with pytest.raises(AccountError) as exc:
            reset_password(s, admin, root, password="brandnewpw", password_confirm="brandnewpw")
        assert exc.value.errors == ["You cannot reset the password of an account with a higher role than your own."]
    assert check_password_hash(_user(app, "root@example.com").password_hash, "pw")


def test_account_detail_explains_refusal(client):
    _login(client)
    root_id = _user(client.application, "root@example.com").id
    r = client.get(f"/admin/accounts/{root_id}")
    assert r.status_code == 200
    assert b"You cannot modify an account with a higher role than your own." in r.data


def test_audit_list_renders_event_details(client):
    _login(client)
    inst_id = _user(client.application, "inst@example.com").id
    client.post(
        f"/admin/accounts/{inst_id}/reset-password",
        data={"password": "brandnewpw", "password_confirm": "brandnewpw"},
    )
    r = client.get("/admin/audit?action=user.password_reset")
    assert r.status_code == 200
    assert b"user.password_reset" in r.data
    assert b"target_email" in r.data
