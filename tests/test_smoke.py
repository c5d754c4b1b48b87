from datetime import datetime, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.emslab import create_app
from app.emslab.auth import LoginThrottle, throttle
from app.emslab.db import session_scope
from app.emslab.models import AuditEvent, Base, Permission, Role, User


@pytest.fixture(autouse=True)
def _fresh_throttle():
    throttle.reset("127.0.0.1")
    yield
    throttle.reset("127.0.0.1")


@pytest.fixture()
def client(tmp_path, monkeypatch):
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
        p = Permission(key="admin.view", name="Admin: view shell")
        r = Role(key="guest", name="Guest")
        r.permissions.append(p)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        off = User(email="former@example.com", password_hash=generate_password_hash("pw"), is_active=False)
        s.add_all([p, r, u, off])

    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_and_admin_access(client):
    # Anonymous should be forbidden
    r = client.get("/admin/")
    assert r.status_code in (302, 403)

    # Login
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 302

    # Now admin should be accessible
    r = client.get("/admin/")
    assert r.status_code == 200


def test_anonymous_redirects_to_login_with_next(client):
    r = client.get("/admin/", follow_redirects=False)
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    assert "next=" in r.headers["Location"]


def test_inactive_account_cannot_login(client):
    r = client.post("/auth/login", data={"email": "former@example.com", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    r = client.get("/admin/", follow_redirects=False)
    assert r.status_code in (302, 403)
    # A successful login resets the per-IP attempt counter.
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})


def test_missing_permission_is_403(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.get("/admin/cohorts")
    assert r.status_code == 403


def test_api_403_is_json(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.get("/admin/api/medications")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "medications.view"


def test_logout_clears_session(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.get("/auth/logout")
    assert r.status_code == 302
    r = client.get("/admin/", follow_redirects=False)
    assert r.status_code in (302, 403)


def test_failed_login_is_audited_with_cause(client):
    client.post("/auth/login", data={"email": "nobody@example.com", "password": "pw"})
    client.post("/auth/login", data={"email": "admin@example.com", "password": "wrong"})
    with session_scope(client.application) as s:
        causes = [
            ev.metadata_json
            for ev in s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").order_by(AuditEvent.id)
        ]
    assert '"cause": "unknown_email"' in causes[0]
    assert '"cause": "bad_password"' in causes[1]


def test_login_throttled_after_repeated_attempts(client):
    for _ in range(5):
        client.post("/auth/login", data={"email": "admin@example.com", "password": "wrong"})
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=True)
    assert b"Too many login attempts. Please wait 5 minutes." in r.data
    assert client.get("/admin/", follow_redirects=False).status_code == 302


def test_throttle_window_slides():
    t = LoginThrottle()
    now = datetime(2030, 1, 1, 12, 0)
    for _ in range(3):
        t.hit("10.0.0.1", now)
    assert t.blocked("10.0.0.1", limit=3, window_seconds=300, now=now)
    assert not t.blocked("10.0.0.1", limit=3, window_seconds=300, now=now + timedelta(seconds=301))
    assert not t.blocked("10.0.0.2", limit=3, window_seconds=300, now=now)


def test_throttle_forgets_idle_ips():
    t = LoginThrottle()
    now = datetime(2030, 1, 1, 12, 0)
    for i in range(20):
        t.hit(f"10.0.1.{i}", now)
    assert t.tracked_ips() == 20
    t.blocked("10.0.9.9", limit=5, window_seconds=300, now=now + timedelta(minutes=10))
    assert t.tracked_ips() == 0


def test_login_next_must_be_local(client):
    r = client.post(
        "/auth/login",
        data={"email": "admin@example.com", "password": "pw", "next": "//evil.example.com/x"},
    )
    assert r.headers["Location"].endswith("/admin/")
    client.get("/auth/logout")
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "pw", "next": "/admin/me"})
    assert r.headers["Location"].endswith("/admin/me")
