"""Tests for the Cohorts module."""
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from app.emslab import create_app
from app.emslab.constants import PERMISSIONS, ROLE_LEVELS, permissions_for_role
from app.emslab.db import session_scope
from app.emslab.models import AuditEvent, Base, Permission, Role, User
from app.emslab.modules.cohorts.models import Cohort, Program
from app.emslab.modules.cohorts.service import cohort_weeks_remaining
from app.emslab.modules.students.models import Student


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
        lead = User(email="lead@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        lead.roles.append(roles["lead_instructor"])
        inst = User(email="inst@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        inst.roles.append(roles["instructor"])
        s.add_all(
            [
                lead,
                inst,
                Program(name="EMT", display_name="Emergency Medical Technician", abbreviation="EMT", is_active=True),
                Program(name="Paramedic", display_name="Paramedic", abbreviation="PM", is_active=True),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="lead@example.com"):
    client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=True)


def _program_id(app, name="Paramedic") -> int:
    with session_scope(app) as s:
        return s.query(Program).filter(Program.name == name).one().id


def test_cohorts_list_requires_auth(client):
    r = client.get("/admin/cohorts")
    assert r.status_code in (302, 403)


def test_cohort_create(client, app):
    _login(client)
    pid = _program_id(app)
    r = client.post(
        "/admin/cohorts/new",
        data={"program_id": str(pid), "cohort_number": "14", "start_date": "2026-01-05", "expected_end_date": "2026-12-18"},
        follow_redirects=False,
    )
    assert r.status_code == 302

    with session_scope(app) as s:
        c = s.query(Cohort).one()
        assert c.label == "PM Group 14"
        assert c.is_active is True
        assert s.query(AuditEvent).filter(AuditEvent.action == "cohort.create").count() == 1

    r = client.get("/admin/cohorts")
    assert r.status_code == 200
    assert b"PM Group 14" in r.data


def test_cohort_create_rejects_duplicate_number(client, app):
    _login(client)
    pid = _program_id(app)
    data = {"program_id": str(pid), "cohort_number": "3"}
    client.post("/admin/cohorts/new", data=data)
    r = client.post("/admin/cohorts/new", data=data, follow_redirects=True)
    assert b"A cohort with this program and number already exists." in r.data
    with session_scope(app) as s:
        assert s.query(Cohort).count() == 1


def test_cohort_create_validation(client, app):
    _login(client)
    pid = _program_id(app)
    r = client.post(
        "/admin/cohorts/new",
        data={"program_id": str(pid), "cohort_number": "0", "start_date": "2026-06-01", "expected_end_date": "2026-01-01"},
        follow_redirects=True,
    )
    assert b"Cohort number must be a positive integer." in r.data
    assert b"Expected end date cannot be before the start date." in r.data


def test_instructor_cannot_create_cohort(client, app):
    _login(client, "inst@example.com")
    r = client.get("/admin/cohorts")
    assert r.status_code == 200
    r = client.post("/admin/cohorts/new", data={"program_id": str(_program_id(app)), "cohort_number": "1"})
    assert r.status_code == 403


def test_cohort_archive_and_restore(client, app):
    _login(client)
    client.post("/admin/cohorts/new", data={"program_id": str(_program_id(app, "EMT")), "cohort_number": "7"})
    with session_scope(app) as s:
        cid = s.query(Cohort).one().id

    client.post(f"/admin/cohorts/{cid}/archive", data={"archived": "1", "reason": "Graduated"}, follow_redirects=True)
    with session_scope(app) as s:
        c = s.get(Cohort, cid)
        assert c.is_active is False
        assert c.archived_at is not None

    r = client.get("/admin/cohorts")
    assert b"EMT Group 7" not in r.data
    r = client.get("/admin/cohorts?show=archived")
    assert b"EMT Group 7" in r.data

    client.post(f"/admin/cohorts/{cid}/archive", data={"archived": "0"}, follow_redirects=True)
    with session_scope(app) as s:
        assert s.get(Cohort, cid).is_active is True
        actions = [e.action for e in s.query(AuditEvent).order_by(AuditEvent.id).all()]
        assert "cohort.archive" in actions
        assert "cohort.unarchive" in actions


def test_cohort_roster_csv(client, app):
    _login(client)
    client.post("/admin/cohorts/new", data={"program_id": str(_program_id(app)), "cohort_number": "2"})
    with session_scope(app) as s:
        cid = s.query(Cohort).one().id
        s.add_all(
            [
                Student(first_name="Zoe", last_name="Young", email="zoe@example.com", cohort_id=cid, status="active"),
                Student(first_name="Adam", last_name="Ames", cohort_id=cid, status="active"),
            ]
        )

    r = client.get(f"/admin/cohorts/{cid}/roster.csv")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    lines = r.data.decode("utf-8").strip().splitlines()
    assert lines[0] == "first_name,last_name,email,phone,agency,status"
    assert lines[1].startswith("Adam,Ames,")
    assert lines[2].startswith("Zoe,Young,zoe@example.com")


def test_cohort_detail_shows_students(client, app):
    _login(client)
    client.post("/admin/cohorts/new", data={"program_id": str(_program_id(app)), "cohort_number": "5"})
    with session_scope(app) as s:
        cid = s.query(Cohort).one().id
        s.add(Student(first_name="Ana", last_name="Lopez", cohort_id=cid, status="active"))
    r = client.get(f"/admin/cohorts/{cid}")
    assert r.status_code == 200
    assert b"Lopez" in r.data


def test_cohort_weeks_remaining():
    c = Cohort(program_id=1, cohort_number=1, expected_end_date=date(2026, 3, 1))
    assert cohort_weeks_remaining(c, today=date(2026, 2, 1)) == 4
    assert cohort_weeks_remaining(c, today=date(2026, 4, 1)) == 0
    assert cohort_weeks_remaining(Cohort(program_id=1, cohort_number=1)) is None
