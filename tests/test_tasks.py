"""Tests for instructor tasks (assignment, ownership rules, multi-assign, bulk actions)."""
from datetime import date, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.emslab import create_app
from app.emslab.constants import PERMISSIONS, ROLE_LEVELS, permissions_for_role
from app.emslab.db import session_scope
from app.emslab.models import AuditEvent, Base, Permission, Role, User
from app.emslab.modules.tasks.models import InstructorTask, TaskAssignee, TaskComment
from app.emslab.modules.tasks.service import list_tasks, validate_task_payload


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
        for email, name, role in (
            ("lead@example.com", "Lee Lead", "lead_instructor"),
            ("amy@example.com", "Amy", "instructor"),
            ("bo@example.com", "Bo", "instructor"),
            ("guest@example.com", "Gus", "guest"),
        ):
            u = User(email=email, name=name, password_hash=generate_password_hash("pw"), is_active=True)
            u.roles.append(roles[role])
            s.add(u)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="lead@example.com"):
    client.get("/auth/logout")
    client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=True)


def _uid(app, email) -> int:
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one().id


def _create(client, app, title="Restock airway bags", assignees=("amy@example.com",), **extra) -> int:
    data = {
        "title": title,
        "description": "Check every bag",
        "assignee_ids": [str(_uid(app, e)) for e in assignees],
        "priority": "high",
    }
    data.update(extra)
    r = client.post("/admin/tasks/new", data=data, follow_redirects=False)
    assert r.status_code == 302
    with session_scope(app) as s:
        return s.query(InstructorTask).filter(InstructorTask.title == title).one().id


def test_tasks_require_permission(client):
    r = client.get("/admin/tasks")
    assert r.status_code in (302, 403)
    _login(client, "guest@example.com")
    r = client.get("/admin/tasks")
    assert r.status_code == 403


def test_create_single_assignee_task(client, app):
    _login(client)
    due = (date.today() + timedelta(days=3)).isoformat()
    tid = _create(client, app, due_date=due)
    with session_scope(app) as s:
        t = s.get(InstructorTask, tid)
        assert t.completion_mode == "single"
        assert t.assigned_to_id == _uid(app, "amy@example.com")
        assert t.assignees == []
        assert t.priority == "high"
        assert t.status == "pending"
        assert t.due_date.isoformat() == due
        assert s.query(AuditEvent).filter(AuditEvent.action == "task.create").count() == 1


def test_create_validation(client, app):
    _login(client)
    r = client.post(
        "/admin/tasks/new",
        data={"title": "", "assignee_ids": [], "priority": "urgent", "due_date": "tomorrow"},
        follow_redirects=True,
    )
    assert b"Title is required." in r.data
    assert b"At least one assignee is required." in r.data
    assert b"Invalid priority." in r.data
    assert b"Due date must be YYYY-MM-DD." in r.data
    with session_scope(app) as s:
        assert s.query(InstructorTask).count() == 0


def test_list_scopes(client, app):
    _login(client)
    _create(client, app, title="For Amy")
    _login(client, "amy@example.com")
    r = client.get("/admin/tasks")
    assert b"For Amy" in r.data
    r = client.get("/admin/tasks?filter=assigned_by_me")
    assert b"For Amy" not in r.data

    _login(client, "bo@example.com")
    r = client.get("/admin/tasks?filter=all")
    assert b"For Amy" not in r.data

    _login(client)
    r = client.get("/admin/tasks?filter=assigned_by_me")
    assert b"For Amy" in r.data


def test_detail_hidden_from_outsiders(client, app):
    _login(client)
    tid = _create(client, app)
    _login(client, "bo@example.com")
    r = client.get(f"/admin/tasks/{tid}")
    assert r.status_code == 403
    _login(client, "amy@example.com")
    r = client.get(f"/admin/tasks/{tid}")
    assert r.status_code == 200
    assert b"Restock airway bags" in r.data


def test_only_assignee_completes_and_only_assigner_cancels(client, app):
    _login(client)
    tid = _create(client, app)

    r = client.post(f"/admin/tasks/{tid}/update", json={"status": "completed"})
    assert r.status_code == 403
    assert r.json["error"] == "Only the assignee can mark a task as completed"

    _login(client, "amy@example.com")
    r = client.post(f"/admin/tasks/{tid}/update", json={"status": "cancelled"})
    assert r.status_code == 403
    assert r.json["error"] == "Only the assigner can cancel a task"

    # Assigner-only fields are ignored for the assignee
    r = client.post(f"/admin/tasks/{tid}/update", json={"title": "Hijacked"})
    assert r.status_code == 400
    assert r.json["error"] == "No valid fields to update"

    r = client.post(
        f"/admin/tasks/{tid}/update",
        json={"status": "completed", "completion_notes": "All bags restocked"},
    )
    assert r.status_code == 200
    assert r.json == {"success": True, "status": "completed"}
    with session_scope(app) as s:
        t = s.get(InstructorTask, tid)
        assert t.status == "completed"
        assert t.completed_at is not None
        assert t.completion_notes == "All bags restocked"
        assert s.query(AuditEvent).filter(AuditEvent.action == "task.complete").count() == 1


def test_assigner_edits_and_cancels(client, app):
    _login(client)
    tid = _create(client, app)
    r = client.get(f"/admin/tasks/{tid}/edit")
    assert r.status_code == 200

    client.post(f"/admin/tasks/{tid}/update", data={"title": "Restock bags", "priority": "low"})
    with session_scope(app) as s:
        t = s.get(InstructorTask, tid)
        assert t.title == "Restock bags"
        assert t.priority == "low"

    r = client.post(f"/admin/tasks/{tid}/update", json={"status": "cancelled"})
    assert r.json["status"] == "cancelled"

    _login(client, "amy@example.com")
    r = client.get(f"/admin/tasks/{tid}/edit")
    assert r.status_code == 403


def test_multi_assign_any_mode(client, app):
    _login(client)
    tid = _create(client, app, title="Any task", assignees=("amy@example.com", "bo@example.com"), completion_mode="any")
    with session_scope(app) as s:
        t = s.get(InstructorTask, tid)
        assert t.completion_mode == "any"
        assert t.assigned_to_id is None
        assert len(t.assignees) == 2

    _login(client, "bo@example.com")
    r = client.post(f"/admin/tasks/{tid}/update", json={"status": "completed"})
    assert r.json["status"] == "completed"


def test_multi_assign_all_mode(client, app):
    _login(client)
    tid = _create(client, app, title="All task", assignees=("amy@example.com", "bo@example.com"), completion_mode="all")

    _login(client, "amy@example.com")
    r = client.post(f"/admin/tasks/{tid}/update", json={"status": "completed"})
    assert r.json["status"] == "in_progress"
    with session_scope(app) as s:
        rows = {a.user.email: a.status for a in s.query(TaskAssignee).filter(TaskAssignee.task_id == tid)}
        assert rows == {"amy@example.com": "completed", "bo@example.com": "pending"}

    _login(client, "bo@example.com")
    r = client.post(f"/admin/tasks/{tid}/update", json={"status": "completed"})
    assert r.json["status"] == "completed"


def test_comments(client, app):
    _login(client)
    tid = _create(client, app)

    _login(client, "amy@example.com")
    r = client.post(f"/admin/tasks/{tid}/comments", json={"comment": "Half done"})
    assert r.status_code == 201
    assert r.json["success"] is True

    r = client.post(f"/admin/tasks/{tid}/comments", json={"comment": "   "})
    assert r.status_code == 400
    assert r.json["error"] == "Comment cannot be empty"

    _login(client, "bo@example.com")
    r = client.post(f"/admin/tasks/{tid}/comments", json={"comment": "Not mine"})
    assert r.status_code == 403

    _login(client)
    client.post(f"/admin/tasks/{tid}/comments", data={"comment": "Thanks"})
    with session_scope(app) as s:
        assert [c.comment for c in s.query(TaskComment).order_by(TaskComment.id)] == ["Half done", "Thanks"]
    r = client.get(f"/admin/tasks/{tid}")
    assert b"Half done" in r.data


def test_delete_is_assigner_only(client, app):
    _login(client)
    tid = _create(client, app)
    client.post(f"/admin/tasks/{tid}/comments", json={"comment": "note"})

    _login(client, "amy@example.com")
    r = client.post(f"/admin/tasks/{tid}/delete", json={})
    assert r.status_code == 403

    _login(client)
    r = client.post(f"/admin/tasks/{tid}/delete", json={})
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.get(InstructorTask, tid) is None
        assert s.query(TaskComment).count() == 0


def test_bulk_complete(client, app):
    _login(client)
    t1 = _create(client, app, title="One")
    t2 = _create(client, app, title="Two", assignees=("amy@example.com", "bo@example.com"), completion_mode="all")
    t3 = _create(client, app, title="Three", assignees=("bo@example.com",))

    _login(client, "amy@example.com")
    r = client.post("/admin/tasks/bulk/complete", json={"ids": [t1, t2, t3]})
    assert r.status_code == 200
    assert r.json == {"success": True, "completed": 1, "recorded": 2, "skipped": 1}
    with session_scope(app) as s:
        assert s.get(InstructorTask, t1).status == "completed"
        assert s.get(InstructorTask, t2).status == "in_progress"
        assert s.get(InstructorTask, t3).status == "pending"

    # Already-completed tasks are skipped on a second pass
    r = client.post("/admin/tasks/bulk/complete", json={"ids": [t1]})
    assert r.json["skipped"] == 1


def test_bulk_validation(client, app):
    _login(client)
    r = client.post("/admin/tasks/bulk/complete", json={"ids": []})
    assert r.status_code == 400
    assert r.json["error"] == "ids array is required"

    r = client.post("/admin/tasks/bulk/delete", json={"ids": list(range(1, 52))})
    assert r.status_code == 400
    assert r.json["error"] == "Maximum 50 tasks per request"


def test_bulk_delete_only_own_tasks(client, app):
    _login(client)
    mine = _create(client, app, title="Mine")
    _login(client, "amy@example.com")
    theirs = _create(client, app, title="Theirs", assignees=("bo@example.com",))

    r = client.post("/admin/tasks/bulk/delete", data={"ids": [str(mine), str(theirs)]}, follow_redirects=True)
    assert r.status_code == 200
    assert b"1 task(s) deleted." in r.data
    with session_scope(app) as s:
        assert s.get(InstructorTask, mine) is not None
        assert s.get(InstructorTask, theirs) is None


def test_dashboard_shows_open_tasks(client, app):
    _login(client)
    _create(client, app, title="Overdue thing", due_date=(date.today() - timedelta(days=2)).isoformat())
    _login(client, "amy@example.com")
    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Overdue thing" in r.data


def test_validation_reports_every_problem(app):
    with session_scope(app) as s:
        errors = validate_task_payload(s, {"title": "", "assignee_ids": []})
        assert errors == ["Title is required.", "At least one assignee is required."]

        errors = validate_task_payload(s, {"title": "", "assignee_ids": ["abc"]})
        assert "Assignee ids must be numeric." in errors
        assert "At least one assignee is required." not in errors

        amy = _uid(app, "amy@example.com")
        assert validate_task_payload(s, {"title": "One id", "assignee_ids": str(amy)}) == []


def test_list_sorts_by_priority_and_due_date(client, app):
    _login(client)
    soon = (date.today() + timedelta(days=1)).isoformat()
    later = (date.today() + timedelta(days=9)).isoformat()
    _create(client, app, title="Low later", priority="low", due_date=later)
    _create(client, app, title="No due date", priority="medium")
    _create(client, app, title="High soon", priority="high", due_date=soon)
    _create(client, app, title="Medium soon", priority="medium", due_date=soon)

    with session_scope(app) as s:
        amy = s.query(User).filter(User.email == "amy@example.com").one()

        by_priority = [r.task.title for r in list_tasks(s, amy, sort="priority")]
        assert by_priority[0] == "High soon"
        assert by_priority[-1] == "Low later"
        assert set(by_priority[1:3]) == {"No due date", "Medium soon"}

        by_due = [r.task.title for r in list_tasks(s, amy, sort="due_date")]
        assert set(by_due[:2]) == {"High soon", "Medium soon"}
        assert by_due[2:] == ["Low later", "No due date"]

        by_due_desc = [r.task.title for r in list_tasks(s, amy, sort="due_date", order="desc")]
        assert by_due_desc[0] == "Low later"
        assert by_due_desc[-1] == "No due date"
