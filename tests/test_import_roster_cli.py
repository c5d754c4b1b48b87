"""Tests for the command-line roster import."""
import pytest
from werkzeug.security import generate_password_hash

from app.emslab import create_app
from app.emslab.db import session_scope
from app.emslab.models import AuditEvent, Base, User
from app.emslab.modules.cohorts.models import Cohort, Program
from app.emslab.modules.students.models import Student
from scripts.import_roster import main

ROSTER = (
    "First Name,Last Name,Email,Agency\n"
    "Jane,Doe,jane@example.com,County Fire\n"
    "John,Roe,not-an-email,\n"
    "Kim,Lee,kim@example.com,\n"
)


@pytest.fixture()
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'test.db'}"
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add(User(email="lead@example.com", password_hash=generate_password_hash("pw"), is_active=True))
        program = Program(name="Paramedic", display_name="Paramedic", abbreviation="PM", is_active=True)
        s.add(program)
        s.flush()
        s.add(Cohort(program_id=program.id, cohort_number=12, is_active=True))
        s.add(Student(first_name="Kim", last_name="Old", email="kim@example.com", status="active"))
    app.extensions["sqlalchemy_engine"].dispose()
    return url


def _students(url):
    from scripts._db_utils import script_session

    with script_session(url) as s:
        return {st.email: st for st in s.query(Student).all()}


def test_missing_file(tmp_path, db_url, capsys):
    assert main([str(tmp_path / "nope.csv"), "--database-url", db_url]) == 2
    assert "not found" in capsys.readouterr().err


def test_dry_run_does_not_write(tmp_path, db_url, capsys):
    path = tmp_path / "roster.csv"
    path.write_text(ROSTER)
    assert main([str(path), "--database-url", db_url, "--dry-run"]) == 0
    out = capsys.readouterr().out
    assert "2 of 3 row(s) selected for import." in out
    assert "error" in out
    assert set(_students(db_url)) == {"kim@example.com"}


def test_import_updates_duplicates(tmp_path, db_url, capsys):
    path = tmp_path / "roster.csv"
    path.write_text(ROSTER)
    code = main(
        [
            str(path),
            "--database-url", db_url,
            "--cohort-id", "1",
            "--duplicate-mode", "update",
            "--actor-email", "lead@example.com",
        ]
    )
    assert code == 0
    assert "Imported 1, updated 1, skipped 0, failed 0." in capsys.readouterr().out

    students = _students(db_url)
    assert students["jane@example.com"].agency == "County Fire"
    assert students["jane@example.com"].cohort_id == 1
    assert students["kim@example.com"].last_name == "Lee"

    from scripts._db_utils import script_session

    with script_session(db_url) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "student.import").one()
        assert ev.actor_user_email == "lead@example.com"


def test_skip_warnings_leaves_out_duplicates(tmp_path, db_url, capsys):
    path = tmp_path / "roster.csv"
    path.write_text(ROSTER)
    code = main([str(path), "--database-url", db_url, "--skip-warnings", "--actor-email", "lead@example.com"])
    assert code == 0
    assert "1 of 3 row(s) selected for import." in capsys.readouterr().out
    assert set(_students(db_url)) == {"kim@example.com", "jane@example.com"}


def test_unknown_actor_is_rejected(tmp_path, db_url, capsys):
    path = tmp_path / "roster.csv"
    path.write_text(ROSTER)
    assert main([str(path), "--database-url", db_url, "--actor-email", "ghost@example.com"]) == 2
    assert "--actor-email" in capsys.readouterr().err
