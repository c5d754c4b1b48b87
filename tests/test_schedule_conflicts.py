"""Service-level tests for same-day scheduling conflict detection."""
from datetime import date

import pytest

from app.emslab import create_app
from app.emslab.db import session_scope
from app.emslab.models import Base, User
from app.emslab.modules.cohorts.models import Cohort, Program
from app.emslab.modules.lab_days.conflicts import check_schedule_conflicts
from app.emslab.modules.lab_days.models import LabDay, LabDayRole, LabStation
from app.emslab.modules.lab_days.service import conflicts_for_lab_day

DAY = date(2030, 9, 10)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


@pytest.fixture()
def seeded(app):
    """One lab day on DAY: cohort A, station in Room 101 run by Ann (+ Bob), Cal as lab lead."""
    with session_scope(app) as s:
        program = Program(name="EMT", display_name="EMT", abbreviation="EMT", is_active=True)
        s.add(program)
        s.flush()
        cohort_a = Cohort(program_id=program.id, cohort_number=1, is_active=True)
        cohort_b = Cohort(program_id=program.id, cohort_number=2, is_active=True)
        users = [User(email=f"{n.lower()}@example.com", name=n, password_hash="x", is_active=True) for n in ("Ann", "Bob", "Cal", "Dee")]
        s.add_all([cohort_a, cohort_b, *users])
        s.flush()
        ann, bob, cal, dee = users
        lab = LabDay(date=DAY, cohort_id=cohort_a.id, num_rotations=4, rotation_duration=30)
        s.add(lab)
        s.flush()
        s.add(
            LabStation(
                lab_day_id=lab.id,
                station_number=1,
                station_type="skill",
                room="Room 101",
                instructor_id=ann.id,
                additional_instructor_id=bob.id,
            )
        )
        s.add(LabDayRole(lab_day_id=lab.id, instructor_id=cal.id, role="lab_lead"))
        return {
            "lab": lab.id,
            "cohort_a": cohort_a.id,
            "cohort_b": cohort_b.id,
            "ann": ann.id,
            "bob": bob.id,
            "cal": cal.id,
            "dee": dee.id,
        }


def test_no_other_lab_days_means_no_conflicts(app, seeded):
    with session_scope(app) as s:
        assert check_schedule_conflicts(s, date=date(2030, 9, 11), cohort_id=seeded["cohort_a"], location="Room 101") == []


def test_cohort_conflict(app, seeded):
    with session_scope(app) as s:
        found = check_schedule_conflicts(s, date=DAY, cohort_id=seeded["cohort_a"])
        assert [c.type for c in found] == ["cohort"]
        assert found[0].message == "EMT Group 1 already has a lab day scheduled on this date."
        assert found[0].severity == "warning"
        assert check_schedule_conflicts(s, date=DAY, cohort_id=seeded["cohort_b"]) == []


def test_room_conflict_is_case_insensitive(app, seeded):
    with session_scope(app) as s:
        found = check_schedule_conflicts(s, date=DAY, location="  room 101 ")
        assert [c.type for c in found] == ["room"]
        assert found[0].message == 'Room "room 101" is already in use by another lab day on this date.'
        assert check_schedule_conflicts(s, date=DAY, location="Room 202") == []


def test_instructor_conflicts_cover_roles_and_station_instructors(app, seeded):
    with session_scope(app) as s:
        found = check_schedule_conflicts(
            s,
            date=DAY,
            instructor_ids=[seeded["ann"], seeded["bob"], seeded["cal"], seeded["dee"]],
        )
        assert [c.type for c in found] == ["instructor"]
        assert found[0].message == "Ann, Bob, and Cal are already assigned to another lab day on this date."

        single = check_schedule_conflicts(s, date=DAY, instructor_ids=[seeded["bob"]])
        assert single[0].message == "Bob is already assigned to another lab day on this date."

        assert check_schedule_conflicts(s, date=DAY, instructor_ids=[seeded["dee"]]) == []


def test_exclude_lab_day(app, seeded):
    with session_scope(app) as s:
        found = check_schedule_conflicts(
            s,
            date=DAY,
            cohort_id=seeded["cohort_a"],
            location="Room 101",
            instructor_ids=[seeded["ann"]],
            exclude_lab_day_id=seeded["lab"],
        )
        assert found == []


def test_conflicts_for_saved_lab_day(app, seeded):
    with session_scope(app) as s:
        other = LabDay(date=DAY, cohort_id=seeded["cohort_b"], num_rotations=4, rotation_duration=30)
        s.add(other)
        s.flush()
        s.add(LabStation(lab_day_id=other.id, station_number=1, station_type="scenario", room="ROOM 101", instructor_id=seeded["dee"]))
        s.add(LabDayRole(lab_day_id=other.id, instructor_id=seeded["cal"], role="roamer"))
        s.flush()
        s.refresh(other)

        found = conflicts_for_lab_day(s, other)
        assert sorted(c.type for c in found) == ["instructor", "room"]
        # The original lab day sees the same clash from its side.
        original = s.get(LabDay, seeded["lab"])
        assert sorted(c.type for c in conflicts_for_lab_day(s, original)) == ["instructor", "room"]
