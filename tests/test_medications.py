"""Tests for the medication reference and dose calculator."""
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.emslab import create_app
from app.emslab.constants import PERMISSIONS, ROLE_LEVELS, permissions_for_role
from app.emslab.db import session_scope
from app.emslab.models import AuditEvent, Base, Permission, Role, User
from app.emslab.modules.medications.models import Medication
from app.emslab.modules.medications.seed import COMMON_EMS_MEDICATIONS
from app.emslab.modules.medications.service import calculate_dose, search_medications, seed_medications


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
        admin = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        admin.roles.append(roles["admin"])
        guest = User(email="guest@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        guest.roles.append(roles["guest"])
        s.add_all([admin, guest])
        seed_medications(s, COMMON_EMS_MEDICATIONS)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com"):
    client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=True)


def _med_id(app, name) -> int:
    with session_scope(app) as s:
        return s.query(Medication).filter(Medication.name == name).one().id


def test_seed_is_idempotent(app):
    with session_scope(app) as s:
        before = s.query(Medication).count()
        assert before == len(COMMON_EMS_MEDICATIONS)
        assert seed_medications(s, COMMON_EMS_MEDICATIONS) == 0
        assert s.query(Medication).count() == before


def test_search_service(app):
    with session_scope(app) as s:
        # brand name match
        names = [m.name for m in search_medications(s, search="epipen").medications]
        assert names == ["Epinephrine"]
        # indication match, case-insensitive
        names = [m.name for m in search_medications(s, search="ANAPHYLAXIS").medications]
        assert "Epinephrine" in names
        result = search_medications(s, drug_class="antidysrhythmic")
        assert "Amiodarone" in [m.name for m in result.medications]
        assert all("antidysrhythmic" in m.drug_class.lower() for m in result.medications)
        # class list always covers everything active
        assert len(result.classes) == len({m["drug_class"] for m in COMMON_EMS_MEDICATIONS})
        assert search_medications(s, drug_class="all").total == len(COMMON_EMS_MEDICATIONS)


def test_calculate_dose():
    med = Medication(name="Epinephrine", drug_class="x", dose_per_kg=Decimal("0.01"))
    assert calculate_dose(med, "25") == Decimal("0.2500")
    assert calculate_dose(med, 12.5) == Decimal("0.1250")
    with pytest.raises(ValueError, match="greater than zero"):
        calculate_dose(med, "0")
    with pytest.raises(ValueError, match="must be a number"):
        calculate_dose(med, "heavy")
    with pytest.raises(ValueError, match="no weight-based dose"):
        calculate_dose(Medication(name="Oxygen", drug_class="Gas"), "70")


def test_guest_can_browse_reference(client, app):
    _login(client, "guest@example.com")
    r = client.get("/admin/medications")
    assert r.status_code == 200
    assert b"Epinephrine" in r.data

    r = client.get("/admin/medications?search=epipen")
    assert b"Epinephrine" in r.data
    assert b"Amiodarone" not in r.data

    r = client.get("/admin/medications/new")
    assert r.status_code == 403


def test_detail_with_weight(client, app):
    _login(client, "guest@example.com")
    mid = _med_id(app, "Epinephrine")
    r = client.get(f"/admin/medications/{mid}?weight=20")
    assert r.status_code == 200
    assert b"0.2" in r.data

    r = client.get(f"/admin/medications/{mid}?weight=-3")
    assert r.status_code == 200
    assert b"Weight must be greater than zero." in r.data


def test_api_list_and_single(client, app):
    _login(client, "guest@example.com")
    r = client.get("/admin/api/medications?search=amio")
    assert r.status_code == 200
    body = r.json
    assert body["total"] == 1
    med = body["medications"][0]
    assert med["name"] == "Amiodarone"
    assert med["dose_per_kg"] == 5.0
    assert "IV/IO" in med["routes"]
    assert body["classes"]

    r = client.get(f"/admin/api/medications?id={med['id']}")
    assert r.json["medication"]["name"] == "Amiodarone"

    r = client.get("/admin/api/medications?id=99999")
    assert r.status_code == 404
    assert r.json["error"] == "Medication not found"


def test_create_edit_retire(client, app):
    _login(client)
    r = client.post(
        "/admin/medications/new",
        data={
            "name": "Ketamine",
            "drug_class": "Dissociative anesthetic",
            "brand_names": "Ketalar",
            "indications": "Pain\nSedation; Agitation",
            "routes": "IV/IO\nIM\nIN",
            "dose_per_kg": "0.5",
            "adult_dose": "0.5-1 mg/kg IV",
        },
        follow_redirects=False,
    )
    assert r.status_code == 302
    mid = _med_id(app, "Ketamine")
    with session_scope(app) as s:
        med = s.get(Medication, mid)
        assert med.indications == ["Pain", "Sedation", "Agitation"]
        assert med.routes == ["IV/IO", "IM", "IN"]
        assert med.dose_per_kg == Decimal("0.5")

    client.post(
        f"/admin/medications/{mid}/edit",
        data={"name": "Ketamine", "drug_class": "Dissociative anesthetic", "dose_per_kg": "1", "is_active": "1"},
    )
    with session_scope(app) as s:
        med = s.get(Medication, mid)
        assert med.dose_per_kg == Decimal("1")
        assert med.is_active is True

    client.post(f"/admin/medications/{mid}/delete", data={"reason": "Not in protocol"})
    with session_scope(app) as s:
        assert s.get(Medication, mid).is_active is False
        assert s.query(AuditEvent).filter(AuditEvent.action == "medication.delete").one().reason == "Not in protocol"

    r = client.get(f"/admin/medications/{mid}")
    assert r.status_code == 404
    r = client.get("/admin/api/medications?search=ketamine")
    assert r.json["total"] == 0


def test_create_validation(client, app):
    _login(client)
    r = client.post(
        "/admin/medications/new",
        data={"name": "", "drug_class": "", "dose_per_kg": "lots"},
        follow_redirects=True,
    )
    assert b"Name is required." in r.data
    assert b"Drug class is required." in r.data
    assert b"Dose per kg must be a number." in r.data
