from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from app.emslab.audit import record_event
from app.emslab.modules.medications.models import Medication
from app.emslab.utils import normalize_text, optional_text, parse_bool, split_list

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.emslab.models import User


LIST_FIELDS = ("brand_names", "indications", "contraindications", "side_effects", "routes")
TEXT_FIELDS = (
    "adult_dose",
    "pediatric_dose",
    "onset",
    "duration",
    "concentration",
    "max_dose",
    "special_notes",
)


@dataclass
class MedicationSearch:
    medications: list[Medication]
    classes: list[str]
    total: int


def _matches(med: Medication, needle: str) -> bool:
    haystack = [med.name, med.drug_class, med.special_notes or ""]
    haystack += list(med.brand_names or [])
    haystack += list(med.indications or [])
    return any(needle in (h or "").lower() for h in haystack)


def search_medications(s: "Session", *, search: str | None = None, drug_class: str | None = None) -> MedicationSearch:
    """
    Active medications ordered by name.

    - drug_class: case-insensitive substring match ("all" means no filter)
    - search: case-insensitive substring across name, class, brand names,
      indications and special notes
    The distinct class list always covers every active medication.
    """
    active = s.query(Medication).filter(Medication.is_active.is_(True)).order_by(Medication.name.asc()).all()
    classes = sorted({m.drug_class for m in active if m.drug_class})

    results = active
    klass = normalize_text(drug_class).lower()
    if klass and klass != "all":
        results = [m for m in results if klass in (m.drug_class or "").lower()]
    needle = normalize_text(search).lower()
    if needle:
        results = [m for m in results if _matches(m, needle)]

    return MedicationSearch(medications=results, classes=classes, total=len(results))


def _parse_decimal(raw) -> Decimal | None:
    if raw is None or normalize_text(str(raw)) == "":
        return None
    try:
        return Decimal(str(raw).strip())
    except InvalidOperation as e:
        raise ValueError("Dose per kg must be a number.") from e


def validate_medication_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "name" in payload:
        if not normalize_text(payload.get("name")):
            errors.append("Name is required.")
    if not partial or "drug_class" in payload:
        if not normalize_text(payload.get("drug_class")):
            errors.append("Drug class is required.")
    if "dose_per_kg" in payload:
        try:
            d = _parse_decimal(payload.get("dose_per_kg"))
            if d is not None and d < 0:
                errors.append("Dose per kg cannot be negative.")
        except ValueError as e:
            errors.append(str(e))
    return errors


def _values(payload: dict, *, partial: bool) -> dict:
    values: dict = {}
    for key in ("name", "drug_class"):
        if not partial or key in payload:
            values[key] = normalize_text(payload.get(key))
    for key in LIST_FIELDS:
        if not partial or key in payload:
            values[key] = split_list(payload.get(key))
    for key in TEXT_FIELDS:
        if not partial or key in payload:
            values[key] = optional_text(payload.get(key))
    if not partial or "dose_per_kg" in payload:
        values["dose_per_kg"] = _parse_decimal(payload.get("dose_per_kg"))
    if partial and "is_active" in payload:
        values["is_active"] = parse_bool(payload.get("is_active"))
    return values


def create_medication(s: "Session", payload: dict, user: "User") -> Medication:
    now = datetime.utcnow()
    med = Medication(**_values(payload, partial=False), is_active=True, created_at=now, updated_at=now)
    s.add(med)
    s.flush()
    record_event(
        s,
        actor=user,
        action="medication.create",
        entity_type="Medication",
        entity_id=str(med.id),
        metadata={"name": med.name, "drug_class": med.drug_class},
    )
    return med


def update_medication(s: "Session", med: Medication, payload: dict, user: "User") -> Medication:
    """Partial update: only keys present in `payload` change."""
    values = _values(payload, partial=True)
    if not values:
        raise ValueError("No valid fields to update")
    changes = {}
    for key, new in values.items():
        old = getattr(med, key)
        if new != old:
            changes[key] = {"old": old, "new": new}
            setattr(med, key, new)
    med.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="medication.edit",
        entity_type="Medication",
        entity_id=str(med.id),
        metadata={"name": med.name, "changes": changes},
    )
    return med


def retire_medication(s: "Session", med: Medication, user: "User", reason: str | None = None) -> Medication:
    med.is_active = False
    med.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="medication.delete",
        entity_type="Medication",
        entity_id=str(med.id),
        reason=reason,
        metadata={"name": med.name},
    )
    return med


def calculate_dose(med: Medication, weight_kg) -> Decimal:
    """dose_per_kg x weight, in the medication's per-kg unit."""
    try:
        weight = Decimal(str(weight_kg))
    except InvalidOperation as e:
        raise ValueError("Weight must be a number.") from e
    if not weight.is_finite() or weight <= 0:
        raise ValueError("Weight must be greater than zero.")
    if med.dose_per_kg is None:
        raise ValueError(f"{med.name} has no weight-based dose.")
    return (Decimal(med.dose_per_kg) * weight).quantize(Decimal("0.0001"))


def medication_to_dict(med: Medication) -> dict:
    return {
        "id": med.id,
        "name": med.name,
        "brand_names": list(med.brand_names or []),
        "drug_class": med.drug_class,
        "indications": list(med.indications or []),
        "contraindications": list(med.contraindications or []),
        "side_effects": list(med.side_effects or []),
        "routes": list(med.routes or []),
        "adult_dose": med.adult_dose,
        "pediatric_dose": med.pediatric_dose,
        "onset": med.onset,
        "duration": med.duration,
        "concentration": med.concentration,
        "dose_per_kg": float(med.dose_per_kg) if med.dose_per_kg is not None else None,
        "max_dose": med.max_dose,
        "special_notes": med.special_notes,
        "is_active": med.is_active,
    }


def seed_medications(s: "Session", rows: list[dict]) -> int:
    """Insert reference rows whose name is not present yet. Returns number inserted."""
    existing = {n.lower() for (n,) in s.query(Medication.name).all()}
    added = 0
    now = datetime.utcnow()
    for row in rows:
        if row["name"].lower() in existing:
            continue
        s.add(Medication(**_values(row, partial=False), is_active=True, created_at=now, updated_at=now))
        existing.add(row["name"].lower())
        added += 1
    return added
