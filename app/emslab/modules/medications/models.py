from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.emslab.models import Base

# JSONB on Postgres, plain JSON text elsewhere (SQLite in dev/tests).
JsonList = JSON().with_variant(JSONB(), "postgresql")


class Medication(Base):
    __tablename__ = "medications"
    __table_args__ = (
        Index("idx_medications_name", "name"),
        Index("idx_medications_active", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    brand_names: Mapped[list | None] = mapped_column(JsonList, nullable=True, default=list)
    drug_class: Mapped[str] = mapped_column(String(255), nullable=False)

    indications: Mapped[list | None] = mapped_column(JsonList, nullable=True, default=list)
    contraindications: Mapped[list | None] = mapped_column(JsonList, nullable=True, default=list)
    side_effects: Mapped[list | None] = mapped_column(JsonList, nullable=True, default=list)
    routes: Mapped[list | None] = mapped_column(JsonList, nullable=True, default=list)  # IV, IO, IM, IN, PO...

    adult_dose: Mapped[str | None] = mapped_column(Text, nullable=True)
    pediatric_dose: Mapped[str | None] = mapped_column(Text, nullable=True)
    onset: Mapped[str | None] = mapped_column(String(128), nullable=True)
    duration: Mapped[str | None] = mapped_column(String(128), nullable=True)
    concentration: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Weight-based dosing (mg/kg unless the notes say otherwise)
    dose_per_kg: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)
    max_dose: Mapped[str | None] = mapped_column(String(128), nullable=True)
    special_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
