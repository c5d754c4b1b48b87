from __future__ import annotations

import datetime as dt
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.emslab.models import Base

if TYPE_CHECKING:
    from app.emslab.models import User
    from app.emslab.modules.cohorts.models import Cohort


class LabDay(Base):
    __tablename__ = "lab_days"
    __table_args__ = (
        Index("idx_lab_days_date", "date"),
        Index("idx_lab_days_cohort_id", "cohort_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    cohort_id: Mapped[int | None] = mapped_column(ForeignKey("cohorts.id", ondelete="SET NULL"), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_time: Mapped[dt.time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[dt.time | None] = mapped_column(Time, nullable=True)

    # Curriculum position, e.g. semester 2, week 5, day 1
    semester: Mapped[int | None] = mapped_column(Integer, nullable=True)
    week_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    num_rotations: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    rotation_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=30)  # minutes

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)

    cohort: Mapped["Cohort | None"] = relationship("Cohort", lazy="joined")
    stations: Mapped[list["LabStation"]] = relationship(
        "LabStation",
        back_populates="lab_day",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="LabStation.station_number",
        passive_deletes=True,
    )
    roles: Mapped[list["LabDayRole"]] = relationship(
        "LabDayRole",
        back_populates="lab_day",
        cascade="all, delete-orphan",
        lazy="selectin",
        passive_deletes=True,
    )

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        if self.cohort:
            return f"{self.cohort.label} Lab"
        return "Lab Day"


class LabStation(Base):
    __tablename__ = "lab_stations"
    __table_args__ = (
        UniqueConstraint("lab_day_id", "station_number", name="uq_lab_stations_day_number"),
        CheckConstraint(
            "station_type IN ('scenario','skill','documentation','lecture','testing')",
            name="ck_lab_stations_type",
        ),
        Index("idx_lab_stations_lab_day", "lab_day_id"),
        Index("idx_lab_stations_instructor", "instructor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lab_day_id: Mapped[int] = mapped_column(ForeignKey("lab_days.id", ondelete="CASCADE"), nullable=False)
    station_number: Mapped[int] = mapped_column(Integer, nullable=False)
    station_type: Mapped[str] = mapped_column(String(32), nullable=False, default="scenario")

    skill_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    station_details: Mapped[str | None] = mapped_column(Text, nullable=True)

    instructor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    additional_instructor_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    room: Mapped[str | None] = mapped_column(String(128), nullable=True)
    equipment_needed: Mapped[str | None] = mapped_column(Text, nullable=True)
    rotation_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    documentation_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    platinum_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)

    lab_day: Mapped[LabDay] = relationship("LabDay", back_populates="stations")
    instructor: Mapped["User | None"] = relationship("User", foreign_keys=[instructor_id], lazy="selectin")
    additional_instructor: Mapped["User | None"] = relationship(
        "User", foreign_keys=[additional_instructor_id], lazy="selectin"
    )
    documents: Mapped[list["StationDocument"]] = relationship(
        "StationDocument",
        back_populates="station",
        cascade="all, delete-orphan",
        lazy="selectin",
        passive_deletes=True,
    )

    @property
    def title(self) -> str:
        return self.custom_title or self.skill_name or f"Station {self.station_number}"

    @property
    def active_documents(self) -> list["StationDocument"]:
        return [d for d in self.documents if not d.is_deleted]


class LabDayRole(Base):
    __tablename__ = "lab_day_roles"
    __table_args__ = (
        UniqueConstraint("lab_day_id", "instructor_id", "role", name="uq_lab_day_roles"),
        CheckConstraint("role IN ('lab_lead','roamer','observer')", name="ck_lab_day_roles_role"),
        Index("idx_lab_day_roles_instructor", "instructor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lab_day_id: Mapped[int] = mapped_column(ForeignKey("lab_days.id", ondelete="CASCADE"), nullable=False)
    instructor_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)

    lab_day: Mapped[LabDay] = relationship("LabDay", back_populates="roles")
    instructor: Mapped["User"] = relationship("User", lazy="selectin")


class StationDocument(Base):
    __tablename__ = "station_documents"
    __table_args__ = (Index("idx_station_documents_station", "station_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    station_id: Mapped[int] = mapped_column(ForeignKey("lab_stations.id", ondelete="CASCADE"), nullable=False)

    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Soft delete
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deleted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    uploaded_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=dt.datetime.utcnow)
    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    station: Mapped[LabStation] = relationship("LabStation", back_populates="documents")
