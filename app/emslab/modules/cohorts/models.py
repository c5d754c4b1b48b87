from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.emslab.models import Base

if TYPE_CHECKING:
    from app.emslab.modules.students.models import Student


class Program(Base):
    __tablename__ = "programs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # EMT, AEMT, Paramedic
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    abbreviation: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    cohorts: Mapped[list["Cohort"]] = relationship("Cohort", back_populates="program", lazy="selectin")


class Cohort(Base):
    __tablename__ = "cohorts"
    __table_args__ = (
        UniqueConstraint("program_id", "cohort_number", name="uq_cohorts_program_number"),
        Index("idx_cohorts_active", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="RESTRICT"), nullable=False)
    cohort_number: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    program: Mapped[Program] = relationship("Program", back_populates="cohorts", lazy="joined")
    students: Mapped[list["Student"]] = relationship(
        "Student",
        back_populates="cohort",
        lazy="selectin",
        passive_deletes=True,
    )

    @property
    def label(self) -> str:
        abbrev = self.program.abbreviation if self.program else "?"
        return f"{abbrev} Group {self.cohort_number}"
