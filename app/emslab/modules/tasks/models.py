from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.emslab.models import Base

if TYPE_CHECKING:
    from app.emslab.models import User


class InstructorTask(Base):
    __tablename__ = "instructor_tasks"
    __table_args__ = (
        CheckConstraint("priority IN ('low','medium','high')", name="ck_instructor_tasks_priority"),
        CheckConstraint(
            "status IN ('pending','in_progress','completed','cancelled')",
            name="ck_instructor_tasks_status",
        ),
        CheckConstraint("completion_mode IN ('single','any','all')", name="ck_instructor_tasks_completion_mode"),
        Index("idx_instructor_tasks_assigned_by", "assigned_by_id"),
        Index("idx_instructor_tasks_assigned_to", "assigned_to_id"),
        Index("idx_instructor_tasks_status", "status"),
        Index("idx_instructor_tasks_due_date", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    assigned_by_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Single-assignee tasks only; multi-assign tasks use task_assignees.
    assigned_to_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    completion_mode: Mapped[str] = mapped_column(String(16), nullable=False, default="single")

    completion_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    related_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    assigner: Mapped["User"] = relationship("User", foreign_keys=[assigned_by_id], lazy="selectin")
    assignee: Mapped["User | None"] = relationship("User", foreign_keys=[assigned_to_id], lazy="selectin")
    assignees: Mapped[list["TaskAssignee"]] = relationship(
        "TaskAssignee",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
        passive_deletes=True,
    )
    comments: Mapped[list["TaskComment"]] = relationship(
        "TaskComment",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TaskComment.created_at",
        passive_deletes=True,
    )

    @property
    def is_multi(self) -> bool:
        return self.completion_mode in ("any", "all")

    @property
    def is_open(self) -> bool:
        return self.status in ("pending", "in_progress")


class TaskAssignee(Base):
    __tablename__ = "task_assignees"
    __table_args__ = (
        UniqueConstraint("task_id", "assignee_id", name="uq_task_assignees"),
        Index("idx_task_assignees_assignee", "assignee_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("instructor_tasks.id", ondelete="CASCADE"), nullable=False)
    assignee_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending | completed
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    task: Mapped[InstructorTask] = relationship("InstructorTask", back_populates="assignees")
    user: Mapped["User"] = relationship("User", lazy="selectin")


class TaskComment(Base):
    __tablename__ = "task_comments"
    __table_args__ = (Index("idx_task_comments_task", "task_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("instructor_tasks.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    task: Mapped[InstructorTask] = relationship("InstructorTask", back_populates="comments")
    author: Mapped["User | None"] = relationship("User", lazy="selectin")
