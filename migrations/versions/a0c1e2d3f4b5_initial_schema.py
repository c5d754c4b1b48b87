"""Initial schema: accounts, audit, cohorts, students, lab days, medications, tasks.

Revision ID: a0c1e2d3f4b5
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "a0c1e2d3f4b5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonList = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # ---- accounts / RBAC ----
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "role_id"),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("role_id", "permission_id"),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("idx_audit_events_action", "audit_events", ["action"])
    op.create_index("idx_audit_events_actor_email", "audit_events", ["actor_user_email"])
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    # ---- programs / cohorts / students ----
    op.create_table(
        "programs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("display_name", sa.String(128), nullable=False),
        sa.Column("abbreviation", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "cohorts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("program_id", sa.Integer(), nullable=False),
        sa.Column("cohort_number", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("expected_end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["program_id"], ["programs.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("program_id", "cohort_number", name="uq_cohorts_program_number"),
    )
    op.create_index("idx_cohorts_active", "cohorts", ["is_active"])

    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("agency", sa.String(255), nullable=True),
        sa.Column("cohort_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="active"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["cohort_id"], ["cohorts.id"], ondelete="SET NULL"),
        sa.CheckConstraint("status IN ('active','graduated','withdrawn','on_hold')", name="ck_students_status"),
    )
    op.create_index("idx_students_email", "students", ["email"])
    op.create_index("idx_students_cohort_id", "students", ["cohort_id"])
    op.create_index("idx_students_last_name", "students", ["last_name"])

    # ---- lab days ----
    op.create_table(
        "lab_days",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("cohort_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("semester", sa.Integer(), nullable=True),
        sa.Column("week_number", sa.Integer(), nullable=True),
        sa.Column("day_number", sa.Integer(), nullable=True),
        sa.Column("num_rotations", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("rotation_duration", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["cohort_id"], ["cohorts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_lab_days_date", "lab_days", ["date"])
    op.create_index("idx_lab_days_cohort_id", "lab_days", ["cohort_id"])

    op.create_table(
        "lab_stations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lab_day_id", sa.Integer(), nullable=False),
        sa.Column("station_number", sa.Integer(), nullable=False),
        sa.Column("station_type", sa.String(32), nullable=False, server_default="scenario"),
        sa.Column("skill_name", sa.String(255), nullable=True),
        sa.Column("custom_title", sa.String(255), nullable=True),
        sa.Column("station_details", sa.Text(), nullable=True),
        sa.Column("instructor_id", sa.Integer(), nullable=True),
        sa.Column("additional_instructor_id", sa.Integer(), nullable=True),
        sa.Column("room", sa.String(128), nullable=True),
        sa.Column("equipment_needed", sa.Text(), nullable=True),
        sa.Column("rotation_minutes", sa.Integer(), nullable=True),
        sa.Column("documentation_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("platinum_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lab_day_id"], ["lab_days.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["instructor_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["additional_instructor_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("lab_day_id", "station_number", name="uq_lab_stations_day_number"),
        sa.CheckConstraint(
            "station_type IN ('scenario','skill','documentation','lecture','testing')",
            name="ck_lab_stations_type",
        ),
    )
    op.create_index("idx_lab_stations_lab_day", "lab_stations", ["lab_day_id"])
    op.create_index("idx_lab_stations_instructor", "lab_stations", ["instructor_id"])

    op.create_table(
        "lab_day_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lab_day_id", sa.Integer(), nullable=False),
        sa.Column("instructor_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lab_day_id"], ["lab_days.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["instructor_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("lab_day_id", "instructor_id", "role", name="uq_lab_day_roles"),
        sa.CheckConstraint("role IN ('lab_lead','roamer','observer')", name="ck_lab_day_roles_role"),
    )
    op.create_index("idx_lab_day_roles_instructor", "lab_day_roles", ["instructor_id"])

    op.create_table(
        "station_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("station_id", sa.Integer(), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(128), nullable=False),
        sa.Column("sha256", sa.String(64), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(512), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_by_user_id", sa.Integer(), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
        sa.Column("uploaded_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["station_id"], ["lab_stations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["deleted_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["uploaded_by_user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_station_documents_station", "station_documents", ["station_id"])

    # ---- medications ----
    op.create_table(
        "medications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("brand_names", JsonList, nullable=True),
        sa.Column("drug_class", sa.String(255), nullable=False),
        sa.Column("indications", JsonList, nullable=True),
        sa.Column("contraindications", JsonList, nullable=True),
        sa.Column("side_effects", JsonList, nullable=True),
        sa.Column("routes", JsonList, nullable=True),
        sa.Column("adult_dose", sa.Text(), nullable=True),
        sa.Column("pediatric_dose", sa.Text(), nullable=True),
        sa.Column("onset", sa.String(128), nullable=True),
        sa.Column("duration", sa.String(128), nullable=True),
        sa.Column("concentration", sa.String(255), nullable=True),
        sa.Column("dose_per_kg", sa.Numeric(10, 4), nullable=True),
        sa.Column("max_dose", sa.String(128), nullable=True),
        sa.Column("special_notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_medications_name", "medications", ["name"])
    op.create_index("idx_medications_active", "medications", ["is_active"])

    # ---- instructor tasks ----
    op.create_table(
        "instructor_tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("assigned_by_id", sa.Integer(), nullable=False),
        sa.Column("assigned_to_id", sa.Integer(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("completion_mode", sa.String(16), nullable=False, server_default="single"),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("related_link", sa.String(1024), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["assigned_by_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("priority IN ('low','medium','high')", name="ck_instructor_tasks_priority"),
        sa.CheckConstraint(
            "status IN ('pending','in_progress','completed','cancelled')",
            name="ck_instructor_tasks_status",
        ),
        sa.CheckConstraint("completion_mode IN ('single','any','all')", name="ck_instructor_tasks_completion_mode"),
    )
    op.create_index("idx_instructor_tasks_assigned_by", "instructor_tasks", ["assigned_by_id"])
    op.create_index("idx_instructor_tasks_assigned_to", "instructor_tasks", ["assigned_to_id"])
    op.create_index("idx_instructor_tasks_status", "instructor_tasks", ["status"])
    op.create_index("idx_instructor_tasks_due_date", "instructor_tasks", ["due_date"])

    op.create_table(
        "task_assignees",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("assignee_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["instructor_tasks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assignee_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("task_id", "assignee_id", name="uq_task_assignees"),
    )
    op.create_index("idx_task_assignees_assignee", "task_assignees", ["assignee_id"])

    op.create_table(
        "task_comments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["instructor_tasks.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_task_comments_task", "task_comments", ["task_id"])


def downgrade() -> None:
    for table in (
        "task_comments",
        "task_assignees",
        "instructor_tasks",
        "medications",
        "station_documents",
        "lab_day_roles",
        "lab_stations",
        "lab_days",
        "students",
        "cohorts",
        "programs",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
