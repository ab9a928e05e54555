"""create lessons, recurring schedules and booking lanes

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


lesson_status_enum = sa.Enum("scheduled", "in_progress", "completed", "cancelled", "no_show", name="lesson_status")
booking_resource_enum = sa.Enum("room", "teacher", "student", name="booking_resource")


def upgrade() -> None:
    op.create_table(
        "lessons",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("teacher_id", sa.String(length=36), nullable=False),
        sa.Column("student_id", sa.String(length=36), nullable=False),
        sa.Column("room_id", sa.String(length=36), nullable=False),
        sa.Column("schedule_id", sa.String(length=36), nullable=True),
        sa.Column("instrument", sa.String(length=100), nullable=False),
        sa.Column("lesson_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="35"),
        sa.Column("status", lesson_status_enum, nullable=False),
        sa.Column("teacher_notes", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by_id", sa.String(length=36), nullable=True),
        sa.Column("teacher_check_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("teacher_check_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("student_check_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("student_check_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("schedule_id", "lesson_date", name="uq_lesson_schedule_date"),
    )
    for column in ("teacher_id", "student_id", "room_id", "schedule_id", "lesson_date", "status"):
        op.create_index(f"ix_lessons_{column}", "lessons", [column], unique=False)

    op.create_table(
        "recurring_schedules",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("teacher_id", sa.String(length=36), nullable=False),
        sa.Column("student_id", sa.String(length=36), nullable=False),
        sa.Column("room_id", sa.String(length=36), nullable=False),
        sa.Column("instrument", sa.String(length=100), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="35"),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_until", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_recurring_schedules_day_of_week"),
    )
    for column in ("teacher_id", "student_id", "room_id", "day_of_week", "is_active"):
        op.create_index(f"ix_recurring_schedules_{column}", "recurring_schedules", [column], unique=False)

    op.create_table(
        "booking_lanes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("lane", booking_resource_enum, nullable=False),
        sa.Column("resource_id", sa.String(length=36), nullable=False),
        sa.Column("slot_key", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("lane", "resource_id", "slot_key", name="uq_booking_lane_identity"),
    )


def downgrade() -> None:
    op.drop_table("booking_lanes")
    for column in ("is_active", "day_of_week", "room_id", "student_id", "teacher_id"):
        op.drop_index(f"ix_recurring_schedules_{column}", table_name="recurring_schedules")
    op.drop_table("recurring_schedules")
    for column in ("status", "lesson_date", "schedule_id", "room_id", "student_id", "teacher_id"):
        op.drop_index(f"ix_lessons_{column}", table_name="lessons")
    op.drop_table("lessons")
    bind = op.get_bind()
    booking_resource_enum.drop(bind, checkfirst=True)
    lesson_status_enum.drop(bind, checkfirst=True)
