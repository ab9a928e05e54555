"""create absences, substitute requests, notifications and activity logs

Revision ID: 20261019_0003
Revises: 20261019_0002
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0003"
down_revision = "20261019_0002"
branch_labels = None
depends_on = None


absence_status_enum = sa.Enum(
    "pending",
    "coverage_needed",
    "partially_covered",
    "fully_covered",
    "cancelled",
    name="absence_status",
)
substitute_request_status_enum = sa.Enum(
    "pending",
    "awaiting_approval",
    "approved",
    "declined",
    "cancelled",
    "completed",
    name="substitute_request_status",
)
notification_type_enum = sa.Enum(
    "substitute_request",
    "substitute_request_cancelled",
    "substitute_approved",
    "substitute_declined",
    "teacher_changed",
    "lesson_cancelled",
    "system",
    name="notification_type",
)


def upgrade() -> None:
    op.create_table(
        "teacher_absences",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("teacher_id", sa.String(length=36), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", absence_status_enum, nullable=False),
        sa.Column("reported_by_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_teacher_absences_teacher_id", "teacher_absences", ["teacher_id"], unique=False)

    op.create_table(
        "substitute_requests",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("absence_id", sa.String(length=36), nullable=False),
        sa.Column("lesson_id", sa.String(length=36), nullable=False),
        sa.Column("original_teacher_id", sa.String(length=36), nullable=False),
        sa.Column("substitute_teacher_id", sa.String(length=36), nullable=False),
        sa.Column("student_id", sa.String(length=36), nullable=False),
        sa.Column("room_id", sa.String(length=36), nullable=False),
        sa.Column("instrument", sa.String(length=100), nullable=False),
        sa.Column("lesson_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("status", substitute_request_status_enum, nullable=False),
        sa.Column("broadcast_group_id", sa.String(length=36), nullable=True),
        sa.Column("approved_by_id", sa.String(length=36), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    for column in ("absence_id", "lesson_id", "substitute_teacher_id", "status", "broadcast_group_id"):
        op.create_index(f"ix_substitute_requests_{column}", "substitute_requests", [column], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(length=500), nullable=True),
        sa.Column("notification_type", notification_type_enum, nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=True),
        sa.Column("entity_id", sa.String(length=36), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    for column in ("user_id", "action", "entity_id"):
        op.create_index(f"ix_activity_logs_{column}", "activity_logs", [column], unique=False)


def downgrade() -> None:
    for column in ("entity_id", "action", "user_id"):
        op.drop_index(f"ix_activity_logs_{column}", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    for column in ("broadcast_group_id", "status", "substitute_teacher_id", "lesson_id", "absence_id"):
        op.drop_index(f"ix_substitute_requests_{column}", table_name="substitute_requests")
    op.drop_table("substitute_requests")
    op.drop_index("ix_teacher_absences_teacher_id", table_name="teacher_absences")
    op.drop_table("teacher_absences")
    bind = op.get_bind()
    notification_type_enum.drop(bind, checkfirst=True)
    substitute_request_status_enum.drop(bind, checkfirst=True)
    absence_status_enum.drop(bind, checkfirst=True)
