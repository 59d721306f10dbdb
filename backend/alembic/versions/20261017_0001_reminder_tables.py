"""Create patient contact, reminder schedule, and reminder notification tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "patient_contacts",
        sa.Column("patient_id", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("push_token", sa.String(length=512), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("patient_id"),
    )

    op.create_table(
        "reminder_schedules",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("patient_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("medication_name", sa.String(length=256), nullable=True),
        sa.Column("dosage", sa.String(length=128), nullable=True),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("schedule_type", sa.String(length=16), nullable=False, server_default="once"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("recurrence_interval_minutes", sa.Integer(), nullable=True),
        sa.Column("days_of_week", sa.JSON(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("next_trigger_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("channels", sa.JSON(), nullable=True),
        sa.Column("notify_email", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notify_push", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reminder_schedules_patient_id", "reminder_schedules", ["patient_id"], unique=False)
    op.create_index("ix_reminder_schedules_next_trigger_at", "reminder_schedules", ["next_trigger_at"], unique=False)

    op.create_table(
        "reminder_notifications",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), nullable=False, autoincrement=True),
        sa.Column("reminder_id", sa.String(length=64), nullable=False),
        sa.Column("patient_id", sa.String(length=64), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("target", sa.String(length=512), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("provider", sa.String(length=64), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("provider_response_json", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["reminder_id"], ["reminder_schedules.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reminder_notifications_reminder_id", "reminder_notifications", ["reminder_id"], unique=False)
    op.create_index("ix_reminder_notifications_patient_id", "reminder_notifications", ["patient_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_reminder_notifications_patient_id", table_name="reminder_notifications")
    op.drop_index("ix_reminder_notifications_reminder_id", table_name="reminder_notifications")
    op.drop_table("reminder_notifications")

    op.drop_index("ix_reminder_schedules_next_trigger_at", table_name="reminder_schedules")
    op.drop_index("ix_reminder_schedules_patient_id", table_name="reminder_schedules")
    op.drop_table("reminder_schedules")

    op.drop_table("patient_contacts")
