from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# Alembic identifiers
revision = "0001_reminders"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("missed_reminders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )

    op.create_table(
        "reminders",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("for_user", sa.String(64), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("label", sa.String(16), nullable=False),
        sa.Column("date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("repeat", sa.String(8), nullable=False),
        sa.Column("follow_up_minutes", sa.Integer(), nullable=False),
        sa.Column("snooze_count", sa.Integer(), nullable=False),
        sa.Column("miss_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("dismissed", sa.Boolean(), nullable=False),
        sa.Column("alarm_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("miss_timer_handle", sa.String(64), nullable=True),
        sa.Column("notification_handle", sa.String(128), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("snoozed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("previous_occurrence_id", sa.String(32), nullable=True),
        sa.Column("next_occurrence_id", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_reminders"),
    )
    op.create_index("ix_reminders_created_by", "reminders", ["created_by"])
    op.create_index("ix_reminders_for_user", "reminders", ["for_user"])
    op.create_index("ix_reminders_date_time", "reminders", ["date_time"])
    op.create_index("ix_reminders_status", "reminders", ["status"])


def downgrade():
    op.drop_index("ix_reminders_status", table_name="reminders")
    op.drop_index("ix_reminders_date_time", table_name="reminders")
    op.drop_index("ix_reminders_for_user", table_name="reminders")
    op.drop_index("ix_reminders_created_by", table_name="reminders")
    op.drop_table("reminders")
    op.drop_table("users")
