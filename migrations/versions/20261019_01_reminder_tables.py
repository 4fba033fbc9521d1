"""users, one-time/recurring reminders and weather subscriptions

Revision ID: 20261019_01
Revises: None
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("address", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("reminder_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reminder_message", sa.Text(), nullable=True),
        sa.Column("last_reminder_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_address", "users", ["address"], unique=True)

    op.create_table(
        "one_time_reminders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("fire_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_one_time_reminders_user_id", "one_time_reminders", ["user_id"])
    op.create_index("ix_one_time_reminders_fire_at", "one_time_reminders", ["fire_at"])

    recurrence_kind = sa.Enum("DAILY", "MONTHLY", name="recurrence_kind")
    op.create_table(
        "recurring_reminders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("kind", recurrence_kind, nullable=False),
        sa.Column("time_of_day", sa.String(length=5), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "(kind = 'MONTHLY' AND day_of_month IS NOT NULL) OR "
            "(kind = 'DAILY' AND day_of_month IS NULL)",
            name="ck_recurring_day_of_month_kind",
        ),
        sa.CheckConstraint(
            "day_of_month IS NULL OR (day_of_month BETWEEN 1 AND 31)",
            name="ck_recurring_day_of_month_range",
        ),
    )
    op.create_index("ix_recurring_reminders_user_id", "recurring_reminders", ["user_id"])
    op.create_index("ix_recurring_reminders_time_of_day", "recurring_reminders", ["time_of_day"])

    op.create_table(
        "weather_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column("city", sa.String(length=128), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("weather_subscriptions")
    op.drop_index("ix_recurring_reminders_time_of_day", table_name="recurring_reminders")
    op.drop_index("ix_recurring_reminders_user_id", table_name="recurring_reminders")
    op.drop_table("recurring_reminders")
    sa.Enum(name="recurrence_kind").drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_one_time_reminders_fire_at", table_name="one_time_reminders")
    op.drop_index("ix_one_time_reminders_user_id", table_name="one_time_reminders")
    op.drop_table("one_time_reminders")
    op.drop_index("ix_users_address", table_name="users")
    op.drop_table("users")
