"""create medication adherence and caregiver alert tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


SESSION_TYPES = ("morning", "afternoon", "night")


def _session_type() -> sa.Enum:
    # Shared by three tables; the type itself is created once in upgrade().
    return postgresql.ENUM(*SESSION_TYPES, name="session_type", create_type=False)


def upgrade() -> None:
    sa.Enum(*SESSION_TYPES, name="session_type").create(op.get_bind(), checkfirst=True)

    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("caregiver_name", sa.String(length=255), nullable=True),
        sa.Column("caregiver_email", sa.String(length=255), nullable=True),
        sa.Column("caregiver_phone", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profiles_user_id", "profiles", ["user_id"], unique=True)

    op.create_table(
        "medicines",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("dosage", sa.String(length=64), nullable=False),
        sa.Column("dosage_unit", sa.String(length=32), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_medicines_user_id", "medicines", ["user_id"])

    op.create_table(
        "medicine_sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("medicine_id", sa.String(length=36), nullable=False),
        sa.Column("session_type", _session_type(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["medicine_id"], ["medicines.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("medicine_id", "session_type", name="uq_medicine_sessions_medicine_session"),
    )

    op.create_table(
        "session_schedules",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("session_type", _session_type(), nullable=False),
        sa.Column("scheduled_time", sa.Time(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "session_type", name="uq_session_schedules_user_session"),
    )

    op.create_table(
        "dose_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("medicine_id", sa.String(length=36), nullable=False),
        sa.Column("session_type", _session_type(), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "taken", "missed", "skipped", name="dose_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("taken_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["medicine_id"], ["medicines.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "medicine_id", "session_type", "scheduled_date", name="uq_dose_logs_medicine_session_date"
        ),
    )
    op.create_index("ix_dose_logs_user_id", "dose_logs", ["user_id"])
    op.create_index("ix_dose_logs_scheduled_date_status", "dose_logs", ["scheduled_date", "status"])

    op.create_table(
        "caregiver_links",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("patient_id", sa.String(length=36), nullable=False),
        sa.Column("caregiver_id", sa.String(length=36), nullable=True),
        sa.Column("invitation_token", sa.String(length=64), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "accepted", name="caregiver_link_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invitation_token"),
    )
    op.create_index("ix_caregiver_links_patient_id", "caregiver_links", ["patient_id"])
    op.create_index("ix_caregiver_links_caregiver_id", "caregiver_links", ["caregiver_id"])

    op.create_table(
        "stock_alerts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("medicine_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column(
            "alert_type",
            sa.Enum("low_stock_caregiver", name="stock_alert_type"),
            nullable=False,
        ),
        sa.Column("alert_date", sa.Date(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["medicine_id"], ["medicines.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "medicine_id", "alert_type", "alert_date", name="uq_stock_alerts_medicine_type_date"
        ),
    )

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("notification_type", sa.String(length=64), nullable=False),
        sa.Column("recipient_email", sa.String(length=255), nullable=True),
        sa.Column("recipient_phone", sa.String(length=32), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("sent", "failed", name="delivery_status"),
            nullable=False,
        ),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_logs_user_sent", "notification_logs", ["user_id", "sent_at"])


def downgrade() -> None:
    op.drop_index("ix_notification_logs_user_sent", table_name="notification_logs")
    op.drop_table("notification_logs")
    op.drop_table("stock_alerts")

    op.drop_index("ix_caregiver_links_caregiver_id", table_name="caregiver_links")
    op.drop_index("ix_caregiver_links_patient_id", table_name="caregiver_links")
    op.drop_table("caregiver_links")

    op.drop_index("ix_dose_logs_scheduled_date_status", table_name="dose_logs")
    op.drop_index("ix_dose_logs_user_id", table_name="dose_logs")
    op.drop_table("dose_logs")

    op.drop_table("session_schedules")
    op.drop_table("medicine_sessions")

    op.drop_index("ix_medicines_user_id", table_name="medicines")
    op.drop_table("medicines")

    op.drop_index("ix_profiles_user_id", table_name="profiles")
    op.drop_table("profiles")

    op.execute("DROP TYPE IF EXISTS delivery_status")
    op.execute("DROP TYPE IF EXISTS stock_alert_type")
    op.execute("DROP TYPE IF EXISTS caregiver_link_status")
    op.execute("DROP TYPE IF EXISTS dose_status")
    op.execute("DROP TYPE IF EXISTS session_type")
