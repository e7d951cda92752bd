"""create lock overrides, activity logs and network control reports

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


override_mode_enum = sa.Enum("lock", "unlock", name="override_mode")
activity_severity_enum = sa.Enum("info", "security", name="activity_severity")


def upgrade() -> None:
    op.create_table(
        "device_lock_overrides",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("device_id", sa.String(length=36), nullable=False),
        sa.Column("mode", override_mode_enum, nullable=False),
        sa.Column("restriction_level", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.String(length=36), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_device_lock_overrides_device_id", "device_lock_overrides", ["device_id"], unique=True)

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("device_id", sa.String(length=36), nullable=True),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("severity", activity_severity_enum, nullable=False, server_default="info"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_device_id", "activity_logs", ["device_id"], unique=False)

    op.create_table(
        "network_control_reports",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("device_id", sa.String(length=36), nullable=False),
        sa.Column("restriction_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wifi_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("mobile_data_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("enforcement_success", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("capabilities", sa.JSON(), nullable=False),
        sa.Column("reported_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_network_control_reports_device_id", "network_control_reports", ["device_id"], unique=True
    )


def downgrade() -> None:
    op.drop_index("ix_network_control_reports_device_id", table_name="network_control_reports")
    op.drop_table("network_control_reports")
    op.drop_index("ix_activity_logs_device_id", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_device_lock_overrides_device_id", table_name="device_lock_overrides")
    op.drop_table("device_lock_overrides")
    activity_severity_enum.drop(op.get_bind(), checkfirst=True)
    override_mode_enum.drop(op.get_bind(), checkfirst=True)
