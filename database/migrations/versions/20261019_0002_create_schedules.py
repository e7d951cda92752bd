"""create schedules and device schedule assignments

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


def upgrade() -> None:
    op.create_table(
        "schedules",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("guardian_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("days_of_week", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("network_restriction_level", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("restrict_wifi", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("restrict_mobile_data", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("allow_emergency_access", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_schedules_guardian_id", "schedules", ["guardian_id"], unique=False)

    op.create_table(
        "device_schedules",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("device_id", sa.String(length=36), nullable=False),
        sa.Column("schedule_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("device_id", "schedule_id", name="uq_device_schedules_device_schedule"),
    )
    op.create_index("ix_device_schedules_device_id", "device_schedules", ["device_id"], unique=False)
    op.create_index("ix_device_schedules_schedule_id", "device_schedules", ["schedule_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_device_schedules_schedule_id", table_name="device_schedules")
    op.drop_index("ix_device_schedules_device_id", table_name="device_schedules")
    op.drop_table("device_schedules")
    op.drop_index("ix_schedules_guardian_id", table_name="schedules")
    op.drop_table("schedules")
