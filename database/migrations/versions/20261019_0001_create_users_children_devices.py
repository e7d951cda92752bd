"""create users, children and devices

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


user_role_enum = sa.Enum("admin", "guardian", name="user_role")
consent_status_enum = sa.Enum("pending", "approved", "denied", name="consent_status")
lock_source_enum = sa.Enum("none", "schedule", "manual", name="lock_source")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role", user_role_enum, nullable=False, server_default="guardian"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "children",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("guardian_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_children_guardian_id", "children", ["guardian_id"], unique=False)

    op.create_table(
        "devices",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("child_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("phone_number", sa.String(length=32), nullable=False),
        sa.Column("fingerprint", sa.String(length=255), nullable=True),
        sa.Column("pending_fingerprint", sa.String(length=255), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("consent_status", consent_status_enum, nullable=False, server_default="pending"),
        sa.Column("consent_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("restriction_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lock_source", lock_source_enum, nullable=False, server_default="none"),
        sa.Column("state_computed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_devices_child_id", "devices", ["child_id"], unique=False)
    op.create_index("ix_devices_phone_number", "devices", ["phone_number"], unique=True)
    op.create_index("ix_devices_fingerprint", "devices", ["fingerprint"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_devices_fingerprint", table_name="devices")
    op.drop_index("ix_devices_phone_number", table_name="devices")
    op.drop_index("ix_devices_child_id", table_name="devices")
    op.drop_table("devices")
    op.drop_index("ix_children_guardian_id", table_name="children")
    op.drop_table("children")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    lock_source_enum.drop(op.get_bind(), checkfirst=True)
    consent_status_enum.drop(op.get_bind(), checkfirst=True)
    user_role_enum.drop(op.get_bind(), checkfirst=True)
