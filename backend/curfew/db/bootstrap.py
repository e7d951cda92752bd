from __future__ import annotations

import logging

from sqlalchemy import inspect, text

import curfew.models  # noqa: F401
from curfew.db.base import Base
from curfew.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "users": {"id", "email", "role"},
    "devices": {"id", "phone_number", "fingerprint", "consent_status", "is_locked", "restriction_level"},
    "schedules": {"id", "start_time", "end_time", "days_of_week", "network_restriction_level"},
    "device_schedules": {"device_id", "schedule_id"},
    "device_lock_overrides": {"device_id", "mode"},
}

# Columns added after the first release; (table, column) -> DDL type per dialect.
ADDITIVE_COLUMNS: dict[tuple[str, str], dict[str, str]] = {
    ("devices", "pending_fingerprint"): {"default": "VARCHAR(255)"},
    ("devices", "consent_updated_at"): {
        "postgresql": "TIMESTAMP WITH TIME ZONE",
        "default": "DATETIME",
    },
    ("devices", "state_computed_at"): {
        "postgresql": "TIMESTAMP WITH TIME ZONE",
        "default": "DATETIME",
    },
    ("devices", "emergency_access_until"): {
        "postgresql": "TIMESTAMP WITH TIME ZONE",
        "default": "DATETIME",
    },
    ("devices", "restriction_level"): {"default": "INTEGER NOT NULL DEFAULT 0"},
    ("schedules", "allow_emergency_access"): {
        "postgresql": "BOOLEAN NOT NULL DEFAULT TRUE",
        "default": "BOOLEAN NOT NULL DEFAULT 1",
    },
    ("users", "device_admin_code_hash"): {"default": "VARCHAR(255)"},
}


def _ensure_additive_columns() -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        existing: dict[str, set[str]] = {}
        for (table_name, column_name), ddl in ADDITIVE_COLUMNS.items():
            if table_name not in table_names:
                continue
            if table_name not in existing:
                existing[table_name] = {item["name"] for item in inspector.get_columns(table_name)}
            if column_name in existing[table_name]:
                continue
            column_type = ddl.get(connection.dialect.name, ddl["default"])
            connection.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_type}"))
            existing[table_name].add(column_name)
            logger.info("Added missing column %s.%s", table_name, column_name)


def find_schema_gaps(connection) -> tuple[list[str], list[str]]:
    """Required tables and ``table.column`` pairs missing from the live schema."""
    inspector = inspect(connection)
    table_names = set(inspector.get_table_names())
    missing_tables = sorted(name for name in REQUIRED_COLUMNS if name not in table_names)
    missing_columns: list[str] = []
    for table_name, required in REQUIRED_COLUMNS.items():
        if table_name not in table_names:
            continue
        existing = {item["name"] for item in inspector.get_columns(table_name)}
        missing_columns.extend(f"{table_name}.{column}" for column in sorted(required - existing))
    return missing_tables, missing_columns


def _assert_required_columns() -> None:
    with engine.begin() as connection:
        missing_tables, missing_columns = find_schema_gaps(connection)
    if missing_tables:
        raise RuntimeError(f"Missing required tables: {', '.join(missing_tables)}")
    if missing_columns:
        raise RuntimeError(f"Missing required columns: {', '.join(missing_columns)}")


def ensure_runtime_schema_compatibility() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        _ensure_additive_columns()
        _assert_required_columns()
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema compatibility bootstrap failed")
        raise RuntimeError("Runtime schema compatibility bootstrap failed") from exc
