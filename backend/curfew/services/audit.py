from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from curfew.models.activity_log import ActivityLog, ActivitySeverity
from curfew.models.user import User

logger = logging.getLogger(__name__)


def log_activity(
    db: Session,
    *,
    action: str,
    device_id: str | None = None,
    user: User | None = None,
    description: str | None = None,
    details: dict | None = None,
    severity: ActivitySeverity = ActivitySeverity.info,
) -> ActivityLog:
    record = ActivityLog(
        device_id=device_id,
        user_id=user.id if user is not None else None,
        action=action,
        severity=severity,
        description=description,
        details=details or {},
    )
    db.add(record)
    return record


def log_security_event(
    db: Session,
    *,
    action: str,
    device_id: str | None,
    description: str,
    details: dict | None = None,
) -> ActivityLog:
    """Audit record for identity mismatches, fingerprint (re-)pins and anti-tamper events.

    Callers pass identifiers already masked with ``mask_identifier``.
    """
    logger.warning("Security event %s on device %s: %s %s", action, device_id, description, details or {})
    return log_activity(
        db,
        action=action,
        device_id=device_id,
        description=description,
        details=details,
        severity=ActivitySeverity.security,
    )
