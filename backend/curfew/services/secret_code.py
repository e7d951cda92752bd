"""Guardian secret code that releases the companion app's device-admin lock.

The code is stored as an Argon2 hash on the guardian. Entered codes are never
written to the audit trail, only the outcome.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from curfew.core.security import get_password_hash, verify_password
from curfew.models.device import Device
from curfew.models.user import User
from curfew.services.audit import log_activity, log_security_event
from curfew.services.storage import get_guardian_for_device, store_operation

logger = logging.getLogger(__name__)


def set_secret_code(db: Session, guardian: User, secret_code: str) -> User:
    guardian.device_admin_code_hash = get_password_hash(secret_code)
    with store_operation(db, "set_secret_code"):
        db.flush()
    log_activity(db, action="secret_code_set", user=guardian, description="Device admin secret code updated")
    logger.info("Guardian %s set a device admin secret code", guardian.id)
    return guardian


def validate_secret_code(db: Session, device: Device, secret_code: str) -> bool:
    """Check a code typed on the handset against the owning guardian's code.

    A missing guardian or an unset code counts as a failed attempt.
    """
    guardian = get_guardian_for_device(db, device)
    code_hash = guardian.device_admin_code_hash if guardian is not None else None
    if verify_password(secret_code, code_hash):
        log_activity(
            db,
            action="secret_code_validated",
            device_id=device.id,
            description="Secret code accepted; device admin may be disabled",
        )
        return True

    log_security_event(
        db,
        action="secret_code_failed",
        device_id=device.id,
        description="Invalid secret code entered for device admin disable",
        details={"code_set": code_hash is not None},
    )
    return False


def request_admin_disable(db: Session, device: Device, request_type: str | None = None) -> None:
    log_security_event(
        db,
        action="device_admin_disable_requested",
        device_id=device.id,
        description="Handset asked to disable device admin",
        details={"request_type": request_type},
    )
