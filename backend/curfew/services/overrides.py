"""Manual lock/unlock overrides (lock-all, unlock-all) and handset emergency access.

Overrides live in their own table and are applied after schedule resolution by
``lock_state.compose_with_override``; they never rewrite schedules.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy import delete
from sqlalchemy.orm import Session

from curfew.core.config import get_settings
from curfew.models.device import Device
from curfew.models.lock_override import DeviceLockOverride, OverrideMode
from curfew.models.user import User
from curfew.services.audit import log_activity
from curfew.services.lock_state import ComposedDeviceState
from curfew.services.reconciliation import compute_device_state, reconcile_device
from curfew.services.storage import get_devices_for_guardian, get_override, store_operation

logger = logging.getLogger(__name__)


def set_override(
    db: Session,
    device: Device,
    *,
    mode: OverrideMode,
    now: datetime,
    actor: User | None = None,
    restriction_level: int | None = None,
    reason: str | None = None,
    expires_at: datetime | None = None,
) -> DeviceLockOverride:
    if restriction_level is None:
        restriction_level = get_settings().manual_lock_restriction_level
    override = get_override(db, device.id)
    if override is None:
        override = DeviceLockOverride(device_id=device.id)
        db.add(override)
    override.mode = mode
    override.restriction_level = restriction_level if mode == OverrideMode.lock else 0
    override.reason = reason
    override.created_by_id = actor.id if actor is not None else None
    override.expires_at = expires_at.astimezone(timezone.utc) if expires_at is not None else None
    override.created_at = now
    with store_operation(db, "set_override"):
        db.flush()

    log_activity(
        db,
        action=f"override_{mode.value}",
        device_id=device.id,
        user=actor,
        description=reason,
        details={
            "restriction_level": override.restriction_level,
            "expires_at": expires_at.isoformat() if expires_at else None,
        },
    )
    return override


def clear_override(db: Session, device: Device, *, actor: User | None = None) -> bool:
    override = get_override(db, device.id)
    if override is None:
        return False
    with store_operation(db, "clear_override"):
        db.delete(override)
        db.flush()
    log_activity(db, action="override_cleared", device_id=device.id, user=actor)
    return True


def apply_to_all(
    db: Session,
    guardian: User,
    *,
    mode: OverrideMode,
    now: datetime,
    restriction_level: int | None = None,
    reason: str | None = None,
    expires_at: datetime | None = None,
) -> dict[str, ComposedDeviceState]:
    """Lock-all / unlock-all across a guardian's devices, then reconcile each one."""
    states: dict[str, ComposedDeviceState] = {}
    for device in get_devices_for_guardian(db, guardian.id):
        set_override(
            db,
            device,
            mode=mode,
            now=now,
            actor=guardian,
            restriction_level=restriction_level,
            reason=reason,
            expires_at=expires_at,
        )
        states[device.id], _ = reconcile_device(db, device, now, actor=guardian)
    logger.info("Guardian %s applied %s to %d device(s)", guardian.id, mode.value, len(states))
    return states


def clear_all(db: Session, guardian: User, now: datetime) -> int:
    devices = get_devices_for_guardian(db, guardian.id)
    device_ids = [device.id for device in devices]
    if not device_ids:
        return 0
    with store_operation(db, "clear_all_overrides"):
        removed = db.execute(delete(DeviceLockOverride).where(DeviceLockOverride.device_id.in_(device_ids))).rowcount
        db.flush()
    for device in devices:
        reconcile_device(db, device, now, actor=guardian)
    log_activity(db, action="overrides_cleared", user=guardian, details={"removed": removed})
    return removed


def request_emergency_access(db: Session, device: Device, now: datetime) -> tuple[bool, datetime | None]:
    """Time-boxed limited access requested from the handset.

    Granted only against a schedule lock whose active schedules all allow it,
    and never while a guardian lock override is in force. The grant is stored on
    the device and leaves any override row alone; the device stays locked and
    the handset opens only its emergency surface. Returns ``(granted, expires_at)``.
    """
    state = compute_device_state(db, device, now)
    if not state.is_locked:
        return True, None
    if state.override_applied and state.override.mode == OverrideMode.lock:
        reason = "manual_lock"
    elif not state.emergency_access_allowed:
        reason = "schedule_policy"
    else:
        reason = None
    if reason is not None:
        log_activity(
            db,
            action="emergency_access_denied",
            device_id=device.id,
            details={"reason": reason, "active_schedule_ids": list(state.schedule_state.active_schedule_ids)},
        )
        return False, None

    expires_at = now + timedelta(minutes=get_settings().emergency_unlock_minutes)
    device.emergency_access_until = expires_at.astimezone(timezone.utc)
    with store_operation(db, "grant_emergency_access"):
        db.flush()
    log_activity(
        db,
        action="emergency_access_granted",
        device_id=device.id,
        details={"expires_at": expires_at.isoformat()},
    )
    reconcile_device(db, device, now)
    return True, expires_at
