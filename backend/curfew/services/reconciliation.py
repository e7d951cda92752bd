"""Poll-driven reconciliation.

Both the dashboard and the companion app re-derive device state on every poll.
Each call here is a complete recomputation from stored schedules, consent and
overrides; nothing carries over between polls.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from curfew.core.config import get_settings
from curfew.models.device import ConsentStatus, Device, LockSource
from curfew.models.schedule import Schedule
from curfew.models.user import User
from curfew.services.audit import log_activity
from curfew.services.lock_state import (
    ComposedDeviceState,
    DeviceSnapshot,
    OverrideSnapshot,
    as_utc,
    compose_with_override,
    resolve_device_state,
)
from curfew.services.schedule_evaluator import ScheduleSnapshot, is_schedule_active
from curfew.services.storage import (
    get_assigned_schedules,
    get_device,
    get_devices_for_guardian,
    get_devices_for_schedule,
    get_override,
    set_cached_lock_state,
    store_operation,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollHints:
    dashboard_poll_seconds: int
    device_poll_seconds: int
    backoff_seconds: tuple[int, ...]

    def as_dict(self) -> dict:
        return {
            "dashboard_poll_seconds": self.dashboard_poll_seconds,
            "device_poll_seconds": self.device_poll_seconds,
            "backoff_seconds": list(self.backoff_seconds),
        }


def poll_hints() -> PollHints:
    settings = get_settings()
    return PollHints(
        dashboard_poll_seconds=settings.dashboard_poll_seconds,
        device_poll_seconds=settings.device_poll_seconds,
        backoff_seconds=tuple(settings.poll_backoff_seconds),
    )


def compute_device_state(db: Session, device: Device, now: datetime) -> ComposedDeviceState:
    schedules = [ScheduleSnapshot.from_model(schedule) for schedule in get_assigned_schedules(db, device.id)]
    schedule_state = resolve_device_state(DeviceSnapshot.from_model(device), schedules, now)
    override = get_override(db, device.id)
    return compose_with_override(
        schedule_state,
        OverrideSnapshot.from_model(override) if override is not None else None,
        now,
        ConsentStatus(device.consent_status),
        emergency_until=device.emergency_access_until,
    )


def evaluate_device(db: Session, device_id: str, now: datetime) -> ComposedDeviceState:
    """Read-only evaluation; the cached lock columns are left untouched."""
    return compute_device_state(db, get_device(db, device_id), now)


def _transition_action(state: ComposedDeviceState) -> str:
    prefix = "manual" if state.lock_source == LockSource.manual else "schedule"
    return f"{prefix}_{'lock' if state.is_locked else 'unlock'}"


def _purge_expired_override(db: Session, device: Device, now: datetime) -> None:
    override = get_override(db, device.id)
    if override is None:
        return
    snapshot = OverrideSnapshot.from_model(override)
    if snapshot.is_effective(now):
        return
    with store_operation(db, "purge_override"):
        db.delete(override)
        db.flush()
    log_activity(
        db,
        action="override_expired",
        device_id=device.id,
        description=f"Manual {snapshot.mode.value} override expired",
    )


def _purge_expired_emergency_access(db: Session, device: Device, now: datetime) -> None:
    until = device.emergency_access_until
    if until is None or now < as_utc(until):
        return
    device.emergency_access_until = None
    with store_operation(db, "purge_emergency_access"):
        db.flush()
    log_activity(db, action="emergency_access_expired", device_id=device.id)


def reconcile_device(
    db: Session,
    device: Device,
    now: datetime,
    *,
    actor: User | None = None,
) -> tuple[ComposedDeviceState, bool]:
    """Recompute one device and sync its cached lock columns.

    Returns the composed state and whether the cache changed. Lock/unlock
    transitions are written to the activity log. The caller commits.
    """
    _purge_expired_override(db, device, now)
    _purge_expired_emergency_access(db, device, now)
    was_locked = bool(device.is_locked)
    state = compute_device_state(db, device, now)
    changed = set_cached_lock_state(db, device, state, now)

    if state.is_locked != was_locked:
        action = _transition_action(state)
        log_activity(
            db,
            action=action,
            device_id=device.id,
            user=actor,
            description=f"Device {'locked' if state.is_locked else 'unlocked'}",
            details={
                "restriction_level": state.restriction_level,
                "active_schedule_ids": list(state.schedule_state.active_schedule_ids),
                "lock_source": state.lock_source.value,
            },
        )
        logger.info("Device %s %s (level %s)", device.id, action, state.restriction_level)
    return state, changed


@dataclass(frozen=True)
class ReconciliationSummary:
    evaluated_at: datetime
    device_count: int
    locked_count: int
    changed_device_ids: tuple[str, ...]
    states: dict[str, ComposedDeviceState]


def reconcile_guardian(db: Session, guardian: User, now: datetime) -> ReconciliationSummary:
    """Schedule enforcement pass over every device of one guardian."""
    states: dict[str, ComposedDeviceState] = {}
    changed: list[str] = []
    for device in get_devices_for_guardian(db, guardian.id):
        state, device_changed = reconcile_device(db, device, now, actor=guardian)
        states[device.id] = state
        if device_changed:
            changed.append(device.id)
    return ReconciliationSummary(
        evaluated_at=now,
        device_count=len(states),
        locked_count=sum(1 for state in states.values() if state.is_locked),
        changed_device_ids=tuple(changed),
        states=states,
    )


def schedule_is_active_anywhere(db: Session, schedule: Schedule, now: datetime) -> bool:
    """Active in the zone of any assigned device, or in the default zone when unassigned."""
    snapshot = ScheduleSnapshot.from_model(schedule)
    devices = get_devices_for_schedule(db, schedule.id)
    if not devices:
        return is_schedule_active(snapshot, now, get_settings().default_timezone)
    return any(is_schedule_active(snapshot, now, device.timezone) for device in devices)


def active_schedules_for_guardian(db: Session, guardian: User, now: datetime) -> list[Schedule]:
    with store_operation(db, "list_schedules"):
        schedules = list(
            db.execute(
                select(Schedule).where(Schedule.guardian_id == guardian.id).order_by(Schedule.name, Schedule.id)
            ).scalars()
        )
    return [schedule for schedule in schedules if schedule_is_active_anywhere(db, schedule, now)]


def is_stale(device: Device, now: datetime, stale_after_seconds: int) -> bool:
    if device.last_seen is None:
        return True
    last_seen = device.last_seen
    if last_seen.tzinfo is None:
        last_seen = last_seen.replace(tzinfo=timezone.utc)
    return now - last_seen > timedelta(seconds=stale_after_seconds)


def dashboard_summary(db: Session, guardian: User, now: datetime) -> dict:
    settings = get_settings()
    devices = get_devices_for_guardian(db, guardian.id)
    states = {device.id: compute_device_state(db, device, now) for device in devices}
    return {
        "evaluated_at": now,
        "device_count": len(devices),
        "locked_count": sum(1 for state in states.values() if state.is_locked),
        "pending_consent_count": sum(
            1 for device in devices if ConsentStatus(device.consent_status) == ConsentStatus.pending
        ),
        "active_schedule_count": len(active_schedules_for_guardian(db, guardian, now)),
        "stale_device_ids": [
            device.id
            for device in devices
            if ConsentStatus(device.consent_status) == ConsentStatus.approved
            and is_stale(device, now, settings.heartbeat_stale_seconds)
        ],
        "poll": poll_hints().as_dict(),
    }
