"""Record-store collaborator for the lock-state engine.

The engine reads devices, schedules and overrides through these functions and
writes lock state only through :func:`set_cached_lock_state`. Database driver
failures surface as :class:`TransientStoreError` so pollers can back off.
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Iterator

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from curfew.core.config import get_settings
from curfew.core.exceptions import ResourceNotFoundError, TransientStoreError
from curfew.models.activity_log import ActivityLog
from curfew.models.child import Child
from curfew.models.device import Device
from curfew.models.device_schedule import DeviceSchedule
from curfew.models.lock_override import DeviceLockOverride
from curfew.models.network_report import NetworkControlReport
from curfew.models.schedule import Schedule
from curfew.models.user import User
from curfew.services.lock_state import ComposedDeviceState
from curfew.services.phone_numbers import canonical_phone, is_placeholder_fingerprint

logger = logging.getLogger(__name__)
settings = get_settings()

_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


@contextmanager
def store_operation(db: Session, operation: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        db.rollback()
        logger.warning("Storage operation %s failed", operation, exc_info=True)
        raise TransientStoreError(operation) from exc


def get_device(db: Session, device_id: str) -> Device:
    with store_operation(db, "get_device"):
        device = db.get(Device, device_id)
    if device is None:
        raise ResourceNotFoundError("Device", device_id)
    return device


def get_schedule(db: Session, schedule_id: str) -> Schedule:
    with store_operation(db, "get_schedule"):
        schedule = db.get(Schedule, schedule_id)
    if schedule is None:
        raise ResourceNotFoundError("Schedule", schedule_id)
    return schedule


def get_assigned_schedules(db: Session, device_id: str) -> list[Schedule]:
    query = (
        select(Schedule)
        .join(DeviceSchedule, DeviceSchedule.schedule_id == Schedule.id)
        .where(DeviceSchedule.device_id == device_id)
        .order_by(Schedule.id)
    )
    with store_operation(db, "get_assigned_schedules"):
        return list(db.execute(query).scalars())


def get_devices_for_schedule(db: Session, schedule_id: str) -> list[Device]:
    query = (
        select(Device)
        .join(DeviceSchedule, DeviceSchedule.device_id == Device.id)
        .where(DeviceSchedule.schedule_id == schedule_id)
        .order_by(Device.name, Device.id)
    )
    with store_operation(db, "get_devices_for_schedule"):
        return list(db.execute(query).scalars())


def get_devices_for_guardian(db: Session, guardian_id: str) -> list[Device]:
    query = (
        select(Device)
        .join(Child, Child.id == Device.child_id)
        .where(Child.guardian_id == guardian_id)
        .order_by(Device.name, Device.id)
    )
    with store_operation(db, "get_devices_for_guardian"):
        return list(db.execute(query).scalars())


def get_guardian_for_device(db: Session, device: Device) -> User | None:
    query = select(User).join(Child, Child.guardian_id == User.id).where(Child.id == device.child_id)
    with store_operation(db, "get_guardian_for_device"):
        return db.execute(query).scalar_one_or_none()


def get_device_by_phone(db: Session, phone_number: str | None) -> Device | None:
    canonical = canonical_phone(phone_number, settings.default_country_code)
    if not canonical:
        return None
    with store_operation(db, "get_device_by_phone"):
        return db.execute(select(Device).where(Device.phone_number == canonical)).scalar_one_or_none()


def get_device_by_phone_or_fingerprint(
    db: Session,
    phone_number: str | None,
    fingerprint: str | None,
) -> Device | None:
    """Phone lookup first, then the pinned fingerprint; placeholders never match."""
    device = get_device_by_phone(db, phone_number)
    if device is not None or is_placeholder_fingerprint(fingerprint, settings.placeholder_fingerprint_prefixes):
        return device
    with store_operation(db, "get_device_by_fingerprint"):
        return db.execute(
            select(Device).where(Device.fingerprint == fingerprint).order_by(Device.created_at).limit(1)
        ).scalar_one_or_none()


def get_override(db: Session, device_id: str) -> DeviceLockOverride | None:
    with store_operation(db, "get_override"):
        return db.execute(
            select(DeviceLockOverride).where(DeviceLockOverride.device_id == device_id)
        ).scalar_one_or_none()


def set_cached_lock_state(db: Session, device: Device, state: ComposedDeviceState, now: datetime) -> bool:
    """Sync the denormalized lock columns; returns True when they changed."""
    changed = (
        device.is_locked != state.is_locked
        or device.restriction_level != state.restriction_level
        or device.lock_source != state.lock_source
    )
    device.is_locked = state.is_locked
    device.restriction_level = state.restriction_level
    device.lock_source = state.lock_source
    device.state_computed_at = now
    return changed


def ensure_assigned(db: Session, *, device_id: str, schedule_id: str) -> tuple[DeviceSchedule, bool]:
    """Idempotently link a device to a schedule.

    A concurrent duplicate insert is a no-op; the second return value tells
    whether this call created the row.
    """
    with store_operation(db, "ensure_assigned"):
        db.flush()
        insert_factory = _UPSERT_INSERTS.get(db.get_bind().dialect.name)
        if insert_factory is not None:
            statement = (
                insert_factory(DeviceSchedule)
                .values(device_id=device_id, schedule_id=schedule_id)
                .on_conflict_do_nothing(index_elements=["device_id", "schedule_id"])
            )
            created = db.execute(statement).rowcount == 1
        else:
            try:
                with db.begin_nested():
                    db.add(DeviceSchedule(device_id=device_id, schedule_id=schedule_id))
                created = True
            except IntegrityError:
                created = False

        assignment = db.execute(
            select(DeviceSchedule).where(
                DeviceSchedule.device_id == device_id,
                DeviceSchedule.schedule_id == schedule_id,
            )
        ).scalar_one()
    return assignment, created


def remove_assignment(db: Session, *, device_id: str, schedule_id: str) -> bool:
    with store_operation(db, "remove_assignment"):
        result = db.execute(
            delete(DeviceSchedule).where(
                DeviceSchedule.device_id == device_id,
                DeviceSchedule.schedule_id == schedule_id,
            )
        )
    return result.rowcount > 0


def delete_device_cascade(db: Session, device: Device) -> None:
    with store_operation(db, "delete_device"):
        db.execute(delete(DeviceSchedule).where(DeviceSchedule.device_id == device.id))
        db.execute(delete(DeviceLockOverride).where(DeviceLockOverride.device_id == device.id))
        db.execute(delete(NetworkControlReport).where(NetworkControlReport.device_id == device.id))
        db.execute(delete(ActivityLog).where(ActivityLog.device_id == device.id))
        db.delete(device)


def delete_schedule_cascade(db: Session, schedule: Schedule) -> None:
    with store_operation(db, "delete_schedule"):
        db.execute(delete(DeviceSchedule).where(DeviceSchedule.schedule_id == schedule.id))
        db.delete(schedule)


def delete_child_cascade(db: Session, child: Child) -> int:
    devices = list(db.execute(select(Device).where(Device.child_id == child.id)).scalars())
    for device in devices:
        delete_device_cascade(db, device)
    with store_operation(db, "delete_child"):
        db.delete(child)
    return len(devices)
