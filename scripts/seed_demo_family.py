"""Seed a demo guardian with one child, one handset and a bedtime schedule.

Run:
  PYTHONPATH=backend python scripts/seed_demo_family.py
"""

from __future__ import annotations

import os

from sqlalchemy import select

from curfew.core.security import get_password_hash
from curfew.db.bootstrap import ensure_runtime_schema_compatibility
from curfew.db.session import SessionLocal
from curfew.models.child import Child
from curfew.models.device import Device
from curfew.models.schedule import RestrictionLevel, Schedule
from curfew.models.user import User, UserRole
from curfew.services.phone_numbers import canonical_phone, timezone_from_phone
from curfew.services.storage import ensure_assigned

DEFAULT_PASSWORD = os.getenv("DEMO_PASSWORD", "DemoPass123!")
GUARDIAN_EMAIL = os.getenv("DEMO_GUARDIAN_EMAIL", "guardian.demo@example.com").strip().lower()
DEVICE_PHONE = canonical_phone(os.getenv("DEMO_DEVICE_PHONE", "+919800000001"), "+91")

DEMO_SCHEDULES = [
    {
        "name": "School nights",
        "start_time": "21:30",
        "end_time": "06:30",
        "days_of_week": [0, 1, 2, 3, 4],
        "network_restriction_level": int(RestrictionLevel.full_block),
        "restrict_wifi": True,
        "restrict_mobile_data": True,
        "allow_emergency_access": True,
    },
    {
        "name": "Homework hour",
        "start_time": "17:00",
        "end_time": "18:00",
        "days_of_week": [1, 2, 3, 4, 5],
        "network_restriction_level": int(RestrictionLevel.app_level),
        "restrict_wifi": False,
        "restrict_mobile_data": True,
        "allow_emergency_access": True,
    },
]


def _upsert_guardian(session) -> User:
    guardian = session.execute(select(User).where(User.email == GUARDIAN_EMAIL)).scalar_one_or_none()
    if guardian is None:
        guardian = User(
            name="Demo Guardian",
            email=GUARDIAN_EMAIL,
            hashed_password=get_password_hash(DEFAULT_PASSWORD),
            role=UserRole.guardian,
        )
        session.add(guardian)
        session.flush()
    return guardian


def _upsert_device(session, guardian: User) -> Device:
    device = session.execute(select(Device).where(Device.phone_number == DEVICE_PHONE)).scalar_one_or_none()
    if device is not None:
        return device
    child = Child(guardian_id=guardian.id, name="Demo Child", age=12)
    session.add(child)
    session.flush()
    device = Device(
        child_id=child.id,
        name="Demo Handset",
        phone_number=DEVICE_PHONE,
        timezone=timezone_from_phone(DEVICE_PHONE),
    )
    session.add(device)
    session.flush()
    return device


def _upsert_schedules(session, guardian: User) -> list[Schedule]:
    schedules = []
    for item in DEMO_SCHEDULES:
        schedule = session.execute(
            select(Schedule).where(Schedule.guardian_id == guardian.id, Schedule.name == item["name"])
        ).scalar_one_or_none()
        if schedule is None:
            schedule = Schedule(guardian_id=guardian.id, **item)
            session.add(schedule)
        else:
            for key, value in item.items():
                setattr(schedule, key, value)
        schedules.append(schedule)
    session.flush()
    return schedules


def main() -> None:
    ensure_runtime_schema_compatibility()
    with SessionLocal() as session:
        guardian = _upsert_guardian(session)
        device = _upsert_device(session, guardian)
        for schedule in _upsert_schedules(session, guardian):
            ensure_assigned(session, device_id=device.id, schedule_id=schedule.id)
        session.commit()

        print(f"Guardian: {guardian.email} / {DEFAULT_PASSWORD}")
        print(f"Device:   {device.phone_number} ({device.timezone}), consent {device.consent_status.value}")


if __name__ == "__main__":
    main()
