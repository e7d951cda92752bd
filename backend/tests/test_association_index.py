from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from curfew.models.device_schedule import DeviceSchedule
from curfew.services.storage import ensure_assigned, get_assigned_schedules, get_devices_for_schedule, remove_assignment


def _count(session) -> int:
    return session.execute(select(func.count()).select_from(DeviceSchedule)).scalar_one()


def test_ensure_assigned_is_idempotent(db_session, make_guardian, make_device, make_schedule):
    guardian = make_guardian()
    device = make_device(guardian)
    schedule = make_schedule(guardian)

    first, created_first = ensure_assigned(db_session, device_id=device.id, schedule_id=schedule.id)
    second, created_second = ensure_assigned(db_session, device_id=device.id, schedule_id=schedule.id)

    assert created_first is True
    assert created_second is False
    assert first.id == second.id
    assert _count(db_session) == 1


def test_duplicate_insert_from_another_session_is_a_no_op(engine, db_session, make_guardian, make_device, make_schedule):
    guardian = make_guardian()
    device = make_device(guardian)
    schedule = make_schedule(guardian)
    db_session.commit()

    other = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        _, created_other = ensure_assigned(other, device_id=device.id, schedule_id=schedule.id)
        other.commit()
    finally:
        other.close()

    _, created_here = ensure_assigned(db_session, device_id=device.id, schedule_id=schedule.id)
    db_session.commit()

    assert created_other is True
    assert created_here is False
    assert _count(db_session) == 1


def test_assignment_lookups_and_removal(db_session, make_guardian, make_device, make_schedule):
    guardian = make_guardian()
    device = make_device(guardian)
    morning = make_schedule(guardian, name="Morning")
    night = make_schedule(guardian, name="Night")
    ensure_assigned(db_session, device_id=device.id, schedule_id=morning.id)
    ensure_assigned(db_session, device_id=device.id, schedule_id=night.id)

    assert {item.id for item in get_assigned_schedules(db_session, device.id)} == {morning.id, night.id}
    assert [item.id for item in get_devices_for_schedule(db_session, night.id)] == [device.id]

    assert remove_assignment(db_session, device_id=device.id, schedule_id=night.id) is True
    assert remove_assignment(db_session, device_id=device.id, schedule_id=night.id) is False
    assert [item.id for item in get_assigned_schedules(db_session, device.id)] == [morning.id]
