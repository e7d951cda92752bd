from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import AwareDatetime
from sqlalchemy import select
from sqlalchemy.orm import Session

from curfew.api.deps import get_current_user, get_db, owned_device, owned_schedule
from curfew.models.schedule import Schedule
from curfew.models.user import User
from curfew.schemas.device import DeviceOut
from curfew.schemas.schedule import ActiveScheduleOut, AssignmentOut, ScheduleCreate, ScheduleOut, ScheduleUpdate
from curfew.services.audit import log_activity
from curfew.services.reconciliation import active_schedules_for_guardian, reconcile_device
from curfew.services.schedule_evaluator import parse_wall_clock
from curfew.services.storage import (
    delete_schedule_cascade,
    ensure_assigned,
    get_devices_for_schedule,
    remove_assignment,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _reconcile_assigned(db: Session, schedule: Schedule, actor: User) -> None:
    now = datetime.now(timezone.utc)
    for device in get_devices_for_schedule(db, schedule.id):
        reconcile_device(db, device, now, actor=actor)


def _schedule_summary(schedule: Schedule) -> dict:
    start = parse_wall_clock(schedule.start_time)
    end = parse_wall_clock(schedule.end_time)
    return {
        "schedule_id": schedule.id,
        "window": f"{schedule.start_time}-{schedule.end_time}",
        "overnight": start is not None and end is not None and start > end,
        "days_of_week": list(schedule.days_of_week or []),
        "network_restriction_level": schedule.network_restriction_level,
    }


@router.get("/", response_model=list[ScheduleOut])
def list_schedules(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ScheduleOut]:
    query = select(Schedule).where(Schedule.guardian_id == current_user.id).order_by(Schedule.name, Schedule.id)
    return list(db.execute(query).scalars())


@router.post("/", response_model=ScheduleOut, status_code=status.HTTP_201_CREATED)
def create_schedule(
    payload: ScheduleCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ScheduleOut:
    schedule = Schedule(guardian_id=current_user.id, **payload.model_dump())
    db.add(schedule)
    db.flush()
    log_activity(db, action="schedule_created", user=current_user, details=_schedule_summary(schedule))
    db.commit()
    db.refresh(schedule)
    return schedule


@router.get("/active", response_model=list[ActiveScheduleOut])
def list_active_schedules(
    at: AwareDatetime | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ActiveScheduleOut]:
    now = at or datetime.now(timezone.utc)
    payload: list[ActiveScheduleOut] = []
    for schedule in active_schedules_for_guardian(db, current_user, now):
        item = ActiveScheduleOut.model_validate(schedule)
        item.device_ids = [device.id for device in get_devices_for_schedule(db, schedule.id)]
        payload.append(item)
    return payload


@router.get("/{schedule_id}", response_model=ScheduleOut)
def get_schedule(
    schedule_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ScheduleOut:
    return owned_schedule(db, schedule_id, current_user)


@router.patch("/{schedule_id}", response_model=ScheduleOut)
def update_schedule(
    schedule_id: str,
    payload: ScheduleUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ScheduleOut:
    schedule = owned_schedule(db, schedule_id, current_user)
    data = payload.model_dump(exclude_unset=True)
    for key in [key for key, value in data.items() if value is None]:
        data.pop(key)
    for key, value in data.items():
        setattr(schedule, key, value)
    db.flush()

    log_activity(db, action="schedule_updated", user=current_user, details=_schedule_summary(schedule))
    _reconcile_assigned(db, schedule, current_user)
    db.commit()
    db.refresh(schedule)
    return schedule


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(
    schedule_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    schedule = owned_schedule(db, schedule_id, current_user)
    devices = get_devices_for_schedule(db, schedule.id)
    delete_schedule_cascade(db, schedule)
    db.flush()

    now = datetime.now(timezone.utc)
    for device in devices:
        reconcile_device(db, device, now, actor=current_user)
    log_activity(db, action="schedule_deleted", user=current_user, details={"schedule_id": schedule_id})
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{schedule_id}/devices", response_model=list[DeviceOut])
def list_schedule_devices(
    schedule_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[DeviceOut]:
    schedule = owned_schedule(db, schedule_id, current_user)
    return get_devices_for_schedule(db, schedule.id)


@router.put("/{schedule_id}/devices/{device_id}", response_model=AssignmentOut)
def assign_device(
    schedule_id: str,
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AssignmentOut:
    schedule = owned_schedule(db, schedule_id, current_user)
    device = owned_device(db, device_id, current_user)
    _, created = ensure_assigned(db, device_id=device.id, schedule_id=schedule.id)
    if created:
        log_activity(
            db,
            action="schedule_assigned",
            device_id=device.id,
            user=current_user,
            details={"schedule_id": schedule.id},
        )
    reconcile_device(db, device, datetime.now(timezone.utc), actor=current_user)
    db.commit()
    return AssignmentOut(device_id=device.id, schedule_id=schedule.id, created=created)


@router.delete("/{schedule_id}/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def unassign_device(
    schedule_id: str,
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    schedule = owned_schedule(db, schedule_id, current_user)
    device = owned_device(db, device_id, current_user)
    if not remove_assignment(db, device_id=device.id, schedule_id=schedule.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device is not assigned to this schedule")
    log_activity(
        db,
        action="schedule_unassigned",
        device_id=device.id,
        user=current_user,
        details={"schedule_id": schedule.id},
    )
    reconcile_device(db, device, datetime.now(timezone.utc), actor=current_user)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
