from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import AwareDatetime
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from curfew.api.deps import get_current_user, get_db, owned_child, owned_device
from curfew.core.config import get_settings
from curfew.models.activity_log import ActivityLog
from curfew.models.device import Device
from curfew.models.network_report import NetworkControlReport
from curfew.models.user import User
from curfew.schemas.activity import ActivityLogOut
from curfew.schemas.companion import NetworkReportOut
from curfew.schemas.device import DeviceCreate, DeviceOut, DeviceUpdate
from curfew.schemas.schedule import ScheduleOut
from curfew.schemas.state import DeviceStateOut, OverrideIn
from curfew.services.audit import log_activity
from curfew.services.overrides import clear_override, set_override
from curfew.services.phone_numbers import mask_identifier, timezone_from_phone
from curfew.services.reconciliation import compute_device_state, reconcile_device
from curfew.services.storage import delete_device_cascade, get_assigned_schedules, get_devices_for_guardian

settings = get_settings()
router = APIRouter()
logger = logging.getLogger(__name__)


def _resolve_timezone(requested: str | None, phone_number: str) -> str:
    if requested and requested != "UTC":
        return requested
    return timezone_from_phone(phone_number, fallback=requested or settings.default_timezone)


def _phone_taken(db: Session, phone_number: str, exclude_id: str | None = None) -> bool:
    query = select(Device.id).where(Device.phone_number == phone_number)
    if exclude_id is not None:
        query = query.where(Device.id != exclude_id)
    return db.execute(query).first() is not None


@router.get("/", response_model=list[DeviceOut])
def list_devices(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[DeviceOut]:
    return get_devices_for_guardian(db, current_user.id)


@router.post("/", response_model=DeviceOut, status_code=status.HTTP_201_CREATED)
def create_device(
    payload: DeviceCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DeviceOut:
    owned_child(db, payload.child_id, current_user)
    if _phone_taken(db, payload.phone_number):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Phone number already registered")

    device = Device(
        child_id=payload.child_id,
        name=payload.name,
        phone_number=payload.phone_number,
        timezone=_resolve_timezone(payload.timezone, payload.phone_number),
    )
    db.add(device)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Phone number already registered") from exc

    log_activity(
        db,
        action="device_created",
        device_id=device.id,
        user=current_user,
        details={"phone": mask_identifier(device.phone_number), "timezone": device.timezone},
    )
    db.commit()
    db.refresh(device)
    return device


@router.get("/{device_id}", response_model=DeviceOut)
def get_device(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DeviceOut:
    return owned_device(db, device_id, current_user)


@router.patch("/{device_id}", response_model=DeviceOut)
def update_device(
    device_id: str,
    payload: DeviceUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DeviceOut:
    device = owned_device(db, device_id, current_user)
    data = payload.model_dump(exclude_unset=True)
    if data.get("phone_number") and _phone_taken(db, data["phone_number"], exclude_id=device.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Phone number already registered")
    if "timezone" in data and data["timezone"] is None:
        data.pop("timezone")

    for key, value in data.items():
        setattr(device, key, value)
    log_activity(db, action="device_updated", device_id=device.id, user=current_user, details={"fields": sorted(data)})
    reconcile_device(db, device, datetime.now(timezone.utc), actor=current_user)
    db.commit()
    db.refresh(device)
    return device


@router.delete("/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_device(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    device = owned_device(db, device_id, current_user)
    delete_device_cascade(db, device)
    log_activity(db, action="device_deleted", user=current_user, details={"device_id": device_id})
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{device_id}/state", response_model=DeviceStateOut)
def get_device_state(
    device_id: str,
    at: AwareDatetime | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DeviceStateOut:
    device = owned_device(db, device_id, current_user)
    now = at or datetime.now(timezone.utc)
    state = compute_device_state(db, device, now)
    return DeviceStateOut.build(device.id, device.consent_status, state, now)


@router.get("/{device_id}/schedules", response_model=list[ScheduleOut])
def list_device_schedules(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ScheduleOut]:
    device = owned_device(db, device_id, current_user)
    return get_assigned_schedules(db, device.id)


@router.put("/{device_id}/override", response_model=DeviceStateOut)
def put_override(
    device_id: str,
    payload: OverrideIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DeviceStateOut:
    device = owned_device(db, device_id, current_user)
    now = datetime.now(timezone.utc)
    if payload.expires_at is not None and payload.expires_at <= now:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="expires_at must be in the future")
    set_override(
        db,
        device,
        mode=payload.mode,
        now=now,
        actor=current_user,
        restriction_level=payload.restriction_level,
        reason=payload.reason,
        expires_at=payload.expires_at,
    )
    state, _ = reconcile_device(db, device, now, actor=current_user)
    db.commit()
    return DeviceStateOut.build(device.id, device.consent_status, state, now)


@router.delete("/{device_id}/override", response_model=DeviceStateOut)
def delete_override(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DeviceStateOut:
    device = owned_device(db, device_id, current_user)
    if not clear_override(db, device, actor=current_user):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No override set for this device")
    now = datetime.now(timezone.utc)
    state, _ = reconcile_device(db, device, now, actor=current_user)
    db.commit()
    return DeviceStateOut.build(device.id, device.consent_status, state, now)


@router.get("/{device_id}/activity", response_model=list[ActivityLogOut])
def list_device_activity(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ActivityLogOut]:
    device = owned_device(db, device_id, current_user)
    query = (
        select(ActivityLog)
        .where(ActivityLog.device_id == device.id)
        .order_by(ActivityLog.created_at.desc())
        .limit(200)
    )
    return list(db.execute(query).scalars())


@router.get("/{device_id}/network", response_model=NetworkReportOut)
def get_network_report(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> NetworkReportOut:
    device = owned_device(db, device_id, current_user)
    report = db.execute(
        select(NetworkControlReport).where(NetworkControlReport.device_id == device.id)
    ).scalar_one_or_none()
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No network report received yet")
    return report
