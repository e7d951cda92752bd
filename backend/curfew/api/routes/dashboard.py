from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import AwareDatetime
from sqlalchemy.orm import Session

from curfew.api.deps import get_current_user, get_db
from curfew.models.device import Device
from curfew.models.lock_override import OverrideMode
from curfew.models.user import User
from curfew.schemas.state import (
    BulkOverrideIn,
    ClearedOut,
    DashboardSummaryOut,
    DeviceStateOut,
    PollHintsOut,
    ReconcileOut,
)
from curfew.services.lock_state import ComposedDeviceState
from curfew.services.overrides import apply_to_all, clear_all
from curfew.services.reconciliation import dashboard_summary, poll_hints, reconcile_guardian

router = APIRouter()


def _state_payload(db: Session, states: dict[str, ComposedDeviceState], now: datetime) -> list[DeviceStateOut]:
    payload = []
    for device_id, state in states.items():
        device = db.get(Device, device_id)
        payload.append(DeviceStateOut.build(device_id, device.consent_status, state, now))
    return payload


def _bulk_override(db: Session, user: User, mode: OverrideMode, payload: BulkOverrideIn) -> ReconcileOut:
    now = datetime.now(timezone.utc)
    if payload.expires_at is not None and payload.expires_at <= now:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="expires_at must be in the future")
    states = apply_to_all(
        db,
        user,
        mode=mode,
        now=now,
        restriction_level=payload.restriction_level,
        reason=payload.reason,
        expires_at=payload.expires_at,
    )
    db.commit()
    return ReconcileOut(
        evaluated_at=now,
        device_count=len(states),
        locked_count=sum(1 for state in states.values() if state.is_locked),
        changed_device_ids=list(states),
        devices=_state_payload(db, states, now),
        poll=PollHintsOut(**poll_hints().as_dict()),
    )


@router.post("/reconcile", response_model=ReconcileOut)
def reconcile(
    at: AwareDatetime | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ReconcileOut:
    now = at or datetime.now(timezone.utc)
    summary = reconcile_guardian(db, current_user, now)
    db.commit()
    return ReconcileOut(
        evaluated_at=summary.evaluated_at,
        device_count=summary.device_count,
        locked_count=summary.locked_count,
        changed_device_ids=list(summary.changed_device_ids),
        devices=_state_payload(db, summary.states, now),
        poll=PollHintsOut(**poll_hints().as_dict()),
    )


@router.get("/summary", response_model=DashboardSummaryOut)
def summary(
    at: AwareDatetime | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DashboardSummaryOut:
    return DashboardSummaryOut(**dashboard_summary(db, current_user, at or datetime.now(timezone.utc)))


@router.post("/lock-all", response_model=ReconcileOut)
def lock_all(
    payload: BulkOverrideIn | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ReconcileOut:
    return _bulk_override(db, current_user, OverrideMode.lock, payload or BulkOverrideIn())


@router.post("/unlock-all", response_model=ReconcileOut)
def unlock_all(
    payload: BulkOverrideIn | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ReconcileOut:
    return _bulk_override(db, current_user, OverrideMode.unlock, payload or BulkOverrideIn())


@router.delete("/overrides", response_model=ClearedOut)
def delete_overrides(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ClearedOut:
    removed = clear_all(db, current_user, datetime.now(timezone.utc))
    db.commit()
    return ClearedOut(removed=removed)
