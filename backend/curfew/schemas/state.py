from datetime import datetime

from pydantic import AwareDatetime, BaseModel, Field

from curfew.models.device import ConsentStatus, LockSource
from curfew.models.lock_override import OverrideMode
from curfew.services.lock_state import ComposedDeviceState


class PollHintsOut(BaseModel):
    dashboard_poll_seconds: int
    device_poll_seconds: int
    backoff_seconds: list[int]


class ScheduleStateOut(BaseModel):
    is_locked: bool
    restriction_level: int
    restrict_wifi: bool
    restrict_mobile_data: bool
    emergency_access_allowed: bool
    active_schedule_ids: list[str]


class OverrideStateOut(BaseModel):
    mode: OverrideMode
    restriction_level: int
    expires_at: datetime | None = None


class DeviceStateOut(BaseModel):
    device_id: str
    evaluated_at: datetime
    consent_status: ConsentStatus
    is_locked: bool
    restriction_level: int
    restrict_wifi: bool
    restrict_mobile_data: bool
    emergency_access_allowed: bool
    lock_source: LockSource
    active_schedule_ids: list[str]
    override_applied: bool
    emergency_access_active: bool = False
    emergency_access_until: datetime | None = None
    schedule_state: ScheduleStateOut
    override: OverrideStateOut | None = None

    @classmethod
    def build(cls, device_id: str, consent_status: ConsentStatus, state: ComposedDeviceState, now: datetime):
        override = None
        if state.override is not None:
            override = OverrideStateOut(
                mode=state.override.mode,
                restriction_level=state.override.restriction_level,
                expires_at=state.override.expires_at,
            )
        return cls(
            device_id=device_id,
            evaluated_at=now,
            consent_status=consent_status,
            is_locked=state.is_locked,
            restriction_level=state.restriction_level,
            restrict_wifi=state.restrict_wifi,
            restrict_mobile_data=state.restrict_mobile_data,
            emergency_access_allowed=state.emergency_access_allowed,
            lock_source=state.lock_source,
            active_schedule_ids=list(state.schedule_state.active_schedule_ids),
            override_applied=state.override_applied,
            emergency_access_active=state.emergency_access_active,
            emergency_access_until=state.emergency_access_until,
            schedule_state=ScheduleStateOut(**state.schedule_state.as_dict()),
            override=override,
        )


class OverrideIn(BaseModel):
    mode: OverrideMode
    restriction_level: int | None = Field(default=None, ge=1, le=3)
    reason: str | None = Field(default=None, max_length=500)
    expires_at: AwareDatetime | None = None


class BulkOverrideIn(BaseModel):
    restriction_level: int | None = Field(default=None, ge=1, le=3)
    reason: str | None = Field(default=None, max_length=500)
    expires_at: AwareDatetime | None = None


class ReconcileOut(BaseModel):
    evaluated_at: datetime
    device_count: int
    locked_count: int
    changed_device_ids: list[str]
    devices: list[DeviceStateOut]
    poll: PollHintsOut


class DashboardSummaryOut(BaseModel):
    evaluated_at: datetime
    device_count: int
    locked_count: int
    pending_consent_count: int
    active_schedule_count: int
    stale_device_ids: list[str]
    poll: PollHintsOut


class ClearedOut(BaseModel):
    removed: int
