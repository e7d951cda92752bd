from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Iterable

from curfew.core.exceptions import ScheduleValidationError
from curfew.models.device import ConsentStatus, LockSource
from curfew.models.lock_override import OverrideMode
from curfew.models.schedule import RestrictionLevel
from curfew.services.schedule_evaluator import ScheduleSnapshot, is_schedule_active

VALID_LEVELS = frozenset(int(level) for level in RestrictionLevel)


@dataclass(frozen=True)
class DeviceSnapshot:
    id: str
    timezone: str | None
    consent_status: ConsentStatus

    @classmethod
    def from_model(cls, device) -> "DeviceSnapshot":
        return cls(id=device.id, timezone=device.timezone, consent_status=ConsentStatus(device.consent_status))


@dataclass(frozen=True)
class EffectiveDeviceState:
    is_locked: bool
    restriction_level: int
    restrict_wifi: bool
    restrict_mobile_data: bool
    emergency_access_allowed: bool
    active_schedule_ids: tuple[str, ...]

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["active_schedule_ids"] = list(self.active_schedule_ids)
        return payload


UNRESTRICTED_STATE = EffectiveDeviceState(
    is_locked=False,
    restriction_level=int(RestrictionLevel.none),
    restrict_wifi=False,
    restrict_mobile_data=False,
    emergency_access_allowed=True,
    active_schedule_ids=(),
)


@dataclass(frozen=True)
class OverrideSnapshot:
    mode: OverrideMode
    restriction_level: int
    expires_at: datetime | None = None

    @classmethod
    def from_model(cls, override) -> "OverrideSnapshot":
        return cls(
            mode=OverrideMode(override.mode),
            restriction_level=override.restriction_level,
            expires_at=override.expires_at,
        )

    def is_effective(self, now: datetime) -> bool:
        if self.expires_at is None:
            return True
        return now < as_utc(self.expires_at)


def as_utc(value: datetime) -> datetime:
    # SQLite drops offsets; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class ComposedDeviceState:
    """Schedule-derived state with the manual override layer applied on top.

    ``schedule_state`` and ``override`` are both kept so either signal can be
    audited on its own. ``emergency_access_active`` marks a time-boxed grant of
    limited access while the device stays locked; it never clears the lock.
    """

    schedule_state: EffectiveDeviceState
    override: OverrideSnapshot | None
    override_applied: bool
    is_locked: bool
    restriction_level: int
    restrict_wifi: bool
    restrict_mobile_data: bool
    emergency_access_allowed: bool
    lock_source: LockSource
    emergency_access_active: bool = False
    emergency_access_until: datetime | None = None


def _checked_level(schedule: ScheduleSnapshot) -> int:
    level = schedule.network_restriction_level
    if isinstance(level, bool) or not isinstance(level, int) or level not in VALID_LEVELS:
        raise ScheduleValidationError(
            f"Schedule {schedule.id} has an invalid network restriction level",
            details={"schedule_id": schedule.id, "network_restriction_level": level},
        )
    return level


def resolve_device_state(
    device: DeviceSnapshot,
    schedules: Iterable[ScheduleSnapshot],
    now: datetime,
) -> EffectiveDeviceState:
    """Combine every schedule assigned to ``device`` into one effective state.

    Most restrictive wins: the highest level, OR of the network flags, AND of
    emergency access. A device whose consent is not approved cannot be
    controlled and always resolves to the unrestricted state. The result is
    computed in full before it is returned; nothing is applied partially.
    """
    schedules = tuple(schedules)
    if device.consent_status != ConsentStatus.approved:
        return UNRESTRICTED_STATE

    active = [schedule for schedule in schedules if is_schedule_active(schedule, now, device.timezone)]
    if not active:
        return UNRESTRICTED_STATE

    levels = [_checked_level(schedule) for schedule in active]
    return EffectiveDeviceState(
        is_locked=True,
        restriction_level=max(levels),
        restrict_wifi=any(schedule.restrict_wifi for schedule in active),
        restrict_mobile_data=any(schedule.restrict_mobile_data for schedule in active),
        emergency_access_allowed=all(schedule.allow_emergency_access for schedule in active),
        active_schedule_ids=tuple(sorted({schedule.id for schedule in active})),
    )


def compose_with_override(
    state: EffectiveDeviceState,
    override: OverrideSnapshot | None,
    now: datetime,
    consent_status: ConsentStatus,
    emergency_until: datetime | None = None,
) -> ComposedDeviceState:
    """Apply the manual lock/unlock layer after schedule resolution.

    An effective override wins over the schedule-derived state; consent still
    gates everything, so an unapproved device stays unrestricted. An emergency
    grant only counts against a schedule lock that allows it; a guardian lock
    override shuts emergency access off entirely.
    """
    effective = override if override is not None and override.is_effective(now) else None

    if consent_status != ConsentStatus.approved or effective is None:
        emergency_active = (
            consent_status == ConsentStatus.approved
            and state.is_locked
            and state.emergency_access_allowed
            and emergency_until is not None
            and now < as_utc(emergency_until)
        )
        return ComposedDeviceState(
            schedule_state=state,
            override=effective,
            override_applied=False,
            is_locked=state.is_locked,
            restriction_level=state.restriction_level,
            restrict_wifi=state.restrict_wifi,
            restrict_mobile_data=state.restrict_mobile_data,
            emergency_access_allowed=state.emergency_access_allowed,
            lock_source=LockSource.schedule if state.is_locked else LockSource.none,
            emergency_access_active=emergency_active,
            emergency_access_until=as_utc(emergency_until) if emergency_active else None,
        )

    if effective.mode == OverrideMode.unlock:
        return ComposedDeviceState(
            schedule_state=state,
            override=effective,
            override_applied=True,
            is_locked=False,
            restriction_level=int(RestrictionLevel.none),
            restrict_wifi=False,
            restrict_mobile_data=False,
            emergency_access_allowed=True,
            lock_source=LockSource.manual,
        )

    return ComposedDeviceState(
        schedule_state=state,
        override=effective,
        override_applied=True,
        is_locked=True,
        restriction_level=max(state.restriction_level, effective.restriction_level),
        restrict_wifi=state.restrict_wifi,
        restrict_mobile_data=state.restrict_mobile_data,
        emergency_access_allowed=False,
        lock_source=LockSource.manual,
    )
