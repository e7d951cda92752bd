"""Single implementation of "is this schedule in force right now".

Every caller (device state resolution, dashboard listings, the companion status
check) goes through :func:`is_schedule_active`; nothing else in the code base
compares clock times against schedule windows.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
import json
import logging
import re
from typing import Any, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")
_WEEKDAY_LOOKUP = {name: index for index, name in enumerate(WEEKDAY_NAMES)}
_WEEKDAY_LOOKUP.update({name[:3]: index for index, name in enumerate(WEEKDAY_NAMES)})

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::[0-5]\d)?$")


@dataclass(frozen=True)
class NumericDays:
    days: tuple[int, ...]


@dataclass(frozen=True)
class NamedDays:
    names: tuple[str, ...]


DaySet = Union[NumericDays, NamedDays]


@dataclass(frozen=True)
class ScheduleSnapshot:
    """Immutable view of a schedule record, as consumed by the evaluator."""

    id: str
    start_time: str
    end_time: str
    days_of_week: Any = field(default_factory=tuple)
    is_active: bool = True
    network_restriction_level: int = 2
    restrict_wifi: bool = False
    restrict_mobile_data: bool = False
    allow_emergency_access: bool = True
    name: str = ""

    @classmethod
    def from_model(cls, schedule) -> "ScheduleSnapshot":
        days = schedule.days_of_week
        if isinstance(days, list):
            days = tuple(days)
        return cls(
            id=schedule.id,
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            days_of_week=days,
            is_active=bool(schedule.is_active),
            network_restriction_level=schedule.network_restriction_level,
            restrict_wifi=bool(schedule.restrict_wifi),
            restrict_mobile_data=bool(schedule.restrict_mobile_data),
            allow_emergency_access=bool(schedule.allow_emergency_access),
            name=schedule.name,
        )


def _day_index(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 <= value <= 6 else None
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number if 0 <= number <= 6 else None
    return None


def parse_day_set(raw: Any) -> DaySet | None:
    """Classify stored day data as numeric or named weekdays.

    Returns ``None`` for anything that is not cleanly one or the other; mixed
    encodings are rejected rather than guessed at.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw or "[]")
        except (json.JSONDecodeError, TypeError):
            return None
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return None
    items = list(raw)
    if not items:
        return NumericDays(days=())

    numeric = [_day_index(item) for item in items]
    if all(index is not None for index in numeric):
        return NumericDays(days=tuple(sorted(set(numeric))))

    if all(isinstance(item, str) for item in items):
        names = [item.strip().lower() for item in items]
        if all(name in _WEEKDAY_LOOKUP for name in names):
            return NamedDays(names=tuple(names))
    return None


def normalize_day_set(day_set: DaySet | None) -> frozenset[int]:
    if day_set is None:
        return frozenset()
    if isinstance(day_set, NumericDays):
        return frozenset(day_set.days)
    return frozenset(_WEEKDAY_LOOKUP[name] for name in day_set.names)


def canonical_days(raw: Any) -> frozenset[int]:
    """Canonical 0=Sunday..6=Saturday set; unparsable data yields no days."""
    day_set = parse_day_set(raw)
    if day_set is None:
        logger.debug("Unparsable days_of_week %r treated as no days", raw)
    return normalize_day_set(day_set)


def parse_wall_clock(value: Any) -> int | None:
    """Minutes since midnight for an ``HH:MM`` string (seconds are ignored)."""
    if not isinstance(value, str):
        return None
    match = TIME_PATTERN.match(value.strip())
    if match is None:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


@lru_cache(maxsize=512)
def resolve_zone(name: str | None) -> ZoneInfo | timezone:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.debug("Unknown time zone %r, falling back to UTC", name)
        return timezone.utc


def local_wall_clock(now: datetime, device_timezone: str | None) -> tuple[int, int]:
    """(weekday with 0=Sunday, minute of day) of ``now`` on the device's clock."""
    if now.tzinfo is None or now.utcoffset() is None:
        raise ValueError("now must be a timezone-aware instant")
    local = now.astimezone(resolve_zone(device_timezone))
    weekday = (local.weekday() + 1) % 7
    return weekday, local.hour * 60 + local.minute


def window_contains(start_minute: int, end_minute: int, minute: int) -> bool:
    if start_minute <= end_minute:
        return start_minute <= minute <= end_minute
    # Overnight span wraps past midnight.
    return minute >= start_minute or minute <= end_minute


def is_schedule_active(schedule: ScheduleSnapshot, now: datetime, device_timezone: str | None) -> bool:
    if not schedule.is_active:
        return False

    start = parse_wall_clock(schedule.start_time)
    end = parse_wall_clock(schedule.end_time)
    if start is None or end is None:
        logger.debug("Schedule %s has malformed window %r-%r", schedule.id, schedule.start_time, schedule.end_time)
        return False

    weekday, minute = local_wall_clock(now, device_timezone)
    if weekday not in canonical_days(schedule.days_of_week):
        return False
    return window_contains(start, end, minute)
