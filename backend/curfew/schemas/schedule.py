from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from curfew.models.schedule import RestrictionLevel
from curfew.services.schedule_evaluator import (
    TIME_PATTERN,
    WEEKDAY_NAMES,
    normalize_day_set,
    parse_day_set,
)


def _normalize_time(value: str) -> str:
    stripped = value.strip()
    if not TIME_PATTERN.match(stripped):
        raise ValueError("Time must be in HH:MM 24-hour format")
    return stripped[:5]


def _normalize_days(value: list) -> list[int]:
    day_set = parse_day_set(value)
    if day_set is None:
        raise ValueError(
            "days_of_week must be all weekday numbers (0=Sunday..6=Saturday) or all weekday names "
            f"({', '.join(WEEKDAY_NAMES)})"
        )
    return sorted(normalize_day_set(day_set))


class ScheduleBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    start_time: str
    end_time: str
    days_of_week: list[int | str] = Field(default_factory=lambda: list(range(7)), max_length=14)
    is_active: bool = True
    network_restriction_level: RestrictionLevel = RestrictionLevel.wifi_only
    restrict_wifi: bool = False
    restrict_mobile_data: bool = False
    allow_emergency_access: bool = True

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Name cannot be empty")
        return trimmed

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str) -> str:
        return _normalize_time(value)

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, value: list) -> list[int]:
        return _normalize_days(value)


class ScheduleCreate(ScheduleBase):
    pass


class ScheduleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    start_time: str | None = None
    end_time: str | None = None
    days_of_week: list[int | str] | None = Field(default=None, max_length=14)
    is_active: bool | None = None
    network_restriction_level: RestrictionLevel | None = None
    restrict_wifi: bool | None = None
    restrict_mobile_data: bool | None = None
    allow_emergency_access: bool | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_time(value)

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, value: list | None) -> list[int] | None:
        if value is None:
            return None
        return _normalize_days(value)


class ScheduleOut(BaseModel):
    id: str
    guardian_id: str
    name: str
    start_time: str
    end_time: str
    days_of_week: list
    is_active: bool
    network_restriction_level: int
    restrict_wifi: bool
    restrict_mobile_data: bool
    allow_emergency_access: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ActiveScheduleOut(ScheduleOut):
    device_ids: list[str] = Field(default_factory=list)


class AssignmentOut(BaseModel):
    device_id: str
    schedule_id: str
    created: bool
