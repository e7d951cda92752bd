from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from curfew.core.config import get_settings
from curfew.models.device import ConsentStatus, LockSource
from curfew.services.phone_numbers import canonical_phone, is_known_timezone


def normalize_phone(value: str) -> str:
    canonical = canonical_phone(value, get_settings().default_country_code)
    if len(canonical) < 8:
        raise ValueError("phone_number must be a valid phone number")
    return canonical


def validate_timezone_name(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    if not is_known_timezone(stripped):
        raise ValueError("timezone must be an IANA time zone name")
    return stripped


class DeviceCreate(BaseModel):
    child_id: str = Field(min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=200)
    phone_number: str = Field(min_length=3, max_length=32)
    timezone: str | None = Field(default=None, max_length=64)

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        return normalize_phone(value)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        return validate_timezone_name(value)


class DeviceUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    phone_number: str | None = Field(default=None, min_length=3, max_length=32)
    timezone: str | None = Field(default=None, max_length=64)
    is_active: bool | None = None

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_phone(value)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        return validate_timezone_name(value)


class DeviceOut(BaseModel):
    id: str
    child_id: str
    name: str
    phone_number: str
    timezone: str
    is_active: bool
    consent_status: ConsentStatus
    consent_updated_at: datetime | None = None
    last_seen: datetime | None = None
    is_locked: bool
    restriction_level: int
    lock_source: LockSource
    state_computed_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
