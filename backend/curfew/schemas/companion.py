from datetime import datetime

from pydantic import AwareDatetime, BaseModel, Field, field_validator

from curfew.models.device import ConsentStatus
from curfew.schemas.device import validate_timezone_name
from curfew.schemas.state import DeviceStateOut, PollHintsOut
from curfew.services.companion_stage import CompanionStage
from curfew.services.identity_gate import DenyReason, GateOutcome, IdentityClaim


class CompanionIdentity(BaseModel):
    phone_number: str = Field(min_length=3, max_length=32)
    fingerprint: str | None = Field(default=None, max_length=255)
    device_id: str | None = Field(default=None, max_length=36)

    def claim(self) -> IdentityClaim:
        return IdentityClaim(phone_number=self.phone_number, fingerprint=self.fingerprint)


class RegisterIn(CompanionIdentity):
    timezone: str | None = Field(default=None, max_length=64)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        return validate_timezone_name(value)


class ConsentIn(CompanionIdentity):
    approved: bool


class HeartbeatIn(CompanionIdentity):
    device_time: AwareDatetime | None = None


class TimezoneIn(CompanionIdentity):
    timezone: str = Field(min_length=1, max_length=64)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return validate_timezone_name(value)


class NetworkReportIn(CompanionIdentity):
    restriction_level: int = Field(ge=0, le=3)
    wifi_enabled: bool
    mobile_data_enabled: bool
    enforcement_success: bool
    error_message: str | None = Field(default=None, max_length=1000)
    capabilities: dict = Field(default_factory=dict)


class AttachOut(BaseModel):
    device_id: str
    outcome: GateOutcome
    reason: DenyReason | None = None
    stage: CompanionStage
    consent_status: ConsentStatus
    timezone: str
    poll: PollHintsOut


class CompanionStateOut(BaseModel):
    device_id: str
    stage: CompanionStage
    state: DeviceStateOut
    poll: PollHintsOut


class HeartbeatOut(CompanionStateOut):
    server_time: datetime
    clock_drift_seconds: float | None = None
    use_server_time: bool = False


class EmergencyAccessOut(BaseModel):
    device_id: str
    granted: bool
    expires_at: datetime | None = None
    state: DeviceStateOut


class SecretCodeCheckIn(CompanionIdentity):
    secret_code: str = Field(min_length=1, max_length=16)


class SecretCodeCheckOut(BaseModel):
    device_id: str
    valid: bool
    message: str


class AdminDisableIn(CompanionIdentity):
    request_type: str | None = Field(default=None, max_length=64)


class AdminDisableOut(BaseModel):
    device_id: str
    accepted: bool
    message: str


class NetworkReportOut(BaseModel):
    device_id: str
    restriction_level: int
    wifi_enabled: bool
    mobile_data_enabled: bool
    enforcement_success: bool
    error_message: str | None = None
    capabilities: dict
    reported_at: datetime | None = None

    model_config = {"from_attributes": True}
