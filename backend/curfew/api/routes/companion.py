"""Endpoints called by the companion app on the managed handset.

There is no bearer token here: every call carries the handset's identity claim
and goes through the identity and consent gate first.
"""
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from curfew.api.deps import get_db
from curfew.core.config import get_settings
from curfew.models.device import Device
from curfew.models.network_report import NetworkControlReport
from curfew.schemas.companion import (
    AdminDisableIn,
    AdminDisableOut,
    AttachOut,
    CompanionIdentity,
    CompanionStateOut,
    ConsentIn,
    EmergencyAccessOut,
    HeartbeatIn,
    HeartbeatOut,
    NetworkReportIn,
    NetworkReportOut,
    RegisterIn,
    SecretCodeCheckIn,
    SecretCodeCheckOut,
    TimezoneIn,
)
from curfew.schemas.state import DeviceStateOut, PollHintsOut
from curfew.services.audit import log_activity, log_security_event
from curfew.services.companion_stage import CompanionStage, StageEvent, advance, stage_for
from curfew.services.identity_gate import (
    GateResult,
    authorize_attach,
    gate_result_for,
    record_consent,
    register_device_identity,
    require_control,
    require_identity,
)
from curfew.services.overrides import request_emergency_access
from curfew.services.phone_numbers import timezone_from_phone
from curfew.services.rate_limit import enforce_companion_limit
from curfew.services.reconciliation import compute_device_state, poll_hints, reconcile_device
from curfew.services.secret_code import request_admin_disable, validate_secret_code
from curfew.services.storage import get_device

settings = get_settings()
router = APIRouter()
logger = logging.getLogger(__name__)


def _gate(db: Session, request: Request, scope: str, payload: CompanionIdentity) -> tuple[Device, GateResult]:
    enforce_companion_limit(request, scope, payload.phone_number)
    result = authorize_attach(db, payload.claim(), device_id=payload.device_id)
    # Audit rows and first-use pins are kept even when the call is refused below.
    db.commit()
    return get_device(db, result.device_id), result


def _current_stage(device: Device, now: datetime) -> CompanionStage:
    return stage_for(device.consent_status, device.last_seen, now, settings.heartbeat_stale_seconds)


def _poll() -> PollHintsOut:
    return PollHintsOut(**poll_hints().as_dict())


def _attach_out(device: Device, result: GateResult, stage: CompanionStage) -> AttachOut:
    return AttachOut(
        device_id=device.id,
        outcome=result.outcome,
        reason=result.reason,
        stage=stage,
        consent_status=device.consent_status,
        timezone=device.timezone,
        poll=_poll(),
    )


@router.post("/attach", response_model=AttachOut)
def attach(payload: CompanionIdentity, request: Request, db: Session = Depends(get_db)) -> AttachOut:
    device, result = _gate(db, request, "attach", payload)
    require_identity(result)
    return _attach_out(device, result, _current_stage(device, datetime.now(timezone.utc)))


@router.post("/register", response_model=AttachOut)
def register(payload: RegisterIn, request: Request, db: Session = Depends(get_db)) -> AttachOut:
    device, result = _gate(db, request, "consent", payload)
    require_identity(result)
    now = datetime.now(timezone.utc)
    stage = advance(_current_stage(device, now), StageEvent.registration_reset)
    stage = advance(stage, StageEvent.identity_verified)

    register_device_identity(db, device, payload.claim(), now)
    if payload.timezone and payload.timezone != "UTC":
        device.timezone = payload.timezone
    elif not device.timezone or device.timezone == "UTC":
        device.timezone = timezone_from_phone(device.phone_number, fallback=payload.timezone or settings.default_timezone)

    reconcile_device(db, device, now)
    db.commit()
    db.refresh(device)
    result = gate_result_for(device, payload.claim())
    return _attach_out(device, result, stage)


@router.post("/consent", response_model=AttachOut)
def consent(payload: ConsentIn, request: Request, db: Session = Depends(get_db)) -> AttachOut:
    device, result = _gate(db, request, "consent", payload)
    require_identity(result)
    now = datetime.now(timezone.utc)
    previous_stage = _current_stage(device, now)

    record_consent(db, device, approved=payload.approved, now=now)
    event = StageEvent.consent_approved if payload.approved else StageEvent.consent_denied
    stage = advance(previous_stage, event)
    reconcile_device(db, device, now)
    db.commit()
    db.refresh(device)
    result = gate_result_for(device, payload.claim())
    return _attach_out(device, result, stage)


@router.post("/heartbeat", response_model=HeartbeatOut)
def heartbeat(payload: HeartbeatIn, request: Request, db: Session = Depends(get_db)) -> HeartbeatOut:
    device, result = _gate(db, request, "heartbeat", payload)
    require_control(result)
    now = datetime.now(timezone.utc)
    stage = advance(_current_stage(device, now), StageEvent.heartbeat_accepted)

    drift_seconds = None
    use_server_time = False
    if payload.device_time is not None:
        drift_seconds = (payload.device_time - now).total_seconds()
        if abs(drift_seconds) > settings.max_clock_drift_seconds:
            use_server_time = True
            log_security_event(
                db,
                action="clock_drift",
                device_id=device.id,
                description="Device clock differs from server time",
                details={"drift_seconds": round(drift_seconds, 1)},
            )

    device.last_seen = now
    state, _ = reconcile_device(db, device, now)
    db.commit()
    return HeartbeatOut(
        device_id=device.id,
        stage=stage,
        state=DeviceStateOut.build(device.id, device.consent_status, state, now),
        poll=_poll(),
        server_time=now,
        clock_drift_seconds=drift_seconds,
        use_server_time=use_server_time,
    )


@router.post("/state", response_model=CompanionStateOut)
def device_state(payload: CompanionIdentity, request: Request, db: Session = Depends(get_db)) -> CompanionStateOut:
    device, result = _gate(db, request, "heartbeat", payload)
    require_identity(result)
    now = datetime.now(timezone.utc)
    state, _ = reconcile_device(db, device, now)
    db.commit()
    return CompanionStateOut(
        device_id=device.id,
        stage=_current_stage(device, now),
        state=DeviceStateOut.build(device.id, device.consent_status, state, now),
        poll=_poll(),
    )


@router.put("/timezone", response_model=CompanionStateOut)
def update_timezone(payload: TimezoneIn, request: Request, db: Session = Depends(get_db)) -> CompanionStateOut:
    device, result = _gate(db, request, "heartbeat", payload)
    require_control(result)
    now = datetime.now(timezone.utc)

    previous = device.timezone
    if previous != payload.timezone:
        device.timezone = payload.timezone
        log_activity(
            db,
            action="timezone_changed",
            device_id=device.id,
            description="Time zone reported by device",
            details={"previous": previous, "timezone": payload.timezone},
        )
        logger.info("Device %s time zone %s -> %s", device.id, previous, payload.timezone)
    state, _ = reconcile_device(db, device, now)
    db.commit()
    return CompanionStateOut(
        device_id=device.id,
        stage=_current_stage(device, now),
        state=DeviceStateOut.build(device.id, device.consent_status, state, now),
        poll=_poll(),
    )


@router.post("/emergency-access", response_model=EmergencyAccessOut)
def emergency_access(
    payload: CompanionIdentity,
    request: Request,
    db: Session = Depends(get_db),
) -> EmergencyAccessOut:
    device, result = _gate(db, request, "consent", payload)
    require_control(result)
    now = datetime.now(timezone.utc)
    granted, expires_at = request_emergency_access(db, device, now)
    state = compute_device_state(db, device, now)
    db.commit()
    return EmergencyAccessOut(
        device_id=device.id,
        granted=granted,
        expires_at=expires_at,
        state=DeviceStateOut.build(device.id, device.consent_status, state, now),
    )


@router.post("/validate-secret-code", response_model=SecretCodeCheckOut)
def check_secret_code(
    payload: SecretCodeCheckIn,
    request: Request,
    db: Session = Depends(get_db),
) -> SecretCodeCheckOut:
    device, result = _gate(db, request, "secret_code", payload)
    require_identity(result)
    valid = validate_secret_code(db, device, payload.secret_code)
    db.commit()
    if valid:
        message = "Secret code accepted. Device admin can be disabled."
    else:
        message = "Invalid secret code. Ask your guardian for the correct code."
    return SecretCodeCheckOut(device_id=device.id, valid=valid, message=message)


@router.post("/request-device-admin-disable", response_model=AdminDisableOut)
def admin_disable_request(
    payload: AdminDisableIn,
    request: Request,
    db: Session = Depends(get_db),
) -> AdminDisableOut:
    device, result = _gate(db, request, "consent", payload)
    require_identity(result)
    request_admin_disable(db, device, payload.request_type)
    db.commit()
    return AdminDisableOut(
        device_id=device.id,
        accepted=True,
        message="Guardian notified. Enter the secret code once it is shared.",
    )


@router.post("/network-report", response_model=NetworkReportOut)
def network_report(payload: NetworkReportIn, request: Request, db: Session = Depends(get_db)) -> NetworkReportOut:
    device, result = _gate(db, request, "heartbeat", payload)
    require_control(result)
    now = datetime.now(timezone.utc)

    report = db.execute(
        select(NetworkControlReport).where(NetworkControlReport.device_id == device.id)
    ).scalar_one_or_none()
    if report is None:
        report = NetworkControlReport(device_id=device.id)
        db.add(report)
    report.restriction_level = payload.restriction_level
    report.wifi_enabled = payload.wifi_enabled
    report.mobile_data_enabled = payload.mobile_data_enabled
    report.enforcement_success = payload.enforcement_success
    report.error_message = payload.error_message
    report.capabilities = payload.capabilities
    report.reported_at = now

    if not payload.enforcement_success:
        log_activity(
            db,
            action="network_enforcement_failed",
            device_id=device.id,
            description=payload.error_message,
            details={"restriction_level": payload.restriction_level},
        )
    db.commit()
    db.refresh(report)
    return report
