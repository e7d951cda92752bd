"""Identity and consent gate for managed-device (companion) calls.

Matching is disjunctive: a phone match, a fingerprint match, or an unpinned
stored fingerprint is enough. Only a failed phone match combined with a pinned,
disagreeing fingerprint is a mismatch. Consent is checked after identity and
has its own outcome so callers can prompt instead of failing.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
from typing import Iterable

from sqlalchemy.orm import Session

from curfew.core.config import get_settings
from curfew.core.exceptions import (
    ConsentAlreadyRecordedError,
    ConsentDeniedError,
    ConsentRequiredError,
    IdentityMismatchError,
    ResourceNotFoundError,
)
from curfew.models.device import ConsentStatus, Device
from curfew.services.audit import log_activity, log_security_event
from curfew.services.phone_numbers import is_placeholder_fingerprint, mask_identifier, phones_match
from curfew.services.storage import get_device, get_device_by_phone_or_fingerprint

logger = logging.getLogger(__name__)
settings = get_settings()


class GateOutcome(str, Enum):
    allow = "allow"
    deny = "deny"
    requires_consent = "requires_consent"


class DenyReason(str, Enum):
    identity_mismatch = "IDENTITY_MISMATCH"
    consent_denied = "CONSENT_DENIED"


@dataclass(frozen=True)
class IdentityClaim:
    phone_number: str
    fingerprint: str | None = None


@dataclass(frozen=True)
class StoredIdentity:
    device_id: str
    phone_number: str
    fingerprint: str | None
    consent_status: ConsentStatus

    @classmethod
    def from_model(cls, device: Device) -> "StoredIdentity":
        return cls(
            device_id=device.id,
            phone_number=device.phone_number,
            fingerprint=device.fingerprint,
            consent_status=ConsentStatus(device.consent_status),
        )


@dataclass(frozen=True)
class GateResult:
    outcome: GateOutcome
    device_id: str
    reason: DenyReason | None = None
    phone_matched: bool = False
    fingerprint_matched: bool = False
    # First trusted claim for a device with no usable stored fingerprint.
    should_pin: bool = False
    # Phone verified but the handset presented a different pinned fingerprint.
    fingerprint_conflict: bool = False

    @property
    def identity_verified(self) -> bool:
        return self.reason != DenyReason.identity_mismatch

    @property
    def allowed(self) -> bool:
        return self.outcome == GateOutcome.allow


def authorize(
    claim: IdentityClaim,
    stored: StoredIdentity,
    *,
    default_country_code: str,
    placeholder_prefixes: Iterable[str],
) -> GateResult:
    placeholder_prefixes = tuple(placeholder_prefixes)
    stored_pinned = not is_placeholder_fingerprint(stored.fingerprint, placeholder_prefixes)
    claim_usable = not is_placeholder_fingerprint(claim.fingerprint, placeholder_prefixes)

    phone_matched = phones_match(claim.phone_number, stored.phone_number, default_country_code)
    fingerprint_matched = stored_pinned and claim_usable and claim.fingerprint == stored.fingerprint

    if not (phone_matched or fingerprint_matched or not stored_pinned):
        return GateResult(
            outcome=GateOutcome.deny,
            device_id=stored.device_id,
            reason=DenyReason.identity_mismatch,
        )

    common = dict(
        device_id=stored.device_id,
        phone_matched=phone_matched,
        fingerprint_matched=fingerprint_matched,
        should_pin=not stored_pinned and claim_usable,
        fingerprint_conflict=stored_pinned and claim_usable and not fingerprint_matched,
    )
    if stored.consent_status == ConsentStatus.approved:
        return GateResult(outcome=GateOutcome.allow, **common)
    if stored.consent_status == ConsentStatus.denied:
        return GateResult(outcome=GateOutcome.deny, reason=DenyReason.consent_denied, **common)
    return GateResult(outcome=GateOutcome.requires_consent, **common)


def gate_result_for(device: Device, claim: IdentityClaim) -> GateResult:
    """:func:`authorize` against a stored device using the configured matching rules."""
    return authorize(
        claim,
        StoredIdentity.from_model(device),
        default_country_code=settings.default_country_code,
        placeholder_prefixes=settings.placeholder_fingerprint_prefixes,
    )


def _masked_identities(claim: IdentityClaim, device: Device) -> dict:
    return {
        "claimed_phone": mask_identifier(claim.phone_number),
        "stored_phone": mask_identifier(device.phone_number),
        "claimed_fingerprint": mask_identifier(claim.fingerprint),
        "stored_fingerprint": mask_identifier(device.fingerprint),
    }


def authorize_attach(db: Session, claim: IdentityClaim, *, device_id: str | None = None) -> GateResult:
    """Look up the claimed device, run :func:`authorize` and record the side effects.

    Mismatches are audited; a first trusted claim pins the fingerprint. The
    caller commits.
    """
    if device_id is not None:
        device = get_device(db, device_id)
    else:
        device = get_device_by_phone_or_fingerprint(db, claim.phone_number, claim.fingerprint)
        if device is None:
            logger.info("Attach for unknown device phone=%s", mask_identifier(claim.phone_number))
            raise ResourceNotFoundError("Device", mask_identifier(claim.phone_number) or "unknown")

    result = gate_result_for(device, claim)

    if not result.identity_verified:
        log_security_event(
            db,
            action="identity_mismatch",
            device_id=device.id,
            description="Identity claim matched neither phone number nor pinned fingerprint",
            details=_masked_identities(claim, device),
        )
        return result

    if result.fingerprint_conflict:
        log_security_event(
            db,
            action="fingerprint_mismatch_phone_verified",
            device_id=device.id,
            description="Phone number verified with a different fingerprint; pinned fingerprint kept",
            details=_masked_identities(claim, device),
        )
    elif result.should_pin:
        device.fingerprint = claim.fingerprint
        log_security_event(
            db,
            action="fingerprint_pinned",
            device_id=device.id,
            description="Fingerprint pinned on first attach",
            details={"fingerprint": mask_identifier(claim.fingerprint)},
        )
    return result


def require_identity(result: GateResult) -> None:
    if not result.identity_verified:
        raise IdentityMismatchError()


def require_control(result: GateResult) -> None:
    """Raise unless the device may be controlled remotely."""
    require_identity(result)
    if result.outcome == GateOutcome.requires_consent:
        raise ConsentRequiredError(result.device_id)
    if result.outcome == GateOutcome.deny:
        raise ConsentDeniedError(result.device_id)


def register_device_identity(db: Session, device: Device, claim: IdentityClaim, now: datetime) -> Device:
    """Explicit re-registration from the handset.

    Consent goes back to pending. A new fingerprint is parked until the person
    holding the device approves again; it is never pinned silently.
    """
    prefixes = settings.placeholder_fingerprint_prefixes
    claim_usable = not is_placeholder_fingerprint(claim.fingerprint, prefixes)
    stored_pinned = not is_placeholder_fingerprint(device.fingerprint, prefixes)

    if claim_usable and not stored_pinned:
        device.fingerprint = claim.fingerprint
        device.pending_fingerprint = None
        log_security_event(
            db,
            action="fingerprint_pinned",
            device_id=device.id,
            description="Fingerprint pinned on registration",
            details={"fingerprint": mask_identifier(claim.fingerprint)},
        )
    elif claim_usable and claim.fingerprint != device.fingerprint:
        device.pending_fingerprint = claim.fingerprint
        log_security_event(
            db,
            action="fingerprint_repin_requested",
            device_id=device.id,
            description="Registration presented a new fingerprint; awaiting consent",
            details=_masked_identities(claim, device),
        )
    else:
        device.pending_fingerprint = None

    previous = ConsentStatus(device.consent_status)
    device.consent_status = ConsentStatus.pending
    device.consent_updated_at = now
    log_activity(
        db,
        action="device_registered",
        device_id=device.id,
        description="Companion registration received",
        details={"previous_consent_status": previous.value},
    )
    logger.info("Device %s re-registered, consent reset from %s", device.id, previous.value)
    return device


def record_consent(db: Session, device: Device, *, approved: bool, now: datetime) -> Device:
    """One-shot pending -> approved/denied decision made on the handset."""
    current = ConsentStatus(device.consent_status)
    if current != ConsentStatus.pending:
        raise ConsentAlreadyRecordedError(device.id, current.value)

    device.consent_status = ConsentStatus.approved if approved else ConsentStatus.denied
    device.consent_updated_at = now

    if device.pending_fingerprint:
        if approved:
            previous_fingerprint = device.fingerprint
            device.fingerprint = device.pending_fingerprint
            log_security_event(
                db,
                action="fingerprint_repinned",
                device_id=device.id,
                description="Fingerprint re-pinned after consent",
                details={
                    "previous_fingerprint": mask_identifier(previous_fingerprint),
                    "fingerprint": mask_identifier(device.fingerprint),
                },
            )
        device.pending_fingerprint = None

    action = "consent_approved" if approved else "consent_denied"
    log_activity(db, action=action, device_id=device.id, description=f"Consent {device.consent_status.value}")
    logger.info("Device %s consent %s", device.id, device.consent_status.value)
    return device
