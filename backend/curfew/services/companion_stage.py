from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from curfew.core.exceptions import InvalidStageTransition
from curfew.models.device import ConsentStatus


class CompanionStage(str, Enum):
    unregistered = "unregistered"
    identity_pending = "identity_pending"
    consent_pending = "consent_pending"
    approved = "approved"
    denied = "denied"
    active = "active"


class StageEvent(str, Enum):
    identity_submitted = "identity_submitted"
    identity_verified = "identity_verified"
    identity_rejected = "identity_rejected"
    consent_approved = "consent_approved"
    consent_denied = "consent_denied"
    heartbeat_accepted = "heartbeat_accepted"
    registration_reset = "registration_reset"


TRANSITIONS: dict[tuple[CompanionStage, StageEvent], CompanionStage] = {
    (CompanionStage.unregistered, StageEvent.identity_submitted): CompanionStage.identity_pending,
    (CompanionStage.identity_pending, StageEvent.identity_verified): CompanionStage.consent_pending,
    (CompanionStage.identity_pending, StageEvent.identity_rejected): CompanionStage.unregistered,
    (CompanionStage.consent_pending, StageEvent.consent_approved): CompanionStage.approved,
    (CompanionStage.consent_pending, StageEvent.consent_denied): CompanionStage.denied,
    (CompanionStage.approved, StageEvent.heartbeat_accepted): CompanionStage.active,
    (CompanionStage.active, StageEvent.heartbeat_accepted): CompanionStage.active,
}
for _stage in (
    CompanionStage.consent_pending,
    CompanionStage.approved,
    CompanionStage.denied,
    CompanionStage.active,
):
    TRANSITIONS[(_stage, StageEvent.registration_reset)] = CompanionStage.identity_pending


def advance(stage: CompanionStage, event: StageEvent) -> CompanionStage:
    try:
        return TRANSITIONS[(stage, event)]
    except KeyError:
        raise InvalidStageTransition(stage.value, event.value) from None


def stage_for(
    consent_status: ConsentStatus,
    last_seen: datetime | None,
    now: datetime,
    stale_after_seconds: int,
) -> CompanionStage:
    """Server-side view of a verified device's stage."""
    status = ConsentStatus(consent_status)
    if status == ConsentStatus.pending:
        return CompanionStage.consent_pending
    if status == ConsentStatus.denied:
        return CompanionStage.denied
    if last_seen is not None:
        if last_seen.tzinfo is None:
            last_seen = last_seen.replace(tzinfo=timezone.utc)
        if now - last_seen <= timedelta(seconds=stale_after_seconds):
            return CompanionStage.active
    return CompanionStage.approved
