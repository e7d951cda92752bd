from datetime import datetime, timedelta, timezone

import pytest

from curfew.core.exceptions import InvalidStageTransition
from curfew.models.device import ConsentStatus
from curfew.services.companion_stage import CompanionStage, StageEvent, advance, stage_for

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def test_happy_path_requires_every_explicit_step():
    stage = CompanionStage.unregistered
    for event, expected in [
        (StageEvent.identity_submitted, CompanionStage.identity_pending),
        (StageEvent.identity_verified, CompanionStage.consent_pending),
        (StageEvent.consent_approved, CompanionStage.approved),
        (StageEvent.heartbeat_accepted, CompanionStage.active),
        (StageEvent.heartbeat_accepted, CompanionStage.active),
    ]:
        stage = advance(stage, event)
        assert stage == expected


def test_rejected_identity_returns_to_unregistered():
    assert advance(CompanionStage.identity_pending, StageEvent.identity_rejected) == CompanionStage.unregistered


def test_denied_consent_is_terminal_until_reregistration():
    stage = advance(CompanionStage.consent_pending, StageEvent.consent_denied)
    assert stage == CompanionStage.denied
    with pytest.raises(InvalidStageTransition):
        advance(stage, StageEvent.heartbeat_accepted)
    assert advance(stage, StageEvent.registration_reset) == CompanionStage.identity_pending


@pytest.mark.parametrize(
    ("stage", "event"),
    [
        (CompanionStage.unregistered, StageEvent.consent_approved),
        (CompanionStage.unregistered, StageEvent.heartbeat_accepted),
        (CompanionStage.identity_pending, StageEvent.consent_approved),
        (CompanionStage.consent_pending, StageEvent.heartbeat_accepted),
        (CompanionStage.approved, StageEvent.consent_denied),
        (CompanionStage.unregistered, StageEvent.registration_reset),
    ],
)
def test_implicit_advancement_is_rejected(stage, event):
    with pytest.raises(InvalidStageTransition) as exc_info:
        advance(stage, event)
    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {"stage": stage.value, "event": event.value}


def test_stage_for_reflects_consent_and_liveness():
    assert stage_for(ConsentStatus.pending, None, NOW, 120) == CompanionStage.consent_pending
    assert stage_for(ConsentStatus.denied, NOW, NOW, 120) == CompanionStage.denied
    assert stage_for(ConsentStatus.approved, None, NOW, 120) == CompanionStage.approved
    assert stage_for(ConsentStatus.approved, NOW - timedelta(seconds=30), NOW, 120) == CompanionStage.active
    assert stage_for(ConsentStatus.approved, NOW - timedelta(seconds=300), NOW, 120) == CompanionStage.approved


def test_stage_for_accepts_naive_stored_timestamps():
    last_seen = (NOW - timedelta(seconds=10)).replace(tzinfo=None)
    assert stage_for(ConsentStatus.approved, last_seen, NOW, 120) == CompanionStage.active
