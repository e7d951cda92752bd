from datetime import datetime, timedelta, timezone

from conftest import (
    approve_via_companion,
    create_device_via_api,
    create_schedule_via_api,
    register_and_login,
)

PHONE = "+919800000001"
FINGERPRINT = "FP-HANDSET-0001"


def _identity(**extra) -> dict:
    payload = {"phone_number": PHONE, "fingerprint": FINGERPRINT}
    payload.update(extra)
    return payload


def _actions(client, headers, device_id: str) -> list[str]:
    response = client.get(f"/api/devices/{device_id}/activity", headers=headers)
    assert response.status_code == 200
    return [item["action"] for item in response.json()]


def _managed_device(client, headers, **schedule_fields) -> dict:
    device = create_device_via_api(client, headers, phone=PHONE)
    schedule = create_schedule_via_api(client, headers, **schedule_fields)
    client.put(f"/api/schedules/{schedule['id']}/devices/{device['id']}", headers=headers)
    return device


def test_attach_unknown_device(client, guardian_headers):
    response = client.post("/api/companion/attach", json=_identity())
    assert response.status_code == 404


def test_full_consent_flow(client, guardian_headers):
    device = _managed_device(client, guardian_headers)

    attach = client.post("/api/companion/attach", json=_identity())
    assert attach.status_code == 200
    body = attach.json()
    assert body["device_id"] == device["id"]
    assert body["outcome"] == "requires_consent"
    assert body["stage"] == "consent_pending"
    assert body["timezone"] == "Asia/Kolkata"
    assert body["poll"]["device_poll_seconds"] == 10
    assert "fingerprint_pinned" in _actions(client, guardian_headers, device["id"])

    early = client.post("/api/companion/heartbeat", json=_identity())
    assert early.status_code == 428
    assert early.json()["details"]["error"] == "CONSENT_REQUIRED"

    consent = approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)
    assert consent["outcome"] == "allow"
    assert consent["stage"] == "approved"
    assert consent["consent_status"] == "approved"

    again = client.post("/api/companion/consent", json=_identity(approved=True))
    assert again.status_code == 409

    heartbeat = client.post("/api/companion/heartbeat", json=_identity())
    assert heartbeat.status_code == 200
    beat = heartbeat.json()
    assert beat["stage"] == "active"
    assert beat["state"]["is_locked"] is True
    assert beat["state"]["restriction_level"] == 2
    assert beat["use_server_time"] is False

    guardian_view = client.get(f"/api/devices/{device['id']}", headers=guardian_headers).json()
    assert guardian_view["is_locked"] is True
    assert guardian_view["last_seen"] is not None


def test_identity_mismatch_is_denied_and_audited(client, guardian_headers):
    device = _managed_device(client, guardian_headers)
    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)

    response = client.post(
        "/api/companion/attach",
        json={"phone_number": "+919811111111", "fingerprint": "FP-SOMEONE-ELSE", "device_id": device["id"]},
    )
    assert response.status_code == 403
    payload = response.json()
    assert payload["details"] == {"error": "IDENTITY_MISMATCH"}
    assert "phone" not in payload["message"].lower()
    assert "fingerprint" not in payload["message"].lower()

    admin = register_and_login(client, email="admin@example.com", role="admin")
    events = client.get("/api/activity/security", headers=admin).json()
    mismatch = [item for item in events if item["action"] == "identity_mismatch"]
    assert len(mismatch) == 1
    assert mismatch[0]["device_id"] == device["id"]
    assert "FP-SOMEONE-ELSE" not in str(mismatch[0]["details"])


def test_matching_phone_with_new_fingerprint_is_allowed_without_repin(client, guardian_headers):
    device = _managed_device(client, guardian_headers)
    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)

    response = client.post("/api/companion/heartbeat", json=_identity(fingerprint="FP-NEW-HANDSET"))
    assert response.status_code == 200
    assert "fingerprint_mismatch_phone_verified" in _actions(client, guardian_headers, device["id"])

    # The old fingerprint is still the pinned one.
    by_old_fingerprint = client.post(
        "/api/companion/attach",
        json={"phone_number": "+919811111111", "fingerprint": FINGERPRINT, "device_id": device["id"]},
    )
    assert by_old_fingerprint.status_code == 200
    by_new_fingerprint = client.post(
        "/api/companion/attach",
        json={"phone_number": "+919811111111", "fingerprint": "FP-NEW-HANDSET", "device_id": device["id"]},
    )
    assert by_new_fingerprint.status_code == 403


def test_reregistration_repins_after_consent(client, guardian_headers):
    device = _managed_device(client, guardian_headers)
    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)

    register = client.post("/api/companion/register", json=_identity(fingerprint="FP-NEW-HANDSET"))
    assert register.status_code == 200
    assert register.json()["outcome"] == "requires_consent"
    assert register.json()["stage"] == "consent_pending"
    assert client.post("/api/companion/heartbeat", json=_identity()).status_code == 428

    approve_via_companion(client, phone=PHONE, fingerprint="FP-NEW-HANDSET")
    actions = _actions(client, guardian_headers, device["id"])
    assert "fingerprint_repin_requested" in actions
    assert "fingerprint_repinned" in actions

    repinned = client.post(
        "/api/companion/attach",
        json={"phone_number": "+919811111111", "fingerprint": "FP-NEW-HANDSET", "device_id": device["id"]},
    )
    assert repinned.status_code == 200
    assert repinned.json()["outcome"] == "allow"


def test_denied_consent_blocks_control(client, guardian_headers):
    _managed_device(client, guardian_headers)
    denied = client.post("/api/companion/consent", json=_identity(approved=False))
    assert denied.status_code == 200
    assert denied.json()["outcome"] == "deny"
    assert denied.json()["reason"] == "CONSENT_DENIED"
    assert denied.json()["stage"] == "denied"

    heartbeat = client.post("/api/companion/heartbeat", json=_identity())
    assert heartbeat.status_code == 403
    assert heartbeat.json()["details"]["error"] == "CONSENT_DENIED"

    state = client.post("/api/companion/state", json=_identity())
    assert state.status_code == 200
    assert state.json()["stage"] == "denied"
    assert state.json()["state"]["is_locked"] is False


def test_clock_drift_switches_to_server_time(client, guardian_headers):
    device = _managed_device(client, guardian_headers)
    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)

    skewed = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    response = client.post("/api/companion/heartbeat", json=_identity(device_time=skewed))
    assert response.status_code == 200
    body = response.json()
    assert body["use_server_time"] is True
    assert body["clock_drift_seconds"] > 3000
    assert "clock_drift" in _actions(client, guardian_headers, device["id"])

    in_sync = datetime.now(timezone.utc).isoformat()
    assert client.post("/api/companion/heartbeat", json=_identity(device_time=in_sync)).json()["use_server_time"] is False


def test_attach_is_rate_limited(client, guardian_headers):
    create_device_via_api(client, guardian_headers, phone=PHONE)
    for _ in range(20):
        assert client.post("/api/companion/attach", json=_identity()).status_code == 200

    limited = client.post("/api/companion/attach", json=_identity())
    assert limited.status_code == 429
    assert int(limited.headers["retry-after"]) >= 1


def test_emergency_access_granted(client, guardian_headers):
    device = _managed_device(client, guardian_headers)
    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)

    response = client.post("/api/companion/emergency-access", json=_identity())
    assert response.status_code == 200
    body = response.json()
    assert body["granted"] is True
    assert body["expires_at"] is not None
    assert body["state"]["is_locked"] is True
    assert body["state"]["lock_source"] == "schedule"
    assert body["state"]["emergency_access_active"] is True
    assert body["state"]["emergency_access_until"] is not None

    assert client.get(f"/api/devices/{device['id']}", headers=guardian_headers).json()["is_locked"] is True
    assert "emergency_access_granted" in _actions(client, guardian_headers, device["id"])


def test_emergency_access_denied_by_schedule(client, guardian_headers):
    _managed_device(client, guardian_headers, allow_emergency_access=False)
    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)

    body = client.post("/api/companion/emergency-access", json=_identity()).json()
    assert body["granted"] is False
    assert body["expires_at"] is None
    assert body["state"]["is_locked"] is True



def test_emergency_access_denied_while_guardian_lock_all(client, guardian_headers):
    device = _managed_device(client, guardian_headers)
    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)
    assert client.post("/api/dashboard/lock-all", headers=guardian_headers).status_code == 200

    body = client.post("/api/companion/emergency-access", json=_identity()).json()
    assert body["granted"] is False
    assert body["state"]["is_locked"] is True
    assert body["state"]["lock_source"] == "manual"
    assert body["state"]["emergency_access_active"] is False

    state = client.post("/api/companion/state", json=_identity()).json()["state"]
    assert state["lock_source"] == "manual"
    assert state["override"]["mode"] == "lock"
    assert "emergency_access_denied" in _actions(client, guardian_headers, device["id"])


def test_attach_reports_stage_from_stored_consent(client, guardian_headers):
    _managed_device(client, guardian_headers)
    assert client.post("/api/companion/attach", json=_identity()).json()["stage"] == "consent_pending"

    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)
    assert client.post("/api/companion/attach", json=_identity()).json()["stage"] == "approved"

    client.post("/api/companion/heartbeat", json=_identity())
    assert client.post("/api/companion/attach", json=_identity()).json()["stage"] == "active"


def test_secret_code_validation_is_audited(client, guardian_headers):
    device = _managed_device(client, guardian_headers)
    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)

    unset = client.post("/api/companion/validate-secret-code", json=_identity(secret_code="1234")).json()
    assert unset["valid"] is False

    saved = client.put("/api/auth/secret-code", json={"secret_code": "4821"}, headers=guardian_headers)
    assert saved.status_code == 200
    assert saved.json()["secret_code_set"] is True

    wrong = client.post("/api/companion/validate-secret-code", json=_identity(secret_code="0000")).json()
    assert wrong == {"device_id": device["id"], "valid": False, "message": wrong["message"]}
    right = client.post("/api/companion/validate-secret-code", json=_identity(secret_code="4821")).json()
    assert right["valid"] is True

    events = client.get(f"/api/devices/{device['id']}/activity", headers=guardian_headers).json()
    failed = [item for item in events if item["action"] == "secret_code_failed"]
    assert len(failed) == 2
    assert all(item["severity"] == "security" for item in failed)
    assert all("0000" not in str(item["details"]) for item in failed)
    assert [item["action"] for item in events].count("secret_code_validated") == 1


def test_secret_code_must_be_four_digits(client, guardian_headers):
    for code in ("123", "12345", "abcd"):
        response = client.put("/api/auth/secret-code", json={"secret_code": code}, headers=guardian_headers)
        assert response.status_code == 422
    assert client.put("/api/auth/secret-code", json={"secret_code": "1234"}).status_code in (401, 403)


def test_secret_code_attempts_are_rate_limited(client, guardian_headers):
    _managed_device(client, guardian_headers)
    client.put("/api/auth/secret-code", json={"secret_code": "4821"}, headers=guardian_headers)

    for _ in range(5):
        response = client.post("/api/companion/validate-secret-code", json=_identity(secret_code="1111"))
        assert response.status_code == 200
    limited = client.post("/api/companion/validate-secret-code", json=_identity(secret_code="4821"))
    assert limited.status_code == 429
    assert int(limited.headers["retry-after"]) >= 1


def test_device_admin_disable_request_is_logged(client, guardian_headers):
    device = _managed_device(client, guardian_headers)
    response = client.post(
        "/api/companion/request-device-admin-disable",
        json=_identity(request_type="uninstall"),
    )
    assert response.status_code == 200
    assert response.json()["accepted"] is True

    events = client.get(f"/api/devices/{device['id']}/activity", headers=guardian_headers).json()
    request = next(item for item in events if item["action"] == "device_admin_disable_requested")
    assert request["severity"] == "security"
    assert request["details"] == {"request_type": "uninstall"}

def test_network_report_is_visible_to_guardian(client, guardian_headers):
    device = _managed_device(client, guardian_headers)
    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)

    report = client.post(
        "/api/companion/network-report",
        json=_identity(
            restriction_level=2,
            wifi_enabled=False,
            mobile_data_enabled=True,
            enforcement_success=False,
            error_message="Wi-Fi toggle not permitted",
            capabilities={"wifi_toggle": False},
        ),
    )
    assert report.status_code == 200

    stored = client.get(f"/api/devices/{device['id']}/network", headers=guardian_headers)
    assert stored.status_code == 200
    assert stored.json()["enforcement_success"] is False
    assert stored.json()["capabilities"] == {"wifi_toggle": False}
    assert "network_enforcement_failed" in _actions(client, guardian_headers, device["id"])


def test_timezone_update_requires_consent(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers, phone=PHONE)
    payload = _identity(timezone="Europe/London")
    assert client.put("/api/companion/timezone", json=payload).status_code == 428

    approve_via_companion(client, phone=PHONE, fingerprint=FINGERPRINT)
    response = client.put("/api/companion/timezone", json=payload)
    assert response.status_code == 200
    assert client.get(f"/api/devices/{device['id']}", headers=guardian_headers).json()["timezone"] == "Europe/London"
    assert "timezone_changed" in _actions(client, guardian_headers, device["id"])

    assert client.put("/api/companion/timezone", json=_identity(timezone="Not/AZone")).status_code == 422
