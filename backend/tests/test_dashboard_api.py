from conftest import approve_via_companion, create_device_via_api, create_schedule_via_api

NIGHT = "2026-10-19T17:00:00Z"
MORNING = "2026-10-19T06:00:00Z"


def _bedtime_device(client, headers) -> tuple[dict, dict]:
    device = create_device_via_api(client, headers)
    schedule = create_schedule_via_api(client, headers, name="Bedtime", start_time="22:00", end_time="06:30")
    client.put(f"/api/schedules/{schedule['id']}/devices/{device['id']}", headers=headers)
    approve_via_companion(client)
    return device, schedule


def test_reconcile_reports_transitions(client, guardian_headers):
    device, schedule = _bedtime_device(client, guardian_headers)

    morning = client.post("/api/dashboard/reconcile", params={"at": MORNING}, headers=guardian_headers)
    assert morning.status_code == 200
    assert morning.json()["locked_count"] == 0

    night = client.post("/api/dashboard/reconcile", params={"at": NIGHT}, headers=guardian_headers).json()
    assert night["device_count"] == 1
    assert night["locked_count"] == 1
    assert night["changed_device_ids"] == [device["id"]]
    assert night["devices"][0]["active_schedule_ids"] == [schedule["id"]]
    assert night["poll"]["dashboard_poll_seconds"] == 15

    repeat = client.post("/api/dashboard/reconcile", params={"at": NIGHT}, headers=guardian_headers).json()
    assert repeat["changed_device_ids"] == []

    activity = [item["action"] for item in client.get("/api/activity/", headers=guardian_headers).json()]
    assert "schedule_lock" in activity


def test_summary_counts(client, guardian_headers):
    device, _ = _bedtime_device(client, guardian_headers)
    create_device_via_api(client, guardian_headers, phone="+919800000002")

    summary = client.get("/api/dashboard/summary", params={"at": NIGHT}, headers=guardian_headers)
    assert summary.status_code == 200
    body = summary.json()
    assert body["device_count"] == 2
    assert body["locked_count"] == 1
    assert body["pending_consent_count"] == 1
    assert body["active_schedule_count"] == 1
    assert body["stale_device_ids"] == [device["id"]]


def test_lock_all_unlock_all_and_clear(client, guardian_headers):
    create_device_via_api(client, guardian_headers)
    create_device_via_api(client, guardian_headers, phone="+919800000002")
    approve_via_companion(client)

    locked = client.post("/api/dashboard/lock-all", json={"restriction_level": 1}, headers=guardian_headers)
    assert locked.status_code == 200
    body = locked.json()
    assert body["device_count"] == 2
    # The second device has not consented, so it stays unrestricted.
    assert body["locked_count"] == 1
    assert {item["restriction_level"] for item in body["devices"]} == {0, 1}

    unlocked = client.post("/api/dashboard/unlock-all", headers=guardian_headers).json()
    assert unlocked["locked_count"] == 0
    assert all(item["lock_source"] in {"manual", "none"} for item in unlocked["devices"])

    cleared = client.delete("/api/dashboard/overrides", headers=guardian_headers)
    assert cleared.json() == {"removed": 2}
    assert client.delete("/api/dashboard/overrides", headers=guardian_headers).json() == {"removed": 0}


def test_lock_all_rejects_past_expiry(client, guardian_headers):
    create_device_via_api(client, guardian_headers)
    response = client.post(
        "/api/dashboard/lock-all",
        json={"expires_at": "2020-01-01T00:00:00Z"},
        headers=guardian_headers,
    )
    assert response.status_code == 422


def test_dashboard_for_guardian_without_devices(client, guardian_headers):
    body = client.get("/api/dashboard/summary", headers=guardian_headers).json()
    assert body["device_count"] == 0
    assert body["stale_device_ids"] == []
    assert client.post("/api/dashboard/lock-all", headers=guardian_headers).json()["device_count"] == 0
