from conftest import approve_via_companion, create_device_via_api, create_schedule_via_api, register_and_login


def test_create_device_normalizes_phone_and_infers_timezone(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers, phone="98000 00001")
    assert device["phone_number"] == "+919800000001"
    assert device["timezone"] == "Asia/Kolkata"
    assert device["consent_status"] == "pending"
    assert device["is_locked"] is False

    explicit = create_device_via_api(client, guardian_headers, phone="+447700900123", timezone_name="Europe/Paris")
    assert explicit["timezone"] == "Europe/Paris"


def test_create_device_rejects_bad_input(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers)

    duplicate = client.post(
        "/api/devices/",
        json={"child_id": device["child_id"], "name": "Second", "phone_number": "9800000001"},
        headers=guardian_headers,
    )
    assert duplicate.status_code == 409

    bad_zone = client.post(
        "/api/devices/",
        json={"child_id": device["child_id"], "name": "Third", "phone_number": "+919800000002", "timezone": "Mars/Base"},
        headers=guardian_headers,
    )
    assert bad_zone.status_code == 422


def test_state_is_evaluated_in_device_zone(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers)
    schedule = create_schedule_via_api(client, guardian_headers, name="Bedtime", start_time="22:00", end_time="06:30")
    assigned = client.put(f"/api/schedules/{schedule['id']}/devices/{device['id']}", headers=guardian_headers)
    assert assigned.status_code == 200

    pending = client.get(
        f"/api/devices/{device['id']}/state",
        params={"at": "2026-10-19T17:00:00Z"},
        headers=guardian_headers,
    )
    assert pending.status_code == 200
    assert pending.json()["is_locked"] is False
    assert pending.json()["consent_status"] == "pending"

    approve_via_companion(client)

    # 17:00 UTC is 22:30 in Kolkata.
    night = client.get(
        f"/api/devices/{device['id']}/state",
        params={"at": "2026-10-19T17:00:00Z"},
        headers=guardian_headers,
    ).json()
    assert night["is_locked"] is True
    assert night["restriction_level"] == 2
    assert night["lock_source"] == "schedule"
    assert night["active_schedule_ids"] == [schedule["id"]]

    morning = client.get(
        f"/api/devices/{device['id']}/state",
        params={"at": "2026-10-19T06:00:00Z"},
        headers=guardian_headers,
    ).json()
    assert morning["is_locked"] is False
    assert morning["active_schedule_ids"] == []


def test_state_rejects_naive_timestamp(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers)
    response = client.get(
        f"/api/devices/{device['id']}/state",
        params={"at": "2026-10-19T17:00:00"},
        headers=guardian_headers,
    )
    assert response.status_code == 422


def test_manual_override_round_trip(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers)
    approve_via_companion(client)

    locked = client.put(
        f"/api/devices/{device['id']}/override",
        json={"mode": "lock", "restriction_level": 2, "reason": "Homework"},
        headers=guardian_headers,
    )
    assert locked.status_code == 200
    body = locked.json()
    assert body["is_locked"] is True
    assert body["restriction_level"] == 2
    assert body["lock_source"] == "manual"
    assert body["override_applied"] is True
    assert body["override"]["mode"] == "lock"

    cached = client.get(f"/api/devices/{device['id']}", headers=guardian_headers).json()
    assert cached["is_locked"] is True
    assert cached["lock_source"] == "manual"

    cleared = client.delete(f"/api/devices/{device['id']}/override", headers=guardian_headers)
    assert cleared.status_code == 200
    assert cleared.json()["override_applied"] is False
    assert client.delete(f"/api/devices/{device['id']}/override", headers=guardian_headers).status_code == 404

    actions = [item["action"] for item in client.get(f"/api/devices/{device['id']}/activity", headers=guardian_headers).json()]
    assert "override_lock" in actions
    assert "override_cleared" in actions
    assert "manual_lock" in actions


def test_override_with_past_expiry_is_rejected(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers)
    response = client.put(
        f"/api/devices/{device['id']}/override",
        json={"mode": "lock", "expires_at": "2020-01-01T00:00:00Z"},
        headers=guardian_headers,
    )
    assert response.status_code == 422


def test_override_on_pending_device_does_not_lock(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers)
    response = client.put(f"/api/devices/{device['id']}/override", json={"mode": "lock"}, headers=guardian_headers)
    assert response.status_code == 200
    assert response.json()["is_locked"] is False


def test_devices_are_scoped_to_their_guardian(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers)
    stranger = register_and_login(client, email="stranger@example.com")

    assert client.get(f"/api/devices/{device['id']}", headers=stranger).status_code == 404
    assert client.get(f"/api/devices/{device['id']}/state", headers=stranger).status_code == 404
    assert (
        client.put(f"/api/devices/{device['id']}/override", json={"mode": "lock"}, headers=stranger).status_code
        == 404
    )
    assert client.get("/api/devices/", headers=stranger).json() == []


def test_delete_device_and_child_cascade(client, guardian_headers):
    first = create_device_via_api(client, guardian_headers)
    second = create_device_via_api(client, guardian_headers, phone="+919800000002")
    schedule = create_schedule_via_api(client, guardian_headers)
    client.put(f"/api/schedules/{schedule['id']}/devices/{first['id']}", headers=guardian_headers)

    assert client.delete(f"/api/devices/{first['id']}", headers=guardian_headers).status_code == 204
    assert client.get(f"/api/devices/{first['id']}", headers=guardian_headers).status_code == 404
    assert client.get(f"/api/schedules/{schedule['id']}/devices", headers=guardian_headers).json() == []

    assert client.delete(f"/api/children/{second['child_id']}", headers=guardian_headers).status_code == 204
    assert client.get(f"/api/devices/{second['id']}", headers=guardian_headers).status_code == 404


def test_network_report_missing(client, guardian_headers):
    device = create_device_via_api(client, guardian_headers)
    assert client.get(f"/api/devices/{device['id']}/network", headers=guardian_headers).status_code == 404
