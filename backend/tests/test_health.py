from curfew.api.routes import health


def test_health_endpoints(client):
    assert client.get("/api/health").json() == {"status": "ok"}

    ready = client.get("/api/health/ready")
    assert ready.status_code == 200
    payload = ready.json()
    assert payload["status"] == "ok"
    assert payload["database"]["ok"] is True
    assert payload["database"]["schema_ok"] is True
    assert payload["poll"]["device_poll_seconds"] == 10


def test_ready_reports_schema_gaps(client, monkeypatch):
    monkeypatch.setattr(health, "find_schema_gaps", lambda connection: ([], ["devices.fingerprint"]))

    ready = client.get("/api/health/ready")
    assert ready.status_code == 503
    payload = ready.json()
    assert payload["status"] == "degraded"
    assert payload["database"]["ok"] is True
    assert payload["database"]["missing_columns"] == ["devices.fingerprint"]


def test_security_headers_are_set(client):
    response = client.get("/api/health")
    assert response.headers["x-content-type-options"] == "nosniff"
