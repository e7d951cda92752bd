from conftest import register_and_login
from curfew.core.security import get_password_hash, verify_password


def test_register_login_me(client):
    register_payload = {
        "name": "Guardian User",
        "email": "Guardian@Example.com",
        "password": "password123",
        "role": "guardian",
    }

    register_response = client.post("/api/auth/register", json=register_payload)
    assert register_response.status_code == 201
    data = register_response.json()
    assert data["email"] == "guardian@example.com"
    assert data["role"] == "guardian"
    assert "hashed_password" not in data

    login_response = client.post(
        "/api/auth/login",
        json={"email": "guardian@example.com", "password": "password123"},
    )
    assert login_response.status_code == 200
    login_data = login_response.json()
    assert login_data["token_type"] == "bearer"
    assert login_data["user"]["id"] == data["id"]

    me_response = client.get(
        "/api/auth/me",
        headers={"Authorization": f"Bearer {login_data['access_token']}"},
    )
    assert me_response.status_code == 200
    assert me_response.json()["email"] == "guardian@example.com"


def test_duplicate_email_is_rejected(client):
    payload = {"name": "First", "email": "dup@example.com", "password": "password123"}
    assert client.post("/api/auth/register", json=payload).status_code == 201

    second = client.post("/api/auth/register", json={**payload, "name": "Second"})
    assert second.status_code == 409


def test_login_with_wrong_password(client):
    client.post(
        "/api/auth/register",
        json={"name": "User", "email": "user@example.com", "password": "password123"},
    )
    response = client.post("/api/auth/login", json={"email": "user@example.com", "password": "wrong-password"})
    assert response.status_code == 401


def test_protected_routes_require_token(client):
    assert client.get("/api/auth/me").status_code in {401, 403}
    assert client.get("/api/devices/").status_code in {401, 403}

    bad = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


def test_security_log_is_admin_only(client):
    guardian = register_and_login(client, email="plain@example.com", role="guardian")
    admin = register_and_login(client, email="root@example.com", role="admin")

    assert client.get("/api/activity/security", headers=guardian).status_code == 403
    assert client.get("/api/activity/security", headers=admin).status_code == 200


def test_passwords_are_hashed_with_argon2id():
    hashed = get_password_hash("password123")
    assert hashed.startswith("$argon2id$")
    assert hashed != get_password_hash("password123")
    assert verify_password("password123", hashed) is True
    assert verify_password("password124", hashed) is False


def test_unusable_stored_hash_never_verifies():
    assert verify_password("password123", None) is False
    assert verify_password("password123", "") is False
    assert verify_password("password123", "not-an-argon2-hash") is False
