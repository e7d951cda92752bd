import os
import tempfile

# The app engine and the startup schema bootstrap read DATABASE_URL at import time.
_DB_DIR = tempfile.mkdtemp(prefix="curfew-tests-")
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{os.path.join(_DB_DIR, 'curfew.db')}"

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from curfew.api.deps import get_db  # noqa: E402
from curfew.db.base import Base  # noqa: E402
from curfew.main import app  # noqa: E402
from curfew.models.child import Child  # noqa: E402
from curfew.models.device import ConsentStatus, Device  # noqa: E402
from curfew.models.schedule import Schedule  # noqa: E402
from curfew.models.user import User, UserRole  # noqa: E402
from curfew.services.rate_limit import clear_rate_limiter  # noqa: E402

ALL_DAYS = [0, 1, 2, 3, 4, 5, 6]


def _memory_engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def engine():
    engine = _memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client():
    clear_rate_limiter()
    engine = _memory_engine()
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    clear_rate_limiter()
    engine.dispose()


def register_and_login(client, *, email: str = "guardian@example.com", role: str = "guardian") -> dict:
    response = client.post(
        "/api/auth/register",
        json={"name": email.split("@")[0], "email": email, "password": "password123", "role": role},
    )
    assert response.status_code == 201, response.text
    login = client.post("/api/auth/login", json={"email": email, "password": "password123"})
    assert login.status_code == 200, login.text
    return {"Authorization": f"Bearer {login.json()['access_token']}"}


@pytest.fixture()
def guardian_headers(client):
    return register_and_login(client)


def create_device_via_api(client, headers: dict, *, phone: str = "+919800000001", timezone_name=None) -> dict:
    child = client.post("/api/children/", json={"name": "Asha", "age": 12}, headers=headers)
    assert child.status_code == 201, child.text
    payload = {"child_id": child.json()["id"], "name": "Asha's phone", "phone_number": phone}
    if timezone_name is not None:
        payload["timezone"] = timezone_name
    device = client.post("/api/devices/", json=payload, headers=headers)
    assert device.status_code == 201, device.text
    return device.json()


def create_schedule_via_api(client, headers: dict, **overrides) -> dict:
    payload = {
        "name": "All day",
        "start_time": "00:00",
        "end_time": "23:59",
        "days_of_week": ALL_DAYS,
        "network_restriction_level": 2,
    }
    payload.update(overrides)
    response = client.post("/api/schedules/", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture()
def make_guardian(db_session):
    def factory(email: str = "guardian@example.com") -> User:
        user = User(name="Guardian", email=email, hashed_password="x", role=UserRole.guardian)
        db_session.add(user)
        db_session.flush()
        return user

    return factory


@pytest.fixture()
def make_device(db_session):
    def factory(
        guardian: User,
        *,
        phone: str = "+919800000001",
        fingerprint: str | None = None,
        consent: ConsentStatus = ConsentStatus.approved,
        timezone_name: str = "UTC",
    ) -> Device:
        child = Child(guardian_id=guardian.id, name="Child")
        db_session.add(child)
        db_session.flush()
        device = Device(
            child_id=child.id,
            name="Phone",
            phone_number=phone,
            fingerprint=fingerprint,
            timezone=timezone_name,
            consent_status=consent,
        )
        db_session.add(device)
        db_session.flush()
        return device

    return factory


@pytest.fixture()
def make_schedule(db_session):
    def factory(guardian: User, **fields) -> Schedule:
        values = {
            "name": "Bedtime",
            "start_time": "22:00",
            "end_time": "06:30",
            "days_of_week": ALL_DAYS,
            "network_restriction_level": 2,
        }
        values.update(fields)
        schedule = Schedule(guardian_id=guardian.id, **values)
        db_session.add(schedule)
        db_session.flush()
        return schedule

    return factory


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def approve_via_companion(client, *, phone: str = "+919800000001", fingerprint: str = "FP-HANDSET-0001") -> dict:
    response = client.post(
        "/api/companion/consent",
        json={"phone_number": phone, "fingerprint": fingerprint, "approved": True},
    )
    assert response.status_code == 200, response.text
    return response.json()
