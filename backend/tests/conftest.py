import pytest
from fastapi.testclient import TestClient

from medtracker.config import get_settings
from medtracker.main import create_app
from medtracker.services.email_service import email_service

PASSWORD = "Secret123"


@pytest.fixture()
def app_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("JWT_SECRET_KEY", "test-secret")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    monkeypatch.setenv("AUTH_RATE_LIMIT_MAX", "1000")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    for k in ("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD"):
        monkeypatch.delenv(k, raising=False)
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


@pytest.fixture()
def client(app_env):
    with TestClient(create_app()) as c:
        yield c


@pytest.fixture()
def upload_dir(app_env):
    return app_env / "uploads"


@pytest.fixture()
def run_db(client):
    """Run ``fn(session)`` on the app's event loop, commit, and return its result."""
    def _run(fn):
        async def _call():
            async with client.app.state.sessionmaker() as session:
                result = await fn(session)
                await session.commit()
                return result

        return client.portal.call(_call)

    return _run


@pytest.fixture()
def outbox(monkeypatch):
    """Captures outgoing account emails instead of sending them."""
    sent = []

    def fake_verification(to_email, name, token):
        sent.append({"kind": "verify", "to": to_email, "token": token})
        return {"success": True, "to": to_email}

    def fake_reset(to_email, name, token, expires_minutes):
        sent.append({"kind": "reset", "to": to_email, "token": token, "expires_minutes": expires_minutes})
        return {"success": True, "to": to_email}

    monkeypatch.setattr(email_service, "send_verification_email", fake_verification)
    monkeypatch.setattr(email_service, "send_password_reset_email", fake_reset)
    return sent


@pytest.fixture()
def register(client, outbox):
    """Register a user and return its bearer headers."""
    def _register(email="alice@example.com", name="Alice Smith", password=PASSWORD):
        r = client.post(
            "/api/auth/register",
            json={"name": name, "email": email, "password": password, "confirm_password": password},
        )
        assert r.status_code == 201, r.text
        return {"Authorization": f"Bearer {r.json()['token']}"}

    return _register


@pytest.fixture()
def auth_headers(register):
    return register()


def record_payload(**overrides):
    payload = {
        "title": "Annual checkup",
        "type": "consultation",
        "description": "Routine yearly physical examination",
        "doctor": {"name": "Dr. Rivera", "specialization": "General practice"},
        "date_of_record": "2024-03-01",
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def create_record(client, auth_headers):
    def _create(headers=None, **overrides):
        r = client.post("/api/records", json=record_payload(**overrides), headers=headers or auth_headers)
        assert r.status_code == 201, r.text
        return r.json()["data"]["record"]

    return _create


@pytest.fixture()
def make_payload():
    return record_payload
