from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy import select

from medtracker.config import get_settings
from medtracker.main import create_app
from medtracker.models.user import User
from medtracker.security import create_access_token
from medtracker.utils import utcnow

PASSWORD = "Secret123"


def _login(client, email="alice@example.com", password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def test_register_returns_token_and_cookie(client, outbox):
    r = client.post(
        "/api/auth/register",
        json={"name": "  Alice Smith ", "email": "Alice@Example.com", "password": PASSWORD, "confirm_password": PASSWORD},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "success"
    assert body["token"]
    user = body["data"]["user"]
    assert user["name"] == "Alice Smith"
    assert user["email"] == "alice@example.com"
    assert user["role"] == "user"
    assert user["email_verified"] is False
    assert "password_hash" not in user

    cookie = r.headers["set-cookie"]
    assert cookie.startswith("token=")
    assert "httponly" in cookie.lower()
    assert "samesite=strict" in cookie.lower()

    assert outbox == [{"kind": "verify", "to": "alice@example.com", "token": outbox[0]["token"]}]


def test_register_rejects_weak_password(client, outbox):
    r = client.post(
        "/api/auth/register",
        json={"name": "Alice", "email": "alice@example.com", "password": "password", "confirm_password": "password"},
    )
    assert r.status_code == 422
    assert r.json()["status"] == "fail"
    assert r.json()["message"] == "Invalid input data"
    assert r.json()["errors"]


def test_register_rejects_mismatched_confirmation(client, outbox):
    r = client.post(
        "/api/auth/register",
        json={"name": "Alice", "email": "alice@example.com", "password": PASSWORD, "confirm_password": "Other123"},
    )
    assert r.status_code == 400
    assert r.json() == {"status": "fail", "message": "Passwords do not match"}


def test_register_duplicate_email(client, register):
    register()
    r = client.post(
        "/api/auth/register",
        json={"name": "Alice Two", "email": "ALICE@example.com", "password": PASSWORD, "confirm_password": PASSWORD},
    )
    assert r.status_code == 409
    assert r.json()["message"] == "Duplicate email"


def test_login_success_and_failure(client, register):
    register()

    r = _login(client)
    assert r.status_code == 200
    assert r.json()["message"] == "Login successful"
    assert r.json()["data"]["user"]["last_login"]

    r = _login(client, password="Wrong123")
    assert r.status_code == 401
    assert r.json() == {"status": "fail", "message": "Invalid email or password"}

    r = _login(client, email="nobody@example.com")
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid email or password"


def test_account_locks_after_repeated_failures(client, register):
    headers = register()

    for _ in range(5):
        r = _login(client, password="Wrong123")
        assert r.status_code == 401
        assert r.json()["message"] == "Invalid email or password"

    r = _login(client)
    assert r.status_code == 401
    assert "locked" in r.json()["message"]

    # Existing tokens stop working while the lock is active
    r = client.get("/api/auth/me", headers=headers)
    assert r.status_code == 401


def test_successful_login_resets_attempts(client, register):
    register()
    for _ in range(4):
        assert _login(client, password="Wrong123").status_code == 401
    assert _login(client).status_code == 200

    for _ in range(4):
        assert _login(client, password="Wrong123").status_code == 401
    assert _login(client).status_code == 200


def test_expired_lock_restarts_attempt_count(client, register, run_db):
    register()
    for _ in range(5):
        _login(client, password="Wrong123")
    assert "locked" in _login(client).json()["message"]

    async def expire_lock(session):
        user = (await session.execute(select(User).where(User.email == "alice@example.com"))).scalar_one()
        user.lock_until = utcnow() - timedelta(minutes=1)

    run_db(expire_lock)

    r = _login(client, password="Wrong123")
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid email or password"

    async def load_user(session):
        return (await session.execute(select(User).where(User.email == "alice@example.com"))).scalar_one()

    user = run_db(load_user)
    assert user.login_attempts == 1
    assert user.lock_until is None
    assert _login(client).status_code == 200


def test_auth_rate_limit(app_env, monkeypatch):
    monkeypatch.setenv("AUTH_RATE_LIMIT_MAX", "3")
    get_settings.cache_clear()

    with TestClient(create_app()) as client:
        for _ in range(3):
            assert _login(client, email="nobody@example.com").status_code == 401
        r = _login(client, email="nobody@example.com")
        assert r.status_code == 429
        assert r.json() == {
            "status": "fail",
            "message": "Too many authentication attempts, please try again later.",
        }
        # Authenticated routes are not limited
        assert client.get("/api/health").status_code == 200


def test_me_requires_token(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json()["message"] == "You are not logged in! Please log in to get access."


def test_me_with_bearer_and_cookie(client, register):
    headers = register()

    r = client.get("/api/auth/me", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["user"]["email"] == "alice@example.com"

    # The cookie set at registration authenticates on its own
    r = client.get("/api/auth/me")
    assert r.status_code == 200


def test_invalid_and_expired_tokens(client, register):
    register()
    client.cookies.clear()

    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid token. Please log in again!"

    expired = create_access_token(1, "test-secret", timedelta(seconds=-60))
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401
    assert r.json()["message"] == "Your token has expired! Please log in again."

    forged = create_access_token(1, "other-secret", timedelta(days=1))
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {forged}"})
    assert r.status_code == 401

    missing_user = create_access_token(999, "test-secret", timedelta(days=1))
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {missing_user}"})
    assert r.status_code == 401


def test_logout_clears_cookie(client, register):
    register()
    r = client.get("/api/auth/logout")
    assert r.status_code == 200
    cookie = r.headers["set-cookie"]
    assert cookie.startswith("token=none")
    assert "httponly" in cookie.lower()
    assert "samesite=strict" in cookie.lower()
    assert "secure" not in cookie.lower()

    r = client.get("/api/auth/me")
    assert r.status_code == 401


def test_update_details(client, register):
    headers = register()
    r = client.put(
        "/api/auth/updatedetails",
        json={
            "phone": "+1 (555) 010-0100",
            "gender": "female",
            "date_of_birth": "1990-05-17",
            "address": {"city": "Lisbon", "country": "PT"},
        },
        headers=headers,
    )
    assert r.status_code == 200
    user = r.json()["data"]["user"]
    assert user["name"] == "Alice Smith"
    assert user["phone"] == "+1 (555) 010-0100"
    assert user["gender"] == "female"
    assert user["date_of_birth"] == "1990-05-17"
    assert user["address"] == {"city": "Lisbon", "country": "PT"}


def test_update_details_validation(client, register):
    headers = register()
    assert client.put("/api/auth/updatedetails", json={"phone": "call me"}, headers=headers).status_code == 422
    assert client.put("/api/auth/updatedetails", json={"date_of_birth": "2999-01-01"}, headers=headers).status_code == 422
    assert client.put("/api/auth/updatedetails", json={"gender": "unknown"}, headers=headers).status_code == 422


def test_update_details_duplicate_email(client, register):
    alice = register()
    register(email="bob@example.com", name="Bob Jones")

    r = client.put("/api/auth/updatedetails", json={"email": "bob@example.com"}, headers=alice)
    assert r.status_code == 409
    assert r.json()["message"] == "Duplicate email"

    r = client.put("/api/auth/updatedetails", json={"email": "alice.new@example.com"}, headers=alice)
    assert r.status_code == 200
    assert r.json()["data"]["user"]["email"] == "alice.new@example.com"


def test_update_password(client, register):
    headers = register()

    r = client.put(
        "/api/auth/updatepassword",
        json={"current_password": PASSWORD, "new_password": "Changed123", "confirm_new_password": "Changed999"},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["message"] == "New passwords do not match"

    r = client.put(
        "/api/auth/updatepassword",
        json={"current_password": "Wrong123", "new_password": "Changed123", "confirm_new_password": "Changed123"},
        headers=headers,
    )
    assert r.status_code == 401
    assert r.json()["message"] == "Current password is incorrect"

    r = client.put(
        "/api/auth/updatepassword",
        json={"current_password": PASSWORD, "new_password": "Changed123", "confirm_new_password": "Changed123"},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["token"]

    assert _login(client).status_code == 401
    assert _login(client, password="Changed123").status_code == 200


def test_forgot_and_reset_password(client, register, outbox):
    register()

    r = client.post("/api/auth/forgotpassword", json={"email": "nobody@example.com"})
    assert r.status_code == 400
    assert r.json()["message"] == "There is no user with that email"

    r = client.post("/api/auth/forgotpassword", json={"email": "alice@example.com"})
    assert r.status_code == 200
    assert r.json()["message"] == "Password reset token sent to email"
    reset = outbox[-1]
    assert reset["kind"] == "reset"
    assert reset["expires_minutes"] == 10

    r = client.put("/api/auth/resetpassword/not-a-token", json={"password": "Changed123"})
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid or expired reset token"

    r = client.put(
        f"/api/auth/resetpassword/{reset['token']}",
        json={"password": "Changed123", "confirm_password": "Changed123"},
    )
    assert r.status_code == 200
    assert r.json()["token"]

    # Tokens are single use
    r = client.put(f"/api/auth/resetpassword/{reset['token']}", json={"password": "Another123"})
    assert r.status_code == 400

    assert _login(client, password="Changed123").status_code == 200


def test_reset_password_clears_lock(client, register, outbox):
    register()
    for _ in range(5):
        _login(client, password="Wrong123")
    assert "locked" in _login(client).json()["message"]

    client.post("/api/auth/forgotpassword", json={"email": "alice@example.com"})
    r = client.put(f"/api/auth/resetpassword/{outbox[-1]['token']}", json={"password": "Changed123"})
    assert r.status_code == 200
    assert _login(client, password="Changed123").status_code == 200


def test_verify_email(client, register, outbox):
    register()
    token = outbox[0]["token"]

    r = client.get("/api/auth/verifyemail/bogus")
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid or expired verification token"

    r = client.get(f"/api/auth/verifyemail/{token}")
    assert r.status_code == 200
    assert r.json()["data"]["user"]["email_verified"] is True

    assert client.get(f"/api/auth/verifyemail/{token}").status_code == 400


def test_resend_verification(client, register, outbox):
    register()

    r = client.post("/api/auth/resendverification", json={"email": "nobody@example.com"})
    assert r.status_code == 400

    r = client.post("/api/auth/resendverification", json={"email": "alice@example.com"})
    assert r.status_code == 200
    assert len(outbox) == 2
    old_token, new_token = outbox[0]["token"], outbox[1]["token"]

    # Only the latest token is valid
    assert client.get(f"/api/auth/verifyemail/{old_token}").status_code == 400
    assert client.get(f"/api/auth/verifyemail/{new_token}").status_code == 200

    r = client.post("/api/auth/resendverification", json={"email": "alice@example.com"})
    assert r.status_code == 400
    assert r.json()["message"] == "Email is already verified"
