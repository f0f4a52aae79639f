"""Integration tests for the authentication HTTP surface.

Tests the complete flow including:
- Signup and login
- Two-factor enrollment and step-up completion
- Password reset by e-mailed code
- Logout and session listing
"""

import time

import pytest
from fastapi.testclient import TestClient

from tessera import app as app_module
from tessera.service.runtime import get_runtime
from tessera.service.totp import generate_totp


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(app_module.app)


@pytest.fixture
def test_user_email():
    return "testuser@example.com"


@pytest.fixture
def test_user_password():
    return "TestPassword123!"


@pytest.fixture
def signed_up(client, test_user_email, test_user_password):
    response = client.post(
        "/v1/auth/signup",
        json={
            "email": test_user_email,
            "password": test_user_password,
            "device_name": "laptop",
            "name": "Test User",
        },
    )
    assert response.status_code == 201
    return response.json()["data"]


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


class TestSignupFlow:
    """Tests for user registration."""

    def test_signup_creates_user(self, signed_up, test_user_email):
        assert signed_up["token"]
        assert signed_up["is_2fa_enabled"] is False
        assert signed_up["user"]["email"] == test_user_email
        assert signed_up["user"]["name"] == "Test User"
        assert "password_hash" not in signed_up["user"]
        assert "secret_2fa" not in signed_up["user"]

    def test_signup_rejects_duplicate_email(
        self, client, signed_up, test_user_email, test_user_password
    ):
        response = client.post(
            "/v1/auth/signup",
            json={
                "email": test_user_email.upper(),
                "password": test_user_password,
                "device_name": "phone",
            },
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    def test_signup_rejects_invalid_email(self, client):
        response = client.post(
            "/v1/auth/signup",
            json={"email": "not-an-email", "password": "secret", "device_name": "laptop"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_signup_rejects_short_password(self, client):
        response = client.post(
            "/v1/auth/signup",
            json={"email": "short@example.com", "password": "x", "device_name": "laptop"},
        )

        assert response.status_code == 400


class TestLoginFlow:
    def test_login_returns_usable_token(self, client, signed_up, test_user_email, test_user_password):
        response = client.post(
            "/v1/auth/login",
            json={"email": test_user_email, "password": test_user_password, "device_name": "phone"},
        )

        assert response.status_code == 200
        token = response.json()["data"]["token"]
        me = client.get("/v1/me", headers=_auth(token))
        assert me.status_code == 200
        assert me.json()["data"]["email"] == test_user_email

    def test_login_wrong_password(self, client, signed_up, test_user_email):
        response = client.post(
            "/v1/auth/login",
            json={"email": test_user_email, "password": "wrong-password", "device_name": "phone"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_login_unknown_email(self, client):
        response = client.post(
            "/v1/auth/login",
            json={"email": "ghost@example.com", "password": "whatever", "device_name": "phone"},
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestAuthorizationHeader:
    def test_me_without_header_is_unauthorized(self, client):
        response = client.get("/v1/me")

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "User is invalid"

    def test_me_with_garbage_token_is_unauthorized(self, client):
        response = client.get("/v1/me", headers=_auth("garbage"))

        assert response.status_code == 401

    def test_me_with_revoked_token_reports_invalid_token(self, client, signed_up):
        token = signed_up["token"]
        client.post("/v1/auth/logout", headers=_auth(token))

        response = client.get("/v1/me", headers=_auth(token))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_token"

    def test_revoked_token_is_rejected_on_public_routes(
        self, client, signed_up, test_user_email, test_user_password
    ):
        token = signed_up["token"]
        client.post("/v1/auth/logout", headers=_auth(token))

        login = client.post(
            "/v1/auth/login",
            headers=_auth(token),
            json={"email": test_user_email, "password": test_user_password, "device_name": "x"},
        )
        reset = client.post(
            "/v1/auth/reset/request", headers=_auth(token), json={"email": test_user_email}
        )

        for response in (login, reset):
            assert response.status_code == 401
            assert response.json()["error"]["code"] == "invalid_token"
        assert get_runtime().store.get_user_by_email(test_user_email).reset_code is None

    def test_garbage_token_is_ignored_on_public_routes(
        self, client, signed_up, test_user_email, test_user_password
    ):
        response = client.post(
            "/v1/auth/login",
            headers=_auth("garbage"),
            json={"email": test_user_email, "password": test_user_password, "device_name": "x"},
        )

        assert response.status_code == 200


class TestTwoFactorFlow:
    def test_enroll_verify_and_step_up_login(
        self, client, signed_up, test_user_email, test_user_password
    ):
        token = signed_up["token"]
        enroll = client.post("/v1/auth/2fa/enroll", headers=_auth(token))
        assert enroll.status_code == 200
        secret = enroll.json()["data"]["secret"]
        assert enroll.json()["data"]["otpauth_uri"].startswith("otpauth://totp/")

        verify = client.post(
            "/v1/auth/2fa/verify",
            headers=_auth(token),
            json={"code": generate_totp(secret, time.time())},
        )
        assert verify.status_code == 200
        assert verify.json()["data"] == {"is_2fa_enabled": True}

        again = client.post("/v1/auth/2fa/enroll", headers=_auth(token))
        assert again.json()["data"]["secret"] is None

        login = client.post(
            "/v1/auth/login",
            json={"email": test_user_email, "password": test_user_password, "device_name": "phone"},
        )
        data = login.json()["data"]
        assert data["is_2fa_enabled"] is True
        assert data["user"] is None
        step_up = data["token"]

        blocked = client.get("/v1/me", headers=_auth(step_up))
        assert blocked.status_code == 401
        assert blocked.json()["error"]["message"] == "Token is invalid"

        complete = client.post(
            "/v1/auth/2fa/complete",
            headers=_auth(step_up),
            json={"code": generate_totp(secret, time.time())},
        )
        assert complete.status_code == 200
        final = complete.json()["data"]["token"]
        assert client.get("/v1/me", headers=_auth(final)).json()["data"]["is_2fa_enabled"] is True

    def test_verify_rejects_malformed_code(self, client, signed_up):
        token = signed_up["token"]
        client.post("/v1/auth/2fa/enroll", headers=_auth(token))

        response = client.post("/v1/auth/2fa/verify", headers=_auth(token), json={"code": "12ab"})

        assert response.status_code == 400


class TestPasswordResetFlow:
    def test_request_for_unknown_email_looks_successful(self, client):
        response = client.post("/v1/auth/reset/request", json={"email": "ghost@example.com"})

        assert response.status_code == 200
        assert response.json()["data"] == {"status": "sent"}

    def test_reset_signs_out_everywhere(self, client, signed_up, test_user_email):
        old_token = signed_up["token"]
        response = client.post("/v1/auth/reset/request", json={"email": test_user_email})
        assert response.status_code == 200
        code = get_runtime().store.get_user_by_email(test_user_email).reset_code

        confirm = client.post(
            "/v1/auth/reset/confirm",
            json={
                "email": test_user_email,
                "code": str(code),
                "new_password": "EvenBetter456!",
                "device_name": "tablet",
            },
        )

        assert confirm.status_code == 200
        new_token = confirm.json()["data"]["token"]
        assert client.get("/v1/me", headers=_auth(old_token)).status_code == 401
        assert client.get("/v1/me", headers=_auth(new_token)).status_code == 200

        login = client.post(
            "/v1/auth/login",
            json={"email": test_user_email, "password": "EvenBetter456!", "device_name": "x"},
        )
        assert login.status_code == 200

    def test_wrong_code_is_not_found(self, client, signed_up, test_user_email):
        client.post("/v1/auth/reset/request", json={"email": test_user_email})
        code = get_runtime().store.get_user_by_email(test_user_email).reset_code

        response = client.post(
            "/v1/auth/reset/confirm",
            json={
                "email": test_user_email,
                "code": "1" if code != 1 else "2",
                "new_password": "EvenBetter456!",
                "device_name": "tablet",
            },
        )

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Code not found"

    def test_mail_failure_is_reported(self, client, signed_up, test_user_email, monkeypatch):
        runtime = get_runtime()
        monkeypatch.setattr(runtime.email, "send_password_reset_code", lambda *args: False)

        response = client.post("/v1/auth/reset/request", json={"email": test_user_email})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "delivery_failed"


class TestLogoutAndSessions:
    def test_sessions_list_marks_current_device(
        self, client, signed_up, test_user_email, test_user_password
    ):
        client.post(
            "/v1/auth/login",
            json={"email": test_user_email, "password": test_user_password, "device_name": "phone"},
        )

        response = client.get("/v1/auth/sessions", headers=_auth(signed_up["token"]))

        assert response.status_code == 200
        items = response.json()["data"]["items"]
        assert [item["device_name"] for item in items] == ["laptop", "phone"]
        assert [item["current"] for item in items] == [True, False]

    def test_logout_all_devices(self, client, signed_up, test_user_email, test_user_password):
        phone = client.post(
            "/v1/auth/login",
            json={"email": test_user_email, "password": test_user_password, "device_name": "phone"},
        ).json()["data"]["token"]

        response = client.post(
            "/v1/auth/logout", headers=_auth(signed_up["token"]), json={"all_devices": True}
        )

        assert response.status_code == 200
        assert response.json()["data"]["message"] == "all sessions revoked"
        assert client.get("/v1/me", headers=_auth(phone)).status_code == 401


class TestHealth:
    def test_healthz_reports_components(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["type"] == "memory"
        assert body["checks"]["cache"]["type"] == "MemoryCache"

    def test_request_id_is_echoed(self, client):
        response = client.get("/healthz", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
