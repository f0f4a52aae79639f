"""Tests for settings loading and log redaction."""

import pytest
from pydantic import ValidationError

from tessera.config import Settings
from tessera.logging import _redact_pii, hash_email


class TestSettings:
    def test_defaults(self):
        settings = Settings(secret_key="k")

        assert settings.step_up_window_minutes == 10
        assert settings.reset_code_expire_hours == 4
        assert settings.reset_code_digits == 6
        assert settings.session_touch_on_validate is False

    def test_secret_key_required_outside_test_mode(self):
        with pytest.raises(ValidationError):
            Settings(secret_key=None, test_mode=False)

    def test_test_mode_generates_secret_key(self):
        settings = Settings(secret_key=None, test_mode=True)

        assert settings.secret_key
        assert len(settings.secret_key) >= 32

    @pytest.mark.parametrize(
        "overrides",
        [
            {"step_up_window_minutes": 0},
            {"reset_code_expire_hours": -1},
            {"reset_code_digits": 3},
            {"reset_code_digits": 11},
            {"totp_secret_max_attempts": 0},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValidationError):
            Settings(secret_key="k", **overrides)

    def test_from_env_reads_named_variables(self, monkeypatch):
        monkeypatch.setenv("SECRET_KEY", "from-env")
        monkeypatch.setenv("STEP_UP_WINDOW_MINUTES", "3")
        monkeypatch.setenv("PASSWORD_CHANGE_EXPIRE_HOURS", "12")
        monkeypatch.setenv("EMAIL_TEMPLATE_THEME", "darkGreen")

        settings = Settings.from_env()

        assert settings.secret_key == "from-env"
        assert settings.step_up_window_minutes == 3
        assert settings.reset_code_expire_hours == 12
        assert settings.email_theme == "darkGreen"

    def test_cors_origins_split(self):
        settings = Settings(secret_key="k", cors_allow_origins="https://a.example, ,https://b.example")

        assert settings.cors_origins == ["https://a.example", "https://b.example"]


class TestRedaction:
    def test_secrets_are_masked(self):
        event = _redact_pii(
            None,
            "info",
            {"event": "x", "token": "gAAAAABsecretvalue", "reset_code": 123456, "user_id": "u-1"},
        )

        assert event["token"] == "gA***ue"
        assert event["reset_code"] == "***"
        assert event["user_id"] == "u-1"

    def test_hashes_and_status_codes_pass_through(self):
        event = _redact_pii(
            None,
            "info",
            {"email_hash": "abcdef0123456789", "error_code": "invalid_code", "status_code": 401},
        )

        assert event == {
            "email_hash": "abcdef0123456789",
            "error_code": "invalid_code",
            "status_code": 401,
        }

    def test_hash_email_is_case_insensitive(self):
        assert hash_email("A@Example.com") == hash_email("a@example.com ")
        assert len(hash_email("a@example.com")) == 16

    def test_bearer_values_are_scrubbed_under_any_key(self):
        event = _redact_pii(None, "info", {"detail": "header was Bearer gAAAAAB-abc.def"})

        assert event["detail"] == "header was Bearer ***"
