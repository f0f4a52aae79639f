from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tessera.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the identity service.

    Built once per process and passed explicitly into each component; nothing
    below the runtime reads the environment directly.
    """

    secret_key: str | None = env_field(
        None,
        "SECRET_KEY",
        description="Key material for the session token cipher; required outside test mode",
    )
    database_url: str = env_field("postgresql://localhost:5432/tessera", "DATABASE_URL")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors and in-process fallbacks.",
    )

    # Sessions & step-up
    step_up_window_minutes: int = env_field(
        10,
        "STEP_UP_WINDOW_MINUTES",
        description="Lifetime of the short-lived token issued between password and 2FA checks",
    )
    session_touch_on_validate: bool = env_field(
        False,
        "SESSION_TOUCH_ON_VALIDATE",
        description="Refresh last_access_at of a session row whenever its token is validated",
    )

    # Password reset
    reset_code_expire_hours: int = env_field(4, "PASSWORD_CHANGE_EXPIRE_HOURS")
    reset_code_digits: int = env_field(6, "RESET_CODE_DIGITS")

    # Two-factor
    totp_issuer: str = env_field("Tessera", "TOTP_ISSUER")
    totp_secret_max_attempts: int = env_field(
        10,
        "TOTP_SECRET_MAX_ATTEMPTS",
        description="Upper bound on candidate secrets generated while looking for an unused one",
    )

    # Email
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    company_name: str = env_field("Tessera", "COMPANY_NAME")
    email_theme: str = env_field("whiteBlue", "EMAIL_TEMPLATE_THEME")

    cors_allow_origins: str = env_field(
        "",
        "CORS_ALLOW_ORIGINS",
        description="Comma separated list of origins allowed to call the API",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("step_up_window_minutes", "reset_code_expire_hours")
    @classmethod
    def _positive_window(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("window must be positive")
        return value

    @field_validator("reset_code_digits")
    @classmethod
    def _code_digits(cls, value: int) -> int:
        if not 4 <= value <= 10:
            raise ValueError("reset code length must be between 4 and 10 digits")
        return value

    @field_validator("totp_secret_max_attempts")
    @classmethod
    def _bounded_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("at least one attempt is required")
        return value

    @model_validator(mode="after")
    def _ensure_secret_key(self) -> "Settings":
        if self.secret_key:
            return self
        if not self.test_mode:
            raise ValueError("SECRET_KEY must be set")
        # Throwaway key; tokens do not survive a restart in test mode
        self.secret_key = secrets.token_urlsafe(48)
        logger.warning("secret_key_generated", reason="test_mode")
        return self

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
