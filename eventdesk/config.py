from __future__ import annotations

import os
import secrets
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from eventdesk.logging import get_logger

logger = get_logger(__name__)


class AIBackend(str, Enum):
    """AI responder variants selectable at process wiring time."""

    GEMINI = "gemini"
    MOCK = "mock"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process configuration passed to every service at startup."""

    data_root: str = env_field("/srv/eventdesk", "DATA_ROOT")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow the runtime singleton to be rebuilt between tests.",
    )
    # Token settings
    jwt_secret: str | None = env_field(None, "JWT_SECRET", validate_default=True)
    access_token_ttl_minutes: int = env_field(15, "ACCESS_TOKEN_TTL_MINUTES")
    refresh_token_ttl_minutes: int = env_field(7 * 24 * 60, "REFRESH_TOKEN_TTL_MINUTES")
    reset_token_ttl_minutes: int = env_field(60, "RESET_TOKEN_TTL_MINUTES")
    # Credential and MFA policy
    mfa_code_ttl_minutes: int = env_field(5, "MFA_CODE_TTL_MINUTES")
    max_password_length: int = env_field(10000, "MAX_PASSWORD_LENGTH")
    min_password_length: int = env_field(8, "MIN_PASSWORD_LENGTH")
    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Event Manager", "EMAIL_FROM_NAME")
    frontend_url: str = env_field("http://localhost:3011", "FRONTEND_URL")
    # Optional ADMIN account ensured at startup
    admin_email: str | None = env_field(None, "ADMIN_EMAIL")
    admin_password: str | None = env_field(None, "ADMIN_PASSWORD")
    # AI responder settings
    ai_backend: AIBackend = env_field(
        AIBackend.MOCK,
        "AI_BACKEND",
        description="AI responder variant: gemini (live) or mock (canned)",
    )
    gemini_api_key: str | None = env_field(None, "GEMINI_API_KEY")
    gemini_model: str = env_field("gemini-flash-latest", "GEMINI_MODEL")
    gemini_embedding_model: str = env_field("embedding-001", "GEMINI_EMBEDDING_MODEL")
    gemini_base_url: str = env_field(
        "https://generativelanguage.googleapis.com/v1beta", "GEMINI_BASE_URL"
    )
    ai_timeout_seconds: float = env_field(30.0, "AI_TIMEOUT_SECONDS")
    # Input limits
    max_chat_message_length: int = env_field(2000, "MAX_CHAT_MESSAGE_LENGTH")
    max_event_title_length: int = env_field(150, "MAX_EVENT_TITLE_LENGTH")
    max_event_description_length: int = env_field(5000, "MAX_EVENT_DESCRIPTION_LENGTH")
    cors_allow_origins: str = env_field(
        "http://localhost:3011",
        "CORS_ALLOW_ORIGINS",
        description="Comma-separated list of allowed browser origins",
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

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]

    @field_validator("ai_backend")
    @classmethod
    def _validate_ai_backend(cls, value: AIBackend) -> AIBackend:
        return AIBackend(value)

    @field_validator("jwt_secret")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            return value
        # Persist a generated secret so issued tokens survive restarts
        data_root = Path(os.getenv("DATA_ROOT", "/srv/eventdesk"))
        secret_path = data_root / ".jwt_secret"

        try:
            data_root.mkdir(parents=True, exist_ok=True)
            os.chmod(data_root, 0o700)
        except PermissionError:
            # Directory may already exist with different ownership (e.g., in container)
            pass
        except OSError as exc:
            logger.warning("jwt_secret_dir_setup", error=str(exc), path=str(data_root))

        if secret_path.exists() and not secret_path.is_symlink():
            try:
                persisted = secret_path.read_text().strip()
                if persisted and len(persisted) >= 32:
                    return persisted
            except OSError as exc:
                logger.error("jwt_secret_read_failed", error=str(exc), path=str(secret_path))

        generated = secrets.token_urlsafe(64)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(data_root), prefix=".jwt_secret_", suffix=".tmp"
            )
            try:
                os.write(fd, generated.encode())
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.rename(tmp_path, str(secret_path))
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error("jwt_secret_persist_failed", error=str(exc), path=str(secret_path))
            raise RuntimeError(
                "Unable to persist JWT secret; set JWT_SECRET or make DATA_ROOT writable"
            ) from exc
        return generated


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
