"""Process configuration loaded from environment variables.

load_settings() is called once while the app is constructed. Every required
variable that is missing is reported together in a single ConfigurationError,
so a misconfigured deployment fails before serving any request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping

TasksBackend = Literal["qstash", "inline"]
AppRole = Literal["public", "worker"]

REQUIRED_VARS = (
    "WHATSAPP_VERIFY_TOKEN",
    "WHATSAPP_API_TOKEN",
    "WHATSAPP_PHONE_NUMBER_ID",
    "WHATSAPP_APP_SECRET",
    "DATABASE_URL",
    "QSTASH_TOKEN",
    "QSTASH_CURRENT_SIGNING_KEY",
    "QSTASH_NEXT_SIGNING_KEY",
    "WORKER_BASE_URL",
)

_TASKS_BACKENDS = ("qstash", "inline")
_APP_ROLES = ("public", "worker")


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the process configuration."""

    # WhatsApp Cloud API
    whatsapp_verify_token: str
    whatsapp_api_token: str
    whatsapp_phone_number_id: str
    whatsapp_app_secret: str

    # Storage
    database_url: str

    # Broker
    qstash_token: str
    qstash_current_signing_key: str
    qstash_next_signing_key: str
    worker_base_url: str

    db_password: str | None = None
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.0-flash"
    graph_api_version: str = "v21.0"
    qstash_url: str = "https://qstash.upstash.io"
    qstash_retries: int = 3
    tasks_backend: TasksBackend = "qstash"
    ingress_enqueue_timeout_s: float = 0.8
    media_fetch_attempts: int = 4
    media_fetch_base_delay_s: float = 0.8
    claim_lease_seconds: int = 120
    app_role: AppRole = "public"

    @property
    def worker_process_url(self) -> str:
        """Absolute URL the broker delivers queued units to."""
        return f"{self.worker_base_url.rstrip('/')}/tasks/whatsapp/process-message"


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _parse_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _parse_choice(env: Mapping[str, str], name: str, choices: tuple[str, ...], default: str) -> str:
    value = env.get(name) or default
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from the environment.

    Args:
        env: Mapping to read from. Defaults to os.environ.

    Returns:
        Populated Settings.

    Raises:
        ConfigurationError: If any required variable is missing or a value
            cannot be parsed.
    """
    if env is None:
        env = os.environ

    missing = [name for name in REQUIRED_VARS if not env.get(name)]
    if missing:
        raise ConfigurationError(f"Missing required env vars: {', '.join(missing)}")

    attempts = _parse_int(env, "MEDIA_FETCH_ATTEMPTS", 4)
    if attempts < 1:
        raise ConfigurationError("MEDIA_FETCH_ATTEMPTS must be at least 1")

    return Settings(
        whatsapp_verify_token=env["WHATSAPP_VERIFY_TOKEN"],
        whatsapp_api_token=env["WHATSAPP_API_TOKEN"],
        whatsapp_phone_number_id=env["WHATSAPP_PHONE_NUMBER_ID"],
        whatsapp_app_secret=env["WHATSAPP_APP_SECRET"],
        database_url=env["DATABASE_URL"],
        qstash_token=env["QSTASH_TOKEN"],
        qstash_current_signing_key=env["QSTASH_CURRENT_SIGNING_KEY"],
        qstash_next_signing_key=env["QSTASH_NEXT_SIGNING_KEY"],
        worker_base_url=env["WORKER_BASE_URL"],
        db_password=env.get("DB_PASSWORD") or None,
        gemini_api_key=env.get("GEMINI_API_KEY") or None,
        gemini_model=env.get("GEMINI_MODEL") or "gemini-2.0-flash",
        graph_api_version=env.get("META_GRAPH_API_VERSION") or "v21.0",
        qstash_url=(env.get("QSTASH_URL") or "https://qstash.upstash.io").rstrip("/"),
        qstash_retries=_parse_int(env, "QSTASH_RETRIES", 3),
        tasks_backend=_parse_choice(env, "TASKS_BACKEND", _TASKS_BACKENDS, "qstash"),  # type: ignore[arg-type]
        ingress_enqueue_timeout_s=_parse_float(env, "INGRESS_ENQUEUE_TIMEOUT_S", 0.8),
        media_fetch_attempts=attempts,
        media_fetch_base_delay_s=_parse_float(env, "MEDIA_FETCH_BASE_DELAY_S", 0.8),
        claim_lease_seconds=_parse_int(env, "CLAIM_LEASE_SECONDS", 120),
        app_role=_parse_choice(env, "APP_ROLE", _APP_ROLES, "public"),  # type: ignore[arg-type]
    )
