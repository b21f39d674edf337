"""Application settings loaded once from the environment.

Settings are read at startup into a frozen dataclass and passed explicitly to
the adapters, the conversation engine, the tool executor and the message
processor. Request handling never mutates them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


class ConfigurationError(RuntimeError):
    """A setting the operation needs is missing (never worth a retry)."""


DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


def _env_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration.

    Each attribute is read from one environment variable (see from_env).
    Empty strings mean "not configured"; adapters raise ConfigurationError
    when they need a value that is missing.
    """

    # OpenAI
    openai_api_key: str = ""
    openai_model: str = DEFAULT_OPENAI_MODEL
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    openai_timeout: int = 60

    # Unipile
    unipile_dsn: str = ""
    unipile_api_key: str = ""
    unipile_account_id: str = ""
    unipile_timeout: int = 30
    whatsapp_business_number: str = ""
    webhook_strict_account: bool = False

    # Conversation window
    context_messages: int = 15
    context_hours: int = 2

    # Roles and task queue
    app_role: str = "public"
    tasks_backend: str = "inline"
    worker_base_url: str = "http://worker:8000"
    tasks_http_timeout: int = 30
    tasks_oidc_audience: str = ""
    tasks_oidc_service_account: str = ""
    internal_task_secret: str = ""
    gcp_project: str = ""
    gcp_location: str = "europe-west1"
    gcp_tasks_queue: str = "devisly-messages"

    # Task retries
    task_max_attempts: int = 3

    # Links and billing
    app_base_url: str = "http://localhost:8000"
    web_link_secret: str = ""
    web_link_expiration_minutes: int = 30
    stripe_secret_key: str = ""
    stripe_subscription_price_id: str = ""

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables.

        Args:
            env: Mapping to read from. Defaults to os.environ.
        """
        env = os.environ if env is None else env
        return cls(
            openai_api_key=env.get("OPENAI_API_KEY", ""),
            openai_model=env.get("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
            openai_base_url=(env.get("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL).rstrip("/"),
            openai_timeout=_env_int(env, "OPENAI_TIMEOUT", 60),
            unipile_dsn=env.get("UNIPILE_DSN", ""),
            unipile_api_key=env.get("UNIPILE_API_KEY", ""),
            unipile_account_id=env.get("UNIPILE_ACCOUNT_ID", ""),
            unipile_timeout=_env_int(env, "UNIPILE_TIMEOUT", 30),
            whatsapp_business_number=env.get("WHATSAPP_BUSINESS_NUMBER", ""),
            webhook_strict_account=_env_bool(env, "WEBHOOK_STRICT_ACCOUNT"),
            context_messages=_env_int(env, "CONVERSATION_CONTEXT_MESSAGES", 15),
            context_hours=_env_int(env, "CONVERSATION_CONTEXT_HOURS", 2),
            app_role=env.get("APP_ROLE") or "public",
            tasks_backend=env.get("TASKS_BACKEND") or "inline",
            worker_base_url=(env.get("WORKER_BASE_URL") or "http://worker:8000").rstrip("/"),
            tasks_http_timeout=_env_int(env, "TASKS_HTTP_TIMEOUT", 30),
            tasks_oidc_audience=env.get("TASKS_OIDC_AUDIENCE", ""),
            tasks_oidc_service_account=env.get("TASKS_OIDC_SERVICE_ACCOUNT", ""),
            internal_task_secret=env.get("INTERNAL_TASK_SECRET", ""),
            gcp_project=env.get("GOOGLE_CLOUD_PROJECT") or env.get("GCP_PROJECT_ID", ""),
            gcp_location=env.get("GCP_LOCATION") or "europe-west1",
            gcp_tasks_queue=env.get("GCP_TASKS_QUEUE") or "devisly-messages",
            task_max_attempts=_env_int(env, "TASK_MAX_ATTEMPTS", 3),
            app_base_url=(env.get("APP_BASE_URL") or "http://localhost:8000").rstrip("/"),
            web_link_secret=env.get("WEB_LINK_SECRET", ""),
            web_link_expiration_minutes=_env_int(env, "WEB_LINK_EXPIRATION_MINUTES", 30),
            stripe_secret_key=env.get("STRIPE_SECRET_KEY", ""),
            stripe_subscription_price_id=env.get("STRIPE_SUBSCRIPTION_PRICE_ID", ""),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def set_settings(settings: Settings | None) -> None:
    """Replace the process settings (for tests)."""
    global _settings
    _settings = settings
