"""Configuration loading for event-every.

Reads settings from environment variables (with .env support via python-dotenv)
and validates that all required values are present.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "mistralai/pixtral-large-2411"
DEFAULT_EVENT_STORE_PATH = "event_every_history.json"


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        openrouter_api_key: API key for the OpenRouter chat-completions endpoint.
        openrouter_base_url: Base URL of the OpenAI-compatible endpoint.
        openrouter_model: Multimodal model identifier used for every call.
        log_level: Logging level (default ``"INFO"``).
        timezone: Fallback client timezone when none is supplied
            (default ``"UTC"``).
        daily_event_limit: Batch extractions allowed per client per day.
        event_store_path: JSON file backing the event history.
        scrape_max_concurrent: Cap on simultaneous page fetches, or
            ``None`` for no cap.
    """

    openrouter_api_key: str
    openrouter_base_url: str = DEFAULT_BASE_URL
    openrouter_model: str = DEFAULT_MODEL
    log_level: str = "INFO"
    timezone: str = "UTC"
    daily_event_limit: int = 5
    event_store_path: str = DEFAULT_EVENT_STORE_PATH
    scrape_max_concurrent: int | None = None

    def __repr__(self) -> str:
        return (
            f"Settings(openrouter_api_key='***', "
            f"openrouter_base_url={self.openrouter_base_url!r}, "
            f"openrouter_model={self.openrouter_model!r}, "
            f"log_level={self.log_level!r}, "
            f"timezone={self.timezone!r}, "
            f"daily_event_limit={self.daily_event_limit!r}, "
            f"event_store_path={self.event_store_path!r}, "
            f"scrape_max_concurrent={self.scrape_max_concurrent!r})"
        )


def load_settings() -> Settings:
    """Load and validate settings from environment variables.

    Calls :func:`dotenv.load_dotenv` so a ``.env`` file in the project root
    is picked up automatically.

    Returns:
        A validated :class:`Settings` instance.

    Raises:
        ConfigError: If a required environment variable is missing,
            empty, or whitespace-only, or if an integer variable does not
            parse.  The error message names **all** missing variables.
    """
    load_dotenv()

    required = {
        "OPENROUTER_API_KEY": "openrouter_api_key",
    }

    values: dict[str, object] = {}
    missing: list[str] = []

    for env_var, field_name in required.items():
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            missing.append(env_var)
        else:
            values[field_name] = raw.strip()

    if missing:
        names = ", ".join(missing)
        raise ConfigError(f"Missing required environment variables: {names}")

    optional = {
        "OPENROUTER_BASE_URL": "openrouter_base_url",
        "OPENROUTER_MODEL": "openrouter_model",
        "LOG_LEVEL": "log_level",
        "TIMEZONE": "timezone",
        "EVENT_STORE_PATH": "event_store_path",
    }
    for env_var, field_name in optional.items():
        raw = os.environ.get(env_var, "").strip()
        if raw:
            values[field_name] = raw

    for env_var, field_name in (
        ("DAILY_EVENT_LIMIT", "daily_event_limit"),
        ("SCRAPE_MAX_CONCURRENT", "scrape_max_concurrent"),
    ):
        raw = os.environ.get(env_var, "").strip()
        if raw:
            values[field_name] = _parse_positive_int(env_var, raw)

    return Settings(**values)


def _parse_positive_int(env_var: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{env_var} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ConfigError(f"{env_var} must be at least 1, got {value}")
    return value


def load_event_store_path() -> str:
    """Return ``EVENT_STORE_PATH`` (or its default) without requiring the API key.

    Used by commands that only touch the saved history.
    """
    load_dotenv()
    return os.environ.get("EVENT_STORE_PATH", "").strip() or DEFAULT_EVENT_STORE_PATH
