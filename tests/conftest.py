"""Shared fixtures for event-every tests."""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest

from event_every.config import Settings
from event_every.log import NOISY_LOGGERS


@pytest.fixture()
def monkeypatch_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required environment variables to valid defaults.

    Also patches ``load_dotenv`` so that a real ``.env`` file on disk does not
    override the test values.

    Returns the dict of variables so tests can inspect or override values.
    """
    monkeypatch.setattr("event_every.config.load_dotenv", lambda *_a, **_kw: None)
    env_vars = {
        "OPENROUTER_API_KEY": "test-openrouter-key-12345",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    for key in (
        "OPENROUTER_BASE_URL",
        "OPENROUTER_MODEL",
        "LOG_LEVEL",
        "TIMEZONE",
        "DAILY_EVENT_LIMIT",
        "EVENT_STORE_PATH",
        "SCRAPE_MAX_CONCURRENT",
    ):
        monkeypatch.delenv(key, raising=False)
    return env_vars


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all event-every-related environment variables.

    Patches ``load_dotenv`` so a real ``.env`` file cannot re-inject values
    that the test explicitly removed.
    """
    monkeypatch.setattr("event_every.config.load_dotenv", lambda *_a, **_kw: None)
    for key in (
        "OPENROUTER_API_KEY",
        "OPENROUTER_BASE_URL",
        "OPENROUTER_MODEL",
        "LOG_LEVEL",
        "TIMEZONE",
        "DAILY_EVENT_LIMIT",
        "EVENT_STORE_PATH",
        "SCRAPE_MAX_CONCURRENT",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    """Settings pointing the history at a temporary file."""
    return Settings(
        openrouter_api_key="test-key",
        event_store_path=str(tmp_path / "history.json"),
    )


@pytest.fixture(autouse=True)
def _reset_root_logger() -> Generator[None, None, None]:
    """Reset the root and HTTP client loggers after each test."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    noisy_levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    for name, level in noisy_levels.items():
        logging.getLogger(name).setLevel(level)
