"""Tests for event-every logging setup."""

from __future__ import annotations

import logging
import re

import pytest

from event_every.log import NOISY_LOGGERS, setup_logging

_LINE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2} \| (?P<level>[A-Z]+) +\| (?P<name>\S+) \| (?P<msg>.*)$"
)


def _owned_handlers() -> list[logging.Handler]:
    return [
        h for h in logging.getLogger().handlers if getattr(h, "_event_every_log_handler", False)
    ]


class TestLevels:
    def test_default_level_is_info(self) -> None:
        setup_logging()

        assert logging.getLogger().level == logging.INFO

    def test_level_name_is_case_insensitive(self) -> None:
        setup_logging("warning")

        assert logging.getLogger().level == logging.WARNING

    def test_invalid_level_leaves_root_untouched(self) -> None:
        root = logging.getLogger()
        before = root.level

        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logging("LOUD")

        assert root.level == before
        assert _owned_handlers() == []


class TestHttpClientLoggers:
    """The OpenRouter and scraping clients stay quiet outside --verbose."""

    @pytest.mark.parametrize("level", ["INFO", "WARNING", "ERROR"])
    def test_quieted_above_debug(self, level: str) -> None:
        setup_logging(level)

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING, name

    def test_follow_root_at_debug(self) -> None:
        setup_logging("DEBUG")

        for name in NOISY_LOGGERS:
            logger = logging.getLogger(name)
            assert logger.level == logging.NOTSET, name
            assert logger.getEffectiveLevel() == logging.DEBUG, name

    def test_verbose_after_info_lifts_quieting(self) -> None:
        setup_logging("INFO")
        setup_logging("DEBUG")

        assert logging.getLogger("httpx").getEffectiveLevel() == logging.DEBUG

    def test_info_after_verbose_restores_quieting(self) -> None:
        setup_logging("DEBUG")
        setup_logging("INFO")

        assert logging.getLogger("httpx").level == logging.WARNING

    def test_request_line_hidden_at_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("INFO")
        logging.getLogger("httpx").info("HTTP Request: POST https://openrouter.ai/api/v1")
        logging.getLogger("event_every.pipeline").info("Saved 1 event(s)")

        err = capsys.readouterr().err
        assert "HTTP Request" not in err
        assert "Saved 1 event(s)" in err

    def test_request_line_shown_at_debug(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("DEBUG")
        logging.getLogger("httpx").info("HTTP Request: GET https://example.com/show")

        assert "HTTP Request: GET https://example.com/show" in capsys.readouterr().err

    def test_client_warnings_pass_at_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("INFO")
        logging.getLogger("openai").warning("Retrying request")

        assert "Retrying request" in capsys.readouterr().err


class TestHandler:
    def test_repeated_setup_keeps_one_handler(self) -> None:
        setup_logging("INFO")
        setup_logging("DEBUG")
        setup_logging("INFO")

        ours = _owned_handlers()
        assert len(ours) == 1
        assert ours[0].level == logging.INFO

    def test_foreign_handlers_are_left_alone(self) -> None:
        foreign = logging.NullHandler()
        logging.getLogger().addHandler(foreign)

        setup_logging("INFO")

        assert foreign in logging.getLogger().handlers
        assert len(_owned_handlers()) == 1

    def test_line_format(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("INFO")
        logging.getLogger("event_every.dedup").warning("Merged %d duplicate event(s)", 2)

        lines = capsys.readouterr().err.strip().splitlines()
        match = _LINE.match(lines[-1])
        assert match is not None, lines[-1]
        assert match["level"] == "WARNING"
        assert match["name"] == "event_every.dedup"
        assert match["msg"] == "Merged 2 duplicate event(s)"

    def test_debug_filtered_at_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("INFO")
        logging.getLogger("event_every.llm").debug("prompt body")

        assert "prompt body" not in capsys.readouterr().err
