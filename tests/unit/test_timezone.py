"""Tests for timezone normalisation."""

from __future__ import annotations

import pytest

from event_every.timezone import is_valid_timezone, normalize_timezone, parse_timezone_from_text


class TestIsValidTimezone:
    """Tests for is_valid_timezone."""

    def test_known_zone(self) -> None:
        assert is_valid_timezone("Europe/Berlin")

    @pytest.mark.parametrize("name", ["", "Mars/Olympus", " UTC", "not a zone"])
    def test_rejects_invalid(self, name: str) -> None:
        assert not is_valid_timezone(name)


class TestNormalizeTimezone:
    """Tests for normalize_timezone."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("PST", "America/Los_Angeles"),
            ("est", "America/New_York"),
            ("America/Chicago", "America/Chicago"),
            ("UTC+2", "Etc/GMT-2"),
            ("GMT-5", "Etc/GMT+5"),
            ("Eastern time, EST", "America/New_York"),
        ],
    )
    def test_maps_onto_iana(self, value: str, expected: str) -> None:
        """Abbreviations, offsets and IANA names all resolve."""
        assert normalize_timezone(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "Narnia Standard"])
    def test_fallback(self, value: str | None) -> None:
        """Empty or unknown input returns the fallback."""
        assert normalize_timezone(value, fallback="Asia/Tokyo") == "Asia/Tokyo"


class TestParseTimezoneFromText:
    """Tests for parse_timezone_from_text."""

    def test_embedded_iana_name(self) -> None:
        assert parse_timezone_from_text("Starts 9am (Europe/Paris)") == "Europe/Paris"

    def test_zero_offset_is_utc(self) -> None:
        assert parse_timezone_from_text("UTC+0") == "UTC"

    def test_nothing_found(self) -> None:
        assert parse_timezone_from_text("see you at noon") is None
