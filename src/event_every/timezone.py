"""Timezone normalisation helpers.

The model reports timezones however the source text wrote them: IANA
names, abbreviations such as ``"PST"``, or offsets such as ``"UTC+2"``.
These helpers map all of them onto IANA names that :mod:`zoneinfo` can
load.
"""

from __future__ import annotations

import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TIMEZONE_ABBREVIATIONS: dict[str, str] = {
    "PST": "America/Los_Angeles",
    "PDT": "America/Los_Angeles",
    "MST": "America/Denver",
    "MDT": "America/Denver",
    "CST": "America/Chicago",
    "CDT": "America/Chicago",
    "EST": "America/New_York",
    "EDT": "America/New_York",
    "AST": "America/Halifax",
    "ADT": "America/Halifax",
    "HST": "Pacific/Honolulu",
    "AKST": "America/Anchorage",
    "AKDT": "America/Anchorage",
    "GMT": "Europe/London",
    "UTC": "UTC",
    "BST": "Europe/London",
    "CET": "Europe/Paris",
    "CEST": "Europe/Paris",
    "EET": "Europe/Athens",
    "EEST": "Europe/Athens",
    "IST": "Asia/Kolkata",
    "JST": "Asia/Tokyo",
    "KST": "Asia/Seoul",
    "AEST": "Australia/Sydney",
    "AEDT": "Australia/Sydney",
    "AWST": "Australia/Perth",
    "ACST": "Australia/Adelaide",
    "ACDT": "Australia/Adelaide",
    "NZST": "Pacific/Auckland",
    "NZDT": "Pacific/Auckland",
}

_OFFSET_RE = re.compile(r"\b(?:UTC|GMT)\s*([+-])\s*(\d{1,2})(?::?(\d{2}))?", re.IGNORECASE)
_IANA_RE = re.compile(r"\b([A-Z][A-Za-z]+/[A-Z][A-Za-z_]+(?:/[A-Z][A-Za-z_]+)?)\b")


def is_valid_timezone(name: str) -> bool:
    """Return ``True`` if *name* is an IANA zone :mod:`zoneinfo` can load."""
    if not name or name != name.strip():
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def parse_timezone_from_text(text: str) -> str | None:
    """Find a timezone mentioned anywhere in *text*.

    Checks, in order: known abbreviations as whole words, ``UTC+h`` /
    ``GMT-h`` offsets (mapped to ``Etc/GMT`` zones, whose sign is
    inverted by POSIX convention), and embedded IANA names.

    Returns:
        The IANA name, or ``None`` when nothing recognisable is present.
    """
    offset = _OFFSET_RE.search(text)
    if offset:
        sign, hours, _minutes = offset.groups()
        hours_int = int(hours)
        if hours_int == 0:
            return "UTC"
        # Etc/GMT-2 is two hours *ahead* of UTC.
        etc_sign = "-" if sign == "+" else "+"
        candidate = f"Etc/GMT{etc_sign}{hours_int}"
        if is_valid_timezone(candidate):
            return candidate

    for abbreviation, iana in TIMEZONE_ABBREVIATIONS.items():
        if re.search(rf"\b{abbreviation}\b", text, re.IGNORECASE):
            return iana

    for match in _IANA_RE.finditer(text):
        if is_valid_timezone(match.group(1)):
            return match.group(1)

    return None


def normalize_timezone(value: str | None, fallback: str = "UTC") -> str:
    """Map *value* onto an IANA timezone name.

    Args:
        value: IANA name, abbreviation, offset text, or ``None``.
        fallback: Returned when *value* is empty or unrecognisable.

    Returns:
        A loadable IANA timezone name.
    """
    if not value or not value.strip():
        return fallback

    value = value.strip()
    abbreviation = TIMEZONE_ABBREVIATIONS.get(value.upper())
    if abbreviation:
        return abbreviation

    if is_valid_timezone(value):
        return value

    return parse_timezone_from_text(value) or fallback
