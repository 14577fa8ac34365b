"""Calendar file export.

- :func:`validate_events` -- reject events that cannot be exported.
- :func:`render_ics` -- RFC 5545 text for one or many events.
- :func:`export_events_to_ics` -- validate, render and write a ``.ics`` file.
- :func:`export_all_events` -- zip the stored history (``events.json`` plus
  every attachment under ``attachments/<event id>/<filename>``).
"""

from __future__ import annotations

import json
import logging
import re
import zipfile
from collections.abc import Sequence
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

from event_every.exceptions import ExportValidationError, StorageError
from event_every.models.event import CalendarEvent
from event_every.storage import EventStorage

logger = logging.getLogger(__name__)

PRODUCT_ID = "-//event-every//ics//EN"
_MAX_LINE_OCTETS = 75


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def event_problems(event: CalendarEvent) -> list[str]:
    """Return what is wrong with *event* for export (empty when valid)."""
    problems: list[str] = []
    if not event.title or not event.title.strip():
        problems.append("title is required")
    if event.start_date is None:
        problems.append("start date is required")
    if event.end_date is None:
        problems.append("end date is required")
    if event.start_date is not None and event.end_date is not None:
        if _as_utc(event.start_date) > _as_utc(event.end_date):
            problems.append("end date is before start date")
    return problems


def validate_events(events: Sequence[CalendarEvent]) -> None:
    """Check every event, reporting all failures at once.

    Raises:
        ExportValidationError: With the problems of each invalid event.
    """
    problems = {event.id: found for event in events if (found := event_problems(event))}
    if problems:
        raise ExportValidationError(problems)


# ---------------------------------------------------------------------------
# ICS rendering
# ---------------------------------------------------------------------------


def escape_text(text: str) -> str:
    """Escape a TEXT value (backslash, semicolon, comma, newline)."""
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
        .replace("\r", "")
    )


def fold_line(line: str) -> str:
    """Fold *line* into 75-octet pieces joined by CRLF + space."""
    if len(line.encode("utf-8")) <= _MAX_LINE_OCTETS:
        return line

    pieces: list[str] = []
    current = ""
    for char in line:
        limit = _MAX_LINE_OCTETS if not pieces else _MAX_LINE_OCTETS - 1
        if len((current + char).encode("utf-8")) > limit:
            pieces.append(current)
            current = char
        else:
            current += char
    pieces.append(current)
    return "\r\n ".join(pieces)


def _format_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def _date_property(name: str, value: datetime, event: CalendarEvent) -> str:
    if event.all_day:
        return f"{name};VALUE=DATE:{_format_date(value.date())}"
    if event.timezone:
        local = value if value.tzinfo is None else value.astimezone(ZoneInfo(event.timezone))
        return f"{name};TZID={event.timezone}:{local.strftime('%Y%m%dT%H%M%S')}"
    if value.tzinfo is not None:
        return f"{name}:{_as_utc(value).strftime('%Y%m%dT%H%M%SZ')}"
    return f"{name}:{value.strftime('%Y%m%dT%H%M%S')}"


def _event_lines(event: CalendarEvent, stamp: datetime) -> list[str]:
    end = event.end_date
    if event.all_day and end.date() <= event.start_date.date():
        # DTEND is exclusive for date values.
        end = event.start_date + timedelta(days=1)

    lines = [
        "BEGIN:VEVENT",
        f"UID:{event.id}@event-every",
        f"DTSTAMP:{_as_utc(stamp).strftime('%Y%m%dT%H%M%SZ')}",
        _date_property("DTSTART", event.start_date, event),
        _date_property("DTEND", end, event),
        f"SUMMARY:{escape_text(event.title)}",
    ]
    if event.location:
        lines.append(f"LOCATION:{escape_text(event.location)}")
    if event.description:
        lines.append(f"DESCRIPTION:{escape_text(event.description)}")
    if event.url:
        lines.append(f"URL:{event.url}")
    lines.append("STATUS:CONFIRMED")
    lines.append("TRANSP:OPAQUE")
    for attachment in event.attachments or []:
        data = attachment.data.split(",", 1)[1] if "," in attachment.data else attachment.data
        lines.append(
            f"ATTACH;FMTTYPE={attachment.mime_type};ENCODING=BASE64;VALUE=BINARY;"
            f"X-FILENAME={attachment.filename}:{data}"
        )
    lines.append("END:VEVENT")
    return lines


def render_ics(events: Sequence[CalendarEvent], stamp: datetime | None = None) -> str:
    """Render *events* as one VCALENDAR.

    All-day events use ``VALUE=DATE``; events with a timezone use
    ``TZID``; other aware times are written in UTC and naive ones as
    floating local times.

    Args:
        events: Events to include, already validated.
        stamp: ``DTSTAMP`` value (defaults to now).

    Returns:
        CRLF-delimited ICS text.
    """
    stamp = stamp or datetime.now(timezone.utc)
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODUCT_ID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]
    for event in events:
        lines.extend(_event_lines(event, stamp))
    lines.append("END:VCALENDAR")
    return "\r\n".join(fold_line(line) for line in lines) + "\r\n"


def sanitize_filename(name: str) -> str:
    """Turn an event title into a safe, lowercase file stem."""
    cleaned = re.sub(r"[^a-z0-9]", "-", name, flags=re.IGNORECASE)
    cleaned = re.sub(r"-+", "-", cleaned).strip("-").lower()[:50]
    return cleaned or "event"


def export_events_to_ics(
    events: Sequence[CalendarEvent],
    destination: str | Path,
) -> Path:
    """Validate *events* and write them to a ``.ics`` file.

    Args:
        events: One or more events.
        destination: A file path, or a directory in which a file named
            after the (first) event title is created.

    Returns:
        The written path.

    Raises:
        ExportValidationError: If any event is invalid; nothing is written.
        ValueError: If *events* is empty.
    """
    if not events:
        raise ValueError("No events to export")
    validate_events(events)

    path = Path(destination)
    if path.is_dir():
        stem = sanitize_filename(events[0].title) if len(events) == 1 else "event-every-events"
        path = path / f"{stem}.ics"

    path.write_text(render_ics(events), encoding="utf-8", newline="")
    logger.info("Exported %d event(s) to %s", len(events), path)
    return path


# ---------------------------------------------------------------------------
# Export all
# ---------------------------------------------------------------------------


def _event_summary(event: CalendarEvent) -> dict:
    data = event.model_dump(mode="json", by_alias=True, exclude={"attachments"})
    if event.attachments:
        data["attachments"] = [
            attachment.model_dump(mode="json", by_alias=True, exclude={"data"})
            for attachment in event.attachments
        ]
    return data


def export_all_events(storage: EventStorage, destination: str | Path) -> Path:
    """Archive the whole history into a zip file.

    The archive holds ``events.json`` (every event, attachment metadata
    without payloads) and each attachment payload under
    ``attachments/<event id>/<filename>``.  An attachment whose payload
    does not decode is skipped and logged.

    Args:
        storage: The history to export.
        destination: A zip path, or a directory in which a timestamped
            ``event-every-export-*.zip`` is created.

    Returns:
        The written path.

    Raises:
        StorageError: If the history cannot be read or is empty.
    """
    events = storage.get_all_events().unwrap() or []
    if not events:
        raise StorageError("No events to export")

    path = Path(destination)
    if path.is_dir():
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        path = path / f"event-every-export-{timestamp}.zip"

    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(
            "events.json",
            json.dumps([_event_summary(event) for event in events], indent=2),
        )
        for event in events:
            for attachment in event.attachments or []:
                try:
                    payload = attachment.decoded()
                except ValueError as exc:
                    logger.error(
                        "Failed to decode attachment %s of %s: %s",
                        attachment.filename,
                        event.id,
                        exc,
                    )
                    continue
                archive.writestr(f"attachments/{event.id}/{attachment.filename}", payload)

    logger.info("Exported %d event(s) to %s", len(events), path)
    return path
