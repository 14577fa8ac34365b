"""Console output formatter for pipeline runs and the event history.

Renders a :class:`~event_every.pipeline.PipelineResult` as structured
console output: inputs, extracted events, failures and a summary.

The primary entry point is :func:`format_pipeline_result`, which returns
the formatted string.  :func:`print_pipeline_result` is a convenience
wrapper that writes directly to stdout.  :func:`format_event_list` renders
the stored history for the ``history`` command.
"""

from __future__ import annotations

import sys
from datetime import datetime

from event_every.models.event import CalendarEvent
from event_every.pipeline import PipelineResult

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BANNER_WIDTH = 60
_SEPARATOR = "=" * _BANNER_WIDTH


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def format_pipeline_result(result: PipelineResult) -> str:
    """Render a :class:`PipelineResult` as structured demo output.

    Args:
        result: The pipeline result to format.

    Returns:
        A multi-line string ready for console display.
    """
    lines: list[str] = []

    lines.append(_SEPARATOR)
    lines.append("  EVENT EVERY")
    lines.append(_SEPARATOR)
    _append_inputs(lines, result)
    _append_events(lines, result)
    _append_failures(lines, result)
    _append_summary(lines, result)
    lines.append(_SEPARATOR)

    return "\n".join(lines)


def print_pipeline_result(result: PipelineResult) -> None:
    """Format and print a :class:`PipelineResult` to stdout."""
    sys.stdout.write(format_pipeline_result(result) + "\n")


def format_event_list(events: list[CalendarEvent]) -> str:
    """Render stored events one per line (newest first, as stored)."""
    if not events:
        return "No saved events."
    lines = [f"{len(events)} saved event(s):"]
    for event in events:
        where = f" @ {event.location}" if event.location else ""
        lines.append(
            f"  {event.id}  {format_event_time(event)}  {event.title}{where}"
        )
    return "\n".join(lines)


def format_event_time(event: CalendarEvent) -> str:
    """Format an event's start and end for display.

    All-day events show dates only; same-day timed events show the end as
    a time only.
    """
    start, end = event.start_date, event.end_date
    if event.all_day:
        if end.date() > start.date():
            return f"{_date(start)} - {_date(end)} (all day)"
        return f"{_date(start)} (all day)"

    start_str = start.strftime("%a %Y-%m-%d %I:%M %p")
    if start.date() == end.date():
        end_str = end.strftime("%I:%M %p")
    else:
        end_str = end.strftime("%a %Y-%m-%d %I:%M %p")
    zone = f" {event.timezone}" if event.timezone else ""
    return f"{start_str} - {end_str}{zone}"


# ---------------------------------------------------------------------------
# Internal formatters
# ---------------------------------------------------------------------------


def _date(value: datetime) -> str:
    return value.strftime("%a %Y-%m-%d")


def _append_inputs(lines: list[str], result: PipelineResult) -> None:
    lines.append("")
    lines.append("--- INPUT ---")
    lines.append(f"  Sources: {', '.join(result.inputs) if result.inputs else 'none'}")
    if result.urls_hinted:
        lines.append(f"  Links: {len(result.urls_hinted)}")
        for url in result.urls_hinted:
            lines.append(f"    - {url}")


def _append_events(lines: list[str], result: PipelineResult) -> None:
    lines.append("")
    lines.append("--- EVENTS ---")

    if not result.events:
        lines.append("  No events found.")
        return

    for idx, event in enumerate(result.events, start=1):
        lines.append("")
        lines.append(f"  Event {idx}: {event.title}")
        lines.append(f"    When: {format_event_time(event)}")
        if event.location:
            lines.append(f"    Where: {event.location}")
        if event.url:
            lines.append(f"    Link: {event.url}")
        if event.description:
            lines.append(f"    Details: {event.description}")
        lines.append(f"    Source: {event.source}")


def _append_failures(lines: list[str], result: PipelineResult) -> None:
    if not result.failures:
        return
    lines.append("")
    lines.append("--- FAILED ---")
    for failure in result.failures:
        lines.append(f'  [FAILED] "{failure.label}" -> Error: {failure.error}')


def _append_summary(lines: list[str], result: PipelineResult) -> None:
    lines.append("")
    lines.append("--- SUMMARY ---")
    lines.append(f"  Events extracted: {result.events_extracted}")
    lines.append(f"  Duplicates merged: {result.duplicates_removed}")
    lines.append(f"  Failed jobs: {len(result.failures)}")

    if result.dry_run:
        lines.append("  Saved: no (dry run)")
    else:
        lines.append(f"  Saved: {'yes' if result.saved else 'no'}")

    if result.ics_path is not None:
        lines.append(f"  Exported: {result.ics_path}")

    lines.append(f"  Warnings: {len(result.warnings)}")
    for warning in result.warnings:
        lines.append(f"    - {warning}")

    lines.append(f"  Pipeline duration: {result.duration_seconds:.1f}s")
