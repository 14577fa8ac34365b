"""Prompt and tool-schema builders for the extraction calls.

Every model call is forced through a single declared function, so the
prompts only need to explain the extraction rules; the JSON shape comes
from the tool schema.  Three tools are declared:

- ``extract_event`` -- single-event extraction.
- ``extract_events`` -- batch extraction (up to :data:`MAX_BATCH_EVENTS`).
- ``extract_urls`` -- URL detection with the URLs cut out of the text.
"""

from __future__ import annotations

import re
from datetime import timedelta

from event_every.models.event import ClientContext

MAX_BATCH_EVENTS = 50

# Phrases that switch a batch into all-day mode ("import as all-day" and
# friends contain one of these).  Enforcement is up to the model; the
# client does not re-check the returned events.
ALL_DAY_TRIGGER_PHRASES: tuple[str, ...] = (
    "single day",
    "all day",
    "full day",
    "whole day",
    "single-day",
    "all-day",
    "full-day",
    "whole-day",
)

EVENT_PARSING_PROMPT = """\
You are an event extraction assistant. Extract the details of one event \
from the provided text or image and report them through the extract_event \
function.

Fields:
- title: the event name or summary
- startDate: ISO 8601 (YYYY-MM-DDTHH:mm:ss, or YYYY-MM-DD for all-day events)
- endDate: ISO 8601 (same format as startDate)
- allDay: true when the event has no specific time of day
- location: physical or virtual location
- description: additional details about the event
- url: a link to the event page, if one is given
- timezone: the timezone the times are expressed in, if stated
- confidence: a number from 0 to 1 reflecting how certain you are

If a field cannot be determined, omit it. Do not invent values. If there is \
no event at all, omit both title and startDate."""

BATCH_PARSING_PROMPT = f"""\
You are an event extraction assistant. Extract EVERY event from the \
provided text or image and report them through the extract_events function.

Rules:
- Return at most {MAX_BATCH_EVENTS} events, in the order they appear in the source.
- Each event has: title, startDate, endDate (ISO 8601, YYYY-MM-DDTHH:mm:ss or \
YYYY-MM-DD), allDay, location, description, url, timezone and confidence (0-1).
- Omit any field you cannot determine. Do not invent values.
- Set totalCount to the number of events returned and confidence to your \
overall certainty.
- Schedules, agendas and listings usually contain several events: extract \
each one separately.

All-day rule:
- If the user's instructions contain any of the phrases "single day", \
"all day", "full day", "whole day" (or "single-day", "all-day", "full-day", \
"whole-day", or "import as ..." with any of them), set allDay to true for \
EVERY event, even when the source mentions times of day. Use YYYY-MM-DD \
dates in that case."""

URL_DETECTION_PROMPT = """\
You are a URL detection assistant. Analyze the provided text and extract \
ALL URLs.

IMPORTANT:
- Extract all URLs from the text (http://, https://, www., etc.)
- Return the URLs as an array
- Return the remaining text with URLs removed
- Preserve the structure and formatting of non-URL content

If no URLs are found, return an empty array for urls and set hasUrls to false."""


# ---------------------------------------------------------------------------
# Prompt text
# ---------------------------------------------------------------------------


def mentions_all_day(text: str | None) -> bool:
    """Return ``True`` if *text* contains an all-day trigger phrase."""
    if not text:
        return False
    lowered = " ".join(text.lower().split())
    return any(
        re.search(rf"\b{re.escape(phrase)}\b", lowered) for phrase in ALL_DAY_TRIGGER_PHRASES
    )


def build_context_block(client_context: ClientContext | None) -> str:
    """Build the relative-date reference block for a prompt.

    Anchors "today", "tomorrow" and "next week" at the client's current
    date-time, expressed in the client's timezone, so the model can turn
    relative phrases into absolute dates.

    Args:
        client_context: The caller's clock and zone, or ``None``.

    Returns:
        The context block, or ``""`` when no context was supplied.
    """
    if client_context is None:
        return ""

    now = client_context.local_now()
    tomorrow = now + timedelta(days=1)
    next_week = now + timedelta(days=7 - now.weekday())

    return (
        "Context for resolving relative dates:\n"
        f"- Current date and time: {now.strftime('%A, %B %d, %Y %H:%M')} "
        f"({now.date().isoformat()}T{now.strftime('%H:%M:%S')})\n"
        f"- Timezone: {client_context.timezone}\n"
        f"- \"today\" means {now.date().isoformat()}\n"
        f"- \"tomorrow\" means {tomorrow.date().isoformat()}\n"
        f"- \"next week\" starts on Monday {next_week.date().isoformat()}\n"
        "Resolve every relative date (\"tomorrow\", \"next Friday\", \"next week\") "
        "against this reference and express times in this timezone unless the "
        "source states another one."
    )


def build_event_prompt(
    text: str | None,
    client_context: ClientContext | None = None,
    batch: bool = False,
    instructions: str | None = None,
) -> str:
    """Build the instruction text part of an extraction message.

    The instruction prompt is always present, so an image-only request
    still carries the extraction rules.  The all-day trigger is read from
    *instructions* when given, so page text folded into *text* cannot
    switch it on.

    Args:
        text: User-supplied text, or ``None`` for image-only input.
        client_context: Optional clock/zone for relative dates.
        batch: Use the multi-event prompt instead of the single-event one.
        instructions: Raw user text checked for all-day phrases; defaults
            to *text*.

    Returns:
        The prompt string.
    """
    sections = [BATCH_PARSING_PROMPT if batch else EVENT_PARSING_PROMPT]

    context = build_context_block(client_context)
    if context:
        sections.append(context)

    trigger_text = text if instructions is None else instructions
    if batch and mentions_all_day(trigger_text):
        sections.append(
            "ALL-DAY MODE: the user's instructions contain an all-day phrase. "
            "Every returned event must have allDay set to true."
        )

    if text:
        if batch:
            label = "Extract all events from this text:"
        else:
            label = "Extract event details from this text:"
        sections.append(f"{label}\n{text}")

    return "\n\n".join(sections)


def build_url_detection_prompt(text: str) -> str:
    """Build the prompt for the ``extract_urls`` call."""
    return f"{URL_DETECTION_PROMPT}\n\nExtract URLs from this text:\n{text}"


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------

_EVENT_PROPERTIES: dict = {
    "title": {"type": "string", "description": "Event name or summary"},
    "startDate": {"type": "string", "description": "ISO 8601 start date or date-time"},
    "endDate": {"type": "string", "description": "ISO 8601 end date or date-time"},
    "allDay": {"type": "boolean", "description": "Whether the event lasts all day"},
    "location": {"type": "string", "description": "Physical or virtual location"},
    "description": {"type": "string", "description": "Additional details"},
    "url": {"type": "string", "description": "Link to the event page"},
    "timezone": {"type": "string", "description": "Timezone of the stated times"},
    "confidence": {
        "type": "number",
        "minimum": 0,
        "maximum": 1,
        "description": "Extraction confidence from 0 to 1",
    },
}


def _function_tool(name: str, description: str, parameters: dict) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": parameters,
        },
    }


def event_tool() -> dict:
    """Tool definition for single-event extraction (``extract_event``)."""
    return _function_tool(
        "extract_event",
        "Report the details of the event found in the input",
        {
            "type": "object",
            "properties": dict(_EVENT_PROPERTIES),
            "required": ["confidence"],
        },
    )


def events_tool() -> dict:
    """Tool definition for batch extraction (``extract_events``)."""
    return _function_tool(
        "extract_events",
        "Report every event found in the input",
        {
            "type": "object",
            "properties": {
                "events": {
                    "type": "array",
                    "maxItems": MAX_BATCH_EVENTS,
                    "items": {
                        "type": "object",
                        "properties": dict(_EVENT_PROPERTIES),
                        "required": ["confidence"],
                    },
                },
                "totalCount": {"type": "integer", "description": "Number of events returned"},
                "confidence": {
                    "type": "number",
                    "minimum": 0,
                    "maximum": 1,
                    "description": "Overall extraction confidence",
                },
            },
            "required": ["events", "totalCount", "confidence"],
        },
    )


def url_tool() -> dict:
    """Tool definition for URL detection (``extract_urls``)."""
    return _function_tool(
        "extract_urls",
        "Extract URLs from text and return structured result",
        {
            "type": "object",
            "properties": {
                "urls": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Array of extracted URLs",
                },
                "remainingText": {"type": "string", "description": "Text with URLs removed"},
                "hasUrls": {"type": "boolean", "description": "Whether any URLs were found"},
            },
            "required": ["urls", "remainingText", "hasUrls"],
        },
    )
