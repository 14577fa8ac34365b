"""Pydantic models for extracted and canonical calendar events.

Defines the structured data types that flow through the extraction
pipeline:

- :class:`ParsedEvent` -- a single event as returned by the LLM tool call
  (untrusted; dates as ISO 8601 strings, any field may be missing).
- :class:`ParsedEventBatch` -- the ``extract_events`` tool payload.
- :class:`EventAttachment` -- a file owned by one :class:`CalendarEvent`.
- :class:`CalendarEvent` -- the client-side canonical form with concrete
  ``datetime`` values and defaults applied.
- :class:`ClientContext` -- the caller's clock, zone and locale, used to
  resolve relative dates such as "tomorrow".

All models serialise with camelCase aliases (``startDate``, ``allDay``,
``mimeType``) so the same JSON is used on the wire, in the tool schemas
and on disk.
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from event_every.exceptions import InvalidInputError
from event_every.timezone import normalize_timezone

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Event"
DEFAULT_CONFIDENCE = 0.5
_DEFAULT_DURATION = timedelta(hours=1)

EventSource = Literal["image", "text", "url"]
AttachmentType = Literal["original-image", "original-text", "llm-metadata"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Return the JSON-ready camelCase representation, omitting ``None``."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# ParsedEvent -- raw LLM output
# ---------------------------------------------------------------------------


class ParsedEvent(_CamelModel):
    """A single event as decoded from the model's tool-call arguments.

    The model signals uncertainty by omitting fields, so everything except
    ``confidence`` is optional.  ``confidence`` itself defaults to ``0.5``
    because a non-compliant model may still leave it out.

    Attributes:
        title: Event name.
        start_date: ISO 8601 date or date-time string.
        end_date: ISO 8601 date or date-time string.
        all_day: Whether the model marked the event as all-day.
        location: Physical or virtual location.
        description: Additional details.
        url: Link to the event page.
        timezone: IANA name or abbreviation, unvalidated.
        confidence: Model confidence in ``[0, 1]``.
    """

    title: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    all_day: bool | None = None
    location: str | None = None
    description: str | None = None
    url: str | None = None
    timezone: str | None = None
    confidence: float = DEFAULT_CONFIDENCE

    @property
    def is_empty(self) -> bool:
        """``True`` when the model found neither a title nor a start date."""
        return not self.title and not self.start_date


class ParsedEventBatch(_CamelModel):
    """Arguments of the ``extract_events`` tool call.

    Attributes:
        events: Extracted events in source order.
        total_count: Number of events the model claims to have found.
        confidence: Overall confidence for the batch.
    """

    events: list[ParsedEvent] = Field(default_factory=list)
    total_count: int | None = None
    confidence: float = DEFAULT_CONFIDENCE


# ---------------------------------------------------------------------------
# CalendarEvent -- canonical client-side form
# ---------------------------------------------------------------------------


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


class EventAttachment(_CamelModel):
    """A file carried by exactly one :class:`CalendarEvent`.

    Attributes:
        id: Opaque unique token.
        filename: Display name, also the dedup key when events merge.
        mime_type: MIME type of the payload.
        data: Base64-encoded payload.
        type: ``"original-image"``, ``"original-text"`` or ``"llm-metadata"``.
        size: Payload size in bytes (decoded).
    """

    id: str = Field(default_factory=lambda: _new_id("att"))
    filename: str
    mime_type: str
    data: str
    type: AttachmentType
    size: int

    @classmethod
    def from_bytes(
        cls,
        payload: bytes,
        filename: str,
        mime_type: str,
        attachment_type: AttachmentType,
    ) -> EventAttachment:
        """Build an attachment from raw bytes, encoding them as base64."""
        return cls(
            filename=filename,
            mime_type=mime_type,
            data=base64.b64encode(payload).decode("ascii"),
            type=attachment_type,
            size=len(payload),
        )

    def decoded(self) -> bytes:
        """Return the raw payload, tolerating a ``data:`` URL prefix."""
        data = self.data.split(",", 1)[1] if "," in self.data else self.data
        return base64.b64decode(data)


class CalendarEvent(_CamelModel):
    """An event in canonical form, ready for review, storage and export.

    ``end_date >= start_date`` is *not* enforced here; bad model output
    may produce inverted ranges, which export validation rejects.

    Attributes:
        id: Opaque unique token.
        title: Non-empty title (defaults to ``"Untitled Event"``).
        start_date: Event start.
        end_date: Event end.
        all_day: Whether the event spans whole days.
        location: Event location, or ``None``.
        description: Free-text details, or ``None``.
        url: Event page, or ``None``.
        timezone: Normalised IANA timezone, or ``None``.
        created: When this record was built.
        source: ``"image"``, ``"text"`` or ``"url"``.
        original_input: Raw source text kept for auditing.
        attachments: Ordered attachments, or ``None``.
    """

    id: str = Field(default_factory=lambda: _new_id("event"))
    title: str = DEFAULT_TITLE
    start_date: datetime
    end_date: datetime
    all_day: bool = False
    location: str | None = None
    description: str | None = None
    url: str | None = None
    timezone: str | None = None
    created: datetime = Field(default_factory=datetime.now)
    source: EventSource = "text"
    original_input: str | None = None
    attachments: list[EventAttachment] | None = None

    @classmethod
    def from_parsed(
        cls,
        parsed: ParsedEvent,
        source: EventSource,
        original_input: str | None = None,
        attachments: list[EventAttachment] | None = None,
        now: datetime | None = None,
    ) -> CalendarEvent:
        """Create a :class:`CalendarEvent` from untrusted model output.

        A start date that is missing or fails to parse falls back to
        *now*; an end date that is missing or fails to parse falls back to
        one hour after the start.  ``all_day`` follows the model when it
        said so, otherwise it is inferred from a date-only start.

        An ``llm-metadata`` attachment holding the raw :class:`ParsedEvent`
        is appended after any supplied *attachments*.

        Args:
            parsed: The decoded tool-call event.
            source: Where the input came from.
            original_input: Raw input text to keep for auditing.
            attachments: Attachments to carry (e.g. the original image).
            now: Override for the fallback start time (useful for testing).

        Returns:
            A new :class:`CalendarEvent`.
        """
        created = now or datetime.now()

        start = _parse_datetime(parsed.start_date)
        if start is None:
            if parsed.start_date:
                logger.warning(
                    "Unparseable start date %r for '%s', using current time",
                    parsed.start_date,
                    parsed.title,
                )
            start = created

        end = _parse_datetime(parsed.end_date)
        if end is None:
            end = start + _DEFAULT_DURATION

        if parsed.all_day is not None:
            all_day = parsed.all_day
        else:
            all_day = _is_date_only(parsed.start_date)

        title = (parsed.title or "").strip() or DEFAULT_TITLE
        metadata = EventAttachment.from_bytes(
            json.dumps(parsed.to_wire(), indent=2).encode("utf-8"),
            filename="llm-metadata.json",
            mime_type="application/json",
            attachment_type="llm-metadata",
        )

        return cls(
            title=title,
            start_date=start,
            end_date=end,
            all_day=all_day,
            location=parsed.location or None,
            description=parsed.description or None,
            url=parsed.url or None,
            timezone=normalize_timezone(parsed.timezone) if parsed.timezone else None,
            created=created,
            source=source,
            original_input=original_input,
            attachments=[*(attachments or []), metadata],
        )


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        return None


def _is_date_only(value: str | None) -> bool:
    return bool(value) and "T" not in value.strip() and len(value.strip()) == 10


# ---------------------------------------------------------------------------
# ClientContext -- caller clock and zone
# ---------------------------------------------------------------------------


class ClientContext(_CamelModel):
    """The requesting client's notion of "now".

    Attributes:
        current_date_time: ISO 8601 date-time.  A trailing ``Z`` or offset
            is honoured; a naive value is read as local time in
            ``timezone``.
        timezone: IANA timezone of the client.
        timezone_offset: Offset from UTC in minutes (informational).
        locale: BCP 47 locale tag.
    """

    current_date_time: str
    timezone: str = "UTC"
    timezone_offset: int | None = None
    locale: str = "en-US"

    @classmethod
    def now(cls, timezone: str = "UTC", locale: str = "en-US") -> ClientContext:
        """Capture the current time in *timezone*."""
        zone = normalize_timezone(timezone)
        local = datetime.now(ZoneInfo(zone))
        offset = local.utcoffset()
        return cls(
            current_date_time=local.replace(tzinfo=None).isoformat(timespec="seconds"),
            timezone=zone,
            timezone_offset=int(offset.total_seconds() // 60) if offset is not None else 0,
            locale=locale,
        )

    def local_now(self) -> datetime:
        """Return ``current_date_time`` as an aware datetime in ``timezone``."""
        zone = ZoneInfo(normalize_timezone(self.timezone))
        parsed = datetime.fromisoformat(self.current_date_time)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=zone)
        return parsed.astimezone(zone)


# ---------------------------------------------------------------------------
# ExtractionRequest -- input to the extraction client
# ---------------------------------------------------------------------------


class ExtractionRequest(_CamelModel):
    """Input for a single or batch extraction.

    Attributes:
        text: Free text (may embed user instructions such as
            "import as all-day").
        image_base64: Base64 image payload, without a ``data:`` prefix.
        image_mime_type: MIME type of the image; required with an image.
        client_context: Caller clock and zone for relative dates.
        instructions: The user's own words, checked for all-day phrases.
            Defaults to *text*; set it when *text* carries scraped page
            content the user did not write.
    """

    text: str | None = None
    image_base64: str | None = None
    image_mime_type: str | None = None
    client_context: ClientContext | None = None
    instructions: str | None = None

    def validate_input(self) -> None:
        """Reject requests that cannot be sent to the model.

        Raises:
            InvalidInputError: If neither text nor image is present, or an
                image has no MIME type.
        """
        if not (self.text and self.text.strip()) and not self.image_base64:
            raise InvalidInputError("Either text or image data is required")
        if self.image_base64 and not self.image_mime_type:
            raise InvalidInputError("Image MIME type is required when providing image data")
