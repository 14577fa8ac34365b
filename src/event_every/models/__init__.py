"""Data models for event-every."""

from __future__ import annotations

from event_every.models.event import (
    CalendarEvent,
    ClientContext,
    EventAttachment,
    ExtractionRequest,
    ParsedEvent,
    ParsedEventBatch,
)
from event_every.models.queue import QueueItem, QueueStatus
from event_every.models.scrape import BatchScrapedContent, ScrapedContent, URLDetectionResult

__all__ = [
    "BatchScrapedContent",
    "CalendarEvent",
    "ClientContext",
    "EventAttachment",
    "ExtractionRequest",
    "ParsedEvent",
    "ParsedEventBatch",
    "QueueItem",
    "QueueStatus",
    "ScrapedContent",
    "URLDetectionResult",
]
