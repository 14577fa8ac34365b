"""event-every: turn text, images and links into calendar events.

Extracts events with a tool-calling LLM, streams batch results in chunks,
runs extraction jobs through a bounded processing queue, folds linked
pages into the input and merges near-duplicate events.
"""

from __future__ import annotations

from event_every.dedup import deduplicate_events
from event_every.exceptions import (
    EventEveryError,
    ExtractionError,
    InvalidInputError,
    NoEventFoundError,
    RateLimitExceededError,
)
from event_every.models import (
    CalendarEvent,
    ClientContext,
    ExtractionRequest,
    ParsedEvent,
    QueueItem,
    QueueStatus,
)
from event_every.processing_queue import ProcessingQueue

__version__ = "0.1.0"

__all__ = [
    "CalendarEvent",
    "ClientContext",
    "EventEveryError",
    "ExtractionError",
    "ExtractionRequest",
    "InvalidInputError",
    "NoEventFoundError",
    "ParsedEvent",
    "ProcessingQueue",
    "QueueItem",
    "QueueStatus",
    "RateLimitExceededError",
    "deduplicate_events",
]
