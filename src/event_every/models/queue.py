"""Data models for the processing queue.

- :class:`QueueStatus` -- the per-item state machine.
- :class:`QueueItem` -- one submitted extraction job and its lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from event_every.models.event import CalendarEvent

QueueItemType = Literal["image", "text"]


class QueueStatus(str, Enum):
    """Lifecycle of a :class:`QueueItem`.

    ``queued -> processing -> {complete | error | cancelled}``.  Only
    ``queued`` and ``processing`` items can be cancelled.
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = {QueueStatus.COMPLETE, QueueStatus.ERROR, QueueStatus.CANCELLED}


@dataclass
class QueueItem:
    """A job owned by :class:`~event_every.processing_queue.ProcessingQueue`.

    Only the queue mutates these; subscribers receive copies.

    Attributes:
        id: Opaque unique token.
        type: ``"image"`` or ``"text"``.
        payload: Opaque to the queue (a list of files or raw text).
        status: Current :class:`QueueStatus`.
        progress: Advisory progress, ``0``-``100``.
        result: Events produced by a successful processor.
        error: Failure message for ``error`` items.
        created: Submission time.
        started_at: When the item was admitted.
        completed_at: When the item reached a terminal state.
        metadata: Display hints (``filename``, ``file_count``, ``url_count``).
    """

    id: str
    type: QueueItemType
    payload: Any
    status: QueueStatus = QueueStatus.QUEUED
    progress: int = 0
    result: list[CalendarEvent] | None = None
    error: str | None = None
    created: datetime = field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
