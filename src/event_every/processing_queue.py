"""Admission-controlled job queue for extraction work.

:class:`ProcessingQueue` runs independent extraction jobs (one per image
group or text submission) on the running asyncio loop, at most
``max_concurrent`` at a time, and broadcasts a full snapshot of its items
to every subscriber after each change.

Scheduling is greedy and FIFO: after every transition (add, completion,
failure, cancellation) the queue re-scans for the oldest ``queued`` item
and admits it while capacity allows.

Cancellation is cooperative.  Removing a ``processing`` item marks it
``cancelled`` immediately; its processor keeps running and whatever it
eventually returns or raises is discarded at the commit point.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

from event_every.models.event import CalendarEvent
from event_every.models.queue import QueueItem, QueueItemType, QueueStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 3

Processor = Callable[[QueueItem], Awaitable[list[CalendarEvent]]]
QueueListener = Callable[[list[QueueItem]], None]


class ProcessingQueue:
    """Runs extraction jobs with a fixed concurrency cap.

    Every mutating method is synchronous and notifies subscribers before
    returning, so no other task can observe a half-applied transition.
    :meth:`add` must be called while an event loop is running.

    Args:
        max_concurrent: Maximum number of ``processing`` items.
    """

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be positive, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self._items: list[QueueItem] = []
        self._processors: dict[str, Processor] = {}
        self._listeners: list[QueueListener] = []
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """Register *listener* for snapshots; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.get_all())
            except Exception:
                logger.exception("Queue listener %r failed", listener)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(
        self,
        item_type: QueueItemType,
        payload: Any,
        processor: Processor,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Enqueue a job and admit it immediately if capacity allows.

        Args:
            item_type: ``"image"`` or ``"text"``.
            payload: Passed through to *processor* untouched.
            processor: Coroutine function called with a copy of the item;
                returns the extracted events.
            metadata: Display hints stored on the item.

        Returns:
            The new item's id.
        """
        item = QueueItem(
            id=f"queue-{uuid.uuid4().hex[:12]}",
            type=item_type,
            payload=payload,
            metadata=dict(metadata or {}),
        )
        self._items.append(item)
        self._processors[item.id] = processor
        logger.info("Queued %s job %s", item_type, item.id)

        self._notify()
        self._process_next()
        return item.id

    def remove(self, item_id: str) -> bool:
        """Cancel or drop an item.

        A ``processing`` item is marked ``cancelled`` and stays listed so
        observers see its final state; any other item is removed outright.

        Returns:
            ``True`` if the item existed.
        """
        item = self._find(item_id)
        if item is None:
            return False

        if item.status is QueueStatus.PROCESSING:
            item.status = QueueStatus.CANCELLED
            item.completed_at = datetime.now()
            logger.info("Cancelled job %s", item_id)
        else:
            self._items.remove(item)
            self._processors.pop(item_id, None)
            logger.info("Removed %s job %s", item.status.value, item_id)

        self._notify()
        self._process_next()
        return True

    def update_progress(self, item_id: str, progress: int) -> None:
        """Set advisory progress, clamped to ``0``-``100``.  Unknown ids are ignored."""
        item = self._find(item_id)
        if item is None:
            return
        item.progress = max(0, min(100, int(progress)))
        self._notify()

    def clear_completed(self) -> None:
        """Drop every ``complete``, ``error`` and ``cancelled`` item."""
        self._items = [item for item in self._items if not item.status.is_terminal]
        self._notify()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, item_id: str) -> QueueItem | None:
        item = self._find(item_id)
        return _snapshot(item) if item is not None else None

    def get_all(self) -> list[QueueItem]:
        return [_snapshot(item) for item in self._items]

    def get_active(self) -> list[QueueItem]:
        """Items that are ``queued`` or ``processing``."""
        return [_snapshot(item) for item in self._items if not item.status.is_terminal]

    @property
    def processing_count(self) -> int:
        return sum(1 for item in self._items if item.status is QueueStatus.PROCESSING)

    async def wait_idle(self) -> None:
        """Wait until every admitted processor has finished.

        Includes processors of cancelled items, which keep running in the
        background until they return.
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _find(self, item_id: str) -> QueueItem | None:
        return next((item for item in self._items if item.id == item_id), None)

    def _process_next(self) -> None:
        while self.processing_count < self.max_concurrent:
            item = next(
                (i for i in self._items if i.status is QueueStatus.QUEUED),
                None,
            )
            if item is None:
                return
            self._start(item)

    def _start(self, item: QueueItem) -> None:
        item.status = QueueStatus.PROCESSING
        item.started_at = datetime.now()
        item.progress = 0
        logger.info("Started job %s", item.id)
        self._notify()

        processor = self._processors.pop(item.id, None)
        if processor is None:
            self._fail(item, "No processor found for this item")
            return

        task = asyncio.get_running_loop().create_task(self._run(item, processor))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, item: QueueItem, processor: Processor) -> None:
        try:
            result = await processor(_snapshot(item))
        except asyncio.CancelledError:
            if item.status is QueueStatus.PROCESSING:
                item.status = QueueStatus.CANCELLED
                item.completed_at = datetime.now()
                logger.warning("Processor task for job %s was cancelled", item.id)
                self._notify()
                self._process_next()
            raise
        except Exception as exc:
            if item.status is QueueStatus.CANCELLED:
                logger.debug("Discarding failure of cancelled job %s: %s", item.id, exc)
            else:
                self._fail(item, str(exc) or "Unknown error occurred")
            return

        if item.status is QueueStatus.CANCELLED:
            logger.debug("Discarding result of cancelled job %s", item.id)
            return

        item.status = QueueStatus.COMPLETE
        item.result = result
        item.progress = 100
        item.completed_at = datetime.now()
        logger.info("Job %s complete: %d event(s)", item.id, len(result or []))
        self._notify()
        self._process_next()

    def _fail(self, item: QueueItem, message: str) -> None:
        item.status = QueueStatus.ERROR
        item.error = message
        item.completed_at = datetime.now()
        logger.warning("Job %s failed: %s", item.id, message)
        self._notify()
        self._process_next()


def _snapshot(item: QueueItem) -> QueueItem:
    return replace(
        item,
        metadata=dict(item.metadata),
        result=list(item.result) if item.result is not None else None,
    )
