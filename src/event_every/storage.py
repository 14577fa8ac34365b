"""Event history persistence.

:class:`EventStorage` keeps the saved events of one profile in a JSON file,
newest first.  Dates are written as ISO 8601 strings and come back as
``datetime`` objects.  Every operation returns a :class:`StorageResult`
instead of raising, so a failed save never gets in the way of showing
events that are already in memory.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from event_every.exceptions import StorageError
from event_every.models.event import CalendarEvent

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_EVENTS_ADAPTER = TypeAdapter(list[CalendarEvent])


@dataclass
class StorageResult(Generic[_T]):
    """Outcome of a storage call.

    Attributes:
        success: Whether the operation succeeded.
        data: The payload, when the operation returns one.
        error: Failure message when *success* is ``False``.
    """

    success: bool
    data: _T | None = None
    error: str | None = None

    def unwrap(self) -> _T | None:
        """Return :attr:`data`.

        Raises:
            StorageError: If the operation failed.
        """
        if not self.success:
            raise StorageError(self.error or "Storage operation failed")
        return self.data


class EventStorage:
    """JSON-file backed event history.

    Args:
        path: File holding the history; created on first save.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    def _read(self) -> list[CalendarEvent]:
        if not self.path.exists():
            return []
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return []
        return _EVENTS_ADAPTER.validate_json(raw)

    def _write(self, events: list[CalendarEvent]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [event.to_wire() for event in events]
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def _fail(self, action: str, exc: Exception) -> StorageResult:
        logger.error("Failed to %s: %s", action, exc)
        return StorageResult(success=False, error=str(exc) or f"Failed to {action}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_all_events(self) -> StorageResult[list[CalendarEvent]]:
        try:
            return StorageResult(success=True, data=self._read())
        except (OSError, ValueError, ValidationError) as exc:
            result = self._fail("load events", exc)
            result.data = []
            return result

    def save_event(self, event: CalendarEvent) -> StorageResult[None]:
        """Prepend *event* to the history."""
        return self.save_events([event])

    def save_events(self, events: list[CalendarEvent]) -> StorageResult[None]:
        """Prepend *events*, keeping their order, to the history."""
        if not events:
            return StorageResult(success=True)
        try:
            self._write([*events, *self._read()])
        except (OSError, ValueError, ValidationError) as exc:
            return self._fail("save events", exc)
        logger.info("Saved %d event(s) to %s", len(events), self.path)
        return StorageResult(success=True)

    def get_event(self, event_id: str) -> StorageResult[CalendarEvent | None]:
        """Look up one event; ``data`` is ``None`` when it does not exist."""
        loaded = self.get_all_events()
        if not loaded.success:
            return StorageResult(success=False, error=loaded.error)
        match = next((e for e in loaded.data or [] if e.id == event_id), None)
        return StorageResult(success=True, data=match)

    def update_event(self, event: CalendarEvent) -> StorageResult[None]:
        """Replace the stored event with the same id (no-op if absent)."""
        try:
            events = self._read()
            self._write([event if e.id == event.id else e for e in events])
        except (OSError, ValueError, ValidationError) as exc:
            return self._fail("update event", exc)
        return StorageResult(success=True)

    def delete_event(self, event_id: str) -> StorageResult[None]:
        try:
            events = self._read()
            self._write([e for e in events if e.id != event_id])
        except (OSError, ValueError, ValidationError) as exc:
            return self._fail("delete event", exc)
        logger.info("Deleted event %s", event_id)
        return StorageResult(success=True)

    def clear_history(self) -> StorageResult[None]:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            return self._fail("clear history", exc)
        logger.info("Cleared event history at %s", self.path)
        return StorageResult(success=True)

    def search_events(self, query: str) -> StorageResult[list[CalendarEvent]]:
        """Case-insensitive substring search over title, location and description.

        A blank *query* returns every event.
        """
        loaded = self.get_all_events()
        if not loaded.success:
            return loaded

        events = loaded.data or []
        if not query.strip():
            return StorageResult(success=True, data=events)

        needle = query.strip().lower()
        matches = [
            event
            for event in events
            if needle in event.title.lower()
            or needle in (event.location or "").lower()
            or needle in (event.description or "").lower()
        ]
        return StorageResult(success=True, data=matches)
