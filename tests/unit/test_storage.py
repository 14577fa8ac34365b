"""Unit tests for the JSON-file event history."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from event_every.exceptions import StorageError
from event_every.storage import EventStorage, StorageResult
from tests.factories import make_attachment, make_event


@pytest.fixture()
def storage(tmp_path: Path) -> EventStorage:
    return EventStorage(tmp_path / "history.json")


class TestStorageResult:
    """Tests for StorageResult.unwrap."""

    def test_unwrap_success(self) -> None:
        assert StorageResult(success=True, data=[1]).unwrap() == [1]

    def test_unwrap_failure(self) -> None:
        with pytest.raises(StorageError, match="disk full"):
            StorageResult(success=False, error="disk full").unwrap()


class TestEventStorage:
    """Tests for EventStorage operations."""

    def test_missing_file_is_empty(self, storage: EventStorage) -> None:
        result = storage.get_all_events()

        assert result.success
        assert result.data == []

    def test_blank_file_is_empty(self, storage: EventStorage) -> None:
        storage.path.write_text("  \n", encoding="utf-8")

        assert storage.get_all_events().data == []

    def test_save_round_trip(self, storage: EventStorage) -> None:
        event = make_event(
            "Gala",
            start=datetime(2024, 6, 11, 19, 0),
            location="Hall",
            attachments=[make_attachment()],
        )

        assert storage.save_event(event).success
        loaded = storage.get_all_events().unwrap()

        assert loaded == [event]
        assert isinstance(loaded[0].start_date, datetime)
        assert loaded[0].attachments[0].decoded() == b"png-bytes"

    def test_file_uses_camel_case_iso_dates(self, storage: EventStorage) -> None:
        storage.save_event(make_event(start=datetime(2024, 6, 11, 15, 0)))

        raw = json.loads(storage.path.read_text(encoding="utf-8"))

        assert raw[0]["startDate"] == "2024-06-11T15:00:00"
        assert "allDay" in raw[0]

    def test_newest_first(self, storage: EventStorage) -> None:
        storage.save_event(make_event("Old"))
        storage.save_events([make_event("New 1"), make_event("New 2")])

        titles = [e.title for e in storage.get_all_events().unwrap()]

        assert titles == ["New 1", "New 2", "Old"]

    def test_save_empty_list_is_noop(self, storage: EventStorage) -> None:
        assert storage.save_events([]).success
        assert not storage.path.exists()

    def test_get_event(self, storage: EventStorage) -> None:
        event = make_event()
        storage.save_event(event)

        assert storage.get_event(event.id).unwrap() == event
        assert storage.get_event("event-missing").unwrap() is None

    def test_update_event(self, storage: EventStorage) -> None:
        event = make_event("Draft")
        storage.save_event(event)

        storage.update_event(event.model_copy(update={"title": "Final"}))

        assert storage.get_event(event.id).unwrap().title == "Final"

    def test_delete_event(self, storage: EventStorage) -> None:
        keep, drop = make_event("Keep"), make_event("Drop")
        storage.save_events([keep, drop])

        assert storage.delete_event(drop.id).success

        assert [e.id for e in storage.get_all_events().unwrap()] == [keep.id]

    def test_clear_history(self, storage: EventStorage) -> None:
        storage.save_event(make_event())

        assert storage.clear_history().success
        assert storage.get_all_events().data == []
        assert storage.clear_history().success

    def test_search(self, storage: EventStorage) -> None:
        storage.save_events(
            [
                make_event("Team Sync", location="Room 4"),
                make_event("Gala", description="Black tie at the hall"),
                make_event("Dentist"),
            ]
        )

        def titles(query: str) -> list[str]:
            return [e.title for e in storage.search_events(query).unwrap()]

        assert titles("sync") == ["Team Sync"]
        assert titles("ROOM") == ["Team Sync"]
        assert titles("hall") == ["Gala"]
        assert titles(" sync ") == ["Team Sync"]
        assert titles("  ") == ["Team Sync", "Gala", "Dentist"]
        assert titles("nothing") == []

    def test_corrupt_file_reports_failure(self, storage: EventStorage) -> None:
        storage.path.write_text("{not json", encoding="utf-8")

        result = storage.get_all_events()

        assert result.success is False
        assert result.data == []
        assert result.error
        assert storage.save_event(make_event()).success is False
        assert storage.search_events("x").success is False

    def test_no_temp_file_left_behind(self, storage: EventStorage) -> None:
        storage.save_event(make_event())

        assert [p.name for p in storage.path.parent.iterdir()] == ["history.json"]
