"""Incremental wire protocol for chunked batch extraction.

Frames are server-sent-event style: ``data: <json>\\n\\n``.  A stream is a
sequence of chunk frames::

    {"events": [...], "chunkIndex": 0, "isComplete": false}
    {"events": [...], "chunkIndex": 1, "isComplete": false}

followed by exactly one terminating frame, either::

    {"events": [], "chunkIndex": 2, "isComplete": true}

or, if extraction failed part-way::

    {"error": "human readable message"}

Chunks already sent are never retracted.  A stream that closes without a
terminating frame is *incomplete*; the consumer reports that rather than
pretending the partial result is final.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from event_every.exceptions import (
    EventEveryError,
    IncompleteStreamError,
    MalformedResponseError,
    StreamError,
)
from event_every.models.event import ParsedEvent

logger = logging.getLogger(__name__)

MEDIA_TYPE = "text/event-stream"
FRAME_DELIMITER = "\n\n"
_DATA_PREFIX = "data:"

# ---------------------------------------------------------------------------
# Producer
# ---------------------------------------------------------------------------


def encode_frame(payload: dict[str, Any]) -> bytes:
    """Serialise one frame."""
    return f"{_DATA_PREFIX} {json.dumps(payload, separators=(',', ':'))}{FRAME_DELIMITER}".encode()


async def stream_event_chunks(
    chunks: AsyncIterable[list[ParsedEvent]],
) -> AsyncIterator[bytes]:
    """Turn a chunked event sequence into wire frames.

    Args:
        chunks: The chunk sequence, typically
            :meth:`~event_every.llm.OpenRouterClient.parse_events_batch`.

    Yields:
        One encoded frame per chunk, then a single terminating frame
        (``isComplete`` on success, ``error`` on failure).
    """
    chunk_index = 0
    try:
        async for chunk in chunks:
            yield encode_frame(
                {
                    "events": [event.to_wire() for event in chunk],
                    "chunkIndex": chunk_index,
                    "isComplete": False,
                }
            )
            chunk_index += 1
    except Exception as exc:
        # Internal detail stays in the log; the frame carries the message only.
        if isinstance(exc, EventEveryError):
            logger.warning("Batch stream failed after %d chunk(s): %s", chunk_index, exc)
        else:
            logger.exception("Batch stream crashed after %d chunk(s)", chunk_index)
        yield encode_frame({"error": str(exc) or "Failed to extract events"})
        return

    logger.info("Batch stream complete: %d chunk(s)", chunk_index)
    yield encode_frame({"events": [], "chunkIndex": chunk_index, "isComplete": True})


# ---------------------------------------------------------------------------
# Consumer
# ---------------------------------------------------------------------------


class EventStreamDecoder:
    """Reassembles frames from arbitrarily split reads.

    Bytes are decoded incrementally, so a multi-byte character split
    across two reads is handled, and a partial frame stays buffered until
    its delimiter arrives.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, data: bytes) -> list[dict[str, Any]]:
        """Add *data* and return every frame it completed.

        Raises:
            MalformedResponseError: If a complete frame is not valid JSON.
        """
        self._buffer += self._decoder.decode(data)
        frames: list[dict[str, Any]] = []
        while FRAME_DELIMITER in self._buffer:
            raw, self._buffer = self._buffer.split(FRAME_DELIMITER, 1)
            frame = _parse_frame(raw)
            if frame is not None:
                frames.append(frame)
        return frames

    @property
    def pending(self) -> str:
        """Text received after the last complete frame."""
        return self._buffer


def _parse_frame(raw: str) -> dict[str, Any] | None:
    payload_lines = [
        line[len(_DATA_PREFIX) :].strip()
        for line in raw.splitlines()
        if line.startswith(_DATA_PREFIX)
    ]
    if not payload_lines:
        return None
    payload = "\n".join(payload_lines)
    try:
        frame = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"Invalid stream frame: {exc}", raw_response=payload) from exc
    if not isinstance(frame, dict):
        raise MalformedResponseError("Stream frame is not a JSON object", raw_response=payload)
    return frame


@dataclass
class StreamResult:
    """What a consumer accumulated from one stream.

    Attributes:
        events: Events in the order they were produced.
        chunks_received: Number of chunk frames read.
        is_complete: Whether the terminating ``isComplete`` frame arrived.
    """

    events: list[ParsedEvent] = field(default_factory=list)
    chunks_received: int = 0
    is_complete: bool = False

    def raise_if_incomplete(self) -> StreamResult:
        """Return ``self`` when complete.

        Raises:
            IncompleteStreamError: If the stream closed early.
        """
        if not self.is_complete:
            raise IncompleteStreamError(self.chunks_received)
        return self


ChunkCallback = Callable[[list[ParsedEvent], int], None]


async def read_event_stream(
    source: AsyncIterable[bytes],
    on_chunk: ChunkCallback | None = None,
) -> StreamResult:
    """Consume a frame stream, accumulating events as chunks arrive.

    Reading stops at the ``isComplete`` frame.  If the source ends first,
    the partial result is returned with ``is_complete=False``; no
    completion is synthesised.

    Args:
        source: Raw byte reads, in any split.
        on_chunk: Called with each chunk's events and index as it arrives.

    Returns:
        The accumulated :class:`StreamResult`.

    Raises:
        StreamError: If an ``error`` frame arrives (carries its message).
        MalformedResponseError: If a frame is not valid JSON or chunk
            indices are not strictly increasing.
    """
    decoder = EventStreamDecoder()
    result = StreamResult()
    last_index = -1

    async for data in source:
        for frame in decoder.feed(data):
            if frame.get("error"):
                raise StreamError(str(frame["error"]))

            chunk_index = int(frame.get("chunkIndex", last_index + 1))
            if chunk_index <= last_index:
                raise MalformedResponseError(
                    f"Out-of-order stream chunk {chunk_index} after {last_index}"
                )
            last_index = chunk_index

            if frame.get("isComplete"):
                result.is_complete = True
                return result

            try:
                events = [ParsedEvent.model_validate(e) for e in frame.get("events") or []]
            except ValidationError as exc:
                raise MalformedResponseError(
                    f"Invalid event in stream chunk {chunk_index}: {exc}"
                ) from exc
            result.events.extend(events)
            result.chunks_received += 1
            if on_chunk is not None:
                on_chunk(events, chunk_index)

    if decoder.pending.strip():
        logger.warning("Event stream closed with a partial frame buffered")
    logger.warning(
        "Event stream closed after %d chunk(s) without completing",
        result.chunks_received,
    )
    return result
