"""Near-duplicate detection and merging for extracted events.

Repeated or overlapping extractions (the same flyer uploaded twice, a
schedule split across batches) produce several records for one real
event.  :func:`deduplicate_events` collapses them without losing
information.

Two events are duplicates when:

- their normalised titles score at least :data:`TITLE_THRESHOLD`,
- their start times are at most :data:`START_TOLERANCE` apart, and
- if *both* have a location, the locations score at least
  :data:`LOCATION_THRESHOLD`.

The similarity score is a cheap lexical heuristic (exact match, substring
containment, then word-set Jaccard), not edit distance or embeddings.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

from event_every.models.event import DEFAULT_TITLE, CalendarEvent

logger = logging.getLogger(__name__)

TITLE_THRESHOLD = 0.85
LOCATION_THRESHOLD = 0.7
START_TOLERANCE = timedelta(minutes=5)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(value: str | None) -> str:
    """Lowercase, drop everything outside ``[a-z0-9 ]`` and collapse spaces."""
    if not value:
        return ""
    stripped = _NON_ALNUM_RE.sub("", value.lower())
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def text_similarity(first: str | None, second: str | None) -> float:
    """Score two strings in ``[0, 1]``.

    Exact match after normalisation is ``1.0``; one containing the other is
    ``0.9``; otherwise the Jaccard index of their word sets.
    """
    a = normalize_text(first)
    b = normalize_text(second)

    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return 0.9

    words_a = set(a.split(" "))
    words_b = set(b.split(" "))
    return len(words_a & words_b) / len(words_a | words_b)


def _start_gap(first: datetime, second: datetime) -> timedelta:
    # Naive values are read as UTC when compared against aware ones.
    if (first.tzinfo is None) != (second.tzinfo is None):
        if first.tzinfo is None:
            first = first.replace(tzinfo=timezone.utc)
        else:
            second = second.replace(tzinfo=timezone.utc)
    return abs(first - second)


def are_duplicates(first: CalendarEvent, second: CalendarEvent) -> bool:
    """Return ``True`` if *first* and *second* describe the same event."""
    if text_similarity(first.title, second.title) < TITLE_THRESHOLD:
        return False

    if _start_gap(first.start_date, second.start_date) > START_TOLERANCE:
        return False

    if first.location and second.location:
        if text_similarity(first.location, second.location) < LOCATION_THRESHOLD:
            return False

    return True


def completeness_score(event: CalendarEvent) -> float:
    """Score how much information *event* carries.

    Title present and not the default: +2.  Description: +length/100.
    Location: +1.  Any attachments: +0.5.
    """
    score = 0.0
    if event.title and event.title != DEFAULT_TITLE:
        score += 2
    if event.description:
        score += len(event.description) / 100
    if event.location:
        score += 1
    if event.attachments:
        score += 0.5
    return score


def merge_events(first: CalendarEvent, second: CalendarEvent) -> CalendarEvent:
    """Merge two duplicates into one record.

    The more complete event is the base (ties keep *first*).  The other
    contributes its description when longer, its location when the base
    has none, and any attachment whose filename the base does not have.
    """
    if completeness_score(first) >= completeness_score(second):
        base, other = first, second
    else:
        base, other = second, first

    base_attachments = list(base.attachments or [])
    known = {attachment.filename for attachment in base_attachments}
    merged_attachments = base_attachments + [
        attachment for attachment in other.attachments or [] if attachment.filename not in known
    ]

    description = base.description
    if len(other.description or "") > len(base.description or ""):
        description = other.description

    return base.model_copy(
        update={
            "description": description,
            "location": base.location or other.location,
            "attachments": merged_attachments or None,
        }
    )


def _merge_pass(events: list[CalendarEvent]) -> list[CalendarEvent]:
    """One forward pass: each unabsorbed event absorbs its later duplicates."""
    absorbed: set[int] = set()
    result: list[CalendarEvent] = []

    for i, event in enumerate(events):
        if i in absorbed:
            continue
        current = event
        for j in range(i + 1, len(events)):
            if j in absorbed:
                continue
            if are_duplicates(current, events[j]):
                logger.debug("Merging duplicate '%s' into '%s'", events[j].title, current.title)
                current = merge_events(current, events[j])
                absorbed.add(j)
        result.append(current)

    return result


def deduplicate_events(events: list[CalendarEvent]) -> list[CalendarEvent]:
    """Collapse near-duplicate events, preserving first-occurrence order.

    Each pass compares every event not yet absorbed with every later
    unabsorbed event and merges duplicates into the running result, so one
    event can absorb several later ones.  A merge can produce a record that
    now matches an event rejected earlier in the pass, so passes repeat
    until nothing merges; the result is a fixed point and running the
    function on its own output changes nothing.

    Args:
        events: Events in arrival order.

    Returns:
        A new list with one representative per duplicate group.
    """
    result = list(events)
    while len(result) > 1:
        merged = _merge_pass(result)
        if len(merged) == len(result):
            break
        result = merged

    if len(result) < len(events):
        logger.info(
            "Deduplicated %d event(s) into %d",
            len(events),
            len(result),
        )
    return result
