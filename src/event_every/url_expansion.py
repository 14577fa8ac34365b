"""Fold linked pages into the text handed to extraction.

The model decides which substrings are URLs (see
:meth:`~event_every.llm.OpenRouterClient.detect_urls`); every detected URL
is scraped concurrently and each successful page is appended to the
model's remaining text as::

    {title}

    {text}

    ---
    Original Event: {url}

:func:`find_urls` is a plain regex used only to hint at links in the
input (queue metadata, CLI output).  It never decides what gets fetched.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from event_every.exceptions import NoExtractableContentError
from event_every.models.scrape import BatchScrapedContent, ScrapedContent, URLDetectionResult
from event_every.scraper import ScrapeFunc, scrape_urls_batch

logger = logging.getLogger(__name__)

_URL_RE = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*)",
    re.IGNORECASE,
)

DetectFunc = Callable[[str], Awaitable[URLDetectionResult]]


def find_urls(text: str | None) -> list[str]:
    """Return the ``http(s)`` URLs in *text*, in order of appearance."""
    if not text:
        return []
    return _URL_RE.findall(text)


def format_scraped_block(content: ScrapedContent) -> str:
    """Render one scraped page, or ``""`` if it carried no text or title."""
    if not content.ok or not (content.text.strip() or (content.title or "").strip()):
        return ""
    head = "\n\n".join(part for part in (content.title, content.text) if part)
    return f"{head}\n\n---\nOriginal Event: {content.url}"


def combine_scraped_text(remaining_text: str, scraped: BatchScrapedContent) -> str:
    """Join the remaining text and every successful page, blank-line separated.

    Empty pieces are dropped, so the result is ``""`` when nothing usable
    was found.
    """
    pieces = [remaining_text.strip(), *(format_scraped_block(r) for r in scraped.results)]
    return "\n\n".join(piece for piece in pieces if piece)


@dataclass
class ExpandedInput:
    """Text ready for extraction plus how it was assembled.

    Attributes:
        text: The combined text.
        urls: URLs the detector reported.
        scraped: Per-URL scrape outcomes (empty when nothing was fetched).
    """

    text: str
    urls: list[str] = field(default_factory=list)
    scraped: BatchScrapedContent = field(default_factory=BatchScrapedContent)

    @property
    def has_urls(self) -> bool:
        return bool(self.urls)


async def expand_urls(
    text: str,
    detect: DetectFunc,
    scrape_one: ScrapeFunc,
    max_concurrent: int | None = None,
) -> ExpandedInput:
    """Detect URLs in *text*, scrape them and combine the results.

    When no URL is detected the original text is used unchanged.

    Args:
        text: Raw user text.
        detect: URL detector (LLM-backed).
        scrape_one: Single-page fetcher.
        max_concurrent: Optional cap on simultaneous fetches.

    Returns:
        The :class:`ExpandedInput`.

    Raises:
        NoExtractableContentError: If the combined text is empty.
    """
    detection = await detect(text)

    if not detection.has_urls or not detection.urls:
        combined = text.strip()
        if not combined:
            raise NoExtractableContentError()
        return ExpandedInput(text=combined)

    logger.info("Expanding %d URL(s)", len(detection.urls))
    scraped = await scrape_urls_batch(detection.urls, scrape_one, max_concurrent=max_concurrent)
    combined = combine_scraped_text(detection.remaining_text, scraped)

    if not combined:
        raise NoExtractableContentError()

    return ExpandedInput(text=combined, urls=list(detection.urls), scraped=scraped)
