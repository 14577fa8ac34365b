"""Page fetching and HTML reduction for URL expansion.

:class:`PageScraper` fetches one page with ``httpx`` and reduces it to its
title and visible text.  :func:`scrape_urls_batch` fans a list of URLs out
concurrently; each URL succeeds or fails on its own and a failure never
fails the batch.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Sequence

import httpx
from bs4 import BeautifulSoup

from event_every.models.scrape import BatchScrapedContent, ScrapedContent

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; EventEvery/1.0; +https://event-every.com)"

_STRIPPED_TAGS = ["script", "style"]
_WHITESPACE_RE = re.compile(r"\s+")


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def extract_title(html: str) -> str | None:
    """Return the stripped ``<title>`` text, or ``None``."""
    title = _soup(html).title
    if title is None:
        return None
    return title.get_text().strip() or None


def html_to_text(html: str) -> str:
    """Reduce *html* to whitespace-collapsed visible text.

    Only the ``<body>`` is used when one is present.  Scripts and styles
    are dropped and element boundaries become spaces.
    """
    soup = _soup(html)
    root = soup.body or soup
    for tag in root(_STRIPPED_TAGS):
        tag.decompose()
    text = root.get_text(" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


class PageScraper:
    """Fetches pages and reduces them to text.

    Args:
        client: An ``httpx.AsyncClient`` to reuse.  When omitted the
            scraper creates its own and closes it in :meth:`aclose`.
        timeout: Per-request timeout in seconds for an owned client.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> PageScraper:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def scrape(self, url: str) -> ScrapedContent:
        """Fetch *url* and return its title and text.

        Never raises for fetch problems: a non-2xx status or network
        failure yields a result with ``status="error"``.
        """
        try:
            response = await self._client.get(url, headers={"User-Agent": USER_AGENT})
        except httpx.HTTPError as exc:
            logger.warning("Scrape failed for %s: %s", url, exc)
            return ScrapedContent(url=url, status="error", error=str(exc) or "Failed to fetch URL")

        if not response.is_success:
            message = f"HTTP {response.status_code}: {response.reason_phrase}"
            logger.warning("Scrape failed for %s: %s", url, message)
            return ScrapedContent(url=url, status="error", error=message)

        html = response.text
        content = ScrapedContent(
            url=url,
            text=html_to_text(html),
            title=extract_title(html),
            status="success",
        )
        logger.info("Scraped %s: %d character(s)", url, len(content.text))
        return content


ScrapeFunc = Callable[[str], Awaitable[ScrapedContent]]


async def scrape_urls_batch(
    urls: Sequence[str],
    scrape_one: ScrapeFunc,
    max_concurrent: int | None = None,
) -> BatchScrapedContent:
    """Scrape every URL concurrently.

    Args:
        urls: URLs to fetch; results keep this order.
        scrape_one: Fetches a single URL (e.g. :meth:`PageScraper.scrape`
            or a backend's ``scrape_url``).
        max_concurrent: Optional cap on simultaneous fetches; ``None``
            dispatches all of them at once.

    Returns:
        One :class:`ScrapedContent` per URL.  An exception raised by
        *scrape_one* becomes an ``error`` result for that URL only.
    """
    semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None

    async def run(url: str) -> ScrapedContent:
        try:
            if semaphore is None:
                return await scrape_one(url)
            async with semaphore:
                return await scrape_one(url)
        except Exception as exc:
            logger.warning("Scrape failed for %s: %s", url, exc)
            return ScrapedContent(url=url, status="error", error=str(exc) or "Failed to fetch URL")

    results = await asyncio.gather(*(run(url) for url in urls))
    batch = BatchScrapedContent(results=list(results))
    logger.info(
        "Scraped %d URL(s): %d succeeded, %d failed",
        len(urls),
        batch.success_count,
        batch.error_count,
    )
    return batch
