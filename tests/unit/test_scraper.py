"""Unit tests for page scraping.

HTTP traffic goes through :class:`httpx.MockTransport`; no real network
calls are made.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from event_every.models.scrape import ScrapedContent
from event_every.scraper import (
    USER_AGENT,
    PageScraper,
    extract_title,
    html_to_text,
    scrape_urls_batch,
)

_PAGE = """<html>
<head><title> Summer Gala 2024 </title><style>body { color: red; }</style></head>
<body>
  <script>var tracking = true;</script>
  <h1>Summer&nbsp;Gala</h1>
  <p>June 11 &amp; 12 at the &quot;Grand&quot; Hall &lt;main room&gt; &#39;24</p>
</body>
</html>"""


def _scraper(handler) -> PageScraper:
    return PageScraper(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


# ---------------------------------------------------------------------------
# HTML reduction
# ---------------------------------------------------------------------------


class TestHtmlReduction:
    """Tests for extract_title and html_to_text."""

    def test_extract_title(self) -> None:
        assert extract_title(_PAGE) == "Summer Gala 2024"

    def test_missing_title(self) -> None:
        assert extract_title("<p>No title</p>") is None

    def test_body_text_only(self) -> None:
        text = html_to_text(_PAGE)

        assert text == "Summer Gala June 11 & 12 at the \"Grand\" Hall <main room> '24"

    def test_no_body_uses_whole_document(self) -> None:
        assert html_to_text("<div>Hello <b>world</b></div>") == "Hello world"

    def test_scripts_and_styles_removed(self) -> None:
        html = "<body><style>.a{}</style>Visible<script>hidden()</script></body>"

        assert html_to_text(html) == "Visible"


# ---------------------------------------------------------------------------
# PageScraper
# ---------------------------------------------------------------------------


class TestPageScraper:
    """Tests for PageScraper.scrape."""

    def test_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=_PAGE)

        scraper = _scraper(handler)

        result = asyncio.run(scraper.scrape("https://example.com/gala"))

        assert result.ok
        assert result.url == "https://example.com/gala"
        assert result.title == "Summer Gala 2024"
        assert result.text.startswith("Summer Gala June 11")
        assert seen[0].headers["User-Agent"] == USER_AGENT

    def test_http_error_status(self) -> None:
        scraper = _scraper(lambda request: httpx.Response(404))

        result = asyncio.run(scraper.scrape("https://example.com/missing"))

        assert result.status == "error"
        assert result.error == "HTTP 404: Not Found"
        assert result.text == ""

    def test_network_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = asyncio.run(_scraper(handler).scrape("https://down.example"))

        assert result.status == "error"
        assert result.error == "connection refused"

    def test_borrowed_client_not_closed(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        async def run() -> None:
            async with PageScraper(client=client):
                pass

        asyncio.run(run())

        assert not client.is_closed

    def test_owned_client_closed(self) -> None:
        async def run() -> PageScraper:
            async with PageScraper() as scraper:
                return scraper

        scraper = asyncio.run(run())

        assert scraper._client.is_closed


# ---------------------------------------------------------------------------
# scrape_urls_batch
# ---------------------------------------------------------------------------


class TestScrapeUrlsBatch:
    """Tests for concurrent batch scraping."""

    def test_results_keep_url_order(self) -> None:
        async def scrape_one(url: str) -> ScrapedContent:
            # Later URLs finish first.
            await asyncio.sleep(0.01 * (3 - int(url[-1])))
            return ScrapedContent(url=url, text=f"page {url[-1]}", status="success")

        batch = asyncio.run(scrape_urls_batch(["u1", "u2", "u3"], scrape_one))

        assert [r.url for r in batch.results] == ["u1", "u2", "u3"]
        assert batch.success_count == 3

    def test_one_failure_does_not_fail_batch(self) -> None:
        async def scrape_one(url: str) -> ScrapedContent:
            if url == "bad":
                raise RuntimeError("DNS failure")
            return ScrapedContent(url=url, text="ok", status="success")

        batch = asyncio.run(scrape_urls_batch(["good", "bad"], scrape_one))

        assert batch.success_count == 1
        assert batch.error_count == 1
        assert batch.results[1].error == "DNS failure"

    def test_unbounded_by_default(self) -> None:
        """Without a cap every URL is in flight at once."""
        in_flight = 0
        peak = 0

        async def scrape_one(url: str) -> ScrapedContent:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return ScrapedContent(url=url, status="success")

        asyncio.run(scrape_urls_batch([f"u{n}" for n in range(6)], scrape_one))

        assert peak == 6

    @pytest.mark.parametrize("cap", [1, 2])
    def test_cap_limits_concurrency(self, cap: int) -> None:
        in_flight = 0
        peak = 0

        async def scrape_one(url: str) -> ScrapedContent:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return ScrapedContent(url=url, status="success")

        asyncio.run(scrape_urls_batch([f"u{n}" for n in range(5)], scrape_one, max_concurrent=cap))

        assert peak == cap

    def test_empty_list(self) -> None:
        async def scrape_one(url: str) -> ScrapedContent:
            raise AssertionError("not called")

        batch = asyncio.run(scrape_urls_batch([], scrape_one))

        assert batch.results == []
