"""Unit tests for the HTTP service.

The LLM client and page scraper are mocks; requests go through FastAPI's
``TestClient`` so routing, validation and error mapping are exercised for
real.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from event_every.config import Settings
from event_every.exceptions import (
    InvalidInputError,
    NoEventFoundError,
    RateLimitExceededError,
    TransportError,
)
from event_every.models.event import ExtractionRequest, ParsedEvent
from event_every.models.scrape import ScrapedContent, URLDetectionResult
from event_every.ratelimit import RateLimiter
from event_every.server import client_identifier, create_app, error_response
from event_every.stream import EventStreamDecoder

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_NOW = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)


def _parsed(title: str) -> ParsedEvent:
    return ParsedEvent(title=title, start_date="2024-06-11T10:00:00", confidence=0.9)


class _FakeLLM:
    """Stands in for OpenRouterClient; records the requests it receives."""

    def __init__(self) -> None:
        self.parse_event = AsyncMock(return_value=_parsed("Lunch"))
        self.detect_urls = AsyncMock()
        self.aclose = AsyncMock()
        self.chunks: list[list[ParsedEvent]] = [[_parsed("A"), _parsed("B"), _parsed("C")]]
        self.batch_error: Exception | None = None
        self.batch_requests: list[ExtractionRequest] = []

    async def parse_events_batch(self, request: ExtractionRequest):
        self.batch_requests.append(request)
        if self.batch_error is not None:
            raise self.batch_error
        for chunk in self.chunks:
            yield chunk


def _frames(content: bytes) -> list[dict]:
    return EventStreamDecoder().feed(content)


@pytest.fixture()
def llm() -> _FakeLLM:
    return _FakeLLM()


@pytest.fixture()
def scraper() -> MagicMock:
    fake = MagicMock()
    fake.scrape = AsyncMock()
    fake.aclose = AsyncMock()
    return fake


@pytest.fixture()
def limiter() -> RateLimiter:
    return RateLimiter(limit=2, now=lambda: _NOW)


@pytest.fixture()
def http(
    llm: _FakeLLM, scraper: MagicMock, limiter: RateLimiter
) -> Generator[TestClient, None, None]:
    app = create_app(
        Settings(openrouter_api_key="test-key", timezone="America/New_York"),
        client=llm,
        scraper=scraper,
        limiter=limiter,
    )
    with TestClient(app) as client:
        yield client


# ---------------------------------------------------------------------------
# Health and lifecycle
# ---------------------------------------------------------------------------


class TestHealth:
    """Tests for the liveness endpoint and app lifecycle."""

    def test_health(self, http: TestClient) -> None:
        response = http.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": "0.1.0"}

    def test_shutdown_closes_collaborators(self, llm: _FakeLLM, scraper: MagicMock) -> None:
        app = create_app(Settings(openrouter_api_key="k"), client=llm, scraper=scraper)

        with TestClient(app):
            pass

        llm.aclose.assert_awaited_once()
        scraper.aclose.assert_awaited_once()


# ---------------------------------------------------------------------------
# /api/parse
# ---------------------------------------------------------------------------


class TestParse:
    """Tests for single-event extraction."""

    def test_parse_returns_wire_event(self, http: TestClient, llm: _FakeLLM) -> None:
        response = http.post("/api/parse", json={"text": "Lunch tomorrow"})

        assert response.status_code == 200
        assert response.json() == {
            "title": "Lunch",
            "startDate": "2024-06-11T10:00:00",
            "confidence": 0.9,
        }

    def test_default_context_uses_server_timezone(self, http: TestClient, llm: _FakeLLM) -> None:
        http.post("/api/parse", json={"text": "Lunch tomorrow"})

        sent: ExtractionRequest = llm.parse_event.await_args.args[0]
        assert sent.client_context is not None
        assert sent.client_context.timezone == "America/New_York"

    def test_client_context_passed_through(self, http: TestClient, llm: _FakeLLM) -> None:
        context = {"currentDateTime": "2024-06-10T09:00:00Z", "timezone": "Europe/Paris"}

        http.post("/api/parse", json={"text": "Lunch tomorrow", "clientContext": context})

        sent: ExtractionRequest = llm.parse_event.await_args.args[0]
        assert sent.client_context.current_date_time == "2024-06-10T09:00:00Z"
        assert sent.client_context.timezone == "Europe/Paris"

    @pytest.mark.parametrize(
        "error, status",
        [
            (InvalidInputError("Either text or image data is required"), 400),
            (NoEventFoundError(), 422),
            (TransportError("upstream timed out", status_code=504), 500),
        ],
    )
    def test_error_mapping(
        self, http: TestClient, llm: _FakeLLM, error: Exception, status: int
    ) -> None:
        llm.parse_event.side_effect = error

        response = http.post("/api/parse", json={"text": "x"})

        assert response.status_code == status
        assert response.json() == {"error": str(error)}


# ---------------------------------------------------------------------------
# /api/parse-batch
# ---------------------------------------------------------------------------


class TestParseBatch:
    """Tests for the streamed, rate-limited batch endpoint."""

    def test_stream_of_chunks(self, http: TestClient, llm: _FakeLLM) -> None:
        llm.chunks = [[_parsed("A"), _parsed("B"), _parsed("C")], [_parsed("D")]]

        response = http.post("/api/parse-batch", json={"text": "Agenda"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-ratelimit-remaining"] == "1"
        frames = _frames(response.content)
        assert [len(f["events"]) for f in frames] == [3, 1, 0]
        assert frames[-1]["isComplete"] is True

    def test_invalid_input_rejected(self, http: TestClient) -> None:
        response = http.post("/api/parse-batch", json={"text": "   "})

        assert response.status_code == 400
        assert response.json() == {"error": "Either text or image data is required"}

    def test_quota_exhausted(self, http: TestClient) -> None:
        for _ in range(2):
            assert http.post("/api/parse-batch", json={"text": "Agenda"}).status_code == 200

        response = http.post("/api/parse-batch", json={"text": "Agenda"})

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Daily limit exceeded"
        assert body["remaining"] == 0
        assert datetime.fromisoformat(body["reset"]) > _NOW
        assert response.headers["x-ratelimit-remaining"] == "0"

    def test_quota_is_per_client(self, http: TestClient) -> None:
        for _ in range(2):
            http.post(
                "/api/parse-batch", json={"text": "x"}, headers={"X-Forwarded-For": "1.1.1.1"}
            )

        response = http.post(
            "/api/parse-batch", json={"text": "x"}, headers={"X-Forwarded-For": "2.2.2.2"}
        )

        assert response.status_code == 200

    def test_failed_extraction_is_error_frame_and_not_charged(
        self, http: TestClient, llm: _FakeLLM
    ) -> None:
        llm.batch_error = NoEventFoundError("No events found in the input")

        for _ in range(3):
            response = http.post("/api/parse-batch", json={"text": "nothing"})
            assert response.status_code == 200
            assert _frames(response.content) == [{"error": "No events found in the input"}]

    def test_context_filled_for_batch(self, http: TestClient, llm: _FakeLLM) -> None:
        http.post("/api/parse-batch", json={"text": "Agenda"})

        assert llm.batch_requests[0].client_context.timezone == "America/New_York"


# ---------------------------------------------------------------------------
# /api/detect-urls and /api/scrape-url
# ---------------------------------------------------------------------------


class TestUrlEndpoints:
    """Tests for URL detection and scraping."""

    def test_detect_urls(self, http: TestClient, llm: _FakeLLM) -> None:
        llm.detect_urls.return_value = URLDetectionResult(
            urls=["https://a.test"], remaining_text="see", has_urls=True
        )

        response = http.post("/api/detect-urls", json={"text": "see https://a.test"})

        assert response.status_code == 200
        assert response.json() == {
            "urls": ["https://a.test"],
            "remainingText": "see",
            "hasUrls": True,
        }

    def test_detect_urls_requires_text(self, http: TestClient) -> None:
        response = http.post("/api/detect-urls", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Text is required"}

    def test_scrape_success(self, http: TestClient, scraper: MagicMock) -> None:
        scraper.scrape.return_value = ScrapedContent(
            url="https://a.test", text="Gala", title="Summer Gala", status="success"
        )

        response = http.post("/api/scrape-url", json={"url": "https://a.test"})

        assert response.status_code == 200
        assert response.json() == {
            "url": "https://a.test",
            "text": "Gala",
            "title": "Summer Gala",
            "status": "success",
        }

    def test_scrape_failure_is_500(self, http: TestClient, scraper: MagicMock) -> None:
        scraper.scrape.return_value = ScrapedContent(
            url="https://a.test", status="error", error="HTTP 404: Not Found"
        )

        response = http.post("/api/scrape-url", json={"url": "https://a.test"})

        assert response.status_code == 500
        assert response.json()["error"] == "HTTP 404: Not Found"

    def test_scrape_requires_url(self, http: TestClient) -> None:
        response = http.post("/api/scrape-url", json={"url": ""})

        assert response.status_code == 400
        assert response.json() == {"error": "URL is required"}


# ---------------------------------------------------------------------------
# Identification and error bodies
# ---------------------------------------------------------------------------


def _request(headers: list[tuple[bytes, bytes]], client: tuple[str, int] | None) -> Request:
    scope = {"type": "http", "method": "POST", "path": "/", "headers": headers, "client": client}
    return Request(scope)


class TestHelpers:
    """Tests for client_identifier and error_response."""

    def test_forwarded_for_first_address(self) -> None:
        request = _request([(b"x-forwarded-for", b"203.0.113.7, 10.0.0.1")], ("127.0.0.1", 5000))

        assert client_identifier(request) == "203.0.113.7"

    def test_peer_host(self) -> None:
        assert client_identifier(_request([], ("192.0.2.1", 5000))) == "192.0.2.1"

    def test_anonymous(self) -> None:
        assert client_identifier(_request([], None)) == "anonymous"

    def test_rate_limit_response(self) -> None:
        response = error_response(RateLimitExceededError(reset=_NOW))

        assert response.status_code == 429
        assert response.headers["x-ratelimit-remaining"] == "0"
        assert b'"reset":"2024-06-10T09:00:00+00:00"' in response.body
