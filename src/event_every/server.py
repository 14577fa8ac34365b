"""HTTP service boundary for event-every.

:func:`create_app` builds a FastAPI application exposing:

- ``POST /api/parse`` -- single-event extraction.
- ``POST /api/parse-batch`` -- rate-limited batch extraction, streamed as
  :mod:`event_every.stream` frames.
- ``POST /api/detect-urls`` -- LLM-backed URL detection.
- ``POST /api/scrape-url`` -- fetch one page and return its text.
- ``GET /api/health`` -- liveness probe.

Domain errors become ``{"error": message}`` JSON bodies; stack traces never
leave the process.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from event_every import __version__
from event_every.config import Settings, load_settings
from event_every.exceptions import (
    EventEveryError,
    InvalidInputError,
    NoEventFoundError,
    RateLimitExceededError,
)
from event_every.llm import OpenRouterClient
from event_every.models.event import ClientContext, ExtractionRequest, ParsedEvent
from event_every.ratelimit import DAILY_LIMIT, RateLimiter
from event_every.scraper import PageScraper
from event_every.stream import MEDIA_TYPE, stream_event_chunks

logger = logging.getLogger(__name__)


class DetectURLsRequest(BaseModel):
    text: str = ""


class ScrapeURLRequest(BaseModel):
    url: str = ""


def client_identifier(request: Request) -> str:
    """Rate-limit key: first ``X-Forwarded-For`` address, else the peer host."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    if request.client is not None and request.client.host:
        return request.client.host
    return "anonymous"


def _status_for(exc: EventEveryError) -> int:
    if isinstance(exc, InvalidInputError):
        return 400
    if isinstance(exc, NoEventFoundError):
        return 422
    if isinstance(exc, RateLimitExceededError):
        return 429
    return 500


def error_response(exc: EventEveryError) -> JSONResponse:
    """Render a domain error as its JSON response."""
    status_code = _status_for(exc)
    body: dict = {"error": str(exc)}
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitExceededError):
        body["reset"] = exc.reset.isoformat()
        body["remaining"] = exc.remaining
        headers["X-RateLimit-Remaining"] = str(exc.remaining)
    return JSONResponse(body, status_code=status_code, headers=headers)


def create_app(
    settings: Settings | None = None,
    client: OpenRouterClient | None = None,
    scraper: PageScraper | None = None,
    limiter: RateLimiter | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Collaborators not supplied are built from *settings* (loaded from the
    environment when omitted).

    Args:
        settings: Application settings.
        client: LLM client.
        scraper: Page scraper.
        limiter: Daily batch-extraction quota.

    Returns:
        The configured :class:`~fastapi.FastAPI` app.
    """
    if settings is None and client is None:
        settings = load_settings()
    if client is None:
        client = OpenRouterClient.from_settings(settings)
    if scraper is None:
        scraper = PageScraper()
    if limiter is None:
        limiter = RateLimiter(
            limit=settings.daily_event_limit if settings is not None else DAILY_LIMIT
        )
    default_timezone = settings.timezone if settings is not None else "UTC"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("event-every server starting (daily limit %d)", limiter.limit)
        yield
        await scraper.aclose()
        await client.aclose()
        logger.info("event-every server stopped")

    app = FastAPI(title="event-every", version=__version__, lifespan=lifespan)

    @app.exception_handler(EventEveryError)
    async def handle_domain_error(request: Request, exc: EventEveryError) -> JSONResponse:
        if _status_for(exc) >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return error_response(exc)

    def with_context(body: ExtractionRequest) -> ExtractionRequest:
        if body.client_context is not None:
            return body
        return body.model_copy(update={"client_context": ClientContext.now(default_timezone)})

    @app.get("/api/health")
    async def health() -> dict:
        return {"status": "ok", "version": __version__}

    @app.post("/api/parse")
    async def parse(body: ExtractionRequest) -> dict:
        parsed: ParsedEvent = await client.parse_event(with_context(body))
        return parsed.to_wire()

    @app.post("/api/parse-batch")
    async def parse_batch(body: ExtractionRequest, request: Request) -> StreamingResponse:
        body.validate_input()
        identifier = client_identifier(request)

        verdict = await limiter.check(identifier)
        if not verdict.success:
            raise RateLimitExceededError(reset=verdict.reset, remaining=verdict.remaining)

        extraction = with_context(body)

        async def charged_chunks() -> AsyncIterator[list[ParsedEvent]]:
            charged = False
            async for chunk in client.parse_events_batch(extraction):
                if not charged:
                    await limiter.increment(identifier)
                    charged = True
                yield chunk

        return StreamingResponse(
            stream_event_chunks(charged_chunks()),
            media_type=MEDIA_TYPE,
            headers={
                "Cache-Control": "no-cache",
                "X-RateLimit-Remaining": str(max(0, verdict.remaining - 1)),
            },
        )

    @app.post("/api/detect-urls")
    async def detect_urls(body: DetectURLsRequest) -> dict:
        if not body.text:
            raise InvalidInputError("Text is required")
        result = await client.detect_urls(body.text)
        return result.model_dump(mode="json", by_alias=True)

    @app.post("/api/scrape-url")
    async def scrape_url(body: ScrapeURLRequest) -> JSONResponse:
        if not body.url:
            raise InvalidInputError("URL is required")
        content = await scraper.scrape(body.url)
        payload = content.model_dump(mode="json", exclude_none=True)
        return JSONResponse(payload, status_code=200 if content.ok else 500)

    return app
