"""Extraction backends used by the client-side pipeline.

A backend provides the three remote operations the pipeline needs:

- ``detect_urls(text)`` -> :class:`URLDetectionResult`
- ``scrape_url(url)`` -> :class:`ScrapedContent`
- ``stream_batch(request)`` -> async iterator of raw wire-protocol bytes

:class:`LocalBackend` runs everything in-process (frames still go through
the wire codec so the pipeline consumes the same bytes either way).
:class:`RemoteBackend` calls a running :mod:`event_every.server` over HTTP.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from typing import Protocol

import httpx

from event_every.exceptions import (
    InvalidInputError,
    NoEventFoundError,
    RateLimitExceededError,
    TransportError,
)
from event_every.llm import OpenRouterClient
from event_every.models.event import ExtractionRequest
from event_every.models.scrape import ScrapedContent, URLDetectionResult
from event_every.scraper import PageScraper
from event_every.stream import stream_event_chunks

logger = logging.getLogger(__name__)


class ExtractionBackend(Protocol):
    async def detect_urls(self, text: str) -> URLDetectionResult: ...

    async def scrape_url(self, url: str) -> ScrapedContent: ...

    def stream_batch(self, request: ExtractionRequest) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


class LocalBackend:
    """In-process backend.

    Args:
        client: LLM client used for detection and extraction.
        scraper: Page scraper.
    """

    def __init__(self, client: OpenRouterClient, scraper: PageScraper) -> None:
        self._client = client
        self._scraper = scraper

    async def detect_urls(self, text: str) -> URLDetectionResult:
        return await self._client.detect_urls(text)

    async def scrape_url(self, url: str) -> ScrapedContent:
        return await self._scraper.scrape(url)

    def stream_batch(self, request: ExtractionRequest) -> AsyncIterator[bytes]:
        return stream_event_chunks(self._client.parse_events_batch(request))

    async def aclose(self) -> None:
        await self._scraper.aclose()
        await self._client.aclose()


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return fallback
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return fallback


def _rate_limit_error(response: httpx.Response) -> RateLimitExceededError:
    try:
        data = response.json()
    except ValueError:
        data = {}
    reset_raw = data.get("reset") if isinstance(data, dict) else None
    try:
        reset = datetime.fromisoformat(reset_raw) if reset_raw else None
    except (TypeError, ValueError):
        reset = None
    if reset is None:
        reset = datetime.now(timezone.utc) + timedelta(days=1)
    return RateLimitExceededError(
        reset=reset,
        remaining=int(data.get("remaining", 0)) if isinstance(data, dict) else 0,
        message=_error_message(response, "Daily limit exceeded"),
    )


class RemoteBackend:
    """Backend that talks to an event-every server.

    Args:
        base_url: Server root, e.g. ``http://localhost:8000``.
        client: An ``httpx.AsyncClient`` to reuse (its ``base_url`` is
            used as-is); created and owned by the backend when omitted.
        timeout: Request timeout in seconds for an owned client.
    """

    def __init__(
        self,
        base_url: str = "",
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            return await self._http.post(path, json=payload)
        except httpx.RequestError as exc:
            raise TransportError(str(exc) or f"Request to {path} failed") from exc

    async def detect_urls(self, text: str) -> URLDetectionResult:
        """Call ``/api/detect-urls``.

        Raises:
            TransportError: On network failure or a non-2xx response.
        """
        response = await self._post("/api/detect-urls", {"text": text})
        if not response.is_success:
            raise TransportError(
                _error_message(response, "Failed to detect URLs"),
                status_code=response.status_code,
            )
        return URLDetectionResult.model_validate(response.json())

    async def scrape_url(self, url: str) -> ScrapedContent:
        """Call ``/api/scrape-url``; failures come back as ``error`` results."""
        try:
            response = await self._post("/api/scrape-url", {"url": url})
        except TransportError as exc:
            return ScrapedContent(url=url, status="error", error=str(exc))

        if not response.is_success:
            return ScrapedContent(
                url=url,
                status="error",
                error=_error_message(response, "Failed to scrape URL"),
            )
        return ScrapedContent.model_validate(response.json())

    async def stream_batch(self, request: ExtractionRequest) -> AsyncIterator[bytes]:
        """Call ``/api/parse-batch`` and yield the response body as it arrives.

        Raises:
            RateLimitExceededError: On a ``429`` response.
            InvalidInputError: On a ``400`` response.
            NoEventFoundError: On a ``422`` response.
            TransportError: On network failure or any other non-2xx response.
        """
        try:
            async with self._http.stream(
                "POST", "/api/parse-batch", json=request.to_wire()
            ) as response:
                if not response.is_success:
                    await response.aread()
                    if response.status_code == 429:
                        raise _rate_limit_error(response)
                    message = _error_message(response, "Failed to parse events")
                    if response.status_code == 400:
                        raise InvalidInputError(message)
                    if response.status_code == 422:
                        raise NoEventFoundError(message)
                    raise TransportError(message, status_code=response.status_code)
                async for data in response.aiter_bytes():
                    yield data
        except httpx.RequestError as exc:
            logger.error("Batch stream request failed: %s", exc)
            raise TransportError(str(exc) or "Batch stream request failed") from exc
