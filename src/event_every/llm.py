"""OpenRouter LLM client for calendar event extraction.

Wraps the ``openai`` SDK's :class:`~openai.AsyncOpenAI` against the
OpenAI-compatible OpenRouter chat-completions endpoint.  Every call
declares exactly one tool and forces the model to answer through it, so
responses are decoded from ``choices[0].message.tool_calls[0]`` rather
than scraped out of free text.

No retries are attempted: transport and API failures propagate to the
caller as :class:`~event_every.exceptions.TransportError`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any, TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from event_every.config import DEFAULT_BASE_URL, DEFAULT_MODEL, Settings
from event_every.exceptions import (
    BatchLimitExceededError,
    MalformedResponseError,
    NoEventFoundError,
    TransportError,
)
from event_every.models.event import ExtractionRequest, ParsedEvent, ParsedEventBatch
from event_every.models.scrape import URLDetectionResult
from event_every.prompts import (
    MAX_BATCH_EVENTS,
    build_event_prompt,
    build_url_detection_prompt,
    event_tool,
    events_tool,
    url_tool,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 3

_M = TypeVar("_M", bound=BaseModel)
_T = TypeVar("_T")


def chunk_events(events: Sequence[_T], size: int = CHUNK_SIZE) -> list[list[_T]]:
    """Split *events* into consecutive chunks of at most *size* items.

    Seven events with the default size give chunks of ``[3, 3, 1]``.
    """
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [list(events[i : i + size]) for i in range(0, len(events), size)]


class OpenRouterClient:
    """Client for extracting calendar events via an OpenRouter model.

    Args:
        api_key: OpenRouter API key.
        model: Model identifier used for every call.
        base_url: Base URL of the OpenAI-compatible endpoint.
        app_title: Sent as the ``X-Title`` header for OpenRouter attribution.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        app_title: str = "event-every",
    ) -> None:
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=0,
            default_headers={"X-Title": app_title},
        )
        self._model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenRouterClient:
        return cls(
            api_key=settings.openrouter_api_key,
            model=settings.openrouter_model,
            base_url=settings.openrouter_base_url,
        )

    async def aclose(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def parse_event(self, request: ExtractionRequest) -> ParsedEvent:
        """Extract a single event.

        Args:
            request: Text and/or image plus optional client context.

        Returns:
            The decoded :class:`ParsedEvent`; ``confidence`` defaults to
            ``0.5`` when the model leaves it out.

        Raises:
            InvalidInputError: If the request has neither text nor image,
                or an image without a MIME type.
            NoEventFoundError: If the model returned neither a title nor a
                start date.
            MalformedResponseError: If the tool call is missing or its
                arguments do not decode.
            TransportError: On any API or network failure.
        """
        request.validate_input()
        content = _build_content(request, batch=False)

        raw = await self._call_tool(content, event_tool())
        parsed = _decode(raw, ParsedEvent)

        if parsed.is_empty:
            raise NoEventFoundError()

        logger.info(
            "Extracted event: '%s' | start=%s | confidence=%.2f",
            parsed.title,
            parsed.start_date,
            parsed.confidence,
        )
        return parsed

    async def extract_events(self, request: ExtractionRequest) -> ParsedEventBatch:
        """Extract every event in one model call.

        Raises:
            InvalidInputError: As for :meth:`parse_event`.
            NoEventFoundError: If the returned ``events`` list is empty.
            BatchLimitExceededError: If more than
                :data:`~event_every.prompts.MAX_BATCH_EVENTS` came back.
            MalformedResponseError: If the tool call is missing or its
                arguments do not decode.
            TransportError: On any API or network failure.
        """
        request.validate_input()
        content = _build_content(request, batch=True)

        raw = await self._call_tool(content, events_tool())
        batch = _decode(raw, ParsedEventBatch)

        if not batch.events:
            raise NoEventFoundError("No events found in the input")
        if len(batch.events) > MAX_BATCH_EVENTS:
            raise BatchLimitExceededError(len(batch.events), MAX_BATCH_EVENTS)

        for event in batch.events:
            logger.info(
                "Extracted event: '%s' | start=%s | all_day=%s | confidence=%.2f",
                event.title,
                event.start_date,
                event.all_day,
                event.confidence,
            )
        logger.info(
            "Batch extraction: %d event(s) (model reported %s) | confidence=%.2f",
            len(batch.events),
            batch.total_count,
            batch.confidence,
        )
        return batch

    async def parse_events_batch(
        self,
        request: ExtractionRequest,
        chunk_size: int = CHUNK_SIZE,
    ) -> AsyncIterator[list[ParsedEvent]]:
        """Extract every event and yield them in chunks of *chunk_size*.

        The model is called once, when the first chunk is requested; the
        complete result is then sliced client-side.  The iterator is
        finite and cannot be restarted.

        Yields:
            Lists of at most *chunk_size* events, in source order.

        Raises:
            The same errors as :meth:`extract_events`, on first iteration.
        """
        batch = await self.extract_events(request)
        for chunk in chunk_events(batch.events, chunk_size):
            yield chunk

    async def detect_urls(self, text: str) -> URLDetectionResult:
        """Ask the model which URLs *text* contains.

        Zero URLs is not an error: the result then has ``has_urls=False``
        and the original text as ``remaining_text``.

        Raises:
            MalformedResponseError: If the tool call is missing or its
                arguments do not decode.
            TransportError: On any API or network failure.
        """
        content = [{"type": "text", "text": build_url_detection_prompt(text)}]
        raw = await self._call_tool(content, url_tool())
        result = _decode(raw, URLDetectionResult)

        urls = [url.strip() for url in result.urls if url and url.strip()]
        if not urls:
            logger.info("URL detection: no URLs found")
            return URLDetectionResult(urls=[], remaining_text=text, has_urls=False)

        logger.info("URL detection: %d URL(s) found", len(urls))
        return URLDetectionResult(
            urls=urls,
            remaining_text=result.remaining_text,
            has_urls=True,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _call_tool(self, content: list[dict[str, Any]], tool: dict) -> str:
        """Call the model with a single forced tool and return its arguments.

        Raises:
            TransportError: On API-level failures (network, auth, non-2xx).
            MalformedResponseError: If the response carries no tool call.
        """
        tool_name = tool["function"]["name"]
        logger.debug("Calling %s with tool %s", self._model, tool_name)

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": content}],
                tools=[tool],
                tool_choice={"type": "function", "function": {"name": tool_name}},
            )
        except openai.APIError as exc:
            logger.error("OpenRouter API error: %s", exc)
            raise TransportError(
                getattr(exc, "message", None) or str(exc),
                status_code=getattr(exc, "status_code", None),
            ) from exc

        choices = getattr(response, "choices", None) or []
        tool_calls = choices[0].message.tool_calls if choices else None
        if not tool_calls:
            raise MalformedResponseError("No tool calls found in model response")

        arguments = tool_calls[0].function.arguments or ""
        logger.debug("Raw %s arguments:\n%s", tool_name, arguments)
        return arguments


def _build_content(request: ExtractionRequest, batch: bool) -> list[dict[str, Any]]:
    """Build the multimodal user message parts.

    The instruction text always comes first so an image-only request
    still carries the extraction rules.
    """
    content: list[dict[str, Any]] = [
        {
            "type": "text",
            "text": build_event_prompt(
                request.text,
                request.client_context,
                batch=batch,
                instructions=request.instructions,
            ),
        }
    ]
    if request.image_base64:
        content.append(
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:{request.image_mime_type};base64,{request.image_base64}",
                },
            }
        )
    return content


def _decode(raw: str, model: type[_M]) -> _M:
    """Decode tool-call arguments into *model*.

    ``null`` values are dropped before validation so a model that writes
    ``null`` instead of omitting a field is treated the same way.

    Raises:
        MalformedResponseError: If *raw* is not JSON or does not match
            the schema.
    """
    if not raw or not raw.strip():
        raise MalformedResponseError("Empty tool arguments from model", raw_response=raw)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"Invalid JSON: {exc}", raw_response=raw) from exc

    if not isinstance(data, dict):
        raise MalformedResponseError("Tool arguments are not a JSON object", raw_response=raw)

    try:
        return model.model_validate(_drop_nulls(data))
    except ValidationError as exc:
        raise MalformedResponseError(f"Schema validation failed: {exc}", raw_response=raw) from exc


def _drop_nulls(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_nulls(v) for v in value]
    return value
