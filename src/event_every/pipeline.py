"""Pipeline orchestrator for the input-to-calendar workflow.

Wires the components together: each submission becomes a
:class:`~event_every.processing_queue.ProcessingQueue` job that expands
linked pages, streams batch extraction through a backend, and builds
:class:`~event_every.models.event.CalendarEvent` records.  Results of all
jobs are deduplicated, saved to the history and optionally exported.

The top-level entry point is :func:`run_pipeline`, which returns a
:class:`PipelineResult` suitable for rendering by the demo output
formatter.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import time
from dataclasses import dataclass, field
from pathlib import Path

from event_every.backend import ExtractionBackend, LocalBackend, RemoteBackend
from event_every.config import Settings, load_settings
from event_every.dedup import deduplicate_events
from event_every.exceptions import ExportValidationError, InvalidInputError
from event_every.export import export_events_to_ics
from event_every.llm import OpenRouterClient
from event_every.models.event import (
    CalendarEvent,
    ClientContext,
    EventAttachment,
    ExtractionRequest,
    ParsedEvent,
)
from event_every.models.queue import QueueItem, QueueStatus
from event_every.processing_queue import ProcessingQueue
from event_every.scraper import PageScraper
from event_every.storage import EventStorage
from event_every.stream import read_event_stream
from event_every.url_expansion import expand_urls, find_urls

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageInput:
    """One image to extract events from.

    Attributes:
        filename: Display name (kept on the ``original-image`` attachment).
        mime_type: Image MIME type.
        data: Raw image bytes.
    """

    filename: str
    mime_type: str
    data: bytes

    @classmethod
    def from_path(cls, path: Path) -> ImageInput:
        """Read an image file, guessing its MIME type from the extension.

        Raises:
            FileNotFoundError: If *path* does not exist.
            InvalidInputError: If the file is not a recognised image type.
        """
        mime_type, _ = mimetypes.guess_type(path.name)
        if not mime_type or not mime_type.startswith("image/"):
            raise InvalidInputError(f"Not an image file: {path}")
        return cls(filename=path.name, mime_type=mime_type, data=path.read_bytes())


@dataclass(frozen=True)
class ImageJob:
    """Payload of an ``image`` queue item."""

    images: tuple[ImageInput, ...]
    instructions: str | None = None


@dataclass(frozen=True)
class FailedJob:
    """A queue job that ended in ``error``.

    Attributes:
        item_id: Queue item id.
        label: Human-readable description of the input.
        error: The recorded failure message.
    """

    item_id: str
    label: str
    error: str


@dataclass
class PipelineResult:
    """Aggregated result of one pipeline run.

    Attributes:
        inputs: Labels of the submitted inputs.
        urls_hinted: URLs spotted in the text by the display regex.
        events_extracted: Number of events before deduplication.
        events: Deduplicated events, in first-occurrence order.
        failures: Jobs that failed.
        warnings: Non-fatal problems (save or export failures).
        saved: Whether the events were written to the history.
        ics_path: Path of the exported ``.ics`` file, if any.
        duration_seconds: Wall-clock time for the run.
        dry_run: Whether saving was skipped.
    """

    inputs: list[str] = field(default_factory=list)
    urls_hinted: list[str] = field(default_factory=list)
    events_extracted: int = 0
    events: list[CalendarEvent] = field(default_factory=list)
    failures: list[FailedJob] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    saved: bool = False
    ics_path: Path | None = None
    duration_seconds: float = 0.0
    dry_run: bool = False

    @property
    def duplicates_removed(self) -> int:
        return self.events_extracted - len(self.events)


def _job_label(item: QueueItem) -> str:
    if item.type == "image":
        count = item.metadata.get("file_count", 1)
        filename = item.metadata.get("filename", "image")
        return filename if count == 1 else f"{filename} (+{count - 1} more)"
    text = str(item.payload).strip().replace("\n", " ")
    return f"text: {text[:40]}..." if len(text) > 40 else f"text: {text}"


# ---------------------------------------------------------------------------
# EventPipeline
# ---------------------------------------------------------------------------


class EventPipeline:
    """Submits inputs as queue jobs and collects their events.

    Args:
        backend: Detection, scraping and batch-stream provider.
        queue: The job queue (a fresh one with the default cap if omitted).
        timezone: Client timezone used for relative dates.
        scrape_max_concurrent: Optional cap on simultaneous page fetches.
    """

    def __init__(
        self,
        backend: ExtractionBackend,
        queue: ProcessingQueue | None = None,
        timezone: str = "UTC",
        scrape_max_concurrent: int | None = None,
    ) -> None:
        self.backend = backend
        self.queue = queue or ProcessingQueue()
        self.timezone = timezone
        self.scrape_max_concurrent = scrape_max_concurrent

    def submit_text(self, text: str) -> str:
        """Queue a text job; returns its id."""
        metadata = {"url_count": len(find_urls(text))}
        return self.queue.add("text", text, self._process_text, metadata)

    def submit_images(self, images: list[ImageInput], instructions: str | None = None) -> str:
        """Queue one job for a group of images; returns its id.

        Args:
            images: Images extracted in order within the job.
            instructions: Optional text sent with every image (e.g.
                "import as all-day").
        """
        metadata = {
            "file_count": len(images),
            "filename": images[0].filename if images else None,
        }
        job = ImageJob(images=tuple(images), instructions=instructions)
        return self.queue.add("image", job, self._process_images, metadata)

    async def collect(self) -> tuple[list[CalendarEvent], list[FailedJob]]:
        """Wait for every job and return all events plus failures.

        Events keep queue order (and source order within a job); they are
        *not* deduplicated here.
        """
        await self.queue.wait_idle()

        events: list[CalendarEvent] = []
        failures: list[FailedJob] = []
        for item in self.queue.get_all():
            if item.status is QueueStatus.COMPLETE:
                events.extend(item.result or [])
            elif item.status is QueueStatus.ERROR:
                failures.append(
                    FailedJob(item.id, _job_label(item), item.error or "Unknown error occurred")
                )
        return events, failures

    # ------------------------------------------------------------------
    # Processors
    # ------------------------------------------------------------------

    def _context(self) -> ClientContext:
        return ClientContext.now(self.timezone)

    async def _extract(
        self,
        item_id: str,
        request: ExtractionRequest,
        base: int,
        span: int,
    ) -> list[ParsedEvent]:
        """Stream one batch extraction; chunk progress stays within base..base+span."""

        def on_chunk(events: list[ParsedEvent], index: int) -> None:
            self.queue.update_progress(item_id, min(base + span, base + 10 * (index + 1)))

        result = await read_event_stream(self.backend.stream_batch(request), on_chunk=on_chunk)
        return result.raise_if_incomplete().events

    async def _process_text(self, item: QueueItem) -> list[CalendarEvent]:
        text = str(item.payload)
        ExtractionRequest(text=text).validate_input()

        self.queue.update_progress(item.id, 10)
        expanded = await expand_urls(
            text,
            self.backend.detect_urls,
            self.backend.scrape_url,
            max_concurrent=self.scrape_max_concurrent,
        )
        self.queue.update_progress(item.id, 30)

        request = ExtractionRequest(
            text=expanded.text,
            client_context=self._context(),
            instructions=text,
        )
        parsed = await self._extract(item.id, request, base=30, span=65)

        source = "url" if expanded.has_urls else "text"
        return [
            CalendarEvent.from_parsed(
                event,
                source=source,
                original_input=text,
                attachments=[
                    EventAttachment.from_bytes(
                        text.encode("utf-8"),
                        filename="original-text.txt",
                        mime_type="text/plain",
                        attachment_type="original-text",
                    )
                ],
            )
            for event in parsed
        ]

    async def _process_images(self, item: QueueItem) -> list[CalendarEvent]:
        job: ImageJob = item.payload
        if not job.images:
            raise InvalidInputError("Either text or image data is required")

        events: list[CalendarEvent] = []
        step = 90 // len(job.images)
        for index, image in enumerate(job.images):
            request = ExtractionRequest(
                text=job.instructions,
                image_base64=base64.b64encode(image.data).decode("ascii"),
                image_mime_type=image.mime_type,
                client_context=self._context(),
                instructions=job.instructions,
            )
            parsed = await self._extract(item.id, request, base=5 + index * step, span=step)
            for event in parsed:
                attachment = EventAttachment.from_bytes(
                    image.data,
                    filename=image.filename,
                    mime_type=image.mime_type,
                    attachment_type="original-image",
                )
                events.append(
                    CalendarEvent.from_parsed(
                        event,
                        source="image",
                        original_input=job.instructions,
                        attachments=[attachment],
                    )
                )
        return events


# ---------------------------------------------------------------------------
# Pipeline entry point
# ---------------------------------------------------------------------------


def build_backend(settings: Settings, server_url: str | None = None) -> ExtractionBackend:
    """Return a :class:`RemoteBackend` for *server_url*, else a local one."""
    if server_url:
        return RemoteBackend(server_url)
    return LocalBackend(OpenRouterClient.from_settings(settings), PageScraper())


def run_pipeline(
    text: str | None = None,
    image_paths: list[Path] | None = None,
    instructions: str | None = None,
    dry_run: bool = False,
    ics_output: Path | None = None,
    server_url: str | None = None,
    settings: Settings | None = None,
    backend: ExtractionBackend | None = None,
    storage: EventStorage | None = None,
) -> PipelineResult:
    """Run the full input-to-calendar pipeline.

    Executes four stages:

    1. **Submit** -- queue one text job and one image job (if given).
    2. **Process** -- jobs run through the queue (at most three at once):
       URL expansion, streamed batch extraction, event construction.
    3. **Deduplicate** -- merge near-duplicates across all jobs.
    4. **Persist** -- save to the history (skipped in dry-run mode) and
       write an ``.ics`` file when *ics_output* is given.

    Job failures are recorded in the result and do not stop other jobs.
    Save and export failures become warnings.

    Args:
        text: Free text (may contain links and instructions).
        image_paths: Image files to extract from.
        instructions: Text sent along with every image.
        dry_run: If ``True``, extract but do not save.
        ics_output: File or directory for an ``.ics`` export.
        server_url: Use a running server instead of calling the model
            directly.
        settings: Settings override (loaded from the environment if
            omitted).
        backend: Backend override (useful for testing).
        storage: History override.

    Returns:
        A :class:`PipelineResult`.

    Raises:
        InvalidInputError: If neither text nor images were supplied, or a
            file is not an image.
        FileNotFoundError: If an image path does not exist.
    """
    start_time = time.monotonic()
    result = PipelineResult(dry_run=dry_run)

    if not (text and text.strip()) and not image_paths:
        raise InvalidInputError("Either text or image data is required")

    images = [ImageInput.from_path(Path(p)) for p in image_paths or []]
    settings = settings or load_settings()
    storage = storage or EventStorage(settings.event_store_path)
    owns_backend = backend is None
    backend = backend or build_backend(settings, server_url)

    events, failures = asyncio.run(
        _process(backend, owns_backend, settings, text, images, instructions, result)
    )

    result.failures = failures
    result.events_extracted = len(events)
    result.events = deduplicate_events(events)
    for failure in failures:
        logger.error("Job %s failed: %s", failure.label, failure.error)

    logger.info(
        "Extraction complete: %d event(s), %d after deduplication, %d failed job(s)",
        result.events_extracted,
        len(result.events),
        len(result.failures),
    )

    if result.events and not dry_run:
        saved = storage.save_events(result.events)
        if saved.success:
            result.saved = True
        else:
            msg = f"Could not save events: {saved.error}"
            result.warnings.append(msg)
            logger.warning(msg)
    elif dry_run:
        logger.info("Dry-run mode -- skipping save")

    if ics_output is not None and result.events:
        try:
            result.ics_path = export_events_to_ics(result.events, ics_output)
        except (ExportValidationError, OSError) as exc:
            msg = f"Could not export events: {exc}"
            result.warnings.append(msg)
            logger.warning(msg)

    result.duration_seconds = time.monotonic() - start_time
    return result


async def _process(
    backend: ExtractionBackend,
    owns_backend: bool,
    settings: Settings,
    text: str | None,
    images: list[ImageInput],
    instructions: str | None,
    result: PipelineResult,
) -> tuple[list[CalendarEvent], list[FailedJob]]:
    pipeline = EventPipeline(
        backend,
        timezone=settings.timezone,
        scrape_max_concurrent=settings.scrape_max_concurrent,
    )
    if text and text.strip():
        result.inputs.append("text")
        result.urls_hinted = find_urls(text)
        pipeline.submit_text(text)
    if images:
        result.inputs.extend(image.filename for image in images)
        pipeline.submit_images(images, instructions=instructions)
    try:
        return await pipeline.collect()
    finally:
        if owns_backend:
            await backend.aclose()
