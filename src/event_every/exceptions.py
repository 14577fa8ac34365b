"""Custom exceptions for the event-every extraction pipeline.

Exception hierarchy::

    EventEveryError
    +-- InvalidInputError          (rejected before any network call)
    +-- ExtractionError            (model answered, answer unusable)
    |   +-- NoEventFoundError
    |   +-- BatchLimitExceededError
    |   +-- MalformedResponseError
    +-- TransportError             (network / API failure, message verbatim)
    +-- NoExtractableContentError  (empty input after URL expansion)
    +-- StorageError
    +-- RateLimitExceededError
    +-- StreamError                (an ``error`` frame arrived)
    +-- IncompleteStreamError      (channel closed before ``isComplete``)
    +-- ExportValidationError
"""

from __future__ import annotations

from datetime import datetime


class EventEveryError(Exception):
    """Base class for every domain error raised by event-every."""


class InvalidInputError(EventEveryError):
    """Raised when neither text nor image is supplied, or an image lacks
    its MIME type."""


class ExtractionError(EventEveryError):
    """Raised when the model responded but no usable result came back."""


class NoEventFoundError(ExtractionError):
    """Raised when the model reports that nothing extractable was found."""

    def __init__(self, message: str = "No event information could be extracted") -> None:
        super().__init__(message)


class BatchLimitExceededError(ExtractionError):
    """Raised when a batch response carries more events than the cap.

    Attributes:
        count: Number of events the model returned.
        limit: The declared cap.
    """

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"Too many events returned: {count} (limit is {limit})")
        self.count = count
        self.limit = limit


class MalformedResponseError(ExtractionError):
    """Raised when the tool call is missing or its arguments cannot be decoded.

    Attributes:
        raw_response: The raw tool arguments (or an empty string when the
            tool call itself was missing).
    """

    def __init__(self, message: str, raw_response: str = "") -> None:
        super().__init__(message)
        self.raw_response = raw_response


class TransportError(EventEveryError):
    """Raised for network or API failures.

    The message is passed through from the underlying failure unchanged.

    Attributes:
        status_code: HTTP status code, or ``None`` when the failure did not
            come from an HTTP response.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NoExtractableContentError(EventEveryError):
    """Raised when URL expansion leaves nothing to send to the model."""

    def __init__(self, message: str = "No extractable content found in the input") -> None:
        super().__init__(message)


class StorageError(EventEveryError):
    """Raised when the persistence collaborator reports a failure."""


class RateLimitExceededError(EventEveryError):
    """Raised when the daily extraction quota is exhausted.

    Attributes:
        reset: When the quota resets (aware UTC datetime).
        remaining: Calls left in the current window (always ``0`` here).
    """

    def __init__(
        self,
        reset: datetime,
        remaining: int = 0,
        message: str = "Daily limit exceeded",
    ) -> None:
        super().__init__(message)
        self.reset = reset
        self.remaining = remaining


class StreamError(EventEveryError):
    """Raised by the stream consumer when the producer sent an error frame."""


class IncompleteStreamError(EventEveryError):
    """Raised when a stream ended without its terminating frame.

    Attributes:
        chunks_received: Number of event chunks read before the channel closed.
    """

    def __init__(self, chunks_received: int) -> None:
        super().__init__(
            f"Event stream ended after {chunks_received} chunk(s) without completing"
        )
        self.chunks_received = chunks_received


class ExportValidationError(EventEveryError):
    """Raised when one or more events cannot be exported.

    Attributes:
        problems: Mapping of event id to the list of validation messages
            for that event.
    """

    def __init__(self, problems: dict[str, list[str]]) -> None:
        summary = "; ".join(
            f"{event_id}: {', '.join(messages)}" for event_id, messages in problems.items()
        )
        super().__init__(f"Invalid event(s) for export: {summary}")
        self.problems = problems
