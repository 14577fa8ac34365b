"""Models for URL detection and page scraping.

These are ephemeral: produced and consumed within one extraction request
and never persisted.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class URLDetectionResult(BaseModel):
    """Arguments of the ``extract_urls`` tool call.

    Attributes:
        urls: URLs the model found, in source order.
        remaining_text: The input with those URLs removed.
        has_urls: Whether any URL was found.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    urls: list[str] = Field(default_factory=list)
    remaining_text: str = ""
    has_urls: bool = False


class ScrapedContent(BaseModel):
    """Outcome of fetching one page.

    Attributes:
        url: The requested URL.
        text: Visible page text (empty on error).
        title: Contents of the ``<title>`` element, if any.
        status: ``"success"`` or ``"error"``.
        error: Failure message for ``error`` results.
    """

    url: str
    text: str = ""
    title: str | None = None
    status: Literal["success", "error"]
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


class BatchScrapedContent(BaseModel):
    """Results of a concurrent scrape, in the order the URLs were given."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    results: list[ScrapedContent] = Field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)
