"""Daily per-client quota for batch extraction.

Each client identifier (normally the caller's IP address) gets
:data:`DAILY_LIMIT` extractions per 24-hour window.  The counter lives in a
key-value store under ``ratelimit:events:<identifier>`` with a TTL equal to
the window, so it resets on its own.

Store failures fail *open*: the error is logged and the request allowed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

logger = logging.getLogger(__name__)

DAILY_LIMIT = 5
WINDOW_SECONDS = 24 * 60 * 60


class KeyValueStore(Protocol):
    """Minimal async key-value contract the limiter needs."""

    async def get(self, key: str) -> int | None: ...

    async def set(self, key: str, value: int, ex: int | None = None) -> None: ...

    async def ttl(self, key: str) -> int:
        """Seconds until *key* expires; negative when missing or persistent."""
        ...


class InMemoryKeyValueStore:
    """Process-local :class:`KeyValueStore` with per-key expiry.

    Args:
        clock: Returns the current time in seconds (``time.monotonic`` by
            default); injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[int, float | None]] = {}

    def _live(self, key: str) -> tuple[int, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> int | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: int, ex: int | None = None) -> None:
        expires_at = self._clock() + ex if ex is not None else None
        self._data[key] = (value, expires_at)

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        _, expires_at = entry
        if expires_at is None:
            return -1
        return max(0, int(expires_at - self._clock()))


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a quota check or increment.

    Attributes:
        success: Whether the caller is within quota.
        remaining: Extractions left in the window.
        reset: When the window resets (aware UTC).
        error: ``"Daily limit exceeded"`` when *success* is ``False``.
    """

    success: bool
    remaining: int
    reset: datetime
    error: str | None = None


class RateLimiter:
    """Check-then-increment daily quota over a :class:`KeyValueStore`.

    Args:
        store: Counter storage.
        limit: Extractions allowed per window.
        window_seconds: Window length.
        now: Returns the current aware UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        limit: int = DAILY_LIMIT,
        window_seconds: int = WINDOW_SECONDS,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store if store is not None else InMemoryKeyValueStore()
        self.limit = limit
        self.window_seconds = window_seconds
        self._now = now or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def key_for(identifier: str) -> str:
        return f"ratelimit:events:{identifier}"

    def _window_reset(self) -> datetime:
        return self._now() + timedelta(seconds=self.window_seconds)

    async def check(self, identifier: str) -> RateLimitResult:
        """Report whether *identifier* may run another extraction.

        Does not consume quota.
        """
        key = self.key_for(identifier)
        try:
            count = await self._store.get(key) or 0
            if count >= self.limit:
                ttl = await self._store.ttl(key)
                reset = self._now() + timedelta(seconds=max(ttl, 0))
                logger.info("Rate limit reached for %s (resets %s)", identifier, reset.isoformat())
                return RateLimitResult(
                    success=False,
                    remaining=0,
                    reset=reset,
                    error="Daily limit exceeded",
                )
        except Exception:
            logger.exception("Rate limit check failed for %s; allowing request", identifier)
            return RateLimitResult(success=True, remaining=self.limit, reset=self._window_reset())

        return RateLimitResult(
            success=True,
            remaining=self.limit - count,
            reset=self._window_reset(),
        )

    async def increment(self, identifier: str) -> RateLimitResult:
        """Consume one extraction for *identifier* and restart the window."""
        key = self.key_for(identifier)
        try:
            count = (await self._store.get(key) or 0) + 1
            await self._store.set(key, count, ex=self.window_seconds)
        except Exception:
            logger.exception("Rate limit increment failed for %s; allowing request", identifier)
            return RateLimitResult(
                success=True,
                remaining=self.limit - 1,
                reset=self._window_reset(),
            )

        remaining = max(0, self.limit - count)
        logger.debug("Rate limit for %s: %d used, %d remaining", identifier, count, remaining)
        return RateLimitResult(
            success=count <= self.limit,
            remaining=remaining,
            reset=self._window_reset(),
        )
