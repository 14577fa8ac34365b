"""Unit tests for the daily rate limiter."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from event_every.ratelimit import (
    DAILY_LIMIT,
    WINDOW_SECONDS,
    InMemoryKeyValueStore,
    RateLimiter,
)

_NOW = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)


class _Clock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


def _limiter(store=None, limit: int = DAILY_LIMIT) -> RateLimiter:
    return RateLimiter(store=store, limit=limit, now=lambda: _NOW)


# ---------------------------------------------------------------------------
# InMemoryKeyValueStore
# ---------------------------------------------------------------------------


class TestInMemoryStore:
    """Tests for the process-local store."""

    def test_get_set_ttl(self) -> None:
        clock = _Clock()
        store = InMemoryKeyValueStore(clock=clock)

        async def scenario() -> None:
            assert await store.get("k") is None
            assert await store.ttl("k") == -2

            await store.set("k", 3, ex=60)
            assert await store.get("k") == 3
            assert await store.ttl("k") == 60

            clock.value += 61
            assert await store.get("k") is None
            assert await store.ttl("k") == -2

        asyncio.run(scenario())

    def test_persistent_key(self) -> None:
        store = InMemoryKeyValueStore()

        async def scenario() -> None:
            await store.set("k", 1)
            assert await store.ttl("k") == -1

        asyncio.run(scenario())


# ---------------------------------------------------------------------------
# RateLimiter
# ---------------------------------------------------------------------------


class TestRateLimiter:
    """Tests for check and increment."""

    def test_key_format(self) -> None:
        assert RateLimiter.key_for("203.0.113.7") == "ratelimit:events:203.0.113.7"

    def test_fresh_client_has_full_quota(self) -> None:
        result = asyncio.run(_limiter().check("1.2.3.4"))

        assert result.success
        assert result.remaining == DAILY_LIMIT
        assert result.reset == _NOW + timedelta(seconds=WINDOW_SECONDS)
        assert result.error is None

    def test_check_does_not_consume(self) -> None:
        limiter = _limiter()

        async def scenario() -> None:
            await limiter.check("ip")
            await limiter.check("ip")
            assert (await limiter.check("ip")).remaining == DAILY_LIMIT

        asyncio.run(scenario())

    def test_five_allowed_sixth_rejected(self) -> None:
        clock = _Clock()
        limiter = _limiter(store=InMemoryKeyValueStore(clock=clock))

        async def scenario() -> None:
            for used in range(1, DAILY_LIMIT + 1):
                assert (await limiter.check("ip")).success
                result = await limiter.increment("ip")
                assert result.success
                assert result.remaining == DAILY_LIMIT - used

            clock.value += 3600
            denied = await limiter.check("ip")
            assert denied.success is False
            assert denied.remaining == 0
            assert denied.error == "Daily limit exceeded"
            assert denied.reset == _NOW + timedelta(seconds=WINDOW_SECONDS - 3600)

        asyncio.run(scenario())

    def test_clients_are_independent(self) -> None:
        limiter = _limiter(limit=1)

        async def scenario() -> None:
            await limiter.increment("a")
            assert (await limiter.check("a")).success is False
            assert (await limiter.check("b")).success is True

        asyncio.run(scenario())

    def test_window_expiry_restores_quota(self) -> None:
        clock = _Clock()
        limiter = _limiter(store=InMemoryKeyValueStore(clock=clock), limit=1)

        async def scenario() -> None:
            await limiter.increment("ip")
            assert (await limiter.check("ip")).success is False
            clock.value += WINDOW_SECONDS + 1
            assert (await limiter.check("ip")).success is True

        asyncio.run(scenario())


class TestFailOpen:
    """Tests for store failures."""

    def _broken_store(self) -> AsyncMock:
        store = AsyncMock()
        store.get.side_effect = ConnectionError("store unavailable")
        return store

    def test_check_allows_on_store_error(self, caplog: pytest.LogCaptureFixture) -> None:
        result = asyncio.run(_limiter(store=self._broken_store()).check("ip"))

        assert result.success
        assert result.remaining == DAILY_LIMIT
        assert "allowing request" in caplog.text

    def test_increment_allows_on_store_error(self) -> None:
        result = asyncio.run(_limiter(store=self._broken_store()).increment("ip"))

        assert result.success
        assert result.remaining == DAILY_LIMIT - 1
