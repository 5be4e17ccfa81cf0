"""
Unit tests for ScopedTokenCache.
"""

import asyncio
from datetime import timedelta

import pytest

from service_docgate.app.caching.token_cache import ScopedToken, ScopedTokenCache
from shared.errors import SecretUnavailable
from shared.metrics import MetricsCollector
from shared.test_helpers import FIXED_TIME, MutableClock


class FakeFetcher:
    """Token source that counts calls and can be held open."""

    def __init__(self, clock, lifetime=timedelta(hours=1)):
        self.clock = clock
        self.lifetime = lifetime
        self.calls = 0
        self.gate = None
        self.error = None

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        now = self.clock()
        return ScopedToken(
            value=f"/p/token-{self.calls}/n/testns/b/pdfstore/o/",
            issued_at=now,
            endpoint="https://objectstorage.eu-amsterdam-1.oraclecloud.com",
            expires_at=now + self.lifetime if self.lifetime is not None else None,
            par_id=f"par-{self.calls}",
        )


class TestScopedTokenCache:
    """Test cases for ScopedTokenCache."""

    @pytest.fixture
    def clock(self):
        return MutableClock(FIXED_TIME)

    @pytest.fixture
    def fetcher(self, clock):
        return FakeFetcher(clock)

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("test")

    @pytest.fixture
    def cache(self, fetcher, clock, metrics):
        return ScopedTokenCache(fetcher, refresh_margin=60, clock=clock, metrics=metrics)

    @pytest.mark.asyncio
    async def test_hit_does_not_fetch(self, cache, fetcher, metrics):
        first = await cache.get_token()
        second = await cache.get_token()

        assert first is second
        assert fetcher.calls == 1
        assert metrics.get_sample("scoped_token_cache_total", result="hit") == 1.0
        assert metrics.get_sample("scoped_token_cache_total", result="miss") == 1.0

    @pytest.mark.asyncio
    async def test_concurrent_cold_callers_share_one_fetch(self, cache, fetcher):
        fetcher.gate = asyncio.Event()

        waiters = [asyncio.ensure_future(cache.get_token()) for _ in range(20)]
        await asyncio.sleep(0)
        fetcher.gate.set()
        tokens = await asyncio.gather(*waiters)

        assert fetcher.calls == 1
        assert all(token is tokens[0] for token in tokens)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_the_same_error(self, cache, fetcher):
        fetcher.gate = asyncio.Event()
        fetcher.error = SecretUnavailable("backend down")

        waiters = [asyncio.ensure_future(cache.get_token()) for _ in range(5)]
        await asyncio.sleep(0)
        fetcher.gate.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert fetcher.calls == 1
        assert all(result is fetcher.error for result in results)
        assert cache.current is None

    @pytest.mark.asyncio
    async def test_refreshes_inside_margin(self, cache, fetcher, clock):
        first = await cache.get_token()
        clock.advance(timedelta(minutes=59, seconds=1))

        second = await cache.get_token()

        assert second is not first
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_expired_token_is_never_returned(self, cache, fetcher, clock):
        await cache.get_token()
        clock.advance(timedelta(hours=2))
        fetcher.lifetime = timedelta(hours=1)

        token = await cache.get_token()

        assert token.expires_at > clock()

    @pytest.mark.asyncio
    async def test_token_expired_on_arrival_is_rejected(self, cache, fetcher):
        fetcher.lifetime = timedelta(seconds=-1)

        with pytest.raises(SecretUnavailable):
            await cache.get_token()

        assert cache.current is None

    @pytest.mark.asyncio
    async def test_token_without_expiry_stays_valid(self, cache, fetcher, clock):
        fetcher.lifetime = None
        first = await cache.get_token()
        clock.advance(timedelta(days=30))

        assert await cache.get_token() is first

    @pytest.mark.asyncio
    async def test_force_refresh(self, cache, fetcher):
        first = await cache.get_token()

        second = await cache.get_token(force_refresh=True)

        assert second is not first
        assert cache.current is second
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_failure_leaves_cache_unchanged(self, cache, fetcher):
        first = await cache.get_token()
        fetcher.error = SecretUnavailable("backend down")

        with pytest.raises(SecretUnavailable):
            await cache.get_token(force_refresh=True)

        assert cache.current is first

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, cache, fetcher):
        fetcher.error = SecretUnavailable("backend down")
        with pytest.raises(SecretUnavailable):
            await cache.get_token()

        fetcher.error = None
        token = await cache.get_token()

        assert token.par_id == "par-2"

    @pytest.mark.asyncio
    async def test_invalidate(self, cache, fetcher):
        first = await cache.get_token()

        cache.invalidate()

        assert cache.current is None
        assert await cache.get_token() is not first

    @pytest.mark.asyncio
    async def test_invalidate_ignores_stale_token(self, cache):
        first = await cache.get_token()
        second = await cache.get_token(force_refresh=True)

        cache.invalidate(first)

        assert cache.current is second

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_fetch(self, cache, fetcher):
        fetcher.gate = asyncio.Event()

        impatient = asyncio.ensure_future(cache.get_token())
        patient = asyncio.ensure_future(cache.get_token())
        await asyncio.sleep(0)
        impatient.cancel()
        fetcher.gate.set()

        token = await patient
        assert token.par_id == "par-1"
        assert cache.current is token
        with pytest.raises(asyncio.CancelledError):
            await impatient
