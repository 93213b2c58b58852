"""Tests for the data source manager fetch path."""

import asyncio
from datetime import timedelta

import pytest

from govdata.config.constants import HealthState
from govdata.ingestion.errors import DataSourceError, ErrorKind, UpstreamError
from govdata.ingestion.manager import DataSourceManager

from .support import FakeClock, StubSource, make_config


class TestRegistration:
    """Tests for registering sources through the manager."""

    def test_register_with_dict(self, manager, stub):
        """Test a plain dict config is validated."""
        manager.register_data_source(
            "fred", stub, {"rate_limit": {"requests": 120, "window_seconds": 60}}
        )

        assert manager.get_data_sources() == ["fred"]
        assert manager.get_data_source("fred") is stub
        assert manager.get_data_source("missing") is None
        assert manager.registry.get("fred").limiter.rate == 2.0


class TestFetch:
    """Tests for DataSourceManager.fetch."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_adapter_and_limiter(self, manager, stub):
        """Test a second fetch is served from cache without a token."""
        manager.register_data_source("fred", stub, make_config())
        limiter = manager.registry.get("fred").limiter

        first = await manager.fetch("fred", "series", {"id": "GDP"})
        tokens = limiter.tokens
        second = await manager.fetch("fred", "series", {"id": "GDP"})

        assert first == second
        assert len(stub.calls) == 1
        assert limiter.tokens == tokens

        metrics = manager.get_performance_metrics("fred")
        assert [m.cache_hit for m in metrics] == [False, True]
        assert all(m.success for m in metrics)

    @pytest.mark.asyncio
    async def test_force_refresh(self, manager, stub):
        """Test force_refresh always calls the adapter and re-caches."""
        manager.register_data_source("fred", stub, make_config())

        await manager.fetch("fred", "series")
        refreshed = await manager.fetch("fred", "series", force_refresh=True)
        cached = await manager.fetch("fred", "series")

        assert len(stub.calls) == 2
        assert refreshed["call"] == 2
        assert cached == refreshed

    @pytest.mark.asyncio
    async def test_expired_entry_refetched(self, manager, stub, clock):
        """Test entries past their TTL are fetched again."""
        manager.register_data_source("fred", stub, make_config())

        await manager.fetch("fred", "real-time-quotes")
        clock.advance(minutes=4, seconds=59)
        await manager.fetch("fred", "real-time-quotes")
        assert len(stub.calls) == 1

        clock.advance(seconds=2)
        await manager.fetch("fred", "real-time-quotes")
        assert len(stub.calls) == 2

    @pytest.mark.asyncio
    async def test_ttl_from_endpoint(self, manager, stub, clock):
        """Test the cache entry expiry follows the endpoint class."""
        manager.register_data_source("fred", stub, make_config())

        await manager.fetch("fred", "exchange-rates")

        (key,) = manager.cache.keys_for_source("fred")
        entry = manager.cache.get_entry(key)
        assert entry.expires_at == clock() + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_unknown_source(self, manager):
        """Test fetching an unregistered source."""
        with pytest.raises(DataSourceError) as exc_info:
            await manager.fetch("nope", "series")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert str(exc_info.value) == "[nope:series] Data source 'nope' not found"

    @pytest.mark.asyncio
    async def test_upstream_error_normalized_not_retried(self, manager):
        """Test adapter failures are normalized and raised once."""
        stub = StubSource(error=UpstreamError("Service unavailable", status_code=503))
        manager.register_data_source("bls", stub, make_config())

        with pytest.raises(DataSourceError) as exc_info:
            await manager.fetch("bls", "series", {"id": "CPI"})

        error = exc_info.value
        assert error.kind == ErrorKind.TRANSIENT_UPSTREAM
        assert error.status_code == 503
        assert error.params == {"id": "CPI"}
        assert len(stub.calls) == 1
        assert len(manager.cache) == 0

        (metric,) = manager.get_performance_metrics("bls")
        assert metric.success is False
        assert "Service unavailable" in metric.error

    @pytest.mark.asyncio
    async def test_rate_limit_spacing(self, manager):
        """Test a third call within the window waits for a token."""
        stub = StubSource()
        manager.register_data_source(
            "boc", stub, make_config(rate_limit={"requests": 2, "window_seconds": 2})
        )

        for i in range(3):
            await manager.fetch("boc", "series", {"n": i})

        assert len(stub.calls) == 3
        assert stub.call_times[1] - stub.call_times[0] < 0.5
        assert stub.call_times[2] - stub.call_times[0] >= 0.9

    @pytest.mark.asyncio
    async def test_rate_limit_timeout(self, manager, stub):
        """Test a caller timeout surfaces as a rate limit error."""
        manager.register_data_source(
            "boc", stub, make_config(rate_limit={"requests": 1, "window_seconds": 10})
        )
        await manager.fetch("boc", "series", {"n": 1})

        with pytest.raises(DataSourceError) as exc_info:
            await manager.fetch("boc", "series", {"n": 2}, timeout=0.5)

        assert exc_info.value.kind == ErrorKind.RATE_LIMIT_TIMEOUT
        assert len(stub.calls) == 1


class TestSingleFlight:
    """Tests for coalescing concurrent identical fetches."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_request(self, manager):
        """Test identical concurrent misses hit the adapter once."""
        stub = StubSource(delay=0.05)
        manager.register_data_source("fred", stub, make_config())

        results = await asyncio.gather(
            *(manager.fetch("fred", "series", {"id": "GDP"}) for _ in range(3))
        )

        assert len(stub.calls) == 1
        assert results[0] == results[1] == results[2]
        assert manager._in_flight == {}

    @pytest.mark.asyncio
    async def test_shared_failure(self, manager):
        """Test every waiter sees the same failure."""
        stub = StubSource(delay=0.05, error=UpstreamError("Bad request", status_code=400))
        manager.register_data_source("fred", stub, make_config())

        results = await asyncio.gather(
            *(manager.fetch("fred", "series") for _ in range(3)),
            return_exceptions=True,
        )

        assert len(stub.calls) == 1
        assert all(isinstance(r, DataSourceError) for r in results)
        assert all(r.kind == ErrorKind.PERMANENT_UPSTREAM for r in results)

    @pytest.mark.asyncio
    async def test_disabled(self, clock):
        """Test each caller goes upstream when coalescing is off."""
        manager = DataSourceManager(clock=clock, single_flight=False)
        stub = StubSource(delay=0.05)
        manager.register_data_source("fred", stub, make_config())

        await asyncio.gather(*(manager.fetch("fred", "series") for _ in range(3)))

        assert len(stub.calls) == 3


class TestCacheAndHealth:
    """Tests for cache maintenance and health checks."""

    @pytest.mark.asyncio
    async def test_cache_stats_and_invalidate(self, manager, clock):
        """Test sweeping and invalidating cached entries."""
        manager.register_data_source("fred", StubSource(), make_config())
        manager.register_data_source("bls", StubSource(), make_config())
        await manager.fetch("fred", "exchange-rates")
        await manager.fetch("fred", "monthly-cpi")
        await manager.fetch("bls", "series")

        clock.advance(minutes=10)
        assert manager.get_cache_stats().expired == 1
        assert manager.clear_expired_cache() == 1
        assert manager.invalidate("fred") == 1
        assert manager.get_cache_stats().total == 1

    @pytest.mark.asyncio
    async def test_check_all_health(self, manager):
        """Test a raising health check is reported as unhealthy."""
        broken = StubSource()
        broken.health_error = RuntimeError("boom")
        manager.register_data_source("ok", StubSource(), make_config())
        manager.register_data_source("slow", StubSource(health=HealthState.DEGRADED), make_config())
        manager.register_data_source("broken", broken, make_config())

        health = await manager.check_all_health()

        assert health["ok"].is_healthy
        assert health["slow"].status == HealthState.DEGRADED
        assert health["broken"].status == HealthState.UNHEALTHY
        assert health["broken"].errors == ["boom"]

    @pytest.mark.asyncio
    async def test_aclose_closes_adapters(self):
        """Test shutdown closes every adapter."""
        manager = DataSourceManager(clock=FakeClock())
        stubs = [StubSource(), StubSource()]
        for i, stub in enumerate(stubs):
            manager.register_data_source(f"s{i}", stub, make_config())

        await manager.aclose()

        assert all(stub.closed for stub in stubs)
