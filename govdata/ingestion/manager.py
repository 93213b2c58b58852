"""Data source manager: the single entry point consumers call."""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from govdata.config.settings import settings
from govdata.ingestion.base import DataSource, HealthStatus
from govdata.ingestion.cache import (
    CacheStats,
    Clock,
    ReadThroughCache,
    make_cache_key,
    ttl_for_endpoint,
    utc_now,
)
from govdata.ingestion.errors import normalize_error
from govdata.ingestion.metrics import MetricsLedger, MetricsSummary, PerformanceMetric
from govdata.ingestion.registry import RegisteredSource, SourceConfig, SourceRegistry
from govdata.ingestion.scheduler import RefreshScheduler

logger = logging.getLogger(__name__)


class DataSourceManager:
    """Cached, rate-limited, scheduled access to registered sources.

    One instance per process owns the registry, cache, metrics ledger and
    scheduler; nothing is held in module state.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        limiter_clock: Callable[[], float] = time.monotonic,
        rate_limit_max_wait: float | None = None,
        single_flight: bool | None = None,
        tick_interval: float | None = None,
        error_backoff: float | None = None,
    ) -> None:
        self._clock = clock
        self.registry = SourceRegistry(
            limiter_max_wait=rate_limit_max_wait or settings.rate_limit_max_wait_seconds,
            limiter_clock=limiter_clock,
        )
        self.cache = ReadThroughCache(clock=clock)
        self.ledger = MetricsLedger(
            max_entries_per_source=settings.metrics_max_entries_per_source,
            recent_errors=settings.metrics_recent_errors,
        )
        self.scheduler = RefreshScheduler(
            registry=self.registry,
            refresh=self._refresh,
            ledger=self.ledger,
            clock=clock,
            tick_interval=tick_interval,
            error_backoff=error_backoff,
            after_tick=self.clear_expired_cache,
        )
        self.single_flight = (
            settings.single_flight_enabled if single_flight is None else single_flight
        )
        self._in_flight: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_data_source(
        self,
        name: str,
        adapter: DataSource,
        config: SourceConfig | dict[str, Any],
    ) -> RegisteredSource:
        """Register a source; re-registering a name replaces its binding."""
        if not isinstance(config, SourceConfig):
            config = SourceConfig.model_validate(config)
        return self.registry.register(name, adapter, config, now=self._clock())

    def get_data_sources(self) -> list[str]:
        return self.registry.names()

    def get_data_source(self, name: str) -> DataSource | None:
        entry = self.registry.get(name)
        return entry.adapter if entry else None

    # ------------------------------------------------------------------
    # Fetch path
    # ------------------------------------------------------------------

    async def fetch(
        self,
        source: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        force_refresh: bool = False,
        timeout: float | None = None,
    ) -> Any:
        """Fetch data, serving from cache when a live entry exists.

        Args:
            source: Registered source name
            endpoint: Provider endpoint
            params: Request parameters
            force_refresh: Skip the cache lookup
            timeout: Maximum seconds to wait for a rate limit token

        Returns:
            Raw data from the adapter (or the cache)

        Raises:
            DataSourceError: On any failure; never retried here
        """
        params = params or {}
        start = time.perf_counter()
        key = make_cache_key(source, endpoint, params)

        if not force_refresh:
            entry = self.cache.get_entry(key)
            if entry is not None:
                self._record(source, endpoint, start, success=True, cache_hit=True)
                logger.debug(f"Cache hit: {key}")
                return entry.value

        if not self.single_flight:
            return await self._load(key, source, endpoint, params, timeout)

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, source, endpoint, params, timeout))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug(f"Joining in-flight request: {key}")

        # A cancelled caller must not cancel the shared upstream call
        return await asyncio.shield(task)

    async def _load(
        self,
        key: str,
        source: str,
        endpoint: str,
        params: dict[str, Any],
        timeout: float | None,
    ) -> Any:
        start = time.perf_counter()
        try:
            entry = self.registry.require(source, endpoint, params)
            await entry.limiter.acquire(timeout)
            data = await entry.adapter.fetch(endpoint, params)
        except Exception as e:
            error = normalize_error(source, endpoint, e, params)
            self._record(source, endpoint, start, success=False, error=str(error))
            logger.warning(f"Fetch failed: {error}")
            raise error from (None if error is e else e)

        self.cache.put(
            key,
            data,
            ttl_for_endpoint(endpoint),
            source_name=source,
            endpoint=endpoint,
            params=params,
        )
        self._record(source, endpoint, start, success=True)
        return data

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Mark the outcome retrieved even if every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _refresh(self, source: str, endpoint: str, params: dict[str, Any]) -> Any:
        return await self.fetch(source, endpoint, params, force_refresh=True)

    def _record(
        self,
        source: str,
        endpoint: str,
        start: float,
        success: bool,
        cache_hit: bool = False,
        error: str | None = None,
    ) -> PerformanceMetric:
        return self.ledger.record(
            source,
            endpoint,
            (time.perf_counter() - start) * 1000,
            success,
            self._clock(),
            cache_hit=cache_hit,
            error=error,
        )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_expired_cache(self) -> int:
        return self.cache.sweep_expired()

    def invalidate(self, source: str | None = None) -> int:
        """Drop cached entries for one source, or all of them."""
        return self.cache.clear(source)

    # ------------------------------------------------------------------
    # Metrics and health
    # ------------------------------------------------------------------

    def get_performance_metrics(self, source: str) -> list[PerformanceMetric]:
        return self.ledger.entries(source)

    def get_metrics_summary(self, source: str) -> MetricsSummary:
        return self.ledger.summarize(source)

    def get_system_health_summary(self) -> dict[str, Any]:
        return self.ledger.system_health_summary()

    async def check_all_health(self) -> dict[str, HealthStatus]:
        """Run every adapter's health check concurrently."""
        names = self.registry.names()
        checks = [self.registry.require(name).adapter.health_check() for name in names]
        results = await asyncio.gather(*checks, return_exceptions=True)

        health = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(f"Health check for {name} raised: {result}")
                health[name] = HealthStatus.unhealthy(str(result))
            else:
                health[name] = result
        return health

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    def get_sync_status(self) -> dict[str, dict[str, Any]]:
        return self.scheduler.get_sync_status()

    def get_sync_statistics(self) -> dict[str, Any]:
        return self.scheduler.get_sync_statistics()

    async def force_sync(self, source: str) -> None:
        await self.scheduler.force_sync(source)

    async def force_sync_all(self) -> dict[str, bool]:
        return await self.scheduler.force_sync_all()

    async def start(self) -> None:
        await self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    async def aclose(self) -> None:
        """Stop scheduling, drain retries and close adapters."""
        await self.scheduler.aclose()
        for entry in self.registry:
            try:
                await entry.adapter.aclose()
            except Exception:
                logger.warning(f"Error closing adapter {entry.name}", exc_info=True)
