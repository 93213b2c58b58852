"""Priority-ordered background refresh with retry and backoff.

Every tick the scheduler collects the sources whose ``next_update_at`` has
passed, orders them by priority and syncs them one at a time so that
rate-limited upstream APIs are never hit by a burst of refreshes.

A sync is a health check followed by a forced refresh of each of the
source's refresh targets. Failures are retried after
``initial_delay_ms * backoff_multiplier ** (n - 1)`` for the n-th retry, up
to ``max_retries``; after that the source waits for its next natural
cycle. Failures are never raised into consumer calls; they show up in the
schedule record, the metrics ledger and the logs.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from govdata.config.constants import PRIORITY_ORDER, Priority, SyncState
from govdata.config.settings import settings
from govdata.ingestion.base import HealthStatus
from govdata.ingestion.cache import Clock, utc_now
from govdata.ingestion.errors import DataSourceError, ErrorKind, normalize_error
from govdata.ingestion.metrics import MetricsLedger
from govdata.ingestion.registry import (
    RegisteredSource,
    RetryConfig,
    ScheduleRecord,
    SourceRegistry,
)

logger = logging.getLogger(__name__)

RefreshFn = Callable[[str, str, dict[str, Any]], Awaitable[Any]]

SYNC_ENDPOINT = "sync"
INITIAL_SYNC_PRIORITIES = (Priority.CRITICAL, Priority.HIGH)


def backoff_delay_ms(retry_config: RetryConfig, attempt: int) -> float:
    """Delay before the ``attempt``-th retry (1-based)."""
    return retry_config.initial_delay_ms * retry_config.backoff_multiplier ** (attempt - 1)


class RefreshScheduler:
    """Drives background refreshes for every registered source."""

    def __init__(
        self,
        registry: SourceRegistry,
        refresh: RefreshFn,
        ledger: MetricsLedger,
        clock: Clock = utc_now,
        tick_interval: float | None = None,
        error_backoff: float | None = None,
        unhealthy_threshold: int | None = None,
        after_tick: Callable[[], Any] | None = None,
    ) -> None:
        self._registry = registry
        self._refresh = refresh
        self._ledger = ledger
        self._clock = clock
        self.tick_interval = tick_interval or settings.sync_tick_interval_seconds
        self.error_backoff = error_backoff or settings.sync_error_backoff_seconds
        self.unhealthy_threshold = unhealthy_threshold or settings.unhealthy_error_threshold
        self._after_tick = after_tick

        self._running = False
        self._stopped: asyncio.Event | None = None
        self._loop_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_retries(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Warm up high-priority sources, then start the periodic loop."""
        if self._running:
            logger.info("Synchronization service already running")
            return

        logger.info("Starting data synchronization service")
        self._running = True
        stopped = self._stopped = asyncio.Event()

        # A stopped loop may still be finishing its last tick
        previous, self._loop_task = self._loop_task, None
        if previous is not None:
            await previous

        await self.initial_sync()
        self._loop_task = asyncio.create_task(self.run(stopped))

    def stop(self) -> None:
        """Stop ticking; scheduled retries still run to completion."""
        if not self._running:
            logger.info("Synchronization service is not running")
            return

        logger.info("Stopping data synchronization service")
        self._running = False
        if self._stopped is not None:
            self._stopped.set()

    async def aclose(self) -> None:
        """Stop and wait for the loop and any scheduled retries."""
        self.stop()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        await self.wait_for_pending()

    async def run(self, stopped: asyncio.Event | None = None) -> None:
        """Tick until this run's stop event is set."""
        if stopped is None:
            stopped = self._stopped = asyncio.Event()

        while not stopped.is_set():
            try:
                await self.tick()
                if self._after_tick is not None:
                    self._after_tick()
                delay = self.tick_interval
            except Exception:
                logger.exception("Synchronization cycle failed")
                delay = self.error_backoff
            await self._sleep(delay, stopped)

    async def _sleep(self, delay: float, stopped: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(stopped.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def wait_for_pending(self) -> None:
        """Wait until no retry is scheduled, including retries of retries."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def due_sources(self) -> list[str]:
        """Idle sources whose next update has passed, most urgent first."""
        now = self._clock()
        due = [
            entry
            for entry in self._registry
            if entry.schedule.state == SyncState.IDLE and entry.schedule.next_update_at <= now
        ]
        due.sort(key=lambda e: PRIORITY_ORDER[e.schedule.priority])
        return [e.name for e in due]

    async def tick(self) -> list[str]:
        """Sync every due source sequentially.

        Returns:
            Names of the sources processed, in processing order
        """
        names = self.due_sources()
        if not names:
            return []

        logger.info(f"Synchronizing {len(names)} data sources: {', '.join(names)}")
        for name in names:
            await self.sync_source(name)
        return names

    async def initial_sync(self) -> dict[str, bool]:
        """Sync critical and high priority sources concurrently.

        Individual failures are logged and otherwise ignored.
        """
        names = [
            entry.name
            for entry in self._registry
            if entry.schedule.priority in INITIAL_SYNC_PRIORITIES
        ]
        if not names:
            return {}

        logger.info(f"Initial synchronization of {len(names)} high-priority sources")
        results = await asyncio.gather(
            *(self.sync_source(name, initial=True) for name in names),
            return_exceptions=True,
        )

        outcome = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error(f"Initial sync of {name} raised: {result}")
                outcome[name] = False
            else:
                outcome[name] = result
        return outcome

    async def force_sync(self, name: str) -> None:
        """Sync one source now.

        Raises:
            DataSourceError: If the source is unknown or the sync fails
        """
        logger.info(f"Force syncing {name}")
        await self.sync_source(name, raise_errors=True)

    async def force_sync_all(self) -> dict[str, bool]:
        """Sync every source now, concurrently, settling all attempts."""
        names = self._registry.names()
        logger.info(f"Force syncing all {len(names)} data sources")
        results = await asyncio.gather(
            *(self.sync_source(name) for name in names),
            return_exceptions=True,
        )
        return {
            name: result is True
            for name, result in zip(names, results)
        }

    # ------------------------------------------------------------------
    # Sync attempts
    # ------------------------------------------------------------------

    async def sync_source(
        self,
        name: str,
        *,
        initial: bool = False,
        raise_errors: bool = False,
    ) -> bool:
        """Run one sync attempt and update the source's schedule.

        Args:
            name: Registered source name
            initial: Startup warm-up attempt (never retried)
            raise_errors: Raise the normalized error instead of returning False

        Returns:
            True on success, False on failure
        """
        entry = self._registry.get(name)
        if entry is None:
            error = DataSourceError.not_found(name, SYNC_ENDPOINT)
            if raise_errors:
                raise error
            logger.error(str(error))
            return False

        schedule = entry.schedule
        schedule.state = SyncState.SYNCING
        schedule.retry_at = None
        schedule.last_attempt_at = self._clock()
        schedule.total_attempts += 1
        logger.info(f"Syncing data source: {name}")

        start = time.perf_counter()
        try:
            await self._perform_sync(entry)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            error = normalize_error(name, SYNC_ENDPOINT, e)
            self._record_failure(entry, error, duration_ms, initial)
            if raise_errors:
                raise error from (None if error is e else e)
            return False
        finally:
            if schedule.state == SyncState.SYNCING:
                schedule.state = SyncState.IDLE

        duration_ms = (time.perf_counter() - start) * 1000
        self._record_success(entry, duration_ms)
        return True

    async def _perform_sync(self, entry: RegisteredSource) -> None:
        try:
            health = await entry.adapter.health_check()
        except Exception as e:
            health = HealthStatus.unhealthy(str(e))

        if not health.is_healthy:
            detail = f": {'; '.join(health.errors)}" if health.errors else ""
            raise DataSourceError(
                entry.name,
                SYNC_ENDPOINT,
                f"Data source {entry.name} is {health.status.value}{detail}",
                retryable=True,
                kind=ErrorKind.UNHEALTHY_SOURCE,
            )

        for target in entry.config.refresh_targets:
            await self._refresh(entry.name, target.endpoint, target.params)

    def _record_success(self, entry: RegisteredSource, duration_ms: float) -> None:
        schedule = entry.schedule
        now = self._clock()

        schedule.successful_attempts += 1
        schedule.average_duration_ms += (
            duration_ms - schedule.average_duration_ms
        ) / schedule.successful_attempts
        schedule.consecutive_failures = 0
        schedule.last_error = None
        schedule.last_update_at = now
        schedule.state = SyncState.IDLE
        schedule.reschedule(now)

        self._ledger.record(
            entry.name, SYNC_ENDPOINT, duration_ms, True, now, operation="sync"
        )
        logger.info(f"Synced {entry.name} in {duration_ms:.0f}ms")

    def _record_failure(
        self,
        entry: RegisteredSource,
        error: DataSourceError,
        duration_ms: float,
        initial: bool,
    ) -> None:
        schedule = entry.schedule
        retry_config = entry.config.retry_config
        now = self._clock()

        schedule.failed_attempts += 1
        schedule.consecutive_failures += 1
        schedule.last_error = error.message

        self._ledger.record(
            entry.name,
            SYNC_ENDPOINT,
            duration_ms,
            False,
            now,
            operation="sync",
            error=str(error),
        )

        attempt = schedule.consecutive_failures
        can_retry = schedule.retry_on_failure and error.retryable and not initial
        if can_retry and attempt < retry_config.max_retries:
            delay_ms = backoff_delay_ms(retry_config, attempt)
            schedule.state = SyncState.PENDING_RETRY
            schedule.retry_at = now + timedelta(milliseconds=delay_ms)
            logger.warning(
                f"Sync of {entry.name} failed ({error.message}); "
                f"attempt {attempt + 1}/{retry_config.max_retries} in {delay_ms:.0f}ms"
            )
            self._schedule_retry(entry.name, delay_ms / 1000, schedule)
            return

        if can_retry:
            logger.error(f"Max retries exceeded for {entry.name}: {error.message}")
        else:
            logger.error(f"Sync of {entry.name} failed: {error}")
        schedule.state = SyncState.IDLE
        schedule.reschedule(now)

    def _schedule_retry(self, name: str, delay: float, schedule: ScheduleRecord) -> None:
        task = asyncio.create_task(
            self._retry_after(name, delay, schedule, schedule.retry_at)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _retry_after(
        self,
        name: str,
        delay: float,
        schedule: ScheduleRecord,
        retry_at: datetime | None,
    ) -> None:
        await asyncio.sleep(delay)

        entry = self._registry.get(name)
        # Superseded by re-registration, a forced sync or a newer retry
        if (
            entry is None
            or entry.schedule is not schedule
            or schedule.state != SyncState.PENDING_RETRY
            or schedule.retry_at != retry_at
        ):
            return
        await self.sync_source(name)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_sync_status(self) -> dict[str, dict[str, Any]]:
        status = {}
        for entry in self._registry:
            record = entry.schedule.to_dict()
            record["is_healthy"] = entry.schedule.consecutive_failures < self.unhealthy_threshold
            status[entry.name] = record
        return status

    def get_sync_statistics(self) -> dict[str, Any]:
        schedules = self._registry.schedules()
        total = sum(s.total_attempts for s in schedules)
        successful = sum(s.successful_attempts for s in schedules)
        failed = sum(s.failed_attempts for s in schedules)
        with_errors = sum(1 for s in schedules if s.failed_attempts > 0)

        return {
            "total_sources": len(schedules),
            "total_syncs": total,
            "successful_syncs": successful,
            "failed_syncs": failed,
            "overall_success_rate": successful / total * 100 if total else 0.0,
            "sources_with_errors": with_errors,
            "sources_without_errors": len(schedules) - with_errors,
            "pending_retries": self.pending_retries,
            "is_running": self._running,
            "checked_at": self._clock().isoformat(),
        }

    def sources_needing_sync(self) -> list[str]:
        now = self._clock()
        return [s.source for s in self._registry.schedules() if s.next_update_at <= now]

    def sources_with_errors(self) -> list[str]:
        return [s.source for s in self._registry.schedules() if s.consecutive_failures > 0]

    def reset_error_count(self, name: str) -> bool:
        entry = self._registry.get(name)
        if entry is None:
            return False
        entry.schedule.consecutive_failures = 0
        entry.schedule.last_error = None
        logger.info(f"Reset error count for {name}")
        return True

    def reset_all_error_counts(self) -> None:
        for name in self._registry.names():
            self.reset_error_count(name)
