"""Registered sources: adapter binding, limiter and schedule per name."""

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from govdata.config.constants import (
    Priority,
    SyncState,
    UpdateFrequency,
    frequency_to_duration,
)
from govdata.ingestion.base import DataSource
from govdata.ingestion.errors import DataSourceError
from govdata.ingestion.rate_limiter import TokenBucketLimiter

logger = logging.getLogger(__name__)


class RateLimitConfig(BaseModel):
    """Upstream rate limit: ``requests`` per ``window_seconds``."""

    requests: int = Field(..., gt=0)
    window_seconds: float = Field(..., gt=0)

    @property
    def refill_rate(self) -> float:
        return self.requests / self.window_seconds


class RetryConfig(BaseModel):
    """Backoff policy for failed background refreshes."""

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: float = Field(default=1000.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)


class RefreshTarget(BaseModel):
    """An endpoint the scheduler keeps warm for a source."""

    endpoint: str = Field(..., min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class SourceConfig(BaseModel):
    """Registration settings for one source."""

    rate_limit: RateLimitConfig
    update_frequency: UpdateFrequency = UpdateFrequency.DAILY
    priority: Priority = Priority.MEDIUM
    retry_on_failure: bool = True
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    refresh_targets: list[RefreshTarget] = Field(default_factory=list)


@dataclass
class ScheduleRecord:
    """Per-source refresh bookkeeping.

    ``next_update_at`` alone decides when the source is next due.
    """

    source: str
    frequency: UpdateFrequency
    priority: Priority
    retry_on_failure: bool
    last_update_at: datetime
    next_update_at: datetime
    last_attempt_at: datetime | None = None
    consecutive_failures: int = 0
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    average_duration_ms: float = 0.0
    state: SyncState = SyncState.IDLE
    retry_at: datetime | None = None
    last_error: str | None = None

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return self.successful_attempts / self.total_attempts * 100

    def reschedule(self, now: datetime) -> None:
        self.next_update_at = now + frequency_to_duration(self.frequency)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "frequency": self.frequency.value,
            "priority": self.priority.value,
            "retry_on_failure": self.retry_on_failure,
            "state": self.state.value,
            "last_update_at": self.last_update_at.isoformat(),
            "next_update_at": self.next_update_at.isoformat(),
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "retry_at": self.retry_at.isoformat() if self.retry_at else None,
            "consecutive_failures": self.consecutive_failures,
            "total_attempts": self.total_attempts,
            "successful_attempts": self.successful_attempts,
            "failed_attempts": self.failed_attempts,
            "success_rate": self.success_rate,
            "average_duration_ms": self.average_duration_ms,
            "last_error": self.last_error,
        }


@dataclass
class RegisteredSource:
    name: str
    adapter: DataSource
    config: SourceConfig
    limiter: TokenBucketLimiter
    schedule: ScheduleRecord
    registered_at: datetime | None = None


class SourceRegistry:
    """Holds one binding per source name."""

    def __init__(
        self,
        limiter_max_wait: float | None = None,
        limiter_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sources: dict[str, RegisteredSource] = {}
        self._limiter_max_wait = limiter_max_wait
        self._limiter_clock = limiter_clock

    def __contains__(self, name: str) -> bool:
        return name in self._sources

    def __len__(self) -> int:
        return len(self._sources)

    def __iter__(self) -> Iterator[RegisteredSource]:
        return iter(list(self._sources.values()))

    def register(
        self,
        name: str,
        adapter: DataSource,
        config: SourceConfig,
        now: datetime,
    ) -> RegisteredSource:
        """Bind a source, replacing any previous binding of the same name."""
        replaced = name in self._sources

        limiter = TokenBucketLimiter.from_config(
            config.rate_limit,
            max_wait=self._limiter_max_wait,
            clock=self._limiter_clock,
        )
        schedule = ScheduleRecord(
            source=name,
            frequency=config.update_frequency,
            priority=config.priority,
            retry_on_failure=config.retry_on_failure,
            last_update_at=now,
            next_update_at=now + frequency_to_duration(config.update_frequency),
        )
        entry = RegisteredSource(
            name=name,
            adapter=adapter,
            config=config,
            limiter=limiter,
            schedule=schedule,
            registered_at=now,
        )
        self._sources[name] = entry

        if replaced:
            logger.info(f"Re-registered data source: {name}")
        else:
            logger.info(f"Registered data source: {name}")
        return entry

    def unregister(self, name: str) -> bool:
        return self._sources.pop(name, None) is not None

    def get(self, name: str) -> RegisteredSource | None:
        return self._sources.get(name)

    def require(self, name: str, endpoint: str = "", params: dict[str, Any] | None = None) -> RegisteredSource:
        """Get a source or raise a not-found DataSourceError."""
        entry = self._sources.get(name)
        if entry is None:
            raise DataSourceError.not_found(name, endpoint, params)
        return entry

    def names(self) -> list[str]:
        return list(self._sources)

    def schedules(self) -> list[ScheduleRecord]:
        return [s.schedule for s in self._sources.values()]
