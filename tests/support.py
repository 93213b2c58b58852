"""Shared test doubles."""

import asyncio
import time
from datetime import UTC, datetime, timedelta
from typing import Any

from govdata.config.constants import HealthState
from govdata.ingestion.base import DataSource, HealthStatus
from govdata.ingestion.registry import SourceConfig


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic clock for limiter tests."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class StubSource(DataSource):
    """In-memory adapter recording every call."""

    name = "stub"

    def __init__(
        self,
        health: HealthState = HealthState.HEALTHY,
        error: Exception | None = None,
        delay: float = 0.0,
        journal: list[str] | None = None,
        label: str = "stub",
    ) -> None:
        super().__init__()
        self.health = health
        self.error = error
        self.health_error: Exception | None = None
        self.delay = delay
        self.journal = journal
        self.label = label
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.call_times: list[float] = []
        self.health_checks = 0
        self.closed = False

    async def health_check(self) -> HealthStatus:
        self.health_checks += 1
        if self.journal is not None:
            self.journal.append(self.label)
        if self.health_error is not None:
            raise self.health_error
        errors = [] if self.health == HealthState.HEALTHY else ["upstream down"]
        return HealthStatus(status=self.health, response_time_ms=1.0, errors=errors)

    async def fetch(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        self.calls.append((endpoint, dict(params or {})))
        self.call_times.append(time.monotonic())
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {"endpoint": endpoint, "params": params, "call": len(self.calls)}

    async def aclose(self) -> None:
        self.closed = True


def make_config(**overrides: Any) -> SourceConfig:
    """Source config with a generous rate limit unless overridden."""
    data: dict[str, Any] = {
        "rate_limit": {"requests": 100, "window_seconds": 1},
        "update_frequency": "daily",
        "priority": "medium",
        "retry_on_failure": True,
        "retry_config": {"max_retries": 3, "initial_delay_ms": 10, "backoff_multiplier": 2},
    }
    data.update(overrides)
    return SourceConfig.model_validate(data)
