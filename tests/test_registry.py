"""Tests for source registration and configuration models."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from govdata.config.constants import Priority, SyncState, UpdateFrequency
from govdata.ingestion.errors import DataSourceError, ErrorKind
from govdata.ingestion.registry import RetryConfig, SourceConfig, SourceRegistry

from .support import FakeClock, StubSource, make_config


class TestSourceConfig:
    """Tests for SourceConfig validation."""

    def test_defaults(self):
        """Test default values."""
        config = SourceConfig.model_validate({"rate_limit": {"requests": 5, "window_seconds": 1}})

        assert config.update_frequency == UpdateFrequency.DAILY
        assert config.priority == Priority.MEDIUM
        assert config.retry_on_failure is True
        assert config.retry_config == RetryConfig(
            max_retries=3, initial_delay_ms=1000, backoff_multiplier=2
        )
        assert config.refresh_targets == []

    def test_refill_rate(self):
        """Test requests per window becomes tokens per second."""
        config = make_config(rate_limit={"requests": 2, "window_seconds": 2})

        assert config.rate_limit.refill_rate == 1.0

    def test_invalid_rate_limit(self):
        """Test non-positive limits are rejected."""
        with pytest.raises(ValidationError):
            make_config(rate_limit={"requests": 0, "window_seconds": 1})
        with pytest.raises(ValidationError):
            make_config(rate_limit={"requests": 1, "window_seconds": 0})

    def test_invalid_enum(self):
        """Test unknown priorities are rejected."""
        with pytest.raises(ValidationError):
            make_config(priority="urgent")


class TestSourceRegistry:
    """Tests for SourceRegistry."""

    def test_register(self):
        """Test registration builds a limiter and schedule."""
        clock = FakeClock()
        registry = SourceRegistry()
        entry = registry.register("fred", StubSource(), make_config(), clock())

        assert "fred" in registry
        assert len(registry) == 1
        assert entry.limiter.capacity == 100
        assert entry.schedule.state == SyncState.IDLE
        assert entry.schedule.consecutive_failures == 0
        assert entry.schedule.next_update_at == clock() + timedelta(days=1)

    def test_reregister_replaces(self):
        """Test registering a name twice keeps one fresh binding."""
        clock = FakeClock()
        registry = SourceRegistry()
        first = registry.register("fred", StubSource(), make_config(), clock())
        first.schedule.consecutive_failures = 4

        adapter = StubSource()
        second = registry.register(
            "fred", adapter, make_config(update_frequency="hourly"), clock()
        )

        assert len(registry) == 1
        assert registry.get("fred") is second
        assert second.adapter is adapter
        assert second.schedule.consecutive_failures == 0
        assert second.schedule.next_update_at == clock() + timedelta(hours=1)

    def test_require_unknown(self):
        """Test require raises a not-found error."""
        registry = SourceRegistry()

        with pytest.raises(DataSourceError) as exc_info:
            registry.require("missing", "series")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert exc_info.value.endpoint == "series"

    def test_unregister(self):
        """Test removing a source."""
        registry = SourceRegistry()
        registry.register("fred", StubSource(), make_config(), FakeClock()())

        assert registry.unregister("fred") is True
        assert registry.unregister("fred") is False
        assert registry.names() == []

    def test_schedule_to_dict(self):
        """Test schedule serialization."""
        registry = SourceRegistry()
        entry = registry.register("fred", StubSource(), make_config(), FakeClock()())
        data = entry.schedule.to_dict()

        assert data["source"] == "fred"
        assert data["state"] == "idle"
        assert data["retry_at"] is None
        assert data["success_rate"] == 0.0
