"""Scheduling, caching and health constants and enumerations."""

from datetime import timedelta
from enum import Enum


class Priority(str, Enum):
    """Refresh priority of a data source."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UpdateFrequency(str, Enum):
    """How often a source publishes new data."""

    REAL_TIME = "real-time"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class HealthState(str, Enum):
    """Adapter health as reported by health checks."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class SyncState(str, Enum):
    """Per-source refresh state."""

    IDLE = "idle"
    SYNCING = "syncing"
    PENDING_RETRY = "pending_retry"


# Lower sorts first
PRIORITY_ORDER = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}

FREQUENCY_INTERVALS = {
    UpdateFrequency.REAL_TIME: timedelta(minutes=5),
    UpdateFrequency.HOURLY: timedelta(hours=1),
    UpdateFrequency.DAILY: timedelta(days=1),
    UpdateFrequency.WEEKLY: timedelta(days=7),
    UpdateFrequency.MONTHLY: timedelta(days=30),
    UpdateFrequency.QUARTERLY: timedelta(days=90),
    UpdateFrequency.ANNUALLY: timedelta(days=365),
}

DEFAULT_FREQUENCY_INTERVAL = timedelta(days=1)

# Upstream HTTP statuses worth retrying
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Cache TTLs by endpoint class
TTL_REAL_TIME = timedelta(minutes=5)
TTL_DAILY = timedelta(hours=1)
TTL_WEEKLY = timedelta(days=1)
TTL_MONTHLY = timedelta(weeks=1)
TTL_DEFAULT = timedelta(days=1)


def frequency_to_duration(frequency: UpdateFrequency | str) -> timedelta:
    """Interval between natural refreshes for a frequency."""
    try:
        return FREQUENCY_INTERVALS[UpdateFrequency(frequency)]
    except ValueError:
        return DEFAULT_FREQUENCY_INTERVAL
