"""Append-only per-source performance ledger."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

Operation = Literal["fetch", "sync"]

# Thresholds used by the system summary
MIN_REQUESTS_FOR_ALERTS = 10
CRITICAL_SUCCESS_RATE = 80.0
SLOW_AVERAGE_MS = 5000.0
TARGET_SUCCESS_RATE = 90.0
TARGET_AVERAGE_MS = 3000.0


@dataclass(frozen=True)
class PerformanceMetric:
    """One fetch or sync attempt."""

    timestamp: datetime
    source: str
    endpoint: str
    duration_ms: float
    success: bool
    cache_hit: bool = False
    operation: Operation = "fetch"
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "endpoint": self.endpoint,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "cache_hit": self.cache_hit,
            "operation": self.operation,
            "error": self.error,
        }


@dataclass
class MetricsSummary:
    """Aggregates over one source's ledger entries."""

    source: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    cache_hits: int = 0
    average_duration_ms: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    last_request_at: datetime | None = None
    recent_errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        return self.successful / self.total * 100 if self.total else 0.0

    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / self.total * 100 if self.total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "cache_hits": self.cache_hits,
            "success_rate": self.success_rate,
            "cache_hit_rate": self.cache_hit_rate,
            "average_duration_ms": self.average_duration_ms,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "last_request_at": self.last_request_at.isoformat() if self.last_request_at else None,
            "recent_errors": self.recent_errors,
        }


class MetricsLedger:
    """Per-source record of every fetch and sync attempt.

    Entries are never edited. Once a source holds ``max_entries_per_source``
    entries the oldest are dropped.
    """

    def __init__(self, max_entries_per_source: int = 1000, recent_errors: int = 10) -> None:
        self._entries: dict[str, deque[PerformanceMetric]] = {}
        self._max_entries = max_entries_per_source
        self._recent_errors = recent_errors

    def record(
        self,
        source: str,
        endpoint: str,
        duration_ms: float,
        success: bool,
        timestamp: datetime,
        cache_hit: bool = False,
        operation: Operation = "fetch",
        error: str | None = None,
    ) -> PerformanceMetric:
        metric = PerformanceMetric(
            timestamp=timestamp,
            source=source,
            endpoint=endpoint,
            duration_ms=duration_ms,
            success=success,
            cache_hit=cache_hit,
            operation=operation,
            error=error,
        )
        entries = self._entries.setdefault(source, deque(maxlen=self._max_entries))
        entries.append(metric)
        return metric

    def entries(self, source: str, operation: Operation | None = None) -> list[PerformanceMetric]:
        metrics = list(self._entries.get(source, ()))
        if operation is not None:
            metrics = [m for m in metrics if m.operation == operation]
        return metrics

    def sources(self) -> list[str]:
        return list(self._entries)

    def summarize(self, source: str) -> MetricsSummary:
        metrics = self.entries(source)
        summary = MetricsSummary(source=source)
        if not metrics:
            return summary

        durations = [m.duration_ms for m in metrics]
        summary.total = len(metrics)
        summary.successful = sum(1 for m in metrics if m.success)
        summary.failed = summary.total - summary.successful
        summary.cache_hits = sum(1 for m in metrics if m.cache_hit)
        summary.average_duration_ms = sum(durations) / len(durations)
        summary.min_duration_ms = min(durations)
        summary.max_duration_ms = max(durations)
        summary.last_request_at = metrics[-1].timestamp

        failures = [m for m in reversed(metrics) if not m.success]
        summary.recent_errors = [
            {"timestamp": m.timestamp.isoformat(), "endpoint": m.endpoint, "error": m.error}
            for m in failures[: self._recent_errors]
        ]
        return summary

    def system_health_summary(self) -> dict[str, Any]:
        """Roll-up over every source in the ledger."""
        total = 0
        successful = 0
        total_duration = 0.0
        critical_sources: list[str] = []
        slow_sources: list[str] = []

        for source in self._entries:
            summary = self.summarize(source)
            total += summary.total
            successful += summary.successful
            total_duration += summary.average_duration_ms * summary.total

            if summary.total > MIN_REQUESTS_FOR_ALERTS:
                if summary.success_rate < CRITICAL_SUCCESS_RATE:
                    critical_sources.append(source)
                if summary.average_duration_ms > SLOW_AVERAGE_MS:
                    slow_sources.append(source)

        success_rate = successful / total * 100 if total else 0.0
        average_ms = total_duration / total if total else 0.0

        recommendations = []
        if total and success_rate < TARGET_SUCCESS_RATE:
            recommendations.append(
                f"Overall success rate is {success_rate:.1f}%; review upstream errors."
            )
        if average_ms > TARGET_AVERAGE_MS:
            recommendations.append(
                f"Average response time is {average_ms:.0f}ms; consider longer cache TTLs."
            )
        if critical_sources:
            recommendations.append(f"Low success rate: {', '.join(critical_sources)}")
        if slow_sources:
            recommendations.append(f"Slow responses: {', '.join(slow_sources)}")

        return {
            "total_operations": total,
            "overall_success_rate": success_rate,
            "average_duration_ms": average_ms,
            "critical_sources": critical_sources,
            "slow_sources": slow_sources,
            "recommendations": recommendations,
        }

    def reset(self, source: str | None = None) -> None:
        if source is None:
            self._entries.clear()
        else:
            self._entries.pop(source, None)
