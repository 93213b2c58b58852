"""Data refresh engine: cache, rate limiting, scheduling and metrics."""

from .base import DataSource, HealthStatus, HTTPDataSource
from .cache import ReadThroughCache
from .errors import DataSourceError, ErrorKind, UpstreamError
from .manager import DataSourceManager
from .metrics import MetricsLedger
from .rate_limiter import TokenBucketLimiter
from .registry import RateLimitConfig, RefreshTarget, RetryConfig, SourceConfig
from .scheduler import RefreshScheduler

__all__ = [
    "DataSource",
    "DataSourceError",
    "DataSourceManager",
    "ErrorKind",
    "HTTPDataSource",
    "HealthStatus",
    "MetricsLedger",
    "RateLimitConfig",
    "ReadThroughCache",
    "RefreshScheduler",
    "RefreshTarget",
    "RetryConfig",
    "SourceConfig",
    "TokenBucketLimiter",
    "UpstreamError",
]
