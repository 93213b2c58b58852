"""Normalized error shape for every data source failure path."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx

from govdata.config.constants import RETRYABLE_STATUS_CODES


class ErrorKind(str, Enum):
    """Failure taxonomy."""

    NOT_FOUND = "not_found"
    TRANSIENT_UPSTREAM = "transient_upstream"
    PERMANENT_UPSTREAM = "permanent_upstream"
    UNHEALTHY_SOURCE = "unhealthy_source"
    RATE_LIMIT_TIMEOUT = "rate_limit_timeout"


class UpstreamError(Exception):
    """Raised by adapters when a provider call fails.

    ``retryable`` overrides the status-code classification; adapters set it
    for network failures that carry no status.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retryable = retryable


class RateLimitTimeout(Exception):
    """Raised when a token could not be acquired within the allowed wait."""

    def __init__(self, waited: float, timeout: float) -> None:
        super().__init__(
            f"No rate limit token available after {waited:.2f}s (timeout {timeout:.2f}s)"
        )
        self.waited = waited
        self.timeout = timeout


class DataSourceError(Exception):
    """Failure of a fetch or sync against a named source.

    Attributes:
        source: Registered source name
        endpoint: Endpoint being fetched (or "sync")
        message: Human-readable reason
        status_code: Upstream HTTP status, when known
        retryable: Whether the scheduler may retry this failure
        timestamp: When the failure was normalized
        params: Request parameters
        kind: Failure category
    """

    def __init__(
        self,
        source: str,
        endpoint: str,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
        params: dict[str, Any] | None = None,
        kind: ErrorKind = ErrorKind.PERMANENT_UPSTREAM,
        timestamp: datetime | None = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.endpoint = endpoint
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        self.params = params or {}
        self.kind = kind
        self.timestamp = timestamp or datetime.now(UTC)

    def __str__(self) -> str:
        suffix = f" (HTTP {self.status_code})" if self.status_code is not None else ""
        return f"[{self.source}:{self.endpoint}] {self.message}{suffix}"

    @classmethod
    def not_found(cls, source: str, endpoint: str = "", params: dict[str, Any] | None = None) -> "DataSourceError":
        return cls(
            source,
            endpoint,
            f"Data source '{source}' not found",
            params=params,
            kind=ErrorKind.NOT_FOUND,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "endpoint": self.endpoint,
            "message": self.message,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
            "params": self.params,
            "kind": self.kind.value,
        }


def is_retryable_status(status_code: int | None) -> bool:
    """Check whether an upstream status is transient."""
    return status_code in RETRYABLE_STATUS_CODES


def is_retryable_failure(exc: BaseException, status_code: int | None) -> bool:
    """Transient statuses and network failures are retryable."""
    explicit = getattr(exc, "retryable", None)
    if isinstance(explicit, bool):
        return explicit
    if status_code is not None:
        return is_retryable_status(status_code)
    return isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError))


def extract_status_code(exc: BaseException) -> int | None:
    """Find an HTTP status code on an arbitrary exception."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code

    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def normalize_error(
    source: str,
    endpoint: str,
    exc: BaseException,
    params: dict[str, Any] | None = None,
) -> DataSourceError:
    """Wrap any failure into a DataSourceError."""
    if isinstance(exc, DataSourceError):
        return exc

    if isinstance(exc, RateLimitTimeout):
        return DataSourceError(
            source,
            endpoint,
            str(exc),
            params=params,
            kind=ErrorKind.RATE_LIMIT_TIMEOUT,
        )

    status_code = extract_status_code(exc)
    retryable = is_retryable_failure(exc, status_code)
    return DataSourceError(
        source,
        endpoint,
        str(exc) or exc.__class__.__name__,
        status_code=status_code,
        retryable=retryable,
        params=params,
        kind=ErrorKind.TRANSIENT_UPSTREAM if retryable else ErrorKind.PERMANENT_UPSTREAM,
    )
