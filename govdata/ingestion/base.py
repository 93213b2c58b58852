"""Base classes for data source adapters."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from govdata.config.constants import HealthState
from govdata.config.settings import settings
from govdata.ingestion.errors import UpstreamError


@dataclass
class HealthStatus:
    """Result of an adapter health check."""

    status: HealthState
    response_time_ms: float | None = None
    errors: list[str] = field(default_factory=list)
    last_checked: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthState.HEALTHY

    @classmethod
    def unhealthy(cls, error: str) -> "HealthStatus":
        return cls(status=HealthState.UNHEALTHY, errors=[error])

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "response_time_ms": self.response_time_ms,
            "errors": self.errors,
            "last_checked": self.last_checked.isoformat(),
        }


class DataSource(ABC):
    """Capability contract every provider adapter satisfies."""

    name: str = "base"

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"datasource.{self.name}")

    @abstractmethod
    async def health_check(self) -> HealthStatus:
        """Check if the provider is available."""
        ...

    @abstractmethod
    async def fetch(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """Fetch raw data for an endpoint."""
        ...

    async def aclose(self) -> None:
        """Release adapter resources."""


class HTTPDataSource(DataSource):
    """JSON-over-HTTP adapter.

    Subclasses set ``name``, ``base_url`` and ``health_endpoint``; the
    manager only needs ``fetch`` and ``health_check``.
    """

    base_url: str = ""
    health_endpoint: str = "/"
    health_params: dict[str, Any] | None = None
    degraded_after_ms: float = 2000.0

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        default_params: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        self.base_url = base_url or self.base_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.default_params = default_params or {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers or {},
            follow_redirects=True,
            transport=transport,
        )

    async def fetch(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        query = {**self.default_params, **(params or {})}
        self.logger.debug(f"GET {endpoint} {query}")

        try:
            resp = await self._client.get(endpoint, params=query)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Timeout requesting {endpoint}: {e}", status_code=408) from e
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"Transport error requesting {endpoint}: {e}", retryable=True
            ) from e

        if resp.is_error:
            raise UpstreamError(
                f"HTTP {resp.status_code} error for {endpoint}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(f"Malformed JSON from {endpoint}: {e}") from e

    async def health_check(self) -> HealthStatus:
        """Time a request against the health endpoint."""
        start = time.perf_counter()
        try:
            await self.fetch(self.health_endpoint, self.health_params)
        except UpstreamError as e:
            self.logger.error(f"{self.name} health check failed: {e}")
            return HealthStatus.unhealthy(str(e))

        elapsed_ms = (time.perf_counter() - start) * 1000
        status = HealthState.HEALTHY
        if elapsed_ms > self.degraded_after_ms:
            status = HealthState.DEGRADED
        return HealthStatus(status=status, response_time_ms=elapsed_ms)

    async def aclose(self) -> None:
        await self._client.aclose()
