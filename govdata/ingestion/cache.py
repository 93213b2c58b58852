"""In-memory read-through cache with absolute expiry."""

import hashlib
import json
import logging
from collections.abc import Callable
from urllib.parse import quote
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from govdata.config.constants import (
    TTL_DAILY,
    TTL_DEFAULT,
    TTL_MONTHLY,
    TTL_REAL_TIME,
    TTL_WEEKLY,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def make_cache_key(source: str, endpoint: str, params: dict[str, Any] | None = None) -> str:
    """Generate a deterministic cache key for a request.

    Source and endpoint are percent-encoded so a ":" inside either cannot
    collide with the separator.
    """
    key_parts = [quote(source, safe=""), quote(endpoint, safe="")]
    if params:
        encoded = json.dumps(params, sort_keys=True, default=str)
        key_parts.append(hashlib.md5(encoded.encode()).hexdigest())
    return ":".join(key_parts)


def ttl_for_endpoint(endpoint: str) -> timedelta:
    """Pick a TTL from the endpoint name.

    Substring classification, checked in this order: "real-time"/"rates",
    "daily"/"market", "weekly", "monthly", otherwise the default.
    """
    # TODO: replace with an explicit per-source endpoint TTL table
    if "real-time" in endpoint or "rates" in endpoint:
        return TTL_REAL_TIME
    if "daily" in endpoint or "market" in endpoint:
        return TTL_DAILY
    if "weekly" in endpoint:
        return TTL_WEEKLY
    if "monthly" in endpoint:
        return TTL_MONTHLY
    return TTL_DEFAULT


@dataclass(frozen=True)
class CacheEntry:
    """A cached upstream response."""

    key: str
    value: Any
    created_at: datetime
    expires_at: datetime
    source_name: str
    endpoint: str
    params: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "source": self.source_name,
            "endpoint": self.endpoint,
            "params": self.params,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class CacheStats:
    total: int
    valid: int
    expired: int

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "valid": self.valid, "expired": self.expired}


class ReadThroughCache:
    """Key to entry store; expired entries are never returned."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._store: dict[str, CacheEntry] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return self.get_entry(key) is not None

    def get_entry(self, key: str) -> CacheEntry | None:
        """Get the live entry for a key, evicting it if expired."""
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._store[key]
            logger.debug(f"Cache expired: {key}")
            return None
        return entry

    def get(self, key: str) -> Any | None:
        """Get a cached value, or None on miss."""
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def put(
        self,
        key: str,
        value: Any,
        ttl: timedelta,
        source_name: str = "",
        endpoint: str = "",
        params: dict[str, Any] | None = None,
    ) -> CacheEntry:
        """Store a value, superseding any entry with the same key."""
        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl,
            source_name=source_name,
            endpoint=endpoint,
            params=dict(params or {}),
        )
        self._store[key] = entry
        return entry

    def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def clear(self, source_name: str | None = None) -> int:
        """Drop all entries, or only those of one source."""
        if source_name is None:
            count = len(self._store)
            self._store.clear()
            return count

        keys = [k for k, e in self._store.items() if e.source_name == source_name]
        for key in keys:
            del self._store[key]
        return len(keys)

    def keys_for_source(self, source_name: str) -> list[str]:
        return [k for k, e in self._store.items() if e.source_name == source_name]

    def stats(self) -> CacheStats:
        now = self._clock()
        expired = sum(1 for e in self._store.values() if e.is_expired(now))
        return CacheStats(
            total=len(self._store),
            valid=len(self._store) - expired,
            expired=expired,
        )

    def sweep_expired(self) -> int:
        """Delete every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [k for k, e in self._store.items() if e.is_expired(now)]
        for key in expired:
            del self._store[key]
        if expired:
            logger.info(f"Swept {len(expired)} expired cache entries")
        return len(expired)
