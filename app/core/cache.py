"""Day-scoped in-memory TTL cache for computed KPI responses.

Keys combine metric name, window, the canonical filter set and the UTC
calendar day, so identical requests within a day share an entry while a
long-lived process never serves yesterday's snapshot after midnight UTC.
Expired entries are dropped lazily by the lookup that finds them.
"""

import copy
import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from app.core.config import get_settings

logger = logging.getLogger(__name__)

# Default TTL in seconds
DEFAULT_TTL = 600


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def canonical_filters(filters: Mapping[str, Any] | None) -> str:
    """Serialize a filter set so key order never changes the result."""
    return json.dumps(dict(filters or {}), sort_keys=True, separators=(",", ":"), default=str)


class MetricCache:
    """Single shared map of ``key -> (stored_at, ttl, value)``."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, tuple[datetime, float, Any]] = {}

    def make_key(self, metric: str, filters: Mapping[str, Any] | None, window: str) -> str:
        day = self._clock().astimezone(timezone.utc).date().isoformat()
        return f"{metric}:{window}:{canonical_filters(filters)}:{day}"

    def get(self, metric: str, filters: Mapping[str, Any] | None, window: str) -> Any | None:
        """Return a copy of the cached value if present and fresh, else None."""
        key = self.make_key(metric, filters, window)
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache MISS: %s", key)
            return None
        stored_at, ttl, value = entry
        if (self._clock() - stored_at).total_seconds() > ttl:
            self._entries.pop(key, None)
            logger.debug("Cache EXPIRED: %s", key)
            return None
        logger.debug("Cache HIT: %s", key)
        return copy.deepcopy(value)

    def set(
        self,
        metric: str,
        filters: Mapping[str, Any] | None,
        window: str,
        value: Any,
        ttl: float | None = None,
    ) -> None:
        """Store a value, replacing any entry under the same key."""
        key = self.make_key(metric, filters, window)
        self._entries[key] = (
            self._clock(),
            self.default_ttl if ttl is None else ttl,
            copy.deepcopy(value),
        )
        logger.debug("Cache SET: %s", key)

    def invalidate_metric(self, metric: str) -> None:
        """Remove every entry for a metric, whatever its window, filters or day."""
        prefix = f"{metric}:"
        stale = [key for key in self._entries if key.startswith(prefix)]
        for key in stale:
            del self._entries[key]
        logger.debug("Cache CLEARED for metric %s (%d entries)", metric, len(stale))

    def clear(self) -> None:
        """Clear all cached entries."""
        self._entries.clear()
        logger.debug("Cache CLEARED")

    def stats(self) -> dict[str, Any]:
        return {"size": len(self._entries), "keys": list(self._entries)}


metrics_cache = MetricCache(default_ttl=get_settings().metrics_cache_ttl_seconds)
