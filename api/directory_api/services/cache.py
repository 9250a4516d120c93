from __future__ import annotations

import logging
import time
from collections.abc import Callable
from functools import lru_cache
from typing import Any

from cachetools import TTLCache

from directory_api.core.config import get_settings

logger = logging.getLogger(__name__)

RESOURCE_LISTING_PREFIX = "resources:"


class ListingCache:
    """Bounded TTL cache for public listings, invalidated by key prefix."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: TTLCache[str, Any] = TTLCache(
            maxsize=max(1, max_entries),
            ttl=max(ttl_seconds, 0),
            timer=clock,
        )

    def get(self, key: str) -> Any | None:
        return self._entries.get(key)

    def set(self, key: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = value

    def invalidate(self, prefix: str = "") -> int:
        self._entries.expire()
        stale = [key for key in list(self._entries) if key.startswith(prefix)]
        for key in stale:
            self._entries.pop(key, None)
        if stale:
            logger.info("listing cache invalidated prefix=%s entries=%s", prefix or "*", len(stale))
        return len(stale)


@lru_cache
def get_listing_cache() -> ListingCache:
    settings = get_settings()
    return ListingCache(
        ttl_seconds=settings.listing_cache_ttl_seconds,
        max_entries=settings.listing_cache_max_entries,
    )
