"""
Resolution Cache - TTL-bound memo store for external resolutions

Entries are keyed by the resolver configuration hash plus the normalized
hostname and belong to one namespace (the run key that filled them).
Binding the cache to a different namespace drops every entry at once.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from cachetools import TTLCache

from .models import ResolutionResult
from ..utils.validators import ResolverConfig, normalize_name

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 5 * 60
CACHE_MAX_ENTRIES = 6000

# TTLCache expiry is exclusive; the grace keeps entries exactly ``ttl`` old readable.
EXPIRY_GRACE_SECONDS = 1.0


@dataclass(frozen=True)
class CacheEntry:
    value: ResolutionResult
    timestamp: float


def cache_key(config: ResolverConfig, hostname: str) -> str:
    return f"{config.cache_prefix()}|{normalize_name(hostname)}"


class ResolutionCache:
    """Thread-safe TTL cache owned by one resolution coordinator."""

    def __init__(
        self,
        ttl: float = CACHE_TTL_SECONDS,
        max_entries: int = CACHE_MAX_ENTRIES,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock or time.monotonic
        self.namespace: Optional[str] = None
        self._entries = TTLCache(
            maxsize=max_entries, ttl=ttl + EXPIRY_GRACE_SECONDS, timer=self.clock
        )
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def bind(self, namespace: str) -> bool:
        """
        Bind the cache to a run namespace.

        Returns:
            True if the namespace changed and all previous entries were dropped
        """
        with self._lock:
            if namespace == self.namespace:
                return False
            dropped = len(self._entries)
            self.namespace = namespace
            self._entries.clear()
        if dropped:
            logger.info(f"Resolution cache invalidated ({dropped} entries dropped)")
        return True

    def _fresh(self, key: str) -> Optional[ResolutionResult]:
        entry = self._entries.get(key)
        if entry is None or self.clock() - entry.timestamp > self.ttl:
            return None
        return entry.value

    def get(self, key: str) -> Optional[ResolutionResult]:
        """Return the cached value, or None when missing or older than the TTL."""
        with self._lock:
            value = self._fresh(key)
            if value is None:
                self.misses += 1
            else:
                self.hits += 1
            return value

    def peek(self, key: str) -> Optional[ResolutionResult]:
        """Like ``get`` but leaves the hit and miss counters alone."""
        with self._lock:
            return self._fresh(key)

    def put(self, key: str, value: ResolutionResult) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, timestamp=self.clock())

    def clear(self) -> int:
        """Drop all entries and return how many were removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)
