"""
JWKS Cache

In-memory cache for metadata and JWKS documents fetched during key
resolution, keyed by URL.

Features:
- Per-entry TTL fixed at insertion time
- Lazy eviction: expired entries are dropped when they are looked up
- No background thread; call clear() to bound memory in long-lived processes

The cache is an explicit handle owned by a KeyResolver (or shared between
resolvers by passing the same instance), never a process-wide singleton.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# Default entry lifetime (1 hour)
DEFAULT_TTL_SECONDS = 3600.0


@dataclass
class CacheEntry:
    """
    A cached document.

    Attributes:
        url: Source URL (cache key)
        value: Parsed JSON document
        expires_at: Unix timestamp after which the entry is stale
    """
    url: str
    value: Any
    expires_at: float

    @property
    def is_expired(self) -> bool:
        return time.time() >= self.expires_at


class JwksCache:
    """
    URL-keyed document cache with lazy TTL eviction.

    Thread-safe. Concurrent misses for the same URL may both fetch; the last
    writer wins.
    """

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS):
        self.ttl = ttl
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> Optional[Any]:
        """
        Look up a document.

        Returns:
            The cached value, or None on a miss or an expired entry
        """
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            if entry.is_expired:
                del self._entries[url]
                logger.debug(f"JWKS cache entry expired: {url}")
                return None
            return entry.value

    def set(self, url: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a document.

        Args:
            url: Cache key
            value: Document to cache
            ttl: Lifetime in seconds; defaults to the cache's ttl
        """
        lifetime = self.ttl if ttl is None else ttl
        with self._lock:
            self._entries[url] = CacheEntry(url=url, value=value, expires_at=time.time() + lifetime)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return self.get(url) is not None
