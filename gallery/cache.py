"""
Bounded in-process caches for identities and NFT pages.

These are the only module-level mutable state in the core. Both can be
switched off (``CACHE_ENABLED=false``) and cleared between tests.
"""

from typing import Any, Hashable, Optional

from cachetools import TTLCache

from gallery.config import settings


class ResponseCache:
    """TTL + LRU map with an on/off switch."""

    def __init__(self, name: str, maxsize: int, ttl: float, enabled: bool = True):
        self.name = name
        self.enabled = enabled
        self._data: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        if not self.enabled:
            return None
        value = self._data.get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def set(self, key: Hashable, value: Any) -> None:
        if self.enabled and value is not None:
            self._data[key] = value

    def clear(self) -> None:
        self._data.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._data)

    def stats(self) -> dict:
        return {
            "enabled": self.enabled,
            "size": len(self._data),
            "maxsize": self._data.maxsize,
            "hits": self.hits,
            "misses": self.misses,
        }


identity_cache = ResponseCache(
    "identity",
    maxsize=settings.IDENTITY_CACHE_SIZE,
    ttl=settings.IDENTITY_CACHE_TTL,
    enabled=settings.CACHE_ENABLED,
)

nft_page_cache = ResponseCache(
    "nft_page",
    maxsize=settings.NFT_CACHE_SIZE,
    ttl=settings.NFT_CACHE_TTL,
    enabled=settings.CACHE_ENABLED,
)


def clear_caches() -> None:
    identity_cache.clear()
    nft_page_cache.clear()


def set_caches_enabled(enabled: bool) -> None:
    identity_cache.enabled = enabled
    nft_page_cache.enabled = enabled
