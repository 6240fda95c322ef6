"""In-process TTL cache with stale fallback for read-mostly profile data.

Uses cachetools.TTLCache. Opponent display metadata changes rarely, so a
pending-rematch list may show a slightly old name rather than fail when the
profiles table is briefly unreachable.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

from deadblock.shared.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# Distinguishes "not in cache" from a cached None
_MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """Fresh entries in a TTLCache, last-known-good values in a bounded LRU."""

    def __init__(self, maxsize: int = 256, ttl: float = 60.0):
        self._maxsize = maxsize
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._stale: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            if len(self._locks) > self._maxsize * 2:
                self._locks = {k: v for k, v in self._locks.items() if v.locked()}
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def get(self, key: str) -> Any:
        return self._cache.get(key, _MISSING)

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = value
        self._stale[key] = value
        self._stale.move_to_end(key)
        while len(self._stale) > self._maxsize:
            self._stale.popitem(last=False)

    def get_stale(self, key: str) -> Any:
        value = self._stale.get(key, _MISSING)
        if value is not _MISSING:
            self._stale.move_to_end(key)
        return value

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()
        self._stale.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._cache


def cached(cache: AsyncTTLCache, key_func: Callable[..., str]):
    """Cache an async loader; serve the stale value if the store is unavailable.

    Only ``StoreUnavailableError`` falls back to stale data, and only when a
    stale value exists. There is no retry: the caller's poll loop owns that.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = key_func(*args, **kwargs)
            result = cache.get(key)
            if result is not _MISSING:
                return result

            async with cache.lock(key):
                result = cache.get(key)
                if result is not _MISSING:
                    return result
                try:
                    result = await func(*args, **kwargs)
                except StoreUnavailableError as exc:
                    stale = cache.get_stale(key)
                    if stale is _MISSING:
                        raise
                    logger.warning("Returning stale data for %s (%s)", key, type(exc).__name__)
                    return stale
                cache.set(key, result)
                return result

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
