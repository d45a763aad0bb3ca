"""In-process TTL cache service.

Injected wherever memoization is wanted (embeddings, platform tokens)
instead of living as a module-level singleton, so tests can pass their
own instance or a fake clock.
"""
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional


class TTLCache:
    """
    Bounded cache with per-entry expiry and LRU eviction.

    Contract:
        - ``get`` returns None for missing or expired keys.
        - Entries expire ``ttl_seconds`` after being set (per-call override allowed).
        - When ``max_entries`` is exceeded, the least recently used entry is evicted.
    """

    def __init__(
        self,
        max_entries: int = 1024,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = (value, self._clock() + ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[float] = None,
    ) -> Any:
        """Return the cached value or compute, store and return it."""
        value = self.get(key)
        if value is None:
            value = await factory()
            self.set(key, value, ttl_seconds)
        return value
