"""
In-process TTL cache.

Holds profile lookups (currency, IPO date) and FX rates between recomputes.
Passed explicitly to the code that needs it; the clock is injectable so
expiry can be tested without sleeping.
"""

import time
from typing import Any, Awaitable, Callable


class TTLCache:
    def __init__(self, ttl_s: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self._clock = clock
        self._store: dict[str, tuple[float, Any]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._store.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._store[key]
            return default
        return value

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        lifetime = self.ttl_s if ttl_s is None else ttl_s
        self._store[key] = (self._clock() + lifetime, value)

    def ttl(self, key: str) -> float | None:
        """Seconds until key expires, or None when absent/expired."""
        entry = self._store.get(key)
        if entry is None:
            return None
        remaining = entry[0] - self._clock()
        if remaining <= 0:
            del self._store[key]
            return None
        return remaining

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._store.clear()
        else:
            self._store.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.ttl(key) is not None

    def __len__(self) -> int:
        return sum(1 for k in list(self._store) if self.ttl(k) is not None)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        cache_none: bool = False,
    ) -> Any:
        """
        Cached value, or await loader() and cache its result. A None result is
        only cached with cache_none=True, so a known-missing value is not
        looked up again until it expires.
        """
        if key in self:
            return self.get(key)
        value = await loader()
        if value is not None or cache_none:
            self.set(key, value)
        return value
