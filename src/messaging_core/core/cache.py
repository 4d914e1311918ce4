import time

from .interfaces import CacheInterface


class InMemoryCache(CacheInterface):
    """Process-local cache for single-instance deployments and tests."""

    def __init__(self, clock=time.monotonic):
        self._entries: dict[str, tuple[float, str]] = {}
        self._clock = clock

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def put(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (self._clock() + ttl, value)

    async def evict(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry[0] > self._clock()
