from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from django.core.cache import caches

_MISSING = object()


class ExpiringStore(ABC):
    """Small key/value store with per-key expiry, shared by all writers of a deployment."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    def put(self, key: str, value: Any, ttl: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def add(self, key: str, value: Any, ttl: int) -> bool:
        """Store only when the key is absent. Returns whether the value was stored."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError

    def pull(self, key: str, default: Any = None) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            return default
        self.delete(key)
        return value


class DjangoCacheStore(ExpiringStore):
    def __init__(self, alias: str = "default") -> None:
        self.alias = alias

    @property
    def cache(self):  # noqa: ANN201
        return caches[self.alias]

    def get(self, key: str, default: Any = None) -> Any:
        return self.cache.get(key, default)

    def put(self, key: str, value: Any, ttl: int) -> None:
        self.cache.set(key, value, timeout=max(1, int(ttl)))

    def add(self, key: str, value: Any, ttl: int) -> bool:
        return bool(self.cache.add(key, value, timeout=max(1, int(ttl))))

    def delete(self, key: str) -> None:
        self.cache.delete(key)


class MemoryStore(ExpiringStore):
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._data: dict[str, tuple[Any, float]] = {}

    def _live(self, key: str) -> tuple[Any, float] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self.clock():
            self._data.pop(key, None)
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._live(key)
        return default if entry is None else entry[0]

    def put(self, key: str, value: Any, ttl: int) -> None:
        self._data[key] = (value, self.clock() + max(1, int(ttl)))

    def add(self, key: str, value: Any, ttl: int) -> bool:
        if self._live(key) is not None:
            return False
        self.put(key, value, ttl)
        return True

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
