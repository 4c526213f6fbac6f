"""Bounded LRU cache with optional time-to-live."""

import time
from collections import OrderedDict
from collections.abc import Callable, Hashable, Iterator
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """OrderedDict-backed LRU cache.

    Entries expire ``ttl`` seconds after they were stored, regardless of how
    often they are read. With ``touch_on_get=False`` reads do not refresh the
    recency order, so eviction drops the oldest-stored entry first.
    """

    def __init__(
        self,
        max_size: int,
        ttl: float | None = None,
        touch_on_get: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._data: OrderedDict[K, tuple[float, V]] = OrderedDict()
        self.max_size = max_size
        self.ttl = ttl
        self.touch_on_get = touch_on_get
        self._clock = clock
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def keys(self) -> Iterator[K]:
        return iter(list(self._data))

    def _expired(self, stored_at: float) -> bool:
        return self.ttl is not None and self._clock() - stored_at > self.ttl

    def get(self, key: K) -> V | None:
        """Return a fresh value, dropping it instead if it has expired."""
        item = self._data.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._expired(stored_at):
            del self._data[key]
            return None
        if self.touch_on_get:
            self._data.move_to_end(key)
        return value

    def put(self, key: K, value: V) -> list[K]:
        """Store a value and return the keys evicted to stay within max_size."""
        self._data[key] = (self._clock(), value)
        self._data.move_to_end(key)
        evicted = []
        while len(self._data) > self.max_size:
            old_key, _ = self._data.popitem(last=False)
            evicted.append(old_key)
        self.evictions += len(evicted)
        return evicted

    def age(self, key: K) -> float | None:
        item = self._data.get(key)
        if item is None:
            return None
        return self._clock() - item[0]

    def pop(self, key: K) -> V | None:
        item = self._data.pop(key, None)
        return item[1] if item else None

    def discard_where(self, predicate: Callable[[K], bool]) -> int:
        """Drop every entry whose key matches predicate."""
        doomed = [key for key in self._data if predicate(key)]
        for key in doomed:
            del self._data[key]
        return len(doomed)

    def clear(self) -> None:
        self._data.clear()
