"""
Bounded most-recently-used caches shared between threads.
"""

import threading
from collections import OrderedDict
from typing import Any, Callable, Generic, Hashable, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class IdentityKey:
    """Hashes and compares an object by identity, keeping it alive while cached."""
    __slots__ = ("item",)

    def __init__(self, item: Any):
        self.item = item

    def __hash__(self) -> int:
        return id(self.item)

    def __eq__(self, other) -> bool:
        return isinstance(other, IdentityKey) and other.item is self.item


class MRUCache(Generic[K, V]):
    """
    Cache of at most ``capacity`` values created on demand by ``factory``.

    The factory runs outside the lock, so concurrent misses of one key may
    build the value more than once; the first stored value is kept.
    """

    def __init__(self, factory: Callable[[K], V], capacity: int, key: Callable[[K], Hashable] = None):
        if capacity < 1:
            raise ValueError("The cache capacity must be positive.")
        self.factory = factory
        self.capacity = capacity
        self._key = key
        self._items: "OrderedDict[Hashable, V]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, item: K) -> V:
        key = self._key(item) if self._key is not None else item
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
                return self._items[key]
        value = self.factory(item)
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
                return self._items[key]
            self._items[key] = value
            while len(self._items) > self.capacity:
                self._items.popitem(last=False)
        return value

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item) -> bool:
        key = self._key(item) if self._key is not None else item
        return key in self._items
