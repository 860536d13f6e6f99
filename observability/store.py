"""
Thread-safe in-memory tables shared between the periodic writers and the
read-only query path.

Each table guards its own dictionary with a lock. Operations are atomic per
key; callers that need several keys get a point-in-time copy through
``snapshot()`` and must not expect cross-key consistency.
"""

import threading
from typing import Callable, Dict, Generic, Hashable, Iterator, Optional, Set, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ConcurrentTable(Generic[K, V]):
    """Dictionary guarded by a re-entrant lock."""

    def __init__(self):
        self._data: Dict[K, V] = {}
        self._lock = threading.RLock()

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            return self._data.get(key, default)

    def put(self, key: K, value: V):
        with self._lock:
            self._data[key] = value

    def compute_if_absent(self, key: K, factory: Callable[[], V]) -> V:
        """Return the value for ``key``, creating it with ``factory`` if missing."""
        with self._lock:
            if key not in self._data:
                self._data[key] = factory()
            return self._data[key]

    def update(self, key: K, func: Callable[[Optional[V]], V]) -> V:
        """Atomically replace the value for ``key`` with ``func(old_value)``."""
        with self._lock:
            value = func(self._data.get(key))
            self._data[key] = value
            return value

    def snapshot(self) -> Dict[K, V]:
        with self._lock:
            return dict(self._data)

    def keys(self) -> Set[K]:
        with self._lock:
            return set(self._data)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __iter__(self) -> Iterator[K]:
        return iter(self.keys())


class ConcurrentKeySet(Generic[K]):
    """Set with an atomic test-and-set."""

    def __init__(self):
        self._keys: Set[K] = set()
        self._lock = threading.Lock()

    def add_if_absent(self, key: K) -> bool:
        """Add ``key``; return True only for the caller that actually added it."""
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def discard(self, key: K):
        with self._lock:
            self._keys.discard(key)

    def snapshot(self) -> Set[K]:
        with self._lock:
            return set(self._keys)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
