"""Process-level runtime caches.

Everything that would otherwise be a module-level singleton (the per-cache-root
version indexes, VCS refs, registry lookups) lives in a ``RuntimeCache`` that
is created once per run and handed to the components that share it.
"""

import time
from collections import OrderedDict
from typing import Any


class LRUCache:
    """Small LRU with optional max age, backed by ``OrderedDict``."""

    def __init__(self, max_size: int = 100, max_age: float | None = None):
        self.max_size = max_size
        self.max_age = max_age
        self._cache: OrderedDict[str, tuple[Any, float]] = OrderedDict()

    def get(self, key: str) -> Any | None:
        """Get item, moving it to the most-recent end on a hit."""
        entry = self._cache.get(key)
        if entry is None:
            return None

        value, stored_at = entry
        if self.max_age is not None and time.monotonic() - stored_at > self.max_age:
            del self._cache[key]
            return None

        self._cache.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        """Add item, evicting the least recently used one when full."""
        if key in self._cache:
            self._cache.move_to_end(key)
        self._cache[key] = (value, time.monotonic())

        while len(self._cache) > self.max_size:
            self._cache.popitem(last=False)

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    def values(self) -> list[Any]:
        return [value for value, _ in self._cache.values()]

    def reset(self) -> None:
        self._cache.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._cache)


class RuntimeCache:
    """
    Shared in-memory state for one run.

    - ``roots``: cache root -> LRU of ``source id -> sorted release list``
    - ``refs``: VCS source -> parsed refs
    - ``lookups``: registry name -> URL
    """

    ROOTS_MAX = 5
    ROOTS_MAX_AGE = 60 * 30
    VERSIONS_MAX = 100
    VERSIONS_MAX_AGE = 60 * 5

    def __init__(self):
        self.roots = LRUCache(self.ROOTS_MAX, self.ROOTS_MAX_AGE)
        self.refs: dict[str, Any] = {}
        self.lookups: dict[str, str] = {}

    def versions_index(self, root: str) -> LRUCache:
        """Get (creating if needed) the version index shared by caches on ``root``."""
        index = self.roots.get(root)
        if index is None:
            index = LRUCache(self.VERSIONS_MAX, self.VERSIONS_MAX_AGE)
            self.roots.set(root, index)
        return index

    def reset(self) -> None:
        """Clear every layer, including each root's version index."""
        for index in self.roots.values():
            index.reset()
        self.roots.reset()
        self.refs.clear()
        self.lookups.clear()
