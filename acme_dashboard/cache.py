"""Cache of listing data keyed by the page path it was rendered for."""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Any, Callable, Hashable, Tuple, TypeVar

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 256


class ViewCache:
    """Memoize page data until the path it belongs to is revalidated.

    At most ``max_entries`` results are kept; the least recently used entry is
    evicted first, so distinct search queries cannot grow it without bound.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._entries: "OrderedDict[Tuple[str, Hashable], Any]" = OrderedDict()
        self._lock = threading.Lock()

    def get_or_load(self, path: str, key: Hashable, loader: Callable[[], T]) -> T:
        cache_key = (path, key)
        with self._lock:
            if cache_key in self._entries:
                self._entries.move_to_end(cache_key)
                return self._entries[cache_key]
        value = loader()
        with self._lock:
            self._entries[cache_key] = value
            self._entries.move_to_end(cache_key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)
        return value

    def revalidate(self, path: str) -> int:
        """Drop every entry cached for ``path``; returns the number removed."""

        normalized = path.rstrip("/") or "/"
        with self._lock:
            stale = [key for key in self._entries if key[0] == normalized]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, item: object) -> bool:
        with self._lock:
            return any(key[0] == item for key in self._entries)


__all__ = ["DEFAULT_MAX_ENTRIES", "ViewCache"]
