"""Process-wide LRU caches for rendered TOCs and resolved archive content."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Generic, Hashable, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_TOC_CAPACITY = 10
DEFAULT_CONTENT_CAPACITY = 200


@dataclass(frozen=True)
class ResolvedContent:
    mime: str
    body: bytes


class LRUCache(Generic[K, V]):
    """Bounded mapping that evicts the least recently used entry.

    Every operation takes the instance lock, so requests for unrelated keys
    still serialize here. The lock is never held while a value is computed:
    two callers missing the same key both compute it and the last ``put`` wins.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("LRU cache capacity must be at least 1")
        self.capacity = capacity
        self._lock = Lock()
        self._entries: "OrderedDict[K, V]" = OrderedDict()

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            try:
                self._entries.move_to_end(key)
            except KeyError:
                return None
            return self._entries[key]

    def put(self, key: K, value: V) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self.capacity:
                self._entries.popitem(last=False)
            self._entries[key] = value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class EpubCache:
    """The caches shared by every request of an application.

    ``first_spine`` remembers the first spine item of books without a table
    of contents so a repeated TOC request can go straight to the content cache.
    """

    def __init__(
        self,
        toc_capacity: int = DEFAULT_TOC_CAPACITY,
        content_capacity: int = DEFAULT_CONTENT_CAPACITY,
    ) -> None:
        self.toc: LRUCache[str, str] = LRUCache(toc_capacity)
        self.content: LRUCache[Tuple[str, str], ResolvedContent] = LRUCache(content_capacity)
        self.first_spine: LRUCache[str, str] = LRUCache(toc_capacity)
