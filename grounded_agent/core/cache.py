"""Content cache: bounded, time-limited key/value store.

One ``TTLCache`` instance per use (crawl results, grounded summaries,
embeddings, rolling summaries), each with its own capacity and TTL.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic

from ..types import AgentConfig, CacheEntry, CrawlNode, T

logger = logging.getLogger(__name__)

_MISSING = object()


def make_key(*parts: Any) -> str:
    """Stable SHA-256 key from arbitrary parts."""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(str(part).encode("utf-8"))
        digest.update(b"\x1f")
    return digest.hexdigest()


class TTLCache(Generic[T]):
    """LRU cache whose entries expire ``ttl_seconds`` after being written.

    A read at or after an entry's expiry is a miss and drops the entry.
    There is no explicit invalidation path.
    """

    def __init__(
        self,
        max_entries: int = 256,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> T | Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            if self._clock() >= entry.expiry:
                del self._entries[key]
                self.misses += 1
                return default
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.value

    def set(self, key: str, value: T, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"{self.name}: evicted {evicted[:16]}")
            self._entries[key] = CacheEntry(key=key, value=value, expiry=self._clock() + ttl)

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def get_stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        return {
            "name": self.name,
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total > 0 else 0,
        }


@dataclass
class ContentCaches:
    """The process-wide caches, injected into the components that use them."""
    crawl: TTLCache[tuple[CrawlNode, ...]]
    summary: TTLCache[Any]
    embedding: TTLCache[list[float]]
    memory: TTLCache[Any]


def build_caches(config: AgentConfig, clock: Callable[[], float] = time.monotonic) -> ContentCaches:
    return ContentCaches(
        crawl=TTLCache(
            max_entries=config.crawl.cache_max_entries,
            ttl_seconds=config.crawl.cache_ttl_minutes * 60,
            clock=clock,
            name="crawl",
        ),
        summary=TTLCache(
            max_entries=config.summarizer.cache_max_entries,
            ttl_seconds=config.summarizer.cache_ttl_minutes * 60,
            clock=clock,
            name="summary",
        ),
        embedding=TTLCache(
            max_entries=config.memory.cache_max_entries,
            ttl_seconds=config.memory.cache_ttl_minutes * 60,
            clock=clock,
            name="embedding",
        ),
        memory=TTLCache(
            max_entries=config.memory.cache_max_entries,
            ttl_seconds=config.memory.cache_ttl_minutes * 60,
            clock=clock,
            name="memory",
        ),
    )
