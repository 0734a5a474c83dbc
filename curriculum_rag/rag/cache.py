"""
Answer cache with hit-count eviction and a background TTL sweeper.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol
import asyncio
import math
import re
import time

import structlog

logger = structlog.get_logger(__name__)

TRAILING_PUNCTUATION = re.compile(r'[؟?!.،,؛:\s]+$')
ARABIC_DIACRITICS = re.compile(r'[\u064B-\u0652]')
WHITESPACE = re.compile(r'\s+')


def make_cache_key(question: str, scope_id: Optional[str] = None) -> str:
    """Cache key shared by questions differing only in case, spacing, trailing punctuation or diacritics"""
    normalized = WHITESPACE.sub(' ', question.lower().strip())
    normalized = ARABIC_DIACRITICS.sub('', normalized)
    normalized = TRAILING_PUNCTUATION.sub('', normalized).strip()
    return f"{scope_id or 'general'}:{normalized}"


@dataclass
class AnswerCacheEntry:
    key: str
    answer: str
    confidence: int
    created_at: float
    hit_count: int = 0


class AnswerCache:
    """
    Maps normalized questions to generated answers

    Entries expire after ``ttl_seconds``. When the cache is full, the
    ``eviction_fraction`` of entries with the fewest hits (oldest first on
    ties) is removed before a new key is stored.
    """

    def __init__(self, max_size: int = 200, ttl_seconds: float = 3600, min_confidence: int = 40,
                 clock: Callable[[], float] = time.monotonic, eviction_fraction: float = 0.2):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.min_confidence = min_confidence
        self.eviction_fraction = eviction_fraction
        self._clock = clock
        self._entries: Dict[str, AnswerCacheEntry] = {}
        self.evictions = 0

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._expired(entry, self._clock()):
            del self._entries[key]
            return None

        entry.hit_count += 1
        return entry.answer

    def set(self, key: str, answer: str, confidence: int) -> bool:
        """
        Store an answer

        Returns:
            True when stored, False when the confidence is not above ``min_confidence``
        """
        if confidence <= self.min_confidence:
            return False

        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict()

        self._entries[key] = AnswerCacheEntry(
            key=key, answer=answer, confidence=confidence, created_at=self._clock()
        )
        return True

    def _evict(self) -> None:
        to_remove = math.ceil(len(self._entries) * self.eviction_fraction)
        ranked = sorted(self._entries.values(), key=lambda e: (e.hit_count, e.created_at))
        for entry in ranked[:to_remove]:
            del self._entries[entry.key]
        self.evictions += to_remove
        logger.debug("Evicted answer cache entries", removed=to_remove, remaining=len(self._entries))

    def _expired(self, entry: AnswerCacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl_seconds

    def sweep(self) -> int:
        """Remove expired entries; returns how many were removed"""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> int:
        removed = len(self._entries)
        self._entries.clear()
        return removed

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "total_hits": sum(e.hit_count for e in self._entries.values()),
            "evictions": self.evictions,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class Sweepable(Protocol):
    def sweep(self) -> int:
        ...


class CacheSweeper:
    """
    Periodically sweeps expired entries out of one or more caches
    """

    def __init__(self, caches: List[Sweepable], interval: float = 3600):
        self.caches = caches
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop on the running event loop"""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Cache sweeper started", interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Cache sweeper stopped")

    def sweep_once(self) -> int:
        removed = sum(cache.sweep() for cache in self.caches)
        if removed:
            logger.info("Swept expired cache entries", removed=removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.sweep_once()
