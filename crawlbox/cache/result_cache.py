from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from loguru import logger

from crawlbox.models import CrawlResult
from crawlbox.monitoring.metrics_server import CACHE_LOOKUPS
from crawlbox.utils.periodic import PeriodicTask


Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    url: str
    result: CrawlResult
    cached_at: datetime
    expires_at: datetime
    hits: int = 0


class ResultCache:
    """TTL and capacity bounded map from normalized URL to crawl result."""

    def __init__(
        self,
        max_size: int = 1000,
        ttl: float = 24 * 60 * 60,
        check_interval: float = 60 * 60,
        clock: Clock = _utcnow,
    ):
        self.max_size = max_size
        self.ttl = ttl
        self.check_interval = check_interval
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._cleanup_task = PeriodicTask("cache-cleanup", check_interval, self.cleanup)

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return self.has(url)

    # -------------------------------------------------------
    # Lookups
    # -------------------------------------------------------
    def _live_entry(self, url: str) -> Optional[CacheEntry]:
        entry = self._entries.get(url)
        if entry is None:
            return None

        if self._clock() > entry.expires_at:
            del self._entries[url]
            self.expirations += 1
            logger.debug(f"Cache entry expired: {url}")
            return None

        return entry

    def get(self, url: str) -> Optional[CrawlResult]:
        entry = self._live_entry(url)
        if entry is None:
            self.misses += 1
            CACHE_LOOKUPS.labels(outcome="miss").inc()
            return None

        entry.hits += 1
        self.hits += 1
        CACHE_LOOKUPS.labels(outcome="hit").inc()
        logger.debug(f"Cache hit: {url} (hits={entry.hits})")
        return entry.result

    def has(self, url: str) -> bool:
        return self._live_entry(url) is not None

    # -------------------------------------------------------
    # Mutations
    # -------------------------------------------------------
    def set(self, url: str, result: CrawlResult) -> None:
        if url not in self._entries:
            self._shrink_to(self.max_size - 1)

        now = self._clock()
        self._entries[url] = CacheEntry(
            url=url,
            result=result,
            cached_at=now,
            expires_at=now + timedelta(seconds=self.ttl),
        )

    def delete(self, url: str) -> None:
        self._entries.pop(url, None)

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        logger.info(f"Cache cleared ({size} entries)")

    def _oldest_key(self) -> Optional[str]:
        if not self._entries:
            return None
        return min(self._entries.values(), key=lambda e: e.cached_at).url

    def _shrink_to(self, size: int) -> None:
        """Evict oldest entries until at most ``size`` remain."""
        while self._entries and len(self._entries) > max(size, 0):
            oldest_key = self._oldest_key()
            del self._entries[oldest_key]
            self.evictions += 1
            logger.debug(f"Cache entry evicted (max size): {oldest_key}")

    # -------------------------------------------------------
    # Background cleanup
    # -------------------------------------------------------
    def cleanup(self) -> int:
        now = self._clock()
        expired = [url for url, entry in self._entries.items() if now > entry.expires_at]
        for url in expired:
            del self._entries[url]
        self.expirations += len(expired)

        if expired:
            logger.info(f"Cache cleanup removed {len(expired)} entries, {len(self._entries)} remaining")
        return len(expired)

    def start_cleanup(self) -> None:
        self._cleanup_task.start()
        logger.info(f"Cache cleanup started (every {self.check_interval}s)")

    async def stop_cleanup(self) -> None:
        await self._cleanup_task.aclose()

    def update_config(
        self,
        *,
        max_size: Optional[int] = None,
        ttl: Optional[float] = None,
        check_interval: Optional[float] = None,
    ) -> None:
        if max_size is not None:
            self.max_size = max_size
            self._shrink_to(max_size)
        if ttl is not None:
            self.ttl = ttl
        if check_interval is not None and check_interval != self.check_interval:
            self.check_interval = check_interval
            was_running = self._cleanup_task.running
            self._cleanup_task.stop()
            self._cleanup_task = PeriodicTask("cache-cleanup", check_interval, self.cleanup)
            if was_running:
                self._cleanup_task.start()

        logger.info(f"Cache config updated: max_size={self.max_size} ttl={self.ttl}s interval={self.check_interval}s")

    # -------------------------------------------------------
    # Stats
    # -------------------------------------------------------
    def get_stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        dates = [entry.cached_at for entry in self._entries.values()]
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "oldest_entry": min(dates) if dates else None,
            "newest_entry": max(dates) if dates else None,
        }
