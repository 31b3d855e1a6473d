"""In-memory LRU response cache with per-entry TTL."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sys
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class CacheRecord:
    key: str
    value: Any
    stored_at: float
    ttl: float
    size: int
    hits: int = 0

    def expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl


def make_key(operation_name: str, params: Any) -> str:
    """Cache key from an operation name and its canonicalised parameters."""
    canonical = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    return f"{operation_name}:{canonical}"


def _estimate_size(value: Any) -> int:
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return sys.getsizeof(value)


class ResponseCache:
    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl: float = 60.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self.enabled = enabled
        self._clock = clock
        self._entries: "OrderedDict[str, CacheRecord]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._sweeper: Optional[asyncio.Task] = None

    @staticmethod
    def should_cache(method: str, status: int) -> bool:
        return method.upper() == "GET" and 200 <= status < 300

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        with self._lock:
            record = self._entries.get(key)
            if record is None:
                self._misses += 1
                return None
            if record.expired(self._clock()):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            record.hits += 1
            self._hits += 1
            return record.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if not self.enabled:
            return
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("Evicted least recently used cache entry %s", evicted)
            self._entries[key] = CacheRecord(
                key=key,
                value=value,
                stored_at=self._clock(),
                ttl=ttl,
                size=_estimate_size(value),
            )

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Cleared %s cache entries", count)

    def invalidate_pattern(self, pattern: str) -> int:
        matcher = re.compile(pattern)
        with self._lock:
            doomed = [key for key in self._entries if matcher.search(key)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.info("Invalidated %s cache entries matching %s", len(doomed), pattern)
        return len(doomed)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            doomed = [key for key, record in self._entries.items() if record.expired(now)]
            for key in doomed:
                del self._entries[key]
            self._expirations += len(doomed)
        if doomed:
            logger.debug("Swept %s expired cache entries", len(doomed))
        return len(doomed)

    def start_sweeper(self, interval: float = 60.0) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever(interval))

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        if not enabled:
            self.clear()
        logger.info("Response cache %s", "enabled" if enabled else "disabled")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "enabled": self.enabled,
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups * 100, 2) if lookups else 0.0,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "total_size": sum(record.size for record in self._entries.values()),
            }

    def top_items(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            records = sorted(self._entries.values(), key=lambda record: record.hits, reverse=True)
            return [
                {"key": record.key, "hits": record.hits, "size": record.size}
                for record in records[:limit]
            ]

    def health(self) -> Dict[str, Any]:
        stats = self.stats()
        utilization = stats["entries"] / self.max_entries * 100
        return {
            "healthy": utilization < 95,
            "enabled": stats["enabled"],
            "utilization": round(utilization, 2),
            "hit_rate": stats["hit_rate"],
        }
