# =============================================================================
# fin_core/data_layer/cache_manager.py
# In-memory TTL cache for API results
# =============================================================================
"""
CacheManager - in-memory cache sitting in front of every read.

Features:
- Per-entry TTL, checked lazily on get and eagerly by a background sweep
- Capacity bound with write-time FIFO eviction
- Regex invalidation (used to drop list caches after mutations)
- Hit/miss statistics
- Best-effort snapshot to durable storage
"""

from __future__ import annotations
import json
import re
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Pattern, Union
import logging

from fin_core.data_layer.storage import LocalStorage
from fin_core.data_layer.types import CacheEntry, CacheStats

logger = logging.getLogger(__name__)


class CacheManager:
    """
    TTL cache with capacity eviction.

    Usage:
        cache = CacheManager(default_ttl=300)
        cache.set("accounts", accounts)
        cache.get("accounts")            # -> accounts, or None once expired
        cache.invalidate_pattern(r"^accounts(\\?|$)")
    """

    DEFAULT_TTL = 5 * 60            # Seconds
    MAX_ENTRIES = 1000
    CLEANUP_INTERVAL = 60           # Seconds between background sweeps
    SNAPSHOT_KEY = "cache-snapshot"

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        max_entries: int = MAX_ENTRIES,
        cleanup_interval: float = CLEANUP_INTERVAL,
        clock: Callable[[], float] = time.time,
        start_cleanup: bool = True,
    ):
        """
        Args:
            default_ttl: Lifetime used when set() gets no ttl
            max_entries: Maximum number of resident entries
            cleanup_interval: Seconds between background sweeps
            clock: Time source in seconds (tests pass a fake clock)
            start_cleanup: Whether to start the background sweep thread
        """
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self.cleanup_interval = cleanup_interval
        self._clock = clock

        # Insertion order == write order; set() moves rewritten keys to the end
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

        self._cleanup_thread: Optional[threading.Thread] = None
        self._stop_cleanup = threading.Event()

        if start_cleanup:
            self.start_cleanup()

    # =========================================================================
    # CORE OPERATIONS
    # =========================================================================

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None

            self._hits += 1
            return entry.data

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        """Cache data under key for ttl seconds (default_ttl if omitted)."""
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                self._evict_oldest()

            self._entries[key] = CacheEntry(
                key=key,
                data=data,
                timestamp=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def _evict_oldest(self) -> None:
        oldest_key, _ = self._entries.popitem(last=False)
        logger.debug(f"Cache full, evicted '{oldest_key}'")

    def resize(self, max_entries: int) -> int:
        """
        Change the capacity, evicting the oldest writes if now over it.

        Returns:
            Number of entries evicted
        """
        with self._lock:
            self.max_entries = max_entries
            evicted = 0
            while len(self._entries) > self.max_entries:
                self._evict_oldest()
                evicted += 1
        return evicted

    def has(self, key: str) -> bool:
        """Check for an unexpired entry without touching hit/miss counters."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def invalidate(self, key: str) -> bool:
        """Remove one key. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_pattern(self, pattern: Union[str, Pattern]) -> int:
        """
        Remove every key matching a regular expression.

        Returns:
            Number of entries removed
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            doomed = [key for key in self._entries if regex.search(key)]
            for key in doomed:
                del self._entries[key]

        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries matching {regex.pattern!r}")
        return len(doomed)

    def update_pattern(
        self,
        pattern: Union[str, Pattern],
        transform: Callable[[Any], Any],
    ) -> int:
        """
        Rewrite the data of every unexpired entry whose key matches.

        Write time, TTL and eviction position are kept, and hit/miss counters
        are not touched.

        Returns:
            Number of entries rewritten
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        now = self._clock()
        updated = 0
        with self._lock:
            for key, entry in self._entries.items():
                if regex.search(key) and not entry.is_expired(now):
                    entry.data = transform(entry.data)
                    updated += 1
        return updated

    def clear(self) -> None:
        """Drop all entries. Hit/miss statistics are kept."""
        with self._lock:
            self._entries.clear()

    # =========================================================================
    # EXPIRY
    # =========================================================================

    def cleanup_expired(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def start_cleanup(self) -> None:
        """Start the background sweep thread."""
        if self._cleanup_thread is not None and self._cleanup_thread.is_alive():
            return

        self._stop_cleanup.clear()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            daemon=True,
            name="CacheCleanup",
        )
        self._cleanup_thread.start()

    def stop_cleanup(self) -> None:
        """Stop the background sweep thread."""
        self._stop_cleanup.set()
        if self._cleanup_thread:
            self._cleanup_thread.join(timeout=5)
        self._cleanup_thread = None

    def _cleanup_loop(self) -> None:
        while not self._stop_cleanup.wait(timeout=self.cleanup_interval):
            try:
                self.cleanup_expired()
            except Exception as e:
                logger.error(f"Error in cache sweep: {e}")

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def _memory_usage(self) -> int:
        total = 0
        for entry in self._entries.values():
            try:
                total += len(json.dumps(entry.data, default=str).encode("utf-8"))
            except (TypeError, ValueError):
                total += len(repr(entry.data))
        return total

    def get_stats(self) -> CacheStats:
        """Get cache statistics (counts are cumulative since construction)."""
        with self._lock:
            lookups = self._hits + self._misses
            return CacheStats(
                total_entries=len(self._entries),
                memory_usage=self._memory_usage(),
                hit_rate=self._hits / lookups if lookups else 0.0,
                miss_rate=self._misses / lookups if lookups else 0.0,
                total_hits=self._hits,
                total_misses=self._misses,
            )

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def save_snapshot(self, storage: LocalStorage, key: str = SNAPSHOT_KEY) -> int:
        """
        Persist unexpired entries to durable storage.

        Returns:
            Number of entries written
        """
        now = self._clock()
        with self._lock:
            snapshot: List[Dict[str, Any]] = [
                {"key": e.key, "data": e.data, "timestamp": e.timestamp, "ttl": e.ttl}
                for e in self._entries.values()
                if not e.is_expired(now)
            ]
        storage.set_json(key, snapshot)
        return len(snapshot)

    def load_snapshot(self, storage: LocalStorage, key: str = SNAPSHOT_KEY) -> int:
        """
        Restore entries written by save_snapshot, skipping expired ones.

        Restored and resident entries are merged by write time, so eviction
        still drops the oldest write first. A resident entry wins over a
        snapshot entry for the same key.

        Returns:
            Number of entries restored
        """
        snapshot = storage.get_json(key, default=[]) or []
        now = self._clock()
        with self._lock:
            restored = [
                entry for entry in (
                    CacheEntry(
                        key=raw["key"],
                        data=raw["data"],
                        timestamp=float(raw["timestamp"]),
                        ttl=float(raw["ttl"]),
                    )
                    for raw in snapshot
                )
                if not entry.is_expired(now) and entry.key not in self._entries
            ]
            if not restored:
                return 0

            merged = sorted(
                list(self._entries.values()) + restored,
                key=lambda entry: entry.timestamp,
            )
            evicted = max(0, len(merged) - self.max_entries)
            kept = merged[evicted:]
            self._entries = OrderedDict((entry.key, entry) for entry in kept)

        if evicted:
            logger.debug(f"Snapshot restore evicted {evicted} oldest entries")
        restored_keys = {entry.key for entry in restored}
        return sum(1 for entry in kept if entry.key in restored_keys)

    def destroy(self) -> None:
        """Stop the sweep and drop all entries."""
        self.stop_cleanup()
        self.clear()
