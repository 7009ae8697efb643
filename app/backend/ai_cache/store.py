"""
Thread-safe in-memory LRU store with per-type TTL for AI responses.

Entries live in an OrderedDict whose order follows last access: every
successful read and every insert moves the key to the end, so the least
recently used entry is always first and eviction is a single popitem.
A background sweeper thread removes expired entries that nobody reads
again, which keeps memory bounded between requests.
"""
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ai_cache.config import CacheConfig

logger = logging.getLogger(__name__)

QUERY_HASH_LENGTH = 32


class CacheType(str, Enum):
    CHAT = "chat"
    DIAGNOSIS = "diagnosis"
    PLANNING = "planning"


@dataclass
class CacheEntry:
    payload: Any
    created_at: float
    expires_at: float
    hit_count: int
    last_accessed_at: float
    type: CacheType
    # debugging aid only, never used for lookups
    query_hash: str

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class EntrySnapshot:
    """Read-only copy of the fields the stats reporter needs."""
    payload: Any
    created_at: float
    type: CacheType


class CacheStore:
    def __init__(self, config: CacheConfig, clock: Callable[[], float] = time.time):
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def config(self) -> CacheConfig:
        return self._config

    def reconfigure(self, config: CacheConfig) -> None:
        """Swap in a new config; size bounds apply from the next insert."""
        with self._lock:
            self._config = config

    def ttl_for(self, cache_type: Any) -> float:
        config = self._config
        if cache_type == CacheType.CHAT:
            return config.chat_ttl
        if cache_type == CacheType.DIAGNOSIS:
            return config.diagnosis_ttl
        if cache_type == CacheType.PLANNING:
            return config.planning_ttl
        return config.default_ttl

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached payload, or ``default`` on a miss or expiry."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default

            if entry.is_expired(now):
                del self._entries[key]
                self._misses += 1
                logger.debug("AI cache expired for key %s", key[:8])
                return default

            entry.hit_count += 1
            entry.last_accessed_at = now
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.payload

    def set(self, key: str, payload: Any, cache_type: Any) -> None:
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self._config.max_size:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug("AI cache evicted key %s", evicted_key[:8])

            self._entries[key] = CacheEntry(
                payload=payload,
                created_at=now,
                expires_at=now + self.ttl_for(cache_type),
                hit_count=0,
                last_accessed_at=now,
                type=cache_type,
                query_hash=key[:QUERY_HASH_LENGTH],
            )

    def has(self, key: str) -> bool:
        """Expiry-aware membership test that leaves hit/miss and recency alone."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry and reset the hit/miss counters."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        return removed

    def sweep_expired(self) -> int:
        """Remove every expired entry, read recently or not. Returns the count."""
        with self._lock:
            now = self._clock()
            expired: List[str] = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.info("AI cache cleaned up %d expired entries", len(expired))
        return len(expired)

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Raw entry lookup for introspection; no expiry check, no accounting."""
        with self._lock:
            return self._entries.get(key)

    def snapshot(self) -> Dict[str, Any]:
        """Consistent copy of counters and entries, taken under the lock."""
        with self._lock:
            return {
                "now": self._clock(),
                "max_size": self._config.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "entries": [
                    EntrySnapshot(payload=e.payload, created_at=e.created_at, type=e.type)
                    for e in self._entries.values()
                ],
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheSweeper:
    """
    Owned background thread that sweeps expired entries on a fixed interval.

    start() and stop() are idempotent; stop() wakes the thread and joins it
    so nothing outlives the service that created it.
    """

    def __init__(self, store: CacheStore, interval: float):
        self._store = store
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="ai-cache-sweeper", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._store.sweep_expired()
            except Exception:
                logger.exception("AI cache sweep failed")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout)
        self._thread = None
