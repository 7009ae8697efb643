"""
Cache health metrics derived from store state.

Everything here is read-only and best-effort: a payload that cannot be
serialized still gets counted, it just falls back to its repr length.
"""
import json
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List

from ai_cache.config import CacheConfig
from ai_cache.store import CacheStore, CacheType, EntrySnapshot

logger = logging.getLogger(__name__)

# Rough per-entry bookkeeping overhead in bytes
ENTRY_OVERHEAD_BYTES = 1024


@dataclass
class CacheStats:
    size: int
    max_size: int
    hits: int
    misses: int
    hit_rate: float
    entries_by_type: Dict[str, int] = field(default_factory=dict)
    average_age: float = 0.0
    memory_estimate: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _payload_size(payload: Any) -> int:
    try:
        return len(json.dumps(payload, ensure_ascii=False))
    except (TypeError, ValueError, RecursionError):
        try:
            return len(repr(payload))
        except Exception:
            logger.debug("Could not size cached payload of type %s", type(payload).__name__)
            return 0


def estimate_memory(entries: List[EntrySnapshot]) -> int:
    return sum(ENTRY_OVERHEAD_BYTES + _payload_size(e.payload) for e in entries)


def hit_rate(hits: int, misses: int) -> float:
    total = hits + misses
    return (hits / total) * 100 if total > 0 else 0.0


def collect_stats(store: CacheStore) -> CacheStats:
    snap = store.snapshot()
    entries: List[EntrySnapshot] = snap["entries"]
    now = snap["now"]

    entries_by_type = {t.value: 0 for t in CacheType}
    total_age = 0.0
    for entry in entries:
        type_name = getattr(entry.type, "value", str(entry.type))
        entries_by_type[type_name] = entries_by_type.get(type_name, 0) + 1
        total_age += now - entry.created_at

    size = len(entries)
    return CacheStats(
        size=size,
        max_size=snap["max_size"],
        hits=snap["hits"],
        misses=snap["misses"],
        hit_rate=hit_rate(snap["hits"], snap["misses"]),
        entries_by_type=entries_by_type,
        average_age=total_age / size if size else 0.0,
        memory_estimate=estimate_memory(entries),
    )


def format_stats_report(stats: CacheStats, config: CacheConfig) -> Dict[str, Any]:
    """Monitoring view: percentages, whole seconds/minutes and MB."""
    return {
        "stats": {
            "size": stats.size,
            "max_size": stats.max_size,
            "hits": stats.hits,
            "misses": stats.misses,
            "hit_rate": f"{stats.hit_rate:.2f}%",
            "entries_by_type": stats.entries_by_type,
            "average_age_seconds": round(stats.average_age),
            "memory_estimate_mb": f"{stats.memory_estimate / 1024 / 1024:.2f}",
        },
        "config": {
            "enabled": config.enabled,
            "max_size": config.max_size,
            "default_ttl_minutes": round(config.default_ttl / 60),
            "chat_ttl_minutes": round(config.chat_ttl / 60),
            "diagnosis_ttl_minutes": round(config.diagnosis_ttl / 60),
            "planning_ttl_minutes": round(config.planning_ttl / 60),
            "cleanup_interval_seconds": round(config.cleanup_interval),
            "single_flight": config.single_flight,
        },
    }
