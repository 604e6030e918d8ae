"""
Cache statistics: hit/miss tracking over a rolling window, derived CacheStats,
and the efficiency/health report used for monitoring.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import CacheConfig, HIT_RATE_WINDOW
from ..vector.types import CacheStats


class CacheStatsTracker:
    """Thread-safe counters for one scope.

    A lookup served by a warm store is a hit; a lookup that had to trigger a
    cold start is a miss. The hit rate covers the last ``window`` lookups.
    """

    def __init__(self, window: int = HIT_RATE_WINDOW):
        self._lock = threading.Lock()
        self._recent = deque(maxlen=window)
        self.hits = 0
        self.misses = 0
        self.searches_performed = 0
        self.last_warmed_at: Optional[float] = None

    def record_lookup(self, hit: bool) -> None:
        with self._lock:
            self._recent.append(hit)
            if hit:
                self.hits += 1
            else:
                self.misses += 1

    def record_search(self) -> None:
        with self._lock:
            self.searches_performed += 1

    def record_warm(self, when: Optional[float] = None) -> None:
        with self._lock:
            self.last_warmed_at = time.time() if when is None else when

    @property
    def hit_rate(self) -> float:
        with self._lock:
            if not self._recent:
                return 1.0
            return sum(self._recent) / len(self._recent)

    def reset(self) -> None:
        with self._lock:
            self._recent.clear()
            self.hits = 0
            self.misses = 0
            self.searches_performed = 0


def build_stats(scope: str, state: str, store, tracker: CacheStatsTracker) -> CacheStats:
    """Derive a CacheStats snapshot from a store and its tracker."""
    return CacheStats(
        scope=scope,
        state=state,
        entry_count=store.count(),
        total_size_bytes=store.total_size_bytes,
        memory_limit_kb=store.memory_limit_kb,
        dimension=store.dimension,
        hits=tracker.hits,
        misses=tracker.misses,
        hit_rate=tracker.hit_rate,
        searches_performed=tracker.searches_performed,
        evictions_performed=store.evictions_performed,
        last_eviction_at=store.last_eviction_at,
        last_warmed_at=tracker.last_warmed_at,
    )


def efficiency_metrics(store, config: CacheConfig, searches_performed: int,
                       now: Optional[float] = None) -> Dict[str, Any]:
    """Density, eviction rate and access-pattern metrics for a store."""
    now = time.time() if now is None else now
    entries = store.all_entries()
    total = len(entries)
    memory_kb = store.total_size_bytes / 1024

    access_counts = [e.access_count for e in entries]
    total_accesses = sum(access_counts)
    average_access = total_accesses / total if total else 0.0
    average_idle = sum(now - e.last_accessed_at for e in entries) / total if total else 0.0

    return {
        "vector_density": total / config.max_entries if config.max_entries > 0 else 0.0,
        "memory_density": memory_kb / config.max_memory_kb if config.max_memory_kb > 0 else 0.0,
        "eviction_rate": store.evictions_performed / searches_performed if searches_performed > 0 else 0.0,
        "average_access_count": average_access,
        "average_time_since_access_sec": average_idle,
        "total_accesses": total_accesses,
        "hot_vectors": sum(1 for c in access_counts if c > average_access),
        "cold_vectors": sum(1 for c in access_counts if c == 0),
    }


def _overall_health(indicators: Dict[str, str]) -> str:
    scores = indicators.values()
    if "critical" in scores:
        return "critical"
    if "warning" in scores:
        return "warning"
    if "excellent" in scores:
        return "excellent"
    return "good"


@dataclass
class HealthReport:
    """Monitoring view of one scope."""
    stats: CacheStats
    efficiency: Dict[str, Any]
    indicators: Dict[str, str]
    recommendations: List[str] = field(default_factory=list)

    @property
    def overall_health(self) -> str:
        return _overall_health(self.indicators)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stats": self.stats.to_dict(),
            "efficiency": self.efficiency,
            "health_indicators": self.indicators,
            "recommendations": self.recommendations,
            "overall_health": self.overall_health,
        }


def generate_health_report(stats: CacheStats, efficiency: Dict[str, Any]) -> HealthReport:
    utilization = stats.memory_utilization
    cold_ratio = efficiency["cold_vectors"] / stats.entry_count if stats.entry_count else 0.0

    indicators = {
        "memory": "good" if utilization < 90 else "warning" if utilization < 95 else "critical",
        "hit_rate": "excellent" if stats.hit_rate > 0.95 else "good" if stats.hit_rate > 0.8 else "poor",
        "eviction": ("good" if efficiency["eviction_rate"] < 0.1
                     else "warning" if efficiency["eviction_rate"] < 0.2 else "critical"),
        "access_pattern": "good" if cold_ratio < 0.3 else "warning",
    }

    recommendations = []
    if indicators["memory"] == "critical":
        recommendations.append("Consider increasing memory limit or reducing vector count")
    if indicators["hit_rate"] == "poor":
        recommendations.append("Review cache initialization and search patterns")
    if indicators["eviction"] == "critical":
        recommendations.append("Increase eviction batch size or memory limits")
    if efficiency["cold_vectors"] > stats.entry_count * 0.5:
        recommendations.append("Consider more aggressive eviction of unused vectors")

    return HealthReport(stats=stats, efficiency=efficiency, indicators=indicators,
                        recommendations=recommendations)
