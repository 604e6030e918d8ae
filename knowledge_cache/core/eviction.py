"""
Eviction candidate selection and removal.

A batch removes entries one at a time in strategy order and stops as soon as
the store is back under target, so it never evicts more than needed.
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .config import EVICTION_BATCH_SIZE, EVICTION_STRATEGY
from ..util.logging import logger


class EvictionStrategy(str, Enum):
    LRU = "lru"
    LFU = "lfu"
    RANDOM = "random"
    PRIORITY = "priority"


@dataclass
class EvictionResult:
    """Outcome of one eviction batch."""
    evicted_count: int = 0
    candidates_found: int = 0
    freed_bytes: int = 0
    evicted: List[str] = field(default_factory=list)


# Sort keys; every deterministic strategy ends with the id
_ORDERINGS = {
    EvictionStrategy.LRU: lambda e: (e.last_accessed_at, e.id),
    EvictionStrategy.LFU: lambda e: (e.access_count, e.last_accessed_at, e.id),
    EvictionStrategy.PRIORITY: lambda e: (e.priority, e.last_accessed_at, e.id),
}


class EvictionManager:
    """Selects and removes entries from a store according to a strategy."""

    def __init__(self, strategy=EVICTION_STRATEGY, batch_size: int = EVICTION_BATCH_SIZE,
                 rng: Optional[random.Random] = None, clock: Optional[Callable[[], float]] = None):
        self.default_strategy = EvictionStrategy(strategy)
        self.batch_size = batch_size
        self._rng = rng or random.Random()
        # None stamps evictions with the store's own clock
        self._clock = clock

    def order_candidates(self, entries: Iterable, strategy) -> List:
        """Return entries in eviction order (first element evicts first)."""
        strategy = EvictionStrategy(strategy)
        if strategy is EvictionStrategy.RANDOM:
            pool = sorted(entries, key=lambda e: e.id)
            self._rng.shuffle(pool)
            return pool
        return sorted(entries, key=_ORDERINGS[strategy])

    def select_and_evict(self, store, strategy=None, current_kb: Optional[float] = None,
                         target_kb: Optional[float] = None, protected_ids: Iterable[str] = (),
                         batch_size: Optional[int] = None,
                         target_count: Optional[int] = None) -> EvictionResult:
        """
        Evict up to one batch of entries until usage <= target_kb and the
        entry count <= target_count.

        Args:
            store: VectorCacheStore to evict from (its write lock is taken)
            strategy: lru | lfu | random | priority; defaults to the manager's
            current_kb: caller's view of usage, used for logging only
            target_kb: memory goal; None means no memory goal
            protected_ids: entries that must never be evicted
            batch_size: maximum removals in this batch
            target_count: entry-count goal; None means no count goal

        Returns:
            EvictionResult; candidates_found counts every eligible entry,
            not just the batch
        """
        strategy = EvictionStrategy(strategy or self.default_strategy)
        batch_size = batch_size or self.batch_size
        protected = set(protected_ids)
        result = EvictionResult()

        with store.write_locked():
            if current_kb is None:
                current_kb = store.total_size_bytes / 1024
            target_bytes = None if target_kb is None else target_kb * 1024

            def satisfied() -> bool:
                if target_bytes is not None and store.total_size_bytes > target_bytes:
                    return False
                if target_count is not None and store.count() > target_count:
                    return False
                return True

            if satisfied():
                return result

            candidates = [e for e in store.all_entries() if e.id not in protected]
            result.candidates_found = len(candidates)
            batch = self.order_candidates(candidates, strategy)[:batch_size]

            for entry in batch:
                if satisfied():
                    break
                if store.remove(entry.id):
                    result.evicted.append(entry.id)
                    result.evicted_count += 1
                    result.freed_bytes += entry.size_bytes

            if result.evicted_count:
                store.note_eviction(result.evicted_count, self._clock() if self._clock else None)

            logger.log_eviction(
                strategy.value, result.evicted_count, result.candidates_found, result.freed_bytes,
                {"usage_kb_before": round(current_kb, 2),
                 "usage_kb_after": round(store.total_size_bytes / 1024, 2)},
            )

            if not satisfied() and len(batch) < batch_size:
                logger.warning(
                    f"Eviction under-delivered: evicted {result.evicted_count} of "
                    f"{result.candidates_found} candidates, store still above target"
                )

        return result
