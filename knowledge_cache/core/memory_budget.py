"""
Memory budget enforcement for scope stores.
Evicts in batches down to a headroom target once usage exceeds the budget.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .config import CacheConfig
from .errors import MemoryManagementError
from .eviction import EvictionManager
from ..util.logging import logger


@dataclass
class EnforcementResult:
    """Summary of one check_and_enforce call."""
    evicted: int
    candidates_found: int
    usage_before_kb: float
    usage_after_kb: float
    target_kb: float
    batches: int = 0
    evicted_ids: List[str] = field(default_factory=list)


class MemoryBudgetManager:
    """Keeps a store within its memory budget and entry-count limit."""

    def __init__(self, config: Optional[CacheConfig] = None,
                 eviction_manager: Optional[EvictionManager] = None):
        self.config = config or CacheConfig()
        self.eviction_manager = eviction_manager or EvictionManager(
            strategy=self.config.eviction_strategy,
            batch_size=self.config.eviction_batch_size,
        )

    def _limits(self, store, max_memory_kb: Optional[float]):
        budget_kb = max_memory_kb if max_memory_kb is not None else store.memory_limit_kb
        return budget_kb, budget_kb * 1024, self.config.max_entries

    def is_over_budget(self, store, max_memory_kb: Optional[float] = None) -> bool:
        _, budget_bytes, max_entries = self._limits(store, max_memory_kb)
        return store.total_size_bytes > budget_bytes or store.count() > max_entries

    def check_and_enforce(self, store, max_memory_kb: Optional[float] = None,
                          protected_ids: Iterable[str] = ()) -> EnforcementResult:
        """
        Evict until the store is within budget.

        Over budget, eviction targets budget * headroom_factor; over the entry
        limit, it targets floor(max_entries * headroom_factor).

        Raises:
            MemoryManagementError: store still over budget once eviction stalls
        """
        budget_kb, budget_bytes, max_entries = self._limits(store, max_memory_kb)
        protected_ids = tuple(protected_ids)

        with store.write_locked():
            usage_before_kb = store.total_size_bytes / 1024
            memory_over = store.total_size_bytes > budget_bytes
            count_over = store.count() > max_entries

            if not memory_over and not count_over:
                return EnforcementResult(0, 0, usage_before_kb, usage_before_kb, budget_kb)

            headroom = self.config.headroom_factor
            target_kb = budget_kb * headroom if memory_over else None
            target_count = math.floor(max_entries * headroom) if count_over else None

            result = EnforcementResult(
                evicted=0,
                candidates_found=0,
                usage_before_kb=usage_before_kb,
                usage_after_kb=usage_before_kb,
                target_kb=target_kb if target_kb is not None else budget_kb,
            )

            while True:
                batch = self.eviction_manager.select_and_evict(
                    store,
                    strategy=self.config.eviction_strategy,
                    current_kb=store.total_size_bytes / 1024,
                    target_kb=target_kb,
                    protected_ids=protected_ids,
                    batch_size=self.config.eviction_batch_size,
                    target_count=target_count,
                )
                result.batches += 1
                if result.batches == 1:
                    # Eligible pool before any eviction; later batches see a subset
                    result.candidates_found = batch.candidates_found
                result.evicted += batch.evicted_count
                result.evicted_ids.extend(batch.evicted)

                if batch.evicted_count == 0:
                    break
                memory_done = target_kb is None or store.total_size_bytes <= target_kb * 1024
                count_done = target_count is None or store.count() <= target_count
                if memory_done and count_done:
                    break

            result.usage_after_kb = store.total_size_bytes / 1024
            still_over = store.total_size_bytes > budget_bytes or store.count() > max_entries

            logger.log_operation("memory.enforce", "failed" if still_over else "success", {
                "budget_kb": budget_kb,
                "usage_before_kb": round(result.usage_before_kb, 2),
                "usage_after_kb": round(result.usage_after_kb, 2),
                "evicted": result.evicted,
                "batches": result.batches,
            })

            if still_over:
                raise MemoryManagementError(
                    f"Unable to bring store under budget: {result.usage_after_kb:.1f}KB used, "
                    f"{budget_kb}KB allowed, {store.count()} entries",
                    {
                        "usage_kb": round(result.usage_after_kb, 2),
                        "budget_kb": budget_kb,
                        "entry_count": store.count(),
                        "max_entries": max_entries,
                        "evicted": result.evicted,
                    },
                )

        return result
