"""
Per-scope vector store - owns the entries of exactly one scope.
Every mutation is validated and leaves the store within its memory budget.
"""

import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple, Union

from .types import VectorEntry, coerce_entry
from ..core.config import CacheConfig
from ..core.errors import MemoryManagementError
from ..core.integrity import IntegrityChecker
from ..core.locks import ReadWriteLock
from ..core.memory_budget import MemoryBudgetManager
from ..util.logging import logger

EntryLike = Union[VectorEntry, Mapping[str, Any]]


class IVectorStore(ABC):
    """Abstract interface for vector storage operations."""

    @abstractmethod
    def insert(self, entry: EntryLike) -> VectorEntry:
        """Add or replace a single entry."""
        pass

    @abstractmethod
    def batch_insert(self, entries: Iterable[EntryLike]) -> int:
        """Add multiple entries in order, stopping at the first error."""
        pass

    @abstractmethod
    def remove(self, entry_id: str) -> bool:
        """Remove an entry by ID."""
        pass

    @abstractmethod
    def get(self, entry_id: str) -> Optional[VectorEntry]:
        """Look up an entry without touching its access metadata."""
        pass

    @abstractmethod
    def all_entries(self) -> List[VectorEntry]:
        """Snapshot of all entries in insertion order."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove all entries and forget the dimensionality."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class VectorCacheStore(IVectorStore):
    """In-memory store of VectorEntry objects keyed by id."""

    def __init__(self, config: Optional[CacheConfig] = None,
                 budget_manager: Optional[MemoryBudgetManager] = None,
                 integrity_checker: Optional[IntegrityChecker] = None,
                 scope: str = "",
                 clock: Callable[[], float] = time.time):
        self.config = config or CacheConfig()
        self.scope = scope
        self._budget = budget_manager or MemoryBudgetManager(self.config)
        self._integrity = integrity_checker or IntegrityChecker(
            verify_checksums=self.config.integrity_check_enabled,
            rebuild_threshold=self.config.corruption_rebuild_threshold,
        )
        self._clock = clock

        self._entries = {}  # entry_id -> VectorEntry, insertion ordered
        self._total_size = 0
        self._dimension: Optional[int] = None
        self._lock = ReadWriteLock()
        self._access_lock = threading.Lock()

        self.evictions_performed = 0
        self.last_eviction_at: Optional[float] = None

    # Locking

    def read_locked(self):
        return self._lock.read_locked()

    def write_locked(self):
        return self._lock.write_locked()

    # Properties

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def total_size_bytes(self) -> int:
        return self._total_size

    @property
    def memory_limit_kb(self) -> int:
        return self.config.max_memory_kb

    @property
    def max_memory_bytes(self) -> int:
        return self.config.max_memory_bytes

    # Mutations

    def _write(self, entry: VectorEntry) -> Optional[VectorEntry]:
        previous = self._entries.get(entry.id)
        if previous is not None:
            self._total_size -= previous.size_bytes
        # Reassigning an existing key keeps its insertion position
        self._entries[entry.id] = entry
        self._total_size += entry.size_bytes
        if self._dimension is None:
            self._dimension = entry.dimension
        return previous

    @contextmanager
    def _rollback_on_error(self, entry: VectorEntry, previous: Optional[VectorEntry],
                           prev_dimension: Optional[int]):
        saved = (dict(self._entries), self._total_size, self.evictions_performed, self.last_eviction_at)
        try:
            yield
        except Exception:
            self._entries, self._total_size, self.evictions_performed, self.last_eviction_at = saved
            if previous is not None:
                self._entries[entry.id] = previous
                self._total_size += previous.size_bytes - entry.size_bytes
            else:
                del self._entries[entry.id]
                self._total_size -= entry.size_bytes
            self._dimension = prev_dimension
            logger.log_vector_operation("insert", entry.id, {"scope": self.scope}, status="rolled_back")
            raise

    def insert(self, entry: EntryLike) -> VectorEntry:
        """
        Insert or replace an entry, then enforce the memory budget with the
        new entry protected from eviction.

        Raises:
            InvalidVectorError: empty or non-finite embedding, malformed payload
            DimensionMismatch: length differs from the scope dimensionality
            CacheIntegrityError: content_hash does not verify
            MemoryManagementError: entry alone exceeds the budget, or
                enforcement failed (the insert is rolled back)
        """
        entry = coerce_entry(entry)

        with self._lock.write_locked():
            self._integrity.validate_entry(entry, self._dimension)

            if entry.size_bytes > self.max_memory_bytes:
                raise MemoryManagementError(
                    f"Entry '{entry.id}' ({entry.size_bytes} bytes) exceeds the memory budget "
                    f"of {self.memory_limit_kb}KB",
                    {"id": entry.id, "size_bytes": entry.size_bytes, "budget_kb": self.memory_limit_kb},
                )

            prev_dimension = self._dimension
            previous = self._write(entry)

            if self._budget.is_over_budget(self):
                with self._rollback_on_error(entry, previous, prev_dimension):
                    self._budget.check_and_enforce(self, protected_ids=(entry.id,))

        logger.log_vector_operation(
            "upsert" if previous is not None else "insert",
            entry.id,
            {"scope": self.scope, "size_bytes": entry.size_bytes},
        )
        return entry

    def batch_insert(self, entries: Iterable[EntryLike]) -> int:
        """Insert entries in order; returns the number inserted before any error."""
        inserted = 0
        for entry in entries:
            self.insert(entry)
            inserted += 1
        return inserted

    def remove(self, entry_id: str) -> bool:
        with self._lock.write_locked():
            entry = self._entries.pop(entry_id, None)
            if entry is None:
                return False
            self._total_size -= entry.size_bytes
        logger.log_vector_operation("remove", entry_id, {"scope": self.scope})
        return True

    def clear(self) -> None:
        with self._lock.write_locked():
            self._entries.clear()
            self._total_size = 0
            self._dimension = None

    def note_eviction(self, count: int, when: Optional[float] = None) -> None:
        """Record an eviction batch (called by the eviction manager)."""
        self.evictions_performed += count
        self.last_eviction_at = self._clock() if when is None else when

    def record_access(self, entries: Iterable[VectorEntry], now: Optional[float] = None) -> None:
        """Touch entries returned by a search."""
        now = self._clock() if now is None else now
        with self._access_lock:
            for entry in entries:
                entry.touch(now)

    # Reads

    def get(self, entry_id: str) -> Optional[VectorEntry]:
        with self._lock.read_locked():
            return self._entries.get(entry_id)

    def all_entries(self) -> List[VectorEntry]:
        with self._lock.read_locked():
            return list(self._entries.values())

    def items(self) -> List[Tuple[str, VectorEntry]]:
        """Snapshot of (key, entry) pairs, for integrity audits."""
        with self._lock.read_locked():
            return list(self._entries.items())

    def count(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._entries
