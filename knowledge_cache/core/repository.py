"""
Authoritative source of vector entries, consulted on warm-up and repair.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Union

from ..vector.types import ScopeKey, VectorEntry

RecordLike = Union[VectorEntry, Mapping[str, Any]]


class IVectorRepository(ABC):
    """Abstract interface for the persistent vector repository."""

    @abstractmethod
    def load_all(self, scope: ScopeKey) -> Iterable[RecordLike]:
        """Yield every record belonging to the scope."""
        pass

    def load_by_ids(self, scope: ScopeKey, ids: Iterable[str]) -> List[RecordLike]:
        """Fetch specific records; the default filters load_all()."""
        wanted = set(ids)
        found = []
        for record in self.load_all(scope):
            record_id = record.id if isinstance(record, VectorEntry) else record.get("id")
            if record_id in wanted:
                found.append(record)
        return found


class InMemoryVectorRepository(IVectorRepository):
    """Dict-backed repository for tests and embedded use."""

    def __init__(self, records: Dict[ScopeKey, List[RecordLike]] = None):
        self._records: Dict[ScopeKey, List[RecordLike]] = {}
        self._lock = threading.Lock()
        for scope, items in (records or {}).items():
            self.put_many(scope, items)

    def put(self, scope: ScopeKey, record: RecordLike) -> None:
        with self._lock:
            self._records.setdefault(scope, []).append(record)

    def put_many(self, scope: ScopeKey, records: Iterable[RecordLike]) -> None:
        with self._lock:
            self._records.setdefault(scope, []).extend(records)

    def replace(self, scope: ScopeKey, records: Iterable[RecordLike]) -> None:
        with self._lock:
            self._records[scope] = list(records)

    def load_all(self, scope: ScopeKey) -> List[RecordLike]:
        with self._lock:
            return list(self._records.get(scope, []))
