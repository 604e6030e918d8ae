"""
Per-scope cache lifecycle.

One controller owns the store of one scope and moves it through
uninitialized -> warming -> ready -> invalidating -> ready, or into failed.
Warm-up builds a staging store off to the side and swaps it in atomically,
so readers never see a half-loaded store.
"""

import dataclasses
import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .config import CacheConfig
from .errors import CacheError, CacheInitializationError, CacheIntegrityError
from .integrity import IntegrityChecker, IntegrityReport
from .repository import IVectorRepository
from .stats import CacheStatsTracker, HealthReport, build_stats, efficiency_metrics, generate_health_report
from ..util.logging import logger
from ..vector.index import VectorCacheStore
from ..vector.similarity import SimilaritySearchEngine
from ..vector.types import CacheStats, ScopeKey, SearchResult, VectorEntry, coerce_entry


class CacheState(str, Enum):
    UNINITIALIZED = "uninitialized"
    WARMING = "warming"
    READY = "ready"
    INVALIDATING = "invalidating"
    FAILED = "failed"


# States in which a store is published and searchable
SERVING_STATES = (CacheState.READY, CacheState.INVALIDATING)


class WarmCancelled(Exception):
    """Raised inside the warm worker when cancellation is requested."""
    pass


def _fresh_entry(record) -> VectorEntry:
    # Stores never share entry objects with the repository or each other
    if isinstance(record, VectorEntry):
        return dataclasses.replace(record)
    return coerce_entry(record)


class CacheLifecycleController:
    """Owns the store of one scope and its state machine."""

    def __init__(self, scope: ScopeKey, repository: IVectorRepository,
                 config: Optional[CacheConfig] = None,
                 search_engine: Optional[SimilaritySearchEngine] = None,
                 integrity_checker: Optional[IntegrityChecker] = None,
                 stats_tracker: Optional[CacheStatsTracker] = None,
                 clock: Callable[[], float] = time.time):
        self.scope = scope
        self.repository = repository
        self.config = config or CacheConfig()
        self._clock = clock
        self.search_engine = search_engine or SimilaritySearchEngine(self.config, clock=clock)
        self.integrity_checker = integrity_checker or IntegrityChecker(
            verify_checksums=self.config.integrity_check_enabled,
            rebuild_threshold=self.config.corruption_rebuild_threshold,
        )
        self.stats_tracker = stats_tracker or CacheStatsTracker(self.config.hit_rate_window)

        self._state = CacheState.UNINITIALIZED
        self._store: Optional[VectorCacheStore] = None
        self._last_error: Optional[CacheError] = None
        self._cancel_event: Optional[threading.Event] = None

        # _state_lock guards state/store publication; _warm_lock serializes rebuilds
        self._state_lock = threading.RLock()
        self._warm_lock = threading.Lock()

    # State

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def store(self) -> Optional[VectorCacheStore]:
        return self._store

    @property
    def last_error(self) -> Optional[CacheError]:
        return self._last_error

    def is_ready(self) -> bool:
        return self._state in SERVING_STATES

    def _set_state(self, new_state: CacheState, **details) -> None:
        with self._state_lock:
            old_state = self._state
            self._state = new_state
        logger.log_lifecycle_transition(str(self.scope), old_state.value, new_state.value, details or None)

    def _publish(self, store: Optional[VectorCacheStore], new_state: CacheState, **details) -> Optional[VectorCacheStore]:
        # In-flight searches may still hold the old store, so it is not cleared here
        with self._state_lock:
            old_store = self._store
            self._store = store
        self._set_state(new_state, **details)
        return old_store

    def _fail(self, error: CacheError) -> None:
        self._last_error = error
        self._publish(None, CacheState.FAILED, error=error.message)

    # Warm-up

    def _new_store(self) -> VectorCacheStore:
        return VectorCacheStore(
            config=self.config,
            integrity_checker=self.integrity_checker,
            scope=str(self.scope),
            clock=self._clock,
        )

    def _load_into(self, staging: VectorCacheStore, cancel: threading.Event) -> int:
        batch_size = self.config.warm_batch_size
        loaded = 0
        batch = []

        def flush():
            nonlocal loaded
            if cancel.is_set():
                raise WarmCancelled()
            loaded += staging.batch_insert(_fresh_entry(r) for r in batch)
            batch.clear()

        for record in self.repository.load_all(self.scope):
            batch.append(record)
            if len(batch) >= batch_size:
                flush()
        if batch:
            flush()
        if cancel.is_set():
            raise WarmCancelled()
        return loaded

    def _build_store(self) -> Tuple[VectorCacheStore, int]:
        """Load the repository into a staging store within the warm timeout.

        The load runs on a daemon thread, so a repository call that never
        returns cannot keep the interpreter alive after a timeout.
        """
        staging = self._new_store()
        cancel = threading.Event()
        self._cancel_event = cancel
        timeout = self.config.warm_timeout_sec
        context = {"scope": str(self.scope)}
        outcome = {}

        def load():
            try:
                outcome["loaded"] = self._load_into(staging, cancel)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=load, name="knowledge-cache-warm", daemon=True)
        try:
            worker.start()
            worker.join(timeout)
            if worker.is_alive():
                cancel.set()
                raise CacheInitializationError(
                    f"Warm-up of {self.scope} timed out after {timeout}s", {**context, "timeout_sec": timeout}
                )
        finally:
            self._cancel_event = None

        error = outcome.get("error")
        if isinstance(error, WarmCancelled):
            raise CacheInitializationError(f"Warm-up of {self.scope} was cancelled", context) from error
        if isinstance(error, CacheError):
            raise CacheInitializationError(
                f"Warm-up of {self.scope} failed: {error.message}", {**context, "cause": error.code}
            ) from error
        if error is not None:
            raise CacheInitializationError(
                f"Warm-up of {self.scope} failed: {error}", {**context, "cause": type(error).__name__}
            ) from error
        return staging, outcome["loaded"]

    def _rebuild(self, from_state: CacheState) -> int:
        # Caller holds _warm_lock
        started = time.monotonic()
        try:
            staging, loaded = self._build_store()
        except CacheInitializationError as e:
            self._fail(e)
            raise
        self.stats_tracker.record_warm(self._clock())
        self._last_error = None
        self._publish(staging, CacheState.READY, loaded=loaded,
                      duration_ms=round((time.monotonic() - started) * 1000, 2),
                      previous=from_state.value)
        return loaded

    def cancel_warm(self) -> bool:
        """Request cancellation of an in-flight warm-up; True if one was running."""
        event = self._cancel_event
        if event is None:
            return False
        event.set()
        return True

    def warm(self) -> int:
        """
        Load the scope from the repository if it is not warm yet.

        Returns:
            int: number of entries in the store

        Raises:
            CacheInitializationError: warm-up failed, or the scope already
                failed and needs retry()
        """
        with self._warm_lock:
            if self._state in SERVING_STATES:
                return self._store.count()
            if self._state is CacheState.FAILED:
                raise CacheInitializationError(
                    f"Cache for {self.scope} is in failed state; call retry()",
                    {"scope": str(self.scope), "last_error": self._last_error.message if self._last_error else None},
                )
            self._set_state(CacheState.WARMING)
            return self._rebuild(CacheState.UNINITIALIZED)

    def retry(self) -> int:
        """Explicit caller retry after a failed warm-up."""
        with self._warm_lock:
            if self._state in SERVING_STATES:
                return self._store.count()
            previous = self._state
            self._set_state(CacheState.WARMING, retry=True)
            return self._rebuild(previous)

    def ensure_ready(self) -> bool:
        """
        Make sure the scope can serve searches.

        Returns:
            bool: True when this call performed the cold start
        """
        if self._state in SERVING_STATES:
            return False
        if self._state is CacheState.FAILED:
            raise CacheInitializationError(
                f"Cache for {self.scope} is unavailable: "
                f"{self._last_error.message if self._last_error else 'warm-up failed'}",
                {"scope": str(self.scope)},
            )
        with self._warm_lock:
            if self._state in SERVING_STATES:
                return False
            if self._state is CacheState.FAILED:
                raise CacheInitializationError(
                    f"Cache for {self.scope} is unavailable", {"scope": str(self.scope)}
                )
            self._set_state(CacheState.WARMING)
            self._rebuild(CacheState.UNINITIALIZED)
            return True

    def invalidate(self) -> int:
        """
        Rebuild the store from the repository. The current store keeps serving
        searches until the replacement is ready.

        Raises:
            CacheInitializationError: the rebuild failed; the scope is now failed
        """
        with self._warm_lock:
            return self._invalidate_locked()

    def _invalidate_locked(self) -> int:
        if self._state is CacheState.UNINITIALIZED:
            return 0
        if self._state is CacheState.FAILED:
            raise CacheInitializationError(
                f"Cache for {self.scope} is in failed state; call retry()", {"scope": str(self.scope)}
            )
        self._set_state(CacheState.INVALIDATING)
        return self._rebuild(CacheState.READY)

    def dispose(self) -> None:
        """Release the store; the next access warms again."""
        self.cancel_warm()
        with self._warm_lock:
            old_store = self._publish(None, CacheState.UNINITIALIZED, reason="disposed")
        if old_store is not None:
            old_store.clear()

    # Operations

    def search(self, query_embedding, options=None) -> List[SearchResult]:
        """Search the scope, cold-starting it first if needed."""
        cold_start = self.ensure_ready()
        self.stats_tracker.record_lookup(hit=not cold_start)

        with self._state_lock:
            store = self._store
        if store is None:
            raise CacheInitializationError(f"Cache for {self.scope} has no store", {"scope": str(self.scope)})

        self.stats_tracker.record_search()
        return self.search_engine.search(store, query_embedding, options)

    def run_integrity_check(self) -> IntegrityReport:
        """
        Scan the store and heal it.

        Recoverable findings drop the affected entries and refetch them from
        the repository. Unrecoverable findings, or a corruption rate above the
        rebuild threshold, trigger a full rebuild.

        Raises:
            CacheIntegrityError: the store could not be restored
        """
        with self._warm_lock:
            store = self._store
            if store is None or self._state not in SERVING_STATES:
                raise CacheInitializationError(
                    f"Cache for {self.scope} is not ready for an integrity check",
                    {"scope": str(self.scope), "state": self._state.value},
                )

            report = self.integrity_checker.scan(store, str(self.scope))
            if report.is_clean:
                return report

            if report.requires_rebuild:
                logger.warning(
                    f"Rebuilding {self.scope}: corruption_rate={report.corruption_rate:.2f}, "
                    f"unrecoverable={len(report.unrecoverable)}"
                )
                try:
                    self._invalidate_locked()
                except CacheInitializationError as e:
                    raise CacheIntegrityError(
                        f"Rebuild of {self.scope} failed after corruption", {"scope": str(self.scope)}, report
                    ) from e
                return report

            self._repair(store, report)
            return report

    def _repair(self, store: VectorCacheStore, report: IntegrityReport) -> None:
        ids = report.affected_ids
        for entry_id in ids:
            store.remove(entry_id)

        try:
            for record in self.repository.load_by_ids(self.scope, ids):
                store.insert(_fresh_entry(record))
        except CacheError as e:
            raise CacheIntegrityError(
                f"Refetched entries for {self.scope} are still invalid: {e.message}",
                {"scope": str(self.scope), "ids": ids},
                report,
            ) from e

        verification = self.integrity_checker.scan(store, str(self.scope))
        if not verification.is_clean:
            raise CacheIntegrityError(
                f"Integrity of {self.scope} could not be restored",
                {"scope": str(self.scope), "remaining": verification.affected_ids},
                verification,
            )
        logger.log_operation("integrity.repair", "success", {"scope": str(self.scope), "refetched": len(ids)})

    def stats(self) -> CacheStats:
        store = self._store or self._new_store()
        return build_stats(str(self.scope), self._state.value, store, self.stats_tracker)

    def health_report(self) -> HealthReport:
        store = self._store or self._new_store()
        stats = build_stats(str(self.scope), self._state.value, store, self.stats_tracker)
        efficiency = efficiency_metrics(store, self.config, self.stats_tracker.searches_performed, self._clock())
        return generate_health_report(stats, efficiency)
