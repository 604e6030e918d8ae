"""
Knowledge cache service - the surface the conversational layer talks to.

Searches never raise: every failure comes back inside a SearchOutcome.
Administrative operations (invalidate, warm, integrity checks) raise CacheError.
"""

import logging
import time
from typing import Callable, Dict, Iterable, Optional

from .config import CacheConfig
from .errors import CacheError, CacheInitializationError, EmbeddingGenerationError, VectorSearchError
from .heartbeat import Heartbeat
from .integrity import IntegrityReport
from .lifecycle import CacheLifecycleController, CacheState
from .registry import ScopeRegistry
from .repository import IVectorRepository
from .stats import HealthReport
from ..util.logging import logger
from ..vector.embeddings import IEmbeddingProvider
from ..vector.similarity import SimilaritySearchEngine
from ..vector.types import CacheStats, ScopeKey, SearchOutcome


class KnowledgeCacheService:
    """Per-scope vector knowledge cache over an authoritative repository."""

    def __init__(self, repository: IVectorRepository,
                 embedding_provider: Optional[IEmbeddingProvider] = None,
                 config: Optional[CacheConfig] = None,
                 registry: Optional[ScopeRegistry] = None,
                 clock: Callable[[], float] = time.time):
        self.config = (config or CacheConfig()).validate()
        self.repository = repository
        self.embedding_provider = embedding_provider
        self._clock = clock
        self.search_engine = SimilaritySearchEngine(self.config, clock=clock)
        self.registry = registry or ScopeRegistry(
            self._create_controller,
            max_scopes=self.config.max_scopes,
            ttl_sec=self.config.scope_ttl_sec,
        )

    def _create_controller(self, scope: ScopeKey) -> CacheLifecycleController:
        return CacheLifecycleController(
            scope,
            self.repository,
            config=self.config,
            search_engine=self.search_engine,
            clock=self._clock,
        )

    def _embed(self, text: str):
        if self.embedding_provider is None:
            raise EmbeddingGenerationError("No embedding provider configured for text queries")
        try:
            return self.embedding_provider.embed_text(text)
        except EmbeddingGenerationError:
            raise
        except Exception as e:
            raise EmbeddingGenerationError(
                f"Embedding generation failed: {e}", {"cause": type(e).__name__}
            ) from e

    def search(self, scope: ScopeKey, query_embedding=None, query_text: Optional[str] = None,
               options=None) -> SearchOutcome:
        """
        Search a scope by embedding or by text (embedded through the provider).

        Returns:
            SearchOutcome: results on success, otherwise the CacheError
        """
        try:
            if (query_embedding is None) == (query_text is None):
                raise VectorSearchError("Provide exactly one of query_embedding or query_text")
            if query_text is not None:
                query_embedding = self._embed(query_text)
            results = self.registry.get(scope).search(query_embedding, options)
        except CacheError as e:
            logger.log_operation("search", "failed", {"scope": str(scope), **e.to_dict()}, level=logging.WARNING)
            return SearchOutcome(error=e)
        except Exception as e:
            error = VectorSearchError(f"Unexpected search failure: {e}", {"scope": str(scope), "cause": type(e).__name__})
            error.__cause__ = e
            logger.log_operation("search", "failed", {"scope": str(scope), **error.to_dict()}, level=logging.ERROR)
            return SearchOutcome(error=error)

        if not results:
            logger.info(f"No knowledge matched in {scope}; consider lowering the similarity threshold")
        return SearchOutcome(results=results)

    def invalidate(self, scope: ScopeKey) -> int:
        """Rebuild a cached scope from the repository; scopes not yet loaded are left cold."""
        controller = self.registry.peek(scope)
        if controller is None:
            return 0
        return controller.invalidate()

    def warm(self, scope: ScopeKey) -> int:
        """Load a scope ahead of its first search. Retries a failed scope."""
        controller = self.registry.get(scope)
        if controller.state is CacheState.FAILED:
            return controller.retry()
        return controller.warm()

    def warm_scopes(self, scopes: Iterable[ScopeKey]) -> Dict[ScopeKey, bool]:
        """Warm several scopes; failures are reported per scope, not raised."""
        outcome = {}
        for scope in scopes:
            try:
                self.warm(scope)
                outcome[scope] = True
            except CacheError as e:
                logger.log_operation("warm", "failed", {"scope": str(scope), **e.to_dict()}, level=logging.WARNING)
                outcome[scope] = False
        logger.log_operation("warm_scopes", "completed", {
            "requested": len(outcome),
            "succeeded": sum(outcome.values()),
        })
        return outcome

    def get_stats(self, scope: ScopeKey) -> CacheStats:
        controller = self.registry.peek(scope)
        if controller is None:
            controller = self._create_controller(scope)
        return controller.stats()

    def health_report(self, scope: ScopeKey) -> HealthReport:
        controller = self.registry.peek(scope)
        if controller is None:
            controller = self._create_controller(scope)
        return controller.health_report()

    def health_check(self) -> Dict:
        controllers = self.registry.controllers()
        failed = [str(c.scope) for c in controllers if c.state is CacheState.FAILED]
        stats = [c.stats() for c in controllers]
        return {
            "ready": not failed,
            "entry_count": sum(s.entry_count for s in stats),
            "memory_kb": round(sum(s.memory_kb for s in stats), 2),
            "scopes": len(controllers),
            "failed_scopes": failed,
        }

    def run_integrity_check(self, scope: ScopeKey) -> IntegrityReport:
        controller = self.registry.peek(scope)
        if controller is None:
            raise CacheInitializationError(f"Scope {scope} is not loaded", {"scope": str(scope)})
        return controller.run_integrity_check()

    def run_integrity_sweep(self) -> Dict[str, str]:
        """Integrity-check every serving scope; returns scope -> clean|repaired|failed."""
        summary = {}
        for controller in self.registry.controllers():
            if not controller.is_ready():
                continue
            try:
                report = controller.run_integrity_check()
                summary[str(controller.scope)] = "clean" if report.is_clean else "repaired"
            except CacheError as e:
                logger.log_operation("integrity.sweep", "failed", {
                    "scope": str(controller.scope), **e.to_dict(),
                }, level=logging.ERROR)
                summary[str(controller.scope)] = "failed"
        return summary

    def evict_scope(self, scope: ScopeKey) -> bool:
        return self.registry.evict_scope(scope)

    def schedule_maintenance(self, heartbeat: Heartbeat, interval_sec: Optional[float] = None) -> None:
        """Register periodic integrity sweeps and scope expiry with a heartbeat."""
        interval = interval_sec or self.config.maintenance_interval_sec
        heartbeat.register_task("knowledge_cache_integrity", interval, self.run_integrity_sweep)
        heartbeat.register_task("knowledge_cache_scope_expiry", interval, self.registry.expire)

    def close(self) -> None:
        self.registry.clear()
