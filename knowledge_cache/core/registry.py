"""
Scope registry - locates or creates the lifecycle controller of a scope and
reclaims whole scopes by LRU order and age.
"""

import threading
import time
from typing import Callable, Dict, List, Optional

from cachetools import TTLCache

from .config import MAX_SCOPES, SCOPE_TTL_SEC
from .lifecycle import CacheLifecycleController
from ..util.logging import logger
from ..vector.types import ScopeKey

ControllerFactory = Callable[[ScopeKey], CacheLifecycleController]


class ScopeRegistry:
    """Bounded map of ScopeKey -> CacheLifecycleController.

    Backed by a cachetools TTLCache: the least recently used scope is dropped
    when the registry is full, and a scope expires ``ttl_sec`` after it was
    created. Reclaimed controllers are disposed, which clears their stores.
    """

    def __init__(self, factory: ControllerFactory, max_scopes: int = MAX_SCOPES,
                 ttl_sec: float = SCOPE_TTL_SEC, timer: Callable[[], float] = time.monotonic):
        self._factory = factory
        self.max_scopes = max_scopes
        self.ttl_sec = ttl_sec
        self._cache = TTLCache(maxsize=max_scopes, ttl=ttl_sec, timer=timer)
        # Every live controller, including ones the cache has just dropped
        self._controllers: Dict[ScopeKey, CacheLifecycleController] = {}
        self._lock = threading.RLock()
        self._reclaimed_total = 0

    def _collect_dropped(self) -> List[CacheLifecycleController]:
        # Caller holds _lock
        self._cache.expire()
        dropped = []
        for scope in [s for s in self._controllers if s not in self._cache]:
            dropped.append(self._controllers.pop(scope))
        self._reclaimed_total += len(dropped)
        return dropped

    def _dispose(self, controllers: List[CacheLifecycleController], reason: str) -> None:
        for controller in controllers:
            controller.dispose()
            logger.log_operation("registry.reclaim", reason, {"scope": str(controller.scope)})

    def get(self, scope: ScopeKey) -> CacheLifecycleController:
        """Return the controller for a scope, creating it on first access."""
        with self._lock:
            dropped = self._collect_dropped()
            controller = self._cache.get(scope)
            if controller is None:
                controller = self._factory(scope)
                self._cache[scope] = controller
                self._controllers[scope] = controller
                dropped.extend(self._collect_dropped())
                logger.log_operation("registry.create", "success", {
                    "scope": str(scope), "size": len(self._cache),
                })
        self._dispose(dropped, "reclaimed")
        return controller

    def peek(self, scope: ScopeKey) -> Optional[CacheLifecycleController]:
        """Return an existing controller without creating one."""
        with self._lock:
            dropped = self._collect_dropped()
            controller = self._cache.get(scope)
        self._dispose(dropped, "reclaimed")
        return controller

    def evict_scope(self, scope: ScopeKey) -> bool:
        with self._lock:
            controller = self._controllers.pop(scope, None)
            self._cache.pop(scope, None)
        if controller is None:
            return False
        self._dispose([controller], "evicted")
        return True

    def expire(self) -> List[ScopeKey]:
        """Reclaim expired scopes now; returns the reclaimed keys."""
        with self._lock:
            dropped = self._collect_dropped()
        self._dispose(dropped, "expired")
        return [c.scope for c in dropped]

    def clear(self) -> None:
        with self._lock:
            controllers = list(self._controllers.values())
            self._controllers.clear()
            self._cache.clear()
        self._dispose(controllers, "cleared")

    def scopes(self) -> List[ScopeKey]:
        self.expire()
        with self._lock:
            return list(self._controllers.keys())

    def controllers(self) -> List[CacheLifecycleController]:
        self.expire()
        with self._lock:
            return list(self._controllers.values())

    def statistics(self) -> Dict:
        self.expire()
        with self._lock:
            return {
                "size": len(self._controllers),
                "max_size": self.max_scopes,
                "ttl_sec": self.ttl_sec,
                "reclaimed_total": self._reclaimed_total,
                "scopes": [str(s) for s in self._controllers],
            }

    def __len__(self) -> int:
        self.expire()
        with self._lock:
            return len(self._controllers)

    def __contains__(self, scope: ScopeKey) -> bool:
        with self._lock:
            return scope in self._cache
