"""
Heartbeat - cooperative scheduler for periodic cache maintenance
(integrity scans, scope expiry sweeps).
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional

from ..util.logging import logger


class Heartbeat:
    """Runs registered tasks at fixed intervals with per-task error isolation."""

    def __init__(self, tick_sec: float = 0.1, clock: Callable[[], float] = time.monotonic):
        self.tick_sec = tick_sec
        self._clock = clock
        self._tasks: Dict[str, Dict[str, Any]] = {}  # task_name -> {func, interval, last_run, failures}
        self._lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def register_task(self, name: str, interval_sec: float, func: Callable[[], Any]) -> None:
        """
        Register a task to be executed periodically.

        Args:
            name: Unique task identifier
            interval_sec: How often to run this task in seconds
            func: Function to call (should be fast and not block)
        """
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")

        if interval_sec <= 0:
            raise ValueError(f"Interval must be > 0 seconds: {interval_sec}")

        with self._lock:
            self._tasks[name] = {
                "func": func,
                "interval": interval_sec,
                "last_run": None,
                "failures": 0,
            }
        logger.info(f"Registered heartbeat task '{name}' (every {interval_sec}s)")

    def unregister_task(self, name: str) -> bool:
        """Remove a task from the registry."""
        with self._lock:
            removed = self._tasks.pop(name, None) is not None
        if removed:
            logger.info(f"Unregistered heartbeat task '{name}'")
        return removed

    def list_tasks(self) -> List[str]:
        """Return list of registered task names."""
        with self._lock:
            return list(self._tasks.keys())

    def reset_task(self, name: str) -> None:
        """Reset a task's last_run time to force immediate execution."""
        with self._lock:
            if name in self._tasks:
                self._tasks[name]["last_run"] = None

    def should_run_task(self, name: str) -> bool:
        """Check if a task is due this cycle."""
        with self._lock:
            task_info = self._tasks.get(name)
            if task_info is None:
                return False
            if task_info["last_run"] is None:
                return True  # Run immediately if never run
            return self._clock() - task_info["last_run"] >= task_info["interval"]

    def run_task(self, name: str) -> Any:
        """Execute a task and record timing. Failures are re-raised as RuntimeError."""
        with self._lock:
            task_info = self._tasks.get(name)
        if task_info is None:
            raise KeyError(f"Unknown heartbeat task: {name}")

        start_time = self._clock()
        try:
            result = task_info["func"]()
        except Exception as e:
            end_time = self._clock()
            task_info["last_run"] = end_time
            task_info["failures"] += 1
            logger.log_heartbeat_task(name, start_time, end_time, status="failed", details={"error": str(e)})
            raise RuntimeError(f"Task '{name}' failed after {end_time - start_time:.2f}s: {e}") from e

        end_time = self._clock()
        task_info["last_run"] = end_time
        logger.log_heartbeat_task(name, start_time, end_time)
        return result

    def run_pending(self) -> Dict[str, str]:
        """One cooperative pass over due tasks; returns name -> success|failed."""
        outcomes = {}
        for name in self.list_tasks():
            if not self.should_run_task(name):
                continue
            try:
                self.run_task(name)
                outcomes[name] = "success"
            except RuntimeError as e:
                # Error isolation - one failing task does not stop the others
                logger.error(str(e))
                outcomes[name] = "failed"
        return outcomes

    def _loop(self) -> None:
        while not self._shutdown_event.is_set():
            self.run_pending()
            self._shutdown_event.wait(self.tick_sec)

    def start(self) -> None:
        """Start the heartbeat loop in a background thread."""
        if self.running:
            raise RuntimeError("Heartbeat already running")

        self._shutdown_event.clear()
        self._started_at = self._clock()
        self._thread = threading.Thread(target=self._loop, name="knowledge-cache-heartbeat", daemon=True)
        self._thread.start()
        logger.info(f"Starting heartbeat loop with tasks: {self.list_tasks()}")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the heartbeat loop gracefully."""
        if not self.running:
            logger.info("Heartbeat not running")
            return

        self._shutdown_event.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("Heartbeat stopped")

    def get_status(self) -> Dict[str, Any]:
        """Return current heartbeat status for monitoring."""
        with self._lock:
            tasks = {
                name: {
                    "interval_sec": info["interval"],
                    "last_run": info["last_run"],
                    "next_run": info["last_run"] + info["interval"] if info["last_run"] is not None else None,
                    "failures": info["failures"],
                }
                for name, info in self._tasks.items()
            }
        return {
            "status": "running" if self.running else "stopped",
            "tasks": tasks,
            "uptime_sec": self._clock() - self._started_at if self.running else 0.0,
        }
