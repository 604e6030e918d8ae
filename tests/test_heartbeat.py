"""
Tests for the maintenance heartbeat scheduler.
"""

import threading
from unittest.mock import MagicMock

import pytest

from knowledge_cache.core.heartbeat import Heartbeat


@pytest.fixture
def heartbeat(clock):
    return Heartbeat(tick_sec=0.01, clock=clock)


class TestHeartbeatRegistration:
    """Test task registration functionality."""

    def test_register_task_valid(self, heartbeat):
        """Test registering a valid task."""
        heartbeat.register_task("test_task", 30, lambda: None)

        assert heartbeat.list_tasks() == ["test_task"]

    def test_register_task_invalid_func(self, heartbeat):
        """Test registering with non-callable function."""
        with pytest.raises(ValueError, match="Task function must be callable"):
            heartbeat.register_task("bad_task", 30, "not_callable")

    def test_register_task_invalid_interval(self, heartbeat):
        """Test registering with invalid interval."""
        with pytest.raises(ValueError, match="Interval must be > 0"):
            heartbeat.register_task("bad_task", 0, lambda: None)

    def test_register_duplicate_task(self, heartbeat):
        """Test registering task with existing name replaces it."""
        heartbeat.register_task("duplicate", 30, lambda: None)
        heartbeat.register_task("duplicate", 60, lambda: None)

        assert len(heartbeat.list_tasks()) == 1
        assert heartbeat.get_status()["tasks"]["duplicate"]["interval_sec"] == 60

    def test_unregister_task(self, heartbeat):
        """Test unregistering a task."""
        heartbeat.register_task("test_task", 30, lambda: None)

        assert heartbeat.unregister_task("test_task") is True
        assert "test_task" not in heartbeat.list_tasks()

    def test_unregister_nonexistent_task(self, heartbeat):
        """Test unregistering non-existent task is safe."""
        assert heartbeat.unregister_task("nonexistent") is False


class TestHeartbeatScheduling:
    """Test task scheduling logic."""

    def test_should_run_first_time(self, heartbeat):
        """Task should run immediately when never run before."""
        heartbeat.register_task("test", 30, lambda: None)
        assert heartbeat.should_run_task("test") is True

    def test_should_run_when_due(self, heartbeat, clock):
        """Task should run when interval has elapsed."""
        heartbeat.register_task("test", 30, lambda: None)
        heartbeat.run_task("test")
        clock.advance(35)

        assert heartbeat.should_run_task("test") is True

    def test_should_not_run_too_soon(self, heartbeat, clock):
        """Task should not run before interval elapsed."""
        heartbeat.register_task("test", 30, lambda: None)
        heartbeat.run_task("test")
        clock.advance(10)

        assert heartbeat.should_run_task("test") is False

    def test_unknown_task_never_due(self, heartbeat):
        assert heartbeat.should_run_task("missing") is False

    def test_reset_task_forces_run(self, heartbeat):
        heartbeat.register_task("test", 30, lambda: None)
        heartbeat.run_task("test")

        heartbeat.reset_task("test")

        assert heartbeat.should_run_task("test") is True


class TestHeartbeatExecution:
    """Test task execution and the background loop."""

    def test_run_task_success(self, heartbeat):
        """Test successful task execution."""
        mock_func = MagicMock(return_value="done")
        heartbeat.register_task("test_task", 30, mock_func)

        assert heartbeat.run_task("test_task") == "done"

        mock_func.assert_called_once()
        assert heartbeat.get_status()["tasks"]["test_task"]["last_run"] is not None

    def test_run_task_failure(self, heartbeat):
        """Test task execution with failure."""
        mock_func = MagicMock(side_effect=ValueError("Task failed"))
        heartbeat.register_task("failing_task", 30, mock_func)

        with pytest.raises(RuntimeError, match="Task failed"):
            heartbeat.run_task("failing_task")

        mock_func.assert_called_once()
        assert heartbeat.get_status()["tasks"]["failing_task"]["failures"] == 1

    def test_run_unknown_task(self, heartbeat):
        with pytest.raises(KeyError):
            heartbeat.run_task("missing")

    def test_run_pending_isolates_failures(self, heartbeat):
        """One failing task does not stop the others."""
        good = MagicMock()
        heartbeat.register_task("bad", 30, MagicMock(side_effect=RuntimeError("boom")))
        heartbeat.register_task("good", 30, good)

        outcomes = heartbeat.run_pending()

        assert outcomes == {"bad": "failed", "good": "success"}
        good.assert_called_once()

    def test_run_pending_skips_tasks_not_due(self, heartbeat):
        func = MagicMock()
        heartbeat.register_task("test", 30, func)
        heartbeat.run_pending()

        assert heartbeat.run_pending() == {}
        func.assert_called_once()

    def test_start_and_stop(self):
        """Background loop runs due tasks until stopped."""
        ran = threading.Event()
        heartbeat = Heartbeat(tick_sec=0.01)
        heartbeat.register_task("signal", 60, ran.set)

        heartbeat.start()
        try:
            assert ran.wait(2)
            assert heartbeat.get_status()["status"] == "running"
        finally:
            heartbeat.stop()

        assert heartbeat.running is False
        assert heartbeat.get_status()["status"] == "stopped"

    def test_start_already_running(self):
        """Test starting when already running raises error."""
        heartbeat = Heartbeat(tick_sec=0.01)
        heartbeat.start()
        try:
            with pytest.raises(RuntimeError, match="already running"):
                heartbeat.start()
        finally:
            heartbeat.stop()

    def test_stop_not_running_is_safe(self, heartbeat):
        heartbeat.stop()
        assert heartbeat.running is False


class TestHeartbeatStatus:
    """Test heartbeat status and monitoring."""

    def test_get_status_stopped(self, heartbeat):
        status = heartbeat.get_status()

        assert status["status"] == "stopped"
        assert status["tasks"] == {}
        assert status["uptime_sec"] == 0.0

    def test_next_run(self, heartbeat, clock):
        heartbeat.register_task("test_task", 60, lambda: None)
        heartbeat.run_task("test_task")

        info = heartbeat.get_status()["tasks"]["test_task"]

        assert info["interval_sec"] == 60
        assert info["next_run"] == clock.now + 60
