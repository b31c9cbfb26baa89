"""
Tests for the periodic sync driver.
"""

import threading

import pytest

from calmirror.models import DiscoveryError
from calmirror.models import SyncStats
from calmirror.scheduler import PeriodicSync


class _CountingManager:
    def __init__(self, fail=False, error=None):
        self.calls = 0
        self.fail = fail
        self.error = error
        self.called = threading.Event()

    def sync(self):
        self.calls += 1
        self.called.set()
        if self.error is not None:
            raise self.error
        if self.fail:
            raise DiscoveryError("server down")
        return SyncStats(collections=1)


class TestPeriodicSync:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PeriodicSync(_CountingManager(), 0)

    def test_run_once_returns_stats(self):
        assert PeriodicSync(_CountingManager(), 60).run_once().collections == 1

    def test_run_once_swallows_discovery_failure(self):
        manager = _CountingManager(fail=True)
        assert PeriodicSync(manager, 60).run_once() is None
        assert manager.calls == 1

    def test_syncs_immediately_then_stops(self):
        manager = _CountingManager()
        periodic = PeriodicSync(manager, 3600)
        periodic.start()
        assert manager.called.wait(2)
        periodic.stop(timeout=2)
        assert periodic.stopped
        assert manager.calls == 1

    def test_repeats_on_interval(self):
        manager = _CountingManager()
        periodic = PeriodicSync(manager, 0.01)
        thread = periodic.start()
        for _ in range(200):
            if manager.calls >= 3:
                break
            threading.Event().wait(0.01)
        periodic.stop(timeout=2)
        assert manager.calls >= 3
        assert not thread.is_alive()

    def test_failures_do_not_end_loop(self):
        manager = _CountingManager(fail=True)
        periodic = PeriodicSync(manager, 0.01)
        periodic.start()
        for _ in range(200):
            if manager.calls >= 2:
                break
            threading.Event().wait(0.01)
        periodic.stop(timeout=2)
        assert manager.calls >= 2

    def test_run_once_swallows_unexpected_error(self):
        manager = _CountingManager(error=RuntimeError("unexpected"))
        assert PeriodicSync(manager, 60).run_once() is None
        assert manager.calls == 1

    def test_unexpected_errors_do_not_end_loop(self):
        manager = _CountingManager(error=RuntimeError("unexpected"))
        periodic = PeriodicSync(manager, 0.01)
        thread = periodic.start()
        for _ in range(200):
            if manager.calls >= 2:
                break
            threading.Event().wait(0.01)
        assert thread.is_alive()
        periodic.stop(timeout=2)
        assert manager.calls >= 2
        assert not thread.is_alive()

    def test_trigger_runs_in_background(self):
        manager = _CountingManager()
        periodic = PeriodicSync(manager, 3600)
        periodic.trigger().join(2)
        assert manager.calls == 1
        assert not periodic.stopped

    def test_stop_before_start_skips_loop(self):
        manager = _CountingManager()
        periodic = PeriodicSync(manager, 3600)
        periodic.stop()
        periodic.run_forever()
        assert manager.calls == 0
