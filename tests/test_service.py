"""Tests for the sync service worker."""

import threading

import pytest

from skills_sync.models import SyncTrigger
from skills_sync.service import SyncService, WorkKind
from skills_sync.watcher import AutoSyncEvent


class RecordingEngine:
    def __init__(self, settings):
        self.settings = settings
        self.preferences_store = None
        self.calls = []
        self.synced = threading.Event()
        self.drained = threading.Event()

    def run_sync(self, trigger=SyncTrigger.MANUAL):
        self.calls.append(("sync", trigger))
        self.synced.set()

    def drain_commands(self):
        self.calls.append(("drain", None))
        self.drained.set()


class FakeCoordinator:
    def __init__(self):
        self.started = False
        self.stopped = False
        self.refreshes = 0

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def refresh_watched_paths(self):
        self.refreshes += 1


@pytest.fixture
def engine(settings):
    return RecordingEngine(settings)


@pytest.fixture
def coordinator():
    return FakeCoordinator()


@pytest.fixture
def service(engine, coordinator):
    service = SyncService(engine=engine, coordinator=coordinator)
    service.debounce = 0
    yield service
    service.stop()


def test_rescans_in_one_batch_run_one_cycle(service, engine):
    """Test several rescans in one batch run one cycle."""
    stop = service._process([
        (WorkKind.RESCAN, SyncTrigger.WATCHER),
        (WorkKind.RESCAN, SyncTrigger.WATCHER),
        (WorkKind.DRAIN, SyncTrigger.COMMAND),
    ])

    assert not stop
    assert engine.calls == [("sync", SyncTrigger.WATCHER), ("drain", None)]


def test_refresh_runs_before_rescan(service, engine, coordinator):
    """Test a watch refresh runs before the rescan."""
    service._process([(WorkKind.REFRESH, SyncTrigger.TIMER)])

    assert coordinator.refreshes == 1
    assert engine.calls == [("sync", SyncTrigger.TIMER)]


def test_stop_in_batch_ends_worker(service):
    """Test stop ends the worker."""
    assert service._process([(WorkKind.DRAIN, SyncTrigger.COMMAND), (WorkKind.STOP, SyncTrigger.MANUAL)])


def test_engine_failure_is_logged_not_raised(service, engine, caplog):
    """Test engine errors are logged and the worker survives."""
    def explode(trigger):
        raise RuntimeError("boom")

    engine.run_sync = explode
    service._process([(WorkKind.RESCAN, SyncTrigger.WATCHER), (WorkKind.DRAIN, SyncTrigger.COMMAND)])

    assert "Failed to sync: boom" in caplog.text
    assert engine.calls == [("drain", None)]


def test_events_are_ignored_before_start(service):
    """Test events before start are ignored."""
    service.handle_event(AutoSyncEvent.SKILLS_FILESYSTEM_CHANGED)

    assert service._queue.empty()


def test_start_syncs_drains_and_stops(service, engine, coordinator):
    """Test start runs a cycle and drains the queue."""
    service.start()

    assert engine.synced.wait(5)
    assert engine.drained.wait(5)
    assert coordinator.started
    assert ("sync", SyncTrigger.STARTUP) in engine.calls

    service.stop()

    assert coordinator.stopped
    assert not service.is_running


def test_events_map_to_work(service, engine):
    """Test each event maps to the right work."""
    service.start()
    assert engine.drained.wait(5)
    engine.synced.clear()
    engine.drained.clear()

    service.handle_event(AutoSyncEvent.SKILLS_FILESYSTEM_CHANGED)
    assert engine.synced.wait(5)

    service.handle_event(AutoSyncEvent.RUNTIME_STATE_CHANGED)
    assert engine.drained.wait(5)

    assert ("sync", SyncTrigger.WATCHER) in engine.calls
