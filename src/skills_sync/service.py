"""
Long-running sync service.

Watcher and timer callbacks only enqueue work items; a single worker
thread runs every engine call, so blocking I/O never happens on
watchdog's dispatch thread and cycles never overlap.

Usage:
    skills-sync watch                   # Blocking mode (Ctrl+C to stop)
"""

import logging
import queue
import threading
import time
from enum import Enum
from typing import List, Optional, Tuple

from .config import SyncSettings
from .engine import SyncEngine
from .models import SyncTrigger
from .watcher import AutoSyncCoordinator, AutoSyncEvent

logger = logging.getLogger(__name__)


class WorkKind(str, Enum):
    RESCAN = "rescan"
    DRAIN = "drain"
    REFRESH = "refresh"
    STOP = "stop"


WorkItem = Tuple[WorkKind, SyncTrigger]


class SyncService:
    """
    Wires the auto-sync coordinator and the command queue into the engine.

    Features:
    - One worker thread fed by a `queue.Queue`
    - Rescans coalesced within the debounce window
    - Workspace set changes refresh the watch set, then rescan
    - Command queue appends drain through the engine
    """

    def __init__(
        self,
        settings: Optional[SyncSettings] = None,
        engine: Optional[SyncEngine] = None,
        coordinator: Optional[AutoSyncCoordinator] = None,
    ):
        self.engine = engine or SyncEngine(settings)
        self.settings = self.engine.settings
        self.coordinator = coordinator or AutoSyncCoordinator(
            self.settings, self.handle_event, self.engine.preferences_store
        )
        self.debounce = self.settings.debounce_seconds

        self._queue: "queue.Queue[WorkItem]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._stopped = threading.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ========== Lifecycle ==========

    def start(self) -> None:
        if self._running:
            logger.warning("Sync service already running")
            return
        self._running = True
        self._stopped.clear()
        self._worker = threading.Thread(target=self._work_loop, name="skills-sync-worker", daemon=True)
        self._worker.start()

        self.submit(WorkKind.RESCAN, SyncTrigger.STARTUP)
        self.submit(WorkKind.DRAIN)
        self.coordinator.start()
        logger.info("Sync service started")

    def stop(self) -> None:
        """Stop watching, finish the current item and join the worker."""
        if not self._running:
            return
        self._running = False
        self.coordinator.stop()
        self._queue.put((WorkKind.STOP, SyncTrigger.MANUAL))
        if self._worker is not None:
            self._worker.join()
            self._worker = None
        self._stopped.set()
        logger.info("Sync service stopped")

    def run(self) -> None:
        """Run in blocking mode until KeyboardInterrupt."""
        self.start()
        logger.info("Sync service running (Ctrl+C to stop)...")
        try:
            while not self._stopped.wait(1.0):
                pass
        except KeyboardInterrupt:
            self.stop()

    # ========== Signals ==========

    def submit(self, kind: WorkKind, trigger: SyncTrigger = SyncTrigger.MANUAL) -> None:
        if not self._running:
            return
        self._queue.put((kind, trigger))

    def handle_event(self, event: AutoSyncEvent) -> None:
        """Coordinator callback; must not block."""
        if event == AutoSyncEvent.SKILLS_FILESYSTEM_CHANGED:
            self.submit(WorkKind.RESCAN, SyncTrigger.WATCHER)
        elif event == AutoSyncEvent.WORKSPACE_WATCH_LIST_CHANGED:
            self.submit(WorkKind.REFRESH, SyncTrigger.TIMER)
        elif event == AutoSyncEvent.RUNTIME_STATE_CHANGED:
            self.submit(WorkKind.DRAIN, SyncTrigger.COMMAND)

    # ========== Worker ==========

    def _work_loop(self) -> None:
        while True:
            kind, trigger = self._queue.get()
            if kind == WorkKind.STOP:
                return

            batch: List[WorkItem] = [(kind, trigger)]
            if kind in (WorkKind.RESCAN, WorkKind.REFRESH):
                batch.extend(self._collect_within_debounce())

            if self._process(batch):
                return

    def _collect_within_debounce(self) -> List[WorkItem]:
        """Pull everything that arrives before the debounce window closes."""
        collected: List[WorkItem] = []
        deadline = time.monotonic() + self.debounce
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return collected
            try:
                item = self._queue.get(timeout=remaining)
            except queue.Empty:
                return collected
            collected.append(item)
            if item[0] == WorkKind.STOP:
                return collected

    def _process(self, batch: List[WorkItem]) -> bool:
        """Run one batch; returns True when a stop request was seen."""
        kinds = [kind for kind, _ in batch]
        rescan_trigger = next(
            (trigger for kind, trigger in batch if kind in (WorkKind.RESCAN, WorkKind.REFRESH)),
            None,
        )

        if WorkKind.REFRESH in kinds:
            self._safely("refresh watched paths", self.coordinator.refresh_watched_paths)
        if rescan_trigger is not None:
            self._safely("sync", lambda: self.engine.run_sync(rescan_trigger))
        if WorkKind.DRAIN in kinds:
            self._safely("drain commands", self.engine.drain_commands)
        return WorkKind.STOP in kinds

    @staticmethod
    def _safely(description: str, action) -> None:
        try:
            action()
        except Exception as e:
            logger.error(f"Failed to {description}: {e}")
