"""
Filesystem watcher - keeps watchdog watches in line with the discovered roots.

The desired watch set (the watch plan) is recomputed from scratch on every
refresh and diffed against the watches currently scheduled, so repeated
refreshes with nothing new on disk change nothing.

Signals are delivered through a callback invoked on watchdog's dispatch
thread (or the timer thread); receivers must only hand work off.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import PreferencesStore, SyncSettings
from .constants import COMMAND_QUEUE_FILENAME
from .fsutil import normalize
from .locator import RootLocator

logger = logging.getLogger(__name__)

HANDLED_EVENT_TYPES = {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}


class AutoSyncEvent(str, Enum):
    """Signals emitted by the coordinator."""
    SKILLS_FILESYSTEM_CHANGED = "skills_filesystem_changed"
    WORKSPACE_WATCH_LIST_CHANGED = "workspace_watch_list_changed"
    RUNTIME_STATE_CHANGED = "runtime_state_changed"


@dataclass(frozen=True)
class WatchPlanEntry:
    """One directory to watch and the signal its changes produce."""
    path: Path
    event: AutoSyncEvent

    @property
    def recursive(self) -> bool:
        # Skill roots need edits inside directory packages; the runtime dir does not
        return self.event == AutoSyncEvent.SKILLS_FILESYSTEM_CHANGED


@dataclass
class WatchRefreshResult:
    """Paths scheduled and unscheduled by one refresh."""
    added: List[Path] = field(default_factory=list)
    removed: List[Path] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def build_watch_plan(
    global_roots: Iterable[Path],
    runtime_dir: Path,
    workspaces: Iterable[Path],
) -> List[WatchPlanEntry]:
    """
    Desired watch set: global roots, the runtime directory and every
    workspace's skill directories. Duplicate paths keep their first entry.
    """
    plan: List[WatchPlanEntry] = []
    seen = set()

    def add(path: Path, event: AutoSyncEvent) -> None:
        path = normalize(path)
        if path in seen:
            return
        seen.add(path)
        plan.append(WatchPlanEntry(path=path, event=event))

    for root in global_roots:
        add(root, AutoSyncEvent.SKILLS_FILESYSTEM_CHANGED)
    add(runtime_dir, AutoSyncEvent.RUNTIME_STATE_CHANGED)
    for workspace in workspaces:
        for root in RootLocator.workspace_roots(workspace):
            add(root.path, AutoSyncEvent.SKILLS_FILESYSTEM_CHANGED)
    return plan


def diff_watch_plan(
    current: Iterable[Path],
    plan: List[WatchPlanEntry],
) -> Tuple[List[WatchPlanEntry], List[Path]]:
    """
    Compare scheduled paths with the plan.

    Returns:
        (entries to schedule, paths to unschedule)
    """
    current_set = set(current)
    planned = {entry.path for entry in plan}
    to_add = [entry for entry in plan if entry.path not in current_set]
    to_remove = sorted((path for path in current_set if path not in planned), key=str)
    return to_add, to_remove


class _SignalHandler(FileSystemEventHandler):
    """Forwards relevant watchdog events for one planned path."""

    def __init__(self, coordinator: "AutoSyncCoordinator", entry: WatchPlanEntry):
        self.coordinator = coordinator
        self.entry = entry

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type not in HANDLED_EVENT_TYPES:
            return
        if self.entry.event == AutoSyncEvent.RUNTIME_STATE_CHANGED and not self._touches_queue(event):
            return
        self.coordinator.emit(self.entry.event)

    @staticmethod
    def _touches_queue(event: FileSystemEvent) -> bool:
        # Snapshot and cursor writes land here too; only the queue and its
        # set-aside compacting file matter
        paths = [event.src_path, getattr(event, "dest_path", "")]
        return any(Path(str(p)).name.startswith(COMMAND_QUEUE_FILENAME) for p in paths if p)


class AutoSyncCoordinator:
    """
    Owns the watchdog observer and the periodic rediscovery timer.

    Features:
    - Idempotent start() / stop(); stop() joins every thread it started
    - Diff-based watch refresh (stale watches removed, new ones added)
    - Events arriving after stop() are dropped
    """

    def __init__(
        self,
        settings: SyncSettings,
        on_event: Callable[[AutoSyncEvent], None],
        preferences_store: Optional[PreferencesStore] = None,
        interval: Optional[float] = None,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.settings = settings
        self.on_event = on_event
        self.locator = RootLocator(settings, preferences_store)
        self.interval = interval if interval is not None else settings.discovery_interval_seconds
        self.observer_factory = observer_factory

        self._lock = threading.RLock()
        self._observer: Optional[Observer] = None
        self._watches: Dict[Path, object] = {}
        self._workspaces: Optional[List[Path]] = None
        self._timer: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def watched_paths(self) -> List[Path]:
        with self._lock:
            return sorted(self._watches, key=str)

    def start(self) -> None:
        """Start the observer, schedule the initial watch set and the timer."""
        with self._lock:
            if self._running:
                return
            self._stop_event.clear()
            self._observer = self.observer_factory()
            self._observer.start()
            self._running = True

        self.refresh_watched_paths()

        timer = threading.Thread(target=self._timer_loop, name="skills-sync-timer", daemon=True)
        with self._lock:
            self._timer = timer
        timer.start()
        logger.info(f"Watching {len(self._watches)} path(s), rediscovery every {self.interval}s")

    def stop(self) -> None:
        """Unschedule everything and join the observer and timer threads."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            observer, self._observer = self._observer, None
            timer, self._timer = self._timer, None
            self._watches.clear()
            self._workspaces = None
        self._stop_event.set()

        if observer is not None:
            observer.unschedule_all()
            observer.stop()
            observer.join()
        if timer is not None and timer is not threading.current_thread():
            timer.join()
        logger.info("Watcher stopped")

    def refresh_watched_paths(self) -> WatchRefreshResult:
        """
        Rediscover workspaces and reconcile the scheduled watches.

        Emits `workspace_watch_list_changed` when the workspace set differs
        from the previous refresh.
        """
        workspaces = self.locator.discover_workspaces()
        result = WatchRefreshResult()

        with self._lock:
            if not self._running or self._observer is None:
                return result
            workspaces_changed = self._workspaces is not None and workspaces != self._workspaces
            self._workspaces = workspaces

            plan = build_watch_plan(self.settings.global_roots(), self.settings.runtime_dir, workspaces)
            to_add, to_remove = diff_watch_plan(self._watches.keys(), plan)

            for path in to_remove:
                watch = self._watches.pop(path)
                try:
                    self._observer.unschedule(watch)
                except KeyError:
                    pass
                result.removed.append(path)

            for entry in to_add:
                if not os.path.isdir(entry.path):
                    continue
                try:
                    watch = self._observer.schedule(
                        _SignalHandler(self, entry), str(entry.path), recursive=entry.recursive
                    )
                except OSError as e:
                    logger.debug(f"Cannot watch {entry.path}: {e}")
                    continue
                self._watches[entry.path] = watch
                result.added.append(entry.path)

        if result.changed:
            logger.debug(f"Watch set: +{len(result.added)} -{len(result.removed)}")
        if workspaces_changed:
            logger.info(f"Workspace set changed ({len(workspaces)} workspace(s))")
            self.emit(AutoSyncEvent.WORKSPACE_WATCH_LIST_CHANGED)
        return result

    def emit(self, event: AutoSyncEvent) -> None:
        if not self._running:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"Auto-sync event handler failed for {event.value}: {e}")

    def _timer_loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.refresh_watched_paths()
            except Exception as e:
                logger.error(f"Periodic rediscovery failed: {e}")
