"""
Sync engine - the single serialization point for reconciliation.

One cycle: discover roots -> scan -> canonicalize -> reconcile links ->
save snapshot. Every mutation (rename, archive, restore, make global,
delete) runs under the same lock and is followed by a full cycle, so
consumers only ever see a snapshot that reflects the disk.
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import List, Optional

from .canonicalizer import Canonicalizer
from .command_queue import CommandQueue, CommandQueueConsumer, DrainResult
from .config import PreferencesStore, SyncSettings
from .errors import CommandQueueError, ConfirmationRequiredError, SkillNotFoundError
from .fsutil import normalize
from .lifecycle import LifecycleManager
from .locator import RootLocator
from .models import (
    BatchResult,
    CommandType,
    SkillRecord,
    SkillScope,
    SyncCommand,
    SyncHealthStatus,
    SyncMetadata,
    SyncState,
    SyncSummary,
    SyncTrigger,
    ValidationResult,
    utc_now,
)
from .reconciler import SymlinkReconciler
from .scanner import PackageScanner
from .state_store import SyncStateStore, compute_top_skill_ids
from .validator import SkillValidator

logger = logging.getLogger(__name__)


def summarize(records: List[SkillRecord], conflict_count: int) -> SyncSummary:
    active = [r for r in records if r.is_active]
    return SyncSummary(
        global_count=sum(1 for r in active if r.scope == SkillScope.GLOBAL),
        project_count=sum(1 for r in active if r.scope == SkillScope.PROJECT),
        conflict_count=conflict_count,
    )


class SyncEngine:
    """
    Runs reconciliation cycles and lifecycle mutations.

    Features:
    - Re-entrant lock around every cycle and mutation
    - `syncing` snapshot at cycle start, final snapshot at the end
    - Failed cycles keep the previous records and report the error
    - Queue commands mapped onto the same mutation boundary
    """

    def __init__(
        self,
        settings: Optional[SyncSettings] = None,
        preferences_store: Optional[PreferencesStore] = None,
        lifecycle: Optional[LifecycleManager] = None,
    ):
        self.settings = settings or SyncSettings()
        self.preferences_store = preferences_store or PreferencesStore(self.settings)
        self.locator = RootLocator(self.settings, self.preferences_store)
        self.scanner = PackageScanner()
        self.canonicalizer = Canonicalizer()
        self.reconciler = SymlinkReconciler()
        self.validator = SkillValidator()
        self.store = SyncStateStore(self.settings.state_path)
        self.lifecycle = lifecycle or LifecycleManager(self.settings)
        self.queue = CommandQueue(self.settings.command_queue_path)
        self.consumer = CommandQueueConsumer(
            self.settings.command_queue_path, self.settings.command_cursor_path
        )
        self._lock = threading.RLock()

    def load_state(self) -> SyncState:
        return self.store.load()

    # ========== Reconciliation ==========

    def run_sync(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncState:
        """Run one full cycle and return the saved snapshot."""
        with self._lock:
            return self._run_cycle(trigger)

    def _run_cycle(
        self,
        trigger: SyncTrigger,
        previous_records: Optional[List[SkillRecord]] = None,
    ) -> SyncState:
        previous_state = self.store.load()
        previous = previous_state.skills if previous_records is None else previous_records
        started_at = utc_now()
        started = time.monotonic()
        logger.debug(f"Sync cycle started (trigger={trigger.value})")

        syncing = previous_state.model_copy(
            update={
                "generated_at": started_at,
                "sync": SyncMetadata(
                    status=SyncHealthStatus.SYNCING,
                    last_started_at=started_at,
                    last_finished_at=previous_state.sync.last_finished_at,
                    duration_ms=previous_state.sync.duration_ms,
                ),
            }
        )
        try:
            self.store.save(syncing)
        except OSError as e:
            logger.warning(f"Failed to write syncing snapshot: {e}")

        try:
            preferences = self.preferences_store.load()
            workspaces = self.locator.discover_workspaces()
            roots = self.locator.all_roots(workspaces)
            scan = self.scanner.scan(roots)
            canonical = self.canonicalizer.canonicalize(scan.packages, roots, previous)
            reconciled = self.reconciler.reconcile(canonical.records, canonical.orphan_links)

            records = reconciled.records
            errors = scan.errors + reconciled.errors
            state = SyncState(
                generated_at=utc_now(),
                sync=SyncMetadata(
                    status=SyncHealthStatus.FAILED if errors else SyncHealthStatus.OK,
                    last_started_at=started_at,
                    last_finished_at=utc_now(),
                    duration_ms=int((time.monotonic() - started) * 1000),
                    error="; ".join(errors) if errors else None,
                ),
                summary=summarize(records, canonical.conflict_count + reconciled.new_conflicts),
                skills=records,
                top_skills=compute_top_skill_ids(records, preferences.starred_skill_ids),
            )
        except Exception as e:
            logger.exception(f"Sync cycle failed (trigger={trigger.value})")
            state = SyncState(
                generated_at=utc_now(),
                sync=SyncMetadata(
                    status=SyncHealthStatus.FAILED,
                    last_started_at=started_at,
                    last_finished_at=utc_now(),
                    duration_ms=int((time.monotonic() - started) * 1000),
                    error=str(e) or e.__class__.__name__,
                ),
                summary=previous_state.summary,
                skills=previous,
                top_skills=previous_state.top_skills,
            )

        self.store.save(state)
        logger.info(
            f"Sync {state.sync.status.value} ({trigger.value}): "
            f"{state.summary.global_count} global, {state.summary.project_count} project, "
            f"{state.summary.conflict_count} conflict(s) in {state.sync.duration_ms}ms"
        )
        return state

    # ========== Mutation boundary ==========

    def resolve(self, skill: str, state: Optional[SyncState] = None) -> SkillRecord:
        """
        Find a record by id, or by canonical/target path.

        Raises:
            SkillNotFoundError: No record matches
        """
        state = state or self.store.load()
        record = state.find(skill)
        if record is None and (os.sep in skill or skill.startswith("~")):
            record = state.find_by_path(str(normalize(Path(skill))))
        if record is None:
            raise SkillNotFoundError(f"No skill matches '{skill}'")
        return record

    def validate_skill(self, skill: str, state: Optional[SyncState] = None) -> ValidationResult:
        """Check a skill package for problems; never changes anything on disk."""
        return self.validator.validate(self.resolve(skill, state))

    def open_canonical_location(self, skill: str) -> SyncState:
        with self._lock:
            state = self.store.load()
            self.lifecycle.open_location(self.resolve(skill, state))
            return state

    def reveal_in_file_browser(self, skill: str) -> SyncState:
        with self._lock:
            state = self.store.load()
            self.lifecycle.reveal(self.resolve(skill, state))
            return state

    def rename_skill(self, skill: str, new_title: str) -> SyncState:
        with self._lock:
            record = self.resolve(skill)
            self.lifecycle.rename(record, new_title)
            return self._run_cycle(SyncTrigger.LIFECYCLE)

    def archive_skill(self, skill: str, *, confirmed: bool) -> SyncState:
        with self._lock:
            state = self.store.load()
            record = self.resolve(skill, state)
            archived = self.lifecycle.archive(record, confirmed=confirmed)
            previous = [archived if r.id == record.id else r for r in state.skills]
            return self._run_cycle(SyncTrigger.LIFECYCLE, previous)

    def restore_skill(self, skill: str) -> SyncState:
        with self._lock:
            state = self.store.load()
            record = self.resolve(skill, state)
            self.lifecycle.restore(record)
            previous = [r for r in state.skills if r.id != record.id]
            return self._run_cycle(SyncTrigger.LIFECYCLE, previous)

    def make_global(self, skill: str, *, confirmed: bool) -> SyncState:
        with self._lock:
            state = self.store.load()
            record = self.resolve(skill, state)
            self.lifecycle.make_global(record, confirmed=confirmed)
            previous = [r for r in state.skills if r.id != record.id]
            return self._run_cycle(SyncTrigger.LIFECYCLE, previous)

    def delete_canonical_source(self, skill: str, *, confirmed: bool) -> SyncState:
        with self._lock:
            state = self.store.load()
            record = self.resolve(skill, state)
            self.lifecycle.delete(record, confirmed=confirmed)
            previous = [r for r in state.skills if r.id != record.id]
            return self._run_cycle(SyncTrigger.LIFECYCLE, previous)

    def delete_many(self, skills: List[str], *, confirmed: bool) -> BatchResult:
        """
        Delete several skills, then run one cycle.

        Unknown ids count as failures; nothing is touched without confirmation.
        """
        if confirmed is not True:
            raise ConfirmationRequiredError("delete", f"{len(skills)} skills")
        with self._lock:
            state = self.store.load()
            records: List[SkillRecord] = []
            missing: List[str] = []
            for skill in skills:
                try:
                    records.append(self.resolve(skill, state))
                except SkillNotFoundError:
                    missing.append(skill)

            result = self.lifecycle.delete_many(records, confirmed=True)
            result.attempted += len(missing)
            for skill in missing:
                result.add_failure(f"{skill}: not found")

            deleted = set(result.succeeded_ids)
            previous = [r for r in state.skills if r.id not in deleted]
            result.state = self._run_cycle(SyncTrigger.LIFECYCLE, previous)
            logger.info(result.message)
            return result

    # ========== Command queue ==========

    def enqueue(self, command: SyncCommand) -> SyncCommand:
        return self.queue.append(command)

    def process_command(self, command: SyncCommand) -> SyncState:
        """
        Run one queued command.

        Destructive commands need `confirmed=true` from a trusted requester.
        """
        if command.type == CommandType.SYNC_NOW:
            return self.run_sync(SyncTrigger.COMMAND)

        skill = command.skill_id or command.skill_path
        if not skill:
            raise CommandQueueError(f"Command {command.id} ({command.type.value}) has no target")

        if command.is_destructive:
            trusted = self.preferences_store.load().trusted_requesters
            if command.confirmed is not True or command.requested_by not in trusted:
                raise ConfirmationRequiredError(command.type.value.replace("_", " "), skill)

        if command.type == CommandType.OPEN:
            return self.open_canonical_location(skill)
        if command.type == CommandType.REVEAL:
            return self.reveal_in_file_browser(skill)
        if command.type == CommandType.DELETE:
            return self.delete_canonical_source(skill, confirmed=True)
        if command.type == CommandType.ARCHIVE:
            return self.archive_skill(skill, confirmed=True)
        if command.type == CommandType.RESTORE:
            return self.restore_skill(skill)
        if command.type == CommandType.MAKE_GLOBAL:
            return self.make_global(skill, confirmed=True)
        if command.type == CommandType.RENAME:
            if not command.new_title:
                raise CommandQueueError(f"Rename command {command.id} has no new_title")
            return self.rename_skill(skill, command.new_title)
        raise CommandQueueError(f"Unsupported command type: {command.type.value}")

    def drain_commands(self) -> DrainResult:
        """Drain the queue through `process_command`."""
        with self._lock:
            return self.consumer.drain(self.process_command)
