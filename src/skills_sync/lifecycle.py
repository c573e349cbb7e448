"""
Lifecycle operations on reconciled skills.

Each operation validates the record, touches the filesystem and returns
what changed. The engine is responsible for running the follow-up
reconciliation cycle; nothing here writes the snapshot.

Destructive operations take a keyword-only `confirmed` flag with no
default and raise `ConfirmationRequiredError` before touching anything.
"""

import logging
import os
import shutil
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional
from urllib.parse import quote

from .canonicalizer import archived_record_id
from .config import SyncSettings
from .constants import GLOBAL_SKILL_DIRS
from .errors import (
    ConfirmationRequiredError,
    InvalidTransitionError,
    LifecycleConflictError,
    SkillNotFoundError,
    SkillsSyncError,
)
from .fsutil import atomic_symlink, atomic_write_text, normalize
from .manifest import write_title
from .models import BatchResult, SkillLifecycleStatus, SkillRecord, SkillScope, utc_now

logger = logging.getLogger(__name__)

Launcher = Callable[[List[str]], None]


def _run_launcher(argv: List[str]) -> None:
    """Run a desktop helper (`open`, `xdg-open`) and wait for it to hand off."""
    try:
        subprocess.run(argv, capture_output=True, text=True, check=True, timeout=10)
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
        raise SkillsSyncError(f"Failed to run {argv[0]}: {e}") from e


def _require_confirmation(operation: str, record_name: str, confirmed: bool) -> None:
    if confirmed is not True:
        raise ConfirmationRequiredError(operation, record_name)


def _move(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(source), str(destination))


class LifecycleManager:
    """
    Rename, archive, restore, promote and delete skills.

    Args:
        settings: Runtime settings (archive root, trash, global roots)
        launcher: Runs desktop helpers for open / reveal (injectable for tests)
    """

    def __init__(self, settings: SyncSettings, launcher: Optional[Launcher] = None):
        self.settings = settings
        self.launcher = launcher or _run_launcher

    # ========== Non-destructive ==========

    def rename(self, record: SkillRecord, new_title: str) -> Path:
        """
        Set the display title in the skill's manifest.

        The path and logical key do not change.

        Returns:
            Path of the manifest that was written
        """
        title = (new_title or "").strip()
        if not title:
            raise SkillsSyncError("Skill title must not be empty")
        source = self._active_source(record, "rename")
        return write_title(source, record.package_type, title)

    def open_location(self, record: SkillRecord) -> None:
        """Open the canonical source with the desktop default handler."""
        source = self._existing_path(record)
        self.launcher(["open", str(source)] if sys.platform == "darwin" else ["xdg-open", str(source)])

    def reveal(self, record: SkillRecord) -> None:
        """Show the canonical source in the file browser."""
        source = self._existing_path(record)
        if sys.platform == "darwin":
            self.launcher(["open", "-R", str(source)])
        else:
            self.launcher(["xdg-open", str(source.parent)])

    # ========== Archive / restore ==========

    def archive(self, record: SkillRecord, *, confirmed: bool) -> SkillRecord:
        """
        Move the canonical source into the archive area.

        Links pointing at the old location are left for the next
        reconciliation pass to prune.

        Returns:
            The archived record that replaces `record`
        """
        _require_confirmation("archive", record.name, confirmed)
        source = self._active_source(record, "archive")

        archived_at = utc_now()
        stamp = archived_at.strftime("%Y%m%dT%H%M%SZ")
        bundle = self.settings.archive_root / f"{record.id}-{stamp}" / source.name
        if os.path.lexists(bundle):
            raise LifecycleConflictError(f"Archive destination already exists: {bundle}")

        _move(source, bundle)
        logger.info(f"Archived '{record.name}' to {bundle}")

        return record.model_copy(
            update={
                "id": archived_record_id(str(bundle)),
                "status": SkillLifecycleStatus.ARCHIVED,
                "canonical_source_path": str(bundle),
                "target_paths": [],
                "conflict_paths": [],
                "exists": True,
                "is_symlink_canonical": False,
                "symlink_target": "",
                "archived_at": archived_at,
                "archived_bundle_path": str(bundle),
                "archived_original_scope": record.scope,
                "archived_original_workspace": record.workspace,
                "archived_original_path": record.canonical_source_path,
            }
        )

    def restore(self, record: SkillRecord) -> Path:
        """
        Move an archived bundle back to where it came from.

        A stale symlink at the destination is removed first; a real file or
        directory there is a conflict.

        Returns:
            The restored canonical path
        """
        if record.status != SkillLifecycleStatus.ARCHIVED:
            raise InvalidTransitionError(f"'{record.name}' is not archived")
        if not record.archived_bundle_path or not record.archived_original_path:
            raise InvalidTransitionError(f"'{record.name}' has no archive metadata")

        bundle = Path(record.archived_bundle_path)
        destination = Path(record.archived_original_path)
        if not os.path.lexists(bundle):
            raise SkillNotFoundError(f"Archive bundle is missing: {bundle}")

        if destination.is_symlink():
            destination.unlink()
        elif os.path.lexists(destination):
            raise LifecycleConflictError(f"Restore destination already exists: {destination}")

        _move(bundle, destination)
        self._remove_empty_bundle_dir(bundle.parent)
        logger.info(f"Restored '{record.name}' to {destination}")
        return destination

    def _remove_empty_bundle_dir(self, directory: Path) -> None:
        archive_root = normalize(self.settings.archive_root)
        if normalize(directory).parent != archive_root:
            return
        try:
            directory.rmdir()
        except OSError as e:
            logger.debug(f"Keeping archive directory {directory}: {e}")

    # ========== Promotion ==========

    def make_global(self, record: SkillRecord, *, confirmed: bool) -> Path:
        """
        Move a project skill into the matching global skill directory.

        The old location becomes a link to the new global source so the
        workspace keeps seeing the skill.

        Returns:
            The new canonical path
        """
        _require_confirmation("make global", record.name, confirmed)
        if record.scope != SkillScope.PROJECT:
            raise InvalidTransitionError(f"'{record.name}' is already global")
        source = self._active_source(record, "make global")

        destination = self._global_destination(record, source) / source.name
        if destination.is_symlink():
            destination.unlink()
        elif os.path.lexists(destination):
            raise LifecycleConflictError(f"A global skill already exists at {destination}")

        _move(source, destination)
        atomic_symlink(destination, source)
        logger.info(f"Promoted '{record.name}' to {destination}")
        return destination

    def _global_destination(self, record: SkillRecord, source: Path) -> Path:
        # Prefer the global directory of the same agent vendor
        if record.workspace:
            workspace = Path(record.workspace)
            for rel in GLOBAL_SKILL_DIRS:
                if source.parent == workspace / rel:
                    candidate = self.settings.home / rel
                    if candidate.is_dir():
                        return candidate
                    break

        for root in self.settings.global_roots():
            if root.is_dir():
                return root
        fallback = self.settings.global_roots()[0]
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback

    # ========== Delete ==========

    def delete(self, record: SkillRecord, *, confirmed: bool) -> Optional[Path]:
        """
        Move the skill's source to the trash.

        A source that is already gone only drops the record.

        Returns:
            Location inside the trash, or None when nothing was on disk
        """
        _require_confirmation("delete", record.name, confirmed)
        if record.is_active:
            source = Path(record.canonical_source_path)
        else:
            source = Path(record.archived_bundle_path or record.canonical_source_path)

        if not os.path.lexists(source):
            logger.info(f"Source of '{record.name}' is already gone, dropping record")
            return None
        if source.is_symlink():
            raise InvalidTransitionError(f"Canonical source of '{record.name}' is a symlink")

        trashed = self.move_to_trash(source)
        logger.info(f"Moved '{record.name}' to trash at {trashed}")
        return trashed

    def delete_many(self, records: List[SkillRecord], *, confirmed: bool) -> BatchResult:
        """
        Delete every record independently.

        One failure never blocks the others. At most five failure reasons
        are kept; the rest are only counted.
        """
        _require_confirmation("delete", f"{len(records)} skills", confirmed)
        result = BatchResult(attempted=len(records))
        for record in records:
            try:
                self.delete(record, confirmed=True)
            except (SkillsSyncError, OSError) as e:
                reason = f"{record.name}: {e}"
                logger.warning(f"Batch delete failed for {reason}")
                result.add_failure(reason)
                continue
            result.succeeded += 1
            result.succeeded_ids.append(record.id)
        return result

    def move_to_trash(self, source: Path) -> Path:
        """
        Move `source` into the trash directory.

        Outside macOS (and without a trash override) the freedesktop layout
        is used: the payload goes to `files/` with a matching
        `info/<name>.trashinfo` entry.
        """
        trash = self.settings.resolved_trash_dir
        if not self.settings.uses_freedesktop_trash:
            destination = self._unique_name(trash, source.name)
            _move(source, destination)
            return destination

        files_dir = trash / "files"
        info_dir = trash / "info"
        files_dir.mkdir(parents=True, exist_ok=True)
        info_dir.mkdir(parents=True, exist_ok=True)

        destination = self._unique_name(files_dir, source.name, info_dir=info_dir)
        info_path = info_dir / f"{destination.name}.trashinfo"
        deleted_at = datetime.now().strftime("%Y-%m-%dT%H:%M:%S")
        atomic_write_text(
            info_path,
            f"[Trash Info]\nPath={quote(str(source))}\nDeletionDate={deleted_at}\n",
        )
        try:
            _move(source, destination)
        except OSError:
            info_path.unlink(missing_ok=True)
            raise
        return destination

    @staticmethod
    def _unique_name(directory: Path, name: str, info_dir: Optional[Path] = None) -> Path:
        def taken(candidate: str) -> bool:
            if os.path.lexists(directory / candidate):
                return True
            return info_dir is not None and (info_dir / f"{candidate}.trashinfo").exists()

        if not taken(name):
            return directory / name
        stem, suffix = os.path.splitext(name)
        counter = 2
        while taken(f"{stem} {counter}{suffix}"):
            counter += 1
        return directory / f"{stem} {counter}{suffix}"

    # ========== Validation ==========

    @staticmethod
    def _active_source(record: SkillRecord, operation: str) -> Path:
        if not record.is_active:
            raise InvalidTransitionError(f"Cannot {operation} archived skill '{record.name}'")
        source = Path(record.canonical_source_path)
        if source.is_symlink() or not source.exists():
            raise SkillNotFoundError(f"Canonical source of '{record.name}' is missing: {source}")
        return source

    @staticmethod
    def _existing_path(record: SkillRecord) -> Path:
        path = Path(record.canonical_source_path)
        if not path.exists():
            raise SkillNotFoundError(f"Canonical source of '{record.name}' is missing: {path}")
        return path
