"""
Symlink reconciler - make every target location a link to its canonical source.

Real files that sit where a link is expected are reported, never replaced.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from .fsutil import atomic_symlink, link_destination, same_file
from .models import SkillRecord

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""
    records: List[SkillRecord] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    replaced: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    collisions: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    # Records whose only conflicts are collisions found in this pass
    new_conflicts: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.created or self.replaced or self.pruned)

    def error_summary(self) -> str:
        return "; ".join(self.errors)


def is_link_to(path: Path, canonical: Path) -> bool:
    """Whether `path` is a symlink that resolves to `canonical`."""
    if not os.path.islink(path):
        return False
    return link_destination(path) == canonical or same_file(path, canonical)


class SymlinkReconciler:
    """Creates, repairs and prunes links; one failure never stops the pass."""

    def reconcile(self, records: List[SkillRecord], orphan_links: List[Path]) -> ReconcileResult:
        result = ReconcileResult()

        for record in records:
            if not record.is_active or not record.exists:
                result.records.append(record)
                continue
            collisions: List[str] = []
            correct = self._reconcile_record(record, result, collisions)
            update = {"is_symlink_canonical": correct}
            if collisions:
                if not record.has_conflict:
                    result.new_conflicts += 1
                update["conflict_paths"] = sorted(set(record.conflict_paths) | set(collisions))
            result.records.append(record.model_copy(update=update))

        for link in orphan_links:
            self._prune(link, result)

        if result.changed:
            logger.info(
                f"Reconciled links: {len(result.created)} created, "
                f"{len(result.replaced)} replaced, {len(result.pruned)} pruned"
            )
        for collision in result.collisions:
            logger.warning(f"Real entry blocks link: {collision}")
        for error in result.errors:
            logger.warning(f"Link repair failed: {error}")
        return result

    def _reconcile_record(
        self, record: SkillRecord, result: ReconcileResult, collisions: List[str]
    ) -> bool:
        canonical = Path(record.canonical_source_path)
        try:
            usable = not canonical.is_symlink() and canonical.exists()
        except OSError as e:
            result.errors.append(f"{canonical}: {e.strerror or e}")
            return False
        if not usable:
            result.errors.append(f"{canonical}: canonical source is not a real file or directory")
            return False

        correct = True
        for raw in record.target_paths:
            target = Path(raw)
            try:
                if target.is_symlink():
                    if is_link_to(target, canonical):
                        continue
                    atomic_symlink(canonical, target)
                    result.replaced.append(raw)
                elif os.path.lexists(target):
                    # A real copy: data-destructive repair is never automatic
                    result.collisions.append(raw)
                    collisions.append(raw)
                    correct = False
                elif not target.parent.is_dir():
                    result.errors.append(f"{raw}: parent directory is missing")
                    correct = False
                else:
                    atomic_symlink(canonical, target)
                    result.created.append(raw)
            except OSError as e:
                result.errors.append(f"{raw}: {e.strerror or e}")
                correct = False
        return correct

    def _prune(self, link: Path, result: ReconcileResult) -> None:
        # Only links that are still broken are removed
        if not os.path.islink(link) or os.path.exists(link):
            return
        try:
            link.unlink()
            result.pruned.append(str(link))
        except FileNotFoundError:
            pass
        except OSError as e:
            result.errors.append(f"{link}: {e.strerror or e}")
