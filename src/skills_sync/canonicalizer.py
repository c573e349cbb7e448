"""
Canonicalizer - fold scan candidates into one record per logical key.

Precedence when several physical copies share a key:
1. A symlink is never canonical; the canonical source is a real file/dir
2. Global scope wins over project scope
3. Ties break on the lexicographically smallest path

A key with more than one real copy is a conflict.
"""

import hashlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .fsutil import normalize
from .models import (
    SkillPackage,
    SkillRecord,
    SkillRoot,
    SkillScope,
)
from .reconciler import is_link_to

logger = logging.getLogger(__name__)

LogicalKey = Tuple[str, str, str]  # (scope class, workspace, lower-cased name)


def logical_key(scope: SkillScope, workspace: Optional[Path], name: str) -> LogicalKey:
    if scope == SkillScope.GLOBAL:
        return (SkillScope.GLOBAL.value, "", name.lower())
    return (SkillScope.PROJECT.value, str(workspace or ""), name.lower())


def record_id(key: LogicalKey) -> str:
    """Stable identifier for a logical key."""
    return hashlib.sha1("|".join(key).encode("utf-8")).hexdigest()[:16]


def archived_record_id(bundle_path: str) -> str:
    return hashlib.sha1(f"archived|{bundle_path}".encode("utf-8")).hexdigest()[:16]


def sort_records(records: Iterable[SkillRecord]) -> List[SkillRecord]:
    """Active before archived, global before project, then name and path."""
    return sorted(
        records,
        key=lambda r: (
            0 if r.is_active else 1,
            0 if r.scope == SkillScope.GLOBAL else 1,
            r.name.lower(),
            r.canonical_source_path,
        ),
    )


@dataclass
class CanonicalizeResult:
    """Records for one cycle plus the broken links nobody owns."""
    records: List[SkillRecord] = field(default_factory=list)
    conflict_count: int = 0
    orphan_links: List[Path] = field(default_factory=list)


class Canonicalizer:
    """Groups candidates by logical key and picks a canonical source per key."""

    def canonicalize(
        self,
        packages: List[SkillPackage],
        roots: List[SkillRoot],
        previous: Optional[List[SkillRecord]] = None,
    ) -> CanonicalizeResult:
        """
        Build the reconciled record set.

        Args:
            packages: All candidates from one scan
            roots: The roots that were scanned (used to find sibling targets)
            previous: Records from the last snapshot, for retention

        Returns:
            CanonicalizeResult with sorted records and the conflict count
        """
        previous = previous or []
        previous_active = {r.id: r for r in previous if r.is_active}
        result = CanonicalizeResult()

        groups = self._group(packages)
        produced: Set[str] = set()
        # Resolved canonical source -> index of the record that owns it
        owners: Dict[str, int] = {}

        # Keys with a real copy go first so link-only keys can fold into them
        ordered = sorted(groups.items(), key=lambda item: not any(p.is_real for p in item[1]))

        for key, group in ordered:
            rid = record_id(key)
            record, conflicted = self._build_record(key, rid, group, roots)
            if record is None:
                retained = previous_active.get(rid)
                if retained is not None:
                    produced.add(retained.id)
                    result.records.append(self._as_missing(retained))
                else:
                    result.orphan_links.extend(p.path for p in group if p.is_broken)
                continue

            source = os.path.realpath(record.canonical_source_path)
            owner = owners.get(source)
            if owner is not None:
                # An alias link of a package that already has a record
                result.records[owner] = self._absorb_links(result.records[owner], group)
                continue

            if conflicted:
                result.conflict_count += 1
            produced.add(record.id)
            owners[source] = len(result.records)
            result.records.append(record)

        claimed: Set[str] = set()
        for record in result.records:
            claimed.add(record.canonical_source_path)
            claimed.update(record.target_paths)

        for record in previous:
            if record.id in produced:
                continue
            if record.is_active:
                if record.canonical_source_path in claimed:
                    # Its location now belongs to another key
                    continue
                result.records.append(self._as_missing(record))
            else:
                result.records.append(self._carry_archived(record))
            produced.add(record.id)

        result.records = sort_records(result.records)
        if result.conflict_count:
            logger.info(f"{result.conflict_count} conflicting skill key(s)")
        return result

    # ========== Grouping ==========

    def _group(self, packages: List[SkillPackage]) -> Dict[LogicalKey, List[SkillPackage]]:
        # Project copies of a name that exists globally belong to the global key
        global_names = {
            p.key_name for p in packages if p.scope == SkillScope.GLOBAL and not p.is_broken
        }
        groups: Dict[LogicalKey, List[SkillPackage]] = {}
        for package in packages:
            if package.scope == SkillScope.PROJECT and package.key_name in global_names:
                key = logical_key(SkillScope.GLOBAL, None, package.name)
            else:
                key = logical_key(package.scope, package.workspace, package.name)
            groups.setdefault(key, []).append(package)
        return groups

    # ========== Record construction ==========

    def _build_record(
        self,
        key: LogicalKey,
        rid: str,
        group: List[SkillPackage],
        roots: List[SkillRoot],
    ) -> Tuple[Optional[SkillRecord], bool]:
        real = sorted(
            (p for p in group if p.is_real),
            key=lambda p: (0 if p.scope == SkillScope.GLOBAL else 1, str(p.path)),
        )

        if real:
            canonical = real[0]
            canonical_path = canonical.path
            scope, workspace = canonical.scope, canonical.workspace
            conflict_paths = [str(p.path) for p in real[1:]]
        else:
            live_links = sorted((p for p in group if not p.is_broken), key=lambda p: str(p.path))
            if not live_links:
                return None, False
            canonical = live_links[0]
            canonical_path = normalize(Path(os.path.realpath(canonical.path)))
            scope = SkillScope(key[0])
            workspace = Path(key[1]) if key[1] else None
            conflict_paths = []

        targets = self._target_paths(key, canonical_path, group, roots)
        title = canonical.title or next((p.title for p in real if p.title), None)

        record = SkillRecord(
            id=rid,
            name=title or canonical.name,
            scope=scope,
            workspace=str(workspace) if workspace else None,
            canonical_source_path=str(canonical_path),
            target_paths=targets,
            exists=True,
            is_symlink_canonical=all(is_link_to(Path(t), canonical_path) for t in targets),
            package_type=canonical.form,
            skill_key=key[2],
            symlink_target=str(canonical_path),
            conflict_paths=sorted(conflict_paths),
        )
        return record, len(real) > 1

    def _target_paths(
        self,
        key: LogicalKey,
        canonical_path: Path,
        group: List[SkillPackage],
        roots: List[SkillRoot],
    ) -> List[str]:
        """
        Locations that should link to the canonical source.

        Every existing sibling skill directory of the key's scope gets an
        entry, plus every other candidate location in the group.
        """
        targets: Set[Path] = set()
        occupied_dirs = set()
        for package in group:
            if package.path != canonical_path:
                targets.add(package.path)
            occupied_dirs.add(package.path.parent)

        for root in roots:
            if not self._root_in_key_scope(root, key):
                continue
            directory = normalize(root.path)
            if directory in occupied_dirs or directory == canonical_path.parent:
                continue
            if not os.path.isdir(directory):
                continue
            targets.add(directory / canonical_path.name)

        targets.discard(canonical_path)
        return sorted(str(t) for t in targets)

    @staticmethod
    def _absorb_links(record: SkillRecord, group: List[SkillPackage]) -> SkillRecord:
        """Add another key's links to the record whose source they resolve to."""
        canonical = Path(record.canonical_source_path)
        targets = set(record.target_paths)
        targets.update(str(p.path) for p in group)
        targets.discard(record.canonical_source_path)
        target_paths = sorted(targets)
        return record.model_copy(
            update={
                "target_paths": target_paths,
                "is_symlink_canonical": all(is_link_to(Path(t), canonical) for t in target_paths),
            }
        )

    @staticmethod
    def _root_in_key_scope(root: SkillRoot, key: LogicalKey) -> bool:
        if key[0] == SkillScope.GLOBAL.value:
            return root.scope == SkillScope.GLOBAL
        return root.scope == SkillScope.PROJECT and str(root.workspace) == key[1]

    # ========== Retention ==========

    @staticmethod
    def _as_missing(record: SkillRecord) -> SkillRecord:
        """Previous record whose source is gone; kept so history is not lost."""
        canonical = Path(record.canonical_source_path)
        exists = os.path.exists(canonical) and not os.path.islink(canonical)
        update = {"exists": exists}
        if not exists:
            update["is_symlink_canonical"] = False
        return record.model_copy(update=update)

    @staticmethod
    def _carry_archived(record: SkillRecord) -> SkillRecord:
        bundle = record.archived_bundle_path or record.canonical_source_path
        return record.model_copy(update={"exists": os.path.exists(bundle)})
