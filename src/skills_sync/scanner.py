"""
Package scanner - list skill package candidates under each root.

Only the immediate entries of a root's skill directory are considered;
nested directories are never searched for more packages.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .constants import IGNORED_FILENAMES, SINGLE_FILE_SUFFIX, TEMP_MARKER
from .fsutil import link_destination, normalize
from .manifest import find_manifest, read_title
from .models import PackageForm, SkillPackage, SkillRoot

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Candidates from one scan plus the roots that could not be read."""
    packages: List[SkillPackage] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    scanned_roots: List[Path] = field(default_factory=list)


def _is_single_file_name(name: str) -> bool:
    return name.lower().endswith(SINGLE_FILE_SUFFIX) and name not in IGNORED_FILENAMES


def _package_name(entry_name: str, form: PackageForm) -> str:
    if form == PackageForm.SINGLE_FILE and entry_name.lower().endswith(SINGLE_FILE_SUFFIX):
        return entry_name[: -len(SINGLE_FILE_SUFFIX)]
    return entry_name


class PackageScanner:
    """Turns skill roots into `SkillPackage` candidates."""

    def scan(self, roots: List[SkillRoot]) -> ScanResult:
        """
        Scan every root; an unreadable root is recorded and skipped.

        Args:
            roots: Skill directories to list

        Returns:
            ScanResult with candidates in root order, then entry name order
        """
        result = ScanResult()
        for root in roots:
            try:
                if not root.path.is_dir():
                    continue
                packages = self.scan_root(root)
            except OSError as e:
                logger.warning(f"Failed to scan {root.path}: {e}")
                result.errors.append(f"{root.path}: {e.strerror or e}")
                continue
            result.scanned_roots.append(root.path)
            result.packages.extend(packages)

        logger.debug(
            f"Scanned {len(result.scanned_roots)} root(s), found {len(result.packages)} candidate(s)"
        )
        return result

    def scan_root(self, root: SkillRoot) -> List[SkillPackage]:
        """List one root's immediate entries; raises OSError if unreadable."""
        packages: List[SkillPackage] = []
        with os.scandir(root.path) as it:
            entries = sorted(it, key=lambda e: e.name)

        for entry in entries:
            if entry.name.startswith(".") or TEMP_MARKER in entry.name:
                continue
            try:
                package = self._inspect(root, entry)
            except OSError as e:
                logger.debug(f"Skipping unreadable entry {entry.path}: {e}")
                continue
            if package is not None:
                packages.append(package)
        return packages

    def _inspect(self, root: SkillRoot, entry: os.DirEntry) -> Optional[SkillPackage]:
        path = normalize(Path(entry.path))

        if entry.is_symlink():
            return self._inspect_symlink(root, entry.name, path)

        if entry.is_dir(follow_symlinks=False):
            if find_manifest(path) is None:
                return None
            form = PackageForm.DIRECTORY
        elif entry.is_file(follow_symlinks=False) and _is_single_file_name(entry.name):
            form = PackageForm.SINGLE_FILE
        else:
            return None

        return SkillPackage(
            path=path,
            form=form,
            scope=root.scope,
            workspace=root.workspace,
            name=_package_name(entry.name, form),
            title=read_title(path, form),
        )

    def _inspect_symlink(self, root: SkillRoot, name: str, path: Path) -> Optional[SkillPackage]:
        destination = link_destination(path)
        broken = not path.exists()

        if broken:
            # Form can only be guessed from the link's own name
            form = PackageForm.SINGLE_FILE if _is_single_file_name(name) else PackageForm.DIRECTORY
            title = None
        elif path.is_dir():
            if find_manifest(path) is None:
                return None
            form = PackageForm.DIRECTORY
            title = read_title(path, form)
        elif path.is_file() and _is_single_file_name(name):
            form = PackageForm.SINGLE_FILE
            title = read_title(path, form)
        else:
            return None

        return SkillPackage(
            path=path,
            form=form,
            scope=root.scope,
            workspace=root.workspace,
            name=_package_name(name, form),
            is_symlink=True,
            is_broken=broken,
            link_destination=destination,
            title=title,
        )
