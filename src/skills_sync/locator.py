"""
Root discovery - find every skill directory that should be scanned.

Global roots are fixed per agent vendor. Workspace roots are discovered
under the dev tree, the worktrees tree and user-configured extra roots.
"""

import logging
import os
from pathlib import Path
from typing import Iterator, List, Optional, Set, Tuple

from .config import PreferencesStore, SyncSettings
from .constants import GLOBAL_SKILL_DIRS, WORKSPACE_SKILL_DIRS
from .fsutil import normalize
from .models import SkillRoot, SkillScope

logger = logging.getLogger(__name__)


def has_workspace_skills(path: Path) -> bool:
    """Whether `path` contains any of the workspace skill directories."""
    for rel in WORKSPACE_SKILL_DIRS:
        try:
            if (path / rel).exists():
                return True
        except OSError as e:
            logger.debug(f"Cannot check {path / rel}: {e}")
    return False


def _list_subdirectories(path: Path, skip_symlinks: bool = False) -> Iterator[Path]:
    """Yield non-hidden child directories of `path`; unreadable dirs yield nothing."""
    try:
        entries = sorted(os.scandir(path), key=lambda e: e.name)
    except OSError as e:
        logger.debug(f"Cannot list {path}: {e}")
        return
    for entry in entries:
        if entry.name.startswith("."):
            continue
        try:
            if skip_symlinks and entry.is_symlink():
                continue
            if not entry.is_dir():
                continue
        except OSError:
            continue
        yield Path(entry.path)


class RootLocator:
    """
    Resolves the set of filesystem roots to scan.

    Discovery sources for workspaces:
    1. Direct children of the dev root (e.g. ~/Dev/<repo>)
    2. owner/repo grandchildren of the worktrees root
    3. Extra roots from preferences, searched to a bounded depth
    """

    def __init__(
        self,
        settings: SyncSettings,
        preferences_store: Optional[PreferencesStore] = None,
    ):
        self.settings = settings
        self.preferences_store = preferences_store or PreferencesStore(settings)

    def global_roots(self) -> List[SkillRoot]:
        return [
            SkillRoot(
                path=self.settings.home / rel,
                scope=SkillScope.GLOBAL,
                workspace=None,
                agent_dir=rel,
            )
            for rel in GLOBAL_SKILL_DIRS
        ]

    @staticmethod
    def workspace_roots(workspace: Path) -> List[SkillRoot]:
        return [
            SkillRoot(
                path=workspace / rel,
                scope=SkillScope.PROJECT,
                workspace=workspace,
                agent_dir=rel,
            )
            for rel in WORKSPACE_SKILL_DIRS
        ]

    def all_roots(self, workspaces: List[Path]) -> List[SkillRoot]:
        """Global roots followed by the skill directories of every workspace."""
        roots = self.global_roots()
        for workspace in workspaces:
            roots.extend(self.workspace_roots(workspace))
        return roots

    def discover_workspaces(self) -> List[Path]:
        """
        Discover workspace roots.

        Returns:
            Sorted, de-duplicated list of normalized workspace paths
        """
        candidates: List[Path] = []
        candidates.extend(self._discover_primary())
        for root in self.preferences_store.load().custom_discovery_roots():
            candidates.extend(self.discover_in(root))

        unique = {normalize(path) for path in candidates}
        workspaces = sorted(unique, key=str)
        logger.debug(f"Discovered {len(workspaces)} workspace(s)")
        return workspaces

    def _discover_primary(self) -> List[Path]:
        found: List[Path] = []

        for repo in _list_subdirectories(self.settings.resolved_dev_root):
            if has_workspace_skills(repo):
                found.append(repo)

        for owner in _list_subdirectories(self.settings.resolved_worktrees_root):
            for repo in _list_subdirectories(owner):
                if has_workspace_skills(repo):
                    found.append(repo)

        return found

    def discover_in(self, root: Path, max_depth: Optional[int] = None) -> List[Path]:
        """
        Search `root` for workspaces with an explicit worklist.

        The root itself is depth 0. Hidden directories and symbolic links are
        skipped, and each resolved directory is visited once.
        """
        limit = self.settings.max_discovery_depth if max_depth is None else max_depth
        try:
            if not root.exists():
                return []
        except OSError as e:
            logger.debug(f"Cannot check {root}: {e}")
            return []

        found: List[Path] = []
        visited: Set[str] = set()
        stack: List[Tuple[Path, int]] = [(root, 0)]

        while stack:
            current, depth = stack.pop()
            try:
                real = os.path.realpath(current)
            except OSError:
                continue
            if real in visited:
                continue
            visited.add(real)

            if has_workspace_skills(current):
                found.append(current)

            if depth >= limit:
                continue

            children = list(_list_subdirectories(current, skip_symlinks=True))
            # Reverse so the stack pops children in name order
            for child in reversed(children):
                stack.append((child, depth + 1))

        return found
