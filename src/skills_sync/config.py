"""
Configuration for skills-sync.

Runtime settings come from environment variables (prefix ``SKILLS_SYNC_``)
and an optional ``.env`` file. User preferences live in a JSON document in
the runtime directory and are shared with the front-ends.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    ARCHIVE_DIRNAME,
    COMMAND_CURSOR_FILENAME,
    COMMAND_QUEUE_FILENAME,
    GLOBAL_SKILL_DIRS,
    MAX_DISCOVERY_DEPTH,
    PREFERENCES_FILENAME,
    STATE_FILENAME,
    default_runtime_dir,
    expand_global_skill_dir,
)
from .fsutil import atomic_write_text, normalize

logger = logging.getLogger(__name__)


class SyncSettings(BaseSettings):
    """Process-level settings for the sync engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SKILLS_SYNC_",
        extra="ignore",
    )

    # Locations
    home: Path = Field(default_factory=Path.home, description="User home directory")
    group_dir: Optional[Path] = Field(
        default=None,
        description="Runtime directory override (state, queue, preferences, archives)",
    )
    dev_root: Optional[Path] = Field(default=None, description="Repositories root (default ~/Dev)")
    worktrees_root: Optional[Path] = Field(
        default=None, description="Worktrees root laid out as owner/repo (default ~/.codex/worktrees)"
    )
    trash_dir: Optional[Path] = Field(default=None, description="Trash directory override")

    # Watcher
    discovery_interval_seconds: float = Field(
        default=30.0, gt=0, description="Workspace rediscovery interval"
    )
    max_discovery_depth: int = Field(
        default=MAX_DISCOVERY_DEPTH, ge=0, description="Depth limit when probing extra roots"
    )
    debounce_seconds: float = Field(
        default=0.5, ge=0, description="Window for coalescing filesystem signals"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_file: Optional[str] = Field(default=None, description="Log file path")

    @property
    def runtime_dir(self) -> Path:
        """Directory holding the snapshot, command queue and preferences."""
        if self.group_dir is not None and str(self.group_dir).strip():
            return normalize(self.group_dir)
        return default_runtime_dir(self.home)

    @property
    def state_path(self) -> Path:
        return self.runtime_dir / STATE_FILENAME

    @property
    def command_queue_path(self) -> Path:
        return self.runtime_dir / COMMAND_QUEUE_FILENAME

    @property
    def command_cursor_path(self) -> Path:
        return self.runtime_dir / COMMAND_CURSOR_FILENAME

    @property
    def preferences_path(self) -> Path:
        return self.runtime_dir / PREFERENCES_FILENAME

    @property
    def archive_root(self) -> Path:
        return self.runtime_dir / ARCHIVE_DIRNAME

    @property
    def resolved_dev_root(self) -> Path:
        return normalize(self.dev_root) if self.dev_root else self.home / "Dev"

    @property
    def resolved_worktrees_root(self) -> Path:
        if self.worktrees_root:
            return normalize(self.worktrees_root)
        return self.home / ".codex" / "worktrees"

    @property
    def resolved_trash_dir(self) -> Path:
        """Platform trash location (macOS ~/.Trash, freedesktop Trash elsewhere)."""
        if self.trash_dir:
            return normalize(self.trash_dir)
        if sys.platform == "darwin":
            return self.home / ".Trash"
        data_home = os.environ.get("XDG_DATA_HOME")
        base = Path(data_home) if data_home else self.home / ".local" / "share"
        return base / "Trash"

    @property
    def uses_freedesktop_trash(self) -> bool:
        return sys.platform != "darwin" and self.trash_dir is None

    def global_roots(self) -> List[Path]:
        """Global skill directories in precedence order."""
        return [expand_global_skill_dir(self.home, d) for d in GLOBAL_SKILL_DIRS]


class SyncPreferences(BaseModel):
    """User preferences shared with the front-ends."""

    version: int = Field(default=1, description="Preferences schema version")
    workspace_discovery_roots: List[str] = Field(
        default_factory=list, description="Extra absolute roots searched for workspaces"
    )
    auto_migrate_to_canonical_source: bool = Field(
        default=False, description="Toggle consulted by the surrounding application"
    )
    starred_skill_ids: List[str] = Field(
        default_factory=list, description="Preferred order for the top skills list"
    )
    trusted_requesters: List[str] = Field(
        default_factory=lambda: ["app", "cli"],
        description="Queue producers allowed to confirm destructive commands",
    )

    @classmethod
    def load_from_file(cls, path: Path) -> "SyncPreferences":
        """Load preferences, falling back to defaults on any read failure."""
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return cls.model_validate(data)
        except FileNotFoundError:
            return cls()
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable preferences at {path}: {e}")
            return cls()

    def save_to_file(self, path: Path) -> None:
        """Persist preferences atomically; failures are logged, not raised."""
        try:
            payload = json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True)
            atomic_write_text(path, payload + "\n")
        except OSError as e:
            logger.error(f"Failed to save preferences to {path}: {e}")

    def custom_discovery_roots(self) -> List[Path]:
        """
        Normalized extra discovery roots.

        Blank and relative entries are ignored; duplicates keep their first
        position.
        """
        roots: List[Path] = []
        seen = set()
        for raw in self.workspace_discovery_roots:
            trimmed = raw.strip()
            if not trimmed or not trimmed.startswith("/"):
                continue
            normalized = normalize(Path(trimmed))
            if normalized in seen:
                continue
            seen.add(normalized)
            roots.append(normalized)
        return roots


class PreferencesStore:
    """Reads and writes `SyncPreferences` at the configured location."""

    def __init__(self, settings: SyncSettings):
        self.settings = settings

    def load(self) -> SyncPreferences:
        return SyncPreferences.load_from_file(self.settings.preferences_path)

    def save(self, preferences: SyncPreferences) -> None:
        preferences.save_to_file(self.settings.preferences_path)
