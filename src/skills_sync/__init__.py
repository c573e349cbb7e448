"""
skills-sync

Keeps every AI agent skill consistent across the global agent directories
(~/.claude/skills, ~/.agents/skills, ~/.codex/skills) and the skill
directories of discovered workspaces: one canonical source per skill, every
other location a symlink to it.

Usage:
    # CLI
    skills-sync sync
    skills-sync status
    skills-sync watch
    skills-sync enqueue delete <skill-id> --confirm
    skills-sync validate

    # Programmatic
    from skills_sync import SyncEngine, SyncSettings

    engine = SyncEngine(SyncSettings())
    state = engine.run_sync()
"""

__version__ = "0.1.0"

from .config import PreferencesStore, SyncPreferences, SyncSettings
from .engine import SyncEngine
from .errors import (
    CommandQueueError,
    ConfirmationRequiredError,
    InvalidTransitionError,
    LifecycleConflictError,
    SkillNotFoundError,
    SkillsSyncError,
)
from .models import (
    BatchResult,
    CommandType,
    SkillLifecycleStatus,
    SkillRecord,
    SkillScope,
    SyncCommand,
    SyncHealthStatus,
    SyncState,
    SyncTrigger,
    ValidationResult,
)
from .service import SyncService
from .validator import SkillValidator

__all__ = [
    # Engine
    "SyncEngine",
    "SyncService",
    "SkillValidator",
    # Configuration
    "SyncSettings",
    "SyncPreferences",
    "PreferencesStore",
    # Models
    "BatchResult",
    "CommandType",
    "SkillLifecycleStatus",
    "SkillRecord",
    "SkillScope",
    "SyncCommand",
    "SyncHealthStatus",
    "SyncState",
    "SyncTrigger",
    "ValidationResult",
    # Errors
    "SkillsSyncError",
    "ConfirmationRequiredError",
    "SkillNotFoundError",
    "InvalidTransitionError",
    "LifecycleConflictError",
    "CommandQueueError",
]
