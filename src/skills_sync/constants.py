"""
Constants for skill locations and the on-disk runtime layout.

Skill directories (same relative layout for both scopes):
- Global skills (in user home): ~/.claude/skills/, ~/.agents/skills/, ~/.codex/skills/
- Project skills (relative to a workspace): .claude/skills/, .agents/skills/, .codex/skills/
"""

from pathlib import Path
from typing import List

# Skill directories relative to the user home directory (global scope).
# Order matters: the first existing one receives promoted skills by default.
GLOBAL_SKILL_DIRS: List[str] = [
    ".claude/skills",
    ".agents/skills",
    ".codex/skills",
]

# Skill directories relative to a workspace root (project scope)
WORKSPACE_SKILL_DIRS: List[str] = [
    ".claude/skills",
    ".agents/skills",
    ".codex/skills",
]

# Manifest file that turns a directory into a skill package
MANIFEST_FILENAMES: List[str] = ["SKILL.md", "skill.md"]

# Extension recognized for single-file skill packages
SINGLE_FILE_SUFFIX = ".md"

# Files that live in skill directories but are never packages
IGNORED_FILENAMES: List[str] = ["README.md", "readme.md"]

# Snapshot schema version
STATE_SCHEMA_VERSION = 1

# Number of records exposed to space-constrained consumers
TOP_SKILLS_LIMIT = 6

# Maximum depth for probing configured extra roots for workspaces
MAX_DISCOVERY_DEPTH = 3

# Runtime file names (inside the runtime directory)
STATE_FILENAME = "state.json"
COMMAND_QUEUE_FILENAME = "commands.jsonl"
COMMAND_CURSOR_FILENAME = "commands.cursor.json"
PREFERENCES_FILENAME = "settings.json"
ARCHIVE_DIRNAME = "archives"

# Marker used for temporary sibling names during atomic replacement
TEMP_MARKER = ".skills-sync-tmp"

# Failure reasons kept in a batch result
MAX_BATCH_FAILURES = 5


def default_runtime_dir(home: Path) -> Path:
    """
    Fallback runtime directory when no override is configured.

    Args:
        home: User home directory

    Returns:
        Absolute Path of the runtime directory
    """
    return home / ".config" / "ai-agents" / "skillssync"


def expand_global_skill_dir(home: Path, rel_path: str) -> Path:
    """
    Expand a global skill directory (e.g., '.claude/skills' -> '~/.claude/skills').

    Args:
        home: User home directory
        rel_path: Relative path from home (e.g., '.claude/skills')

    Returns:
        Absolute Path object
    """
    return home / rel_path
