"""
Data models for skills-sync.

Pydantic models for everything that is persisted or exchanged between
processes (snapshot, records, commands); plain dataclasses for the
ephemeral values produced during a single reconciliation cycle.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from .constants import MAX_BATCH_FAILURES, STATE_SCHEMA_VERSION


def utc_now() -> datetime:
    """Current time in UTC, truncated to milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


class SyncHealthStatus(str, Enum):
    """Outcome of the last reconciliation cycle."""
    OK = "ok"
    FAILED = "failed"
    SYNCING = "syncing"
    UNKNOWN = "unknown"


class SkillScope(str, Enum):
    """Whether a skill belongs to the user's global environment or a workspace."""
    GLOBAL = "global"
    PROJECT = "project"


class PackageForm(str, Enum):
    """Physical shape of a skill package."""
    DIRECTORY = "directory"
    SINGLE_FILE = "single-file"


class SkillLifecycleStatus(str, Enum):
    """Lifecycle status of a skill record."""
    ACTIVE = "active"
    ARCHIVED = "archived"


class SyncTrigger(str, Enum):
    """What caused a reconciliation cycle."""
    MANUAL = "manual"
    STARTUP = "startup"
    WATCHER = "watcher"
    TIMER = "timer"
    COMMAND = "command"
    LIFECYCLE = "lifecycle"
    WIDGET = "widget"


class CommandType(str, Enum):
    """Actions producers can request through the command queue."""
    SYNC_NOW = "sync_now"
    OPEN = "open"
    REVEAL = "reveal"
    DELETE = "delete"
    ARCHIVE = "archive"
    RESTORE = "restore"
    MAKE_GLOBAL = "make_global"
    RENAME = "rename"


DESTRUCTIVE_COMMANDS = {CommandType.DELETE, CommandType.ARCHIVE, CommandType.MAKE_GLOBAL}


# ========== Ephemeral cycle values ==========


@dataclass(frozen=True)
class SkillRoot:
    """A skill directory to scan, with the scope it belongs to."""
    path: Path
    scope: SkillScope
    workspace: Optional[Path] = None
    agent_dir: str = ""


@dataclass(frozen=True)
class SkillPackage:
    """
    A skill package candidate seen during one scan.

    Not persisted; the canonicalizer folds candidates into `SkillRecord`s.
    """
    path: Path
    form: PackageForm
    scope: SkillScope
    workspace: Optional[Path]
    name: str
    is_symlink: bool = False
    is_broken: bool = False
    link_destination: Optional[Path] = None
    title: Optional[str] = None

    @property
    def is_real(self) -> bool:
        """A real copy is an actual file or directory, not a link."""
        return not self.is_symlink

    @property
    def key_name(self) -> str:
        return self.name.lower()


# ========== Persisted models ==========


class SyncMetadata(BaseModel):
    """Status of the last reconciliation cycle."""

    status: SyncHealthStatus = Field(default=SyncHealthStatus.UNKNOWN, description="Last run status")
    last_started_at: Optional[datetime] = Field(default=None, description="Cycle start time")
    last_finished_at: Optional[datetime] = Field(default=None, description="Cycle finish time")
    duration_ms: Optional[int] = Field(default=None, description="Cycle duration")
    error: Optional[str] = Field(default=None, description="Joined, human-readable failures")


class SyncSummary(BaseModel):
    """Counts shown by space-constrained consumers."""

    global_count: int = Field(default=0)
    project_count: int = Field(default=0)
    conflict_count: int = Field(default=0, description="Number of conflicting logical keys")


class SkillRecord(BaseModel):
    """
    The reconciled, consumer-facing view of one logical skill.

    Exactly one record exists per logical key. `canonical_source_path` is
    always a real file or directory and never appears in `target_paths`.
    """

    id: str = Field(..., description="Stable identifier derived from the logical key")
    name: str = Field(..., description="Display name")
    scope: SkillScope = Field(..., description="Owning scope")
    workspace: Optional[str] = Field(default=None, description="Owning workspace (project scope)")
    canonical_source_path: str = Field(..., description="Authoritative real location")
    target_paths: List[str] = Field(default_factory=list, description="Locations that should link here")
    exists: bool = Field(default=True, description="Canonical source currently on disk")
    is_symlink_canonical: bool = Field(default=False, description="Every target is a correct link")
    package_type: PackageForm = Field(default=PackageForm.DIRECTORY)
    skill_key: str = Field(..., description="Normalized logical key")
    symlink_target: str = Field(default="", description="Destination the target links point at")
    status: SkillLifecycleStatus = Field(default=SkillLifecycleStatus.ACTIVE)

    # Other real copies of the key, or real entries blocking a target (non-empty means conflict)
    conflict_paths: List[str] = Field(default_factory=list)

    # Archival metadata (set iff status is archived)
    archived_at: Optional[datetime] = Field(default=None)
    archived_bundle_path: Optional[str] = Field(default=None)
    archived_original_scope: Optional[SkillScope] = Field(default=None)
    archived_original_workspace: Optional[str] = Field(default=None)
    archived_original_path: Optional[str] = Field(default=None)

    @property
    def is_active(self) -> bool:
        return self.status == SkillLifecycleStatus.ACTIVE

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflict_paths)


class SyncState(BaseModel):
    """The snapshot document every consumer reads."""

    version: int = Field(default=STATE_SCHEMA_VERSION)
    generated_at: Optional[datetime] = Field(default=None)
    sync: SyncMetadata = Field(default_factory=SyncMetadata)
    summary: SyncSummary = Field(default_factory=SyncSummary)
    skills: List[SkillRecord] = Field(default_factory=list)
    top_skills: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "SyncState":
        """Well-defined state used whenever no valid snapshot is available."""
        return cls()

    def find(self, skill_id: str) -> Optional[SkillRecord]:
        for record in self.skills:
            if record.id == skill_id:
                return record
        return None

    def find_by_path(self, path: str) -> Optional[SkillRecord]:
        for record in self.skills:
            if record.canonical_source_path == path or path in record.target_paths:
                return record
        return None


class SyncCommand(BaseModel):
    """
    One requested action in the command queue.

    Created by producers and never mutated afterwards.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=utc_now)
    type: CommandType = Field(..., description="Requested action")
    skill_id: Optional[str] = Field(default=None, description="Target record id")
    skill_path: Optional[str] = Field(default=None, description="Target canonical or link path")
    requested_by: str = Field(default="unknown", description="Producer tag")
    confirmed: Optional[bool] = Field(default=None, description="Confirmation for destructive actions")
    new_title: Optional[str] = Field(default=None, description="Title for rename commands")

    @property
    def is_destructive(self) -> bool:
        return self.type in DESTRUCTIVE_COMMANDS


class CommandCursor(BaseModel):
    """Durable consumer position in the command queue."""

    offset: int = Field(default=0, ge=0, description="Bytes of the queue already consumed")
    last_processed_id: Optional[str] = Field(default=None)
    processed_ids: List[str] = Field(default_factory=list, description="Recent ids (bounded)")
    compacting_offset: int = Field(
        default=0, ge=0, description="Bytes of the set-aside compacting file already consumed"
    )


class BatchResult(BaseModel):
    """Tally of a batch mutation; one failure never blocks the others."""

    attempted: int = 0
    succeeded: int = 0
    succeeded_ids: List[str] = Field(default_factory=list, description="Records that were removed")
    failures: List[str] = Field(default_factory=list, description="Truncated failure reasons")
    truncated_failures: int = Field(default=0, description="Failures omitted from `failures`")
    state: Optional[SyncState] = None

    def add_failure(self, reason: str) -> None:
        """Keep the first few reasons; count the rest."""
        if len(self.failures) < MAX_BATCH_FAILURES:
            self.failures.append(reason)
        else:
            self.truncated_failures += 1

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    @property
    def message(self) -> str:
        return f"Deleted {self.succeeded} of {self.attempted} selected skills."


class ValidationIssueCode(str, Enum):
    """Problems the package validator reports."""
    SKILL_MD_IS_SYMLINK = "skill_md_is_symlink"
    BROKEN_SKILL_MD_SYMLINK = "broken_skill_md_symlink"
    MISSING_SKILL_MD = "missing_skill_md"
    MISSING_MAIN_FILE = "missing_main_file"
    UNREADABLE_UTF8_MAIN_FILE = "unreadable_utf8_main_file"
    EMPTY_MAIN_FILE = "empty_main_file"
    MISSING_TITLE = "missing_title"
    BROKEN_REFERENCE = "broken_reference"


class ValidationIssue(BaseModel):
    """One problem found in a skill package."""

    code: ValidationIssueCode
    message: str
    source: str = Field(description="File the issue was found in")
    line: Optional[int] = Field(default=None, description="1-based line number")
    details: Optional[str] = None


class ValidationResult(BaseModel):
    """Every issue found in one package, in discovery order."""

    issues: List[ValidationIssue] = Field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.issues)

    @property
    def summary_text(self) -> str:
        count = len(self.issues)
        if count == 0:
            return "No issues found"
        return f"{count} issue{'s' if count != 1 else ''} found"
