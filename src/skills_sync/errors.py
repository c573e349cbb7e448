"""Exceptions raised by the sync engine and its lifecycle operations."""


class SkillsSyncError(Exception):
    """Base class for skills-sync errors."""


class ConfirmationRequiredError(SkillsSyncError):
    """A destructive operation was requested without explicit confirmation."""

    def __init__(self, operation: str, skill_name: str = ""):
        self.operation = operation
        self.skill_name = skill_name
        target = f" '{skill_name}'" if skill_name else ""
        super().__init__(f"Confirmation required to {operation}{target}")


class SkillNotFoundError(SkillsSyncError):
    """No record matches the requested id or path."""


class InvalidTransitionError(SkillsSyncError):
    """The record's lifecycle state does not allow the requested operation."""


class LifecycleConflictError(SkillsSyncError):
    """A lifecycle move would overwrite an existing real file or directory."""


class CommandQueueError(SkillsSyncError):
    """A queued command could not be mapped to an engine operation."""
