"""Tests for the sync engine: full cycles, mutations and queued commands."""

import errno
import os
from pathlib import Path

import pytest

from skills_sync.config import PreferencesStore, SyncPreferences
from skills_sync.engine import SyncEngine
from skills_sync.errors import ConfirmationRequiredError, SkillNotFoundError
from skills_sync.lifecycle import LifecycleManager
from skills_sync.models import (
    CommandType,
    SkillScope,
    SyncCommand,
    SyncHealthStatus,
    SyncTrigger,
)


@pytest.fixture
def engine(settings):
    return SyncEngine(settings, lifecycle=LifecycleManager(settings, launcher=lambda argv: None))


def comparable(state):
    return (
        [r.model_dump() for r in state.skills],
        state.summary.model_dump(),
        state.top_skills,
    )


def test_cycle_links_sibling_directories(engine, settings, global_dir, skill_factory):
    """Test a cycle links the skill into sibling global directories."""
    claude = global_dir(".claude/skills")
    agents = global_dir(".agents/skills")
    skill_factory(claude, "demo")

    state = engine.run_sync()

    assert state.sync.status == SyncHealthStatus.OK
    assert state.sync.error is None
    assert state.sync.duration_ms is not None
    record = state.skills[0]
    assert record.canonical_source_path == str(claude / "demo")
    assert record.target_paths == [str(agents / "demo")]
    assert record.is_symlink_canonical
    assert os.readlink(agents / "demo") == str(claude / "demo")
    assert state.summary.global_count == 1
    assert state.top_skills == [record.id]
    assert engine.load_state() == state


def test_repeated_cycles_are_idempotent(engine, global_dir, workspace, skill_factory):
    """Test a second cycle changes nothing."""
    skill_factory(global_dir(".claude/skills"), "shared")
    global_dir(".codex/skills")
    repo = workspace("repo", ".claude/skills", ".agents/skills")
    skill_factory(repo / ".claude/skills", "local")
    skill_factory(repo / ".agents/skills", "shared")

    first = engine.run_sync()
    second = engine.run_sync()

    assert comparable(first) == comparable(second)


def test_one_record_per_key_and_canonical_never_a_target(engine, global_dir, workspace, skill_factory):
    """Test each key has one record and its source is never a target."""
    claude = global_dir(".claude/skills")
    global_dir(".agents/skills")
    skill_factory(claude, "alpha")
    for name in ("one", "two"):
        repo = workspace(name)
        skill_factory(repo / ".claude/skills", "alpha")
        skill_factory(repo / ".claude/skills", "beta")

    state = engine.run_sync()

    keys = [(r.scope, r.workspace, r.skill_key) for r in state.skills]
    assert len(keys) == len(set(keys))
    for record in state.skills:
        assert record.canonical_source_path not in record.target_paths
        assert not os.path.islink(record.canonical_source_path)


def test_lint_fix_conflict_keeps_workspace_copy(engine, global_dir, workspace, skill_factory):
    """Test a conflicting workspace copy is reported and kept."""
    claude = global_dir(".claude/skills")
    repo = workspace("repo")
    skill_factory(claude, "lint-fix")
    project_copy = skill_factory(repo / ".claude/skills", "lint-fix")

    state = engine.run_sync()

    assert state.summary.conflict_count == 1
    assert len(state.skills) == 1
    record = state.skills[0]
    assert record.canonical_source_path == str(claude / "lint-fix")
    assert record.conflict_paths == [str(project_copy)]
    assert record.is_symlink_canonical is False
    assert project_copy.is_dir() and not project_copy.is_symlink()


def test_review_helper_in_two_workspaces(engine, workspace, skill_factory):
    """Test project skills stay separate per workspace."""
    for name in ("one", "two"):
        skill_factory(workspace(name) / ".claude/skills", "review-helper")

    state = engine.run_sync()

    assert state.summary.conflict_count == 0
    assert state.summary.project_count == 2
    assert len({r.workspace for r in state.skills}) == 2
    assert all(r.target_paths == [] for r in state.skills)


def test_broken_links_are_pruned(engine, global_dir, tmp_path):
    """Test broken links nobody owns are removed."""
    claude = global_dir(".claude/skills")
    os.symlink(tmp_path / "nowhere", claude / "ghost")

    state = engine.run_sync()

    assert state.skills == []
    assert not os.path.lexists(claude / "ghost")


def test_failed_cycle_keeps_previous_records(engine, global_dir, skill_factory, monkeypatch):
    """Test a failed cycle keeps the previous records."""
    skill_factory(global_dir(".claude/skills"), "demo")
    good = engine.run_sync()

    def explode(roots):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(engine.scanner, "scan", explode)
    failed = engine.run_sync(SyncTrigger.TIMER)

    assert failed.sync.status == SyncHealthStatus.FAILED
    assert failed.sync.error == "disk on fire"
    assert failed.skills == good.skills


def test_link_failures_mark_cycle_failed(engine, global_dir, skill_factory, monkeypatch):
    """Test link errors mark the cycle failed."""
    claude = global_dir(".claude/skills")
    agents = global_dir(".agents/skills")
    skill_factory(claude, "demo")

    def deny(target, link_path):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr("skills_sync.reconciler.atomic_symlink", deny)
    state = engine.run_sync()

    assert state.sync.status == SyncHealthStatus.FAILED
    assert state.sync.error == f"{agents / 'demo'}: Permission denied"
    assert state.skills[0].is_symlink_canonical is False


def test_unreadable_workspace_does_not_fail_cycle(engine, home, global_dir, workspace, skill_factory, monkeypatch):
    """A locked skill directory in one repo leaves the rest of the snapshot intact."""
    skill_factory(global_dir(".claude/skills"), "demo")
    locked = workspace("locked")
    original = Path.exists

    def guarded(self, *args, **kwargs):
        if locked in self.parents:
            raise PermissionError(errno.EACCES, "Permission denied", str(self))
        return original(self, *args, **kwargs)

    monkeypatch.setattr(Path, "exists", guarded)
    state = engine.run_sync()

    assert state.sync.status == SyncHealthStatus.OK
    assert [r.name for r in state.skills] == ["demo"]


def test_non_skill_entry_at_target_is_a_conflict(engine, global_dir, skill_factory):
    """A stray directory where a link belongs is reported instead of silently skipped."""
    claude = global_dir(".claude/skills")
    agents = global_dir(".agents/skills")
    skill_factory(claude, "demo")
    (agents / "demo").mkdir()
    (agents / "demo" / "notes.txt").write_text("not a skill")

    state = engine.run_sync()

    assert state.sync.status == SyncHealthStatus.OK
    assert state.summary.conflict_count == 1
    record = state.skills[0]
    assert record.conflict_paths == [str(agents / "demo")]
    assert record.is_symlink_canonical is False
    assert (agents / "demo" / "notes.txt").exists()
    assert comparable(engine.run_sync()) == comparable(state)


def test_starred_skills_lead_top_skills(engine, settings, global_dir, skill_factory):
    """Test starred skills come first in top skills."""
    claude = global_dir(".claude/skills")
    for name in ("alpha", "beta", "gamma"):
        skill_factory(claude, name)
    ids = {r.name: r.id for r in engine.run_sync().skills}

    PreferencesStore(settings).save(SyncPreferences(starred_skill_ids=[ids["gamma"]]))
    state = engine.run_sync()

    assert state.top_skills == [ids["gamma"], ids["alpha"], ids["beta"]]


# ========== Mutations ==========


def test_delete_without_confirmation_changes_nothing(engine, settings, global_dir, skill_factory):
    """Test delete without confirmation leaves everything as is."""
    claude = global_dir(".claude/skills")
    global_dir(".agents/skills")
    skill_factory(claude, "demo")
    state = engine.run_sync()
    snapshot = settings.state_path.read_text()

    with pytest.raises(ConfirmationRequiredError):
        engine.delete_canonical_source(state.skills[0].id, confirmed=False)

    assert (claude / "demo").is_dir()
    assert settings.state_path.read_text() == snapshot


def test_delete_moves_source_and_prunes_links(engine, settings, global_dir, skill_factory):
    """Test delete trashes the source and removes its links."""
    claude = global_dir(".claude/skills")
    agents = global_dir(".agents/skills")
    skill_factory(claude, "demo")
    record = engine.run_sync().skills[0]

    state = engine.delete_canonical_source(record.id, confirmed=True)

    assert state.skills == []
    assert (settings.trash_dir / "demo").is_dir()
    assert not os.path.lexists(agents / "demo")


def test_archive_restore_round_trip(engine, settings, global_dir, skill_factory):
    """Test an archived skill can be restored."""
    claude = global_dir(".claude/skills")
    agents = global_dir(".agents/skills")
    skill_factory(claude, "demo")
    original = engine.run_sync().skills[0]

    archived_state = engine.archive_skill(original.id, confirmed=True)

    assert len(archived_state.skills) == 1
    archived = archived_state.skills[0]
    assert not archived.is_active
    assert archived.exists
    assert archived.archived_bundle_path.startswith(str(settings.archive_root))
    assert not os.path.lexists(agents / "demo")
    assert archived_state.top_skills == []

    restored_state = engine.restore_skill(archived.id)

    assert len(restored_state.skills) == 1
    restored = restored_state.skills[0]
    assert restored.id == original.id
    assert restored.scope == original.scope
    assert restored.workspace == original.workspace
    assert restored.canonical_source_path == original.canonical_source_path
    assert restored.target_paths == original.target_paths
    assert restored.is_symlink_canonical
    assert os.readlink(agents / "demo") == str(claude / "demo")


def test_make_global_promotes_project_skill(engine, global_dir, workspace, skill_factory):
    """Test make-global moves a project skill to the global root."""
    claude = global_dir(".claude/skills")
    repo = workspace("repo")
    old_location = skill_factory(repo / ".claude/skills", "helper")
    record = engine.run_sync().skills[0]
    assert record.scope == SkillScope.PROJECT

    with pytest.raises(ConfirmationRequiredError):
        engine.make_global(record.id, confirmed=False)
    state = engine.make_global(record.id, confirmed=True)

    assert len(state.skills) == 1
    promoted = state.skills[0]
    assert promoted.scope == SkillScope.GLOBAL
    assert promoted.canonical_source_path == str(claude / "helper")
    assert str(old_location) in promoted.target_paths
    assert old_location.is_symlink()
    assert promoted.is_symlink_canonical


def test_rename_updates_display_name(engine, global_dir, skill_factory):
    """Test rename changes the record name."""
    skill_factory(global_dir(".claude/skills"), "demo")
    record = engine.run_sync().skills[0]

    state = engine.rename_skill(record.id, "Demo Helper")

    assert state.skills[0].id == record.id
    assert state.skills[0].name == "Demo Helper"


def test_validate_skill_resolves_by_path(engine, global_dir, skill_factory):
    """Validation finds the record from a target path and checks its source."""
    claude = global_dir(".claude/skills")
    agents = global_dir(".agents/skills")
    skill = skill_factory(claude, "demo")
    (skill / "SKILL.md").write_text("---\nname: demo\n---\nSee `scripts/go.sh`.\n", encoding="utf-8")
    engine.run_sync()

    result = engine.validate_skill(str(agents / "demo"))

    assert [i.details for i in result.issues] == ["scripts/go.sh"]
    assert result.issues[0].source == str(skill / "SKILL.md")


def test_resolve_by_path(engine, global_dir, skill_factory):
    """Test a record can be found by its path."""
    claude = global_dir(".claude/skills")
    skill_factory(claude, "demo")
    record = engine.run_sync().skills[0]

    assert engine.resolve(str(claude / "demo")).id == record.id
    with pytest.raises(SkillNotFoundError):
        engine.resolve("no-such-id")


def test_delete_many_reports_tally(engine, global_dir, skill_factory):
    """Test batch delete reports successes and failures."""
    claude = global_dir(".claude/skills")
    for name in ("one", "two"):
        skill_factory(claude, name)
    ids = [r.id for r in engine.run_sync().skills]

    result = engine.delete_many(ids + ["missing-id"], confirmed=True)

    assert result.attempted == 3
    assert result.succeeded == 2
    assert result.failures == ["missing-id: not found"]
    assert result.message == "Deleted 2 of 3 selected skills."
    assert result.state.skills == []


def test_delete_many_requires_confirmation(engine, global_dir, skill_factory):
    """Test batch delete needs confirmation."""
    skill_factory(global_dir(".claude/skills"), "one")
    ids = [r.id for r in engine.run_sync().skills]

    with pytest.raises(ConfirmationRequiredError):
        engine.delete_many(ids, confirmed=False)
    assert len(engine.load_state().skills) == 1


# ========== Command queue ==========


def test_queued_sync_now_runs_a_cycle(engine, global_dir, skill_factory):
    """Test a queued sync_now runs a cycle."""
    skill_factory(global_dir(".claude/skills"), "demo")
    engine.enqueue(SyncCommand(type=CommandType.SYNC_NOW, requested_by="widget"))

    result = engine.drain_commands()

    assert len(result.processed) == 1
    assert len(engine.load_state().skills) == 1


def test_queued_delete_from_untrusted_requester_is_refused(engine, global_dir, skill_factory):
    """Test a queued delete from an untrusted producer is refused."""
    claude = global_dir(".claude/skills")
    skill_factory(claude, "demo")
    record = engine.run_sync().skills[0]
    engine.enqueue(
        SyncCommand(type=CommandType.DELETE, skill_id=record.id, requested_by="widget", confirmed=True)
    )
    engine.enqueue(SyncCommand(type=CommandType.DELETE, skill_id=record.id, requested_by="app"))

    result = engine.drain_commands()

    assert len(result.failed) == 2
    assert (claude / "demo").is_dir()
    assert engine.drain_commands().failed == []


def test_queued_confirmed_delete_from_trusted_requester(engine, global_dir, skill_factory):
    """Test a confirmed delete from a trusted producer runs."""
    claude = global_dir(".claude/skills")
    skill_factory(claude, "demo")
    record = engine.run_sync().skills[0]
    engine.enqueue(
        SyncCommand(type=CommandType.DELETE, skill_path=str(claude / "demo"), requested_by="app", confirmed=True)
    )

    result = engine.drain_commands()

    assert len(result.processed) == 1
    assert engine.load_state().find(record.id) is None


def test_process_rename_command(engine, global_dir, skill_factory):
    """Test a rename command updates the title."""
    skill_factory(global_dir(".claude/skills"), "demo")
    record = engine.run_sync().skills[0]

    state = engine.process_command(
        SyncCommand(type=CommandType.RENAME, skill_id=record.id, new_title="Renamed", requested_by="widget")
    )

    assert state.skills[0].name == "Renamed"
