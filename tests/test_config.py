"""Tests for skills-sync configuration."""

import json
from pathlib import Path

from skills_sync.config import PreferencesStore, SyncPreferences, SyncSettings


def test_settings_from_env(monkeypatch, tmp_path):
    """Test loading settings from environment."""
    monkeypatch.setenv("SKILLS_SYNC_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("SKILLS_SYNC_GROUP_DIR", str(tmp_path / "group"))
    monkeypatch.setenv("SKILLS_SYNC_DEBOUNCE_SECONDS", "1.5")

    settings = SyncSettings()
    assert settings.runtime_dir == tmp_path / "group"
    assert settings.state_path == tmp_path / "group" / "state.json"
    assert settings.command_queue_path == tmp_path / "group" / "commands.jsonl"
    assert settings.debounce_seconds == 1.5


def test_settings_defaults(home):
    """Test default runtime layout."""
    settings = SyncSettings(home=home)

    assert settings.runtime_dir == home / ".config" / "ai-agents" / "skillssync"
    assert settings.preferences_path.name == "settings.json"
    assert settings.archive_root == settings.runtime_dir / "archives"
    assert settings.resolved_dev_root == home / "Dev"
    assert settings.resolved_worktrees_root == home / ".codex" / "worktrees"
    assert settings.discovery_interval_seconds == 30
    assert settings.max_discovery_depth == 3


def test_settings_global_roots_order(home):
    """Test global roots come in the fixed agent order."""
    settings = SyncSettings(home=home)
    assert settings.global_roots() == [
        home / ".claude" / "skills",
        home / ".agents" / "skills",
        home / ".codex" / "skills",
    ]


def test_blank_group_dir_falls_back(home):
    """Test a blank group dir falls back to the default runtime dir."""
    settings = SyncSettings(home=home, group_dir=Path("  "))
    assert settings.runtime_dir == home / ".config" / "ai-agents" / "skillssync"


def test_settings_from_env_file(tmp_path):
    """Test that a .env file in the working directory is honored."""
    (tmp_path / ".env").write_text(f"SKILLS_SYNC_GROUP_DIR={tmp_path / 'from-dotenv'}\n")
    settings = SyncSettings()
    assert settings.runtime_dir == tmp_path / "from-dotenv"


def test_preferences_missing_file_uses_defaults(tmp_path):
    """Test missing preferences give the defaults."""
    prefs = SyncPreferences.load_from_file(tmp_path / "missing.json")

    assert prefs.workspace_discovery_roots == []
    assert prefs.trusted_requesters == ["app", "cli"]
    assert prefs.auto_migrate_to_canonical_source is False


def test_preferences_invalid_file_uses_defaults(tmp_path):
    """Test unreadable preferences give the defaults."""
    path = tmp_path / "settings.json"
    path.write_text("{not json")
    assert SyncPreferences.load_from_file(path) == SyncPreferences()

    path.write_text(json.dumps({"starred_skill_ids": "not-a-list"}))
    assert SyncPreferences.load_from_file(path) == SyncPreferences()


def test_preferences_round_trip(settings):
    """Test saved preferences load back unchanged."""
    store = PreferencesStore(settings)
    prefs = SyncPreferences(
        workspace_discovery_roots=["/opt/work"],
        starred_skill_ids=["abc"],
        trusted_requesters=["app"],
    )
    store.save(prefs)

    assert settings.preferences_path.exists()
    assert store.load() == prefs


def test_custom_discovery_roots_are_normalized():
    """Test custom discovery roots are expanded and normalized."""
    prefs = SyncPreferences(
        workspace_discovery_roots=[
            "/opt/work/",
            "",
            "   ",
            "relative/path",
            "/opt/work",
            "/srv/../srv/repos",
        ]
    )
    assert prefs.custom_discovery_roots() == [Path("/opt/work"), Path("/srv/repos")]
