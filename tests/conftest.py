"""Shared fixtures for skills-sync tests."""

import os
from pathlib import Path
from typing import Optional

import pytest

from skills_sync.config import SyncSettings


def write_skill(directory: Path, name: str, title: Optional[str] = None) -> Path:
    """Create a directory skill package with a SKILL.md manifest."""
    skill = directory / name
    skill.mkdir(parents=True, exist_ok=True)
    lines = ["---", f"name: {name}"]
    if title:
        lines.append(f"title: {title}")
    lines.append("---")
    (skill / "SKILL.md").write_text("\n".join(lines) + "\n\nInstructions.\n", encoding="utf-8")
    return skill


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep the developer's environment and .env file out of the tests."""
    for name in list(os.environ):
        if name.startswith("SKILLS_SYNC_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def home(tmp_path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def make_settings(tmp_path, home):
    def factory(**overrides) -> SyncSettings:
        values = dict(
            home=home,
            group_dir=tmp_path / "runtime",
            dev_root=home / "Dev",
            worktrees_root=home / ".codex" / "worktrees",
            trash_dir=tmp_path / "trash",
            discovery_interval_seconds=3600,
        )
        values.update(overrides)
        return SyncSettings(**values)

    return factory


@pytest.fixture
def settings(make_settings) -> SyncSettings:
    return make_settings()


@pytest.fixture
def skill_factory():
    return write_skill


@pytest.fixture
def global_dir(home):
    """Create (if needed) and return a global skill directory."""
    def factory(rel: str = ".claude/skills") -> Path:
        path = home / rel
        path.mkdir(parents=True, exist_ok=True)
        return path

    return factory


@pytest.fixture
def workspace(home):
    """Create a workspace under ~/Dev with the given skill directories."""
    def factory(name: str, *rels: str) -> Path:
        root = home / "Dev" / name
        for rel in rels or (".claude/skills",):
            (root / rel).mkdir(parents=True, exist_ok=True)
        return root

    return factory
