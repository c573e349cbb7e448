"""Tests for manifest title handling."""

import pytest

from skills_sync.manifest import find_manifest, read_title, split_frontmatter, write_title
from skills_sync.models import PackageForm


def test_split_frontmatter():
    """Test front matter is split from the body."""
    data, body = split_frontmatter("---\nname: demo\ntags: [a, b]\n---\nBody text\n")

    assert data == {"name": "demo", "tags": ["a", "b"]}
    assert body == "Body text\n"


def test_split_frontmatter_invalid_yaml():
    """Test invalid YAML counts as no front matter."""
    content = "---\nname: [unclosed\n---\nBody\n"
    assert split_frontmatter(content) == ({}, content)


def test_read_title_prefers_title_over_name(tmp_path, skill_factory):
    """Test title wins over name."""
    skill = skill_factory(tmp_path, "lint-fix", title="Lint Fixer")
    assert read_title(skill, PackageForm.DIRECTORY) == "Lint Fixer"

    plain = skill_factory(tmp_path, "plain")
    assert read_title(plain, PackageForm.DIRECTORY) == "plain"


def test_read_title_without_manifest(tmp_path):
    """Test a package without a manifest has no title."""
    (tmp_path / "empty").mkdir()
    assert find_manifest(tmp_path / "empty") is None
    assert read_title(tmp_path / "empty", PackageForm.DIRECTORY) is None


def test_write_title_replaces_existing_line(tmp_path, skill_factory):
    """Test an existing title line is replaced."""
    skill = skill_factory(tmp_path, "demo", title="Old")

    manifest = write_title(skill, PackageForm.DIRECTORY, "New: Title")

    content = manifest.read_text()
    assert "name: demo" in content
    assert "Old" not in content
    assert read_title(skill, PackageForm.DIRECTORY) == "New: Title"
    assert content.endswith("Instructions.\n")


def test_write_title_inserts_into_frontmatter(tmp_path, skill_factory):
    """Test a title is added to existing front matter."""
    skill = skill_factory(tmp_path, "demo")

    write_title(skill, PackageForm.DIRECTORY, "Demo Skill")

    data, _ = split_frontmatter((skill / "SKILL.md").read_text())
    assert data == {"title": "Demo Skill", "name": "demo"}


def test_write_title_creates_frontmatter_for_single_file(tmp_path):
    """Test front matter is created when there is none."""
    path = tmp_path / "notes.md"
    path.write_text("# Notes\n")

    write_title(path, PackageForm.SINGLE_FILE, "Notes")

    content = path.read_text()
    assert content.startswith('---\ntitle: "Notes"\n---\n')
    assert content.endswith("# Notes\n")
    assert read_title(path, PackageForm.SINGLE_FILE) == "Notes"


def test_write_title_missing_single_file(tmp_path):
    """Test writing to a missing single file fails."""
    with pytest.raises(FileNotFoundError):
        write_title(tmp_path / "gone.md", PackageForm.SINGLE_FILE, "x")
