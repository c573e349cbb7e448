"""
Manifest helpers - read and update a skill's display title.

Titles live in the YAML front matter of the package's main markdown file
(`SKILL.md` for directory packages, the file itself for single-file ones).
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .constants import MANIFEST_FILENAMES
from .fsutil import atomic_write_text
from .models import PackageForm

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)
TITLE_LINE_RE = re.compile(r"^title\s*:.*$", re.MULTILINE)


def find_manifest(path: Path) -> Optional[Path]:
    """Manifest file inside a directory package, if any."""
    for filename in MANIFEST_FILENAMES:
        candidate = path / filename
        if candidate.is_file():
            return candidate
    return None


def manifest_path(path: Path, form: PackageForm) -> Optional[Path]:
    if form == PackageForm.SINGLE_FILE:
        return path if path.is_file() else None
    return find_manifest(path)


def split_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """
    Split markdown content into (front matter, body).

    Invalid YAML is treated as no front matter.
    """
    match = FRONTMATTER_RE.match(content)
    if not match:
        return {}, content
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        return {}, content
    if not isinstance(data, dict):
        return {}, content
    return data, content[match.end():]


def read_title(path: Path, form: PackageForm) -> Optional[str]:
    """Display title from front matter: `title`, then `name`."""
    manifest = manifest_path(path, form)
    if manifest is None:
        return None
    try:
        content = manifest.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Cannot read manifest {manifest}: {e}")
        return None

    frontmatter, _ = split_frontmatter(content)
    for key in ("title", "name"):
        value = frontmatter.get(key)
        if isinstance(value, (str, int, float)) and str(value).strip():
            return str(value).strip()
    return None


def write_title(path: Path, form: PackageForm, title: str) -> Path:
    """
    Set the `title` key in the manifest's front matter.

    Other front matter lines are preserved verbatim; front matter is created
    when the manifest has none.

    Returns:
        Path of the manifest that was written
    """
    manifest = manifest_path(path, form)
    if manifest is None:
        if form == PackageForm.SINGLE_FILE:
            raise FileNotFoundError(f"Skill file not found: {path}")
        manifest = path / MANIFEST_FILENAMES[0]
        content = ""
    else:
        content = manifest.read_text(encoding="utf-8")

    title_line = f"title: {json.dumps(title, ensure_ascii=False)}"
    match = FRONTMATTER_RE.match(content)
    if match:
        block = match.group(1)
        if TITLE_LINE_RE.search(block):
            new_block = TITLE_LINE_RE.sub(lambda _: title_line, block, count=1)
        else:
            new_block = f"{title_line}\n{block}" if block.strip() else title_line
        start, end = match.span(1)
        updated = content[:start] + new_block + content[end:]
    else:
        updated = f"---\n{title_line}\n---\n\n{content}"

    atomic_write_text(manifest, updated)
    logger.info(f"Updated title in {manifest}")
    return manifest
