"""Small filesystem helpers shared by the stores and the reconciler."""

import os
import tempfile
import uuid
from pathlib import Path
from typing import Optional

from .constants import TEMP_MARKER


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """
    Write text to `path` so concurrent readers never see a partial file.

    The payload goes to a temporary file in the same directory, is fsynced,
    and then renamed over the destination.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=TEMP_MARKER, dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def temp_sibling(path: Path) -> Path:
    """Unique hidden sibling name used while swapping `path` atomically."""
    return path.with_name(f".{path.name}{TEMP_MARKER}-{os.getpid()}-{uuid.uuid4().hex[:8]}")


def atomic_symlink(target: Path, link_path: Path) -> None:
    """
    Point `link_path` at `target`, replacing whatever symlink is there.

    The link is created under a temporary sibling name and renamed over
    `link_path`, so readers see either the old entry or the new link.
    """
    tmp = temp_sibling(link_path)
    os.symlink(str(target), str(tmp), target_is_directory=target.is_dir())
    try:
        os.replace(tmp, link_path)
    except OSError:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def normalize(path: Path) -> Path:
    """Absolute, lexically normalized path (symlinks are not resolved)."""
    return Path(os.path.normpath(os.path.abspath(str(path.expanduser()))))


def link_destination(link_path: Path) -> Optional[Path]:
    """Absolute destination of a symlink, or None when it is not a link."""
    try:
        raw = os.readlink(link_path)
    except OSError:
        return None
    destination = Path(raw)
    if not destination.is_absolute():
        destination = link_path.parent / destination
    return normalize(destination)


def same_file(a: Path, b: Path) -> bool:
    """Whether two paths resolve to the same existing filesystem entry."""
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False
