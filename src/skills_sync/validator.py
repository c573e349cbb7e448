"""
Validator - structural checks on a skill package.

Checks run in order and stop at the first problem that makes the main
file unusable (missing, broken link, unreadable, empty). A readable file
is then checked for a title and for relative references to files that
do not exist inside the package.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .constants import MANIFEST_FILENAMES
from .manifest import split_frontmatter
from .models import (
    PackageForm,
    SkillRecord,
    ValidationIssue,
    ValidationIssueCode,
    ValidationResult,
)

logger = logging.getLogger(__name__)

REFERENCE_PATTERNS = [
    re.compile(r"`((?:resources|references|scripts|assets)/[^`]+)`"),
    re.compile(r"\[[^\]]+\]\(([^)]+)\)"),
    re.compile(r"\bopen\s+([A-Za-z0-9_./-]+)"),
]

WRAPPING_CHARS = "\"'`<>"
TRAILING_PUNCTUATION = ".,;:"


def normalize_reference(raw: str) -> Optional[str]:
    """
    Relative package path for a reference, or None when it is not one.

    URLs, absolute paths and same-document anchors are not package paths.
    """
    value = raw.strip().lstrip(WRAPPING_CHARS).rstrip(WRAPPING_CHARS + TRAILING_PUNCTUATION)
    value = value.split("#", 1)[0].strip()
    if not value or value.startswith(("/", "~")) or "://" in value or value.startswith("mailto:"):
        return None
    while value.startswith("./"):
        value = value[2:]
    return value or None


def find_references(content: str) -> Dict[str, int]:
    """Relative references mapped to the first line they appear on."""
    references: Dict[str, int] = {}
    for number, line in enumerate(content.splitlines(), start=1):
        for pattern in REFERENCE_PATTERNS:
            for match in pattern.finditer(line):
                path = normalize_reference(match.group(1))
                if path is not None and path not in references:
                    references[path] = number
    return references


def has_title(frontmatter: Dict[str, Any], body: str) -> bool:
    for key in ("title", "name"):
        value = frontmatter.get(key)
        if isinstance(value, (str, int, float)) and str(value).strip():
            return True
    return any(
        line.startswith("# ") and line[2:].strip() for line in body.splitlines()
    )


class SkillValidator:
    """Reports problems in a skill package without changing it."""

    def validate(self, record: SkillRecord) -> ValidationResult:
        path = Path(record.canonical_source_path)
        if not record.is_active and record.archived_bundle_path:
            path = Path(record.archived_bundle_path)
        return self.validate_package(path, record.package_type)

    def validate_package(self, path: Path, form: PackageForm) -> ValidationResult:
        """
        Check one package on disk.

        Args:
            path: Package directory, or the file itself for single-file packages
            form: Package form

        Returns:
            ValidationResult listing every issue found
        """
        main_file, root = self._locate(path, form)
        source = str(main_file)
        issues: List[ValidationIssue] = []
        result = ValidationResult(issues=issues)

        if os.path.islink(main_file):
            if os.path.exists(main_file):
                issues.append(ValidationIssue(
                    code=ValidationIssueCode.SKILL_MD_IS_SYMLINK,
                    message="Main file is a symlink",
                    source=source,
                    details=os.readlink(main_file),
                ))
            else:
                issues.append(ValidationIssue(
                    code=ValidationIssueCode.BROKEN_SKILL_MD_SYMLINK,
                    message="Main file is a broken symlink",
                    source=source,
                    details=os.readlink(main_file),
                ))
                return self._finish(path, result)

        if not os.path.isfile(main_file):
            if form == PackageForm.SINGLE_FILE:
                code, message = ValidationIssueCode.MISSING_MAIN_FILE, "Skill file is missing"
            else:
                code, message = ValidationIssueCode.MISSING_SKILL_MD, f"{MANIFEST_FILENAMES[0]} is missing"
            issues.append(ValidationIssue(code=code, message=message, source=source))
            return self._finish(path, result)

        try:
            content = main_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            issues.append(ValidationIssue(
                code=ValidationIssueCode.UNREADABLE_UTF8_MAIN_FILE,
                message="Main file cannot be read as UTF-8",
                source=source,
                details=str(e),
            ))
            return self._finish(path, result)

        if not content.strip():
            issues.append(ValidationIssue(
                code=ValidationIssueCode.EMPTY_MAIN_FILE,
                message="Main file is empty",
                source=source,
            ))
            return self._finish(path, result)

        content = content.replace("\r\n", "\n")
        frontmatter, body = split_frontmatter(content)
        if not has_title(frontmatter, body):
            issues.append(ValidationIssue(
                code=ValidationIssueCode.MISSING_TITLE,
                message="No title or name in front matter and no top-level heading",
                source=source,
            ))

        for reference, line in sorted(find_references(content).items()):
            if not os.path.exists(root / reference):
                issues.append(ValidationIssue(
                    code=ValidationIssueCode.BROKEN_REFERENCE,
                    message=f"Referenced file does not exist: {reference}",
                    source=source,
                    line=line,
                    details=reference,
                ))

        return self._finish(path, result)

    @staticmethod
    def _locate(path: Path, form: PackageForm) -> Tuple[Path, Path]:
        """(main file, directory references resolve against)."""
        if form == PackageForm.SINGLE_FILE:
            return path, path.parent
        for filename in MANIFEST_FILENAMES:
            candidate = path / filename
            if os.path.lexists(candidate):
                return candidate, path
        return path / MANIFEST_FILENAMES[0], path

    @staticmethod
    def _finish(path: Path, result: ValidationResult) -> ValidationResult:
        if result.has_warnings:
            logger.info(f"{path}: {result.summary_text}")
        return result
