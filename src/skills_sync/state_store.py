"""
Snapshot storage - the only channel front-ends read from.

Saves replace the whole file atomically; loads never fail outward.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import ValidationError

from .constants import STATE_SCHEMA_VERSION, TOP_SKILLS_LIMIT
from .fsutil import atomic_write_text
from .models import SkillRecord, SkillScope, SyncState

logger = logging.getLogger(__name__)


def _fallback_order(record: SkillRecord):
    return (0 if record.scope == SkillScope.GLOBAL else 1, record.name.lower())


def order_top_skills(
    records: List[SkillRecord],
    preferred_ids: Iterable[str],
    limit: int = TOP_SKILLS_LIMIT,
) -> List[SkillRecord]:
    """
    Curated ordering for space-constrained consumers.

    Preferred ids come first in their given order (unknown ids are skipped);
    the rest is padded with the remaining records, global before project,
    then by case-insensitive name.
    """
    index = {record.id: record for record in records}
    preferred: List[SkillRecord] = []
    seen = set()
    for skill_id in preferred_ids:
        record = index.get(skill_id)
        if record is None or skill_id in seen:
            continue
        preferred.append(record)
        seen.add(skill_id)
        if len(preferred) >= limit:
            return preferred

    fallback = sorted((r for r in records if r.id not in seen), key=_fallback_order)
    return (preferred + fallback)[:limit]


def compute_top_skill_ids(records: List[SkillRecord], preferred_ids: Iterable[str]) -> List[str]:
    """Ids persisted in the snapshot's `top_skills` list (active records only)."""
    active = [r for r in records if r.is_active]
    return [r.id for r in order_top_skills(active, preferred_ids)]


class SyncStateStore:
    """
    Reads and writes the snapshot document.

    Features:
    - Atomic replace on save (temp file in the same directory + rename)
    - Empty state on missing, unreadable or mismatched snapshots
    """

    def __init__(self, state_path: Path):
        self.state_path = Path(state_path)

    def load(self) -> SyncState:
        """Load the snapshot; returns `SyncState.empty()` instead of raising."""
        try:
            raw = self.state_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SyncState.empty()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read snapshot {self.state_path}: {e}")
            return SyncState.empty()

        try:
            state = SyncState.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Ignoring invalid snapshot {self.state_path}: {e}")
            return SyncState.empty()

        if state.version != STATE_SCHEMA_VERSION:
            logger.warning(
                f"Snapshot schema {state.version} does not match {STATE_SCHEMA_VERSION}, ignoring"
            )
            return SyncState.empty()
        return state

    def save(self, state: SyncState) -> None:
        """Write the full snapshot atomically."""
        payload = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True)
        atomic_write_text(self.state_path, payload + "\n")
        logger.debug(f"Saved snapshot with {len(state.skills)} skill(s) to {self.state_path}")

    def top_skills(self, state: Optional[SyncState] = None) -> List[SkillRecord]:
        """Up to six records, honoring the snapshot's preferred order."""
        if state is None:
            state = self.load()
        return order_top_skills(state.skills, state.top_skills)
