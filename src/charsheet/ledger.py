"""Advancement Ledger: per-level record of what the engine applied.

``character.advancement[str(level)]`` maps choice ids to picked option ids.
A non-empty record is the applied marker: the level's progression node has
been folded into the character's features, spells and infusions. A node with
grants but no choices records its grant ids under ``GRANTS_KEY`` so the
marker is still present.

Functions here mutate the character they are given; the applier calls them
on its own working copy.
"""

from __future__ import annotations

import logging
from enum import Enum

from .models import AdvancementRecord, Character

logger = logging.getLogger(__name__)


# Ledger key for nodes that only grant features
GRANTS_KEY = "__grants__"


class LevelState(str, Enum):
    """A character's relationship to one class level."""
    UNVISITED = "unvisited"
    APPLIED = "applied"
    # Only exists inside a forced re-apply; never returned by level_state()
    REAPPLYING = "reapplying"


def is_applied(character: Character, level: int) -> bool:
    """Whether the progression node for ``level`` is already folded in."""
    return bool(character.advancement.get(str(level)))


def level_state(character: Character, level: int) -> LevelState:
    return LevelState.APPLIED if is_applied(character, level) else LevelState.UNVISITED


def applied_levels(character: Character) -> list[int]:
    """Levels with a non-empty ledger record, ascending."""
    return sorted(
        int(key) for key, record in character.advancement.items()
        if key.isdigit() and record
    )


def pending_levels(character: Character, target_level: int) -> list[int]:
    """Levels above the current one, up to ``target_level``, not yet applied.

    Resuming an interrupted multi-level advance only has to process these.
    """
    return [
        lvl for lvl in range(character.level + 1, min(target_level, 20) + 1)
        if not is_applied(character, lvl)
    ]


def record_applied(character: Character, level: int, picks_by_choice_id: AdvancementRecord) -> None:
    """Write the whole ledger record for ``level``.

    Raises:
        ValueError: If the record is empty, since an empty record would not
            mark the level as applied.
    """
    if not picks_by_choice_id:
        raise ValueError(f"Refusing to record an empty advancement record for level {level}")
    character.advancement[str(level)] = {
        choice_id: list(picks) for choice_id, picks in picks_by_choice_id.items()
    }


def revert(character: Character, level: int) -> AdvancementRecord | None:
    """Undo exactly what applying ``level`` did.

    Removes engine-owned feature entries at that level (manual entries stay),
    removes every recorded option id from cantrips, known spells and learned
    infusions, then deletes the record. No-op when the level has no record.

    Returns:
        The removed record, or None if there was nothing to revert.
    """
    key = str(level)
    record = character.advancement.get(key)
    if not record:
        return None

    character.features = [
        f for f in character.features
        if not (f.level == level and f.is_engine_owned)
    ]

    picked = {
        option_id
        for choice_id, picks in record.items() if choice_id != GRANTS_KEY
        for option_id in picks
    }
    character.spells.cantrips -= picked
    character.spells.known -= picked
    character.infusions.learned -= picked

    del character.advancement[key]
    logger.debug(f"Reverted level {level} for '{character.name}': {sorted(picked)}")
    return record


__all__ = [
    "GRANTS_KEY",
    "LevelState",
    "applied_levels",
    "is_applied",
    "level_state",
    "pending_levels",
    "record_applied",
    "revert",
]
