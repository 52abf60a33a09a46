"""Level-Up Engine: fold ruleset progression into a character, one level at a time.

``apply_level`` is the command: given validated selections for every choice
of a progression node, it returns an updated copy of the character with the
node's grants and picks applied and the ledger entry written. Applying an
already-applied level is a no-op unless ``force`` is set, in which case the
previous application is reverted first.

``LevelUpEngine`` drives the multi-level loop above it: collect picks for a
level, apply, persist, move on. Levels committed before a cancellation stay
applied.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel, Field

from .choices import options_for, resolve_pool
from .ledger import GRANTS_KEY, is_applied, pending_levels, record_applied, revert
from .models import Character, FeatureEntry, clamp, normalize_character
from .rulesets.models import ChoiceSpec, Option, ProgressionNode, Ruleset

if TYPE_CHECKING:
    from .storage import CharacterStorage

logger = logging.getLogger(__name__)


MAX_LEVEL = 20

# (choice, candidate options, level) -> picked option ids, or None to cancel
PickCallback = Callable[[ChoiceSpec, list[Option], int], list[str] | None]


class LevelUpError(Exception):
    """Raised when level-up cannot proceed."""


class ProgressionMissingError(LevelUpError):
    """The ruleset defines no progression node for the class at this level."""

    def __init__(self, class_id: str | None, level: int, available_levels: list[int]):
        self.class_id = class_id
        self.level = level
        self.available_levels = available_levels
        available = ", ".join(map(str, available_levels)) or "(none)"
        super().__init__(
            f"No progression found for class '{class_id}' at level {level}. "
            f"Progression levels available: {available}"
        )


class ChoiceCountMismatchError(LevelUpError):
    """A selection does not contain exactly ``choice.count`` option ids."""

    def __init__(self, choice: ChoiceSpec, picked: int):
        self.choice_id = choice.id
        self.expected = choice.count
        self.picked = picked
        super().__init__(
            f"Pick exactly {choice.count} for '{choice.label}'. You picked {picked}."
        )


class LevelUpPlan(BaseModel):
    """What reaching a level will grant and which choices must be made."""

    class_id: str | None
    level: int
    grants: list[str] = Field(default_factory=list)
    choices: list[ChoiceSpec] = Field(default_factory=list)
    node_missing: bool = False


class LevelUpResult(BaseModel):
    """Summary of a multi-level advance."""

    character: Character
    start_level: int
    new_level: int
    levels_applied: list[int] = Field(default_factory=list)
    features_added: list[str] = Field(default_factory=list)
    cancelled: bool = False
    summary: str


# ----------------------------------------------------------------------
# Planning
# ----------------------------------------------------------------------

def build_level_up_plan(ruleset: Ruleset, character: Character, target_level: int) -> LevelUpPlan:
    """Describe the progression node for ``target_level`` of the character's class.

    An absent class or node gives an empty plan with ``node_missing`` set, so
    callers can show "no progression defined at this level".
    """
    node = ruleset.get_progression_node(character.class_id, target_level)
    if node is None:
        return LevelUpPlan(class_id=character.class_id, level=target_level, node_missing=True)
    return LevelUpPlan(
        class_id=character.class_id,
        level=target_level,
        grants=list(node.grants),
        choices=list(node.choices),
    )


def plan_levels(ruleset: Ruleset, character: Character, target_level: int) -> list[LevelUpPlan]:
    """One plan per level still to be processed on the way to ``target_level``."""
    return [
        build_level_up_plan(ruleset, character, lvl)
        for lvl in pending_levels(character, target_level)
    ]


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def validate_selections(node: ProgressionNode, selections: dict[str, list[str]] | None) -> dict[str, list[str]]:
    """Check that every choice of ``node`` has exactly ``count`` picks.

    Returns:
        The selections restricted to the node's choice ids, in declaration order.

    Raises:
        ChoiceCountMismatchError: On the first choice with a missing or
            wrongly sized selection.
    """
    selections = selections or {}
    validated: dict[str, list[str]] = {}
    for choice in node.choices:
        picks = list(selections.get(choice.id) or [])
        if len(picks) != choice.count or len(set(picks)) != len(picks):
            raise ChoiceCountMismatchError(choice, len(set(picks)))
        validated[choice.id] = picks

    unknown = set(selections) - set(validated)
    if unknown:
        logger.warning(f"Ignoring selections for undeclared choices: {sorted(unknown)}")
    return validated


# ----------------------------------------------------------------------
# Applying one level
# ----------------------------------------------------------------------

def apply_level(
    character: Character,
    ruleset: Ruleset,
    class_id: str | None,
    level: int,
    selections: dict[str, list[str]] | None,
    *,
    force: bool = False,
) -> Character:
    """Apply the progression node for ``(class_id, level)`` to a character.

    Args:
        character: The character; not modified.
        ruleset: Ruleset providing progression, pools and feature names.
        class_id: Class whose progression is applied.
        level: The class level being reached.
        selections: Choice id -> picked option ids for every choice of the node.
        force: Revert a previous application of this level and apply again.

    Returns:
        An updated copy of the character. When the level is already applied
        and ``force`` is False, an unchanged copy.

    Raises:
        ProgressionMissingError: If the ruleset has no node for this level.
        ChoiceCountMismatchError: If a selection has the wrong number of picks.
    """
    if is_applied(character, level) and not force:
        logger.debug(f"Level {level} already applied for '{character.name}', skipping")
        return character.model_copy(deep=True)

    node = ruleset.get_progression_node(class_id, level)
    if node is None:
        class_def = ruleset.get_class(class_id)
        raise ProgressionMissingError(
            class_id, level, class_def.progression_levels if class_def else []
        )

    picks_by_choice = validate_selections(node, selections)

    updated = character.model_copy(deep=True)
    # Reapplied entries go back where the reverted ones were
    insert_at: int | None = None
    if is_applied(updated, level):
        logger.debug(f"Reapplying level {level} for '{updated.name}'")
        insert_at = next(
            (i for i, f in enumerate(updated.features) if f.level == level and f.is_engine_owned),
            None,
        )
        revert(updated, level)
    appended_from = len(updated.features)

    # 1. Grants
    for feature_id in node.grants:
        _add_grant(updated, ruleset, feature_id, level)

    # 2. Choices, in declaration order
    summary_lines: list[str] = []
    for choice in node.choices:
        picks = picks_by_choice[choice.id]
        _fold_picks(updated, ruleset, choice, picks)
        names = _option_names(ruleset, choice, picks)
        summary_lines.append(f"{choice.label}: {', '.join(names)}")

    if summary_lines:
        _set_choice_summary(updated, level, "\n".join(summary_lines))

    if insert_at is not None:
        added = updated.features[appended_from:]
        del updated.features[appended_from:]
        updated.features[insert_at:insert_at] = added

    # 3. Ledger
    record = dict(picks_by_choice) if picks_by_choice else {GRANTS_KEY: list(node.grants)}
    record_applied(updated, level, record)

    updated.touch()
    logger.debug(
        f"Applied {class_id} level {level} to '{updated.name}': "
        f"{len(node.grants)} grants, {len(node.choices)} choices"
    )
    return updated


def _add_grant(character: Character, ruleset: Ruleset, feature_id: str, level: int) -> None:
    """Append a grant feature unless (name, level, "grant") already exists."""
    name = ruleset.feature_name(feature_id)
    for entry in character.features:
        if entry.name == name and entry.level == level and "grant" in entry.tags:
            return
    info = ruleset.features_dictionary.get(feature_id)
    character.features.append(FeatureEntry(
        id=f"grant-{level}-{feature_id}",
        name=name,
        level=level,
        text=info.description if info else "",
        tags={"grant"},
    ))


def _fold_picks(character: Character, ruleset: Ruleset, choice: ChoiceSpec, picks: list[str]) -> None:
    """Add picks to the character collection the choice's pool feeds."""
    pool_key = choice.from_.lower()
    if "cantrip" in pool_key or "spell" in pool_key:
        spells = {o.id: o for o in ruleset.pools.spells}
        for option_id in picks:
            spell = spells.get(option_id)
            if spell is not None and spell.level is not None:
                is_cantrip = spell.level == 0
            else:
                is_cantrip = "cantrip" in pool_key
            if is_cantrip:
                character.spells.cantrips.add(option_id)
            else:
                character.spells.known.add(option_id)
    elif "infusion" in pool_key:
        character.infusions.learned.update(picks)


def _option_names(ruleset: Ruleset, choice: ChoiceSpec, picks: list[str]) -> list[str]:
    pool = {o.id: o for o in resolve_pool(ruleset, choice.from_)}
    names = []
    for option_id in picks:
        option = pool.get(option_id) or ruleset.pools.find(option_id)
        names.append(option.name if option else option_id)
    return names


def _set_choice_summary(character: Character, level: int, text: str) -> None:
    """One "choice" feature per level summarising every pick made at it."""
    name = f"Level {level} choices"
    for entry in character.features:
        if entry.name == name and entry.level == level and "choice" in entry.tags:
            entry.text = text
            return
    character.features.append(FeatureEntry(
        id=f"choice-{level}",
        name=name,
        level=level,
        text=text,
        tags={"choice"},
    ))


# ----------------------------------------------------------------------
# Multi-level orchestration
# ----------------------------------------------------------------------

class LevelUpEngine:
    """Advance stored characters through several levels, persisting each one."""

    def __init__(self, storage: CharacterStorage) -> None:
        self.storage = storage
        # Last state computed, kept even if persisting it failed
        self.last_character: Character | None = None

    def advance(self, character_id: str, target_level: int, pick: PickCallback) -> LevelUpResult:
        """Advance a character to ``target_level``.

        Each pending level is processed in order: ``pick`` is asked for every
        choice, the selections are validated and applied, the level counter is
        set and the character is written to storage. ``pick`` returning None
        cancels; levels already committed stay applied.

        Lowering the target below the current level only changes the level
        counter. Ledger entries above it are kept and ignored.

        Raises:
            LevelUpError: Character, ruleset or class missing.
            ProgressionMissingError: A level on the way has no node.
            ChoiceCountMismatchError: ``pick`` returned the wrong number of ids.
            StoreWriteError: Persisting a level failed (see ``last_character``).
        """
        character, ruleset = self._load(character_id)
        class_id = character.class_id
        start_level = character.level
        target = clamp(target_level, 1, MAX_LEVEL)
        features_before = {f.id for f in character.features}

        if target <= start_level:
            character.level = target
            character.touch()
            self._save(character)
            return self._result(character, start_level, [], features_before,
                                cancelled=False, note=f"Level set to {target}")

        applied: list[int] = []
        saved_level = start_level
        for lvl in range(start_level + 1, target + 1):
            if is_applied(character, lvl):
                logger.debug(f"Level {lvl} already applied for '{character.name}', resuming past it")
                character.level = lvl
                continue

            node = ruleset.get_progression_node(class_id, lvl)
            if node is None:
                class_def = ruleset.get_class(class_id)
                raise ProgressionMissingError(
                    class_id, lvl, class_def.progression_levels if class_def else []
                )

            selections: dict[str, list[str]] = {}
            for choice in node.choices:
                options = options_for(ruleset, class_id, choice, lvl, subclass_id=character.subclass_id)
                picked = pick(choice, options, lvl)
                if picked is None:
                    logger.info(f"Level-up of '{character.name}' cancelled at level {lvl}")
                    self._save(character)
                    return self._result(character, start_level, applied, features_before,
                                        cancelled=True, note=f"Cancelled at level {lvl}")
                selections[choice.id] = list(picked)

            character = apply_level(character, ruleset, class_id, lvl, selections)
            character.level = lvl
            self._save(character)
            saved_level = lvl
            applied.append(lvl)

        if character.level != saved_level:
            character.touch()
            self._save(character)

        return self._result(character, start_level, applied, features_before, cancelled=False)

    def _load(self, character_id: str) -> tuple[Character, Ruleset]:
        character = self.storage.get_character(character_id)
        if character is None:
            raise LevelUpError(f"Character '{character_id}' not found.")
        if not character.ruleset_id:
            raise LevelUpError("Select a ruleset first.")
        ruleset = self.storage.get_ruleset(character.ruleset_id)
        if ruleset is None:
            raise LevelUpError(f"Ruleset '{character.ruleset_id}' missing. Re-import it.")
        if not character.class_id:
            raise LevelUpError("Select a class first.")
        return normalize_character(character), ruleset

    def _save(self, character: Character) -> None:
        self.last_character = character
        self.storage.put_character(character)

    @staticmethod
    def _result(
        character: Character,
        start_level: int,
        applied: list[int],
        features_before: set[str],
        *,
        cancelled: bool,
        note: str | None = None,
    ) -> LevelUpResult:
        added = [f.name for f in character.features if f.id not in features_before]
        changes = [f"Level: {start_level} -> {character.level}"]
        if applied:
            changes.append(f"Applied: {', '.join(map(str, applied))}")
        if added:
            changes.append(f"Features: {', '.join(added)}")
        if note:
            changes.append(note)
        summary = f"{character.name}\n" + "\n".join(f"  - {c}" for c in changes)
        return LevelUpResult(
            character=character,
            start_level=start_level,
            new_level=character.level,
            levels_applied=applied,
            features_added=added,
            cancelled=cancelled,
            summary=summary,
        )


__all__ = [
    "ChoiceCountMismatchError",
    "LevelUpEngine",
    "LevelUpError",
    "LevelUpPlan",
    "LevelUpResult",
    "PickCallback",
    "ProgressionMissingError",
    "apply_level",
    "build_level_up_plan",
    "plan_levels",
    "validate_selections",
]
