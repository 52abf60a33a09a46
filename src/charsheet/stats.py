"""Stat Deriver: compute the read-only view of a character.

``derive`` is a pure function of a character and (optionally) its ruleset:
it never mutates its inputs, performs no I/O and has no failure mode.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .models import ABILITY_KEYS, Character, clamp, normalize_character
from .rulesets.models import Ruleset


# Skill key -> governing ability
SKILLS: dict[str, str] = {
    "acrobatics": "DEX",
    "animal_handling": "WIS",
    "arcana": "INT",
    "athletics": "STR",
    "deception": "CHA",
    "history": "INT",
    "insight": "WIS",
    "intimidation": "CHA",
    "investigation": "INT",
    "medicine": "WIS",
    "nature": "INT",
    "perception": "WIS",
    "performance": "CHA",
    "persuasion": "CHA",
    "religion": "INT",
    "sleight_of_hand": "DEX",
    "stealth": "DEX",
    "survival": "WIS",
}

# Used when the class declares no spellcasting ability
DEFAULT_SPELLCASTING_ABILITY = "INT"


class DerivedStats(BaseModel):
    """Computed view of a character. Never persisted."""
    proficiency_bonus: int
    ability_modifiers: dict[str, int]
    save_totals: dict[str, int]
    skill_totals: dict[str, int]
    spell_dc: int
    spell_attack: int
    passive_perception: int
    spell_slots: dict[str, int] = Field(default_factory=dict)


def proficiency_bonus(level: int) -> int:
    """Proficiency bonus: +2 at levels 1-4, +1 every four levels, +6 from 17."""
    return 2 + (clamp(level, 1, 20) - 1) // 4


def ability_modifier(score: int) -> int:
    """Ability modifier for a score, clamped to 1-30."""
    return (clamp(score, 1, 30) - 10) // 2


def scalar_at(table: dict[str, Any] | None, level: int, fallback: int = 0) -> Any:
    """Return the value at the highest numeric key <= level.

    Used for level-keyed tables such as ``{"2": 4, "6": 6}``.
    """
    if not table:
        return fallback
    value = fallback
    for key in sorted(int(k) for k in table if str(k).isdigit()):
        if level >= key:
            value = table.get(str(key), table.get(key))
    return value


def spell_slots_at(table: dict[str, dict[str, int]] | None, level: int) -> dict[str, int]:
    """Merge a level-keyed spell slot table for every key <= level.

    ``{"1": {"1": 2}, "3": {"1": 4, "2": 2}}`` at level 3 gives ``{"1": 4, "2": 2}``.
    """
    slots: dict[str, int] = {}
    if not table:
        return slots
    for key in sorted(int(k) for k in table if str(k).isdigit()):
        if level >= key:
            chunk = table.get(str(key), table.get(key)) or {}
            for slot_level, count in chunk.items():
                slots[str(slot_level)] = count
    return slots


def derive(character: Character | dict[str, Any] | None, ruleset: Ruleset | None = None) -> DerivedStats:
    """Compute derived stats for a character.

    Args:
        character: Character model or raw record; missing fields use defaults.
        ruleset: Ruleset supplying the class's spellcasting ability and slot
            table. Optional.

    Returns:
        DerivedStats for the character's current level.
    """
    if not isinstance(character, Character):
        character = normalize_character(character)

    level = clamp(character.level, 1, 20)
    pb = proficiency_bonus(level)

    mods = {
        key: ability_modifier(character.abilities.get(key, 10))
        for key in ABILITY_KEYS
    }

    saves = {
        key: mods[key] + (pb if key in character.save_proficiency else 0)
        for key in ABILITY_KEYS
    }

    skills = {
        skill: mods[ability] + pb * clamp(character.skill_proficiency_rank.get(skill, 0), 0, 2)
        for skill, ability in SKILLS.items()
    }

    class_def = ruleset.get_class(character.class_id) if ruleset else None
    casting_ability = DEFAULT_SPELLCASTING_ABILITY
    slots: dict[str, int] = {}
    if class_def is not None:
        if class_def.spellcasting_ability:
            casting_ability = class_def.spellcasting_ability.upper()[:3]
        slots = spell_slots_at(class_def.spell_slots, level)
    casting_mod = mods.get(casting_ability, 0)

    return DerivedStats(
        proficiency_bonus=pb,
        ability_modifiers=mods,
        save_totals=saves,
        skill_totals=skills,
        spell_dc=8 + pb + casting_mod,
        spell_attack=pb + casting_mod,
        passive_perception=10 + skills["perception"],
        spell_slots=slots,
    )


__all__ = [
    "SKILLS",
    "DerivedStats",
    "ability_modifier",
    "derive",
    "proficiency_bonus",
    "scalar_at",
    "spell_slots_at",
]
