"""
Data models for character records.

Characters are plain pydantic models owned by the storage layer. The engine
receives a copy, returns an updated copy, and never persists anything itself.
"""

import logging
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator
from shortuuid import random

logger = logging.getLogger(__name__)


ABILITY_KEYS = ("STR", "DEX", "CON", "INT", "WIS", "CHA")

# Full ability names accepted from older records -> canonical key
ABILITY_ALIASES = {
    "strength": "STR",
    "dexterity": "DEX",
    "constitution": "CON",
    "intelligence": "INT",
    "wisdom": "WIS",
    "charisma": "CHA",
}

FeatureTag = Literal["grant", "choice", "manual"]

# Tags for feature entries owned by the level-up engine
ENGINE_TAGS = frozenset({"grant", "choice"})


def clamp(value: int, low: int, high: int) -> int:
    """Clamp an integer into [low, high]."""
    return max(low, min(high, value))


def _coerce_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_ability_key(key: str) -> str:
    """Return the canonical three-letter key for an ability name."""
    return ABILITY_ALIASES.get(key.lower(), key.upper())


class HitPoints(BaseModel):
    """Current, maximum and temporary hit points."""
    current: int = 10
    max: int = 10
    temp: int = 0

    @model_validator(mode="before")
    @classmethod
    def _clamp(cls, data: Any) -> Any:
        # max >= 1, temp >= 0; unusable values fall back to defaults
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if v is not None}
        if "current" in data:
            data["current"] = _coerce_int(data["current"], 10)
        if "max" in data:
            data["max"] = max(1, _coerce_int(data["max"], 10))
        if "temp" in data:
            data["temp"] = max(0, _coerce_int(data["temp"], 0))
        return data


class Item(BaseModel):
    """Inventory entry."""
    id: str = Field(default_factory=lambda: random(length=8))
    name: str
    quantity: int = Field(default=1, ge=1)
    note: str = ""
    weight: float | None = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_qty(cls, data: Any) -> Any:
        if isinstance(data, dict) and "qty" in data and "quantity" not in data:
            data = dict(data)
            data["quantity"] = data.pop("qty")
        return data


class FeatureEntry(BaseModel):
    """A feature on the character sheet.

    Entries tagged ``grant`` or ``choice`` are written by the level-up engine
    and identified by ``(name, level, tag)``. Entries tagged ``manual`` belong
    to the user and are never modified by the engine.
    """
    id: str = Field(default_factory=lambda: random(length=8))
    name: str
    level: int = 1
    text: str = ""
    tags: set[FeatureTag] = Field(default_factory=lambda: {"manual"})

    @property
    def is_engine_owned(self) -> bool:
        return bool(self.tags & ENGINE_TAGS) and "manual" not in self.tags

    @field_serializer("tags")
    def _sorted_tags(self, tags: set[str]) -> list[str]:
        return sorted(tags)


class SpellBook(BaseModel):
    """Spell ids the character has learned."""
    cantrips: set[str] = Field(default_factory=set)
    known: set[str] = Field(default_factory=set)

    @field_validator("cantrips", "known", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return set() if value is None else value

    @field_serializer("cantrips", "known")
    def _sorted_ids(self, ids: set[str]) -> list[str]:
        return sorted(ids)


class Infusions(BaseModel):
    """Infusion ids the character has learned."""
    learned: set[str] = Field(default_factory=set)

    @field_serializer("learned")
    def _sorted_ids(self, ids: set[str]) -> list[str]:
        return sorted(ids)


# choice id -> picked option ids
AdvancementRecord = dict[str, list[str]]


# Legacy camelCase keys -> current field names
_LEGACY_KEYS = {
    "rulesetId": "ruleset_id",
    "classId": "class_id",
    "subclassId": "subclass_id",
    "skillProfs": "skill_proficiency_rank",
    "skillProficiencyRank": "skill_proficiency_rank",
    "saveProfs": "save_proficiency",
    "saveProficiency": "save_proficiency",
    "portrait": "portrait_ref",
    "portraitRef": "portrait_ref",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


class Character(BaseModel):
    """Complete character record."""
    # Basic Info
    id: str = Field(default_factory=lambda: random(length=8))
    name: str = "Unnamed Character"
    ruleset_id: str | None = None
    class_id: str | None = None
    subclass_id: str | None = None
    level: int = Field(default=1, ge=1, le=20)

    # Core Stats
    abilities: dict[str, int] = Field(
        default_factory=lambda: {key: 10 for key in ABILITY_KEYS}
    )
    hp: HitPoints = Field(default_factory=HitPoints)
    ac: int = 10
    speed: int = 30

    # Proficiencies
    skill_proficiency_rank: dict[str, int] = Field(default_factory=dict)  # skill: 0|1|2
    save_proficiency: set[str] = Field(default_factory=set)

    # Equipment
    inventory: list[Item] = Field(default_factory=list)

    # Advancement
    spells: SpellBook = Field(default_factory=SpellBook)
    infusions: Infusions = Field(default_factory=Infusions)
    features: list[FeatureEntry] = Field(default_factory=list)
    advancement: dict[str, AdvancementRecord] = Field(default_factory=dict)

    # Misc
    notes: str = ""
    portrait_ref: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_fields(cls, data: Any) -> Any:
        """Fill defaults and migrate older record shapes.

        Supports camelCase keys, a separate ``tempHp`` field, boolean maps for
        save proficiencies, and advancement stored as a flat ``choice -> pick``
        map without a level key.
        """
        if not isinstance(data, dict):
            return data
        # Null fields take their defaults
        data = {k: v for k, v in data.items() if v is not None}

        for old, new in _LEGACY_KEYS.items():
            if old in data and new not in data:
                data[new] = data.pop(old)

        if "level" in data:
            data["level"] = clamp(_coerce_int(data["level"], 1), 1, 20)
        if not data.get("name"):
            data.pop("name", None)
        if "ac" in data:
            data["ac"] = _coerce_int(data["ac"], 10)
        if "speed" in data:
            data["speed"] = _coerce_int(data["speed"], 30)

        hp = data.get("hp")
        if not isinstance(hp, dict):
            hp = {}
        hp = dict(hp)
        if "tempHp" in data:
            hp.setdefault("temp", data.pop("tempHp") or 0)
        data["hp"] = hp

        saves = data.get("save_proficiency")
        if isinstance(saves, dict):
            data["save_proficiency"] = {k for k, v in saves.items() if v}

        portrait = data.get("portrait_ref")
        if isinstance(portrait, dict):
            data["portrait_ref"] = portrait.get("blobId") or portrait.get("dataUrl")

        if "advancement" in data:
            data["advancement"] = _migrate_advancement(data.get("advancement"), data.get("level", 1))
        return data

    @field_validator("abilities", mode="before")
    @classmethod
    def _normalize_abilities(cls, value: Any) -> dict[str, int]:
        scores = {key: 10 for key in ABILITY_KEYS}
        if isinstance(value, dict):
            for key, score in value.items():
                # Older records stored {"score": n} objects
                if isinstance(score, dict):
                    score = score.get("score", 10)
                scores[normalize_ability_key(str(key))] = clamp(_coerce_int(score, 10), 1, 30)
        return scores

    @field_validator("skill_proficiency_rank", mode="before")
    @classmethod
    def _normalize_ranks(cls, value: Any) -> dict[str, int]:
        if not isinstance(value, dict):
            return {}
        return {str(k): clamp(_coerce_int(v, 0), 0, 2) for k, v in value.items()}

    @field_validator("save_proficiency", mode="before")
    @classmethod
    def _normalize_saves(cls, value: Any) -> set[str]:
        if not value:
            return set()
        return {normalize_ability_key(str(k)) for k in value}

    @field_serializer("save_proficiency")
    def _sorted_saves(self, saves: set[str]) -> list[str]:
        return sorted(saves)

    def touch(self) -> None:
        """Refresh the modification timestamp."""
        self.updated_at = datetime.now()

    def manual_features(self) -> list[FeatureEntry]:
        return [f for f in self.features if not f.is_engine_owned]


def _migrate_advancement(value: Any, level: Any) -> dict[str, AdvancementRecord]:
    """Canonicalize advancement onto the nested-by-level ledger.

    Level-keyed entries are kept (with picks coerced to lists of ids). Any
    top-level ``choice -> pick`` pairs are moved under the character's level.
    Empty records are dropped so they never count as applied.
    """
    if not isinstance(value, dict):
        return {}

    nested: dict[str, AdvancementRecord] = {}
    flat: AdvancementRecord = {}
    for key, entry in value.items():
        key = str(key)
        if key.isdigit() and isinstance(entry, dict):
            record = {str(cid): _as_id_list(picks) for cid, picks in entry.items()}
            if record:
                nested[str(int(key))] = record
        else:
            flat[key] = _as_id_list(entry)

    if flat:
        target = str(clamp(_coerce_int(level, 1), 1, 20))
        logger.warning(
            f"Migrating flat advancement record {sorted(flat)} to level {target}"
        )
        nested.setdefault(target, {}).update(flat)
    return nested


def _as_id_list(picks: Any) -> list[str]:
    if picks is None:
        return []
    if isinstance(picks, (list, tuple, set)):
        return [str(p) for p in picks]
    return [str(picks)]


def normalize_character(data: "dict[str, Any] | Character | None") -> Character:
    """Build a validated Character from a stored record.

    All default-filling and legacy-shape migration happens here, once, when
    a record enters the system.
    """
    if isinstance(data, Character):
        return data.model_copy(deep=True)
    return Character.model_validate(data or {})


__all__ = [
    "ABILITY_KEYS",
    "AdvancementRecord",
    "Character",
    "FeatureEntry",
    "HitPoints",
    "Infusions",
    "Item",
    "SpellBook",
    "clamp",
    "normalize_ability_key",
    "normalize_character",
]
