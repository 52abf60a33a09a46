"""
Data models for ruleset content.

A ruleset is a user-supplied rules document: classes with per-level
progression nodes, option pools (spells, infusions, features, feats) and a
feature dictionary. Models are read-only once imported; a re-import replaces
the whole ruleset.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Base Model
# =============================================================================

class RulesetModel(BaseModel):
    """Base class for ruleset content: immutable, accepts camelCase keys."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


# =============================================================================
# Option Pools
# =============================================================================

class OptionRequirements(RulesetModel):
    """Prerequisites an option declares for itself."""
    class_: str | None = Field(default=None, alias="class", description="Class id required")
    min_level: int | None = Field(default=None, alias="minLevel", description="Minimum character level")
    subclass: str | None = Field(default=None, description="Subclass id required")


class Option(RulesetModel):
    """A pickable entry in an option pool (spell, infusion, feature, feat)."""
    id: str = Field(description="Unique identifier within its pool")
    name: str = Field(description="Display name")
    level: int | None = Field(default=None, description="Spell level (0 = cantrip)")
    tags: frozenset[str] = Field(default_factory=frozenset)
    lists: tuple[str, ...] = Field(default=(), description="Class ids whose lists include this option")
    requires: OptionRequirements | None = None
    description: str = Field(default="", alias="desc")

    @field_validator("description", mode="before")
    @classmethod
    def _none_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class RulesetPools(RulesetModel):
    """Option pools keyed by pool name."""
    spells: tuple[Option, ...] = ()
    infusions: tuple[Option, ...] = ()
    features: tuple[Option, ...] = ()
    feats: tuple[Option, ...] = ()
    extra: dict[str, tuple[Option, ...]] = Field(
        default_factory=dict,
        description="Any additional pools the ruleset declares",
    )

    def get(self, key: str) -> tuple[Option, ...] | None:
        """Return the pool named ``key``, or None if there is no such pool."""
        if key in ("spells", "infusions", "features", "feats"):
            return getattr(self, key)
        return self.extra.get(key)

    def keys(self) -> list[str]:
        return ["spells", "infusions", "features", "feats", *self.extra]

    def find(self, option_id: str) -> Option | None:
        """Find an option by id across all pools."""
        for key in self.keys():
            for option in self.get(key) or ():
                if option.id == option_id:
                    return option
        return None


# =============================================================================
# Progression
# =============================================================================

class ChoiceFilter(RulesetModel):
    """Narrowing applied to a pool before offering it to the player."""
    class_: str | None = Field(default=None, alias="class")
    min_level: int | None = Field(default=None, alias="minLevel")
    tag: str | None = None
    tags_any: tuple[str, ...] = Field(default=(), alias="tagsAny")
    tags_all: tuple[str, ...] = Field(default=(), alias="tagsAll")


class ChoiceSpec(RulesetModel):
    """A player choice declared on a progression node.

    ``id`` is stable across re-imports of the same ruleset version and is the
    key under which picks are recorded in the advancement ledger.
    """
    id: str
    title: str = ""
    help: str = ""
    from_: str = Field(alias="from", description="Pool key, e.g. 'spells.cantrip' or 'infusions'")
    filter: ChoiceFilter = Field(default_factory=ChoiceFilter)
    count: int = Field(default=1, ge=1)

    @field_validator("title", "help", mode="before")
    @classmethod
    def _none_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def label(self) -> str:
        return self.title or self.id


class ProgressionNode(RulesetModel):
    """What becomes true of a character reaching this level in this class."""
    grants: tuple[str, ...] = ()
    choices: tuple[ChoiceSpec, ...] = ()

    def get_choice(self, choice_id: str) -> ChoiceSpec | None:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None


class ClassDef(RulesetModel):
    """Class definition with its level progression."""
    id: str
    name: str
    hit_die: int = Field(default=8, alias="hitDie")
    progression: dict[int, ProgressionNode] = Field(
        default_factory=dict,
        description="Level (1-20) -> progression node",
    )
    spellcasting_ability: str | None = Field(
        default=None,
        alias="spellcastingAbility",
        description="Ability key used for spell DC and attack (e.g. 'INT')",
    )
    spell_slots: dict[str, dict[str, int]] = Field(
        default_factory=dict,
        alias="spellSlots",
        description="Character level -> {slot level: count}, merged for all keys <= level",
    )

    def node_at(self, level: int) -> ProgressionNode | None:
        return self.progression.get(level)

    @property
    def progression_levels(self) -> list[int]:
        return sorted(self.progression)


class FeatureInfo(RulesetModel):
    """Display data for a granted feature id."""
    name: str
    description: str = Field(default="", alias="desc")


# =============================================================================
# Ruleset Container
# =============================================================================

class Ruleset(RulesetModel):
    """
    Container for an imported ruleset.

    ``raw`` keeps the document exactly as imported so an export round-trips
    unchanged.
    """
    id: str = Field(description="Unique identifier (meta.id)")
    name: str = Field(description="Display name")
    version: str = Field(default="1.0")
    classes: dict[str, ClassDef] = Field(default_factory=dict)
    pools: RulesetPools = Field(default_factory=RulesetPools)
    features_dictionary: dict[str, FeatureInfo] = Field(
        default_factory=dict,
        alias="featuresDictionary",
    )
    imported_at: datetime = Field(default_factory=datetime.now)
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    def get_class(self, class_id: str | None) -> ClassDef | None:
        if not class_id:
            return None
        return self.classes.get(class_id)

    def get_progression_node(self, class_id: str | None, level: int) -> ProgressionNode | None:
        class_def = self.get_class(class_id)
        if class_def is None:
            return None
        return class_def.node_at(level)

    def feature_name(self, feature_id: str) -> str:
        info = self.features_dictionary.get(feature_id)
        return info.name if info else feature_id

    @property
    def content_counts(self) -> dict[str, int]:
        """Return count of each content type."""
        counts = {"classes": len(self.classes)}
        for key in self.pools.keys():
            counts[key] = len(self.pools.get(key) or ())
        return counts

    def stats_summary(self) -> str:
        """Return a formatted summary of content counts."""
        non_empty = {k: v for k, v in self.content_counts.items() if v > 0}
        return ", ".join(f"{v} {k}" for k, v in non_empty.items()) or "empty"


__all__ = [
    "RulesetModel",
    "OptionRequirements",
    "Option",
    "RulesetPools",
    "ChoiceFilter",
    "ChoiceSpec",
    "ProgressionNode",
    "ClassDef",
    "FeatureInfo",
    "Ruleset",
]
