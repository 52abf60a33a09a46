"""
Charsheet - character sheet advancement over user-supplied rulesets.

The engine API is importable without starting the server:

    from charsheet import apply_level, build_level_up_plan, derive
"""

from .choices import options_for
from .ledger import is_applied
from .level_up_engine import (
    ChoiceCountMismatchError,
    LevelUpEngine,
    LevelUpError,
    ProgressionMissingError,
    apply_level,
    build_level_up_plan,
)
from .models import Character, FeatureEntry, normalize_character
from .rulesets import Ruleset, RulesetInvalidError, parse_ruleset
from .stats import DerivedStats, derive
from .storage import CharacterStorage, StoreWriteError

__version__ = "0.1.0"

__all__ = [
    "Character",
    "CharacterStorage",
    "ChoiceCountMismatchError",
    "DerivedStats",
    "FeatureEntry",
    "LevelUpEngine",
    "LevelUpError",
    "ProgressionMissingError",
    "Ruleset",
    "RulesetInvalidError",
    "StoreWriteError",
    "apply_level",
    "build_level_up_plan",
    "derive",
    "is_applied",
    "normalize_character",
    "options_for",
    "parse_ruleset",
]
