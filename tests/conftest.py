"""
Pytest configuration and fixtures for charsheet tests.
"""

import copy
import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add src directory to Python path to allow importing charsheet
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

# charsheet.main creates its storage at import time; keep it out of the repo
os.environ.setdefault("CHARSHEET_STORAGE_DIR", tempfile.mkdtemp(prefix="charsheet-test-"))

from charsheet.models import Character  # noqa: E402
from charsheet.rulesets import Ruleset, parse_ruleset  # noqa: E402


SAMPLE_RULESET = {
    "meta": {"id": "homebrew", "name": "Homebrew Rules", "version": "1.2"},
    "classes": {
        "artificer": {
            "name": "Artificer",
            "hitDie": "d8",
            "spellcastingAbility": "INT",
            "spellSlots": {"1": {"1": 2}, "3": {"1": 3}, "5": {"1": 4, "2": 2}},
            "progression": {
                "1": {
                    "grants": ["magical-tinkering"],
                    "choices": [
                        {"id": "c1", "title": "Cantrips", "from": "spells.cantrip", "count": 2},
                    ],
                },
                "2": {
                    "grants": ["infuse-item"],
                    "choices": [
                        {"id": "inf2", "title": "Infusions", "from": "infusions", "count": 2},
                    ],
                },
                "3": {"grants": ["right-tool"]},
                "4": {
                    "choices": [
                        {"id": "s4", "title": "Spell", "from": "spells.known", "count": 1},
                    ],
                },
                "5": {
                    "grants": ["extra-attack"],
                    "choices": [
                        {"id": "inf5", "title": "Infusion", "from": "infusions", "count": 1},
                    ],
                },
            },
        },
        "wizard": {
            "name": "Wizard",
            "hitDie": 6,
            "progression": {"1": {"grants": ["arcane-recovery"]}},
        },
    },
    "spells": [
        {"id": "fire-bolt", "name": "Fire Bolt", "level": 0, "lists": ["artificer", "wizard"]},
        {"id": "guidance", "name": "Guidance", "level": 0, "lists": ["artificer"]},
        {"id": "mending", "name": "Mending", "level": 0, "lists": ["artificer", "wizard"]},
        {"id": "mage-hand", "name": "Mage Hand", "level": 0, "lists": ["wizard"]},
        {"id": "cure-wounds", "name": "Cure Wounds", "level": 1, "lists": ["artificer"]},
        {"id": "shield", "name": "Shield", "level": 1, "lists": ["wizard"]},
    ],
    "infusions": [
        {"id": "enhanced-weapon", "name": "Enhanced Weapon", "tags": ["weapon"]},
        {"id": "enhanced-defense", "name": "Enhanced Defense", "tags": ["armor"]},
        {"id": "bag-of-holding", "name": "Replicate: Bag of Holding", "tags": ["replicate"]},
        {"id": "radiant-weapon", "name": "Radiant Weapon", "tags": ["weapon", "magic"], "requires": {"minLevel": 5}},
    ],
    "features": [],
    "feats": [],
    "featuresDictionary": {
        "magical-tinkering": {"name": "Magical Tinkering", "desc": "Imbue tiny objects with magic."},
        "infuse-item": {"name": "Infuse Item"},
        "right-tool": "The Right Tool for the Job",
        "extra-attack": {"name": "Extra Attack"},
    },
}


@pytest.fixture
def ruleset_document() -> dict:
    """A fresh copy of the sample ruleset document."""
    return copy.deepcopy(SAMPLE_RULESET)


@pytest.fixture
def ruleset(ruleset_document: dict) -> Ruleset:
    """The sample ruleset, imported."""
    return parse_ruleset(ruleset_document)


@pytest.fixture
def character() -> Character:
    """A level 1 artificer with nothing applied."""
    return Character(
        name="Tinker",
        ruleset_id="homebrew",
        class_id="artificer",
        abilities={"STR": 8, "DEX": 14, "CON": 14, "INT": 16, "WIS": 12, "CHA": 10},
    )
