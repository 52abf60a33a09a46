"""Tests for derived character stats."""

import pytest

from charsheet.models import Character
from charsheet.stats import (
    SKILLS,
    ability_modifier,
    derive,
    proficiency_bonus,
    scalar_at,
    spell_slots_at,
)


class TestProficiencyBonus:

    @pytest.mark.parametrize("level,expected", [
        (1, 2), (4, 2), (5, 3), (8, 3), (9, 4), (13, 5), (16, 5), (17, 6), (20, 6),
    ])
    def test_table(self, level, expected):
        assert proficiency_bonus(level) == expected

    def test_out_of_range_levels_are_clamped(self):
        assert proficiency_bonus(0) == 2
        assert proficiency_bonus(-3) == 2
        assert proficiency_bonus(25) == 6


class TestAbilityModifier:

    @pytest.mark.parametrize("score,expected", [
        (10, 0), (11, 0), (8, -1), (9, -1), (20, 5), (1, -5), (30, 10),
    ])
    def test_table(self, score, expected):
        assert ability_modifier(score) == expected

    def test_scores_are_clamped(self):
        assert ability_modifier(0) == -5
        assert ability_modifier(45) == 10


class TestDerive:

    def test_defaults_for_empty_record(self):
        stats = derive({})
        assert stats.proficiency_bonus == 2
        assert set(stats.ability_modifiers.values()) == {0}
        assert stats.spell_dc == 10
        assert stats.spell_attack == 2
        assert stats.passive_perception == 10
        assert stats.spell_slots == {}

    def test_none_character_uses_defaults(self):
        assert derive(None).proficiency_bonus == 2

    @pytest.mark.parametrize("record", [
        {"ac": None},
        {"speed": None},
        {"hp": {"max": 0}},
        {"hp": {"max": None, "temp": -4}},
        {"spells": None},
        {"spells": {"cantrips": None}},
        {"features": None},
        {"advancement": None, "level": None},
        {"ac": "ten"},
    ])
    def test_null_and_out_of_range_fields_fall_back(self, record):
        stats = derive(record)
        assert stats.proficiency_bonus == 2
        assert stats.passive_perception == 10

    def test_hit_points_are_clamped(self):
        character = Character.model_validate({"hp": {"max": 0, "temp": -4}})
        assert character.hp.max == 1
        assert character.hp.temp == 0
        assert Character.model_validate({"ac": None, "speed": None}).ac == 10

    def test_save_totals_add_proficiency_only_when_proficient(self):
        character = Character(
            abilities={"CON": 14, "INT": 16},
            save_proficiency={"CON"},
        )
        stats = derive(character)
        assert stats.save_totals["CON"] == 2 + 2
        assert stats.save_totals["INT"] == 3
        assert stats.save_totals["STR"] == 0

    def test_skill_rank_multiplies_proficiency(self):
        character = Character(
            level=5,
            abilities={"DEX": 16},
            skill_proficiency_rank={"acrobatics": 1, "stealth": 2},
        )
        stats = derive(character)
        assert stats.skill_totals["acrobatics"] == 3 + 3
        assert stats.skill_totals["stealth"] == 3 + 6
        assert stats.skill_totals["sleight_of_hand"] == 3
        assert set(stats.skill_totals) == set(SKILLS)

    def test_passive_perception_uses_perception_total(self):
        character = Character(abilities={"WIS": 14}, skill_proficiency_rank={"perception": 1})
        assert derive(character).passive_perception == 10 + 2 + 2

    def test_spellcasting_uses_class_ability(self, ruleset, character):
        stats = derive(character, ruleset)
        # INT 16 -> +3
        assert stats.spell_dc == 8 + 2 + 3
        assert stats.spell_attack == 2 + 3

    def test_spellcasting_defaults_to_int_without_ruleset(self):
        character = Character(abilities={"INT": 18, "WIS": 8})
        assert derive(character).spell_attack == 2 + 4

    def test_spell_slots_follow_class_table(self, ruleset, character):
        assert derive(character, ruleset).spell_slots == {"1": 2}
        character.level = 3
        assert derive(character, ruleset).spell_slots == {"1": 3}
        character.level = 6
        assert derive(character, ruleset).spell_slots == {"1": 4, "2": 2}

    def test_legacy_record_is_normalized(self):
        stats = derive({"level": 25, "abilities": {"strength": {"score": 18}}})
        assert stats.proficiency_bonus == 6
        assert stats.ability_modifiers["STR"] == 4

    def test_derive_is_pure(self, ruleset, character):
        before = character.model_dump()
        first = derive(character, ruleset)
        second = derive(character, ruleset)
        assert first == second
        assert character.model_dump() == before


class TestLevelTables:

    def test_scalar_at_takes_highest_key_not_above_level(self):
        table = {"2": 4, "6": 6, "10": 8}
        assert scalar_at(table, 1) == 0
        assert scalar_at(table, 2) == 4
        assert scalar_at(table, 9) == 6
        assert scalar_at(table, 20) == 8

    def test_scalar_at_fallback(self):
        assert scalar_at(None, 5, fallback=3) == 3
        assert scalar_at({}, 5, fallback=3) == 3

    def test_spell_slots_merge_in_level_order(self):
        table = {"1": {"1": 2}, "3": {"1": 4, "2": 2}}
        assert spell_slots_at(table, 2) == {"1": 2}
        assert spell_slots_at(table, 3) == {"1": 4, "2": 2}
        assert spell_slots_at(None, 3) == {}
