"""
Tests for ruleset import.

Tests cover:
- JSON and YAML parsing, from text and from files
- Structural rejection (missing meta.id or classes)
- Graceful degradation for missing names, pools and progression
- Export returning the imported document unchanged
"""

import json

import pytest
import yaml

from charsheet.rulesets import (
    RulesetInvalidError,
    export_ruleset,
    load_ruleset_file,
    load_ruleset_text,
    parse_ruleset,
)


class TestParseRuleset:

    def test_sample_ruleset(self, ruleset):
        assert ruleset.id == "homebrew"
        assert ruleset.name == "Homebrew Rules"
        assert ruleset.version == "1.2"
        assert set(ruleset.classes) == {"artificer", "wizard"}

    def test_class_fields(self, ruleset):
        artificer = ruleset.get_class("artificer")
        assert artificer.name == "Artificer"
        assert artificer.hit_die == 8
        assert artificer.spellcasting_ability == "INT"
        assert artificer.progression_levels == [1, 2, 3, 4, 5]
        assert ruleset.get_class("wizard").hit_die == 6

    def test_progression_nodes(self, ruleset):
        node = ruleset.get_progression_node("artificer", 2)
        assert node.grants == ("infuse-item",)
        assert node.choices[0].from_ == "infusions"
        assert node.choices[0].label == "Infusions"
        assert ruleset.get_progression_node("artificer", 6) is None
        assert ruleset.get_progression_node(None, 1) is None

    def test_option_fields(self, ruleset):
        radiant = ruleset.pools.find("radiant-weapon")
        assert radiant.tags == frozenset({"weapon", "magic"})
        assert radiant.requires.min_level == 5
        assert ruleset.pools.find("fire-bolt").lists == ("artificer", "wizard")

    def test_features_dictionary(self, ruleset):
        assert ruleset.feature_name("magical-tinkering") == "Magical Tinkering"
        assert ruleset.feature_name("right-tool") == "The Right Tool for the Job"
        assert ruleset.feature_name("unknown-id") == "unknown-id"
        assert ruleset.features_dictionary["magical-tinkering"].description == "Imbue tiny objects with magic."

    def test_content_counts(self, ruleset):
        counts = ruleset.content_counts
        assert counts["classes"] == 2
        assert counts["spells"] == 6
        assert counts["infusions"] == 4
        assert "6 spells" in ruleset.stats_summary()

    def test_nested_pools(self, ruleset_document):
        pools = {key: ruleset_document.pop(key) for key in ("spells", "infusions", "features", "feats")}
        ruleset_document["pools"] = pools
        ruleset = parse_ruleset(ruleset_document)
        assert len(ruleset.pools.spells) == 6

    def test_options_get_ids_from_names(self, ruleset_document):
        ruleset_document["feats"] = [{"name": "War Caster"}]
        ruleset = parse_ruleset(ruleset_document)
        assert ruleset.pools.feats[0].id == "war-caster"

    def test_duplicate_choice_ids_keep_first(self, ruleset_document):
        node = ruleset_document["classes"]["artificer"]["progression"]["2"]
        node["choices"].append({"id": "inf2", "from": "spells", "count": 1})
        ruleset = parse_ruleset(ruleset_document)
        choices = ruleset.get_progression_node("artificer", 2).choices
        assert [c.from_ for c in choices] == ["infusions"]

    def test_invalid_level_keys_are_skipped(self, ruleset_document):
        ruleset_document["classes"]["artificer"]["progression"]["21"] = {"grants": ["x"]}
        ruleset_document["classes"]["artificer"]["progression"]["capstone"] = {"grants": ["x"]}
        ruleset = parse_ruleset(ruleset_document)
        assert ruleset.get_class("artificer").progression_levels == [1, 2, 3, 4, 5]


class TestRejection:

    def test_missing_meta_id(self, ruleset_document):
        del ruleset_document["meta"]["id"]
        with pytest.raises(RulesetInvalidError) as exc_info:
            parse_ruleset(ruleset_document)
        assert "meta.id" in str(exc_info.value)
        assert not exc_info.value.report.valid

    def test_missing_classes(self, ruleset_document):
        del ruleset_document["classes"]
        with pytest.raises(RulesetInvalidError):
            parse_ruleset(ruleset_document)

    def test_classes_not_an_object(self, ruleset_document):
        ruleset_document["classes"] = ["artificer"]
        with pytest.raises(RulesetInvalidError):
            parse_ruleset(ruleset_document)

    def test_not_an_object(self):
        with pytest.raises(RulesetInvalidError):
            parse_ruleset(["meta"])

    def test_invalid_json_text(self):
        with pytest.raises(RulesetInvalidError, match="JSON"):
            load_ruleset_text("{not json", fmt="json")


class TestDegradation:

    def test_minimal_ruleset_is_accepted(self):
        ruleset = parse_ruleset({"meta": {"id": "bare"}, "classes": {}})
        assert ruleset.name == "bare"
        assert ruleset.classes == {}
        assert ruleset.pools.spells == ()

    def test_class_without_progression(self):
        ruleset = parse_ruleset({"meta": {"id": "x"}, "classes": {"monk": {}}})
        monk = ruleset.get_class("monk")
        assert monk.name == "monk"
        assert monk.progression == {}

    def test_single_grant_string(self):
        ruleset = parse_ruleset({
            "meta": {"id": "x"},
            "classes": {"wizard": {"progression": {"1": {"grants": "firebolt"}}}},
        })
        assert ruleset.get_progression_node("wizard", 1).grants == ("firebolt",)

    def test_null_choice_text_is_blank(self):
        ruleset = parse_ruleset({
            "meta": {"id": "x"},
            "classes": {"wizard": {"progression": {"2": {"choices": [
                {"id": "c2", "from": "spells", "title": None, "help": None},
            ]}}}},
        })
        choice = ruleset.get_progression_node("wizard", 2).choices[0]
        assert choice.title == ""
        assert choice.help == ""
        assert choice.label == "c2"

    def test_warnings_are_logged(self, caplog):
        with caplog.at_level("WARNING"):
            parse_ruleset({"meta": {"id": "x"}, "classes": {"monk": {}}})
        assert "missing_progression" not in caplog.text
        assert "no progression" in caplog.text


class TestFilesAndExport:

    def test_json_file(self, tmp_path, ruleset_document):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps(ruleset_document), encoding="utf-8")
        assert load_ruleset_file(path).id == "homebrew"

    def test_yaml_file(self, tmp_path, ruleset_document):
        path = tmp_path / "rules.yaml"
        path.write_text(yaml.safe_dump(ruleset_document), encoding="utf-8")
        ruleset = load_ruleset_file(path)
        assert ruleset.id == "homebrew"
        assert ruleset.get_progression_node("artificer", 2).grants == ("infuse-item",)

    def test_yaml_with_unquoted_numeric_keys(self):
        text = """
meta: {id: numeric, name: Numeric}
classes:
  artificer:
    name: Artificer
    spellcastingAbility: INT
    spellSlots: {1: {1: 2}, 3: {1: 3, 2: 1}}
    progression:
      1:
        grants: [magical-tinkering]
        choices:
          - {id: 1, title: Cantrips, from: spells.cantrip, count: 1}
spells:
  - {id: 7, name: Spark, level: 0}
"""
        ruleset = load_ruleset_text(text, fmt="yaml")
        artificer = ruleset.get_class("artificer")
        assert artificer is not None
        assert artificer.spell_slots == {"1": {"1": 2}, "3": {"1": 3, "2": 1}}
        assert ruleset.get_progression_node("artificer", 1).choices[0].id == "1"
        assert ruleset.pools.find("7").name == "Spark"

    def test_missing_file(self, tmp_path):
        with pytest.raises(RulesetInvalidError, match="not found"):
            load_ruleset_file(tmp_path / "nope.json")

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "rules.toml"
        path.write_text("x = 1", encoding="utf-8")
        with pytest.raises(RulesetInvalidError, match="Unsupported"):
            load_ruleset_file(path)

    def test_export_returns_original_document(self, ruleset_document):
        ruleset = parse_ruleset(ruleset_document)
        exported = export_ruleset(ruleset)
        assert exported == ruleset_document
        assert json.loads(json.dumps(exported)) == ruleset_document

    def test_export_is_a_copy(self, ruleset_document):
        ruleset = parse_ruleset(ruleset_document)
        exported = export_ruleset(ruleset)
        exported["meta"]["id"] = "changed"
        assert export_ruleset(ruleset)["meta"]["id"] == "homebrew"

    def test_import_does_not_alias_input(self, ruleset_document):
        ruleset = parse_ruleset(ruleset_document)
        ruleset_document["meta"]["name"] = "Renamed"
        assert export_ruleset(ruleset)["meta"]["name"] == "Homebrew Rules"
