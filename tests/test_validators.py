"""
Tests for ruleset document validation and character validation against a ruleset.
"""

from charsheet.level_up_engine import apply_level
from charsheet.models import Character
from charsheet.rulesets import (
    CharacterValidator,
    ValidationIssue,
    ValidationReport,
    ValidationSeverity,
    validate_ruleset,
)


def issue_types(report: ValidationReport) -> list[str]:
    return [i.type for i in report.issues]


class TestValidateRuleset:

    def test_sample_is_valid_without_warnings(self, ruleset_document):
        report = validate_ruleset(ruleset_document)
        assert report.valid
        assert report.warnings == []
        assert report.subject_id == "homebrew"

    def test_missing_meta_id_is_an_error(self):
        report = validate_ruleset({"classes": {}})
        assert not report.valid
        assert "missing_meta_id" in [i.type for i in report.errors]

    def test_missing_classes_is_an_error(self):
        report = validate_ruleset({"meta": {"id": "x", "name": "X"}})
        assert not report.valid
        assert "missing_classes" in issue_types(report)

    def test_missing_name_and_pools_are_warnings(self):
        report = validate_ruleset({"meta": {"id": "x"}, "classes": {}})
        assert report.valid
        assert {"missing_meta_name", "missing_pools"} <= {i.type for i in report.warnings}

    def test_class_problems_are_warnings(self):
        report = validate_ruleset({
            "meta": {"id": "x", "name": "X"},
            "classes": {
                "broken": "not an object",
                "empty": {"name": "Empty"},
                "odd": {
                    "name": "Odd",
                    "progression": {
                        "0": {},
                        "2": {"choices": [{"from": "spells"}, {"id": "a", "from": "spells"}, {"id": "a", "from": "feats"}]},
                    },
                },
            },
            "spells": [], "infusions": [], "features": [], "feats": [],
        })
        assert report.valid
        assert {"invalid_class", "missing_progression", "invalid_level_key", "invalid_choice", "duplicate_choice_id"} <= {
            i.type for i in report.warnings
        }

    def test_reserved_choice_id_is_flagged(self):
        report = validate_ruleset({
            "meta": {"id": "x", "name": "X"},
            "classes": {"c": {"name": "C", "progression": {"1": {"choices": [{"id": "__grants__", "from": "feats"}]}}}},
        })
        assert "duplicate_choice_id" in issue_types(report)


class TestValidationReport:

    def test_string_representation(self):
        report = ValidationReport(
            subject_id="hero",
            valid=True,
            issues=[
                ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="stale_choice",
                    message="Old pick",
                    field="advancement.2",
                    suggestion="Re-pick",
                ),
                ValidationIssue(
                    severity=ValidationSeverity.INFO,
                    type="pending_advancement",
                    message="Level 3 pending",
                    field="advancement",
                ),
            ],
        )
        text = str(report)
        assert "Validation Report for hero" in text
        assert "✓ VALID" in text
        assert "0 errors, 1 warnings, 1 info" in text
        assert "Suggestion: Re-pick" in text


class TestCharacterValidator:

    def test_fresh_character_is_clean(self, ruleset, character):
        report = CharacterValidator(ruleset).validate(character)
        assert report.valid
        assert report.issues == []

    def test_unknown_class(self, ruleset):
        report = CharacterValidator(ruleset).validate(Character(class_id="bard"))
        assert issue_types(report) == ["unknown_class"]
        assert report.warnings[0].suggestion.startswith("Pick one of: artificer")

    def test_pending_advancement(self, ruleset, character):
        character.level = 3
        report = CharacterValidator(ruleset).validate(character)
        pending = [i for i in report.info if i.type == "pending_advancement"]
        assert len(pending) == 1
        assert "2, 3" in pending[0].message

    def test_applied_levels_are_not_pending(self, ruleset, character):
        character = apply_level(character, ruleset, "artificer", 2, {"inf2": ["enhanced-weapon", "bag-of-holding"]})
        character.level = 2
        report = CharacterValidator(ruleset).validate(character)
        assert "pending_advancement" not in issue_types(report)

    def test_ledger_above_level(self, ruleset, character):
        character = apply_level(character, ruleset, "artificer", 3, {})
        report = CharacterValidator(ruleset).validate(character)
        assert "ledger_above_level" in issue_types(report)
        assert report.valid

    def test_stale_choice(self, ruleset, character):
        character.level = 2
        character.advancement["2"] = {"old-choice": ["x"], "inf2": ["a", "b"]}
        report = CharacterValidator(ruleset).validate(character)
        stale = [i for i in report.warnings if i.type == "stale_choice"]
        assert len(stale) == 1
        assert "old-choice" in stale[0].message
        assert stale[0].field == "advancement.2"
