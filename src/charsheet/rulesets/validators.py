"""
Structural validation of ruleset documents and of characters against a ruleset.

Ruleset validation decides whether an import is accepted: only a missing
``meta.id`` or a missing/non-object ``classes`` map is an error. Everything
else (missing names, pools, progression) is a warning and the engine degrades
to empty option sets and no grants.

Character validation is informational and never blocks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..ledger import GRANTS_KEY, applied_levels

if TYPE_CHECKING:
    from ..models import Character
    from .models import Ruleset


POOL_KEYS = ("spells", "infusions", "features", "feats")


# =============================================================================
# Validation Models
# =============================================================================

class ValidationSeverity(Enum):
    """Severity level for validation issues."""
    ERROR = "error"      # Document or record cannot be used
    WARNING = "warning"  # Possible issue, but allowed
    INFO = "info"        # Informational note


@dataclass
class ValidationIssue:
    """A single validation issue."""
    severity: ValidationSeverity
    type: str           # e.g., "missing_meta_id", "pending_advancement"
    message: str        # Human-readable message
    field: str          # e.g., "meta.id", "advancement.3"
    suggestion: str | None = None


@dataclass
class ValidationReport:
    """
    Complete validation report for a ruleset document or a character.

    The subject is considered valid if it has no ERROR-level issues.
    """
    subject_id: str
    valid: bool         # True if no errors (warnings OK)
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        """Return all ERROR-level issues."""
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        """Return all WARNING-level issues."""
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    @property
    def info(self) -> list[ValidationIssue]:
        """Return all INFO-level issues."""
        return [i for i in self.issues if i.severity == ValidationSeverity.INFO]

    def __str__(self) -> str:
        """Return a formatted summary of the validation report."""
        lines = [f"Validation Report for {self.subject_id}"]
        lines.append(f"Status: {'✓ VALID' if self.valid else '✗ INVALID'}")
        lines.append(f"Issues: {len(self.errors)} errors, {len(self.warnings)} warnings, {len(self.info)} info")

        for title, issues in (("Errors", self.errors), ("Warnings", self.warnings), ("Info", self.info)):
            if not issues:
                continue
            lines.append(f"\n{title}:")
            for issue in issues:
                lines.append(f"  - [{issue.type}] {issue.field}: {issue.message}")
                if issue.suggestion:
                    lines.append(f"    Suggestion: {issue.suggestion}")

        return "\n".join(lines)


def _report(subject_id: str, issues: list[ValidationIssue]) -> ValidationReport:
    return ValidationReport(
        subject_id=subject_id,
        valid=not any(i.severity == ValidationSeverity.ERROR for i in issues),
        issues=issues,
    )


# =============================================================================
# Ruleset Document Validation
# =============================================================================

def validate_ruleset(document: Any) -> ValidationReport:
    """
    Check a raw ruleset document for minimal structural soundness.

    Args:
        document: The parsed JSON/YAML document

    Returns:
        ValidationReport; ``valid`` is False when the import must be refused
    """
    issues: list[ValidationIssue] = []

    if not isinstance(document, dict):
        issues.append(ValidationIssue(
            severity=ValidationSeverity.ERROR,
            type="not_an_object",
            message="Ruleset is not an object.",
            field="$",
        ))
        return _report("(unknown)", issues)

    meta = document.get("meta") if isinstance(document.get("meta"), dict) else {}
    subject_id = str(meta.get("id") or "(unknown)")

    if not meta.get("id"):
        issues.append(ValidationIssue(
            severity=ValidationSeverity.ERROR,
            type="missing_meta_id",
            message="ruleset.meta.id is required.",
            field="meta.id",
            suggestion='Add a "meta": {"id": "..."} block with a stable identifier.',
        ))

    if not meta.get("name"):
        issues.append(ValidationIssue(
            severity=ValidationSeverity.WARNING,
            type="missing_meta_name",
            message="ruleset.meta.name is missing; the id will be shown instead.",
            field="meta.name",
        ))

    classes = document.get("classes")
    if not isinstance(classes, dict):
        issues.append(ValidationIssue(
            severity=ValidationSeverity.ERROR,
            type="missing_classes",
            message="ruleset.classes is required and must be an object.",
            field="classes",
            suggestion='Declare classes as {"<classId>": {"name": ..., "progression": {...}}}.',
        ))
    else:
        issues.extend(_validate_classes(classes))

    pools = document.get("pools") if isinstance(document.get("pools"), dict) else {}
    missing_pools = [k for k in POOL_KEYS if k not in document and k not in pools]
    if missing_pools:
        issues.append(ValidationIssue(
            severity=ValidationSeverity.WARNING,
            type="missing_pools",
            message=f"Ruleset defines no {', '.join(missing_pools)} pool(s); choices from them will offer no options.",
            field="pools",
        ))

    return _report(subject_id, issues)


def _validate_classes(classes: dict[str, Any]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    for class_id, class_data in classes.items():
        prefix = f"classes.{class_id}"
        if not isinstance(class_data, dict):
            issues.append(ValidationIssue(
                severity=ValidationSeverity.WARNING,
                type="invalid_class",
                message=f"Class '{class_id}' is not an object and will be skipped.",
                field=prefix,
            ))
            continue

        if not class_data.get("name"):
            issues.append(ValidationIssue(
                severity=ValidationSeverity.WARNING,
                type="missing_class_name",
                message=f"Class '{class_id}' has no name; the id will be shown instead.",
                field=f"{prefix}.name",
            ))

        progression = class_data.get("progression")
        if not isinstance(progression, dict) or not progression:
            issues.append(ValidationIssue(
                severity=ValidationSeverity.WARNING,
                type="missing_progression",
                message=f"Class '{class_id}' defines no progression; levelling it grants nothing.",
                field=f"{prefix}.progression",
            ))
            continue

        for level_key, node in progression.items():
            node_field = f"{prefix}.progression.{level_key}"
            if not str(level_key).isdigit() or not 1 <= int(level_key) <= 20:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="invalid_level_key",
                    message=f"Progression key '{level_key}' is not a level between 1 and 20 and will be ignored.",
                    field=node_field,
                ))
                continue
            if not isinstance(node, dict):
                continue

            seen: set[str] = set()
            for idx, choice in enumerate(node.get("choices") or []):
                if not isinstance(choice, dict) or choice.get("id") in (None, ""):
                    issues.append(ValidationIssue(
                        severity=ValidationSeverity.WARNING,
                        type="invalid_choice",
                        message=f"Choice #{idx} at level {level_key} has no id and will be skipped.",
                        field=f"{node_field}.choices[{idx}]",
                    ))
                    continue
                choice_id = str(choice["id"])
                if choice_id in seen or choice_id == GRANTS_KEY:
                    issues.append(ValidationIssue(
                        severity=ValidationSeverity.WARNING,
                        type="duplicate_choice_id",
                        message=f"Choice id '{choice_id}' is not unique at level {level_key}.",
                        field=f"{node_field}.choices[{idx}].id",
                    ))
                seen.add(choice_id)

    return issues


# =============================================================================
# Character Validator
# =============================================================================

class CharacterValidator:
    """
    Checks a character's advancement ledger against a ruleset.

    - WARNING: class unknown to the ruleset, ledger picks for choices the
      ruleset no longer declares
    - INFO: levels reached without their progression applied, ledger entries
      above the current level (ignored, never deleted)
    """

    def __init__(self, ruleset: Ruleset):
        self.ruleset = ruleset

    def validate(self, character: Character) -> ValidationReport:
        issues: list[ValidationIssue] = []

        class_def = self.ruleset.get_class(character.class_id)
        if class_def is None:
            issues.append(ValidationIssue(
                severity=ValidationSeverity.WARNING,
                type="unknown_class",
                message=f"Class '{character.class_id}' not found in ruleset '{self.ruleset.name}'.",
                field="class_id",
                suggestion="Pick one of: " + (", ".join(self.ruleset.classes) or "(ruleset has no classes)"),
            ))
            return _report(character.id, issues)

        applied = set(applied_levels(character))

        pending = [
            lvl for lvl in class_def.progression_levels
            if 1 < lvl <= character.level and lvl not in applied
        ]
        if pending:
            issues.append(ValidationIssue(
                severity=ValidationSeverity.INFO,
                type="pending_advancement",
                message=f"Progression not applied for level(s): {', '.join(map(str, pending))}",
                field="advancement",
                suggestion="Re-run the level-up for these levels with force to apply them.",
            ))

        above = [lvl for lvl in sorted(applied) if lvl > character.level]
        if above:
            issues.append(ValidationIssue(
                severity=ValidationSeverity.INFO,
                type="ledger_above_level",
                message=f"Advancement recorded above current level for: {', '.join(map(str, above))} (ignored)",
                field="advancement",
            ))

        for lvl in sorted(applied):
            node = class_def.node_at(lvl)
            record = character.advancement.get(str(lvl), {})
            known_ids = {c.id for c in node.choices} if node else set()
            stale = [cid for cid in record if cid != GRANTS_KEY and cid not in known_ids]
            if stale:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.WARNING,
                    type="stale_choice",
                    message=f"Level {lvl} records picks for choices the ruleset no longer declares: {', '.join(stale)}",
                    field=f"advancement.{lvl}",
                    suggestion="Force re-apply this level to re-pick against the current ruleset.",
                ))

        return _report(character.id, issues)


__all__ = [
    "ValidationSeverity",
    "ValidationIssue",
    "ValidationReport",
    "CharacterValidator",
    "validate_ruleset",
]
