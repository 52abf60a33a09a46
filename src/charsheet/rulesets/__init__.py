"""
Ruleset support for charsheet.

This module provides:
- Read-only data models for imported rules documents (classes, progression
  nodes, option pools, feature dictionary)
- JSON/YAML import with structural validation
- Informational validation of characters against a ruleset
"""

from .models import (
    # Core ruleset model
    Ruleset,
    RulesetPools,
    # Class models
    ClassDef,
    ProgressionNode,
    ChoiceSpec,
    ChoiceFilter,
    # Pool models
    Option,
    OptionRequirements,
    FeatureInfo,
)
from .loader import (
    RulesetInvalidError,
    export_ruleset,
    load_ruleset_file,
    load_ruleset_text,
    parse_ruleset,
)
from .validators import (
    CharacterValidator,
    ValidationSeverity,
    ValidationIssue,
    ValidationReport,
    validate_ruleset,
)

__all__ = [
    # Loader
    "RulesetInvalidError",
    "export_ruleset",
    "load_ruleset_file",
    "load_ruleset_text",
    "parse_ruleset",
    # Validators
    "CharacterValidator",
    "ValidationSeverity",
    "ValidationIssue",
    "ValidationReport",
    "validate_ruleset",
    # Core
    "Ruleset",
    "RulesetPools",
    # Classes
    "ClassDef",
    "ProgressionNode",
    "ChoiceSpec",
    "ChoiceFilter",
    # Pools
    "Option",
    "OptionRequirements",
    "FeatureInfo",
]
