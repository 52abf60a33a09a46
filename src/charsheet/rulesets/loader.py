"""
Ruleset import from JSON or YAML documents.

Expected document structure:
```json
{
  "meta": {"id": "my-homebrew", "name": "My Homebrew", "version": "1.0"},
  "classes": {
    "artificer": {
      "name": "Artificer",
      "hitDie": 8,
      "progression": {
        "2": {"grants": ["infuse-item"],
              "choices": [{"id": "inf2", "from": "infusions", "count": 4}]}
      }
    }
  },
  "spells": [...], "infusions": [...], "features": [...], "feats": [...],
  "featuresDictionary": {"infuse-item": {"name": "Infuse Item", "description": "..."}}
}
```

Pools may also be nested under a ``pools`` object. Structural problems that
make the document unusable raise RulesetInvalidError; everything else is
logged as a warning and skipped.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import (
    ChoiceSpec,
    ClassDef,
    FeatureInfo,
    Option,
    ProgressionNode,
    Ruleset,
    RulesetPools,
)
from ..ledger import GRANTS_KEY
from .validators import POOL_KEYS, ValidationReport, validate_ruleset


logger = logging.getLogger(__name__)


SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}


class RulesetInvalidError(Exception):
    """Ruleset document failed structural validation; the import is refused."""

    def __init__(self, message: str, report: ValidationReport | None = None):
        super().__init__(message)
        self.report = report


# =============================================================================
# Entry Points
# =============================================================================

def load_ruleset_file(path: Path | str) -> Ruleset:
    """Load and validate a ruleset from a .json/.yaml/.yml file."""
    path = Path(path)
    if not path.exists():
        raise RulesetInvalidError(f"Ruleset file not found: {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise RulesetInvalidError(
            f"Unsupported file format: {suffix}. "
            f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )

    try:
        raw_content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RulesetInvalidError(f"Failed to read file: {e}") from e

    ruleset = load_ruleset_text(raw_content, fmt="json" if suffix == ".json" else "yaml")
    logger.info(f"Loaded ruleset '{ruleset.name}' from {path}: {ruleset.stats_summary()}")
    return ruleset


def load_ruleset_text(text: str, fmt: str = "json") -> Ruleset:
    """Parse ruleset text in ``json`` or ``yaml`` format."""
    try:
        if fmt == "json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise RulesetInvalidError(f"Ruleset {fmt.upper()} is invalid: {e}") from e
    return parse_ruleset(data)


def parse_ruleset(document: Any) -> Ruleset:
    """
    Validate a parsed document and build a Ruleset from it.

    Args:
        document: Parsed JSON/YAML object

    Returns:
        The imported Ruleset, keeping a deep copy of ``document`` as ``raw``

    Raises:
        RulesetInvalidError: If ``meta.id`` or ``classes`` is missing
    """
    report = validate_ruleset(document)
    for issue in report.warnings:
        logger.warning(f"Ruleset {report.subject_id}: {issue.field}: {issue.message}")
    if not report.valid:
        reasons = "; ".join(i.message for i in report.errors)
        raise RulesetInvalidError(f"Ruleset rejected: {reasons}", report)

    raw = copy.deepcopy(document)
    meta = document["meta"]
    ruleset_id = str(meta["id"])

    return Ruleset(
        id=ruleset_id,
        name=str(meta.get("name") or ruleset_id),
        version=str(meta.get("version") or "1.0"),
        classes=_parse_classes(document["classes"]),
        pools=_parse_pools(document),
        features_dictionary=_parse_features_dictionary(
            document.get("featuresDictionary", document.get("features_dictionary"))
        ),
        raw=raw,
    )


def export_ruleset(ruleset: Ruleset) -> dict[str, Any]:
    """Return the document the ruleset was imported from, unchanged."""
    return copy.deepcopy(ruleset.raw)


# =============================================================================
# Section Parsers
# =============================================================================

def _parse_classes(classes: dict[str, Any]) -> dict[str, ClassDef]:
    parsed: dict[str, ClassDef] = {}
    for class_id, data in classes.items():
        if not isinstance(data, dict):
            continue
        try:
            parsed[str(class_id)] = _parse_class(str(class_id), data)
        except ValidationError as e:
            logger.warning(f"Invalid class definition '{class_id}': {e}")
    return parsed


def _parse_class(class_id: str, data: dict[str, Any]) -> ClassDef:
    progression: dict[int, ProgressionNode] = {}
    for level_key, node in (data.get("progression") or {}).items():
        if not str(level_key).isdigit() or not 1 <= int(level_key) <= 20:
            continue
        if not isinstance(node, dict):
            continue
        progression[int(level_key)] = _parse_node(class_id, int(level_key), node)

    fields = {k: v for k, v in data.items() if k != "progression"}
    fields["id"] = class_id
    if not fields.get("name"):
        fields["name"] = class_id
    hit_die = fields.get("hitDie", fields.get("hit_die"))
    if isinstance(hit_die, str) and hit_die.lower().startswith("d"):
        # "d8" -> 8
        fields["hitDie"] = hit_die[1:]
        fields.pop("hit_die", None)
    for key in ("spellSlots", "spell_slots"):
        if key in fields:
            fields[key] = _stringify_slot_table(fields[key])
    return ClassDef.model_validate({**fields, "progression": progression})


def _stringify_slot_table(table: Any) -> Any:
    """YAML reads unquoted level keys as ints: {1: {1: 2}} -> {"1": {"1": 2}}."""
    if not isinstance(table, dict):
        return table
    return {
        str(level): {str(k): v for k, v in slots.items()} if isinstance(slots, dict) else slots
        for level, slots in table.items()
    }


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        return [value]
    return list(value)


def _parse_node(class_id: str, level: int, data: dict[str, Any]) -> ProgressionNode:
    grants = [str(g) for g in _as_list(data.get("grants"))]
    choices: list[ChoiceSpec] = []
    seen: set[str] = set()
    for item in data.get("choices") or []:
        if not isinstance(item, dict) or item.get("id") in (None, ""):
            continue
        try:
            choice = ChoiceSpec.model_validate({**item, "id": str(item["id"])})
        except ValidationError as e:
            logger.warning(f"Invalid choice at {class_id} level {level}: {e}")
            continue
        if choice.id in seen or choice.id == GRANTS_KEY:
            logger.warning(f"Duplicate choice id '{choice.id}' at {class_id} level {level}; keeping the first")
            continue
        seen.add(choice.id)
        choices.append(choice)
    return ProgressionNode(grants=tuple(grants), choices=tuple(choices))


def _parse_pools(document: dict[str, Any]) -> RulesetPools:
    declared: dict[str, Any] = {}
    nested = document.get("pools")
    if isinstance(nested, dict):
        declared.update(nested)
    for key in POOL_KEYS:
        if key in document:
            declared[key] = document[key]

    pools: dict[str, tuple[Option, ...]] = {}
    for key, items in declared.items():
        if not isinstance(items, list):
            logger.warning(f"Pool '{key}' is not a list and will be ignored")
            continue
        pools[key] = tuple(_parse_options(key, items))

    return RulesetPools(
        **{k: pools.pop(k) for k in POOL_KEYS if k in pools},
        extra=pools,
    )


def _parse_options(pool_key: str, items: list[Any]) -> list[Option]:
    options: list[Option] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            options.append(Option.model_validate(_ensure_id(item)))
        except ValidationError as e:
            logger.warning(f"Invalid option in pool '{pool_key}': {e}")
    return options


def _ensure_id(data: dict[str, Any]) -> dict[str, Any]:
    """Ensure an option has id and name, deriving one from the other."""
    data = dict(data)
    if "id" not in data and data.get("name"):
        data["id"] = str(data["name"]).lower().replace(" ", "-").replace("'", "")
    if data.get("id") is not None:
        data["id"] = str(data["id"])
    if "name" not in data and "id" in data:
        data["name"] = str(data["id"])
    elif data.get("name") is not None:
        data["name"] = str(data["name"])
    if isinstance(data.get("tags"), str):
        data["tags"] = [data["tags"]]
    return data


def _parse_features_dictionary(data: Any) -> dict[str, FeatureInfo]:
    if not isinstance(data, dict):
        return {}
    parsed: dict[str, FeatureInfo] = {}
    for feature_id, info in data.items():
        if isinstance(info, str):
            info = {"name": info}
        if not isinstance(info, dict):
            continue
        try:
            parsed[str(feature_id)] = FeatureInfo.model_validate({"name": str(feature_id), **info})
        except ValidationError as e:
            logger.warning(f"Invalid feature dictionary entry '{feature_id}': {e}")
    return parsed


__all__ = [
    "RulesetInvalidError",
    "SUPPORTED_EXTENSIONS",
    "export_ruleset",
    "load_ruleset_file",
    "load_ruleset_text",
    "parse_ruleset",
]
