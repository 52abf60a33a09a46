"""
Charsheet MCP Server
Character sheet advancement over imported rulesets, exposed as FastMCP tools.
"""

import json
import logging
import os
from pathlib import Path
from typing import Annotated, Literal

from dotenv import load_dotenv
from fastmcp import FastMCP
from pydantic import Field

from .choices import options_for
from .level_up_engine import (
    LevelUpEngine,
    LevelUpError,
    apply_level,
    build_level_up_plan,
)
from .models import ABILITY_KEYS, Character, normalize_character
from .rulesets import (
    CharacterValidator,
    RulesetInvalidError,
    Ruleset,
    load_ruleset_file,
    load_ruleset_text,
)
from .stats import SKILLS, derive
from .storage import CharacterStorage, StoreWriteError

logger = logging.getLogger("charsheet")

logging.basicConfig(
    level=logging.DEBUG,
    )

if not load_dotenv():
    logger.warning("❌ .env file invalid or not found! Using the current directory for storage.")

data_path = Path(os.getenv("CHARSHEET_STORAGE_DIR", "")).resolve()
logger.debug(f"📂 Data path: {data_path}")

storage = CharacterStorage(data_dir=data_path)
logger.debug("✅ Storage layer initialized")

mcp = FastMCP(
    name="charsheet"
)
logger.debug("✅ Server initialized, registering tools")


RULESET_SUFFIXES = (".json", ".yaml", ".yml")


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _resolve_character(character_id: str | None) -> Character | None:
    character_id = character_id or storage.active_character_id
    if not character_id:
        return None
    return storage.get_character(character_id)


def _character_ruleset(character: Character) -> Ruleset | None:
    if not character.ruleset_id:
        return None
    return storage.get_ruleset(character.ruleset_id)


def _format_modifier(value: int) -> str:
    return f"+{value}" if value >= 0 else str(value)


def _load_ruleset_source(source: str, fmt: str) -> Ruleset:
    """Treat ``source`` as a file path when it names an existing ruleset file, else as document text."""
    if len(source) < 1024 and Path(source).suffix.lower() in RULESET_SUFFIXES and Path(source).exists():
        return load_ruleset_file(source)
    return load_ruleset_text(source, fmt=fmt)


def _character_sheet_logic(character: Character, ruleset: Ruleset | None) -> str:
    """Core logic for rendering a character sheet. Testable without MCP wrapper."""
    stats = derive(character, ruleset)

    lines = [
        f"**{character.name}** ({character.class_id or 'no class'} {character.level})",
        f"HP {character.hp.current}/{character.hp.max}"
        + (f" (+{character.hp.temp} temp)" if character.hp.temp else "")
        + f" | AC {character.ac} | Speed {character.speed} | Proficiency {_format_modifier(stats.proficiency_bonus)}",
        "",
        "**Abilities:**",
    ]
    for key in ABILITY_KEYS:
        lines.append(
            f"  {key} {character.abilities[key]} ({_format_modifier(stats.ability_modifiers[key])}), "
            f"save {_format_modifier(stats.save_totals[key])}"
        )

    lines += ["", "**Skills:**"]
    for skill in SKILLS:
        rank = character.skill_proficiency_rank.get(skill, 0)
        marker = {1: " *", 2: " **"}.get(rank, "")
        lines.append(f"  {skill.replace('_', ' ').title()}: {_format_modifier(stats.skill_totals[skill])}{marker}")

    lines += [
        "",
        f"Spell DC {stats.spell_dc} | Spell attack {_format_modifier(stats.spell_attack)} | Passive Perception {stats.passive_perception}",
    ]
    if stats.spell_slots:
        slots = ", ".join(f"{lvl}: {n}" for lvl, n in sorted(stats.spell_slots.items(), key=lambda kv: int(kv[0])))
        lines.append(f"Spell slots: {slots}")
    if character.spells.cantrips:
        lines.append(f"Cantrips: {', '.join(sorted(character.spells.cantrips))}")
    if character.spells.known:
        lines.append(f"Spells known: {', '.join(sorted(character.spells.known))}")
    if character.infusions.learned:
        lines.append(f"Infusions: {', '.join(sorted(character.infusions.learned))}")

    if character.features:
        lines += ["", "**Features:**"]
        for feature in sorted(character.features, key=lambda f: f.level):
            lines.append(f"  [{feature.level}] {feature.name}")

    if ruleset is None:
        lines += ["", f"⚠️ Ruleset '{character.ruleset_id}' missing. Re-import it."]
    else:
        report = CharacterValidator(ruleset).validate(character)
        if report.issues:
            lines += ["", str(report)]
    return "\n".join(lines)


def _level_up_plan_logic(character: Character, ruleset: Ruleset, target_level: int) -> str:
    """Core logic for describing a level's progression node. Testable without MCP wrapper."""
    plan = build_level_up_plan(ruleset, character, target_level)
    if plan.node_missing:
        return f"No progression defined for '{plan.class_id}' at level {target_level}."

    lines = [f"**{plan.class_id} level {plan.level}**"]
    if plan.grants:
        lines.append("Grants: " + ", ".join(ruleset.feature_name(g) for g in plan.grants))
    for choice in plan.choices:
        lines.append(f"Choice `{choice.id}`: {choice.label} (pick {choice.count} from {choice.from_})")
    return "\n".join(lines)


def _choice_options_logic(character: Character, ruleset: Ruleset, level: int, choice_id: str) -> str:
    """Core logic for listing a choice's candidate options. Testable without MCP wrapper."""
    node = ruleset.get_progression_node(character.class_id, level)
    choice = node.get_choice(choice_id) if node else None
    if choice is None:
        return f"❌ No choice '{choice_id}' at level {level}."

    options = options_for(ruleset, character.class_id, choice, level, subclass_id=character.subclass_id)
    if not options:
        return f"Ruleset defines no options for '{choice.label}'."
    lines = [f"**{choice.label}** (pick {choice.count}):"]
    for option in options:
        level_note = f" [level {option.level}]" if option.level is not None else ""
        lines.append(f"• {option.id}: {option.name}{level_note}")
    return "\n".join(lines)


def _apply_level_logic(
    character: Character,
    ruleset: Ruleset,
    level: int,
    selections: dict[str, list[str]],
    force: bool = False,
) -> tuple[Character | None, str]:
    """Core logic for applying one level. Testable without MCP wrapper.

    Returns:
        The updated character (None on failure) and a message for the user
    """
    try:
        updated = apply_level(character, ruleset, character.class_id, level, selections, force=force)
    except LevelUpError as e:
        return None, f"❌ {e}"

    if updated.level < level:
        updated.level = level

    before = {f.id for f in character.features}
    added = [f.name for f in updated.features if f.id not in before]
    message = f"⬆️ {updated.name} is now level {updated.level}"
    if added:
        message += f". New: {', '.join(added)}"
    return updated, message


# ----------------------------------------------------------------------
# Tools
# ----------------------------------------------------------------------

# Ruleset tools
@mcp.tool
def import_ruleset(
    source: Annotated[str, Field(description="Path to a .json/.yaml/.yml ruleset file, or the document text itself")],
    fmt: Annotated[Literal["json", "yaml"], Field(description="Format of the text when `source` is not a file path")] = "json",
) -> str:
    """Import a ruleset document and make it the active ruleset.

    A ruleset with the same id replaces the stored one in full.
    """
    try:
        ruleset = _load_ruleset_source(source, fmt)
    except RulesetInvalidError as e:
        return f"❌ Ruleset import refused: {e}"

    try:
        storage.put_ruleset(ruleset)
        storage.set_active_ruleset(ruleset.id)
    except StoreWriteError as e:
        return f"❌ Could not save ruleset: {e}"
    return f"📚 Imported ruleset '{ruleset.name}' v{ruleset.version} ({ruleset.stats_summary()}) and set as active"


@mcp.tool
def list_rulesets() -> str:
    """List all imported rulesets."""
    rulesets = storage.list_rulesets()
    if not rulesets:
        return f"❌ No rulesets found in {storage.data_dir}!"

    active = storage.active_ruleset_id
    lines = []
    for r in rulesets:
        marker = " (active)" if r["id"] == active else ""
        lines.append(f"• {r['name']} [{r['id']}] v{r['version']}{marker}")
    return "**Imported Rulesets:**\n" + "\n".join(lines)


# Character tools
@mcp.tool
def create_character(
    name: Annotated[str, Field(description="Character name")],
    class_id: Annotated[str, Field(description="Class id from the ruleset (e.g. 'artificer')")],
    ruleset_id: Annotated[str | None, Field(description="Ruleset id. Defaults to the active ruleset")] = None,
    subclass_id: Annotated[str | None, Field(description="Subclass id, if any")] = None,
    abilities: Annotated[dict[str, int] | None, Field(description="Ability scores keyed by STR/DEX/CON/INT/WIS/CHA")] = None,
    max_hp: Annotated[int, Field(description="Maximum hit points", ge=1)] = 10,
    ac: Annotated[int, Field(description="Armor class")] = 10,
) -> str:
    """Create a level 1 character and set it as active.

    Level 1 progression is not applied automatically; use `apply_character_level`.
    """
    ruleset_id = ruleset_id or storage.active_ruleset_id
    if not ruleset_id:
        return "❌ Select a ruleset first (import one with `import_ruleset`)."
    ruleset = storage.get_ruleset(ruleset_id)
    if ruleset is None:
        return f"❌ Ruleset '{ruleset_id}' not found."
    if ruleset.get_class(class_id) is None:
        return f"❌ Class '{class_id}' not found in '{ruleset.name}'. Available: {', '.join(ruleset.classes) or '(none)'}"

    character = normalize_character({
        "name": name,
        "ruleset_id": ruleset.id,
        "class_id": class_id,
        "subclass_id": subclass_id,
        "abilities": abilities or {},
        "hp": {"current": max_hp, "max": max_hp},
        "ac": ac,
    })
    try:
        storage.put_character(character)
        storage.set_active_character(character.id)
    except StoreWriteError as e:
        return f"❌ Could not save character: {e}"
    return f"🧙 Created character '{character.name}' [{character.id}] ({class_id} 1) and set as active"


@mcp.tool
def list_characters() -> str:
    """List all stored characters, most recently updated first."""
    characters = storage.list_characters()
    if not characters:
        return "❌ No characters found."

    active = storage.active_character_id
    lines = []
    for c in characters:
        marker = " (active)" if c.id == active else ""
        lines.append(f"• {c.name} [{c.id}] {c.class_id or '?'} {c.level}{marker}")
    return "**Characters:**\n" + "\n".join(lines)


@mcp.tool
def get_character_sheet(
    character_id: Annotated[str | None, Field(description="Character id. Defaults to the active character")] = None,
) -> str:
    """Get the character sheet with derived stats, features and validation notes."""
    character = _resolve_character(character_id)
    if not character:
        return "❌ Character not found."
    return _character_sheet_logic(character, _character_ruleset(character))


# Level-up tools
@mcp.tool
def get_level_up_plan(
    target_level: Annotated[int, Field(description="Class level to plan for", ge=1, le=20)],
    character_id: Annotated[str | None, Field(description="Character id. Defaults to the active character")] = None,
) -> str:
    """Show what reaching a level grants and which choices must be made."""
    character = _resolve_character(character_id)
    if not character:
        return "❌ Character not found."
    ruleset = _character_ruleset(character)
    if ruleset is None:
        return f"❌ Ruleset '{character.ruleset_id}' missing. Re-import it."
    return _level_up_plan_logic(character, ruleset, target_level)


@mcp.tool
def get_choice_options(
    level: Annotated[int, Field(description="Class level the choice belongs to", ge=1, le=20)],
    choice_id: Annotated[str, Field(description="Choice id from the level-up plan")],
    character_id: Annotated[str | None, Field(description="Character id. Defaults to the active character")] = None,
) -> str:
    """List the options a player may pick for one choice."""
    character = _resolve_character(character_id)
    if not character:
        return "❌ Character not found."
    ruleset = _character_ruleset(character)
    if ruleset is None:
        return f"❌ Ruleset '{character.ruleset_id}' missing. Re-import it."
    return _choice_options_logic(character, ruleset, level, choice_id)


@mcp.tool
def apply_character_level(
    level: Annotated[int, Field(description="Class level to apply", ge=1, le=20)],
    selections: Annotated[dict[str, list[str]], Field(description="Choice id -> picked option ids for every choice at this level")],
    character_id: Annotated[str | None, Field(description="Character id. Defaults to the active character")] = None,
    force: Annotated[bool, Field(description="Revert and re-apply a level that was already applied")] = False,
) -> str:
    """Apply one level of class progression and save the character.

    The level counter is raised to `level` if it is lower.
    """
    character = _resolve_character(character_id)
    if not character:
        return "❌ Character not found."
    ruleset = _character_ruleset(character)
    if ruleset is None:
        return f"❌ Ruleset '{character.ruleset_id}' missing. Re-import it."

    updated, message = _apply_level_logic(character, ruleset, level, selections, force)
    if updated is None:
        return message
    try:
        storage.put_character(updated)
    except StoreWriteError as e:
        return f"❌ Level applied but not saved: {e}"
    return message


@mcp.tool
def level_up_character(
    target_level: Annotated[int, Field(description="Level to advance to", ge=1, le=20)],
    selections: Annotated[dict[str, dict[str, list[str]]] | None, Field(description="Level -> (choice id -> picked option ids) for every pending level")] = None,
    character_id: Annotated[str | None, Field(description="Character id. Defaults to the active character")] = None,
) -> str:
    """Advance a character through several levels, saving after each one.

    Stops at the first level whose selections are missing; levels before it
    stay applied and the call can be repeated to resume.
    """
    character_id = character_id or storage.active_character_id
    if not character_id:
        return "❌ Select a character first."
    selections = selections or {}

    def pick(choice, options, lvl):
        return selections.get(str(lvl), {}).get(choice.id)

    engine = LevelUpEngine(storage)
    try:
        result = engine.advance(character_id, target_level, pick)
    except StoreWriteError as e:
        return f"❌ Progress could not be saved: {e}"
    except LevelUpError as e:
        return f"❌ {e}"

    if result.cancelled:
        return f"⏸️ {result.summary}\nProvide selections for the next level and call again to resume."
    return f"⬆️ {result.summary}"


# Backup tools
@mcp.tool
def export_backup(
    path: Annotated[str | None, Field(description="File to write the backup to. Returns the JSON when omitted")] = None,
) -> str:
    """Export every ruleset and character as one JSON backup."""
    backup = storage.export_backup()
    if not path:
        return json.dumps(backup, indent=2, default=str)
    try:
        Path(path).write_text(json.dumps(backup, indent=2, default=str), encoding="utf-8")
    except OSError as e:
        return f"❌ Could not write backup: {e}"
    return f"📦 Exported {len(backup['rulesets'])} rulesets and {len(backup['characters'])} characters to {path}"


@mcp.tool
def import_backup(
    path: Annotated[str, Field(description="Backup file written by `export_backup`")],
) -> str:
    """Restore rulesets and characters from a backup file."""
    try:
        backup = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        return f"❌ Could not read backup: {e}"
    if not isinstance(backup, dict):
        return "❌ Backup file is not a backup document."
    try:
        counts = storage.import_backup(backup)
    except StoreWriteError as e:
        return f"❌ Restore failed: {e}"
    return f"📦 Restored {counts['rulesets']} rulesets and {counts['characters']} characters"


logger.debug("✅ All tools successfully registered. Charsheet server running! 🎲")

def main() -> None:
    """Main entry point for the Charsheet MCP Server."""
    mcp.run()

if __name__ == "__main__":
    main()
