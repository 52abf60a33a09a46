"""
Storage layer for charsheet.
Handles persistence of rulesets, characters and settings to JSON files.

Layout under ``data_dir``::

    rulesets/<id>.json     {"id", "name", "version", "imported_at", "data": <document>}
    characters/<id>.json   Character.model_dump(mode="json")
    settings.json          {"active_ruleset_id": ..., "active_character_id": ...}

Every write replaces the whole record atomically (temp file + rename).
"""

import json
import logging
import time
from datetime import datetime
from hashlib import sha256
from pathlib import Path
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from .models import Character, normalize_character
from .rulesets.loader import RulesetInvalidError, export_ruleset, parse_ruleset
from .rulesets.models import Ruleset

logger = logging.getLogger(__name__)


class StoreWriteError(Exception):
    """A write failed after all retry attempts."""


# Storage collections
RULESETS = "rulesets"
CHARACTERS = "characters"
COLLECTIONS = (RULESETS, CHARACTERS)

# Settings keys
ACTIVE_RULESET_ID = "active_ruleset_id"
ACTIVE_CHARACTER_ID = "active_character_id"


class CharacterStorage:
    """Handles storage and retrieval of rulesets and characters."""

    WRITE_ATTEMPTS = 2
    RETRY_DELAY = 0.05  # seconds

    def __init__(self, data_dir: str | Path = "charsheet_data"):
        self.data_dir = Path(data_dir)
        logger.debug(f"📂 Initializing CharacterStorage with data_dir: {self.data_dir.resolve()}")
        self.data_dir.mkdir(parents=True, exist_ok=True)

        # Create subdirectories if necessary
        for collection in COLLECTIONS:
            (self.data_dir / collection).mkdir(exist_ok=True)
        logger.debug("📂 Storage subdirectories ensured.")

        # Dirty tracking: hash of last saved/loaded state per record
        self._record_hashes: dict[tuple[str, str], str] = {}

    # =========================================================================
    # Paths & Hashing
    # =========================================================================

    def _get_record_file(self, collection: str, record_id: str) -> Path:
        """Get the file path for a record."""
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection '{collection}'. Use one of: {', '.join(COLLECTIONS)}")
        # Percent-encoding keeps distinct ids in distinct files
        safe_id = quote(record_id, safe="-_")
        if safe_id in ("", ".", ".."):
            raise ValueError(f"Invalid record id: {record_id!r}")
        return self.data_dir / collection / f"{safe_id}.json"

    def _get_settings_file(self) -> Path:
        return self.data_dir / "settings.json"

    @staticmethod
    def _compute_hash(data: dict | list) -> str:
        """Compute SHA-256 hash of a record for dirty tracking."""
        return sha256(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()

    def _atomic_write(self, file_path: Path, data: dict | list) -> None:
        """Write data to file atomically (write to temp, then rename).

        Retries once after a short delay before giving up.

        Raises:
            StoreWriteError: If every attempt failed
        """
        last_error: OSError | None = None
        for attempt in range(1, self.WRITE_ATTEMPTS + 1):
            temp_file = file_path.with_suffix('.tmp')
            try:
                with open(temp_file, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, default=str)
                temp_file.replace(file_path)
                logger.debug(f"✅ Atomic write to {file_path.name} successful")
                return
            except OSError as e:
                last_error = e
                if temp_file.exists():
                    temp_file.unlink()
                logger.warning(
                    f"⚠️ Write to {file_path.name} failed (attempt {attempt}/{self.WRITE_ATTEMPTS}): {e}"
                )
                if attempt < self.WRITE_ATTEMPTS:
                    time.sleep(self.RETRY_DELAY)

        logger.error(f"❌ Write to {file_path.name} failed permanently: {last_error}")
        raise StoreWriteError(f"Write to {file_path.name} failed permanently: {last_error}") from last_error

    # =========================================================================
    # Generic Record Access
    # =========================================================================

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        """Return a stored record, or None if it does not exist or cannot be read."""
        file_path = self._get_record_file(collection, record_id)
        if not file_path.exists():
            return None
        return self._read_record(collection, file_path)

    def _read_record(self, collection: str, file_path: Path) -> dict[str, Any] | None:
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"❌ Error loading {collection}/{file_path.name}: {e}")
            return None
        if not isinstance(data, dict) or not data.get("id"):
            logger.error(f"❌ Record {collection}/{file_path.name} has no id")
            return None
        self._record_hashes[(collection, str(data["id"]))] = self._compute_hash(data)
        return data

    def put(self, collection: str, record: dict[str, Any], force: bool = False) -> None:
        """Store a complete record, replacing any previous version in full.

        Args:
            collection: "rulesets" or "characters"
            record: JSON-serializable record with an "id" key
            force: Write even if the record is unchanged since last save/load
        """
        record_id = record.get("id")
        if not record_id:
            raise ValueError("Record has no id")

        current_hash = self._compute_hash(record)
        key = (collection, str(record_id))
        file_path = self._get_record_file(collection, str(record_id))
        if not force and file_path.exists() and self._record_hashes.get(key) == current_hash:
            logger.debug(f"✅ {collection}/{record_id} unchanged, skipping save.")
            return

        self._atomic_write(file_path, record)
        self._record_hashes[key] = current_hash
        logger.debug(f"💾 Saved {collection}/{record_id}")

    def delete(self, collection: str, record_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        file_path = self._get_record_file(collection, record_id)
        self._record_hashes.pop((collection, record_id), None)
        if not file_path.exists():
            return False
        file_path.unlink()
        logger.debug(f"🗑️ Deleted {collection}/{record_id}")
        return True

    def list_all(self, collection: str) -> list[dict[str, Any]]:
        """Return every readable record in a collection."""
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection '{collection}'. Use one of: {', '.join(COLLECTIONS)}")
        records = []
        for file_path in sorted((self.data_dir / collection).glob("*.json")):
            record = self._read_record(collection, file_path)
            if record is not None:
                records.append(record)
        return records

    # =========================================================================
    # Settings
    # =========================================================================

    def get_setting(self, key: str) -> Any:
        settings_file = self._get_settings_file()
        if not settings_file.exists():
            return None
        try:
            with open(settings_file, 'r', encoding='utf-8') as f:
                return json.load(f).get(key)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"❌ Error loading settings: {e}")
            return None

    def put_setting(self, key: str, value: Any) -> None:
        settings_file = self._get_settings_file()
        settings: dict[str, Any] = {}
        if settings_file.exists():
            try:
                with open(settings_file, 'r', encoding='utf-8') as f:
                    settings = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"⚠️ Settings file unreadable, starting fresh: {e}")
        settings[key] = value
        self._atomic_write(settings_file, settings)

    @property
    def active_ruleset_id(self) -> str | None:
        return self.get_setting(ACTIVE_RULESET_ID)

    def set_active_ruleset(self, ruleset_id: str | None) -> None:
        self.put_setting(ACTIVE_RULESET_ID, ruleset_id)

    @property
    def active_character_id(self) -> str | None:
        return self.get_setting(ACTIVE_CHARACTER_ID)

    def set_active_character(self, character_id: str | None) -> None:
        self.put_setting(ACTIVE_CHARACTER_ID, character_id)

    # =========================================================================
    # Rulesets
    # =========================================================================

    def put_ruleset(self, ruleset: Ruleset) -> None:
        """Store a ruleset, replacing any earlier import with the same id."""
        self.put(RULESETS, {
            "id": ruleset.id,
            "name": ruleset.name,
            "version": ruleset.version,
            "imported_at": ruleset.imported_at.isoformat(),
            "data": export_ruleset(ruleset),
        })
        logger.info(f"📚 Stored ruleset '{ruleset.name}' ({ruleset.stats_summary()})")

    def get_ruleset(self, ruleset_id: str) -> Ruleset | None:
        record = self.get(RULESETS, ruleset_id)
        if record is None:
            return None
        try:
            ruleset = parse_ruleset(record.get("data"))
        except RulesetInvalidError as e:
            logger.error(f"❌ Stored ruleset '{ruleset_id}' is invalid: {e}")
            return None
        imported_at = record.get("imported_at")
        if imported_at:
            ruleset = ruleset.model_copy(update={"imported_at": datetime.fromisoformat(imported_at)})
        return ruleset

    def list_rulesets(self) -> list[dict[str, Any]]:
        """Ruleset summaries (id, name, version, imported_at), newest first."""
        summaries = [
            {k: r.get(k) for k in ("id", "name", "version", "imported_at")}
            for r in self.list_all(RULESETS)
        ]
        return sorted(summaries, key=lambda r: r.get("imported_at") or "", reverse=True)

    def delete_ruleset(self, ruleset_id: str) -> bool:
        return self.delete(RULESETS, ruleset_id)

    # =========================================================================
    # Characters
    # =========================================================================

    def put_character(self, character: Character) -> None:
        self.put(CHARACTERS, character.model_dump(mode='json'))

    def get_character(self, character_id: str) -> Character | None:
        record = self.get(CHARACTERS, character_id)
        if record is None:
            return None
        try:
            return normalize_character(record)
        except ValidationError as e:
            logger.error(f"❌ Stored character '{character_id}' is invalid: {e}")
            return None

    def list_characters(self) -> list[Character]:
        """All readable characters, most recently updated first."""
        characters = []
        for record in self.list_all(CHARACTERS):
            try:
                characters.append(normalize_character(record))
            except ValidationError as e:
                logger.error(f"❌ Skipping invalid character '{record.get('id')}': {e}")
        return sorted(characters, key=lambda c: c.updated_at, reverse=True)

    def delete_character(self, character_id: str) -> bool:
        return self.delete(CHARACTERS, character_id)

    # =========================================================================
    # Backup
    # =========================================================================

    def export_backup(self) -> dict[str, Any]:
        """Everything stored, as one JSON-serializable document."""
        return {
            "exported_at": datetime.now().isoformat(),
            "rulesets": self.list_all(RULESETS),
            "characters": self.list_all(CHARACTERS),
        }

    def import_backup(self, backup: dict[str, Any]) -> dict[str, int]:
        """Restore rulesets and characters from an ``export_backup`` document.

        Records that fail validation are skipped with a warning.

        Returns:
            Number of rulesets and characters restored
        """
        counts = {RULESETS: 0, CHARACTERS: 0}
        for record in backup.get(RULESETS) or []:
            try:
                ruleset = parse_ruleset(record.get("data"))
            except RulesetInvalidError as e:
                logger.warning(f"⚠️ Skipping ruleset '{record.get('id')}' from backup: {e}")
                continue
            self.put(RULESETS, {**record, "id": ruleset.id}, force=True)
            counts[RULESETS] += 1

        for record in backup.get(CHARACTERS) or []:
            try:
                character = normalize_character(record)
            except ValidationError as e:
                logger.warning(f"⚠️ Skipping character '{record.get('id')}' from backup: {e}")
                continue
            self.put(CHARACTERS, character.model_dump(mode='json'), force=True)
            counts[CHARACTERS] += 1

        logger.info(f"📦 Restored {counts[RULESETS]} rulesets and {counts[CHARACTERS]} characters")
        return counts


__all__ = [
    "ACTIVE_CHARACTER_ID",
    "ACTIVE_RULESET_ID",
    "CHARACTERS",
    "COLLECTIONS",
    "CharacterStorage",
    "RULESETS",
    "StoreWriteError",
]
