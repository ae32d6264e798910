from __future__ import annotations

"""Whole-snapshot persistence for Progress."""

import json
import logging
import shutil
import time
from pathlib import Path
from typing import Any, Protocol

from jsonschema import Draft202012Validator

from .errors import PersistenceCorruption, PersistenceError
from .models import Progress


logger = logging.getLogger(__name__)

SNAPSHOT_SCHEMA_VERSION = "1"

_TIMESTAMP = {"type": ["string", "null"], "minLength": 1}
_HEX_DIGEST = {"type": "string", "pattern": "^[0-9a-f]{64}$"}

PROGRESS_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "schema_version": {"type": "string"},
        "editor_preference": {"type": ["string", "null"]},
        "total_practice_time_secs": {"type": "number", "minimum": 0},
        "last_practice_date": {"type": ["string", "null"], "pattern": r"^\d{4}-\d{2}-\d{2}$"},
        "longest_streak": {"type": "integer", "minimum": 0},
        "challenges": {
            "type": "object",
            "propertyNames": {"pattern": "^[A-Za-z0-9_-]+$"},
            "additionalProperties": {
                "type": "object",
                "required": ["completed", "attempt_count"],
                "properties": {
                    "completed": {"type": "boolean"},
                    "best_time_secs": {"type": ["number", "null"], "minimum": 0},
                    "best_keystrokes": {"type": ["integer", "null"], "minimum": 0},
                    "first_completed_at": _TIMESTAMP,
                    "last_attempted_at": _TIMESTAMP,
                    "attempt_count": {"type": "integer", "minimum": 0},
                    "recording_hash": _HEX_DIGEST,
                    "signature": _HEX_DIGEST,
                    "signature_version": {"type": "integer", "minimum": 1},
                },
            },
        },
        "unlocked_achievements": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "unlocked_at"],
                "properties": {
                    "id": {"type": "string"},
                    "unlocked_at": {"type": "string", "minLength": 1},
                },
            },
        },
    },
    "required": ["challenges"],
}

_VALIDATOR = Draft202012Validator(PROGRESS_SCHEMA)


class ProgressRepository(Protocol):
    def load(self) -> Progress: ...

    def save(self, progress: Progress) -> None: ...

    def exists(self) -> bool: ...


def _save_json(path: Path, value: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".{path.name}.tmp"
    payload = json.dumps(value, indent=2, ensure_ascii=False)
    for attempt in range(5):
        temp_path.write_text(payload, encoding="utf-8")
        try:
            temp_path.replace(path)
            return
        except PermissionError:
            if attempt == 4:
                raise
            # On Windows, AV/indexers can briefly lock newly-written temp files.
            time.sleep(0.02 * (attempt + 1))


def validate_snapshot(payload: Any) -> None:
    """Raise PersistenceCorruption when a snapshot does not match the schema."""

    if not isinstance(payload, dict):
        raise PersistenceCorruption("Progress snapshot must be a JSON object.")
    errors = sorted(_VALIDATOR.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise PersistenceCorruption(
            f"Progress snapshot failed validation at {where}: {first.message}",
            field=where,
        )


def snapshot_from_progress(progress: Progress) -> dict[str, Any]:
    return {"schema_version": SNAPSHOT_SCHEMA_VERSION, **progress.to_dict()}


def progress_from_snapshot(payload: Any) -> Progress:
    validate_snapshot(payload)
    try:
        progress, skipped = Progress.from_dict(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceCorruption(f"Progress snapshot has invalid values: {exc}") from exc
    for achievement_id in skipped:
        logger.warning("Skipping unknown achievement id in progress snapshot: %s", achievement_id)
    return progress


class JsonProgressRepository:
    """Stores the Progress aggregate as one JSON document."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.bak")

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Progress:
        if not self.path.exists():
            return Progress()
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(
                f"Could not read progress file: {self.path}",
                code="PROGRESS_LOAD_FAILED",
                path=str(self.path),
            ) from exc
        try:
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise PersistenceCorruption(f"Progress file is not valid JSON: {exc.msg}") from exc
            return progress_from_snapshot(payload)
        except PersistenceCorruption as exc:
            self._back_up_corrupt(exc)
            return Progress()

    def save(self, progress: Progress) -> None:
        try:
            _save_json(self.path, snapshot_from_progress(progress))
        except OSError as exc:
            raise PersistenceError(
                f"Could not write progress file: {self.path}",
                path=str(self.path),
            ) from exc

    def _back_up_corrupt(self, error: PersistenceCorruption) -> None:
        logger.warning("Progress file %s is corrupt (%s); starting fresh.", self.path, error.message)
        try:
            shutil.copy2(self.path, self.backup_path)
        except OSError as exc:
            logger.warning("Could not back up corrupt progress file to %s: %s", self.backup_path, exc)
            return
        logger.warning("Corrupt progress file backed up to %s", self.backup_path)
