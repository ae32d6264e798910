from __future__ import annotations

import os
import re
from pathlib import Path

from .errors import ValidationError


CHALLENGE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def dojo_home() -> Path:
    configured = os.environ.get("EDITOR_DOJO_HOME")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path.home() / ".local" / "share" / "editor-dojo"


def ensure_home_dirs(base: Path) -> dict[str, Path]:
    recordings = base / "recordings"
    for path in (base, recordings):
        path.mkdir(parents=True, exist_ok=True)
    return {"base": base, "recordings": recordings}


def validate_challenge_id(challenge_id: str) -> str:
    """Reject ids that could escape the recordings directory."""

    if not isinstance(challenge_id, str) or not challenge_id:
        raise ValidationError("Challenge ID cannot be empty", code="CHALLENGE_ID_INVALID")
    if ".." in challenge_id or "/" in challenge_id or "\\" in challenge_id:
        raise ValidationError(
            f"Invalid challenge ID '{challenge_id}': cannot contain path separators or '..'",
            code="CHALLENGE_ID_INVALID",
        )
    if not CHALLENGE_ID_PATTERN.match(challenge_id):
        raise ValidationError(
            f"Invalid challenge ID '{challenge_id}': must contain only letters, digits, dashes, and underscores",
            code="CHALLENGE_ID_INVALID",
        )
    return challenge_id


def recording_path_for(recordings_dir: Path, challenge_id: str, timestamp: int) -> Path:
    validate_challenge_id(challenge_id)
    return recordings_dir / f"challenge-{challenge_id}-{timestamp}.cast"


def find_latest_recording(recordings_dir: Path, challenge_id: str) -> Path | None:
    """Return the newest recording for a challenge, or None."""

    validate_challenge_id(challenge_id)
    if not recordings_dir.is_dir():
        return None
    candidates = list(recordings_dir.glob(f"challenge-{challenge_id}-*.cast"))
    exact = recordings_dir / f"{challenge_id}.cast"
    if exact.is_file():
        candidates.append(exact)
    candidates = [path for path in candidates if path.is_file() and _belongs_to(path, challenge_id)]
    if not candidates:
        return None
    return max(candidates, key=lambda path: (path.stat().st_mtime, path.name))


def _belongs_to(path: Path, challenge_id: str) -> bool:
    if path.name == f"{challenge_id}.cast":
        return True
    # "challenge-a-1.cast" also matches the glob for id "a" when another id is "a-1".
    suffix = path.stem[len(f"challenge-{challenge_id}-"):]
    return suffix.isdigit()
