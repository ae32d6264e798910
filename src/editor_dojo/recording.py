from __future__ import annotations

"""Key-sequence reconstruction from asciinema session recordings."""

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import RecordingParseError


logger = logging.getLogger(__name__)

ESC = "\x1b"
INPUT_EVENT_TYPE = "i"
EMPTY_SEQUENCE_TEXT = "(no keystrokes recorded)"
ELLIPSIS_RESERVE = 20

SINGLE_KEY_NAMES = {
    "\n": "Enter",
    "\r": "Enter",
    ESC: "Esc",
    " ": "Space",
    "\t": "Tab",
    "\x7f": "Backspace",
}

ESCAPE_SEQUENCES = {
    "\x1b[A": "Up",
    "\x1b[B": "Down",
    "\x1b[C": "Right",
    "\x1b[D": "Left",
    "\x1b[H": "Home",
    "\x1b[F": "End",
    "\x1b[3~": "Delete",
    "\x1b[2~": "Insert",
    "\x1b[5~": "PageUp",
    "\x1b[6~": "PageDown",
}


@dataclass(frozen=True)
class KeySequence:
    """Ordered, immutable key tokens decoded from one recording."""

    keys: tuple[str, ...] = ()

    @classmethod
    def of(cls, keys: Iterable[str]) -> "KeySequence":
        return cls(tuple(keys))

    def count(self) -> int:
        """Number of decoded input events (not display characters)."""
        return len(self.keys)

    def is_empty(self) -> bool:
        return not self.keys

    def as_string(self) -> str:
        return " ".join(self.keys)

    def format_for_display(self, max_length: int) -> str:
        """Render for a fixed-width area, eliding the tail with a key count."""

        if not self.keys:
            return EMPTY_SEQUENCE_TEXT
        full = self.as_string()
        if len(full) <= max_length:
            return full

        budget = max(max_length - ELLIPSIS_RESERVE, 0)
        used = 0
        visible: list[str] = []
        for key in self.keys:
            cost = len(key) + 1
            if used + cost > budget:
                break
            visible.append(key)
            used += cost
        remaining = len(self.keys) - len(visible)
        if remaining <= 0:
            return full
        prefix = " ".join(visible)
        suffix = f"... ({remaining} more keys)"
        return f"{prefix} {suffix}" if prefix else suffix


@dataclass(frozen=True)
class Recording:
    """A recorded attempt: the cast file plus its decoded keys."""

    file_path: Path
    key_sequence: KeySequence

    @classmethod
    def from_cast(cls, file_path: Path | str) -> "Recording":
        path = Path(file_path)
        return cls(file_path=path, key_sequence=parse_cast_file(path))

    def keystroke_count(self) -> int:
        return self.key_sequence.count()


def key_name(ch: str) -> str:
    """Name for a single input character."""

    named = SINGLE_KEY_NAMES.get(ch)
    if named is not None:
        return named
    code = ord(ch)
    if 0x01 <= code <= 0x1A:
        return f"Ctrl-{chr(code - 1 + ord('a'))}"
    if code < 0x20 or code == 0x7F:
        return f"<0x{code:02x}>"
    return ch


def decode_escape_sequence(data: str) -> str:
    """Decode a multi-character input chunk into one token."""

    if data.startswith(ESC):
        known = ESCAPE_SEQUENCES.get(data)
        if known is not None:
            return known
        if len(data.encode("utf-8")) == 2 and data[1].isalnum():
            return f"Alt-{data[1]}"
    # Unknown chunk: one token holding every key, so count() sees a single event.
    return " ".join(key_name(ch) for ch in data)


def decode_input(data: str) -> str:
    if not data:
        return ""
    if len(data) > 1:
        return decode_escape_sequence(data)
    return key_name(data)


def parse_event(line: str) -> str | None:
    """Return the key token for an input event line, None for other events."""

    try:
        event: Any = json.loads(line)
    except json.JSONDecodeError as exc:
        raise RecordingParseError(f"event is not valid JSON: {exc.msg}") from exc
    if not isinstance(event, list):
        raise RecordingParseError("event is not an array")
    if len(event) < 3:
        return None
    event_type = event[1]
    if not isinstance(event_type, str):
        raise RecordingParseError("event type is not a string")
    if event_type != INPUT_EVENT_TYPE:
        return None
    data = event[2]
    if not isinstance(data, str):
        raise RecordingParseError("event data is not a string")
    return decode_input(data)


def decode_lines(lines: Iterable[str]) -> KeySequence:
    """Decode a cast stream; line 0 is the header, bad lines are skipped."""

    keys: list[str] = []
    for index, raw in enumerate(lines):
        if index == 0:
            continue
        line = raw.strip()
        if not line:
            continue
        try:
            token = parse_event(line)
        except RecordingParseError as exc:
            logger.warning("Skipping cast event at line %d: %s", index + 1, exc.message)
            continue
        if token is not None:
            keys.append(token)
    return KeySequence(tuple(keys))


def parse_cast_file(path: Path) -> KeySequence:
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        return decode_lines(handle)
