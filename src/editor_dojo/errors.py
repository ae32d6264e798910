from __future__ import annotations

"""Structured error types shared by the ledger, repository, API, and CLI."""

from typing import Any


class LedgerError(Exception):
    """Base error with a stable code for API and CLI responses."""

    default_code = "LEDGER_ERROR"

    def __init__(self, message: str, *, code: str | None = None, hint: str | None = None, **context: Any) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.hint = hint
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.hint:
            payload["hint"] = self.hint
        for key, value in self.context.items():
            if value is not None:
                payload[key] = value
        return payload


class ValidationError(LedgerError, ValueError):
    """Input rejected before any filesystem side effect."""

    default_code = "VALIDATION_FAILED"


class NotFoundError(LedgerError, KeyError):
    """Requested challenge or file does not exist."""

    default_code = "NOT_FOUND"

    def __str__(self) -> str:
        return self.message


class LockError(LedgerError):
    """The ledger guard could not be acquired."""

    default_code = "LEDGER_LOCK_TIMEOUT"


class PersistenceError(LedgerError):
    """Progress snapshot could not be read or written."""

    default_code = "PROGRESS_SAVE_FAILED"


class PersistenceCorruption(PersistenceError):
    """Progress snapshot exists but is not a valid document."""

    default_code = "PROGRESS_CORRUPT"


class RecordingParseError(LedgerError, ValueError):
    """One malformed event line inside a session recording."""

    default_code = "CAST_EVENT_INVALID"


class ConfigurationError(LedgerError, ValueError):
    """Invalid configuration file or signing key material."""

    default_code = "CONFIG_INVALID"
