from __future__ import annotations

"""Recording hashes, result signatures, and the verification state machine."""

import hashlib
import hmac
import logging
import os
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .models import ChallengeStats


logger = logging.getLogger(__name__)

SIGNATURE_VERSION = 1
SIGNING_KEY_ENV = "EDITOR_DOJO_SIGNING_KEY"
MIN_PRODUCTION_KEY_BYTES = 32
OBFUSCATION_BYTE = 0x5A
HASH_CHUNK_BYTES = 65536

_dev_key_warned = False

# "dev_insecure_key_do_not_use_in_production_0123456789abcdef" XOR 0x5A.
_DEV_KEY_OBFUSCATED = bytes.fromhex(
    "3e3f2c053334293f392f283f05313f23053e3505"
    "34352e052f293f053334052a28353e2f392e3335"
    "34056a6b68696e6f6c6d62633b38393e3f3c"
)


class VerificationStatus(str, Enum):
    LEGACY = "legacy"
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    SIGNATURE_FAILED = "signature_failed"
    RECORDING_HASH_FAILED = "recording_hash_failed"


def _xor(data: bytes) -> bytes:
    return bytes(b ^ OBFUSCATION_BYTE for b in data)


def hash_file(path: Path | str) -> str:
    """SHA-256 hex digest of a file's bytes."""

    digest = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(HASH_CHUNK_BYTES), b""):
            digest.update(chunk)
    return digest.hexdigest()


def constant_time_compare(a: str, b: str) -> bool:
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def canonical_message(
    challenge_id: str,
    keystrokes: int,
    elapsed_ms: int,
    timestamp: str,
    recording_hash: str,
) -> str:
    return f"{challenge_id}|{keystrokes}|{elapsed_ms}|{timestamp}|{recording_hash}"


class IntegritySigner:
    """HMAC-SHA256 signer holding its key XOR-obfuscated until first use.

    The obfuscation only keeps the key out of plain-text dumps; it is not a
    security boundary. Production signers get their key from
    `EDITOR_DOJO_SIGNING_KEY`; everything else uses the labelled development key.
    """

    def __init__(self, obfuscated_key: bytes, *, production: bool) -> None:
        if not obfuscated_key:
            raise ConfigurationError("Signing key cannot be empty.", code="SIGNING_KEY_INVALID")
        self._obfuscated_key = obfuscated_key
        self._key: bytes | None = None
        self._production = production

    @classmethod
    def development(cls) -> "IntegritySigner":
        return cls(_DEV_KEY_OBFUSCATED, production=False)

    @classmethod
    def from_key(cls, key: bytes, *, production: bool = True) -> "IntegritySigner":
        return cls(_xor(key), production=production)

    @classmethod
    def from_hex(cls, key_hex: str) -> "IntegritySigner":
        try:
            key = bytes.fromhex(key_hex.strip())
        except ValueError as exc:
            raise ConfigurationError(
                f"{SIGNING_KEY_ENV} must be hex encoded.",
                code="SIGNING_KEY_INVALID",
            ) from exc
        if len(key) < MIN_PRODUCTION_KEY_BYTES:
            raise ConfigurationError(
                f"{SIGNING_KEY_ENV} must be at least {MIN_PRODUCTION_KEY_BYTES} bytes "
                f"({MIN_PRODUCTION_KEY_BYTES * 2} hex characters).",
                code="SIGNING_KEY_INVALID",
            )
        return cls.from_key(key, production=True)

    @classmethod
    def from_environment(cls) -> "IntegritySigner":
        raw = os.environ.get(SIGNING_KEY_ENV, "").strip()
        if raw:
            return cls.from_hex(raw)
        global _dev_key_warned
        if not _dev_key_warned:
            logger.warning("Using DEVELOPMENT signing key (insecure); set %s for production.", SIGNING_KEY_ENV)
            _dev_key_warned = True
        return cls.development()

    @property
    def is_production_build(self) -> bool:
        return self._production

    @property
    def signature_version(self) -> int:
        return SIGNATURE_VERSION

    def _signing_key(self) -> bytes:
        if self._key is None:
            self._key = _xor(self._obfuscated_key)
        return self._key

    def sign(
        self,
        challenge_id: str,
        keystrokes: int,
        elapsed_ms: int,
        timestamp: str,
        recording_hash: str,
    ) -> str:
        message = canonical_message(challenge_id, keystrokes, elapsed_ms, timestamp, recording_hash)
        return hmac.new(self._signing_key(), message.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(
        self,
        challenge_id: str,
        keystrokes: int,
        elapsed_ms: int,
        timestamp: str,
        recording_hash: str,
        signature: str,
        signature_version: int = SIGNATURE_VERSION,
    ) -> bool:
        # signature_version is carried for key rotation; only version 1 exists.
        expected = self.sign(challenge_id, keystrokes, elapsed_ms, timestamp, recording_hash)
        return constant_time_compare(expected, signature)

    def verify_recording_hash(self, path: Path | str, expected_hash: str) -> bool:
        """Compare a file's hash to the stored one; missing files never match."""

        recording = Path(path)
        if not recording.exists():
            return False
        return constant_time_compare(hash_file(recording), expected_hash)

    def verify_stats(self, stats: "ChallengeStats", recording_path: Path | str | None = None) -> VerificationStatus:
        """Classify a stored result against its signature and optional recording."""

        if not stats.signature or not stats.recording_hash or stats.signature_version is None:
            return VerificationStatus.LEGACY

        elapsed_ms = stats.best_time_ms()
        if elapsed_ms is None or stats.best_keystrokes is None or stats.first_completed_at is None:
            return VerificationStatus.UNVERIFIED

        signature_ok = self.verify(
            stats.challenge_id,
            stats.best_keystrokes,
            elapsed_ms,
            stats.first_completed_at.isoformat(),
            stats.recording_hash,
            stats.signature,
            stats.signature_version,
        )
        if not signature_ok:
            return VerificationStatus.SIGNATURE_FAILED

        if recording_path is None:
            return VerificationStatus.VERIFIED

        path = Path(recording_path)
        try:
            present = path.is_file()
            matches = present and self.verify_recording_hash(path, stats.recording_hash)
        except OSError as exc:
            logger.warning("Could not read recording %s: %s", path, exc)
            present = False
            matches = False
        if matches:
            return VerificationStatus.VERIFIED
        if present:
            return VerificationStatus.RECORDING_HASH_FAILED
        if self._production:
            return VerificationStatus.RECORDING_HASH_FAILED
        logger.warning("Recording %s is missing; accepting signature-only result in development mode.", path)
        return VerificationStatus.VERIFIED
