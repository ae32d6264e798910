from __future__ import annotations

import hashlib
import hmac
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from editor_dojo.errors import ConfigurationError
from editor_dojo.integrity import (
    SIGNATURE_VERSION,
    IntegritySigner,
    VerificationStatus,
    canonical_message,
    constant_time_compare,
    hash_file,
)
from editor_dojo.models import ChallengeStats


DEV_KEY = b"dev_insecure_key_do_not_use_in_production_0123456789abcdef"
COMPLETED_AT = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


def _recording(tmp_path: Path, body: str = "header\n[0.1, \"i\", \"x\"]\n") -> Path:
    path = tmp_path / "challenge-c1-1.cast"
    path.write_text(body, encoding="utf-8")
    return path


def _signed_stats(signer: IntegritySigner, recording_hash: str) -> ChallengeStats:
    stats = ChallengeStats.completed_first("c1", timedelta(seconds=8), 12, COMPLETED_AT)
    signature = signer.sign("c1", 12, 8000, COMPLETED_AT.isoformat(), recording_hash)
    return stats.with_integrity(recording_hash, signature, SIGNATURE_VERSION)


def test_hash_file_matches_sha256(tmp_path: Path) -> None:
    path = _recording(tmp_path)
    assert hash_file(path) == hashlib.sha256(path.read_bytes()).hexdigest()


def test_hash_file_missing_raises(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        hash_file(tmp_path / "missing.cast")


def test_canonical_message_layout() -> None:
    assert canonical_message("c1", 12, 8000, "2026-03-01T09:30:00+00:00", "ab") == (
        "c1|12|8000|2026-03-01T09:30:00+00:00|ab"
    )


def test_development_key_is_hmac_sha256_over_canonical_message() -> None:
    signer = IntegritySigner.development()
    expected = hmac.new(DEV_KEY, b"c1|12|8000|ts|ab", hashlib.sha256).hexdigest()
    assert signer.sign("c1", 12, 8000, "ts", "ab") == expected
    assert signer.is_production_build is False
    assert signer.signature_version == 1


def test_sign_is_deterministic() -> None:
    signer = IntegritySigner.development()
    first = signer.sign("c1", 12, 8000, "ts", "ab")
    assert first == signer.sign("c1", 12, 8000, "ts", "ab")
    assert len(first) == 64


@pytest.mark.parametrize(
    "mutated",
    [
        ("c2", 12, 8000, "ts", "ab"),
        ("c1", 13, 8000, "ts", "ab"),
        ("c1", 12, 8001, "ts", "ab"),
        ("c1", 12, 8000, "ts2", "ab"),
        ("c1", 12, 8000, "ts", "ac"),
    ],
)
def test_verify_rejects_any_mutated_field(mutated: tuple) -> None:
    signer = IntegritySigner.development()
    signature = signer.sign("c1", 12, 8000, "ts", "ab")
    assert signer.verify("c1", 12, 8000, "ts", "ab", signature)
    assert not signer.verify(*mutated, signature)


def test_constant_time_compare_length_mismatch() -> None:
    assert constant_time_compare("abc", "abc")
    assert not constant_time_compare("abc", "abcd")
    assert not constant_time_compare("abc", "abd")


def test_from_hex_requires_32_bytes() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        IntegritySigner.from_hex("00" * 31)
    assert excinfo.value.code == "SIGNING_KEY_INVALID"
    with pytest.raises(ConfigurationError):
        IntegritySigner.from_hex("zz" * 32)
    signer = IntegritySigner.from_hex("11" * 32)
    assert signer.is_production_build


def test_production_and_development_signatures_differ() -> None:
    production = IntegritySigner.from_hex("11" * 32)
    development = IntegritySigner.development()
    assert production.sign("c1", 1, 1, "ts", "ab") != development.sign("c1", 1, 1, "ts", "ab")


def test_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("EDITOR_DOJO_SIGNING_KEY", raising=False)
    assert not IntegritySigner.from_environment().is_production_build
    monkeypatch.setenv("EDITOR_DOJO_SIGNING_KEY", "ab" * 32)
    assert IntegritySigner.from_environment().is_production_build


def test_verify_recording_hash(tmp_path: Path) -> None:
    signer = IntegritySigner.development()
    path = _recording(tmp_path)
    digest = hash_file(path)
    assert signer.verify_recording_hash(path, digest)
    assert not signer.verify_recording_hash(path, "0" * 64)
    assert not signer.verify_recording_hash(tmp_path / "gone.cast", digest)


def test_unsigned_stats_are_legacy() -> None:
    signer = IntegritySigner.development()
    stats = ChallengeStats.completed_first("c1", timedelta(seconds=8), 12, COMPLETED_AT)
    assert signer.verify_stats(stats) == VerificationStatus.LEGACY


def test_signed_stats_without_keystrokes_are_unverified() -> None:
    signer = IntegritySigner.development()
    stats = ChallengeStats.completed_first("c1", timedelta(seconds=8), None, COMPLETED_AT)
    stats = stats.with_integrity("a" * 64, "b" * 64, SIGNATURE_VERSION)
    assert signer.verify_stats(stats) == VerificationStatus.UNVERIFIED


def test_valid_signature_without_recording_is_verified(tmp_path: Path) -> None:
    signer = IntegritySigner.development()
    stats = _signed_stats(signer, hash_file(_recording(tmp_path)))
    assert signer.verify_stats(stats) == VerificationStatus.VERIFIED


def test_tampered_best_time_fails_signature(tmp_path: Path) -> None:
    signer = IntegritySigner.development()
    stats = _signed_stats(signer, hash_file(_recording(tmp_path)))
    tampered = replace(stats, best_time=timedelta(seconds=3))
    assert signer.verify_stats(tampered) == VerificationStatus.SIGNATURE_FAILED


def test_recording_hash_match_and_mismatch(tmp_path: Path) -> None:
    signer = IntegritySigner.development()
    path = _recording(tmp_path)
    stats = _signed_stats(signer, hash_file(path))
    assert signer.verify_stats(stats, path) == VerificationStatus.VERIFIED

    path.write_text("edited\n", encoding="utf-8")
    assert signer.verify_stats(stats, path) == VerificationStatus.RECORDING_HASH_FAILED


def test_missing_recording_depends_on_build(tmp_path: Path) -> None:
    missing = tmp_path / "missing.cast"
    development = IntegritySigner.development()
    stats = _signed_stats(development, "c" * 64)
    assert development.verify_stats(stats, missing) == VerificationStatus.VERIFIED

    production = IntegritySigner.from_hex("22" * 32)
    stats = _signed_stats(production, "c" * 64)
    assert production.verify_stats(stats, missing) == VerificationStatus.RECORDING_HASH_FAILED
