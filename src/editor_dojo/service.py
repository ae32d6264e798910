from __future__ import annotations

"""Progress ledger: records attempts, signs results, and unlocks achievements."""

import copy
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .achievements import Achievement, check_achievements
from .errors import ConfigurationError, LockError, NotFoundError, ValidationError
from .integrity import IntegritySigner, VerificationStatus, hash_file
from .models import ChallengeStats, Progress, SolutionOutcome
from .paths import find_latest_recording, validate_challenge_id
from .repository import ProgressRepository


logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class Submission:
    """Stats after one recorded attempt, plus the records it set."""

    stats: ChallengeStats
    new_time_record: bool
    new_keystroke_record: bool


class ProgressLedger:
    """Single-user progress store guarded by one lock.

    Every public operation holds the lock for its full duration, hashing and
    persistence included. Mutations run on a copy of the Progress aggregate
    that replaces the live one only after the repository save succeeds.
    """

    def __init__(
        self,
        repository: ProgressRepository,
        signer: IntegritySigner | None = None,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        recordings_dir: Path | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        if lock_timeout <= 0:
            raise ConfigurationError("Lock timeout must be positive.", lock_timeout_seconds=lock_timeout)
        self.repository = repository
        self.signer = signer or IntegritySigner.from_environment()
        self.recordings_dir = recordings_dir
        self._lock = threading.Lock()
        self._lock_timeout = lock_timeout
        self._clock = clock
        self._progress = repository.load()

    @contextmanager
    def _guard(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise LockError(
                "Progress ledger is busy; could not acquire the lock.",
                hint="Retry once the running operation has finished.",
                timeout_seconds=self._lock_timeout,
            )
        try:
            yield
        finally:
            self._lock.release()

    def _commit(self, working: Progress) -> None:
        self.repository.save(working)
        self._progress = working

    def _sign_stats(self, stats: ChallengeStats, recording_hash: str, attempted_at: datetime) -> str:
        elapsed_ms = stats.best_time_ms()
        first_completed_at = stats.first_completed_at or attempted_at
        return self.signer.sign(
            stats.challenge_id,
            stats.best_keystrokes if stats.best_keystrokes is not None else 0,
            elapsed_ms if elapsed_ms is not None else 0,
            first_completed_at.isoformat(),
            recording_hash,
        )

    def record_solution(self, challenge_id: str, outcome: SolutionOutcome) -> ChallengeStats:
        """Record one attempt, attach integrity data, and persist the snapshot."""

        return self.submit_solution(challenge_id, outcome).stats

    def submit_solution(self, challenge_id: str, outcome: SolutionOutcome) -> Submission:
        """Record one attempt and report whether it set new records.

        The record flags are computed against the stats the attempt replaced,
        inside the same critical section as the write.
        """

        validate_challenge_id(challenge_id)
        if outcome.elapsed.total_seconds() < 0:
            raise ValidationError("Elapsed time cannot be negative.", code="ELAPSED_INVALID")

        with self._guard():
            attempted_at = self._clock()
            working = copy.deepcopy(self._progress)
            previous = working.get_challenge_stats(challenge_id)
            if previous is None:
                time_record, keystroke_record = outcome.completed, outcome.completed
            else:
                time_record, keystroke_record = previous.is_new_record(outcome.elapsed, outcome.keystrokes())
            stats = working.record_attempt(
                challenge_id,
                outcome.completed,
                outcome.elapsed,
                outcome.keystrokes(),
                attempted_at,
            )
            signed = False
            if outcome.recording is not None:
                recording_path = outcome.recording.file_path
                try:
                    recording_hash = hash_file(recording_path)
                except OSError as exc:
                    logger.warning(
                        "Could not hash recording %s for %s; saving without integrity data: %s",
                        recording_path,
                        challenge_id,
                        exc,
                    )
                else:
                    signature = self._sign_stats(stats, recording_hash, attempted_at)
                    working.update_challenge_integrity(
                        challenge_id,
                        recording_hash,
                        signature,
                        self.signer.signature_version,
                    )
                    signed = True
            if (
                not signed
                and previous is not None
                and stats.has_integrity_data()
                and stats.signed_values() != previous.signed_values()
            ):
                # The old signature no longer covers the stored best values.
                logger.info("Dropping stale integrity data for %s after an unsigned improvement", challenge_id)
                working.clear_challenge_integrity(challenge_id)
            stats = working.challenge_stats[challenge_id]
            self._commit(working)
            logger.info(
                "Recorded %s attempt for %s (attempt %d)",
                "completed" if outcome.completed else "failed",
                challenge_id,
                stats.attempt_count,
            )
            return Submission(
                stats=stats,
                new_time_record=time_record and outcome.completed,
                new_keystroke_record=keystroke_record and outcome.completed,
            )

    def get_challenge_stats(self, challenge_id: str) -> ChallengeStats | None:
        with self._guard():
            return self._progress.get_challenge_stats(challenge_id)

    def require_challenge_stats(self, challenge_id: str) -> ChallengeStats:
        stats = self.get_challenge_stats(validate_challenge_id(challenge_id))
        if stats is None:
            raise NotFoundError(
                f"No progress recorded for challenge: {challenge_id}",
                code="CHALLENGE_NOT_FOUND",
                challenge_id=challenge_id,
            )
        return stats

    def is_new_record(self, challenge_id: str, outcome: SolutionOutcome) -> tuple[bool, bool]:
        """(time record, keystroke record); a first attempt counts on both when completed."""

        with self._guard():
            stats = self._progress.get_challenge_stats(challenge_id)
            if stats is None:
                return outcome.completed, outcome.completed
            return stats.is_new_record(outcome.elapsed, outcome.keystrokes())

    def check_achievements(self, total_challenges: int) -> list[Achievement]:
        if total_challenges < 0:
            raise ValidationError("Total challenge count cannot be negative.", code="TOTAL_INVALID")
        with self._guard():
            working = copy.deepcopy(self._progress)
            unlocked = check_achievements(working, total_challenges, self._clock())
            if unlocked:
                self._commit(working)
                logger.info("Unlocked achievements: %s", ", ".join(item.id.value for item in unlocked))
            return unlocked

    def verify(self, stats: ChallengeStats, recording_path: Path | None = None) -> VerificationStatus:
        return self.signer.verify_stats(stats, recording_path)

    def verify_all(self, recordings_dir: Path | None = None) -> dict[str, VerificationStatus]:
        """Verify every stored result against its newest recording."""

        directory = recordings_dir or self.recordings_dir
        with self._guard():
            results: dict[str, VerificationStatus] = {}
            for challenge_id, stats in sorted(self._progress.challenge_stats.items()):
                recording_path = self._recording_for(directory, challenge_id)
                status = self.signer.verify_stats(stats, recording_path)
                if status in FAILED_STATUSES:
                    logger.warning("Integrity check failed for %s: %s", challenge_id, status.value)
                results[challenge_id] = status
            return results

    @staticmethod
    def _recording_for(directory: Path | None, challenge_id: str) -> Path | None:
        if directory is None:
            return None
        try:
            return find_latest_recording(directory, challenge_id)
        except ValidationError:
            logger.warning("Stored challenge id %r is not path-safe; verifying without recording.", challenge_id)
            return None

    def set_editor_preference(self, editor: str) -> None:
        editor = editor.strip() if isinstance(editor, str) else ""
        if not editor:
            raise ValidationError("Editor name cannot be empty.", code="EDITOR_INVALID")
        with self._guard():
            working = copy.deepcopy(self._progress)
            working.set_editor_preference(editor)
            self._commit(working)

    def save(self) -> None:
        with self._guard():
            self.repository.save(self._progress)

    def get_progress(self) -> Progress:
        with self._guard():
            return copy.deepcopy(self._progress)


def stats_payload(stats: ChallengeStats) -> dict[str, Any]:
    tier = stats.mastery_tier()
    return {
        "challenge_id": stats.challenge_id,
        **stats.to_dict(),
        "mastery_tier": tier.label if tier else None,
        "mastery_emoji": tier.emoji if tier else None,
    }


def progress_summary(progress: Progress, *, recent: int = 5) -> dict[str, Any]:
    """Aggregate figures plus per-challenge records for display."""

    average_time = progress.average_solve_time()
    return {
        "editor_preference": progress.editor_preference,
        "total_completed": progress.total_completed(),
        "total_attempts": progress.total_attempts(),
        "total_practice_time_secs": round(progress.total_practice_time.total_seconds(), 3),
        "current_streak": progress.calculate_current_streak(datetime.now(tz=UTC).date()),
        "longest_streak": progress.longest_streak,
        "average_solve_time_secs": round(average_time.total_seconds(), 3) if average_time is not None else None,
        "average_keystrokes": progress.average_keystrokes(),
        "recently_completed": [stats.challenge_id for stats in progress.recently_completed(recent)],
        "challenges": [stats_payload(stats) for _, stats in sorted(progress.challenge_stats.items())],
        "unlocked_achievements": [item.to_dict() for item in progress.sorted_unlocked_achievements()],
    }


FAILED_STATUSES = frozenset({VerificationStatus.SIGNATURE_FAILED, VerificationStatus.RECORDING_HASH_FAILED})


def verification_report(results: dict[str, VerificationStatus]) -> dict[str, Any]:
    return {
        "ok": not any(status in FAILED_STATUSES for status in results.values()),
        "results": {challenge_id: status.value for challenge_id, status in results.items()},
    }
