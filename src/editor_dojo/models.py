from __future__ import annotations

"""Domain aggregate: per-challenge stats, mastery tiers, and overall progress."""

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from .recording import Recording


GOLD_MAX_TIME = timedelta(seconds=15)
GOLD_MAX_KEYSTROKES = 30
SILVER_MAX_TIME = timedelta(seconds=30)
SILVER_MAX_KEYSTROKES = 50
ONE_MS = timedelta(milliseconds=1)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {type(value).__name__}")
    return _utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _secs(value: timedelta | None) -> float | None:
    if value is None:
        return None
    return (value // ONE_MS) / 1000


class MasteryTier(Enum):
    BRONZE = 1
    SILVER = 2
    GOLD = 3

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, MasteryTier):
            return NotImplemented
        return self.value < other.value

    @property
    def label(self) -> str:
        return self.name.title()

    @property
    def emoji(self) -> str:
        return TIER_EMOJI[self]

    @classmethod
    def calculate(cls, best_time: timedelta, best_keystrokes: int | None) -> "MasteryTier":
        if best_keystrokes is not None:
            if best_time < GOLD_MAX_TIME and best_keystrokes < GOLD_MAX_KEYSTROKES:
                return cls.GOLD
            if best_time < SILVER_MAX_TIME and best_keystrokes < SILVER_MAX_KEYSTROKES:
                return cls.SILVER
        return cls.BRONZE


TIER_EMOJI = {
    MasteryTier.BRONZE: "\U0001f949",
    MasteryTier.SILVER: "\U0001f948",
    MasteryTier.GOLD: "\U0001f947",
}


class AchievementId(str, Enum):
    FIRST_STEPS = "FirstSteps"
    SPEED_DEMON = "SpeedDemon"
    LIGHTNING_FAST = "LightningFast"
    PERFECTIONIST = "Perfectionist"
    EFFICIENCY_EXPERT = "EfficiencyExpert"
    CONSISTENT_LEARNER = "ConsistentLearner"
    DEDICATED_PRACTITIONER = "DedicatedPractitioner"
    CHALLENGE_MASTER = "ChallengeMaster"
    GOLD_RUSH = "GoldRush"
    COMPLETIONIST = "Completionist"
    HALFWAY_THERE = "HalfwayThere"
    CENTURY_CLUB = "CenturyClub"


@dataclass(frozen=True)
class UnlockedAchievement:
    id: AchievementId
    unlocked_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id.value, "unlocked_at": self.unlocked_at.isoformat()}


@dataclass(frozen=True)
class SolutionOutcome:
    """Result of one timed attempt, optionally with its recording."""

    completed: bool
    elapsed: timedelta
    recording: Recording | None = None

    @classmethod
    def success(cls, elapsed: timedelta, recording: Recording | None = None) -> "SolutionOutcome":
        return cls(completed=True, elapsed=elapsed, recording=recording)

    @classmethod
    def failure(cls, elapsed: timedelta, recording: Recording | None = None) -> "SolutionOutcome":
        return cls(completed=False, elapsed=elapsed, recording=recording)

    def keystrokes(self) -> int | None:
        if self.recording is None:
            return None
        return self.recording.keystroke_count()


@dataclass(frozen=True)
class ChallengeStats:
    """Per-challenge performance record; updates return new values."""

    challenge_id: str
    completed: bool = False
    best_time: timedelta | None = None
    best_keystrokes: int | None = None
    first_completed_at: datetime | None = None
    last_attempted_at: datetime | None = None
    attempt_count: int = 0
    recording_hash: str | None = None
    signature: str | None = None
    signature_version: int | None = None

    @classmethod
    def new(cls, challenge_id: str) -> "ChallengeStats":
        return cls(challenge_id=challenge_id)

    @classmethod
    def completed_first(
        cls,
        challenge_id: str,
        elapsed: timedelta,
        keystrokes: int | None,
        completed_at: datetime,
    ) -> "ChallengeStats":
        at = _utc(completed_at)
        return cls(
            challenge_id=challenge_id,
            completed=True,
            best_time=elapsed,
            best_keystrokes=keystrokes,
            first_completed_at=at,
            last_attempted_at=at,
            attempt_count=1,
        )

    def record_attempt(
        self,
        completed: bool,
        elapsed: timedelta,
        keystrokes: int | None,
        at: datetime,
    ) -> "ChallengeStats":
        at = _utc(at)
        changes: dict[str, Any] = {
            "attempt_count": self.attempt_count + 1,
            "last_attempted_at": at,
        }
        if completed:
            changes["completed"] = True
            if self.first_completed_at is None:
                changes["first_completed_at"] = at
            if self.best_time is None or elapsed < self.best_time:
                changes["best_time"] = elapsed
            if keystrokes is not None and (self.best_keystrokes is None or keystrokes < self.best_keystrokes):
                changes["best_keystrokes"] = keystrokes
        return replace(self, **changes)

    def is_new_record(self, elapsed: timedelta, keystrokes: int | None) -> tuple[bool, bool]:
        time_record = self.best_time is None or elapsed < self.best_time
        keystroke_record = keystrokes is not None and (
            self.best_keystrokes is None or keystrokes < self.best_keystrokes
        )
        return time_record, keystroke_record

    def mastery_tier(self) -> MasteryTier | None:
        if not self.completed or self.best_time is None:
            return None
        return MasteryTier.calculate(self.best_time, self.best_keystrokes)

    def best_time_ms(self) -> int | None:
        if self.best_time is None:
            return None
        return self.best_time // ONE_MS

    def has_integrity_data(self) -> bool:
        return self.signature is not None

    def with_integrity(self, recording_hash: str, signature: str, signature_version: int) -> "ChallengeStats":
        return replace(
            self,
            recording_hash=recording_hash,
            signature=signature,
            signature_version=signature_version,
        )

    def without_integrity(self) -> "ChallengeStats":
        return replace(self, recording_hash=None, signature=None, signature_version=None)

    def signed_values(self) -> tuple[int | None, int | None, datetime | None]:
        """The stored fields a signature covers, besides the id and recording hash."""
        return self.best_time_ms(), self.best_keystrokes, self.first_completed_at

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "completed": self.completed,
            "best_time_secs": _secs(self.best_time),
            "best_keystrokes": self.best_keystrokes,
            "first_completed_at": _iso(self.first_completed_at),
            "last_attempted_at": _iso(self.last_attempted_at),
            "attempt_count": self.attempt_count,
        }
        if self.has_integrity_data():
            payload["recording_hash"] = self.recording_hash
            payload["signature"] = self.signature
            payload["signature_version"] = self.signature_version
        return payload

    @classmethod
    def from_dict(cls, challenge_id: str, payload: dict[str, Any]) -> "ChallengeStats":
        best_time_secs = payload.get("best_time_secs")
        best_keystrokes = payload.get("best_keystrokes")
        signature_version = payload.get("signature_version")
        return cls(
            challenge_id=challenge_id,
            completed=bool(payload.get("completed", False)),
            best_time=timedelta(milliseconds=round(float(best_time_secs) * 1000)) if best_time_secs is not None else None,
            best_keystrokes=int(best_keystrokes) if best_keystrokes is not None else None,
            first_completed_at=_parse_ts(payload.get("first_completed_at")),
            last_attempted_at=_parse_ts(payload.get("last_attempted_at")),
            attempt_count=int(payload.get("attempt_count", 0)),
            recording_hash=payload.get("recording_hash"),
            signature=payload.get("signature"),
            signature_version=int(signature_version) if signature_version is not None else None,
        )


@dataclass
class Progress:
    """Aggregate root for one user's practice history."""

    challenge_stats: dict[str, ChallengeStats] = field(default_factory=dict)
    total_practice_time: timedelta = timedelta(0)
    last_practice_date: date | None = None
    longest_streak: int = 0
    editor_preference: str | None = None
    unlocked_achievements: dict[AchievementId, UnlockedAchievement] = field(default_factory=dict)

    def get_challenge_stats(self, challenge_id: str) -> ChallengeStats | None:
        return self.challenge_stats.get(challenge_id)

    def set_editor_preference(self, editor: str) -> None:
        self.editor_preference = editor

    def record_attempt(
        self,
        challenge_id: str,
        completed: bool,
        elapsed: timedelta,
        keystrokes: int | None,
        at: datetime,
    ) -> ChallengeStats:
        """Fold one attempt into the aggregate and return the new stats."""

        at = _utc(at)
        existing = self.challenge_stats.get(challenge_id)
        if existing is not None:
            updated = existing.record_attempt(completed, elapsed, keystrokes, at)
        elif completed:
            updated = ChallengeStats.completed_first(challenge_id, elapsed, keystrokes, at)
        else:
            updated = ChallengeStats.new(challenge_id).record_attempt(completed, elapsed, keystrokes, at)
        self.challenge_stats[challenge_id] = updated

        self.total_practice_time += elapsed
        today = at.date()
        self.last_practice_date = today
        if completed:
            current = self.calculate_current_streak(today)
            if current > self.longest_streak:
                self.longest_streak = current
        return updated

    def update_challenge_integrity(
        self,
        challenge_id: str,
        recording_hash: str,
        signature: str,
        signature_version: int,
    ) -> None:
        stats = self.challenge_stats.get(challenge_id)
        if stats is None:
            return
        self.challenge_stats[challenge_id] = stats.with_integrity(recording_hash, signature, signature_version)

    def clear_challenge_integrity(self, challenge_id: str) -> None:
        stats = self.challenge_stats.get(challenge_id)
        if stats is not None:
            self.challenge_stats[challenge_id] = stats.without_integrity()

    def calculate_current_streak(self, today: date) -> int:
        """Consecutive days ending at `today` that hold a first-ever completion."""

        if self.last_practice_date is None:
            return 0
        if (today - self.last_practice_date).days > 1:
            return 0
        completion_days = {
            stats.first_completed_at.date()
            for stats in self.challenge_stats.values()
            if stats.first_completed_at is not None
        }
        streak = 0
        check = today
        while check in completion_days:
            streak += 1
            check -= timedelta(days=1)
        return streak

    def total_completed(self) -> int:
        return sum(1 for stats in self.challenge_stats.values() if stats.completed)

    def total_attempts(self) -> int:
        return sum(stats.attempt_count for stats in self.challenge_stats.values())

    def average_solve_time(self) -> timedelta | None:
        times = [stats.best_time for stats in self.challenge_stats.values() if stats.best_time is not None]
        if not times:
            return None
        return sum(times, timedelta(0)) / len(times)

    def average_keystrokes(self) -> int | None:
        counts = [stats.best_keystrokes for stats in self.challenge_stats.values() if stats.best_keystrokes is not None]
        if not counts:
            return None
        return sum(counts) // len(counts)

    def recently_completed(self, limit: int) -> list[ChallengeStats]:
        completed = [stats for stats in self.challenge_stats.values() if stats.completed]
        completed.sort(
            key=lambda stats: stats.last_attempted_at or datetime.min.replace(tzinfo=UTC),
            reverse=True,
        )
        return completed[:limit]

    def unlock_achievement(self, achievement_id: AchievementId, unlocked_at: datetime) -> bool:
        if achievement_id in self.unlocked_achievements:
            return False
        self.unlocked_achievements[achievement_id] = UnlockedAchievement(achievement_id, _utc(unlocked_at))
        return True

    def is_achievement_unlocked(self, achievement_id: AchievementId) -> bool:
        return achievement_id in self.unlocked_achievements

    def unlocked_achievement_ids(self) -> set[AchievementId]:
        return set(self.unlocked_achievements)

    def sorted_unlocked_achievements(self) -> list[UnlockedAchievement]:
        return sorted(self.unlocked_achievements.values(), key=lambda item: item.unlocked_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "editor_preference": self.editor_preference,
            "total_practice_time_secs": _secs(self.total_practice_time),
            "last_practice_date": self.last_practice_date.isoformat() if self.last_practice_date else None,
            "longest_streak": self.longest_streak,
            "challenges": {
                challenge_id: stats.to_dict() for challenge_id, stats in sorted(self.challenge_stats.items())
            },
            "unlocked_achievements": [item.to_dict() for item in self.sorted_unlocked_achievements()],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> tuple["Progress", list[str]]:
        """Rebuild from a snapshot; returns the progress and skipped achievement ids."""

        challenges = payload.get("challenges") or {}
        stats = {challenge_id: ChallengeStats.from_dict(challenge_id, raw) for challenge_id, raw in challenges.items()}
        unlocked: dict[AchievementId, UnlockedAchievement] = {}
        skipped: list[str] = []
        for raw in payload.get("unlocked_achievements") or []:
            try:
                achievement_id = AchievementId(raw["id"])
            except ValueError:
                skipped.append(str(raw.get("id")))
                continue
            unlocked_at = _parse_ts(raw["unlocked_at"])
            if unlocked_at is not None and achievement_id not in unlocked:
                unlocked[achievement_id] = UnlockedAchievement(achievement_id, unlocked_at)
        last_practice = payload.get("last_practice_date")
        total_secs = payload.get("total_practice_time_secs") or 0
        progress = cls(
            challenge_stats=stats,
            total_practice_time=timedelta(milliseconds=round(float(total_secs) * 1000)),
            last_practice_date=date.fromisoformat(last_practice) if last_practice else None,
            longest_streak=int(payload.get("longest_streak", 0)),
            editor_preference=payload.get("editor_preference"),
            unlocked_achievements=unlocked,
        )
        return progress, skipped
