from __future__ import annotations

"""Achievement catalog and unlock evaluation."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .errors import NotFoundError
from .models import AchievementId, MasteryTier, Progress


@dataclass(frozen=True)
class Achievement:
    id: AchievementId
    name: str
    description: str
    badge: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id.value,
            "name": self.name,
            "description": self.description,
            "badge": self.badge,
        }


CATALOG: dict[AchievementId, Achievement] = {
    achievement.id: achievement
    for achievement in (
        Achievement(AchievementId.FIRST_STEPS, "First Steps", "Complete your first challenge", "\U0001f463"),
        Achievement(AchievementId.SPEED_DEMON, "Speed Demon", "Complete 10 challenges under 10 seconds", "⚡"),
        Achievement(
            AchievementId.LIGHTNING_FAST, "Lightning Fast", "Complete a challenge in under 5 seconds", "⚡⚡"
        ),
        Achievement(
            AchievementId.PERFECTIONIST, "Perfectionist", "Complete a challenge with under 20 keystrokes", "\U0001f48e"
        ),
        Achievement(
            AchievementId.EFFICIENCY_EXPERT,
            "Efficiency Expert",
            "Maintain an average under 40 keystrokes across all completions",
            "\U0001f3af",
        ),
        Achievement(AchievementId.CONSISTENT_LEARNER, "Consistent Learner", "Practice 7 days in a row", "\U0001f525"),
        Achievement(
            AchievementId.DEDICATED_PRACTITIONER,
            "Dedicated Practitioner",
            "Practice 30 days in a row",
            "\U0001f525\U0001f525",
        ),
        Achievement(AchievementId.CHALLENGE_MASTER, "Challenge Master", "Achieve gold tier on 25 challenges", "\U0001f3c6"),
        Achievement(AchievementId.GOLD_RUSH, "Gold Rush", "Achieve gold tier on 10 challenges in a row", "\U0001f947"),
        Achievement(AchievementId.COMPLETIONIST, "Completionist", "Complete all available challenges", "✨"),
        Achievement(
            AchievementId.HALFWAY_THERE, "Halfway There", "Complete 50% of available challenges", "\U0001f396️"
        ),
        Achievement(AchievementId.CENTURY_CLUB, "Century Club", "Complete 100 challenges total", "\U0001f4af"),
    )
}


def achievement_catalog() -> list[Achievement]:
    return [CATALOG[achievement_id] for achievement_id in AchievementId]


def get_achievement(achievement_id: AchievementId | str) -> Achievement:
    try:
        return CATALOG[AchievementId(achievement_id)]
    except ValueError as exc:
        raise NotFoundError(f"Unknown achievement: {achievement_id}", code="ACHIEVEMENT_NOT_FOUND") from exc


def _count_faster_than(progress: Progress, limit: timedelta) -> int:
    return sum(
        1 for stats in progress.challenge_stats.values() if stats.best_time is not None and stats.best_time < limit
    )


def _gold_count(progress: Progress) -> int:
    return sum(1 for stats in progress.challenge_stats.values() if stats.mastery_tier() == MasteryTier.GOLD)


def _halfway(progress: Progress, total: int) -> bool:
    if total <= 0:
        return False
    return progress.total_completed() >= (total + 1) // 2


def _efficient_average(progress: Progress, _total: int) -> bool:
    average = progress.average_keystrokes()
    return average is not None and average < 40


Predicate = Callable[[Progress, int], bool]

# GoldRush counts gold tiers only; completion order is not tracked.
PREDICATES: dict[AchievementId, Predicate] = {
    AchievementId.FIRST_STEPS: lambda progress, _total: progress.total_completed() >= 1,
    AchievementId.SPEED_DEMON: lambda progress, _total: _count_faster_than(progress, timedelta(seconds=10)) >= 10,
    AchievementId.LIGHTNING_FAST: lambda progress, _total: _count_faster_than(progress, timedelta(seconds=5)) >= 1,
    AchievementId.PERFECTIONIST: lambda progress, _total: any(
        stats.best_keystrokes is not None and stats.best_keystrokes < 20
        for stats in progress.challenge_stats.values()
    ),
    AchievementId.EFFICIENCY_EXPERT: _efficient_average,
    AchievementId.CONSISTENT_LEARNER: lambda progress, _total: progress.longest_streak >= 7,
    AchievementId.DEDICATED_PRACTITIONER: lambda progress, _total: progress.longest_streak >= 30,
    AchievementId.CHALLENGE_MASTER: lambda progress, _total: _gold_count(progress) >= 25,
    AchievementId.GOLD_RUSH: lambda progress, _total: _gold_count(progress) >= 10,
    AchievementId.COMPLETIONIST: lambda progress, total: total > 0 and progress.total_completed() >= total,
    AchievementId.HALFWAY_THERE: _halfway,
    AchievementId.CENTURY_CLUB: lambda progress, _total: progress.total_completed() >= 100,
}


def check_achievements(
    progress: Progress,
    total_challenge_count: int,
    now: datetime | None = None,
) -> list[Achievement]:
    """Unlock every achievement whose condition newly holds.

    Already-unlocked ids are skipped, so repeated calls return nothing new.
    All unlocks from one call share the same timestamp.
    """

    unlocked_at = now or datetime.now(UTC)
    already = progress.unlocked_achievement_ids()
    newly: list[Achievement] = []
    for achievement_id in AchievementId:
        if achievement_id in already:
            continue
        if PREDICATES[achievement_id](progress, total_challenge_count):
            progress.unlock_achievement(achievement_id, unlocked_at)
            newly.append(CATALOG[achievement_id])
    return newly
