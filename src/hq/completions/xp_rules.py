"""XP reward formulas for tasks and habits."""

from __future__ import annotations

from datetime import datetime

from hq.config import get_settings
from hq.enums import Difficulty, Priority
from hq.errors import ValidationFailed

TASK_BASE_XP = {
    Difficulty.EASY.value: 10,
    Difficulty.MEDIUM.value: 25,
    Difficulty.HARD.value: 50,
    Difficulty.EXTREME.value: 100,
}
HABIT_BASE_XP = {
    Difficulty.EASY.value: 5,
    Difficulty.MEDIUM.value: 15,
    Difficulty.HARD.value: 30,
    Difficulty.EXTREME.value: 60,
}

PRIORITY_MULTIPLIERS = {
    Priority.LOW.value: 0.9,
    Priority.MEDIUM.value: 1.0,
    Priority.HIGH.value: 1.2,
    Priority.CRITICAL.value: 1.4,
}

EARLY_BONUS_PER_DAY = 0.05
EARLY_BONUS_CAP = 0.2
LATE_PENALTY_PER_DAY = 0.05
LATE_PENALTY_FLOOR = -0.3
SUBTASK_BONUS = 1.1

HABIT_STREAK_BONUS_PER_WEEK = 0.02
HABIT_STREAK_BONUS_CAP = 0.3
FIRST_COMPLETION_BONUS = 1.5
WEEKLY_CONSISTENCY_BONUS = 1.15


def validate_xp_reward(value: int | None) -> None:
    """Reject custom rewards outside the configured bounds."""
    if value is None:
        return
    settings = get_settings()
    if value < settings.min_xp_reward or value > settings.max_xp_reward:
        raise ValidationFailed(
            f"XP reward must be between {settings.min_xp_reward} and {settings.max_xp_reward}, got {value}"
        )


def calculate_task_xp(
    xp_reward: int | None,
    difficulty: str,
    priority: str,
    due_date: datetime | None = None,
    completed_at: datetime | None = None,
    all_subtasks_completed: bool = False,
) -> int:
    """XP for completing a task.

    Starts from the custom reward or the difficulty base, then applies the
    priority multiplier, an early bonus (+5%/day, max +20%) or late
    penalty (-5%/day, floor -30%), and +10% when every subtask is done.
    """
    validate_xp_reward(xp_reward)
    xp = float(xp_reward or TASK_BASE_XP.get(difficulty, 25))
    xp *= PRIORITY_MULTIPLIERS.get(priority, 1.0)

    if due_date is not None and completed_at is not None:
        days_early = (due_date.date() - completed_at.date()).days
        if days_early > 0:
            xp *= 1 + min(days_early * EARLY_BONUS_PER_DAY, EARLY_BONUS_CAP)
        elif days_early < 0:
            xp *= 1 + max(days_early * LATE_PENALTY_PER_DAY, LATE_PENALTY_FLOOR)

    if all_subtasks_completed:
        xp *= SUBTASK_BONUS

    return round(xp)


def calculate_habit_xp(
    xp_reward: int | None,
    difficulty: str,
    current_streak: int = 0,
    is_first_completion: bool = False,
    completed_all_target_days: bool = False,
) -> int:
    """XP for a habit check-in.

    Streak bonus is +2% per full week of streak, capped at +30%. A first
    check-in earns x1.5 and a full week of target days x1.15.
    """
    validate_xp_reward(xp_reward)
    xp = float(xp_reward or HABIT_BASE_XP.get(difficulty, 15))

    if current_streak > 0:
        weeks = current_streak // 7
        xp *= 1 + min(weeks * HABIT_STREAK_BONUS_PER_WEEK, HABIT_STREAK_BONUS_CAP)

    if is_first_completion:
        xp *= FIRST_COMPLETION_BONUS

    if completed_all_target_days:
        xp *= WEEKLY_CONSISTENCY_BONUS

    return round(xp)
