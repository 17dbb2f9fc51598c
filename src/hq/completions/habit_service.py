"""Habit check-ins: at most one credited completion per habit per day."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hq.completions.reversal import apply_streak_snapshot, pre_day_snapshot, reverse_character_streak
from hq.completions.xp_rules import calculate_habit_xp
from hq.config import get_settings
from hq.database import atomic
from hq.db.models import Habit, HabitCompletion
from hq.enums import ActivityType, StreakOutcome
from hq.errors import AlreadyCompletedError, NotFound, ValidationFailed
from hq.progression.calculator import ProgressionResult
from hq.progression.streak import StreakState, StreakUpdate, advance_streak, rebuild_streak
from hq.progression.streak_service import (
    announce_streak_broken,
    announce_streak_milestone,
    record_streak_activity,
    streak_state_of,
)
from hq.progression.xp_service import apply_progression, get_character

logger = logging.getLogger(__name__)


@dataclass
class HabitCompletionResult:
    completion: HabitCompletion
    xp_earned: int
    habit_streak: StreakUpdate
    progression: ProgressionResult
    streak: StreakUpdate


@dataclass
class HabitReversalResult:
    habit: Habit
    xp_removed: int
    progression: ProgressionResult
    restored_streak: StreakState | None


def habit_streak_state(habit: Habit) -> StreakState:
    return StreakState(
        streak_days=habit.current_streak,
        longest_streak=habit.longest_streak,
        last_active_date=habit.last_completed_date,
        last_streak_date=habit.last_completed_date,
    )


def _write_habit_streak(habit: Habit, state: StreakState) -> None:
    habit.current_streak = state.streak_days
    habit.longest_streak = state.longest_streak
    habit.last_completed_date = state.last_active_date


def target_days_per_week(habit: Habit) -> int:
    if habit.frequency == "daily":
        return 7
    return len(habit.target_days or []) or 3


def habit_snapshot(habit: Habit) -> dict:
    return {
        "title": habit.title,
        "difficulty": habit.difficulty,
        "frequency": habit.frequency,
        "target_days": list(habit.target_days or []),
        "xp_reward": habit.xp_reward,
    }


async def _get_user_habit(db: AsyncSession, user_id: int, habit_id: int) -> Habit:
    result = await db.execute(select(Habit).where(Habit.id == habit_id, Habit.user_id == user_id))
    habit = result.scalar_one_or_none()
    if habit is None:
        raise NotFound("Habit not found")
    return habit


async def complete_habit(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    habit_id: int,
    now: datetime | None = None,
) -> HabitCompletionResult:
    """Credit today's check-in for a habit.

    A second attempt for the same (habit, date) raises
    ``AlreadyCompletedError``, whether caught by the lookup or by the
    unique constraint when two requests race.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    today = now.date()

    async with atomic(db):
        habit = await _get_user_habit(db, user_id, habit_id)
        if not habit.is_active:
            raise ValidationFailed("Cannot complete inactive habit")

        existing = await db.execute(
            select(HabitCompletion.id).where(
                HabitCompletion.habit_id == habit.id,
                HabitCompletion.completed_date == today,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise AlreadyCompletedError("Habit already completed today")

        habit_before = habit_streak_state(habit)
        habit_update = advance_streak(habit_before, today, get_settings().streak_milestones)

        week_count = (
            await db.execute(
                select(func.count()).select_from(HabitCompletion).where(
                    HabitCompletion.habit_id == habit.id,
                    HabitCompletion.completed_date > today - timedelta(days=7),
                    HabitCompletion.completed_date <= today,
                )
            )
        ).scalar_one()
        completed_all_target_days = week_count + 1 >= target_days_per_week(habit)

        xp = calculate_habit_xp(
            habit.xp_reward,
            habit.difficulty,
            current_streak=habit_update.after.streak_days,
            is_first_completion=habit.total_completions == 0,
            completed_all_target_days=completed_all_target_days,
        )

        character = await get_character(db, user_id, for_update=True)
        before = await pre_day_snapshot(db, user_id, today, streak_state_of(character))

        completion = HabitCompletion(
            habit_id=habit.id,
            user_id=user_id,
            completed_date=today,
            completed_at=now,
            xp_earned=xp,
            streak_count=habit_update.after.streak_days,
            habit_snapshot=habit_snapshot(habit),
            habit_streak_before=habit_before.streak_days,
            habit_longest_before=habit_before.longest_streak,
            habit_last_date_before=habit_before.last_active_date,
        )
        apply_streak_snapshot(completion, before)
        db.add(completion)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise AlreadyCompletedError("Habit already completed today") from exc

        _write_habit_streak(habit, habit_update.after)
        habit.total_completions += 1

        if habit_update.outcome is StreakOutcome.BROKEN:
            await announce_streak_broken(
                db, redis, user_id, habit_update.broken_length, related_habit_id=habit.id, now=now
            )
        elif habit_update.milestone is not None and habit_update.milestone > 1:
            await announce_streak_milestone(
                db, redis, user_id, habit_update.milestone, habit.longest_streak,
                related_habit_id=habit.id, now=now,
            )

        progression = await apply_progression(
            db, redis, character, xp,
            ActivityType.HABIT_COMPLETED,
            f"Completed habit: {habit.title}",
            related_habit_id=habit.id,
            metadata={"completion_id": completion.id, "habit_streak": habit.current_streak},
            now=now,
        )
        streak = await record_streak_activity(db, redis, character, today, now=now)
        character.total_habits_completed += 1

    return HabitCompletionResult(
        completion=completion,
        xp_earned=xp,
        habit_streak=habit_update,
        progression=progression,
        streak=streak,
    )


async def uncomplete_habit(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    habit_id: int,
    completed_date: date | None = None,
    now: datetime | None = None,
) -> HabitReversalResult:
    """Undo the check-in for one day (today by default)."""
    if now is None:
        now = datetime.now(timezone.utc)
    day = completed_date or now.date()

    async with atomic(db):
        habit = await _get_user_habit(db, user_id, habit_id)
        result = await db.execute(
            select(HabitCompletion).where(
                HabitCompletion.habit_id == habit.id,
                HabitCompletion.completed_date == day,
            )
        )
        completion = result.scalar_one_or_none()
        if completion is None:
            raise NotFound(f"Habit was not completed on {day.isoformat()}")

        character = await get_character(db, user_id, for_update=True)
        restored = await reverse_character_streak(db, character, completion)

        remaining = (
            await db.execute(
                select(HabitCompletion.completed_date).where(
                    HabitCompletion.habit_id == habit.id,
                    HabitCompletion.id != completion.id,
                )
            )
        ).scalars().all()
        if not remaining or max(remaining) < day:
            _write_habit_streak(
                habit,
                StreakState(
                    streak_days=completion.habit_streak_before,
                    longest_streak=completion.habit_longest_before,
                    last_active_date=completion.habit_last_date_before,
                ),
            )
        else:
            # One row per day, so the habit streak replays exactly
            _write_habit_streak(habit, rebuild_streak(remaining))
        habit.total_completions = max(0, habit.total_completions - 1)

        progression = await apply_progression(
            db, redis, character, -completion.xp_earned,
            ActivityType.HABIT_UNCOMPLETED,
            f"Uncompleted habit: {habit.title}",
            related_habit_id=habit.id,
            metadata={
                "xp_removed": completion.xp_earned,
                "date": day.isoformat(),
                "streak_restored": restored is not None,
            },
            now=now,
        )
        character.total_habits_completed = max(0, character.total_habits_completed - 1)

        xp_removed = completion.xp_earned
        await db.delete(completion)

    return HabitReversalResult(
        habit=habit, xp_removed=xp_removed, progression=progression, restored_streak=restored
    )
