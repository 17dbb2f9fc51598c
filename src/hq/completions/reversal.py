"""Exact streak reversal for uncompleted tasks and habits.

Each completion stores the character's streak state from just before the
day it landed on was first counted. Undoing it is exact when:

* another credited completion still exists on the same day (the day
  keeps counting, nothing to undo);
* the completion was a backfill dated before the activity that already
  existed when it was recorded (it never moved the streak);
* it is the newest credited activity (restore the stored state).

Anything else would mean rewriting a streak that later days were built
on, so the reversal is refused with ``AmbiguousReversalError``.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hq.db.base import as_utc
from hq.db.models import Character, HabitCompletion, TaskCompletion
from hq.errors import AmbiguousReversalError
from hq.progression.streak import StreakState
from hq.progression.streak_service import write_streak_state


def completion_streak_snapshot(completion: TaskCompletion | HabitCompletion) -> StreakState:
    return StreakState(
        streak_days=completion.streak_days_before,
        longest_streak=completion.longest_streak_before,
        last_active_date=completion.last_active_date_before,
        last_streak_date=completion.last_streak_date_before,
    )


def apply_streak_snapshot(completion: TaskCompletion | HabitCompletion, state: StreakState) -> None:
    completion.streak_days_before = state.streak_days
    completion.longest_streak_before = state.longest_streak
    completion.last_active_date_before = state.last_active_date
    completion.last_streak_date_before = state.last_streak_date


async def pre_day_snapshot(
    db: AsyncSession,
    user_id: int,
    day: date,
    current: StreakState,
) -> StreakState:
    """Streak state to store on a new completion dated ``day``.

    When ``day`` has already been counted, the state from before that day
    lives on the earliest completion of the day and is copied forward so
    every completion of the day can undo it.
    """
    if current.last_active_date != day:
        return current

    candidates: list[tuple] = []
    task_result = await db.execute(
        select(TaskCompletion)
        .where(TaskCompletion.user_id == user_id, TaskCompletion.completed_date == day)
        .order_by(TaskCompletion.completed_at.asc(), TaskCompletion.id.asc())
        .limit(1)
    )
    first_task = task_result.scalar_one_or_none()
    if first_task is not None:
        candidates.append((first_task.completed_at, first_task))

    habit_result = await db.execute(
        select(HabitCompletion)
        .where(HabitCompletion.user_id == user_id, HabitCompletion.completed_date == day)
        .order_by(HabitCompletion.completed_at.asc(), HabitCompletion.id.asc())
        .limit(1)
    )
    first_habit = habit_result.scalar_one_or_none()
    if first_habit is not None:
        candidates.append((first_habit.completed_at, first_habit))

    if not candidates:
        return current
    earliest = min(candidates, key=lambda c: as_utc(c[0]))[1]
    return completion_streak_snapshot(earliest)


async def _other_activity(
    db: AsyncSession,
    user_id: int,
    *,
    on_day: date | None = None,
    after_day: date | None = None,
    exclude_task_completion_id: int | None = None,
    exclude_habit_completion_id: int | None = None,
) -> bool:
    task_filters = [TaskCompletion.user_id == user_id]
    habit_filters = [HabitCompletion.user_id == user_id]
    if on_day is not None:
        task_filters.append(TaskCompletion.completed_date == on_day)
        habit_filters.append(HabitCompletion.completed_date == on_day)
    if after_day is not None:
        task_filters.append(TaskCompletion.completed_date > after_day)
        habit_filters.append(HabitCompletion.completed_date > after_day)
    if exclude_task_completion_id is not None:
        task_filters.append(TaskCompletion.id != exclude_task_completion_id)
    if exclude_habit_completion_id is not None:
        habit_filters.append(HabitCompletion.id != exclude_habit_completion_id)

    result = await db.execute(
        select(
            or_(
                exists().where(*task_filters),
                exists().where(*habit_filters),
            )
        )
    )
    return bool(result.scalar())


async def reverse_character_streak(
    db: AsyncSession,
    character: Character,
    completion: TaskCompletion | HabitCompletion,
) -> StreakState | None:
    """Undo the streak effect of ``completion``.

    Returns the restored state, or None when the streak is unaffected.
    Raises ``AmbiguousReversalError`` before mutating anything when the
    effect cannot be undone exactly.
    """
    day = completion.completed_date
    snapshot = completion_streak_snapshot(completion)
    exclude = (
        {"exclude_task_completion_id": completion.id}
        if isinstance(completion, TaskCompletion)
        else {"exclude_habit_completion_id": completion.id}
    )

    if await _other_activity(db, character.user_id, on_day=day, **exclude):
        return None

    if snapshot.last_active_date is not None and snapshot.last_active_date > day:
        return None

    if await _other_activity(db, character.user_id, after_day=day, **exclude):
        raise AmbiguousReversalError(
            f"Cannot undo activity on {day.isoformat()}: later activity depends on that day's streak"
        )

    write_streak_state(character, snapshot)
    return snapshot
