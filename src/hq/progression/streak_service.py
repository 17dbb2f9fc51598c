"""Apply streak transitions to the character row and announce milestones and breaks."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from hq.activity.service import record_activity
from hq.config import get_settings
from hq.db.models import Character
from hq.enums import ActivityType, Importance, StreakOutcome
from hq.notifications.service import emit_notification
from hq.progression.streak import StreakState, StreakUpdate, advance_streak

logger = logging.getLogger(__name__)


def streak_state_of(character: Character) -> StreakState:
    return StreakState(
        streak_days=character.streak_days,
        longest_streak=character.longest_streak,
        last_active_date=character.last_active_date,
        last_streak_date=character.last_streak_date,
    )


def write_streak_state(character: Character, state: StreakState) -> None:
    character.streak_days = state.streak_days
    character.longest_streak = state.longest_streak
    character.last_active_date = state.last_active_date
    character.last_streak_date = state.last_streak_date


async def record_streak_activity(
    db: AsyncSession,
    redis: object | None,
    character: Character,
    activity_date: date,
    now: datetime | None = None,
) -> StreakUpdate:
    """Advance the character streak for activity on ``activity_date``."""
    if now is None:
        now = datetime.now(timezone.utc)

    update = advance_streak(
        streak_state_of(character), activity_date, get_settings().streak_milestones
    )
    if not update.changed:
        return update

    write_streak_state(character, update.after)
    character.updated_at = now

    if update.outcome is StreakOutcome.BROKEN:
        await announce_streak_broken(db, redis, character.user_id, update.broken_length, now=now)
    elif update.milestone is not None:
        await announce_streak_milestone(
            db, redis, character.user_id, update.milestone, update.after.longest_streak, now=now
        )

    await db.flush()
    return update


async def announce_streak_milestone(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    streak_days: int,
    longest_streak: int,
    *,
    related_habit_id: int | None = None,
    now: datetime | None = None,
) -> None:
    logger.info("User %s reached a %d-day streak", user_id, streak_days)
    await record_activity(
        db, user_id, ActivityType.STREAK_MILESTONE,
        f"{streak_days}-day streak!",
        related_habit_id=related_habit_id,
        metadata={"streak_days": streak_days, "longest_streak": longest_streak},
        importance=Importance.MILESTONE,
        now=now,
    )
    await emit_notification(
        db, redis, user_id,
        "streak", "streak_milestone",
        "Streak Milestone",
        f"{streak_days} days in a row. Keep it going!",
        action_url="/profile/streaks",
        metadata={"streak_days": streak_days, "habit_id": related_habit_id},
        now=now,
    )


async def announce_streak_broken(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    streak_length: int,
    *,
    related_habit_id: int | None = None,
    now: datetime | None = None,
) -> None:
    await record_activity(
        db, user_id, ActivityType.STREAK_BROKEN,
        f"Your {streak_length}-day streak has ended.",
        related_habit_id=related_habit_id,
        metadata={"streak_length": streak_length},
        is_public=False,
        importance=Importance.HIGH,
        now=now,
    )
    await emit_notification(
        db, redis, user_id,
        "streak", "streak_broken",
        "Streak Broken",
        f"Your {streak_length}-day streak has ended. Start a new one today.",
        action_url="/profile/streaks",
        metadata={"streak_length": streak_length, "habit_id": related_habit_id},
        now=now,
    )
