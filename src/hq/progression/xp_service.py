"""XP grants and reversals against the character row, with level and rank changes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hq.activity.service import record_activity
from hq.config import get_settings
from hq.db.models import Character, Rank
from hq.enums import ActivityType, Importance, RankChange
from hq.errors import DataIntegrityError
from hq.notifications.service import emit_notification
from hq.progression.calculator import CharacterSnapshot, ProgressionResult, apply_xp
from hq.progression.levels import LevelCurve, RankTier

logger = logging.getLogger(__name__)


def get_level_curve() -> LevelCurve:
    settings = get_settings()
    return LevelCurve(base=settings.xp_base, increment=settings.xp_increment)


async def load_ranks(db: AsyncSession) -> list[RankTier]:
    result = await db.execute(select(Rank).order_by(Rank.order_index))
    return [
        RankTier(
            id=r.id,
            name=r.name,
            min_level=r.min_level,
            max_level=r.max_level,
            order_index=r.order_index,
        )
        for r in result.scalars()
    ]


async def create_character(db: AsyncSession, user_id: int, now: datetime | None = None) -> Character:
    """Create the level-1 character for a newly registered user."""
    result = await db.execute(select(Rank).order_by(Rank.order_index).limit(1))
    lowest = result.scalar_one_or_none()
    if lowest is None:
        raise DataIntegrityError("No ranks seeded; cannot create character")

    character = Character(
        user_id=user_id,
        rank_id=lowest.id,
        level=1,
        current_xp=0,
        total_xp=0,
        xp_to_next_level=get_level_curve().xp_to_next_level(1),
        created_at=now or datetime.now(timezone.utc),
    )
    db.add(character)
    await db.flush()
    return character


async def get_character(db: AsyncSession, user_id: int, *, for_update: bool = False) -> Character:
    """Load a user's character. A missing row is a data-integrity failure."""
    stmt = select(Character).where(Character.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update(of=Character)
    result = await db.execute(stmt)
    character = result.unique().scalar_one_or_none()
    if character is None:
        raise DataIntegrityError(f"Character for user {user_id} does not exist")
    return character


def snapshot_of(character: Character) -> CharacterSnapshot:
    return CharacterSnapshot(
        level=character.level,
        current_xp=character.current_xp,
        total_xp=character.total_xp,
        xp_to_next_level=character.xp_to_next_level,
        rank_id=character.rank_id,
    )


async def apply_progression(
    db: AsyncSession,
    redis: object | None,
    character: Character,
    delta: int,
    source: ActivityType,
    description: str,
    *,
    related_task_id: int | None = None,
    related_habit_id: int | None = None,
    related_challenge_id: int | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> ProgressionResult:
    """Run the calculator on a loaded character and persist the outcome.

    Appends the ``source`` activity (carrying level before/after), a
    separate rank_up/rank_down activity when the tier moves, and the
    matching notification intents.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    ranks = await load_ranks(db)
    result = apply_xp(snapshot_of(character), delta, ranks, get_level_curve())

    character.level = result.new_level
    character.current_xp = result.new_current_xp
    character.total_xp = result.new_total_xp
    character.xp_to_next_level = result.new_xp_to_next_level
    if result.to_rank is not None:
        character.rank_id = result.to_rank.id
    character.updated_at = now

    if result.degraded:
        logger.warning(
            "Degraded XP adjustment for user %s: requested %d, applied %d",
            character.user_id, delta, result.xp_applied,
        )

    level_changed = result.new_level != result.old_level
    await record_activity(
        db,
        character.user_id,
        source,
        description,
        xp_gained=result.xp_applied,
        level_before=result.old_level,
        level_after=result.new_level,
        related_task_id=related_task_id,
        related_habit_id=related_habit_id,
        related_challenge_id=related_challenge_id,
        metadata={**(metadata or {}), "degraded": result.degraded},
        importance=Importance.MILESTONE if level_changed else Importance.MEDIUM,
        now=now,
    )

    if result.leveled_up:
        logger.info("User %s leveled up %d -> %d", character.user_id, result.old_level, result.new_level)
        await emit_notification(
            db, redis, character.user_id,
            "progression", "level_up",
            "Level Up!",
            f"You reached level {result.new_level}",
            action_url="/profile",
            metadata={"old_level": result.old_level, "new_level": result.new_level},
            now=now,
        )

    if result.rank_change is not None:
        await _record_rank_change(db, redis, character.user_id, result, now)

    await db.flush()
    return result


async def _record_rank_change(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    result: ProgressionResult,
    now: datetime,
) -> None:
    from_name = result.from_rank.name if result.from_rank else None
    to_name = result.to_rank.name if result.to_rank else None
    is_up = result.rank_change is RankChange.RANK_UP

    logger.info("User %s %s: %s -> %s", user_id, result.rank_change.value, from_name, to_name)
    await record_activity(
        db,
        user_id,
        ActivityType.RANK_UP if is_up else ActivityType.RANK_DOWN,
        f"Advanced to {to_name}!" if is_up else f"Dropped to {to_name}",
        level_before=result.old_level,
        level_after=result.new_level,
        rank_before=from_name,
        rank_after=to_name,
        importance=Importance.MILESTONE,
        now=now,
    )
    await emit_notification(
        db, redis, user_id,
        "progression", result.rank_change.value,
        "Rank Up!" if is_up else "Rank Lost",
        f"You are now {to_name}",
        action_url="/profile",
        metadata={"from_rank": from_name, "to_rank": to_name},
        now=now,
    )

