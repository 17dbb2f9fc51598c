"""Append-only audit trail behind every credited, rejected or failed transition."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hq.db.models import ActivityLog
from hq.enums import ActivityType, Importance


async def record_activity(
    db: AsyncSession,
    user_id: int,
    activity_type: ActivityType,
    description: str,
    *,
    xp_gained: int = 0,
    level_before: int | None = None,
    level_after: int | None = None,
    rank_before: str | None = None,
    rank_after: str | None = None,
    related_task_id: int | None = None,
    related_habit_id: int | None = None,
    related_challenge_id: int | None = None,
    metadata: dict[str, Any] | None = None,
    is_public: bool = True,
    importance: Importance = Importance.MEDIUM,
    now: datetime | None = None,
) -> ActivityLog:
    """Append one immutable activity record. Flushes, never commits."""
    entry = ActivityLog(
        user_id=user_id,
        activity_type=ActivityType(activity_type).value,
        description=description,
        xp_gained=xp_gained,
        level_before=level_before,
        level_after=level_after,
        rank_before=rank_before,
        rank_after=rank_after,
        related_task_id=related_task_id,
        related_habit_id=related_habit_id,
        related_challenge_id=related_challenge_id,
        activity_metadata=metadata or {},
        is_public=is_public,
        importance=Importance(importance).value,
        created_at=now or datetime.now(timezone.utc),
    )
    db.add(entry)
    await db.flush()
    return entry


async def get_activity_feed(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[ActivityLog], int]:
    """Get the user's activity feed, newest first (paginated)."""
    offset = (page - 1) * per_page

    total_result = await db.execute(
        select(func.count()).select_from(ActivityLog).where(ActivityLog.user_id == user_id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(ActivityLog)
        .where(ActivityLog.user_id == user_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    return list(result.scalars().all()), total
