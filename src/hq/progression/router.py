"""Character, activity feed and global leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hq.activity.service import get_activity_feed
from hq.challenges.leaderboard import get_global_leaderboard
from hq.database import get_session
from hq.dependencies import get_current_user_id
from hq.progression.schemas import (
    ActivityFeedResponse,
    ActivityResponse,
    CharacterResponse,
    GlobalLeaderboardEntry,
    GlobalLeaderboardResponse,
)
from hq.progression.streak import effective_streak
from hq.progression.streak_service import streak_state_of
from hq.progression.xp_service import get_character

router = APIRouter(prefix="/api/v1", tags=["Progression"])


@router.get("/me/character", response_model=CharacterResponse)
async def my_character(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> CharacterResponse:
    """Current level, XP, rank and streak of the caller."""
    character = await get_character(db, user_id)
    today = datetime.now(timezone.utc).date()
    return CharacterResponse(
        user_id=character.user_id,
        level=character.level,
        current_xp=character.current_xp,
        total_xp=character.total_xp,
        xp_to_next_level=character.xp_to_next_level,
        rank=character.rank.name,
        global_ranking=character.global_ranking,
        streak_days=character.streak_days,
        effective_streak=effective_streak(streak_state_of(character), today),
        longest_streak=character.longest_streak,
        last_active_date=character.last_active_date,
        total_tasks_completed=character.total_tasks_completed,
        total_habits_completed=character.total_habits_completed,
        total_challenges_joined=character.total_challenges_joined,
        total_challenges_completed=character.total_challenges_completed,
    )


@router.get("/me/activity", response_model=ActivityFeedResponse)
async def my_activity(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ActivityFeedResponse:
    """The caller's activity feed, newest first."""
    items, total = await get_activity_feed(db, user_id, page, per_page)
    return ActivityFeedResponse(
        items=[ActivityResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/leaderboard/global", response_model=GlobalLeaderboardResponse)
async def global_leaderboard(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
) -> GlobalLeaderboardResponse:
    """All characters ranked by total XP."""
    data = await get_global_leaderboard(db, page, per_page)
    return GlobalLeaderboardResponse(
        entries=[GlobalLeaderboardEntry(**e) for e in data["entries"]],
        total=data["total"],
        page=data["page"],
        per_page=data["per_page"],
    )
