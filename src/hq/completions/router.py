"""Task and habit completion endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hq.completions.habit_service import complete_habit, uncomplete_habit
from hq.completions.schemas import (
    HabitCompletionResponse,
    HabitReversalResponse,
    TaskCompletionResponse,
    TaskReversalResponse,
)
from hq.completions.task_service import complete_task, uncomplete_task
from hq.database import get_session
from hq.dependencies import get_current_user_id, get_redis_dep
from hq.progression.schemas import ProgressionResponse, StreakResponse

router = APIRouter(prefix="/api/v1", tags=["Completions"])


@router.post("/tasks/{task_id}/complete", response_model=TaskCompletionResponse)
async def complete_task_endpoint(
    task_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
) -> TaskCompletionResponse:
    result = await complete_task(db, redis, user_id, task_id)
    return TaskCompletionResponse(
        completion_id=result.completion.id,
        task_id=task_id,
        xp_earned=result.xp_earned,
        progression=ProgressionResponse.from_result(result.progression),
        streak=StreakResponse.from_update(result.streak),
    )


@router.delete("/tasks/{task_id}/complete", response_model=TaskReversalResponse)
async def uncomplete_task_endpoint(
    task_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
) -> TaskReversalResponse:
    result = await uncomplete_task(db, redis, user_id, task_id)
    return TaskReversalResponse(
        task_id=task_id,
        status=result.task.status,
        xp_removed=result.xp_removed,
        progression=ProgressionResponse.from_result(result.progression),
        streak_restored=result.restored_streak is not None,
    )


@router.post("/habits/{habit_id}/complete", response_model=HabitCompletionResponse)
async def complete_habit_endpoint(
    habit_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
) -> HabitCompletionResponse:
    result = await complete_habit(db, redis, user_id, habit_id)
    return HabitCompletionResponse(
        completion_id=result.completion.id,
        habit_id=habit_id,
        completed_date=result.completion.completed_date,
        xp_earned=result.xp_earned,
        habit_streak=result.habit_streak.after.streak_days,
        progression=ProgressionResponse.from_result(result.progression),
        streak=StreakResponse.from_update(result.streak),
    )


@router.delete("/habits/{habit_id}/complete", response_model=HabitReversalResponse)
async def uncomplete_habit_endpoint(
    habit_id: int,
    completed_date: date | None = Query(None, alias="date"),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
) -> HabitReversalResponse:
    result = await uncomplete_habit(db, redis, user_id, habit_id, completed_date)
    return HabitReversalResponse(
        habit_id=habit_id,
        xp_removed=result.xp_removed,
        habit_streak=result.habit.current_streak,
        progression=ProgressionResponse.from_result(result.progression),
        streak_restored=result.restored_streak is not None,
    )
