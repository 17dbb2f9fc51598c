"""Task completion and exact reversal."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hq.completions.reversal import apply_streak_snapshot, pre_day_snapshot, reverse_character_streak
from hq.completions.xp_rules import calculate_task_xp
from hq.database import atomic
from hq.db.models import Task, TaskCompletion
from hq.enums import ActivityType, TaskStatus
from hq.errors import AlreadyCompletedError, DataIntegrityError, NotFound, ValidationFailed
from hq.progression.calculator import ProgressionResult
from hq.progression.streak import StreakState, StreakUpdate
from hq.progression.streak_service import record_streak_activity, streak_state_of
from hq.progression.xp_service import apply_progression, get_character

logger = logging.getLogger(__name__)


@dataclass
class TaskCompletionResult:
    completion: TaskCompletion
    xp_earned: int
    progression: ProgressionResult
    streak: StreakUpdate


@dataclass
class TaskReversalResult:
    task: Task
    xp_removed: int
    progression: ProgressionResult
    restored_streak: StreakState | None


def task_snapshot(task: Task) -> dict:
    return {
        "title": task.title,
        "description": task.description,
        "difficulty": task.difficulty,
        "priority": task.priority,
        "xp_reward": task.xp_reward,
        "due_date": task.due_date.isoformat() if task.due_date else None,
    }


async def _get_user_task(db: AsyncSession, user_id: int, task_id: int, *, for_update: bool = False) -> Task:
    stmt = select(Task).where(Task.id == task_id, Task.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound("Task not found")
    return task


async def complete_task(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    task_id: int,
    now: datetime | None = None,
) -> TaskCompletionResult:
    """Complete a task: XP and level, then streak, then the audit trail, in one transaction."""
    if now is None:
        now = datetime.now(timezone.utc)
    today = now.date()

    async with atomic(db):
        task = await _get_user_task(db, user_id, task_id, for_update=True)
        if task.status == TaskStatus.COMPLETED.value:
            raise AlreadyCompletedError("Task already completed")

        subtasks = (
            await db.execute(select(Task.status).where(Task.parent_task_id == task.id))
        ).scalars().all()
        all_subtasks_completed = bool(subtasks) and all(s == TaskStatus.COMPLETED.value for s in subtasks)

        xp = calculate_task_xp(
            task.xp_reward,
            task.difficulty,
            task.priority,
            due_date=task.due_date,
            completed_at=now,
            all_subtasks_completed=all_subtasks_completed,
        )

        character = await get_character(db, user_id, for_update=True)
        before = await pre_day_snapshot(db, user_id, today, streak_state_of(character))

        completion = TaskCompletion(
            task_id=task.id,
            user_id=user_id,
            xp_earned=xp,
            completed_at=now,
            completed_date=today,
            task_snapshot=task_snapshot(task),
        )
        apply_streak_snapshot(completion, before)
        db.add(completion)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise AlreadyCompletedError("Task already completed") from exc

        task.status = TaskStatus.COMPLETED.value
        task.completed_at = now

        progression = await apply_progression(
            db, redis, character, xp,
            ActivityType.TASK_COMPLETED,
            f"Completed task: {task.title}",
            related_task_id=task.id,
            metadata={"completion_id": completion.id, "subtask_bonus": all_subtasks_completed},
            now=now,
        )
        streak = await record_streak_activity(db, redis, character, today, now=now)
        character.total_tasks_completed += 1

    return TaskCompletionResult(completion=completion, xp_earned=xp, progression=progression, streak=streak)


async def uncomplete_task(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    task_id: int,
    now: datetime | None = None,
) -> TaskReversalResult:
    """Undo the most recent completion of a task: XP, streak and counters."""
    if now is None:
        now = datetime.now(timezone.utc)

    async with atomic(db):
        task = await _get_user_task(db, user_id, task_id, for_update=True)
        if task.status != TaskStatus.COMPLETED.value:
            raise ValidationFailed("Task is not completed")

        result = await db.execute(
            select(TaskCompletion)
            .where(TaskCompletion.task_id == task.id, TaskCompletion.user_id == user_id)
            .order_by(TaskCompletion.completed_at.desc(), TaskCompletion.id.desc())
            .limit(1)
        )
        completion = result.scalar_one_or_none()
        if completion is None:
            raise DataIntegrityError(f"Task {task.id} is completed but has no completion record")

        character = await get_character(db, user_id, for_update=True)
        restored = await reverse_character_streak(db, character, completion)

        progression = await apply_progression(
            db, redis, character, -completion.xp_earned,
            ActivityType.TASK_UNCOMPLETED,
            f"Uncompleted task: {task.title}",
            related_task_id=task.id,
            metadata={"xp_removed": completion.xp_earned, "streak_restored": restored is not None},
            now=now,
        )
        character.total_tasks_completed = max(0, character.total_tasks_completed - 1)

        xp_removed = completion.xp_earned
        await db.delete(completion)
        task.status = TaskStatus.PENDING.value
        task.completed_at = None

    logger.info("Task %s uncompleted by user %s (-%d XP)", task_id, user_id, xp_removed)
    return TaskReversalResult(
        task=task, xp_removed=xp_removed, progression=progression, restored_streak=restored
    )
