"""Challenge participant progress: crediting, the daily ledger and rebuilds.

Each approved completion is credited exactly once, at the moment it is
approved. The goal type decides the progress unit: one per task for
``task_count`` goals, the earned XP for ``total_xp`` goals. Reaching the
goal completes the participant, and that transition never reverses.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from hq.activity.service import record_activity
from hq.challenges.leaderboard import recompute_challenge_ranks
from hq.config import get_settings
from hq.database import atomic
from hq.db.base import as_utc
from hq.db.models import (
    ChallengeParticipant,
    ChallengeProgress,
    ChallengeTask,
    ChallengeTaskCompletion,
    GroupChallenge,
)
from hq.enums import ActivityType, CompletionStatus, GoalType, Importance, ParticipantStatus
from hq.errors import DataIntegrityError, NotFound
from hq.notifications.service import emit_notification
from hq.progression.calculator import ProgressionResult
from hq.progression.streak import StreakState, advance_streak
from hq.progression.xp_service import apply_progression, get_character

logger = logging.getLogger(__name__)


def progress_delta(goal_type: str, xp_earned: int) -> int:
    """Progress units one credited completion is worth."""
    kind = GoalType(goal_type)
    if kind is GoalType.TASK_COUNT:
        return 1
    if kind is GoalType.TOTAL_XP:
        return xp_earned
    raise ValueError(f"Unhandled goal type: {goal_type}")


@dataclass
class CreditResult:
    participant: ChallengeParticipant
    daily: ChallengeProgress
    progress_delta: int
    goal_reached: bool
    progression: ProgressionResult
    bonus_progression: ProgressionResult | None = None


def participant_streak_state(participant: ChallengeParticipant) -> StreakState:
    return StreakState(
        streak_days=participant.streak_days,
        longest_streak=participant.longest_streak,
        last_active_date=participant.last_activity_date,
        last_streak_date=participant.last_activity_date,
    )


async def _load_for_credit(
    db: AsyncSession, completion: ChallengeTaskCompletion
) -> tuple[ChallengeParticipant, GroupChallenge, ChallengeTask]:
    result = await db.execute(
        select(ChallengeParticipant)
        .where(ChallengeParticipant.id == completion.participant_id)
        .with_for_update()
    )
    participant = result.scalar_one_or_none()
    if participant is None:
        raise DataIntegrityError(f"Participant {completion.participant_id} does not exist")

    challenge = await db.get(GroupChallenge, participant.challenge_id)
    if challenge is None:
        raise DataIntegrityError(f"Challenge {participant.challenge_id} does not exist")

    task = await db.get(ChallengeTask, completion.challenge_task_id)
    if task is None:
        raise DataIntegrityError(f"Challenge task {completion.challenge_task_id} does not exist")
    return participant, challenge, task


async def _upsert_daily_row(
    db: AsyncSession,
    participant: ChallengeParticipant,
    day: date,
) -> ChallengeProgress:
    result = await db.execute(
        select(ChallengeProgress).where(
            ChallengeProgress.participant_id == participant.id,
            ChallengeProgress.progress_date == day,
        )
    )
    row = result.scalar_one_or_none()
    if row is not None:
        return row

    previous = await db.execute(
        select(ChallengeProgress.cumulative_progress)
        .where(
            ChallengeProgress.participant_id == participant.id,
            ChallengeProgress.progress_date < day,
        )
        .order_by(ChallengeProgress.progress_date.desc())
        .limit(1)
    )
    row = ChallengeProgress(
        participant_id=participant.id,
        challenge_id=participant.challenge_id,
        user_id=participant.user_id,
        progress_date=day,
        progress_value=0,
        tasks_completed=0,
        xp_earned=0,
        points_earned=0,
        cumulative_progress=previous.scalar_one_or_none() or 0,
        streak_count=participant.streak_days,
    )
    db.add(row)
    return row


async def credit_completion(
    db: AsyncSession,
    redis: object | None,
    completion: ChallengeTaskCompletion,
    now: datetime | None = None,
) -> CreditResult:
    """Apply an approved completion to the participant, ledger and character.

    Points and XP come from the task snapshot taken at submission. Must be
    called inside the caller's transaction, once per completion.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    day = now.date()

    participant, challenge, task = await _load_for_credit(db, completion)
    snapshot = completion.task_snapshot or {}
    points = int(snapshot.get("point_value", task.point_value))
    xp = int(snapshot.get("xp_reward", task.xp_reward))
    completion.points_earned = points
    completion.xp_earned = xp

    delta = progress_delta(challenge.goal_type, xp)
    participant.current_progress += delta
    participant.total_points += points
    participant.total_xp_earned += xp
    participant.completed_tasks_count += 1

    streak = advance_streak(
        participant_streak_state(participant), day, get_settings().streak_milestones
    )
    participant.streak_days = streak.after.streak_days
    participant.longest_streak = streak.after.longest_streak
    participant.last_activity_date = streak.after.last_active_date

    daily = await _upsert_daily_row(db, participant, day)
    daily.progress_value += delta
    daily.tasks_completed += 1
    daily.xp_earned += xp
    daily.points_earned += points
    daily.cumulative_progress += delta
    daily.streak_count = participant.streak_days

    task.completion_count += 1

    character = await get_character(db, participant.user_id, for_update=True)
    progression = await apply_progression(
        db, redis, character, xp,
        ActivityType.CHALLENGE_TASK_COMPLETED,
        f"Completed challenge task: {task.title}",
        related_challenge_id=challenge.id,
        metadata={
            "completion_id": completion.id,
            "task_id": task.id,
            "points": points,
            "completion_number": completion.completion_number,
        },
        now=now,
    )

    goal_reached = False
    bonus: ProgressionResult | None = None
    if (
        participant.status == ParticipantStatus.ACTIVE.value
        and participant.current_progress >= challenge.goal_target
    ):
        goal_reached = True
        participant.status = ParticipantStatus.COMPLETED.value
        participant.completed_at = now
        character.total_challenges_completed += 1
        logger.info("User %s completed challenge %s", participant.user_id, challenge.id)

        description = f"Completed challenge: {challenge.title}"
        if challenge.xp_reward > 0:
            bonus = await apply_progression(
                db, redis, character, challenge.xp_reward,
                ActivityType.CHALLENGE_COMPLETED,
                description,
                related_challenge_id=challenge.id,
                metadata={"goal_target": challenge.goal_target},
                now=now,
            )
        else:
            await record_activity(
                db, participant.user_id, ActivityType.CHALLENGE_COMPLETED, description,
                related_challenge_id=challenge.id,
                importance=Importance.MILESTONE,
                now=now,
            )
        await emit_notification(
            db, redis, participant.user_id,
            "challenge", "challenge_completed",
            "Challenge Complete!",
            f"You reached the goal in {challenge.title}",
            action_url=f"/challenges/{challenge.id}",
            metadata={"challenge_id": challenge.id, "bonus_xp": challenge.xp_reward},
            now=now,
        )

    await db.flush()
    await recompute_challenge_ranks(db, challenge.id)
    daily.rank_on_date = participant.rank
    await db.flush()

    return CreditResult(
        participant=participant,
        daily=daily,
        progress_delta=delta,
        goal_reached=goal_reached,
        progression=progression,
        bonus_progression=bonus,
    )


# ---------------------------------------------------------------------------
# Rebuild from the completion history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreditedEvent:
    credited_on: date
    points: int
    xp: int


@dataclass
class DailyTotals:
    day: date
    progress_value: int = 0
    tasks_completed: int = 0
    xp_earned: int = 0
    points_earned: int = 0
    cumulative_progress: int = 0
    streak_count: int = 0


@dataclass
class ParticipantTotals:
    current_progress: int = 0
    total_points: int = 0
    total_xp_earned: int = 0
    completed_tasks_count: int = 0
    streak: StreakState = field(default_factory=StreakState)
    daily: list[DailyTotals] = field(default_factory=list)


def fold_completions(events: Iterable[CreditedEvent], goal_type: str) -> ParticipantTotals:
    """Fold credited events into participant totals and per-date rows. Pure."""
    totals = ParticipantTotals()
    by_day: dict[date, DailyTotals] = {}

    for event in sorted(events, key=lambda e: e.credited_on):
        delta = progress_delta(goal_type, event.xp)
        totals.current_progress += delta
        totals.total_points += event.points
        totals.total_xp_earned += event.xp
        totals.completed_tasks_count += 1
        totals.streak = advance_streak(totals.streak, event.credited_on).after

        row = by_day.get(event.credited_on)
        if row is None:
            row = DailyTotals(day=event.credited_on)
            by_day[event.credited_on] = row
            totals.daily.append(row)
        row.progress_value += delta
        row.tasks_completed += 1
        row.xp_earned += event.xp
        row.points_earned += event.points
        row.cumulative_progress = totals.current_progress
        row.streak_count = totals.streak.streak_days

    return totals


def credited_on(completion: ChallengeTaskCompletion) -> date:
    """Date a completion was credited: its verification time, else submission."""
    moment = as_utc(completion.verified_at) or as_utc(completion.completed_at)
    return moment.date()


async def rebuild_participant_progress(
    db: AsyncSession,
    participant_id: int,
    now: datetime | None = None,
) -> ParticipantTotals:
    """Recompute a participant's totals and daily rows from approved completions.

    Repairs drift between the ledger and the completion history. A
    participant that already completed the challenge stays completed.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    async with atomic(db):
        participant = await db.get(ChallengeParticipant, participant_id, with_for_update=True)
        if participant is None:
            raise DataIntegrityError(f"Participant {participant_id} does not exist")
        challenge = await db.get(GroupChallenge, participant.challenge_id)
        if challenge is None:
            raise DataIntegrityError(f"Challenge {participant.challenge_id} does not exist")

        result = await db.execute(
            select(ChallengeTaskCompletion).where(
                ChallengeTaskCompletion.participant_id == participant.id,
                ChallengeTaskCompletion.status == CompletionStatus.APPROVED.value,
            )
        )
        events = [
            CreditedEvent(credited_on=credited_on(c), points=c.points_earned, xp=c.xp_earned)
            for c in result.scalars()
        ]
        totals = fold_completions(events, challenge.goal_type)

        participant.current_progress = totals.current_progress
        participant.total_points = totals.total_points
        participant.total_xp_earned = totals.total_xp_earned
        participant.completed_tasks_count = totals.completed_tasks_count
        participant.streak_days = totals.streak.streak_days
        participant.longest_streak = totals.streak.longest_streak
        participant.last_activity_date = totals.streak.last_active_date
        if (
            participant.status == ParticipantStatus.ACTIVE.value
            and participant.current_progress >= challenge.goal_target
        ):
            participant.status = ParticipantStatus.COMPLETED.value
            participant.completed_at = now

        await db.execute(
            delete(ChallengeProgress).where(ChallengeProgress.participant_id == participant.id)
        )
        for row in totals.daily:
            db.add(
                ChallengeProgress(
                    participant_id=participant.id,
                    challenge_id=participant.challenge_id,
                    user_id=participant.user_id,
                    progress_date=row.day,
                    progress_value=row.progress_value,
                    tasks_completed=row.tasks_completed,
                    xp_earned=row.xp_earned,
                    points_earned=row.points_earned,
                    cumulative_progress=row.cumulative_progress,
                    streak_count=row.streak_count,
                )
            )
        await db.flush()
        await recompute_challenge_ranks(db, challenge.id)

    logger.info(
        "Rebuilt progress for participant %s: %d completions, progress %d",
        participant_id, totals.completed_tasks_count, totals.current_progress,
    )
    return totals


async def get_progress_history(
    db: AsyncSession, challenge_id: int, user_id: int
) -> tuple[ChallengeParticipant, list[ChallengeProgress]]:
    """A participant's daily ledger for one challenge, oldest first."""
    result = await db.execute(
        select(ChallengeParticipant).where(
            ChallengeParticipant.challenge_id == challenge_id,
            ChallengeParticipant.user_id == user_id,
        )
    )
    participant = result.scalar_one_or_none()
    if participant is None:
        raise NotFound("You are not a participant in this challenge")

    rows = await db.execute(
        select(ChallengeProgress)
        .where(ChallengeProgress.participant_id == participant.id)
        .order_by(ChallengeProgress.progress_date.asc())
    )
    return participant, list(rows.scalars().all())
