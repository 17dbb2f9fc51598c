"""Joining, leaving and closing group challenges."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hq.activity.service import record_activity
from hq.challenges.leaderboard import recompute_challenge_ranks
from hq.database import atomic
from hq.db.base import as_utc
from hq.db.models import ChallengeParticipant, GroupChallenge
from hq.enums import ActivityType, ChallengeStatus, Importance, ParticipantStatus
from hq.errors import NotFound, PermissionDenied, ValidationFailed
from hq.progression.xp_service import get_character

logger = logging.getLogger(__name__)

JOINABLE_STATUSES = (ChallengeStatus.ACTIVE.value, ChallengeStatus.UPCOMING.value)


def normalize_invite_code(code: str) -> str:
    return code.strip().upper()


async def _get_challenge(db: AsyncSession, challenge_id: int, *, for_update: bool = False) -> GroupChallenge:
    challenge = await db.get(GroupChallenge, challenge_id, with_for_update=for_update)
    if challenge is None:
        raise NotFound("Challenge not found")
    return challenge


async def join_challenge(
    db: AsyncSession,
    user_id: int,
    challenge_id: int,
    invite_code: str | None = None,
    now: datetime | None = None,
) -> ChallengeParticipant:
    """Add the user to a challenge as an active participant."""
    if now is None:
        now = datetime.now(timezone.utc)

    async with atomic(db):
        challenge = await _get_challenge(db, challenge_id, for_update=True)
        if challenge.status not in JOINABLE_STATUSES:
            raise ValidationFailed(f"Cannot join a {challenge.status} challenge")
        if as_utc(challenge.end_date) <= now:
            raise ValidationFailed("Challenge has already ended")

        if not challenge.is_public:
            if not invite_code or not challenge.invite_code or (
                normalize_invite_code(invite_code) != normalize_invite_code(challenge.invite_code)
            ):
                raise PermissionDenied("Invalid or missing invite code for private challenge")

        existing = await db.execute(
            select(ChallengeParticipant.id).where(
                ChallengeParticipant.challenge_id == challenge.id,
                ChallengeParticipant.user_id == user_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationFailed("You have already joined this challenge")

        if challenge.max_participants and challenge.current_participants >= challenge.max_participants:
            raise ValidationFailed("Challenge is full. Maximum participants reached.")

        participant = ChallengeParticipant(
            challenge_id=challenge.id,
            user_id=user_id,
            status=ParticipantStatus.ACTIVE.value,
            joined_at=now,
        )
        db.add(participant)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise ValidationFailed("You have already joined this challenge") from exc

        challenge.current_participants += 1
        character = await get_character(db, user_id, for_update=True)
        character.total_challenges_joined += 1

        await record_activity(
            db, user_id, ActivityType.CHALLENGE_JOINED,
            f"Joined challenge: {challenge.title}",
            related_challenge_id=challenge.id,
            now=now,
        )
        await recompute_challenge_ranks(db, challenge.id)

    logger.info("User %s joined challenge %s", user_id, challenge_id)
    return participant


async def leave_challenge(
    db: AsyncSession,
    user_id: int,
    challenge_id: int,
    now: datetime | None = None,
) -> ChallengeParticipant:
    """Drop the user out of a challenge and free their slot."""
    if now is None:
        now = datetime.now(timezone.utc)

    async with atomic(db):
        challenge = await _get_challenge(db, challenge_id, for_update=True)
        result = await db.execute(
            select(ChallengeParticipant).where(
                ChallengeParticipant.challenge_id == challenge.id,
                ChallengeParticipant.user_id == user_id,
            )
        )
        participant = result.scalar_one_or_none()
        if participant is None:
            raise NotFound("You are not a participant in this challenge")
        if challenge.created_by == user_id:
            raise ValidationFailed("Challenge creator cannot leave. Delete the challenge instead.")
        if participant.status == ParticipantStatus.COMPLETED.value:
            raise ValidationFailed("Cannot leave a completed challenge")
        if participant.status != ParticipantStatus.ACTIVE.value:
            raise ValidationFailed(f"Participant is already {participant.status}")

        participant.status = ParticipantStatus.DROPPED_OUT.value
        participant.dropped_at = now
        if challenge.current_participants > 0:
            challenge.current_participants -= 1

        await record_activity(
            db, user_id, ActivityType.CHALLENGE_LEFT,
            f"Left challenge: {challenge.title}",
            related_challenge_id=challenge.id,
            is_public=False,
            importance=Importance.LOW,
            now=now,
        )
        await recompute_challenge_ranks(db, challenge.id)
        await finalize_challenge_if_needed(db, challenge, now=now, close_when_empty=True)

    logger.info("User %s left challenge %s", user_id, challenge_id)
    return participant


async def finalize_challenge_if_needed(
    db: AsyncSession,
    challenge: GroupChallenge,
    now: datetime | None = None,
    *,
    close_when_empty: bool = False,
) -> bool:
    """Mark the challenge completed once its end date has passed.

    With ``close_when_empty`` it also closes a challenge that has nobody
    left who can still make progress. ``completed_at`` is the end date for
    an expired challenge and ``now`` for one closed early. Returns True
    when the status changed. Flushes, never commits.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if challenge.status in (ChallengeStatus.COMPLETED.value, ChallengeStatus.CANCELLED.value):
        return False

    end_date = as_utc(challenge.end_date)
    past_end = end_date <= now
    ended = past_end
    if not ended and close_when_empty:
        remaining = await db.execute(
            select(func.count()).select_from(ChallengeParticipant).where(
                ChallengeParticipant.challenge_id == challenge.id,
                ChallengeParticipant.status == ParticipantStatus.ACTIVE.value,
            )
        )
        ended = remaining.scalar_one() == 0
    if not ended:
        return False

    challenge.status = ChallengeStatus.COMPLETED.value
    challenge.completed_at = end_date if past_end else now
    await recompute_challenge_ranks(db, challenge.id)
    logger.info("Challenge %s finalized", challenge.id)
    return True
