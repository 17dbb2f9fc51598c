"""Deterministic leaderboard ranking, zero shared ranks.

Challenge participants are ordered by total_points DESC, then earliest
joined_at, then participant id. Users globally are ordered by total_xp
DESC, then earliest account creation, then user id. Ties in the primary
metric never share a rank: the tie-breaks always produce a strict
1..N ordering.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hq.database import atomic
from hq.db.base import as_utc
from hq.db.models import Character, ChallengeParticipant, GroupChallenge, Rank, User
from hq.enums import ParticipantStatus
from hq.errors import NotFound

logger = logging.getLogger(__name__)

_far_future = datetime(9999, 12, 31, tzinfo=timezone.utc)

RANKED_STATUSES = (ParticipantStatus.ACTIVE.value, ParticipantStatus.COMPLETED.value)


class ParticipantLike(Protocol):
    id: int
    total_points: int
    joined_at: datetime | None


class UserStanding(Protocol):
    user_id: int
    total_xp: int
    created_at: datetime | None


P = TypeVar("P", bound=ParticipantLike)
U = TypeVar("U", bound=UserStanding)


def rank_participants(participants: Sequence[P]) -> list[tuple[int, P]]:
    """Return ``(rank, participant)`` pairs, rank 1 first. Pure."""

    def sort_key(p: ParticipantLike) -> tuple[int, datetime, int]:
        return (-p.total_points, as_utc(p.joined_at) or _far_future, p.id)

    ordered = sorted(participants, key=sort_key)
    return [(idx + 1, p) for idx, p in enumerate(ordered)]


def rank_users(standings: Sequence[U]) -> list[tuple[int, U]]:
    """Return ``(rank, standing)`` pairs ordered by total XP. Pure."""

    def sort_key(s: UserStanding) -> tuple[int, datetime, int]:
        return (-s.total_xp, as_utc(s.created_at) or _far_future, s.user_id)

    ordered = sorted(standings, key=sort_key)
    return [(idx + 1, s) for idx, s in enumerate(ordered)]


async def recompute_challenge_ranks(
    db: AsyncSession, challenge_id: int
) -> list[tuple[int, ChallengeParticipant]]:
    """Write dense ranks for active and completed participants.

    Dropped-out and disqualified participants are unranked. Only the
    ``rank`` column is touched. Flushes, never commits.
    """
    result = await db.execute(
        select(ChallengeParticipant).where(ChallengeParticipant.challenge_id == challenge_id)
    )
    participants = list(result.scalars().all())

    ranked = rank_participants([p for p in participants if p.status in RANKED_STATUSES])
    for rank, participant in ranked:
        participant.rank = rank
    for participant in participants:
        if participant.status not in RANKED_STATUSES:
            participant.rank = None

    await db.flush()
    return ranked


async def get_challenge_leaderboard(db: AsyncSession, challenge_id: int) -> list[dict[str, Any]]:
    """Recompute and return the challenge standings with usernames."""
    from hq.challenges.membership import finalize_challenge_if_needed

    async with atomic(db):
        challenge = await db.get(GroupChallenge, challenge_id)
        if challenge is None:
            raise NotFound("Challenge not found")
        await finalize_challenge_if_needed(db, challenge)
        ranked = await recompute_challenge_ranks(db, challenge_id)

        user_ids = [p.user_id for _, p in ranked]
        names: dict[int, str] = {}
        if user_ids:
            rows = await db.execute(select(User.id, User.username).where(User.id.in_(user_ids)))
            names = {row.id: row.username for row in rows}

    return [
        {
            "rank": rank,
            "participant_id": p.id,
            "user_id": p.user_id,
            "username": names.get(p.user_id, f"user-{p.user_id}"),
            "status": p.status,
            "total_points": p.total_points,
            "total_xp_earned": p.total_xp_earned,
            "current_progress": p.current_progress,
            "completed_tasks_count": p.completed_tasks_count,
            "streak_days": p.streak_days,
            "joined_at": p.joined_at,
        }
        for rank, p in ranked
    ]


class _GlobalRow:
    __slots__ = ("character", "user_id", "username", "total_xp", "created_at", "rank_name")

    def __init__(self, character: Character, username: str, created_at: datetime, rank_name: str | None) -> None:
        self.character = character
        self.user_id = character.user_id
        self.username = username
        self.total_xp = character.total_xp
        self.created_at = created_at
        self.rank_name = rank_name


async def get_global_leaderboard(
    db: AsyncSession,
    page: int = 1,
    per_page: int = 50,
) -> dict[str, Any]:
    """Rank every character by total XP and store ``global_ranking``."""

    async with atomic(db):
        result = await db.execute(
            select(Character, User.username, User.created_at, Rank.name)
            .join(User, User.id == Character.user_id)
            .outerjoin(Rank, Rank.id == Character.rank_id)
        )
        rows = [_GlobalRow(*row) for row in result.unique()]
        ranked = rank_users(rows)
        for rank, row in ranked:
            row.character.global_ranking = rank
        await db.flush()

    start = (page - 1) * per_page
    entries = [
        {
            "rank": rank,
            "user_id": row.user_id,
            "username": row.username,
            "level": row.character.level,
            "total_xp": row.total_xp,
            "rank_name": row.rank_name,
        }
        for rank, row in ranked[start:start + per_page]
    ]
    logger.debug("Global leaderboard recomputed for %d users", len(ranked))
    return {"entries": entries, "total": len(ranked), "page": page, "per_page": per_page}
