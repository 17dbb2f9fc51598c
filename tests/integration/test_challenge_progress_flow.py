"""Integration tests for membership, the daily progress ledger and leaderboards."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import delete, select

from hq.challenges.ai_verifier import GeminiVerifier
from hq.challenges.leaderboard import get_challenge_leaderboard, get_global_leaderboard
from hq.challenges.membership import join_challenge, leave_challenge
from hq.challenges.progress import get_progress_history, rebuild_participant_progress
from hq.challenges.verification import submit_completion
from hq.db.base import as_utc
from hq.db.models import ActivityLog, ChallengeParticipant, ChallengeProgress, GroupChallenge
from hq.errors import NotFound, PermissionDenied, ValidationFailed
from hq.progression.xp_service import get_character

NO_VERIFIER = GeminiVerifier(api_key="", model="gemini-test", api_url="https://gemini.test")


class TestJoin:
    @pytest.mark.asyncio
    async def test_join_public_challenge(self, db_session, make_user, make_challenge, now):
        creator = await make_user()
        member = await make_user()
        challenge = await make_challenge(creator.id)

        participant = await join_challenge(db_session, member.id, challenge.id, now=now)

        assert participant.status == "active"
        assert participant.rank == 1
        assert challenge.current_participants == 1
        character = await get_character(db_session, member.id)
        assert character.total_challenges_joined == 1
        joined = await db_session.execute(
            select(ActivityLog).where(ActivityLog.activity_type == "challenge_joined")
        )
        assert joined.scalar_one().related_challenge_id == challenge.id

    @pytest.mark.asyncio
    async def test_join_twice(self, db_session, make_user, make_challenge, now):
        creator = await make_user()
        member = await make_user()
        challenge = await make_challenge(creator.id)
        member_id, challenge_id = member.id, challenge.id
        await join_challenge(db_session, member_id, challenge_id, now=now)

        with pytest.raises(ValidationFailed):
            await join_challenge(db_session, member_id, challenge_id, now=now)

        refreshed = await db_session.get(GroupChallenge, challenge_id)
        assert refreshed.current_participants == 1

    @pytest.mark.asyncio
    async def test_private_challenge_needs_invite_code(self, db_session, make_user, make_challenge, now):
        creator = await make_user()
        member = await make_user()
        challenge = await make_challenge(creator.id, is_public=False, invite_code="RUN2026")
        member_id, challenge_id = member.id, challenge.id

        with pytest.raises(PermissionDenied):
            await join_challenge(db_session, member_id, challenge_id, now=now)
        with pytest.raises(PermissionDenied):
            await join_challenge(db_session, member_id, challenge_id, invite_code="WRONG", now=now)

        participant = await join_challenge(db_session, member_id, challenge_id, invite_code=" run2026 ", now=now)
        assert participant.status == "active"

    @pytest.mark.asyncio
    async def test_full_challenge(self, db_session, make_user, make_challenge, now):
        creator = await make_user()
        first = await make_user()
        second = await make_user()
        challenge = await make_challenge(creator.id, max_participants=1)
        second_id, challenge_id = second.id, challenge.id
        await join_challenge(db_session, first.id, challenge_id, now=now)

        with pytest.raises(ValidationFailed):
            await join_challenge(db_session, second_id, challenge_id, now=now)

    @pytest.mark.asyncio
    async def test_ended_challenge(self, db_session, make_user, make_challenge, now):
        creator = await make_user()
        member = await make_user()
        challenge = await make_challenge(creator.id, end_date=now - timedelta(days=1))
        with pytest.raises(ValidationFailed):
            await join_challenge(db_session, member.id, challenge.id, now=now)


class TestLeave:
    @pytest.mark.asyncio
    async def test_leave_unranks_and_reranks_others(self, db_session, make_user, make_challenge, add_participant, now):
        creator = await make_user()
        leader = await make_user()
        runner_up = await make_user()
        challenge = await make_challenge(creator.id, current_participants=2)
        first = await add_participant(challenge.id, leader.id, total_points=50)
        second = await add_participant(challenge.id, runner_up.id, total_points=20)

        left = await leave_challenge(db_session, leader.id, challenge.id, now=now)

        assert left.status == "dropped_out"
        assert left.dropped_at is not None
        assert left.rank is None
        assert first.rank is None
        assert second.rank == 1
        assert challenge.current_participants == 1
        assert challenge.status == "active"

    @pytest.mark.asyncio
    async def test_last_active_participant_leaving_closes_challenge(
        self, db_session, make_user, make_challenge, add_participant, now
    ):
        creator = await make_user()
        member = await make_user()
        challenge = await make_challenge(creator.id, current_participants=1)
        await add_participant(challenge.id, member.id)

        await leave_challenge(db_session, member.id, challenge.id, now=now)

        assert challenge.status == "completed"
        assert as_utc(challenge.completed_at) == now

    @pytest.mark.asyncio
    async def test_creator_cannot_leave(self, db_session, make_user, make_challenge, add_participant, now):
        creator = await make_user()
        challenge = await make_challenge(creator.id)
        await add_participant(challenge.id, creator.id)
        with pytest.raises(ValidationFailed):
            await leave_challenge(db_session, creator.id, challenge.id, now=now)

    @pytest.mark.asyncio
    async def test_completed_participant_cannot_leave(
        self, db_session, make_user, make_challenge, add_participant, now
    ):
        creator = await make_user()
        member = await make_user()
        challenge = await make_challenge(creator.id)
        await add_participant(challenge.id, member.id, status="completed")
        with pytest.raises(ValidationFailed):
            await leave_challenge(db_session, member.id, challenge.id, now=now)

    @pytest.mark.asyncio
    async def test_not_a_participant(self, db_session, make_user, make_challenge, now):
        creator = await make_user()
        member = await make_user()
        challenge = await make_challenge(creator.id)
        with pytest.raises(NotFound):
            await leave_challenge(db_session, member.id, challenge.id, now=now)


class TestChallengeLeaderboard:
    @pytest.mark.asyncio
    async def test_ties_broken_by_join_time(self, db_session, make_user, make_challenge, add_participant, now):
        """Equal points: the earlier joiner ranks higher and no rank is shared."""
        creator = await make_user()
        early = await make_user("early")
        late = await make_user("late")
        behind = await make_user("behind")
        gone = await make_user("gone")
        challenge = await make_challenge(creator.id)
        await add_participant(challenge.id, late.id, joined_at=now - timedelta(days=1), total_points=50)
        await add_participant(challenge.id, early.id, joined_at=now - timedelta(days=3), total_points=50)
        await add_participant(challenge.id, behind.id, joined_at=now - timedelta(days=4), total_points=30)
        await add_participant(challenge.id, gone.id, total_points=90, status="dropped_out")

        entries = await get_challenge_leaderboard(db_session, challenge.id)

        assert [(e["rank"], e["username"]) for e in entries] == [(1, "early"), (2, "late"), (3, "behind")]

    @pytest.mark.asyncio
    async def test_unknown_challenge(self, db_session):
        with pytest.raises(NotFound):
            await get_challenge_leaderboard(db_session, 9999)

    @pytest.mark.asyncio
    async def test_past_end_date_finalizes(self, db_session, make_user, make_challenge, add_participant, now):
        creator = await make_user()
        member = await make_user()
        challenge = await make_challenge(creator.id, end_date=now - timedelta(days=1))
        await add_participant(challenge.id, member.id)

        entries = await get_challenge_leaderboard(db_session, challenge.id)

        assert challenge.status == "completed"
        assert as_utc(challenge.completed_at) == now - timedelta(days=1)
        assert entries[0]["user_id"] == member.id


class TestGlobalLeaderboard:
    @pytest.mark.asyncio
    async def test_ranks_by_total_xp_then_account_age(self, db_session, make_user):
        veteran = await make_user("veteran")
        newcomer = await make_user("newcomer")
        leader = await make_user("leader")
        for user, xp in ((veteran, 300), (newcomer, 300), (leader, 900)):
            character = await get_character(db_session, user.id)
            character.total_xp = xp
        await db_session.commit()

        board = await get_global_leaderboard(db_session, page=1, per_page=2)

        assert board["total"] == 3
        assert [(e["rank"], e["username"]) for e in board["entries"]] == [(1, "leader"), (2, "veteran")]
        assert board["entries"][0]["rank_name"] == "E-Rank"
        newcomer_character = await get_character(db_session, newcomer.id)
        assert newcomer_character.global_ranking == 3


class TestProgressLedger:
    @pytest.mark.asyncio
    async def test_daily_rows_and_rebuild(
        self, db_session, make_user, make_challenge, make_challenge_task, add_participant, now
    ):
        creator = await make_user()
        member = await make_user()
        challenge = await make_challenge(creator.id, goal_target=10)
        task = await make_challenge_task(challenge.id, is_repeatable=True)
        participant = await add_participant(challenge.id, member.id)
        ids = (member.id, challenge.id, task.id)

        await submit_completion(db_session, None, NO_VERIFIER, *ids, now=now)
        await submit_completion(db_session, None, NO_VERIFIER, *ids, now=now + timedelta(hours=1))
        await submit_completion(db_session, None, NO_VERIFIER, *ids, now=now + timedelta(days=1))

        _, rows = await get_progress_history(db_session, challenge.id, member.id)
        assert [(r.progress_date, r.progress_value, r.cumulative_progress) for r in rows] == [
            (now.date(), 2, 2),
            ((now + timedelta(days=1)).date(), 1, 3),
        ]
        assert participant.streak_days == 2

        participant.current_progress = 99
        participant.total_points = 0
        await db_session.execute(
            delete(ChallengeProgress).where(ChallengeProgress.participant_id == participant.id)
        )
        await db_session.commit()

        totals = await rebuild_participant_progress(db_session, participant.id, now=now + timedelta(days=1))

        assert totals.current_progress == 3
        refreshed = await db_session.get(ChallengeParticipant, participant.id)
        assert refreshed.current_progress == 3
        assert refreshed.total_points == 30
        assert refreshed.streak_days == 2
        _, rows = await get_progress_history(db_session, challenge.id, member.id)
        assert [r.cumulative_progress for r in rows] == [2, 3]

    @pytest.mark.asyncio
    async def test_history_requires_participation(self, db_session, make_user, make_challenge):
        creator = await make_user()
        challenge = await make_challenge(creator.id)
        with pytest.raises(NotFound):
            await get_progress_history(db_session, challenge.id, creator.id)
