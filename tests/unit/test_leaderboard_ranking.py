"""Unit tests for deterministic leaderboard ordering."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from hq.challenges.leaderboard import rank_participants, rank_users

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _participant(pid: int, points: int, joined_offset_hours: int):
    return SimpleNamespace(id=pid, total_points=points, joined_at=T0 + timedelta(hours=joined_offset_hours))


class TestRankParticipants:
    def test_equal_points_earlier_joiner_wins(self):
        """50 (late), 30, then 50 (early): early joiner first, the 30-pointer last."""
        late = _participant(1, 50, joined_offset_hours=5)
        low = _participant(2, 30, joined_offset_hours=6)
        early = _participant(3, 50, joined_offset_hours=0)

        ranked = rank_participants([late, low, early])
        assert [(rank, p.id) for rank, p in ranked] == [(1, 3), (2, 1), (3, 2)]

    def test_id_breaks_full_ties(self):
        a = _participant(8, 10, 0)
        b = _participant(4, 10, 0)
        ranked = rank_participants([a, b])
        assert [p.id for _, p in ranked] == [4, 8]

    def test_ranks_are_dense_one_to_n(self):
        rng = random.Random(42)
        participants = [_participant(i, rng.randint(0, 5) * 10, rng.randint(0, 3)) for i in range(1, 40)]
        ranks = [rank for rank, _ in rank_participants(participants)]
        assert ranks == list(range(1, len(participants) + 1))

    def test_naive_and_aware_timestamps_mix(self):
        naive = SimpleNamespace(id=1, total_points=10, joined_at=datetime(2026, 3, 1, 8, 0))
        aware = _participant(2, 10, 0)
        ranked = rank_participants([aware, naive])
        assert ranked[0][1].id == 1

    def test_empty(self):
        assert rank_participants([]) == []

    def test_input_not_mutated(self):
        participants = [_participant(1, 5, 0), _participant(2, 50, 0)]
        rank_participants(participants)
        assert [p.id for p in participants] == [1, 2]


class TestRankUsers:
    def test_orders_by_total_xp_then_account_age(self):
        older = SimpleNamespace(user_id=10, total_xp=500, created_at=T0)
        newer = SimpleNamespace(user_id=2, total_xp=500, created_at=T0 + timedelta(days=1))
        top = SimpleNamespace(user_id=7, total_xp=900, created_at=T0 + timedelta(days=3))

        ranked = rank_users([newer, older, top])
        assert [(rank, s.user_id) for rank, s in ranked] == [(1, 7), (2, 10), (3, 2)]

    def test_user_id_breaks_full_ties(self):
        a = SimpleNamespace(user_id=3, total_xp=0, created_at=T0)
        b = SimpleNamespace(user_id=1, total_xp=0, created_at=T0)
        assert [s.user_id for _, s in rank_users([a, b])] == [1, 3]
