"""Unit tests for the pure progression calculator and level curve."""

from __future__ import annotations

import pytest

from hq.enums import RankChange
from hq.progression.calculator import CharacterSnapshot, apply_xp
from hq.progression.levels import DEFAULT_RANKS, LevelCurve, RankTier, resolve_rank

RANKS = [
    RankTier(id=i + 1, name=r["name"], min_level=r["min_level"], max_level=r["max_level"], order_index=r["order_index"])
    for i, r in enumerate(DEFAULT_RANKS)
]
E_RANK, D_RANK = RANKS[0], RANKS[1]
CURVE = LevelCurve(base=50, increment=50)


def _snapshot(level: int = 1, current_xp: int = 0, total_xp: int | None = None, rank: RankTier = E_RANK):
    if total_xp is None:
        total_xp = CURVE.total_xp_for_level(level) + current_xp
    return CharacterSnapshot(
        level=level,
        current_xp=current_xp,
        total_xp=total_xp,
        xp_to_next_level=CURVE.xp_to_next_level(level),
        rank_id=rank.id,
    )


class TestLevelCurve:
    def test_thresholds_grow_linearly(self):
        assert CURVE.xp_to_next_level(1) == 100
        assert CURVE.xp_to_next_level(2) == 150
        assert CURVE.xp_to_next_level(10) == 550

    def test_total_xp_for_level(self):
        assert CURVE.total_xp_for_level(1) == 0
        assert CURVE.total_xp_for_level(3) == 250

    def test_rejects_non_positive_curve(self):
        with pytest.raises(ValueError):
            LevelCurve(base=-50, increment=0)


class TestResolveRank:
    def test_bounds(self):
        assert resolve_rank(1, RANKS).name == "E-Rank"
        assert resolve_rank(10, RANKS).name == "E-Rank"
        assert resolve_rank(11, RANKS).name == "D-Rank"
        assert resolve_rank(99, RANKS).name == "S-Rank"

    def test_top_rank_is_unbounded(self):
        assert resolve_rank(100, RANKS).name == "National Level"
        assert resolve_rank(5000, RANKS).name == "National Level"

    def test_overlap_prefers_highest_order_index(self):
        overlapping = RANKS + [RankTier(id=99, name="Special", min_level=5, max_level=15, order_index=50)]
        assert resolve_rank(8, overlapping).name == "Special"

    def test_no_match(self):
        assert resolve_rank(0, RANKS) is None


class TestApplyXp:
    def test_scenario_level_up_with_overflow(self):
        """Level 1 at 90/100 plus 25 XP lands on level 2 with 15 XP."""
        result = apply_xp(_snapshot(current_xp=90, total_xp=90), 25, RANKS, CURVE)
        assert result.new_level == 2
        assert result.new_current_xp == 15
        assert result.new_xp_to_next_level == CURVE.xp_to_next_level(2)
        assert result.new_total_xp == 115
        assert result.leveled_up
        assert result.rank_change is None

    def test_multi_level_overflow(self):
        # 100 (L1) + 150 (L2) + 200 (L3) = 450, 20 left over on level 4
        result = apply_xp(_snapshot(), 470, RANKS, CURVE)
        assert result.new_level == 4
        assert result.new_current_xp == 20
        assert result.new_xp_to_next_level == 250

    def test_zero_delta_is_noop(self):
        snap = _snapshot(level=3, current_xp=40)
        result = apply_xp(snap, 0, RANKS, CURVE)
        assert result.new_level == 3
        assert result.new_current_xp == 40
        assert result.xp_applied == 0

    def test_rank_up_emitted(self):
        snap = _snapshot(level=10, current_xp=540)
        result = apply_xp(snap, 20, RANKS, CURVE)
        assert result.new_level == 11
        assert result.rank_change is RankChange.RANK_UP
        assert result.from_rank.name == "E-Rank"
        assert result.to_rank.name == "D-Rank"

    def test_monotonic_total_for_awards(self):
        snap = _snapshot()
        for delta in [0, 1, 7, 99, 100, 250, 1000, 3]:
            result = apply_xp(snap, delta, RANKS, CURVE)
            assert result.new_total_xp >= snap.total_xp
            snap = CharacterSnapshot(
                level=result.new_level,
                current_xp=result.new_current_xp,
                total_xp=result.new_total_xp,
                xp_to_next_level=result.new_xp_to_next_level,
                rank_id=result.to_rank.id,
            )

    @pytest.mark.parametrize("delta", [0, 1, 99, 100, 101, 449, 450, 5000, 123456])
    def test_current_xp_below_threshold(self, delta):
        result = apply_xp(_snapshot(current_xp=10, total_xp=10), delta, RANKS, CURVE)
        assert 0 <= result.new_current_xp < result.new_xp_to_next_level
        assert result.new_xp_to_next_level == CURVE.xp_to_next_level(result.new_level)


class TestNegativeXp:
    def test_reversal_within_level(self):
        result = apply_xp(_snapshot(level=2, current_xp=50), -30, RANKS, CURVE)
        assert result.new_level == 2
        assert result.new_current_xp == 20
        assert not result.degraded

    def test_reversal_levels_down(self):
        result = apply_xp(_snapshot(level=2, current_xp=15, total_xp=115), -25, RANKS, CURVE)
        assert result.new_level == 1
        assert result.new_current_xp == 90
        assert result.new_total_xp == 90
        assert result.leveled_down
        assert result.xp_applied == -25

    def test_reversal_ranks_down(self):
        result = apply_xp(_snapshot(level=11, current_xp=5, rank=D_RANK), -10, RANKS, CURVE)
        assert result.new_level == 10
        assert result.rank_change is RankChange.RANK_DOWN
        assert result.to_rank.name == "E-Rank"

    def test_over_removal_clamps_and_degrades(self):
        result = apply_xp(_snapshot(current_xp=40, total_xp=40), -100, RANKS, CURVE)
        assert result.new_total_xp == 0
        assert result.new_current_xp == 0
        assert result.new_level == 1
        assert result.degraded
        assert result.xp_applied == -40
