"""Unit tests for the pure progress fold and goal-type units."""

from __future__ import annotations

from datetime import date

import pytest

from hq.challenges.progress import CreditedEvent, fold_completions, progress_delta


class TestProgressDelta:
    def test_task_count_counts_one(self):
        assert progress_delta("task_count", 250) == 1

    def test_total_xp_counts_xp(self):
        assert progress_delta("total_xp", 25) == 25

    def test_unknown_goal_type(self):
        with pytest.raises(ValueError):
            progress_delta("steps", 10)


class TestFoldCompletions:
    def test_daily_rows_and_running_total(self):
        events = [
            CreditedEvent(credited_on=date(2026, 3, 2), points=10, xp=25),
            CreditedEvent(credited_on=date(2026, 3, 1), points=10, xp=25),
            CreditedEvent(credited_on=date(2026, 3, 2), points=5, xp=10),
            CreditedEvent(credited_on=date(2026, 3, 5), points=10, xp=25),
        ]
        totals = fold_completions(events, "task_count")

        assert totals.current_progress == 4
        assert totals.total_points == 35
        assert totals.total_xp_earned == 85
        assert totals.completed_tasks_count == 4

        assert [row.day for row in totals.daily] == [date(2026, 3, 1), date(2026, 3, 2), date(2026, 3, 5)]
        assert [row.progress_value for row in totals.daily] == [1, 2, 1]
        assert [row.cumulative_progress for row in totals.daily] == [1, 3, 4]
        assert [row.streak_count for row in totals.daily] == [1, 2, 1]
        assert totals.streak.longest_streak == 2

    def test_total_xp_goal(self):
        events = [
            CreditedEvent(credited_on=date(2026, 3, 1), points=10, xp=25),
            CreditedEvent(credited_on=date(2026, 3, 1), points=10, xp=40),
        ]
        totals = fold_completions(events, "total_xp")
        assert totals.current_progress == 65
        assert totals.daily[0].cumulative_progress == 65

    def test_no_events(self):
        totals = fold_completions([], "task_count")
        assert totals.current_progress == 0
        assert totals.daily == []
