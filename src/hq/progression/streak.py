"""Day-granularity streak state machine.

States are *no streak* (``last_active_date`` is None), *active* and
*broken*. Only calendar dates are compared; time of day never matters,
so callers convert timestamps to dates in the user's frame first.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date, timedelta

from hq.enums import StreakOutcome

DEFAULT_MILESTONES = (7, 30, 100)


@dataclass(frozen=True)
class StreakState:
    streak_days: int = 0
    longest_streak: int = 0
    last_active_date: date | None = None
    last_streak_date: date | None = None


@dataclass(frozen=True)
class StreakUpdate:
    before: StreakState
    after: StreakState
    outcome: StreakOutcome
    broken_length: int = 0
    milestone: int | None = None

    @property
    def changed(self) -> bool:
        return self.before != self.after


def is_streak_milestone(streak_days: int, milestones: Iterable[int] = DEFAULT_MILESTONES) -> bool:
    """Milestones are the configured values plus every full week."""
    if streak_days <= 0:
        return False
    return streak_days in set(milestones) or streak_days % 7 == 0


def advance_streak(
    state: StreakState,
    activity_date: date,
    milestones: Iterable[int] = DEFAULT_MILESTONES,
) -> StreakUpdate:
    """Fold one day of activity into the streak.

    Same day as the last activity is a no-op, the next calendar day
    extends the streak, any larger gap restarts it at 1. Activity dated
    before ``last_active_date`` (a backfill) leaves the streak alone.
    """
    last = state.last_active_date

    if last is None:
        after = StreakState(
            streak_days=1,
            longest_streak=max(state.longest_streak, 1),
            last_active_date=activity_date,
            last_streak_date=activity_date,
        )
        return StreakUpdate(
            before=state,
            after=after,
            outcome=StreakOutcome.STARTED,
            milestone=1 if is_streak_milestone(1, milestones) else None,
        )

    if activity_date <= last:
        return StreakUpdate(before=state, after=state, outcome=StreakOutcome.UNCHANGED)

    if activity_date == last + timedelta(days=1):
        days = state.streak_days + 1
        after = replace(
            state,
            streak_days=days,
            longest_streak=max(state.longest_streak, days),
            last_active_date=activity_date,
            last_streak_date=activity_date,
        )
        outcome = StreakOutcome.CONTINUED if state.streak_days > 0 else StreakOutcome.STARTED
        return StreakUpdate(
            before=state,
            after=after,
            outcome=outcome,
            milestone=days if is_streak_milestone(days, milestones) else None,
        )

    # Gap of two or more days
    after = replace(
        state,
        streak_days=1,
        longest_streak=max(state.longest_streak, 1),
        last_active_date=activity_date,
        last_streak_date=activity_date,
    )
    return StreakUpdate(
        before=state,
        after=after,
        outcome=StreakOutcome.BROKEN,
        broken_length=state.streak_days,
    )


def effective_streak(state: StreakState, today: date) -> int:
    """Streak as it should be displayed on ``today``.

    A streak whose last activity is older than yesterday is already lost
    even though nothing has been written yet; it is only reset on disk
    by the next activity.
    """
    if state.last_active_date is None:
        return 0
    if today - state.last_active_date > timedelta(days=1):
        return 0
    return state.streak_days


def rebuild_streak(activity_dates: Iterable[date]) -> StreakState:
    """Replay a full activity history from scratch.

    Only valid when the history is complete and holds at most one entry
    per day that counts, as with a single habit's completions.
    """
    state = StreakState()
    for day in sorted(set(activity_dates)):
        state = advance_streak(state, day).after
    return state
