"""Pydantic response models for progression endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hq.progression.calculator import ProgressionResult
from hq.progression.streak import StreakUpdate


class ProgressionResponse(BaseModel):
    old_level: int
    new_level: int
    current_xp: int
    total_xp: int
    xp_to_next_level: int
    xp_applied: int
    rank_change: str | None = None
    from_rank: str | None = None
    to_rank: str | None = None
    degraded: bool = False

    @classmethod
    def from_result(cls, result: ProgressionResult) -> ProgressionResponse:
        return cls(
            old_level=result.old_level,
            new_level=result.new_level,
            current_xp=result.new_current_xp,
            total_xp=result.new_total_xp,
            xp_to_next_level=result.new_xp_to_next_level,
            xp_applied=result.xp_applied,
            rank_change=result.rank_change.value if result.rank_change else None,
            from_rank=result.from_rank.name if result.from_rank else None,
            to_rank=result.to_rank.name if result.to_rank else None,
            degraded=result.degraded,
        )


class StreakResponse(BaseModel):
    outcome: str
    streak_days: int
    longest_streak: int
    broken_length: int = 0
    milestone: int | None = None

    @classmethod
    def from_update(cls, update: StreakUpdate) -> StreakResponse:
        return cls(
            outcome=update.outcome.value,
            streak_days=update.after.streak_days,
            longest_streak=update.after.longest_streak,
            broken_length=update.broken_length,
            milestone=update.milestone,
        )


class CharacterResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    level: int
    current_xp: int
    total_xp: int
    xp_to_next_level: int
    rank: str
    global_ranking: int | None = None
    streak_days: int
    effective_streak: int
    longest_streak: int
    last_active_date: date | None = None
    total_tasks_completed: int
    total_habits_completed: int
    total_challenges_joined: int
    total_challenges_completed: int


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    activity_type: str
    description: str
    xp_gained: int
    level_before: int | None = None
    level_after: int | None = None
    rank_before: str | None = None
    rank_after: str | None = None
    related_task_id: int | None = None
    related_habit_id: int | None = None
    related_challenge_id: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="activity_metadata")
    importance: str
    created_at: datetime


class ActivityFeedResponse(BaseModel):
    items: list[ActivityResponse]
    total: int
    page: int
    per_page: int


class GlobalLeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    username: str
    level: int
    total_xp: int
    rank_name: str | None = None


class GlobalLeaderboardResponse(BaseModel):
    entries: list[GlobalLeaderboardEntry]
    total: int
    page: int
    per_page: int
