"""Pydantic response models for task and habit completion endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel

from hq.progression.schemas import ProgressionResponse, StreakResponse


class TaskCompletionResponse(BaseModel):
    completion_id: int
    task_id: int
    xp_earned: int
    progression: ProgressionResponse
    streak: StreakResponse


class TaskReversalResponse(BaseModel):
    task_id: int
    status: str
    xp_removed: int
    progression: ProgressionResponse
    streak_restored: bool


class HabitCompletionResponse(BaseModel):
    completion_id: int
    habit_id: int
    completed_date: date
    xp_earned: int
    habit_streak: int
    progression: ProgressionResponse
    streak: StreakResponse


class HabitReversalResponse(BaseModel):
    habit_id: int
    xp_removed: int
    habit_streak: int
    progression: ProgressionResponse
    streak_restored: bool
