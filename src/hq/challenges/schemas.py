"""Pydantic request/response models for challenge endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class JoinRequest(BaseModel):
    invite_code: str | None = None


class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    challenge_id: int
    user_id: int
    status: str
    current_progress: int
    total_points: int
    total_xp_earned: int
    completed_tasks_count: int
    rank: int | None = None
    streak_days: int
    longest_streak: int
    joined_at: datetime
    completed_at: datetime | None = None
    dropped_at: datetime | None = None


class SubmitCompletionRequest(BaseModel):
    proof: str | None = Field(None, max_length=5000)
    proof_image_url: str | None = Field(None, max_length=1024)
    duration_minutes: int | None = Field(None, ge=0)


class VerifyCompletionRequest(BaseModel):
    status: Literal["approved", "rejected"]
    rejection_reason: str | None = None
    notes: str | None = None


class CompletionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    challenge_task_id: int
    participant_id: int
    user_id: int
    status: str
    completion_number: int
    points_earned: int
    xp_earned: int
    completed_at: datetime
    proof: str | None = None
    proof_image_url: str | None = None
    ai_analysis: dict[str, Any] | None = None
    verified_by: int | None = None
    verified_at: datetime | None = None
    verification_notes: str | None = None
    rejection_reason: str | None = None


class VerificationResponse(BaseModel):
    completion: CompletionResponse
    credited: bool
    goal_reached: bool = False
    participant: ParticipantResponse | None = None


class LeaderboardEntryResponse(BaseModel):
    rank: int
    participant_id: int
    user_id: int
    username: str
    status: str
    total_points: int
    total_xp_earned: int
    current_progress: int
    completed_tasks_count: int
    streak_days: int
    joined_at: datetime


class ChallengeLeaderboardResponse(BaseModel):
    challenge_id: int
    entries: list[LeaderboardEntryResponse]


class ProgressRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: date = Field(validation_alias="progress_date")
    progress_value: int
    tasks_completed: int
    xp_earned: int
    points_earned: int
    cumulative_progress: int
    rank_on_date: int | None = None
    streak_count: int


class ProgressHistoryResponse(BaseModel):
    participant: ParticipantResponse
    history: list[ProgressRowResponse]


class PendingVerificationResponse(BaseModel):
    completion: CompletionResponse
    task_title: str
    username: str


class VerificationQueueResponse(BaseModel):
    challenge_id: int
    verifications: list[PendingVerificationResponse]
