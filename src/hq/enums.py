"""Closed vocabularies stored as strings in the database."""

from __future__ import annotations

from enum import Enum


class ActivityType(str, Enum):
    TASK_COMPLETED = "task_completed"
    TASK_UNCOMPLETED = "task_uncompleted"
    HABIT_COMPLETED = "habit_completed"
    HABIT_UNCOMPLETED = "habit_uncompleted"
    RANK_UP = "rank_up"
    RANK_DOWN = "rank_down"
    CHALLENGE_JOINED = "challenge_joined"
    CHALLENGE_LEFT = "challenge_left"
    CHALLENGE_COMPLETED = "challenge_completed"
    CHALLENGE_TASK_COMPLETED = "challenge_task_completed"
    CHALLENGE_TASK_REJECTED = "challenge_task_rejected"
    CHALLENGE_TASK_FAILED = "challenge_task_failed"
    STREAK_MILESTONE = "streak_milestone"
    STREAK_BROKEN = "streak_broken"


class Importance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    MILESTONE = "milestone"


class CompletionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"


class VerificationType(str, Enum):
    MANUAL = "manual"
    AI = "ai"


class GoalType(str, Enum):
    TASK_COUNT = "task_count"
    TOTAL_XP = "total_xp"


class ChallengeStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParticipantStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED_OUT = "dropped_out"
    DISQUALIFIED = "disqualified"


class RankChange(str, Enum):
    RANK_UP = "rank_up"
    RANK_DOWN = "rank_down"


class StreakOutcome(str, Enum):
    STARTED = "started"
    CONTINUED = "continued"
    UNCHANGED = "unchanged"
    BROKEN = "broken"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
