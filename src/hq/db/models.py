"""ORM models for characters, completions, challenges and the audit trail.

Completion rows are immutable facts. They carry an opaque JSON snapshot
of the source entity and the character's streak state as it was just
before the completion, so a reversal can restore it exactly.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hq.db.base import Base, JSONPayload


# ---------------------------------------------------------------------------
# Users & characters
# ---------------------------------------------------------------------------


class User(Base):
    """Account row. Authentication lives upstream; only role and age matter here."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user", server_default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    character: Mapped[Character | None] = relationship("Character", back_populates="user", uselist=False)


class Rank(Base):
    """Reference tier spanning a level range. ``max_level`` is NULL for the top rank."""

    __tablename__ = "ranks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    min_level: Mapped[int] = mapped_column(Integer, nullable=False)
    max_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#808080", server_default="#808080")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)


class Character(Base):
    """Progression state. One row per user, mutated only by the engine."""

    __tablename__ = "characters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    rank_id: Mapped[int] = mapped_column(Integer, ForeignKey("ranks.id", ondelete="RESTRICT"), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_to_next_level: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    global_ranking: Mapped[int | None] = mapped_column(Integer, nullable=True)
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_streak_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_active_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_habits_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_challenges_joined: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_challenges_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="character")
    rank: Mapped[Rank] = relationship("Rank", lazy="joined")


# ---------------------------------------------------------------------------
# Tasks & habits
# ---------------------------------------------------------------------------


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_task_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    xp_reward: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TaskCompletion(Base):
    """Immutable record of a credited task completion. At most one per task."""

    __tablename__ = "task_completions"
    __table_args__ = (
        UniqueConstraint("task_id", name="task_completions_task_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_date: Mapped[date] = mapped_column(Date, nullable=False)
    task_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)
    streak_days_before: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak_before: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active_date_before: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_streak_date_before: Mapped[date | None] = mapped_column(Date, nullable=True)


class Habit(Base):
    __tablename__ = "habits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    xp_reward: Mapped[int | None] = mapped_column(Integer, nullable=True)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="daily")
    target_days: Mapped[list[int]] = mapped_column(JSONPayload, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_completions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_completed_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class HabitCompletion(Base):
    """At most one credited completion per habit per calendar day."""

    __tablename__ = "habit_completions"
    __table_args__ = (
        UniqueConstraint("habit_id", "completed_date", name="habit_completions_habit_date_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    habit_id: Mapped[int] = mapped_column(Integer, ForeignKey("habits.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    completed_date: Mapped[date] = mapped_column(Date, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    streak_count: Mapped[int] = mapped_column(Integer, nullable=False)
    habit_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)
    # Habit-level streak before this completion
    habit_streak_before: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    habit_longest_before: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    habit_last_date_before: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Character-level streak before this completion
    streak_days_before: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak_before: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active_date_before: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_streak_date_before: Mapped[date | None] = mapped_column(Date, nullable=True)


# ---------------------------------------------------------------------------
# Group challenges
# ---------------------------------------------------------------------------


class GroupChallenge(Base):
    __tablename__ = "group_challenges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    challenge_type: Mapped[str] = mapped_column(String(16), nullable=False, default="competitive")
    goal_type: Mapped[str] = mapped_column(String(16), nullable=False, default="task_count")
    goal_target: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    invite_code: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tasks: Mapped[list[ChallengeTask]] = relationship("ChallengeTask", back_populates="challenge")


class ChallengeTask(Base):
    __tablename__ = "challenge_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("group_challenges.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    point_value: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=25)
    is_repeatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_completions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_proof: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_type: Mapped[str] = mapped_column(String(16), nullable=False, default="manual")
    proof_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    available_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    available_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    prerequisites: Mapped[list[int]] = mapped_column(JSONPayload, nullable=False, default=list)
    completion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    challenge: Mapped[GroupChallenge] = relationship("GroupChallenge", back_populates="tasks")


class ChallengeParticipant(Base):
    __tablename__ = "challenge_participants"
    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="challenge_participants_challenge_user_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("group_challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_tasks_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dropped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ChallengeProgress(Base):
    """Daily ledger row: that date's deltas plus the running cumulative total."""

    __tablename__ = "challenge_progress"
    __table_args__ = (
        UniqueConstraint("participant_id", "date", name="challenge_progress_participant_date_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_participants.id", ondelete="CASCADE"), nullable=False
    )
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("group_challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    progress_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    progress_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cumulative_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rank_on_date: Mapped[int | None] = mapped_column(Integer, nullable=True)
    streak_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ChallengeTaskCompletion(Base):
    """One verification attempt. A resubmission is a new row with the next completion_number."""

    __tablename__ = "challenge_task_completions"
    __table_args__ = (
        UniqueConstraint(
            "challenge_task_id", "participant_id", "completion_number",
            name="challenge_task_completions_task_participant_number_key",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_task_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_tasks.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_participants.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    proof: Mapped[str | None] = mapped_column(Text, nullable=True)
    proof_image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    ai_analysis: Mapped[dict[str, Any] | None] = mapped_column(JSONPayload, nullable=True)
    task_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONPayload, nullable=False, default=dict)
    verified_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


# ---------------------------------------------------------------------------
# Audit trail & notification intents
# ---------------------------------------------------------------------------


class ActivityLog(Base):
    """Append-only audit event. Never updated once written."""

    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    xp_gained: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level_before: Mapped[int | None] = mapped_column(Integer, nullable=True)
    level_after: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rank_before: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rank_after: Mapped[str | None] = mapped_column(String(50), nullable=True)
    related_task_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    related_habit_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    related_challenge_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    activity_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONPayload, nullable=False, default=dict)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    importance: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Notification(Base):
    """Notification intent. Delivery and preference filtering happen downstream."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    subtype: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_url: Mapped[str | None] = mapped_column(String(256), nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONPayload, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
