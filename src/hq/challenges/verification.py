"""Challenge-task completion lifecycle.

Every attempt is a ChallengeTaskCompletion that starts ``pending`` and
moves exactly once to ``approved``, ``rejected`` or ``failed``:

* task without proof requirement: approved on submission;
* manual verification: stays pending until the challenge creator or an
  admin decides;
* AI verification: one call to the verifier during submission. A verdict
  gives approved/rejected. No verdict (misconfiguration, network, timeout,
  bad payload) gives ``failed``, which credits nothing and is retried by
  submitting again as a new attempt with the next completion_number.

Progress is credited only on the transition to ``approved``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hq.activity.service import record_activity
from hq.challenges.ai_verifier import AIVerdict, ProofVerifier
from hq.challenges.progress import CreditResult, credit_completion
from hq.database import atomic
from hq.db.base import as_utc
from hq.db.models import (
    ChallengeParticipant,
    ChallengeTask,
    ChallengeTaskCompletion,
    GroupChallenge,
    User,
)
from hq.enums import (
    ActivityType,
    ChallengeStatus,
    CompletionStatus,
    Importance,
    ParticipantStatus,
    UserRole,
    VerificationType,
)
from hq.errors import (
    AlreadyCompletedError,
    DataIntegrityError,
    InvalidTransitionError,
    NotFound,
    PermissionDenied,
    ValidationFailed,
    VerificationUnavailable,
)
from hq.notifications.service import emit_notification

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[str, list[str]] = {
    CompletionStatus.PENDING.value: [
        CompletionStatus.APPROVED.value,
        CompletionStatus.REJECTED.value,
        CompletionStatus.FAILED.value,
    ],
    CompletionStatus.APPROVED.value: [],
    CompletionStatus.REJECTED.value: [],
    CompletionStatus.FAILED.value: [],
}

MANUAL_DECISIONS = (CompletionStatus.APPROVED.value, CompletionStatus.REJECTED.value)


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a completion status transition. Raises InvalidTransitionError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise InvalidTransitionError(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


@dataclass
class VerificationResult:
    completion: ChallengeTaskCompletion
    credit: CreditResult | None = None
    verdict: AIVerdict | None = None

    @property
    def credited(self) -> bool:
        return self.credit is not None


def challenge_task_snapshot(task: ChallengeTask) -> dict[str, Any]:
    return {
        "title": task.title,
        "description": task.description,
        "point_value": task.point_value,
        "xp_reward": task.xp_reward,
        "requires_proof": task.requires_proof,
        "verification_type": task.verification_type,
        "is_repeatable": task.is_repeatable,
    }


async def _attempt_counts(db: AsyncSession, task_id: int, participant_id: int) -> dict[str, int]:
    result = await db.execute(
        select(ChallengeTaskCompletion.status, func.count())
        .where(
            ChallengeTaskCompletion.challenge_task_id == task_id,
            ChallengeTaskCompletion.participant_id == participant_id,
        )
        .group_by(ChallengeTaskCompletion.status)
    )
    counts = {status.value: 0 for status in CompletionStatus}
    for status, count in result:
        counts[status] = count
    return counts


async def _check_prerequisites(db: AsyncSession, task: ChallengeTask, participant_id: int) -> None:
    required = [int(t) for t in (task.prerequisites or [])]
    if not required:
        return
    result = await db.execute(
        select(ChallengeTaskCompletion.challenge_task_id)
        .where(
            ChallengeTaskCompletion.participant_id == participant_id,
            ChallengeTaskCompletion.challenge_task_id.in_(required),
            ChallengeTaskCompletion.status == CompletionStatus.APPROVED.value,
        )
        .distinct()
    )
    done = set(result.scalars().all())
    missing = [t for t in required if t not in done]
    if missing:
        raise ValidationFailed(f"Complete prerequisite tasks first: {missing}")


async def submit_completion(
    db: AsyncSession,
    redis: object | None,
    verifier: ProofVerifier,
    user_id: int,
    challenge_id: int,
    task_id: int,
    *,
    proof: str | None = None,
    proof_image_url: str | None = None,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> VerificationResult:
    """Record a new attempt at a challenge task and run its verification path."""
    if now is None:
        now = datetime.now(timezone.utc)

    async with atomic(db):
        challenge = await db.get(GroupChallenge, challenge_id)
        if challenge is None:
            raise NotFound("Challenge not found")
        task = await db.get(ChallengeTask, task_id)
        if task is None or task.challenge_id != challenge.id:
            raise NotFound("Challenge task not found")

        if challenge.status != ChallengeStatus.ACTIVE.value:
            raise ValidationFailed(f"Cannot submit to a {challenge.status} challenge")
        if as_utc(challenge.end_date) <= now:
            raise ValidationFailed("Challenge has ended")
        if not task.is_active:
            raise ValidationFailed("This task is no longer active")
        if task.available_from is not None and as_utc(task.available_from) > now:
            raise ValidationFailed("This task is not available yet")
        if task.available_until is not None and as_utc(task.available_until) < now:
            raise ValidationFailed("This task is no longer available")

        result = await db.execute(
            select(ChallengeParticipant).where(
                ChallengeParticipant.challenge_id == challenge.id,
                ChallengeParticipant.user_id == user_id,
            )
        )
        participant = result.scalar_one_or_none()
        if participant is None:
            raise PermissionDenied("You are not a participant in this challenge")
        if participant.status != ParticipantStatus.ACTIVE.value:
            raise ValidationFailed(f"Participant is {participant.status}")

        await _check_prerequisites(db, task, participant.id)

        counts = await _attempt_counts(db, task.id, participant.id)
        open_or_credited = counts[CompletionStatus.APPROVED.value] + counts[CompletionStatus.PENDING.value]
        if not task.is_repeatable and open_or_credited > 0:
            raise AlreadyCompletedError("Task already completed or awaiting verification")
        if task.is_repeatable and task.max_completions is not None and open_or_credited >= task.max_completions:
            raise ValidationFailed(f"Maximum completions ({task.max_completions}) reached")

        verification = VerificationType(task.verification_type)
        if task.requires_proof and not (proof or proof_image_url):
            raise ValidationFailed("Proof is required for this task")
        if task.requires_proof and verification is VerificationType.AI and not proof_image_url:
            raise ValidationFailed("An image is required for AI verification")

        completion = ChallengeTaskCompletion(
            challenge_task_id=task.id,
            participant_id=participant.id,
            user_id=user_id,
            status=CompletionStatus.PENDING.value,
            completed_at=now,
            proof=proof,
            proof_image_url=proof_image_url,
            duration_minutes=duration_minutes,
            task_snapshot=challenge_task_snapshot(task),
            completion_number=sum(counts.values()) + 1,
        )
        db.add(completion)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise AlreadyCompletedError("A concurrent submission for this task is in progress") from exc

        if not task.requires_proof:
            outcome = await _resolve(
                db, redis, completion, task, challenge,
                CompletionStatus.APPROVED.value, notify=False, now=now,
            )
        elif verification is VerificationType.MANUAL:
            outcome = VerificationResult(completion=completion)
        elif verification is VerificationType.AI:
            outcome = await _run_ai_verification(db, redis, verifier, completion, task, challenge, now)
        else:
            raise DataIntegrityError(f"Unhandled verification type: {verification}")

    logger.info(
        "Completion %s for task %s (attempt %d) is %s",
        completion.id, task_id, completion.completion_number, completion.status,
    )
    return outcome


async def _run_ai_verification(
    db: AsyncSession,
    redis: object | None,
    verifier: ProofVerifier,
    completion: ChallengeTaskCompletion,
    task: ChallengeTask,
    challenge: GroupChallenge,
    now: datetime,
) -> VerificationResult:
    description = task.description or task.title
    if task.proof_instructions:
        description = f"{description}\nProof instructions: {task.proof_instructions}"

    try:
        verdict = await verifier.verify(completion.proof_image_url or "", description)
    except VerificationUnavailable as exc:
        logger.warning("AI verification failed for completion %s: %s", completion.id, exc.message, exc_info=True)
        return await _resolve(
            db, redis, completion, task, challenge,
            CompletionStatus.FAILED.value,
            reason=f"AI verification failed due to a technical error: {exc.message}",
            now=now,
        )

    target = CompletionStatus.APPROVED.value if verdict.approved else CompletionStatus.REJECTED.value
    result = await _resolve(
        db, redis, completion, task, challenge, target,
        reason=None if verdict.approved else verdict.reason,
        notes=f"AI verdict ({verdict.confidence:.0%} confidence): {verdict.reason}",
        ai_analysis=verdict.to_dict(),
        now=now,
    )
    result.verdict = verdict
    return result


async def _ensure_can_verify(db: AsyncSession, challenge: GroupChallenge, user_id: int) -> None:
    user = await db.get(User, user_id)
    is_admin = user is not None and user.role == UserRole.ADMIN.value
    if challenge.created_by != user_id and not is_admin:
        raise PermissionDenied("Only challenge creator or admins can verify tasks")


@dataclass
class PendingVerification:
    completion: ChallengeTaskCompletion
    task_title: str
    username: str


async def list_pending_verifications(
    db: AsyncSession, verifier_id: int, challenge_id: int
) -> list[PendingVerification]:
    """Pending manual-review attempts of a challenge, oldest first."""
    challenge = await db.get(GroupChallenge, challenge_id)
    if challenge is None:
        raise NotFound("Challenge not found")
    await _ensure_can_verify(db, challenge, verifier_id)

    result = await db.execute(
        select(ChallengeTaskCompletion, ChallengeTask.title, User.username)
        .join(ChallengeTask, ChallengeTask.id == ChallengeTaskCompletion.challenge_task_id)
        .join(User, User.id == ChallengeTaskCompletion.user_id)
        .where(
            ChallengeTask.challenge_id == challenge_id,
            ChallengeTaskCompletion.status == CompletionStatus.PENDING.value,
        )
        .order_by(ChallengeTaskCompletion.completed_at.asc(), ChallengeTaskCompletion.id.asc())
    )
    return [
        PendingVerification(completion=completion, task_title=title, username=username)
        for completion, title, username in result.all()
    ]


async def verify_completion(
    db: AsyncSession,
    redis: object | None,
    verifier_id: int,
    challenge_id: int,
    completion_id: int,
    status: str,
    *,
    rejection_reason: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> VerificationResult:
    """Manually approve or reject a pending completion.

    Only the challenge creator or an admin may decide. A decided
    completion can never be decided again.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if status not in MANUAL_DECISIONS:
        raise ValidationFailed("Invalid status. Must be approved or rejected.")
    if status == CompletionStatus.REJECTED.value and not rejection_reason:
        raise ValidationFailed("Rejection reason is required.")

    async with atomic(db):
        completion = await db.get(ChallengeTaskCompletion, completion_id, with_for_update=True)
        if completion is None:
            raise NotFound("Completion not found")
        task = await db.get(ChallengeTask, completion.challenge_task_id)
        if task is None:
            raise DataIntegrityError(f"Challenge task {completion.challenge_task_id} does not exist")
        if task.challenge_id != challenge_id:
            raise NotFound("Completion not found")
        challenge = await db.get(GroupChallenge, challenge_id)
        if challenge is None:
            raise NotFound("Challenge not found")

        await _ensure_can_verify(db, challenge, verifier_id)

        validate_transition(completion.status, status)

        if status == CompletionStatus.APPROVED.value:
            counts = await _attempt_counts(db, task.id, completion.participant_id)
            approved = counts[CompletionStatus.APPROVED.value]
            if not task.is_repeatable and approved > 0:
                raise AlreadyCompletedError("Task already approved for this participant")
            if task.is_repeatable and task.max_completions is not None and approved >= task.max_completions:
                raise ValidationFailed(f"Maximum completions ({task.max_completions}) reached")

        outcome = await _resolve(
            db, redis, completion, task, challenge, status,
            verified_by=verifier_id,
            reason=rejection_reason,
            notes=notes,
            now=now,
        )

    logger.info("Completion %s %s by user %s", completion_id, status, verifier_id)
    return outcome


async def _resolve(
    db: AsyncSession,
    redis: object | None,
    completion: ChallengeTaskCompletion,
    task: ChallengeTask,
    challenge: GroupChallenge,
    target: str,
    *,
    verified_by: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
    ai_analysis: dict[str, Any] | None = None,
    notify: bool = True,
    now: datetime,
) -> VerificationResult:
    """Apply one terminal transition and its side effects. Flushes, never commits."""
    validate_transition(completion.status, target)

    completion.status = target
    completion.verified_by = verified_by
    completion.verified_at = now
    completion.verification_notes = notes
    if ai_analysis is not None:
        completion.ai_analysis = ai_analysis
    if target != CompletionStatus.APPROVED.value:
        completion.rejection_reason = reason
    await db.flush()

    metadata = {
        "challenge_id": challenge.id,
        "task_id": task.id,
        "completion_id": completion.id,
        "completion_number": completion.completion_number,
        "status": target,
    }
    result = VerificationResult(completion=completion)

    if target == CompletionStatus.APPROVED.value:
        result.credit = await credit_completion(db, redis, completion, now=now)
        if notify:
            await emit_notification(
                db, redis, completion.user_id,
                "challenge", "verification_approved",
                "Task Approved",
                f'Your task "{task.title}" was approved! +{completion.xp_earned} XP',
                action_url=f"/challenges/{challenge.id}",
                metadata=metadata,
                now=now,
            )
    elif target == CompletionStatus.REJECTED.value:
        await record_activity(
            db, completion.user_id, ActivityType.CHALLENGE_TASK_REJECTED,
            f"Challenge task rejected: {task.title}",
            related_challenge_id=challenge.id,
            metadata={**metadata, "reason": reason},
            is_public=False,
            importance=Importance.LOW,
            now=now,
        )
        await emit_notification(
            db, redis, completion.user_id,
            "challenge", "verification_rejected",
            "Task Rejected",
            f'Your task "{task.title}" was rejected: {reason}',
            action_url=f"/challenges/{challenge.id}",
            metadata=metadata,
            now=now,
        )
    elif target == CompletionStatus.FAILED.value:
        await record_activity(
            db, completion.user_id, ActivityType.CHALLENGE_TASK_FAILED,
            f"Verification could not run for: {task.title}",
            related_challenge_id=challenge.id,
            metadata={**metadata, "reason": reason},
            is_public=False,
            importance=Importance.LOW,
            now=now,
        )
        await emit_notification(
            db, redis, completion.user_id,
            "challenge", "verification_failed",
            "Verification Failed",
            f'We could not verify "{task.title}". Please submit your proof again.',
            action_url=f"/challenges/{challenge.id}",
            metadata=metadata,
            now=now,
        )
    else:
        raise DataIntegrityError(f"Unhandled completion status: {target}")

    return result
