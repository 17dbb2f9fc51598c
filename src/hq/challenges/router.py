"""Challenge membership, verification, leaderboard and progress endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from hq.challenges.ai_verifier import ProofVerifier
from hq.challenges.leaderboard import get_challenge_leaderboard
from hq.challenges.membership import join_challenge, leave_challenge
from hq.challenges.progress import get_progress_history
from hq.challenges.schemas import (
    ChallengeLeaderboardResponse,
    CompletionResponse,
    JoinRequest,
    LeaderboardEntryResponse,
    ParticipantResponse,
    PendingVerificationResponse,
    ProgressHistoryResponse,
    ProgressRowResponse,
    SubmitCompletionRequest,
    VerificationQueueResponse,
    VerificationResponse,
    VerifyCompletionRequest,
)
from hq.challenges.verification import (
    VerificationResult,
    list_pending_verifications,
    submit_completion,
    verify_completion,
)
from hq.database import get_session
from hq.dependencies import get_current_user_id, get_redis_dep, get_verifier_dep

router = APIRouter(prefix="/api/v1/challenges", tags=["Challenges"])


def _verification_response(result: VerificationResult) -> VerificationResponse:
    credit = result.credit
    return VerificationResponse(
        completion=CompletionResponse.model_validate(result.completion),
        credited=result.credited,
        goal_reached=credit.goal_reached if credit else False,
        participant=ParticipantResponse.model_validate(credit.participant) if credit else None,
    )


@router.post("/{challenge_id}/join", response_model=ParticipantResponse, status_code=status.HTTP_201_CREATED)
async def join(
    challenge_id: int,
    body: JoinRequest | None = None,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ParticipantResponse:
    invite_code = body.invite_code if body else None
    participant = await join_challenge(db, user_id, challenge_id, invite_code)
    return ParticipantResponse.model_validate(participant)


@router.post("/{challenge_id}/leave", response_model=ParticipantResponse)
async def leave(
    challenge_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ParticipantResponse:
    participant = await leave_challenge(db, user_id, challenge_id)
    return ParticipantResponse.model_validate(participant)


@router.post(
    "/{challenge_id}/tasks/{task_id}/complete",
    response_model=VerificationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit(
    challenge_id: int,
    task_id: int,
    body: SubmitCompletionRequest | None = None,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
    verifier: ProofVerifier = Depends(get_verifier_dep),
) -> VerificationResponse:
    """Submit an attempt. The response carries the resolved status."""
    body = body or SubmitCompletionRequest()
    result = await submit_completion(
        db, redis, verifier, user_id, challenge_id, task_id,
        proof=body.proof,
        proof_image_url=body.proof_image_url,
        duration_minutes=body.duration_minutes,
    )
    return _verification_response(result)


@router.get("/{challenge_id}/verifications", response_model=VerificationQueueResponse)
async def verifications(
    challenge_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> VerificationQueueResponse:
    """Pending attempts awaiting manual review (creator or admin only)."""
    pending = await list_pending_verifications(db, user_id, challenge_id)
    return VerificationQueueResponse(
        challenge_id=challenge_id,
        verifications=[
            PendingVerificationResponse(
                completion=CompletionResponse.model_validate(p.completion),
                task_title=p.task_title,
                username=p.username,
            )
            for p in pending
        ],
    )


@router.post("/{challenge_id}/completions/{completion_id}/verify", response_model=VerificationResponse)
async def verify(
    challenge_id: int,
    completion_id: int,
    body: VerifyCompletionRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_redis_dep),
) -> VerificationResponse:
    """Approve or reject a pending completion (creator or admin only)."""
    result = await verify_completion(
        db, redis, user_id, challenge_id, completion_id, body.status,
        rejection_reason=body.rejection_reason,
        notes=body.notes,
    )
    return _verification_response(result)


@router.get("/{challenge_id}/leaderboard", response_model=ChallengeLeaderboardResponse)
async def leaderboard(
    challenge_id: int,
    db: AsyncSession = Depends(get_session),
) -> ChallengeLeaderboardResponse:
    entries = await get_challenge_leaderboard(db, challenge_id)
    return ChallengeLeaderboardResponse(
        challenge_id=challenge_id,
        entries=[LeaderboardEntryResponse(**e) for e in entries],
    )


@router.get("/{challenge_id}/progress", response_model=ProgressHistoryResponse)
async def progress(
    challenge_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ProgressHistoryResponse:
    """The caller's daily progress ledger for this challenge."""
    participant, rows = await get_progress_history(db, challenge_id, user_id)
    return ProgressHistoryResponse(
        participant=ParticipantResponse.model_validate(participant),
        history=[ProgressRowResponse.model_validate(r) for r in rows],
    )
