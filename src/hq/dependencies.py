"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Header, HTTPException

from hq.challenges.ai_verifier import ProofVerifier, get_verifier
from hq.redis_client import get_optional_redis


async def get_redis_dep() -> AsyncGenerator[object | None, None]:
    """Yield the Redis client, or None when pub/sub is not configured."""
    yield get_optional_redis()


def get_current_user_id(x_user_id: int | None = Header(None)) -> int:
    """Caller identity, set by the upstream authentication layer."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_verifier_dep() -> ProofVerifier:
    return get_verifier()
