"""Notification intents.

The engine only decides *that* something is worth telling the user. It
persists the intent and publishes it; preference filtering, push tokens
and retries belong to the delivery collaborator listening on the
``ws:user:*`` channels.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from hq.db.models import Notification
from hq.notifications.push import push_notification_to_user

_PENDING_KEY = "hq.pending_notifications"

VALID_TYPES = {"progression", "streak", "challenge", "system"}

VALID_SUBTYPES = {
    "level_up",
    "rank_up",
    "rank_down",
    "streak_milestone",
    "streak_broken",
    "verification_approved",
    "verification_rejected",
    "verification_failed",
    "challenge_completed",
}


async def emit_notification(
    db: AsyncSession,
    redis: object | None,
    user_id: int,
    type_: str,
    subtype: str,
    title: str,
    description: str | None = None,
    action_url: str | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Notification:
    """Persist a notification intent and publish it."""
    if type_ not in VALID_TYPES:
        raise ValueError(f"Invalid notification type: {type_}. Must be one of {VALID_TYPES}")
    if subtype not in VALID_SUBTYPES:
        raise ValueError(f"Invalid notification subtype: {subtype}")

    notification = Notification(
        user_id=user_id,
        type=type_,
        subtype=subtype,
        title=title,
        description=description,
        action_url=action_url,
        notification_metadata=metadata or {},
        created_at=now or datetime.now(timezone.utc),
    )
    db.add(notification)
    await db.flush()

    # Published only after the surrounding transaction commits
    db.info.setdefault(_PENDING_KEY, []).append((redis, notification))
    return notification


async def publish_pending(db: AsyncSession) -> int:
    """Publish intents queued on this session. Called after commit."""
    pending = db.info.pop(_PENDING_KEY, [])
    for redis, notification in pending:
        await push_notification_to_user(redis, notification)
    return len(pending)


def discard_pending(db: AsyncSession) -> None:
    """Drop queued intents after a rollback."""
    db.info.pop(_PENDING_KEY, None)
