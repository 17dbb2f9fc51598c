"""Notification intents are published after commit and dropped on rollback."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from hq.completions.task_service import complete_task
from hq.database import atomic
from hq.db.models import Notification
from hq.notifications.service import emit_notification


class TestDelivery:
    @pytest.mark.asyncio
    async def test_level_up_published_after_commit(self, db_session, make_user, make_task, now):
        user = await make_user()
        task = await make_task(user.id, xp_reward=100)
        redis = AsyncMock()

        result = await complete_task(db_session, redis, user.id, task.id, now=now)

        assert result.progression.leveled_up
        redis.publish.assert_awaited_once()
        channel, raw = redis.publish.await_args.args
        assert channel == f"ws:user:{user.id}"
        payload = json.loads(raw)
        assert payload["event"] == "notification"
        assert payload["data"]["subtype"] == "level_up"
        assert payload["data"]["metadata"] == {"old_level": 1, "new_level": 2}

    @pytest.mark.asyncio
    async def test_rollback_discards_intents(self, db_session, make_user, now):
        user = await make_user()
        user_id = user.id
        redis = AsyncMock()

        with pytest.raises(RuntimeError):
            async with atomic(db_session):
                await emit_notification(
                    db_session, redis, user_id, "system", "level_up", "Level Up!", now=now
                )
                raise RuntimeError("boom")

        redis.publish.assert_not_awaited()
        count = await db_session.execute(
            select(func.count()).select_from(Notification).where(Notification.user_id == user_id)
        )
        assert count.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_the_operation(self, db_session, make_user, make_task, now):
        user = await make_user()
        task = await make_task(user.id, xp_reward=100)
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")

        result = await complete_task(db_session, redis, user.id, task.id, now=now)

        assert result.xp_earned == 100
        stored = await db_session.execute(
            select(Notification.subtype).where(Notification.user_id == user.id)
        )
        assert stored.scalars().all() == ["level_up"]

    @pytest.mark.asyncio
    async def test_unknown_subtype_rejected(self, db_session, make_user, now):
        user = await make_user()
        with pytest.raises(ValueError):
            await emit_notification(db_session, None, user.id, "system", "confetti", "Hi", now=now)
