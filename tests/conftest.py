"""Shared test fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite) with the
full schema and the reference ranks seeded. A single shared connection
(StaticPool) keeps the in-memory database alive across sessions.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hq.db.base import Base
from hq.db.models import (
    ChallengeParticipant,
    ChallengeTask,
    GroupChallenge,
    Habit,
    Task,
    User,
)
from hq.progression.seed import seed_ranks
from hq.progression.xp_service import create_character

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed clock for deterministic streak and progress dates."""
    return NOW


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await seed_ranks(session)

    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for service calls and assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession):
    """Create a user with a level-1 character."""
    counter = {"n": 0}

    async def _make(username: str | None = None, role: str = "user", created_at: datetime | None = None) -> User:
        counter["n"] += 1
        user = User(
            username=username or f"hunter{counter['n']}",
            role=role,
            created_at=created_at or NOW - timedelta(days=30 - counter["n"]),
        )
        db_session.add(user)
        await db_session.flush()
        await create_character(db_session, user.id, now=NOW)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def make_task(db_session: AsyncSession):
    async def _make(user_id: int, **kwargs) -> Task:
        fields = {"title": "Write report", "difficulty": "medium", "priority": "medium"}
        fields.update(kwargs)
        task = Task(user_id=user_id, **fields)
        db_session.add(task)
        await db_session.commit()
        return task

    return _make


@pytest_asyncio.fixture
async def make_habit(db_session: AsyncSession):
    async def _make(user_id: int, **kwargs) -> Habit:
        fields = {"title": "Morning run", "difficulty": "medium", "frequency": "daily", "target_days": []}
        fields.update(kwargs)
        habit = Habit(user_id=user_id, **fields)
        db_session.add(habit)
        await db_session.commit()
        return habit

    return _make


@pytest_asyncio.fixture
async def make_challenge(db_session: AsyncSession):
    async def _make(created_by: int, **kwargs) -> GroupChallenge:
        fields = {
            "title": "30 Day Sprint",
            "goal_type": "task_count",
            "goal_target": 3,
            "status": "active",
            "is_public": True,
            "xp_reward": 100,
            "start_date": NOW - timedelta(days=5),
            "end_date": NOW + timedelta(days=25),
        }
        fields.update(kwargs)
        challenge = GroupChallenge(created_by=created_by, **fields)
        db_session.add(challenge)
        await db_session.commit()
        return challenge

    return _make


@pytest_asyncio.fixture
async def make_challenge_task(db_session: AsyncSession):
    async def _make(challenge_id: int, **kwargs) -> ChallengeTask:
        fields = {"title": "Run 5k", "description": "Run five kilometres", "point_value": 10, "xp_reward": 25}
        fields.update(kwargs)
        task = ChallengeTask(challenge_id=challenge_id, **fields)
        db_session.add(task)
        await db_session.commit()
        return task

    return _make


@pytest_asyncio.fixture
async def add_participant(db_session: AsyncSession):
    """Insert a participant row directly, bypassing join rules."""

    async def _add(challenge_id: int, user_id: int, joined_at: datetime | None = None, **kwargs) -> ChallengeParticipant:
        participant = ChallengeParticipant(
            challenge_id=challenge_id,
            user_id=user_id,
            status=kwargs.pop("status", "active"),
            joined_at=joined_at or NOW - timedelta(days=1),
            **kwargs,
        )
        db_session.add(participant)
        await db_session.commit()
        return participant

    return _add


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test database wired in."""
    from hq.challenges.ai_verifier import GeminiVerifier
    from hq.database import get_session
    from hq.dependencies import get_redis_dep, get_verifier_dep
    from hq.main import create_app

    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def _no_redis() -> AsyncGenerator[None, None]:
        yield None

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_redis_dep] = _no_redis
    app.dependency_overrides[get_verifier_dep] = lambda: GeminiVerifier(
        api_key="", model="gemini-test", api_url="http://gemini.test"
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
