"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from hq.challenges.router import router as challenges_router
from hq.completions.router import router as completions_router
from hq.config import get_settings
from hq.database import close_db, get_session, init_db
from hq.health.router import router as health_router
from hq.middleware import setup_middleware
from hq.progression.router import router as progression_router
from hq.progression.seed import seed_ranks
from hq.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Rank reference data (idempotent)
    try:
        async for db in get_session():
            await seed_ranks(db)
            break
    except Exception:
        logger.warning("Rank seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="HabitQuest API",
        description="Progression and challenge verification engine for HabitQuest",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(completions_router)
    app.include_router(challenges_router)
    app.include_router(progression_router)

    return app


app = create_app()
