"""Seed rank reference data (idempotent)."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hq.db.models import Rank
from hq.progression.levels import DEFAULT_RANKS

logger = logging.getLogger(__name__)


async def seed_ranks(db: AsyncSession) -> int:
    """Insert missing ranks by name. Returns the number of rows created."""
    result = await db.execute(select(Rank.name))
    existing = set(result.scalars().all())

    created = 0
    for rank_data in DEFAULT_RANKS:
        if rank_data["name"] in existing:
            continue
        db.add(Rank(**rank_data))
        created += 1

    await db.commit()
    if created:
        logger.info("Seeded %d ranks", created)
    return created
