"""Level curve and rank tiers.

The XP needed to leave a level grows linearly:

    xp_to_next_level(level) = base + level * increment

With the default base/increment of 50/50, level 1 needs 100 XP, level 2
needs 150, level 10 needs 550.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_XP_BASE = 50
DEFAULT_XP_INCREMENT = 50


@dataclass(frozen=True)
class LevelCurve:
    base: int = DEFAULT_XP_BASE
    increment: int = DEFAULT_XP_INCREMENT

    def __post_init__(self) -> None:
        if self.increment < 0 or self.base + self.increment <= 0:
            raise ValueError("Level curve must require positive XP for every level")

    def xp_to_next_level(self, level: int) -> int:
        """XP required to advance from ``level`` to ``level + 1``."""
        return self.base + level * self.increment

    def total_xp_for_level(self, level: int) -> int:
        """Cumulative XP needed to reach ``level`` from level 1 with zero XP."""
        return sum(self.xp_to_next_level(lvl) for lvl in range(1, level))


@dataclass(frozen=True)
class RankTier:
    """Immutable view of a Rank row used by the pure calculator."""

    id: int
    name: str
    min_level: int
    max_level: int | None
    order_index: int

    def contains(self, level: int) -> bool:
        if level < self.min_level:
            return False
        return self.max_level is None or level <= self.max_level


DEFAULT_RANKS: list[dict] = [
    {"name": "E-Rank", "min_level": 1, "max_level": 10, "color": "#808080", "order_index": 1,
     "description": "Awakened hunters taking their first steps."},
    {"name": "D-Rank", "min_level": 11, "max_level": 20, "color": "#8B4513", "order_index": 2,
     "description": "Hunters who have built their first habits."},
    {"name": "C-Rank", "min_level": 21, "max_level": 35, "color": "#4169E1", "order_index": 3,
     "description": "Consistent hunters with proven discipline."},
    {"name": "B-Rank", "min_level": 36, "max_level": 50, "color": "#9370DB", "order_index": 4,
     "description": "Skilled hunters who rarely miss a day."},
    {"name": "A-Rank", "min_level": 51, "max_level": 70, "color": "#FF8C00", "order_index": 5,
     "description": "Elite hunters at the top of their game."},
    {"name": "S-Rank", "min_level": 71, "max_level": 99, "color": "#FFD700", "order_index": 6,
     "description": "Legendary hunters."},
    {"name": "National Level", "min_level": 100, "max_level": None, "color": "#DC143C", "order_index": 7,
     "description": "Beyond every scale."},
]


def resolve_rank(level: int, ranks: list[RankTier]) -> RankTier | None:
    """Highest-``order_index`` rank whose level range contains ``level``."""
    matching = [r for r in ranks if r.contains(level)]
    if not matching:
        return None
    return max(matching, key=lambda r: r.order_index)
