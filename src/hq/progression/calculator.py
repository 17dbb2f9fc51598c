"""Pure progression math: XP deltas into level and rank changes.

Nothing here touches the database. Callers pass a snapshot of the
character and the rank table and persist whatever comes back.
"""

from __future__ import annotations

from dataclasses import dataclass

from hq.enums import RankChange
from hq.progression.levels import LevelCurve, RankTier, resolve_rank


@dataclass(frozen=True)
class CharacterSnapshot:
    level: int
    current_xp: int
    total_xp: int
    xp_to_next_level: int
    rank_id: int | None = None


@dataclass(frozen=True)
class ProgressionResult:
    old_level: int
    new_level: int
    new_current_xp: int
    new_total_xp: int
    new_xp_to_next_level: int
    from_rank: RankTier | None
    to_rank: RankTier | None
    rank_change: RankChange | None
    xp_applied: int
    degraded: bool = False

    @property
    def rank_changed(self) -> bool:
        return self.rank_change is not None

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level

    @property
    def leveled_down(self) -> bool:
        return self.new_level < self.old_level


def apply_xp(
    snapshot: CharacterSnapshot,
    delta: int,
    ranks: list[RankTier],
    curve: LevelCurve | None = None,
) -> ProgressionResult:
    """Apply an XP delta and carry overflow through as many levels as it covers.

    Positive deltas level up while ``current_xp >= xp_to_next_level``.
    Negative deltas (reversal of a task or habit) borrow from previous
    levels and may level down. A reversal larger than the character's
    total XP clamps at zero and is reported with ``degraded=True``
    instead of raising.
    """
    curve = curve or LevelCurve()
    level = snapshot.level
    current = snapshot.current_xp
    threshold = snapshot.xp_to_next_level
    degraded = False

    if delta >= 0:
        total = snapshot.total_xp + delta
        current += delta
        while current >= threshold:
            current -= threshold
            level += 1
            threshold = curve.xp_to_next_level(level)
    else:
        removal = -delta
        if removal > snapshot.total_xp:
            degraded = True
        total = max(0, snapshot.total_xp - removal)
        current -= removal
        while current < 0 and level > 1:
            level -= 1
            threshold = curve.xp_to_next_level(level)
            current += threshold
        if current < 0:
            current = 0
            degraded = True

    from_rank = next((r for r in ranks if r.id == snapshot.rank_id), None)
    to_rank = resolve_rank(level, ranks) or from_rank
    rank_change = None
    if to_rank is not None and (from_rank is None or to_rank.id != from_rank.id):
        if from_rank is None or to_rank.order_index > from_rank.order_index:
            rank_change = RankChange.RANK_UP
        else:
            rank_change = RankChange.RANK_DOWN

    return ProgressionResult(
        old_level=snapshot.level,
        new_level=level,
        new_current_xp=current,
        new_total_xp=total,
        new_xp_to_next_level=threshold,
        from_rank=from_rank,
        to_rank=to_rank,
        rank_change=rank_change,
        xp_applied=total - snapshot.total_xp,
        degraded=degraded,
    )
