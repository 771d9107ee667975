"""
Bracket Composer - draw sizing, byes and seed-to-slot placement.

Draw size is the smallest power of two covering both the configured bracket
size and the competitor count. Remaining slots are byes.

Placement by seeding method:
  RANKING / SNAKE  standard fold table; byes go to the top seeds
  RANDOM           uniform shuffle with an injectable random source
  MANUAL           caller slot order, validated and used verbatim
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from piste.errors import ValidationFailed
from piste.models.phase import SeedingMethod
from piste.services.pool_composer import Entrant

logger = logging.getLogger(__name__)


@dataclass
class DrawSlot:
    slot: int  # 1-based, top to bottom
    seed: Optional[int] = None
    athlete_id: Optional[str] = None

    @property
    def is_bye(self) -> bool:
        return self.athlete_id is None

    def to_dict(self) -> dict:
        return {"slot": self.slot, "seed": self.seed, "athlete_id": self.athlete_id, "is_bye": self.is_bye}


@dataclass
class ComposedBracket:
    seeding_method: SeedingMethod
    draw_size: int
    slots: List[DrawSlot] = field(default_factory=list)

    @property
    def competitor_count(self) -> int:
        return sum(1 for s in self.slots if not s.is_bye)

    @property
    def bye_count(self) -> int:
        return self.draw_size - self.competitor_count

    @property
    def rounds(self) -> int:
        return int(math.log2(self.draw_size))

    def first_round_pairs(self) -> List[Tuple[DrawSlot, DrawSlot]]:
        """Adjacent slots meet in round one: (1,2), (3,4), ..."""
        if self.draw_size < 2:
            return []
        return [(self.slots[i], self.slots[i + 1]) for i in range(0, self.draw_size, 2)]

    def bye_recipients(self) -> List[DrawSlot]:
        """Competitor slots whose first-round opponent is a bye."""
        recipients = []
        for a, b in self.first_round_pairs():
            if a.is_bye and not b.is_bye:
                recipients.append(b)
            elif b.is_bye and not a.is_bye:
                recipients.append(a)
        return recipients


# -----------------------------------------------------------------------------
# Sizing
# -----------------------------------------------------------------------------

def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n. A lone competitor gets a draw of one."""
    if n <= 1:
        return 1
    return 2 ** math.ceil(math.log2(n))


def draw_size_for(competitor_count: int, configured_size: Optional[int] = None) -> int:
    return next_power_of_two(max(competitor_count, configured_size or 0))


# -----------------------------------------------------------------------------
# Seeding table
# -----------------------------------------------------------------------------

def bracket_fold_positions(n: int) -> List[int]:
    """Standard bracket-fold positions for *n* slots (n a power of two).

    Returns seed numbers in slot order. Consecutive pairs meet in round one
    when chalk holds, and seed k always meets seed n+1-k:
      4-slot  -> [1, 4, 2, 3]
      8-slot  -> [1, 8, 4, 5, 3, 6, 2, 7]
      16-slot -> [1, 16, 8, 9, 4, 13, 5, 12, 3, 14, 6, 11, 7, 10, 2, 15]
    """
    if n <= 2:
        return list(range(1, n + 1))

    half = bracket_fold_positions(n // 2)

    expanded: List[int] = []
    for s in half:
        expanded.append(s)
        expanded.append(n + 1 - s)

    mid = len(expanded) // 2
    top = expanded[:mid]
    bot = expanded[mid:]
    if len(bot) >= 4:
        bot = bot[:-4] + bot[-2:] + bot[-4:-2]

    return top + bot


# -----------------------------------------------------------------------------
# Placement
# -----------------------------------------------------------------------------

def _place_by_ranking(competitors: Sequence[Entrant], draw_size: int) -> List[DrawSlot]:
    count = len(competitors)
    slots = []
    for slot_number, seed in enumerate(bracket_fold_positions(draw_size), start=1):
        if seed <= count:
            slots.append(DrawSlot(slot=slot_number, seed=seed, athlete_id=competitors[seed - 1].athlete_id))
        else:
            slots.append(DrawSlot(slot=slot_number))
    return slots


def _place_randomly(competitors: Sequence[Entrant], draw_size: int, rng: random.Random) -> List[DrawSlot]:
    entries: List[Optional[int]] = list(range(1, len(competitors) + 1))
    entries.extend([None] * (draw_size - len(competitors)))
    rng.shuffle(entries)
    return [
        DrawSlot(slot=i, seed=seed, athlete_id=competitors[seed - 1].athlete_id if seed else None)
        for i, seed in enumerate(entries, start=1)
    ]


def _place_manually(
    competitors: Sequence[Entrant], draw_size: int, manual_order: Optional[Sequence[Optional[str]]]
) -> List[DrawSlot]:
    if manual_order is None:
        raise ValidationFailed("MANUAL seeding requires a slot placement", step="COMPOSE_BRACKET")
    if len(manual_order) != draw_size:
        raise ValidationFailed(
            f"MANUAL placement has {len(manual_order)} slots, draw size is {draw_size}", step="COMPOSE_BRACKET"
        )

    seed_by_athlete = {c.athlete_id: i for i, c in enumerate(competitors, start=1)}
    placed = [a for a in manual_order if a is not None]

    duplicates = sorted({a for a in placed if placed.count(a) > 1})
    if duplicates:
        raise ValidationFailed(f"MANUAL placement repeats competitors: {duplicates}", step="COMPOSE_BRACKET")
    unknown = sorted(set(placed) - set(seed_by_athlete))
    if unknown:
        raise ValidationFailed(f"MANUAL placement names unknown competitors: {unknown}", step="COMPOSE_BRACKET")
    missing = sorted(set(seed_by_athlete) - set(placed))
    if missing:
        raise ValidationFailed(f"MANUAL placement is missing competitors: {missing}", step="COMPOSE_BRACKET")

    return [
        DrawSlot(slot=i, seed=seed_by_athlete.get(a) if a else None, athlete_id=a)
        for i, a in enumerate(manual_order, start=1)
    ]


def compose_bracket(
    competitors: Sequence[Entrant],
    seeding_method: Union[str, SeedingMethod],
    configured_size: Optional[int] = None,
    manual_order: Optional[Sequence[Optional[str]]] = None,
    rng: Optional[random.Random] = None,
) -> ComposedBracket:
    """Build the first-round draw for one bracket.

    Args:
        competitors: ordered best-first; list index + 1 is the seed
        seeding_method: RANKING | SNAKE | MANUAL | RANDOM
        configured_size: bracket capacity from the formula
        manual_order: athlete id per slot (None = bye), MANUAL only
        rng: random source for RANDOM; a fresh unseeded one if omitted

    Raises:
        ValidationFailed: no competitors, duplicate competitors, or a
            malformed MANUAL placement
    """
    if not competitors:
        raise ValidationFailed("Cannot compose a bracket with no competitors", step="COMPOSE_BRACKET")

    ids = [c.athlete_id for c in competitors]
    if len(set(ids)) != len(ids):
        raise ValidationFailed("Bracket competitor list contains duplicates", step="COMPOSE_BRACKET")

    method = SeedingMethod(seeding_method)
    draw_size = draw_size_for(len(competitors), configured_size)

    if method in (SeedingMethod.RANKING, SeedingMethod.SNAKE):
        slots = _place_by_ranking(competitors, draw_size)
    elif method == SeedingMethod.RANDOM:
        slots = _place_randomly(competitors, draw_size, rng or random.Random())
    else:
        slots = _place_manually(competitors, draw_size, manual_order)

    logger.debug(
        "Composed %s bracket: draw=%d competitors=%d byes=%d",
        method.value,
        draw_size,
        len(competitors),
        draw_size - len(competitors),
    )
    return ComposedBracket(seeding_method=method, draw_size=draw_size, slots=slots)
