"""
Pool Composer - serpentine distribution of seeded entrants into poules.

Seeds flow in a snake pattern across P pools:
  row 0: pool 1, 2, ..., P
  row 1: pool P, ..., 2, 1
  row 2: pool 1, 2, ..., P
so the strongest fencer of each poule is as balanced as the seeding allows and
pool sizes never differ by more than one.

Pure functions only; nothing here touches the database.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from piste.errors import ValidationFailed


@dataclass
class Entrant:
    """Lightweight struct for composer input."""
    athlete_id: str
    seed: Optional[int] = None  # 1 = strongest; None sorts last
    club: Optional[str] = None
    country: Optional[str] = None


@dataclass
class Seat:
    athlete_id: str
    position: int  # 1-based seat inside the poule
    seed_number: Optional[int] = None  # 1-based rank in the sorted entrant list
    club: Optional[str] = None
    country: Optional[str] = None


@dataclass
class ComposedPool:
    number: int
    seats: List[Seat] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.seats)

    def count_club(self, club: str) -> int:
        return sum(1 for s in self.seats if s.club == club)

    def count_country(self, country: str) -> int:
        return sum(1 for s in self.seats if s.country == country)


@dataclass
class SeparationRules:
    separate_clubs: bool = False
    max_same_club: int = 1
    separate_countries: bool = False
    max_same_country: int = 1
    strict: bool = False

    @property
    def active(self) -> bool:
        return self.separate_clubs or self.separate_countries

    def broken_by(self, pool: ComposedPool, entrant: Entrant) -> List[Tuple[str, str]]:
        """(rule, value) pairs that seating entrant in pool would break."""
        broken = []
        if self.separate_clubs and entrant.club and pool.count_club(entrant.club) >= self.max_same_club:
            broken.append(("club", entrant.club))
        if (
            self.separate_countries
            and entrant.country
            and pool.count_country(entrant.country) >= self.max_same_country
        ):
            broken.append(("country", entrant.country))
        return broken


@dataclass
class SeparationViolation:
    pool_number: int
    athlete_id: str
    rule: str  # "club" | "country"
    value: str


@dataclass
class PoolCompositionResult:
    pools: List[ComposedPool]
    violations: List[SeparationViolation] = field(default_factory=list)

    @property
    def statistics(self) -> dict:
        sizes = [p.size for p in self.pools]
        distribution: Dict[int, int] = {}
        for size in sizes:
            distribution[size] = distribution.get(size, 0) + 1
        return {
            "total_poules": len(self.pools),
            "average_size": (sum(sizes) / len(sizes)) if sizes else 0.0,
            "size_distribution": distribution,
            "separation_violations": len(self.violations),
        }


# -----------------------------------------------------------------------------
# Sizing
# -----------------------------------------------------------------------------

def pool_count_for(entrant_count: int, target_size: int) -> int:
    """P = ceil(entrants / target size). Zero entrants gives zero pools."""
    if target_size < 1:
        raise ValidationFailed(f"Target poule size must be >= 1, got {target_size}", step="POOL_SIZING")
    return math.ceil(entrant_count / target_size)


def serpentine_sizes(entrant_count: int, pool_count: int) -> List[int]:
    """Pool sizes plain serpentine seeding produces for this many entrants."""
    sizes = [0] * pool_count
    for rank in range(entrant_count):
        sizes[snake_pool_index(rank, pool_count)] += 1
    return sizes


def snake_pool_index(rank: int, pool_count: int) -> int:
    """0-based pool index for 0-based seed rank."""
    row, col = divmod(rank, pool_count)
    if row % 2 == 0:
        return col
    return (pool_count - 1) - col


# -----------------------------------------------------------------------------
# Ordering
# -----------------------------------------------------------------------------

def sort_entrants(entrants: Sequence[Entrant]) -> List[Entrant]:
    """Seed ascending, unseeded last. sorted() is stable so ties keep input order."""
    return sorted(entrants, key=lambda e: (e.seed is None, e.seed if e.seed is not None else 0))


def _preference_order(preferred: int, rank: int, pool_count: int) -> List[int]:
    """Preferred pool first, then the rest in the direction the current row travels."""
    row = rank // pool_count
    step = 1 if row % 2 == 0 else -1
    return [(preferred + step * k) % pool_count for k in range(pool_count)]


# -----------------------------------------------------------------------------
# Composition
# -----------------------------------------------------------------------------

def compose_pools(
    entrants: Sequence[Entrant],
    pool_count: int,
    separation: Optional[SeparationRules] = None,
) -> PoolCompositionResult:
    """Distribute entrants into pool_count poules using serpentine seeding.

    With club or country separation enabled, an entrant whose preferred poule
    already holds the maximum number of fencers from the same club (or
    country) moves to the next poule in row order that has a free seat and
    room for them. Capacities stay the serpentine sizes, so balance is
    unchanged.

    Raises:
        ValidationFailed: no entrants, pool_count < 1, more pools than
            entrants, an athlete listed twice, or strict separation that
            cannot be satisfied.
    """
    n = len(entrants)
    if pool_count < 1:
        raise ValidationFailed(
            f"Cannot compose poules: pool count is {pool_count} for {n} entrants", step="COMPOSE_POULES"
        )
    if n < pool_count:
        raise ValidationFailed(
            f"Cannot compose {pool_count} poules from {n} entrants (need at least one per poule)",
            step="COMPOSE_POULES",
        )

    ids = [e.athlete_id for e in entrants]
    if len(set(ids)) != n:
        duplicates = sorted({a for a in ids if ids.count(a) > 1})
        raise ValidationFailed(f"Entrant list repeats athletes: {duplicates}", step="COMPOSE_POULES")

    ordered = sort_entrants(entrants)
    capacities = serpentine_sizes(n, pool_count)
    pools = [ComposedPool(number=i + 1) for i in range(pool_count)]
    violations: List[SeparationViolation] = []
    rules = separation if separation and separation.active else None

    for rank, entrant in enumerate(ordered):
        preferred = snake_pool_index(rank, pool_count)
        target = preferred

        if rules is not None:
            # A displaced fencer may have taken this row's seat, so re-check capacity
            candidates = [
                idx for idx in _preference_order(preferred, rank, pool_count)
                if pools[idx].size < capacities[idx]
            ]
            allowed = [idx for idx in candidates if not rules.broken_by(pools[idx], entrant)]
            if allowed:
                target = allowed[0]
            elif rules.strict:
                raise ValidationFailed(
                    f"Cannot assign athlete {entrant.athlete_id} to any poule while keeping "
                    f"separation rules (club '{entrant.club}', country '{entrant.country}')",
                    step="COMPOSE_POULES",
                )
            else:
                target = candidates[0]
                violations.extend(
                    SeparationViolation(pool_number=target + 1, athlete_id=entrant.athlete_id, rule=rule, value=value)
                    for rule, value in rules.broken_by(pools[target], entrant)
                )

        pool = pools[target]
        pool.seats.append(
            Seat(
                athlete_id=entrant.athlete_id,
                position=pool.size + 1,
                seed_number=rank + 1,
                club=entrant.club,
                country=entrant.country,
            )
        )

    return PoolCompositionResult(pools=pools, violations=violations)


def validate_pool_layout(pools: Sequence[ComposedPool]) -> None:
    """Check caller-supplied poules: unique numbers, each athlete once, seats 1..size."""
    seen_numbers = set()
    seen_athletes = set()
    for pool in pools:
        if pool.number < 1 or pool.number in seen_numbers:
            raise ValidationFailed(f"Poule number {pool.number} is invalid or duplicated", step="VALIDATE_POULES")
        seen_numbers.add(pool.number)

        if not pool.seats:
            raise ValidationFailed(f"Poule {pool.number} has no athletes", step="VALIDATE_POULES")

        positions = sorted(s.position for s in pool.seats)
        if positions != list(range(1, len(positions) + 1)):
            raise ValidationFailed(
                f"Poule {pool.number} positions must be 1..{len(positions)}, got {positions}",
                step="VALIDATE_POULES",
            )

        for seat in pool.seats:
            if seat.athlete_id in seen_athletes:
                raise ValidationFailed(
                    f"Athlete {seat.athlete_id} assigned to more than one poule seat", step="VALIDATE_POULES"
                )
            seen_athletes.add(seat.athlete_id)
