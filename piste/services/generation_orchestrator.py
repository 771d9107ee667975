"""
Generation Orchestrator - (re)generate every poule and bracket of a competition.

Steps (in order, one transaction):
0. Validate (caller role, competition exists, organization scope, status, version)
1. Clear existing poules, poule assignments and brackets of every phase
2. Compose poules for each POULE phase (pre-computed by the caller or composed here)
3. Compose one bracket per bracket configuration of every other phase
4. Apply caller phase-status updates
5. Move the competition to IN_PROGRESS and bump generation_version

Any failure rolls the whole transaction back; prior poules and brackets stay
exactly as they were. Concurrent generations for the same competition are not
locked against each other: the store serializes them (last commit wins). A
caller that passes expected_version gets its version bump as a conditional
UPDATE, so a generation committed after its read makes it fail with a 409.
"""

import logging
import random
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy import update
from sqlmodel import Session, select

from piste.auth import CallerIdentity
from piste.errors import NotFound, PisteError, StateConflict, ValidationFailed
from piste.models.bracket import DirectEliminationBracket
from piste.models.competition import Competition, CompetitionStatus
from piste.models.phase import BracketConfiguration, BracketType, Phase, PhaseStatus, PhaseType, SeedingMethod
from piste.models.poule import Poule, PouleAssignment
from piste.models.registration import Registration
from piste.services.bracket_composer import compose_bracket
from piste.services.formula_config import PoulePhaseConfig, list_phases, parse_phase_config
from piste.services.pool_composer import (
    ComposedPool,
    Entrant,
    PoolCompositionResult,
    Seat,
    SeparationRules,
    compose_pools,
    pool_count_for,
    sort_entrants,
    validate_pool_layout,
)
from piste.services.state_machine import transition_competition, transition_phase
from piste.utils.competition_guards import require_modifiable_competition, require_readable_competition
from piste.utils.wipe import wipe_generated_for_phases

logger = logging.getLogger(__name__)

# ============================================================================
# Request Models
# ============================================================================


class PhaseStatusUpdate(BaseModel):
    phase_id: int
    status: PhaseStatus


class SeatIn(BaseModel):
    athlete_id: str
    position: int
    seed_number: Optional[int] = None


class PouleIn(BaseModel):
    number: int
    athletes: List[SeatIn]


class PhasePoulesIn(BaseModel):
    """Poules the caller already composed for one POULE phase."""
    phase_id: int
    poules: List[PouleIn]


class EntrantIn(BaseModel):
    athlete_id: str
    seed: Optional[int] = None
    club: Optional[str] = None
    country: Optional[str] = None


class PhaseEntrantsIn(BaseModel):
    """Raw entrant list for one phase, replacing the registration-derived set."""
    phase_id: int
    entrants: List[EntrantIn]


class ManualPlacementIn(BaseModel):
    phase_id: int
    bracket_type: BracketType
    slots: List[Optional[str]]  # athlete id per slot, null = bye


class GenerateRequest(BaseModel):
    phase_statuses: List[PhaseStatusUpdate] = Field(default_factory=list)
    poules: List[PhasePoulesIn] = Field(default_factory=list)
    entrants: List[PhaseEntrantsIn] = Field(default_factory=list)
    manual_placements: List[ManualPlacementIn] = Field(default_factory=list)
    random_seed: Optional[int] = None
    expected_version: Optional[int] = None
    dry_run: bool = False


# ============================================================================
# Response Models
# ============================================================================


class GenerationResult:
    """Complete result of a generation run"""

    def __init__(self, competition_id: int, dry_run: bool = False):
        self.status = "success"
        self.competition_id = competition_id
        self.dry_run = dry_run
        self.competition_status: Optional[str] = None
        self.generation_version: Optional[int] = None
        self.poules: List[dict] = []
        self.brackets: List[dict] = []
        self.phases_updated = 0
        self.statistics: Dict[int, dict] = {}
        self.separation_violations: List[dict] = []

    def to_dict(self):
        return {
            "status": self.status,
            "competition_id": self.competition_id,
            "dry_run": self.dry_run,
            "competition_status": self.competition_status,
            "generation_version": self.generation_version,
            "poules": self.poules,
            "brackets": self.brackets,
            "phases_updated": self.phases_updated,
            "statistics": {str(k): v for k, v in self.statistics.items()},
            "separation_violations": self.separation_violations,
        }


# ============================================================================
# Helpers
# ============================================================================


def registered_entrants(session: Session, competition_id: int) -> List[Entrant]:
    """Present registrations, best seed first, unseeded last (registration order)."""
    registrations = session.exec(
        select(Registration)
        .where(Registration.competition_id == competition_id, Registration.is_present == True)  # noqa: E712
        .order_by(Registration.id)
    ).all()
    return sort_entrants(
        [Entrant(athlete_id=r.athlete_id, seed=r.seed_rank, club=r.club, country=r.country) for r in registrations]
    )


def _index_by_phase(items: Sequence, phases_by_id: Dict[int, Phase], label: str) -> Dict[int, object]:
    indexed: Dict[int, object] = {}
    for item in items:
        if item.phase_id not in phases_by_id:
            raise NotFound(f"Phase {item.phase_id} in {label} does not belong to this competition", step="VALIDATE")
        if item.phase_id in indexed:
            raise ValidationFailed(f"Phase {item.phase_id} appears more than once in {label}", step="VALIDATE")
        indexed[item.phase_id] = item
    return indexed


def _index_manual_placements(
    placements: Sequence["ManualPlacementIn"], phases_by_id: Dict[int, Phase]
) -> Dict[tuple, "ManualPlacementIn"]:
    """Key placements by (phase_id, bracket_type); each must target a MANUAL bracket."""
    indexed: Dict[tuple, ManualPlacementIn] = {}
    for placement in placements:
        phase = phases_by_id.get(placement.phase_id)
        if phase is None:
            raise NotFound(f"Phase {placement.phase_id} does not belong to this competition", step="VALIDATE")

        bracket_type = BracketType(placement.bracket_type)
        key = (phase.id, bracket_type)
        if key in indexed:
            raise ValidationFailed(
                f"Manual placement for phase {phase.id} {bracket_type.value} bracket given more than once",
                step="VALIDATE",
            )

        config = next((c for c in phase.bracket_configs if BracketType(c.bracket_type) == bracket_type), None)
        if config is None:
            raise ValidationFailed(
                f"Phase {phase.id} ({phase.name}) has no {bracket_type.value} bracket", step="VALIDATE"
            )
        if SeedingMethod(config.seeding_method) != SeedingMethod.MANUAL:
            raise ValidationFailed(
                f"Phase {phase.id} {bracket_type.value} bracket is seeded by {config.seeding_method}, "
                f"manual placement is only accepted for MANUAL brackets",
                step="VALIDATE",
            )
        indexed[key] = placement
    return indexed


def _precomputed_pools(phase: Phase, supplied: PhasePoulesIn) -> PoolCompositionResult:
    pools = [
        ComposedPool(
            number=p.number,
            seats=[
                Seat(athlete_id=a.athlete_id, position=a.position, seed_number=a.seed_number)
                for a in sorted(p.athletes, key=lambda a: a.position)
            ],
        )
        for p in sorted(supplied.poules, key=lambda p: p.number)
    ]
    if not pools:
        raise ValidationFailed(f"No poules supplied for phase {phase.id}", step="VALIDATE_POULES")
    validate_pool_layout(pools)
    return PoolCompositionResult(pools=pools)


def _compose_phase_pools(phase: Phase, config: PoulePhaseConfig, entrants: List[Entrant]) -> PoolCompositionResult:
    pool_count = config.pool_count or pool_count_for(len(entrants), config.target_pool_size)
    separation = SeparationRules(
        separate_clubs=config.separate_clubs,
        max_same_club=config.max_same_club,
        separate_countries=config.separate_countries,
        max_same_country=config.max_same_country,
        strict=config.strict_separation,
    )
    try:
        return compose_pools(entrants, pool_count, separation)
    except ValidationFailed as e:
        raise ValidationFailed(f"Phase {phase.id} ({phase.name}): {e.message}", step=e.step)


def _bracket_draw_order(configs: Sequence[BracketConfiguration]) -> List[BracketConfiguration]:
    """MAIN draws first, the rest in configuration order."""
    return sorted(configs, key=lambda c: (c.bracket_type != BracketType.MAIN, c.id))


def _poule_to_dict(poule: Poule, assignments: Sequence[PouleAssignment]) -> dict:
    return {
        "id": poule.id,
        "phase_id": poule.phase_id,
        "number": poule.number,
        "status": poule.status,
        "size": len(assignments),
        "assignments": [
            {"athlete_id": a.athlete_id, "position": a.position, "seed_number": a.seed_number}
            for a in sorted(assignments, key=lambda a: a.position)
        ],
    }


def _bracket_to_dict(bracket: DirectEliminationBracket) -> dict:
    return {
        "id": bracket.id,
        "phase_id": bracket.phase_id,
        "bracket_config_id": bracket.bracket_config_id,
        "name": bracket.name,
        "bracket_type": bracket.bracket_type,
        "seeding_method": bracket.seeding_method,
        "draw_size": bracket.draw_size,
        "competitor_count": bracket.competitor_count,
        "bye_count": bracket.bye_count,
        "slots": bracket.slots,
    }


# ============================================================================
# Main Orchestrator Function
# ============================================================================


def generate_competition(
    session: Session,
    competition_id: int,
    request: GenerateRequest,
    caller: CallerIdentity,
    rng: Optional[random.Random] = None,
) -> GenerationResult:
    """
    Regenerate all poules and brackets of a competition.

    Args:
        session: Database session
        competition_id: Competition ID
        request: Phase status updates, optional pre-computed poules / entrant
            lists / manual placements, random seed, expected version, dry run
        caller: Resolved caller identity
        rng: Random source for RANDOM brackets (defaults to one seeded from
            request.random_seed)

    Returns:
        GenerationResult (ids are provisional when dry_run)

    Raises:
        AuthorizationDenied, NotFound, StateConflict, ValidationFailed
    """
    result = GenerationResult(competition_id, dry_run=request.dry_run)
    failed_step = "VALIDATE"

    try:
        # ====================================================================
        # Step 0: Validate
        # ====================================================================
        competition, _ = require_modifiable_competition(session, competition_id, caller)

        if request.expected_version is not None and request.expected_version != competition.generation_version:
            raise StateConflict(
                f"GENERATION_VERSION_MISMATCH: expected {request.expected_version}, "
                f"competition is at {competition.generation_version}",
                step=failed_step,
            )

        phases = list_phases(session, competition_id)
        phases_by_id = {p.id: p for p in phases}
        supplied_poules = _index_by_phase(request.poules, phases_by_id, "poules")
        for phase_id in supplied_poules:
            if phases_by_id[phase_id].phase_type != PhaseType.POULE:
                raise ValidationFailed(
                    f"Phase {phase_id} is {phases_by_id[phase_id].phase_type}, poules can only be supplied for POULE phases",
                    step="VALIDATE_POULES",
                )
        supplied_entrants = _index_by_phase(request.entrants, phases_by_id, "entrants")
        for phase_id, supplied in supplied_entrants.items():
            ids = [e.athlete_id for e in supplied.entrants]
            if len(set(ids)) != len(ids):
                duplicates = sorted({a for a in ids if ids.count(a) > 1})
                raise ValidationFailed(
                    f"Entrants for phase {phase_id} repeat athletes: {duplicates}", step=failed_step
                )

        manual = _index_manual_placements(request.manual_placements, phases_by_id)

        status_targets = []
        for status_update in request.phase_statuses:
            if status_update.phase_id not in phases_by_id:
                raise NotFound(f"Phase {status_update.phase_id} does not belong to this competition", step=failed_step)
            status_targets.append((phases_by_id[status_update.phase_id], status_update.status))

        rng = rng or random.Random(request.random_seed)

        # ====================================================================
        # Step 1: Clear existing generated data
        # ====================================================================
        failed_step = "CLEAR_EXISTING"
        wipe_generated_for_phases(session, list(phases_by_id))

        # ====================================================================
        # Steps 2 + 3: Compose phases in sequence order
        # ====================================================================
        carried = registered_entrants(session, competition_id)

        for phase in phases:
            config = parse_phase_config(phase.phase_type, phase.configuration)
            if phase.id in supplied_entrants:
                entrants = sort_entrants(
                    [Entrant(athlete_id=e.athlete_id, seed=e.seed, club=e.club, country=e.country)
                     for e in supplied_entrants[phase.id].entrants]
                )
            else:
                entrants = carried

            if phase.phase_type == PhaseType.POULE:
                failed_step = "COMPOSE_POULES"
                if phase.id in supplied_poules:
                    composition = _precomputed_pools(phase, supplied_poules[phase.id])
                    entrants = sort_entrants(
                        [Entrant(athlete_id=s.athlete_id, seed=s.seed_number)
                         for p in composition.pools for s in p.seats]
                    )
                else:
                    composition = _compose_phase_pools(phase, config, entrants)

                for pool in composition.pools:
                    poule = Poule(phase_id=phase.id, number=pool.number, status=PhaseStatus.SCHEDULED)
                    session.add(poule)
                    session.flush()
                    assignments = []
                    for seat in pool.seats:
                        assignment = PouleAssignment(
                            poule_id=poule.id,
                            athlete_id=seat.athlete_id,
                            position=seat.position,
                            seed_number=seat.seed_number,
                        )
                        session.add(assignment)
                        assignments.append(assignment)
                    session.flush()
                    result.poules.append(_poule_to_dict(poule, assignments))

                result.statistics[phase.id] = composition.statistics
                result.separation_violations.extend(
                    {
                        "phase_id": phase.id,
                        "pool_number": v.pool_number,
                        "athlete_id": v.athlete_id,
                        "rule": v.rule,
                        "value": v.value,
                    }
                    for v in composition.violations
                )
            else:
                failed_step = "COMPOSE_BRACKETS"
                drawn = set()
                for bracket_config in _bracket_draw_order(phase.bracket_configs):
                    bracket_type = BracketType(bracket_config.bracket_type)
                    competitors = [e for e in entrants if e.athlete_id not in drawn][: bracket_config.size]
                    placement = manual.get((phase.id, bracket_type))
                    try:
                        composed = compose_bracket(
                            competitors,
                            bracket_config.seeding_method,
                            configured_size=bracket_config.size,
                            manual_order=placement.slots if placement else None,
                            rng=rng,
                        )
                    except ValidationFailed as e:
                        raise ValidationFailed(
                            f"Phase {phase.id} ({phase.name}) {bracket_type.value} bracket: {e.message}",
                            step=failed_step,
                        )
                    drawn.update(c.athlete_id for c in competitors)

                    bracket = DirectEliminationBracket(
                        phase_id=phase.id,
                        bracket_config_id=bracket_config.id,
                        name=f"{phase.name} - {bracket_type.value}",
                        bracket_type=bracket_type,
                        seeding_method=composed.seeding_method,
                        draw_size=composed.draw_size,
                        competitor_count=composed.competitor_count,
                        bye_count=composed.bye_count,
                        slots=[s.to_dict() for s in composed.slots],
                    )
                    session.add(bracket)
                    session.flush()
                    result.brackets.append(_bracket_to_dict(bracket))

            carried = entrants[: config.qualifier_count(len(entrants))]

        # ====================================================================
        # Step 4: Phase status updates
        # ====================================================================
        failed_step = "UPDATE_PHASES"
        for phase, target in status_targets:
            phase.status = transition_phase(phase.status, target)
            session.add(phase)
        result.phases_updated = len(status_targets)

        # ====================================================================
        # Step 5: Competition status + version
        # ====================================================================
        failed_step = "UPDATE_COMPETITION"
        new_status = transition_competition(competition.status, CompetitionStatus.IN_PROGRESS)
        statement = update(Competition).where(Competition.id == competition_id)
        if request.expected_version is not None:
            # Checked by the store so a generation committed after our read is caught
            statement = statement.where(Competition.generation_version == request.expected_version)
        statement = statement.values(
            status=new_status.value,
            generation_version=Competition.generation_version + 1,
        ).execution_options(synchronize_session=False)
        if session.exec(statement).rowcount != 1:
            raise StateConflict(
                f"GENERATION_VERSION_MISMATCH: competition {competition_id} was regenerated concurrently "
                f"(expected version {request.expected_version})",
                step=failed_step,
            )
        session.refresh(competition)

        result.competition_status = CompetitionStatus(competition.status).value
        result.generation_version = competition.generation_version

        if request.dry_run:
            session.rollback()
            logger.info("Dry-run generation for competition %s composed, rolled back", competition_id)
            return result

        session.commit()
        logger.info(
            "Generated competition %s (version %s): %d poule(s), %d bracket(s), %d phase(s) updated",
            competition_id,
            result.generation_version,
            len(result.poules),
            len(result.brackets),
            result.phases_updated,
        )
        return result

    except PisteError as e:
        session.rollback()
        if e.step is None:
            e.step = failed_step
        logger.warning("Generation for competition %s failed at %s: %s", competition_id, e.step, e.message)
        raise
    except Exception:
        session.rollback()
        logger.exception("Generation for competition %s failed at %s, transaction rolled back", competition_id, failed_step)
        raise


# ============================================================================
# Read side
# ============================================================================


def list_generated_poules(session: Session, competition_id: int, caller: CallerIdentity) -> List[dict]:
    require_readable_competition(session, competition_id, caller)
    poules = []
    for phase in list_phases(session, competition_id):
        for poule in sorted(phase.poules, key=lambda p: p.number):
            poules.append(_poule_to_dict(poule, poule.assignments))
    return poules


def list_generated_brackets(session: Session, competition_id: int, caller: CallerIdentity) -> List[dict]:
    require_readable_competition(session, competition_id, caller)
    brackets = []
    for phase in list_phases(session, competition_id):
        for bracket in sorted(phase.brackets, key=lambda b: b.id):
            brackets.append(_bracket_to_dict(bracket))
    return brackets
