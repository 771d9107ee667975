"""
Formula Configuration - typed phase configuration and the configure operation.

Each phase type has its own configuration model; unknown keys are rejected so a
stored formula only ever holds parameters the engine understands:
  POULE                                        -> PoulePhaseConfig
  DIRECT_ELIMINATION / CLASSIFICATION / REPECHAGE -> EliminationPhaseConfig

configure_formula() replaces the competition's whole formula in one
transaction. Replacing a formula also removes everything generated from the
previous one.
"""

import logging
import math
import os
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from sqlmodel import Session, select

from piste.auth import CallerIdentity
from piste.errors import PisteError, ValidationFailed
from piste.models.phase import BracketConfiguration, BracketType, Phase, PhaseType, SeedingMethod
from piste.utils.competition_guards import require_modifiable_competition, require_readable_competition
from piste.utils.wipe import wipe_formula

logger = logging.getLogger(__name__)

DEFAULT_POULE_SIZE = int(os.getenv("DEFAULT_POULE_SIZE", "7"))
MIN_BRACKET_SIZE = 2


# =============================================================================
# Typed phase configuration
# =============================================================================


class _QualificationConfig(BaseModel):
    """How many of a phase's entrants go through to the next phase."""

    model_config = ConfigDict(extra="forbid")

    qualification_quota: Optional[int] = Field(default=None, ge=1)
    qualification_percentage: Optional[float] = Field(default=None, gt=0, le=100)

    @model_validator(mode="after")
    def check_single_rule(self):
        if self.qualification_quota is not None and self.qualification_percentage is not None:
            raise ValueError("set qualification_quota or qualification_percentage, not both")
        return self

    def qualifier_count(self, entrant_count: int) -> int:
        if self.qualification_quota is not None:
            return min(self.qualification_quota, entrant_count)
        if self.qualification_percentage is not None:
            return math.floor(entrant_count * self.qualification_percentage / 100)
        return entrant_count


class PoulePhaseConfig(_QualificationConfig):
    target_pool_size: int = Field(default=DEFAULT_POULE_SIZE, ge=2)
    pool_count: Optional[int] = Field(default=None, ge=1)  # overrides target_pool_size
    separate_clubs: bool = False
    max_same_club: int = Field(default=1, ge=1)
    separate_countries: bool = False
    max_same_country: int = Field(default=1, ge=1)
    strict_separation: bool = False


class EliminationPhaseConfig(_QualificationConfig):
    third_place_bout: bool = False


PhaseConfig = Union[PoulePhaseConfig, EliminationPhaseConfig]

PHASE_CONFIG_TYPES = {
    PhaseType.POULE: PoulePhaseConfig,
    PhaseType.DIRECT_ELIMINATION: EliminationPhaseConfig,
    PhaseType.CLASSIFICATION: EliminationPhaseConfig,
    PhaseType.REPECHAGE: EliminationPhaseConfig,
}


def parse_phase_config(phase_type: Union[str, PhaseType], raw: Optional[Dict[str, Any]]) -> PhaseConfig:
    """Turn a stored/submitted configuration blob into the typed config for its phase."""
    config_type = PHASE_CONFIG_TYPES[PhaseType(phase_type)]
    try:
        return config_type.model_validate(raw or {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'configuration'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationFailed(f"Invalid {PhaseType(phase_type).value} configuration: {problems}")


# =============================================================================
# Formula input
# =============================================================================


class BracketDefinition(BaseModel):
    bracket_type: BracketType
    size: int
    seeding_method: SeedingMethod


class PhaseDefinition(BaseModel):
    name: str
    phase_type: PhaseType
    sequence_order: int
    configuration: Optional[Dict[str, Any]] = None
    brackets: List[BracketDefinition] = Field(default_factory=list)


def validate_formula(phases: Sequence[PhaseDefinition]) -> List[PhaseConfig]:
    """Validate a whole formula and return the typed config of each phase.

    Rules: at least one phase; non-empty names; sequence_order >= 1 and
    strictly increasing in submission order; bracket size >= 2 and at most one
    bracket per type; configuration valid for the phase type.
    """
    if not phases:
        raise ValidationFailed("A formula needs at least one phase", step="VALIDATE_FORMULA")

    configs: List[PhaseConfig] = []
    previous_order: Optional[int] = None
    seen_orders = set()

    for index, phase in enumerate(phases):
        label = f"Phase {index + 1}"
        if not phase.name or not phase.name.strip():
            raise ValidationFailed(f"{label}: name cannot be empty", step="VALIDATE_FORMULA")

        if phase.sequence_order in seen_orders:
            raise ValidationFailed(
                f"{label}: duplicate sequence_order {phase.sequence_order}", step="VALIDATE_FORMULA"
            )
        if phase.sequence_order < 1:
            raise ValidationFailed(f"{label}: sequence_order must be >= 1", step="VALIDATE_FORMULA")
        if previous_order is not None and phase.sequence_order <= previous_order:
            raise ValidationFailed(
                f"{label}: sequence_order {phase.sequence_order} must be greater than {previous_order}",
                step="VALIDATE_FORMULA",
            )
        seen_orders.add(phase.sequence_order)
        previous_order = phase.sequence_order

        seen_types = set()
        for bracket in phase.brackets:
            if bracket.bracket_type in seen_types:
                raise ValidationFailed(
                    f"{label}: bracket type {bracket.bracket_type.value} appears more than once",
                    step="VALIDATE_FORMULA",
                )
            seen_types.add(bracket.bracket_type)
            if bracket.size < MIN_BRACKET_SIZE:
                raise ValidationFailed(
                    f"{label}: {bracket.bracket_type.value} bracket size must be >= {MIN_BRACKET_SIZE}, "
                    f"got {bracket.size}",
                    step="VALIDATE_FORMULA",
                )

        try:
            configs.append(parse_phase_config(phase.phase_type, phase.configuration))
        except ValidationFailed as e:
            raise ValidationFailed(f"{label}: {e.message}", step="VALIDATE_FORMULA")

    return configs


# =============================================================================
# Operations
# =============================================================================


def configure_formula(
    session: Session,
    competition_id: int,
    phases: Sequence[PhaseDefinition],
    caller: CallerIdentity,
) -> List[Phase]:
    """
    Replace the competition's formula.

    Deletes every existing phase (with bracket configurations and generated
    poules/brackets) and inserts the submitted phases, all in one commit.

    Raises:
        AuthorizationDenied, NotFound, StateConflict: access / lifecycle guards
        ValidationFailed: malformed formula
    """
    require_modifiable_competition(session, competition_id, caller, step="VALIDATE_FORMULA")
    configs = validate_formula(phases)

    try:
        removed = wipe_formula(session, competition_id)

        created: List[Phase] = []
        for definition, config in zip(phases, configs):
            phase = Phase(
                competition_id=competition_id,
                name=definition.name.strip(),
                phase_type=definition.phase_type,
                sequence_order=definition.sequence_order,
                configuration=config.model_dump(),
            )
            session.add(phase)
            session.flush()

            for bracket in definition.brackets:
                session.add(
                    BracketConfiguration(
                        phase_id=phase.id,
                        bracket_type=bracket.bracket_type,
                        size=bracket.size,
                        seeding_method=bracket.seeding_method,
                    )
                )
            created.append(phase)

        session.commit()
    except PisteError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception("Saving formula for competition %s failed, transaction rolled back", competition_id)
        raise

    for phase in created:
        session.refresh(phase)

    logger.info(
        "Formula saved for competition %s: %d phase(s) replaced by %d", competition_id, removed, len(created)
    )
    return created


def list_phases(session: Session, competition_id: int) -> List[Phase]:
    return list(
        session.exec(
            select(Phase).where(Phase.competition_id == competition_id).order_by(Phase.sequence_order)
        ).all()
    )


def get_formula(session: Session, competition_id: int, caller: CallerIdentity) -> List[Phase]:
    """Phases in sequence order; bracket configs reachable via phase.bracket_configs."""
    require_readable_competition(session, competition_id, caller)
    return list_phases(session, competition_id)
