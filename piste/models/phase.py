from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON, String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

from piste.utils.clock import utc_now

if TYPE_CHECKING:
    from piste.models.bracket import DirectEliminationBracket
    from piste.models.competition import Competition
    from piste.models.poule import Poule


class PhaseType(str, Enum):
    POULE = "POULE"
    DIRECT_ELIMINATION = "DIRECT_ELIMINATION"
    CLASSIFICATION = "CLASSIFICATION"
    REPECHAGE = "REPECHAGE"


class PhaseStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class BracketType(str, Enum):
    MAIN = "MAIN"
    REPECHAGE = "REPECHAGE"
    CLASSIFICATION = "CLASSIFICATION"
    CONSOLATION = "CONSOLATION"


class SeedingMethod(str, Enum):
    RANKING = "RANKING"
    SNAKE = "SNAKE"
    MANUAL = "MANUAL"
    RANDOM = "RANDOM"


class Phase(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("competition_id", "sequence_order", name="uq_competition_phase_order"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    competition_id: int = Field(foreign_key="competition.id", index=True)
    name: str
    phase_type: PhaseType = Field(sa_column=Column(String, nullable=False))
    sequence_order: int
    status: PhaseStatus = Field(default=PhaseStatus.SCHEDULED, sa_column=Column(String, nullable=False))
    # Serialized PoulePhaseConfig / EliminationPhaseConfig (see services.formula_config)
    configuration: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utc_now)

    # Relationships
    competition: "Competition" = Relationship(back_populates="phases")
    bracket_configs: List["BracketConfiguration"] = Relationship(back_populates="phase")
    poules: List["Poule"] = Relationship(back_populates="phase")
    brackets: List["DirectEliminationBracket"] = Relationship(back_populates="phase")


class BracketConfiguration(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    phase_id: int = Field(foreign_key="phase.id", index=True)
    bracket_type: BracketType = Field(sa_column=Column(String, nullable=False))
    size: int
    seeding_method: SeedingMethod = Field(sa_column=Column(String, nullable=False))

    # Relationships
    phase: "Phase" = Relationship(back_populates="bracket_configs")
    brackets: List["DirectEliminationBracket"] = Relationship(back_populates="bracket_config")
