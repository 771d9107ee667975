from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String
from sqlmodel import Column, Field, Relationship, SQLModel

from piste.utils.clock import utc_now

if TYPE_CHECKING:
    from piste.models.phase import Phase
    from piste.models.registration import Registration
    from piste.models.tournament import Tournament


WEAPONS = ("EPEE", "FOIL", "SABRE")


class CompetitionStatus(str, Enum):
    DRAFT = "DRAFT"
    REGISTRATION_OPEN = "REGISTRATION_OPEN"
    REGISTRATION_CLOSED = "REGISTRATION_CLOSED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Competition(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    weapon: str  # "EPEE" | "FOIL" | "SABRE"
    category: str
    status: CompetitionStatus = Field(default=CompetitionStatus.DRAFT, sa_column=Column(String, nullable=False))
    # Bumped by every committed generation; compared against expected_version on generate
    generation_version: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="competitions")
    phases: List["Phase"] = Relationship(back_populates="competition")
    registrations: List["Registration"] = Relationship(back_populates="competition")
