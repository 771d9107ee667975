from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

from piste.models.phase import PhaseStatus

if TYPE_CHECKING:
    from piste.models.phase import Phase


class Poule(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("phase_id", "number", name="uq_phase_poule_number"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    phase_id: int = Field(foreign_key="phase.id", index=True)
    number: int  # 1-based within the phase
    status: PhaseStatus = Field(default=PhaseStatus.SCHEDULED, sa_column=Column(String, nullable=False))

    # Relationships
    phase: "Phase" = Relationship(back_populates="poules")
    assignments: List["PouleAssignment"] = Relationship(back_populates="poule")


class PouleAssignment(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("poule_id", "position", name="uq_poule_position"),
        SAUniqueConstraint("poule_id", "athlete_id", name="uq_poule_athlete"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    poule_id: int = Field(foreign_key="poule.id", index=True)
    athlete_id: str
    position: int  # 1-based seat, drives round-robin bout order
    seed_number: Optional[int] = Field(default=None)

    # Relationships
    poule: "Poule" = Relationship(back_populates="assignments")
