from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON, String
from sqlmodel import Column, Field, Relationship, SQLModel

from piste.models.phase import BracketType, SeedingMethod
from piste.utils.clock import utc_now

if TYPE_CHECKING:
    from piste.models.phase import BracketConfiguration, Phase


class DirectEliminationBracket(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    phase_id: int = Field(foreign_key="phase.id", index=True)
    bracket_config_id: int = Field(foreign_key="bracketconfiguration.id")
    name: str
    bracket_type: BracketType = Field(sa_column=Column(String, nullable=False))
    seeding_method: SeedingMethod = Field(sa_column=Column(String, nullable=False))
    draw_size: int  # always a power of two
    competitor_count: int
    bye_count: int
    # [{"slot": 1, "seed": 1, "athlete_id": "a1", "is_bye": false}, ...]
    slots: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utc_now)

    # Relationships
    phase: "Phase" = Relationship(back_populates="brackets")
    bracket_config: "BracketConfiguration" = Relationship(back_populates="brackets")
