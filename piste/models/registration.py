from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from piste.utils.clock import utc_now

if TYPE_CHECKING:
    from piste.models.competition import Competition


class Registration(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("competition_id", "athlete_id", name="uq_competition_athlete"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    competition_id: int = Field(foreign_key="competition.id", index=True)
    athlete_id: str
    seed_rank: Optional[int] = Field(default=None)  # 1 = strongest; None = unseeded
    club: Optional[str] = None
    country: Optional[str] = None
    is_present: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)

    # Relationships
    competition: "Competition" = Relationship(back_populates="registrations")
