from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

from piste.utils.clock import utc_now

if TYPE_CHECKING:
    from piste.models.competition import Competition


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    organization_id: str = Field(index=True)
    is_public: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)

    # Relationships
    competitions: List["Competition"] = Relationship(back_populates="tournament")
