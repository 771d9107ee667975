from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel

from piste.utils.clock import utc_now


class FormulaPreset(SQLModel, table=True):
    """A reusable formula owned by one organization.

    Built-in presets are not stored; see services.formula_presets.
    """

    __table_args__ = (SAUniqueConstraint("organization_id", "name", name="uq_organization_preset_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: str = Field(index=True)
    name: str
    description: Optional[str] = None
    weapon: Optional[str] = None
    category: Optional[str] = None
    # List of PhaseDefinition dicts, the same shape POST /phases accepts
    phases: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_public: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})
