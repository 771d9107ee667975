from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlmodel import Session

from piste.auth import CallerIdentity, get_caller
from piste.database import get_session
from piste.models.phase import BracketType, Phase, PhaseStatus, PhaseType, SeedingMethod
from piste.services.formula_config import PhaseDefinition, configure_formula, get_formula
from piste.services.formula_presets import apply_preset

router = APIRouter()


class FormulaRequest(BaseModel):
    phases: List[PhaseDefinition]

    @field_validator("phases")
    @classmethod
    def validate_phases(cls, v):
        if not v:
            raise ValueError("phases cannot be empty")
        return v


class BracketConfigResponse(BaseModel):
    id: int
    bracket_type: BracketType
    size: int
    seeding_method: SeedingMethod

    class Config:
        from_attributes = True


class PhaseResponse(BaseModel):
    id: int
    competition_id: int
    name: str
    phase_type: PhaseType
    sequence_order: int
    status: PhaseStatus
    configuration: Dict[str, Any]
    bracket_configs: List[BracketConfigResponse] = []

    class Config:
        from_attributes = True


def _phase_response(phase: Phase) -> PhaseResponse:
    return PhaseResponse(
        id=phase.id,
        competition_id=phase.competition_id,
        name=phase.name,
        phase_type=phase.phase_type,
        sequence_order=phase.sequence_order,
        status=phase.status,
        configuration=phase.configuration,
        bracket_configs=[BracketConfigResponse.model_validate(c) for c in sorted(phase.bracket_configs, key=lambda c: c.id)],
    )


@router.post("/competitions/{competition_id}/phases", status_code=201)
def save_formula(
    competition_id: int,
    formula: FormulaRequest,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Replace the tournament formula (phases + bracket configurations)"""
    phases = configure_formula(session, competition_id, formula.phases, caller)
    return {
        "success": True,
        "phases": [_phase_response(p) for p in phases],
        "message": "Tournament formula saved successfully",
    }


@router.get("/competitions/{competition_id}/phases")
def read_formula(
    competition_id: int,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Get the phase configuration, in sequence order"""
    phases = get_formula(session, competition_id, caller)
    return {"phases": [_phase_response(p) for p in phases]}


class ApplyPresetRequest(BaseModel):
    preset_id: str
    athlete_count: Optional[int] = None  # defaults to present registrations

    @field_validator("athlete_count")
    @classmethod
    def validate_athlete_count(cls, v):
        if v is not None and v < 0:
            raise ValueError("athlete_count must be >= 0")
        return v


@router.post("/competitions/{competition_id}/phases/preset", status_code=201)
def save_formula_from_preset(
    competition_id: int,
    request: ApplyPresetRequest,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Replace the tournament formula with a preset, fitted to the field size"""
    phases = apply_preset(session, competition_id, request.preset_id, caller, athlete_count=request.athlete_count)
    return {
        "success": True,
        "preset_id": request.preset_id,
        "phases": [_phase_response(p) for p in phases],
        "message": "Tournament formula saved from preset",
    }
