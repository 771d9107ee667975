from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlmodel import Session

from piste.auth import CallerIdentity, get_caller
from piste.database import get_session
from piste.services.formula_presets import (
    PresetCreate,
    PresetDuplicate,
    PresetUpdate,
    create_preset,
    delete_preset,
    duplicate_preset,
    get_preset,
    list_presets,
    suggest_presets,
    update_preset,
)

router = APIRouter()


@router.get("/formula-presets")
def read_presets(
    weapon: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    include_built_in: bool = True,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Built-in presets, the caller's organization presets and public ones"""
    presets = list_presets(
        session, caller, weapon=weapon, category=category, search=search, include_built_in=include_built_in
    )
    return {"presets": presets}


@router.get("/formula-presets/suggestions")
def read_suggestions(
    athlete_count: int = Query(..., ge=0),
    club_tournament: bool = False,
    caller: CallerIdentity = Depends(get_caller),
):
    return {"presets": suggest_presets(athlete_count, club_tournament=club_tournament)}


@router.get("/formula-presets/{preset_id}")
def read_preset(
    preset_id: str,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    return {"preset": get_preset(session, preset_id, caller)}


@router.post("/formula-presets", status_code=201)
def save_preset(
    preset_data: PresetCreate,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Store a formula as an organization preset (names are unique per organization)"""
    return {"preset": create_preset(session, preset_data, caller)}


@router.put("/formula-presets/{preset_id}")
def change_preset(
    preset_id: str,
    preset_data: PresetUpdate,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    return {"preset": update_preset(session, preset_id, preset_data, caller)}


@router.delete("/formula-presets/{preset_id}", status_code=204)
def remove_preset(
    preset_id: str,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    delete_preset(session, preset_id, caller)
    return Response(status_code=204)


@router.post("/formula-presets/{preset_id}/duplicate", status_code=201)
def copy_preset(
    preset_id: str,
    copy_data: PresetDuplicate,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Copy a built-in or visible preset into the caller's organization"""
    return {"preset": duplicate_preset(session, preset_id, copy_data, caller)}
