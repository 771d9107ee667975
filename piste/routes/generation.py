from fastapi import APIRouter, Depends
from sqlmodel import Session

from piste.auth import CallerIdentity, get_caller
from piste.database import get_session
from piste.services.generation_orchestrator import (
    GenerateRequest,
    generate_competition,
    list_generated_brackets,
    list_generated_poules,
)

router = APIRouter()


@router.post("/competitions/{competition_id}/generate", status_code=201)
def generate(
    competition_id: int,
    request: GenerateRequest,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """
    Generate poules and elimination brackets for every phase of the formula.

    Destructive: all previously generated poules, assignments and brackets of
    the competition are replaced in the same transaction. With dry_run the
    result is composed and returned but nothing is written.
    """
    result = generate_competition(session, competition_id, request, caller)
    return {
        "success": True,
        "generated": result.to_dict(),
        "message": "Tournament generated successfully",
    }


@router.get("/competitions/{competition_id}/poules")
def get_poules(
    competition_id: int,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Get generated poules with their assignments"""
    return {"poules": list_generated_poules(session, competition_id, caller)}


@router.get("/competitions/{competition_id}/brackets")
def get_brackets(
    competition_id: int,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Get generated elimination brackets with their draw slots"""
    return {"brackets": list_generated_brackets(session, competition_id, caller)}
