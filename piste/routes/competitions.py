from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlmodel import Session, select

from piste.auth import CallerIdentity, get_caller, require_write_access, require_write_role
from piste.database import get_session
from piste.errors import AuthorizationDenied, NotFound
from piste.models.competition import WEAPONS, Competition, CompetitionStatus
from piste.models.registration import Registration
from piste.models.tournament import Tournament
from piste.services.state_machine import transition_competition
from piste.utils.competition_guards import (
    get_competition_or_404,
    require_modifiable_competition,
    require_readable_competition,
)

router = APIRouter()


class TournamentCreate(BaseModel):
    name: str
    organization_id: Optional[str] = None
    is_public: bool = False

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()


class TournamentResponse(BaseModel):
    id: int
    name: str
    organization_id: str
    is_public: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CompetitionCreate(BaseModel):
    name: str
    weapon: str
    category: str

    @field_validator("name", "category")
    @classmethod
    def validate_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("weapon")
    @classmethod
    def validate_weapon(cls, v):
        weapon = (v or "").strip().upper()
        if weapon not in WEAPONS:
            raise ValueError(f"weapon must be one of {', '.join(WEAPONS)}")
        return weapon


class CompetitionResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    weapon: str
    category: str
    status: CompetitionStatus
    generation_version: int

    class Config:
        from_attributes = True


class StatusUpdate(BaseModel):
    status: CompetitionStatus


class RegistrationIn(BaseModel):
    athlete_id: str
    seed_rank: Optional[int] = None
    club: Optional[str] = None
    country: Optional[str] = None
    is_present: bool = True

    @field_validator("seed_rank")
    @classmethod
    def validate_seed_rank(cls, v):
        if v is not None and v < 1:
            raise ValueError("seed_rank must be >= 1")
        return v


class RegistrationBatch(BaseModel):
    registrations: List[RegistrationIn]


class RegistrationResponse(BaseModel):
    id: int
    competition_id: int
    athlete_id: str
    seed_rank: Optional[int] = None
    club: Optional[str] = None
    country: Optional[str] = None
    is_present: bool

    class Config:
        from_attributes = True


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(
    tournament_data: TournamentCreate,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Create a tournament owned by the caller's organization"""
    require_write_role(caller)
    organization_id = tournament_data.organization_id or caller.organization_id
    if not organization_id:
        raise AuthorizationDenied("An organization is required to create a tournament")
    if not caller.is_system_admin and organization_id != caller.organization_id:
        raise AuthorizationDenied("Cannot create tournaments for another organization")

    tournament = Tournament(
        name=tournament_data.name,
        organization_id=organization_id,
        is_public=tournament_data.is_public,
    )
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.post("/tournaments/{tournament_id}/competitions", response_model=CompetitionResponse, status_code=201)
def create_competition(
    tournament_id: int,
    competition_data: CompetitionCreate,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Create a competition (weapon + category) inside a tournament"""
    require_write_role(caller)
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFound("Tournament not found")
    require_write_access(caller, tournament)

    competition = Competition(tournament_id=tournament_id, **competition_data.model_dump())
    session.add(competition)
    session.commit()
    session.refresh(competition)
    return competition


@router.get("/competitions/{competition_id}", response_model=CompetitionResponse)
def get_competition(
    competition_id: int,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    competition, _ = require_readable_competition(session, competition_id, caller)
    return competition


@router.patch("/competitions/{competition_id}/status", response_model=CompetitionResponse)
def update_competition_status(
    competition_id: int,
    update: StatusUpdate,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Move a competition along its lifecycle (illegal moves are 409)"""
    require_write_role(caller)
    competition, tournament = get_competition_or_404(session, competition_id)
    require_write_access(caller, tournament)

    competition.status = transition_competition(competition.status, update.status)
    session.add(competition)
    session.commit()
    session.refresh(competition)
    return competition


@router.post(
    "/competitions/{competition_id}/registrations",
    response_model=List[RegistrationResponse],
    status_code=201,
)
def register_athletes(
    competition_id: int,
    batch: RegistrationBatch,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    """Add or update registrations; an athlete already registered is updated in place"""
    require_modifiable_competition(session, competition_id, caller)

    existing = {
        r.athlete_id: r
        for r in session.exec(select(Registration).where(Registration.competition_id == competition_id)).all()
    }
    saved = []
    for item in batch.registrations:
        registration = existing.get(item.athlete_id)
        if registration is None:
            registration = Registration(competition_id=competition_id, athlete_id=item.athlete_id)
            existing[item.athlete_id] = registration
        registration.seed_rank = item.seed_rank
        registration.club = item.club
        registration.country = item.country
        registration.is_present = item.is_present
        session.add(registration)
        saved.append(registration)

    session.commit()
    for registration in saved:
        session.refresh(registration)
    return saved


@router.get("/competitions/{competition_id}/registrations", response_model=List[RegistrationResponse])
def list_registrations(
    competition_id: int,
    session: Session = Depends(get_session),
    caller: CallerIdentity = Depends(get_caller),
):
    require_readable_competition(session, competition_id, caller)
    return session.exec(
        select(Registration).where(Registration.competition_id == competition_id).order_by(Registration.id)
    ).all()
