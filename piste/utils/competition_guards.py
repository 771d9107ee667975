"""
Competition access guards.

Reusable loaders that apply the generation preconditions in a fixed order:
- caller role (write paths only)
- competition exists
- caller may access the competition's tournament
- competition status allows modification (write paths only)
"""

from typing import Tuple

from sqlmodel import Session

from piste.auth import CallerIdentity, require_read_access, require_write_access, require_write_role
from piste.errors import NotFound
from piste.models.competition import Competition
from piste.models.tournament import Tournament
from piste.services.state_machine import require_modifiable


def get_competition_or_404(session: Session, competition_id: int) -> Tuple[Competition, Tournament]:
    """
    Get a competition and its tournament or raise NotFound.

    Raises:
        NotFound: Competition (or its tournament) does not exist
    """
    competition = session.get(Competition, competition_id)
    if not competition:
        raise NotFound(f"Competition {competition_id} not found", step="LOAD_COMPETITION")

    tournament = session.get(Tournament, competition.tournament_id)
    if not tournament:
        raise NotFound(f"Tournament {competition.tournament_id} not found", step="LOAD_COMPETITION")

    return competition, tournament


def require_readable_competition(
    session: Session, competition_id: int, caller: CallerIdentity
) -> Tuple[Competition, Tournament]:
    competition, tournament = get_competition_or_404(session, competition_id)
    require_read_access(caller, tournament)
    return competition, tournament


def require_modifiable_competition(
    session: Session, competition_id: int, caller: CallerIdentity, step: str = "VALIDATE"
) -> Tuple[Competition, Tournament]:
    """
    Load a competition for a destructive operation.

    Raises:
        AuthorizationDenied: role cannot write, or tournament is another organization's
        NotFound: competition not found
        StateConflict: competition is COMPLETED or CANCELLED
    """
    require_write_role(caller)
    competition, tournament = get_competition_or_404(session, competition_id)
    require_write_access(caller, tournament)
    require_modifiable(competition.status, step=step)
    return competition, tournament
