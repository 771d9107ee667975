from typing import Sequence

from sqlmodel import Session, select

from piste.models.bracket import DirectEliminationBracket
from piste.models.phase import BracketConfiguration, Phase
from piste.models.poule import Poule, PouleAssignment


def wipe_generated_for_phases(session: Session, phase_ids: Sequence[int]) -> int:
    """Delete poules, poule assignments and brackets of the given phases (children first).

    Returns the number of poules removed.
    """
    if not phase_ids:
        return 0

    poules = session.exec(select(Poule).where(Poule.phase_id.in_(phase_ids))).all()

    # Assignments first - FK to poule
    for poule in poules:
        assignments = session.exec(select(PouleAssignment).where(PouleAssignment.poule_id == poule.id)).all()
        for assignment in assignments:
            session.delete(assignment)
    session.flush()

    for poule in poules:
        session.delete(poule)

    brackets = session.exec(
        select(DirectEliminationBracket).where(DirectEliminationBracket.phase_id.in_(phase_ids))
    ).all()
    for bracket in brackets:
        session.delete(bracket)

    session.flush()
    return len(poules)


def wipe_formula(session: Session, competition_id: int) -> int:
    """Delete every phase of a competition together with everything it owns.

    Returns the number of phases removed.
    """
    phases = session.exec(select(Phase).where(Phase.competition_id == competition_id)).all()
    phase_ids = [p.id for p in phases]

    wipe_generated_for_phases(session, phase_ids)

    if phase_ids:
        configs = session.exec(
            select(BracketConfiguration).where(BracketConfiguration.phase_id.in_(phase_ids))
        ).all()
        for config in configs:
            session.delete(config)
        session.flush()

    for phase in phases:
        session.delete(phase)
    session.flush()
    return len(phases)
