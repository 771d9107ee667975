"""
Competition / Phase lifecycle guards.

One transition table per machine and one guarded function to move along it.
Callers never compare status strings themselves; they ask this module.
"""

from typing import Dict, FrozenSet, Union

from piste.errors import StateConflict
from piste.models.competition import CompetitionStatus
from piste.models.phase import PhaseStatus

# =============================================================================
# Competition
# =============================================================================

TERMINAL_COMPETITION_STATUSES: FrozenSet[CompetitionStatus] = frozenset(
    {CompetitionStatus.COMPLETED, CompetitionStatus.CANCELLED}
)

# Generation may start a competition from any earlier non-terminal state, so
# IN_PROGRESS is reachable by forward skips. IN_PROGRESS -> IN_PROGRESS is the
# re-generation case.
COMPETITION_TRANSITIONS: Dict[CompetitionStatus, FrozenSet[CompetitionStatus]] = {
    CompetitionStatus.DRAFT: frozenset(
        {
            CompetitionStatus.REGISTRATION_OPEN,
            CompetitionStatus.REGISTRATION_CLOSED,
            CompetitionStatus.IN_PROGRESS,
            CompetitionStatus.CANCELLED,
        }
    ),
    CompetitionStatus.REGISTRATION_OPEN: frozenset(
        {
            CompetitionStatus.REGISTRATION_CLOSED,
            CompetitionStatus.IN_PROGRESS,
            CompetitionStatus.CANCELLED,
        }
    ),
    CompetitionStatus.REGISTRATION_CLOSED: frozenset(
        {
            CompetitionStatus.IN_PROGRESS,
            CompetitionStatus.CANCELLED,
        }
    ),
    CompetitionStatus.IN_PROGRESS: frozenset(
        {
            CompetitionStatus.IN_PROGRESS,
            CompetitionStatus.COMPLETED,
            CompetitionStatus.CANCELLED,
        }
    ),
    CompetitionStatus.COMPLETED: frozenset(),
    CompetitionStatus.CANCELLED: frozenset(),
}


def _competition_status(value: Union[str, CompetitionStatus]) -> CompetitionStatus:
    try:
        return CompetitionStatus(value)
    except ValueError:
        raise StateConflict(f"Unknown competition status '{value}'")


def allows_modification(status: Union[str, CompetitionStatus]) -> bool:
    """Formula edits and generation are allowed until the competition is terminal."""
    return _competition_status(status) not in TERMINAL_COMPETITION_STATUSES


def require_modifiable(status: Union[str, CompetitionStatus], step: str = "STATUS_GUARD") -> None:
    if not allows_modification(status):
        raise StateConflict(
            f"COMPETITION_NOT_MODIFIABLE: Cannot modify competition with status '{CompetitionStatus(status).value}'",
            step=step,
        )


def transition_competition(
    current: Union[str, CompetitionStatus], target: Union[str, CompetitionStatus]
) -> CompetitionStatus:
    """Return the new status or raise StateConflict if the move is illegal."""
    current_status = _competition_status(current)
    target_status = _competition_status(target)
    if target_status not in COMPETITION_TRANSITIONS[current_status]:
        raise StateConflict(
            f"ILLEGAL_COMPETITION_TRANSITION: {current_status.value} -> {target_status.value}"
        )
    return target_status


# =============================================================================
# Phase
# =============================================================================

PHASE_ORDER = [PhaseStatus.SCHEDULED, PhaseStatus.IN_PROGRESS, PhaseStatus.COMPLETED]

# Linear, one step at a time; staying put is a no-op.
PHASE_TRANSITIONS: Dict[PhaseStatus, FrozenSet[PhaseStatus]] = {
    PhaseStatus.SCHEDULED: frozenset({PhaseStatus.SCHEDULED, PhaseStatus.IN_PROGRESS}),
    PhaseStatus.IN_PROGRESS: frozenset({PhaseStatus.IN_PROGRESS, PhaseStatus.COMPLETED}),
    PhaseStatus.COMPLETED: frozenset({PhaseStatus.COMPLETED}),
}


def transition_phase(current: Union[str, PhaseStatus], target: Union[str, PhaseStatus]) -> PhaseStatus:
    try:
        current_status = PhaseStatus(current)
        target_status = PhaseStatus(target)
    except ValueError as e:
        raise StateConflict(f"Unknown phase status: {e}")
    if target_status not in PHASE_TRANSITIONS[current_status]:
        raise StateConflict(f"ILLEGAL_PHASE_TRANSITION: {current_status.value} -> {target_status.value}")
    return target_status
