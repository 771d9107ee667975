"""
Formula Presets - ready-made formulas a competition can be configured from.

Two sources:
  built-in      fixed FIE / national / club formats, keyed by slug, read-only
  organization  stored FormulaPreset rows, owned by one organization and
                optionally shared with every other organization (is_public)

A preset's phases use the same shape as POST /competitions/{id}/phases, so
applying one is just configure_formula() with the preset's phases.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, field_validator
from sqlalchemy import func, or_
from sqlmodel import Session, select

from piste.auth import CallerIdentity, require_write_role
from piste.errors import AuthorizationDenied, NotFound, StateConflict
from piste.models.competition import WEAPONS
from piste.models.formula_preset import FormulaPreset
from piste.models.phase import Phase
from piste.models.registration import Registration
from piste.services.formula_config import PhaseDefinition, configure_formula, validate_formula
from piste.utils.competition_guards import get_competition_or_404

logger = logging.getLogger(__name__)

# Bracket sizes a preset's brackets are adapted to (smallest one that fits the field)
STANDARD_BRACKET_SIZES = (8, 16, 32, 64, 128, 256)
SMALL_FIELD = 20
SMALL_FIELD_POULE_SIZE = 5


# =============================================================================
# Built-in presets
# =============================================================================


def _poules(
    name: str,
    order: int,
    target_pool_size: int,
    percentage: float,
    clubs: bool = True,
    countries: bool = True,
    max_same_club: int = 1,
    max_same_country: int = 2,
) -> Dict[str, Any]:
    return {
        "name": name,
        "phase_type": "POULE",
        "sequence_order": order,
        "configuration": {
            "target_pool_size": target_pool_size,
            "qualification_percentage": percentage,
            "separate_clubs": clubs,
            "max_same_club": max_same_club,
            "separate_countries": countries,
            "max_same_country": max_same_country,
        },
    }


def _tableau(name: str, order: int, size: int, phase_type: str = "DIRECT_ELIMINATION", bracket_type: str = "MAIN"):
    return {
        "name": name,
        "phase_type": phase_type,
        "sequence_order": order,
        "brackets": [{"bracket_type": bracket_type, "size": size, "seeding_method": "RANKING"}],
    }


BUILT_IN_PRESETS: Dict[str, Dict[str, Any]] = {
    "classic-no-3rd": {
        "name": "Classic without match for 3rd place",
        "description": "Poules followed by direct elimination, no 3rd place bout",
        "phases": [_poules("Poules", 1, 7, 70), _tableau("Direct Elimination", 2, 64)],
    },
    "multi-round-poules": {
        "name": "Multi-round poules (3 rounds)",
        "description": "Three rounds of poules with progressive qualification, for large fields",
        "phases": [
            _poules("Poules Round 1", 1, 7, 68),
            _poules("Poules Round 2", 2, 5, 76),
            _poules("Poules Round 3", 3, 5, 74),
            _tableau("Direct Elimination", 4, 64),
        ],
    },
    "fie-world-cup": {
        "name": "FIE World Cup Format",
        "description": "FIE World Cup format: poules, table of 64 and classification 9-16",
        "phases": [
            _poules("Poules", 1, 7, 70),
            _tableau("Table of 64", 2, 64),
            _tableau("Classification 9-16", 3, 8, phase_type="CLASSIFICATION", bracket_type="CLASSIFICATION"),
        ],
    },
    "club-tournament": {
        "name": "Club Tournament (Small)",
        "description": "Simple format for small club competitions (8-32 fencers)",
        "phases": [
            _poules("Poules", 1, 6, 75, clubs=False, countries=False, max_same_club=10, max_same_country=10),
            _tableau("Direct Elimination", 2, 16),
        ],
    },
    "national-championship": {
        "name": "National Championship",
        "description": "National championship with a repechage and classification 9-16",
        "phases": [
            _poules("Poules", 1, 7, 65, countries=False, max_same_club=2, max_same_country=10),
            _tableau("Table of 128", 2, 128),
            _tableau("Repechage", 3, 16, phase_type="REPECHAGE", bracket_type="REPECHAGE"),
            _tableau("Classification 9-16", 4, 8, phase_type="CLASSIFICATION", bracket_type="CLASSIFICATION"),
        ],
    },
    "direct-elimination-only": {
        "name": "Direct Elimination Only",
        "description": "Pure knockout, no poules (small fields)",
        "phases": [_tableau("Direct Elimination", 1, 32)],
    },
    "round-robin": {
        "name": "Round Robin",
        "description": "Everyone fences everyone in one poule, no elimination",
        "phases": [
            _poules("Round Robin", 1, 16, 100, clubs=False, countries=False, max_same_club=16, max_same_country=16)
        ],
    },
}


# =============================================================================
# Request / view models
# =============================================================================


class PresetView(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    weapon: Optional[str] = None
    category: Optional[str] = None
    phases: List[PhaseDefinition]
    is_public: bool = True
    organization_id: Optional[str] = None
    built_in: bool = False


class _PresetFields(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    weapon: Optional[str] = None
    category: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip() if v is not None else v

    @field_validator("weapon")
    @classmethod
    def validate_weapon(cls, v):
        if v is None:
            return v
        weapon = v.strip().upper()
        if weapon not in WEAPONS:
            raise ValueError(f"weapon must be one of {', '.join(WEAPONS)}")
        return weapon


class PresetCreate(_PresetFields):
    name: str
    phases: List[PhaseDefinition]
    is_public: bool = False
    organization_id: Optional[str] = None


class PresetUpdate(_PresetFields):
    phases: Optional[List[PhaseDefinition]] = None
    is_public: Optional[bool] = None


class PresetDuplicate(_PresetFields):
    name: str
    is_public: bool = False


# =============================================================================
# Helpers
# =============================================================================


def _built_in_view(slug: str) -> PresetView:
    preset = BUILT_IN_PRESETS[slug]
    return PresetView(
        id=slug,
        name=preset["name"],
        description=preset["description"],
        phases=[PhaseDefinition(**p) for p in preset["phases"]],
        built_in=True,
    )


def _stored_view(preset: FormulaPreset) -> PresetView:
    return PresetView(
        id=str(preset.id),
        name=preset.name,
        description=preset.description,
        weapon=preset.weapon,
        category=preset.category,
        phases=[PhaseDefinition(**p) for p in preset.phases],
        is_public=preset.is_public,
        organization_id=preset.organization_id,
    )


def _normalized_phases(phases: Sequence[PhaseDefinition]) -> List[Dict[str, Any]]:
    """Validate like a formula save and store each configuration with its defaults filled in."""
    configs = validate_formula(phases)
    return [
        dict(definition.model_dump(mode="json"), configuration=config.model_dump())
        for definition, config in zip(phases, configs)
    ]


def _stored_preset(session: Session, preset_id: str) -> Optional[FormulaPreset]:
    if not preset_id.isdigit():
        return None
    return session.get(FormulaPreset, int(preset_id))


def _owned_preset(session: Session, preset_id: str, caller: CallerIdentity) -> FormulaPreset:
    require_write_role(caller)
    if preset_id in BUILT_IN_PRESETS:
        raise AuthorizationDenied(f"Built-in preset '{preset_id}' cannot be modified")
    preset = _stored_preset(session, preset_id)
    if preset is None or (not caller.is_system_admin and preset.organization_id != caller.organization_id):
        raise NotFound(f"Preset {preset_id} not found")
    return preset


def _ensure_unique_name(session: Session, organization_id: str, name: str, exclude_id: Optional[int] = None):
    statement = select(FormulaPreset).where(
        FormulaPreset.organization_id == organization_id, FormulaPreset.name == name
    )
    if exclude_id is not None:
        statement = statement.where(FormulaPreset.id != exclude_id)
    if session.exec(statement).first():
        raise StateConflict(f"A preset named '{name}' already exists in organization {organization_id}")


def _save(session: Session, preset: FormulaPreset) -> FormulaPreset:
    session.add(preset)
    session.commit()
    session.refresh(preset)
    return preset


# =============================================================================
# Operations
# =============================================================================


def list_presets(
    session: Session,
    caller: CallerIdentity,
    weapon: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    include_built_in: bool = True,
) -> List[PresetView]:
    """Built-ins first, then the caller's own presets and other organizations' public ones."""
    views: List[PresetView] = []
    if include_built_in:
        views.extend(_built_in_view(slug) for slug in BUILT_IN_PRESETS)

    statement = select(FormulaPreset)
    if not caller.is_system_admin:
        statement = statement.where(
            or_(FormulaPreset.organization_id == caller.organization_id, FormulaPreset.is_public == True)  # noqa: E712
        )
    if weapon:
        statement = statement.where(FormulaPreset.weapon == weapon.upper())
    if category:
        statement = statement.where(FormulaPreset.category == category)
    statement = statement.order_by(FormulaPreset.is_public.desc(), FormulaPreset.name)
    views.extend(_stored_view(p) for p in session.exec(statement).all())

    if search:
        term = search.strip().lower()
        views = [
            v for v in views
            if any(term in (text or "").lower() for text in (v.name, v.description, v.weapon, v.category))
        ]
    return views


def get_preset(session: Session, preset_id: str, caller: CallerIdentity) -> PresetView:
    if preset_id in BUILT_IN_PRESETS:
        return _built_in_view(preset_id)
    preset = _stored_preset(session, preset_id)
    if preset is None:
        raise NotFound(f"Preset {preset_id} not found")
    if not (caller.is_system_admin or preset.is_public or preset.organization_id == caller.organization_id):
        raise NotFound(f"Preset {preset_id} not found")
    return _stored_view(preset)


def create_preset(session: Session, data: PresetCreate, caller: CallerIdentity) -> PresetView:
    """
    Store a new organization preset.

    Raises:
        AuthorizationDenied: read-only role, or another organization without SYSTEM_ADMIN
        ValidationFailed: phases would not be accepted as a formula
        StateConflict: the organization already has a preset with this name
    """
    require_write_role(caller)
    organization_id = data.organization_id or caller.organization_id
    if not organization_id:
        raise AuthorizationDenied("An organization is required to create a preset")
    if not caller.is_system_admin and organization_id != caller.organization_id:
        raise AuthorizationDenied("Cannot create presets for another organization")

    phases = _normalized_phases(data.phases)
    _ensure_unique_name(session, organization_id, data.name)

    preset = _save(
        session,
        FormulaPreset(
            organization_id=organization_id,
            name=data.name,
            description=data.description,
            weapon=data.weapon,
            category=data.category,
            phases=phases,
            is_public=data.is_public,
        ),
    )
    logger.info("Preset %s '%s' created for organization %s", preset.id, preset.name, organization_id)
    return _stored_view(preset)


def update_preset(session: Session, preset_id: str, data: PresetUpdate, caller: CallerIdentity) -> PresetView:
    preset = _owned_preset(session, preset_id, caller)
    changes = data.model_dump(exclude_unset=True)

    if "phases" in changes:
        if data.phases is None:
            changes.pop("phases")
        else:
            changes["phases"] = _normalized_phases(data.phases)
    if changes.get("name") is None:
        changes.pop("name", None)
    elif changes["name"] != preset.name:
        _ensure_unique_name(session, preset.organization_id, changes["name"], exclude_id=preset.id)

    for key, value in changes.items():
        setattr(preset, key, value)
    preset = _save(session, preset)
    logger.info("Preset %s updated (%s)", preset.id, ", ".join(sorted(changes)) or "no changes")
    return _stored_view(preset)


def delete_preset(session: Session, preset_id: str, caller: CallerIdentity) -> None:
    preset = _owned_preset(session, preset_id, caller)
    session.delete(preset)
    session.commit()
    logger.info("Preset %s deleted", preset_id)


def duplicate_preset(session: Session, preset_id: str, data: PresetDuplicate, caller: CallerIdentity) -> PresetView:
    """Copy any preset the caller can see (built-in included) into the caller's organization."""
    source = get_preset(session, preset_id, caller)
    return create_preset(
        session,
        PresetCreate(
            name=data.name,
            description=data.description or f"Copy of {source.name}",
            weapon=data.weapon or source.weapon,
            category=data.category or source.category,
            phases=source.phases,
            is_public=data.is_public,
        ),
        caller,
    )


def suggest_presets(athlete_count: int, club_tournament: bool = False) -> List[PresetView]:
    """Built-in presets that suit a field of this size, best fit first."""
    if athlete_count < 32:
        slugs = ["club-tournament", "direct-elimination-only"]
        if athlete_count <= 16:
            slugs.append("round-robin")
    elif athlete_count <= 64:
        slugs = ["classic-no-3rd"]
        if not club_tournament:
            slugs.append("fie-world-cup")
        slugs.append("club-tournament")
    else:
        slugs = ["multi-round-poules", "national-championship", "fie-world-cup", "classic-no-3rd"]
    return [_built_in_view(slug) for slug in slugs]


def adapt_phases(phases: Sequence[PhaseDefinition], athlete_count: int) -> List[PhaseDefinition]:
    """Fit a preset to the field: brackets shrink to the smallest standard size
    that holds every athlete, and small fields split into several poules get
    poules of five. A poule already holding the whole field is left alone."""
    adapted = []
    for phase in phases:
        phase = phase.model_copy(deep=True)
        for bracket in phase.brackets:
            fit = next((s for s in STANDARD_BRACKET_SIZES if s >= athlete_count), bracket.size)
            bracket.size = min(bracket.size, fit)
        target = (phase.configuration or {}).get("target_pool_size")
        if target is not None and athlete_count < SMALL_FIELD and target < athlete_count:
            phase.configuration["target_pool_size"] = SMALL_FIELD_POULE_SIZE
        adapted.append(phase)
    return adapted


def apply_preset(
    session: Session,
    competition_id: int,
    preset_id: str,
    caller: CallerIdentity,
    athlete_count: Optional[int] = None,
) -> List[Phase]:
    """
    Replace the competition's formula with a preset's phases.

    athlete_count defaults to the number of present registrations; with no
    athletes the preset is applied as stored.
    """
    require_write_role(caller)
    get_competition_or_404(session, competition_id)
    preset = get_preset(session, preset_id, caller)

    if athlete_count is None:
        athlete_count = session.exec(
            select(func.count(Registration.id)).where(
                Registration.competition_id == competition_id, Registration.is_present == True  # noqa: E712
            )
        ).one()
    phases = adapt_phases(preset.phases, athlete_count) if athlete_count else list(preset.phases)

    created = configure_formula(session, competition_id, phases, caller)
    logger.info(
        "Preset %s applied to competition %s for %d athlete(s)", preset_id, competition_id, athlete_count
    )
    return created
