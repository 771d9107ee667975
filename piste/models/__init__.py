from piste.models.bracket import DirectEliminationBracket
from piste.models.competition import Competition, CompetitionStatus
from piste.models.formula_preset import FormulaPreset
from piste.models.phase import BracketConfiguration, BracketType, Phase, PhaseStatus, PhaseType, SeedingMethod
from piste.models.poule import Poule, PouleAssignment
from piste.models.registration import Registration
from piste.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Competition",
    "CompetitionStatus",
    "Registration",
    "Phase",
    "PhaseType",
    "PhaseStatus",
    "BracketConfiguration",
    "BracketType",
    "SeedingMethod",
    "Poule",
    "PouleAssignment",
    "DirectEliminationBracket",
    "FormulaPreset",
]
