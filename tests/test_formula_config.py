"""
Tests for formula configuration (validation, storage, access rules).
"""
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from piste.errors import ValidationFailed
from piste.models.competition import CompetitionStatus
from piste.models.phase import BracketConfiguration, Phase, PhaseType
from piste.models.poule import Poule
from piste.services.formula_config import (
    DEFAULT_POULE_SIZE,
    EliminationPhaseConfig,
    PhaseDefinition,
    PoulePhaseConfig,
    parse_phase_config,
    validate_formula,
)
from tests.conftest import register

POULES_THEN_DE = [
    {
        "name": "Poules",
        "phase_type": "POULE",
        "sequence_order": 1,
        "configuration": {"target_pool_size": 6, "qualification_quota": 12},
    },
    {
        "name": "Tableau",
        "phase_type": "DIRECT_ELIMINATION",
        "sequence_order": 2,
        "brackets": [{"bracket_type": "MAIN", "size": 16, "seeding_method": "RANKING"}],
    },
]


def phase_defs(raw):
    return [PhaseDefinition(**p) for p in raw]


class TestValidateFormula:
    def test_valid_formula_returns_typed_configs(self):
        configs = validate_formula(phase_defs(POULES_THEN_DE))
        assert isinstance(configs[0], PoulePhaseConfig)
        assert configs[0].target_pool_size == 6
        assert isinstance(configs[1], EliminationPhaseConfig)

    def test_default_poule_size(self):
        config = parse_phase_config(PhaseType.POULE, None)
        assert config.target_pool_size == DEFAULT_POULE_SIZE

    def test_empty_formula(self):
        with pytest.raises(ValidationFailed):
            validate_formula([])

    def test_duplicate_sequence_order(self):
        raw = [dict(POULES_THEN_DE[0]), dict(POULES_THEN_DE[1], sequence_order=1)]
        with pytest.raises(ValidationFailed):
            validate_formula(phase_defs(raw))

    def test_non_increasing_sequence_order(self):
        raw = [dict(POULES_THEN_DE[0], sequence_order=3), dict(POULES_THEN_DE[1], sequence_order=2)]
        with pytest.raises(ValidationFailed):
            validate_formula(phase_defs(raw))

    def test_sequence_order_starts_at_one(self):
        raw = [dict(POULES_THEN_DE[0], sequence_order=0)]
        with pytest.raises(ValidationFailed):
            validate_formula(phase_defs(raw))

    def test_blank_name(self):
        raw = [dict(POULES_THEN_DE[0], name="  ")]
        with pytest.raises(ValidationFailed):
            validate_formula(phase_defs(raw))

    def test_bracket_too_small(self):
        raw = [dict(POULES_THEN_DE[1], brackets=[{"bracket_type": "MAIN", "size": 1, "seeding_method": "RANKING"}])]
        with pytest.raises(ValidationFailed):
            validate_formula(phase_defs(raw))

    def test_unknown_configuration_key(self):
        raw = [dict(POULES_THEN_DE[0], configuration={"pool_sise": 6})]
        with pytest.raises(ValidationFailed) as exc:
            validate_formula(phase_defs(raw))
        assert "pool_sise" in exc.value.message

    def test_poule_size_below_two(self):
        with pytest.raises(ValidationFailed):
            parse_phase_config(PhaseType.POULE, {"target_pool_size": 1})

    def test_elimination_rejects_poule_keys(self):
        with pytest.raises(ValidationFailed):
            parse_phase_config(PhaseType.DIRECT_ELIMINATION, {"target_pool_size": 6})

    def test_duplicate_bracket_type_in_phase(self):
        brackets = [
            {"bracket_type": "MAIN", "size": 16, "seeding_method": "RANKING"},
            {"bracket_type": "MAIN", "size": 8, "seeding_method": "SNAKE"},
        ]
        with pytest.raises(ValidationFailed) as exc:
            validate_formula(phase_defs([dict(POULES_THEN_DE[1], brackets=brackets)]))
        assert "MAIN" in exc.value.message

    def test_country_separation_keys(self):
        config = parse_phase_config(PhaseType.POULE, {"separate_countries": True, "max_same_country": 2})
        assert config.separate_countries is True
        assert config.max_same_country == 2
        assert parse_phase_config(PhaseType.POULE, None).separate_countries is False

    def test_quota_and_percentage_together_rejected(self):
        with pytest.raises(ValidationFailed) as exc:
            parse_phase_config(PhaseType.POULE, {"qualification_quota": 12, "qualification_percentage": 70})
        assert "not both" in exc.value.message

    @pytest.mark.parametrize("raw", [{"qualification_percentage": 0}, {"qualification_percentage": 120}])
    def test_percentage_out_of_range(self, raw):
        with pytest.raises(ValidationFailed):
            parse_phase_config(PhaseType.DIRECT_ELIMINATION, raw)

    @pytest.mark.parametrize(
        "raw,entrants,expected",
        [
            ({}, 17, 17),
            ({"qualification_quota": 12}, 17, 12),
            ({"qualification_quota": 12}, 9, 9),
            ({"qualification_percentage": 70}, 17, 11),
            ({"qualification_percentage": 100}, 17, 17),
            ({"qualification_percentage": 50}, 1, 0),
        ],
    )
    def test_qualifier_count(self, raw, entrants, expected):
        assert parse_phase_config(PhaseType.POULE, raw).qualifier_count(entrants) == expected


class TestFormulaEndpoints:
    def test_save_and_read_formula(self, client: TestClient, competition, admin_headers):
        response = client.post(
            f"/api/competitions/{competition.id}/phases", json={"phases": POULES_THEN_DE}, headers=admin_headers
        )
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert [p["name"] for p in body["phases"]] == ["Poules", "Tableau"]
        assert body["phases"][0]["configuration"]["target_pool_size"] == 6
        assert body["phases"][0]["status"] == "SCHEDULED"
        assert body["phases"][1]["bracket_configs"][0]["size"] == 16

        response = client.get(f"/api/competitions/{competition.id}/phases", headers=admin_headers)
        assert response.status_code == 200
        assert [p["sequence_order"] for p in response.json()["phases"]] == [1, 2]

    def test_save_replaces_previous_formula(self, client: TestClient, session: Session, competition, admin_headers):
        client.post(f"/api/competitions/{competition.id}/phases", json={"phases": POULES_THEN_DE}, headers=admin_headers)
        response = client.post(
            f"/api/competitions/{competition.id}/phases",
            json={"phases": [POULES_THEN_DE[0]]},
            headers=admin_headers,
        )
        assert response.status_code == 201

        phases = session.exec(select(Phase).where(Phase.competition_id == competition.id)).all()
        assert len(phases) == 1
        assert session.exec(select(BracketConfiguration)).all() == []

    def test_save_removes_generated_poules(self, client: TestClient, session: Session, competition, admin_headers):
        register(session, competition.id, 12)
        client.post(f"/api/competitions/{competition.id}/phases", json={"phases": POULES_THEN_DE}, headers=admin_headers)
        generated = client.post(f"/api/competitions/{competition.id}/generate", json={}, headers=admin_headers)
        assert generated.status_code == 201
        assert session.exec(select(Poule)).all()

        client.post(f"/api/competitions/{competition.id}/phases", json={"phases": POULES_THEN_DE}, headers=admin_headers)
        session.expire_all()
        assert session.exec(select(Poule)).all() == []

    def test_invalid_formula_is_422_and_keeps_old(self, client: TestClient, session: Session, competition, admin_headers):
        client.post(f"/api/competitions/{competition.id}/phases", json={"phases": POULES_THEN_DE}, headers=admin_headers)
        bad = [dict(POULES_THEN_DE[0]), dict(POULES_THEN_DE[1], sequence_order=1)]

        response = client.post(f"/api/competitions/{competition.id}/phases", json={"phases": bad}, headers=admin_headers)
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "VALIDATION"

        session.expire_all()
        assert len(session.exec(select(Phase)).all()) == 2

    def test_empty_phase_list_is_422(self, client: TestClient, competition, admin_headers):
        response = client.post(f"/api/competitions/{competition.id}/phases", json={"phases": []}, headers=admin_headers)
        assert response.status_code == 422

    def test_missing_identity_is_401(self, client: TestClient, competition):
        response = client.post(f"/api/competitions/{competition.id}/phases", json={"phases": POULES_THEN_DE})
        assert response.status_code == 401

    def test_read_only_role_is_403(self, client: TestClient, competition, referee_headers):
        response = client.post(
            f"/api/competitions/{competition.id}/phases", json={"phases": POULES_THEN_DE}, headers=referee_headers
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "AUTHORIZATION"

    def test_other_organization_is_403(self, client: TestClient, competition, other_org_headers):
        response = client.post(
            f"/api/competitions/{competition.id}/phases", json={"phases": POULES_THEN_DE}, headers=other_org_headers
        )
        assert response.status_code == 403

        response = client.get(f"/api/competitions/{competition.id}/phases", headers=other_org_headers)
        assert response.status_code == 403

    def test_referee_can_read(self, client: TestClient, competition, referee_headers):
        response = client.get(f"/api/competitions/{competition.id}/phases", headers=referee_headers)
        assert response.status_code == 200
        assert response.json()["phases"] == []

    def test_unknown_competition_is_404(self, client: TestClient, session: Session, admin_headers):
        response = client.post("/api/competitions/999/phases", json={"phases": POULES_THEN_DE}, headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NOT_FOUND"

    def test_completed_competition_is_409(self, client: TestClient, session: Session, competition, admin_headers):
        competition.status = CompetitionStatus.COMPLETED
        session.add(competition)
        session.commit()

        response = client.post(
            f"/api/competitions/{competition.id}/phases", json={"phases": POULES_THEN_DE}, headers=admin_headers
        )
        assert response.status_code == 409
        assert "COMPETITION_NOT_MODIFIABLE" in response.json()["detail"]["message"]
