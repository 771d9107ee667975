"""
Tests for formula presets (built-ins, organization presets, applying to a competition).
"""
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from piste.models.formula_preset import FormulaPreset
from piste.models.phase import Phase
from piste.services.formula_config import PhaseDefinition, validate_formula
from piste.services.formula_presets import BUILT_IN_PRESETS, adapt_phases, suggest_presets
from tests.conftest import OTHER_ORG_ID, register

CUSTOM_PHASES = [
    {
        "name": "Poules",
        "phase_type": "POULE",
        "sequence_order": 1,
        "configuration": {"target_pool_size": 6, "qualification_percentage": 80, "separate_countries": True},
    },
    {
        "name": "Tableau",
        "phase_type": "DIRECT_ELIMINATION",
        "sequence_order": 2,
        "brackets": [{"bracket_type": "MAIN", "size": 32, "seeding_method": "RANKING"}],
    },
]


def create(client: TestClient, headers, name="Regional Open", **extra):
    body = dict({"name": name, "phases": CUSTOM_PHASES}, **extra)
    return client.post("/api/formula-presets", json=body, headers=headers)


# ============================================================================
# Built-ins
# ============================================================================


class TestBuiltInPresets:
    @pytest.mark.parametrize("slug", sorted(BUILT_IN_PRESETS))
    def test_every_built_in_is_a_valid_formula(self, slug):
        phases = [PhaseDefinition(**p) for p in BUILT_IN_PRESETS[slug]["phases"]]
        assert validate_formula(phases)

    def test_suggestions_by_field_size(self):
        assert [p.id for p in suggest_presets(12)] == ["club-tournament", "direct-elimination-only", "round-robin"]
        assert [p.id for p in suggest_presets(24)] == ["club-tournament", "direct-elimination-only"]
        assert [p.id for p in suggest_presets(48)] == ["classic-no-3rd", "fie-world-cup", "club-tournament"]
        assert [p.id for p in suggest_presets(48, club_tournament=True)] == ["classic-no-3rd", "club-tournament"]
        assert suggest_presets(150)[0].id == "multi-round-poules"

    def test_adapt_shrinks_brackets_and_small_poules(self):
        phases = [PhaseDefinition(**p) for p in BUILT_IN_PRESETS["classic-no-3rd"]["phases"]]

        adapted = adapt_phases(phases, 17)

        assert adapted[0].configuration["target_pool_size"] == 5
        assert adapted[1].brackets[0].size == 32
        assert phases[1].brackets[0].size == 64

    def test_adapt_keeps_single_poule(self):
        phases = [PhaseDefinition(**p) for p in BUILT_IN_PRESETS["round-robin"]["phases"]]
        assert adapt_phases(phases, 9)[0].configuration["target_pool_size"] == 16


# ============================================================================
# Endpoints
# ============================================================================


class TestPresetEndpoints:
    def test_list_includes_built_ins(self, client: TestClient, admin_headers):
        response = client.get("/api/formula-presets", headers=admin_headers)

        assert response.status_code == 200
        ids = [p["id"] for p in response.json()["presets"]]
        assert ids == list(BUILT_IN_PRESETS)

    def test_read_built_in(self, client: TestClient, admin_headers):
        response = client.get("/api/formula-presets/fie-world-cup", headers=admin_headers)

        assert response.status_code == 200
        preset = response.json()["preset"]
        assert preset["built_in"] is True
        assert [p["phase_type"] for p in preset["phases"]] == ["POULE", "DIRECT_ELIMINATION", "CLASSIFICATION"]
        assert preset["phases"][0]["configuration"]["max_same_country"] == 2

    def test_create_and_read(self, client: TestClient, session: Session, admin_headers):
        response = create(client, admin_headers, weapon="epee")

        assert response.status_code == 201, response.text
        preset = response.json()["preset"]
        assert preset["weapon"] == "EPEE"
        assert preset["built_in"] is False
        assert preset["phases"][0]["configuration"]["qualification_percentage"] == 80
        # Stored with defaults filled in
        assert preset["phases"][0]["configuration"]["max_same_club"] == 1

        read = client.get(f"/api/formula-presets/{preset['id']}", headers=admin_headers)
        assert read.json()["preset"]["name"] == "Regional Open"

    def test_duplicate_name_in_organization_is_409(self, client: TestClient, admin_headers, other_org_headers):
        assert create(client, admin_headers).status_code == 201
        assert create(client, admin_headers).status_code == 409
        assert create(client, other_org_headers).status_code == 201

    def test_invalid_phases_are_422(self, client: TestClient, session: Session, admin_headers):
        phases = [dict(CUSTOM_PHASES[0], configuration={"qualification_quota": 8, "qualification_percentage": 50})]
        response = client.post(
            "/api/formula-presets", json={"name": "Broken", "phases": phases}, headers=admin_headers
        )

        assert response.status_code == 422
        assert session.exec(select(FormulaPreset)).all() == []

    def test_read_only_role_cannot_create(self, client: TestClient, referee_headers):
        assert create(client, referee_headers).status_code == 403

    def test_private_preset_hidden_from_other_organization(self, client: TestClient, admin_headers, other_org_headers):
        private_id = create(client, admin_headers, name="Private").json()["preset"]["id"]
        public_id = create(client, admin_headers, name="Shared", is_public=True).json()["preset"]["id"]

        listed = client.get("/api/formula-presets?include_built_in=false", headers=other_org_headers)
        assert [p["id"] for p in listed.json()["presets"]] == [public_id]
        assert client.get(f"/api/formula-presets/{private_id}", headers=other_org_headers).status_code == 404
        assert client.get(f"/api/formula-presets/{public_id}", headers=other_org_headers).status_code == 200

    def test_search(self, client: TestClient, admin_headers):
        create(client, admin_headers, name="Veterans Cup")

        response = client.get("/api/formula-presets?search=veteran", headers=admin_headers)
        assert [p["name"] for p in response.json()["presets"]] == ["Veterans Cup"]

    def test_update(self, client: TestClient, admin_headers):
        preset_id = create(client, admin_headers).json()["preset"]["id"]

        response = client.put(
            f"/api/formula-presets/{preset_id}",
            json={"name": "Regional Open 2027", "is_public": True},
            headers=admin_headers,
        )

        assert response.status_code == 200, response.text
        assert response.json()["preset"]["name"] == "Regional Open 2027"
        assert response.json()["preset"]["is_public"] is True
        assert len(response.json()["preset"]["phases"]) == 2

    def test_update_to_taken_name_is_409(self, client: TestClient, admin_headers):
        create(client, admin_headers, name="First")
        second_id = create(client, admin_headers, name="Second").json()["preset"]["id"]

        response = client.put(f"/api/formula-presets/{second_id}", json={"name": "First"}, headers=admin_headers)
        assert response.status_code == 409

    def test_built_in_cannot_be_changed(self, client: TestClient, admin_headers):
        assert client.put(
            "/api/formula-presets/round-robin", json={"name": "Mine"}, headers=admin_headers
        ).status_code == 403
        assert client.delete("/api/formula-presets/round-robin", headers=admin_headers).status_code == 403

    def test_other_organization_cannot_change(self, client: TestClient, admin_headers, other_org_headers):
        preset_id = create(client, admin_headers, is_public=True).json()["preset"]["id"]

        assert client.put(
            f"/api/formula-presets/{preset_id}", json={"name": "Taken"}, headers=other_org_headers
        ).status_code == 404
        assert client.delete(f"/api/formula-presets/{preset_id}", headers=other_org_headers).status_code == 404

    def test_delete(self, client: TestClient, session: Session, admin_headers):
        preset_id = create(client, admin_headers).json()["preset"]["id"]

        response = client.delete(f"/api/formula-presets/{preset_id}", headers=admin_headers)

        assert response.status_code == 204
        assert client.get(f"/api/formula-presets/{preset_id}", headers=admin_headers).status_code == 404

    def test_duplicate_built_in(self, client: TestClient, admin_headers):
        response = client.post(
            "/api/formula-presets/club-tournament/duplicate", json={"name": "Our club night"}, headers=admin_headers
        )

        assert response.status_code == 201, response.text
        preset = response.json()["preset"]
        assert preset["description"] == "Copy of Club Tournament (Small)"
        assert preset["organization_id"] == "org-1"
        assert [p["name"] for p in preset["phases"]] == ["Poules", "Direct Elimination"]

    def test_duplicate_unknown_is_404(self, client: TestClient, admin_headers):
        response = client.post("/api/formula-presets/999/duplicate", json={"name": "Copy"}, headers=admin_headers)
        assert response.status_code == 404

    def test_suggestions_endpoint(self, client: TestClient, admin_headers):
        response = client.get("/api/formula-presets/suggestions?athlete_count=100", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["presets"][0]["id"] == "multi-round-poules"

    def test_missing_identity_is_401(self, client: TestClient):
        assert client.get("/api/formula-presets").status_code == 401


# ============================================================================
# Applying a preset
# ============================================================================


class TestApplyPreset:
    def test_apply_built_in_fits_registrations(
        self, client: TestClient, session: Session, competition, admin_headers
    ):
        register(session, competition.id, 17)

        response = client.post(
            f"/api/competitions/{competition.id}/phases/preset",
            json={"preset_id": "classic-no-3rd"},
            headers=admin_headers,
        )

        assert response.status_code == 201, response.text
        phases = response.json()["phases"]
        assert [p["phase_type"] for p in phases] == ["POULE", "DIRECT_ELIMINATION"]
        assert phases[0]["configuration"]["qualification_percentage"] == 70
        assert phases[0]["configuration"]["separate_countries"] is True
        assert phases[0]["configuration"]["target_pool_size"] == 5
        assert phases[1]["bracket_configs"][0]["size"] == 32

        generated = client.post(f"/api/competitions/{competition.id}/generate", json={}, headers=admin_headers)
        assert generated.status_code == 201, generated.text
        bracket = generated.json()["generated"]["brackets"][0]
        assert bracket["competitor_count"] == 11

    def test_apply_without_athletes_uses_stored_sizes(
        self, client: TestClient, session: Session, competition, admin_headers
    ):
        response = client.post(
            f"/api/competitions/{competition.id}/phases/preset",
            json={"preset_id": "national-championship"},
            headers=admin_headers,
        )

        assert response.status_code == 201, response.text
        sizes = [p["bracket_configs"][0]["size"] for p in response.json()["phases"][1:]]
        assert sizes == [128, 16, 8]

    def test_apply_organization_preset_replaces_formula(
        self, client: TestClient, session: Session, competition, admin_headers
    ):
        preset_id = create(client, admin_headers).json()["preset"]["id"]
        client.post(
            f"/api/competitions/{competition.id}/phases/preset",
            json={"preset_id": "direct-elimination-only"},
            headers=admin_headers,
        )

        response = client.post(
            f"/api/competitions/{competition.id}/phases/preset",
            json={"preset_id": preset_id, "athlete_count": 0},
            headers=admin_headers,
        )

        assert response.status_code == 201, response.text
        session.expire_all()
        stored = session.exec(select(Phase).where(Phase.competition_id == competition.id)).all()
        assert sorted(p.name for p in stored) == ["Poules", "Tableau"]

    def test_unknown_preset_is_404(self, client: TestClient, competition, admin_headers):
        response = client.post(
            f"/api/competitions/{competition.id}/phases/preset",
            json={"preset_id": "no-such-preset"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_other_organization_cannot_apply(self, client: TestClient, competition, other_org_headers):
        response = client.post(
            f"/api/competitions/{competition.id}/phases/preset",
            json={"preset_id": "round-robin"},
            headers=other_org_headers,
        )
        assert response.status_code == 403

    def test_system_admin_needs_organization_to_create(self, client: TestClient, sysadmin_headers):
        assert create(client, sysadmin_headers).status_code == 403
        response = create(client, sysadmin_headers, organization_id=OTHER_ORG_ID)
        assert response.status_code == 201
        assert response.json()["preset"]["organization_id"] == OTHER_ORG_ID
