"""
Financials API Tests

HTTP contract of the blueprint, dynamics, ratio, tree, guardrail and
preference routes.
"""

import pytest

from document_store import DocumentStore
from financials_models import DocumentKind


BLUEPRINT_PAYLOAD = {
    "startMonth": "2025-01",
    "monthCount": 12,
    "fiscalYear": {"startMonth": 1},
    "ratios": [{"id": "gm", "label": "Gross margin", "numeratorCode": "GROSS", "denominatorCode": "REV"}],
    "lines": [
        {"id": "rev", "code": "REV", "name": "Revenue", "computation": "children"},
        {"id": "rev-a", "code": "REV_A", "name": "Product", "indent": 1, "months": {"2025-01": 100}},
        {"id": "cost", "code": "COST", "name": "Costs", "nature": "cost", "months": {"2025-01": 40}},
        {"id": "gross", "code": "GROSS", "name": "Gross profit", "computation": "cumulative"},
    ],
}


def _seed_initiative(db_session, initiative_id, line_code, amount, stage="l2"):
    DocumentStore(db_session).insert(DocumentKind.INITIATIVE.value, initiative_id, {
        "name": f"Initiative {initiative_id}",
        "activeStage": stage,
        "stages": {stage: {"financials": {"recurring-benefits": [
            {"id": f"{initiative_id}-e", "lineCode": line_code, "distribution": {"2025-01": amount}},
        ]}}},
    })


@pytest.fixture
def saved_blueprint(api_client):
    api_client.get("/financials/blueprint")
    response = api_client.put("/financials/blueprint", json={"blueprint": BLUEPRINT_PAYLOAD, "expectedVersion": 1})
    assert response.status_code == 200
    return response.json()


@pytest.mark.integration
class TestBlueprintRoutes:

    def test_get_creates_default(self, api_client):
        response = api_client.get("/financials/blueprint")

        assert response.status_code == 200
        body = response.json()
        assert body["version"] == 1
        assert len(body["lines"]) == 21

    def test_put_bumps_version(self, saved_blueprint):
        assert saved_blueprint["version"] == 2
        assert [line["code"] for line in saved_blueprint["lines"]] == ["REV", "REV_A", "COST", "GROSS"]

    def test_stale_version_is_409(self, api_client, saved_blueprint):
        response = api_client.put("/financials/blueprint", json={"blueprint": BLUEPRINT_PAYLOAD, "expectedVersion": 1})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "version-conflict"

    def test_non_integer_version_is_400(self, api_client):
        response = api_client.put("/financials/blueprint", json={"blueprint": BLUEPRINT_PAYLOAD, "expectedVersion": "1"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid-input"

    def test_non_object_blueprint_is_400(self, api_client):
        api_client.get("/financials/blueprint")
        response = api_client.put("/financials/blueprint", json={"blueprint": [1, 2], "expectedVersion": 1})
        assert response.status_code == 400


@pytest.mark.integration
class TestDynamicsRoutes:

    def test_dynamics(self, api_client, db_session, saved_blueprint):
        _seed_initiative(db_session, "i1", "REV_A", 10)

        response = api_client.post("/financials/dynamics", json={
            "settings": {"viewMode": "quarters"}, "periodMonth": 3, "periodYear": 2025,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["month_keys"] == ["2025-01", "2025-02", "2025-03"]
        assert [b["key"] for b in body["buckets"]] == ["2025-Q1"]
        assert body["initiative_count"] == 1
        assert body["values"]["plan"]["gross"]["2025-01"] == "10"
        assert body["period"] == {"periodMonth": 3, "periodYear": 2025}

    def test_empty_stage_selection(self, api_client, db_session, saved_blueprint):
        _seed_initiative(db_session, "i1", "REV_A", 10)

        body = api_client.post("/financials/dynamics", json={"settings": {"stageKeys": []}}).json()
        assert body["initiative_count"] == 0

    def test_breakdown(self, api_client, db_session, saved_blueprint):
        _seed_initiative(db_session, "i1", "REV_A", 10)
        _seed_initiative(db_session, "i2", "REV_A", 30)

        response = api_client.post("/financials/dynamics/breakdown", json={
            "lineId": "rev-a", "bucketKey": "2025-01", "mode": "plan",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == "40"
        assert [row["initiative_id"] for row in body["rows"]] == ["i2", "i1"]
        assert [row["share"] for row in body["rows"]] == ["75.0", "25.0"]

    def test_breakdown_unknown_line_is_404(self, api_client, saved_blueprint):
        response = api_client.post("/financials/dynamics/breakdown", json={
            "lineId": "missing", "bucketKey": "2025-01",
        })

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "not-found"

    def test_breakdown_invalid_mode_is_422(self, api_client, saved_blueprint):
        response = api_client.post("/financials/dynamics/breakdown", json={
            "lineId": "rev-a", "bucketKey": "2025-01", "mode": "forecast",
        })
        assert response.status_code == 422

    def test_ratios(self, api_client, saved_blueprint):
        body = api_client.get("/financials/ratios", params={"periodMonth": 1, "periodYear": 2025}).json()

        gross = body["ratios"][0]
        assert gross["last_month"]["display"] == "60.0%"
        assert gross["fiscal_year_label"] == 2025

    def test_tree(self, api_client, db_session, saved_blueprint):
        _seed_initiative(db_session, "i1", "REV_A", 10)

        body = api_client.get("/financials/tree", params={"year": 2025}).json()

        assert body["root"]["line_id"] == "gross"
        assert body["root"]["base_value"] == "60"
        assert body["root"]["initiative_value"] == "10"

    def test_guardrails(self, api_client, db_session, saved_blueprint):
        _seed_initiative(db_session, "i1", "UNKNOWN", 10)

        body = api_client.get("/financials/guardrails").json()

        assert body["unlinked_entries"] == 1
        assert body["clean"] is False


@pytest.mark.integration
class TestPreferenceRoutes:

    def test_defaults_then_partial_update(self, api_client):
        body = api_client.get("/financial-dynamics/preferences/acct-1").json()
        assert body["settings"]["viewMode"] == "months"
        assert body["favorites"] == []

        response = api_client.put("/financial-dynamics/preferences/acct-1", json={
            "settings": {"viewMode": "fiscal", "stageKeys": []},
        })
        assert response.status_code == 200
        updated = response.json()
        assert updated["settings"]["viewMode"] == "fiscal"
        assert updated["settings"]["stageKeys"] == ["l0", "l1", "l2", "l3", "l4", "l5"]

        response = api_client.put("/financial-dynamics/preferences/acct-1", json={"favorites": ["rev", "rev"]})
        assert response.json()["favorites"] == ["rev"]
        assert response.json()["settings"]["viewMode"] == "fiscal"
