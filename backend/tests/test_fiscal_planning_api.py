"""
HTTP API Tests
Routes, request validation and PlanningError -> JSON error mapping.
"""

import pytest


def _create_plan_with_priority(client, fiscal_year="FY27"):
    plan = client.post("/fiscal-planning/plans", json={
        "fiscal_year": fiscal_year, "start_date": "2026-07-01", "end_date": "2027-06-30"
    }).json()
    priorities = client.put(f"/fiscal-planning/plans/{plan['id']}/priorities", json={
        "priorities": [{"priority_number": 1, "title": "Revenue Growth"}]
    }).json()
    return plan, priorities[0]


@pytest.mark.integration
class TestFiscalPlanningAPI:

    def test_create_and_list_plans(self, client):
        response = client.post("/fiscal-planning/plans", json={"fiscal_year": "FY27"})
        assert response.status_code == 200
        assert response.json()["status"] == "draft"

        plans = client.get("/fiscal-planning/plans").json()
        assert [p["fiscal_year"] for p in plans] == ["FY27"]

    def test_duplicate_plan_is_conflict(self, client):
        client.post("/fiscal-planning/plans", json={"fiscal_year": "FY27"})
        response = client.post("/fiscal-planning/plans", json={"fiscal_year": "FY27"})

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_fiscal_year"

    def test_unknown_plan_is_404(self, client):
        response = client.get("/fiscal-planning/plans/999")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_no_active_plan(self, client):
        assert client.get("/fiscal-planning/plans/active").status_code == 404

    def test_invalid_priorities_are_400(self, client):
        plan = client.post("/fiscal-planning/plans", json={"fiscal_year": "FY27"}).json()
        response = client.put(f"/fiscal-planning/plans/{plan['id']}/priorities", json={
            "priorities": [{"priority_number": 2, "title": "Gap"}]
        })
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_priority"

    def test_full_flow(self, client):
        plan, priority = _create_plan_with_priority(client)

        generated = client.post(f"/fiscal-planning/priorities/{priority['id']}/generate", json={
            "context": {"industry": "SaaS"}, "count": 3
        })
        assert generated.status_code == 200
        body = generated.json()
        assert body["generator"] == "template"
        strategies = body["strategies"]
        assert len(strategies) == 3

        chosen = strategies[1]
        approved = client.patch(f"/fiscal-planning/strategies/{chosen['id']}/status", json={
            "status": "approved", "reviewed_by": "ceo", "review_notes": "Go"
        }).json()
        assert approved["status"] == "approved"
        assert approved["reviewed_by"] == "ceo"

        converted = client.post(f"/fiscal-planning/plans/{plan['id']}/convert-to-ogsm", json={
            "strategy_ids": [chosen["id"], strategies[0]["id"]]
        }).json()
        assert converted["converted_count"] == 1
        assert converted["failures"][0]["error"] == "not_approved"

        locked = client.patch(f"/fiscal-planning/strategies/{chosen['id']}/status", json={"status": "rejected"})
        assert locked.status_code == 409
        assert locked.json()["error"] == "strategy_locked"

        specs = client.get(f"/fiscal-planning/strategies/{chosen['id']}/kpi-specs").json()["specs"]
        specs[0]["target_value"] = 5000
        created = client.post(f"/fiscal-planning/strategies/{chosen['id']}/kpis", json={
            "kpis": [specs[0], {"name": "", "frequency": "monthly"}]
        }).json()
        assert created["created_count"] == 1
        assert created["failures"][0]["index"] == 1
        kpi_id = created["kpi_ids"][0]

        for value, day in [("1000", "2026-07-01"), ("2500", "2026-08-01"), ("4200", "2026-09-01")]:
            response = client.post(f"/kpis/{kpi_id}/history", json={"value": value, "recorded_date": day})
            assert response.status_code == 200

        kpi = client.get(f"/kpis/{kpi_id}").json()
        assert kpi["current_value"] == 4200
        assert kpi["status"] == "at_risk"

        forecast = client.get(f"/kpis/{kpi_id}/forecast", params={"periods": 2}).json()
        assert forecast["trend"] == "increasing"
        assert len(forecast["projections"]) == 2

        activated = client.post(f"/fiscal-planning/plans/{plan['id']}/activate")
        assert activated.json()["status"] == "active"
        assert client.get("/fiscal-planning/plans/active").json()["id"] == plan["id"]

        summary = client.get(f"/fiscal-planning/plans/{plan['id']}/summary").json()
        assert summary["converted_count"] == 1
        assert summary["kpi_health"]["at_risk"] == 1

    def test_activation_conflict(self, client):
        plan, priority = _create_plan_with_priority(client)
        draft = client.post(f"/fiscal-planning/plans/{plan['id']}/strategies", json={
            "priority_id": priority["id"], "strategy": {"title": "Manual strategy"}
        }).json()
        client.patch(f"/fiscal-planning/strategies/{draft['id']}/status", json={"status": "approved"})

        response = client.post(f"/fiscal-planning/plans/{plan['id']}/activate")
        assert response.status_code == 409
        assert response.json()["error"] == "unconverted_strategies"

    def test_kpi_batch_with_bad_unit_keeps_good_specs(self, client, converted_strategy):
        response = client.post(f"/fiscal-planning/strategies/{converted_strategy.id}/kpis", json={
            "kpis": [
                {"name": "Good KPI", "frequency": "monthly", "target_value": 10},
                {"name": "Bad unit", "frequency": "monthly", "unit": ["%"]},
            ]
        })

        assert response.status_code == 200
        body = response.json()
        assert body["created_count"] == 1
        assert body["failures"][0]["index"] == 1

    def test_generate_count_out_of_range(self, client):
        _, priority = _create_plan_with_priority(client)
        response = client.post(f"/fiscal-planning/priorities/{priority['id']}/generate", json={"count": 9})
        assert response.status_code == 400


@pytest.mark.integration
class TestKPIAPI:

    def test_insufficient_history_forecast(self, client, sample_kpi):
        response = client.get(f"/kpis/{sample_kpi.id}/forecast")
        assert response.status_code == 200
        assert response.json()["insufficient_data"] is True
        assert response.json()["projections"] == []

    def test_forecast_periods_validated(self, client, sample_kpi):
        response = client.get(f"/kpis/{sample_kpi.id}/forecast", params={"periods": 30})
        assert response.status_code == 400

    def test_alerts_and_acknowledge(self, client, sample_kpi):
        client.post(f"/kpis/{sample_kpi.id}/history", json={"value": 10, "recorded_date": "2026-08-01"})

        alerts = client.get("/kpis/alerts", params={"kpi_id": sample_kpi.id}).json()
        assert len(alerts) == 1
        assert alerts[0]["severity"] == "high"

        acked = client.post(f"/kpis/alerts/{alerts[0]['id']}/acknowledge", json={"acknowledged_by": "analyst"})
        assert acked.json()["acknowledged"] is True

    def test_update_target(self, client, sample_kpi):
        client.post(f"/kpis/{sample_kpi.id}/history", json={"value": 80, "recorded_date": "2026-08-01"})
        response = client.put(f"/kpis/{sample_kpi.id}/target", json={"target_value": 80})
        assert response.json()["status"] == "on_track"

    def test_stats_and_history(self, client, sample_kpi):
        client.post(f"/kpis/{sample_kpi.id}/history", json={"value": 30, "recorded_date": "2026-09-01"})
        client.post(f"/kpis/{sample_kpi.id}/history", json={"value": 10, "recorded_date": "2026-08-01"})

        history = client.get(f"/kpis/{sample_kpi.id}/history").json()
        assert [h["value"] for h in history] == [10, 30]

        stats = client.get(f"/kpis/{sample_kpi.id}/stats").json()
        assert stats["data_points"] == 2
        assert stats["average"] == 20

    def test_unknown_kpi(self, client):
        response = client.get("/kpis/12345")
        assert response.status_code == 404
