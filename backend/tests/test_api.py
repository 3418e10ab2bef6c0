"""
test_api.py — HTTP tests for the elkalk FastAPI app.

Tests cover:
  - /health and the request-tracing headers
  - POST /api/v1/electrical/estimate: success, typed 422 errors, schema validation
  - POST /api/v1/electrical/cable-size
  - The learning loop over HTTP: feedback → metrics → auto-calibrate → apply → history,
    and the conflict returned for a batch proposed against a since-changed value
  - Suggested risk buffers and their use in a new estimate

Each test runs against fresh in-memory services (see conftest.client).
"""

import pytest

from elkalk.models.learning import Adjustment

_ESTIMATE = "/api/v1/electrical/estimate"
_LEARNING = "/api/v1/learning"
_OUTLET_KEY = "component.outlet.single.time_seconds"


def _estimate(client, rooms, **body):
    return client.post(_ESTIMATE, json={"rooms": rooms, "supply_phase": "single", **body})


# ===========================================================================
# Class 1: Health and middleware
# ===========================================================================

class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "active"
        assert data["db_configured"] is False

    def test_request_id_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"
        assert float(resp.headers["X-Process-Time"]) >= 0

    def test_request_id_generated(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Request-ID"]


# ===========================================================================
# Class 2: Estimation
# ===========================================================================

class TestEstimateEndpoint:

    def test_house_estimate(self, client, house_rooms):
        resp = _estimate(client, house_rooms, calculation_id="house-1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["calculation_id"] == "house-1"
        assert data["compliance"]["compliant"] is True
        assert len(data["panel"]["circuits"]) == 7
        assert data["estimate"]["total_points"] == 25
        assert data["estimate"]["pricing"]["final_amount"] > 0
        assert data["estimate"]["risk_buffer_source"] == "default"
        assert resp.headers["X-Calculation-ID"] == "house-1"

    def test_no_rooms(self, client):
        resp = _estimate(client, [])
        assert resp.status_code == 422
        assert "X-Calculation-ID" not in resp.headers
        assert resp.json()["detail"]["code"] == "ROOMS_REQUIRED"

    def test_no_supply_phase(self, client, house_rooms):
        resp = client.post(_ESTIMATE, json={"rooms": house_rooms})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "SUPPLY_PHASE_REQUIRED"

    def test_schema_validation(self, client):
        resp = _estimate(client, [{"name": "Stue", "area_m2": -5}])
        assert resp.status_code == 422
        assert isinstance(resp.json()["detail"], list)

    def test_invalid_supply_phase(self, client, house_rooms):
        resp = client.post(_ESTIMATE, json={"rooms": house_rooms, "supply_phase": "two"})
        assert resp.status_code == 422

    def test_estimate_is_recorded(self, client, services, house_rooms):
        import asyncio
        _estimate(client, house_rooms, calculation_id="rec-1")
        record = asyncio.run(services.learning.estimates.get("rec-1"))
        assert record is not None
        assert record.total_points == 25


class TestCableSizeEndpoint:

    def test_cable_size(self, client):
        resp = client.post("/api/v1/electrical/cable-size", json={"power_watts": 3000, "length_meters": 20})
        assert resp.status_code == 200
        data = resp.json()
        assert data["cross_section_mm2"] == 1.5
        assert data["compliant"] is True
        assert data["voltage_drop_percent"] <= 5.0

    def test_rejects_zero_length(self, client):
        resp = client.post("/api/v1/electrical/cable-size", json={"power_watts": 3000, "length_meters": 0})
        assert resp.status_code == 422


# ===========================================================================
# Class 3: Learning loop
# ===========================================================================

class TestLearningLoop:

    def _seed_overruns(self, client, rooms, n=5, factor=1.3):
        for i in range(n):
            data = _estimate(client, rooms, calculation_id=f"job-{i}").json()
            actual = data["estimate"]["total_hours"] * factor
            resp = client.post(f"{_LEARNING}/feedback", json={
                "calculation_id": f"job-{i}",
                "actual_hours": actual,
                "offer_accepted": True,
            })
            assert resp.status_code == 200

    def test_feedback_unknown_calculation(self, client):
        resp = client.post(f"{_LEARNING}/feedback", json={"calculation_id": "nope", "actual_hours": 3})
        assert resp.status_code == 404

    def test_feedback_variance(self, client, house_rooms):
        data = _estimate(client, house_rooms, calculation_id="fb-1").json()
        hours = data["estimate"]["total_hours"]
        resp = client.post(f"{_LEARNING}/feedback", json={"calculation_id": "fb-1", "actual_hours": hours * 1.1})
        body = resp.json()
        assert body["estimated_hours"] == hours
        assert body["hours_variance_pct"] == pytest.approx(10.0)
        assert "recorded_at" in body

    def test_metrics(self, client, house_rooms):
        self._seed_overruns(client, house_rooms, n=2)
        data = client.get(f"{_LEARNING}/metrics").json()
        assert data["total_records"] == 2
        assert data["hours_mape"] == pytest.approx(30.0, abs=0.01)
        assert data["accuracy_score"] == pytest.approx(70.0, abs=0.1)
        assert data["acceptance_rate"] == 100.0

    def test_calibrate_and_apply(self, client, services, house_rooms):
        self._seed_overruns(client, house_rooms)
        calibrations = client.get(f"{_LEARNING}/calibrations").json()
        assert calibrations and all(c["needs_adjustment"] for c in calibrations)

        proposal = client.post(f"{_LEARNING}/auto-calibrate").json()
        assert proposal["applied_at"] is None
        outlet = next(a for a in proposal["adjustments"] if a["key"] == "component.outlet.single.time_seconds")
        assert outlet["new_value"] == 2160.0
        assert outlet["change_pct"] == 20.0
        # Proposing changes nothing
        assert services.tables.component_time_seconds("outlet.single") == 1800.0

        applied = client.post(f"{_LEARNING}/apply", json={"batch_id": proposal["batch_id"]})
        assert applied.status_code == 200
        assert applied.json()["applied_at"] is not None
        assert services.tables.component_time_seconds("outlet.single") == 2160.0

        again = client.post(f"{_LEARNING}/apply", json={"batch_id": proposal["batch_id"]})
        assert again.status_code == 200
        assert again.json()["applied_at"] == applied.json()["applied_at"]
        assert services.tables.component_time_seconds("outlet.single") == 2160.0

        history = client.get(f"{_LEARNING}/history").json()
        assert [b["batch_id"] for b in history] == [proposal["batch_id"]]

    def test_estimate_uses_applied_coefficients(self, client, house_rooms):
        before = _estimate(client, house_rooms).json()["estimate"]["installation_hours"]
        self._seed_overruns(client, house_rooms)
        batch_id = client.post(f"{_LEARNING}/auto-calibrate").json()["batch_id"]
        client.post(f"{_LEARNING}/apply", json={"batch_id": batch_id})
        after = _estimate(client, house_rooms).json()["estimate"]["installation_hours"]
        assert after == pytest.approx(before * 1.2, rel=0.01)

    def test_apply_unknown_batch(self, client):
        resp = client.post(f"{_LEARNING}/apply", json={"batch_id": "missing"})
        assert resp.status_code == 404

    def test_apply_stale_batch_conflicts(self, client, services, house_rooms):
        self._seed_overruns(client, house_rooms)
        first = client.post(f"{_LEARNING}/auto-calibrate").json()["batch_id"]
        second = client.post(f"{_LEARNING}/auto-calibrate").json()["batch_id"]
        assert client.post(f"{_LEARNING}/apply", json={"batch_id": first}).status_code == 200
        services.tables.apply_batch([
            Adjustment(_OUTLET_KEY, "component_time", 2160.0, 2500.0, 5, 30.0, 0.5),
        ])

        resp = client.post(f"{_LEARNING}/apply", json={"batch_id": second})
        assert resp.status_code == 409
        assert services.tables.component_time_seconds("outlet.single") == 2500.0
        assert client.post(f"{_LEARNING}/apply", json={"batch_id": second}).status_code == 404


# ===========================================================================
# Class 4: Risk buffer
# ===========================================================================

class TestRiskBufferEndpoint:

    def test_default_table(self, client):
        data = client.get(f"{_LEARNING}/risk-buffer", params={"complexity_score": 2}).json()
        assert data["suggested_risk_buffer_percentage"] == 5.0
        assert data["by_complexity"] == {"0": 0.0, "1": 3.0, "2": 5.0, "3": 7.5, "4": 10.0, "5": 15.0}

    def test_out_of_range(self, client):
        resp = client.get(f"{_LEARNING}/risk-buffer", params={"complexity_score": 9})
        assert resp.status_code == 422

    def test_estimate_with_suggested_buffer(self, client, house_rooms):
        data = _estimate(client, house_rooms, complexity_score=3, use_suggested_risk_buffer=True).json()
        assert data["estimate"]["risk_buffer_source"] == "learning"
        assert data["estimate"]["pricing"]["risk_percentage"] == 7.5

    def test_explicit_override_beats_suggestion(self, client, house_rooms):
        data = _estimate(
            client, house_rooms,
            complexity_score=3,
            use_suggested_risk_buffer=True,
            pricing={"risk_buffer_percentage": 4},
        ).json()
        assert data["estimate"]["risk_buffer_source"] == "override"
        assert data["estimate"]["pricing"]["risk_percentage"] == 4.0
