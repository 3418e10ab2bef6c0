"""
test_project_estimator.py — End-to-end tests for calculate_electrical_project.

Tests cover:
  - Typed errors: no rooms, no supply phase, invalid rooms, strict diversity
  - The house scenario: circuits, RCD protection, compliance, totals
  - Zero-point boundary: zero hours, zero cost, no findings
  - Time factors: installation profile, high ceilings, calibrated coefficients
  - Material composition: components, cable with waste, panel
  - Typed products (EV charger, heat pump)
  - Risk buffer precedence: override → learning suggestion → default
  - Determinism and the estimate snapshot for the learning loop
"""

import pytest

from elkalk.models.electrical import CircuitType, PhaseType
from elkalk.models.learning import Adjustment
from elkalk.models.schemas import ElectricalProjectRequest
from elkalk.services.project_estimator import (
    ElectricalProjectResult,
    EstimationError,
    calculate_electrical_project,
    result_to_dict,
)
from elkalk.services.reference_tables import ReferenceTables, component_time_key


def _request(rooms, phase="single", **kwargs):
    return ElectricalProjectRequest(rooms=rooms, supply_phase=phase, **kwargs)


def _estimate(request, tables, **kwargs):
    result = calculate_electrical_project(request, tables, **kwargs)
    assert isinstance(result, ElectricalProjectResult), result
    return result


def _outlet_room(**overrides):
    room = {"name": "Stue", "room_type": "living_room", "electrical_points": {"outlets": 4}}
    room.update(overrides)
    return room


# ===========================================================================
# Class 1: Validation
# ===========================================================================

class TestValidation:

    def test_no_rooms(self, tables):
        result = calculate_electrical_project(_request([]), tables)
        assert isinstance(result, EstimationError)
        assert result.code == "ROOMS_REQUIRED"
        assert result.field == "rooms"

    def test_no_supply_phase(self, tables):
        request = ElectricalProjectRequest(rooms=[_outlet_room()])
        result = calculate_electrical_project(request, tables)
        assert isinstance(result, EstimationError)
        assert result.code == "SUPPLY_PHASE_REQUIRED"

    def test_duplicate_room_names(self, tables):
        result = calculate_electrical_project(_request([_outlet_room(), _outlet_room()]), tables)
        assert result.code == "INVALID_ROOM"
        assert result.field == "rooms[1].name"

    def test_negative_quantity(self, tables):
        room = _outlet_room(electrical_points={"outlets": -1})
        result = calculate_electrical_project(_request([room]), tables)
        assert result.code == "INVALID_ROOM"
        assert result.field == "rooms[0].electrical_points.outlets"

    def test_error_dict(self, tables):
        data = calculate_electrical_project(_request([]), tables).to_dict()
        assert data == {"code": "ROOMS_REQUIRED", "message": "At least one room is required", "field": "rooms"}

    def test_strict_unknown_diversity_group(self):
        tables = ReferenceTables(diversity_factors={"residential": {"lighting": 0.85}})
        result = calculate_electrical_project(_request([_outlet_room()]), tables, strict_diversity=True)
        assert isinstance(result, EstimationError)
        assert result.code == "UNKNOWN_DIVERSITY_GROUP"
        assert "socket_outlet" in result.message

    def test_lenient_unknown_diversity_group_warns(self):
        tables = ReferenceTables(diversity_factors={"residential": {"lighting": 0.85}})
        result = _estimate(_request([_outlet_room()]), tables, strict_diversity=False)
        assert any("socket_outlet" in w for w in result.estimate.warnings)


# ===========================================================================
# Class 2: House scenario
# ===========================================================================

class TestHouse:
    """Living room, kitchen and bathroom on a single-phase supply."""

    @pytest.fixture
    def result(self, house_rooms, tables):
        return _estimate(_request(house_rooms, calculation_id="house-1"), tables)

    def test_circuits(self, result):
        # Stue: sockets, lighting · Køkken: sockets, lighting, dishwasher · Bad: sockets, lighting
        assert len(result.panel.circuits) == 7
        assert [c.id for c in result.panel.circuits] == list(range(1, 8))

    def test_bathroom_and_sockets_on_rcd(self, result):
        for c in result.panel.circuits:
            if c.room_name == "Bad" or c.circuit_type is CircuitType.SOCKET:
                assert c.rcd_group_id is not None

    def test_compliant(self, result):
        assert result.compliance.compliant is True
        assert result.compliance.summary["critical"] == 0

    def test_totals(self, result):
        est = result.estimate
        assert est.total_points == 25
        assert est.total_hours > 0
        assert abs(est.total_hours - (est.installation_hours + est.panel_hours)) <= 0.01
        assert est.pricing.labor_hours == pytest.approx(est.total_hours, abs=0.01)
        assert est.final_amount > est.pricing.net_price > est.pricing.cost_price

    def test_material_composition(self, result):
        est = result.estimate
        cable = sum(r.total_cable_cost for r in result.cable_sizing) * 1.10
        assert est.cable_material_cost == pytest.approx(cable, abs=0.01)
        assert est.panel_material_cost == result.panel.material_cost
        assert est.material_cost == pytest.approx(
            est.component_material_cost + est.cable_material_cost + est.panel_material_cost, abs=0.05,
        )

    def test_one_cable_result_per_circuit(self, result):
        assert [r.circuit_id for r in result.cable_sizing] == [c.id for c in result.panel.circuits]

    def test_bathroom_obs_note(self, result):
        assert any("Wet-room" in n for n in result.estimate.obs_points)

    def test_calculation_id_kept(self, result):
        assert result.calculation_id == "house-1"

    def test_snapshot_for_learning(self, result):
        record = result.to_record()
        assert record.calculation_id == "house-1"
        assert record.estimated_hours == result.estimate.total_hours
        assert record.estimated_material_cost == result.estimate.material_cost
        assert record.estimated_price == result.estimate.pricing.net_price
        assert record.complexity_score == result.complexity_score
        assert "outlet.single" in record.component_hours
        assert set(record.profile_hours) == {"standard"}
        assert record.total_points == 25

    def test_dict_shape(self, result):
        data = result_to_dict(result)
        assert set(data) == {
            "calculation_id", "supply_phase", "building_type", "complexity_score",
            "load_analysis", "panel", "cable_sizing", "compliance", "estimate", "risk_analysis",
        }
        assert data["estimate"]["pricing"]["final_amount"] == result.estimate.final_amount

    def test_deterministic(self, house_rooms, tables):
        a = result_to_dict(_estimate(_request(house_rooms, calculation_id="same"), tables))
        b = result_to_dict(_estimate(_request(house_rooms, calculation_id="same"), tables))
        assert a == b

    def test_generated_calculation_ids_differ(self, house_rooms, tables):
        a = _estimate(_request(house_rooms), tables)
        b = _estimate(_request(house_rooms), tables)
        assert a.calculation_id != b.calculation_id

    def test_existing_surge_protection(self, house_rooms, tables, result):
        kept = _estimate(_request(house_rooms, include_surge_protection=False), tables)
        assert kept.panel.surge_protection is False
        assert kept.panel.material_cost < result.panel.material_cost
        assert "SURGE_PROTECTION" in [f.code for f in kept.compliance.findings]
        assert kept.compliance.compliant is True


# ===========================================================================
# Class 3: Zero-point boundary
# ===========================================================================

class TestZeroPoints:

    def test_empty_room(self, tables):
        result = _estimate(_request([{"name": "Gang", "room_type": "hall"}]), tables)
        est = result.estimate
        assert est.total_points == 0
        assert est.total_hours == 0
        assert est.material_cost == 0
        assert est.pricing.other_costs == 0
        assert est.final_amount == 0
        assert result.panel.circuits == []
        assert result.compliance.compliant is True
        assert result.compliance.findings == []
        assert est.anomalies == []
        assert est.obs_points == []


# ===========================================================================
# Class 4: Time factors
# ===========================================================================

class TestTimeFactors:
    """4 single outlets = 4 × 1800 s = 2 h on the standard profile."""

    def test_standard_profile(self, tables):
        line = _estimate(_request([_outlet_room()]), tables).estimate.lines[0]
        assert line.component_code == "outlet.single"
        assert line.hours == 2.0
        assert line.material_cost == round(85 * 4 * 1.05, 2)

    def test_concrete_profile(self, tables):
        line = _estimate(_request([_outlet_room(installation_profile="concrete")]), tables).estimate.lines[0]
        assert line.hours == pytest.approx(4.4)
        assert line.material_cost == round(85 * 4 * 1.10, 2)

    def test_high_ceiling(self, tables):
        line = _estimate(_request([_outlet_room(ceiling_height_m=3.5)]), tables).estimate.lines[0]
        assert line.hours == pytest.approx(2.4)

    def test_unknown_profile_uses_standard(self, tables):
        est = _estimate(_request([_outlet_room(installation_profile="marble")]), tables).estimate
        assert est.lines[0].installation_profile == "standard"
        assert any("marble" in w for w in est.warnings)

    def test_unknown_point_type_ignored(self, tables):
        room = _outlet_room(electrical_points={"outlets": 2, "jacuzzi": 1})
        est = _estimate(_request([room]), tables).estimate
        assert est.total_points == 2
        assert any("jacuzzi" in w for w in est.warnings)

    def test_calibrated_coefficient_is_used(self, fresh_tables):
        before = _estimate(_request([_outlet_room()]), fresh_tables).estimate.lines[0].hours
        fresh_tables.apply_batch([Adjustment(
            component_time_key("outlet.single"), "component_time", 1800.0, 3600.0, 5, 100.0, 0.5,
        )])
        after = _estimate(_request([_outlet_room()]), fresh_tables).estimate.lines[0].hours
        assert after == pytest.approx(2 * before)


# ===========================================================================
# Class 5: Products
# ===========================================================================

class TestProducts:

    def test_ev_charger_three_phase(self, tables):
        room = {
            "name": "Carport",
            "room_type": "outdoor",
            "products": [{"name": "Easee Home", "specification": {"kind": "ev_charger", "power_kw": 11}}],
        }
        result = _estimate(_request([room], phase="three"), tables)
        ev = result.panel.circuits[0]
        assert ev.circuit_type is CircuitType.EV
        assert ev.poles == 3
        assert result.panel.rcd_group(ev.rcd_group_id).rcd_type == "B"
        assert result.compliance.compliant is True
        assert result.estimate.lines[0].component_code == "product.connection"
        assert any("EV charger" in n for n in result.estimate.obs_points)

    def test_heat_pump_electrical_input(self, tables):
        room = {
            "name": "Teknik",
            "room_type": "utility",
            "products": [{
                "name": "Luft/vand",
                "specification": {"kind": "heat_pump", "capacity_kw": 6, "cop": 3},
            }],
        }
        result = _estimate(_request([room]), tables)
        assert result.loads[0].power_watts == pytest.approx(2000.0)
        assert result.loads[0].diversity_group == "heating"

    def test_ev_on_single_phase_supply(self, tables):
        room = {"name": "Carport", "room_type": "outdoor", "electrical_points": {"ev_charger": 1}}
        result = _estimate(_request([room]), tables)
        assert result.supply_phase is PhaseType.SINGLE
        assert result.panel.circuits[0].poles == 1


# ===========================================================================
# Class 6: Risk buffer precedence
# ===========================================================================

class TestRiskBuffer:

    def test_default(self, tables):
        est = _estimate(_request([_outlet_room()]), tables).estimate
        assert est.risk_buffer_source == "default"
        assert est.pricing.risk_percentage == 3.0

    def test_learning_suggestion(self, tables):
        suggestions = {0: 0.0, 1: 4.0, 2: 6.0, 3: 8.0, 4: 10.0, 5: 15.0}
        est = _estimate(
            _request([_outlet_room()], complexity_score=2), tables, risk_buffer_by_complexity=suggestions,
        ).estimate
        assert est.risk_buffer_source == "learning"
        assert est.pricing.risk_percentage == 6.0

    def test_override_wins(self, tables):
        suggestions = {c: 9.0 for c in range(6)}
        est = _estimate(
            _request([_outlet_room()], pricing={"risk_buffer_percentage": 7}),
            tables,
            risk_buffer_by_complexity=suggestions,
        ).estimate
        assert est.risk_buffer_source == "override"
        assert est.pricing.risk_percentage == 7.0

    def test_complexity_falls_back_to_risk_score(self, tables):
        result = _estimate(_request([_outlet_room()], building_age_years=70), tables)
        assert result.complexity_score == result.estimate.risk_analysis.risk_score

    def test_renovation_upgrade_reported(self, tables):
        room = {"name": "Carport", "room_type": "outdoor", "electrical_points": {"ev_charger": 1}}
        result = _estimate(_request([room], is_renovation=True, existing_supply_a=25), tables)
        assert result.panel.upgrade_required is True
        assert any(f.code == "SUPPLY_UPGRADE" for f in result.compliance.findings)
