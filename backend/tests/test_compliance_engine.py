"""
test_compliance_engine.py — Unit tests for the DS/HD 60364 compliance checker.

Tests cover:
  - A correctly configured panel passes with no critical findings
  - RCD rules: wet rooms, socket circuits, EV Type B
  - Voltage drop over the limit (critical) and within the margin band (warning)
  - Breaker/load and breaker/cable coordination, exhausted cable tables
  - Main breaker sizing, RCD group size, phase balance, spare capacity
  - Informational findings: supply upgrade, missing surge protection
  - The checker never modifies its inputs
"""

import copy
from dataclasses import replace

import pytest

from elkalk.models.electrical import CircuitType, LoadEntry, PhaseType, Room, Severity
from elkalk.services.compliance_engine import check_compliance, compliance_to_dict
from elkalk.services.panel_engine import configure_panel_from_loads, panel_to_dict, size_circuit_cables

_ROOMS = [
    Room("Stue", "living_room", area_m2=30),
    Room("Bad", "bathroom", area_m2=6),
    Room("Carport", "outdoor", area_m2=20),
]


def _loads():
    return [
        LoadEntry("Stue outlets 1", 230, circuit_type=CircuitType.SOCKET,
                  diversity_group="socket_outlet", room_name="Stue"),
        LoadEntry("Stue light 1", 60, circuit_type=CircuitType.LIGHTING,
                  diversity_group="lighting", room_name="Stue", power_factor=0.95),
        LoadEntry("Bad light 1", 60, circuit_type=CircuitType.LIGHTING,
                  diversity_group="lighting", room_name="Bad", power_factor=0.95),
        LoadEntry("Carport ev", 11_000, phase_requirement=3, circuit_type=CircuitType.EV,
                  is_continuous=True, diversity_group="ev_charger", room_name="Carport", power_factor=0.99),
    ]


@pytest.fixture
def configured(tables):
    """(panel, cable results) for a three-phase house with sockets, wet-room lighting and an EV charger."""
    panel = configure_panel_from_loads(_loads(), _ROOMS, PhaseType.THREE, False, tables=tables)
    return panel, size_circuit_cables(panel.circuits, tables=tables)


def _codes(result):
    return [f.code for f in result.findings]


# ===========================================================================
# Class 1: Baseline
# ===========================================================================

class TestBaseline:

    def test_configured_panel_is_compliant(self, configured, tables):
        panel, cables = configured
        result = check_compliance(panel, cables, _ROOMS, tables)
        assert result.compliant is True
        assert result.summary["critical"] == 0

    def test_inputs_not_modified(self, configured, tables):
        panel, cables = configured
        before_panel = panel_to_dict(panel)
        before_cables = copy.deepcopy(cables)
        check_compliance(panel, cables, _ROOMS, tables)
        assert panel_to_dict(panel) == before_panel
        assert cables == before_cables

    def test_empty_panel_has_no_findings(self, tables):
        panel = configure_panel_from_loads([], _ROOMS, PhaseType.SINGLE, False, tables=tables)
        result = check_compliance(panel, [], _ROOMS, tables)
        assert result.compliant is True
        assert result.findings == []

    def test_dict_shape(self, configured, tables):
        panel, cables = configured
        data = compliance_to_dict(check_compliance(panel, cables, _ROOMS, tables))
        assert set(data["summary"]) == {"info", "warning", "critical"}
        assert any("60364-7-722" in s for s in data["standards_checked"])


# ===========================================================================
# Class 2: RCD rules
# ===========================================================================

class TestRcdRules:

    def _without_rcd(self, panel, circuit_id):
        broken = copy.deepcopy(panel)
        broken.circuit(circuit_id).rcd_group_id = None
        return broken

    def test_wet_room_without_rcd(self, configured, tables):
        panel, cables = configured
        bath = next(c for c in panel.circuits if c.room_name == "Bad")
        result = check_compliance(self._without_rcd(panel, bath.id), cables, _ROOMS, tables)
        assert result.compliant is False
        finding = next(f for f in result.findings if f.code == "RCD_WET_ROOM")
        assert finding.severity is Severity.CRITICAL
        assert finding.related_circuit_id == bath.id

    def test_socket_without_rcd(self, configured, tables):
        panel, cables = configured
        socket = next(c for c in panel.circuits if c.circuit_type is CircuitType.SOCKET)
        result = check_compliance(self._without_rcd(panel, socket.id), cables, _ROOMS, tables)
        assert "RCD_SOCKET" in _codes(result)
        assert result.compliant is False

    def test_ev_on_type_a(self, configured, tables):
        panel, cables = configured
        broken = copy.deepcopy(panel)
        ev = next(c for c in broken.circuits if c.circuit_type is CircuitType.EV)
        broken.rcd_group(ev.rcd_group_id).rcd_type = "A"
        result = check_compliance(broken, cables, _ROOMS, tables)
        assert "EV_RCD_TYPE" in _codes(result)
        assert result.compliant is False

    def test_outdoor_ev_without_rcd_reports_both_rules(self, configured, tables):
        """The carport is an outdoor (wet) location, so the EV circuit trips two rules."""
        panel, cables = configured
        ev = next(c for c in panel.circuits if c.circuit_type is CircuitType.EV)
        result = check_compliance(self._without_rcd(panel, ev.id), cables, _ROOMS, tables)
        assert {"EV_RCD_TYPE", "RCD_WET_ROOM"} <= set(_codes(result))


# ===========================================================================
# Class 3: Cables and coordination
# ===========================================================================

class TestCables:

    def test_voltage_drop_over_limit(self, configured, tables):
        panel, cables = configured
        cables = [replace(cables[0], voltage_drop_percent=cables[0].voltage_drop_limit_percent + 1)] + cables[1:]
        result = check_compliance(panel, cables, _ROOMS, tables)
        assert "VOLTAGE_DROP" in _codes(result)
        assert result.compliant is False

    def test_voltage_drop_in_margin_band(self, configured, tables):
        panel, cables = configured
        near = cables[0].voltage_drop_limit_percent - 0.3
        cables = [replace(cables[0], voltage_drop_percent=near)] + cables[1:]
        result = check_compliance(panel, cables, _ROOMS, tables)
        finding = next(f for f in result.findings if f.code == "VOLTAGE_DROP_MARGIN")
        assert finding.severity is Severity.WARNING
        assert result.compliant is True

    def test_table_exhausted(self, configured, tables):
        panel, cables = configured
        cables = [replace(cables[0], ampacity_a=cables[0].design_current_a - 1)] + cables[1:]
        result = check_compliance(panel, cables, _ROOMS, tables)
        assert "CABLE_TABLE_EXHAUSTED" in _codes(result)

    def test_breaker_larger_than_cable(self, configured, tables):
        panel, cables = configured
        broken = copy.deepcopy(panel)
        socket = next(c for c in broken.circuits if c.circuit_type is CircuitType.SOCKET)
        socket.breaker_rating_a = 32
        result = check_compliance(broken, cables, _ROOMS, tables)
        finding = next(f for f in result.findings if f.code == "BREAKER_CABLE_MISMATCH")
        assert finding.related_circuit_id == socket.id
        assert result.compliant is False

    def test_coordination_without_sizing_uses_reference_table(self, configured, tables):
        panel, _ = configured
        broken = copy.deepcopy(panel)
        broken.circuits[0].breaker_rating_a = 40
        result = check_compliance(broken, [], _ROOMS, tables)
        assert "BREAKER_CABLE_MISMATCH" in _codes(result)

    def test_load_beyond_breaker_table(self, tables):
        """A 27.6 kW single-phase load draws 120 A; no standard breaker carries it."""
        heater = LoadEntry("Stue heater", 27_600, circuit_type=CircuitType.POWER, room_name="Stue")
        panel = configure_panel_from_loads([heater], _ROOMS, PhaseType.SINGLE, False, tables=tables)
        cables = size_circuit_cables(panel.circuits, tables=tables)
        circuit = panel.circuits[0]
        assert circuit.design_current_a > circuit.breaker_rating_a
        assert any("largest standard breaker" in w for w in panel.warnings)

        result = check_compliance(panel, cables, _ROOMS, tables)
        finding = next(f for f in result.findings if f.code == "BREAKER_BELOW_LOAD")
        assert finding.severity is Severity.CRITICAL
        assert finding.related_circuit_id == circuit.id
        assert result.compliant is False

    def test_breaker_below_design_current(self, configured, tables):
        panel, cables = configured
        broken = copy.deepcopy(panel)
        ev = next(c for c in broken.circuits if c.circuit_type is CircuitType.EV)
        ev.breaker_rating_a = 10
        result = check_compliance(broken, cables, _ROOMS, tables)
        finding = next(f for f in result.findings if f.code == "BREAKER_BELOW_LOAD")
        assert finding.related_circuit_id == ev.id
        assert result.compliant is False


# ===========================================================================
# Class 4: Panel-level rules
# ===========================================================================

class TestPanelRules:

    def test_main_breaker_undersized(self, configured, tables):
        panel, cables = configured
        broken = copy.deepcopy(panel)
        broken.main_breaker_rating_a = 6
        result = check_compliance(broken, cables, _ROOMS, tables)
        assert "MAIN_BREAKER_UNDERSIZED" in _codes(result)
        assert result.compliant is False

    def test_main_breaker_headroom_warning(self, configured, tables):
        panel, cables = configured
        broken = copy.deepcopy(panel)
        demand_a = broken.total_demand_load_w / (400 * 3 ** 0.5)
        broken.main_breaker_rating_a = demand_a * 1.05
        result = check_compliance(broken, cables, _ROOMS, tables)
        finding = next(f for f in result.findings if f.code == "MAIN_BREAKER_HEADROOM")
        assert finding.severity is Severity.WARNING

    def test_rcd_group_over_limit(self, configured, tables):
        panel, cables = configured
        result = check_compliance(panel, cables, _ROOMS, tables, max_circuits_per_rcd=1)
        assert "RCD_GROUP_SIZE" in _codes(result)
        assert result.compliant is True

    def test_phase_imbalance(self, configured, tables):
        panel, cables = configured
        broken = copy.deepcopy(panel)
        broken.phase_loads = {"L1": 5000.0, "L2": 0.0, "L3": 0.0}
        result = check_compliance(broken, cables, _ROOMS, tables)
        assert "PHASE_IMBALANCE" in _codes(result)

    def test_low_spare_capacity(self, configured, tables):
        panel, cables = configured
        broken = copy.deepcopy(panel)
        broken.spare_capacity_percent = 5.0
        assert "SPARE_CAPACITY" in _codes(check_compliance(broken, cables, _ROOMS, tables))

    def test_supply_upgrade_is_info(self, configured, tables):
        panel, cables = configured
        broken = copy.deepcopy(panel)
        broken.upgrade_required = True
        broken.existing_supply_a = 25
        result = check_compliance(broken, cables, _ROOMS, tables)
        finding = next(f for f in result.findings if f.code == "SUPPLY_UPGRADE")
        assert finding.severity is Severity.INFO
        assert result.compliant is True

    def test_missing_surge_protection_is_info(self, configured, tables):
        panel, cables = configured
        broken = copy.deepcopy(panel)
        broken.surge_protection = False
        result = check_compliance(broken, cables, _ROOMS, tables)
        assert "SURGE_PROTECTION" in _codes(result)
        assert result.compliant is True

    def test_board_configured_without_surge_protection(self, tables):
        panel = configure_panel_from_loads(
            _loads(), _ROOMS, PhaseType.THREE, False, include_surge_protection=False, tables=tables
        )
        result = check_compliance(panel, size_circuit_cables(panel.circuits, tables=tables), _ROOMS, tables)
        finding = next(f for f in result.findings if f.code == "SURGE_PROTECTION")
        assert finding.severity is Severity.INFO
        assert result.compliant is True
