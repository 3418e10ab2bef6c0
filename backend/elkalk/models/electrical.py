"""
Electrical engine data model — loads, cable sizing, load analysis, panel
layout and compliance findings.

All structures are plain dataclasses: created fresh per calculation request
and owned by the caller. Nothing in here performs I/O.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from elkalk.config import SINGLE_PHASE_VOLTAGE, THREE_PHASE_VOLTAGE


class PhaseType(str, Enum):
    SINGLE = "single"
    THREE = "three"

    @property
    def voltage(self) -> float:
        return SINGLE_PHASE_VOLTAGE if self is PhaseType.SINGLE else THREE_PHASE_VOLTAGE

    @property
    def phase_factor(self) -> float:
        """1 for single-phase, √3 for three-phase line-to-line."""
        return 1.0 if self is PhaseType.SINGLE else math.sqrt(3)


class CircuitType(str, Enum):
    LIGHTING = "lighting"
    SOCKET = "socket"
    POWER = "power"
    HEATING = "heating"
    EV = "ev"
    OTHER = "other"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# ── Loads ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LoadEntry:
    """One electrical consumer. Immutable input."""
    name: str
    power_watts: float
    phase_requirement: int = 1                  # 1 | 3
    circuit_type: CircuitType = CircuitType.OTHER
    is_continuous: bool = False
    diversity_group: str = "other"
    room_name: Optional[str] = None
    power_factor: float = 1.0


# ── Cable sizing ──────────────────────────────────────────────────────────────

@dataclass
class CableSizingInput:
    power_watts: float
    length_meters: float
    voltage: float
    installation_method: str = "B2"
    ambient_temperature: Optional[float] = None
    phase: PhaseType = PhaseType.SINGLE
    power_factor: float = 1.0
    circuit_type: CircuitType = CircuitType.OTHER
    grouped_cables: int = 1
    min_ampacity_a: float = 0.0                 # Protective device rating (Ib ≤ In ≤ Iz)
    cable_type: str = "PVT"
    circuit_id: Optional[int] = None


@dataclass
class CableSizingResult:
    cross_section_mm2: float
    conductor_material: str
    voltage_drop_percent: float                 # Full precision, from the selected size
    ampacity_a: float                           # Derated capacity of the selected size
    compliant: bool
    margin_to_limit_percent: float              # Voltage-drop headroom, percentage points
    design_current_a: float
    voltage_drop_limit_percent: float
    derating_factor: float
    cable_designation: str
    cost_per_meter: float
    total_cable_cost: float
    length_meters: float
    circuit_id: Optional[int] = None
    notes: list[str] = field(default_factory=list)

    @property
    def voltage_drop_display(self) -> str:
        return f"{self.voltage_drop_percent:.1f}%"


# ── Load analysis ─────────────────────────────────────────────────────────────

@dataclass
class LoadGroupBreakdown:
    diversity_group: str
    connected_load_w: float
    diversity_factor: float
    demand_load_w: float
    count: int


@dataclass
class LoadAnalysisResult:
    total_connected_load_w: float
    total_demand_load_w: float
    phase_loads: dict[str, float]               # {"L1": w, "L2": w, "L3": w}
    imbalance_percent: float
    main_breaker_rating_a: int
    phase: PhaseType
    total_demand_current_a: float
    recommended_supply_fuse_a: int
    group_breakdown: list[LoadGroupBreakdown] = field(default_factory=list)
    unknown_groups: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ── Rooms ─────────────────────────────────────────────────────────────────────

@dataclass
class Room:
    name: str
    room_type: str
    electrical_points: dict[str, int] = field(default_factory=dict)
    area_m2: float = 10.0
    floor: int = 0
    ceiling_height_m: float = 2.5
    cable_length_m: Optional[float] = None
    installation_profile: str = "standard"
    products: list = field(default_factory=list)    # list[schemas.ProductLine]


# ── Panel ─────────────────────────────────────────────────────────────────────

@dataclass
class Circuit:
    id: int
    load_refs: list[int]                        # Indexes into the loads passed in
    breaker_rating_a: int
    cable_cross_section_mm2: float
    rcd_group_id: Optional[int]
    circuit_type: CircuitType
    room_name: Optional[str]
    poles: int                                  # 1 = single-phase, 3 = three-phase circuit
    phase_conductor: str                        # "L1" | "L2" | "L3" | "L1-L2-L3"
    connected_load_w: float
    design_current_a: float
    cable_length_m: float
    power_factor: float = 1.0
    description: str = ""


@dataclass
class RcdGroup:
    id: int
    circuit_ids: list[int]
    rcd_type: str = "A"
    sensitivity_ma: int = 30
    rating_a: int = 40


@dataclass
class PanelCostLine:
    item: str
    quantity: int
    unit_cost: float
    total_cost: float


@dataclass
class PanelConfiguration:
    circuits: list[Circuit]
    rcd_groups: list[RcdGroup]
    main_breaker_rating_a: int
    panel_capacity_modules: int
    upgrade_required: bool
    phase: PhaseType
    modules_used: int
    spare_capacity_percent: float
    total_demand_load_w: float
    phase_loads: dict[str, float]
    existing_supply_a: Optional[int] = None
    surge_protection: bool = True
    bill_of_materials: list[PanelCostLine] = field(default_factory=list)
    material_cost: float = 0.0
    labor_hours: float = 0.0
    warnings: list[str] = field(default_factory=list)

    def circuit(self, circuit_id: int) -> Optional[Circuit]:
        for c in self.circuits:
            if c.id == circuit_id:
                return c
        return None

    def rcd_group(self, group_id: Optional[int]) -> Optional[RcdGroup]:
        if group_id is None:
            return None
        for g in self.rcd_groups:
            if g.id == group_id:
                return g
        return None


# ── Compliance ────────────────────────────────────────────────────────────────

@dataclass
class Finding:
    code: str
    severity: Severity
    message: str
    related_circuit_id: Optional[int] = None
    standard_ref: str = ""


@dataclass
class ComplianceCheckResult:
    compliant: bool
    findings: list[Finding] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        return {
            sev.value: sum(1 for f in self.findings if f.severity is sev)
            for sev in Severity
        }
