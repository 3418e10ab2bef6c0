"""
Project Estimator — the room-to-offer pipeline.

    rooms → loads → load analysis → panel → cable sizing → compliance
          → time & material → risk → price fold

Every call recomputes the whole estimate from the request and the current
reference-table coefficients. Only two preconditions are hard failures (no
rooms, no supply phase); they come back as an ``EstimationError`` value,
never as an exception.
"""
from __future__ import annotations

import time
import uuid
import logging
from dataclasses import asdict, dataclass, field
from typing import Mapping, Optional, Union

from elkalk.config import CABLE_WASTE_FACTOR, DEFAULT_RISK_BUFFER_PCT, STRICT_DIVERSITY_GROUPS
from elkalk.models.electrical import (
    CableSizingResult,
    CircuitType,
    ComplianceCheckResult,
    LoadAnalysisResult,
    LoadEntry,
    PanelConfiguration,
    PhaseType,
    Room,
)
from elkalk.models.learning import EstimateRecord
from elkalk.models.schemas import ElectricalProjectRequest, ProductLine
from elkalk.services.cable_sizing import cable_result_to_dict, default_tables
from elkalk.services.compliance_engine import check_compliance, compliance_to_dict
from elkalk.services.costing_engine import CostingEngine, PriceBreakdown
from elkalk.services.load_engine import calculate_load, load_result_to_dict
from elkalk.services.panel_engine import configure_panel_from_loads, panel_to_dict, size_circuit_cables
from elkalk.services.reference_tables import (
    DEFAULT_BUILDING_PROFILE,
    PRODUCT_COMPONENT_CODE,
    PRODUCT_DIVERSITY_GROUPS,
    BuildingProfile,
    ReferenceTables,
)
from elkalk.services.risk_engine import Anomaly, RiskAnalysis, RiskAnalysisEngine, risk_to_dict

logger = logging.getLogger("elkalk-estimator")

# Rooms above this ceiling height need ladders/scaffolding for every point
HIGH_CEILING_M = 3.0
HIGH_CEILING_TIME_FACTOR = 1.20


# ── Result types ─────────────────────────────────────────────────────────────

@dataclass
class EstimationError:
    code: str       # ROOMS_REQUIRED | SUPPLY_PHASE_REQUIRED | INVALID_ROOM | UNKNOWN_DIVERSITY_GROUP
    message: str
    field: Optional[str] = None

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "field": self.field}


@dataclass
class EstimateLine:
    room_name: str
    item: str                   # point type key or product name
    component_code: str
    quantity: int
    hours: float
    material_cost: float
    installation_profile: str


@dataclass
class ProjectEstimate:
    total_hours: float
    installation_hours: float
    panel_hours: float
    material_cost: float
    component_material_cost: float
    cable_material_cost: float
    panel_material_cost: float
    total_cable_meters: float
    total_points: int
    pricing: PriceBreakdown
    risk_buffer_source: str     # override | learning | default
    risk_analysis: RiskAnalysis
    lines: list[EstimateLine] = field(default_factory=list)
    obs_points: list[str] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    component_hours: dict[str, float] = field(default_factory=dict)
    profile_hours: dict[str, float] = field(default_factory=dict)

    @property
    def labor_cost(self) -> float:
        return self.pricing.labor_cost

    @property
    def final_amount(self) -> float:
        return self.pricing.final_amount


@dataclass
class ElectricalProjectResult:
    calculation_id: str
    supply_phase: PhaseType
    building_type: str
    complexity_score: int
    rooms: list[Room]
    loads: list[LoadEntry]
    load_analysis: LoadAnalysisResult
    panel: PanelConfiguration
    cable_sizing: list[CableSizingResult]
    compliance: ComplianceCheckResult
    estimate: ProjectEstimate

    def to_record(self) -> EstimateRecord:
        """Snapshot the learning engine compares recorded actuals against."""
        return EstimateRecord(
            calculation_id=self.calculation_id,
            estimated_hours=self.estimate.total_hours,
            estimated_material_cost=self.estimate.material_cost,
            estimated_price=self.estimate.pricing.net_price,
            complexity_score=self.complexity_score,
            component_hours=dict(self.estimate.component_hours),
            profile_hours=dict(self.estimate.profile_hours),
            total_points=self.estimate.total_points,
        )


# ── Validation ───────────────────────────────────────────────────────────────

def _validate(request: ElectricalProjectRequest) -> Optional[EstimationError]:
    if not request.rooms:
        return EstimationError("ROOMS_REQUIRED", "At least one room is required", "rooms")
    if request.supply_phase is None:
        return EstimationError("SUPPLY_PHASE_REQUIRED", "Supply phase (single or three) is required", "supply_phase")

    seen: set[str] = set()
    for i, room in enumerate(request.rooms):
        if room.name in seen:
            return EstimationError("INVALID_ROOM", f"Duplicate room name '{room.name}'", f"rooms[{i}].name")
        seen.add(room.name)
        for key, qty in room.electrical_points.items():
            if qty < 0:
                return EstimationError(
                    "INVALID_ROOM",
                    f"Room '{room.name}': quantity for '{key}' cannot be negative",
                    f"rooms[{i}].electrical_points.{key}",
                )
        if room.cable_length_m is not None and room.cable_length_m <= 0:
            return EstimationError(
                "INVALID_ROOM",
                f"Room '{room.name}': cable length must be positive",
                f"rooms[{i}].cable_length_m",
            )
    return None


def _to_room(r) -> Room:
    return Room(
        name=r.name,
        room_type=r.room_type,
        electrical_points=dict(r.electrical_points),
        area_m2=r.area_m2,
        floor=r.floor,
        ceiling_height_m=r.ceiling_height_m,
        cable_length_m=r.cable_length_m,
        installation_profile=r.installation_profile,
        products=list(r.products),
    )


# ── Rooms → loads and time/material lines ────────────────────────────────────

class _RoomTakeoff:
    """Accumulates loads, estimate lines and calibration breakdowns across rooms."""

    def __init__(self, tables: ReferenceTables, phase: PhaseType) -> None:
        self.tables = tables
        self.phase = phase
        self.loads: list[LoadEntry] = []
        self.lines: list[EstimateLine] = []
        self.component_hours: dict[str, float] = {}
        self.profile_hours: dict[str, float] = {}
        self.total_points = 0
        self.warnings: list[str] = []

    def _profile(self, room: Room) -> BuildingProfile:
        profile = self.tables.building_profile(room.installation_profile)
        if profile is None:
            self.warnings.append(
                f"Room '{room.name}': unknown installation profile '{room.installation_profile}', "
                f"using '{DEFAULT_BUILDING_PROFILE}'"
            )
            profile = self.tables.building_profile(DEFAULT_BUILDING_PROFILE)
        return profile

    def _add_line(self, room: Room, profile: BuildingProfile, item: str, code: str, qty: int) -> None:
        ceiling = HIGH_CEILING_TIME_FACTOR if room.ceiling_height_m > HIGH_CEILING_M else 1.0
        seconds = self.tables.component_time_seconds(code)
        hours = (
            seconds / 3600.0 * qty
            * self.tables.profile_time_multiplier(profile.code)
            * ceiling
            * self.tables.global_time_factor
        )
        material = self.tables.component(code).material_cost * qty * profile.waste_multiplier

        self.lines.append(EstimateLine(
            room_name=room.name,
            item=item,
            component_code=code,
            quantity=qty,
            hours=round(hours, 4),
            material_cost=round(material, 2),
            installation_profile=profile.code,
        ))
        self.component_hours[code] = self.component_hours.get(code, 0.0) + hours
        self.profile_hours[profile.code] = self.profile_hours.get(profile.code, 0.0) + hours
        self.total_points += qty

    def add_room(self, room: Room) -> None:
        profile = self._profile(room)

        for key, qty in room.electrical_points.items():
            if qty <= 0:
                continue
            point = self.tables.point_type(key)
            if point is None:
                self.warnings.append(f"Room '{room.name}': unknown point type '{key}' ignored")
                continue
            self._add_line(room, profile, key, point.component_code, qty)

            if point.load is None:
                continue
            spec = point.load
            watts = spec.watts * room.area_m2 if spec.per_m2 else spec.watts
            three = spec.three_phase and self.phase is PhaseType.THREE
            for n in range(1, qty + 1):
                self.loads.append(LoadEntry(
                    name=f"{room.name} {key} {n}",
                    power_watts=watts,
                    phase_requirement=3 if three else 1,
                    circuit_type=spec.circuit_type,
                    is_continuous=spec.is_continuous,
                    diversity_group=spec.diversity_group,
                    room_name=room.name,
                    power_factor=spec.power_factor,
                ))

        for product in room.products:
            self._add_product(room, profile, product)

    def _add_product(self, room: Room, profile: BuildingProfile, product: ProductLine) -> None:
        spec = product.specification
        self._add_line(room, profile, product.name, PRODUCT_COMPONENT_CODE, product.quantity)
        circuit_type = spec.circuit_type()
        three = spec.phases == 3 and self.phase is PhaseType.THREE
        for n in range(1, product.quantity + 1):
            self.loads.append(LoadEntry(
                name=f"{room.name} {product.name} {n}" if product.quantity > 1 else f"{room.name} {product.name}",
                power_watts=spec.load_watts(),
                phase_requirement=3 if three else 1,
                circuit_type=circuit_type,
                is_continuous=product.is_continuous or circuit_type is CircuitType.EV,
                diversity_group=PRODUCT_DIVERSITY_GROUPS[spec.kind],
                room_name=room.name,
                power_factor=getattr(spec, "power_factor", 1.0),
            ))


# ── Risk buffer ──────────────────────────────────────────────────────────────

def _risk_buffer(
    request: ElectricalProjectRequest,
    complexity: int,
    suggestions: Optional[Mapping[int, float]],
) -> tuple[float, str]:
    if request.pricing.risk_buffer_percentage is not None:
        return request.pricing.risk_buffer_percentage, "override"
    if suggestions is not None and complexity in suggestions:
        return float(suggestions[complexity]), "learning"
    return DEFAULT_RISK_BUFFER_PCT, "default"


# ── Pipeline ─────────────────────────────────────────────────────────────────

def calculate_electrical_project(
    request: ElectricalProjectRequest,
    tables: Optional[ReferenceTables] = None,
    *,
    risk_buffer_by_complexity: Optional[Mapping[int, float]] = None,
    strict_diversity: bool = STRICT_DIVERSITY_GROUPS,
) -> Union[ElectricalProjectResult, EstimationError]:
    """
    Run the full estimation pipeline for one request.

    ``risk_buffer_by_complexity`` carries the learning engine's suggested
    buffers (complexity score → %); it is used unless the request overrides
    the risk percentage explicitly.
    """
    error = _validate(request)
    if error is not None:
        logger.info(f"Estimate rejected: {error.code}")
        return error

    start = time.perf_counter()
    tables = tables or default_tables()
    phase = PhaseType(request.supply_phase)
    calculation_id = request.calculation_id or uuid.uuid4().hex
    rooms = [_to_room(r) for r in request.rooms]

    takeoff = _RoomTakeoff(tables, phase)
    for room in rooms:
        takeoff.add_room(room)
    loads = takeoff.loads

    load_analysis = calculate_load(loads, phase, request.building_type, tables)
    if strict_diversity and load_analysis.unknown_groups:
        return EstimationError(
            "UNKNOWN_DIVERSITY_GROUP",
            f"Unknown diversity group(s): {', '.join(load_analysis.unknown_groups)}",
            "rooms",
        )

    panel = configure_panel_from_loads(
        loads,
        rooms,
        phase,
        request.is_renovation,
        building_type=request.building_type,
        existing_supply_a=request.existing_supply_a,
        installation_method=request.installation_method,
        include_surge_protection=request.include_surge_protection,
        load_analysis=load_analysis,
        tables=tables,
    )
    cable_sizing = size_circuit_cables(panel.circuits, request.installation_method, tables)
    compliance = check_compliance(panel, cable_sizing, rooms, tables)

    # Time and material
    installation_hours = sum(line.hours for line in takeoff.lines)
    panel_hours = panel.labor_hours
    total_hours = installation_hours + panel_hours
    component_material = sum(line.material_cost for line in takeoff.lines)
    cable_material = sum(r.total_cable_cost for r in cable_sizing) * CABLE_WASTE_FACTOR
    material_cost = component_material + cable_material + panel.material_cost

    # Risk and price
    settings = request.pricing.model_dump(exclude_none=True)
    risk_engine = RiskAnalysisEngine(tables)
    base_cost = CostingEngine(settings).price(material_cost, total_hours).cost_price
    risk = risk_engine.analyze(rooms, takeoff.total_points, base_cost, request.building_age_years)
    complexity = request.complexity_score if request.complexity_score is not None else risk.risk_score

    risk_pct, risk_source = _risk_buffer(request, complexity, risk_buffer_by_complexity)
    costing = CostingEngine({**settings, "risk_buffer_percentage": risk_pct})
    pricing = costing.price(material_cost, total_hours)

    anomalies = risk_engine.detect_anomalies(
        takeoff.total_points, total_hours, pricing.cost_price, costing.margin_pct, material_cost,
    )
    obs = risk_engine.obs_points(
        rooms,
        risk,
        building_age_years=request.building_age_years,
        has_ev_charger=any(c.circuit_type is CircuitType.EV for c in panel.circuits),
        has_circuits=bool(panel.circuits),
    )

    warnings = takeoff.warnings + load_analysis.warnings + panel.warnings
    for r in cable_sizing:
        warnings.extend(f"Circuit {r.circuit_id}: {note}" for note in r.notes)

    estimate = ProjectEstimate(
        total_hours=round(total_hours, 2),
        installation_hours=round(installation_hours, 2),
        panel_hours=round(panel_hours, 2),
        material_cost=round(material_cost, 2),
        component_material_cost=round(component_material, 2),
        cable_material_cost=round(cable_material, 2),
        panel_material_cost=round(panel.material_cost, 2),
        total_cable_meters=round(sum(r.length_meters for r in cable_sizing), 1),
        total_points=takeoff.total_points,
        pricing=pricing,
        risk_buffer_source=risk_source,
        risk_analysis=risk,
        lines=takeoff.lines,
        obs_points=obs,
        anomalies=anomalies,
        warnings=warnings,
        component_hours={k: round(v, 4) for k, v in takeoff.component_hours.items()},
        profile_hours={k: round(v, 4) for k, v in takeoff.profile_hours.items()},
    )

    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    logger.info(
        f"Estimate {calculation_id}: {len(rooms)} rooms, {len(panel.circuits)} circuits, "
        f"{estimate.total_hours} h, {pricing.final_amount:,.0f} DKK incl. VAT",
        extra={"calculation_id": calculation_id, "duration_ms": duration_ms},
    )

    return ElectricalProjectResult(
        calculation_id=calculation_id,
        supply_phase=phase,
        building_type=request.building_type,
        complexity_score=complexity,
        rooms=rooms,
        loads=loads,
        load_analysis=load_analysis,
        panel=panel,
        cable_sizing=cable_sizing,
        compliance=compliance,
        estimate=estimate,
    )


def result_to_dict(result: ElectricalProjectResult) -> dict:
    est = result.estimate
    return {
        "calculation_id": result.calculation_id,
        "supply_phase": result.supply_phase.value,
        "building_type": result.building_type,
        "complexity_score": result.complexity_score,
        "load_analysis": load_result_to_dict(result.load_analysis),
        "panel": panel_to_dict(result.panel),
        "cable_sizing": [cable_result_to_dict(r) for r in result.cable_sizing],
        "compliance": compliance_to_dict(result.compliance),
        "estimate": {
            "total_hours": est.total_hours,
            "installation_hours": est.installation_hours,
            "panel_hours": est.panel_hours,
            "material_cost": est.material_cost,
            "component_material_cost": est.component_material_cost,
            "cable_material_cost": est.cable_material_cost,
            "panel_material_cost": est.panel_material_cost,
            "total_cable_meters": est.total_cable_meters,
            "total_points": est.total_points,
            "risk_buffer_source": est.risk_buffer_source,
            "pricing": asdict(est.pricing),
            "lines": [asdict(line) for line in est.lines],
            "warnings": est.warnings,
            "obs_points": est.obs_points,
            "anomalies": [asdict(a) for a in est.anomalies],
        },
        "risk_analysis": risk_to_dict(est.risk_analysis),
    }
