"""
Panel Configuration Engine — distribution board layout.

Loads are assigned to circuits strictly in input order: compatible loads
(same room, same circuit type) share a circuit until its rated capacity is
reached; heavy, EV and three-phase loads get dedicated circuits. Circuit ids
are positions (1, 2, 3, …) so offer text referencing them stays stable.

RCD grouping:
  - every wet-room circuit and every socket circuit → Type A 30 mA groups of at
    most RCD_MAX_CIRCUITS_PER_GROUP circuits (DS/HD 60364-4-41, -7-701)
  - every EV circuit → its own Type B group (DS/HD 60364-7-722)
"""
from __future__ import annotations

import math
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from elkalk.config import (
    ASSUMED_EXISTING_SUPPLY_A,
    DEFAULT_INSTALLATION_METHOD,
    MAX_ESTIMATED_CABLE_RUN_M,
    PANEL_SPARE_CAPACITY_FACTOR,
    RCD_MAX_CIRCUITS_PER_GROUP,
)
from elkalk.models.electrical import (
    CableSizingInput,
    CableSizingResult,
    Circuit,
    CircuitType,
    LoadAnalysisResult,
    LoadEntry,
    PanelConfiguration,
    PanelCostLine,
    PhaseType,
    RcdGroup,
    Room,
)
from elkalk.services.cable_sizing import calculate_cable_size, default_tables
from elkalk.services.load_engine import PHASES, calculate_load
from elkalk.services.reference_tables import (
    CIRCUIT_MIN_BREAKER_A,
    MAIN_SWITCH_BASE_COST_DKK,
    MAIN_SWITCH_HEAVY_SURCHARGE_DKK,
    MAX_OUTLETS_PER_CIRCUIT,
    PANEL_BASE_LABOR_HOURS,
    PANEL_ENCLOSURE_COSTS_DKK,
    PANEL_ENCLOSURE_SIZES,
    PANEL_LABOR_HOURS_PER_CIRCUIT,
    SHARED_CIRCUIT_CAPACITY_A,
    SURGE_PROTECTION_MODULES,
    SURGE_PROTECTION_TYPE2_DKK,
    ReferenceTables,
    is_wet_room,
)

logger = logging.getLogger("elkalk-panel")

# Fallback run when a circuit has no room to estimate from
_DEFAULT_CABLE_RUN_M = 15.0

_CIRCUIT_LABELS: dict[CircuitType, str] = {
    CircuitType.LIGHTING: "Lighting",
    CircuitType.SOCKET: "Sockets",
    CircuitType.POWER: "Power",
    CircuitType.HEATING: "Heating",
    CircuitType.EV: "EV charger",
    CircuitType.OTHER: "General",
}


def estimate_cable_length(room: Optional[Room]) -> float:
    """
    Run from the board to the room: explicit room length when given, otherwise
    √area × 2 + floor × 3 m + 3 m slack, capped at MAX_ESTIMATED_CABLE_RUN_M.
    """
    if room is None:
        return _DEFAULT_CABLE_RUN_M
    if room.cable_length_m:
        return room.cable_length_m
    estimate = math.sqrt(max(room.area_m2, 0.0)) * 2 + max(room.floor, 0) * 3 + 3
    return round(min(estimate, MAX_ESTIMATED_CABLE_RUN_M), 1)


def circuit_current(watts: float, power_factor: float, poles: int) -> float:
    phase = PhaseType.THREE if poles == 3 else PhaseType.SINGLE
    return watts / (phase.voltage * power_factor * phase.phase_factor)


def build_circuit_cable_input(
    circuit: Circuit,
    installation_method: str = DEFAULT_INSTALLATION_METHOD,
) -> CableSizingInput:
    """Cable sizing input for a circuit; the breaker rating is the minimum ampacity."""
    phase = PhaseType.THREE if circuit.poles == 3 else PhaseType.SINGLE
    return CableSizingInput(
        power_watts=circuit.connected_load_w,
        length_meters=circuit.cable_length_m,
        voltage=phase.voltage,
        installation_method=installation_method,
        phase=phase,
        power_factor=circuit.power_factor,
        circuit_type=circuit.circuit_type,
        min_ampacity_a=circuit.breaker_rating_a,
        circuit_id=circuit.id,
    )


def size_circuit_cables(
    circuits: Sequence[Circuit],
    installation_method: str = DEFAULT_INSTALLATION_METHOD,
    tables: Optional[ReferenceTables] = None,
) -> list[CableSizingResult]:
    return [
        calculate_cable_size(build_circuit_cable_input(c, installation_method), tables)
        for c in circuits
    ]


@dataclass
class _DraftCircuit:
    circuit_type: CircuitType
    room_name: Optional[str]
    poles: int
    load_refs: list[int] = field(default_factory=list)
    watts: float = 0.0
    power_factor: float = 1.0
    description: str = ""

    def current_with(self, extra_watts: float, extra_pf: float) -> float:
        return circuit_current(self.watts + extra_watts, min(self.power_factor, extra_pf), self.poles)


def _assign_circuits(loads: Sequence[LoadEntry], phase: PhaseType) -> list[_DraftCircuit]:
    drafts: list[_DraftCircuit] = []
    open_shared: dict[tuple[Optional[str], CircuitType], _DraftCircuit] = {}

    for idx, load in enumerate(loads):
        poles = 3 if load.phase_requirement == 3 and phase is PhaseType.THREE else 1
        capacity = SHARED_CIRCUIT_CAPACITY_A.get(load.circuit_type)
        shareable = poles == 1 and capacity is not None
        key = (load.room_name, load.circuit_type)

        if shareable and key in open_shared:
            draft = open_shared[key]
            fits = draft.current_with(load.power_watts, load.power_factor) <= capacity
            if load.circuit_type is CircuitType.SOCKET and len(draft.load_refs) >= MAX_OUTLETS_PER_CIRCUIT:
                fits = False
            if fits:
                draft.load_refs.append(idx)
                draft.watts += load.power_watts
                draft.power_factor = min(draft.power_factor, load.power_factor)
                continue

        label = _CIRCUIT_LABELS[load.circuit_type]
        description = f"{label} {load.room_name}".strip() if shareable else load.name
        draft = _DraftCircuit(
            circuit_type=load.circuit_type,
            room_name=load.room_name,
            poles=poles,
            load_refs=[idx],
            watts=load.power_watts,
            power_factor=load.power_factor,
            description=description,
        )
        drafts.append(draft)
        if shareable:
            open_shared[key] = draft
    return drafts


def _least_loaded_phase(tracker: dict[str, float]) -> str:
    # Ties resolve L1 → L2 → L3
    return min(PHASES, key=lambda p: (tracker[p], PHASES.index(p)))


def _rcd_rating(currents: Sequence[float], tables: ReferenceTables) -> int:
    # Group RCDs are 40 A unless the diversified group current needs 63 A
    needed = tables.breaker_at_least(sum(currents) * 0.5)
    return 40 if needed <= 40 else 63


def _build_rcd_groups(
    circuits: list[Circuit],
    room_types: dict[str, str],
    max_per_group: int,
    tables: ReferenceTables,
) -> list[RcdGroup]:
    groups: list[RcdGroup] = []
    protected: list[Circuit] = []
    ev: list[Circuit] = []
    for c in circuits:
        if c.circuit_type is CircuitType.EV:
            ev.append(c)
        elif c.circuit_type is CircuitType.SOCKET or is_wet_room(room_types.get(c.room_name or "", "")):
            protected.append(c)

    for start in range(0, len(protected), max_per_group):
        batch = protected[start:start + max_per_group]
        groups.append(RcdGroup(
            id=len(groups) + 1,
            circuit_ids=[c.id for c in batch],
            rcd_type="A",
            sensitivity_ma=30,
            rating_a=_rcd_rating([c.design_current_a for c in batch], tables),
        ))
    for c in ev:
        groups.append(RcdGroup(
            id=len(groups) + 1,
            circuit_ids=[c.id],
            rcd_type="B",
            sensitivity_ma=30,
            rating_a=40 if c.breaker_rating_a <= 40 else 63,
        ))

    for g in groups:
        for cid in g.circuit_ids:
            circuits[cid - 1].rcd_group_id = g.id
    return groups


def _bill_of_materials(
    circuits: list[Circuit],
    rcd_groups: list[RcdGroup],
    enclosure_modules: int,
    main_breaker_a: int,
    surge_protection: bool,
    tables: ReferenceTables,
) -> list[PanelCostLine]:
    lines: list[PanelCostLine] = []

    def add(item: str, quantity: int, unit_cost: float) -> None:
        lines.append(PanelCostLine(item, quantity, unit_cost, round(quantity * unit_cost, 2)))

    add(f"Enclosure {enclosure_modules} modules", 1, PANEL_ENCLOSURE_COSTS_DKK[enclosure_modules])
    main_cost = MAIN_SWITCH_BASE_COST_DKK + (MAIN_SWITCH_HEAVY_SURCHARGE_DKK if main_breaker_a > 40 else 0)
    add(f"Main switch {main_breaker_a} A", 1, main_cost)

    mcbs: dict[tuple[int, int], int] = {}
    for c in circuits:
        mcbs[(c.breaker_rating_a, c.poles)] = mcbs.get((c.breaker_rating_a, c.poles), 0) + 1
    for (rating, poles), qty in sorted(mcbs.items()):
        add(f"MCB {poles}P {rating} A", qty, tables.mcb_cost(rating) * poles)

    rcds: dict[tuple[str, int], int] = {}
    for g in rcd_groups:
        rcds[(g.rcd_type, g.rating_a)] = rcds.get((g.rcd_type, g.rating_a), 0) + 1
    for (rcd_type, rating), qty in sorted(rcds.items()):
        add(f"RCD Type {rcd_type} {rating} A 30 mA", qty, tables.rcd_cost(rcd_type, rating))

    if surge_protection:
        add("Surge protection Type 2", 1, SURGE_PROTECTION_TYPE2_DKK)
    return lines


def configure_panel_from_loads(
    loads: Sequence[LoadEntry],
    rooms: Sequence[Room],
    phase: PhaseType,
    is_renovation: bool,
    *,
    building_type: str = "residential",
    existing_supply_a: Optional[int] = None,
    installation_method: str = DEFAULT_INSTALLATION_METHOD,
    load_analysis: Optional[LoadAnalysisResult] = None,
    max_circuits_per_rcd: int = RCD_MAX_CIRCUITS_PER_GROUP,
    include_surge_protection: bool = True,
    tables: Optional[ReferenceTables] = None,
) -> PanelConfiguration:
    """
    Lay out the distribution board for ``loads`` in input order.

    ``include_surge_protection=False`` leaves the Type 2 SPD out of the module
    count and bill of materials, for boards that keep an existing one.
    """
    tables = tables or default_tables()
    if load_analysis is None:
        load_analysis = calculate_load(loads, phase, building_type, tables)

    rooms_by_name = {r.name: r for r in rooms}
    room_types = {r.name: r.room_type for r in rooms}
    warnings: list[str] = []

    circuits: list[Circuit] = []
    tracker = {p: 0.0 for p in PHASES}
    for position, draft in enumerate(_assign_circuits(loads, phase), start=1):
        current = circuit_current(draft.watts, draft.power_factor, draft.poles)
        breaker = max(CIRCUIT_MIN_BREAKER_A[draft.circuit_type], tables.breaker_at_least(current))
        if current > tables.breaker_ratings[-1]:
            warnings.append(
                f"{draft.description}: design current {current:.1f} A exceeds the largest standard "
                f"breaker ({tables.breaker_ratings[-1]} A); split the load or feed it from a sub-board"
            )
            logger.warning("Circuit %d draws %.1f A, beyond the breaker table", position, current)

        if draft.poles == 3:
            conductor = "L1-L2-L3"
            for p in PHASES:
                tracker[p] += draft.watts / 3.0
        elif phase is PhaseType.THREE:
            conductor = _least_loaded_phase(tracker)
            tracker[conductor] += draft.watts
        else:
            conductor = "L1"
            tracker["L1"] += draft.watts

        circuit = Circuit(
            id=position,
            load_refs=list(draft.load_refs),
            breaker_rating_a=breaker,
            cable_cross_section_mm2=0.0,
            rcd_group_id=None,
            circuit_type=draft.circuit_type,
            room_name=draft.room_name,
            poles=draft.poles,
            phase_conductor=conductor,
            connected_load_w=draft.watts,
            design_current_a=current,
            cable_length_m=estimate_cable_length(rooms_by_name.get(draft.room_name or "")),
            power_factor=draft.power_factor,
            description=draft.description,
        )
        sizing = calculate_cable_size(build_circuit_cable_input(circuit, installation_method), tables)
        circuit.cable_cross_section_mm2 = sizing.cross_section_mm2
        circuits.append(circuit)

    rcd_groups = _build_rcd_groups(circuits, room_types, max_circuits_per_rcd, tables)

    main_breaker = load_analysis.main_breaker_rating_a
    supply_a = (existing_supply_a or ASSUMED_EXISTING_SUPPLY_A) if is_renovation else None
    upgrade_required = bool(is_renovation and main_breaker > supply_a)
    if upgrade_required:
        warnings.append(
            f"Existing supply {supply_a} A is insufficient; main breaker {main_breaker} A requires an upgrade"
        )
    if is_renovation:
        warnings.append("Renovation: existing RCDs and earthing should be inspected")

    if not circuits:
        logger.info("Panel configured with no circuits")
        return PanelConfiguration(
            circuits=[],
            rcd_groups=[],
            main_breaker_rating_a=main_breaker,
            panel_capacity_modules=0,
            upgrade_required=upgrade_required,
            phase=phase,
            modules_used=0,
            spare_capacity_percent=100.0,
            total_demand_load_w=load_analysis.total_demand_load_w,
            phase_loads=tracker,
            existing_supply_a=supply_a,
            surge_protection=False,
            warnings=warnings,
        )

    three_phase_supply = phase is PhaseType.THREE
    modules = 4 if three_phase_supply else 2                       # main switch
    modules += sum(c.poles for c in circuits)
    modules += sum(4 if (three_phase_supply or g.rcd_type == "B") else 2 for g in rcd_groups)
    if include_surge_protection:
        modules += SURGE_PROTECTION_MODULES

    min_modules = math.ceil(modules * PANEL_SPARE_CAPACITY_FACTOR)
    capacity = next((s for s in PANEL_ENCLOSURE_SIZES if s >= min_modules), PANEL_ENCLOSURE_SIZES[-1])
    spare = (capacity - modules) / capacity * 100.0
    if spare < 15:
        warnings.append("Low spare capacity in the panel; consider a larger enclosure")

    bom = _bill_of_materials(circuits, rcd_groups, capacity, main_breaker, include_surge_protection, tables)
    labor_hours = PANEL_BASE_LABOR_HOURS + PANEL_LABOR_HOURS_PER_CIRCUIT * len(circuits)

    logger.info(
        "Panel configured: %d circuits, %d RCD groups, %d/%d modules, main %d A",
        len(circuits), len(rcd_groups), modules, capacity, main_breaker,
    )

    return PanelConfiguration(
        circuits=circuits,
        rcd_groups=rcd_groups,
        main_breaker_rating_a=main_breaker,
        panel_capacity_modules=capacity,
        upgrade_required=upgrade_required,
        phase=phase,
        modules_used=modules,
        spare_capacity_percent=spare,
        total_demand_load_w=load_analysis.total_demand_load_w,
        phase_loads=tracker,
        existing_supply_a=supply_a,
        surge_protection=include_surge_protection,
        bill_of_materials=bom,
        material_cost=round(sum(line.total_cost for line in bom), 2),
        labor_hours=labor_hours,
        warnings=warnings,
    )


def panel_to_dict(panel: PanelConfiguration) -> dict:
    return {
        "phase": panel.phase.value,
        "main_breaker_rating_a": panel.main_breaker_rating_a,
        "panel_capacity_modules": panel.panel_capacity_modules,
        "modules_used": panel.modules_used,
        "spare_capacity_percent": round(panel.spare_capacity_percent, 1),
        "upgrade_required": panel.upgrade_required,
        "existing_supply_a": panel.existing_supply_a,
        "surge_protection": panel.surge_protection,
        "phase_loads": {p: round(w) for p, w in panel.phase_loads.items()},
        "circuits": [
            {
                "id": c.id,
                "description": c.description,
                "circuit_type": c.circuit_type.value,
                "room_name": c.room_name,
                "load_refs": c.load_refs,
                "poles": c.poles,
                "phase_conductor": c.phase_conductor,
                "breaker_rating_a": c.breaker_rating_a,
                "cable_cross_section_mm2": c.cable_cross_section_mm2,
                "cable_length_m": c.cable_length_m,
                "connected_load_w": round(c.connected_load_w),
                "design_current_a": round(c.design_current_a, 2),
                "rcd_group_id": c.rcd_group_id,
            }
            for c in panel.circuits
        ],
        "rcd_groups": [
            {
                "id": g.id,
                "rcd_type": g.rcd_type,
                "sensitivity_ma": g.sensitivity_ma,
                "rating_a": g.rating_a,
                "circuit_ids": g.circuit_ids,
            }
            for g in panel.rcd_groups
        ],
        "bill_of_materials": [
            {"item": b.item, "quantity": b.quantity, "unit_cost": b.unit_cost, "total_cost": b.total_cost}
            for b in panel.bill_of_materials
        ],
        "material_cost": panel.material_cost,
        "labor_hours": panel.labor_hours,
        "warnings": panel.warnings,
    }
