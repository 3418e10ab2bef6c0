"""
Cable Sizing Calculator (DS/HD 60364-5-52)

Selects the smallest standard conductor cross-section that
  1. carries the design current after temperature and grouping derating, and
  2. keeps the voltage drop within the circuit-class limit
     (3 % lighting, 5 % other circuits, §525).

Voltage drop is always reported for the size actually selected. When the table
runs out the largest size is returned with ``compliant=False`` and a note.
"""
from __future__ import annotations

import logging
import math
from typing import Optional

from elkalk.config import VOLTAGE_DROP_LIMIT_GENERAL_PCT, VOLTAGE_DROP_LIMIT_LIGHTING_PCT
from elkalk.models.electrical import (
    CableSizingInput,
    CableSizingResult,
    CircuitType,
    PhaseType,
)
from elkalk.services.reference_tables import DEFAULT_CONDUCTOR, ReferenceTables

logger = logging.getLogger("elkalk-cable")

_DEFAULT_TABLES: Optional[ReferenceTables] = None


def default_tables() -> ReferenceTables:
    """Process-wide seeded tables for callers that do not inject their own."""
    global _DEFAULT_TABLES
    if _DEFAULT_TABLES is None:
        _DEFAULT_TABLES = ReferenceTables()
    return _DEFAULT_TABLES


def voltage_drop_limit(circuit_type: CircuitType) -> float:
    if circuit_type is CircuitType.LIGHTING:
        return VOLTAGE_DROP_LIMIT_LIGHTING_PCT
    return VOLTAGE_DROP_LIMIT_GENERAL_PCT


def design_current(power_watts: float, voltage: float, power_factor: float, phase: PhaseType) -> float:
    """I = P / (V × cos φ × k), k = 1 single-phase, √3 three-phase line-to-line."""
    return power_watts / (voltage * power_factor * phase.phase_factor)


def voltage_drop_percent(
    current_a: float,
    length_m: float,
    cross_section_mm2: float,
    voltage: float,
    phase: PhaseType,
    resistivity: float,
) -> float:
    """
    Single-phase:  %Vd = 2·ρ·L·I / (A·V) × 100   (outgoing + return conductor)
    Three-phase:   %Vd = √3·ρ·L·I / (A·V) × 100
    """
    multiplier = 2.0 if phase is PhaseType.SINGLE else math.sqrt(3)
    return multiplier * resistivity * length_m * current_a / (cross_section_mm2 * voltage) * 100.0


def loaded_conductors(phase: PhaseType) -> int:
    return 2 if phase is PhaseType.SINGLE else 3


def cable_cores(phase: PhaseType) -> int:
    """Cores incl. PE: 3G for single-phase, 5G for three-phase."""
    return 3 if phase is PhaseType.SINGLE else 5


def calculate_cable_size(
    inp: CableSizingInput,
    tables: Optional[ReferenceTables] = None,
) -> CableSizingResult:
    """
    Size one circuit cable. Pure and deterministic.

    Inputs must already be validated (power, length, voltage > 0).
    """
    tables = tables or default_tables()
    notes: list[str] = []

    current = design_current(inp.power_watts, inp.voltage, inp.power_factor, inp.phase)
    derating = tables.temperature_factor(inp.ambient_temperature) * tables.grouping_factor(inp.grouped_cables)
    required = max(current, inp.min_ampacity_a)
    conductors = loaded_conductors(inp.phase)
    rho = tables.resistivity(DEFAULT_CONDUCTOR)
    limit = voltage_drop_limit(inp.circuit_type)
    sizes = tables.cable_sizes

    def derated_ampacity(size: float) -> float:
        return tables.ampacity(inp.installation_method, conductors, size) * derating

    def vd(size: float) -> float:
        return voltage_drop_percent(current, inp.length_meters, size, inp.voltage, inp.phase, rho)

    compliant = True
    idx = next((i for i, size in enumerate(sizes) if derated_ampacity(size) >= required), None)
    if idx is None:
        idx = len(sizes) - 1
        compliant = False
        notes.append(
            f"No standard cross-section carries {required:.1f} A with method {inp.installation_method} "
            f"(derating {derating:.2f}); largest size {sizes[idx]:g} mm² returned"
        )

    while vd(sizes[idx]) > limit and idx < len(sizes) - 1:
        idx += 1

    selected = sizes[idx]
    drop = vd(selected)
    if drop > limit:
        compliant = False
        notes.append(
            f"Voltage drop {drop:.1f}% exceeds the {limit:g}% limit even at {selected:g} mm²; "
            f"shorten the run or split the circuit"
        )

    if current > 32 and inp.phase is PhaseType.SINGLE:
        notes.append("Load above 32 A should be considered for a three-phase connection")
    if inp.grouped_cables > 6:
        notes.append("Many cables bunched together; consider separate routes for cooling")

    cores = cable_cores(inp.phase)
    cost_per_meter = tables.cable_cost_per_meter(inp.cable_type, cores, selected)

    logger.debug(
        "Cable sized: %.1f A → %g mm² (Vd %.2f%%, limit %g%%, compliant=%s)",
        current, selected, drop, limit, compliant,
    )

    return CableSizingResult(
        cross_section_mm2=selected,
        conductor_material=DEFAULT_CONDUCTOR,
        voltage_drop_percent=drop,
        ampacity_a=derated_ampacity(selected),
        compliant=compliant,
        margin_to_limit_percent=limit - drop,
        design_current_a=current,
        voltage_drop_limit_percent=limit,
        derating_factor=derating,
        cable_designation=f"{inp.cable_type} {cores}G{selected:g}",
        cost_per_meter=cost_per_meter,
        total_cable_cost=round(cost_per_meter * inp.length_meters, 2),
        length_meters=inp.length_meters,
        circuit_id=inp.circuit_id,
        notes=notes,
    )


def cable_result_to_dict(r: CableSizingResult) -> dict:
    return {
        "circuit_id": r.circuit_id,
        "cross_section_mm2": r.cross_section_mm2,
        "conductor_material": r.conductor_material,
        "cable_designation": r.cable_designation,
        "design_current_a": round(r.design_current_a, 2),
        "ampacity_a": round(r.ampacity_a, 2),
        "derating_factor": round(r.derating_factor, 3),
        "voltage_drop_percent": round(r.voltage_drop_percent, 1),
        "voltage_drop_limit_percent": r.voltage_drop_limit_percent,
        "margin_to_limit_percent": round(r.margin_to_limit_percent, 1),
        "compliant": r.compliant,
        "length_meters": r.length_meters,
        "cost_per_meter": r.cost_per_meter,
        "total_cable_cost": r.total_cable_cost,
        "notes": r.notes,
    }
