"""
Load Analysis Engine (DS/HD 60364-3)

Connected load → demand load via per-group diversity factors, phase
distribution and main breaker selection.

    demand(group)   = Σ effective power × diversity factor(group, building type)
    effective power = rated power, or × duty-cycle factor for non-continuous loads
    main breaker    = smallest standard rating ≥ demand / (V × k) × headroom
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Optional, Sequence

from elkalk.config import MAIN_BREAKER_HEADROOM, PHASE_IMBALANCE_WARNING_PCT
from elkalk.models.electrical import (
    LoadAnalysisResult,
    LoadEntry,
    LoadGroupBreakdown,
    PhaseType,
)
from elkalk.services.cable_sizing import default_tables
from elkalk.services.reference_tables import DUTY_CYCLE_FACTORS, ReferenceTables

logger = logging.getLogger("elkalk-load")

PHASES = ("L1", "L2", "L3")

# Single-phase supply thresholds that call for a three-phase connection
_SINGLE_PHASE_MAX_CURRENT_A = 63.0
_SINGLE_PHASE_MAX_DEMAND_W = 17_000.0


def effective_power(load: LoadEntry) -> float:
    if load.is_continuous:
        return load.power_watts
    return load.power_watts * DUTY_CYCLE_FACTORS.get(load.circuit_type, 1.0)


def imbalance_percent(phase_loads: dict[str, float]) -> float:
    """(max − min) / average × 100; 0 when nothing is connected."""
    values = [phase_loads[p] for p in PHASES]
    avg = sum(values) / len(values)
    if avg <= 0:
        return 0.0
    return (max(values) - min(values)) / avg * 100.0


def calculate_load(
    loads: Sequence[LoadEntry],
    phase: PhaseType,
    building_type: str = "residential",
    tables: Optional[ReferenceTables] = None,
) -> LoadAnalysisResult:
    tables = tables or default_tables()
    warnings: list[str] = []
    unknown_groups: list[str] = []

    groups: "OrderedDict[str, dict]" = OrderedDict()
    phase_loads = {p: 0.0 for p in PHASES}
    total_connected = 0.0
    total_demand = 0.0
    next_phase = 0

    for load in loads:
        factor, known = tables.diversity_factor(load.diversity_group, building_type)
        if not known and load.diversity_group not in unknown_groups:
            unknown_groups.append(load.diversity_group)
            warnings.append(
                f"Unknown diversity group '{load.diversity_group}'; using factor {factor:g}"
            )
        # Diversity never amplifies load
        factor = min(factor, 1.0)

        demand = effective_power(load) * factor
        total_connected += load.power_watts
        total_demand += demand

        g = groups.setdefault(load.diversity_group, {"connected": 0.0, "demand": 0.0, "factor": factor, "count": 0})
        g["connected"] += load.power_watts
        g["demand"] += demand
        g["count"] += 1

        if phase is PhaseType.SINGLE:
            phase_loads["L1"] += demand
        elif load.phase_requirement == 3:
            for p in PHASES:
                phase_loads[p] += demand / 3.0
        else:
            # Round-robin in input order
            phase_loads[PHASES[next_phase % 3]] += demand
            next_phase += 1

    imbalance = imbalance_percent(phase_loads) if phase is PhaseType.THREE else 0.0
    current = total_demand / (phase.voltage * phase.phase_factor)
    main_breaker = tables.breaker_at_least(current * MAIN_BREAKER_HEADROOM)
    ratings = tables.breaker_ratings
    idx = ratings.index(main_breaker)
    supply_fuse = ratings[idx + 1] if idx < len(ratings) - 1 else main_breaker

    if current * MAIN_BREAKER_HEADROOM > ratings[-1]:
        warnings.append(
            f"Demand current {current:.0f} A exceeds the largest standard main breaker ({ratings[-1]} A)"
        )
    if imbalance > PHASE_IMBALANCE_WARNING_PCT:
        warnings.append(f"Phase loading is {imbalance:.0f}% unbalanced; consider redistributing circuits")
    if phase is PhaseType.SINGLE and current > _SINGLE_PHASE_MAX_CURRENT_A:
        warnings.append("Total load requires a three-phase supply")
    if phase is PhaseType.SINGLE and total_demand > _SINGLE_PHASE_MAX_DEMAND_W:
        warnings.append("Total demand exceeds a typical single-phase connection")

    breakdown = [
        LoadGroupBreakdown(
            diversity_group=name,
            connected_load_w=g["connected"],
            diversity_factor=g["factor"],
            demand_load_w=g["demand"],
            count=g["count"],
        )
        for name, g in groups.items()
    ]

    logger.debug(
        "Load analysis: %d loads, connected %.0f W, demand %.0f W, main breaker %d A",
        len(loads), total_connected, total_demand, main_breaker,
    )

    return LoadAnalysisResult(
        total_connected_load_w=total_connected,
        total_demand_load_w=total_demand,
        phase_loads=phase_loads,
        imbalance_percent=imbalance,
        main_breaker_rating_a=main_breaker,
        phase=phase,
        total_demand_current_a=current,
        recommended_supply_fuse_a=supply_fuse,
        group_breakdown=breakdown,
        unknown_groups=unknown_groups,
        warnings=warnings,
    )


def load_result_to_dict(r: LoadAnalysisResult) -> dict:
    return {
        "total_connected_load_w": round(r.total_connected_load_w),
        "total_demand_load_w": round(r.total_demand_load_w),
        "total_demand_current_a": round(r.total_demand_current_a, 2),
        "phase": r.phase.value,
        "phase_loads": {p: round(w) for p, w in r.phase_loads.items()},
        "imbalance_percent": round(r.imbalance_percent, 1),
        "main_breaker_rating_a": r.main_breaker_rating_a,
        "recommended_supply_fuse_a": r.recommended_supply_fuse_a,
        "group_breakdown": [
            {
                "diversity_group": g.diversity_group,
                "connected_load_w": round(g.connected_load_w),
                "diversity_factor": g.diversity_factor,
                "demand_load_w": round(g.demand_load_w),
                "count": g.count,
            }
            for g in r.group_breakdown
        ],
        "unknown_groups": r.unknown_groups,
        "warnings": r.warnings,
    }
