"""
Compliance Checker — DS/HD 60364 rule pass over a configured panel and its
cable sizing results.

R1  Wet-room circuits on a 30 mA RCD                 (-7-701 §701.411.3.3)   critical
R2  Socket circuits ≤ 32 A on an RCD                 (-4-41 §411.3.3)        critical
R3  EV circuits on a Type B RCD                      (-7-722 §722.531.3.101) critical
R4  Voltage drop within class limit                  (-5-52 §525)            critical / warning in band
R5  Cable ampacity covers the cable                  (-5-52 §523)            critical
R6  Load ≤ breaker ≤ cable ampacity (Ib ≤ In ≤ Iz)  (-4-43 §433.1)          critical
R7  Main breaker covers demand with headroom         (-3 §311)               critical / warning
R8  RCD group circuit count within limit             (DS/HD 60364-5-53)      warning
R9  Phase balance                                    (-5-52)                 warning
R10 Spare panel capacity                             (good practice)         warning
R11 Supply upgrade                                   (supply agreement)      info
R12 Surge protection present                         (-4-44 §443)            info

Read-only: the panel, cable results and rooms are never modified.
``compliant`` is True iff no critical finding exists.
"""
from __future__ import annotations
import logging
from typing import Optional, Sequence

from elkalk.config import (
    MAIN_BREAKER_MIN_HEADROOM_PCT,
    PANEL_MIN_SPARE_PCT,
    PHASE_IMBALANCE_FINDING_PCT,
    RCD_MAX_CIRCUITS_PER_GROUP,
    VOLTAGE_DROP_WARNING_BAND_PCT,
)
from elkalk.models.electrical import (
    CableSizingResult,
    Circuit,
    CircuitType,
    ComplianceCheckResult,
    Finding,
    PanelConfiguration,
    PhaseType,
    Room,
    Severity,
)
from elkalk.services.cable_sizing import default_tables, loaded_conductors
from elkalk.services.load_engine import imbalance_percent
from elkalk.services.reference_tables import ReferenceTables, is_wet_room

logger = logging.getLogger("elkalk-compliance")

# Reference installation method used when a circuit has no sizing result
_REFERENCE_METHOD = "B2"

STANDARDS_CHECKED: tuple[str, ...] = (
    "DS/HD 60364-3 (Load assessment)",
    "DS/HD 60364-4-41 (Protection against electric shock)",
    "DS/HD 60364-4-43 (Overcurrent protection)",
    "DS/HD 60364-4-44 (Overvoltage protection)",
    "DS/HD 60364-5-52 (Wiring systems)",
    "DS/HD 60364-7-701 (Bathrooms)",
    "DS/HD 60364-7-722 (EV charging)",
)


def _circuit_label(c: Circuit) -> str:
    return f"circuit {c.id} ({c.description})" if c.description else f"circuit {c.id}"


def _check_rcd_protection(
    panel: PanelConfiguration,
    room_types: dict[str, str],
) -> list[Finding]:
    findings: list[Finding] = []
    for c in panel.circuits:
        group = panel.rcd_group(c.rcd_group_id)

        if is_wet_room(room_types.get(c.room_name or "", "")):
            if group is None or group.sensitivity_ma > 30:
                findings.append(Finding(
                    code="RCD_WET_ROOM",
                    severity=Severity.CRITICAL,
                    message=f"{_circuit_label(c)} in wet room '{c.room_name}' has no 30 mA RCD",
                    related_circuit_id=c.id,
                    standard_ref="DS/HD 60364-7-701 §701.411.3.3",
                ))

        if c.circuit_type is CircuitType.SOCKET and c.breaker_rating_a <= 32 and group is None:
            findings.append(Finding(
                code="RCD_SOCKET",
                severity=Severity.CRITICAL,
                message=f"Socket {_circuit_label(c)} has no RCD protection",
                related_circuit_id=c.id,
                standard_ref="DS/HD 60364-4-41 §411.3.3",
            ))

        if c.circuit_type is CircuitType.EV and (group is None or group.rcd_type != "B"):
            findings.append(Finding(
                code="EV_RCD_TYPE",
                severity=Severity.CRITICAL,
                message=f"EV charger {_circuit_label(c)} requires a Type B RCD",
                related_circuit_id=c.id,
                standard_ref="DS/HD 60364-7-722 §722.531.3.101",
            ))
    return findings


def _check_cables(cable_sizing: Sequence[CableSizingResult]) -> list[Finding]:
    findings: list[Finding] = []
    for r in cable_sizing:
        limit = r.voltage_drop_limit_percent
        if r.voltage_drop_percent > limit:
            findings.append(Finding(
                code="VOLTAGE_DROP",
                severity=Severity.CRITICAL,
                message=(
                    f"Voltage drop {r.voltage_drop_percent:.1f}% exceeds the {limit:g}% limit "
                    f"({r.cable_designation}, {r.length_meters:g} m)"
                ),
                related_circuit_id=r.circuit_id,
                standard_ref="DS/HD 60364-5-52 §525",
            ))
        elif limit - r.voltage_drop_percent <= VOLTAGE_DROP_WARNING_BAND_PCT:
            findings.append(Finding(
                code="VOLTAGE_DROP_MARGIN",
                severity=Severity.WARNING,
                message=(
                    f"Voltage drop {r.voltage_drop_percent:.1f}% is within "
                    f"{VOLTAGE_DROP_WARNING_BAND_PCT:g} points of the {limit:g}% limit"
                ),
                related_circuit_id=r.circuit_id,
                standard_ref="DS/HD 60364-5-52 §525",
            ))

        if r.ampacity_a < r.design_current_a:
            findings.append(Finding(
                code="CABLE_TABLE_EXHAUSTED",
                severity=Severity.CRITICAL,
                message=(
                    f"No standard cross-section carries {r.design_current_a:.1f} A; "
                    f"{r.cross_section_mm2:g} mm² is rated {r.ampacity_a:.1f} A"
                ),
                related_circuit_id=r.circuit_id,
                standard_ref="DS/HD 60364-5-52 §523",
            ))
    return findings


def _check_coordination(
    panel: PanelConfiguration,
    cable_sizing: Sequence[CableSizingResult],
    tables: ReferenceTables,
) -> list[Finding]:
    findings: list[Finding] = []
    by_circuit = {r.circuit_id: r for r in cable_sizing if r.circuit_id is not None}
    for c in panel.circuits:
        if c.design_current_a > c.breaker_rating_a:
            findings.append(Finding(
                code="BREAKER_BELOW_LOAD",
                severity=Severity.CRITICAL,
                message=(
                    f"{_circuit_label(c)}: design current {c.design_current_a:.1f} A exceeds "
                    f"its {c.breaker_rating_a} A breaker"
                ),
                related_circuit_id=c.id,
                standard_ref="DS/HD 60364-4-43 §433.1",
            ))
        sizing = by_circuit.get(c.id)
        if sizing is not None and sizing.cross_section_mm2 == c.cable_cross_section_mm2:
            ampacity = sizing.ampacity_a
        else:
            phase = PhaseType.THREE if c.poles == 3 else PhaseType.SINGLE
            ampacity = tables.ampacity(_REFERENCE_METHOD, loaded_conductors(phase), c.cable_cross_section_mm2)
        if c.breaker_rating_a > ampacity:
            findings.append(Finding(
                code="BREAKER_CABLE_MISMATCH",
                severity=Severity.CRITICAL,
                message=(
                    f"{_circuit_label(c)}: {c.breaker_rating_a} A breaker cannot protect "
                    f"{c.cable_cross_section_mm2:g} mm² cable rated {ampacity:.1f} A"
                ),
                related_circuit_id=c.id,
                standard_ref="DS/HD 60364-4-43 §433.1",
            ))
    return findings


def _check_main_breaker(panel: PanelConfiguration) -> Optional[Finding]:
    if panel.total_demand_load_w <= 0:
        return None
    demand_a = panel.total_demand_load_w / (panel.phase.voltage * panel.phase.phase_factor)
    rating = panel.main_breaker_rating_a
    if rating < demand_a:
        return Finding(
            code="MAIN_BREAKER_UNDERSIZED",
            severity=Severity.CRITICAL,
            message=f"Main breaker {rating} A is below the demand current {demand_a:.1f} A",
            standard_ref="DS/HD 60364-3 §311",
        )
    headroom = (rating - demand_a) / demand_a * 100.0
    if headroom < MAIN_BREAKER_MIN_HEADROOM_PCT:
        return Finding(
            code="MAIN_BREAKER_HEADROOM",
            severity=Severity.WARNING,
            message=(
                f"Main breaker {rating} A leaves only {headroom:.0f}% headroom over "
                f"{demand_a:.1f} A demand (min {MAIN_BREAKER_MIN_HEADROOM_PCT:g}%)"
            ),
            standard_ref="DS/HD 60364-3 §311",
        )
    return None


def _check_panel(panel: PanelConfiguration, max_circuits_per_rcd: int) -> list[Finding]:
    findings: list[Finding] = []
    for g in panel.rcd_groups:
        if len(g.circuit_ids) > max_circuits_per_rcd:
            findings.append(Finding(
                code="RCD_GROUP_SIZE",
                severity=Severity.WARNING,
                message=(
                    f"RCD group {g.id} protects {len(g.circuit_ids)} circuits "
                    f"(max {max_circuits_per_rcd})"
                ),
                standard_ref="DS/HD 60364-5-53 §531.3",
            ))

    if panel.phase is PhaseType.THREE:
        imbalance = imbalance_percent(panel.phase_loads)
        if imbalance > PHASE_IMBALANCE_FINDING_PCT:
            findings.append(Finding(
                code="PHASE_IMBALANCE",
                severity=Severity.WARNING,
                message=f"Phase loading is {imbalance:.0f}% unbalanced (recommended max 20%)",
                standard_ref="DS/HD 60364-5-52",
            ))

    if panel.circuits and panel.spare_capacity_percent < PANEL_MIN_SPARE_PCT:
        findings.append(Finding(
            code="SPARE_CAPACITY",
            severity=Severity.WARNING,
            message=f"Only {panel.spare_capacity_percent:.0f}% spare capacity in the panel",
            standard_ref="Good practice",
        ))

    if panel.upgrade_required:
        findings.append(Finding(
            code="SUPPLY_UPGRADE",
            severity=Severity.INFO,
            message=(
                f"Main breaker {panel.main_breaker_rating_a} A exceeds the existing "
                f"{panel.existing_supply_a} A supply; an upgrade must be requested"
            ),
            standard_ref="Supply agreement",
        ))

    if panel.circuits and not panel.surge_protection:
        findings.append(Finding(
            code="SURGE_PROTECTION",
            severity=Severity.INFO,
            message="Type 2 surge protection is recommended for new installations",
            standard_ref="DS/HD 60364-4-44 §443",
        ))
    return findings


def check_compliance(
    panel: PanelConfiguration,
    cable_sizing: Sequence[CableSizingResult],
    rooms: Sequence[Room],
    tables: Optional[ReferenceTables] = None,
    max_circuits_per_rcd: int = RCD_MAX_CIRCUITS_PER_GROUP,
) -> ComplianceCheckResult:
    tables = tables or default_tables()
    room_types = {r.name: r.room_type for r in rooms}

    findings: list[Finding] = []
    findings.extend(_check_rcd_protection(panel, room_types))
    findings.extend(_check_cables(cable_sizing))
    findings.extend(_check_coordination(panel, cable_sizing, tables))
    main = _check_main_breaker(panel)
    if main is not None:
        findings.append(main)
    findings.extend(_check_panel(panel, max_circuits_per_rcd))

    compliant = not any(f.severity is Severity.CRITICAL for f in findings)
    logger.info(
        "Compliance check: %d findings, compliant=%s", len(findings), compliant,
    )
    return ComplianceCheckResult(compliant=compliant, findings=findings)


def compliance_to_dict(result: ComplianceCheckResult) -> dict:
    return {
        "compliant": result.compliant,
        "summary": result.summary,
        "standards_checked": list(STANDARDS_CHECKED),
        "findings": [
            {
                "code": f.code,
                "severity": f.severity.value,
                "message": f.message,
                "related_circuit_id": f.related_circuit_id,
                "standard_ref": f.standard_ref,
            }
            for f in result.findings
        ],
    }
