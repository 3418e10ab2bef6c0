"""Risk engine — project risk score, customer OBS notes and estimate anomaly flags."""
import math
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from elkalk.models.electrical import Room
from elkalk.services.reference_tables import ReferenceTables, is_wet_room

logger = logging.getLogger("elkalk-estimator")


@dataclass
class RiskFactor:
    factor_type: str  # old_building | difficult_installation | large_project | high_value | wet_rooms
    severity: str     # medium | high
    description: str
    impact_percentage: float


@dataclass
class RiskAnalysis:
    risk_score: int                 # 1..5
    risk_level: str                 # low | medium | high | critical
    recommended_buffer_percentage: float
    factors: list[RiskFactor] = field(default_factory=list)


@dataclass
class Anomaly:
    anomaly_type: str  # time_outlier | low_margin | material_ratio
    severity: str      # info | warning | critical
    message: str
    details: dict = field(default_factory=dict)


class RiskAnalysisEngine:
    """Rule-based risk factors, OBS points and anomaly checks for one estimate."""

    OLD_BUILDING_YEARS = 30
    VERY_OLD_BUILDING_YEARS = 50
    DIFFICULT_PROFILE_MULTIPLIER = 1.5
    LARGE_PROJECT_POINTS = 100
    HIGH_VALUE_DKK = 200_000
    MAX_HOURS_PER_POINT = 2.0
    MIN_HOURS_PER_POINT = 0.1

    def __init__(self, tables: ReferenceTables):
        self.tables = tables

    def analyze(
        self,
        rooms: Sequence[Room],
        total_points: int,
        cost_price: float,
        building_age_years: Optional[int] = None,
    ) -> RiskAnalysis:
        factors: list[RiskFactor] = []
        factors.extend(self._check_building_age(building_age_years))
        factors.extend(self._check_installation_profiles(rooms))
        factors.extend(self._check_size(total_points, cost_price))
        factors.extend(self._check_wet_rooms(rooms))

        total_impact = sum(f.impact_percentage for f in factors)
        score = min(5, max(1, math.ceil(total_impact / 10)))
        if score <= 1:
            level = "low"
        elif score <= 2:
            level = "medium"
        elif score <= 4:
            level = "high"
        else:
            level = "critical"
        buffer = min(20, max(3, round(total_impact / 3)))

        logger.info(f"Risk analysis: {len(factors)} factors, score {score}/5 ({level})")
        return RiskAnalysis(
            risk_score=score,
            risk_level=level,
            recommended_buffer_percentage=float(buffer),
            factors=factors,
        )

    # ─── Risk factors ─────────────────────────────────────────────────────

    def _check_building_age(self, age: Optional[int]) -> list:
        if not age or age <= self.OLD_BUILDING_YEARS:
            return []
        very_old = age > self.VERY_OLD_BUILDING_YEARS
        return [RiskFactor(
            factor_type="old_building",
            severity="high" if very_old else "medium",
            description=f"Building is {age} years old; unforeseen existing installations are likely",
            impact_percentage=15.0 if very_old else 8.0,
        )]

    def _check_installation_profiles(self, rooms: Sequence[Room]) -> list:
        factors = []
        for room in rooms:
            profile = self.tables.building_profile(room.installation_profile)
            if profile is None or profile.difficulty_multiplier <= self.DIFFICULT_PROFILE_MULTIPLIER:
                continue
            factors.append(RiskFactor(
                factor_type="difficult_installation",
                severity="high" if profile.difficulty_multiplier > 2 else "medium",
                description=f"{room.name}: {profile.label} installation (difficulty ×{profile.difficulty_multiplier:g})",
                impact_percentage=round((profile.difficulty_multiplier - 1) * 10, 2),
            ))
        return factors

    def _check_size(self, total_points: int, cost_price: float) -> list:
        factors = []
        if total_points > self.LARGE_PROJECT_POINTS:
            factors.append(RiskFactor(
                factor_type="large_project",
                severity="high" if total_points > 2 * self.LARGE_PROJECT_POINTS else "medium",
                description=f"Large project with {total_points} electrical points",
                impact_percentage=5.0,
            ))
        if cost_price > self.HIGH_VALUE_DKK:
            factors.append(RiskFactor(
                factor_type="high_value",
                severity="high" if cost_price > 500_000 else "medium",
                description=f"High project value ({cost_price:,.0f} DKK)",
                impact_percentage=3.0,
            ))
        return factors

    def _check_wet_rooms(self, rooms: Sequence[Room]) -> list:
        wet = [r for r in rooms if is_wet_room(r.room_type)]
        if not wet:
            return []
        return [RiskFactor(
            factor_type="wet_rooms",
            severity="medium",
            description=f"{len(wet)} wet room/outdoor installations; IP-rated materials required",
            impact_percentage=5.0,
        )]

    # ─── OBS points ───────────────────────────────────────────────────────

    def obs_points(
        self,
        rooms: Sequence[Room],
        risk: RiskAnalysis,
        building_age_years: Optional[int] = None,
        has_ev_charger: bool = False,
        has_circuits: bool = True,
    ) -> list[str]:
        """Customer-facing notes printed on the offer."""
        notes = []
        if building_age_years and building_age_years > self.OLD_BUILDING_YEARS:
            notes.append(
                "OBS: Older installations may require replacing existing cables and boxes, "
                "which is not included in this offer."
            )
        if any(r.installation_profile in ("concrete", "masonry") for r in rooms):
            notes.append(
                "OBS: Drilling and chasing in concrete or masonry causes noise. "
                "Painting and surface restoration are not included."
            )
        if any(r.room_type == "bathroom" for r in rooms):
            notes.append(
                "OBS: Wet-room work follows the DS/HD 60364 zone rules. All materials are IP44 or better."
            )
        if has_ev_charger:
            notes.append(
                "OBS: The EV charger requires a dedicated circuit and sufficient capacity in the supply."
            )
        if risk.risk_level in ("high", "critical"):
            notes.append(
                f"OBS: The project has an elevated risk profile (score {risk.risk_score}/5); "
                f"a {risk.recommended_buffer_percentage:g}% risk buffer is recommended."
            )
        if has_circuits:
            notes.append(
                "OBS: The offer assumes sufficient space in the existing panel. "
                "Panel extension or replacement is estimated but may vary."
            )
        return notes

    # ─── Anomalies ────────────────────────────────────────────────────────

    def detect_anomalies(
        self,
        total_points: int,
        total_hours: float,
        cost_price: float,
        margin_percentage: float,
        material_cost: float,
    ) -> list[Anomaly]:
        anomalies = []
        if total_points > 0:
            per_point = total_hours / total_points
            details = {"hours_per_point": round(per_point, 3), "total_points": total_points}
            if per_point > self.MAX_HOURS_PER_POINT:
                anomalies.append(Anomaly(
                    anomaly_type="time_outlier",
                    severity="warning",
                    message=f"High time estimate: {per_point:.1f} hours per point (normally 0.3-1.5)",
                    details=details,
                ))
            elif per_point < self.MIN_HOURS_PER_POINT:
                anomalies.append(Anomaly(
                    anomaly_type="time_outlier",
                    severity="warning",
                    message=f"Low time estimate: {per_point:.2f} hours per point (normally 0.3-1.5)",
                    details=details,
                ))

        if margin_percentage < 10:
            anomalies.append(Anomaly(
                anomaly_type="low_margin",
                severity="critical",
                message=f"Margin of {margin_percentage:g}% is below 10%",
                details={"margin_percentage": margin_percentage},
            ))
        elif margin_percentage < 15:
            anomalies.append(Anomaly(
                anomaly_type="low_margin",
                severity="warning",
                message=f"Margin of {margin_percentage:g}% is below 15%",
                details={"margin_percentage": margin_percentage},
            ))

        if cost_price > 0:
            ratio = material_cost / cost_price
            if ratio < 0.2:
                anomalies.append(Anomaly(
                    anomaly_type="material_ratio",
                    severity="info",
                    message=f"Material share is only {ratio:.0%} of the cost price",
                    details={"material_ratio": round(ratio, 3)},
                ))
            elif ratio > 0.7:
                anomalies.append(Anomaly(
                    anomaly_type="material_ratio",
                    severity="warning",
                    message=f"Material share is {ratio:.0%} of the cost price",
                    details={"material_ratio": round(ratio, 3)},
                ))
        return anomalies


def risk_to_dict(risk: RiskAnalysis) -> dict:
    return {
        "risk_score": risk.risk_score,
        "risk_level": risk.risk_level,
        "recommended_buffer_percentage": risk.recommended_buffer_percentage,
        "factors": [
            {
                "factor_type": f.factor_type,
                "severity": f.severity,
                "description": f.description,
                "impact_percentage": f.impact_percentage,
            }
            for f in risk.factors
        ],
    }
