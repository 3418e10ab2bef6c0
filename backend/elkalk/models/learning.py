"""
Learning-loop records: feedback on finished jobs, the estimate snapshot the
feedback is compared against, and the calibration batches derived from them.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _variance_pct(estimated: Optional[float], actual: Optional[float]) -> Optional[float]:
    """(actual − estimated) / estimated × 100. None when either side is missing."""
    if estimated is None or actual is None or estimated <= 0:
        return None
    return (actual - estimated) / estimated * 100.0


@dataclass(frozen=True)
class EstimateRecord:
    """What the estimator predicted for one calculation. Written once per calculation_id."""
    calculation_id: str
    estimated_hours: float
    estimated_material_cost: float
    estimated_price: float
    complexity_score: int
    component_hours: dict[str, float] = field(default_factory=dict)   # component code → hours
    profile_hours: dict[str, float] = field(default_factory=dict)     # building profile → hours
    total_points: int = 0
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CalculationFeedback:
    calculation_id: str
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    estimated_material_cost: Optional[float] = None
    actual_material_cost: Optional[float] = None
    offer_accepted: Optional[bool] = None
    project_profitable: Optional[bool] = None
    customer_satisfaction: Optional[float] = None
    lessons_learned: Optional[str] = None
    hours_variance_pct: Optional[float] = None
    material_variance_pct: Optional[float] = None
    recorded_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, calculation_id: str, **values) -> "CalculationFeedback":
        """Build a record with its variance fields derived now."""
        return cls(calculation_id=calculation_id, **values)._with_variances()

    def merged(self, **updates) -> "CalculationFeedback":
        """Upsert: non-None updates overwrite, variances are re-derived at this write."""
        changes = {k: v for k, v in updates.items() if v is not None}
        return replace(self, **changes)._with_variances()

    def _with_variances(self) -> "CalculationFeedback":
        return replace(
            self,
            hours_variance_pct=_variance_pct(self.estimated_hours, self.actual_hours),
            material_variance_pct=_variance_pct(self.estimated_material_cost, self.actual_material_cost),
        )

    @property
    def overrun_pct(self) -> Optional[float]:
        """Largest positive overrun across hours and material; None without any actual."""
        values = [v for v in (self.hours_variance_pct, self.material_variance_pct) if v is not None]
        if not values:
            return None
        return max(0.0, max(values))


@dataclass
class AccuracyBucket:
    label: str
    sample_count: int
    hours_mape: Optional[float]
    material_mape: Optional[float]
    acceptance_rate: Optional[float]


@dataclass
class LearningMetrics:
    total_records: int
    records_with_actuals: int
    hours_mape: Optional[float]
    hours_bias_pct: Optional[float]
    material_mape: Optional[float]
    material_bias_pct: Optional[float]
    accuracy_score: Optional[float]
    acceptance_rate: Optional[float]
    profitability_rate: Optional[float]
    average_satisfaction: Optional[float]
    improving: Optional[bool]
    buckets: list[AccuracyBucket] = field(default_factory=list)


@dataclass(frozen=True)
class Adjustment:
    """One proposed coefficient change. Values are absolute, never deltas."""
    key: str
    kind: str                       # component_time | profile_multiplier | global_factor
    old_value: float
    new_value: float
    sample_count: int
    mean_variance_pct: float
    confidence: float
    reason: str = ""

    @property
    def change_pct(self) -> float:
        if self.old_value == 0:
            return 0.0
        return (self.new_value - self.old_value) / self.old_value * 100.0


@dataclass(frozen=True)
class ComponentCalibration:
    component_code: str
    sample_count: int
    mean_variance_pct: float
    current_time_seconds: float
    suggested_time_seconds: float
    confidence: float

    @property
    def needs_adjustment(self) -> bool:
        return self.suggested_time_seconds != self.current_time_seconds


@dataclass(frozen=True)
class CalibrationBatch:
    """Immutable output of one calibration run: the audit unit for apply."""
    adjustments: tuple[Adjustment, ...]
    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)
    applied_at: Optional[datetime] = None
    source: str = "auto"

    @property
    def is_empty(self) -> bool:
        return not self.adjustments

    def mark_applied(self, when: Optional[datetime] = None) -> "CalibrationBatch":
        return replace(self, applied_at=when or utcnow())
