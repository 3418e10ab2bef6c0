"""
Learning Engine — self-calibration of estimating coefficients from recorded
actuals.

Coefficients are either current (in the ReferenceTables the estimator reads)
or proposed (a CalibrationBatch from ``auto_calibrate``). A proposed batch only
becomes current through ``apply_calibration``; nothing is applied implicitly.

Read-path rules:
  - a coefficient is only calibrated from estimates made with its current
    value (estimate created_at ≥ coefficient updated_at), so rerunning a
    calibration over an unchanged corpus does not compound
  - below CALIBRATION_MIN_SAMPLES data points nothing is proposed
  - a mean variance within ±CALIBRATION_MIN_VARIANCE_PCT is treated as noise
  - one run never moves a coefficient more than ±CALIBRATION_MAX_STEP

Building-profile multipliers are calibrated relative to standard-profile
projects, (1 + v_profile) / (1 + v_standard), so the share of the variance
already explained by component times is not corrected twice.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from statistics import mean
from typing import Optional, Sequence

from elkalk.config import (
    CALIBRATION_FULL_CONFIDENCE_SAMPLES,
    CALIBRATION_MAX_STEP,
    CALIBRATION_MIN_SAMPLES,
    CALIBRATION_MIN_VARIANCE_PCT,
    DEFAULT_RISK_BUFFER_BY_COMPLEXITY,
    RECENCY_BUCKETS_DAYS,
    RISK_BUFFER_MAX_PCT,
    RISK_BUFFER_QUANTILE,
)
from elkalk.models.learning import (
    AccuracyBucket,
    Adjustment,
    CalculationFeedback,
    CalibrationBatch,
    ComponentCalibration,
    EstimateRecord,
    LearningMetrics,
    utcnow,
)
from elkalk.services.reference_tables import (
    COMPONENT_TIME_KIND,
    DEFAULT_BUILDING_PROFILE,
    PROFILE_MULTIPLIER_KIND,
    CalibrationCoefficient,
    CalibrationError,
    ReferenceTables,
    component_time_key,
    profile_multiplier_key,
)
from elkalk.services.stores import EstimateStore, FeedbackStore, ReferenceTableStore

logger = logging.getLogger("elkalk-learning")

MAX_COMPLEXITY = len(DEFAULT_RISK_BUFFER_BY_COMPLEXITY) - 1
# Trend compares the last TREND_WINDOW records against the TREND_WINDOW before
TREND_WINDOW = 10
# Proposed batches kept for apply; the oldest is dropped beyond this
MAX_PENDING_BATCHES = 10


class UnknownCalculationError(CalibrationError):
    """Feedback for a calculation_id with no recorded estimate."""


@dataclass(frozen=True)
class CalibrationSettings:
    min_samples: int = CALIBRATION_MIN_SAMPLES
    max_step: float = CALIBRATION_MAX_STEP
    min_variance_pct: float = CALIBRATION_MIN_VARIANCE_PCT
    full_confidence_samples: int = CALIBRATION_FULL_CONFIDENCE_SAMPLES


# ─── Pure helpers ─────────────────────────────────────────────────────────────

def _mean_or_none(values: Sequence[float]) -> Optional[float]:
    return round(mean(values), 2) if values else None


def _rate(flags: Sequence[Optional[bool]]) -> Optional[float]:
    known = [f for f in flags if f is not None]
    if not known:
        return None
    return round(sum(1 for f in known if f) / len(known) * 100.0, 1)


def quantile(values: Sequence[float], q: float) -> float:
    """Linear-interpolated quantile of a non-empty sequence."""
    ordered = sorted(values)
    pos = q * (len(ordered) - 1)
    lo = int(pos)
    hi = min(lo + 1, len(ordered) - 1)
    return ordered[lo] + (ordered[hi] - ordered[lo]) * (pos - lo)


def _bounded_factor(mean_variance_pct: float, max_step: float) -> float:
    step = max(-max_step, min(max_step, mean_variance_pct / 100.0))
    return 1.0 + step


def _confidence(n: int, settings: CalibrationSettings) -> float:
    return round(min(1.0, n / settings.full_confidence_samples), 2)


def compute_learning_metrics(
    feedback: Sequence[CalculationFeedback],
    now: Optional[datetime] = None,
) -> LearningMetrics:
    now = now or utcnow()
    hours = [f.hours_variance_pct for f in feedback if f.hours_variance_pct is not None]
    material = [f.material_variance_pct for f in feedback if f.material_variance_pct is not None]
    with_actuals = [
        f for f in feedback
        if f.hours_variance_pct is not None or f.material_variance_pct is not None
    ]

    hours_mape = _mean_or_none([abs(v) for v in hours])
    material_mape = _mean_or_none([abs(v) for v in material])
    mapes = [m for m in (hours_mape, material_mape) if m is not None]
    accuracy = round(max(0.0, 100.0 - mean(mapes)), 1) if mapes else None

    satisfaction = [f.customer_satisfaction for f in feedback if f.customer_satisfaction is not None]

    # Trend: is the hours error shrinking?
    ordered = sorted(
        (f for f in feedback if f.hours_variance_pct is not None), key=lambda f: f.recorded_at,
    )
    improving: Optional[bool] = None
    if len(ordered) >= 2 * TREND_WINDOW:
        recent = mean(abs(f.hours_variance_pct) for f in ordered[-TREND_WINDOW:])
        previous = mean(abs(f.hours_variance_pct) for f in ordered[-2 * TREND_WINDOW:-TREND_WINDOW])
        improving = recent < previous

    buckets: list[AccuracyBucket] = []
    lower = 0
    for label, upper in RECENCY_BUCKETS_DAYS:
        members = [
            f for f in feedback
            if (now - f.recorded_at).days >= lower and (upper is None or (now - f.recorded_at).days <= upper)
        ]
        buckets.append(AccuracyBucket(
            label=label,
            sample_count=len(members),
            hours_mape=_mean_or_none([abs(f.hours_variance_pct) for f in members if f.hours_variance_pct is not None]),
            material_mape=_mean_or_none(
                [abs(f.material_variance_pct) for f in members if f.material_variance_pct is not None]
            ),
            acceptance_rate=_rate([f.offer_accepted for f in members]),
        ))
        if upper is not None:
            lower = upper + 1

    return LearningMetrics(
        total_records=len(feedback),
        records_with_actuals=len(with_actuals),
        hours_mape=hours_mape,
        hours_bias_pct=_mean_or_none(hours),
        material_mape=material_mape,
        material_bias_pct=_mean_or_none(material),
        accuracy_score=accuracy,
        acceptance_rate=_rate([f.offer_accepted for f in feedback]),
        profitability_rate=_rate([f.project_profitable for f in feedback]),
        average_satisfaction=_mean_or_none(satisfaction),
        improving=improving,
        buckets=buckets,
    )


Pair = tuple[EstimateRecord, CalculationFeedback]


def _hours_samples(
    pairs: Sequence[Pair],
    breakdown: str,
    key_for,
    tables: ReferenceTables,
) -> dict[str, list[float]]:
    """Hours variance per breakdown code, restricted to estimates made with the current coefficient."""
    samples: dict[str, list[float]] = {}
    for record, fb in pairs:
        if fb.hours_variance_pct is None:
            continue
        for code, hours in getattr(record, breakdown).items():
            if hours <= 0:
                continue
            try:
                coeff = tables.coefficient(key_for(code))
            except CalibrationError:
                continue
            if record.created_at < coeff.updated_at:
                continue
            samples.setdefault(code, []).append(fb.hours_variance_pct)
    return samples


def compute_component_calibration(
    pairs: Sequence[Pair],
    tables: ReferenceTables,
    settings: CalibrationSettings = CalibrationSettings(),
) -> list[ComponentCalibration]:
    results = []
    samples = _hours_samples(pairs, "component_hours", component_time_key, tables)
    for code in sorted(samples):
        values = samples[code]
        if len(values) < settings.min_samples:
            continue
        mean_var = mean(values)
        current = tables.component_time_seconds(code)
        if abs(mean_var) < settings.min_variance_pct:
            suggested = current
        else:
            suggested = round(current * _bounded_factor(mean_var, settings.max_step), 1)
        results.append(ComponentCalibration(
            component_code=code,
            sample_count=len(values),
            mean_variance_pct=round(mean_var, 2),
            current_time_seconds=current,
            suggested_time_seconds=suggested,
            confidence=_confidence(len(values), settings),
        ))
    return results


def compute_profile_adjustments(
    pairs: Sequence[Pair],
    tables: ReferenceTables,
    settings: CalibrationSettings = CalibrationSettings(),
) -> list[Adjustment]:
    samples = _hours_samples(pairs, "profile_hours", profile_multiplier_key, tables)
    baseline = samples.get(DEFAULT_BUILDING_PROFILE, [])
    if len(baseline) < settings.min_samples:
        return []
    baseline_var = mean(baseline)

    adjustments = []
    for code in sorted(samples):
        values = samples[code]
        if code == DEFAULT_BUILDING_PROFILE or len(values) < settings.min_samples:
            continue
        ratio = (1 + mean(values) / 100.0) / (1 + baseline_var / 100.0)
        relative_pct = (ratio - 1) * 100.0
        if abs(relative_pct) < settings.min_variance_pct:
            continue
        current = tables.profile_time_multiplier(code)
        new_value = round(current * _bounded_factor(relative_pct, settings.max_step), 3)
        adjustments.append(Adjustment(
            key=profile_multiplier_key(code),
            kind=PROFILE_MULTIPLIER_KIND,
            old_value=current,
            new_value=new_value,
            sample_count=len(values),
            mean_variance_pct=round(relative_pct, 2),
            confidence=_confidence(len(values), settings),
            reason=f"'{code}' projects ran {relative_pct:+.1f}% against standard-profile projects",
        ))
    return adjustments


def compute_risk_buffers(
    pairs: Sequence[Pair],
    settings: CalibrationSettings = CalibrationSettings(),
) -> dict[int, float]:
    """
    Suggested risk buffer per complexity score 0..5: the RISK_BUFFER_QUANTILE
    of observed overruns where there is enough data, the default table
    otherwise. A running maximum keeps the table non-decreasing in complexity.
    """
    overruns: dict[int, list[float]] = {c: [] for c in range(MAX_COMPLEXITY + 1)}
    for record, fb in pairs:
        overrun = fb.overrun_pct
        if overrun is None:
            continue
        c = max(0, min(MAX_COMPLEXITY, record.complexity_score))
        overruns[c].append(overrun)

    table: dict[int, float] = {}
    floor = 0.0
    for c in range(MAX_COMPLEXITY + 1):
        values = overruns[c]
        if len(values) >= settings.min_samples:
            buffer = min(RISK_BUFFER_MAX_PCT, max(0.0, quantile(values, RISK_BUFFER_QUANTILE)))
        else:
            buffer = DEFAULT_RISK_BUFFER_BY_COMPLEXITY[c]
        floor = max(floor, buffer)
        table[c] = round(floor, 1)
    return table


# ─── LearningEngine ───────────────────────────────────────────────────────────

class LearningEngine:
    """
    Feedback corpus → metrics, proposed calibrations and risk buffers.

    ``apply_calibration`` is the only method that mutates the reference
    tables; applies are serialized through one asyncio lock, and the tables
    additionally lock per coefficient key.
    """

    def __init__(
        self,
        tables: ReferenceTables,
        estimates: EstimateStore,
        feedback: FeedbackStore,
        reference_store: ReferenceTableStore,
        settings: CalibrationSettings = CalibrationSettings(),
    ) -> None:
        self.tables = tables
        self.estimates = estimates
        self.feedback = feedback
        self.reference_store = reference_store
        self.settings = settings
        self._proposed: dict[str, CalibrationBatch] = {}
        self._apply_lock = asyncio.Lock()

    async def load_coefficients(self) -> int:
        """Pull persisted coefficients into the tables at process start."""
        rows = await self.reference_store.load_coefficients()
        loaded = self.tables.load_coefficients(rows)
        logger.info(f"Loaded {loaded} stored calibration coefficients")
        return loaded

    # -- Corpus -------------------------------------------------------------

    async def record_estimate(self, record: EstimateRecord) -> None:
        await self.estimates.save(record)

    async def record_feedback(self, calculation_id: str, **values) -> CalculationFeedback:
        """
        Upsert feedback for a calculation. Estimated values are taken from the
        recorded estimate; variances are derived at this write.
        """
        estimate = await self.estimates.get(calculation_id)
        if estimate is None:
            raise UnknownCalculationError(f"No estimate recorded for calculation '{calculation_id}'")

        existing = await self.feedback.get(calculation_id)
        if existing is None:
            record = CalculationFeedback.create(
                calculation_id,
                estimated_hours=estimate.estimated_hours,
                estimated_material_cost=estimate.estimated_material_cost,
                **values,
            )
        else:
            record = existing.merged(**values)
        await self.feedback.upsert(record)
        logger.info(
            f"Feedback recorded for {calculation_id}: hours variance {record.hours_variance_pct}",
            extra={"calculation_id": calculation_id},
        )
        return record

    async def _pairs(self) -> list[Pair]:
        feedback = await self.feedback.list_all()
        estimates = await self.estimates.get_many(f.calculation_id for f in feedback)
        return [(estimates[f.calculation_id], f) for f in feedback if f.calculation_id in estimates]

    # -- Read path ----------------------------------------------------------

    async def analyze_learning_metrics(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> LearningMetrics:
        feedback = await self.feedback.list_all(since=since, until=until)
        return compute_learning_metrics(feedback)

    async def analyze_component_calibration(self) -> list[ComponentCalibration]:
        return compute_component_calibration(await self._pairs(), self.tables, self.settings)

    async def risk_buffer_table(self) -> dict[int, float]:
        return compute_risk_buffers(await self._pairs(), self.settings)

    async def get_suggested_risk_buffer(self, complexity_score: int) -> float:
        table = await self.risk_buffer_table()
        return table[max(0, min(MAX_COMPLEXITY, complexity_score))]

    async def auto_calibrate(self) -> CalibrationBatch:
        """Propose a batch of adjustments. Nothing is applied."""
        pairs = await self._pairs()
        adjustments = [
            Adjustment(
                key=component_time_key(c.component_code),
                kind=COMPONENT_TIME_KIND,
                old_value=c.current_time_seconds,
                new_value=c.suggested_time_seconds,
                sample_count=c.sample_count,
                mean_variance_pct=c.mean_variance_pct,
                confidence=c.confidence,
                reason=f"Actual hours ran {c.mean_variance_pct:+.1f}% against estimate",
            )
            for c in compute_component_calibration(pairs, self.tables, self.settings)
            if c.needs_adjustment
        ]
        adjustments.extend(compute_profile_adjustments(pairs, self.tables, self.settings))

        batch = CalibrationBatch(adjustments=tuple(adjustments))
        if not batch.is_empty:
            self._proposed[batch.batch_id] = batch
            while len(self._proposed) > MAX_PENDING_BATCHES:
                self._proposed.pop(next(iter(self._proposed)))
        logger.info(
            f"Auto-calibration proposed {len(adjustments)} adjustments from {len(pairs)} records",
            extra={"batch_id": batch.batch_id},
        )
        return batch

    def proposed(self, batch_id: str) -> Optional[CalibrationBatch]:
        return self._proposed.get(batch_id)

    # -- Apply path ---------------------------------------------------------

    async def apply_calibration(self, batch: CalibrationBatch) -> CalibrationBatch:
        """
        Make a batch current. Values are absolute, so re-applying the same
        batch leaves the coefficients unchanged and returns the recorded batch.
        """
        async with self._apply_lock:
            recorded = await self.reference_store.get_batch(batch.batch_id)
            if recorded is not None:
                logger.info(f"Batch {batch.batch_id} already applied", extra={"batch_id": batch.batch_id})
                return recorded

            try:
                before = self.tables.capture(a.key for a in batch.adjustments)
                changed = self.tables.apply_batch(batch.adjustments)
            except CalibrationError as e:
                # Stale or invalid: it can never apply, so stop offering it
                self._proposed.pop(batch.batch_id, None)
                logger.warning(
                    f"Rejected calibration batch {batch.batch_id}: {e}",
                    extra={"batch_id": batch.batch_id},
                )
                raise
            applied = batch.mark_applied()
            saved = False
            try:
                await self.reference_store.save_coefficients(
                    [self.tables.coefficient(a.key) for a in changed]
                )
                saved = True
                await self.reference_store.record_batch(applied)
            except Exception as e:
                # Values and timestamps exactly as they were before the apply
                self.tables.restore(before)
                if saved:
                    await self._restore_stored(before, changed, batch.batch_id)
                logger.error(f"Persisting calibration batch {batch.batch_id} failed: {e}")
                raise CalibrationError(f"Could not persist calibration batch {batch.batch_id}") from e

            self._proposed.pop(batch.batch_id, None)
            logger.info(
                f"Applied calibration batch {batch.batch_id}: {len(changed)} coefficients changed",
                extra={"batch_id": batch.batch_id},
            )
            return applied

    async def _restore_stored(
        self,
        before: list[CalibrationCoefficient],
        changed: list[Adjustment],
        batch_id: str,
    ) -> None:
        keys = {a.key for a in changed}
        try:
            await self.reference_store.save_coefficients([c for c in before if c.key in keys])
        except Exception:
            logger.exception(
                f"Stored coefficients for batch {batch_id} could not be reverted; "
                f"they will load as applied on the next start",
                extra={"batch_id": batch_id},
            )

    async def history(self) -> list[CalibrationBatch]:
        return await self.reference_store.list_batches()
