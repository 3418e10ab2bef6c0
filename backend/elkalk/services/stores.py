"""
Stores for the learning loop: estimate snapshots, feedback corpus and
calibration coefficients/batches.

In-memory implementations are the default. The SQLAlchemy implementations
are used when DATABASE_URL is configured; they take an ``async_sessionmaker``.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from elkalk.models.learning import Adjustment, CalculationFeedback, CalibrationBatch, EstimateRecord
from elkalk.models.orm_models import (
    CalculationFeedbackRow,
    CalibrationBatchRow,
    CalibrationCoefficientRow,
    ElectricalEstimate,
)
from elkalk.services.reference_tables import CalibrationCoefficient


# ─── Interfaces ───────────────────────────────────────────────────────────────

class EstimateStore(ABC):
    @abstractmethod
    async def save(self, record: EstimateRecord) -> None: ...

    @abstractmethod
    async def get(self, calculation_id: str) -> Optional[EstimateRecord]: ...

    @abstractmethod
    async def get_many(self, calculation_ids: Iterable[str]) -> Dict[str, EstimateRecord]: ...


class FeedbackStore(ABC):
    @abstractmethod
    async def upsert(self, feedback: CalculationFeedback) -> None: ...

    @abstractmethod
    async def get(self, calculation_id: str) -> Optional[CalculationFeedback]: ...

    @abstractmethod
    async def list_all(
        self, since: Optional[datetime] = None, until: Optional[datetime] = None,
    ) -> List[CalculationFeedback]:
        """Records ordered by recorded_at, optionally filtered to [since, until)."""


class ReferenceTableStore(ABC):
    @abstractmethod
    async def load_coefficients(self) -> List[CalibrationCoefficient]: ...

    @abstractmethod
    async def save_coefficients(self, coefficients: Iterable[CalibrationCoefficient]) -> None: ...

    @abstractmethod
    async def record_batch(self, batch: CalibrationBatch) -> None: ...

    @abstractmethod
    async def get_batch(self, batch_id: str) -> Optional[CalibrationBatch]: ...

    @abstractmethod
    async def list_batches(self) -> List[CalibrationBatch]:
        """Applied batches, oldest first."""


def _in_range(ts: datetime, since: Optional[datetime], until: Optional[datetime]) -> bool:
    return (since is None or ts >= since) and (until is None or ts < until)


# ─── In-memory ────────────────────────────────────────────────────────────────

class InMemoryEstimateStore(EstimateStore):
    def __init__(self) -> None:
        self._records: Dict[str, EstimateRecord] = {}

    async def save(self, record: EstimateRecord) -> None:
        self._records[record.calculation_id] = record

    async def get(self, calculation_id: str) -> Optional[EstimateRecord]:
        return self._records.get(calculation_id)

    async def get_many(self, calculation_ids: Iterable[str]) -> Dict[str, EstimateRecord]:
        return {cid: self._records[cid] for cid in calculation_ids if cid in self._records}


class InMemoryFeedbackStore(FeedbackStore):
    def __init__(self) -> None:
        self._records: Dict[str, CalculationFeedback] = {}

    async def upsert(self, feedback: CalculationFeedback) -> None:
        self._records[feedback.calculation_id] = feedback

    async def get(self, calculation_id: str) -> Optional[CalculationFeedback]:
        return self._records.get(calculation_id)

    async def list_all(
        self, since: Optional[datetime] = None, until: Optional[datetime] = None,
    ) -> List[CalculationFeedback]:
        rows = [f for f in self._records.values() if _in_range(f.recorded_at, since, until)]
        return sorted(rows, key=lambda f: f.recorded_at)


class InMemoryReferenceTableStore(ReferenceTableStore):
    def __init__(self) -> None:
        self._coefficients: Dict[str, CalibrationCoefficient] = {}
        self._batches: Dict[str, CalibrationBatch] = {}

    async def load_coefficients(self) -> List[CalibrationCoefficient]:
        return list(self._coefficients.values())

    async def save_coefficients(self, coefficients: Iterable[CalibrationCoefficient]) -> None:
        for c in coefficients:
            self._coefficients[c.key] = CalibrationCoefficient(c.key, c.kind, c.value, c.updated_at)

    async def record_batch(self, batch: CalibrationBatch) -> None:
        self._batches[batch.batch_id] = batch

    async def get_batch(self, batch_id: str) -> Optional[CalibrationBatch]:
        return self._batches.get(batch_id)

    async def list_batches(self) -> List[CalibrationBatch]:
        return sorted(self._batches.values(), key=lambda b: b.applied_at or b.created_at)


# ─── SQLAlchemy ───────────────────────────────────────────────────────────────

def _f(value) -> Optional[float]:
    # Numeric columns come back as Decimal
    return None if value is None else float(value)


def _estimate_from_row(row: ElectricalEstimate) -> EstimateRecord:
    return EstimateRecord(
        calculation_id=row.calculation_id,
        estimated_hours=_f(row.estimated_hours),
        estimated_material_cost=_f(row.estimated_material_cost),
        estimated_price=_f(row.estimated_price),
        complexity_score=row.complexity_score or 0,
        component_hours={k: float(v) for k, v in (row.component_hours or {}).items()},
        profile_hours={k: float(v) for k, v in (row.profile_hours or {}).items()},
        total_points=row.total_points or 0,
        created_at=row.created_at,
    )


def _feedback_from_row(row: CalculationFeedbackRow) -> CalculationFeedback:
    # Variances are read back as stored, never recomputed
    return CalculationFeedback(
        calculation_id=row.calculation_id,
        estimated_hours=_f(row.estimated_hours),
        actual_hours=_f(row.actual_hours),
        estimated_material_cost=_f(row.estimated_material_cost),
        actual_material_cost=_f(row.actual_material_cost),
        offer_accepted=row.offer_accepted,
        project_profitable=row.project_profitable,
        customer_satisfaction=_f(row.customer_satisfaction),
        lessons_learned=row.lessons_learned,
        hours_variance_pct=_f(row.hours_variance_pct),
        material_variance_pct=_f(row.material_variance_pct),
        recorded_at=row.recorded_at,
    )


def _adjustment_to_json(a: Adjustment) -> dict:
    return {
        "key": a.key,
        "kind": a.kind,
        "old_value": a.old_value,
        "new_value": a.new_value,
        "sample_count": a.sample_count,
        "mean_variance_pct": a.mean_variance_pct,
        "confidence": a.confidence,
        "reason": a.reason,
    }


def _batch_from_row(row: CalibrationBatchRow) -> CalibrationBatch:
    return CalibrationBatch(
        adjustments=tuple(Adjustment(**a) for a in row.adjustments or []),
        batch_id=row.batch_id,
        created_at=row.created_at,
        applied_at=row.applied_at,
        source=row.source,
    )


class SqlEstimateStore(EstimateStore):
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def save(self, record: EstimateRecord) -> None:
        values = {
            "calculation_id": record.calculation_id,
            "estimated_hours": record.estimated_hours,
            "estimated_material_cost": record.estimated_material_cost,
            "estimated_price": record.estimated_price,
            "complexity_score": record.complexity_score,
            "total_points": record.total_points,
            "component_hours": record.component_hours,
            "profile_hours": record.profile_hours,
            "created_at": record.created_at,
        }
        stmt = pg_insert(ElectricalEstimate).values(**values)
        stmt = stmt.on_conflict_do_update(index_elements=["calculation_id"], set_=values)
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def get(self, calculation_id: str) -> Optional[EstimateRecord]:
        async with self.session_factory() as session:
            row = await session.get(ElectricalEstimate, calculation_id)
            return _estimate_from_row(row) if row else None

    async def get_many(self, calculation_ids: Iterable[str]) -> Dict[str, EstimateRecord]:
        ids = list(calculation_ids)
        if not ids:
            return {}
        async with self.session_factory() as session:
            result = await session.execute(
                select(ElectricalEstimate).where(ElectricalEstimate.calculation_id.in_(ids))
            )
            return {row.calculation_id: _estimate_from_row(row) for row in result.scalars()}


class SqlFeedbackStore(FeedbackStore):
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def upsert(self, feedback: CalculationFeedback) -> None:
        values = {
            "calculation_id": feedback.calculation_id,
            "estimated_hours": feedback.estimated_hours,
            "actual_hours": feedback.actual_hours,
            "estimated_material_cost": feedback.estimated_material_cost,
            "actual_material_cost": feedback.actual_material_cost,
            "offer_accepted": feedback.offer_accepted,
            "project_profitable": feedback.project_profitable,
            "customer_satisfaction": feedback.customer_satisfaction,
            "lessons_learned": feedback.lessons_learned,
            "hours_variance_pct": feedback.hours_variance_pct,
            "material_variance_pct": feedback.material_variance_pct,
            "recorded_at": feedback.recorded_at,
        }
        stmt = pg_insert(CalculationFeedbackRow).values(**values)
        stmt = stmt.on_conflict_do_update(index_elements=["calculation_id"], set_=values)
        async with self.session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def get(self, calculation_id: str) -> Optional[CalculationFeedback]:
        async with self.session_factory() as session:
            row = await session.get(CalculationFeedbackRow, calculation_id)
            return _feedback_from_row(row) if row else None

    async def list_all(
        self, since: Optional[datetime] = None, until: Optional[datetime] = None,
    ) -> List[CalculationFeedback]:
        stmt = select(CalculationFeedbackRow).order_by(CalculationFeedbackRow.recorded_at)
        if since is not None:
            stmt = stmt.where(CalculationFeedbackRow.recorded_at >= since)
        if until is not None:
            stmt = stmt.where(CalculationFeedbackRow.recorded_at < until)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [_feedback_from_row(row) for row in result.scalars()]


class SqlReferenceTableStore(ReferenceTableStore):
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def load_coefficients(self) -> List[CalibrationCoefficient]:
        async with self.session_factory() as session:
            result = await session.execute(select(CalibrationCoefficientRow))
            return [
                CalibrationCoefficient(row.key, row.kind, float(row.value), row.updated_at)
                for row in result.scalars()
            ]

    async def save_coefficients(self, coefficients: Iterable[CalibrationCoefficient]) -> None:
        async with self.session_factory() as session:
            for c in coefficients:
                values = {"key": c.key, "kind": c.kind, "value": c.value, "updated_at": c.updated_at}
                stmt = pg_insert(CalibrationCoefficientRow).values(**values)
                stmt = stmt.on_conflict_do_update(index_elements=["key"], set_=values)
                await session.execute(stmt)
            await session.commit()

    async def record_batch(self, batch: CalibrationBatch) -> None:
        async with self.session_factory() as session:
            session.add(CalibrationBatchRow(
                batch_id=batch.batch_id,
                source=batch.source,
                created_at=batch.created_at,
                applied_at=batch.applied_at,
                adjustments=[_adjustment_to_json(a) for a in batch.adjustments],
            ))
            await session.commit()

    async def get_batch(self, batch_id: str) -> Optional[CalibrationBatch]:
        async with self.session_factory() as session:
            row = await session.get(CalibrationBatchRow, batch_id)
            return _batch_from_row(row) if row else None

    async def list_batches(self) -> List[CalibrationBatch]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CalibrationBatchRow).order_by(CalibrationBatchRow.applied_at)
            )
            return [_batch_from_row(row) for row in result.scalars()]
