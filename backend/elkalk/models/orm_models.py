"""ORM Models for the elkalk learning loop — SQLAlchemy 2.0"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Text, Boolean, Integer, Numeric, DateTime, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from elkalk.db import Base


# ── ESTIMATES ────────────────────────────────────────────────────────────────
class ElectricalEstimate(Base):
    """What the estimator predicted; the reference point for recorded actuals."""
    __tablename__ = "electrical_estimates"
    calculation_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    estimated_hours: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    estimated_material_cost: Mapped[float] = mapped_column(Numeric(14, 2), nullable=False)
    estimated_price: Mapped[float] = mapped_column(Numeric(14, 2), nullable=False)
    complexity_score: Mapped[int] = mapped_column(Integer, default=0)
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    component_hours: Mapped[Optional[dict]] = mapped_column(JSONB)
    profile_hours: Mapped[Optional[dict]] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── FEEDBACK ─────────────────────────────────────────────────────────────────
class CalculationFeedbackRow(Base):
    """Upsert-only learning corpus, keyed by calculation_id. Never deleted."""
    __tablename__ = "calculation_feedback"
    calculation_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    estimated_hours: Mapped[Optional[float]] = mapped_column(Numeric(10, 2))
    actual_hours: Mapped[Optional[float]] = mapped_column(Numeric(10, 2))
    estimated_material_cost: Mapped[Optional[float]] = mapped_column(Numeric(14, 2))
    actual_material_cost: Mapped[Optional[float]] = mapped_column(Numeric(14, 2))
    offer_accepted: Mapped[Optional[bool]] = mapped_column(Boolean)
    project_profitable: Mapped[Optional[bool]] = mapped_column(Boolean)
    customer_satisfaction: Mapped[Optional[float]] = mapped_column(Numeric(3, 1))
    lessons_learned: Mapped[Optional[str]] = mapped_column(Text)
    # Derived at write time
    hours_variance_pct: Mapped[Optional[float]] = mapped_column(Numeric(10, 4))
    material_variance_pct: Mapped[Optional[float]] = mapped_column(Numeric(10, 4))
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (Index("ix_calculation_feedback_recorded_at", "recorded_at"),)


# ── CALIBRATION ──────────────────────────────────────────────────────────────
class CalibrationCoefficientRow(Base):
    __tablename__ = "calibration_coefficients"
    key: Mapped[str] = mapped_column(String(120), primary_key=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)   # component_time | profile_multiplier | global_factor
    value: Mapped[float] = mapped_column(Numeric(14, 6), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class CalibrationBatchRow(Base):
    """Audit trail: one row per applied batch with its adjustments as JSON."""
    __tablename__ = "calibration_batches"
    batch_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source: Mapped[str] = mapped_column(String(50), default="auto")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    adjustments: Mapped[list] = mapped_column(JSONB, nullable=False)
