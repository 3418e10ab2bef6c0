"""Learning routes — feedback, accuracy metrics and the calibration loop."""
import logging
from datetime import datetime
from typing import Optional
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from elkalk.api.deps import get_learning_engine
from elkalk.models.learning import CalculationFeedback, CalibrationBatch
from elkalk.models.schemas import FeedbackRequest
from elkalk.services.learning_engine import LearningEngine, MAX_COMPLEXITY, UnknownCalculationError
from elkalk.services.reference_tables import CalibrationError

router = APIRouter(prefix="/api/v1/learning", tags=["Learning"])
logger = logging.getLogger("elkalk-api")


class ApplyCalibrationRequest(BaseModel):
    batch_id: str = Field(..., min_length=1)


def _feedback_to_dict(f: CalculationFeedback) -> dict:
    data = asdict(f)
    data["recorded_at"] = f.recorded_at.isoformat()
    return data


def _batch_to_dict(b: CalibrationBatch) -> dict:
    return {
        "batch_id": b.batch_id,
        "source": b.source,
        "created_at": b.created_at.isoformat(),
        "applied_at": b.applied_at.isoformat() if b.applied_at else None,
        "adjustments": [
            {**asdict(a), "change_pct": round(a.change_pct, 2)} for a in b.adjustments
        ],
    }


@router.post("/feedback")
async def record_feedback(
    body: FeedbackRequest,
    learning: LearningEngine = Depends(get_learning_engine),
):
    values = body.model_dump(exclude={"calculation_id"}, exclude_none=True)
    try:
        feedback = await learning.record_feedback(body.calculation_id, **values)
    except UnknownCalculationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _feedback_to_dict(feedback)


@router.get("/metrics")
async def learning_metrics(
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    learning: LearningEngine = Depends(get_learning_engine),
):
    metrics = await learning.analyze_learning_metrics(since=since, until=until)
    return asdict(metrics)


@router.get("/calibrations")
async def component_calibrations(learning: LearningEngine = Depends(get_learning_engine)):
    return [
        {**asdict(c), "needs_adjustment": c.needs_adjustment}
        for c in await learning.analyze_component_calibration()
    ]


@router.get("/risk-buffer")
async def suggested_risk_buffer(
    complexity_score: int = Query(..., ge=0, le=MAX_COMPLEXITY),
    learning: LearningEngine = Depends(get_learning_engine),
):
    table = await learning.risk_buffer_table()
    return {
        "complexity_score": complexity_score,
        "suggested_risk_buffer_percentage": table[complexity_score],
        "by_complexity": table,
    }


@router.post("/auto-calibrate")
async def auto_calibrate(learning: LearningEngine = Depends(get_learning_engine)):
    """Propose adjustments. Nothing changes until the batch is applied."""
    return _batch_to_dict(await learning.auto_calibrate())


@router.post("/apply")
async def apply_calibration(
    body: ApplyCalibrationRequest,
    learning: LearningEngine = Depends(get_learning_engine),
):
    batch = learning.proposed(body.batch_id)
    if batch is None:
        # Re-applying an applied batch is a no-op that returns the recorded batch
        for applied in await learning.history():
            if applied.batch_id == body.batch_id:
                return _batch_to_dict(applied)
        raise HTTPException(status_code=404, detail=f"No proposed calibration batch '{body.batch_id}'")
    try:
        applied = await learning.apply_calibration(batch)
    except CalibrationError as e:
        status = 500 if e.__cause__ is not None else 409
        raise HTTPException(status_code=status, detail=str(e))
    return _batch_to_dict(applied)


@router.get("/history")
async def calibration_history(learning: LearningEngine = Depends(get_learning_engine)):
    return [_batch_to_dict(b) for b in await learning.history()]
