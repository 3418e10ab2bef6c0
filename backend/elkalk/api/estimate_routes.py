"""Estimation routes — full project estimate and single-cable sizing."""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from elkalk.api.deps import get_learning_engine, get_tables
from elkalk.models.electrical import CableSizingInput
from elkalk.models.schemas import CableSizeRequest, ElectricalProjectRequest
from elkalk.services.cable_sizing import calculate_cable_size, cable_result_to_dict
from elkalk.services.learning_engine import LearningEngine
from elkalk.services.project_estimator import (
    EstimationError,
    calculate_electrical_project,
    result_to_dict,
)
from elkalk.services.reference_tables import ReferenceTables

router = APIRouter(prefix="/api/v1/electrical", tags=["Electrical Estimation"])
logger = logging.getLogger("elkalk-api")


@router.post("/estimate")
async def create_estimate(
    body: ElectricalProjectRequest,
    request: Request,
    tables: ReferenceTables = Depends(get_tables),
    learning: LearningEngine = Depends(get_learning_engine),
):
    """
    Run the room-to-offer pipeline. The estimate snapshot is recorded so
    feedback posted later under the same calculation_id can be compared to it.
    """
    suggestions = await learning.risk_buffer_table() if body.use_suggested_risk_buffer else None
    result = calculate_electrical_project(body, tables, risk_buffer_by_complexity=suggestions)
    if isinstance(result, EstimationError):
        raise HTTPException(status_code=422, detail=result.to_dict())

    request.state.calculation_id = result.calculation_id
    await learning.record_estimate(result.to_record())
    return result_to_dict(result)


@router.post("/cable-size")
async def size_cable(body: CableSizeRequest, tables: ReferenceTables = Depends(get_tables)):
    result = calculate_cable_size(
        CableSizingInput(
            power_watts=body.power_watts,
            length_meters=body.length_meters,
            voltage=body.voltage,
            installation_method=body.installation_method,
            ambient_temperature=body.ambient_temperature,
            phase=body.phase,
            power_factor=body.power_factor,
            circuit_type=body.circuit_type,
            grouped_cables=body.grouped_cables,
        ),
        tables,
    )
    return cable_result_to_dict(result)
