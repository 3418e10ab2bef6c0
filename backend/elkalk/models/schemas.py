"""
Boundary schemas — pydantic models validated before anything reaches the
calculation core.

Product specifications are a discriminated union on ``kind``: each product
family declares exactly the capabilities it has instead of a loose dict.
"""
from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from elkalk.models.electrical import CircuitType, PhaseType


# ── Product specifications ───────────────────────────────────────────────────

class ApplianceSpec(BaseModel):
    kind: Literal["appliance"] = "appliance"
    wattage: float = Field(..., gt=0, description="Rated input power in W")
    power_factor: float = Field(1.0, gt=0, le=1)
    phases: Literal[1, 3] = 1

    def load_watts(self) -> float:
        return self.wattage

    def circuit_type(self) -> CircuitType:
        return CircuitType.POWER


class EvChargerSpec(BaseModel):
    kind: Literal["ev_charger"] = "ev_charger"
    power_kw: float = Field(..., gt=0, le=50)
    phases: Literal[1, 3] = 3

    def load_watts(self) -> float:
        return self.power_kw * 1000.0

    def circuit_type(self) -> CircuitType:
        return CircuitType.EV


class HeatPumpSpec(BaseModel):
    kind: Literal["heat_pump"] = "heat_pump"
    capacity_kw: float = Field(..., gt=0, description="Thermal output in kW")
    cop: float = Field(3.0, gt=0, description="Coefficient of performance")
    phases: Literal[1, 3] = 1

    def load_watts(self) -> float:
        # Electrical input = thermal output / COP
        return self.capacity_kw * 1000.0 / self.cop

    def circuit_type(self) -> CircuitType:
        return CircuitType.HEATING


class InverterSpec(BaseModel):
    kind: Literal["inverter"] = "inverter"
    capacity_kw: float = Field(..., gt=0, description="AC output rating in kW")
    efficiency: float = Field(0.97, gt=0, le=1)
    inverter_type: Literal["string", "hybrid", "micro"] = "string"
    phases: Literal[1, 3] = 3

    def load_watts(self) -> float:
        # Circuit is sized for the full AC output
        return self.capacity_kw * 1000.0

    def circuit_type(self) -> CircuitType:
        return CircuitType.POWER


ProductSpec = Annotated[
    Union[ApplianceSpec, EvChargerSpec, HeatPumpSpec, InverterSpec],
    Field(discriminator="kind"),
]


class ProductLine(BaseModel):
    name: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)
    specification: ProductSpec
    is_continuous: bool = False


# ── Estimation request ───────────────────────────────────────────────────────

class RoomRequest(BaseModel):
    name: str = Field(..., min_length=1)
    room_type: str = Field("living_room", description="bathroom, kitchen, bedroom, ...")
    electrical_points: dict[str, int] = Field(default_factory=dict)
    area_m2: float = Field(10.0, gt=0)
    floor: int = 0
    ceiling_height_m: float = Field(2.5, gt=0)
    cable_length_m: Optional[float] = Field(None, gt=0)
    installation_profile: str = "standard"
    products: list[ProductLine] = Field(default_factory=list)


class PricingOverrides(BaseModel):
    hourly_rate: Optional[float] = Field(None, gt=0)
    overhead_percentage: Optional[float] = Field(None, ge=0)
    risk_buffer_percentage: Optional[float] = Field(None, ge=0)
    margin_percentage: Optional[float] = Field(None, ge=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    vat_percentage: Optional[float] = Field(None, ge=0)


class ElectricalProjectRequest(BaseModel):
    # Optional here so the orchestrator reports the typed error, not pydantic
    rooms: list[RoomRequest] = Field(default_factory=list)
    supply_phase: Optional[PhaseType] = None
    building_type: Literal["residential", "commercial", "industrial"] = "residential"
    is_renovation: bool = False
    existing_supply_a: Optional[int] = Field(None, gt=0)
    # False when the existing board already has a Type 2 SPD
    include_surge_protection: bool = True
    installation_method: str = "B2"
    building_age_years: Optional[int] = Field(None, ge=0)
    complexity_score: Optional[int] = Field(None, ge=0, le=5)
    calculation_id: Optional[str] = None
    pricing: PricingOverrides = Field(default_factory=PricingOverrides)
    use_suggested_risk_buffer: bool = False


class CableSizeRequest(BaseModel):
    power_watts: float = Field(..., gt=0)
    length_meters: float = Field(..., gt=0)
    voltage: float = Field(230.0, gt=0)
    installation_method: str = "B2"
    ambient_temperature: Optional[float] = None
    phase: PhaseType = PhaseType.SINGLE
    power_factor: float = Field(1.0, gt=0, le=1)
    circuit_type: CircuitType = CircuitType.OTHER
    grouped_cables: int = Field(1, ge=1)


# ── Learning ─────────────────────────────────────────────────────────────────

class FeedbackRequest(BaseModel):
    calculation_id: str = Field(..., min_length=1)
    actual_hours: Optional[float] = Field(None, ge=0)
    actual_material_cost: Optional[float] = Field(None, ge=0)
    offer_accepted: Optional[bool] = None
    project_profitable: Optional[bool] = None
    customer_satisfaction: Optional[float] = Field(None, ge=1, le=5)
    lessons_learned: Optional[str] = None
