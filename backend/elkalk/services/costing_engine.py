"""
CostingEngine — price fold for electrical installation estimates.

Fixed compounding order (changing it changes the price):

    cost price   = material + labour + other costs
    overhead     = cost price × overhead %
    risk         = cost price × risk %
    sales basis  = cost price + overhead + risk
    margin       = sales basis × margin %
    sale price   = sales basis + margin            (excl. VAT)
    net price    = sale price − discount
    final amount = net price + VAT

DB (dækningsbidrag, contribution margin) = net price − cost price.
All monetary values are DKK.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from elkalk.config import (
    DEFAULT_HOURLY_RATE,
    DEFAULT_MARGIN_PCT,
    DEFAULT_OVERHEAD_PCT,
    DEFAULT_RISK_BUFFER_PCT,
    DEFAULT_VAT_PCT,
    TRANSPORT_COST_PER_DAY,
    WORKING_HOURS_PER_DAY,
)


# Scenario name → (margin %, discount %). None = use the engine's setting.
_PROFIT_SCENARIOS: List[tuple] = [
    ("Minimal margin", 10.0, 0.0),
    ("Low margin", 15.0, 0.0),
    ("Standard margin", None, None),
    ("High margin", 30.0, 0.0),
    ("Premium margin", 40.0, 0.0),
    ("With 5% discount", None, 5.0),
    ("With 10% discount", None, 10.0),
]


@dataclass
class PriceBreakdown:
    labor_hours: float
    hourly_rate: float
    material_cost: float
    labor_cost: float
    other_costs: float
    cost_price: float
    overhead_percentage: float
    overhead_amount: float
    risk_percentage: float
    risk_amount: float
    sales_basis: float
    margin_percentage: float
    margin_amount: float
    sale_price_excl_vat: float
    discount_percentage: float
    discount_amount: float
    net_price: float
    vat_percentage: float
    vat_amount: float
    final_amount: float
    db_amount: float
    db_percentage: float
    db_per_hour: float


@dataclass
class ProfitScenario:
    name: str
    margin_percentage: float
    discount_percentage: float
    sale_price_excl_vat: float
    discount_amount: float
    net_price: float
    vat_amount: float
    final_amount: float
    db_amount: float
    db_percentage: float
    db_per_hour: float


@dataclass
class ProfitSimulation:
    cost_price: float
    labor_cost: float
    material_cost: float
    other_costs: float
    overhead_amount: float
    risk_amount: float
    sales_basis: float
    scenarios: List[ProfitScenario] = field(default_factory=list)


class CostingEngine:
    """
    Pricing settings are percentages (12 = 12 %). Anything missing from the
    settings dict falls back to the configured defaults.
    """

    def __init__(self, settings: Optional[Dict[str, Any]] = None) -> None:
        cfg = {k: v for k, v in (settings or {}).items() if v is not None}
        self.hourly_rate: float = float(cfg.get("hourly_rate", DEFAULT_HOURLY_RATE))
        self.overhead_pct: float = float(cfg.get("overhead_percentage", DEFAULT_OVERHEAD_PCT))
        self.risk_pct: float = float(cfg.get("risk_buffer_percentage", DEFAULT_RISK_BUFFER_PCT))
        self.margin_pct: float = float(cfg.get("margin_percentage", DEFAULT_MARGIN_PCT))
        self.discount_pct: float = float(cfg.get("discount_percentage", 0.0))
        self.vat_pct: float = float(cfg.get("vat_percentage", DEFAULT_VAT_PCT))
        self.transport_per_day: float = float(cfg.get("transport_per_day", TRANSPORT_COST_PER_DAY))

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def labor_cost(self, hours: float) -> float:
        return hours * self.hourly_rate

    def other_costs(self, hours: float) -> float:
        """Transport: one charge per started working day."""
        if hours <= 0:
            return 0.0
        return math.ceil(hours / WORKING_HOURS_PER_DAY) * self.transport_per_day

    # ------------------------------------------------------------------
    # Price fold
    # ------------------------------------------------------------------

    def price(
        self,
        material_cost: float,
        labor_hours: float,
        other_costs: Optional[float] = None,
    ) -> PriceBreakdown:
        labor = self.labor_cost(labor_hours)
        other = self.other_costs(labor_hours) if other_costs is None else other_costs

        cost_price = material_cost + labor + other
        overhead = cost_price * self.overhead_pct / 100.0
        risk = cost_price * self.risk_pct / 100.0
        sales_basis = cost_price + overhead + risk
        margin = sales_basis * self.margin_pct / 100.0
        sale_excl_vat = sales_basis + margin
        discount = sale_excl_vat * self.discount_pct / 100.0
        net = sale_excl_vat - discount
        vat = net * self.vat_pct / 100.0
        db = net - cost_price

        return PriceBreakdown(
            labor_hours=round(labor_hours, 2),
            hourly_rate=self.hourly_rate,
            material_cost=round(material_cost, 2),
            labor_cost=round(labor, 2),
            other_costs=round(other, 2),
            cost_price=round(cost_price, 2),
            overhead_percentage=self.overhead_pct,
            overhead_amount=round(overhead, 2),
            risk_percentage=self.risk_pct,
            risk_amount=round(risk, 2),
            sales_basis=round(sales_basis, 2),
            margin_percentage=self.margin_pct,
            margin_amount=round(margin, 2),
            sale_price_excl_vat=round(sale_excl_vat, 2),
            discount_percentage=self.discount_pct,
            discount_amount=round(discount, 2),
            net_price=round(net, 2),
            vat_percentage=self.vat_pct,
            vat_amount=round(vat, 2),
            final_amount=round(net + vat, 2),
            db_amount=round(db, 2),
            db_percentage=round(db / net * 100.0, 2) if net > 0 else 0.0,
            db_per_hour=round(db / labor_hours, 2) if labor_hours > 0 else 0.0,
        )

    # ------------------------------------------------------------------
    # Profit simulator
    # ------------------------------------------------------------------

    def simulate_profit(
        self,
        material_cost: float,
        total_hours: float,
        other_costs: Optional[float] = None,
    ) -> ProfitSimulation:
        """
        Re-run the margin/discount tail of the fold over fixed scenarios.
        Cost price (transport included, as in ``price``), overhead and risk
        are shared by all scenarios.
        """
        labor = self.labor_cost(total_hours)
        other = self.other_costs(total_hours) if other_costs is None else other_costs
        cost_price = material_cost + labor + other
        overhead = cost_price * self.overhead_pct / 100.0
        risk = cost_price * self.risk_pct / 100.0
        sales_basis = cost_price + overhead + risk

        scenarios: List[ProfitScenario] = []
        for name, margin_pct, discount_pct in _PROFIT_SCENARIOS:
            m = self.margin_pct if margin_pct is None else margin_pct
            d = self.discount_pct if discount_pct is None else discount_pct
            sale = sales_basis * (1 + m / 100.0)
            discount = sale * d / 100.0
            net = sale - discount
            vat = net * self.vat_pct / 100.0
            db = net - cost_price
            scenarios.append(ProfitScenario(
                name=name,
                margin_percentage=m,
                discount_percentage=d,
                sale_price_excl_vat=round(sale, 2),
                discount_amount=round(discount, 2),
                net_price=round(net, 2),
                vat_amount=round(vat, 2),
                final_amount=round(net + vat, 2),
                db_amount=round(db, 2),
                db_percentage=round(db / net * 100.0, 2) if net > 0 else 0.0,
                db_per_hour=round(db / total_hours, 2) if total_hours > 0 else 0.0,
            ))

        return ProfitSimulation(
            cost_price=round(cost_price, 2),
            labor_cost=round(labor, 2),
            material_cost=round(material_cost, 2),
            other_costs=round(other, 2),
            overhead_amount=round(overhead, 2),
            risk_amount=round(risk, 2),
            sales_basis=round(sales_basis, 2),
            scenarios=scenarios,
        )

    def get_rate_card(self) -> Dict[str, Any]:
        return {
            "hourly_rate": self.hourly_rate,
            "overhead_percentage": self.overhead_pct,
            "risk_buffer_percentage": self.risk_pct,
            "margin_percentage": self.margin_pct,
            "discount_percentage": self.discount_pct,
            "vat_percentage": self.vat_pct,
            "transport_per_day": self.transport_per_day,
        }
