"""
Unit Reference Tables — DS/HD 60364-5-52 lookup data and the calibratable
estimating coefficients.

Static tables (ampacity, correction factors, diversity, costs) are module
constants. Calibration coefficients (component time per unit, building-profile
multipliers, the global time factor) live in a ``ReferenceTables`` instance
that is created once at process start, passed into every calculator, and
mutated only through ``apply_batch``.
"""
from __future__ import annotations

import copy
import logging
import math
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Iterator, Mapping, Optional

from elkalk.config import DEFAULT_DIVERSITY_FACTOR
from elkalk.models.electrical import CircuitType
from elkalk.models.learning import Adjustment, utcnow

logger = logging.getLogger("elkalk-learning")


class CalibrationError(Exception):
    """Raised by the calibration apply path (unknown key, stale batch, persistence failure)."""


# ── Conductors & protective devices ──────────────────────────────────────────

CABLE_SIZES_MM2: tuple[float, ...] = (1.5, 2.5, 4, 6, 10, 16, 25, 35, 50, 70, 95, 120)

BREAKER_RATINGS_A: tuple[int, ...] = (6, 10, 13, 16, 20, 25, 32, 40, 50, 63, 80, 100)

# IEC 60364-5-52 Table B.52.2–B.52.5, PVC copper at 30 °C
# method → loaded conductors → {cross-section mm²: A}
AMPACITY_TABLE: dict[str, dict[int, dict[float, float]]] = {
    "A1": {
        2: {1.5: 15.5, 2.5: 21, 4: 28, 6: 36, 10: 50, 16: 68, 25: 89, 35: 110, 50: 134, 70: 171, 95: 207, 120: 239},
        3: {1.5: 13.5, 2.5: 18, 4: 24, 6: 31, 10: 42, 16: 57, 25: 75, 35: 92, 50: 110, 70: 139, 95: 167, 120: 192},
    },
    "A2": {
        2: {1.5: 15, 2.5: 20, 4: 27, 6: 34, 10: 46, 16: 62, 25: 80, 35: 99, 50: 119, 70: 151, 95: 182, 120: 210},
        3: {1.5: 13, 2.5: 17.5, 4: 23, 6: 29, 10: 39, 16: 52, 25: 68, 35: 83, 50: 99, 70: 125, 95: 150, 120: 172},
    },
    "B1": {
        2: {1.5: 17.5, 2.5: 24, 4: 32, 6: 41, 10: 57, 16: 76, 25: 101, 35: 125, 50: 151, 70: 192, 95: 232, 120: 269},
        3: {1.5: 15.5, 2.5: 21, 4: 28, 6: 36, 10: 50, 16: 68, 25: 89, 35: 110, 50: 134, 70: 171, 95: 207, 120: 239},
    },
    "B2": {
        2: {1.5: 16.5, 2.5: 23, 4: 30, 6: 38, 10: 52, 16: 69, 25: 90, 35: 111, 50: 133, 70: 168, 95: 201, 120: 232},
        3: {1.5: 15, 2.5: 20, 4: 27, 6: 34, 10: 46, 16: 62, 25: 80, 35: 99, 50: 119, 70: 151, 95: 182, 120: 210},
    },
    "C": {
        2: {1.5: 19.5, 2.5: 27, 4: 36, 6: 46, 10: 63, 16: 85, 25: 112, 35: 138, 50: 168, 70: 213, 95: 258, 120: 299},
        3: {1.5: 17.5, 2.5: 24, 4: 32, 6: 41, 10: 57, 16: 76, 25: 96, 35: 119, 50: 144, 70: 184, 95: 223, 120: 259},
    },
    "E": {
        2: {1.5: 22, 2.5: 30, 4: 40, 6: 51, 10: 70, 16: 94, 25: 119, 35: 148, 50: 180, 70: 232, 95: 282, 120: 328},
        3: {1.5: 19.5, 2.5: 26, 4: 35, 6: 44, 10: 60, 16: 80, 25: 101, 35: 126, 50: 153, 70: 196, 95: 238, 120: 276},
    },
    "F": {
        2: {1.5: 24, 2.5: 33, 4: 45, 6: 58, 10: 80, 16: 107, 25: 138, 35: 169, 50: 207, 70: 268, 95: 328, 120: 382},
        3: {1.5: 22, 2.5: 30, 4: 40, 6: 51, 10: 70, 16: 94, 25: 119, 35: 147, 50: 179, 70: 229, 95: 278, 120: 322},
    },
}

# Table B.52.14: PVC, reference 30 °C
TEMPERATURE_CORRECTION: dict[int, float] = {
    10: 1.22, 15: 1.17, 20: 1.12, 25: 1.06, 30: 1.00, 35: 0.94,
    40: 0.87, 45: 0.79, 50: 0.71, 55: 0.61, 60: 0.50,
}

# Table B.52.17: bunched circuits
GROUPING_CORRECTION: dict[int, float] = {
    1: 1.00, 2: 0.80, 3: 0.70, 4: 0.65, 5: 0.60, 6: 0.57, 7: 0.54,
    8: 0.52, 9: 0.50, 10: 0.48, 12: 0.45, 16: 0.41, 20: 0.38,
}

# Copper at PVC operating temperature (~70 °C), Ω·mm²/m. Reactance is neglected.
CONDUCTOR_RESISTIVITY: dict[str, float] = {
    "Cu": 0.0225,
    "Al": 0.036,
}
DEFAULT_CONDUCTOR = "Cu"

# Smallest breaker a circuit of each type is protected with
CIRCUIT_MIN_BREAKER_A: dict[CircuitType, int] = {
    CircuitType.LIGHTING: 10,
    CircuitType.SOCKET: 16,
    CircuitType.POWER: 10,
    CircuitType.HEATING: 10,
    CircuitType.EV: 16,
    CircuitType.OTHER: 10,
}

# Capacity of a shared circuit before a new one is opened (A at 230 V)
SHARED_CIRCUIT_CAPACITY_A: dict[CircuitType, float] = {
    CircuitType.LIGHTING: 10.0,
    CircuitType.SOCKET: 16.0,
    CircuitType.OTHER: 16.0,
}
MAX_OUTLETS_PER_CIRCUIT = 10

# Duty-cycle derating for non-continuous loads in load analysis (thermostat cycling)
DUTY_CYCLE_FACTORS: dict[CircuitType, float] = {
    CircuitType.HEATING: 0.9,
}


# ── Diversity (DS/HD 60364-3) ────────────────────────────────────────────────

DIVERSITY_FACTORS: dict[str, dict[str, float]] = {
    "residential": {
        "lighting": 0.85,
        "socket_outlet": 0.40,
        "fixed_appliance": 0.75,
        "motor": 0.70,
        "heating": 0.85,
        "cooking": 0.65,
        "ev_charger": 1.00,     # Continuous, no diversity
        "data_equipment": 0.60,
        "other": 1.00,
    },
    "commercial": {
        "lighting": 0.90,
        "socket_outlet": 0.30,
        "fixed_appliance": 0.80,
        "motor": 0.75,
        "heating": 0.80,
        "cooking": 0.70,
        "ev_charger": 0.80,
        "data_equipment": 0.70,
        "other": 1.00,
    },
}
DIVERSITY_FACTORS["industrial"] = dict(DIVERSITY_FACTORS["commercial"])


# ── Costs (DKK, excl. VAT) ───────────────────────────────────────────────────

# (cable type, cores) → {cross-section: DKK/m}
CABLE_COSTS_DKK_M: dict[tuple[str, int], dict[float, float]] = {
    ("PVT", 3): {1.5: 8, 2.5: 12, 4: 18, 6: 26, 10: 42, 16: 65, 25: 98},
    ("PVT", 5): {1.5: 12, 2.5: 22, 4: 28, 6: 42, 10: 65, 16: 98, 25: 145},
    ("NOIKLX", 3): {4: 35, 6: 48, 10: 72, 16: 105, 25: 155},
}
CABLE_TYPE_COST_MULTIPLIER: dict[str, float] = {"PVT": 1.0, "NOIKLX": 2.0, "PFSP": 2.5}

MCB_COSTS_DKK: dict[int, float] = {
    6: 85, 10: 85, 13: 90, 16: 90, 20: 95, 25: 110, 32: 130, 40: 165,
    50: 240, 63: 280, 80: 420, 100: 520,
}
RCD_COSTS_DKK: dict[tuple[str, int], float] = {
    ("A", 25): 650, ("A", 40): 750, ("A", 63): 850, ("B", 40): 2200, ("B", 63): 2600,
}
PANEL_ENCLOSURE_SIZES: tuple[int, ...] = (12, 24, 36, 48, 72)
PANEL_ENCLOSURE_COSTS_DKK: dict[int, float] = {12: 450, 24: 750, 36: 1100, 48: 1500, 72: 2200}
MAIN_SWITCH_BASE_COST_DKK = 350.0
MAIN_SWITCH_HEAVY_SURCHARGE_DKK = 200.0     # ratings above 40 A
SURGE_PROTECTION_TYPE2_DKK = 1200.0
SURGE_PROTECTION_MODULES = 3

PANEL_BASE_LABOR_HOURS = 1.0
PANEL_LABOR_HOURS_PER_CIRCUIT = 0.25


# ── Rooms & estimating components ────────────────────────────────────────────

WET_ROOM_TYPES: frozenset[str] = frozenset({"bathroom", "wet_room", "utility", "laundry", "outdoor"})


@dataclass(frozen=True)
class ComponentSeed:
    code: str
    label: str
    time_seconds: float         # install + wiring + finishing, standard profile
    material_cost: float        # DKK per unit, box and device


@dataclass(frozen=True)
class PointLoad:
    """Electrical load contributed by one unit of a point type."""
    watts: float
    circuit_type: CircuitType
    diversity_group: str
    power_factor: float = 1.0
    is_continuous: bool = False
    three_phase: bool = False       # Three-phase when the supply allows it
    per_m2: bool = False            # watts is W/m² of room area


@dataclass(frozen=True)
class PointType:
    key: str
    component_code: str
    load: Optional[PointLoad] = None


@dataclass(frozen=True)
class BuildingProfile:
    code: str
    label: str
    time_multiplier: float
    difficulty_multiplier: float
    waste_multiplier: float


COMPONENT_SEEDS: tuple[ComponentSeed, ...] = (
    ComponentSeed("outlet.single", "Stikkontakt enkel", 1800, 85.0),
    ComponentSeed("outlet.double", "Stikkontakt dobbelt", 2040, 120.0),
    ComponentSeed("outlet.ip44", "Stikkontakt IP44", 2220, 150.0),
    ComponentSeed("outlet.data", "Dataudtag RJ45", 2460, 180.0),
    ComponentSeed("switch.single", "Afbryder enkelt", 1440, 95.0),
    ComponentSeed("light.ceiling", "Loftudtag DCL", 2160, 65.0),
    ComponentSeed("light.spot", "Indbygningsspot", 1680, 180.0),
    ComponentSeed("light.outdoor_wall", "Udendørs væglampe", 2880, 350.0),
    ComponentSeed("light.garden_pole", "Havepæl", 4200, 800.0),
    ComponentSeed("appliance.ventilation", "Ventilator", 3180, 650.0),
    ComponentSeed("appliance.floor_heating", "Gulvvarme tilslutning", 6300, 750.0),
    ComponentSeed("appliance.oven_3phase", "Komfurudtag", 4200, 250.0),
    ComponentSeed("appliance.induction", "Induktion tilslutning", 4200, 350.0),
    ComponentSeed("appliance.ev_charger", "Elbilslader 11kW", 12600, 8500.0),
    ComponentSeed("appliance.dedicated", "Apparattilslutning", 1800, 85.0),
    ComponentSeed("product.connection", "Produkttilslutning", 3600, 250.0),
)

_SOCKET = PointLoad(230.0, CircuitType.SOCKET, "socket_outlet")
_LIGHT = PointLoad(60.0, CircuitType.LIGHTING, "lighting", power_factor=0.95)

POINT_TYPES: dict[str, PointType] = {
    p.key: p for p in (
        PointType("outlets", "outlet.single", _SOCKET),
        PointType("outlets_countertop", "outlet.double", _SOCKET),
        PointType("outlets_ip44", "outlet.ip44", _SOCKET),
        PointType("data_points", "outlet.data"),
        PointType("switches", "switch.single"),
        PointType("ceiling_lights", "light.ceiling", _LIGHT),
        PointType("spots", "light.spot", _LIGHT),
        PointType("outdoor_lights", "light.outdoor_wall", _LIGHT),
        PointType("garden_poles", "light.garden_pole", _LIGHT),
        PointType("ventilation", "appliance.ventilation"),
        PointType("floor_heating", "appliance.floor_heating",
                  PointLoad(100.0, CircuitType.HEATING, "heating", per_m2=True)),
        PointType("oven", "appliance.oven_3phase",
                  PointLoad(3600.0, CircuitType.POWER, "cooking", three_phase=True)),
        PointType("induction", "appliance.induction",
                  PointLoad(7200.0, CircuitType.POWER, "cooking", power_factor=0.95, three_phase=True)),
        PointType("ev_charger", "appliance.ev_charger",
                  PointLoad(11000.0, CircuitType.EV, "ev_charger", power_factor=0.99,
                            is_continuous=True, three_phase=True)),
        PointType("dishwasher", "appliance.dedicated",
                  PointLoad(2200.0, CircuitType.POWER, "fixed_appliance", power_factor=0.85)),
        PointType("washing_machine", "appliance.dedicated",
                  PointLoad(2200.0, CircuitType.POWER, "fixed_appliance", power_factor=0.85)),
        PointType("dryer", "appliance.dedicated",
                  PointLoad(2500.0, CircuitType.POWER, "fixed_appliance", power_factor=0.85)),
    )
}

# Component used for typed products (appliances, chargers, heat pumps, inverters)
PRODUCT_COMPONENT_CODE = "product.connection"

PRODUCT_DIVERSITY_GROUPS: dict[str, str] = {
    "appliance": "fixed_appliance",
    "ev_charger": "ev_charger",
    "heat_pump": "heating",
    "inverter": "other",
}

BUILDING_PROFILE_SEEDS: tuple[BuildingProfile, ...] = (
    BuildingProfile("standard", "Gipsvæg", 1.0, 1.0, 1.05),
    BuildingProfile("wood", "Træskelet", 0.9, 0.8, 1.03),
    BuildingProfile("aerated_concrete", "Gasbeton/Leca", 1.3, 1.2, 1.06),
    BuildingProfile("masonry", "Murstensværk", 1.8, 1.6, 1.08),
    BuildingProfile("concrete", "Beton", 2.2, 2.0, 1.10),
    BuildingProfile("renovation_old", "Ældre installation", 1.4, 1.3, 1.08),
    BuildingProfile("exterior", "Udvendig", 1.5, 1.5, 1.15),
    BuildingProfile("surface", "Synlig installation", 0.7, 0.6, 1.15),
)
DEFAULT_BUILDING_PROFILE = "standard"


# ── Calibration coefficient keys ─────────────────────────────────────────────

COMPONENT_TIME_KIND = "component_time"
PROFILE_MULTIPLIER_KIND = "profile_multiplier"
GLOBAL_FACTOR_KIND = "global_factor"
GLOBAL_TIME_FACTOR_KEY = "global.time_factor"


# Seeded coefficients predate every estimate, so the whole corpus counts for a
# coefficient until its first calibration, across restarts too.
COEFFICIENT_SEED_TIME = datetime(2000, 1, 1, tzinfo=timezone.utc)


def component_time_key(code: str) -> str:
    return f"component.{code}.time_seconds"


def profile_multiplier_key(code: str) -> str:
    return f"profile.{code}.time_multiplier"


@dataclass
class CalibrationCoefficient:
    key: str
    kind: str
    value: float
    updated_at: datetime


def _seed_coefficients(now: datetime) -> dict[str, CalibrationCoefficient]:
    coeffs: dict[str, CalibrationCoefficient] = {}
    for seed in COMPONENT_SEEDS:
        key = component_time_key(seed.code)
        coeffs[key] = CalibrationCoefficient(key, COMPONENT_TIME_KIND, seed.time_seconds, now)
    for profile in BUILDING_PROFILE_SEEDS:
        key = profile_multiplier_key(profile.code)
        coeffs[key] = CalibrationCoefficient(key, PROFILE_MULTIPLIER_KIND, profile.time_multiplier, now)
    coeffs[GLOBAL_TIME_FACTOR_KEY] = CalibrationCoefficient(GLOBAL_TIME_FACTOR_KEY, GLOBAL_FACTOR_KIND, 1.0, now)
    return coeffs


class ReferenceTables:
    """
    Reference-table context. One instance per process; calculators only read.

    The static tables can be replaced per instance (tests inject their own
    diversity factors); coefficients change only through ``apply_batch``.
    """

    def __init__(
        self,
        diversity_factors: Optional[Mapping[str, Mapping[str, float]]] = None,
        ampacity: Optional[Mapping[str, Mapping[int, Mapping[float, float]]]] = None,
        resistivity: Optional[Mapping[str, float]] = None,
        default_diversity_factor: float = DEFAULT_DIVERSITY_FACTOR,
    ) -> None:
        self.diversity_factors = copy.deepcopy(dict(diversity_factors or DIVERSITY_FACTORS))
        self.ampacity_table = copy.deepcopy(dict(ampacity or AMPACITY_TABLE))
        self.resistivity_table = dict(resistivity or CONDUCTOR_RESISTIVITY)
        self.default_diversity_factor = default_diversity_factor
        self.cable_sizes = CABLE_SIZES_MM2
        self.breaker_ratings = BREAKER_RATINGS_A

        self._components = {seed.code: seed for seed in COMPONENT_SEEDS}
        self._profiles = {p.code: p for p in BUILDING_PROFILE_SEEDS}
        self._coefficients = _seed_coefficients(COEFFICIENT_SEED_TIME)
        self._registry_lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}

    # ── Electrical lookups ──────────────────────────────────────────────────

    def ampacity(self, method: str, loaded_conductors: int, cross_section: float) -> float:
        table = self.ampacity_table.get(method) or self.ampacity_table["B2"]
        by_size = table.get(loaded_conductors) or table[3]
        return float(by_size.get(cross_section, 0.0))

    def temperature_factor(self, ambient_c: Optional[float]) -> float:
        """Factor for the nearest tabulated temperature at or above ``ambient_c``."""
        if ambient_c is None:
            return 1.0
        for temp in sorted(TEMPERATURE_CORRECTION):
            if temp >= ambient_c:
                return TEMPERATURE_CORRECTION[temp]
        return TEMPERATURE_CORRECTION[max(TEMPERATURE_CORRECTION)]

    def grouping_factor(self, grouped: int) -> float:
        """Factor for the largest tabulated group count not above ``grouped``."""
        if grouped <= 1:
            return 1.0
        factor = 1.0
        for count in sorted(GROUPING_CORRECTION):
            if count <= grouped:
                factor = GROUPING_CORRECTION[count]
        return factor

    def resistivity(self, conductor: str = DEFAULT_CONDUCTOR) -> float:
        return self.resistivity_table[conductor]

    def diversity_factor(self, group: str, building_type: str = "residential") -> tuple[float, bool]:
        """Return (factor, known). Unknown groups fall back to the configured default."""
        table = self.diversity_factors.get(building_type) or self.diversity_factors.get("residential", {})
        if group in table:
            return float(table[group]), True
        return self.default_diversity_factor, False

    def cable_cost_per_meter(self, cable_type: str, cores: int, cross_section: float) -> float:
        entry = CABLE_COSTS_DKK_M.get((cable_type, cores), {}).get(cross_section)
        if entry is not None:
            return float(entry)
        # Rough estimate outside the table: ~3 DKK per mm² per metre
        return round(cross_section * 3 * CABLE_TYPE_COST_MULTIPLIER.get(cable_type, 1.0), 2)

    def mcb_cost(self, rating_a: int) -> float:
        return MCB_COSTS_DKK.get(rating_a, MCB_COSTS_DKK[max(MCB_COSTS_DKK)])

    def rcd_cost(self, rcd_type: str, rating_a: int) -> float:
        if (rcd_type, rating_a) in RCD_COSTS_DKK:
            return RCD_COSTS_DKK[(rcd_type, rating_a)]
        candidates = [cost for (t, r), cost in RCD_COSTS_DKK.items() if t == rcd_type and r >= rating_a]
        return min(candidates) if candidates else max(RCD_COSTS_DKK.values())

    def breaker_at_least(self, current_a: float) -> int:
        for rating in self.breaker_ratings:
            if rating >= current_a:
                return rating
        return self.breaker_ratings[-1]

    # ── Estimating lookups ──────────────────────────────────────────────────

    def point_type(self, key: str) -> Optional[PointType]:
        return POINT_TYPES.get(key)

    def component(self, code: str) -> ComponentSeed:
        return self._components[code]

    def component_time_seconds(self, code: str) -> float:
        return self._coefficients[component_time_key(code)].value

    def building_profile(self, code: str) -> Optional[BuildingProfile]:
        return self._profiles.get(code)

    def profile_time_multiplier(self, code: str) -> float:
        return self._coefficients[profile_multiplier_key(code)].value

    @property
    def global_time_factor(self) -> float:
        return self._coefficients[GLOBAL_TIME_FACTOR_KEY].value

    # ── Coefficients ────────────────────────────────────────────────────────

    def coefficient(self, key: str) -> CalibrationCoefficient:
        try:
            return self._coefficients[key]
        except KeyError:
            raise CalibrationError(f"Unknown calibration coefficient '{key}'") from None

    def coefficients(self) -> list[CalibrationCoefficient]:
        return [copy.copy(c) for c in sorted(self._coefficients.values(), key=lambda c: c.key)]

    def snapshot(self) -> dict[str, float]:
        return {key: c.value for key, c in self._coefficients.items()}

    def load_coefficients(self, rows: Iterable[CalibrationCoefficient]) -> int:
        """Seed stored values at process start. Unknown keys are skipped."""
        loaded = 0
        for row in rows:
            current = self._coefficients.get(row.key)
            if current is None:
                logger.warning("Skipping stored coefficient with unknown key %s", row.key)
                continue
            current.value = float(row.value)
            current.updated_at = row.updated_at
            loaded += 1
        return loaded

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    @contextmanager
    def _locked(self, keys: Iterable[str]) -> Iterator[None]:
        # Sorted acquisition order so concurrent batches cannot deadlock
        locks = [self._lock_for(key) for key in sorted(set(keys))]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()

    def capture(self, keys: Iterable[str]) -> list[CalibrationCoefficient]:
        """Copies of the named coefficients, value and timestamp, for ``restore``."""
        return [copy.copy(self.coefficient(key)) for key in keys]

    def restore(self, captured: Iterable[CalibrationCoefficient]) -> None:
        captured = list(captured)
        with self._locked(c.key for c in captured):
            for saved in captured:
                coeff = self._coefficients[saved.key]
                coeff.value = saved.value
                coeff.updated_at = saved.updated_at

    def apply_batch(self, adjustments: Iterable[Adjustment]) -> list[Adjustment]:
        """
        Set each coefficient to its adjustment's absolute ``new_value``.

        All keys are validated before anything is written. A coefficient that
        holds neither the adjustment's ``old_value`` nor its ``new_value`` was
        changed by another batch since this one was proposed; the whole batch
        is then rejected. Returns the adjustments that actually changed a
        value, so re-applying a batch returns an empty list.
        """
        adjustments = list(adjustments)
        for adj in adjustments:
            self.coefficient(adj.key)
            if adj.new_value <= 0:
                raise CalibrationError(f"Coefficient '{adj.key}' must stay positive, got {adj.new_value}")

        with self._locked(adj.key for adj in adjustments):
            for adj in adjustments:
                current = self._coefficients[adj.key].value
                if not (_same(current, adj.old_value) or _same(current, adj.new_value)):
                    raise CalibrationError(
                        f"Coefficient '{adj.key}' is {current:g}, batch expected {adj.old_value:g}; "
                        f"re-run auto-calibration"
                    )

            now = utcnow()
            changed: list[Adjustment] = []
            for adj in adjustments:
                coeff = self._coefficients[adj.key]
                if _same(coeff.value, adj.new_value):
                    continue
                coeff.value = adj.new_value
                coeff.updated_at = now
                changed.append(adj)
            return changed


def _same(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)


def is_wet_room(room_type: str) -> bool:
    return room_type in WET_ROOM_TYPES
