"""
Engine configuration — single source of truth for thresholds, limits and
pricing defaults used by the calculation and calibration engines.

Import from here in all services rather than hardcoding values. Every value
can be overridden through the environment variable of the same name.
"""
from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ── Supply ────────────────────────────────────────────────────────────────────

SINGLE_PHASE_VOLTAGE: float = 230.0
THREE_PHASE_VOLTAGE: float = 400.0      # Line-to-line

# Assumed existing supply fuse for renovations when the caller supplies none.
ASSUMED_EXISTING_SUPPLY_A: int = _env_int("ASSUMED_EXISTING_SUPPLY_A", 25)


# ── Cable sizing (DS/HD 60364-5-52 §525) ─────────────────────────────────────

VOLTAGE_DROP_LIMIT_LIGHTING_PCT: float = _env_float("VOLTAGE_DROP_LIMIT_LIGHTING_PCT", 3.0)
VOLTAGE_DROP_LIMIT_GENERAL_PCT: float = _env_float("VOLTAGE_DROP_LIMIT_GENERAL_PCT", 5.0)

# Compliance warns when the drop is within this many percentage points of the limit
VOLTAGE_DROP_WARNING_BAND_PCT: float = _env_float("VOLTAGE_DROP_WARNING_BAND_PCT", 0.5)

DEFAULT_INSTALLATION_METHOD: str = os.getenv("DEFAULT_INSTALLATION_METHOD", "B2")
DEFAULT_AMBIENT_TEMPERATURE_C: float = 30.0

# Max cable run used when a room has no explicit cable length
MAX_ESTIMATED_CABLE_RUN_M: float = _env_float("MAX_ESTIMATED_CABLE_RUN_M", 50.0)


# ── Load analysis ─────────────────────────────────────────────────────────────

MAIN_BREAKER_HEADROOM: float = _env_float("MAIN_BREAKER_HEADROOM", 1.20)

# Diversity factor used for a group with no table entry
DEFAULT_DIVERSITY_FACTOR: float = _env_float("DEFAULT_DIVERSITY_FACTOR", 1.0)

# When true, an unknown diversity group is rejected by the orchestrator
STRICT_DIVERSITY_GROUPS: bool = _env_bool("STRICT_DIVERSITY_GROUPS", False)

PHASE_IMBALANCE_WARNING_PCT: float = 20.0


# ── Panel configuration ───────────────────────────────────────────────────────

RCD_MAX_CIRCUITS_PER_GROUP: int = _env_int("RCD_MAX_CIRCUITS_PER_GROUP", 8)
PANEL_SPARE_CAPACITY_FACTOR: float = 1.20      # 20 % spare modules


# ── Compliance ────────────────────────────────────────────────────────────────

MAIN_BREAKER_MIN_HEADROOM_PCT: float = _env_float("MAIN_BREAKER_MIN_HEADROOM_PCT", 10.0)
PHASE_IMBALANCE_FINDING_PCT: float = 25.0
PANEL_MIN_SPARE_PCT: float = 10.0


# ── Pricing defaults (DKK) ────────────────────────────────────────────────────

DEFAULT_HOURLY_RATE: float = _env_float("DEFAULT_HOURLY_RATE", 495.0)
DEFAULT_OVERHEAD_PCT: float = _env_float("DEFAULT_OVERHEAD_PCT", 12.0)
DEFAULT_RISK_BUFFER_PCT: float = _env_float("DEFAULT_RISK_BUFFER_PCT", 3.0)
DEFAULT_MARGIN_PCT: float = _env_float("DEFAULT_MARGIN_PCT", 25.0)
DEFAULT_VAT_PCT: float = _env_float("DEFAULT_VAT_PCT", 25.0)
TRANSPORT_COST_PER_DAY: float = 350.0
WORKING_HOURS_PER_DAY: float = 8.0
CABLE_WASTE_FACTOR: float = 1.10


# ── Learning / calibration ────────────────────────────────────────────────────

# Below this many data points no suggestion is emitted for a coefficient
CALIBRATION_MIN_SAMPLES: int = _env_int("CALIBRATION_MIN_SAMPLES", 5)

# Max relative change of a coefficient in one calibration run (±20 %)
CALIBRATION_MAX_STEP: float = _env_float("CALIBRATION_MAX_STEP", 0.20)

# Mean variance below this (absolute, %) does not produce an adjustment
CALIBRATION_MIN_VARIANCE_PCT: float = _env_float("CALIBRATION_MIN_VARIANCE_PCT", 5.0)

# Full confidence is reached at this many samples
CALIBRATION_FULL_CONFIDENCE_SAMPLES: int = 10

# Risk buffer suggestion covers this quantile of historical overruns
RISK_BUFFER_QUANTILE: float = 0.80
RISK_BUFFER_MAX_PCT: float = 25.0

# Default buffer per complexity score 0..5 when history is too thin
DEFAULT_RISK_BUFFER_BY_COMPLEXITY: tuple[float, ...] = (0.0, 3.0, 5.0, 7.5, 10.0, 15.0)

# Recency buckets for learning metrics, upper bound in days (None = open-ended)
RECENCY_BUCKETS_DAYS: tuple[tuple[str, int | None], ...] = (
    ("last_30_days", 30),
    ("31_90_days", 90),
    ("91_365_days", 365),
    ("older", None),
)
