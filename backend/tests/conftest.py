"""
conftest.py — Shared pytest fixtures for the elkalk backend test suite.

No database fixtures are defined here. The learning loop runs against the
in-memory stores; the API tests swap the process-wide services for a fresh
in-memory set per test.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``elkalk.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any elkalk imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Reference tables
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def tables():
    """
    Seeded reference tables shared by the read-only calculator tests.

    Never pass this fixture to anything that applies a calibration batch;
    use ``fresh_tables`` for that.
    """
    from elkalk.services.reference_tables import ReferenceTables
    return ReferenceTables()


@pytest.fixture
def fresh_tables():
    """Per-test tables for tests that mutate coefficients."""
    from elkalk.services.reference_tables import ReferenceTables
    return ReferenceTables()


# ---------------------------------------------------------------------------
# CostingEngine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def default_costing_engine():
    """
    CostingEngine instantiated with all defaults (no overrides).

    Defaults:
      hourly rate = 495 DKK, overhead = 12%, risk = 3%, margin = 25%,
      discount = 0%, VAT = 25%, transport = 350 DKK per started day.
    """
    from elkalk.services.costing_engine import CostingEngine
    return CostingEngine()


@pytest.fixture(scope="session")
def round_costing_engine():
    """
    CostingEngine with round numbers for hand-checkable price folds.

      hourly rate = 500, overhead = 10%, risk = 5%, margin = 20%,
      discount = 0%, VAT = 25%
    """
    from elkalk.services.costing_engine import CostingEngine
    return CostingEngine({
        "hourly_rate": 500.0,
        "overhead_percentage": 10.0,
        "risk_buffer_percentage": 5.0,
        "margin_percentage": 20.0,
        "discount_percentage": 0.0,
        "vat_percentage": 25.0,
    })


# ---------------------------------------------------------------------------
# Learning engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def learning_engine(fresh_tables):
    """LearningEngine over empty in-memory stores and per-test tables."""
    from elkalk.services.learning_engine import LearningEngine
    from elkalk.services.stores import (
        InMemoryEstimateStore,
        InMemoryFeedbackStore,
        InMemoryReferenceTableStore,
    )
    return LearningEngine(
        fresh_tables,
        InMemoryEstimateStore(),
        InMemoryFeedbackStore(),
        InMemoryReferenceTableStore(),
    )


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------

@pytest.fixture
def services():
    """Fresh in-memory services; installed as the app's services by ``client``."""
    from elkalk.api.deps import build_services
    return build_services()


@pytest.fixture
def client(services):
    """TestClient with ``get_services`` overridden to the per-test services."""
    from fastapi.testclient import TestClient
    from elkalk.api.deps import get_services
    from elkalk.main import app

    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Shared request data
# ---------------------------------------------------------------------------

@pytest.fixture
def house_rooms():
    """
    A small single-family house: living room, kitchen and a bathroom.
    Used by the end-to-end estimate tests.
    """
    return [
        {
            "name": "Stue",
            "room_type": "living_room",
            "area_m2": 30.0,
            "electrical_points": {"outlets": 6, "switches": 2, "ceiling_lights": 2},
        },
        {
            "name": "Køkken",
            "room_type": "kitchen",
            "area_m2": 15.0,
            "electrical_points": {
                "outlets_countertop": 4,
                "ceiling_lights": 1,
                "spots": 4,
                "dishwasher": 1,
            },
        },
        {
            "name": "Bad",
            "room_type": "bathroom",
            "area_m2": 6.0,
            "electrical_points": {"outlets_ip44": 1, "spots": 3, "ventilation": 1},
        },
    ]
