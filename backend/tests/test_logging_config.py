"""
test_logging_config.py — Structured log formatting.

Tests cover:
  - component names derived from elkalk-* logger names
  - JSON records: component, context extras, source location on warnings
  - text records suffixed with calculation / batch context
"""

import json
import logging

import pytest

from elkalk.services.logging_config import (
    ContextTextFormatter,
    JSONFormatter,
    component_of,
)


def _record(name="elkalk-estimator", level=logging.INFO, msg="Estimate done", **extra):
    record = logging.LogRecord(name, level, __file__, 42, msg, None, None, func="run")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.parametrize("name,component", [
    ("elkalk-cable", "cable"),
    ("elkalk-api.middleware", "api"),
    ("uvicorn.error", "uvicorn.error"),
])
def test_component_of(name, component):
    assert component_of(name) == component


class TestJSONFormatter:

    def test_context_extras(self):
        data = json.loads(JSONFormatter().format(
            _record(calculation_id="calc-7", duration_ms=3.5, batch_id=None)
        ))
        assert data["component"] == "estimator"
        assert data["message"] == "Estimate done"
        assert data["calculation_id"] == "calc-7"
        assert data["duration_ms"] == 3.5
        assert "batch_id" not in data
        assert "source" not in data

    def test_warning_carries_source(self):
        data = json.loads(JSONFormatter().format(_record(level=logging.WARNING)))
        assert data["level"] == "WARNING"
        assert data["source"].endswith("run:42")

    def test_non_ascii_kept(self):
        data = JSONFormatter().format(_record(msg="Køkken: 4 stikkontakter"))
        assert "Køkken" in data


class TestContextTextFormatter:

    def test_suffix(self):
        line = ContextTextFormatter().format(_record(name="elkalk-learning", batch_id="b1"))
        assert "[elkalk-learning]" in line
        assert line.endswith("(batch_id=b1)")

    def test_no_context(self):
        line = ContextTextFormatter().format(_record())
        assert line.endswith("Estimate done")
