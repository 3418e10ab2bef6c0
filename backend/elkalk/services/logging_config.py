"""
Logging setup for elkalk.

Engine loggers are named ``elkalk-<component>`` (cable, load, panel,
compliance, estimator, learning, api). Records carry the component and, when
the call site passes them as ``extra``, the calculation or calibration batch
they belong to, so one estimate can be followed through every engine.
"""
import logging
import json
import sys
from datetime import datetime, timezone

LOGGER_PREFIX = "elkalk-"

_CONTEXT_FIELDS = ("calculation_id", "batch_id", "request_id")
_METRIC_FIELDS = ("duration_ms", "http_method", "http_path", "http_status")

_QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "sqlalchemy.engine", "asyncio")


def component_of(logger_name: str) -> str:
    """``elkalk-api.middleware`` -> ``api``; foreign loggers keep their name."""
    if not logger_name.startswith(LOGGER_PREFIX):
        return logger_name
    return logger_name[len(LOGGER_PREFIX):].split(".", 1)[0]


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "component": component_of(record.name),
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS + _METRIC_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.module}.{record.funcName}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class ContextTextFormatter(logging.Formatter):
    """Human-readable lines for local runs, suffixed with calculation/batch ids."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s [%(name)s] %(message)s")

    def format(self, record):
        line = super().format(record)
        context = [
            f"{name}={getattr(record, name)}"
            for name in _CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        ]
        return f"{line} ({', '.join(context)})" if context else line


def setup_logging(level: str = "INFO", json_output: bool = True):
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else ContextTextFormatter())
    root.handlers = [handler]

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
