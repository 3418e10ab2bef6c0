"""FastAPI dependency injection — reference tables and the learning engine."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from elkalk.services.learning_engine import LearningEngine
from elkalk.services.reference_tables import ReferenceTables
from elkalk.services.stores import (
    InMemoryEstimateStore,
    InMemoryFeedbackStore,
    InMemoryReferenceTableStore,
    SqlEstimateStore,
    SqlFeedbackStore,
    SqlReferenceTableStore,
)


@dataclass
class Services:
    tables: ReferenceTables
    learning: LearningEngine


def build_services(session_factory: Optional[async_sessionmaker] = None) -> Services:
    """One ReferenceTables per process; SQL stores when a session factory is given."""
    tables = ReferenceTables()
    if session_factory is not None:
        learning = LearningEngine(
            tables,
            SqlEstimateStore(session_factory),
            SqlFeedbackStore(session_factory),
            SqlReferenceTableStore(session_factory),
        )
    else:
        learning = LearningEngine(
            tables,
            InMemoryEstimateStore(),
            InMemoryFeedbackStore(),
            InMemoryReferenceTableStore(),
        )
    return Services(tables=tables, learning=learning)


_services: Optional[Services] = None


def set_services(services: Services) -> None:
    global _services
    _services = services


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def get_tables(services: Services = Depends(get_services)) -> ReferenceTables:
    return services.tables


def get_learning_engine(services: Services = Depends(get_services)) -> LearningEngine:
    return services.learning
