"""
Default wiring of the save-flow engine onto a SQLAlchemy session.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.services.save_flow.analytics import SaveFlowAnalyticsService
from app.services.save_flow.config_resolver import ConfigurationResolver
from app.services.save_flow.engine import SaveFlowEngine
from app.services.save_flow.interfaces import EventSink
from app.services.save_flow.locks import KeyedLock
from app.services.save_flow.repositories import (
    SqlAlchemyAttemptStore,
    SqlAlchemyConfigurationStore,
    SqlAlchemyInterventionStore,
    SqlAlchemySubscriptionProvider,
    SqlAlchemyUnitOfWork,
)
from app.services.save_flow.revenue_estimator import TenureRevenueEstimator

# Shared across engines built in this process so that requests for the same
# customer serialize even when each request has its own session.
process_locks = KeyedLock()


def build_resolver(db: AsyncSession) -> ConfigurationResolver:
    return ConfigurationResolver(SqlAlchemyConfigurationStore(db), SqlAlchemyUnitOfWork(db))


def build_engine(db: AsyncSession, events: EventSink, locks: Optional[KeyedLock] = None) -> SaveFlowEngine:
    """Engine backed by ``db`` for one unit of work."""
    return SaveFlowEngine(
        resolver=build_resolver(db),
        attempts=SqlAlchemyAttemptStore(db),
        interventions=SqlAlchemyInterventionStore(db),
        estimator=TenureRevenueEstimator(SqlAlchemySubscriptionProvider(db)),
        events=events,
        uow=SqlAlchemyUnitOfWork(db),
        locks=locks if locks is not None else process_locks,
    )


def build_analytics(db: AsyncSession) -> SaveFlowAnalyticsService:
    return SaveFlowAnalyticsService(SqlAlchemyAttemptStore(db))
