"""
Fixtures for save flow tests.

In-memory implementations of the collaborator interfaces let the engine be
exercised without a database; the SQLAlchemy adapters have their own tests
against the SQLite ``test_db``.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

from app.events.bus import InMemoryEventBus
from app.exceptions import AttemptNotFoundError, DuplicateAttemptError
from app.schemas.save_flow import (
    ActiveSubscription,
    AttemptFilter,
    Intervention,
    InterventionFilter,
    SaveAttempt,
    SaveFlowConfiguration,
)
from app.services.save_flow.config_resolver import ConfigurationResolver
from app.services.save_flow.engine import SaveFlowEngine
from app.services.save_flow.interfaces import (
    AttemptStore,
    ConfigurationStore,
    EventSink,
    InterventionStore,
    SubscriptionProvider,
    UnitOfWork,
)
from app.services.save_flow.locks import KeyedLock
from app.services.save_flow.revenue_estimator import TenureRevenueEstimator

TENANT_ID = "tenant-1"
CUSTOMER_ID = "customer-1"


class MemoryAttemptStore(AttemptStore):
    def __init__(self):
        self.rows: dict[str, SaveAttempt] = {}

    async def find_non_terminal(self, tenant_id, customer_id):
        found = next(
            (
                a for a in self.rows.values()
                if a.tenant_id == tenant_id and a.customer_id == customer_id and a.outcome is None
            ),
            None,
        )
        # Yield so concurrent callers interleave between lookup and create
        await asyncio.sleep(0)
        return found

    async def find_by_id(self, attempt_id):
        return self.rows.get(attempt_id)

    async def create(self, fields):
        if any(
            a.tenant_id == fields["tenant_id"] and a.customer_id == fields["customer_id"] and a.outcome is None
            for a in self.rows.values()
        ):
            raise DuplicateAttemptError(fields["tenant_id"], fields["customer_id"])
        attempt = SaveAttempt.model_validate({"id": str(uuid.uuid4()), "created_at": datetime.utcnow(), **fields})
        self.rows[attempt.id] = attempt
        return attempt

    async def update(self, attempt_id, fields):
        current = self.rows.get(attempt_id)
        if current is None:
            raise AttemptNotFoundError(attempt_id)
        updated = SaveAttempt.model_validate({**dict(current), **fields, "updated_at": datetime.utcnow()})
        self.rows[attempt_id] = updated
        return updated

    async def query(self, filter: AttemptFilter):
        attempts = [a for a in self.rows.values() if a.tenant_id == filter.tenant_id]
        if filter.completed_only:
            attempts = [a for a in attempts if a.completed_at]
        if filter.created_from:
            attempts = [a for a in attempts if a.created_at >= filter.created_from]
        if filter.created_to:
            attempts = [a for a in attempts if a.created_at <= filter.created_to]
        return sorted(attempts, key=lambda a: a.created_at, reverse=True)


class MemoryConfigurationStore(ConfigurationStore):
    def __init__(self):
        self.rows: dict[str, SaveFlowConfiguration] = {}

    async def get(self, tenant_id):
        return self.rows.get(tenant_id)

    async def upsert(self, tenant_id, fields):
        current = self.rows.get(tenant_id)
        config_id = current.id if current else str(uuid.uuid4())
        config = SaveFlowConfiguration.model_validate({**fields, "id": config_id, "tenant_id": tenant_id})
        self.rows[tenant_id] = config
        return config


class MemorySubscriptions(SubscriptionProvider):
    def __init__(self):
        self.monthly: dict[tuple[str, str], Decimal] = {}

    async def find_active(self, tenant_id, customer_id):
        value = self.monthly.get((tenant_id, customer_id))
        return ActiveSubscription(monthly_value=value) if value is not None else None


class MemoryInterventionStore(InterventionStore):
    def __init__(self):
        self.rows: dict[str, Intervention] = {}

    def _matches(self, row: Intervention, filter: InterventionFilter) -> bool:
        return all(getattr(row, key) == value for key, value in filter.model_dump(exclude_none=True).items())

    async def create(self, fields):
        row = Intervention.model_validate({"id": str(uuid.uuid4()), "created_at": datetime.utcnow(), **fields})
        self.rows[row.id] = row
        return row

    async def update_where(self, filter, fields):
        count = 0
        for row_id, row in list(self.rows.items()):
            if self._matches(row, filter):
                self.rows[row_id] = Intervention.model_validate({**dict(row), **fields})
                count += 1
        return count

    async def query(self, filter):
        return [row for row in self.rows.values() if self._matches(row, filter)]


class MemoryUnitOfWork(UnitOfWork):
    def __init__(self):
        self.commits = 0

    @asynccontextmanager
    async def transaction(self):
        yield
        self.commits += 1


class FailingEventSink(EventSink):
    async def publish(self, event):
        raise ConnectionError("broker unavailable")


@pytest.fixture
def attempt_store() -> MemoryAttemptStore:
    return MemoryAttemptStore()


@pytest.fixture
def config_store() -> MemoryConfigurationStore:
    return MemoryConfigurationStore()


@pytest.fixture
def intervention_store() -> MemoryInterventionStore:
    return MemoryInterventionStore()


@pytest.fixture
def subscriptions() -> MemorySubscriptions:
    provider = MemorySubscriptions()
    provider.monthly[(TENANT_ID, CUSTOMER_ID)] = Decimal("20")
    return provider


@pytest.fixture
def uow() -> MemoryUnitOfWork:
    return MemoryUnitOfWork()


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus(maxsize=100)


@pytest.fixture
def resolver(config_store, uow) -> ConfigurationResolver:
    return ConfigurationResolver(config_store, uow)


@pytest.fixture
def make_engine(resolver, attempt_store, intervention_store, subscriptions, uow, event_bus):
    """Build an engine over the shared in-memory stores."""

    def _make(events: Optional[EventSink] = None, locks: Optional[KeyedLock] = None) -> SaveFlowEngine:
        return SaveFlowEngine(
            resolver=resolver,
            attempts=attempt_store,
            interventions=intervention_store,
            estimator=TenureRevenueEstimator(subscriptions, avg_tenure_months=12),
            events=events or event_bus,
            uow=uow,
            locks=locks,
        )

    return _make


@pytest.fixture
def engine(make_engine) -> SaveFlowEngine:
    return make_engine()


@pytest_asyncio.fixture
async def active_attempt(engine) -> SaveAttempt:
    result = await engine.initiate(TENANT_ID, CUSTOMER_ID, "cancel_button")
    return result.attempt



@pytest.fixture
def failing_events() -> FailingEventSink:
    return FailingEventSink()
