"""
Collaborator interfaces for the save-flow engine.

The engine only talks to these abstractions. SQLAlchemy-backed
implementations live in ``repositories``; the in-process event sink lives
in ``app.events.bus``.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from typing import Any, Optional

from app.events.schemas import BaseEvent
from app.schemas.save_flow import (
    ActiveSubscription,
    AttemptFilter,
    Intervention,
    InterventionFilter,
    SaveAttempt,
    SaveFlowConfiguration,
)


class AttemptStore(ABC):
    """Persistence for save attempts."""

    @abstractmethod
    async def find_non_terminal(self, tenant_id: str, customer_id: str) -> Optional[SaveAttempt]:
        pass

    @abstractmethod
    async def find_by_id(self, attempt_id: str) -> Optional[SaveAttempt]:
        pass

    @abstractmethod
    async def create(self, fields: dict[str, Any]) -> SaveAttempt:
        """
        Insert a new attempt.

        Raises:
            DuplicateAttemptError: the customer already has a live attempt
        """
        pass

    @abstractmethod
    async def update(self, attempt_id: str, fields: dict[str, Any]) -> SaveAttempt:
        pass

    @abstractmethod
    async def query(self, filter: AttemptFilter) -> list[SaveAttempt]:
        pass


class ConfigurationStore(ABC):
    """Persistence for per-tenant save-flow configuration."""

    @abstractmethod
    async def get(self, tenant_id: str) -> Optional[SaveFlowConfiguration]:
        pass

    @abstractmethod
    async def upsert(self, tenant_id: str, fields: dict[str, Any]) -> SaveFlowConfiguration:
        pass


class SubscriptionProvider(ABC):
    """Read access to a customer's billing state."""

    @abstractmethod
    async def find_active(self, tenant_id: str, customer_id: str) -> Optional[ActiveSubscription]:
        pass


class InterventionStore(ABC):
    """Persistence for engagement records paired with attempts."""

    @abstractmethod
    async def create(self, fields: dict[str, Any]) -> Intervention:
        pass

    @abstractmethod
    async def update_where(self, filter: InterventionFilter, fields: dict[str, Any]) -> int:
        """Update matching records and return how many changed."""
        pass

    @abstractmethod
    async def query(self, filter: InterventionFilter) -> list[Intervention]:
        pass


class EventSink(ABC):
    """Outbound domain events. Delivery is best-effort."""

    @abstractmethod
    async def publish(self, event: BaseEvent) -> None:
        pass


class UnitOfWork(ABC):
    """Groups store writes so they commit or roll back together."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        pass


class RevenueEstimator(ABC):
    """Estimates the value retained by a successful save."""

    @abstractmethod
    async def estimate(self, tenant_id: str, customer_id: str) -> Decimal:
        pass
