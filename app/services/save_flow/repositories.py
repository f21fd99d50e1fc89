"""
SQLAlchemy implementations of the save-flow collaborator interfaces.

Stores only flush; ``SqlAlchemyUnitOfWork`` owns commit and rollback so
that the attempt and intervention writes of a completion land together.
"""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import AttemptNotFoundError, DuplicateAttemptError
from app.models.save_flow import (
    Intervention as InterventionRow,
    SaveAttempt as SaveAttemptRow,
    SaveFlowConfig,
    Subscription,
)
from app.schemas.save_flow import (
    STAGE_FIELDS,
    ActiveSubscription,
    AttemptFilter,
    Intervention,
    InterventionFilter,
    SaveAttempt,
    SaveFlowConfiguration,
)
from app.services.save_flow.interfaces import (
    AttemptStore,
    ConfigurationStore,
    InterventionStore,
    SubscriptionProvider,
    UnitOfWork,
)

logger = logging.getLogger(__name__)

CONFIG_COLUMNS = [name for name, _ in STAGE_FIELDS.values()] + ["voice_ai"]


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    return value


class SqlAlchemyUnitOfWork(UnitOfWork):
    """Commits the session when the block succeeds, rolls back otherwise."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def transaction(self):
        try:
            yield
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise


class SqlAlchemyAttemptStore(AttemptStore):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_non_terminal(self, tenant_id: str, customer_id: str) -> Optional[SaveAttempt]:
        result = await self.db.execute(
            select(SaveAttemptRow)
            .where(
                SaveAttemptRow.tenant_id == tenant_id,
                SaveAttemptRow.customer_id == customer_id,
                SaveAttemptRow.outcome.is_(None),
                SaveAttemptRow.completed_at.is_(None),
            )
            .order_by(SaveAttemptRow.created_at.desc())
            .limit(1)
        )
        row = result.scalars().first()
        return SaveAttempt.model_validate(row) if row else None

    async def find_by_id(self, attempt_id: str) -> Optional[SaveAttempt]:
        row = await self.db.get(SaveAttemptRow, attempt_id)
        return SaveAttempt.model_validate(row) if row else None

    async def create(self, fields: dict[str, Any]) -> SaveAttempt:
        row = SaveAttemptRow(**{key: _jsonable(value) for key, value in fields.items()})
        self.db.add(row)
        try:
            await self.db.flush()
        except IntegrityError as e:
            logger.info(
                f"Live save attempt already exists for customer {fields.get('customer_id')}: "
                f"{type(e).__name__}"
            )
            raise DuplicateAttemptError(fields.get("tenant_id"), fields.get("customer_id")) from e
        return SaveAttempt.model_validate(row)

    async def update(self, attempt_id: str, fields: dict[str, Any]) -> SaveAttempt:
        row = await self.db.get(SaveAttemptRow, attempt_id)
        if not row:
            raise AttemptNotFoundError(attempt_id)

        for field, value in fields.items():
            setattr(row, field, _jsonable(value))

        await self.db.flush()
        return SaveAttempt.model_validate(row)

    async def query(self, filter: AttemptFilter) -> list[SaveAttempt]:
        conditions = [SaveAttemptRow.tenant_id == filter.tenant_id]
        if filter.customer_id:
            conditions.append(SaveAttemptRow.customer_id == filter.customer_id)
        if filter.outcome:
            conditions.append(SaveAttemptRow.outcome == filter.outcome)
        if filter.created_from:
            conditions.append(SaveAttemptRow.created_at >= filter.created_from)
        if filter.created_to:
            conditions.append(SaveAttemptRow.created_at <= filter.created_to)
        if filter.completed_only:
            conditions.append(SaveAttemptRow.completed_at.is_not(None))
        if filter.with_reason_only:
            conditions.append(SaveAttemptRow.reason_category.is_not(None))

        query = (
            select(SaveAttemptRow)
            .where(*conditions)
            .order_by(SaveAttemptRow.created_at.desc())
            .offset(filter.offset)
        )
        if filter.limit:
            query = query.limit(filter.limit)

        result = await self.db.execute(query)
        return [SaveAttempt.model_validate(row) for row in result.scalars().all()]


class SqlAlchemyConfigurationStore(ConfigurationStore):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_row(self, tenant_id: str) -> Optional[SaveFlowConfig]:
        result = await self.db.execute(
            select(SaveFlowConfig).where(SaveFlowConfig.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _to_configuration(row: SaveFlowConfig) -> SaveFlowConfiguration:
        data = {"id": row.id, "tenant_id": row.tenant_id, "enabled": row.enabled}
        for column in CONFIG_COLUMNS:
            value = getattr(row, column)
            # Missing stage payloads fall back to the model defaults
            if value is not None:
                data[column] = value
        return SaveFlowConfiguration.model_validate(data)

    async def get(self, tenant_id: str) -> Optional[SaveFlowConfiguration]:
        row = await self._get_row(tenant_id)
        return self._to_configuration(row) if row else None

    async def upsert(self, tenant_id: str, fields: dict[str, Any]) -> SaveFlowConfiguration:
        row = await self._get_row(tenant_id)
        if not row:
            row = SaveFlowConfig(tenant_id=tenant_id)
            self.db.add(row)

        for field, value in fields.items():
            if field in ("id", "tenant_id"):
                continue
            setattr(row, field, _jsonable(value))

        await self.db.flush()
        return self._to_configuration(row)


class SqlAlchemySubscriptionProvider(SubscriptionProvider):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_active(self, tenant_id: str, customer_id: str) -> Optional[ActiveSubscription]:
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.tenant_id == tenant_id,
                Subscription.customer_id == customer_id,
                Subscription.status == "active",
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        subscription = result.scalars().first()
        if not subscription:
            return None
        return ActiveSubscription(monthly_value=Decimal(str(subscription.plan_amount)))


class SqlAlchemyInterventionStore(InterventionStore):
    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _conditions(filter: InterventionFilter) -> list:
        conditions = []
        for field, value in filter.model_dump(exclude_none=True).items():
            conditions.append(getattr(InterventionRow, field) == value)
        return conditions

    async def create(self, fields: dict[str, Any]) -> Intervention:
        row = InterventionRow(**fields)
        self.db.add(row)
        await self.db.flush()
        return Intervention.model_validate(row)

    async def update_where(self, filter: InterventionFilter, fields: dict[str, Any]) -> int:
        conditions = self._conditions(filter)
        if not conditions:
            raise ValueError("Refusing to update interventions without a filter")

        result = await self.db.execute(
            update(InterventionRow)
            .where(*conditions)
            .values(**fields)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def query(self, filter: InterventionFilter) -> list[Intervention]:
        result = await self.db.execute(
            select(InterventionRow)
            .where(*self._conditions(filter))
            .order_by(InterventionRow.created_at.asc())
        )
        return [Intervention.model_validate(row) for row in result.scalars().all()]
