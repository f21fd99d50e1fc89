"""
Tests for the SQLAlchemy save flow stores

Run against the SQLite test database, including the partial unique index
that allows one live attempt per customer.
"""

from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from app.events.bus import InMemoryEventBus
from app.exceptions import AttemptNotFoundError, DuplicateAttemptError
from app.models.save_flow import Subscription
from app.schemas.save_flow import (
    AttemptFilter,
    DeliveryChannel,
    InterventionFilter,
    InterventionStatus,
    InterventionType,
    NuclearOfferConfig,
    ReasonCategory,
    SaveFlowConfigurationPatch,
    SaveOutcome,
    StageHistoryEntry,
)
from app.services.save_flow.locks import KeyedLock
from app.services.save_flow.repositories import (
    SqlAlchemyAttemptStore,
    SqlAlchemyConfigurationStore,
    SqlAlchemyInterventionStore,
    SqlAlchemySubscriptionProvider,
    SqlAlchemyUnitOfWork,
)
from app.services.save_flow.wiring import build_analytics, build_engine, build_resolver

TENANT_ID = "tenant-1"
CUSTOMER_ID = "customer-1"


def _attempt_fields(customer_id=CUSTOMER_ID):
    now = datetime.utcnow()
    return {
        "tenant_id": TENANT_ID,
        "customer_id": customer_id,
        "trigger": "cancel_button",
        "current_stage": 1,
        "stage_history": [StageHistoryEntry(stage=1, stage_name="pattern_interrupt", entered_at=now)],
        "created_at": now,
    }


@pytest_asyncio.fixture
async def subscription(test_db: AsyncSession) -> Subscription:
    subscription = Subscription(tenant_id=TENANT_ID, customer_id=CUSTOMER_ID, plan_amount=Decimal("20.00"))
    test_db.add(subscription)
    await test_db.commit()
    return subscription


class TestAttemptStore:
    @pytest.mark.asyncio
    async def test_create_and_find(self, test_db):
        store = SqlAlchemyAttemptStore(test_db)
        async with SqlAlchemyUnitOfWork(test_db).transaction():
            created = await store.create(_attempt_fields())

        found = await store.find_non_terminal(TENANT_ID, CUSTOMER_ID)

        assert found.id == created.id
        assert found.stage_history[0].stage_name == "pattern_interrupt"
        assert (await store.find_by_id(created.id)).customer_id == CUSTOMER_ID

    @pytest.mark.asyncio
    async def test_second_live_attempt_is_rejected(self, test_db):
        store = SqlAlchemyAttemptStore(test_db)
        uow = SqlAlchemyUnitOfWork(test_db)
        async with uow.transaction():
            await store.create(_attempt_fields())

        with pytest.raises(DuplicateAttemptError):
            async with uow.transaction():
                await store.create(_attempt_fields())

        assert len(await store.query(AttemptFilter(tenant_id=TENANT_ID))) == 1

    @pytest.mark.asyncio
    async def test_completed_attempt_frees_the_slot(self, test_db):
        store = SqlAlchemyAttemptStore(test_db)
        uow = SqlAlchemyUnitOfWork(test_db)
        async with uow.transaction():
            first = await store.create(_attempt_fields())
        async with uow.transaction():
            await store.update(first.id, {"outcome": SaveOutcome.CANCELLED, "completed_at": datetime.utcnow()})
        async with uow.transaction():
            second = await store.create(_attempt_fields())

        assert (await store.find_non_terminal(TENANT_ID, CUSTOMER_ID)).id == second.id

    @pytest.mark.asyncio
    async def test_update_round_trips_enums_and_history(self, test_db):
        store = SqlAlchemyAttemptStore(test_db)
        async with SqlAlchemyUnitOfWork(test_db).transaction():
            attempt = await store.create(_attempt_fields())
            history = attempt.stage_history + [
                StageHistoryEntry(stage=2, stage_name="diagnosis_survey", entered_at=datetime.utcnow())
            ]
            await store.update(
                attempt.id,
                {"current_stage": 2, "stage_history": history, "reason_category": ReasonCategory.TOO_MUCH},
            )

        reloaded = await store.find_by_id(attempt.id)

        assert reloaded.current_stage == 2
        assert [e.stage for e in reloaded.stage_history] == [1, 2]
        assert reloaded.reason_category == ReasonCategory.TOO_MUCH

    @pytest.mark.asyncio
    async def test_update_unknown_attempt(self, test_db):
        with pytest.raises(AttemptNotFoundError):
            await SqlAlchemyAttemptStore(test_db).update("missing", {"current_stage": 2})

    @pytest.mark.asyncio
    async def test_query_filters(self, test_db):
        store = SqlAlchemyAttemptStore(test_db)
        async with SqlAlchemyUnitOfWork(test_db).transaction():
            first = await store.create(_attempt_fields("customer-a"))
            await store.create(_attempt_fields("customer-b"))
            await store.update(
                first.id,
                {"outcome": SaveOutcome.SAVED_STAGE_1, "completed_at": datetime.utcnow(), "reason_category": ReasonCategory.OTHER},
            )

        assert len(await store.query(AttemptFilter(tenant_id=TENANT_ID))) == 2
        assert len(await store.query(AttemptFilter(tenant_id="tenant-2"))) == 0
        completed = await store.query(AttemptFilter(tenant_id=TENANT_ID, completed_only=True))
        assert [a.id for a in completed] == [first.id]
        saved = await store.query(AttemptFilter(tenant_id=TENANT_ID, outcome=SaveOutcome.SAVED_STAGE_1))
        assert [a.id for a in saved] == [first.id]
        assert len(await store.query(AttemptFilter(tenant_id=TENANT_ID, with_reason_only=True))) == 1
        assert len(await store.query(AttemptFilter(tenant_id=TENANT_ID, limit=1))) == 1


class TestConfigurationStore:
    @pytest.mark.asyncio
    async def test_upsert_and_get(self, test_db):
        resolver = build_resolver(test_db)

        await resolver.update(
            TENANT_ID,
            SaveFlowConfigurationPatch(nuclear_offer=NuclearOfferConfig(discount=30)),
        )
        config = await SqlAlchemyConfigurationStore(test_db).get(TENANT_ID)

        assert config.id is not None
        assert config.nuclear_offer.discount == 30
        assert config.winback.sequences[0].steps[0].day_offset == 0

    @pytest.mark.asyncio
    async def test_upsert_updates_in_place(self, test_db):
        resolver = build_resolver(test_db)
        first = await resolver.update_stage(TENANT_ID, 3, {"enabled": False})
        second = await resolver.update(TENANT_ID, SaveFlowConfigurationPatch(enabled=False))

        assert first.id == second.id
        assert second.branching_interventions.enabled is False
        assert second.enabled is False


class TestSubscriptionAndInterventionStores:
    @pytest.mark.asyncio
    async def test_active_subscription(self, test_db, subscription):
        provider = SqlAlchemySubscriptionProvider(test_db)

        active = await provider.find_active(TENANT_ID, CUSTOMER_ID)

        assert active.monthly_value == Decimal("20.00")
        assert await provider.find_active(TENANT_ID, "customer-x") is None

    @pytest.mark.asyncio
    async def test_update_where(self, test_db):
        store = SqlAlchemyInterventionStore(test_db)
        async with SqlAlchemyUnitOfWork(test_db).transaction():
            attempt = await SqlAlchemyAttemptStore(test_db).create(_attempt_fields())
            await store.create(
                {
                    "tenant_id": TENANT_ID,
                    "customer_id": CUSTOMER_ID,
                    "save_attempt_id": attempt.id,
                    "type": InterventionType.SAVE_FLOW,
                    "channel": DeliveryChannel.IN_APP,
                    "stage": "pattern_interrupt",
                    "status": InterventionStatus.IN_PROGRESS,
                }
            )
            updated = await store.update_where(
                InterventionFilter(save_attempt_id=attempt.id, status=InterventionStatus.IN_PROGRESS),
                {"stage": "diagnosis_survey"},
            )

        assert updated == 1
        rows = await store.query(InterventionFilter(save_attempt_id=attempt.id))
        assert rows[0].stage == "diagnosis_survey"

    @pytest.mark.asyncio
    async def test_update_where_requires_filter(self, test_db):
        with pytest.raises(ValueError):
            await SqlAlchemyInterventionStore(test_db).update_where(InterventionFilter(), {"stage": "x"})


class TestWiredEngine:
    @pytest.mark.asyncio
    async def test_save_end_to_end(self, test_db, subscription):
        events = InMemoryEventBus(maxsize=10)
        engine = build_engine(test_db, events, locks=KeyedLock())

        started = await engine.initiate(TENANT_ID, CUSTOMER_ID, "cancel_button")
        again = await engine.initiate(TENANT_ID, CUSTOMER_ID, "cancel_button")
        await engine.progress(started.attempt.id)
        await engine.progress(started.attempt.id, {"reason": "It's too expensive"})
        result = await engine.progress(
            started.attempt.id,
            {"acceptedIntervention": True, "intervention": "discount_offer"},
        )

        assert again.attempt.id == started.attempt.id
        assert result.attempt.outcome == SaveOutcome.SAVED_STAGE_3
        assert result.attempt.saved_by == "stage_3_discount_offer"
        assert result.attempt.revenue_preserved == Decimal("240")
        assert result.attempt.reason_category == ReasonCategory.TOO_EXPENSIVE

        interventions = await SqlAlchemyInterventionStore(test_db).query(
            InterventionFilter(save_attempt_id=started.attempt.id)
        )
        assert interventions[0].status == InterventionStatus.COMPLETED
        assert interventions[0].revenue_impact == Decimal("240")
        assert [e.event_type for e in events.drain()] == ["save.flow.initiated", "save.flow.completed"]

        report = await build_analytics(test_db).report(TENANT_ID)
        assert report.summary.saved == 1
        assert report.reason_analytics[0].reason == "too_expensive"
