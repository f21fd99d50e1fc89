"""
Save Flow Engine

Walks a customer who wants to cancel through the seven-stage retention
cascade: initiation, stage progression, save detection and completion.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from app.events.schemas import BaseEvent, SaveFlowCompletedEvent, SaveFlowInitiatedEvent
from app.exceptions import (
    AlreadyCompletedError,
    AttemptNotFoundError,
    DuplicateAttemptError,
    FlowDisabledError,
    InvalidStageError,
)
from app.schemas.save_flow import (
    FIRST_STAGE,
    LAST_STAGE,
    NON_SAVE_OUTCOMES,
    STAGE_NAMES,
    AttemptFilter,
    CompletionDetails,
    DeliveryChannel,
    DiagnosisResponse,
    InitiateResult,
    InterventionFilter,
    InterventionOutcome,
    InterventionStatus,
    InterventionType,
    ProgressResult,
    ReasonCategory,
    SaveAttempt,
    SaveFlowConfiguration,
    SaveOutcome,
    SaveStage,
    StageHistoryEntry,
)
from app.services.save_flow.config_resolver import ConfigurationResolver, get_stage, stage_view
from app.services.save_flow.interfaces import (
    AttemptStore,
    EventSink,
    InterventionStore,
    RevenueEstimator,
    UnitOfWork,
)
from app.services.save_flow.locks import KeyedLock
from app.services.save_flow.reason_classifier import categorize
from app.services.save_flow.rules import (
    completion_details,
    detect_save,
    determine_saved_by,
    parse_response,
)

logger = logging.getLogger(__name__)


class SaveFlowEngine:
    """
    State machine over save attempts.

    Handles:
    - Idempotent initiation (one live attempt per customer)
    - Stage progression, skipping disabled stages
    - Save detection per stage
    - Completion with revenue attribution and intervention bookkeeping

    Every read-then-write sequence runs under a per-(tenant, customer) lock.
    Events are published after the state change is committed and a publish
    failure never fails the operation.
    """

    def __init__(
        self,
        resolver: ConfigurationResolver,
        attempts: AttemptStore,
        interventions: InterventionStore,
        estimator: RevenueEstimator,
        events: EventSink,
        uow: UnitOfWork,
        locks: Optional[KeyedLock] = None,
    ):
        self.resolver = resolver
        self.attempts = attempts
        self.interventions = interventions
        self.estimator = estimator
        self.events = events
        self.uow = uow
        self.locks = locks if locks is not None else KeyedLock()

    # Initiation

    async def initiate(self, tenant_id: str, customer_id: str, trigger: str) -> InitiateResult:
        """
        Start a save flow for a customer.

        A second initiation while an attempt is live returns that attempt
        unchanged (``created`` is False).

        Raises:
            FlowDisabledError: the tenant has switched the flow off
        """
        config = await self.resolver.resolve(tenant_id)
        if not config.enabled:
            raise FlowDisabledError(tenant_id)

        async with self.locks.acquire((tenant_id, customer_id)):
            existing = await self.attempts.find_non_terminal(tenant_id, customer_id)
            if existing:
                logger.info(f"Save flow already active for customer {customer_id}: attempt {existing.id}")
                return self._initiate_result(config, existing, created=False)

            now = datetime.utcnow()
            try:
                async with self.uow.transaction():
                    attempt = await self.attempts.create(
                        {
                            "tenant_id": tenant_id,
                            "customer_id": customer_id,
                            "flow_config_id": config.id,
                            "trigger": trigger,
                            "current_stage": FIRST_STAGE,
                            "stage_history": [
                                StageHistoryEntry(
                                    stage=FIRST_STAGE,
                                    stage_name=STAGE_NAMES[FIRST_STAGE],
                                    entered_at=now,
                                ),
                            ],
                            "created_at": now,
                        }
                    )
                    await self.interventions.create(
                        {
                            "tenant_id": tenant_id,
                            "customer_id": customer_id,
                            "save_attempt_id": attempt.id,
                            "type": InterventionType.SAVE_FLOW,
                            "channel": DeliveryChannel.IN_APP,
                            "stage": STAGE_NAMES[FIRST_STAGE],
                            "status": InterventionStatus.IN_PROGRESS,
                        }
                    )
            except DuplicateAttemptError:
                # Lost a race with another process; hand back the winner
                existing = await self.attempts.find_non_terminal(tenant_id, customer_id)
                if existing is None:
                    raise
                return self._initiate_result(config, existing, created=False)

        await self._publish(
            SaveFlowInitiatedEvent(
                tenant_id=tenant_id,
                customer_id=customer_id,
                attempt_id=attempt.id,
                trigger=trigger,
            )
        )
        logger.info(f"Initiated save flow for customer {customer_id} in tenant {tenant_id}")

        return self._initiate_result(config, attempt, created=True)

    # Progression

    async def progress(
        self,
        attempt_id: str,
        response: Any = None,
        selected_option: Optional[str] = None,
    ) -> ProgressResult:
        """
        Record the customer's answer at the current stage and move on.

        Ends the flow when the answer is a save, or when no enabled stage
        is left (outcome CANCELLED).

        Raises:
            AttemptNotFoundError: unknown attempt
            AlreadyCompletedError: the attempt is terminal
            InvalidResponseError: the response does not fit the current stage
        """
        attempt = await self._load(attempt_id)

        async with self.locks.acquire((attempt.tenant_id, attempt.customer_id)):
            attempt = await self._load(attempt_id)
            if attempt.is_terminal or attempt.completed_at:
                raise AlreadyCompletedError(attempt_id, attempt.outcome.value if attempt.outcome else None)

            config = await self.resolver.resolve(attempt.tenant_id)
            current_stage = attempt.current_stage
            parsed = parse_response(current_stage, response)
            answer = parsed.model_dump(mode="json", exclude_none=True) if response is not None else None

            now = datetime.utcnow()
            history = list(attempt.stage_history)
            if history:
                history[-1] = history[-1].model_copy(
                    update={"exited_at": now, "response": answer, "outcome": selected_option}
                )

            saved_outcome = detect_save(current_stage, parsed, selected_option)
            if saved_outcome:
                completed = await self._finalize(
                    attempt,
                    saved_outcome,
                    completion_details(current_stage, parsed, selected_option),
                    extra_fields={"stage_history": history},
                )
                return ProgressResult(attempt=completed, completed=True)

            diagnosis: dict[str, Any] = {}
            reason_category: Optional[ReasonCategory] = None
            if (
                current_stage == SaveStage.DIAGNOSIS_SURVEY
                and isinstance(parsed, DiagnosisResponse)
                and parsed.reason
            ):
                reason_category = categorize(parsed.reason)
                diagnosis = {
                    "cancellation_reason": parsed.reason,
                    "reason_category": reason_category,
                }

            next_stage = self._next_enabled_stage(config, current_stage)
            if next_stage is None:
                completed = await self._finalize(
                    attempt,
                    SaveOutcome.CANCELLED,
                    completion_details(current_stage, parsed, selected_option),
                    extra_fields={"stage_history": history, **diagnosis},
                )
                return ProgressResult(attempt=completed, reason_category=reason_category, completed=True)

            history.append(
                StageHistoryEntry(stage=next_stage, stage_name=STAGE_NAMES[next_stage], entered_at=now)
            )

            async with self.uow.transaction():
                updated = await self.attempts.update(
                    attempt_id,
                    {"current_stage": next_stage, "stage_history": history, **diagnosis},
                )
                await self.interventions.update_where(
                    self._open_intervention(attempt),
                    {"stage": STAGE_NAMES[next_stage]},
                )

        logger.info(f"Progressed save attempt {attempt_id} to stage {next_stage}")

        return ProgressResult(
            attempt=updated,
            current_stage=stage_view(config, next_stage),
            reason_category=reason_category,
        )

    # Completion

    async def complete(
        self,
        attempt_id: str,
        outcome: SaveOutcome | str,
        details: Optional[CompletionDetails] = None,
    ) -> SaveAttempt:
        """
        Close an attempt with a terminal outcome.

        Raises:
            AttemptNotFoundError: unknown attempt
            AlreadyCompletedError: the attempt already has an outcome
        """
        outcome = SaveOutcome(outcome)
        attempt = await self._load(attempt_id)

        async with self.locks.acquire((attempt.tenant_id, attempt.customer_id)):
            attempt = await self._load(attempt_id)
            if attempt.is_terminal:
                raise AlreadyCompletedError(attempt_id, attempt.outcome.value)
            return await self._finalize(attempt, outcome, details or CompletionDetails())

    async def _finalize(
        self,
        attempt: SaveAttempt,
        outcome: SaveOutcome,
        details: CompletionDetails,
        extra_fields: Optional[dict[str, Any]] = None,
    ) -> SaveAttempt:
        """Persist the terminal state. Caller holds the customer's lock."""
        revenue_preserved: Optional[Decimal] = None
        if outcome not in NON_SAVE_OUTCOMES:
            revenue_preserved = await self.estimator.estimate(attempt.tenant_id, attempt.customer_id)

        saved_by = determine_saved_by(outcome, details)
        now = datetime.utcnow()

        fields: dict[str, Any] = {
            **(extra_fields or {}),
            "outcome": outcome,
            "saved_by": saved_by,
            "revenue_preserved": revenue_preserved,
            "completed_at": now,
        }
        if details.offer:
            fields["offer_accepted"] = details.offer

        async with self.uow.transaction():
            updated = await self.attempts.update(attempt.id, fields)
            await self.interventions.update_where(
                self._open_intervention(attempt),
                self._intervention_completion(outcome, revenue_preserved, now),
            )

        await self._publish(
            SaveFlowCompletedEvent(
                tenant_id=attempt.tenant_id,
                customer_id=attempt.customer_id,
                attempt_id=attempt.id,
                outcome=outcome.value,
                revenue_preserved=revenue_preserved,
                saved_by=saved_by,
            )
        )
        logger.info(
            f"Completed save flow {attempt.id} with outcome: {outcome.value}, "
            f"revenue preserved: {revenue_preserved}"
        )

        return updated

    # Reconciliation

    async def reconcile_interventions(self, tenant_id: str) -> int:
        """
        Complete interventions still IN_PROGRESS for attempts that are terminal.

        Returns:
            Number of intervention records repaired
        """
        terminal = {
            attempt.id: attempt
            for attempt in await self.attempts.query(AttemptFilter(tenant_id=tenant_id, completed_only=True))
            if attempt.is_terminal
        }
        open_interventions = await self.interventions.query(
            InterventionFilter(
                tenant_id=tenant_id,
                type=InterventionType.SAVE_FLOW,
                status=InterventionStatus.IN_PROGRESS,
            )
        )

        repaired = 0
        async with self.uow.transaction():
            for intervention in open_interventions:
                attempt = terminal.get(intervention.save_attempt_id)
                if attempt is None:
                    continue
                logger.warning(
                    f"Repairing intervention {intervention.id} for completed save attempt {attempt.id}"
                )
                repaired += await self.interventions.update_where(
                    self._open_intervention(attempt),
                    self._intervention_completion(
                        attempt.outcome, attempt.revenue_preserved, attempt.completed_at
                    ),
                )

        return repaired

    # Queries

    async def get_attempt(self, attempt_id: str) -> SaveAttempt:
        return await self._load(attempt_id)

    async def get_active_attempt(self, tenant_id: str, customer_id: str) -> Optional[SaveAttempt]:
        return await self.attempts.find_non_terminal(tenant_id, customer_id)

    async def list_attempts(self, filter: AttemptFilter) -> list[SaveAttempt]:
        return await self.attempts.query(filter)

    # Helpers

    async def _load(self, attempt_id: str) -> SaveAttempt:
        attempt = await self.attempts.find_by_id(attempt_id)
        if not attempt:
            raise AttemptNotFoundError(attempt_id)
        if attempt.current_stage not in STAGE_NAMES:
            raise InvalidStageError(attempt.current_stage)
        return attempt

    @staticmethod
    def _next_enabled_stage(config: SaveFlowConfiguration, current_stage: int) -> Optional[int]:
        """Next enabled stage after ``current_stage``, None past the last stage."""
        stage = current_stage + 1
        while stage <= LAST_STAGE:
            if get_stage(config, stage).enabled:
                return stage
            stage += 1
        return None

    @staticmethod
    def _initiate_result(config: SaveFlowConfiguration, attempt: SaveAttempt, created: bool) -> InitiateResult:
        return InitiateResult(
            attempt=attempt,
            current_stage=stage_view(config, attempt.current_stage),
            created=created,
        )

    @staticmethod
    def _open_intervention(attempt: SaveAttempt) -> InterventionFilter:
        return InterventionFilter(
            save_attempt_id=attempt.id,
            type=InterventionType.SAVE_FLOW,
            status=InterventionStatus.IN_PROGRESS,
        )

    @staticmethod
    def _intervention_completion(
        outcome: SaveOutcome,
        revenue_preserved: Optional[Decimal],
        executed_at: Optional[datetime],
    ) -> dict[str, Any]:
        return {
            "status": InterventionStatus.COMPLETED,
            "outcome": InterventionOutcome.SAVED if outcome.is_saved else InterventionOutcome(outcome.value),
            "revenue_impact": revenue_preserved,
            "executed_at": executed_at,
        }

    async def _publish(self, event: BaseEvent) -> None:
        try:
            await self.events.publish(event)
        except Exception:
            logger.warning(
                f"Failed to publish {event.event_type} for tenant {event.tenant_id}",
                exc_info=True,
            )
