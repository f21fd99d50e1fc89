"""
Save Flow Analytics

Aggregates a snapshot of save attempts into dashboard statistics:
- Summary: totals, success rate, time to save, revenue preserved
- Stage dropoff: computed from the stage history of completed attempts
- Reason analytics: outcomes grouped by cancellation reason category

The aggregator is pure and never touches the database; the service
loads the attempts for a reporting window and hands them over.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from app.config import settings
from app.schemas.save_flow import (
    FIRST_STAGE,
    LAST_STAGE,
    REASON_LABELS,
    STAGE_NAMES,
    AttemptFilter,
    SaveAttempt,
    SaveOutcome,
)
from app.schemas.save_flow_analytics import (
    ReasonStats,
    ReportPeriod,
    SaveFlowReport,
    SaveFlowStats,
    StageDropoff,
    StagePerformance,
)
from app.services.save_flow.interfaces import AttemptStore

logger = logging.getLogger(__name__)


def _rate(part: int, whole: int) -> float:
    return round(part / whole, 2) if whole else 0.0


class RetentionAnalyticsAggregator:
    """Pure aggregation over save attempts."""

    def summarize(self, attempts: Iterable[SaveAttempt]) -> SaveFlowStats:
        attempts = list(attempts)
        total = len(attempts)

        outcomes = Counter(a.outcome.value for a in attempts if a.outcome)
        saved_attempts = [a for a in attempts if a.is_saved]
        completed = [a for a in attempts if a.completed_at]

        save_minutes = [
            (a.completed_at - a.created_at).total_seconds() / 60
            for a in saved_attempts
            if a.completed_at and a.created_at
        ]
        revenue = sum((a.revenue_preserved or Decimal("0") for a in completed), Decimal("0"))

        stage_performance = []
        for stage in range(FIRST_STAGE, LAST_STAGE + 1):
            saves = outcomes.get(SaveOutcome.for_stage(stage).value, 0)
            stage_performance.append(
                StagePerformance(
                    stage=stage,
                    stage_name=STAGE_NAMES[stage],
                    saves=saves,
                    rate=round(saves / max(total, 1), 2),
                )
            )

        return SaveFlowStats(
            total_attempts=total,
            in_progress=sum(1 for a in attempts if a.outcome is None and a.completed_at is None),
            completed_attempts=len(completed),
            saved=len(saved_attempts),
            cancelled=outcomes.get(SaveOutcome.CANCELLED.value, 0),
            paused=outcomes.get(SaveOutcome.PAUSED.value, 0),
            downgraded=outcomes.get(SaveOutcome.DOWNGRADED.value, 0),
            success_rate=_rate(len(saved_attempts), total),
            avg_time_to_save_minutes=round(sum(save_minutes) / len(save_minutes), 2) if save_minutes else 0.0,
            revenue_preserved=revenue,
            outcome_distribution=dict(outcomes),
            stage_performance=stage_performance,
        )

    def stage_dropoff(self, attempts: Iterable[SaveAttempt]) -> list[StageDropoff]:
        """
        Per-stage funnel from the stage history of completed attempts.

        Live attempts are left out: their open entry is the stage the
        customer is on now, not a dropoff.

        A save attributed to a stage whose history entry was also stamped
        with an exit time is counted once, as an exit, not again as a save.
        """
        entered: Counter = Counter()
        exited: Counter = Counter()
        saved: Counter = Counter()
        saved_unexited: Counter = Counter()
        seconds: dict[int, list[float]] = defaultdict(list)

        for attempt in attempts:
            if not attempt.completed_at:
                continue

            saved_stage = attempt.outcome.saved_stage if attempt.outcome else None
            if saved_stage:
                saved[saved_stage] += 1

            for stage in {entry.stage for entry in attempt.stage_history}:
                entered[stage] += 1

            for entry in attempt.stage_history:
                if entry.exited_at:
                    exited[entry.stage] += 1
                    seconds[entry.stage].append((entry.exited_at - entry.entered_at).total_seconds())
                elif entry.stage == saved_stage:
                    saved_unexited[entry.stage] += 1

        dropoff = []
        for stage in range(FIRST_STAGE, LAST_STAGE + 1):
            count = entered[stage]
            dropped = max(count - exited[stage] - saved_unexited[stage], 0)
            spent = seconds[stage]
            dropoff.append(
                StageDropoff(
                    stage=stage,
                    stage_name=STAGE_NAMES[stage],
                    entered=count,
                    exited=exited[stage],
                    saved=saved[stage],
                    save_rate=_rate(saved[stage], count),
                    avg_time_spent_seconds=round(sum(spent) / len(spent), 2) if spent else 0.0,
                    dropoff_rate=_rate(dropped, count),
                )
            )

        return dropoff

    def reason_analytics(self, attempts: Iterable[SaveAttempt]) -> list[ReasonStats]:
        stats: dict[str, ReasonStats] = {}

        for attempt in attempts:
            if not attempt.completed_at or not attempt.reason_category:
                continue

            category = attempt.reason_category
            entry = stats.get(category.value)
            if entry is None:
                entry = stats[category.value] = ReasonStats(
                    reason=category.value,
                    label=REASON_LABELS[category],
                )

            entry.count += 1
            if attempt.is_saved:
                entry.saved += 1
            elif attempt.outcome == SaveOutcome.CANCELLED:
                entry.cancelled += 1
            entry.revenue_preserved += attempt.revenue_preserved or Decimal("0")

        for entry in stats.values():
            entry.save_rate = _rate(entry.saved, entry.count)

        return sorted(stats.values(), key=lambda s: s.count, reverse=True)

    def build_report(
        self,
        attempts: Iterable[SaveAttempt],
        period: Optional[ReportPeriod] = None,
    ) -> SaveFlowReport:
        attempts = list(attempts)
        return SaveFlowReport(
            period=period,
            summary=self.summarize(attempts),
            stage_dropoff=self.stage_dropoff(attempts),
            reason_analytics=self.reason_analytics(attempts),
        )


class SaveFlowAnalyticsService:
    """Loads a tenant's attempts for a reporting window and aggregates them."""

    def __init__(
        self,
        attempts: AttemptStore,
        window_days: Optional[int] = None,
        aggregator: Optional[RetentionAnalyticsAggregator] = None,
    ):
        self.attempts = attempts
        self.window_days = window_days if window_days is not None else settings.SAVE_FLOW_ANALYTICS_WINDOW_DAYS
        self.aggregator = aggregator or RetentionAnalyticsAggregator()

    async def report(
        self,
        tenant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SaveFlowReport:
        end = end or datetime.utcnow()
        start = start or end - timedelta(days=self.window_days)

        attempts = await self.attempts.query(
            AttemptFilter(tenant_id=tenant_id, created_from=start, created_to=end)
        )
        logger.debug(f"Aggregating {len(attempts)} save attempts for tenant {tenant_id}")

        return self.aggregator.build_report(attempts, ReportPeriod(start=start, end=end))
