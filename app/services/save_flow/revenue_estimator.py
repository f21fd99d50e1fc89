"""
Revenue Preservation Estimator

Expected value kept by a successful save: the active subscription's
monthly value times an assumed average tenure. This is a coarse heuristic,
not a cohort-based lifetime value model.
"""

from decimal import Decimal
from typing import Optional

from app.config import settings
from app.services.save_flow.interfaces import RevenueEstimator, SubscriptionProvider


class TenureRevenueEstimator(RevenueEstimator):
    """monthly value x average tenure months, 0 without an active subscription."""

    def __init__(self, subscriptions: SubscriptionProvider, avg_tenure_months: Optional[int] = None):
        if avg_tenure_months is None:
            avg_tenure_months = settings.SAVE_FLOW_AVG_TENURE_MONTHS
        if avg_tenure_months < 0:
            raise ValueError("avg_tenure_months must not be negative")

        self.subscriptions = subscriptions
        self.avg_tenure_months = avg_tenure_months

    async def estimate(self, tenant_id: str, customer_id: str) -> Decimal:
        subscription = await self.subscriptions.find_active(tenant_id, customer_id)
        if not subscription:
            return Decimal("0")

        return subscription.monthly_value * self.avg_tenure_months
