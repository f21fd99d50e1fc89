# Save flow services
from app.services.save_flow.analytics import RetentionAnalyticsAggregator, SaveFlowAnalyticsService
from app.services.save_flow.config_resolver import ConfigurationResolver, default_configuration
from app.services.save_flow.engine import SaveFlowEngine
from app.services.save_flow.locks import KeyedLock
from app.services.save_flow.reason_classifier import categorize
from app.services.save_flow.revenue_estimator import TenureRevenueEstimator

__all__ = [
    "SaveFlowEngine",
    "ConfigurationResolver",
    "default_configuration",
    "categorize",
    "TenureRevenueEstimator",
    "RetentionAnalyticsAggregator",
    "SaveFlowAnalyticsService",
    "KeyedLock",
]
