from app.models.save_flow import SaveFlowConfig, SaveAttempt, Intervention, Subscription

__all__ = [
    "SaveFlowConfig",
    "SaveAttempt",
    "Intervention",
    "Subscription",
]
