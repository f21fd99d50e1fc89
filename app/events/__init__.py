from app.events.schemas import BaseEvent, SaveFlowInitiatedEvent, SaveFlowCompletedEvent

__all__ = [
    "BaseEvent",
    "SaveFlowInitiatedEvent",
    "SaveFlowCompletedEvent",
]
