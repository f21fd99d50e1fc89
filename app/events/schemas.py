"""
Save-flow domain events.

Every event carries the tenant it belongs to; consumers must not assume
delivery (publication is at-most-once and happens after the state change
is committed).
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class BaseEvent(BaseModel):
    """Base event schema with mandatory tenant isolation fields."""

    event_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique event identifier (UUID)"
    )

    tenant_id: str = Field(
        ...,  # Required, no default
        description="Tenant identifier for isolation"
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp when event was created"
    )

    event_type: str = Field(
        description="Event name (e.g., 'save.flow.initiated')"
    )

    class Config:
        use_enum_values = True


class SaveFlowInitiatedEvent(BaseEvent):
    """Emitted when a new save attempt is created."""

    event_type: str = Field(default="save.flow.initiated", frozen=True)
    customer_id: str
    attempt_id: str
    trigger: Optional[str] = None


class SaveFlowCompletedEvent(BaseEvent):
    """Emitted when a save attempt reaches a terminal outcome."""

    event_type: str = Field(default="save.flow.completed", frozen=True)
    customer_id: str
    attempt_id: str
    outcome: str
    revenue_preserved: Optional[Decimal] = None
    saved_by: Optional[str] = None
