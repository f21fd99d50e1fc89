"""
Save Flow Models

Per-tenant save-flow configuration, save attempts (the append-only audit
trail of one customer's retention episode) and the paired intervention
records used by cross-engagement reporting.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, Numeric,
    ForeignKey, Index, Enum as SQLEnum, JSON, text
)
from sqlalchemy.orm import relationship
from app.database import Base
from app.schemas.save_flow import (
    SaveOutcome,
    ReasonCategory,
    InterventionType,
    InterventionStatus,
    InterventionOutcome,
    DeliveryChannel,
)


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class SaveFlowConfig(Base):
    """
    Save-flow configuration for a tenant.

    Stage payloads are stored as JSON in fixed columns; stage numbers are
    implied by the column and never change when a stage is disabled.
    """
    __tablename__ = "save_flow_configs"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(64), nullable=False, unique=True, index=True)
    enabled = Column(Boolean, default=True, nullable=False)

    pattern_interrupt = Column(JSON)
    diagnosis_survey = Column(JSON)
    branching_interventions = Column(JSON)
    nuclear_offer = Column(JSON)
    loss_visualization = Column(JSON)
    exit_survey = Column(JSON)
    winback = Column(JSON)
    voice_ai = Column(JSON)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SaveFlowConfig id={self.id} tenant_id={self.tenant_id} enabled={self.enabled}>"


class SaveAttempt(Base):
    """
    One customer's traversal of the save flow, from trigger to outcome.

    Rows are never deleted. Once ``outcome`` is set the attempt is terminal.
    """
    __tablename__ = "save_attempts"
    __table_args__ = (
        # At most one live attempt per customer
        Index(
            "uq_save_attempts_live_customer",
            "tenant_id",
            "customer_id",
            unique=True,
            postgresql_where=text("outcome IS NULL"),
            sqlite_where=text("outcome IS NULL"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    flow_config_id = Column(String(36))
    trigger = Column(String(100))

    # Progress
    current_stage = Column(Integer, nullable=False, default=1)
    stage_history = Column(JSON, nullable=False, default=list)
    # Example entry:
    # {"stage": 2, "stage_name": "diagnosis_survey", "entered_at": "...",
    #  "exited_at": "...", "response": {"reason": "too pricey"}, "outcome": null}

    # Diagnosis
    cancellation_reason = Column(Text)
    reason_category = Column(
        SQLEnum(ReasonCategory, name="save_reason_category_enum", values_callable=_enum_values)
    )

    # Outcome
    outcome = Column(
        SQLEnum(SaveOutcome, name="save_outcome_enum", values_callable=_enum_values),
        index=True,
    )
    saved_by = Column(String(100))
    offer_accepted = Column(JSON)
    revenue_preserved = Column(Numeric(12, 2))

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime(timezone=True))

    # Relationships
    interventions = relationship("Intervention", back_populates="save_attempt")

    def __repr__(self):
        return f"<SaveAttempt id={self.id} customer_id={self.customer_id} stage={self.current_stage} outcome={self.outcome}>"


class Intervention(Base):
    """
    Engagement record paired with a save attempt.

    Mirrors the attempt's lifecycle coarsely for reporting that spans
    engagement types. Derivable from the attempt on reconciliation.
    """
    __tablename__ = "interventions"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    save_attempt_id = Column(String(36), ForeignKey("save_attempts.id"), index=True)

    type = Column(
        SQLEnum(InterventionType, name="intervention_type_enum", values_callable=_enum_values),
        nullable=False,
    )
    channel = Column(
        SQLEnum(DeliveryChannel, name="delivery_channel_enum", values_callable=_enum_values),
        nullable=False,
    )
    stage = Column(String(50))
    status = Column(
        SQLEnum(InterventionStatus, name="intervention_status_enum", values_callable=_enum_values),
        nullable=False,
        default=InterventionStatus.PENDING,
    )
    outcome = Column(
        SQLEnum(InterventionOutcome, name="intervention_outcome_enum", values_callable=_enum_values)
    )
    revenue_impact = Column(Numeric(12, 2))
    executed_at = Column(DateTime(timezone=True))

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    # Relationships
    save_attempt = relationship("SaveAttempt", back_populates="interventions")

    def __repr__(self):
        return f"<Intervention id={self.id} type={self.type} status={self.status} outcome={self.outcome}>"


class Subscription(Base):
    """Customer subscription, read by the revenue preservation estimator."""
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active")  # active, paused, cancelled
    plan_amount = Column(Numeric(10, 2), nullable=False)  # monthly value
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    def __repr__(self):
        return f"<Subscription id={self.id} customer_id={self.customer_id} status={self.status}>"
