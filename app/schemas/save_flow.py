"""
Save Flow Schemas

Typed value objects for the seven-stage retention cascade: tenant
configuration, stage responses, attempt snapshots and engine results.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Any
from enum import Enum


class SaveStage(int, Enum):
    PATTERN_INTERRUPT = 1
    DIAGNOSIS_SURVEY = 2
    BRANCHING_INTERVENTIONS = 3
    NUCLEAR_OFFER = 4
    LOSS_VISUALIZATION = 5
    EXIT_SURVEY = 6
    WINBACK = 7


FIRST_STAGE = SaveStage.PATTERN_INTERRUPT.value
LAST_STAGE = SaveStage.WINBACK.value

STAGE_NAMES = {
    1: "pattern_interrupt",
    2: "diagnosis_survey",
    3: "branching_interventions",
    4: "nuclear_offer",
    5: "loss_visualization",
    6: "exit_survey",
    7: "winback",
}

STAGE_DISPLAY_NAMES = {
    1: "Pattern Interrupt",
    2: "Diagnosis Survey",
    3: "Branching Interventions",
    4: "Nuclear Offer",
    5: "Loss Visualization",
    6: "Exit Survey",
    7: "Winback",
}


class SaveOutcome(str, Enum):
    SAVED_STAGE_1 = "SAVED_STAGE_1"
    SAVED_STAGE_2 = "SAVED_STAGE_2"
    SAVED_STAGE_3 = "SAVED_STAGE_3"
    SAVED_STAGE_4 = "SAVED_STAGE_4"
    SAVED_STAGE_5 = "SAVED_STAGE_5"
    SAVED_STAGE_6 = "SAVED_STAGE_6"
    SAVED_STAGE_7 = "SAVED_STAGE_7"
    SAVED_VOICE = "SAVED_VOICE"
    CANCELLED = "CANCELLED"
    PAUSED = "PAUSED"
    DOWNGRADED = "DOWNGRADED"

    @property
    def is_saved(self) -> bool:
        return self.value.startswith("SAVED")

    @property
    def saved_stage(self) -> Optional[int]:
        """Stage a save is attributed to, None for voice and non-saves."""
        if self.value.startswith("SAVED_STAGE_"):
            return int(self.value.rsplit("_", 1)[1])
        return None

    @classmethod
    def for_stage(cls, stage: int) -> "SaveOutcome":
        return cls(f"SAVED_STAGE_{stage}")


# Outcomes that never preserve revenue
NON_SAVE_OUTCOMES = frozenset({SaveOutcome.CANCELLED, SaveOutcome.PAUSED, SaveOutcome.DOWNGRADED})


class ReasonCategory(str, Enum):
    TOO_EXPENSIVE = "too_expensive"
    WRONG_PRODUCT = "wrong_product"
    TOO_MUCH = "too_much"
    SHIPPING_ISSUES = "shipping_issues"
    NOT_USING = "not_using"
    OTHER = "other"


REASON_LABELS = {
    ReasonCategory.TOO_EXPENSIVE: "It's too expensive",
    ReasonCategory.WRONG_PRODUCT: "It's not what I expected",
    ReasonCategory.TOO_MUCH: "I have too much",
    ReasonCategory.SHIPPING_ISSUES: "Shipping problems",
    ReasonCategory.NOT_USING: "I'm not using it",
    ReasonCategory.OTHER: "Other reason",
}


class InterventionType(str, Enum):
    SAVE_FLOW = "SAVE_FLOW"
    PROACTIVE_OUTREACH = "PROACTIVE_OUTREACH"
    PAYMENT_RECOVERY = "PAYMENT_RECOVERY"
    WINBACK = "WINBACK"
    UPSELL = "UPSELL"
    SERVICE_RECOVERY = "SERVICE_RECOVERY"


class InterventionStatus(str, Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class InterventionOutcome(str, Enum):
    SAVED = "SAVED"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    DOWNGRADED = "DOWNGRADED"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    NO_RESPONSE = "NO_RESPONSE"
    ESCALATED = "ESCALATED"


class DeliveryChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    VOICE = "VOICE"
    IN_APP = "IN_APP"
    WEBHOOK = "WEBHOOK"


# Stage configuration


class StageConfig(BaseModel):
    """Fields shared by every stage."""

    enabled: bool = True
    order: int = Field(1, ge=1, le=7)


class PatternInterruptConfig(StageConfig):
    order: int = 1
    progress_metric: str = "orders"
    progress_label: str = "Your Journey"


class SurveyQuestion(BaseModel):
    id: str
    text: str
    category: Optional[str] = None
    type: Optional[str] = None


class DiagnosisSurveyConfig(StageConfig):
    order: int = 2
    questions: list[SurveyQuestion] = Field(default_factory=lambda: [
        SurveyQuestion(
            id="main_reason",
            text="What's the main reason you're considering leaving?",
            category="primary",
        ),
    ])
    routing_rules: list[dict] = Field(default_factory=list)


class InterventionMessaging(BaseModel):
    headline: str
    body: str
    cta: str


class BranchIntervention(BaseModel):
    type: str
    order: int = 1
    config: dict = Field(default_factory=dict)
    messaging: Optional[InterventionMessaging] = None


class Branch(BaseModel):
    name: str
    label: str
    interventions: list[BranchIntervention] = Field(default_factory=list)
    save_rate: float = Field(0.0, ge=0, le=1)


def _default_branches() -> dict[str, Branch]:
    return {
        ReasonCategory.TOO_EXPENSIVE.value: Branch(
            name="too_expensive",
            label=REASON_LABELS[ReasonCategory.TOO_EXPENSIVE],
            interventions=[
                BranchIntervention(
                    type="discount_offer",
                    config={"discount": 20, "duration": 3},
                    messaging=InterventionMessaging(
                        headline="We'd hate to lose you over price",
                        body="How about 20% off for the next 3 months?",
                        cta="Apply Discount",
                    ),
                ),
            ],
            save_rate=0.45,
        ),
        ReasonCategory.WRONG_PRODUCT.value: Branch(
            name="wrong_product",
            label=REASON_LABELS[ReasonCategory.WRONG_PRODUCT],
            interventions=[
                BranchIntervention(
                    type="product_exchange",
                    messaging=InterventionMessaging(
                        headline="Let's find a better match",
                        body="We have many options to choose from",
                        cta="Browse Products",
                    ),
                ),
            ],
            save_rate=0.35,
        ),
        ReasonCategory.TOO_MUCH.value: Branch(
            name="too_much",
            label=REASON_LABELS[ReasonCategory.TOO_MUCH],
            interventions=[
                BranchIntervention(
                    type="pause_option",
                    config={"max_duration": 90, "keep_benefits": ["rewards_balance"]},
                    messaging=InterventionMessaging(
                        headline="Need a break?",
                        body="Pause for up to 3 months. Your rewards will be waiting.",
                        cta="Pause Subscription",
                    ),
                ),
            ],
            save_rate=0.6,
        ),
        ReasonCategory.SHIPPING_ISSUES.value: Branch(
            name="shipping_issues",
            label=REASON_LABELS[ReasonCategory.SHIPPING_ISSUES],
            interventions=[
                BranchIntervention(
                    type="shipping_recovery",
                    messaging=InterventionMessaging(
                        headline="We're sorry for the trouble",
                        body="Let's make it right",
                        cta="Get Help",
                    ),
                ),
            ],
            save_rate=0.5,
        ),
        ReasonCategory.NOT_USING.value: Branch(
            name="not_using",
            label=REASON_LABELS[ReasonCategory.NOT_USING],
            interventions=[
                BranchIntervention(
                    type="pause_option",
                    config={"max_duration": 60},
                    messaging=InterventionMessaging(
                        headline="Life gets busy",
                        body="Take a pause and come back when ready",
                        cta="Pause Subscription",
                    ),
                ),
            ],
            save_rate=0.4,
        ),
        ReasonCategory.OTHER.value: Branch(
            name="other",
            label=REASON_LABELS[ReasonCategory.OTHER],
            save_rate=0.2,
        ),
    }


class BranchingInterventionsConfig(StageConfig):
    order: int = 3
    branches: dict[str, Branch] = Field(default_factory=_default_branches)


class NuclearOfferConfig(StageConfig):
    order: int = 4
    discount: int = Field(40, ge=0, le=100)
    duration: int = Field(3, ge=1)  # months
    timer_seconds: int = Field(600, ge=0)
    show_once: bool = True


class LossVisualizationConfig(StageConfig):
    order: int = 5
    show_progress: bool = True
    show_rewards_balance: bool = True
    show_discounts: bool = True
    show_exclusive_access: bool = True
    custom_loss_items: list[dict] = Field(default_factory=list)


class ExitSurveyConfig(StageConfig):
    order: int = 6
    questions: list[SurveyQuestion] = Field(default_factory=lambda: [
        SurveyQuestion(id="feedback", text="Any final feedback for us?", type="text"),
    ])
    winback_opt_in: bool = True


class WinbackStep(BaseModel):
    day_offset: int = Field(0, ge=0)
    channel: DeliveryChannel = DeliveryChannel.EMAIL
    template_id: str
    offer: Optional[dict] = None  # {"type": "discount", "value": 30}


class WinbackSequence(BaseModel):
    id: str
    name: str
    steps: list[WinbackStep] = Field(default_factory=list)


class WinbackConfig(StageConfig):
    order: int = 7
    sequences: list[WinbackSequence] = Field(default_factory=lambda: [
        WinbackSequence(
            id="default_winback",
            name="Default Winback",
            steps=[
                WinbackStep(day_offset=0, template_id="winback_day0", offer={"type": "discount", "value": 30}),
                WinbackStep(day_offset=7, template_id="winback_day7"),
                WinbackStep(day_offset=30, template_id="winback_day30", offer={"type": "discount", "value": 50}),
            ],
        ),
    ])


class VoiceAIConfig(BaseModel):
    enabled: bool = False
    trigger_on_high_risk: bool = False
    risk_threshold: float = Field(0.8, ge=0, le=1)
    script_id: Optional[str] = None
    fallback_to_human: bool = True


# Stage number -> (configuration attribute, config model)
STAGE_FIELDS: dict[int, tuple[str, type[StageConfig]]] = {
    1: ("pattern_interrupt", PatternInterruptConfig),
    2: ("diagnosis_survey", DiagnosisSurveyConfig),
    3: ("branching_interventions", BranchingInterventionsConfig),
    4: ("nuclear_offer", NuclearOfferConfig),
    5: ("loss_visualization", LossVisualizationConfig),
    6: ("exit_survey", ExitSurveyConfig),
    7: ("winback", WinbackConfig),
}


class SaveFlowConfiguration(BaseModel):
    """A tenant's complete save-flow configuration."""

    id: Optional[str] = None  # None for a synthesized default
    tenant_id: str
    enabled: bool = True
    pattern_interrupt: PatternInterruptConfig = Field(default_factory=PatternInterruptConfig)
    diagnosis_survey: DiagnosisSurveyConfig = Field(default_factory=DiagnosisSurveyConfig)
    branching_interventions: BranchingInterventionsConfig = Field(default_factory=BranchingInterventionsConfig)
    nuclear_offer: NuclearOfferConfig = Field(default_factory=NuclearOfferConfig)
    loss_visualization: LossVisualizationConfig = Field(default_factory=LossVisualizationConfig)
    exit_survey: ExitSurveyConfig = Field(default_factory=ExitSurveyConfig)
    winback: WinbackConfig = Field(default_factory=WinbackConfig)
    voice_ai: VoiceAIConfig = Field(default_factory=VoiceAIConfig)

    class Config:
        from_attributes = True


class SaveFlowConfigurationPatch(BaseModel):
    """Partial configuration update.

    Each key that is set replaces the stored value wholesale; use
    ``ConfigurationResolver.update_stage`` to change single fields inside
    one stage.
    """

    enabled: Optional[bool] = None
    pattern_interrupt: Optional[PatternInterruptConfig] = None
    diagnosis_survey: Optional[DiagnosisSurveyConfig] = None
    branching_interventions: Optional[BranchingInterventionsConfig] = None
    nuclear_offer: Optional[NuclearOfferConfig] = None
    loss_visualization: Optional[LossVisualizationConfig] = None
    exit_survey: Optional[ExitSurveyConfig] = None
    winback: Optional[WinbackConfig] = None
    voice_ai: Optional[VoiceAIConfig] = None


class StageView(BaseModel):
    """Stage payload handed to the presentation layer."""

    stage: int
    stage_name: str
    enabled: bool
    config: dict[str, Any]


# Stage responses


class StageResponse(BaseModel):
    """Customer answer at a stage. Unknown keys are kept for the audit trail."""

    stay_decision: Optional[bool] = None

    class Config:
        extra = "allow"


class PatternInterruptResponse(StageResponse):
    continue_journey: Optional[bool] = None


class DiagnosisResponse(StageResponse):
    reason: Optional[str] = None
    question_id: Optional[str] = None


class BranchingResponse(StageResponse):
    accepted_intervention: Optional[bool] = None
    intervention: Optional[str] = None  # e.g. "discount_offer"
    branch: Optional[str] = None


class NuclearOfferResponse(StageResponse):
    accepted_offer: Optional[bool] = None
    offer: Optional[dict] = None


class LossVisualizationResponse(StageResponse):
    reconsidered: Optional[bool] = None


class ExitSurveyResponse(StageResponse):
    feedback: Optional[str] = None
    winback_opt_in: Optional[bool] = None


class WinbackResponse(StageResponse):
    sequence_id: Optional[str] = None


STAGE_RESPONSE_MODELS: dict[int, type[StageResponse]] = {
    1: PatternInterruptResponse,
    2: DiagnosisResponse,
    3: BranchingResponse,
    4: NuclearOfferResponse,
    5: LossVisualizationResponse,
    6: ExitSurveyResponse,
    7: WinbackResponse,
}


# Attempts


class StageHistoryEntry(BaseModel):
    stage: int = Field(..., ge=1, le=7)
    stage_name: Optional[str] = None
    entered_at: datetime
    exited_at: Optional[datetime] = None
    response: Optional[dict] = None
    outcome: Optional[str] = None  # the option selected when leaving the stage


class SaveAttempt(BaseModel):
    """Snapshot of one customer's traversal of the save flow."""

    id: str
    tenant_id: str
    customer_id: str
    flow_config_id: Optional[str] = None
    trigger: Optional[str] = None
    current_stage: int = 1  # range checked by the engine when loading
    stage_history: list[StageHistoryEntry] = Field(default_factory=list)
    cancellation_reason: Optional[str] = None
    reason_category: Optional[ReasonCategory] = None
    outcome: Optional[SaveOutcome] = None
    saved_by: Optional[str] = None
    offer_accepted: Optional[dict] = None
    revenue_preserved: Optional[Decimal] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None

    @property
    def is_saved(self) -> bool:
        return self.outcome is not None and self.outcome.is_saved


class Intervention(BaseModel):
    id: str
    tenant_id: str
    customer_id: str
    save_attempt_id: Optional[str] = None
    type: InterventionType
    channel: DeliveryChannel
    stage: Optional[str] = None
    status: InterventionStatus
    outcome: Optional[InterventionOutcome] = None
    revenue_impact: Optional[Decimal] = None
    executed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ActiveSubscription(BaseModel):
    monthly_value: Decimal


class CompletionDetails(BaseModel):
    """Context passed to completion for attribution."""

    stage: Optional[int] = None
    intervention: Optional[str] = None
    offer: Optional[dict] = None
    response: Optional[dict] = None
    selected_option: Optional[str] = None


class AttemptFilter(BaseModel):
    tenant_id: str
    customer_id: Optional[str] = None
    outcome: Optional[SaveOutcome] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    completed_only: bool = False
    with_reason_only: bool = False
    limit: Optional[int] = Field(None, ge=1)
    offset: int = Field(0, ge=0)


class InterventionFilter(BaseModel):
    tenant_id: Optional[str] = None
    customer_id: Optional[str] = None
    save_attempt_id: Optional[str] = None
    type: Optional[InterventionType] = None
    status: Optional[InterventionStatus] = None


# Engine results


class InitiateResult(BaseModel):
    attempt: SaveAttempt
    current_stage: StageView
    created: bool = True


class ProgressResult(BaseModel):
    """Outcome of a progress call.

    ``completed`` is True when the call ended the flow (saved or
    cancelled); ``current_stage`` is then None.
    """

    attempt: SaveAttempt
    current_stage: Optional[StageView] = None
    reason_category: Optional[ReasonCategory] = None
    completed: bool = False


# Reference catalogs


class StageInfo(BaseModel):
    stage: int
    name: str
    display_name: str


class ReasonCategoryInfo(BaseModel):
    id: ReasonCategory
    label: str
    branch: str


def stage_catalog() -> list[StageInfo]:
    return [
        StageInfo(stage=stage, name=STAGE_NAMES[stage], display_name=STAGE_DISPLAY_NAMES[stage])
        for stage in range(FIRST_STAGE, LAST_STAGE + 1)
    ]


def reason_category_catalog() -> list[ReasonCategoryInfo]:
    return [
        ReasonCategoryInfo(id=category, label=REASON_LABELS[category], branch=category.value)
        for category in ReasonCategory
    ]


def outcome_catalog() -> list[str]:
    return [outcome.value for outcome in SaveOutcome]
