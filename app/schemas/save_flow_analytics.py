"""
Save Flow Analytics Schemas
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional


class StagePerformance(BaseModel):
    stage: int
    stage_name: str
    saves: int = 0
    rate: float = 0.0  # saves / total attempts


class StageDropoff(BaseModel):
    stage: int
    stage_name: str
    entered: int = 0
    exited: int = 0
    saved: int = 0
    save_rate: float = 0.0
    avg_time_spent_seconds: float = 0.0
    dropoff_rate: float = 0.0


class ReasonStats(BaseModel):
    reason: str
    label: str
    count: int = 0
    saved: int = 0
    cancelled: int = 0
    save_rate: float = 0.0
    revenue_preserved: Decimal = Decimal("0")


class SaveFlowStats(BaseModel):
    total_attempts: int = 0
    in_progress: int = 0
    completed_attempts: int = 0
    saved: int = 0
    cancelled: int = 0
    paused: int = 0
    downgraded: int = 0
    success_rate: float = 0.0
    avg_time_to_save_minutes: float = 0.0
    revenue_preserved: Decimal = Decimal("0")
    outcome_distribution: dict[str, int] = Field(default_factory=dict)
    stage_performance: list[StagePerformance] = Field(default_factory=list)


class ReportPeriod(BaseModel):
    start: datetime
    end: datetime


class SaveFlowReport(BaseModel):
    period: Optional[ReportPeriod] = None
    summary: SaveFlowStats
    stage_dropoff: list[StageDropoff] = Field(default_factory=list)
    reason_analytics: list[ReasonStats] = Field(default_factory=list)
