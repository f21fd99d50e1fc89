from app.schemas.save_flow import (
    SaveFlowConfiguration,
    SaveFlowConfigurationPatch,
    SaveAttempt,
    StageHistoryEntry,
    SaveOutcome,
    ReasonCategory,
)
from app.schemas.save_flow_analytics import (
    SaveFlowStats,
    StageDropoff,
    ReasonStats,
    SaveFlowReport,
)
