"""
Save detection and attribution rules.
"""

import re
from typing import Any, Optional

from pydantic import ValidationError

from app.exceptions import InvalidResponseError, InvalidStageError
from app.schemas.save_flow import (
    STAGE_RESPONSE_MODELS,
    BranchingResponse,
    CompletionDetails,
    LossVisualizationResponse,
    NuclearOfferResponse,
    PatternInterruptResponse,
    SaveOutcome,
    StageResponse,
)

STAY_OPTION = "stay"

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def parse_response(stage: int, payload: Any) -> StageResponse:
    """
    Build the typed response model for ``stage``.

    Accepts None, a dict (snake_case or camelCase keys) or an existing
    StageResponse.

    Raises:
        InvalidStageError: ``stage`` is outside 1..7
        InvalidResponseError: the payload does not fit the stage model
    """
    model = STAGE_RESPONSE_MODELS.get(stage)
    if model is None:
        raise InvalidStageError(stage)

    if payload is None:
        return model()
    if isinstance(payload, model):
        return payload
    if isinstance(payload, StageResponse):
        payload = payload.model_dump(exclude_none=True)

    try:
        return model.model_validate({_snake_case(key): value for key, value in dict(payload).items()})
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in e.errors()
        ]
        raise InvalidResponseError(stage, errors) from e


def detect_save(stage: int, response: StageResponse, selected_option: Optional[str] = None) -> Optional[SaveOutcome]:
    """
    Return the save outcome earned at ``stage``, or None if not saved.

    An explicit stay decision wins at any stage; otherwise each stage has
    its own acceptance signal.
    """
    if selected_option == STAY_OPTION or response.stay_decision is True:
        return SaveOutcome.for_stage(stage)

    if isinstance(response, PatternInterruptResponse) and response.continue_journey:
        return SaveOutcome.SAVED_STAGE_1

    if isinstance(response, BranchingResponse) and response.accepted_intervention:
        return SaveOutcome.SAVED_STAGE_3

    if isinstance(response, NuclearOfferResponse) and response.accepted_offer:
        return SaveOutcome.SAVED_STAGE_4

    if isinstance(response, LossVisualizationResponse) and response.reconsidered:
        return SaveOutcome.SAVED_STAGE_5

    return None


def completion_details(
    stage: int,
    response: StageResponse,
    selected_option: Optional[str] = None,
) -> CompletionDetails:
    """Attribution context for a completion triggered by a stage response."""
    intervention = None
    offer = None
    if isinstance(response, BranchingResponse):
        intervention = response.intervention
    if isinstance(response, NuclearOfferResponse):
        offer = response.offer

    return CompletionDetails(
        stage=stage,
        intervention=intervention,
        offer=offer,
        response=response.model_dump(mode="json", exclude_none=True),
        selected_option=selected_option,
    )


def determine_saved_by(outcome: SaveOutcome, details: Optional[CompletionDetails] = None) -> str:
    if outcome == SaveOutcome.CANCELLED:
        return "not_saved"
    if outcome == SaveOutcome.PAUSED:
        return "pause_offer"
    if outcome == SaveOutcome.DOWNGRADED:
        return "downgrade_offer"
    if outcome == SaveOutcome.SAVED_VOICE:
        return "voice_ai"

    intervention = (details.intervention if details else None) or "general"
    return f"stage_{outcome.saved_stage}_{intervention}"
