"""
Save-flow error taxonomy with RFC 7807 Problem Details rendering.

The engine raises these synchronously and never retries them. Whatever
transport embeds the engine can turn one into a standardized problem
response with ``to_problem_detail()``.

See: https://datatracker.ietf.org/doc/html/rfc7807
"""

from typing import Optional, Dict, Any, List
from enum import Enum
from pydantic import BaseModel, Field
import uuid
from datetime import datetime


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # Validation
    VALIDATION_ERROR = "VAL_001"

    # Resource
    NOT_FOUND = "RES_001"
    ALREADY_EXISTS = "RES_002"
    CONFLICT = "RES_003"

    # Business Logic
    BUSINESS_RULE_VIOLATION = "BIZ_001"
    OPERATION_NOT_ALLOWED = "BIZ_003"
    FLOW_DISABLED = "BIZ_004"
    ALREADY_COMPLETED = "BIZ_005"

    # Server
    INTERNAL_ERROR = "SRV_001"


class ProblemDetail(BaseModel):
    """
    RFC 7807 Problem Details schema.

    Attributes:
        type: URI reference identifying the problem type
        title: Short, human-readable summary
        status: Suggested HTTP status code
        detail: Human-readable explanation specific to this occurrence
        code: Machine-readable error code for client handling
        timestamp: ISO 8601 timestamp of when the error occurred
        trace_id: Unique identifier for tracing in logs
        context: Identifiers of the attempt/tenant involved
    """

    type: str = Field(
        default="about:blank",
        description="URI reference identifying the problem type"
    )
    title: str = Field(
        description="Short, human-readable summary of the problem"
    )
    status: int = Field(
        description="Suggested HTTP status code"
    )
    detail: str = Field(
        description="Human-readable explanation specific to this occurrence"
    )
    code: str = Field(
        description="Machine-readable error code"
    )
    timestamp: str = Field(
        description="ISO 8601 timestamp"
    )
    trace_id: str = Field(
        description="Unique trace ID for debugging"
    )
    context: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Identifiers related to the failure"
    )


class SaveFlowError(Exception):
    """
    Base exception for the save-flow engine.

    Usage:
        raise SaveFlowError(
            code=ErrorCode.BUSINESS_RULE_VIOLATION,
            detail="Something went wrong",
        )
    """

    status_code = 400
    title = "Bad Request"

    def __init__(
        self,
        code: ErrorCode,
        detail: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.detail = detail
        self.context = context
        self.trace_id = str(uuid.uuid4())[:12]
        self.timestamp = datetime.utcnow().isoformat() + "Z"
        super().__init__(detail)

    def to_problem_detail(self) -> ProblemDetail:
        """Convert to RFC 7807 ProblemDetail."""
        return ProblemDetail(
            type=f"about:save-flow/{self.code.name.lower().replace('_', '-')}",
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            code=self.code.value,
            timestamp=self.timestamp,
            trace_id=self.trace_id,
            context=self.context,
        )


class FlowDisabledError(SaveFlowError):
    """The tenant has switched the save flow off (no save experience offered)."""

    status_code = 400
    title = "Save Flow Disabled"

    def __init__(self, tenant_id: str):
        super().__init__(
            code=ErrorCode.FLOW_DISABLED,
            detail=f"Save flow is not enabled for tenant {tenant_id}",
            context={"tenant_id": tenant_id},
        )


class AttemptNotFoundError(SaveFlowError):
    """Unknown save attempt (404)."""

    status_code = 404
    title = "Not Found"

    def __init__(self, attempt_id: str):
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            detail=f"Save attempt {attempt_id} was not found",
            context={"attempt_id": attempt_id},
        )


class AlreadyCompletedError(SaveFlowError):
    """Progression or completion requested on a terminal attempt."""

    status_code = 409
    title = "Conflict"

    def __init__(self, attempt_id: str, outcome: Optional[str] = None):
        super().__init__(
            code=ErrorCode.ALREADY_COMPLETED,
            detail=f"Save attempt {attempt_id} is already completed",
            context={"attempt_id": attempt_id, "outcome": outcome},
        )


class InvalidStageError(SaveFlowError):
    """A stage number fell outside 1..7 (internal invariant violation)."""

    status_code = 500
    title = "Internal Server Error"

    def __init__(self, stage: Any):
        super().__init__(
            code=ErrorCode.INTERNAL_ERROR,
            detail=f"Stage {stage} is outside the save flow (1-7)",
            context={"stage": stage},
        )


class DuplicateAttemptError(SaveFlowError):
    """Storage refused a second live attempt for the same customer."""

    status_code = 409
    title = "Conflict"

    def __init__(self, tenant_id: str, customer_id: str):
        super().__init__(
            code=ErrorCode.ALREADY_EXISTS,
            detail=f"Customer {customer_id} already has a live save attempt",
            context={"tenant_id": tenant_id, "customer_id": customer_id},
        )


class InvalidResponseError(SaveFlowError):
    """A stage response failed validation (422)."""

    status_code = 422
    title = "Unprocessable Entity"

    def __init__(self, stage: int, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            detail=f"Invalid response for stage {stage}",
            context={"stage": stage, "errors": errors or []},
        )
