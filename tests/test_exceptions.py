"""Tests for the save flow error taxonomy and problem detail rendering."""

import pytest

from app.exceptions import (
    AlreadyCompletedError,
    AttemptNotFoundError,
    DuplicateAttemptError,
    ErrorCode,
    FlowDisabledError,
    InvalidResponseError,
    InvalidStageError,
    SaveFlowError,
)


@pytest.mark.parametrize(
    "error,status,code",
    [
        (FlowDisabledError("tenant-1"), 400, ErrorCode.FLOW_DISABLED),
        (AttemptNotFoundError("attempt-1"), 404, ErrorCode.NOT_FOUND),
        (AlreadyCompletedError("attempt-1", "CANCELLED"), 409, ErrorCode.ALREADY_COMPLETED),
        (InvalidStageError(9), 500, ErrorCode.INTERNAL_ERROR),
        (DuplicateAttemptError("tenant-1", "customer-1"), 409, ErrorCode.ALREADY_EXISTS),
        (InvalidResponseError(1, [{"field": "continue_journey", "message": "Input should be a valid boolean"}]), 422, ErrorCode.VALIDATION_ERROR),
    ],
)
def test_problem_detail(error, status, code):
    problem = error.to_problem_detail()

    assert isinstance(error, SaveFlowError)
    assert problem.status == status
    assert problem.code == code.value
    assert problem.detail == str(error)
    assert problem.trace_id == error.trace_id
    assert problem.timestamp.endswith("Z")


def test_context_carries_identifiers():
    error = AlreadyCompletedError("attempt-1", "SAVED_STAGE_1")

    assert error.context == {"attempt_id": "attempt-1", "outcome": "SAVED_STAGE_1"}
    assert error.to_problem_detail().type == "about:save-flow/already-completed"


def test_trace_ids_are_unique():
    assert AttemptNotFoundError("a").trace_id != AttemptNotFoundError("a").trace_id
