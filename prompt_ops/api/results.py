"""Test result endpoints: the execution engine posts outcomes here."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from prompt_ops.api.deps import get_recorder, http_error
from prompt_ops.api.models import RecordedResponse, TestResultCreate
from prompt_ops.core.errors import PromptOpsError
from prompt_ops.core.recorder import TestResultRecorder

router = APIRouter()


@router.post("", response_model=RecordedResponse, status_code=201)
async def record_result(
    data: TestResultCreate,
    recorder: TestResultRecorder = Depends(get_recorder),
) -> RecordedResponse:
    try:
        result_id = recorder.record(
            data.test_case_id, data.prompt_id, data.prompt_version, data.outcome
        )
    except PromptOpsError as e:
        raise http_error(e)
    return RecordedResponse(id=result_id)


@router.get("")
async def list_results(
    prompt_id: str,
    prompt_version: str | None = None,
    environment: str | None = None,
    success: bool | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    recorder: TestResultRecorder = Depends(get_recorder),
) -> list[dict[str, Any]]:
    return recorder.list_results(
        prompt_id,
        prompt_version=prompt_version,
        environment=environment,
        success=success,
        start=start,
        end=end,
        limit=limit,
    )


@router.get("/analytics/{prompt_id}")
async def result_analytics(
    prompt_id: str,
    prompt_version: str | None = None,
    environment: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    recorder: TestResultRecorder = Depends(get_recorder),
) -> dict[str, Any]:
    """Raw aggregate over a prompt's results, computed on the fly."""
    return recorder.aggregate_raw(
        prompt_id,
        prompt_version=prompt_version,
        environment=environment,
        start=start,
        end=end,
    )


@router.get("/{result_id}")
async def get_result(
    result_id: str,
    recorder: TestResultRecorder = Depends(get_recorder),
) -> dict[str, Any]:
    result = recorder.get_result(result_id)
    if not result:
        raise HTTPException(status_code=404, detail=f"Test result '{result_id}' not found")
    return result
