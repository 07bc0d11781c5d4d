"""Test case endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from prompt_ops.api.deps import get_cases, http_error
from prompt_ops.api.models import TestCaseCreate
from prompt_ops.core.cases import TestCaseStore
from prompt_ops.core.errors import PromptOpsError

router = APIRouter()


@router.post("", status_code=201)
async def create_test_case(
    data: TestCaseCreate,
    cases: TestCaseStore = Depends(get_cases),
) -> dict[str, Any]:
    try:
        return cases.create_test_case(**data.model_dump())
    except PromptOpsError as e:
        raise http_error(e)


@router.get("")
async def list_test_cases(
    prompt_id: str,
    active_only: bool = True,
    cases: TestCaseStore = Depends(get_cases),
) -> list[dict[str, Any]]:
    return cases.list_test_cases(prompt_id, active_only=active_only)


@router.delete("/{test_case_id}", status_code=204)
async def deactivate_test_case(
    test_case_id: str,
    cases: TestCaseStore = Depends(get_cases),
) -> None:
    if not cases.deactivate(test_case_id):
        raise HTTPException(status_code=404, detail=f"Test case '{test_case_id}' not found")
