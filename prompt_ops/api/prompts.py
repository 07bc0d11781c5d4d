"""Prompt and version endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from prompt_ops.api.deps import get_registry, get_versions, http_error
from prompt_ops.api.models import (
    PrimaryUpdate,
    PromptCreate,
    PromptDuplicate,
    PromptResponse,
    VersionCreate,
)
from prompt_ops.core.errors import PromptOpsError
from prompt_ops.core.registry import PromptRegistry
from prompt_ops.core.versions import VersionStore

router = APIRouter()


@router.post("", response_model=PromptResponse, status_code=201)
async def create_prompt(
    data: PromptCreate,
    registry: PromptRegistry = Depends(get_registry),
) -> PromptResponse:
    """Create a prompt; its initial version becomes primary."""
    try:
        prompt = registry.create_prompt(**data.model_dump())
    except PromptOpsError as e:
        raise http_error(e)
    return PromptResponse(**prompt)


@router.get("", response_model=list[PromptResponse])
async def list_prompts(
    agent_type: str | None = None,
    operation: str | None = None,
    environment: str | None = None,
    tag: str | None = None,
    search: str | None = None,
    archived: bool = False,
    registry: PromptRegistry = Depends(get_registry),
) -> list[PromptResponse]:
    prompts = registry.list_prompts(
        agent_type=agent_type,
        operation=operation,
        environment=environment,
        tag=tag,
        search=search,
        archived=archived,
    )
    return [PromptResponse(**p) for p in prompts]


@router.get("/{prompt_id}", response_model=PromptResponse)
async def get_prompt(
    prompt_id: str,
    registry: PromptRegistry = Depends(get_registry),
) -> PromptResponse:
    prompt = registry.get_prompt(prompt_id)
    if not prompt:
        raise HTTPException(status_code=404, detail=f"Prompt '{prompt_id}' not found")
    return PromptResponse(**prompt)


@router.delete("/{prompt_id}", status_code=204)
async def archive_prompt(
    prompt_id: str,
    registry: PromptRegistry = Depends(get_registry),
) -> None:
    """Archive (soft delete) a prompt. Results and metrics are kept."""
    if not registry.archive_prompt(prompt_id):
        raise HTTPException(status_code=404, detail=f"Prompt '{prompt_id}' not found")


@router.post("/{prompt_id}/versions", status_code=201)
async def add_version(
    prompt_id: str,
    data: VersionCreate,
    versions: VersionStore = Depends(get_versions),
) -> dict[str, Any]:
    try:
        return versions.add_version(prompt_id, **data.model_dump())
    except PromptOpsError as e:
        raise http_error(e)


@router.get("/{prompt_id}/versions")
async def list_versions(
    prompt_id: str,
    versions: VersionStore = Depends(get_versions),
) -> list[dict[str, Any]]:
    try:
        return versions.list_versions(prompt_id)
    except PromptOpsError as e:
        raise http_error(e)


@router.get("/{prompt_id}/versions/primary")
async def get_primary_version(
    prompt_id: str,
    versions: VersionStore = Depends(get_versions),
) -> dict[str, Any]:
    try:
        return versions.get_primary(prompt_id)
    except PromptOpsError as e:
        raise http_error(e)


@router.get("/{prompt_id}/versions/{version}")
async def get_version(
    prompt_id: str,
    version: str,
    versions: VersionStore = Depends(get_versions),
) -> dict[str, Any]:
    try:
        return versions.get_version(prompt_id, version)
    except PromptOpsError as e:
        raise http_error(e)


@router.delete("/{prompt_id}/versions/{version}", status_code=204)
async def delete_version(
    prompt_id: str,
    version: str,
    versions: VersionStore = Depends(get_versions),
) -> None:
    try:
        versions.delete_version(prompt_id, version)
    except PromptOpsError as e:
        raise http_error(e)


@router.put("/{prompt_id}/primary", response_model=PromptResponse)
async def set_primary(
    prompt_id: str,
    data: PrimaryUpdate,
    versions: VersionStore = Depends(get_versions),
) -> PromptResponse:
    try:
        return PromptResponse(**versions.set_primary(prompt_id, data.version))
    except PromptOpsError as e:
        raise http_error(e)


@router.post("/{prompt_id}/duplicate", status_code=201)
async def duplicate_prompt(
    prompt_id: str,
    data: PromptDuplicate,
    versions: VersionStore = Depends(get_versions),
) -> dict[str, Any]:
    try:
        duplicated = versions.duplicate(
            prompt_id,
            new_name=data.name,
            copy_versions=data.copy_versions,
            include_test_cases=data.include_test_cases,
            metadata=data.metadata,
        )
    except PromptOpsError as e:
        raise http_error(e)
    return {
        "source_id": prompt_id,
        "prompt": PromptResponse(**duplicated).model_dump(mode="json"),
        "versions_included": len(duplicated["versions"]),
        "test_cases_copied": duplicated["test_cases_copied"],
    }
