"""FastAPI dependencies: services built from the store the lifespan connected."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from prompt_ops.core.aggregation import MetricsAggregator
from prompt_ops.core.cases import TestCaseStore
from prompt_ops.core.errors import (
    ConcurrentUpdateError,
    DuplicatePromptError,
    DuplicateVersionError,
    InconsistentPrimaryError,
    PromptOpsError,
    ValidationError,
    VersionInUseError,
)
from prompt_ops.core.recorder import TestResultRecorder
from prompt_ops.core.registry import PromptRegistry
from prompt_ops.core.versions import VersionStore
from prompt_ops.db.client import StoreClient


def get_store(request: Request) -> StoreClient:
    return request.app.state.store


def get_registry(store: StoreClient = Depends(get_store)) -> PromptRegistry:
    return PromptRegistry(store)


def get_versions(store: StoreClient = Depends(get_store)) -> VersionStore:
    return VersionStore(store)


def get_cases(store: StoreClient = Depends(get_store)) -> TestCaseStore:
    return TestCaseStore(store)


def get_recorder(store: StoreClient = Depends(get_store)) -> TestResultRecorder:
    return TestResultRecorder(store)


def get_aggregator(store: StoreClient = Depends(get_store)) -> MetricsAggregator:
    return MetricsAggregator(store)


def http_error(exc: PromptOpsError) -> HTTPException:
    """Map an engine error onto an HTTP status."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail={"message": str(exc), "errors": exc.details})
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(
        exc,
        (
            ConcurrentUpdateError,
            DuplicatePromptError,
            DuplicateVersionError,
            VersionInUseError,
            InconsistentPrimaryError,
        ),
    ):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
