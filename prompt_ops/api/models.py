"""Pydantic request/response models for the API.

Requests carry shape only; range rules are enforced once, in prompt_ops.db.models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from prompt_ops.db.models import Environment, Period

# --- Prompts ---


class PromptCreate(BaseModel):
    """Create a prompt with its initial version."""

    name: str
    agent_type: str
    diagram_type: list[str]
    operation: str
    template: str
    version: str = "1.0.0"
    changelog: str = "Initial version"
    is_production: bool = False
    environments: list[str] | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class PromptResponse(BaseModel):
    id: str
    name: str
    agent_type: str
    diagram_type: list[str]
    operation: str
    is_production: bool
    environments: list[str]
    tags: list[str]
    metadata: dict[str, Any]
    primary_version: str
    versions: list[dict[str, Any]]
    archived: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PromptDuplicate(BaseModel):
    name: str
    copy_versions: bool = True
    include_test_cases: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


# --- Versions ---


class VersionCreate(BaseModel):
    version: str
    template: str
    changelog: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    make_primary: bool = False


class PrimaryUpdate(BaseModel):
    version: str


# --- Test cases ---


class TestCaseCreate(BaseModel):
    __test__ = False

    prompt_id: str
    name: str
    assertions: list[dict[str, Any]]
    vars: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


# --- Test results ---


class TestResultCreate(BaseModel):
    """Outcome reported by the test-execution engine. Validated by the recorder."""

    __test__ = False

    test_case_id: str
    prompt_id: str
    prompt_version: str
    outcome: dict[str, Any]


class RecordedResponse(BaseModel):
    id: str


# --- Metrics ---


class RollupRequest(BaseModel):
    period: Period
    timestamp: datetime | None = None
    environment: Environment | None = None
