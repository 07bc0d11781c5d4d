"""Database models / validation schemas.

These mirror the Supabase tables and are the single validation layer of the
engine: every range and shape rule lives here, the database only enforces
uniqueness and indexes (see ``schema.sql``).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, TypeVar
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from prompt_ops.core.errors import ValidationError
from prompt_ops.utils.timeutils import as_utc, utcnow

ModelT = TypeVar("ModelT", bound=BaseModel)

UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def is_record_id(value: Any) -> bool:
    """True if ``value`` is a UUID string the store's id columns accept."""
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


def _check_record_id(value: str) -> str:
    if not is_record_id(value):
        raise ValueError(f"'{value}' is not a valid record id")
    return value


RecordId = Annotated[str, AfterValidator(_check_record_id)]

SEMVER_PATTERN = (
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

MAX_TEMPLATE_LENGTH = 10_000
MAX_CHANGELOG_LENGTH = 1_000


class AgentType(str, Enum):
    BASE = "base"
    GENERATOR = "generator"
    MODIFIER = "modifier"
    ANALYZER = "analyzer"
    CLASSIFIER = "classifier"
    MASTER_CLASSIFIER = "master-classifier"


class PromptOperation(str, Enum):
    BASE_SYSTEM = "base-system"
    GENERATION = "generation"
    MODIFICATION = "modification"
    ANALYSIS = "analysis"
    INTENT_CLASSIFICATION = "intent-classification"
    COMPREHENSIVE_CLASSIFICATION = "comprehensive-classification"


class DiagramType(str, Enum):
    SEQUENCE = "sequence"
    CLASS = "class"
    ACTIVITY = "activity"
    STATE = "state"
    COMPONENT = "component"
    USE_CASE = "use-case"
    DEPLOYMENT = "deployment"
    ENTITY_RELATIONSHIP = "entity-relationship"
    UNKNOWN = "unknown"


class Environment(str, Enum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"


class Period(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


# --- Prompts ---


class VersionEntry(BaseModel):
    """An immutable snapshot of a prompt's template text."""

    version: str = Field(..., pattern=SEMVER_PATTERN)
    template: str = Field(..., min_length=1, max_length=MAX_TEMPLATE_LENGTH)
    changelog: str = Field(..., min_length=1, max_length=MAX_CHANGELOG_LENGTH)
    created_at: UtcDatetime = Field(default_factory=utcnow)
    # Additional opaque attributes
    metadata: dict[str, Any] = Field(default_factory=dict)


class PromptRecord(BaseModel):
    """Row from the prompts table, versions embedded."""

    id: str | None = None
    name: str = Field(..., min_length=1, max_length=100)
    agent_type: AgentType
    diagram_type: list[DiagramType] = Field(..., min_length=1)
    operation: PromptOperation
    is_production: bool = False
    environments: list[Environment] = Field(
        default_factory=lambda: [Environment.DEVELOPMENT], min_length=1
    )
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    primary_version: str
    versions: list[VersionEntry] = Field(..., min_length=1)
    archived: bool = False
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None

    @model_validator(mode="after")
    def _check_versions(self) -> PromptRecord:
        seen: set[str] = set()
        for entry in self.versions:
            if entry.version in seen:
                raise ValueError(f"version {entry.version} appears more than once")
            seen.add(entry.version)
        if self.primary_version not in seen:
            raise ValueError(f"primary version {self.primary_version} is not in versions")
        return self


# --- Test cases ---


class AssertionSpec(BaseModel):
    """One assertion a test case applies to the model output."""

    type: str = Field(..., min_length=1)
    value: Any = None
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    provider: str | None = None
    rubric: str | None = None
    metric: str | None = None


class TestCaseRecord(BaseModel):
    """Row from the test_cases table."""

    __test__ = False

    id: str | None = None
    prompt_id: RecordId
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)
    vars: dict[str, Any] = Field(default_factory=dict)
    assertions: list[AssertionSpec] = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime | None = None


# --- Test results ---


class AssertionOutcome(BaseModel):
    """Per-assertion outcome. Advisory detail, ``success`` is never derived from it."""

    type: str
    passed: bool
    score: float = Field(..., ge=0.0, le=1.0)
    reason: str | None = None


class ResultMetadata(BaseModel):
    """Execution context. Unknown keys are kept as additional opaque attributes."""

    model_config = ConfigDict(extra="allow", protected_namespaces=())

    provider: str
    model: str
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    environment: Environment = Environment.DEVELOPMENT


class TestOutcome(BaseModel):
    """What the execution engine reports after running one test case."""

    __test__ = False

    success: bool
    score: float = Field(..., ge=0.0, le=1.0)
    latency_ms: float = Field(..., ge=0.0)
    tokens_used: int = Field(..., ge=0)
    cost: float = Field(..., ge=0.0)
    response: str = ""
    error: str | None = None
    assertions: list[AssertionOutcome] = Field(default_factory=list)
    metadata: ResultMetadata


class TestResultRecord(TestOutcome):
    """Row from the test_results table."""

    __test__ = False

    id: str | None = None
    test_case_id: str = Field(..., min_length=1)
    prompt_id: RecordId
    prompt_version: str = Field(..., min_length=1)
    created_at: UtcDatetime | None = None


# --- Metrics ---


class MetricsSnapshot(BaseModel):
    """Aggregated numbers stored in one metrics bucket."""

    total_requests: int = Field(..., ge=0)
    successful_requests: int = Field(..., ge=0)
    failed_requests: int = Field(..., ge=0)
    average_latency_ms: float = Field(..., ge=0.0)
    average_score: float = Field(..., ge=0.0, le=1.0)
    total_tokens_used: int = Field(..., ge=0)
    total_cost: float = Field(..., ge=0.0)
    p95_latency_ms: float = Field(..., ge=0.0)
    p99_latency_ms: float = Field(..., ge=0.0)

    @model_validator(mode="after")
    def _check_totals(self) -> MetricsSnapshot:
        if self.total_requests != self.successful_requests + self.failed_requests:
            raise ValueError(
                "total_requests must equal the sum of successful and failed requests"
            )
        return self

    def success_rate(self) -> float:
        return self.successful_requests / self.total_requests if self.total_requests else 0.0

    def failure_rate(self) -> float:
        return self.failed_requests / self.total_requests if self.total_requests else 0.0

    def average_cost_per_request(self) -> float:
        return self.total_cost / self.total_requests if self.total_requests else 0.0

    def average_tokens_per_request(self) -> float:
        return self.total_tokens_used / self.total_requests if self.total_requests else 0.0


class PromptMetricsRecord(BaseModel):
    """Row from the prompt_metrics table, one per natural key."""

    id: str | None = None
    prompt_id: RecordId
    prompt_version: str = Field(..., min_length=1)
    period: Period
    timestamp: UtcDatetime
    metrics: MetricsSnapshot
    environment: Environment
    created_at: UtcDatetime | None = None


def parse(model: type[ModelT], data: dict[str, Any], subject: str) -> ModelT:
    """Validate ``data`` against ``model``, raising the engine's ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc, subject) from exc


def to_row(record: BaseModel) -> dict[str, Any]:
    """Serialise a record for the store. Identity and unset timestamps are left to the database."""
    row = record.model_dump(mode="json", exclude={"id"})
    for key in ("created_at", "updated_at"):
        if row.get(key) is None:
            row.pop(key, None)
    return row
