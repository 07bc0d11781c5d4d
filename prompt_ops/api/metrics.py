"""Metrics endpoints: rollups and the analytics queries over stored buckets."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends

from prompt_ops.api.deps import get_aggregator
from prompt_ops.api.models import RollupRequest
from prompt_ops.core.aggregation import MetricsAggregator
from prompt_ops.db.models import Environment, Period
from prompt_ops.utils.timeutils import utcnow

router = APIRouter()


@router.post("/rollup")
async def rollup(
    data: RollupRequest,
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    """Upsert every bucket with results in the period containing ``timestamp`` (default now)."""
    report = aggregator.rollup(
        data.period,
        data.timestamp or utcnow(),
        environment=data.environment.value if data.environment else None,
    )
    return report.to_dict()


@router.get("/top")
async def top_performing(
    period: Period,
    start: datetime,
    end: datetime,
    environment: Environment | None = None,
    limit: int = 10,
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> list[dict[str, Any]]:
    return aggregator.get_top_performing_prompts(
        period,
        start,
        end,
        environment=environment.value if environment else None,
        limit=limit,
    )


@router.get("/{prompt_id}")
async def prompt_metrics(
    prompt_id: str,
    period: Period,
    start: datetime,
    end: datetime,
    environment: Environment | None = None,
    prompt_version: str | None = None,
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    return aggregator.aggregate_metrics(
        prompt_id,
        period,
        start,
        end,
        environment=environment.value if environment else None,
        prompt_version=prompt_version,
    )
