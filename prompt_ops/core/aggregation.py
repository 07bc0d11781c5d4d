"""Aggregation Engine: fold raw test results into period buckets and rank prompts.

Buckets are keyed by (prompt_id, prompt_version, period, bucket start,
environment) and upserted, so re-running a rollup over an unchanged window
converges to the same stored row. All bucket boundaries are UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from prompt_ops.core.recorder import (
    TestResultRecorder,
    result_environment,
    result_timestamp,
)
from prompt_ops.core.stats import mean
from prompt_ops.db.client import StoreClient
from prompt_ops.db.models import MetricsSnapshot, Period, PromptMetricsRecord, parse
from prompt_ops.utils.timeutils import as_utc, parse_timestamp, to_iso, utcnow

logger = structlog.get_logger()

SNAPSHOT_FIELDS = tuple(MetricsSnapshot.model_fields)


def period_start(timestamp: datetime, period: Period | str) -> datetime:
    """Canonical start of the bucket containing ``timestamp``. Weeks start on Monday."""
    period = Period(period)
    t = as_utc(timestamp)
    if period is Period.HOUR:
        return t.replace(minute=0, second=0, microsecond=0)
    midnight = t.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is Period.DAY:
        return midnight
    if period is Period.WEEK:
        return midnight - timedelta(days=midnight.weekday())
    return midnight.replace(day=1)


def period_end(start: datetime, period: Period | str) -> datetime:
    """Exclusive upper bound of the bucket starting at ``start``."""
    period = Period(period)
    if period is Period.HOUR:
        return start + timedelta(hours=1)
    if period is Period.DAY:
        return start + timedelta(days=1)
    if period is Period.WEEK:
        return start + timedelta(weeks=1)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


@dataclass
class RollupReport:
    """Outcome of rolling up every series that has results in one bucket."""

    period: str
    bucket_start: datetime
    created: int = 0
    updated: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def errored(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "bucket_start": to_iso(self.bucket_start),
            "created": self.created,
            "updated": self.updated,
            "errored": self.errored,
            "errors": self.errors,
        }


class MetricsAggregator:
    """Builds and queries PromptMetrics buckets."""

    def __init__(self, db: StoreClient) -> None:
        self.db = db
        self.recorder = TestResultRecorder(db)

    # --- Bucket construction ---

    def create_from_test_results(
        self,
        prompt_id: str,
        prompt_version: str,
        period: Period | str,
        timestamp: datetime,
        environment: str,
    ) -> dict[str, Any]:
        """Compute the bucket containing ``timestamp`` and upsert it by natural key."""
        row, _ = self._upsert_bucket(prompt_id, prompt_version, period, timestamp, environment)
        return row

    def _upsert_bucket(
        self,
        prompt_id: str,
        prompt_version: str,
        period: Period | str,
        timestamp: datetime,
        environment: str,
    ) -> tuple[dict[str, Any], bool]:
        period = Period(period)
        start = period_start(timestamp, period)
        end = period_end(start, period)

        raw = self.recorder.aggregate_raw(
            prompt_id,
            prompt_version=prompt_version,
            environment=environment,
            start=start,
            end=end,
        )
        # Raises before anything is written
        record = parse(
            PromptMetricsRecord,
            {
                "prompt_id": prompt_id,
                "prompt_version": prompt_version,
                "period": period.value,
                "timestamp": start,
                "environment": environment,
                "metrics": {name: raw[name] for name in SNAPSHOT_FIELDS},
            },
            "prompt metrics",
        )
        metrics = record.metrics.model_dump(mode="json")

        existing = self._find_bucket(
            prompt_id, prompt_version, period, start, record.environment.value
        )
        if existing:
            row = self.db.update(
                "prompt_metrics",
                existing["id"],
                {"metrics": metrics, "updated_at": to_iso(utcnow())},
            )
            created = False
        else:
            row = self.db.insert(
                "prompt_metrics",
                {
                    "prompt_id": prompt_id,
                    "prompt_version": prompt_version,
                    "period": period.value,
                    "timestamp": to_iso(start),
                    "environment": record.environment.value,
                    "metrics": metrics,
                },
            )
            created = True

        logger.info(
            "metrics.bucket_upserted",
            prompt_id=prompt_id,
            prompt_version=prompt_version,
            period=period.value,
            bucket_start=to_iso(start),
            environment=record.environment.value,
            total_requests=metrics["total_requests"],
            created=created,
        )
        return row, created

    def _find_bucket(
        self,
        prompt_id: str,
        prompt_version: str,
        period: Period,
        start: datetime,
        environment: str,
    ) -> dict[str, Any] | None:
        rows = self.db.select(
            "prompt_metrics",
            filters={
                "prompt_id": prompt_id,
                "prompt_version": prompt_version,
                "period": period.value,
                "environment": environment,
            },
        )
        # Timestamps come back in whichever ISO form the store renders
        for row in rows:
            if parse_timestamp(row["timestamp"]) == start:
                return row
        return None

    def rollup(
        self,
        period: Period | str,
        timestamp: datetime,
        environment: str | None = None,
    ) -> RollupReport:
        """Upsert the bucket of every (prompt, version, environment) with results in it.

        A failing series is reported and skipped; the others still run.
        """
        period = Period(period)
        start = period_start(timestamp, period)
        end = period_end(start, period)
        report = RollupReport(period=period.value, bucket_start=start)

        series: dict[tuple[str, str, str], None] = {}
        for row in self.db.select("test_results", order_by="created_at"):
            env = result_environment(row)
            if environment and env != environment:
                continue
            if start <= result_timestamp(row) < end:
                series[(row["prompt_id"], row["prompt_version"], env)] = None

        for prompt_id, prompt_version, env in series:
            try:
                _, created = self._upsert_bucket(prompt_id, prompt_version, period, start, env)
            except Exception as e:
                logger.warning(
                    "metrics.bucket_failed",
                    prompt_id=prompt_id,
                    prompt_version=prompt_version,
                    environment=env,
                    error=str(e),
                )
                report.errors.append(
                    {
                        "prompt_id": prompt_id,
                        "prompt_version": prompt_version,
                        "environment": env,
                        "error": str(e),
                    }
                )
                continue
            if created:
                report.created += 1
            else:
                report.updated += 1

        logger.info(
            "metrics.rollup_complete",
            period=period.value,
            bucket_start=to_iso(start),
            created=report.created,
            updated=report.updated,
            errored=report.errored,
        )
        return report

    # --- Queries over stored buckets ---

    def _buckets_in_range(
        self,
        period: Period,
        start: datetime,
        end: datetime,
        filters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Buckets of ``period`` whose start lies in ``[start, end]``, oldest first."""
        lower, upper = as_utc(start), as_utc(end)
        rows = self.db.select(
            "prompt_metrics", filters={"period": period.value, **(filters or {})}
        )
        rows = [r for r in rows if lower <= parse_timestamp(r["timestamp"]) <= upper]
        rows.sort(key=lambda r: parse_timestamp(r["timestamp"]))
        return rows

    def aggregate_metrics(
        self,
        prompt_id: str,
        period: Period | str,
        start: datetime,
        end: datetime,
        environment: str | None = None,
        prompt_version: str | None = None,
    ) -> dict[str, Any]:
        """Rollup-of-rollups over stored buckets.

        Latency, score and percentile fields are plain averages of the bucket
        values, not weighted by each bucket's request count.
        """
        filters: dict[str, Any] = {"prompt_id": prompt_id}
        if environment:
            filters["environment"] = environment
        if prompt_version:
            filters["prompt_version"] = prompt_version

        buckets = self._buckets_in_range(Period(period), start, end, filters)
        metrics = [b["metrics"] for b in buckets]

        total = sum(m["total_requests"] for m in metrics)
        successful = sum(m["successful_requests"] for m in metrics)
        summary = {
            "total_requests": total,
            "successful_requests": successful,
            "failed_requests": sum(m["failed_requests"] for m in metrics),
            "success_rate": successful / total if total > 0 else 0,
            "average_latency_ms": round(mean([m["average_latency_ms"] for m in metrics]), 2),
            "average_score": round(mean([m["average_score"] for m in metrics]), 4),
            "total_tokens_used": sum(m["total_tokens_used"] for m in metrics),
            "total_cost": round(sum(m["total_cost"] for m in metrics), 6),
            "average_p95_latency_ms": round(mean([m["p95_latency_ms"] for m in metrics]), 2),
            "average_p99_latency_ms": round(mean([m["p99_latency_ms"] for m in metrics]), 2),
        }
        return {"summary": summary, "time_series": buckets}

    def get_top_performing_prompts(
        self,
        period: Period | str,
        start: datetime,
        end: datetime,
        environment: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Rank (prompt, version) pairs by average score, then success rate.

        Equal keys keep first-seen order. Pairs whose prompt no longer exists
        are dropped after the limit is applied.
        """
        filters = {"environment": environment} if environment else None
        buckets = self._buckets_in_range(Period(period), start, end, filters)

        groups: dict[tuple[str, str], list[dict[str, Any]]] = {}
        for bucket in buckets:
            key = (bucket["prompt_id"], bucket["prompt_version"])
            groups.setdefault(key, []).append(bucket["metrics"])

        ranked = []
        for (prompt_id, prompt_version), metrics in groups.items():
            total = sum(m["total_requests"] for m in metrics)
            successful = sum(m["successful_requests"] for m in metrics)
            ranked.append(
                {
                    "prompt_id": prompt_id,
                    "prompt_version": prompt_version,
                    "total_requests": total,
                    "success_rate": successful / total if total > 0 else 0,
                    "average_score": round(mean([m["average_score"] for m in metrics]), 4),
                    "average_latency_ms": round(
                        mean([m["average_latency_ms"] for m in metrics]), 2
                    ),
                    "total_tokens_used": sum(m["total_tokens_used"] for m in metrics),
                    "total_cost": round(sum(m["total_cost"] for m in metrics), 6),
                }
            )

        ranked.sort(key=lambda r: (-r["average_score"], -r["success_rate"]))

        top = []
        for entry in ranked[:limit]:
            prompt = self.recorder.registry.get_prompt(entry["prompt_id"])
            if not prompt:
                continue
            top.append(
                {
                    **entry,
                    "prompt_name": prompt.get("name"),
                    "agent_type": prompt.get("agent_type"),
                }
            )
        return top
