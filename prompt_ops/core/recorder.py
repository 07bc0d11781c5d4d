"""Test Result Recorder: validated, append-only execution outcomes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from prompt_ops.core.errors import VersionNotFoundError
from prompt_ops.core.registry import PromptRegistry
from prompt_ops.core.stats import latency_percentiles
from prompt_ops.core.versions import find_version
from prompt_ops.db.client import StoreClient
from prompt_ops.db.models import TestOutcome, TestResultRecord, parse, to_row
from prompt_ops.utils.timeutils import as_utc, parse_timestamp, to_iso

logger = structlog.get_logger()


def result_timestamp(row: dict[str, Any]) -> datetime:
    """Execution time of a stored result row."""
    stamp = row.get("created_at") or (row.get("metadata") or {}).get("timestamp")
    return parse_timestamp(stamp)


def result_environment(row: dict[str, Any]) -> str:
    return (row.get("metadata") or {}).get("environment", "development")


class TestResultRecorder:
    """Writes immutable result rows and computes raw aggregates over them."""

    __test__ = False

    def __init__(self, db: StoreClient) -> None:
        self.db = db
        self.registry = PromptRegistry(db)

    def record(
        self,
        test_case_id: str,
        prompt_id: str,
        prompt_version: str,
        outcome: TestOutcome | dict[str, Any],
    ) -> str:
        """Validate and persist one outcome, returning the stored row's id.

        ``success`` is taken as given; it is not derived from the assertion list.
        """
        if isinstance(outcome, TestOutcome):
            outcome = outcome.model_dump()

        prompt = self.registry.require_prompt(prompt_id)
        if not find_version(prompt, prompt_version):
            raise VersionNotFoundError(
                f"Version {prompt_version} not found on prompt '{prompt_id}'"
            )

        record = parse(
            TestResultRecord,
            {
                **outcome,
                "test_case_id": test_case_id,
                "prompt_id": prompt_id,
                "prompt_version": prompt_version,
            },
            "test result",
        )
        row = to_row(record)
        # Windows select on execution time, not insert time
        row["created_at"] = to_iso(record.metadata.timestamp)

        stored = self.db.insert("test_results", row)
        logger.info(
            "test_result.recorded",
            result_id=stored["id"],
            prompt_id=prompt_id,
            prompt_version=prompt_version,
            success=record.success,
            environment=record.metadata.environment.value,
        )
        return stored["id"]

    def get_result(self, result_id: str) -> dict[str, Any] | None:
        results = self.db.select("test_results", filters={"id": result_id})
        return results[0] if results else None

    def list_results(
        self,
        prompt_id: str,
        prompt_version: str | None = None,
        environment: str | None = None,
        success: bool | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Matching result rows, newest first. ``start`` is inclusive, ``end`` exclusive."""
        filters: dict[str, Any] = {"prompt_id": prompt_id}
        if prompt_version:
            filters["prompt_version"] = prompt_version
        if success is not None:
            filters["success"] = success

        rows = self.db.select("test_results", filters=filters)

        if environment:
            rows = [r for r in rows if result_environment(r) == environment]
        if start is not None:
            lower = as_utc(start)
            rows = [r for r in rows if result_timestamp(r) >= lower]
        if end is not None:
            upper = as_utc(end)
            rows = [r for r in rows if result_timestamp(r) < upper]

        rows.sort(key=result_timestamp, reverse=True)
        return rows[:limit] if limit else rows

    def aggregate_raw(
        self,
        prompt_id: str,
        prompt_version: str | None = None,
        environment: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        """Counts, averages, totals and nearest-rank p95/p99 over matching results."""
        rows = self.list_results(
            prompt_id,
            prompt_version=prompt_version,
            environment=environment,
            start=start,
            end=end,
        )
        return summarize_results(rows)


def summarize_results(rows: list[dict[str, Any]]) -> dict[str, Any]:
    total = len(rows)
    if total == 0:
        return {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "average_score": 0,
            "average_latency_ms": 0,
            "total_tokens_used": 0,
            "total_cost": 0,
            "success_rate": 0,
            "p95_latency_ms": 0,
            "p99_latency_ms": 0,
        }

    successful = sum(1 for r in rows if r.get("success"))
    latencies = [float(r.get("latency_ms", 0)) for r in rows]
    p95, p99 = latency_percentiles(latencies)

    return {
        "total_requests": total,
        "successful_requests": successful,
        "failed_requests": total - successful,
        "average_score": round(sum(float(r.get("score", 0)) for r in rows) / total, 4),
        "average_latency_ms": round(sum(latencies) / total, 2),
        "total_tokens_used": sum(int(r.get("tokens_used", 0)) for r in rows),
        "total_cost": round(sum(float(r.get("cost", 0)) for r in rows), 6),
        "success_rate": round(successful / total, 4),
        "p95_latency_ms": p95,
        "p99_latency_ms": p99,
    }
