"""Database maintenance: init, reset, legacy migration and data validation.

Each operation returns a report instead of stopping at the first bad row, so
the CLI can print what happened and pick an exit code.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from prompt_ops.core.errors import ValidationError
from prompt_ops.core.versions import find_version
from prompt_ops.db.client import TABLES, StoreClient
from prompt_ops.db.models import (
    MetricsSnapshot,
    PromptRecord,
    TestCaseRecord,
    parse,
)
from prompt_ops.utils.timeutils import parse_timestamp, to_iso, utcnow

logger = structlog.get_logger()

_PLACEHOLDER = re.compile(r"\{\{?\s*([^{}]+?)\s*\}?\}")


@dataclass
class MaintenanceReport:
    operation: str
    cancelled: bool = False
    counts: dict[str, int] = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "cancelled": self.cancelled,
            "counts": self.counts,
            "messages": self.messages,
            "errors": self.errors,
        }


@dataclass
class ValidationIssue:
    severity: str  # "error" or "warning"
    collection: str
    issue: str
    row_id: str | None = None


@dataclass
class ValidationReport:
    totals: dict[str, int] = field(default_factory=dict)
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return sum(1 for i in self.issues if i.severity == "error")

    @property
    def warnings(self) -> int:
        return sum(1 for i in self.issues if i.severity == "warning")

    @property
    def is_valid(self) -> bool:
        return self.errors == 0

    def add(self, severity: str, collection: str, issue: str, row_id: Any = None) -> None:
        self.issues.append(
            ValidationIssue(severity, collection, issue, str(row_id) if row_id else None)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "totals": self.totals,
            "issues": [
                {
                    "severity": i.severity,
                    "collection": i.collection,
                    "row_id": i.row_id,
                    "issue": i.issue,
                }
                for i in self.issues
            ],
        }


class DatabaseMaintenance:
    """Operator tasks behind ``prompt-ops db``."""

    def __init__(self, db: StoreClient) -> None:
        self.db = db

    def counts(self) -> dict[str, int]:
        return {name: self.db.count(table) for name, table in TABLES.items()}

    def _clear(self, report: MaintenanceReport) -> None:
        for name, table in TABLES.items():
            removed = self.db.delete_all(table)
            report.counts[f"{name}_deleted"] = removed
        report.messages.append(
            f"Deleted {sum(report.counts.values())} existing records"
        )

    def init(self, confirm: Callable[[dict[str, int]], bool] | None = None) -> MaintenanceReport:
        """Prepare an empty database with indexes.

        Existing rows are only cleared when ``confirm`` approves; otherwise the
        init is cancelled without writes.
        """
        report = MaintenanceReport(operation="init")
        existing = self.counts()
        if any(existing.values()):
            if confirm is None or not confirm(existing):
                report.cancelled = True
                report.messages.append("Initialization cancelled; existing data kept")
                logger.info("db.init_cancelled", **existing)
                return report
            self._clear(report)

        self.db.ensure_indexes()
        report.messages.append("Indexes ensured")
        logger.info("db.initialized", **report.counts)
        return report

    def reset(self) -> MaintenanceReport:
        """Delete every row of every table and recreate indexes. Confirmation is the caller's."""
        report = MaintenanceReport(operation="reset")
        self._clear(report)
        self.db.ensure_indexes()
        report.messages.append("Indexes ensured")
        logger.info("db.reset", **report.counts)
        return report

    def migrate(self, dry_run: bool = False) -> MaintenanceReport:
        """Repoint ``primary_version`` on rows written by the legacy schema.

        Legacy rows carried ``current_version`` or an ``is_active`` flag on a
        version entry. The first of those that resolves wins, then the newest
        version by creation time.
        """
        report = MaintenanceReport(
            operation="migrate", counts={"updated": 0, "skipped": 0, "errored": 0}
        )

        for prompt in self.db.select("prompts"):
            primary = prompt.get("primary_version")
            if primary and find_version(prompt, primary):
                report.counts["skipped"] += 1
                continue

            target = self._legacy_primary(prompt)
            if target is None:
                report.counts["errored"] += 1
                report.errors.append(f"Prompt {prompt.get('id')} has no versions to promote")
                continue

            if not dry_run:
                self.db.update(
                    "prompts",
                    prompt["id"],
                    {"primary_version": target, "updated_at": to_iso(utcnow())},
                )
            report.counts["updated"] += 1
            report.messages.append(f"Prompt {prompt.get('name')}: primary -> {target}")
            logger.info(
                "db.migrated_primary", prompt_id=prompt["id"], version=target, dry_run=dry_run
            )

        return report

    @staticmethod
    def _legacy_primary(prompt: dict[str, Any]) -> str | None:
        versions = prompt.get("versions") or []
        if not versions:
            return None
        legacy = prompt.get("current_version")
        if legacy and find_version(prompt, legacy):
            return legacy
        for entry in versions:
            if entry.get("is_active") or entry.get("isActive"):
                return entry["version"]

        def created(entry: dict[str, Any]) -> Any:
            stamp = entry.get("created_at")
            return parse_timestamp(stamp) if stamp else parse_timestamp("1970-01-01T00:00:00Z")

        return max(versions, key=created)["version"]

    def validate(self) -> ValidationReport:
        """Check every row against the models and the cross-table references."""
        report = ValidationReport()
        prompts = self.db.select("prompts")
        cases = self.db.select("test_cases")
        results = self.db.select("test_results")
        metrics = self.db.select("prompt_metrics")
        report.totals = {
            "prompts": len(prompts),
            "testCases": len(cases),
            "testResults": len(results),
            "promptMetrics": len(metrics),
        }

        by_id = {str(p.get("id")): p for p in prompts}

        for name, count in Counter(p.get("name") for p in prompts).items():
            if count > 1:
                report.add(
                    "error", "prompts", f'Duplicate prompt name "{name}" found {count} times'
                )

        for prompt in prompts:
            try:
                parse(PromptRecord, prompt, "prompt")
            except ValidationError as e:
                report.add("error", "prompts", str(e), prompt.get("id"))
                continue
            primary = find_version(prompt, prompt["primary_version"])
            if not _PLACEHOLDER.search(primary["template"]):
                report.add(
                    "warning",
                    "prompts",
                    "Primary template contains no {variable} placeholders",
                    prompt.get("id"),
                )

        for case in cases:
            try:
                parse(TestCaseRecord, case, "test case")
            except ValidationError as e:
                report.add("error", "testCases", str(e), case.get("id"))
                continue
            if str(case["prompt_id"]) not in by_id:
                report.add(
                    "error",
                    "testCases",
                    f"Referenced prompt {case['prompt_id']} not found",
                    case.get("id"),
                )

        for result in results:
            prompt = by_id.get(str(result.get("prompt_id")))
            if prompt is None:
                # Archived prompts stay in the table, so a miss means a hard delete
                report.add(
                    "warning",
                    "testResults",
                    f"Referenced prompt {result.get('prompt_id')} not found",
                    result.get("id"),
                )
            elif not find_version(prompt, result.get("prompt_version")):
                report.add(
                    "warning",
                    "testResults",
                    f"Version {result.get('prompt_version')} not found"
                    f" on prompt {prompt.get('name')}",
                    result.get("id"),
                )

        keys: Counter = Counter()
        for bucket in metrics:
            try:
                parse(MetricsSnapshot, bucket.get("metrics") or {}, "metrics")
            except ValidationError as e:
                report.add("error", "promptMetrics", str(e), bucket.get("id"))
            try:
                stamp = parse_timestamp(bucket["timestamp"])
            except (KeyError, TypeError, ValueError):
                report.add(
                    "error",
                    "promptMetrics",
                    "Missing or invalid bucket timestamp",
                    bucket.get("id"),
                )
                continue
            keys[
                (
                    bucket.get("prompt_id"),
                    bucket.get("prompt_version"),
                    bucket.get("period"),
                    stamp,
                    bucket.get("environment"),
                )
            ] += 1

        for key, count in keys.items():
            if count > 1:
                report.add(
                    "error",
                    "promptMetrics",
                    f"{count} buckets share the key "
                    f"{key[0]}/{key[1]}/{key[2]}/{to_iso(key[3])}/{key[4]}",
                )

        logger.info("db.validated", errors=report.errors, warnings=report.warnings, **report.totals)
        return report
