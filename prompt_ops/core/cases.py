"""Test case storage."""

from __future__ import annotations

from typing import Any

import structlog

from prompt_ops.core.registry import PromptRegistry
from prompt_ops.db.client import StoreClient
from prompt_ops.db.models import TestCaseRecord, parse, to_row
from prompt_ops.utils.timeutils import to_iso, utcnow

logger = structlog.get_logger()


class TestCaseStore:
    """Named scenarios executed against a prompt by the external test runner."""

    __test__ = False

    def __init__(self, db: StoreClient) -> None:
        self.db = db
        self.registry = PromptRegistry(db)

    def create_test_case(
        self,
        prompt_id: str,
        name: str,
        assertions: list[dict[str, Any]],
        vars: dict[str, Any] | None = None,
        description: str = "",
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.registry.require_prompt(prompt_id)
        record = parse(
            TestCaseRecord,
            {
                "prompt_id": prompt_id,
                "name": name,
                "description": description,
                "vars": vars or {},
                "assertions": assertions,
                "tags": tags or [],
                "metadata": metadata or {},
            },
            "test case",
        )
        row = self.db.insert("test_cases", to_row(record))
        logger.info("test_case.created", test_case_id=row["id"], prompt_id=prompt_id)
        return row

    def get_test_case(self, test_case_id: str) -> dict[str, Any] | None:
        results = self.db.select("test_cases", filters={"id": test_case_id})
        return results[0] if results else None

    def list_test_cases(self, prompt_id: str, active_only: bool = True) -> list[dict[str, Any]]:
        filters: dict[str, Any] = {"prompt_id": prompt_id}
        if active_only:
            filters["is_active"] = True
        return self.db.select("test_cases", filters=filters, order_by="created_at")

    def deactivate(self, test_case_id: str) -> bool:
        case = self.get_test_case(test_case_id)
        if not case:
            return False
        self.db.update(
            "test_cases", test_case_id, {"is_active": False, "updated_at": to_iso(utcnow())}
        )
        logger.info("test_case.deactivated", test_case_id=test_case_id)
        return True

    def copy_to_prompt(self, source_prompt_id: str, target_prompt_id: str) -> int:
        """Copy every active test case of one prompt onto another. Returns the count."""
        copied = 0
        for case in self.list_test_cases(source_prompt_id):
            description = case.get("description") or ""
            self.create_test_case(
                prompt_id=target_prompt_id,
                name=f"[COPY] {case['name']}"[:200],
                description=(description + "\n\n[DUPLICATED] Copied from original prompt.")[:1000],
                vars=case.get("vars") or {},
                assertions=case["assertions"],
                tags=[*(case.get("tags") or []), "duplicated"],
                metadata={**(case.get("metadata") or {}), "duplicated_from": case["id"]},
            )
            copied += 1
        return copied
