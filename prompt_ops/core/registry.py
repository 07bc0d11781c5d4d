"""Prompt Registry: create, read, list and archive prompts."""

from __future__ import annotations

from typing import Any

import structlog

from prompt_ops.core.errors import DuplicatePromptError, PromptNotFoundError
from prompt_ops.db.client import StoreClient
from prompt_ops.db.models import PromptRecord, parse, to_row
from prompt_ops.utils.timeutils import to_iso, utcnow

logger = structlog.get_logger()

INITIAL_VERSION = "1.0.0"


class PromptRegistry:
    """Manages prompt lifecycle. Versions are handled by ``VersionStore``."""

    def __init__(self, db: StoreClient) -> None:
        self.db = db

    def create_prompt(
        self,
        name: str,
        agent_type: str,
        diagram_type: list[str],
        operation: str,
        template: str,
        version: str = INITIAL_VERSION,
        changelog: str = "Initial version",
        is_production: bool = False,
        environments: list[str] | None = None,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create a prompt with one initial version, which becomes primary."""
        data: dict[str, Any] = {
            "name": name,
            "agent_type": agent_type,
            "diagram_type": diagram_type,
            "operation": operation,
            "is_production": is_production,
            "tags": tags or [],
            "metadata": metadata or {},
            "primary_version": version,
            "versions": [{"version": version, "template": template, "changelog": changelog}],
        }
        if environments:
            data["environments"] = environments
        return self.insert_prompt(parse(PromptRecord, data, "prompt"))

    def insert_prompt(self, record: PromptRecord) -> dict[str, Any]:
        """Persist an already validated prompt, enforcing name uniqueness."""
        if self.get_prompt_by_name(record.name):
            raise DuplicatePromptError(f"Prompt with name '{record.name}' already exists")

        prompt = self.db.insert("prompts", to_row(record))
        logger.info(
            "prompt.created",
            prompt_id=prompt["id"],
            name=record.name,
            primary_version=record.primary_version,
        )
        return prompt

    def get_prompt(self, prompt_id: str) -> dict[str, Any] | None:
        results = self.db.select("prompts", filters={"id": prompt_id})
        return results[0] if results else None

    def require_prompt(self, prompt_id: str) -> dict[str, Any]:
        """Like ``get_prompt`` but raises ``PromptNotFoundError``."""
        prompt = self.get_prompt(prompt_id)
        if not prompt:
            raise PromptNotFoundError(f"Prompt '{prompt_id}' not found")
        return prompt

    def get_prompt_by_name(self, name: str) -> dict[str, Any] | None:
        results = self.db.select("prompts", filters={"name": name})
        return results[0] if results else None

    def list_prompts(
        self,
        agent_type: str | None = None,
        operation: str | None = None,
        environment: str | None = None,
        tag: str | None = None,
        search: str | None = None,
        archived: bool = False,
    ) -> list[dict[str, Any]]:
        """List prompts with optional filters."""
        filters: dict[str, Any] = {"archived": archived}
        if agent_type:
            filters["agent_type"] = agent_type
        if operation:
            filters["operation"] = operation

        results = self.db.select("prompts", filters=filters, order_by="name")

        # Array columns are filtered client-side
        if environment:
            results = [r for r in results if environment in r.get("environments", [])]
        if tag:
            results = [r for r in results if tag in r.get("tags", [])]
        if search:
            search_lower = search.lower()
            results = [r for r in results if search_lower in r.get("name", "").lower()]

        return results

    def archive_prompt(self, prompt_id: str) -> bool:
        """Soft-delete a prompt. Its test results and metrics are kept."""
        prompt = self.get_prompt(prompt_id)
        if not prompt:
            return False

        self.db.update(
            "prompts", prompt["id"], {"archived": True, "updated_at": to_iso(utcnow())}
        )
        logger.info("prompt.archived", prompt_id=prompt_id, name=prompt.get("name"))
        return True
