"""Version Store: semantic versions and the primary pointer of a prompt.

Versions are embedded in the prompt row. Every mutation rewrites the
``versions`` list and ``primary_version`` in a single row update, so a reader
never sees a primary pointer without its version entry. The update is
conditional on the ``updated_at`` that was read, so a writer holding a stale
copy fails with ``ConcurrentUpdateError`` instead of overwriting newer versions.
"""

from __future__ import annotations

from typing import Any

import structlog

from prompt_ops.core.cases import TestCaseStore
from prompt_ops.core.errors import (
    ConcurrentUpdateError,
    DuplicateVersionError,
    InconsistentPrimaryError,
    VersionInUseError,
    VersionNotFoundError,
)
from prompt_ops.core.registry import PromptRegistry
from prompt_ops.db.client import StoreClient
from prompt_ops.db.models import (
    MAX_CHANGELOG_LENGTH,
    PromptRecord,
    VersionEntry,
    parse,
)
from prompt_ops.utils.timeutils import to_iso, utcnow

logger = structlog.get_logger()

DUPLICATED_NOTE = "\n\n[DUPLICATED] Copied from original prompt."


def find_version(prompt: dict[str, Any], version: str) -> dict[str, Any] | None:
    for entry in prompt.get("versions") or []:
        if entry.get("version") == version:
            return entry
    return None


class VersionStore:
    """Append-only version history with a single primary version per prompt."""

    def __init__(self, db: StoreClient) -> None:
        self.db = db
        self.registry = PromptRegistry(db)

    def _save(self, prompt: dict[str, Any], **changes: Any) -> dict[str, Any]:
        """Write ``changes`` unless another writer touched the row after ``prompt`` was read."""
        changes["updated_at"] = to_iso(utcnow())
        updated = self.db.update_if(
            "prompts", prompt["id"], {"updated_at": prompt.get("updated_at")}, changes
        )
        if updated is None:
            logger.warning("version.write_conflict", prompt_id=prompt["id"])
            raise ConcurrentUpdateError(
                f"Prompt '{prompt['id']}' was modified concurrently; reload and retry"
            )
        return updated

    def add_version(
        self,
        prompt_id: str,
        version: str,
        template: str,
        changelog: str,
        metadata: dict[str, Any] | None = None,
        make_primary: bool = False,
    ) -> dict[str, Any]:
        """Append a new version. The first version ever added also becomes primary."""
        prompt = self.registry.require_prompt(prompt_id)
        entry = parse(
            VersionEntry,
            {
                "version": version,
                "template": template,
                "changelog": changelog,
                "metadata": metadata or {},
            },
            "version",
        )

        versions = list(prompt.get("versions") or [])
        if find_version(prompt, entry.version):
            raise DuplicateVersionError(
                f"Version {entry.version} already exists on prompt '{prompt_id}'"
            )

        changes: dict[str, Any] = {"versions": [*versions, entry.model_dump(mode="json")]}
        if not versions or make_primary:
            changes["primary_version"] = entry.version

        self._save(prompt, **changes)
        logger.info(
            "version.added",
            prompt_id=prompt_id,
            version=entry.version,
            primary="primary_version" in changes,
        )
        return entry.model_dump(mode="json")

    def set_primary(self, prompt_id: str, version: str) -> dict[str, Any]:
        """Repoint ``primary_version``. Picking a successor after a delete is the caller's job."""
        prompt = self.registry.require_prompt(prompt_id)
        if not find_version(prompt, version):
            raise VersionNotFoundError(f"Version {version} not found on prompt '{prompt_id}'")

        previous = prompt.get("primary_version")
        updated = self._save(prompt, primary_version=version)
        logger.info("version.primary_set", prompt_id=prompt_id, version=version, previous=previous)
        return updated

    def resolve_primary(self, prompt: dict[str, Any]) -> dict[str, Any]:
        """Return the version entry ``primary_version`` points at."""
        primary = prompt.get("primary_version")
        entry = find_version(prompt, primary) if primary else None
        if entry is None:
            raise InconsistentPrimaryError(
                f"Primary version {primary!r} of prompt '{prompt.get('id')}' does not resolve"
            )
        return entry

    def get_primary(self, prompt_id: str) -> dict[str, Any]:
        return self.resolve_primary(self.registry.require_prompt(prompt_id))

    def get_version(self, prompt_id: str, version: str) -> dict[str, Any]:
        prompt = self.registry.require_prompt(prompt_id)
        entry = find_version(prompt, version)
        if entry is None:
            raise VersionNotFoundError(f"Version {version} not found on prompt '{prompt_id}'")
        return entry

    def list_versions(self, prompt_id: str) -> list[dict[str, Any]]:
        return list(self.registry.require_prompt(prompt_id).get("versions") or [])

    def delete_version(self, prompt_id: str, version: str) -> None:
        """Remove a non-primary version. The last remaining version is never removed."""
        prompt = self.registry.require_prompt(prompt_id)
        if not find_version(prompt, version):
            raise VersionNotFoundError(f"Version {version} not found on prompt '{prompt_id}'")
        if prompt.get("primary_version") == version:
            raise VersionInUseError(
                f"Version {version} is primary; set another primary before deleting it"
            )
        versions = prompt.get("versions") or []
        if len(versions) <= 1:
            raise VersionInUseError(f"Version {version} is the only version of '{prompt_id}'")

        self._save(prompt, versions=[v for v in versions if v.get("version") != version])
        logger.info("version.deleted", prompt_id=prompt_id, version=version)

    def duplicate(
        self,
        prompt_id: str,
        new_name: str,
        copy_versions: bool,
        include_test_cases: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create a non-production copy of a prompt under a new name.

        With ``copy_versions`` every version is copied with a fresh timestamp;
        otherwise only the source's primary version is carried over. Either
        way the copy keeps the source's primary version string.
        """
        source = self.registry.require_prompt(prompt_id)
        primary = self.resolve_primary(source)
        sources = list(source["versions"]) if copy_versions else [primary]

        now = to_iso(utcnow())
        versions = [
            {
                "version": v["version"],
                "template": v["template"],
                "changelog": (v.get("changelog", "") + DUPLICATED_NOTE)[:MAX_CHANGELOG_LENGTH],
                "created_at": now,
                "metadata": dict(v.get("metadata") or {}),
            }
            for v in sources
        ]
        record = parse(
            PromptRecord,
            {
                "name": new_name,
                "agent_type": source["agent_type"],
                "diagram_type": source["diagram_type"],
                "operation": source["operation"],
                "is_production": False,
                "environments": source.get("environments") or ["development"],
                "tags": [*(source.get("tags") or []), "duplicated"],
                "metadata": {
                    **(source.get("metadata") or {}),
                    **(metadata or {}),
                    "duplicated_from": source["id"],
                    "duplicated_at": now,
                },
                "primary_version": primary["version"],
                "versions": versions,
            },
            "prompt",
        )
        duplicated = self.registry.insert_prompt(record)

        copied_cases = 0
        if include_test_cases:
            copied_cases = TestCaseStore(self.db).copy_to_prompt(source["id"], duplicated["id"])

        logger.info(
            "prompt.duplicated",
            source_id=source["id"],
            prompt_id=duplicated["id"],
            versions=len(versions),
            test_cases=copied_cases,
        )
        return {**duplicated, "test_cases_copied": copied_cases}
