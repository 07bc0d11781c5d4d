"""Supabase store client with an explicit connect/disconnect lifecycle."""

from __future__ import annotations

from typing import Any

import structlog
from supabase import Client, create_client

from prompt_ops.config import Settings, get_settings
from prompt_ops.db.models import is_record_id
from prompt_ops.utils.security import redact_uri

logger = structlog.get_logger()

# Backup collection key -> table name
TABLES: dict[str, str] = {
    "prompts": "prompts",
    "testCases": "test_cases",
    "testResults": "test_results",
    "promptMetrics": "prompt_metrics",
}

# PostgREST caps unbounded selects, so full scans are paged
PAGE_SIZE = 1000

_NIL_UUID = "00000000-0000-0000-0000-000000000000"

# Columns typed uuid in schema.sql
UUID_COLUMNS = frozenset({"id", "prompt_id"})


class StoreClient:
    """Wrapper around the Supabase client with convenience methods.

    Constructed by the process entry point (API lifespan, CLI command) and
    passed to every service. Nothing here is cached at module level.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client: Client | None = None

    @property
    def uri(self) -> str:
        """Connection string with credentials masked, safe for logs and backups."""
        return redact_uri(self._settings.supabase_url)

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        if self._client is None:
            raise RuntimeError("Store client is not connected; call connect() first")
        return self._client

    def connect(self) -> StoreClient:
        if self._client is None:
            self._client = create_client(self._settings.supabase_url, self._settings.supabase_key)
            logger.info("store.connected", url=self.uri)
        return self

    def disconnect(self) -> None:
        if self._client is not None:
            self._client = None
            logger.info("store.disconnected", url=self.uri)

    def __enter__(self) -> StoreClient:
        return self.connect()

    def __exit__(self, *exc_info: Any) -> None:
        self.disconnect()

    def insert(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return the created row."""
        result = self.client.table(table).insert(data).execute()
        return result.data[0]

    def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select records with optional equality filters, ordering, and limit.

        Pages are always ordered with ``id`` as the last key so that offsets
        neither repeat nor skip rows between page queries.
        """
        # A malformed id can match no row; Postgres would reject the cast instead
        if filters and any(
            key in UUID_COLUMNS and not is_record_id(value) for key, value in filters.items()
        ):
            return []

        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            query = self.client.table(table).select("*")
            if filters:
                for key, value in filters.items():
                    query = query.eq(key, value)
            if order_by and order_by != "id":
                query = query.order(order_by, desc=not ascending).order("id")
            else:
                query = query.order("id", desc=bool(order_by) and not ascending)

            page = PAGE_SIZE if limit is None else min(PAGE_SIZE, limit - len(rows))
            result = query.range(offset, offset + page - 1).execute()
            rows.extend(result.data)
            offset += len(result.data)

            if len(result.data) < page or (limit is not None and len(rows) >= limit):
                return rows

    def update(self, table: str, id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Update a record by ID."""
        result = self.client.table(table).update(data).eq("id", id).execute()
        return result.data[0]

    def update_if(
        self, table: str, id: str, expected: dict[str, Any], data: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Update a record only while its ``expected`` columns still hold the given values.

        Returns None when the row changed since it was read.
        """
        query = self.client.table(table).update(data).eq("id", id)
        for key, value in expected.items():
            query = query.eq(key, value)
        result = query.execute()
        return result.data[0] if result.data else None

    def delete(self, table: str, id: str) -> None:
        """Delete a record by ID."""
        self.client.table(table).delete().eq("id", id).execute()

    def delete_all(self, table: str) -> int:
        """Remove every row of a table and return how many were deleted."""
        # PostgREST refuses an unfiltered delete
        result = self.client.table(table).delete().neq("id", _NIL_UUID).execute()
        return len(result.data or [])

    def count(self, table: str) -> int:
        result = self.client.table(table).select("id", count="exact").limit(1).execute()
        return result.count or 0

    def ensure_indexes(self) -> None:
        """(Re)create uniqueness constraints and lookup indexes. See schema.sql."""
        self.client.rpc("prompt_ops_ensure_indexes").execute()
        logger.info("store.indexes_ensured")
