"""Tests for the store client's query building against a stubbed Supabase client."""

from __future__ import annotations

from unittest.mock import MagicMock, call
from uuid import uuid4

import pytest

from prompt_ops.config import Settings
from prompt_ops.db.client import PAGE_SIZE, StoreClient


def _page(start: int, size: int) -> list[dict]:
    return [{"id": f"row-{i}"} for i in range(start, start + size)]


@pytest.fixture
def query():
    """Chainable query builder; every filter/order call returns the same builder."""
    builder = MagicMock()
    for name in ("select", "eq", "order", "range", "update"):
        getattr(builder, name).return_value = builder
    builder.execute.return_value = MagicMock(data=[])
    return builder


@pytest.fixture
def store(query) -> StoreClient:
    client = StoreClient(Settings(supabase_url="https://db.example.com", supabase_key="k"))
    client._client = MagicMock()
    client._client.table.return_value = query
    return client


class TestSelectOrdering:
    def test_unordered_scan_orders_by_id(self, store, query):
        store.select("prompts")
        assert query.order.call_args_list == [call("id", desc=False)]

    def test_order_by_gets_id_tiebreak(self, store, query):
        store.select("test_results", order_by="created_at", ascending=False)
        assert query.order.call_args_list == [call("created_at", desc=True), call("id")]

    def test_order_by_id_is_not_doubled(self, store, query):
        store.select("prompts", order_by="id", ascending=False)
        assert query.order.call_args_list == [call("id", desc=True)]

    def test_pages_until_short_page(self, store, query):
        query.execute.side_effect = [
            MagicMock(data=_page(0, PAGE_SIZE)),
            MagicMock(data=_page(PAGE_SIZE, 3)),
        ]
        rows = store.select("test_results")
        assert len(rows) == PAGE_SIZE + 3
        assert len({r["id"] for r in rows}) == PAGE_SIZE + 3
        assert query.range.call_args_list == [
            call(0, PAGE_SIZE - 1),
            call(PAGE_SIZE, 2 * PAGE_SIZE - 1),
        ]
        # Every page query carries the same ordering
        assert query.order.call_count == 2


class TestSelectIdFilters:
    @pytest.mark.parametrize("column", ["id", "prompt_id"])
    def test_malformed_uuid_matches_nothing(self, store, query, column):
        assert store.select("test_results", filters={column: "not-a-uuid"}) == []
        store._client.table.assert_not_called()

    def test_valid_uuid_is_queried(self, store, query):
        prompt_id = str(uuid4())
        store.select("prompts", filters={"id": prompt_id})
        query.eq.assert_called_once_with("id", prompt_id)

    def test_text_columns_are_not_checked(self, store, query):
        store.select("test_results", filters={"test_case_id": "case-1"})
        query.eq.assert_called_once_with("test_case_id", "case-1")


class TestUpdateIf:
    def test_applies_expected_filters(self, store, query):
        query.execute.return_value = MagicMock(data=[{"id": "p1", "name": "x"}])
        row = store.update_if("prompts", "p1", {"updated_at": "t0"}, {"name": "x"})
        assert row == {"id": "p1", "name": "x"}
        assert query.eq.call_args_list == [call("id", "p1"), call("updated_at", "t0")]

    def test_no_match_returns_none(self, store, query):
        assert store.update_if("prompts", "p1", {"updated_at": "t0"}, {"name": "x"}) is None
