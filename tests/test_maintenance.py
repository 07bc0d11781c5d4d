"""Tests for database maintenance and sample data seeding."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from conftest import make_outcome
from prompt_ops.core.aggregation import MetricsAggregator
from prompt_ops.core.maintenance import DatabaseMaintenance
from prompt_ops.core.recorder import TestResultRecorder
from prompt_ops.db.seed import SAMPLE_PROMPTS, seed_sample_data

T0 = datetime(2024, 3, 4, 10, 30, tzinfo=timezone.utc)


def _legacy_prompt(**overrides):
    row = {
        "name": "legacy",
        "agent_type": "generator",
        "diagram_type": ["sequence"],
        "operation": "generation",
        "environments": ["development"],
        "tags": [],
        "metadata": {},
        "archived": False,
        "versions": [
            {
                "version": "1.0.0",
                "template": "Old {{x}}",
                "changelog": "init",
                "created_at": "2024-01-01T00:00:00Z",
            },
            {
                "version": "1.1.0",
                "template": "New {{x}}",
                "changelog": "tweak",
                "created_at": "2024-02-01T00:00:00Z",
            },
        ],
    }
    row.update(overrides)
    return row


class TestInitAndReset:
    def test_init_empty(self, mock_db):
        report = DatabaseMaintenance(mock_db).init()
        assert report.cancelled is False
        assert mock_db.index_calls == 1

    def test_init_cancelled_with_data(self, mock_db, sample_prompt):
        report = DatabaseMaintenance(mock_db).init(confirm=lambda counts: False)
        assert report.cancelled is True
        assert mock_db.count("prompts") == 1
        assert mock_db.index_calls == 0

    def test_init_confirmed_clears(self, mock_db, sample_prompt):
        seen = {}

        def confirm(counts):
            seen.update(counts)
            return True

        report = DatabaseMaintenance(mock_db).init(confirm=confirm)
        assert seen["prompts"] == 1
        assert report.counts["prompts_deleted"] == 1
        assert mock_db.count("prompts") == 0

    def test_reset(self, mock_db, sample_prompt):
        TestResultRecorder(mock_db).record("c", sample_prompt["id"], "1.0.0", make_outcome())
        report = DatabaseMaintenance(mock_db).reset()
        assert report.counts["testResults_deleted"] == 1
        assert DatabaseMaintenance(mock_db).counts() == {
            "prompts": 0,
            "testCases": 0,
            "testResults": 0,
            "promptMetrics": 0,
        }
        assert mock_db.index_calls == 1


class TestMigrate:
    def test_current_version_wins(self, mock_db):
        row = mock_db.insert("prompts", _legacy_prompt(current_version="1.0.0"))
        report = DatabaseMaintenance(mock_db).migrate()
        assert report.counts == {"updated": 1, "skipped": 0, "errored": 0}
        assert mock_db.select("prompts", filters={"id": row["id"]})[0]["primary_version"] == "1.0.0"

    def test_active_flag(self, mock_db):
        prompt = _legacy_prompt()
        prompt["versions"][0]["isActive"] = True
        row = mock_db.insert("prompts", prompt)
        DatabaseMaintenance(mock_db).migrate()
        assert mock_db.select("prompts", filters={"id": row["id"]})[0]["primary_version"] == "1.0.0"

    def test_newest_version_fallback(self, mock_db):
        row = mock_db.insert("prompts", _legacy_prompt())
        DatabaseMaintenance(mock_db).migrate()
        assert mock_db.select("prompts", filters={"id": row["id"]})[0]["primary_version"] == "1.1.0"

    def test_dry_run(self, mock_db):
        row = mock_db.insert("prompts", _legacy_prompt())
        report = DatabaseMaintenance(mock_db).migrate(dry_run=True)
        assert report.counts["updated"] == 1
        assert "primary_version" not in mock_db.select("prompts", filters={"id": row["id"]})[0]

    def test_consistent_rows_skipped(self, mock_db, sample_prompt):
        report = DatabaseMaintenance(mock_db).migrate()
        assert report.counts == {"updated": 0, "skipped": 1, "errored": 0}

    def test_no_versions_errored(self, mock_db):
        mock_db.insert("prompts", _legacy_prompt(versions=[]))
        report = DatabaseMaintenance(mock_db).migrate()
        assert report.counts["errored"] == 1
        assert report.errors


class TestValidate:
    def test_clean_database(self, mock_db, sample_prompt):
        TestResultRecorder(mock_db).record(
            "c", sample_prompt["id"], "1.0.0", make_outcome(timestamp=T0)
        )
        MetricsAggregator(mock_db).rollup("day", T0)
        report = DatabaseMaintenance(mock_db).validate()
        assert report.is_valid
        assert report.warnings == 0
        assert report.totals["promptMetrics"] == 1

    def test_inconsistent_primary(self, mock_db):
        mock_db.insert("prompts", _legacy_prompt(primary_version="9.0.0"))
        report = DatabaseMaintenance(mock_db).validate()
        assert not report.is_valid
        assert report.issues[0].collection == "prompts"

    def test_duplicate_names(self, mock_db):
        mock_db.insert("prompts", _legacy_prompt(primary_version="1.0.0"))
        mock_db.insert("prompts", _legacy_prompt(primary_version="1.0.0"))
        report = DatabaseMaintenance(mock_db).validate()
        assert any("Duplicate prompt name" in i.issue for i in report.issues)

    def test_template_without_placeholders_warns(self, mock_db):
        prompt = _legacy_prompt(primary_version="1.0.0")
        prompt["versions"][0]["template"] = "No variables here"
        mock_db.insert("prompts", prompt)
        report = DatabaseMaintenance(mock_db).validate()
        assert report.is_valid
        assert report.warnings == 1

    def test_orphaned_test_case(self, mock_db):
        gone = str(uuid4())
        mock_db.insert(
            "test_cases",
            {"prompt_id": gone, "name": "orphan", "assertions": [{"type": "contains"}]},
        )
        report = DatabaseMaintenance(mock_db).validate()
        assert report.errors == 1
        assert gone in report.issues[0].issue

    def test_malformed_test_case_prompt_id(self, mock_db):
        mock_db.insert(
            "test_cases",
            {"prompt_id": "gone", "name": "orphan", "assertions": [{"type": "contains"}]},
        )
        report = DatabaseMaintenance(mock_db).validate()
        assert report.errors == 1
        assert "prompt_id" in report.issues[0].issue

    def test_orphaned_result_warns(self, mock_db):
        mock_db.insert("test_results", {"prompt_id": "gone", "prompt_version": "1.0.0"})
        report = DatabaseMaintenance(mock_db).validate()
        assert report.is_valid
        assert report.warnings == 1

    def test_bad_metrics_and_duplicate_keys(self, mock_db, sample_prompt):
        bucket = {
            "prompt_id": sample_prompt["id"],
            "prompt_version": "1.0.0",
            "period": "day",
            "timestamp": "2024-03-04T00:00:00Z",
            "environment": "development",
            "metrics": {
                "total_requests": 2,
                "successful_requests": 2,
                "failed_requests": 1,
                "average_latency_ms": 1,
                "average_score": 1,
                "total_tokens_used": 1,
                "total_cost": 0,
                "p95_latency_ms": 1,
                "p99_latency_ms": 1,
            },
        }
        mock_db.insert("prompt_metrics", bucket)
        mock_db.insert("prompt_metrics", {**bucket, "timestamp": "2024-03-04T00:00:00+00:00"})
        report = DatabaseMaintenance(mock_db).validate()
        # Two snapshot failures plus one shared natural key
        assert report.errors == 3
        assert report.to_dict()["is_valid"] is False


class TestSeed:
    def test_seed_creates_samples(self, mock_db):
        report = seed_sample_data(mock_db, results_per_case=4)
        assert report.counts == {"created": len(SAMPLE_PROMPTS), "skipped": 0, "errored": 0}
        assert mock_db.count("test_cases") == len(SAMPLE_PROMPTS)
        assert mock_db.count("test_results") == 4 * len(SAMPLE_PROMPTS)
        assert DatabaseMaintenance(mock_db).validate().is_valid

    def test_seed_is_rerunnable(self, mock_db):
        seed_sample_data(mock_db, results_per_case=1)
        report = seed_sample_data(mock_db, results_per_case=1)
        assert report.counts["skipped"] == len(SAMPLE_PROMPTS)
        assert mock_db.count("prompts") == len(SAMPLE_PROMPTS)

    @pytest.mark.parametrize("results", [0, 3])
    def test_seeded_results_aggregate(self, mock_db, results):
        seed_sample_data(mock_db, results_per_case=results)
        prompt = mock_db.select("prompts", filters={"name": "sequence-generator"})[0]
        raw = TestResultRecorder(mock_db).aggregate_raw(prompt["id"])
        assert raw["total_requests"] == results
