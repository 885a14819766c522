"""Unit tests for core/analytics.py -- datasets, SQL evaluation, fallbacks and dashboard aggregates.

Covers:
- build_sql_dataset() row shape and numeric coercion
- SqliteEvaluator placeholder binding and read-only guard
- run_sql_query() fallback paths (no evaluator, failing evaluator)
- Fallback equivalence with the SQL sample queries on the seed set
- Dashboard summary, monthly trend, unit heatmap and high-risk units
"""

from datetime import date

import pytest

from core.analytics import (
    DATASET_COLUMNS,
    SAMPLE_QUERIES,
    SqliteEvaluator,
    build_analytics_snapshot,
    build_sql_dataset,
    dashboard_summary,
    default_evaluator,
    fallback_results,
    get_sample_query,
    high_risk_units,
    monthly_trend,
    run_sample_query,
    run_sql_query,
    unit_heatmap,
)
from core.models import BUSINESS_UNITS, Incident
from tests.conftest import TODAY


@pytest.fixture
def dataset(repo):
    return build_sql_dataset(repo.list_incidents())


def _by(rows, key):
    return sorted(rows, key=lambda r: r[key])


# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------


class TestBuildSqlDataset:
    def test_columns(self, dataset):
        assert len(dataset) == 6
        assert list(dataset[0]) == list(DATASET_COLUMNS)

    def test_values(self, dataset):
        row = next(r for r in dataset if r["incident_id"] == "INC-2025-001")
        assert row["response_time_hours"] == 360
        assert row["pdpc_required"] is True
        assert row["pdpc_notified"] is False
        assert row["dpo_guidance"] is True
        assert row["resolved_date"] is None

    def test_missing_response_time_becomes_zero(self):
        rows = build_sql_dataset([Incident(id="x", incident_id="INC-2025-009")])
        assert rows[0]["response_time_hours"] == 0
        assert rows[0]["affected_records"] == 0


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class TestSqliteEvaluator:
    def test_placeholder_and_table_name_are_equivalent(self, dataset):
        evaluate = SqliteEvaluator()
        a = evaluate("SELECT COUNT(*) AS n FROM ?", [dataset])
        b = evaluate("SELECT COUNT(*) AS n FROM incidents", [dataset])
        assert a == b == [{"n": 6}]

    def test_empty_dataset(self):
        assert SqliteEvaluator()("SELECT COUNT(*) AS n FROM ?", [[]]) == [{"n": 0}]

    def test_second_dataset_is_bound_in_order(self, dataset):
        units = [{"business_unit": "IT Services", "owner": "Ops"}]
        rows = SqliteEvaluator()(
            "SELECT i.incident_id, u.owner FROM ? AS i JOIN ? AS u ON u.business_unit = i.business_unit",
            [dataset, units],
        )
        assert rows == [{"incident_id": "INC-2025-001", "owner": "Ops"}]

    def test_too_many_placeholders(self, dataset):
        with pytest.raises(ValueError):
            SqliteEvaluator()("SELECT * FROM ? JOIN ? ON 1 = 1", [dataset])

    @pytest.mark.parametrize(
        "sql",
        [
            "DELETE FROM incidents",
            "ATTACH DATABASE 'x.db' AS x",
            "PRAGMA table_info(incidents)",
            "DROP TABLE incidents",
        ],
    )
    def test_non_select_rejected(self, dataset, sql):
        with pytest.raises(ValueError, match="Only SELECT"):
            SqliteEvaluator()(sql, [dataset])

    def test_with_clause_allowed(self, dataset):
        rows = SqliteEvaluator()(
            "WITH open AS (SELECT * FROM incidents WHERE status <> 'RESOLVED') SELECT COUNT(*) AS n FROM open",
            [dataset],
        )
        assert rows == [{"n": 4}]

    def test_default_evaluator(self):
        assert isinstance(default_evaluator(True), SqliteEvaluator)
        assert default_evaluator(False) is None


# ---------------------------------------------------------------------------
# Query runner and fallbacks
# ---------------------------------------------------------------------------


class TestRunSqlQuery:
    def test_no_evaluator_uses_fallback_without_error(self, dataset):
        sample = get_sample_query("throughput")
        result = run_sql_query(sample.sql, dataset, "throughput", None)
        assert result.used_fallback
        assert result.error is None
        assert result.rows == fallback_results("throughput", dataset)

    def test_failing_evaluator_reports_error(self, dataset):
        def broken(query_text, datasets):
            raise RuntimeError("engine offline")

        result = run_sql_query("SELECT 1", dataset, "coverage", broken)
        assert result.used_fallback
        assert result.error == "engine offline"
        assert result.rows == fallback_results("coverage", dataset)

    def test_invalid_sql_falls_back(self, dataset):
        result = run_sql_query("SELEKT nonsense", dataset, None, SqliteEvaluator())
        assert result.used_fallback
        assert result.error
        assert result.rows == dataset

    def test_success(self, dataset):
        result = run_sql_query("SELECT incident_id FROM ? LIMIT 1", dataset, None, SqliteEvaluator())
        assert not result.used_fallback
        assert len(result.rows) == 1

    def test_unknown_sample_fallback_is_first_rows(self):
        rows = [{"n": n} for n in range(40)]
        assert fallback_results("mystery", rows) == rows[:25]

    def test_unknown_sample_id(self, dataset):
        result = run_sample_query("mystery", dataset, SqliteEvaluator())
        assert result.rows == []
        assert not result.used_fallback

    def test_analytics_snapshot_has_every_sample(self, repo):
        snapshot = build_analytics_snapshot(repo.list_incidents(), None)
        assert set(snapshot) == {q.id for q in SAMPLE_QUERIES}


class TestFallbackEquivalence:
    """The fallbacks must produce the same rows as the SQL sample queries."""

    def test_coverage(self, dataset):
        sql = run_sample_query("coverage", dataset, SqliteEvaluator())
        assert not sql.used_fallback
        assert _by(sql.rows, "unit") == _by(fallback_results("coverage", dataset), "unit")

    def test_throughput(self, dataset):
        sql = run_sample_query("throughput", dataset, SqliteEvaluator())
        fallback = _by(fallback_results("throughput", dataset), "severity")
        assert _by(sql.rows, "severity") == fallback
        assert fallback == [
            {"severity": "CRITICAL", "incidents": 2, "open_cases": 2, "avg_response_hours": 360},
            {"severity": "HIGH", "incidents": 2, "open_cases": 2, "avg_response_hours": 240},
            {"severity": "MEDIUM", "incidents": 2, "open_cases": 0, "avg_response_hours": 60},
        ]

    def test_audit_trail_order(self, dataset):
        sql = run_sample_query("auditTrail", dataset, SqliteEvaluator())
        fallback = fallback_results("auditTrail", dataset)
        assert [r["incident_id"] for r in sql.rows] == [r["incident_id"] for r in fallback]
        assert fallback[0]["incident_id"] == "INC-2025-005"

    def test_null_unit_reported_as_unknown(self):
        rows = [{"business_unit": None, "response_time_hours": 10}]
        assert fallback_results("coverage", rows)[0]["unit"] == "Unknown"

    def test_half_averages_round_up(self):
        times = [1, 0, 0, 0, 0, 0, 0, 0]
        incidents = [
            Incident(id=f"{n}", incident_id=f"INC-2025-{n:03d}", business_unit="Finance", response_time_hours=h)
            for n, h in enumerate(times, 1)
        ]
        rows = build_sql_dataset(incidents)
        sql = run_sample_query("coverage", rows, SqliteEvaluator())
        fallback = fallback_results("coverage", rows)
        assert sql.rows[0]["avg_response_hours"] == 0.13
        assert fallback[0]["avg_response_hours"] == 0.13


# ---------------------------------------------------------------------------
# Dashboard aggregates
# ---------------------------------------------------------------------------


class TestDashboard:
    def test_summary(self, repo):
        summary = dashboard_summary(repo.list_incidents(), TODAY)
        assert summary == {
            "total_incidents": 6,
            "last_30_days": 5,
            "critical_last_30_days": 2,
            "avg_response_hours_last_30_days": 249.6,
            "resolved_pct": 33,
            "open_alerts": 4,
            "trend": 4,
            "compliance_score": 22,
        }

    def test_summary_empty(self):
        summary = dashboard_summary([], TODAY)
        assert summary["resolved_pct"] == 0
        assert summary["avg_response_hours_last_30_days"] is None
        assert summary["compliance_score"] == 100

    def test_monthly_trend(self, repo):
        trend = monthly_trend(repo.list_incidents(), TODAY)
        assert [b["key"] for b in trend] == ["2025-07", "2025-08", "2025-09", "2025-10", "2025-11", "2025-12"]
        december = trend[-1]
        assert december["month"] == "Dec"
        assert december["total"] == 4
        assert (december["CRITICAL"], december["HIGH"], december["MEDIUM"]) == (1, 2, 1)
        assert trend[-2]["total"] == 1
        assert trend[-3]["total"] == 1

    def test_monthly_trend_wraps_year(self):
        trend = monthly_trend([], date(2026, 2, 1))
        assert trend[0]["key"] == "2025-09"
        assert trend[-1]["key"] == "2026-02"

    def test_heatmap(self, repo):
        heat = {h["unit"]: h for h in unit_heatmap(repo.list_incidents(), BUSINESS_UNITS)}
        assert len(heat) == 6
        assert heat["School of Business"]["score"] == 6
        assert heat["School of Business"]["fill"] == 100
        assert heat["Administration"]["score"] == 2
        assert heat["Administration"]["fill"] == 33
        assert heat["IT Services"]["top_severity"] == "HIGH"

    def test_heatmap_fill_floor(self):
        incidents = [
            Incident(id=f"{n}", incident_id=f"C{n}", business_unit="Big", severity="CRITICAL") for n in range(20)
        ]
        incidents.append(Incident(id="s", incident_id="S", business_unit="Small", severity="LOW", status="RESOLVED"))
        heat = {h["unit"]: h for h in unit_heatmap(incidents, ["Big", "Small"])}
        assert heat["Small"]["fill"] == 8

    def test_high_risk_units(self, repo):
        assert high_risk_units(repo.list_incidents(), BUSINESS_UNITS) == []
        incidents = [
            Incident(
                id=f"{n}",
                incident_id=f"INC-2025-{n:03d}",
                business_unit="Finance",
                severity="CRITICAL",
                pdpc_notification_required=True,
            )
            for n in (1, 2)
        ]
        rows = high_risk_units(incidents, ["Finance", "Human Resources"])
        assert rows == [{"unit": "Finance", "score": 56, "incidents": 2, "most_recent": "INC-2025-001"}]
