"""
analytics.py -- Tabular queries and dashboard aggregates over the incident set.

Incidents are flattened into primitive rows (build_sql_dataset) and queried
with SQL through a pluggable evaluator. The evaluator boundary is any callable
taking (query_text, [dataset, ...]) and returning a list of row dicts, raising
on failure. SqliteEvaluator is the built-in implementation: it materializes
each dataset into a throwaway in-memory SQLite database via SQLAlchemy.

When no evaluator is configured, or the evaluator raises, run_sql_query
returns the deterministic fallback for the requested sample instead. The
fallbacks reproduce the named sample queries exactly so audit reports look
the same either way.
"""

import calendar
import logging
import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional

from sqlalchemy import Boolean, Column, Float, Integer, MetaData, Table, Text, create_engine

from .classifier import compliance_score, round_half_up
from .models import Incident

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Evaluator = Callable[[str, list[list[Row]]], list[Row]]

# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------

# Column order and SQL type of every flattened row. Used to create the table
# when a dataset is empty and there is no row to infer columns from.
DATASET_COLUMNS: dict[str, type] = {
    "response_time_hours": Float,
    "incident_id": Text,
    "business_unit": Text,
    "breach_type": Text,
    "root_cause": Text,
    "severity": Text,
    "status": Text,
    "pdpc_required": Boolean,
    "pdpc_notified": Boolean,
    "dpo_guidance": Boolean,
    "discovered_date": Text,
    "resolved_date": Text,
    "affected_records": Integer,
}

_GENERIC_LIMIT = 25
_AUDIT_TRAIL_LIMIT = 50


def _as_number(value: Any) -> float:
    """Coerce value to a finite number, returning 0 when it is not numeric.

    Integers stay integers so row values compare cleanly with SQL output.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(number) if number.is_integer() else number


def build_sql_dataset(incidents: list[Incident]) -> list[Row]:
    """Flatten incidents into rows of primitive values for tabular queries."""
    return [
        {
            "response_time_hours": _as_number(i.response_time_hours),
            "incident_id": i.incident_id,
            "business_unit": i.business_unit,
            "breach_type": i.breach_type,
            "root_cause": i.root_cause,
            "severity": i.severity,
            "status": i.status,
            "pdpc_required": bool(i.pdpc_notification_required),
            "pdpc_notified": bool(i.pdpc_notified),
            "dpo_guidance": bool(i.dpo_guidance_issued),
            "discovered_date": i.discovered_date,
            "resolved_date": i.resolved_date or None,
            "affected_records": _as_number(i.affected_records),
        }
        for i in incidents
    ]


# ---------------------------------------------------------------------------
# Sample queries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SampleQuery:
    id: str
    title: str
    label: str
    sql: str


SAMPLE_QUERIES: tuple[SampleQuery, ...] = (
    SampleQuery(
        id="coverage",
        title="PDPC coverage by business unit",
        label="Coverage",
        sql="""SELECT business_unit AS unit,
       COUNT(*) AS incidents,
       SUM(CASE WHEN pdpc_required THEN 1 ELSE 0 END) AS pdpc_required,
       SUM(CASE WHEN pdpc_notified THEN 1 ELSE 0 END) AS pdpc_notified,
       ROUND(AVG(response_time_hours), 2) AS avg_response_hours
FROM ?
GROUP BY business_unit
ORDER BY incidents DESC;""",
    ),
    SampleQuery(
        id="throughput",
        title="Response throughput by severity",
        label="Throughput",
        sql="""SELECT severity,
       COUNT(*) AS incidents,
       SUM(CASE WHEN status <> 'RESOLVED' THEN 1 ELSE 0 END) AS open_cases,
       ROUND(AVG(response_time_hours), 2) AS avg_response_hours
FROM ?
GROUP BY severity
ORDER BY incidents DESC;""",
    ),
    SampleQuery(
        id="auditTrail",
        title="Audit trail snapshot",
        label="Audit Trail",
        sql="""SELECT incident_id,
       breach_type,
       root_cause,
       status,
       pdpc_required,
       pdpc_notified,
       dpo_guidance,
       response_time_hours,
       discovered_date,
       resolved_date
FROM ?
ORDER BY discovered_date DESC
LIMIT 50;""",
    ),
)


def get_sample_query(sample_id: str) -> Optional[SampleQuery]:
    return next((q for q in SAMPLE_QUERIES if q.id == sample_id), None)


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

_TABLE_PLACEHOLDER_RE = re.compile(r"\b(FROM|JOIN)\s+\?", re.IGNORECASE)
_READ_ONLY_RE = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)


def _sql_type(value: Any) -> type:
    if isinstance(value, bool):
        return Boolean
    if isinstance(value, int):
        return Integer
    if isinstance(value, float):
        return Float
    return Text


def _infer_columns(rows: list[Row]) -> dict[str, type]:
    """Column name -> SQL type, typed by the first non-null value seen."""
    columns: dict[str, type] = {}
    typed: set[str] = set()
    for row in rows:
        for name, value in row.items():
            if name in typed:
                continue
            if value is None:
                columns.setdefault(name, DATASET_COLUMNS.get(name, Text))
                continue
            columns[name] = _sql_type(value)
            typed.add(name)
    return columns


class SqliteEvaluator:
    """Run SQL against in-memory datasets using a disposable SQLite database.

    The first dataset is loaded as table "incidents", later ones as
    "dataset_1", "dataset_2", ... Each "FROM ?" / "JOIN ?" placeholder is
    bound to the next table in order, so queries written for the sample
    format and queries naming the table directly both work.

    Only SELECT (or WITH ... SELECT) statements are accepted; anything else
    raises ValueError.
    Raises whatever SQLAlchemy / sqlite3 raises for invalid SQL; the caller
    (run_sql_query) turns that into a fallback.
    """

    def __call__(self, query_text: str, datasets: list[list[Row]]) -> list[Row]:
        if not _READ_ONLY_RE.match(query_text):
            raise ValueError("Only SELECT queries are supported.")
        metadata = MetaData()
        tables: list[Table] = []
        for idx, rows in enumerate(datasets):
            name = "incidents" if idx == 0 else f"dataset_{idx}"
            columns = _infer_columns(rows) or dict(DATASET_COLUMNS)
            tables.append(Table(name, metadata, *(Column(col, typ) for col, typ in columns.items())))

        names = iter(t.name for t in tables)

        def _bind(match: re.Match) -> str:
            try:
                return f"{match.group(1)} {next(names)}"
            except StopIteration:
                raise ValueError("Query references more datasets than were supplied.") from None

        sql = _TABLE_PLACEHOLDER_RE.sub(_bind, query_text)

        engine = create_engine("sqlite://")
        try:
            metadata.create_all(engine)
            with engine.connect() as conn:
                for table, rows in zip(tables, datasets):
                    if rows:
                        keys = table.c.keys()
                        conn.execute(table.insert(), [{k: row.get(k) for k in keys} for row in rows])
                # exec_driver_sql: no bind-parameter parsing of user SQL.
                result = conn.exec_driver_sql(sql)
                if not result.returns_rows:
                    return []
                return [dict(row._mapping) for row in result]
        finally:
            engine.dispose()


def default_evaluator(enabled: bool = True) -> Optional[Evaluator]:
    """Return the built-in evaluator, or None when SQL evaluation is disabled."""
    return SqliteEvaluator() if enabled else None


# ---------------------------------------------------------------------------
# Fallbacks
# ---------------------------------------------------------------------------


def _group_by(rows: list[Row], key: str) -> dict[str, list[Row]]:
    grouped: dict[str, list[Row]] = {}
    for row in rows:
        value = row.get(key)
        grouped.setdefault("Unknown" if value is None else value, []).append(row)
    return grouped


def _mean_response(rows: list[Row]) -> float:
    if not rows:
        return 0
    total = sum(_as_number(r.get("response_time_hours")) for r in rows)
    return round_half_up(total / len(rows), 2)


def fallback_results(sample_id: Optional[str], dataset: list[Row]) -> list[Row]:
    """Deterministic equivalents of the sample queries.

    Unknown sample ids return the first 25 rows unchanged.
    """
    if sample_id == "coverage":
        rows = [
            {
                "unit": unit,
                "incidents": len(group),
                "pdpc_required": sum(1 for r in group if r.get("pdpc_required")),
                "pdpc_notified": sum(1 for r in group if r.get("pdpc_notified")),
                "avg_response_hours": _mean_response(group),
            }
            for unit, group in _group_by(dataset, "business_unit").items()
        ]
        return sorted(rows, key=lambda r: r["incidents"], reverse=True)
    if sample_id == "throughput":
        rows = [
            {
                "severity": severity,
                "incidents": len(group),
                "open_cases": sum(1 for r in group if r.get("status") != "RESOLVED"),
                "avg_response_hours": _mean_response(group),
            }
            for severity, group in _group_by(dataset, "severity").items()
        ]
        return sorted(rows, key=lambda r: r["incidents"], reverse=True)
    if sample_id == "auditTrail":
        ordered = sorted(dataset, key=lambda r: r.get("discovered_date") or "", reverse=True)
        return ordered[:_AUDIT_TRAIL_LIMIT]
    return list(dataset[:_GENERIC_LIMIT])


# ---------------------------------------------------------------------------
# Query runner
# ---------------------------------------------------------------------------


@dataclass
class QueryResult:
    rows: list[Row]
    used_fallback: bool
    error: Optional[str] = None


def run_sql_query(
    query_text: str,
    dataset: list[Row],
    sample_id: Optional[str] = None,
    evaluator: Optional[Evaluator] = None,
) -> QueryResult:
    """Run query_text against dataset, falling back to the sample_id aggregation.

    A missing evaluator is a supported condition: the fallback is returned
    with error=None. An evaluator failure is logged and its message attached
    to the result; it is never re-raised.
    """
    if evaluator is None:
        return QueryResult(rows=fallback_results(sample_id, dataset), used_fallback=True)
    try:
        rows = evaluator(query_text, [dataset])
    except Exception as exc:
        logger.warning("SQL query failed, using fallback for %r: %s", sample_id, exc)
        return QueryResult(rows=fallback_results(sample_id, dataset), used_fallback=True, error=str(exc))
    return QueryResult(rows=list(rows), used_fallback=False)


def run_sample_query(sample_id: str, dataset: list[Row], evaluator: Optional[Evaluator] = None) -> QueryResult:
    """Run one of SAMPLE_QUERIES by id. Unknown ids yield an empty, non-fallback result."""
    sample = get_sample_query(sample_id)
    if sample is None:
        return QueryResult(rows=[], used_fallback=False)
    return run_sql_query(sample.sql, dataset, sample_id, evaluator)


def build_analytics_snapshot(incidents: list[Incident], evaluator: Optional[Evaluator] = None) -> dict[str, list[Row]]:
    """Return the rows of every sample query, keyed by sample id."""
    dataset = build_sql_dataset(incidents)
    return {q.id: run_sample_query(q.id, dataset, evaluator).rows for q in SAMPLE_QUERIES}


# ---------------------------------------------------------------------------
# Dashboard aggregates
# ---------------------------------------------------------------------------

_HEAT_WEIGHTS: dict[str, int] = {"CRITICAL": 5, "HIGH": 3, "MEDIUM": 2, "LOW": 1}
_HIGH_RISK_THRESHOLD = 70


def _days_since(iso_date: Optional[str], today: date) -> Optional[int]:
    """Whole days from iso_date to today, floored at 0. None when unparseable."""
    if not iso_date:
        return None
    try:
        start = date.fromisoformat(iso_date)
    except ValueError:
        return None
    return max(0, (today - start).days)


def average_response(incidents: list[Incident]) -> Optional[float]:
    """Mean response time in hours (1 decimal) over incidents with a non-zero value."""
    timed = [i.response_time_hours for i in incidents if i.response_time_hours]
    if not timed:
        return None
    return round_half_up(sum(timed) / len(timed), 1)


def trend_value(incidents: list[Incident], today: date) -> int:
    """Incidents discovered in the last 30 days minus those in the 30 days before."""
    recent = previous = 0
    for incident in incidents:
        days = _days_since(incident.discovered_date, today)
        if days is None:
            continue
        if days <= 30:
            recent += 1
        elif days <= 60:
            previous += 1
    return recent - previous


def monthly_trend(incidents: list[Incident], today: date, months: int = 6) -> list[dict]:
    """Per-month totals and severity breakdown for the last `months` months, oldest first."""
    buckets: list[dict] = []
    for offset in range(months - 1, -1, -1):
        year, month = today.year, today.month - offset
        while month <= 0:
            month += 12
            year -= 1
        buckets.append(
            {
                "key": f"{year}-{month:02d}",
                "month": calendar.month_abbr[month],
                "total": 0,
                "CRITICAL": 0,
                "HIGH": 0,
                "MEDIUM": 0,
                "LOW": 0,
            }
        )
    by_key = {b["key"]: b for b in buckets}
    for incident in incidents:
        bucket = by_key.get((incident.discovered_date or "")[:7])
        if bucket is None:
            continue
        bucket["total"] += 1
        if incident.severity in _HEAT_WEIGHTS:
            bucket[incident.severity] += 1
    return buckets


def unit_heatmap(incidents: list[Incident], units: list[str]) -> list[dict]:
    """Weighted risk per business unit, skipping units with no incidents.

    fill is the score as a percentage of the highest unit score, never below 8
    so that low-risk units stay visible.
    """
    mapped = []
    for unit in units:
        unit_incidents = [i for i in incidents if i.business_unit == unit]
        if not unit_incidents:
            continue
        open_count = sum(1 for i in unit_incidents if i.status != "RESOLVED")
        score = sum(_HEAT_WEIGHTS.get(i.severity, 1) for i in unit_incidents) + open_count
        top = next((s for s in _HEAT_WEIGHTS if any(i.severity == s for i in unit_incidents)), "LOW")
        mapped.append(
            {
                "unit": unit,
                "count": len(unit_incidents),
                "score": score,
                "open": open_count,
                "top_severity": top,
                "most_recent": unit_incidents[0].incident_id,
            }
        )
    max_score = max([1] + [m["score"] for m in mapped])
    for m in mapped:
        m["fill"] = max(8, round_half_up(m["score"] / max_score * 100))
    return mapped


def high_risk_units(incidents: list[Incident], units: list[str]) -> list[dict]:
    """Units whose own compliance score is below 70, lowest score first."""
    rows = []
    for unit in units:
        unit_incidents = [i for i in incidents if i.business_unit == unit]
        score = compliance_score(unit_incidents)
        if score < _HIGH_RISK_THRESHOLD:
            rows.append(
                {
                    "unit": unit,
                    "score": score,
                    "incidents": len(unit_incidents),
                    "most_recent": unit_incidents[0].incident_id if unit_incidents else None,
                }
            )
    return sorted(rows, key=lambda r: r["score"])


def dashboard_summary(incidents: list[Incident], today: date) -> dict:
    """Headline numbers for the dashboard cards."""
    last30 = []
    for incident in incidents:
        days = _days_since(incident.discovered_date, today)
        if days is not None and days <= 30:
            last30.append(incident)
    resolved = sum(1 for i in incidents if i.status == "RESOLVED")
    return {
        "total_incidents": len(incidents),
        "last_30_days": len(last30),
        "critical_last_30_days": sum(1 for i in last30 if i.severity == "CRITICAL"),
        "avg_response_hours_last_30_days": average_response(last30),
        "resolved_pct": round_half_up(resolved / len(incidents) * 100) if incidents else 0,
        "open_alerts": sum(1 for i in incidents if i.severity in ("CRITICAL", "HIGH") and i.status != "RESOLVED"),
        "trend": trend_value(incidents, today),
        "compliance_score": compliance_score(incidents),
    }
