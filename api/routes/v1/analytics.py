"""
api/routes/v1/analytics.py -- Read-only compliance, classification and query endpoints.

Routes:
  GET  /analytics/compliance-score   -- 0-100 score over all incidents
  GET  /analytics/vulnerabilities    -- vulnerability class summary
  GET  /analytics/patterns           -- top trigger / action keyword groups
  GET  /analytics/dashboard          -- headline cards, monthly trend, heatmap, high-risk units
  GET  /analytics/dataset            -- flattened rows the SQL queries run over
  GET  /analytics/queries            -- built-in sample queries
  POST /analytics/query              -- run ad-hoc SQL (fallback on failure)
  GET  /analytics/queries/{sample_id} -- run one sample query

No mutations here. The query evaluator lives on app.state.evaluator and is
None when SQL evaluation is disabled, in which case every query uses the
deterministic fallback.
"""

from datetime import date

from fastapi import APIRouter, HTTPException, Request

from api.limiter import limiter
from api.models import (
    ComplianceScoreResponse,
    DashboardResponse,
    ErrorDetail,
    PatternsResponse,
    QueryRequest,
    QueryResponse,
    SampleQueryRow,
    VulnerabilitiesResponse,
)
from core.analytics import (
    SAMPLE_QUERIES,
    build_sql_dataset,
    dashboard_summary,
    get_sample_query,
    high_risk_units,
    monthly_trend,
    run_sample_query,
    run_sql_query,
    unit_heatmap,
)
from core.classifier import aggregate_patterns, compliance_score, summarize_vulnerabilities
from incidents.repository import IncidentRepository

router = APIRouter()


@router.get("/analytics/compliance-score", response_model=ComplianceScoreResponse)
def get_compliance_score(request: Request) -> ComplianceScoreResponse:
    repo: IncidentRepository = request.app.state.repository
    incidents = repo.list_incidents()
    return ComplianceScoreResponse(score=compliance_score(incidents), incidents=len(incidents))


@router.get("/analytics/vulnerabilities", response_model=VulnerabilitiesResponse)
def get_vulnerabilities(request: Request) -> VulnerabilitiesResponse:
    repo: IncidentRepository = request.app.state.repository
    return VulnerabilitiesResponse.model_validate(summarize_vulnerabilities(repo.list_incidents()))


@router.get("/analytics/patterns", response_model=PatternsResponse)
def get_patterns(request: Request) -> PatternsResponse:
    repo: IncidentRepository = request.app.state.repository
    return PatternsResponse.model_validate(aggregate_patterns(repo.list_incidents()))


@router.get("/analytics/dashboard", response_model=DashboardResponse)
def get_dashboard(request: Request) -> DashboardResponse:
    """Return the aggregates behind the dashboard widgets.

    Response:
      summary          -- totals, last-30-day counts, trend and compliance score
      monthly_trend    -- last 6 months, oldest first, with severity breakdown
      heatmap          -- weighted risk per business unit
      high_risk_units  -- units scoring below 70, lowest first
    """
    repo: IncidentRepository = request.app.state.repository
    incidents = repo.list_incidents()
    units = repo.list_units()
    today = date.today()
    return DashboardResponse(
        summary=dashboard_summary(incidents, today),
        monthly_trend=monthly_trend(incidents, today),
        heatmap=unit_heatmap(incidents, units),
        high_risk_units=high_risk_units(incidents, units),
    )


@router.get("/analytics/dataset", response_model=list[dict])
def get_dataset(request: Request) -> list[dict]:
    repo: IncidentRepository = request.app.state.repository
    return build_sql_dataset(repo.list_incidents())


@router.get("/analytics/queries", response_model=list[SampleQueryRow])
def list_sample_queries() -> list[SampleQueryRow]:
    return [SampleQueryRow.model_validate(q) for q in SAMPLE_QUERIES]


@router.post("/analytics/query", response_model=QueryResponse)
@limiter.limit("30/minute")
def run_query(request: Request, body: QueryRequest) -> QueryResponse:
    """Run SQL over the incident dataset (table `incidents`, or `FROM ?`).

    A failing query is not an HTTP error: the response carries the fallback
    rows with used_fallback=true and the failure reason in error.
    """
    repo: IncidentRepository = request.app.state.repository
    dataset = build_sql_dataset(repo.list_incidents())
    result = run_sql_query(body.sql, dataset, body.sample_id, request.app.state.evaluator)
    return QueryResponse.model_validate(result)


@router.get("/analytics/queries/{sample_id}", response_model=QueryResponse)
def run_sample(request: Request, sample_id: str) -> QueryResponse:
    if get_sample_query(sample_id) is None:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(
                code="query_not_found",
                message="Unknown sample query.",
                detail=f"Expected one of: {', '.join(q.id for q in SAMPLE_QUERIES)}",
            ).model_dump(),
        )
    repo: IncidentRepository = request.app.state.repository
    dataset = build_sql_dataset(repo.list_incidents())
    return QueryResponse.model_validate(run_sample_query(sample_id, dataset, request.app.state.evaluator))
