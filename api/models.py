"""
API request and response models for BreachTracker REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
Request models validate shape and enumerations at the boundary; the repository
still enforces the cross-field rules (reviewer for UNDER_REVIEW, close-out
narratives on resolve) and raises ValueError, which api/main.py maps to 422.
"""

from dataclasses import asdict
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.classifier import classify_vulnerability, pdpc_risk
from core.models import Incident

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SeverityEnum(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class StatusEnum(str, Enum):
    DETECTED = "DETECTED"
    INVESTIGATING = "INVESTIGATING"
    CONTAINED = "CONTAINED"
    RESOLVED = "RESOLVED"


class PdpcStatusEnum(str, Enum):
    YES = "YES"
    NO = "NO"
    UNDER_REVIEW = "UNDER_REVIEW"


# ---------------------------------------------------------------------------
# Nested value models
# ---------------------------------------------------------------------------


class LogEntryModel(BaseModel):
    date: str
    text: str
    person: str = ""


class AttachmentModel(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    url: Optional[str] = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Incident request models
# ---------------------------------------------------------------------------


class IncidentPayload(BaseModel):
    """Editable incident fields. Every field is optional.

    Handlers dump with exclude_unset=True so only the fields the client sent
    reach the repository. Unknown fields are rejected (extra="forbid"), as are
    the derived response_time_hours and the identity fields.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    incident_date: Optional[str] = None
    discovered_date: Optional[str] = None
    reported_date: Optional[str] = None
    resolved_date: Optional[str] = None
    breach_type: Optional[str] = Field(default=None, max_length=255)
    root_cause: Optional[str] = Field(default=None, max_length=255)
    severity: Optional[SeverityEnum] = None
    affected_records: Optional[int] = Field(default=None, ge=0)
    data_types: Optional[list[str]] = None
    business_unit: Optional[str] = Field(default=None, max_length=255)
    status: Optional[StatusEnum] = None
    description: Optional[str] = None
    remediation_actions: Optional[str] = None
    remediation_actions_list: Optional[list[str]] = None
    lessons_learned: Optional[str] = None
    preventive_measures: Optional[str] = None
    improvements: Optional[str] = None
    follow_up_actions: Optional[list[str]] = None
    detection_method: Optional[str] = None
    immediate_actions: Optional[str] = None
    pdpc_notification_required: Optional[bool] = None
    pdpc_status: Optional[PdpcStatusEnum] = None
    pdpc_review_person: Optional[str] = None
    pdpc_notified: Optional[bool] = None
    pdpc_notified_date: Optional[str] = None
    pdpc_notified_person: Optional[str] = None
    dpo_guidance_issued: Optional[bool] = None
    dpo_notified_date: Optional[str] = None
    dpo_notified_person: Optional[str] = None
    created_by: Optional[str] = Field(default=None, max_length=255)
    attachments: Optional[list[AttachmentModel]] = None
    timeline: Optional[list[LogEntryModel]] = None
    activities: Optional[list[LogEntryModel]] = None
    notes: Optional[list[LogEntryModel]] = None
    compliance_history: Optional[list[LogEntryModel]] = None

    def to_payload(self) -> dict[str, Any]:
        """Only the fields the client actually sent, enums as plain strings."""
        return self.model_dump(exclude_unset=True, mode="json")


class IncidentCreate(IncidentPayload):
    """Request body for POST /api/v1/incidents and POST /api/v1/drafts.

    Omitted severity is inferred from affected_records and data_types.
    status is ignored for drafts.
    """


class IncidentUpdate(IncidentPayload):
    """Request body for PATCH /api/v1/incidents/{id}."""


class TextEntry(BaseModel):
    """Request body for notes, activities, follow-ups and remediation actions."""

    model_config = ConfigDict(str_strip_whitespace=True)

    text: str = Field(min_length=1, max_length=5000)


class TimelineEntryCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    date: Optional[str] = None  # defaults to today
    text: str = Field(min_length=1, max_length=5000)


class ResolveRequest(BaseModel):
    """Request body for POST /api/v1/incidents/{id}/resolve. All three narratives are required."""

    model_config = ConfigDict(str_strip_whitespace=True)

    lessons_learned: str = Field(min_length=1)
    preventive_measures: str = Field(min_length=1)
    improvements: str = Field(min_length=1)


class ComplianceUpdate(BaseModel):
    """Request body for PUT /api/v1/incidents/{id}/compliance."""

    model_config = ConfigDict(str_strip_whitespace=True)

    pdpc_status: PdpcStatusEnum
    review_person: str = ""
    pdpc_notified: bool = False
    pdpc_notified_person: str = ""
    dpo_guidance_issued: bool = False
    dpo_notified_person: str = ""


# ---------------------------------------------------------------------------
# Incident response models
# ---------------------------------------------------------------------------


class IncidentResponse(BaseModel):
    """Full incident record plus the derived PDPC risk flag and vulnerability class."""

    model_config = ConfigDict(frozen=True)

    id: str
    incident_id: str
    incident_date: Optional[str]
    discovered_date: Optional[str]
    reported_date: Optional[str]
    resolved_date: Optional[str]
    breach_type: str
    root_cause: str
    severity: str
    affected_records: int
    data_types: list[str]
    business_unit: str
    response_time_hours: Optional[int]
    status: str
    description: str
    remediation_actions: str
    remediation_actions_list: list[str]
    lessons_learned: str
    preventive_measures: str
    improvements: str
    follow_up_actions: list[str]
    detection_method: str
    immediate_actions: str
    pdpc_notification_required: bool
    pdpc_status: str
    pdpc_review_person: str
    pdpc_notified: bool
    pdpc_notified_date: Optional[str]
    pdpc_notified_person: str
    dpo_guidance_issued: bool
    dpo_notified_date: Optional[str]
    dpo_notified_person: str
    created_at: str
    updated_at: str
    created_by: str
    attachments: list[AttachmentModel]
    timeline: list[LogEntryModel]
    activities: list[LogEntryModel]
    notes: list[LogEntryModel]
    history: list[LogEntryModel]
    compliance_history: list[LogEntryModel]
    pdpc_risk: bool
    vulnerability_class: str

    @classmethod
    def from_incident(cls, incident: Incident) -> "IncidentResponse":
        """Build the response from a domain Incident, adding derived signals."""
        return cls.model_validate(
            {
                **asdict(incident),
                "pdpc_risk": pdpc_risk(incident),
                "vulnerability_class": classify_vulnerability(incident).key,
            }
        )


class IncidentTagsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    triggers: list[str]
    actions: list[str]


class NextIdResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    incident_id: str


# ---------------------------------------------------------------------------
# Filters and business units
# ---------------------------------------------------------------------------


class FiltersModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    severity: str = "ALL"
    unit: str = "ALL"
    status: str = "ALL"
    search: str = ""


class FiltersUpdate(BaseModel):
    """Request body for PATCH /api/v1/filters. Omitted keys keep their value."""

    model_config = ConfigDict(extra="forbid")

    severity: Optional[str] = None
    unit: Optional[str] = None
    status: Optional[str] = None
    search: Optional[str] = Field(default=None, max_length=255)


class UnitCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class UnitRename(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    new_name: str = Field(min_length=1, max_length=255)


class UnitsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    units: list[str]


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class ComplianceScoreResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    incidents: int


class VulnerabilityClassRow(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    key: str
    label: str
    count: int
    open: int
    frequency: float
    top_severity: str
    sample: Optional[str]


class VulnerabilitiesResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    total: int
    items: list[VulnerabilityClassRow]


class PatternRow(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    name: str
    count: int
    avg_response_hours: Optional[float]


class PatternsResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    triggers: list[PatternRow]
    actions: list[PatternRow]
    max_value: int


class SampleQueryRow(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    title: str
    label: str
    sql: str


class QueryRequest(BaseModel):
    """Request body for POST /api/v1/analytics/query.

    sample_id selects the fallback aggregation used when the query cannot be
    evaluated; without it the fallback is the first 25 dataset rows.
    """

    sql: str = Field(min_length=1, max_length=10_000)
    sample_id: Optional[str] = None


class QueryResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    rows: list[dict[str, Any]]
    used_fallback: bool
    error: Optional[str] = None


class DashboardResponse(BaseModel):
    """Response for GET /api/v1/analytics/dashboard."""

    model_config = ConfigDict(frozen=True)

    summary: dict[str, Any]
    monthly_trend: list[dict[str, Any]]
    heatmap: list[dict[str, Any]]
    high_risk_units: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", else "degraded".
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
