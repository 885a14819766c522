"""
api/routes/v1/incidents.py -- Incident route handlers for the BreachTracker REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /incidents                              -- list (risk-sorted), ?filtered=true applies stored filters
  POST   /incidents                              -- create a submitted incident
  GET    /incidents/next-id                      -- code the next create will allocate
  GET    /incidents/{incident_id}                -- incident detail
  PATCH  /incidents/{incident_id}                -- field updates (recorded in history)
  POST   /incidents/{incident_id}/notes          -- append a note
  POST   /incidents/{incident_id}/activities     -- append an activity
  POST   /incidents/{incident_id}/timeline       -- append a timeline entry
  POST   /incidents/{incident_id}/follow-ups     -- append a follow-up action
  POST   /incidents/{incident_id}/remediation-actions
  POST   /incidents/{incident_id}/attachments
  POST   /incidents/{incident_id}/resolve        -- close out with lessons learned
  PUT    /incidents/{incident_id}/compliance     -- record a compliance decision
  GET    /incidents/{incident_id}/tags           -- trigger / action tags

incident_id in paths is the internal uuid (Incident.id), not the INC code.
Repository ValueErrors surface as 422 through the handler in api/main.py.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from api.limiter import limiter
from api.models import (
    AttachmentModel,
    ComplianceUpdate,
    ErrorDetail,
    IncidentCreate,
    IncidentResponse,
    IncidentTagsResponse,
    IncidentUpdate,
    NextIdResponse,
    ResolveRequest,
    TextEntry,
    TimelineEntryCreate,
)
from core.classifier import derive_tags
from core.models import Incident
from incidents.repository import IncidentRepository

router = APIRouter()


def _found(incident: Optional[Incident], incident_id: str) -> IncidentResponse:
    """Map a repository result to a response, raising 404 for unknown ids."""
    if incident is None:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(
                code="incident_not_found",
                message="Incident not found.",
                detail=incident_id[:64],
            ).model_dump(),
        )
    return IncidentResponse.from_incident(incident)


# ---------------------------------------------------------------------------
# Collection routes -- registered before /incidents/{incident_id}
# ---------------------------------------------------------------------------


@router.get("/incidents", response_model=list[IncidentResponse])
def list_incidents(request: Request, filtered: bool = False) -> list[IncidentResponse]:
    """Return all incidents, PDPC-risk first, newest discovery first.

    Query params:
        filtered -- when true, apply the stored filters (see /filters)
    """
    repo: IncidentRepository = request.app.state.repository
    incidents = repo.filter_incidents() if filtered else repo.list_incidents()
    return [IncidentResponse.from_incident(i) for i in incidents]


@router.post("/incidents", response_model=IncidentResponse, status_code=201)
@limiter.limit("60/minute")
def create_incident(request: Request, body: IncidentCreate) -> IncidentResponse:
    """Log a new incident. It is placed at the head of the collection."""
    repo: IncidentRepository = request.app.state.repository
    return IncidentResponse.from_incident(repo.add_incident(body.to_payload()))


@router.get("/incidents/next-id", response_model=NextIdResponse)
def next_incident_id(request: Request) -> NextIdResponse:
    repo: IncidentRepository = request.app.state.repository
    return NextIdResponse(incident_id=repo.next_incident_id())


# ---------------------------------------------------------------------------
# Single-incident routes
# ---------------------------------------------------------------------------


@router.get("/incidents/{incident_id}", response_model=IncidentResponse)
def get_incident(request: Request, incident_id: str) -> IncidentResponse:
    repo: IncidentRepository = request.app.state.repository
    return _found(repo.get_incident(incident_id), incident_id)


@router.patch("/incidents/{incident_id}", response_model=IncidentResponse)
def update_incident(request: Request, incident_id: str, body: IncidentUpdate) -> IncidentResponse:
    """Apply the supplied fields. Changed fields are recorded as one history entry."""
    repo: IncidentRepository = request.app.state.repository
    return _found(repo.update_incident(incident_id, body.to_payload()), incident_id)


@router.post("/incidents/{incident_id}/notes", response_model=IncidentResponse)
def add_note(request: Request, incident_id: str, body: TextEntry) -> IncidentResponse:
    repo: IncidentRepository = request.app.state.repository
    return _found(repo.add_note(incident_id, body.text), incident_id)


@router.post("/incidents/{incident_id}/activities", response_model=IncidentResponse)
def add_activity(request: Request, incident_id: str, body: TextEntry) -> IncidentResponse:
    repo: IncidentRepository = request.app.state.repository
    return _found(repo.add_activity(incident_id, body.text), incident_id)


@router.post("/incidents/{incident_id}/timeline", response_model=IncidentResponse)
def add_timeline_entry(request: Request, incident_id: str, body: TimelineEntryCreate) -> IncidentResponse:
    repo: IncidentRepository = request.app.state.repository
    return _found(repo.add_timeline_entry(incident_id, body.date or "", body.text), incident_id)


@router.post("/incidents/{incident_id}/follow-ups", response_model=IncidentResponse)
def add_follow_up(request: Request, incident_id: str, body: TextEntry) -> IncidentResponse:
    repo: IncidentRepository = request.app.state.repository
    return _found(repo.add_follow_up(incident_id, body.text), incident_id)


@router.post("/incidents/{incident_id}/remediation-actions", response_model=IncidentResponse)
def add_remediation_action(request: Request, incident_id: str, body: TextEntry) -> IncidentResponse:
    repo: IncidentRepository = request.app.state.repository
    return _found(repo.add_remediation_action(incident_id, body.text), incident_id)


@router.post("/incidents/{incident_id}/attachments", response_model=IncidentResponse)
def add_attachment(request: Request, incident_id: str, body: AttachmentModel) -> IncidentResponse:
    repo: IncidentRepository = request.app.state.repository
    return _found(repo.add_attachment(incident_id, body.name, body.url), incident_id)


@router.post("/incidents/{incident_id}/resolve", response_model=IncidentResponse)
def resolve_incident(request: Request, incident_id: str, body: ResolveRequest) -> IncidentResponse:
    """Mark the incident RESOLVED as of today and record the close-out narratives."""
    repo: IncidentRepository = request.app.state.repository
    resolved = repo.resolve_incident(
        incident_id,
        lessons_learned=body.lessons_learned,
        preventive_measures=body.preventive_measures,
        improvements=body.improvements,
    )
    return _found(resolved, incident_id)


@router.put("/incidents/{incident_id}/compliance", response_model=IncidentResponse)
def update_compliance(request: Request, incident_id: str, body: ComplianceUpdate) -> IncidentResponse:
    """Record a PDPC / DPO decision.

    422 when a reviewer is missing for UNDER_REVIEW, or a contact is missing
    for a channel marked as notified.
    """
    repo: IncidentRepository = request.app.state.repository
    updated = repo.update_compliance(
        incident_id,
        pdpc_status=body.pdpc_status.value,
        review_person=body.review_person,
        pdpc_notified=body.pdpc_notified,
        pdpc_notified_person=body.pdpc_notified_person,
        dpo_guidance_issued=body.dpo_guidance_issued,
        dpo_notified_person=body.dpo_notified_person,
    )
    return _found(updated, incident_id)


@router.get("/incidents/{incident_id}/tags", response_model=IncidentTagsResponse)
def get_incident_tags(request: Request, incident_id: str) -> IncidentTagsResponse:
    repo: IncidentRepository = request.app.state.repository
    incident = repo.get_incident(incident_id)
    _found(incident, incident_id)
    tags = derive_tags(incident)
    return IncidentTagsResponse(triggers=tags.triggers, actions=tags.actions)
