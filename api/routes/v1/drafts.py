"""
api/routes/v1/drafts.py -- Draft incident routes.

A draft is an incident with status DRAFT held apart from the submitted
collection. Promotion keeps its id and INC code.

Routes:
  GET    /drafts                      -- list drafts, newest discovery first
  POST   /drafts                      -- save a new draft
  GET    /drafts/{draft_id}
  POST   /drafts/{draft_id}/promote   -- submit as INVESTIGATING
  DELETE /drafts/{draft_id}           -- discard (idempotent)
"""

from fastapi import APIRouter, HTTPException, Request, Response

from api.limiter import limiter
from api.models import ErrorDetail, IncidentCreate, IncidentResponse
from incidents.repository import IncidentRepository

router = APIRouter()


def _draft_not_found(draft_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="draft_not_found", message="Draft not found.", detail=draft_id[:64]).model_dump(),
    )


@router.get("/drafts", response_model=list[IncidentResponse])
def list_drafts(request: Request) -> list[IncidentResponse]:
    repo: IncidentRepository = request.app.state.repository
    return [IncidentResponse.from_incident(d) for d in repo.list_drafts()]


@router.post("/drafts", response_model=IncidentResponse, status_code=201)
@limiter.limit("60/minute")
def create_draft(request: Request, body: IncidentCreate) -> IncidentResponse:
    """Save a draft. Any status in the body is replaced by DRAFT."""
    repo: IncidentRepository = request.app.state.repository
    payload = body.to_payload()
    payload.pop("status", None)
    return IncidentResponse.from_incident(repo.add_incident(payload, draft=True))


@router.get("/drafts/{draft_id}", response_model=IncidentResponse)
def get_draft(request: Request, draft_id: str) -> IncidentResponse:
    repo: IncidentRepository = request.app.state.repository
    draft = repo.get_draft(draft_id)
    if draft is None:
        raise _draft_not_found(draft_id)
    return IncidentResponse.from_incident(draft)


@router.post("/drafts/{draft_id}/promote", response_model=IncidentResponse)
def promote_draft(request: Request, draft_id: str) -> IncidentResponse:
    repo: IncidentRepository = request.app.state.repository
    incident = repo.promote_draft(draft_id)
    if incident is None:
        raise _draft_not_found(draft_id)
    return IncidentResponse.from_incident(incident)


@router.delete("/drafts/{draft_id}", status_code=204)
def discard_draft(request: Request, draft_id: str) -> Response:
    repo: IncidentRepository = request.app.state.repository
    repo.discard_draft(draft_id)
    return Response(status_code=204)
