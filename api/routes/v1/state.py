"""
api/routes/v1/state.py -- Stored list filters and state reset.

Routes:
  GET   /filters   -- current filters
  PATCH /filters   -- merge filter changes
  POST  /reset     -- discard all state and restore the seed incidents
"""

from fastapi import APIRouter, Request

from api.limiter import limiter
from api.models import FiltersModel, FiltersUpdate, UnitsResponse
from incidents.repository import IncidentRepository

router = APIRouter()


@router.get("/filters", response_model=FiltersModel)
def get_filters(request: Request) -> FiltersModel:
    repo: IncidentRepository = request.app.state.repository
    return FiltersModel.model_validate(repo.filters())


@router.patch("/filters", response_model=FiltersModel)
def update_filters(request: Request, body: FiltersUpdate) -> FiltersModel:
    repo: IncidentRepository = request.app.state.repository
    updated = repo.set_filters(**body.model_dump(exclude_none=True))
    return FiltersModel.model_validate(updated)


@router.post("/reset", response_model=UnitsResponse)
@limiter.limit("5/minute")
def reset_state(request: Request) -> UnitsResponse:
    """Restore the seed dataset. Returns the restored unit list."""
    repo: IncidentRepository = request.app.state.repository
    repo.reset()
    return UnitsResponse(units=repo.list_units())
