"""
api/routes/v1/units.py -- Business unit registry routes.

Routes:
  GET    /units               -- registry plus units referenced by incidents/drafts
  POST   /units               -- register a unit (no-op on duplicate)
  PATCH  /units/{name}        -- rename everywhere (incidents, drafts, filter)
  DELETE /units/{name}        -- drop from the registry; incidents keep the label
"""

from fastapi import APIRouter, Request

from api.models import UnitCreate, UnitRename, UnitsResponse
from incidents.repository import IncidentRepository

router = APIRouter()


@router.get("/units", response_model=UnitsResponse)
def list_units(request: Request) -> UnitsResponse:
    repo: IncidentRepository = request.app.state.repository
    return UnitsResponse(units=repo.list_units())


@router.post("/units", response_model=UnitsResponse, status_code=201)
def add_unit(request: Request, body: UnitCreate) -> UnitsResponse:
    repo: IncidentRepository = request.app.state.repository
    repo.add_business_unit(body.name)
    return UnitsResponse(units=repo.list_units())


@router.patch("/units/{name}", response_model=UnitsResponse)
def rename_unit(request: Request, name: str, body: UnitRename) -> UnitsResponse:
    repo: IncidentRepository = request.app.state.repository
    repo.rename_business_unit(name, body.new_name)
    return UnitsResponse(units=repo.list_units())


@router.delete("/units/{name}", response_model=UnitsResponse)
def remove_unit(request: Request, name: str) -> UnitsResponse:
    """Remove a unit from the registry.

    It still appears in the listing while any incident or draft references it.
    """
    repo: IncidentRepository = request.app.state.repository
    repo.remove_business_unit(name)
    return UnitsResponse(units=repo.list_units())
