"""Place lifecycle endpoints.

POST /v1/places/endorse         - endorse (or create) a place
POST /v1/places/downvote        - downvote a place
POST /v1/places/renew           - renew a place's recency
GET  /v1/places                 - list places for a lifecycle tab
GET  /v1/places/{placeId}/status - lifecycle status of one place

Routers are thin: call services for business logic.
"""

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_document_store, get_lifecycle_config
from app.models.place import utc_now
from app.schemas import (
    EndorseRequest,
    PlaceActionRequest,
    PlaceActionResponse,
    PlaceListResponse,
    PlaceOut,
)
from app.services import ledger
from app.services.errors import FeatureDisabled
from app.services.lifecycle import LifecycleConfig, lifecycle_status, list_by_tab, parse_bounds, parse_tab
from app.stores.base import DocumentStore

router = APIRouter()


@router.post("/endorse", response_model=PlaceActionResponse)
async def endorse_place(
    request: EndorseRequest,
    store: DocumentStore = Depends(get_document_store),
    config: LifecycleConfig = Depends(get_lifecycle_config),
) -> PlaceActionResponse:
    """Endorse a place by id, or create it from name/lat/lng on first endorsement."""
    seed = None
    if not request.place_id:
        if not config.enabled:
            raise FeatureDisabled("Map lifecycle is not enabled")
        seed = ledger.validate_seed(
            name=request.name,
            lat=request.lat,
            lon=request.lng,
            external_place_id=request.external_place_id,
            category=request.category,
        )
    result = await ledger.endorse(
        store,
        config,
        user_id=request.user_id,
        place_id=request.place_id,
        seed=seed,
    )
    return PlaceActionResponse(action=result.action, place=PlaceOut.from_place(result.place))


@router.post("/downvote", response_model=PlaceActionResponse)
async def downvote_place(
    request: PlaceActionRequest,
    store: DocumentStore = Depends(get_document_store),
    config: LifecycleConfig = Depends(get_lifecycle_config),
) -> PlaceActionResponse:
    result = await ledger.downvote(store, config, place_id=request.place_id, user_id=request.user_id)
    return PlaceActionResponse(
        action=result.action,
        place=PlaceOut.from_place(result.place),
        is_hidden=result.is_hidden,
    )


@router.post("/renew", response_model=PlaceActionResponse)
async def renew_place(
    request: PlaceActionRequest,
    store: DocumentStore = Depends(get_document_store),
    config: LifecycleConfig = Depends(get_lifecycle_config),
) -> PlaceActionResponse:
    result = await ledger.renew(store, config, place_id=request.place_id, user_id=request.user_id)
    return PlaceActionResponse(action=result.action, place=PlaceOut.from_place(result.place))


@router.get("", response_model=PlaceListResponse)
async def list_places(
    tab: str = Query(default="all", description="recent | trending | classics | all"),
    north: float | None = Query(default=None),
    south: float | None = Query(default=None),
    east: float | None = Query(default=None),
    west: float | None = Query(default=None),
    limit: int | None = Query(default=None, ge=0, le=1000),
    offset: int = Query(default=0, ge=0),
    store: DocumentStore = Depends(get_document_store),
    config: LifecycleConfig = Depends(get_lifecycle_config),
) -> PlaceListResponse:
    """List non-hidden places for a lifecycle tab, optionally within bounds."""
    parsed_tab = parse_tab(tab)
    bounds = parse_bounds(north=north, south=south, east=east, west=west)
    places = await list_by_tab(store, config, parsed_tab, bounds=bounds, limit=limit, offset=offset)
    return PlaceListResponse(
        places=[PlaceOut.from_place(p) for p in places],
        tab=parsed_tab.value,
        count=len(places),
        bounds=bounds.to_dict() if bounds else None,
    )


@router.get("/{place_id}/status")
async def get_place_status(
    place_id: str,
    store: DocumentStore = Depends(get_document_store),
    config: LifecycleConfig = Depends(get_lifecycle_config),
) -> dict:
    """Lifecycle status: primary tab, reason, expiry and what is needed for Classics."""
    place = await ledger.get_place(store, place_id)
    return lifecycle_status(place, utc_now(), config)
