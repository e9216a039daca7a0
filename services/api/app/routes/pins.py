"""Pin creation helpers.

POST /v1/pins/resolve - resolve the external place identity at a coordinate
(geo cache first, then the daily-limited provider lookup).
"""

from fastapi import APIRouter, Depends

from app.dependencies import (
    get_document_store,
    get_geo_cache_config,
    get_place_lookup_provider,
    get_resolver_config,
)
from app.schemas import ResolvedPlaceOut, ResolvePinRequest, ResolvePinResponse
from app.services.geo_cache import GeoCacheConfig
from app.services.place_lookup import PlaceLookupProvider, ResolverConfig, resolve_place_identity
from app.stores.base import DocumentStore

router = APIRouter()


@router.post("/resolve", response_model=ResolvePinResponse)
async def resolve_pin(
    request: ResolvePinRequest,
    store: DocumentStore = Depends(get_document_store),
    provider: PlaceLookupProvider = Depends(get_place_lookup_provider),
    geo_config: GeoCacheConfig = Depends(get_geo_cache_config),
    config: ResolverConfig = Depends(get_resolver_config),
) -> ResolvePinResponse:
    """Resolve a pin's place identity. Provider failures come back as a status, not an error."""
    resolution = await resolve_place_identity(
        store,
        provider,
        lat=request.lat,
        lon=request.lng,
        hint=request.hint,
        geo_config=geo_config,
        config=config,
    )
    place = resolution.place
    return ResolvePinResponse(
        status=resolution.status,
        cache_hit=resolution.cache_hit,
        remaining=resolution.remaining,
        place=(
            ResolvedPlaceOut(
                external_place_id=place.external_place_id,
                name=place.name,
                address=place.address,
                website=place.website,
                types=place.types,
                lat=place.lat,
                lng=place.lon,
                photo_refs=place.photo_refs,
                source=place.source,
                updated_at=place.updated_at,
            )
            if place
            else None
        ),
    )
