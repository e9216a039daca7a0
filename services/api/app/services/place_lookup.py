"""Place identity resolution for new pins.

Flow for (lat, lon, hint):
1. Geo cache lookup (fine bucket, then coarse bucket within max distance)
2. Daily quota (key "google") - no quota is consumed on a cache hit
3. Provider nearby search + details, each bounded by a timeout
4. Write the identity back through the geo cache at the query coordinates

Provider and cache failures never reach the caller; they degrade to a status:
cache_hit | resolved | not_found | quota_exhausted | provider_unavailable
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from app.models.place import CachedExternalPlace, utc_now
from app.services.errors import InvalidInput, ProviderUnavailable
from app.services.geo_cache import GeoCache, GeoCacheConfig
from app.services.quota import try_consume
from app.settings import Settings, get_settings
from app.stores.base import DocumentStore

logger = logging.getLogger("uvicorn.error")

QUOTA_KEY = "google"

STATUS_CACHE_HIT = "cache_hit"
STATUS_RESOLVED = "resolved"
STATUS_NOT_FOUND = "not_found"
STATUS_QUOTA_EXHAUSTED = "quota_exhausted"
STATUS_PROVIDER_UNAVAILABLE = "provider_unavailable"

MIN_RADIUS_METERS = 10
MAX_RADIUS_METERS = 250

# Types that describe a street/address rather than a point of interest
_ADDRESS_TYPES = {"route", "street_address", "intersection"}
_COORDINATE_LIKE = re.compile(r"^[-+]?\d+\.\d+")


@dataclass
class ExternalPlaceCandidate:
    external_place_id: str
    lat: float
    lon: float
    name: str | None = None
    types: list[str] = field(default_factory=list)


@dataclass
class ExternalPlaceDetails:
    external_place_id: str
    name: str | None = None
    address: str | None = None
    website: str | None = None
    phone: str | None = None
    types: list[str] = field(default_factory=list)
    lat: float | None = None
    lon: float | None = None
    photo_refs: list[str] = field(default_factory=list)


class PlaceLookupProvider(Protocol):
    async def search(
        self, lat: float, lon: float, radius_meters: int, hint: str | None = None
    ) -> ExternalPlaceCandidate | None: ...

    async def details(self, external_place_id: str) -> ExternalPlaceDetails | None: ...


def clamp_radius(radius_meters: int | float) -> int:
    return int(max(MIN_RADIUS_METERS, min(MAX_RADIUS_METERS, radius_meters)))


def keyword_from_hint(hint: str | None) -> str | None:
    """A hint is sent as keyword only when 3-80 chars and not coordinate-like."""
    term = (hint or "").strip()
    if 3 <= len(term) <= 80 and not _COORDINATE_LIKE.match(term):
        return term
    return None


def looks_like_address_only(types: list[str] | None) -> bool:
    return any(str(t).lower() in _ADDRESS_TYPES for t in types or [])


def pick_best_candidate(results: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Prefer the first non-address result; fall back to the first result."""
    if not results:
        return None
    for r in results:
        if not looks_like_address_only(r.get("types")):
            return r
    return results[0]


def _float_or_none(v: Any) -> float | None:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


class GooglePlacesProvider:
    """Google Places (legacy web service) nearby search + details."""

    BASE_URL = "https://maps.googleapis.com/maps/api/place"
    DETAIL_FIELDS = (
        "place_id",
        "name",
        "formatted_address",
        "website",
        "types",
        "photos",
        "formatted_phone_number",
        "geometry/location",
    )

    def __init__(
        self,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        language: str = "en",
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.google_maps_api_key
        self.timeout = timeout or settings.provider_timeout_seconds
        self.language = language
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise ProviderUnavailable("GOOGLE_MAPS_API_KEY not configured")
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.BASE_URL}/{path}",
                params={**params, "key": self.api_key, "language": self.language},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(f"Google Places HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Google Places request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise ProviderUnavailable("Google Places returned invalid JSON") from e

        status = str(data.get("status") or "")
        if status in ("OK", "ZERO_RESULTS", "NOT_FOUND"):
            return data
        raise ProviderUnavailable(
            f"Google Places status {status or 'UNKNOWN'}",
            detail={"error_message": data.get("error_message")},
        )

    async def search(
        self, lat: float, lon: float, radius_meters: int, hint: str | None = None
    ) -> ExternalPlaceCandidate | None:
        params: dict[str, Any] = {
            "location": f"{lat},{lon}",
            "radius": clamp_radius(radius_meters),
        }
        keyword = keyword_from_hint(hint)
        if keyword:
            params["keyword"] = keyword

        data = await self._get_json("nearbysearch/json", params)
        if data.get("status") != "OK":
            return None
        best = pick_best_candidate([r for r in data.get("results") or [] if isinstance(r, dict)])
        if not best or not best.get("place_id"):
            return None
        location = (best.get("geometry") or {}).get("location") or {}
        best_lat = _float_or_none(location.get("lat"))
        best_lon = _float_or_none(location.get("lng"))
        if best_lat is None or best_lon is None:
            return None
        return ExternalPlaceCandidate(
            external_place_id=str(best["place_id"]),
            lat=best_lat,
            lon=best_lon,
            name=best.get("name") if isinstance(best.get("name"), str) else None,
            types=[str(t) for t in best.get("types") or []],
        )

    async def details(self, external_place_id: str) -> ExternalPlaceDetails | None:
        data = await self._get_json(
            "details/json",
            {"place_id": external_place_id, "fields": ",".join(self.DETAIL_FIELDS)},
        )
        if data.get("status") != "OK":
            return None
        r = data.get("result") or {}
        if not r.get("place_id"):
            return None
        location = (r.get("geometry") or {}).get("location") or {}
        return ExternalPlaceDetails(
            external_place_id=str(r["place_id"]),
            name=r.get("name") if isinstance(r.get("name"), str) else None,
            address=r.get("formatted_address") if isinstance(r.get("formatted_address"), str) else None,
            website=r.get("website") if isinstance(r.get("website"), str) else None,
            phone=r.get("formatted_phone_number") if isinstance(r.get("formatted_phone_number"), str) else None,
            types=[str(t) for t in r.get("types") or []],
            lat=_float_or_none(location.get("lat")),
            lon=_float_or_none(location.get("lng")),
            photo_refs=[
                str(p["photo_reference"])
                for p in r.get("photos") or []
                if isinstance(p, dict) and p.get("photo_reference")
            ],
        )


# ============================================================
# Resolver
# ============================================================


@dataclass(frozen=True)
class ResolverConfig:
    max_lookups_per_day: int = 50
    quota_fail_open: bool = True
    search_radius_meters: int = 80
    provider_timeout_seconds: float = 3.5

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ResolverConfig":
        s = settings or get_settings()
        return cls(
            max_lookups_per_day=s.max_external_lookups_per_day,
            quota_fail_open=s.quota_fail_open,
            search_radius_meters=s.provider_search_radius_meters,
            provider_timeout_seconds=s.provider_timeout_seconds,
        )


@dataclass
class IdentityResolution:
    status: str
    place: CachedExternalPlace | None = None
    remaining: int | None = None

    @property
    def cache_hit(self) -> bool:
        return self.status == STATUS_CACHE_HIT

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "cacheHit": self.cache_hit,
            "remaining": self.remaining,
            "place": self.place.to_doc() if self.place else None,
        }


def _validate_coordinates(lat: Any, lon: Any) -> tuple[float, float]:
    lat_f = _float_or_none(lat)
    lon_f = _float_or_none(lon)
    if lat_f is None or lon_f is None:
        raise InvalidInput("lat/lng must be finite numbers")
    if not (-90 <= lat_f <= 90) or not (-180 <= lon_f <= 180):
        raise InvalidInput("lat/lng out of range")
    return lat_f, lon_f


async def resolve_place_identity(
    store: DocumentStore,
    provider: PlaceLookupProvider,
    *,
    lat: float,
    lon: float,
    hint: str | None = None,
    geo_config: GeoCacheConfig | None = None,
    config: ResolverConfig | None = None,
) -> IdentityResolution:
    """Resolve the external identity of the place at (lat, lon)."""
    lat, lon = _validate_coordinates(lat, lon)
    config = config or ResolverConfig()
    cache = GeoCache(store, geo_config)
    now = utc_now()

    cached = await cache.lookup(lat, lon, now=now)
    if cached is not None:
        logger.info(f"[resolver] cache hit {cached.external_place_id} for {lat:.4f},{lon:.4f}")
        return IdentityResolution(status=STATUS_CACHE_HIT, place=cached)

    decision = await try_consume(
        store,
        QUOTA_KEY,
        config.max_lookups_per_day,
        now=now,
        fail_open=config.quota_fail_open,
    )
    if not decision.allowed:
        return IdentityResolution(status=STATUS_QUOTA_EXHAUSTED, remaining=decision.remaining)

    timeout = config.provider_timeout_seconds
    try:
        candidate = await asyncio.wait_for(
            provider.search(lat, lon, clamp_radius(config.search_radius_meters), hint),
            timeout=timeout,
        )
        if candidate is None:
            return IdentityResolution(status=STATUS_NOT_FOUND, remaining=decision.remaining)
        details = await asyncio.wait_for(provider.details(candidate.external_place_id), timeout=timeout)
    except (ProviderUnavailable, httpx.HTTPError, asyncio.TimeoutError) as e:
        logger.warning(f"[resolver] provider unavailable for {lat:.4f},{lon:.4f}: {e}")
        return IdentityResolution(status=STATUS_PROVIDER_UNAVAILABLE, remaining=decision.remaining)

    place = CachedExternalPlace(
        external_place_id=(details.external_place_id if details else candidate.external_place_id),
        lat=lat,
        lon=lon,
        name=(details.name if details and details.name else candidate.name),
        address=details.address if details else None,
        website=details.website if details else None,
        types=(details.types if details and details.types else candidate.types),
        photo_refs=details.photo_refs if details else [],
    )
    await cache.store_place(place, lat, lon, now=now)
    logger.info(f"[resolver] resolved {place.external_place_id} ({place.name}) for {lat:.4f},{lon:.4f}")
    return IdentityResolution(status=STATUS_RESOLVED, place=place, remaining=decision.remaining)
