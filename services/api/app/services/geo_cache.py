"""Geo-bucketed cache of external place identities.

Collections:
- place_cache              (key: <source>:<externalPlaceId>)   identity record
- place_cache_geo          (key: <lat4>:<lon4>)                 fine bucket -> one id
- place_cache_geo_coarse   (key: <lat3>:<lon3>)                 coarse bucket -> ids (additive)

Lookup: fine bucket first; on miss, the most recent N ids of the coarse bucket
are fetched and the closest fresh one within max distance wins.

The cache never breaks the caller: read failures are a miss, write failures
are logged and dropped.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.models.place import CachedExternalPlace, format_ts, utc_now
from app.settings import Settings, get_settings
from app.stores.base import DocumentStore, StoreUnavailable

logger = logging.getLogger("uvicorn.error")

PLACE_CACHE = "place_cache"
PLACE_CACHE_GEO = "place_cache_geo"
PLACE_CACHE_GEO_COARSE = "place_cache_geo_coarse"

EARTH_RADIUS_METERS = 6_371_000


@dataclass(frozen=True)
class GeoCacheConfig:
    ttl_days: float = 30.0
    coarse_candidate_limit: int = 8
    max_distance_meters: float = 150.0
    source: str = "google"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GeoCacheConfig":
        s = settings or get_settings()
        return cls(
            ttl_days=s.geo_cache_ttl_days,
            coarse_candidate_limit=s.coarse_bucket_candidate_limit,
            max_distance_meters=s.coarse_match_max_distance_meters,
        )


def fine_key(lat: float, lon: float) -> str:
    return f"{lat:.4f}:{lon:.4f}"


def coarse_key(lat: float, lon: float) -> str:
    return f"{lat:.3f}:{lon:.3f}"


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    h = math.sin(d_lat / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def is_fresh(updated_at: datetime | None, ttl_days: float, now: datetime) -> bool:
    if updated_at is None:
        return False
    return now - updated_at < timedelta(days=ttl_days)


class GeoCache:
    """Place identity cache over a DocumentStore."""

    def __init__(self, store: DocumentStore, config: GeoCacheConfig | None = None):
        self.store = store
        self.config = config or GeoCacheConfig()

    def _record_key(self, external_place_id: str) -> str:
        return f"{self.config.source}:{external_place_id}"

    async def get_by_id(
        self,
        external_place_id: str,
        *,
        ttl_days: float | None = None,
        now: datetime | None = None,
    ) -> CachedExternalPlace | None:
        if not external_place_id:
            return None
        ttl = ttl_days if ttl_days is not None else self.config.ttl_days
        now = now or utc_now()
        try:
            doc = await self.store.get(PLACE_CACHE, self._record_key(external_place_id))
        except StoreUnavailable as e:
            logger.warning(f"[geo-cache] read failed for {external_place_id}: {e}")
            return None
        if not doc:
            return None
        try:
            place = CachedExternalPlace.from_doc(doc)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"[geo-cache] malformed record {external_place_id}: {e}")
            return None
        return place if is_fresh(place.updated_at, ttl, now) else None

    async def lookup(
        self,
        lat: float,
        lon: float,
        *,
        ttl_days: float | None = None,
        now: datetime | None = None,
    ) -> CachedExternalPlace | None:
        """Find a fresh cached identity at or near (lat, lon)."""
        now = now or utc_now()

        # Fine bucket
        try:
            fine = await self.store.get(PLACE_CACHE_GEO, fine_key(lat, lon))
        except StoreUnavailable as e:
            logger.warning(f"[geo-cache] fine bucket read failed: {e}")
            return None
        fine_id = str((fine or {}).get("externalPlaceId") or "")
        if fine_id:
            hit = await self.get_by_id(fine_id, ttl_days=ttl_days, now=now)
            if hit is not None:
                return hit

        # Coarse bucket
        try:
            coarse = await self.store.get(PLACE_CACHE_GEO_COARSE, coarse_key(lat, lon))
        except StoreUnavailable as e:
            logger.warning(f"[geo-cache] coarse bucket read failed: {e}")
            return None
        ids = [str(x) for x in (coarse or {}).get("externalPlaceIds") or [] if x]
        if not ids:
            return None

        # Most recent first, distinct, bounded
        candidate_ids: list[str] = []
        for pid in reversed(ids):
            if pid not in candidate_ids:
                candidate_ids.append(pid)
            if len(candidate_ids) >= self.config.coarse_candidate_limit:
                break

        best: tuple[float, CachedExternalPlace] | None = None
        for pid in candidate_ids:
            candidate = await self.get_by_id(pid, ttl_days=ttl_days, now=now)
            if candidate is None:
                continue
            if not (math.isfinite(candidate.lat) and math.isfinite(candidate.lon)):
                continue
            distance = haversine_meters(lat, lon, candidate.lat, candidate.lon)
            if distance > self.config.max_distance_meters:
                continue
            if best is None or distance < best[0]:
                best = (distance, candidate)

        if best is None:
            return None
        logger.info(f"[geo-cache] coarse hit {best[1].external_place_id} at {best[0]:.0f}m")
        return best[1]

    async def store_place(
        self,
        place: CachedExternalPlace,
        lat: float,
        lon: float,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Write the identity record and both bucket indexes. Returns False on failure."""
        now = now or utc_now()
        place.lat = lat
        place.lon = lon
        place.source = self.config.source
        place.updated_at = now
        stamp = format_ts(now)

        try:
            await self.store.set(
                PLACE_CACHE, self._record_key(place.external_place_id), place.merge_doc(), merge=True
            )
            await self.store.set(
                PLACE_CACHE_GEO,
                fine_key(lat, lon),
                {"externalPlaceId": place.external_place_id, "updatedAt": stamp},
                merge=True,
            )
            await self.store.add_to_set(
                PLACE_CACHE_GEO_COARSE,
                coarse_key(lat, lon),
                "externalPlaceIds",
                [place.external_place_id],
                extra={"updatedAt": stamp},
            )
        except StoreUnavailable as e:
            logger.warning(f"[geo-cache] write failed for {place.external_place_id}: {e}")
            return False
        return True

