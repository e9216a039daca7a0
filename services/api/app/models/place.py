"""Place document model.

One Place per real-world point of interest. Persisted as a JSON document in
the `places` collection, keyed by a deterministic id derived from the external
provider id (when known) or from the normalized (lat, lon, name) tuple.

Tab membership is derived on read (see services.lifecycle); `sweep_tabs` only
records what the last maintenance sweep saw so the next sweep can report deltas.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# Collections
PLACES = "places"
PLACE_EVENTS = "place_events"
PLACE_ACTIONS = "place_actions"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_ts(value: Any) -> datetime | None:
    """Parse a persisted timestamp (ISO string or datetime) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", name.strip().lower())


def compute_place_id(
    *,
    external_place_id: str | None = None,
    lat: float | None = None,
    lon: float | None = None,
    name: str | None = None,
) -> str:
    """Compute a stable place id.

    Format: pl_{sha256(identity)[:24]} where identity is either
    "ext:{external_place_id}" or "geo:{lat:.5f}:{lon:.5f}:{normalized name}".
    """
    if external_place_id:
        identity = f"ext:{external_place_id.strip()}"
    else:
        if lat is None or lon is None or not name:
            raise ValueError("lat, lon and name are required without an external place id")
        identity = f"geo:{lat:.5f}:{lon:.5f}:{_normalize_name(name)}"
    return "pl_" + hashlib.sha256(identity.encode()).hexdigest()[:24]


@dataclass
class Place:
    """Lifecycle state of a place."""

    id: str
    name: str
    lat: float
    lon: float
    created_at: datetime
    updated_at: datetime
    last_endorsed_at: datetime
    category: str = "general"
    external_place_id: str | None = None
    total_endorsements: int = 0
    recent_endorsements: int = 0
    downvotes: int = 0
    is_hidden: bool = False
    score: float = 0.0
    sweep_tabs: list[str] | None = None
    swept_at: datetime | None = None

    @property
    def last_activity_at(self) -> datetime:
        return max(self.last_endorsed_at, self.created_at)

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "externalPlaceId": self.external_place_id,
            "name": self.name,
            "category": self.category,
            "lat": self.lat,
            "lon": self.lon,
            "totalEndorsements": self.total_endorsements,
            "recentEndorsements": self.recent_endorsements,
            "lastEndorsedAt": format_ts(self.last_endorsed_at),
            "createdAt": format_ts(self.created_at),
            "updatedAt": format_ts(self.updated_at),
            "downvotes": self.downvotes,
            "isHidden": self.is_hidden,
            "score": self.score,
            "sweepTabs": self.sweep_tabs,
            "sweptAt": format_ts(self.swept_at),
        }

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "Place":
        created_at = parse_ts(doc.get("createdAt")) or utc_now()
        last_endorsed_at = parse_ts(doc.get("lastEndorsedAt")) or created_at
        return cls(
            id=str(doc["id"]),
            external_place_id=doc.get("externalPlaceId") or None,
            name=str(doc.get("name") or ""),
            category=str(doc.get("category") or "general"),
            lat=float(doc["lat"]),
            lon=float(doc["lon"]),
            total_endorsements=int(doc.get("totalEndorsements") or 0),
            recent_endorsements=int(doc.get("recentEndorsements") or 0),
            last_endorsed_at=last_endorsed_at,
            created_at=created_at,
            updated_at=parse_ts(doc.get("updatedAt")) or created_at,
            downvotes=int(doc.get("downvotes") or 0),
            is_hidden=bool(doc.get("isHidden", False)),
            score=float(doc.get("score") or 0.0),
            sweep_tabs=list(doc["sweepTabs"]) if doc.get("sweepTabs") is not None else None,
            swept_at=parse_ts(doc.get("sweptAt")),
        )


@dataclass(frozen=True)
class PlaceEvent:
    """A scored event in a place's history."""

    kind: str  # "endorsement" | "renewal" | "downvote"
    at: datetime

    def to_doc(self) -> dict[str, Any]:
        return {"kind": self.kind, "at": format_ts(self.at)}

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "PlaceEvent":
        return cls(kind=str(doc["kind"]), at=parse_ts(doc["at"]) or utc_now())


# Merge writes never drop these
_CACHE_ALWAYS_WRITTEN = frozenset({"externalPlaceId", "lat", "lon", "source", "updatedAt"})


@dataclass
class CachedExternalPlace:
    """Externally-sourced place identity stored in the geo cache."""

    external_place_id: str
    lat: float
    lon: float
    name: str | None = None
    address: str | None = None
    website: str | None = None
    types: list[str] = field(default_factory=list)
    photo_refs: list[str] = field(default_factory=list)
    source: str = "google"
    updated_at: datetime | None = None

    def to_doc(self) -> dict[str, Any]:
        return {
            "externalPlaceId": self.external_place_id,
            "lat": self.lat,
            "lon": self.lon,
            "name": self.name,
            "address": self.address,
            "website": self.website,
            "types": self.types,
            "photoRefs": self.photo_refs,
            "source": self.source,
            "updatedAt": format_ts(self.updated_at),
        }

    def merge_doc(self) -> dict[str, Any]:
        """Fields for a merge write: identity, position and stamp always, the rest only when known."""
        return {
            key: value
            for key, value in self.to_doc().items()
            if key in _CACHE_ALWAYS_WRITTEN or value not in (None, "", [])
        }

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "CachedExternalPlace":
        return cls(
            external_place_id=str(doc["externalPlaceId"]),
            lat=float(doc["lat"]),
            lon=float(doc["lon"]),
            name=doc.get("name"),
            address=doc.get("address"),
            website=doc.get("website"),
            types=[str(t) for t in doc.get("types") or []],
            photo_refs=[str(p) for p in doc.get("photoRefs") or []],
            source=str(doc.get("source") or "google"),
            updated_at=parse_ts(doc.get("updatedAt")),
        )
