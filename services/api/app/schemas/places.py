"""Schemas for place lifecycle endpoints (/v1/places, /v1/pins, /v1/admin)."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.models.place import Place


class EndorseRequest(BaseModel):
    """Endorse an existing place (placeId) or create one from its fields."""

    place_id: str | None = Field(alias="placeId", default=None)
    external_place_id: str | None = Field(alias="externalPlaceId", default=None)
    name: str | None = None
    lat: float | None = None
    lng: float | None = None
    category: str | None = None
    user_id: str | None = Field(alias="userId", default=None)

    model_config = {"populate_by_name": True}


class PlaceActionRequest(BaseModel):
    """Downvote / renew request."""

    place_id: str | None = Field(alias="placeId", default=None)
    user_id: str | None = Field(alias="userId", default=None)

    model_config = {"populate_by_name": True}


class PlaceOut(BaseModel):
    """A place as returned by the API."""

    id: str
    external_place_id: str | None = Field(alias="externalPlaceId", default=None)
    name: str
    category: str
    lat: float
    lng: float
    total_endorsements: int = Field(alias="totalEndorsements", ge=0)
    recent_endorsements: int = Field(alias="recentEndorsements", ge=0)
    last_endorsed_at: datetime = Field(alias="lastEndorsedAt")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    downvotes: int = Field(ge=0)
    is_hidden: bool = Field(alias="isHidden")
    score: float = Field(ge=0)

    model_config = {"populate_by_name": True}

    @classmethod
    def from_place(cls, place: Place) -> "PlaceOut":
        return cls(
            id=place.id,
            external_place_id=place.external_place_id,
            name=place.name,
            category=place.category,
            lat=place.lat,
            lng=place.lon,
            total_endorsements=place.total_endorsements,
            recent_endorsements=place.recent_endorsements,
            last_endorsed_at=place.last_endorsed_at,
            created_at=place.created_at,
            updated_at=place.updated_at,
            downvotes=place.downvotes,
            is_hidden=place.is_hidden,
            score=place.score,
        )


class PlaceActionResponse(BaseModel):
    success: bool = True
    action: str
    place: PlaceOut
    is_hidden: bool | None = Field(alias="isHidden", default=None)

    model_config = {"populate_by_name": True}


class PlaceListResponse(BaseModel):
    """Response payload for GET /v1/places."""

    places: list[PlaceOut]
    tab: str
    count: int = Field(ge=0)
    bounds: dict[str, float] | None = None


class ResolvePinRequest(BaseModel):
    lat: float | None = None
    lng: float | None = None
    hint: str | None = Field(default=None, max_length=200)


class ResolvedPlaceOut(BaseModel):
    external_place_id: str = Field(alias="externalPlaceId")
    name: str | None = None
    address: str | None = None
    website: str | None = None
    types: list[str] = Field(default_factory=list)
    lat: float
    lng: float
    photo_refs: list[str] = Field(alias="photoRefs", default_factory=list)
    source: str
    updated_at: datetime | None = Field(alias="updatedAt", default=None)

    model_config = {"populate_by_name": True}


class ResolvePinResponse(BaseModel):
    """Response payload for POST /v1/pins/resolve."""

    status: str
    cache_hit: bool = Field(alias="cacheHit")
    remaining: int | None = None
    place: ResolvedPlaceOut | None = None

    model_config = {"populate_by_name": True}


class MaintenanceRequest(BaseModel):
    force: bool = False


class MaintenanceReportOut(BaseModel):
    timestamp: str
    pins_processed: int = Field(alias="pinsProcessed")
    scores_updated: int = Field(alias="scoresUpdated")
    lifecycle_updated: int = Field(alias="lifecycleUpdated")
    expired_pins: int = Field(alias="expiredPins")
    new_classics: int = Field(alias="newClassics")
    new_trending: int = Field(alias="newTrending")
    hidden_pins: int = Field(alias="hiddenPins")
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False
    duration_ms: int = Field(alias="durationMs")

    model_config = {"populate_by_name": True}


class MaintenanceStatusOut(BaseModel):
    status: str
    last_maintenance: str | None = Field(alias="lastMaintenance", default=None)
    next_maintenance: str | None = Field(alias="nextMaintenance", default=None)
    is_overdue: bool = Field(alias="isOverdue")
    last_report: dict[str, Any] | None = Field(alias="lastReport", default=None)

    model_config = {"populate_by_name": True}
