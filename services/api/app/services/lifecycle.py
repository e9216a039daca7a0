"""Lifecycle classification for places.

Tabs:
- recent:   last activity (lastEndorsedAt, else createdAt) within recent_window_days
- trending: recentEndorsements >= trending_min_burst
- classics: age >= classics_min_age_days AND totalEndorsements >= classics_min_total_endorsements
- all:      every non-hidden place

Hidden places belong to no tab. Tab membership is always derived from the
stored counters at read time; nothing caches it.

Sort per tab (ties broken by id ascending):
- trending:   score DESC
- recent/all: max(lastEndorsedAt, createdAt) DESC
- classics:   totalEndorsements DESC
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from app.models.place import PLACES, Place, utc_now
from app.services.errors import InvalidInput
from app.services.trending import days_between
from app.settings import DEFAULT_EVENT_WEIGHTS, Settings, get_settings
from app.stores.base import DocumentStore

EXPIRING_SOON_DAYS = 7


class Tab(str, Enum):
    """Lifecycle tab."""

    RECENT = "recent"
    TRENDING = "trending"
    CLASSICS = "classics"
    ALL = "all"


# Primary tab priority for status reporting
_PRIMARY_ORDER = (Tab.TRENDING, Tab.RECENT, Tab.CLASSICS, Tab.ALL)


@dataclass(frozen=True)
class LifecycleConfig:
    """Thresholds for scoring, classification and the ledger."""

    enabled: bool = False
    recent_window_days: int = 90
    trending_min_burst: int = 5
    trending_window_days: int = 14
    classics_min_age_days: int = 180
    classics_min_total_endorsements: int = 10
    downvote_hide_threshold: int = 10
    decay_half_life_days: float = 30.0
    event_weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_EVENT_WEIGHTS))
    action_cooldown_hours: float = 24.0
    event_history_limit: int = 500
    maintenance_interval_hours: float = 24.0
    maintenance_page_size: int = 200

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "LifecycleConfig":
        s = settings or get_settings()
        return cls(
            enabled=s.map_lifecycle_enabled,
            recent_window_days=s.recent_window_days,
            trending_min_burst=s.trending_min_burst,
            trending_window_days=s.trending_window_days,
            classics_min_age_days=s.classics_min_age_days,
            classics_min_total_endorsements=s.classics_min_total_endorsements,
            downvote_hide_threshold=s.downvote_hide_threshold,
            decay_half_life_days=s.decay_half_life_days,
            event_weights=dict(s.event_weights),
            action_cooldown_hours=s.action_cooldown_hours,
            event_history_limit=s.event_history_limit,
            maintenance_interval_hours=s.maintenance_interval_hours,
            maintenance_page_size=s.maintenance_page_size,
        )


@dataclass(frozen=True)
class Bounds:
    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lon: float) -> bool:
        if not (self.south <= lat <= self.north):
            return False
        if self.west <= self.east:
            return self.west <= lon <= self.east
        # Box crosses the antimeridian
        return lon >= self.west or lon <= self.east

    def to_dict(self) -> dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


def parse_tab(value: str | None) -> Tab:
    if value is None or value == "":
        return Tab.ALL
    try:
        return Tab(str(value).strip().lower())
    except ValueError as e:
        raise InvalidInput(f"Unknown tab: {value!r}", detail={"allowed": [t.value for t in Tab]}) from e


def parse_bounds(
    north: float | None = None,
    south: float | None = None,
    east: float | None = None,
    west: float | None = None,
) -> Bounds | None:
    """Build Bounds from optional query params. All four or none."""
    values = (north, south, east, west)
    if all(v is None for v in values):
        return None
    if any(v is None for v in values):
        raise InvalidInput("Bounds require north, south, east and west")
    bounds = Bounds(north=float(north), south=float(south), east=float(east), west=float(west))
    if not (-90 <= bounds.south <= bounds.north <= 90):
        raise InvalidInput("Invalid bounds: expected -90 <= south <= north <= 90")
    if not (-180 <= bounds.west <= 180 and -180 <= bounds.east <= 180):
        raise InvalidInput("Invalid bounds: longitude must be within [-180, 180]")
    return bounds


# ============================================================
# Classification
# ============================================================


def is_recent(place: Place, now: datetime, config: LifecycleConfig) -> bool:
    return days_between(place.last_endorsed_at or place.created_at, now) <= config.recent_window_days


def is_trending(place: Place, config: LifecycleConfig) -> bool:
    return place.recent_endorsements >= config.trending_min_burst


def is_classic(place: Place, now: datetime, config: LifecycleConfig) -> bool:
    return (
        days_between(place.created_at, now) >= config.classics_min_age_days
        and place.total_endorsements >= config.classics_min_total_endorsements
    )


def classify(place: Place, now: datetime, config: LifecycleConfig) -> set[Tab]:
    """Return every tab the place belongs to (empty when hidden)."""
    if place.is_hidden:
        return set()
    tabs = {Tab.ALL}
    if is_recent(place, now, config):
        tabs.add(Tab.RECENT)
    if is_trending(place, config):
        tabs.add(Tab.TRENDING)
    if is_classic(place, now, config):
        tabs.add(Tab.CLASSICS)
    return tabs


def should_hide(downvotes: int, recent_endorsements: int, config: LifecycleConfig) -> bool:
    return downvotes >= config.downvote_hide_threshold or downvotes > 0.5 * recent_endorsements


def sort_places(places: Iterable[Place], tab: Tab) -> list[Place]:
    items = list(places)
    # Stable sort: id ascending first, then the tab's primary key descending.
    items.sort(key=lambda p: p.id)
    if tab == Tab.TRENDING:
        items.sort(key=lambda p: p.score, reverse=True)
    elif tab == Tab.CLASSICS:
        items.sort(key=lambda p: p.total_endorsements, reverse=True)
    else:
        items.sort(key=lambda p: p.last_activity_at, reverse=True)
    return items


async def list_by_tab(
    store: DocumentStore,
    config: LifecycleConfig,
    tab: Tab | str = Tab.ALL,
    *,
    bounds: Bounds | None = None,
    limit: int | None = None,
    offset: int = 0,
    now: datetime | None = None,
) -> list[Place]:
    """List places for a tab, filtered by optional bounds, sorted and paged."""
    tab = tab if isinstance(tab, Tab) else parse_tab(tab)
    if limit is not None and limit < 0:
        raise InvalidInput("limit must be >= 0")
    if offset < 0:
        raise InvalidInput("offset must be >= 0")
    now = now or utc_now()

    matched: list[Place] = []
    async for page in store.iter_collection(PLACES, page_size=config.maintenance_page_size):
        for _, doc in page:
            place = Place.from_doc(doc)
            if bounds is not None and not bounds.contains(place.lat, place.lon):
                continue
            if tab in classify(place, now, config):
                matched.append(place)

    ordered = sort_places(matched, tab)
    if limit is None:
        return ordered[offset:]
    return ordered[offset : offset + limit]


# ============================================================
# Status
# ============================================================


def lifecycle_status(place: Place, now: datetime, config: LifecycleConfig) -> dict[str, Any]:
    """Primary tab plus what it would take to move between tabs."""
    days_since_activity = days_between(place.last_endorsed_at or place.created_at, now)
    days_since_creation = days_between(place.created_at, now)

    status: dict[str, Any] = {
        "placeId": place.id,
        "tab": None,
        "tabs": [],
        "reason": "",
        "score": place.score,
        "isHidden": place.is_hidden,
        "daysUntilExpiry": None,
        "daysUntilClassic": None,
        "endorsementsUntilClassic": None,
    }

    if place.is_hidden:
        status["reason"] = f"Hidden due to downvotes ({place.downvotes})"
        status["recommendations"] = lifecycle_recommendations(place, status)
        return status

    tabs = classify(place, now, config)
    status["tabs"] = [t.value for t in _PRIMARY_ORDER if t in tabs]
    primary = next(t for t in _PRIMARY_ORDER if t in tabs)
    status["tab"] = primary.value

    if primary == Tab.TRENDING:
        status["reason"] = (
            f"Burst activity: {place.recent_endorsements} endorsements "
            f"in {config.trending_window_days} days"
        )
        status["daysUntilExpiry"] = max(0, config.trending_window_days - days_since_activity)
    elif primary == Tab.RECENT:
        status["reason"] = f"Recently active: {days_since_activity} days ago"
        status["daysUntilExpiry"] = max(0, config.recent_window_days - days_since_activity)
    elif primary == Tab.CLASSICS:
        status["reason"] = (
            f"Classic: {place.total_endorsements} endorsements over {days_since_creation} days"
        )
    else:
        status["reason"] = (
            f"General: {days_since_creation} days old, {place.total_endorsements} endorsements"
        )
        status["daysUntilClassic"] = max(0, config.classics_min_age_days - days_since_creation)
        status["endorsementsUntilClassic"] = max(
            0, config.classics_min_total_endorsements - place.total_endorsements
        )

    status["recommendations"] = lifecycle_recommendations(place, status)
    return status


def is_expiring_soon(place: Place, now: datetime, config: LifecycleConfig) -> bool:
    status = lifecycle_status(place, now, config)
    return status["tab"] == Tab.RECENT.value and (status["daysUntilExpiry"] or 0) <= EXPIRING_SOON_DAYS


def lifecycle_recommendations(place: Place, status: Mapping[str, Any]) -> list[str]:
    out: list[str] = []
    tab = status.get("tab")

    if tab == Tab.ALL.value:
        if status.get("daysUntilClassic"):
            out.append(f"Wait {status['daysUntilClassic']} more days to qualify for Classics")
        if status.get("endorsementsUntilClassic"):
            out.append(f"Needs {status['endorsementsUntilClassic']} more endorsements to qualify for Classics")
    elif tab == Tab.RECENT.value and (status.get("daysUntilExpiry") or 0) <= EXPIRING_SOON_DAYS:
        out.append("Expires from Recent soon; renew to keep it there")
    elif tab == Tab.TRENDING.value:
        out.append("Trending now")

    if place.downvotes > 0:
        out.append(f"Has {place.downvotes} downvotes")
    return out
