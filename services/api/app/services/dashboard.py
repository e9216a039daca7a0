"""Admin dashboard aggregates.

Single pass over all places:
- lifecycle: per-tab membership counts, expiring soon, hidden, problematic
- scoring: average, top 5 by score, top 5 trending, score distribution
- maintenance: schedule status + system health derived from it
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.models.place import PLACES, Place, format_ts, utc_now
from app.services.lifecycle import LifecycleConfig, Tab, classify, is_expiring_soon, sort_places
from app.services.maintenance import get_maintenance_status
from app.stores.base import DocumentStore

TOP_N = 5
HIGH_SCORE = 2.0
MEDIUM_SCORE = 1.0


def is_problematic(place: Place) -> bool:
    if place.downvotes <= 0:
        return False
    return place.downvotes / max(place.total_endorsements, 1) > 0.5


def _summary(place: Place) -> dict[str, Any]:
    return {
        "id": place.id,
        "name": place.name,
        "category": place.category,
        "score": round(place.score, 4),
        "totalEndorsements": place.total_endorsements,
        "recentEndorsements": place.recent_endorsements,
    }


async def get_dashboard_stats(
    store: DocumentStore,
    config: LifecycleConfig,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or utc_now()

    places: list[Place] = []
    async for page in store.iter_collection(PLACES, page_size=config.maintenance_page_size):
        places.extend(Place.from_doc(doc) for _, doc in page)

    lifecycle = {t.value: 0 for t in Tab}
    lifecycle.update(expiringSoon=0, hiddenPins=0, problematicPins=0)
    trending: list[Place] = []
    distribution = {"high": 0, "medium": 0, "low": 0}
    total_score = 0.0

    for place in places:
        tabs = classify(place, now, config)
        for tab in tabs:
            lifecycle[tab.value] += 1
        if Tab.TRENDING in tabs:
            trending.append(place)
        if is_expiring_soon(place, now, config):
            lifecycle["expiringSoon"] += 1
        if place.is_hidden:
            lifecycle["hiddenPins"] += 1
        if is_problematic(place):
            lifecycle["problematicPins"] += 1

        total_score += place.score
        if place.score >= HIGH_SCORE:
            distribution["high"] += 1
        elif place.score >= MEDIUM_SCORE:
            distribution["medium"] += 1
        else:
            distribution["low"] += 1

    average = total_score / len(places) if places else 0.0
    top = sort_places(places, Tab.TRENDING)[:TOP_N]
    top_trending = sort_places(trending, Tab.TRENDING)[:TOP_N]

    maintenance = await get_maintenance_status(store, config, now=now)
    if maintenance["status"] == "overdue":
        health = "critical"
    elif maintenance["status"] == "due-soon":
        health = "warning"
    else:
        health = "healthy"

    return {
        "totalPins": len(places),
        "lifecycle": lifecycle,
        "scoring": {
            "averageScore": round(average, 2),
            "topPins": [_summary(p) for p in top],
            "trendingPins": [_summary(p) for p in top_trending],
            "scoreDistribution": distribution,
        },
        "maintenance": {
            "status": maintenance["status"],
            "lastMaintenance": maintenance["lastMaintenance"],
            "nextMaintenance": maintenance["nextMaintenance"],
            "isOverdue": maintenance["isOverdue"],
        },
        "system": {
            "enabled": config.enabled,
            "health": health,
            "lastUpdated": format_ts(now),
        },
    }
