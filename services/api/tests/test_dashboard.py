from datetime import timedelta

import pytest

from app.models.place import PLACES, Place
from app.services.dashboard import get_dashboard_stats, is_problematic
from app.services.maintenance import run_maintenance


def _place(now, place_id, *, age_days=10, last_days=1, total=1, recent=1, score=0.5, **kw) -> Place:
    return Place(
        id=place_id,
        name=place_id.upper(),
        lat=-33.92,
        lon=18.42,
        created_at=now - timedelta(days=age_days),
        updated_at=now - timedelta(days=last_days),
        last_endorsed_at=now - timedelta(days=last_days),
        total_endorsements=total,
        recent_endorsements=recent,
        score=score,
        **kw,
    )


@pytest.mark.asyncio
async def test_dashboard_counts(store, config, now):
    """Test dashboard tab counts, score stats and health."""
    places = [
        _place(now, "pl_trend", total=8, recent=6, score=3.2),
        _place(now, "pl_classic", age_days=400, last_days=200, total=15, recent=0, score=0.1),
        _place(now, "pl_expiring", age_days=87, last_days=87, score=1.1),
        _place(now, "pl_hidden", downvotes=12, is_hidden=True, score=0.0),
    ]
    for p in places:
        await store.set(PLACES, p.id, p.to_doc())

    stats = await get_dashboard_stats(store, config, now=now)

    assert stats["totalPins"] == 4
    lifecycle = stats["lifecycle"]
    assert lifecycle["all"] == 3
    assert lifecycle["recent"] == 2
    assert lifecycle["trending"] == 1
    assert lifecycle["classics"] == 1
    assert lifecycle["expiringSoon"] == 1
    assert lifecycle["hiddenPins"] == 1
    assert lifecycle["problematicPins"] == 1

    scoring = stats["scoring"]
    assert scoring["averageScore"] == round((3.2 + 0.1 + 1.1 + 0.0) / 4, 2)
    assert scoring["topPins"][0]["id"] == "pl_trend"
    assert [p["id"] for p in scoring["trendingPins"]] == ["pl_trend"]
    assert scoring["scoreDistribution"] == {"high": 1, "medium": 1, "low": 2}

    assert stats["maintenance"]["status"] == "overdue"
    assert stats["system"]["health"] == "critical"


@pytest.mark.asyncio
async def test_dashboard_health_follows_maintenance(store, config, now):
    """Test system health degrades as the last maintenance run ages."""
    await run_maintenance(store, config, now=now)

    assert (await get_dashboard_stats(store, config, now=now + timedelta(hours=1)))["system"]["health"] == "healthy"
    assert (await get_dashboard_stats(store, config, now=now + timedelta(hours=20)))["system"]["health"] == "warning"


@pytest.mark.asyncio
async def test_empty_dashboard(store, config, now):
    """Test dashboard on an empty store."""
    stats = await get_dashboard_stats(store, config, now=now)
    assert stats["totalPins"] == 0
    assert stats["scoring"]["averageScore"] == 0.0
    assert stats["scoring"]["topPins"] == []


def test_is_problematic(now):
    """Test problematic pins by downvote ratio."""
    assert not is_problematic(_place(now, "a", total=4, downvotes=2))
    assert is_problematic(_place(now, "b", total=4, downvotes=3))
    assert is_problematic(_place(now, "c", total=0, downvotes=1))
    assert not is_problematic(_place(now, "d", total=0))
