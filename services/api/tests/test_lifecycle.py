from dataclasses import replace
from datetime import timedelta

import pytest

from app.models.place import PLACES, Place
from app.services.errors import InvalidInput
from app.services.lifecycle import (
    LifecycleConfig,
    Tab,
    classify,
    is_expiring_soon,
    lifecycle_status,
    list_by_tab,
    parse_bounds,
    parse_tab,
    should_hide,
    sort_places,
)


def make_place(now, place_id="pl_a", *, age_days=0, last_days=0, total=1, recent=1, **kw) -> Place:
    return Place(
        id=place_id,
        name=kw.pop("name", "Bo-Kaap"),
        lat=kw.pop("lat", -33.92),
        lon=kw.pop("lon", 18.41),
        created_at=now - timedelta(days=age_days),
        updated_at=now - timedelta(days=last_days),
        last_endorsed_at=now - timedelta(days=last_days),
        total_endorsements=total,
        recent_endorsements=recent,
        **kw,
    )


def test_classics_membership(now):
    """Test classics by age and total endorsements."""
    config = LifecycleConfig(classics_min_age_days=30, classics_min_total_endorsements=10)
    place = make_place(now, age_days=40, last_days=40, total=12, recent=0)
    assert Tab.CLASSICS in classify(place, now, config)


def test_recent_and_trending(now):
    """Test recent and trending membership."""
    config = LifecycleConfig()
    place = make_place(now, age_days=10, last_days=2, total=6, recent=5)
    tabs = classify(place, now, config)
    assert tabs == {Tab.ALL, Tab.RECENT, Tab.TRENDING}

    stale = make_place(now, age_days=200, last_days=91, total=3, recent=0)
    assert classify(stale, now, config) == {Tab.ALL}


def test_recent_window_boundary_is_inclusive(now):
    """Test the last day of the recent window still counts."""
    config = LifecycleConfig(recent_window_days=90)
    assert Tab.RECENT in classify(make_place(now, age_days=100, last_days=90), now, config)
    assert Tab.RECENT not in classify(make_place(now, age_days=100, last_days=91), now, config)


def test_partial_days_count_toward_windows(now):
    """Test partial days are rounded up for tab windows."""
    config = LifecycleConfig(recent_window_days=90, classics_min_age_days=30, classics_min_total_endorsements=10)
    assert Tab.RECENT in classify(make_place(now, age_days=100, last_days=89.5), now, config)
    # 90 days and 12 hours rounds up to 91 days
    assert Tab.RECENT not in classify(make_place(now, age_days=100, last_days=90.5), now, config)

    young = make_place(now, age_days=29.5, last_days=29.5, total=12, recent=0)
    assert Tab.CLASSICS in classify(young, now, config)


def test_hidden_place_belongs_to_no_tab(now):
    """Test hidden places are excluded from every tab."""
    place = make_place(now, total=20, recent=10, is_hidden=True, downvotes=20)
    assert classify(place, now, LifecycleConfig()) == set()


def test_should_hide_rule():
    """Test hide rule by threshold and ratio."""
    config = LifecycleConfig(downvote_hide_threshold=5)
    assert should_hide(5, 100, config)
    assert should_hide(3, 4, config)  # 3 > 0.5 * 4
    assert not should_hide(2, 4, config)
    assert not should_hide(0, 0, config)


def test_sort_orders(now):
    """Test per-tab sort order and id tiebreak."""
    a = make_place(now, "pl_a", age_days=10, total=5, last_days=3, score=1.0)
    b = make_place(now, "pl_b", age_days=10, total=9, last_days=1, score=0.5)
    c = make_place(now, "pl_c", age_days=10, total=9, last_days=1, score=1.0)

    assert [p.id for p in sort_places([a, b, c], Tab.TRENDING)] == ["pl_a", "pl_c", "pl_b"]
    assert [p.id for p in sort_places([a, b, c], Tab.CLASSICS)] == ["pl_b", "pl_c", "pl_a"]
    assert [p.id for p in sort_places([a, b, c], Tab.RECENT)] == ["pl_b", "pl_c", "pl_a"]


def test_parse_tab_and_bounds():
    """Test tab and bounds parsing."""
    assert parse_tab(None) == Tab.ALL
    assert parse_tab("Trending") == Tab.TRENDING
    with pytest.raises(InvalidInput):
        parse_tab("popular")

    assert parse_bounds() is None
    with pytest.raises(InvalidInput):
        parse_bounds(north=1.0, south=0.0)
    with pytest.raises(InvalidInput):
        parse_bounds(north=0.0, south=1.0, east=1.0, west=0.0)


def test_bounds_across_antimeridian():
    """Test bounds that wrap across longitude 180."""
    bounds = parse_bounds(north=10, south=-10, east=-170, west=170)
    assert bounds.contains(0, 175)
    assert bounds.contains(0, -175)
    assert not bounds.contains(0, 0)


@pytest.mark.asyncio
async def test_list_by_tab_filters_sorts_and_pages(store, now):
    """Test tab listing with bounds and paging."""
    config = LifecycleConfig()
    places = [
        make_place(now, "pl_1", last_days=1, lat=-33.92, lon=18.42),
        make_place(now, "pl_2", last_days=2, lat=-33.93, lon=18.43),
        make_place(now, "pl_3", last_days=3, lat=51.5, lon=-0.12),
        make_place(now, "pl_4", last_days=0, is_hidden=True, downvotes=10),
    ]
    for p in places:
        await store.set(PLACES, p.id, p.to_doc())

    listed = await list_by_tab(store, config, "all", now=now)
    assert [p.id for p in listed] == ["pl_1", "pl_2", "pl_3"]

    bounds = parse_bounds(north=-33.0, south=-34.0, east=19.0, west=18.0)
    in_cape_town = await list_by_tab(store, config, Tab.RECENT, bounds=bounds, now=now)
    assert [p.id for p in in_cape_town] == ["pl_1", "pl_2"]

    page = await list_by_tab(store, config, "all", limit=1, offset=1, now=now)
    assert [p.id for p in page] == ["pl_2"]

    with pytest.raises(InvalidInput):
        await list_by_tab(store, config, "popular", now=now)


def test_lifecycle_status_priority_and_hints(now):
    """Test primary tab priority and expiry hints."""
    config = LifecycleConfig()

    trending = lifecycle_status(make_place(now, total=8, recent=6, last_days=1), now, config)
    assert trending["tab"] == "trending"
    assert trending["daysUntilExpiry"] == 13
    assert trending["reason"] == "Burst activity: 6 endorsements in 14 days"

    recent = lifecycle_status(make_place(now, last_days=85, age_days=85), now, config)
    assert recent["tab"] == "recent"
    assert recent["daysUntilExpiry"] == 5

    general = lifecycle_status(make_place(now, age_days=150, last_days=120, total=4, recent=0), now, config)
    assert general["tab"] == "all"
    assert general["daysUntilClassic"] == 30
    assert general["endorsementsUntilClassic"] == 6

    hidden = lifecycle_status(make_place(now, is_hidden=True, downvotes=12), now, config)
    assert hidden["tab"] is None
    assert hidden["tabs"] == []


def test_expiring_soon(now):
    """Test expiring-soon only applies to recent places."""
    config = LifecycleConfig()
    assert is_expiring_soon(make_place(now, age_days=85, last_days=85), now, config)
    assert not is_expiring_soon(make_place(now, age_days=10, last_days=10), now, config)
    # Trending takes priority over recent
    assert not is_expiring_soon(make_place(now, age_days=85, last_days=85, total=5, recent=5), now, config)


def test_config_is_replaceable():
    """Test config copies with overrides."""
    config = replace(LifecycleConfig(), recent_window_days=7)
    assert config.recent_window_days == 7
    assert config.trending_min_burst == 5


def test_trending_status_uses_trending_window(now):
    """Test trending status counts down the trending window."""
    config = LifecycleConfig(trending_window_days=7)
    status = lifecycle_status(make_place(now, total=9, recent=5, last_days=3), now, config)
    assert status["tab"] == "trending"
    assert status["reason"] == "Burst activity: 5 endorsements in 7 days"
    assert status["daysUntilExpiry"] == 4

    stale = lifecycle_status(make_place(now, total=9, recent=5, last_days=30), now, config)
    assert stale["tab"] == "trending"
    assert stale["daysUntilExpiry"] == 0
