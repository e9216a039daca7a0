"""Maintenance sweep: re-score and re-classify every place.

Per place, in its own transaction:
1. Recompute score from the full event history (aggregate approximation when
   a place has no history), clamped to >= 0
2. Re-derive recentEndorsements from endorsement + renewal events inside the
   recent window, clamped to totalEndorsements
3. Re-evaluate isHidden with the ledger rule (the sweep may also clear it)
4. Compare tab membership with what the previous sweep recorded

A place is written only when something changed, so a second consecutive run
reports zero deltas.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from app.models.place import PLACE_EVENTS, PLACES, Place, PlaceEvent, format_ts, parse_ts, utc_now
from app.services.lifecycle import LifecycleConfig, Tab, classify, should_hide
from app.services.trending import (
    EVENT_DOWNVOTE,
    EVENT_ENDORSEMENT,
    EVENT_RENEWAL,
    ScoredEvent,
    clamp_score,
    compute_score,
    days_between,
    event_weight,
)
from app.stores.base import DocRef, DocumentStore, StoreUnavailable, Transaction

logger = logging.getLogger("uvicorn.error")

MAINTENANCE = "maintenance"
MAINTENANCE_STATE_KEY = "state"

DUE_SOON_HOURS = 6
_SCORE_EPSILON = 1e-9


@dataclass
class MaintenanceReport:
    timestamp: str
    pins_processed: int = 0
    scores_updated: int = 0
    lifecycle_updated: int = 0
    expired_pins: int = 0
    new_classics: int = 0
    new_trending: int = 0
    hidden_pins: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: bool = False
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "pinsProcessed": self.pins_processed,
            "scoresUpdated": self.scores_updated,
            "lifecycleUpdated": self.lifecycle_updated,
            "expiredPins": self.expired_pins,
            "newClassics": self.new_classics,
            "newTrending": self.new_trending,
            "hiddenPins": self.hidden_pins,
            "errors": list(self.errors),
            "skipped": self.skipped,
            "durationMs": self.duration_ms,
        }


@dataclass
class _PlaceOutcome:
    score_changed: bool = False
    tabs_changed: bool = False
    expired: bool = False
    new_classic: bool = False
    new_trending: bool = False
    newly_hidden: bool = False


# ============================================================
# Per-place recomputation
# ============================================================


def recompute_score(place: Place, events: list[PlaceEvent], now: datetime, config: LifecycleConfig) -> float:
    if events:
        scored = [
            ScoredEvent(days_ago=days_between(e.at, now), weight=event_weight(e.kind, config.event_weights))
            for e in events
        ]
    else:
        age = days_between(place.last_endorsed_at, now)
        scored = [
            ScoredEvent(days_ago=age, weight=event_weight(EVENT_ENDORSEMENT, config.event_weights))
        ] * place.total_endorsements
        scored += [
            ScoredEvent(days_ago=age, weight=event_weight(EVENT_DOWNVOTE, config.event_weights))
        ] * place.downvotes
    return clamp_score(compute_score(scored, config.decay_half_life_days))


def recompute_recent(place: Place, events: list[PlaceEvent], now: datetime, config: LifecycleConfig) -> int:
    if events:
        recent = sum(
            1
            for e in events
            if e.kind in (EVENT_ENDORSEMENT, EVENT_RENEWAL)
            and days_between(e.at, now) <= config.recent_window_days
        )
    elif days_between(place.last_endorsed_at, now) > config.recent_window_days:
        recent = 0
    else:
        recent = place.recent_endorsements
    return max(0, min(recent, place.total_endorsements))


def _previous_tabs(place: Place, config: LifecycleConfig) -> set[Tab]:
    if place.sweep_tabs is not None:
        known = {t.value for t in Tab}
        return {Tab(t) for t in place.sweep_tabs if t in known}
    # Never swept: membership as of the last write.
    return classify(place, place.updated_at, config)


def sweep_place(
    tx: Transaction,
    place_ref: DocRef,
    events_ref: DocRef,
    now: datetime,
    config: LifecycleConfig,
) -> _PlaceOutcome | None:
    doc = tx.get(place_ref)
    if doc is None:
        return None
    place = Place.from_doc(doc)
    events_doc = tx.get(events_ref) or {}
    events = [PlaceEvent.from_doc(e) for e in events_doc.get("events") or []]

    before_tabs = _previous_tabs(place, config)
    was_hidden = place.is_hidden

    score = recompute_score(place, events, now, config)
    recent = recompute_recent(place, events, now, config)
    hidden = should_hide(place.downvotes, recent, config)

    outcome = _PlaceOutcome()
    outcome.score_changed = abs(score - place.score) > _SCORE_EPSILON
    changed = outcome.score_changed or recent != place.recent_endorsements or hidden != was_hidden

    place.score = score
    place.recent_endorsements = recent
    place.is_hidden = hidden
    after_tabs = classify(place, now, config)

    outcome.tabs_changed = after_tabs != before_tabs
    outcome.expired = Tab.RECENT in before_tabs and Tab.RECENT not in after_tabs
    outcome.new_classic = Tab.CLASSICS in after_tabs and Tab.CLASSICS not in before_tabs
    outcome.new_trending = Tab.TRENDING in after_tabs and Tab.TRENDING not in before_tabs
    outcome.newly_hidden = hidden and not was_hidden

    sweep_tabs = sorted(t.value for t in after_tabs)
    if changed or place.sweep_tabs != sweep_tabs:
        place.sweep_tabs = sweep_tabs
        place.swept_at = now
        tx.set(place_ref, place.to_doc())
    return outcome


# ============================================================
# Sweep
# ============================================================


async def get_maintenance_state(store: DocumentStore) -> dict[str, Any]:
    return await store.get(MAINTENANCE, MAINTENANCE_STATE_KEY) or {}


async def run_maintenance(
    store: DocumentStore,
    config: LifecycleConfig,
    *,
    force: bool = False,
    now: datetime | None = None,
) -> MaintenanceReport:
    """Run the sweep over every place and persist the report."""
    now = now or utc_now()
    started = time.perf_counter()
    report = MaintenanceReport(timestamp=format_ts(now) or "")

    if not force:
        state = await get_maintenance_state(store)
        last_run = parse_ts(state.get("lastRunAt"))
        if last_run is not None and now - last_run < timedelta(hours=config.maintenance_interval_hours):
            logger.info(f"[maintenance] skipped: last run at {format_ts(last_run)}")
            report.skipped = True
            return report

    logger.info("[maintenance] starting sweep...")
    try:
        async for page in store.iter_collection(PLACES, page_size=config.maintenance_page_size):
            for key, _ in page:
                report.pins_processed += 1
                place_ref = DocRef(PLACES, key)
                events_ref = DocRef(PLACE_EVENTS, key)
                try:
                    outcome = await store.transact(
                        [place_ref, events_ref],
                        lambda tx, p=place_ref, e=events_ref: sweep_place(tx, p, e, now, config),
                    )
                except (StoreUnavailable, KeyError, TypeError, ValueError) as e:
                    logger.warning(f"[maintenance] failed on {key}: {e}")
                    report.errors.append(f"{key}: {e}")
                    continue
                if outcome is None:
                    continue
                report.scores_updated += int(outcome.score_changed)
                report.lifecycle_updated += int(outcome.tabs_changed)
                report.expired_pins += int(outcome.expired)
                report.new_classics += int(outcome.new_classic)
                report.new_trending += int(outcome.new_trending)
                report.hidden_pins += int(outcome.newly_hidden)
    except StoreUnavailable as e:
        logger.error(f"[maintenance] aborted: {e}")
        report.errors.append(f"scan: {e}")

    report.duration_ms = int((time.perf_counter() - started) * 1000)

    try:
        await store.set(
            MAINTENANCE,
            MAINTENANCE_STATE_KEY,
            {"lastRunAt": report.timestamp, "lastReport": report.to_dict()},
        )
    except StoreUnavailable as e:
        logger.warning(f"[maintenance] could not record run: {e}")
        report.errors.append(f"state: {e}")

    logger.info(
        f"[maintenance] done in {report.duration_ms}ms: processed={report.pins_processed} "
        f"scores={report.scores_updated} lifecycle={report.lifecycle_updated} "
        f"expired={report.expired_pins} classics={report.new_classics} "
        f"trending={report.new_trending} hidden={report.hidden_pins} errors={len(report.errors)}"
    )
    return report


async def get_maintenance_status(
    store: DocumentStore,
    config: LifecycleConfig,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Schedule status: overdue | due-soon | up-to-date."""
    now = now or utc_now()
    state = await get_maintenance_state(store)
    last_run = parse_ts(state.get("lastRunAt"))
    interval = timedelta(hours=config.maintenance_interval_hours)

    if last_run is None:
        next_run = now
        status = "overdue"
    else:
        next_run = last_run + interval
        if now >= next_run:
            status = "overdue"
        elif next_run - now <= timedelta(hours=DUE_SOON_HOURS):
            status = "due-soon"
        else:
            status = "up-to-date"

    return {
        "status": status,
        "lastMaintenance": format_ts(last_run),
        "nextMaintenance": format_ts(next_run),
        "isOverdue": status == "overdue",
        "lastReport": state.get("lastReport"),
    }

