"""Place ledger: endorse / downvote / renew.

Each transition is one store transaction over three documents:
- places/<placeId>
- place_events/<placeId>             (append-only history, capped)
- place_actions/<placeId>:<userId>:<kind>

Rules:
- Endorsements are one per user per place, forever (DuplicateAction).
- Downvotes and renewals are one per user per place per cooldown (RateLimited).
- Downvotes can hide a place; only the maintenance sweep un-hides it.

Services accept dependencies explicitly (store, config, optional `now`).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from app.models.place import (
    PLACE_ACTIONS,
    PLACE_EVENTS,
    PLACES,
    Place,
    PlaceEvent,
    compute_place_id,
    format_ts,
    parse_ts,
    utc_now,
)
from app.services.errors import DuplicateAction, FeatureDisabled, InvalidInput, NotFound, RateLimited
from app.services.lifecycle import LifecycleConfig, should_hide
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
from app.stores.base import DocRef, DocumentStore, Transaction

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class PlaceSeed:
    """What a client knows about a place it is endorsing for the first time."""

    name: str
    lat: float
    lon: float
    external_place_id: str | None = None
    category: str | None = None

    @property
    def place_id(self) -> str:
        return compute_place_id(
            external_place_id=self.external_place_id,
            lat=self.lat,
            lon=self.lon,
            name=self.name,
        )


@dataclass
class LedgerResult:
    action: str  # created | updated | downvoted | renewed
    place: Place

    @property
    def is_hidden(self) -> bool:
        return self.place.is_hidden


def _require_enabled(config: LifecycleConfig) -> None:
    if not config.enabled:
        raise FeatureDisabled("Map lifecycle is not enabled")


def _require_user(user_id: str | None) -> str:
    user_id = (user_id or "").strip()
    if not user_id:
        raise InvalidInput("userId is required")
    return user_id


def _require_place_id(place_id: str | None) -> str:
    place_id = (place_id or "").strip()
    if not place_id:
        raise InvalidInput("placeId is required")
    return place_id


def validate_seed(
    *,
    name: str | None,
    lat: float | None,
    lon: float | None,
    external_place_id: str | None = None,
    category: str | None = None,
) -> PlaceSeed:
    """Validate client-provided place fields and build a PlaceSeed."""
    name = (name or "").strip()
    missing = [k for k, v in (("name", name), ("lat", lat), ("lng", lon)) if v is None or v == ""]
    if missing:
        raise InvalidInput(f"Missing required fields: {', '.join(missing)}", detail={"missing": missing})
    try:
        lat_f = float(lat)  # type: ignore[arg-type]
        lon_f = float(lon)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise InvalidInput("lat/lng must be numbers") from e
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        raise InvalidInput("lat/lng must be finite")
    if not (-90 <= lat_f <= 90) or not (-180 <= lon_f <= 180):
        raise InvalidInput("lat/lng out of range")
    return PlaceSeed(
        name=name,
        lat=lat_f,
        lon=lon_f,
        external_place_id=(external_place_id or "").strip() or None,
        category=(category or "").strip() or None,
    )


def _refs(place_id: str, user_id: str, kind: str) -> tuple[DocRef, DocRef, DocRef]:
    return (
        DocRef(PLACES, place_id),
        DocRef(PLACE_EVENTS, place_id),
        DocRef(PLACE_ACTIONS, f"{place_id}:{user_id}:{kind}"),
    )


def _append_event(
    tx: Transaction, ref: DocRef, kind: str, now: datetime, config: LifecycleConfig
) -> None:
    doc = tx.get(ref) or {"events": []}
    events = list(doc.get("events") or [])
    events.append(PlaceEvent(kind=kind, at=now).to_doc())
    doc["events"] = events[-config.event_history_limit :]
    tx.set(ref, doc)


def _record_action(tx: Transaction, ref: DocRef, place_id: str, user_id: str, kind: str, now: datetime) -> None:
    tx.set(ref, {"placeId": place_id, "userId": user_id, "kind": kind, "at": format_ts(now)})


def _check_cooldown(action_doc: dict[str, Any] | None, now: datetime, config: LifecycleConfig, kind: str) -> None:
    if action_doc is None:
        return
    last_at = parse_ts(action_doc.get("at"))
    if last_at is None:
        return
    cooldown = timedelta(hours=config.action_cooldown_hours)
    if now - last_at < cooldown:
        retry_after = int((last_at + cooldown - now).total_seconds())
        raise RateLimited(
            f"Already {kind}d this place within the last {config.action_cooldown_hours:g} hours",
            detail={"retryAfterSeconds": max(retry_after, 0)},
        )


def _fresh_score(kind: str, config: LifecycleConfig) -> float:
    return compute_score(
        [ScoredEvent(days_ago=0, weight=event_weight(kind, config.event_weights))],
        config.decay_half_life_days,
    )


# ============================================================
# Transitions
# ============================================================


async def endorse(
    store: DocumentStore,
    config: LifecycleConfig,
    *,
    user_id: str | None,
    place_id: str | None = None,
    seed: PlaceSeed | None = None,
    now: datetime | None = None,
) -> LedgerResult:
    """Endorse an existing place (by id) or create it from a seed."""
    _require_enabled(config)
    user_id = _require_user(user_id)
    if place_id:
        place_id = _require_place_id(place_id)
    elif seed is not None:
        place_id = seed.place_id
    else:
        raise InvalidInput("placeId or place fields (name, lat, lng) are required")
    now = now or utc_now()
    place_ref, events_ref, action_ref = _refs(place_id, user_id, EVENT_ENDORSEMENT)

    def _apply(tx: Transaction) -> LedgerResult:
        doc = tx.get(place_ref)
        if doc is None:
            if seed is None:
                raise NotFound(f"Place not found: {place_id}")
            place = Place(
                id=place_id,
                external_place_id=seed.external_place_id,
                name=seed.name,
                category=seed.category or "general",
                lat=seed.lat,
                lon=seed.lon,
                created_at=now,
                updated_at=now,
                last_endorsed_at=now,
                total_endorsements=1,
                recent_endorsements=1,
                downvotes=0,
                is_hidden=False,
                score=clamp_score(_fresh_score(EVENT_ENDORSEMENT, config)),
            )
            action = "created"
        else:
            if tx.get(action_ref) is not None:
                raise DuplicateAction("User already endorsed this place")
            place = Place.from_doc(doc)
            place.total_endorsements += 1
            if days_between(place.last_endorsed_at, now) <= config.recent_window_days:
                place.recent_endorsements += 1
            place.recent_endorsements = min(place.recent_endorsements, place.total_endorsements)
            place.last_endorsed_at = now
            place.updated_at = now
            place.score = clamp_score(_fresh_score(EVENT_ENDORSEMENT, config))
            action = "updated"

        tx.set(place_ref, place.to_doc())
        _append_event(tx, events_ref, EVENT_ENDORSEMENT, now, config)
        _record_action(tx, action_ref, place_id, user_id, EVENT_ENDORSEMENT, now)
        return LedgerResult(action=action, place=place)

    result = await store.transact([place_ref, events_ref, action_ref], _apply)
    logger.info(
        f"[ledger] endorse {result.action} place={place_id} user={user_id} "
        f"total={result.place.total_endorsements} recent={result.place.recent_endorsements}"
    )
    return result


async def downvote(
    store: DocumentStore,
    config: LifecycleConfig,
    *,
    place_id: str | None,
    user_id: str | None,
    now: datetime | None = None,
) -> LedgerResult:
    """Downvote a place; hides it once the downvote rule trips."""
    _require_enabled(config)
    place_id = _require_place_id(place_id)
    user_id = _require_user(user_id)
    now = now or utc_now()
    place_ref, events_ref, action_ref = _refs(place_id, user_id, EVENT_DOWNVOTE)

    def _apply(tx: Transaction) -> LedgerResult:
        doc = tx.get(place_ref)
        if doc is None:
            raise NotFound(f"Place not found: {place_id}")
        _check_cooldown(tx.get(action_ref), now, config, "downvote")

        place = Place.from_doc(doc)
        place.downvotes += 1
        place.updated_at = now
        place.score = clamp_score(_fresh_score(EVENT_DOWNVOTE, config))
        if should_hide(place.downvotes, place.recent_endorsements, config):
            place.is_hidden = True

        tx.set(place_ref, place.to_doc())
        _append_event(tx, events_ref, EVENT_DOWNVOTE, now, config)
        _record_action(tx, action_ref, place_id, user_id, EVENT_DOWNVOTE, now)
        return LedgerResult(action="downvoted", place=place)

    result = await store.transact([place_ref, events_ref, action_ref], _apply)
    if result.place.is_hidden:
        logger.info(f"[ledger] place hidden due to downvotes: {place_id} ({result.place.downvotes})")
    else:
        logger.info(f"[ledger] downvote place={place_id} user={user_id} downvotes={result.place.downvotes}")
    return result


async def renew(
    store: DocumentStore,
    config: LifecycleConfig,
    *,
    place_id: str | None,
    user_id: str | None,
    now: datetime | None = None,
) -> LedgerResult:
    """Renew a place's recency without adding an endorsement."""
    _require_enabled(config)
    place_id = _require_place_id(place_id)
    user_id = _require_user(user_id)
    now = now or utc_now()
    place_ref, events_ref, action_ref = _refs(place_id, user_id, EVENT_RENEWAL)

    def _apply(tx: Transaction) -> LedgerResult:
        doc = tx.get(place_ref)
        if doc is None:
            raise NotFound(f"Place not found: {place_id}")
        _check_cooldown(tx.get(action_ref), now, config, "renew")

        place = Place.from_doc(doc)
        if days_between(place.last_endorsed_at, now) <= config.recent_window_days:
            place.recent_endorsements += 1
        place.recent_endorsements = min(place.recent_endorsements, place.total_endorsements)
        place.last_endorsed_at = now
        place.updated_at = now
        place.score = clamp_score(_fresh_score(EVENT_RENEWAL, config))

        tx.set(place_ref, place.to_doc())
        _append_event(tx, events_ref, EVENT_RENEWAL, now, config)
        _record_action(tx, action_ref, place_id, user_id, EVENT_RENEWAL, now)
        return LedgerResult(action="renewed", place=place)

    result = await store.transact([place_ref, events_ref, action_ref], _apply)
    logger.info(f"[ledger] renew place={place_id} user={user_id} recent={result.place.recent_endorsements}")
    return result


async def get_place(store: DocumentStore, place_id: str | None) -> Place:
    place_id = _require_place_id(place_id)
    doc = await store.get(PLACES, place_id)
    if doc is None:
        raise NotFound(f"Place not found: {place_id}")
    return Place.from_doc(doc)


async def get_place_events(store: DocumentStore, place_id: str) -> list[PlaceEvent]:
    doc = await store.get(PLACE_EVENTS, place_id)
    if not doc:
        return []
    return [PlaceEvent.from_doc(e) for e in doc.get("events") or []]
