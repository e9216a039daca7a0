"""Daily quota limiter for external lookups.

One counter document per (UTC day, limiter key) in `quota_counters`, updated in
a single transaction: reject without incrementing once count >= max.

If the store is unreachable the limiter fails open by default (allowed, with
the full daily budget reported as remaining). Set QUOTA_FAIL_OPEN=false to fail
closed instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from app.models.place import format_ts, utc_now
from app.stores.base import DocRef, DocumentStore, StoreUnavailable, Transaction

logger = logging.getLogger("uvicorn.error")

QUOTA_COUNTERS = "quota_counters"


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    remaining: int


def utc_day_key(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


def _counter_ref(limiter_key: str, now: datetime) -> DocRef:
    return DocRef(QUOTA_COUNTERS, f"{utc_day_key(now)}:{limiter_key}")


async def try_consume(
    store: DocumentStore,
    limiter_key: str,
    max_per_day: int,
    *,
    now: datetime | None = None,
    fail_open: bool = True,
) -> QuotaDecision:
    """Consume one unit of today's quota for `limiter_key`."""
    now = now or utc_now()
    max_per_day = max(0, int(max_per_day))
    ref = _counter_ref(limiter_key, now)

    def _apply(tx: Transaction) -> QuotaDecision:
        doc = tx.get(ref) or {}
        count = int(doc.get("count") or 0)
        if count >= max_per_day:
            return QuotaDecision(allowed=False, remaining=0)
        tx.set(ref, {"count": count + 1, "updatedAt": format_ts(now)})
        return QuotaDecision(allowed=True, remaining=max(0, max_per_day - (count + 1)))

    try:
        decision = await store.transact([ref], _apply)
    except StoreUnavailable as e:
        if fail_open:
            logger.warning(f"[quota] store unavailable, failing open for {limiter_key}: {e}")
            return QuotaDecision(allowed=True, remaining=max_per_day)
        logger.warning(f"[quota] store unavailable, failing closed for {limiter_key}: {e}")
        return QuotaDecision(allowed=False, remaining=0)

    if not decision.allowed:
        logger.info(f"[quota] daily limit reached for {limiter_key} ({max_per_day}/day)")
    return decision


async def remaining_today(
    store: DocumentStore,
    limiter_key: str,
    max_per_day: int,
    *,
    now: datetime | None = None,
) -> int | None:
    """Read-only peek at today's remaining budget. None when the store is unreachable."""
    now = now or utc_now()
    ref = _counter_ref(limiter_key, now)
    try:
        doc = await store.get(ref.collection, ref.key)
    except StoreUnavailable as e:
        logger.warning(f"[quota] store unavailable reading {limiter_key}: {e}")
        return None
    count = int((doc or {}).get("count") or 0)
    return max(0, int(max_per_day) - count)
