"""Redis document store.

Handles:
- Connection lifecycle (init/close, same as the API lifespan)
- JSON documents under "doc:<collection>:<key>"
- Optimistic transactions (WATCH / MULTI / EXEC) with bounded retries

Every call carries a socket timeout; connection and timeout errors surface as
StoreUnavailable so callers can apply their own fail-open/fail-closed policy.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from app.settings import get_settings
from app.stores.base import Document, DocRef, DocumentStore, StoreUnavailable, Transaction

T = TypeVar("T")

# Key prefix for all documents
PREFIX_DOC = "doc:"

# Redis client (initialized on startup)
_redis: redis.Redis | None = None
logger = logging.getLogger("uvicorn.error")


async def init_redis() -> None:
    """Initialize Redis connection."""
    global _redis
    settings = get_settings()
    _redis = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=settings.store_timeout_seconds,
        socket_timeout=settings.store_timeout_seconds,
    )
    # Validate connectivity early (especially for `rediss://` in production).
    await _redis.ping()
    logger.info("Redis connected")


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def _get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


class RedisDocumentStore(DocumentStore):
    """Document store on top of a redis.asyncio client."""

    unavailable_errors = (RedisConnectionError, RedisTimeoutError, OSError)

    def __init__(
        self,
        client: redis.Redis | None = None,
        *,
        prefix: str = PREFIX_DOC,
        timeout: float = 5.0,
        max_retries: int = 8,
    ):
        super().__init__(timeout=timeout, max_retries=max_retries)
        self._client = client
        self._prefix = prefix

    @property
    def client(self) -> redis.Redis:
        return self._client if self._client is not None else _get_redis()

    def _key(self, ref: DocRef) -> str:
        return f"{self._prefix}{ref.collection}:{ref.key}"

    @staticmethod
    def _loads(raw: str | None) -> Document | None:
        if raw is None:
            return None
        return json.loads(raw)

    async def _get(self, ref: DocRef) -> Document | None:
        return self._loads(await self.client.get(self._key(ref)))

    async def _get_many(self, refs: list[DocRef]) -> list[Document | None]:
        raws = await self.client.mget([self._key(r) for r in refs])
        return [self._loads(raw) for raw in raws]

    async def _set(self, ref: DocRef, data: Document) -> None:
        await self.client.set(self._key(ref), json.dumps(data))

    async def _transact(self, refs: list[DocRef], fn: Callable[[Transaction], T]) -> T:
        keys = [self._key(r) for r in refs]
        async with self.client.pipeline(transaction=True) as pipe:
            for attempt in range(1, self.max_retries + 1):
                try:
                    await pipe.watch(*keys)
                    snapshots: dict[DocRef, Document | None] = {}
                    for ref, key in zip(refs, keys):
                        snapshots[ref] = self._loads(await pipe.get(key))
                    tx = Transaction(snapshots)
                    try:
                        result = fn(tx)
                    except Exception:
                        await pipe.unwatch()
                        raise
                    pipe.multi()
                    for ref, data in tx.writes.items():
                        pipe.set(self._key(ref), json.dumps(data))
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.info(f"[redis] transaction conflict on {keys} (attempt {attempt})")
                    await pipe.reset()
                    continue
        raise StoreUnavailable(f"Transaction on {keys} did not commit after {self.max_retries} attempts")

    async def _scan_page(
        self, collection: str, cursor: Any, limit: int
    ) -> tuple[list[tuple[str, Document]], Any]:
        match_prefix = f"{self._prefix}{collection}:"
        next_cursor, keys = await self.client.scan(
            cursor=int(cursor or 0), match=f"{match_prefix}*", count=limit
        )
        items: list[tuple[str, Document]] = []
        if keys:
            raws = await self.client.mget(keys)
            for key, raw in zip(keys, raws):
                doc = self._loads(raw)
                if doc is not None:
                    items.append((key[len(match_prefix):], doc))
        return items, (next_cursor or None)

    async def _ping(self) -> None:
        await self.client.ping()
