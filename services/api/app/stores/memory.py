"""In-process document store.

Used for local development and tests. Documents are kept as JSON strings so
callers never share mutable state with the store, and transactions take
per-document asyncio locks in sorted order. A lock lives only while
some coroutine holds or waits on it.

Not suitable for multi-instance deployments: each process has its own data.
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar

from app.stores.base import Document, DocRef, DocumentStore, Transaction

T = TypeVar("T")


class InMemoryDocumentStore(DocumentStore):
    """Document store backed by a dict, safe for concurrent coroutines."""

    def __init__(self, *, timeout: float = 5.0, max_retries: int = 8):
        super().__init__(timeout=timeout, max_retries=max_retries)
        self._data: dict[str, dict[str, str]] = defaultdict(dict)
        self._locks: dict[DocRef, list[Any]] = {}  # ref -> [lock, holders and waiters]

    @asynccontextmanager
    async def _hold(self, ref: DocRef) -> AsyncIterator[None]:
        """Hold the lock for one document, dropping it once nobody holds or waits on it."""
        entry = self._locks.get(ref)
        if entry is None:
            entry = self._locks[ref] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[ref]

    def _read(self, ref: DocRef) -> Document | None:
        raw = self._data[ref.collection].get(ref.key)
        return json.loads(raw) if raw is not None else None

    async def _get(self, ref: DocRef) -> Document | None:
        return self._read(ref)

    async def _set(self, ref: DocRef, data: Document) -> None:
        async with self._hold(ref):
            self._data[ref.collection][ref.key] = json.dumps(data)

    async def _transact(self, refs: list[DocRef], fn: Callable[[Transaction], T]) -> T:
        async with AsyncExitStack() as stack:
            for ref in refs:
                await stack.enter_async_context(self._hold(ref))
            tx = Transaction({ref: self._read(ref) for ref in refs})
            result = fn(tx)
            for ref, data in tx.writes.items():
                self._data[ref.collection][ref.key] = json.dumps(data)
            return result

    async def _scan_page(
        self, collection: str, cursor: Any, limit: int
    ) -> tuple[list[tuple[str, Document]], Any]:
        keys = sorted(self._data[collection].keys())
        if cursor is not None:
            keys = [k for k in keys if k > cursor]
        page = keys[:limit]
        items = [(k, json.loads(self._data[collection][k])) for k in page]
        next_cursor = page[-1] if len(keys) > limit else None
        return items, next_cursor
