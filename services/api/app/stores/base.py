"""Document store contract shared by all backends.

A document is a JSON-serializable dict addressed by (collection, key).
Backends implement a handful of primitives; this base class bounds every call
with a timeout and maps backend connectivity errors to StoreUnavailable.

Transactions:
- `transact(refs, fn)` reads every ref, runs `fn(tx)` (sync, may be re-run on
  conflict), then commits the writes staged on `tx` atomically.
- Exceptions raised by `fn` abort the transaction without writing.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from typing import Any, NamedTuple, TypeVar

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

Document = dict[str, Any]


class StoreUnavailable(RuntimeError):
    """Backing store unreachable, timed out, or too contended to commit."""

    code = "STORE_UNAVAILABLE"
    status_code = 503


class DocRef(NamedTuple):
    collection: str
    key: str


class Transaction:
    """Snapshot of the refs read by a transaction plus staged writes."""

    def __init__(self, snapshots: dict[DocRef, Document | None]):
        self._snapshots = snapshots
        self.writes: dict[DocRef, Document] = {}

    def get(self, ref: DocRef) -> Document | None:
        if ref not in self._snapshots:
            raise KeyError(f"{ref} was not declared in this transaction")
        if ref in self.writes:
            return copy.deepcopy(self.writes[ref])
        doc = self._snapshots[ref]
        return copy.deepcopy(doc) if doc is not None else None

    def set(self, ref: DocRef, data: Document) -> None:
        if ref not in self._snapshots:
            raise KeyError(f"{ref} was not declared in this transaction")
        self.writes[ref] = copy.deepcopy(data)


class DocumentStore(ABC):
    """Abstract async document store."""

    # Backend exceptions that mean "store unreachable".
    unavailable_errors: tuple[type[BaseException], ...] = ()

    def __init__(self, *, timeout: float = 5.0, max_retries: int = 8):
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))

    async def _bounded(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(f"Store call timed out after {self.timeout}s") from e
        except self.unavailable_errors as e:
            raise StoreUnavailable(f"Store unavailable: {e}") from e

    # ============================================================
    # Public API
    # ============================================================

    async def get(self, collection: str, key: str) -> Document | None:
        return await self._bounded(self._get(DocRef(collection, key)))

    async def get_many(self, refs: Sequence[DocRef]) -> list[Document | None]:
        if not refs:
            return []
        return await self._bounded(self._get_many(list(refs)))

    async def set(self, collection: str, key: str, data: Document, *, merge: bool = False) -> None:
        """Write a document. With merge=True, top-level fields are merged into
        the existing document instead of replacing it."""
        ref = DocRef(collection, key)
        if not merge:
            await self._bounded(self._set(ref, data))
            return

        def _merge(tx: Transaction) -> None:
            current = tx.get(ref) or {}
            current.update(data)
            tx.set(ref, current)

        await self.transact([ref], _merge)

    async def add_to_set(
        self,
        collection: str,
        key: str,
        field: str,
        values: Iterable[str],
        extra: Document | None = None,
    ) -> None:
        """Append values to a list field, skipping ones already present.

        Order of first insertion is preserved so readers can take the most recent.
        """
        ref = DocRef(collection, key)
        new_values = [str(v) for v in values]

        def _union(tx: Transaction) -> None:
            current = tx.get(ref) or {}
            existing = [str(v) for v in current.get(field) or []]
            for v in new_values:
                if v not in existing:
                    existing.append(v)
            current[field] = existing
            if extra:
                current.update(extra)
            tx.set(ref, current)

        await self.transact([ref], _union)

    async def transact(self, refs: Sequence[DocRef], fn: Callable[[Transaction], T]) -> T:
        """Run `fn` as one atomic read-modify-write over `refs`."""
        unique = sorted(set(refs))
        return await self._bounded(self._transact(unique, fn))

    async def iter_collection(
        self, collection: str, *, page_size: int = 200
    ) -> AsyncIterator[list[tuple[str, Document]]]:
        """Yield pages of (key, document) for every document in a collection."""
        cursor: Any = None
        while True:
            items, cursor = await self._bounded(self._scan_page(collection, cursor, page_size))
            if items:
                yield items
            if cursor is None:
                return

    async def list_all(self, collection: str, *, page_size: int = 500) -> list[tuple[str, Document]]:
        out: list[tuple[str, Document]] = []
        async for page in self.iter_collection(collection, page_size=page_size):
            out.extend(page)
        return out

    async def ping(self) -> None:
        await self._bounded(self._ping())

    async def close(self) -> None:
        return None

    # ============================================================
    # Backend primitives
    # ============================================================

    @abstractmethod
    async def _get(self, ref: DocRef) -> Document | None: ...

    async def _get_many(self, refs: list[DocRef]) -> list[Document | None]:
        return [await self._get(ref) for ref in refs]

    @abstractmethod
    async def _set(self, ref: DocRef, data: Document) -> None: ...

    @abstractmethod
    async def _transact(self, refs: list[DocRef], fn: Callable[[Transaction], T]) -> T: ...

    @abstractmethod
    async def _scan_page(
        self, collection: str, cursor: Any, limit: int
    ) -> tuple[list[tuple[str, Document]], Any]:
        """Return (items, next_cursor); next_cursor is None when exhausted."""

    async def _ping(self) -> None:
        return None
