"""PostgreSQL store with async SQLAlchemy.

Handles:
- Database session management
- Connection pooling
- SqlDocumentStore: documents table with row-level locking
  (SELECT ... FOR UPDATE) for transactions
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.settings import get_settings
from app.stores.base import Document, DocRef, DocumentStore, StoreUnavailable, Transaction

T = TypeVar("T")

logger = logging.getLogger("uvicorn.error")


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


# Engine and session factory (initialized on startup)
_engine = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(database_url: str | None = None) -> None:
    """Initialize database connection pool."""
    global _engine, _session_factory

    settings = get_settings()
    url = database_url or settings.async_database_url
    engine_kwargs: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        engine_kwargs.update(
            connect_args=settings.asyncpg_connect_args,
            pool_size=5,
            max_overflow=10,
        )
    _engine = create_async_engine(url, **engine_kwargs)
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def close_db() -> None:
    """Close database connection pool."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def ping_db() -> None:
    """Run a trivial query to validate connectivity."""
    async with get_session() as session:
        await session.execute(text("SELECT 1"))


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session context manager.

    Usage:
        async with get_session() as session:
            result = await session.execute(query)
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables() -> None:
    """Create all tables (for development/testing only)."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    # Register models on Base.metadata
    from app.models import StoredDocument  # noqa: F401

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables() -> None:
    """Drop all tables (for testing only)."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ============================================================
# Document store
# ============================================================


class SqlDocumentStore(DocumentStore):
    """Document store on the `documents` table.

    Transactions lock existing rows with SELECT ... FOR UPDATE (in key order,
    so concurrent transactions cannot deadlock). Two transactions racing to
    create the same row collide on the primary key; the loser retries and
    then sees the winner's row.
    """

    unavailable_errors = (OperationalError, DBAPIError, OSError)

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        timeout: float = 5.0,
        max_retries: int = 8,
    ):
        super().__init__(timeout=timeout, max_retries=max_retries)
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def _get(self, ref: DocRef) -> Document | None:
        from app.models import StoredDocument

        async with self.session_factory() as session:
            row = await session.get(StoredDocument, (ref.collection, ref.key))
            return dict(row.data) if row is not None else None

    async def _set(self, ref: DocRef, data: Document) -> None:
        await self._transact([ref], lambda tx: tx.set(ref, data))

    async def _transact(self, refs: list[DocRef], fn: Callable[[Transaction], T]) -> T:
        from app.models import StoredDocument

        for attempt in range(1, self.max_retries + 1):
            async with self.session_factory() as session:
                try:
                    async with session.begin():
                        rows: dict[DocRef, Any] = {}
                        for ref in refs:
                            rows[ref] = await session.get(
                                StoredDocument,
                                (ref.collection, ref.key),
                                with_for_update=True,
                                populate_existing=True,
                            )
                        tx = Transaction(
                            {ref: (dict(row.data) if row is not None else None) for ref, row in rows.items()}
                        )
                        result = fn(tx)
                        now = datetime.now(timezone.utc)
                        for ref, data in tx.writes.items():
                            row = rows[ref]
                            if row is None:
                                session.add(
                                    StoredDocument(
                                        collection=ref.collection,
                                        key=ref.key,
                                        data=data,
                                        updated_at=now,
                                    )
                                )
                            else:
                                row.data = data
                                row.updated_at = now
                    return result
                except IntegrityError:
                    logger.info(f"[postgres] insert race on {refs} (attempt {attempt})")
                    continue
        raise StoreUnavailable(f"Transaction on {refs} did not commit after {self.max_retries} attempts")

    async def _scan_page(
        self, collection: str, cursor: Any, limit: int
    ) -> tuple[list[tuple[str, Document]], Any]:
        from app.models import StoredDocument

        query = (
            select(StoredDocument)
            .where(StoredDocument.collection == collection)
            .order_by(StoredDocument.key.asc())
            .limit(limit + 1)
        )
        if cursor is not None:
            query = query.where(StoredDocument.key > cursor)

        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = list(result.scalars().all())

        page = rows[:limit]
        items = [(row.key, dict(row.data)) for row in page]
        next_cursor = page[-1].key if len(rows) > limit else None
        return items, next_cursor

    async def _ping(self) -> None:
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))
