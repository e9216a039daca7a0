"""Shared fixtures."""

from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from app.dependencies import get_document_store, get_lifecycle_config, get_place_lookup_provider
from app.main import app
from app.services.lifecycle import LifecycleConfig
from app.stores.memory import InMemoryDocumentStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class UnreachableStore(InMemoryDocumentStore):
    """A store whose backend is always down."""

    unavailable_errors = (ConnectionError,)

    async def _get(self, ref):
        raise ConnectionError("connection refused")

    async def _set(self, ref, data):
        raise ConnectionError("connection refused")

    async def _transact(self, refs, fn):
        raise ConnectionError("connection refused")

    async def _scan_page(self, collection, cursor, limit):
        raise ConnectionError("connection refused")


@pytest.fixture
def unreachable_store() -> UnreachableStore:
    return UnreachableStore(timeout=2.0)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(timeout=2.0)


@pytest.fixture
def config() -> LifecycleConfig:
    return LifecycleConfig(enabled=True)


@pytest.fixture
async def client(store: InMemoryDocumentStore, config: LifecycleConfig):
    """Create test client backed by an in-memory store."""
    app.dependency_overrides[get_document_store] = lambda: store
    app.dependency_overrides[get_lifecycle_config] = lambda: config
    app.dependency_overrides[get_place_lookup_provider] = lambda: None
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
