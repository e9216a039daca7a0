"""Document store contract, run against every backend available in CI.

Redis runs only when TEST_REDIS_URL is set.
"""

import asyncio
import os
import uuid

import pytest

from app.stores.base import DocRef, StoreUnavailable
from app.stores.memory import InMemoryDocumentStore

TEST_REDIS_URL = os.getenv("TEST_REDIS_URL")


@pytest.fixture(params=["memory", "sqlite", "redis"])
async def doc_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryDocumentStore(timeout=2.0)
        return

    if request.param == "sqlite":
        from app.stores.postgres import (
            SqlDocumentStore,
            close_db,
            create_tables,
            drop_tables,
            get_session_factory,
            init_db,
        )

        await init_db(f"sqlite+aiosqlite:///{tmp_path / 'documents.db'}")
        await create_tables()
        try:
            yield SqlDocumentStore(get_session_factory(), timeout=5.0)
        finally:
            await drop_tables()
            await close_db()
        return

    if not TEST_REDIS_URL:
        pytest.skip("TEST_REDIS_URL not set")

    import redis.asyncio as redis

    from app.stores.redis import RedisDocumentStore

    client = redis.from_url(TEST_REDIS_URL, encoding="utf-8", decode_responses=True)
    prefix = f"test:{uuid.uuid4().hex[:8]}:"
    try:
        yield RedisDocumentStore(client, prefix=prefix, timeout=5.0)
    finally:
        keys = [k async for k in client.scan_iter(match=f"{prefix}*")]
        if keys:
            await client.delete(*keys)
        await client.aclose()


@pytest.mark.asyncio
async def test_get_set_and_merge(doc_store):
    """Test get, set and merge writes."""
    assert await doc_store.get("places", "missing") is None

    await doc_store.set("places", "a", {"name": "Signal Hill", "score": 1.0})
    assert await doc_store.get("places", "a") == {"name": "Signal Hill", "score": 1.0}

    await doc_store.set("places", "a", {"score": 2.0}, merge=True)
    assert await doc_store.get("places", "a") == {"name": "Signal Hill", "score": 2.0}

    await doc_store.set("places", "a", {"score": 3.0})
    assert await doc_store.get("places", "a") == {"score": 3.0}

    docs = await doc_store.get_many([DocRef("places", "a"), DocRef("places", "missing")])
    assert docs == [{"score": 3.0}, None]


@pytest.mark.asyncio
async def test_add_to_set_keeps_insertion_order(doc_store):
    """Test set append keeps first-seen order."""
    await doc_store.add_to_set("buckets", "k", "ids", ["b", "a"])
    await doc_store.add_to_set("buckets", "k", "ids", ["a", "c"], extra={"updatedAt": "t1"})

    doc = await doc_store.get("buckets", "k")
    assert doc["ids"] == ["b", "a", "c"]
    assert doc["updatedAt"] == "t1"


@pytest.mark.asyncio
async def test_transaction_commits_all_writes(doc_store):
    """Test a transaction commits all staged writes."""
    a, b = DocRef("places", "a"), DocRef("place_events", "a")

    def fn(tx):
        assert tx.get(a) is None
        tx.set(a, {"n": 1})
        tx.set(b, {"events": ["x"]})
        # Reads inside the transaction see staged writes
        return tx.get(a)["n"]

    assert await doc_store.transact([a, b], fn) == 1
    assert await doc_store.get("places", "a") == {"n": 1}
    assert await doc_store.get("place_events", "a") == {"events": ["x"]}


@pytest.mark.asyncio
async def test_transaction_error_writes_nothing(doc_store):
    """Test a failed transaction leaves no writes."""
    a, b = DocRef("places", "a"), DocRef("places", "b")

    def fn(tx):
        tx.set(a, {"n": 1})
        raise ValueError("nope")

    with pytest.raises(ValueError):
        await doc_store.transact([a, b], fn)
    assert await doc_store.get("places", "a") is None

    def undeclared(tx):
        tx.get(DocRef("places", "other"))

    with pytest.raises(KeyError):
        await doc_store.transact([a], undeclared)


@pytest.mark.asyncio
async def test_iter_collection_pages_through_everything(doc_store):
    """Test collection paging covers every document."""
    for i in range(7):
        await doc_store.set("places", f"p{i}", {"i": i})
    await doc_store.set("place_events", "p0", {"events": []})

    pages = [page async for page in doc_store.iter_collection("places", page_size=3)]
    keys = sorted(k for page in pages for k, _ in page)
    assert keys == [f"p{i}" for i in range(7)]

    all_docs = dict(await doc_store.list_all("places"))
    assert all_docs["p3"] == {"i": 3}
    assert len(all_docs) == 7

    await doc_store.ping()


@pytest.mark.asyncio
async def test_memory_transactions_serialize_per_document():
    """Test in-memory transactions on one document serialize."""
    store = InMemoryDocumentStore(timeout=2.0)
    ref = DocRef("counters", "c")

    def incr(tx):
        doc = tx.get(ref) or {"n": 0}
        tx.set(ref, {"n": doc["n"] + 1})

    await asyncio.gather(*[store.transact([ref], incr) for _ in range(50)])
    assert await store.get("counters", "c") == {"n": 50}


@pytest.mark.asyncio
async def test_memory_locks_are_released_after_use():
    """Test in-memory document locks are dropped when idle."""
    store = InMemoryDocumentStore(timeout=2.0)
    refs = [DocRef("counters", f"c{i % 5}") for i in range(50)]
    shared = DocRef("counters", "shared")

    def incr(*targets):
        def fn(tx):
            for ref in targets:
                doc = tx.get(ref) or {"n": 0}
                tx.set(ref, {"n": doc["n"] + 1})

        return fn

    await asyncio.gather(*[store.transact([ref, shared], incr(ref, shared)) for ref in refs])
    await store.set("counters", "other", {"n": 1})
    assert await store.get("counters", "shared") == {"n": 50}
    assert await store.get("counters", "c3") == {"n": 10}
    assert store._locks == {}

    def fail(tx):
        raise ValueError("nope")

    with pytest.raises(ValueError):
        await store.transact([DocRef("counters", "c0")], fail)
    assert store._locks == {}


@pytest.mark.asyncio
async def test_timeout_maps_to_store_unavailable():
    """Test slow store calls raise StoreUnavailable."""
    class SlowStore(InMemoryDocumentStore):
        async def _get(self, ref):
            await asyncio.sleep(1.0)

    with pytest.raises(StoreUnavailable):
        await SlowStore(timeout=0.05).get("places", "a")
