"""Document stores for persistence and caching.

Stores handle:
- base: DocumentStore contract (get/set/transact/scan, timeouts -> StoreUnavailable)
- Redis: JSON documents, WATCH/MULTI/EXEC transactions
- PostgreSQL: documents table, SELECT ... FOR UPDATE transactions
- memory: in-process store for local dev and tests

No lifecycle/scoring logic in stores - that belongs in services.
"""
