"""FastAPI dependencies.

The document store and place lookup provider are created in the app lifespan
and kept on `app.state`; configs are derived from settings per request. Tests
swap any of these through `app.dependency_overrides`.
"""

from fastapi import Request

from app.services.geo_cache import GeoCacheConfig
from app.services.lifecycle import LifecycleConfig
from app.services.place_lookup import PlaceLookupProvider, ResolverConfig
from app.stores.base import DocumentStore, StoreUnavailable


def get_document_store(request: Request) -> DocumentStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise StoreUnavailable("Document store not initialized")
    return store


def get_place_lookup_provider(request: Request) -> PlaceLookupProvider:
    return request.app.state.place_provider


def get_lifecycle_config() -> LifecycleConfig:
    return LifecycleConfig.from_settings()


def get_geo_cache_config() -> GeoCacheConfig:
    return GeoCacheConfig.from_settings()


def get_resolver_config() -> ResolverConfig:
    return ResolverConfig.from_settings()
