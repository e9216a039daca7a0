"""FastAPI application entry point.

Pin Lifecycle API - place endorsements, lifecycle tabs and the place identity cache.
"""

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.routes import api_router
from app.schemas import ErrorResponse
from app.services.errors import LifecycleError
from app.services.place_lookup import GooglePlacesProvider
from app.settings import Settings, get_settings
from app.stores.base import DocumentStore, StoreUnavailable
from app.stores.memory import InMemoryDocumentStore
from app.stores.postgres import SqlDocumentStore, close_db, init_db, ping_db
from app.stores.redis import RedisDocumentStore, close_redis, init_redis

logger = logging.getLogger("uvicorn.error")


async def init_store(settings: Settings) -> DocumentStore:
    """Connect the configured document store backend."""
    store_kwargs = {
        "timeout": settings.store_timeout_seconds,
        "max_retries": settings.store_transaction_retries,
    }
    if settings.store_backend == "memory":
        logger.warning("Using in-memory document store (data is per-process and not persisted)")
        return InMemoryDocumentStore(**store_kwargs)
    if settings.store_backend == "postgres":
        await init_db()
        await ping_db()
        logger.info("Postgres connected")
        return SqlDocumentStore(**store_kwargs)
    await init_redis()
    return RedisDocumentStore(**store_kwargs)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    settings = get_settings()

    # Document store (requests get 503 STORE_UNAVAILABLE if this fails)
    app.state.store = None
    try:
        app.state.store = await init_store(settings)
    except Exception:
        logger.exception(f"Document store init failed (backend={settings.store_backend})")

    provider = GooglePlacesProvider()
    app.state.place_provider = provider
    if not provider.api_key:
        logger.warning("GOOGLE_MAPS_API_KEY not set; pin resolution will report provider_unavailable")

    yield

    # Shutdown
    await provider.close()
    await close_redis()
    await close_db()


def _error_response(status_code: int, code: str, message: str, detail: object = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse.build(code, message, detail).model_dump(),
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Place lifecycle and geo-cache API",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LifecycleError)
    async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
        """Domain errors: stable code + mapped HTTP status."""
        return _error_response(exc.status_code, exc.code, exc.message, exc.detail)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.error(f"[store] {request.method} {request.url.path}: {exc}")
        return _error_response(
            StoreUnavailable.status_code,
            StoreUnavailable.code,
            str(exc) if settings.debug else "Store unavailable, try again later",
        )

    # Exception handler for structured error format
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler returning structured error format."""
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return _error_response(
            500,
            "INTERNAL_ERROR",
            str(exc) if settings.debug else "Internal server error",
        )

    # Health check endpoint
    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, bool]:
        """Health check endpoint."""
        return {"ok": True}

    # Include API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
