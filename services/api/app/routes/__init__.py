"""API routes."""

from fastapi import APIRouter

from app.routes import admin, pins, places

api_router = APIRouter()

# Place lifecycle (endorse / downvote / renew / tabs)
api_router.include_router(places.router, prefix="/v1/places", tags=["places"])

# Pin creation (place identity resolution)
api_router.include_router(pins.router, prefix="/v1/pins", tags=["pins"])

# Admin endpoints (dashboard, maintenance)
api_router.include_router(admin.router, prefix="/v1/admin", tags=["admin"])
