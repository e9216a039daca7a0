"""Admin endpoints for the place lifecycle.

GET  /v1/admin/dashboard    - aggregate lifecycle / scoring / maintenance stats
GET  /v1/admin/maintenance  - maintenance schedule status
POST /v1/admin/maintenance  - run the maintenance sweep

In production, consider adding authentication (API key or admin token).
"""

import logging

from fastapi import APIRouter, Depends

from app.dependencies import get_document_store, get_lifecycle_config
from app.schemas import MaintenanceReportOut, MaintenanceRequest, MaintenanceStatusOut
from app.services.dashboard import get_dashboard_stats
from app.services.errors import FeatureDisabled
from app.services.lifecycle import LifecycleConfig
from app.services.maintenance import get_maintenance_status, run_maintenance
from app.stores.base import DocumentStore

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


def _require_enabled(config: LifecycleConfig) -> None:
    if not config.enabled:
        raise FeatureDisabled("Pin management system not enabled")


@router.get("/dashboard")
async def dashboard(
    store: DocumentStore = Depends(get_document_store),
    config: LifecycleConfig = Depends(get_lifecycle_config),
) -> dict:
    """Comprehensive dashboard data."""
    _require_enabled(config)
    return {"success": True, "dashboard": await get_dashboard_stats(store, config)}


@router.get("/maintenance", response_model=MaintenanceStatusOut)
async def maintenance_status(
    store: DocumentStore = Depends(get_document_store),
    config: LifecycleConfig = Depends(get_lifecycle_config),
) -> MaintenanceStatusOut:
    _require_enabled(config)
    return MaintenanceStatusOut(**await get_maintenance_status(store, config))


@router.post("/maintenance", response_model=MaintenanceReportOut)
async def trigger_maintenance(
    request: MaintenanceRequest | None = None,
    store: DocumentStore = Depends(get_document_store),
    config: LifecycleConfig = Depends(get_lifecycle_config),
) -> MaintenanceReportOut:
    """Run the maintenance sweep. Skipped when the last run is recent unless force=true."""
    _require_enabled(config)
    force = bool(request and request.force)
    logger.info(f"[admin] maintenance triggered (force={force})")
    report = await run_maintenance(store, config, force=force)
    return MaintenanceReportOut(**report.to_dict())
