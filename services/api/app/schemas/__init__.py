"""Pydantic schemas for API request/response validation."""

from app.schemas.common import ErrorDetail, ErrorResponse
from app.schemas.places import (
    EndorseRequest,
    MaintenanceReportOut,
    MaintenanceRequest,
    MaintenanceStatusOut,
    PlaceActionRequest,
    PlaceActionResponse,
    PlaceListResponse,
    PlaceOut,
    ResolvedPlaceOut,
    ResolvePinRequest,
    ResolvePinResponse,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "EndorseRequest",
    "MaintenanceReportOut",
    "MaintenanceRequest",
    "MaintenanceStatusOut",
    "PlaceActionRequest",
    "PlaceActionResponse",
    "PlaceListResponse",
    "PlaceOut",
    "ResolvedPlaceOut",
    "ResolvePinRequest",
    "ResolvePinResponse",
]
