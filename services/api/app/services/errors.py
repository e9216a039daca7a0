"""Lifecycle error taxonomy.

Each error carries a stable `code` (returned in the API error envelope) and the
HTTP status the API maps it to. User-facing errors are never retried.
"""

from __future__ import annotations

from typing import Any


class LifecycleError(Exception):
    code = "LIFECYCLE_ERROR"
    status_code = 400

    def __init__(self, message: str, *, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class FeatureDisabled(LifecycleError):
    code = "FEATURE_DISABLED"
    status_code = 400


class InvalidInput(LifecycleError):
    code = "INVALID_INPUT"
    status_code = 400


class NotFound(LifecycleError):
    code = "NOT_FOUND"
    status_code = 404


class DuplicateAction(LifecycleError):
    code = "DUPLICATE_ACTION"
    status_code = 409


class RateLimited(LifecycleError):
    code = "RATE_LIMITED"
    status_code = 429


class ProviderUnavailable(LifecycleError):
    code = "PROVIDER_UNAVAILABLE"
    status_code = 502
