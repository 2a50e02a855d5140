"""
Typed errors raised by the staging core.

Each error carries the JSON error code and HTTP status the API layer
returns for it (see utils/error_handlers.py).
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class StagingError(Exception):
    """Base class for errors surfaced to API callers."""

    code: str = "INTERNAL_ERROR"
    http_status: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(StagingError):
    """Malformed input or unknown room type / style. Raised before any mutation."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(StagingError):
    code = "NOT_FOUND"
    http_status = 404


class JobNotFoundError(NotFoundError):
    """Job absent or not owned by the caller (one signal for both)."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Staging job not found")


class InsufficientCreditsError(StagingError):
    code = "INSUFFICIENT_CREDITS"
    http_status = 402

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits: {required} required, {available} available",
            details={"required": required, "available": available},
        )


class ProviderUnavailableError(StagingError):
    """No staging provider is currently usable."""

    code = "SERVICE_UNAVAILABLE"
    http_status = 503


class ProviderConfigError(StagingError):
    """A provider was invoked without its credentials."""

    code = "PROVIDER_ERROR"
    http_status = 500


class StorageError(StagingError):
    code = "STORAGE_ERROR"
    http_status = 502


class UnauthorizedError(StagingError):
    code = "UNAUTHORIZED"
    http_status = 401


class WebhookSignatureError(UnauthorizedError):
    """Webhook rejected before anything is read from its body."""
