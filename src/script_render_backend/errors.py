"""
Exception types for the render pipeline.

Every error carries an HTTP status code and a machine-readable code so the API
layer can turn it into a structured ``ErrorResponse`` without inspecting the
message text.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RenderServiceError(Exception):
    """Base class for all errors raised by the render service."""

    status_code = 500
    code = "RENDER_SERVICE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class QueueUnavailable(RenderServiceError):
    """The broker is unreachable or rejected the write. Triggers degraded mode."""

    status_code = 503
    code = "QUEUE_UNAVAILABLE"


class InvalidInput(RenderServiceError):
    """Missing or unusable input data. Never retried."""

    status_code = 422
    code = "INVALID_INPUT"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, details)
        if status_code is not None:
            self.status_code = status_code


class RenderFailure(RenderServiceError):
    """Any other failure while laying out, rendering or persisting an artifact."""

    status_code = 500
    code = "RENDER_FAILURE"


class JobNotFound(RenderServiceError):
    status_code = 404
    code = "JOB_NOT_FOUND"


class NotificationFailure(RenderServiceError):
    """Publishing a job outcome failed. Logged, never changes the job outcome."""

    code = "NOTIFICATION_FAILURE"
