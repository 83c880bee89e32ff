"""errors.py – exception taxonomy of the chat pipeline.

Errors raised before the completion loop starts abort the turn with an HTTP
status (`http_status`). Errors raised inside a tool invocation are converted
into tool error results and never abort the turn.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


def format_sq_km(value: float) -> str:
    """Thousands-separated; whole numbers without decimals."""
    if float(value).is_integer():
        return f"{value:,.0f}"
    return f"{value:,.2f}"


class AssistantServiceError(Exception):
    """Base class for all pipeline errors."""

    http_status: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


# ----------------------------------------------------------------------
# fatal: raised before the loop
# ----------------------------------------------------------------------

class AuthenticationFailure(AssistantServiceError):
    http_status = 401
    code = "unauthenticated"


class PermissionResolutionError(AssistantServiceError):
    http_status = 403
    code = "permission_resolution_failed"


class QuotaExceeded(AssistantServiceError):
    http_status = 403
    code = "quota_exceeded"

    def __init__(self, usage_count: int, max_requests: int) -> None:
        super().__init__(
            "Request limit exceeded",
            {"usage_count": usage_count, "max_requests": max_requests},
        )
        self.usage_count = usage_count
        self.max_requests = max_requests


# ----------------------------------------------------------------------
# recoverable: surfaced to the model as tool error results
# ----------------------------------------------------------------------

class ToolError(AssistantServiceError):
    """Failure inside a tool invocation."""

    code = "tool_error"


class ToolArgumentError(ToolError):
    code = "invalid_tool_arguments"


class GeometryRejected(ToolError):
    code = "geometry_rejected"


class InvalidGeometryShape(GeometryRejected):
    code = "invalid_geometry_shape"


class AreaExceeded(GeometryRejected):
    code = "area_exceeded"

    def __init__(self, area_sq_km: float, max_area_sq_km: float) -> None:
        super().__init__(
            f"The area of the selected region of interest (ROI) is {area_sq_km:,.2f} sq km, "
            f"which exceeds the maximum area limit of {format_sq_km(max_area_sq_km)} sq km. "
            "Please select a smaller ROI and try again.",
            {"area_sq_km": round(area_sq_km, 2), "max_area_sq_km": max_area_sq_km},
        )
        self.area_sq_km = area_sq_km
        self.max_area_sq_km = max_area_sq_km


class RemoteServiceFailure(ToolError):
    code = "remote_service_failure"


class EmptyResultPayload(RemoteServiceFailure):
    code = "empty_result_payload"


# ----------------------------------------------------------------------
# swallowed
# ----------------------------------------------------------------------

class PersistenceFailure(AssistantServiceError):
    code = "persistence_failure"
