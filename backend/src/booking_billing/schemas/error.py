"""Structured error response schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response body.

    Carries the error type, a machine-readable code, a human-readable
    message, optional details and context, a recovery hint and the request
    id for tracing.
    """

    error: str = Field(..., description="Error type (e.g. 'PolicyError', 'NotFoundError')")
    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Field-level validation errors")
    context: dict[str, Any] | None = Field(default=None, description="Additional error context")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "PolicyError",
                "error_code": "discount_not_applicable",
                "message": "Discount code has expired",
                "context": {"reason": "expired", "code": "SPRING20"},
                "remediation": "Check the code's validity window and plan restrictions",
                "request_id": "req_1234567890",
                "timestamp": "2026-01-15T10:30:00Z",
            }
        }
    }


class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400)
    VALIDATION_ERROR = "validation_error"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_PLAN_CHANGE = "invalid_plan_change"
    INVALID_DISCOUNT_VALUE = "invalid_discount_value"

    # Payment errors (402)
    PAYMENT_FAILED = "payment_failed"

    # Authorization errors (403)
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"

    # Not found errors (404)
    PLAN_NOT_FOUND = "plan_not_found"
    SUBSCRIPTION_NOT_FOUND = "subscription_not_found"
    DISCOUNT_CODE_NOT_FOUND = "discount_code_not_found"

    # Conflicts (409)
    SUBSCRIPTION_ALREADY_ACTIVE = "subscription_already_active"
    DUPLICATE_RESOURCE = "duplicate_resource"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    INVALID_STATE_TRANSITION = "invalid_state_transition"

    # Business rules (422)
    CAPACITY_EXCEEDED = "capacity_exceeded"
    DISCOUNT_NOT_APPLICABLE = "discount_not_applicable"

    # External services (503)
    USAGE_SERVICE_UNAVAILABLE = "usage_service_unavailable"

    # Internal errors (500)
    DATABASE_ERROR = "database_error"
    INTERNAL_ERROR = "internal_error"


REMEDIATION_HINTS = {
    ErrorCode.SUBSCRIPTION_ALREADY_ACTIVE: "Change plans or reactivate the existing subscription instead",
    ErrorCode.CONCURRENT_MODIFICATION: "Reload the subscription and retry the request",
    ErrorCode.CAPACITY_EXCEEDED: "Remove staff or businesses until usage fits the target plan",
    ErrorCode.DISCOUNT_NOT_APPLICABLE: "Check the code's validity window and plan restrictions",
    ErrorCode.PAYMENT_FAILED: "Update the payment method and try again",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
}
