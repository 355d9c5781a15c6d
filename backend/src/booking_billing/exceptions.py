"""
Billing exceptions.

Every error raised by the billing core derives from BillingError and carries
a machine-readable code, an HTTP status, optional context and a recovery hint
so the API layer can render it without knowing the individual types.
"""
from typing import Any


class BillingError(Exception):
    """
    Base billing error.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    default_error_code = "billing_error"
    default_status_code = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.status_code = status_code or self.default_status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class ValidationError(BillingError):
    """Malformed input, e.g. a percentage discount above 100."""

    default_error_code = "validation_error"
    default_status_code = 400


class NotFoundError(BillingError):
    """Unknown plan, subscription or discount code."""

    default_error_code = "not_found"
    default_status_code = 404


class ConflictError(BillingError):
    """Business already has a live subscription, duplicate code, or a concurrent update won."""

    default_error_code = "conflict"
    default_status_code = 409


class CapacityError(BillingError):
    """A downgrade would leave the business over the new plan's limits."""

    default_error_code = "capacity_exceeded"
    default_status_code = 422

    def __init__(self, message: str, violations: list[str] | None = None):
        super().__init__(
            message,
            context={"violations": violations or []},
            recovery_hint="Reduce staff or business count below the target plan limits, then retry",
        )
        self.violations = violations or []


class PolicyError(BillingError):
    """Discount code expired, exhausted, inapplicable or below its minimum amount."""

    default_error_code = "discount_not_applicable"
    default_status_code = 422


class AuthorizationError(BillingError):
    """Caller may not perform the operation on this business."""

    default_error_code = "insufficient_permissions"
    default_status_code = 403


class PaymentError(BillingError):
    """Gateway declined the charge or timed out."""

    default_error_code = "payment_failed"
    default_status_code = 402

    def __init__(
        self,
        message: str,
        failure_reason: str | None = None,
        context: dict[str, Any] | None = None,
        attempt: Any | None = None,
    ):
        super().__init__(
            message,
            context={**(context or {}), "failure_reason": failure_reason},
            recovery_hint="Check the payment method or try a different one",
        )
        self.failure_reason = failure_reason
        # Declined PaymentAttempt, not yet added to any session
        self.attempt = attempt


class StateError(BillingError):
    """Operation is not valid for the subscription's current status."""

    default_error_code = "invalid_state_transition"
    default_status_code = 409
