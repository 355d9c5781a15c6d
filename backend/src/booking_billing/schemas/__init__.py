"""Pydantic schemas for API request/response validation."""

from booking_billing.schemas.discount import (
    DiscountCode,
    DiscountCodeBulkCreate,
    DiscountCodeCreate,
    DiscountCodeList,
    DiscountCodeUpdate,
    DiscountStatistics,
    DiscountUsage,
    DiscountUsageList,
    DiscountValidateRequest,
    DiscountValidationResponse,
)
from booking_billing.schemas.error import ErrorCode, ErrorDetail, ErrorResponse
from booking_billing.schemas.plan import Plan, PlanList
from booking_billing.schemas.subscription import (
    ApplyDiscount,
    AutoRenewalUpdate,
    PaymentAttempt,
    PaymentMethodUpdate,
    PendingDiscount,
    PlanChangePreview,
    RenewalRunResult,
    Subscription,
    SubscriptionCancel,
    SubscriptionCreate,
    SubscriptionHistory,
    SubscriptionPlanChange,
    SubscriptionStats,
    SubscriptionWithPlan,
    TrialConversion,
)

__all__ = [
    "ApplyDiscount",
    "AutoRenewalUpdate",
    "DiscountCode",
    "DiscountCodeBulkCreate",
    "DiscountCodeCreate",
    "DiscountCodeList",
    "DiscountCodeUpdate",
    "DiscountStatistics",
    "DiscountUsage",
    "DiscountUsageList",
    "DiscountValidateRequest",
    "DiscountValidationResponse",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "PaymentAttempt",
    "PaymentMethodUpdate",
    "PendingDiscount",
    "Plan",
    "PlanChangePreview",
    "PlanList",
    "RenewalRunResult",
    "Subscription",
    "SubscriptionCancel",
    "SubscriptionCreate",
    "SubscriptionHistory",
    "SubscriptionPlanChange",
    "SubscriptionStats",
    "SubscriptionWithPlan",
    "TrialConversion",
]
