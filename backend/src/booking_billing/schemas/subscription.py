"""Pydantic schemas for Subscription model."""
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from booking_billing.models.discount import DiscountType
from booking_billing.models.payment import PaymentStatus, PaymentType
from booking_billing.models.subscription import SubscriptionStatus
from booking_billing.schemas.plan import Plan


class SubscriptionCreate(BaseModel):
    """Schema for subscribing a business to a plan."""

    business_id: UUID = Field(..., description="Business that subscribes")
    plan_id: UUID = Field(..., description="Plan to subscribe to")
    discount_code: str | None = Field(default=None, max_length=64, description="Optional discount code")
    payment_method_id: str | None = Field(default=None, description="Stored gateway payment method reference")
    auto_renewal: bool = Field(default=True, description="Renew automatically at period end")


class SubscriptionCancel(BaseModel):
    """Schema for canceling a subscription."""

    at_period_end: bool = Field(default=True, description="Keep access until the current period ends")
    reason: str | None = Field(default=None, max_length=500, description="Cancellation reason")


class SubscriptionPlanChange(BaseModel):
    """Schema for upgrades, downgrades and plan change previews."""

    new_plan_id: UUID = Field(..., description="Plan to switch to")


class TrialConversion(BaseModel):
    """Schema for converting a trial into a paid subscription."""

    payment_method_id: str | None = Field(default=None, description="Payment method to charge (keeps stored one if omitted)")


class ApplyDiscount(BaseModel):
    """Schema for attaching a discount code to an existing subscription."""

    code: str = Field(..., min_length=1, max_length=64)


class AutoRenewalUpdate(BaseModel):
    """Schema for toggling automatic renewal."""

    enabled: bool
    payment_method_id: str | None = None


class PaymentMethodUpdate(BaseModel):
    """Schema for replacing the stored payment method."""

    payment_method_id: str = Field(..., min_length=1)


class PendingDiscount(BaseModel):
    """Schema for a subscription's pending discount."""

    code: str
    discount_type: DiscountType
    discount_value: Decimal
    is_recurring: bool
    remaining_uses: int
    applied_payments: list[dict[str, Any]]
    validated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Subscription(BaseModel):
    """Schema for returning subscription data."""

    id: UUID
    business_id: UUID
    plan_id: UUID
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    canceled_at: datetime | None
    trial_start: datetime | None
    trial_end: datetime | None
    auto_renewal: bool
    next_billing_date: datetime | None
    failed_payment_count: int
    next_retry_at: datetime | None
    pending_plan_id: UUID | None
    pending_discount: PendingDiscount | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubscriptionWithPlan(Subscription):
    """Schema for subscription with embedded plan data."""

    plan: Plan

    model_config = ConfigDict(from_attributes=True)


class SubscriptionHistory(BaseModel):
    """Schema for an audit trail entry."""

    id: UUID
    subscription_id: UUID
    event_type: str
    old_value: str | None
    new_value: str
    reason: str | None
    actor_id: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentAttempt(BaseModel):
    """Schema for returning a payment attempt."""

    id: UUID
    subscription_id: UUID
    payment_type: PaymentType
    status: PaymentStatus
    amount: Decimal
    original_amount: Decimal
    currency: str
    retry_count: int
    failure_reason: str | None
    discount_snapshot: dict[str, Any] | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PlanChangePreview(BaseModel):
    """Schema for the cost of a prospective plan change."""

    current_plan_id: UUID
    new_plan_id: UUID
    change_type: str
    effective: str = Field(..., description="immediate (upgrade) or period_end (downgrade)")
    credit_amount: Decimal
    charge_amount: Decimal
    net_amount: Decimal
    amount_due_now: Decimal
    days_remaining: int
    days_total: int


class SubscriptionStats(BaseModel):
    """Schema for platform-wide subscription statistics."""

    total: int
    by_status: dict[str, int]
    mrr: dict[str, Decimal]


class RenewalRunResult(BaseModel):
    """Schema for the outcome of a renewal batch."""

    processed: int
    renewed: int
    failed: int
    expired: int
    skipped: int
    errors: int
