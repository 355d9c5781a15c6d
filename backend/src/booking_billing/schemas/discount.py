"""Pydantic schemas for discount codes."""
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from booking_billing.models.discount import DiscountType


class DiscountCodeBase(BaseModel):
    """Fields shared by create and bulk-create requests."""

    name: str | None = Field(default=None, max_length=200, description="Internal name")
    description: str | None = Field(default=None, description="Shown to admins only")
    discount_type: DiscountType = Field(..., description="percentage or fixed")
    discount_value: Decimal = Field(..., description="Percent (0-100] or fixed amount in plan currency")
    valid_from: datetime | None = Field(default=None, description="Start of validity (open if omitted)")
    valid_until: datetime | None = Field(default=None, description="End of validity (open if omitted)")
    max_usages: int | None = Field(default=None, ge=1, description="Global redemption cap (unbounded if omitted)")
    max_usages_per_user: int | None = Field(default=1, ge=1, description="Redemptions allowed per user")
    min_purchase_amount: Decimal | None = Field(default=None, ge=0, description="Minimum amount the code applies to")
    applicable_plans: list[UUID] = Field(default_factory=list, description="Plan IDs (empty = all plans)")
    is_recurring: bool = Field(default=False, description="Apply to several consecutive billing events")
    max_recurring_uses: int | None = Field(default=None, ge=1, description="Billing events a recurring code covers")


class DiscountCodeCreate(DiscountCodeBase):
    """Schema for creating a discount code."""

    code: str | None = Field(
        default=None,
        min_length=3,
        max_length=64,
        description="Code customers enter (generated if omitted, stored upper-case)",
    )


class DiscountCodeUpdate(BaseModel):
    """Schema for updating a discount code. Only provided fields change."""

    name: str | None = None
    description: str | None = None
    discount_value: Decimal | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    max_usages: int | None = Field(default=None, ge=1)
    max_usages_per_user: int | None = Field(default=None, ge=1)
    min_purchase_amount: Decimal | None = Field(default=None, ge=0)
    applicable_plans: list[UUID] | None = None
    is_active: bool | None = None


class DiscountCodeBulkCreate(DiscountCodeBase):
    """Schema for generating many single-use style codes from one template."""

    count: int = Field(..., ge=1, description="Number of codes to generate")
    prefix: str = Field(default="SAVE", min_length=1, max_length=20, description="Code prefix")


class DiscountCode(BaseModel):
    """Schema for returning discount code data."""

    id: UUID
    code: str
    name: str | None
    description: str | None
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime | None
    valid_until: datetime | None
    max_usages: int | None
    current_usages: int
    max_usages_per_user: int | None
    min_purchase_amount: Decimal | None
    applicable_plans: list[UUID]
    is_recurring: bool
    max_recurring_uses: int | None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DiscountCodeList(BaseModel):
    """Schema for paginated discount code list."""

    items: list[DiscountCode]
    total: int
    page: int
    page_size: int


class DiscountValidateRequest(BaseModel):
    """Schema for checking a code against a plan and amount."""

    code: str = Field(..., min_length=1, max_length=64)
    plan_id: UUID
    amount: Decimal | None = Field(default=None, ge=0, description="Amount to discount (defaults to plan price)")


class DiscountValidationResponse(BaseModel):
    """Result of a validation, with the computed discount when valid."""

    valid: bool
    reason: str | None = None
    code: str | None = None
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = None
    original_amount: Decimal | None = None
    discount_amount: Decimal | None = None
    final_amount: Decimal | None = None


class DiscountUsage(BaseModel):
    """Schema for a usage ledger entry."""

    id: UUID
    discount_code_id: UUID
    user_id: str | None
    business_id: UUID | None
    subscription_id: UUID | None
    payment_id: UUID | None
    payment_type: str | None
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    applied_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DiscountUsageList(BaseModel):
    """Schema for paginated usage history."""

    items: list[DiscountUsage]
    total: int
    page: int
    page_size: int


class DiscountStatistics(BaseModel):
    """Aggregate numbers across all discount codes."""

    total_codes: int
    active_codes: int
    expired_codes: int
    total_usages: int
    total_discount_amount: Decimal
