"""Pydantic schemas for Plan model."""
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from booking_billing.models.plan import BillingInterval, PricingTier


class Plan(BaseModel):
    """Schema for returning plan data. Limits of -1 mean unlimited."""

    id: UUID
    name: str
    display_name: str
    description: str | None
    price: Decimal
    currency: str
    billing_interval: BillingInterval
    trial_days: int
    tier: PricingTier
    max_businesses: int
    max_staff_per_business: int
    max_appointments_per_day: int
    features: list[Any]
    is_active: bool
    is_popular: bool
    sort_order: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PlanList(BaseModel):
    """Schema for plan listing."""

    items: list[Plan]
    total: int
