"""SQLAlchemy ORM models for booking billing."""
# Import all models here to ensure they are registered with Alembic

from booking_billing.models.base import Base
from booking_billing.models.plan import Plan, BillingInterval, PricingTier, UNLIMITED
from booking_billing.models.subscription import Subscription, SubscriptionStatus, SubscriptionHistory, LIVE_STATUSES
from booking_billing.models.discount import DiscountCode, DiscountType, DiscountUsage
from booking_billing.models.pending_discount import PendingDiscount
from booking_billing.models.payment import PaymentAttempt, PaymentStatus, PaymentType

__all__ = [
    "Base",
    "Plan",
    "BillingInterval",
    "PricingTier",
    "UNLIMITED",
    "Subscription",
    "SubscriptionStatus",
    "SubscriptionHistory",
    "LIVE_STATUSES",
    "DiscountCode",
    "DiscountType",
    "DiscountUsage",
    "PendingDiscount",
    "PaymentAttempt",
    "PaymentStatus",
    "PaymentType",
]
