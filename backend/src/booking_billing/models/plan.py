"""Plan model for the subscription tiers offered to businesses."""
from sqlalchemy import Column, String, Integer, Boolean, Numeric, Enum as SQLEnum
import enum

from booking_billing.models.base import Base, JSONType

UNLIMITED = -1


class BillingInterval(enum.Enum):
    """Billing interval for plans."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class PricingTier(enum.Enum):
    """Commercial tier a plan belongs to."""

    STARTER = "starter"
    PROFESSIONAL = "professional"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class Plan(Base):
    """
    Subscription plan.

    Limits use -1 for "unlimited". Plans are read-only to the billing core;
    they are seeded by migrations or managed by platform admins.
    """

    __tablename__ = "plans"

    name = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="TRY")
    billing_interval = Column(SQLEnum(BillingInterval), nullable=False, default=BillingInterval.MONTHLY)
    trial_days = Column(Integer, nullable=False, default=0)
    tier = Column(SQLEnum(PricingTier), nullable=False, default=PricingTier.STARTER)
    max_businesses = Column(Integer, nullable=False, default=1)
    max_staff_per_business = Column(Integer, nullable=False, default=1)
    max_appointments_per_day = Column(Integer, nullable=False, default=UNLIMITED)
    features = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_popular = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)

    def allows(self, limit: int, used: int) -> bool:
        """Whether a usage count fits under one of this plan's limits."""
        return limit == UNLIMITED or used <= limit

    def __repr__(self) -> str:
        """String representation."""
        return f"<Plan(id={self.id}, name={self.name}, interval={self.billing_interval.value}, price={self.price})>"
