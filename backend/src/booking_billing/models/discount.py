"""Discount code and usage ledger models."""
from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    Numeric,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
    Uuid,
    CheckConstraint,
)
import enum

from booking_billing.models.base import Base, JSONType


class DiscountType(enum.Enum):
    """How a discount value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DiscountCode(Base):
    """
    Redeemable discount code.

    Codes are stored upper-case and matched case-insensitively.
    current_usages only moves through DiscountService.record_usage, which
    increments it with a conditional UPDATE so it never passes max_usages.
    """

    __tablename__ = "discount_codes"
    __table_args__ = (
        CheckConstraint(
            "max_usages IS NULL OR current_usages <= max_usages",
            name="ck_discount_codes_usage_cap",
        ),
    )

    code = Column(String(64), nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    description = Column(String, nullable=True)
    discount_type = Column(SQLEnum(DiscountType), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True, index=True)
    max_usages = Column(Integer, nullable=True)  # NULL = unbounded
    current_usages = Column(Integer, nullable=False, default=0)
    max_usages_per_user = Column(Integer, nullable=True, default=1)  # NULL = unbounded
    min_purchase_amount = Column(Numeric(12, 2), nullable=True)
    applicable_plans = Column(JSONType, nullable=False, default=list)  # plan id strings, empty = all
    is_recurring = Column(Boolean, nullable=False, default=False)
    max_recurring_uses = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(String, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<DiscountCode(code={self.code}, type={self.discount_type.value}, value={self.discount_value})>"


class DiscountUsage(Base):
    """
    Immutable ledger entry, one per application of a discount code.

    Recurring codes write one entry per billing event they discount.
    """

    __tablename__ = "discount_code_usages"

    discount_code_id = Column(
        Uuid(as_uuid=True), ForeignKey("discount_codes.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    user_id = Column(String, nullable=True, index=True)
    business_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    subscription_id = Column(Uuid(as_uuid=True), ForeignKey("subscriptions.id"), nullable=True, index=True)
    payment_id = Column(Uuid(as_uuid=True), nullable=True)
    payment_type = Column(String, nullable=True)
    original_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)
    applied_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """String representation."""
        return f"<DiscountUsage(code_id={self.discount_code_id}, amount={self.discount_amount})>"
