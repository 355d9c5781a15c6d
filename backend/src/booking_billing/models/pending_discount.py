"""Pending discount: a validated discount waiting for the subscription's next eligible payment."""
from sqlalchemy import Column, String, Integer, Boolean, Numeric, DateTime, ForeignKey, Enum as SQLEnum, Uuid
from sqlalchemy.orm import relationship

from booking_billing.models.base import Base, JSONType
from booking_billing.models.discount import DiscountType


class PendingDiscount(Base):
    """
    One pending-discount entry per subscription.

    Type and value are frozen at validation time so edits to the code row do
    not change what this subscription was promised. applied_payments holds
    ``{"payment_id", "payment_type", "applied_at"}`` entries; once
    remaining_uses reaches 0 the row is terminal and kept for audit.
    """

    __tablename__ = "pending_discounts"

    subscription_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    discount_code_id = Column(Uuid(as_uuid=True), ForeignKey("discount_codes.id"), nullable=False)
    code = Column(String(64), nullable=False)
    discount_type = Column(SQLEnum(DiscountType), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=False)
    remaining_uses = Column(Integer, nullable=False, default=1)
    applied_payments = Column(JSONType, nullable=False, default=list)
    validated_at = Column(DateTime, nullable=False)
    attached_by = Column(String, nullable=True)

    subscription = relationship("Subscription", back_populates="pending_discount")

    @property
    def is_exhausted(self) -> bool:
        """Whether no uses remain."""
        return self.remaining_uses <= 0

    def has_payment_of_type(self, payment_type: str) -> bool:
        """Whether a payment of the given type already consumed this discount."""
        return any(entry.get("payment_type") == payment_type for entry in self.applied_payments or [])

    def __repr__(self) -> str:
        """String representation."""
        return f"<PendingDiscount(subscription_id={self.subscription_id}, code={self.code}, remaining={self.remaining_uses})>"
