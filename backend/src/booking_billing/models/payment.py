"""Payment attempt model for subscription charges."""
from sqlalchemy import Column, Integer, String, Numeric, Enum as SQLEnum, ForeignKey, Text, Uuid
import enum

from booking_billing.models.base import Base, JSONType


class PaymentType(enum.Enum):
    """Billing event that produced the charge."""

    INITIAL = "initial"
    TRIAL_CONVERSION = "trial_conversion"
    RENEWAL = "renewal"
    PRORATION = "proration"


class PaymentStatus(enum.Enum):
    """Terminal payment attempt status."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentAttempt(Base):
    """
    A single charge against the payment gateway.

    Immutable once written. A renewal retry that follows a gateway timeout
    reuses the timed-out attempt's idempotency_key, so the gateway can
    return the original result instead of charging twice.
    """

    __tablename__ = "payment_attempts"

    subscription_id = Column(
        Uuid(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_type = Column(SQLEnum(PaymentType), nullable=False)
    status = Column(SQLEnum(PaymentStatus), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    original_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=True)
    idempotency_key = Column(String, nullable=False, index=True)
    gateway_payment_id = Column(String, nullable=True)
    failure_reason = Column(Text, nullable=True)
    discount_snapshot = Column(JSONType, nullable=True)  # {code, type, value, discount_amount}

    def __repr__(self) -> str:
        """String representation."""
        return f"<PaymentAttempt(id={self.id}, type={self.payment_type.value}, status={self.status.value}, amount={self.amount})>"
