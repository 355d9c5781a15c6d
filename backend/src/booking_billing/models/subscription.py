"""Subscription model for business subscriptions to plans."""
from sqlalchemy import (
    Column,
    Integer,
    Boolean,
    Enum as SQLEnum,
    ForeignKey,
    DateTime,
    String,
    Index,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship
import enum

from booking_billing.models.base import Base


class SubscriptionStatus(enum.Enum):
    """Subscription lifecycle status."""

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


# Statuses that count towards the one-live-subscription-per-business rule
LIVE_STATUSES = (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)

_LIVE_STATUS_SQL = "status IN ('TRIAL', 'ACTIVE', 'PAST_DUE')"


class Subscription(Base):
    """
    A business's subscription to a plan.

    CANCELED with cancel_at_period_end=True means the business keeps access
    until current_period_end; CANCELED with the flag cleared and canceled_at
    set means access has ended. Rows are never deleted; superseded
    subscriptions remain as history.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_live_business",
            "business_id",
            unique=True,
            postgresql_where=text(_LIVE_STATUS_SQL),
            sqlite_where=text(_LIVE_STATUS_SQL),
        ),
        Index("ix_subscriptions_renewal_due", "status", "current_period_end"),
    )

    business_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("plans.id"), nullable=False, index=True)
    status = Column(SQLEnum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.ACTIVE, index=True)
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False, index=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime, nullable=True)
    trial_start = Column(DateTime, nullable=True)
    trial_end = Column(DateTime, nullable=True)
    auto_renewal = Column(Boolean, nullable=False, default=True)
    payment_method_id = Column(String, nullable=True)
    next_billing_date = Column(DateTime, nullable=True)
    failed_payment_count = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime, nullable=True)
    pending_plan_id = Column(Uuid(as_uuid=True), ForeignKey("plans.id"), nullable=True)  # Scheduled downgrade
    renewal_claimed_until = Column(DateTime, nullable=True)
    created_by = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    # Relationships
    plan = relationship("Plan", foreign_keys=[plan_id], lazy="selectin")
    pending_plan = relationship("Plan", foreign_keys=[pending_plan_id], lazy="selectin")
    pending_discount = relationship(
        "PendingDiscount",
        back_populates="subscription",
        uselist=False,
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_live(self) -> bool:
        """Whether this subscription blocks a new subscribe for the business."""
        return self.status in LIVE_STATUSES

    def __repr__(self) -> str:
        """String representation."""
        return f"<Subscription(id={self.id}, business_id={self.business_id}, status={self.status.value})>"


class SubscriptionHistory(Base):
    """
    Audit trail for subscription changes.

    Tracks status changes, plan changes, discount attachments and renewals.
    """

    __tablename__ = "subscription_history"

    subscription_id = Column(
        Uuid(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type = Column(String, nullable=False)  # status_change, plan_change, discount_attached, ...
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    actor_id = Column(String, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<SubscriptionHistory(subscription_id={self.subscription_id}, event={self.event_type})>"
