"""Pending discounts: deferred application of a validated code to a subscription's payments."""
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.config import settings
from booking_billing.models.payment import PaymentType
from booking_billing.models.pending_discount import PendingDiscount
from booking_billing.models.subscription import Subscription
from booking_billing.services.discount_service import DiscountSnapshot, compute_discount

logger = structlog.get_logger(__name__)


class PendingDiscountService:
    """
    Tracks the one pending discount a subscription may carry.

    A one-time code covers a single payment; a recurring code covers
    max_recurring_uses payments. Each payment that consumes the discount is
    appended to applied_payments with its payment type.
    """

    def __init__(self, db: AsyncSession, validation_window: timedelta | None = None):
        """Initialize with database session and the initial-payment validation window."""
        self.db = db
        self.validation_window = validation_window or timedelta(hours=settings.pending_discount_window_hours)

    async def attach(
        self,
        subscription: Subscription,
        snapshot: DiscountSnapshot,
        attached_by: str | None = None,
        now: datetime | None = None,
    ) -> PendingDiscount:
        """
        Attach a validated discount, replacing any previous one.

        Args:
            subscription: Subscription receiving the discount
            snapshot: Frozen validation result
            attached_by: User who applied the code
            now: Validation time

        Returns:
            The pending discount entry
        """
        now = now or datetime.utcnow()
        remaining_uses = snapshot.max_recurring_uses if snapshot.is_recurring else 1
        fields = {
            "discount_code_id": snapshot.discount_code_id,
            "code": snapshot.code,
            "discount_type": snapshot.discount_type,
            "discount_value": snapshot.discount_value,
            "is_recurring": snapshot.is_recurring,
            "remaining_uses": remaining_uses,
            "applied_payments": [],
            "validated_at": now,
            "attached_by": attached_by,
        }

        pending = subscription.pending_discount
        if pending is None:
            pending = PendingDiscount(**fields)
            subscription.pending_discount = pending
        else:
            # Update in place; the table holds one row per subscription
            for field, value in fields.items():
                setattr(pending, field, value)

        await self.db.flush()
        logger.info(
            "pending_discount_attached",
            subscription_id=str(subscription.id),
            code=snapshot.code,
            remaining_uses=remaining_uses,
        )
        return pending

    def can_apply_to_payment(
        self,
        subscription: Subscription,
        payment_type: PaymentType,
        now: datetime | None = None,
    ) -> bool:
        """
        Whether the pending discount may reduce a payment of this type.

        The validation window only bounds the initial payment. Trial
        conversions and renewals are limited by remaining_uses instead.
        """
        pending = subscription.pending_discount
        if pending is None:
            return False
        if pending.remaining_uses <= 0:
            return False

        now = now or datetime.utcnow()
        if payment_type == PaymentType.INITIAL:
            if now - pending.validated_at > self.validation_window:
                return False
            return not pending.has_payment_of_type(PaymentType.INITIAL.value)
        if payment_type == PaymentType.TRIAL_CONVERSION:
            return not pending.has_payment_of_type(PaymentType.TRIAL_CONVERSION.value)
        if payment_type == PaymentType.RENEWAL:
            return pending.is_recurring
        return False

    def price(self, subscription: Subscription, amount: Decimal) -> tuple[Decimal, Decimal]:
        """
        Apply the frozen discount to an amount.

        Returns:
            (discount_amount, final_amount)
        """
        pending = subscription.pending_discount
        return compute_discount(pending.discount_type, pending.discount_value, amount)

    def is_first_use(self, subscription: Subscription) -> bool:
        """Whether no payment has consumed the pending discount yet."""
        pending = subscription.pending_discount
        return pending is not None and not pending.applied_payments

    async def apply(
        self,
        subscription: Subscription,
        payment_id: UUID,
        payment_type: PaymentType,
        now: datetime | None = None,
    ) -> PendingDiscount:
        """
        Consume one use of the pending discount for a payment.

        Once remaining_uses reaches 0 the entry is terminal and kept for audit.
        """
        now = now or datetime.utcnow()
        pending = subscription.pending_discount
        pending.remaining_uses = max(pending.remaining_uses - 1, 0)
        # Reassign so the JSON column change is detected
        pending.applied_payments = [
            *(pending.applied_payments or []),
            {"payment_id": str(payment_id), "payment_type": payment_type.value, "applied_at": now.isoformat()},
        ]
        await self.db.flush()

        logger.info(
            "pending_discount_applied",
            subscription_id=str(subscription.id),
            code=pending.code,
            payment_type=payment_type.value,
            remaining_uses=pending.remaining_uses,
        )
        return pending
