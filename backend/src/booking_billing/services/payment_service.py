"""Payment service: charges a subscription, applying its pending discount when eligible."""
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.adapters.payment_gateway import PaymentGateway, charge_with_timeout
from booking_billing.config import settings
from booking_billing.metrics import payment_amount_total, payments_attempted_total
from booking_billing.models.payment import PaymentAttempt, PaymentStatus, PaymentType
from booking_billing.models.subscription import Subscription
from booking_billing.services.discount_service import DiscountService
from booking_billing.services.pending_discount_service import PendingDiscountService
from booking_billing.utils.money import ZERO, round2

logger = structlog.get_logger(__name__)

MISSING_PAYMENT_METHOD = "missing_payment_method"


class PaymentService:
    """Service for charging subscriptions through the payment gateway."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        timeout_seconds: float | None = None,
    ):
        """Initialize payment service."""
        self.db = db
        self.gateway = gateway
        self.timeout_seconds = timeout_seconds or settings.payment_timeout_seconds
        self.discounts = DiscountService(db)
        self.pending_discounts = PendingDiscountService(db)

    async def charge_subscription(
        self,
        subscription: Subscription,
        amount: Decimal,
        payment_type: PaymentType,
        currency: str | None = None,
        idempotency_key: str | None = None,
        retry_count: int = 0,
        max_retries: int | None = None,
        now: datetime | None = None,
    ) -> PaymentAttempt:
        """
        Charge a subscription for one billing event.

        When the subscription's pending discount applies to this payment type,
        the discount is ledgered (atomically, against the code's cap) before
        the gateway is called and consumed once the charge succeeds.

        A succeeded attempt is added to the session. A failed attempt is
        returned WITHOUT being added: the caller decides whether to roll back
        the transaction (interactive flows) or to persist the failure after a
        rollback (renewals).

        Args:
            subscription: Subscription being charged (row should be locked)
            amount: Undiscounted amount
            payment_type: Billing event
            currency: Currency (defaults to the subscription's plan currency)
            idempotency_key: Gateway idempotency key (generated if omitted)
            retry_count: Prior failed attempts for this billing event
            max_retries: Retry ceiling recorded on the attempt
            now: Charge time

        Returns:
            PaymentAttempt with status SUCCEEDED or FAILED

        Raises:
            PolicyError: If the discount's usage cap was reached concurrently
        """
        now = now or datetime.utcnow()
        currency = currency or subscription.plan.currency
        original_amount = round2(amount)
        final_amount = original_amount
        discount_amount = ZERO
        discount_snapshot = None
        attempt_id = uuid4()
        idempotency_key = idempotency_key or f"{payment_type.value}:{subscription.id}:{attempt_id}"

        apply_discount = self.pending_discounts.can_apply_to_payment(subscription, payment_type, now)
        if apply_discount:
            pending = subscription.pending_discount
            discount_amount, final_amount = self.pending_discounts.price(subscription, original_amount)
            await self.discounts.record_usage(
                pending.discount_code_id,
                original_amount,
                discount_amount,
                user_id=pending.attached_by,
                business_id=subscription.business_id,
                subscription_id=subscription.id,
                payment_id=attempt_id,
                payment_type=payment_type.value,
                counts_towards_cap=self.pending_discounts.is_first_use(subscription),
                discount_type=pending.discount_type,
                now=now,
            )
            discount_snapshot = {
                "code": pending.code,
                "discount_type": pending.discount_type.value,
                "discount_value": str(pending.discount_value),
                "discount_amount": str(discount_amount),
            }

        if final_amount <= ZERO:
            succeeded, gateway_payment_id, failure_reason = True, None, None
        elif not subscription.payment_method_id:
            succeeded, gateway_payment_id, failure_reason = False, None, MISSING_PAYMENT_METHOD
        else:
            result = await charge_with_timeout(
                self.gateway,
                final_amount,
                currency,
                subscription.payment_method_id,
                idempotency_key,
                self.timeout_seconds,
            )
            succeeded, gateway_payment_id, failure_reason = result.succeeded, result.payment_id, result.failure_reason

        status = PaymentStatus.SUCCEEDED if succeeded else PaymentStatus.FAILED
        attempt = PaymentAttempt(
            id=attempt_id,
            subscription_id=subscription.id,
            payment_type=payment_type,
            status=status,
            amount=final_amount,
            original_amount=original_amount,
            currency=currency,
            retry_count=retry_count,
            max_retries=max_retries,
            idempotency_key=idempotency_key,
            gateway_payment_id=gateway_payment_id,
            failure_reason=failure_reason,
            discount_snapshot=discount_snapshot,
        )

        payments_attempted_total.labels(
            status=status.value, payment_type=payment_type.value, currency=currency
        ).inc()
        payment_amount_total.labels(status=status.value, currency=currency).inc(float(final_amount))

        if not succeeded:
            logger.warning(
                "payment_failed",
                subscription_id=str(subscription.id),
                payment_type=payment_type.value,
                amount=str(final_amount),
                failure_reason=failure_reason,
                retry_count=retry_count,
            )
            return attempt

        self.db.add(attempt)
        if apply_discount:
            await self.pending_discounts.apply(subscription, attempt_id, payment_type, now)
        await self.db.flush()

        logger.info(
            "payment_succeeded",
            subscription_id=str(subscription.id),
            payment_type=payment_type.value,
            amount=str(final_amount),
            discount_amount=str(discount_amount),
            gateway_payment_id=gateway_payment_id,
        )
        return attempt

    async def list_payments(self, subscription_id, limit: int = 100) -> list[PaymentAttempt]:
        """Payment attempts for a subscription, newest first."""
        result = await self.db.execute(
            select(PaymentAttempt)
            .where(PaymentAttempt.subscription_id == subscription_id)
            .order_by(PaymentAttempt.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def last_attempt(self, subscription_id, payment_type: PaymentType) -> PaymentAttempt | None:
        """Most recent attempt of a type for a subscription."""
        result = await self.db.execute(
            select(PaymentAttempt)
            .where(
                PaymentAttempt.subscription_id == subscription_id,
                PaymentAttempt.payment_type == payment_type,
            )
            .order_by(PaymentAttempt.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
