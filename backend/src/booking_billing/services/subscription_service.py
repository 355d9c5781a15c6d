"""Subscription lifecycle: subscribe, trial conversion, cancel, reactivate, plan changes."""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import select, func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from booking_billing.adapters.payment_gateway import PaymentGateway
from booking_billing.adapters.usage_client import HttpResourceUsageReader, ResourceUsageReader
from booking_billing.auth.rbac import AuthContext, Authorizer, RoleBasedAuthorizer, authorize
from booking_billing.exceptions import (
    ConflictError,
    NotFoundError,
    PaymentError,
    PolicyError,
    StateError,
    ValidationError,
)
from booking_billing.metrics import (
    mrr_amount,
    subscription_plan_changes_total,
    subscriptions_active_gauge,
    subscriptions_canceled_total,
    subscriptions_created_total,
    subscriptions_expired_total,
)
from booking_billing.models.payment import PaymentAttempt, PaymentStatus, PaymentType
from booking_billing.models.plan import BillingInterval, Plan
from booking_billing.models.subscription import (
    LIVE_STATUSES,
    Subscription,
    SubscriptionHistory,
    SubscriptionStatus,
)
from booking_billing.services.discount_service import DiscountService
from booking_billing.services.payment_service import PaymentService
from booking_billing.services.pending_discount_service import PendingDiscountService
from booking_billing.services.plan_catalog import PlanCatalog
from booking_billing.services.proration import ChangeType, check_capacity, classify_change, prorate
from booking_billing.utils.money import ZERO, round2
from booking_billing.utils.periods import add_interval

logger = structlog.get_logger(__name__)


class SubscriptionService:
    """
    Service layer for the subscription lifecycle.

    Every interactive operation takes an explicit AuthContext, checks it
    before touching state, and works on the business's current subscription
    loaded with a row lock. The optimistic version column rejects any write
    based on a stale read. Like the other services, this one flushes; the
    caller commits or rolls back.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        authorizer: Authorizer | None = None,
        usage_reader: ResourceUsageReader | None = None,
    ):
        """Initialize subscription service with its collaborators."""
        self.db = db
        self.authorizer = authorizer or RoleBasedAuthorizer()
        self.usage_reader = usage_reader or HttpResourceUsageReader()
        self.plans = PlanCatalog(db)
        self.discounts = DiscountService(db)
        self.pending_discounts = PendingDiscountService(db)
        self.payments = PaymentService(db, gateway)

    # Queries

    async def get_business_subscription(self, auth: AuthContext, business_id: UUID) -> Subscription:
        """
        Get the business's current (most recent) subscription.

        Raises:
            AuthorizationError: If caller cannot read this business
            NotFoundError: If the business never subscribed
        """
        authorize(self.authorizer, auth, "subscriptions", "read", business_id)
        return await self._load_current(business_id, lock=False)

    async def get_subscription_history(self, auth: AuthContext, business_id: UUID) -> list[SubscriptionHistory]:
        """Audit trail across all of a business's subscriptions, newest first."""
        authorize(self.authorizer, auth, "subscriptions", "read", business_id)
        result = await self.db.execute(
            select(SubscriptionHistory)
            .join(Subscription, Subscription.id == SubscriptionHistory.subscription_id)
            .where(Subscription.business_id == business_id)
            .order_by(SubscriptionHistory.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_payments(self, auth: AuthContext, business_id: UUID) -> list[PaymentAttempt]:
        """Payment attempts of the business's current subscription."""
        subscription = await self.get_business_subscription(auth, business_id)
        return await self.payments.list_payments(subscription.id)

    async def get_subscription_stats(self, auth: AuthContext) -> dict[str, Any]:
        """
        Platform-wide subscription counts and monthly recurring revenue.

        MRR counts ACTIVE and PAST_DUE subscriptions at their plan price,
        yearly plans divided by twelve.
        """
        authorize(self.authorizer, auth, "subscriptions", "manage_all")

        rows = await self.db.execute(select(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status))
        by_status = {status.value: 0 for status in SubscriptionStatus}
        for status, count in rows.all():
            by_status[status.value] = count

        revenue_rows = await self.db.execute(
            select(Plan.currency, Plan.billing_interval, func.sum(Plan.price))
            .join(Subscription, Subscription.plan_id == Plan.id)
            .where(Subscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE]))
            .group_by(Plan.currency, Plan.billing_interval)
        )
        mrr: dict[str, Decimal] = {}
        for currency, interval, total in revenue_rows.all():
            monthly = Decimal(total or 0)
            if interval == BillingInterval.YEARLY:
                monthly = monthly / 12
            mrr[currency] = mrr.get(currency, ZERO) + monthly
        mrr = {currency: round2(amount) for currency, amount in mrr.items()}

        subscriptions_active_gauge.set(by_status[SubscriptionStatus.ACTIVE.value])
        for currency, amount in mrr.items():
            mrr_amount.labels(currency=currency).set(float(amount))

        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "mrr": mrr,
        }

    async def get_trials_ending_soon(self, auth: AuthContext, within: timedelta, now: datetime | None = None) -> list[Subscription]:
        """Trials whose trial_end falls inside the given window."""
        authorize(self.authorizer, auth, "subscriptions", "manage_all")
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.TRIAL,
                Subscription.trial_end > now,
                Subscription.trial_end <= now + within,
            )
            .order_by(Subscription.trial_end)
        )
        return list(result.scalars().all())

    # Lifecycle operations

    async def subscribe(
        self,
        auth: AuthContext,
        business_id: UUID,
        plan_id: UUID,
        discount_code: str | None = None,
        payment_method_id: str | None = None,
        auto_renewal: bool = True,
        now: datetime | None = None,
    ) -> Subscription:
        """
        Start a subscription for a business.

        Plans with trial days start in TRIAL and defer any discount to the
        trial conversion. Plans without a trial start ACTIVE and are charged
        immediately (type INITIAL), discounted if a code was supplied.

        Args:
            auth: Caller
            business_id: Subscribing business
            plan_id: Plan to subscribe to
            discount_code: Optional code, validated against the plan price
            payment_method_id: Stored payment method reference
            auto_renewal: Renew automatically at period end
            now: Operation time

        Returns:
            The new subscription

        Raises:
            AuthorizationError: If caller cannot manage this business
            NotFoundError: If the plan doesn't exist or is inactive
            ConflictError: If the business already has a live subscription
            PolicyError: If the discount code does not apply
            PaymentError: If the initial charge fails (caller must roll back)
        """
        authorize(self.authorizer, auth, "subscriptions", "create", business_id)
        now = now or datetime.utcnow()

        plan = await self.plans.get_active_plan(plan_id)
        await self._ensure_no_live_subscription(business_id, now)

        snapshot = None
        if discount_code:
            snapshot = await self.discounts.require_valid(discount_code, plan.id, plan.price, user_id=auth.user_id, now=now)

        subscription = Subscription(
            id=uuid4(),
            business_id=business_id,
            plan=plan,
            pending_plan=None,
            pending_discount=None,
            auto_renewal=auto_renewal,
            payment_method_id=payment_method_id,
            cancel_at_period_end=False,
            failed_payment_count=0,
            created_by=auth.user_id,
        )
        if plan.trial_days > 0:
            trial_end = now + timedelta(days=plan.trial_days)
            subscription.status = SubscriptionStatus.TRIAL
            subscription.trial_start = now
            subscription.trial_end = trial_end
            subscription.current_period_start = now
            subscription.current_period_end = trial_end
        else:
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.current_period_start = now
            subscription.current_period_end = add_interval(now, plan.billing_interval)
        subscription.next_billing_date = subscription.current_period_end

        self.db.add(subscription)
        await self._flush()

        if snapshot:
            await self.pending_discounts.attach(subscription, snapshot, attached_by=auth.user_id, now=now)
            await self._create_history(subscription.id, "discount_attached", None, snapshot.code, actor_id=auth.user_id)

        if subscription.status == SubscriptionStatus.ACTIVE:
            attempt = await self.payments.charge_subscription(subscription, plan.price, PaymentType.INITIAL, now=now)
            self._raise_if_failed(attempt)

        await self._create_history(
            subscription.id,
            "subscription_created",
            None,
            subscription.status.value,
            actor_id=auth.user_id,
        )
        await self._flush()

        subscriptions_created_total.labels(
            plan_interval=plan.billing_interval.value, status=subscription.status.value
        ).inc()
        logger.info(
            "subscription_created",
            subscription_id=str(subscription.id),
            business_id=str(business_id),
            plan=plan.name,
            status=subscription.status.value,
            discount_code=snapshot.code if snapshot else None,
        )
        return subscription

    async def convert_trial_to_active(
        self,
        auth: AuthContext,
        business_id: UUID,
        payment_method_id: str | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        """
        Convert a trial into a paid subscription.

        Charges the plan price (type TRIAL_CONVERSION), reduced by the pending
        discount when eligible, then starts a fresh billing period.

        Raises:
            StateError: If the subscription is not in TRIAL
            PaymentError: If the charge fails (nothing changes)
        """
        authorize(self.authorizer, auth, "subscriptions", "update", business_id)
        subscription = await self._load_current(business_id)
        now = now or datetime.utcnow()

        if subscription.status != SubscriptionStatus.TRIAL:
            raise StateError(
                f"Only trial subscriptions can be converted (status is {subscription.status.value})",
                context={"subscription_id": str(subscription.id)},
            )
        if payment_method_id:
            subscription.payment_method_id = payment_method_id

        await self._activate_from_trial(subscription, now, actor_id=auth.user_id)
        return subscription

    async def cancel(
        self,
        auth: AuthContext,
        business_id: UUID,
        at_period_end: bool = True,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        """
        Cancel the business's subscription.

        at_period_end=True keeps access until current_period_end (status
        CANCELED with cancel_at_period_end set; reactivation is possible until
        then). Otherwise access ends now. A subscription whose period already
        ended is always canceled immediately.

        Raises:
            StateError: If already fully canceled or expired
        """
        authorize(self.authorizer, auth, "subscriptions", "cancel", business_id)
        subscription = await self._load_current(business_id)
        now = now or datetime.utcnow()

        if subscription.status == SubscriptionStatus.EXPIRED or (
            subscription.status == SubscriptionStatus.CANCELED and not subscription.cancel_at_period_end
        ):
            raise StateError(
                f"Subscription is already {subscription.status.value}",
                context={"subscription_id": str(subscription.id)},
            )

        old_status = subscription.status
        if at_period_end and subscription.current_period_end > now:
            subscription.status = SubscriptionStatus.CANCELED
            subscription.cancel_at_period_end = True
            mode = "period_end"
        else:
            self._end_now(subscription, now)
            mode = "immediate"

        await self._create_history(
            subscription.id,
            "status_change",
            old_status.value,
            f"{subscription.status.value}:{mode}",
            reason=reason,
            actor_id=auth.user_id,
        )
        await self._flush()

        subscriptions_canceled_total.labels(mode=mode).inc()
        logger.info("subscription_canceled", subscription_id=str(subscription.id), mode=mode, reason=reason)
        return subscription

    async def reactivate(
        self,
        auth: AuthContext,
        business_id: UUID,
        now: datetime | None = None,
    ) -> Subscription:
        """
        Undo a pending period-end cancellation.

        A canceled trial goes back to TRIAL while its trial window lasts;
        everything else returns to ACTIVE.

        Raises:
            StateError: Unless CANCELED with cancel_at_period_end and the period not yet ended
        """
        authorize(self.authorizer, auth, "subscriptions", "update", business_id)
        subscription = await self._load_current(business_id)
        now = now or datetime.utcnow()

        if not (
            subscription.status == SubscriptionStatus.CANCELED
            and subscription.cancel_at_period_end
            and subscription.current_period_end > now
        ):
            raise StateError(
                "Only subscriptions pending cancellation can be reactivated; subscribe again instead",
                context={"subscription_id": str(subscription.id), "status": subscription.status.value},
            )

        if subscription.trial_end and subscription.trial_end > now:
            subscription.status = SubscriptionStatus.TRIAL
        else:
            subscription.status = SubscriptionStatus.ACTIVE
        subscription.cancel_at_period_end = False
        subscription.canceled_at = None

        await self._create_history(
            subscription.id,
            "status_change",
            SubscriptionStatus.CANCELED.value,
            subscription.status.value,
            reason="reactivated",
            actor_id=auth.user_id,
        )
        await self._flush()

        logger.info("subscription_reactivated", subscription_id=str(subscription.id))
        return subscription

    async def upgrade(
        self,
        auth: AuthContext,
        business_id: UUID,
        new_plan_id: UUID,
        now: datetime | None = None,
    ) -> Subscription:
        """
        Switch to a more expensive plan immediately.

        The prorated difference for the rest of the period is charged now
        (type PRORATION) when positive. Any scheduled downgrade is dropped.

        Raises:
            StateError: If the subscription is not ACTIVE
            ValidationError: If the new plan is not more expensive
            PaymentError: If the prorated charge fails
        """
        authorize(self.authorizer, auth, "subscriptions", "update", business_id)
        subscription = await self._load_current(business_id)
        now = now or datetime.utcnow()
        self._require_active(subscription, "upgraded")

        old_plan = subscription.plan
        new_plan = await self.plans.get_active_plan(new_plan_id)
        if classify_change(old_plan, new_plan) != ChangeType.UPGRADE:
            raise ValidationError(
                f"Plan {new_plan.name} is not an upgrade from {old_plan.name}",
                error_code="invalid_plan_change",
                recovery_hint="Use downgrade for cheaper plans",
            )

        proration = prorate(
            old_plan, new_plan, subscription.current_period_start, subscription.current_period_end, now
        )
        if proration.net_amount > ZERO:
            attempt = await self.payments.charge_subscription(
                subscription, proration.net_amount, PaymentType.PRORATION, currency=new_plan.currency, now=now
            )
            self._raise_if_failed(attempt)

        subscription.plan = new_plan
        subscription.pending_plan = None

        await self._create_history(
            subscription.id, "plan_change", old_plan.name, new_plan.name, reason="upgrade", actor_id=auth.user_id
        )
        await self._flush()

        subscription_plan_changes_total.labels(direction=ChangeType.UPGRADE).inc()
        logger.info(
            "subscription_upgraded",
            subscription_id=str(subscription.id),
            old_plan=old_plan.name,
            new_plan=new_plan.name,
            net_amount=str(proration.net_amount),
            days_remaining=proration.days_remaining,
        )
        return subscription

    async def downgrade(
        self,
        auth: AuthContext,
        business_id: UUID,
        new_plan_id: UUID,
        now: datetime | None = None,
    ) -> Subscription:
        """
        Schedule a switch to a cheaper plan at the end of the period.

        No charge or credit is issued; the next renewal bills the new plan.

        Raises:
            StateError: If the subscription is not ACTIVE
            ValidationError: If the new plan is not cheaper
            CapacityError: If current staff or business usage exceeds the new plan
        """
        authorize(self.authorizer, auth, "subscriptions", "update", business_id)
        subscription = await self._load_current(business_id)
        self._require_active(subscription, "downgraded")

        old_plan = subscription.plan
        new_plan = await self.plans.get_active_plan(new_plan_id)
        if classify_change(old_plan, new_plan) != ChangeType.DOWNGRADE:
            raise ValidationError(
                f"Plan {new_plan.name} is not a downgrade from {old_plan.name}",
                error_code="invalid_plan_change",
                recovery_hint="Use upgrade for more expensive plans",
            )

        usage = await self.usage_reader.get_usage(business_id)
        check_capacity(new_plan, usage)

        subscription.pending_plan = new_plan
        await self._create_history(
            subscription.id,
            "plan_change_scheduled",
            old_plan.name,
            new_plan.name,
            reason="downgrade",
            actor_id=auth.user_id,
        )
        await self._flush()

        subscription_plan_changes_total.labels(direction=ChangeType.DOWNGRADE).inc()
        logger.info(
            "subscription_downgrade_scheduled",
            subscription_id=str(subscription.id),
            old_plan=old_plan.name,
            new_plan=new_plan.name,
            effective_at=subscription.current_period_end.isoformat(),
        )
        return subscription

    async def preview_plan_change(
        self,
        auth: AuthContext,
        business_id: UUID,
        new_plan_id: UUID,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Describe what switching to a plan would cost, without changing anything.

        Returns:
            dict with change_type, effective ("immediate" or "period_end") and
            the proration amounts
        """
        subscription = await self.get_business_subscription(auth, business_id)
        now = now or datetime.utcnow()
        new_plan = await self.plans.get_active_plan(new_plan_id)

        change_type = classify_change(subscription.plan, new_plan)
        proration = prorate(
            subscription.plan, new_plan, subscription.current_period_start, subscription.current_period_end, now
        )
        return {
            "current_plan_id": subscription.plan_id,
            "new_plan_id": new_plan.id,
            "change_type": change_type,
            "effective": "immediate" if change_type == ChangeType.UPGRADE else "period_end",
            "credit_amount": proration.credit_amount,
            "charge_amount": proration.charge_amount,
            "net_amount": proration.net_amount,
            "amount_due_now": proration.net_amount if change_type == ChangeType.UPGRADE and proration.net_amount > 0 else ZERO,
            "days_remaining": proration.days_remaining,
            "days_total": proration.days_total,
        }

    async def apply_discount_to_subscription(
        self,
        auth: AuthContext,
        business_id: UUID,
        code: str,
        now: datetime | None = None,
    ) -> Subscription:
        """
        Validate a code and attach it for the subscription's next eligible payment.

        The code is validated against the price of the plan the next payment
        will be for (the scheduled plan when a downgrade is pending).

        Raises:
            StateError: If the subscription is not live
            PolicyError: If the code does not apply
        """
        authorize(self.authorizer, auth, "discount_codes", "apply", business_id)
        authorize(self.authorizer, auth, "subscriptions", "update", business_id)
        subscription = await self._load_current(business_id)
        now = now or datetime.utcnow()

        if subscription.status not in LIVE_STATUSES:
            raise StateError(
                f"Cannot apply a discount to a {subscription.status.value} subscription",
                context={"subscription_id": str(subscription.id)},
            )

        plan = subscription.pending_plan or subscription.plan
        snapshot = await self.discounts.require_valid(code, plan.id, plan.price, user_id=auth.user_id, now=now)
        previous = subscription.pending_discount.code if subscription.pending_discount else None
        await self.pending_discounts.attach(subscription, snapshot, attached_by=auth.user_id, now=now)

        await self._create_history(subscription.id, "discount_attached", previous, snapshot.code, actor_id=auth.user_id)
        await self._flush()
        return subscription

    async def update_auto_renewal(
        self,
        auth: AuthContext,
        business_id: UUID,
        enabled: bool,
        payment_method_id: str | None = None,
    ) -> Subscription:
        """
        Turn automatic renewal on or off.

        Raises:
            StateError: If the subscription has ended
            ValidationError: If enabling without any payment method
        """
        authorize(self.authorizer, auth, "subscriptions", "update", business_id)
        subscription = await self._load_current(business_id)
        self._require_not_ended(subscription)

        if payment_method_id:
            subscription.payment_method_id = payment_method_id
        if enabled and not subscription.payment_method_id:
            raise ValidationError(
                "A payment method is required to enable automatic renewal",
                error_code="missing_required_field",
            )

        old_value = subscription.auto_renewal
        subscription.auto_renewal = enabled
        await self._create_history(
            subscription.id, "auto_renewal_change", str(old_value).lower(), str(enabled).lower(), actor_id=auth.user_id
        )
        await self._flush()
        return subscription

    async def update_payment_method(self, auth: AuthContext, business_id: UUID, payment_method_id: str) -> Subscription:
        """Replace the stored payment method used for future charges."""
        authorize(self.authorizer, auth, "subscriptions", "update", business_id)
        subscription = await self._load_current(business_id)
        self._require_not_ended(subscription)

        subscription.payment_method_id = payment_method_id
        await self._create_history(subscription.id, "payment_method_change", None, "updated", actor_id=auth.user_id)
        await self._flush()
        return subscription

    # System sweeps (run by the worker, no caller context)

    async def finalize_period_end_cancellations(self, now: datetime | None = None) -> int:
        """
        End subscriptions whose pending cancellation reached period end.

        Returns:
            Number of subscriptions finalized
        """
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.CANCELED,
                Subscription.cancel_at_period_end.is_(True),
                Subscription.current_period_end <= now,
            )
            .with_for_update(skip_locked=True)
        )
        subscriptions = list(result.scalars().all())
        for subscription in subscriptions:
            subscription.cancel_at_period_end = False
            subscription.canceled_at = now
            subscription.auto_renewal = False
            subscription.pending_plan = None
            await self._create_history(
                subscription.id,
                "status_change",
                f"{SubscriptionStatus.CANCELED.value}:period_end",
                SubscriptionStatus.CANCELED.value,
                reason="period_ended",
            )
        await self._flush()

        if subscriptions:
            logger.info("period_end_cancellations_finalized", count=len(subscriptions))
        return len(subscriptions)

    async def process_ended_trials(self, now: datetime | None = None) -> dict[str, int]:
        """
        Settle trials whose trial window is over.

        Trials with auto renewal and a payment method are converted (and
        charged); the rest, and those whose conversion charge fails, expire.
        A declined conversion charge is kept in the payment history.
        Commits per subscription so one failure does not undo the others.

        Returns:
            dict with converted, expired and errors counts
        """
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(Subscription.id).where(
                Subscription.status == SubscriptionStatus.TRIAL,
                Subscription.trial_end <= now,
            )
        )
        converted = expired = errors = 0
        for subscription_id in result.scalars().all():
            try:
                subscription = await self._load_by_id(subscription_id)
                if subscription.status != SubscriptionStatus.TRIAL:
                    continue
                if subscription.auto_renewal and subscription.payment_method_id:
                    try:
                        await self._activate_from_trial(subscription, now)
                        await self.db.commit()
                        converted += 1
                        continue
                    except PaymentError as e:
                        # Discard the discount ledger entry written for the declined charge
                        await self.db.rollback()
                        subscription = await self._load_by_id(subscription_id)
                        if e.attempt is not None:
                            self.db.add(e.attempt)

                subscription.status = SubscriptionStatus.EXPIRED
                subscription.auto_renewal = False
                await self._create_history(
                    subscription.id,
                    "status_change",
                    SubscriptionStatus.TRIAL.value,
                    SubscriptionStatus.EXPIRED.value,
                    reason="trial_ended",
                )
                await self.db.commit()
                subscriptions_expired_total.labels(reason="trial_ended").inc()
                expired += 1
            except Exception as e:
                await self.db.rollback()
                errors += 1
                logger.exception("trial_settlement_failed", subscription_id=str(subscription_id), exc_info=e)

        if converted or expired or errors:
            logger.info("ended_trials_processed", converted=converted, expired=expired, errors=errors)
        return {"converted": converted, "expired": expired, "errors": errors}

    # Helpers

    async def _activate_from_trial(self, subscription: Subscription, now: datetime, actor_id: str | None = None) -> None:
        try:
            attempt = await self.payments.charge_subscription(
                subscription, subscription.plan.price, PaymentType.TRIAL_CONVERSION, now=now
            )
        except PolicyError:
            # The code's cap was reached after signup; nothing was written, bill full price.
            dropped = subscription.pending_discount.code
            subscription.pending_discount = None
            await self._flush()
            logger.warning("trial_conversion_discount_dropped", subscription_id=str(subscription.id), code=dropped)
            attempt = await self.payments.charge_subscription(
                subscription, subscription.plan.price, PaymentType.TRIAL_CONVERSION, now=now
            )
        self._raise_if_failed(attempt)

        subscription.status = SubscriptionStatus.ACTIVE
        subscription.current_period_start = now
        subscription.current_period_end = add_interval(now, subscription.plan.billing_interval)
        subscription.next_billing_date = subscription.current_period_end
        subscription.failed_payment_count = 0

        await self._create_history(
            subscription.id,
            "status_change",
            SubscriptionStatus.TRIAL.value,
            SubscriptionStatus.ACTIVE.value,
            reason="trial_converted",
            actor_id=actor_id,
        )
        await self._flush()
        logger.info(
            "trial_converted",
            subscription_id=str(subscription.id),
            amount=str(attempt.amount),
            original_amount=str(attempt.original_amount),
        )

    async def _load_current(self, business_id: UUID, lock: bool = True) -> Subscription:
        query = (
            select(Subscription)
            .where(Subscription.business_id == business_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        subscription = result.scalar_one_or_none()
        if not subscription:
            raise NotFoundError(
                f"Business {business_id} has no subscription",
                error_code="subscription_not_found",
                context={"business_id": str(business_id)},
            )
        return subscription

    async def _load_by_id(self, subscription_id: UUID) -> Subscription:
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.id == subscription_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _ensure_no_live_subscription(self, business_id: UUID, now: datetime) -> None:
        result = await self.db.execute(
            select(func.count(Subscription.id)).where(
                Subscription.business_id == business_id,
                or_(
                    Subscription.status.in_(LIVE_STATUSES),
                    and_(
                        Subscription.status == SubscriptionStatus.CANCELED,
                        Subscription.cancel_at_period_end.is_(True),
                        Subscription.current_period_end > now,
                    ),
                ),
            )
        )
        if result.scalar_one():
            raise ConflictError(
                f"Business {business_id} already has a live subscription",
                error_code="subscription_already_active",
                recovery_hint="Change plans or reactivate the existing subscription instead",
            )

    async def _create_history(
        self,
        subscription_id: UUID,
        event_type: str,
        old_value: str | None,
        new_value: str,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> None:
        self.db.add(
            SubscriptionHistory(
                subscription_id=subscription_id,
                event_type=event_type,
                old_value=old_value,
                new_value=new_value,
                reason=reason,
                actor_id=actor_id,
            )
        )

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except StaleDataError as e:
            raise ConflictError(
                "Subscription was modified concurrently",
                error_code="concurrent_modification",
                recovery_hint="Reload the subscription and retry",
            ) from e
        except IntegrityError as e:
            raise ConflictError(
                "Business already has a live subscription",
                error_code="subscription_already_active",
            ) from e

    @staticmethod
    def _end_now(subscription: Subscription, now: datetime) -> None:
        subscription.status = SubscriptionStatus.CANCELED
        subscription.cancel_at_period_end = False
        subscription.canceled_at = now
        subscription.auto_renewal = False
        subscription.pending_plan = None
        subscription.next_retry_at = None

    @staticmethod
    def _raise_if_failed(attempt: PaymentAttempt) -> None:
        if attempt.status != PaymentStatus.SUCCEEDED:
            raise PaymentError(
                "Payment was declined",
                failure_reason=attempt.failure_reason,
                context={"payment_type": attempt.payment_type.value, "amount": str(attempt.amount)},
                attempt=attempt,
            )

    @staticmethod
    def _require_active(subscription: Subscription, action: str) -> None:
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise StateError(
                f"Only active subscriptions can be {action} (status is {subscription.status.value})",
                context={"subscription_id": str(subscription.id)},
            )

    @staticmethod
    def _require_not_ended(subscription: Subscription) -> None:
        if subscription.status == SubscriptionStatus.EXPIRED or (
            subscription.status == SubscriptionStatus.CANCELED and not subscription.cancel_at_period_end
        ):
            raise StateError(
                f"Subscription has ended ({subscription.status.value})",
                context={"subscription_id": str(subscription.id)},
            )
