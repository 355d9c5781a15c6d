"""Renewal loop: charges due subscriptions and escalates failed renewals."""
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from uuid import UUID

import structlog
from opentelemetry import trace
from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.adapters.payment_gateway import TIMEOUT_FAILURE_REASON, PaymentGateway
from booking_billing.config import settings
from booking_billing.exceptions import PolicyError
from booking_billing.metrics import (
    renewal_run_duration_seconds,
    renewals_processed_total,
    subscriptions_expired_total,
)
from booking_billing.models.payment import PaymentAttempt, PaymentStatus, PaymentType
from booking_billing.models.subscription import Subscription, SubscriptionHistory, SubscriptionStatus
from booking_billing.services.payment_service import PaymentService
from booking_billing.utils.periods import add_interval

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

RENEWABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how far apart failed renewals are retried."""

    max_retries: int
    backoff: timedelta

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.renewal_max_retries,
            backoff=timedelta(hours=settings.renewal_retry_backoff_hours),
        )


@dataclass
class RenewalRunSummary:
    """Counts for one pass of the renewal loop."""

    processed: int = 0
    renewed: int = 0
    failed: int = 0
    expired: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class RenewalOutcome:
    """Result of renewing a single subscription."""

    RENEWED = "renewed"
    FAILED = "failed"
    EXPIRED = "expired"
    SKIPPED = "skipped"


class RenewalService:
    """
    Service for the periodic renewal batch.

    Each due subscription is claimed with a short-lived marker so overlapping
    runs never process it twice, charged through PaymentService, and
    committed on its own. A declined charge moves the subscription to
    PAST_DUE with a scheduled retry; exhausting the retries expires it.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        policy: RetryPolicy | None = None,
        claim_ttl: timedelta | None = None,
        batch_size: int | None = None,
    ):
        """Initialize renewal service."""
        self.db = db
        self.policy = policy or RetryPolicy.from_settings()
        self.claim_ttl = claim_ttl or timedelta(seconds=settings.renewal_claim_ttl_seconds)
        self.batch_size = batch_size or settings.renewal_batch_size
        self.payments = PaymentService(db, gateway)

    def _due_conditions(self, now: datetime) -> list:
        return [
            Subscription.status.in_(RENEWABLE_STATUSES),
            Subscription.auto_renewal.is_(True),
            Subscription.cancel_at_period_end.is_(False),
            Subscription.current_period_end <= now,
            or_(Subscription.next_retry_at.is_(None), Subscription.next_retry_at <= now),
            or_(Subscription.renewal_claimed_until.is_(None), Subscription.renewal_claimed_until < now),
        ]

    async def find_due(self, now: datetime) -> list[UUID]:
        """Ids of subscriptions due for a renewal attempt, oldest period end first."""
        result = await self.db.execute(
            select(Subscription.id)
            .where(*self._due_conditions(now))
            .order_by(Subscription.current_period_end)
            .limit(self.batch_size)
        )
        return list(result.scalars().all())

    async def run_due_renewals(self, now: datetime | None = None) -> RenewalRunSummary:
        """
        Attempt renewal for every subscription that is due.

        Failures of one subscription never abort the batch: they are rolled
        back, logged and counted as errors, and the claim expires so a later
        run can pick the subscription up again.

        Args:
            now: Run time

        Returns:
            RenewalRunSummary
        """
        now = now or datetime.utcnow()
        started = time.perf_counter()
        summary = RenewalRunSummary()

        due = await self.find_due(now)
        logger.info("renewal_run_started", due_count=len(due))

        for subscription_id in due:
            summary.processed += 1
            try:
                with tracer.start_as_current_span("renew_subscription") as span:
                    span.set_attribute("subscription.id", str(subscription_id))
                    outcome = await self.renew_subscription(subscription_id, now)
                    span.set_attribute("renewal.outcome", outcome)
            except Exception as e:
                await self.db.rollback()
                summary.errors += 1
                renewals_processed_total.labels(outcome="error").inc()
                logger.exception("renewal_error", subscription_id=str(subscription_id), exc_info=e)
                continue

            renewals_processed_total.labels(outcome=outcome).inc()
            if outcome == RenewalOutcome.RENEWED:
                summary.renewed += 1
            elif outcome == RenewalOutcome.FAILED:
                summary.failed += 1
            elif outcome == RenewalOutcome.EXPIRED:
                summary.expired += 1
            else:
                summary.skipped += 1

        renewal_run_duration_seconds.observe(time.perf_counter() - started)
        logger.info("renewal_run_completed", **summary.to_dict())
        return summary

    async def renew_subscription(self, subscription_id: UUID, now: datetime | None = None) -> str:
        """
        Claim, charge and settle one subscription.

        The charge covers the plan the next period is for (the scheduled
        downgrade plan if any), reduced by a recurring pending discount.

        Returns:
            RenewalOutcome value
        """
        now = now or datetime.utcnow()
        if not await self._claim(subscription_id, now):
            logger.info("renewal_skipped_claimed", subscription_id=str(subscription_id))
            return RenewalOutcome.SKIPPED

        subscription = await self._load(subscription_id)
        plan = subscription.pending_plan or subscription.plan
        idempotency_key = await self._idempotency_key(subscription)

        try:
            attempt = await self._charge(subscription, plan, idempotency_key, now)
        except PolicyError:
            # The code's cap was reached by other redemptions; bill full price.
            await self.db.rollback()
            subscription = await self._load(subscription_id)
            dropped = subscription.pending_discount.code
            subscription.pending_discount = None
            await self.db.flush()
            logger.warning(
                "renewal_discount_dropped", subscription_id=str(subscription_id), code=dropped
            )
            attempt = await self._charge(subscription, plan, idempotency_key, now)

        if attempt.status == PaymentStatus.SUCCEEDED:
            self._advance_period(subscription, plan)
            self._add_history(subscription.id, "renewed", None, subscription.current_period_end.isoformat())
            await self.db.commit()
            logger.info(
                "subscription_renewed",
                subscription_id=str(subscription.id),
                amount=str(attempt.amount),
                period_end=subscription.current_period_end.isoformat(),
            )
            return RenewalOutcome.RENEWED

        return await self._record_failure(subscription_id, attempt, now)

    async def _claim(self, subscription_id: UUID, now: datetime) -> bool:
        result = await self.db.execute(
            update(Subscription)
            .where(Subscription.id == subscription_id, *self._due_conditions(now))
            .values(renewal_claimed_until=now + self.claim_ttl)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def _load(self, subscription_id: UUID) -> Subscription:
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.id == subscription_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _idempotency_key(self, subscription: Subscription) -> str:
        """
        Key for this renewal attempt.

        A retry after a gateway timeout reuses the previous key so the
        gateway can settle the original request instead of charging again.
        """
        prefix = f"renewal:{subscription.id}:{subscription.current_period_end.isoformat()}"
        last = await self.payments.last_attempt(subscription.id, PaymentType.RENEWAL)
        if (
            last is not None
            and last.failure_reason == TIMEOUT_FAILURE_REASON
            and last.idempotency_key.startswith(f"{prefix}:")
        ):
            return last.idempotency_key
        return f"{prefix}:{subscription.failed_payment_count}"

    async def _charge(self, subscription: Subscription, plan, idempotency_key: str, now: datetime) -> PaymentAttempt:
        return await self.payments.charge_subscription(
            subscription,
            plan.price,
            PaymentType.RENEWAL,
            currency=plan.currency,
            idempotency_key=idempotency_key,
            retry_count=subscription.failed_payment_count,
            max_retries=self.policy.max_retries,
            now=now,
        )

    @staticmethod
    def _advance_period(subscription: Subscription, plan) -> None:
        old_end = subscription.current_period_end
        if subscription.pending_plan is not None:
            subscription.plan = subscription.pending_plan
            subscription.pending_plan = None
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.current_period_start = old_end
        subscription.current_period_end = add_interval(old_end, plan.billing_interval)
        subscription.next_billing_date = subscription.current_period_end
        subscription.failed_payment_count = 0
        subscription.next_retry_at = None
        subscription.renewal_claimed_until = None

    async def _record_failure(self, subscription_id: UUID, attempt: PaymentAttempt, now: datetime) -> str:
        """Persist a declined renewal and move the subscription along the retry schedule."""
        # Discard the discount ledger entry written for the declined charge
        await self.db.rollback()
        subscription = await self._load(subscription_id)
        self.db.add(attempt)

        old_status = subscription.status
        subscription.failed_payment_count += 1
        subscription.renewal_claimed_until = None

        if subscription.failed_payment_count >= self.policy.max_retries:
            subscription.status = SubscriptionStatus.EXPIRED
            subscription.auto_renewal = False
            subscription.next_retry_at = None
            outcome = RenewalOutcome.EXPIRED
            subscriptions_expired_total.labels(reason="payment_failed").inc()
        else:
            subscription.status = SubscriptionStatus.PAST_DUE
            subscription.next_retry_at = now + self.policy.backoff
            subscription.next_billing_date = subscription.next_retry_at
            outcome = RenewalOutcome.FAILED

        self._add_history(
            subscription.id,
            "status_change",
            old_status.value,
            subscription.status.value,
            reason=f"renewal_failed:{attempt.failure_reason}",
        )
        await self.db.commit()

        logger.warning(
            "renewal_failed",
            subscription_id=str(subscription.id),
            failed_payment_count=subscription.failed_payment_count,
            max_retries=self.policy.max_retries,
            failure_reason=attempt.failure_reason,
            outcome=outcome,
        )
        return outcome

    async def expire_unrenewed(self, now: datetime | None = None) -> int:
        """
        Expire subscriptions whose period ended with automatic renewal off.

        Returns:
            Number of subscriptions expired
        """
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.status.in_(RENEWABLE_STATUSES),
                Subscription.auto_renewal.is_(False),
                Subscription.current_period_end <= now,
            )
            .with_for_update(skip_locked=True)
        )
        subscriptions = list(result.scalars().all())
        for subscription in subscriptions:
            old_status = subscription.status
            subscription.status = SubscriptionStatus.EXPIRED
            subscription.next_retry_at = None
            subscription.pending_plan = None
            self._add_history(
                subscription.id, "status_change", old_status.value, SubscriptionStatus.EXPIRED.value, reason="not_renewed"
            )
            subscriptions_expired_total.labels(reason="not_renewed").inc()
        await self.db.commit()

        if subscriptions:
            logger.info("unrenewed_subscriptions_expired", count=len(subscriptions))
        return len(subscriptions)

    def _add_history(
        self,
        subscription_id: UUID,
        event_type: str,
        old_value: str | None,
        new_value: str,
        reason: str | None = None,
    ) -> None:
        self.db.add(
            SubscriptionHistory(
                subscription_id=subscription_id,
                event_type=event_type,
                old_value=old_value,
                new_value=new_value,
                reason=reason,
            )
        )
