"""Scheduled billing jobs.

This worker runs periodically to:
1. Renew subscriptions whose billing period ended (and retry failed renewals)
2. Finalize cancellations that reached their period end
3. Convert or expire trials whose trial window is over
4. Expire subscriptions that ended with automatic renewal off
5. Deactivate discount codes past their validity window

Usage (with ARQ):
    arq booking_billing.workers.renewals.WorkerSettings
"""
import structlog
from arq import cron
from arq.connections import RedisSettings

from booking_billing.adapters.stripe_adapter import StripePaymentGateway
from booking_billing.config import settings
from booking_billing.database import AsyncSessionLocal
from booking_billing.middleware.logging import setup_logging
from booking_billing.services.discount_service import DiscountService
from booking_billing.services.renewal_service import RenewalService
from booking_billing.services.subscription_service import SubscriptionService

logger = structlog.get_logger(__name__)


async def run_due_renewals(ctx: dict) -> dict[str, int]:
    """
    Charge every subscription that is due for renewal.

    Args:
        ctx: ARQ context (holds the payment gateway created at startup)

    Returns:
        Renewal run summary counts
    """
    async with AsyncSessionLocal() as db:
        summary = await RenewalService(db, ctx["payment_gateway"]).run_due_renewals()
        return summary.to_dict()


async def finalize_cancellations(ctx: dict) -> dict[str, int]:
    """End subscriptions whose period-end cancellation is due."""
    async with AsyncSessionLocal() as db:
        try:
            finalized = await SubscriptionService(db, ctx["payment_gateway"]).finalize_period_end_cancellations()
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.exception("cancellation_finalization_failed", exc_info=e)
            raise
        return {"finalized": finalized}


async def process_ended_trials(ctx: dict) -> dict[str, int]:
    """Convert or expire trials whose trial window is over."""
    async with AsyncSessionLocal() as db:
        return await SubscriptionService(db, ctx["payment_gateway"]).process_ended_trials()


async def expire_unrenewed(ctx: dict) -> dict[str, int]:
    """Expire subscriptions whose period ended with automatic renewal off."""
    async with AsyncSessionLocal() as db:
        expired = await RenewalService(db, ctx["payment_gateway"]).expire_unrenewed()
        return {"expired": expired}


async def deactivate_expired_codes(ctx: dict) -> dict[str, int]:
    """Deactivate discount codes whose validity window has closed."""
    async with AsyncSessionLocal() as db:
        try:
            deactivated = await DiscountService(db).deactivate_expired_codes()
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.exception("discount_code_expiry_failed", exc_info=e)
            raise
        return {"deactivated": deactivated}


async def startup(ctx: dict) -> None:
    setup_logging()
    ctx["payment_gateway"] = StripePaymentGateway()
    logger.info("billing_worker_started")


async def shutdown(ctx: dict) -> None:
    logger.info("billing_worker_stopped")


class WorkerSettings:
    """
    ARQ worker settings for the billing jobs.

    Schedule (UTC):
    - Renewals: every 15 minutes
    - Cancellations, trials, unrenewed expiry: hourly
    - Discount code expiry: daily at 01:00
    """

    functions = [
        run_due_renewals,
        finalize_cancellations,
        process_ended_trials,
        expire_unrenewed,
        deactivate_expired_codes,
    ]

    cron_jobs = [
        cron(run_due_renewals, minute={0, 15, 30, 45}, timeout=600, unique=True),
        cron(finalize_cancellations, minute=5, timeout=300, unique=True),
        cron(process_ended_trials, minute=10, timeout=600, unique=True),
        cron(expire_unrenewed, minute=20, timeout=300, unique=True),
        cron(deactivate_expired_codes, hour=1, minute=0, timeout=300, unique=True),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = RedisSettings.from_dsn(str(settings.arq_redis_url))

    keep_result = 86400
    max_jobs = 10
    job_timeout = 600
