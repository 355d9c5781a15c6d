"""Subscription API endpoints."""
from datetime import timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.api.deps import get_current_user, get_db, get_subscription_service
from booking_billing.auth.rbac import AuthContext
from booking_billing.exceptions import BillingError
from booking_billing.schemas.subscription import (
    ApplyDiscount,
    AutoRenewalUpdate,
    PaymentAttempt,
    PaymentMethodUpdate,
    PlanChangePreview,
    SubscriptionCancel,
    SubscriptionCreate,
    SubscriptionHistory,
    SubscriptionPlanChange,
    SubscriptionStats,
    SubscriptionWithPlan,
    TrialConversion,
)
from booking_billing.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.post("", response_model=SubscriptionWithPlan, status_code=status.HTTP_201_CREATED)
async def subscribe(
    data: SubscriptionCreate,
    db: AsyncSession = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """
    Subscribe a business to a plan.

    - **business_id**: Business UUID (required)
    - **plan_id**: Plan UUID (required)
    - **discount_code**: Optional code, validated against the plan price
    - **payment_method_id**: Stored payment method (required for plans without a trial)
    - **auto_renewal**: Renew automatically at period end (default: true)

    Plans with trial days start in TRIAL and defer the discount to the trial
    conversion. Other plans are charged immediately; a declined charge
    returns 402 and nothing is created.
    """
    try:
        subscription = await service.subscribe(
            current_user,
            data.business_id,
            data.plan_id,
            discount_code=data.discount_code,
            payment_method_id=data.payment_method_id,
            auto_renewal=data.auto_renewal,
        )
        await db.commit()
        return subscription
    except BillingError:
        await db.rollback()
        raise


@router.get("/stats", response_model=SubscriptionStats)
async def get_subscription_stats(
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionStats:
    """Subscription counts by status and monthly recurring revenue per currency (admins only)."""
    return await service.get_subscription_stats(current_user)


@router.get("/trials/ending-soon", response_model=list[SubscriptionWithPlan])
async def get_trials_ending_soon(
    days: int = Query(3, ge=1, le=90, description="Look-ahead window in days"),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> list[SubscriptionWithPlan]:
    """Trials ending within the next `days` days (admins only)."""
    return await service.get_trials_ending_soon(current_user, timedelta(days=days))


@router.get("/{business_id}", response_model=SubscriptionWithPlan)
async def get_business_subscription(
    business_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """Get the business's current subscription, including its plan and pending discount."""
    return await service.get_business_subscription(current_user, business_id)


@router.get("/{business_id}/history", response_model=list[SubscriptionHistory])
async def get_subscription_history(
    business_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> list[SubscriptionHistory]:
    """Audit trail of the business's subscriptions, newest first."""
    return await service.get_subscription_history(current_user, business_id)


@router.get("/{business_id}/payments", response_model=list[PaymentAttempt])
async def list_payments(
    business_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> list[PaymentAttempt]:
    """Payment attempts of the current subscription, newest first."""
    return await service.list_payments(current_user, business_id)


@router.post("/{business_id}/convert-trial", response_model=SubscriptionWithPlan)
async def convert_trial(
    business_id: UUID,
    data: TrialConversion,
    db: AsyncSession = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """
    Convert a trial into a paid subscription.

    Charges the plan price, reduced by the pending discount when one applies.
    """
    try:
        subscription = await service.convert_trial_to_active(
            current_user, business_id, payment_method_id=data.payment_method_id
        )
        await db.commit()
        return subscription
    except BillingError:
        await db.rollback()
        raise


@router.post("/{business_id}/cancel", response_model=SubscriptionWithPlan)
async def cancel_subscription(
    business_id: UUID,
    data: SubscriptionCancel,
    db: AsyncSession = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """
    Cancel a subscription.

    - **at_period_end**: true keeps access until the period ends (default), false ends it now
    - **reason**: Optional cancellation reason
    """
    try:
        subscription = await service.cancel(
            current_user, business_id, at_period_end=data.at_period_end, reason=data.reason
        )
        await db.commit()
        return subscription
    except BillingError:
        await db.rollback()
        raise


@router.post("/{business_id}/reactivate", response_model=SubscriptionWithPlan)
async def reactivate_subscription(
    business_id: UUID,
    db: AsyncSession = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """Undo a cancellation that has not taken effect yet."""
    try:
        subscription = await service.reactivate(current_user, business_id)
        await db.commit()
        return subscription
    except BillingError:
        await db.rollback()
        raise


@router.post("/{business_id}/upgrade", response_model=SubscriptionWithPlan)
async def upgrade_plan(
    business_id: UUID,
    data: SubscriptionPlanChange,
    db: AsyncSession = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """Switch to a more expensive plan now, charging the prorated difference."""
    try:
        subscription = await service.upgrade(current_user, business_id, data.new_plan_id)
        await db.commit()
        return subscription
    except BillingError:
        await db.rollback()
        raise


@router.post("/{business_id}/downgrade", response_model=SubscriptionWithPlan)
async def downgrade_plan(
    business_id: UUID,
    data: SubscriptionPlanChange,
    db: AsyncSession = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """
    Schedule a cheaper plan for the next period.

    Returns 422 with the exceeded limits when current staff or business
    usage does not fit the new plan.
    """
    try:
        subscription = await service.downgrade(current_user, business_id, data.new_plan_id)
        await db.commit()
        return subscription
    except BillingError:
        await db.rollback()
        raise


@router.post("/{business_id}/preview-change", response_model=PlanChangePreview)
async def preview_plan_change(
    business_id: UUID,
    data: SubscriptionPlanChange,
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> PlanChangePreview:
    """Show the proration for a plan change without applying it."""
    return await service.preview_plan_change(current_user, business_id, data.new_plan_id)


@router.post("/{business_id}/discount", response_model=SubscriptionWithPlan)
async def apply_discount(
    business_id: UUID,
    data: ApplyDiscount,
    db: AsyncSession = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """Attach a discount code to the subscription's next eligible payment."""
    try:
        subscription = await service.apply_discount_to_subscription(current_user, business_id, data.code)
        await db.commit()
        return subscription
    except BillingError:
        await db.rollback()
        raise


@router.patch("/{business_id}/auto-renewal", response_model=SubscriptionWithPlan)
async def update_auto_renewal(
    business_id: UUID,
    data: AutoRenewalUpdate,
    db: AsyncSession = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """Turn automatic renewal on or off."""
    try:
        subscription = await service.update_auto_renewal(
            current_user, business_id, data.enabled, payment_method_id=data.payment_method_id
        )
        await db.commit()
        return subscription
    except BillingError:
        await db.rollback()
        raise


@router.patch("/{business_id}/payment-method", response_model=SubscriptionWithPlan)
async def update_payment_method(
    business_id: UUID,
    data: PaymentMethodUpdate,
    db: AsyncSession = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: AuthContext = Depends(get_current_user),
) -> SubscriptionWithPlan:
    """Replace the payment method used for future charges."""
    try:
        subscription = await service.update_payment_method(current_user, business_id, data.payment_method_id)
        await db.commit()
        return subscription
    except BillingError:
        await db.rollback()
        raise
