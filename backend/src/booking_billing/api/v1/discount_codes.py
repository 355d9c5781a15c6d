"""Discount code API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.api.deps import get_authorizer, get_current_user, get_db
from booking_billing.auth.rbac import AuthContext, Authorizer, authorize
from booking_billing.exceptions import BillingError
from booking_billing.schemas.discount import (
    DiscountCode,
    DiscountCodeBulkCreate,
    DiscountCodeCreate,
    DiscountCodeList,
    DiscountCodeUpdate,
    DiscountStatistics,
    DiscountUsageList,
    DiscountValidateRequest,
    DiscountValidationResponse,
)
from booking_billing.services.discount_service import DiscountService
from booking_billing.services.plan_catalog import PlanCatalog

router = APIRouter(prefix="/discount-codes", tags=["Discount Codes"])


@router.post("", response_model=DiscountCode, status_code=status.HTTP_201_CREATED)
async def create_discount_code(
    data: DiscountCodeCreate,
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> DiscountCode:
    """
    Create a discount code.

    - **code**: Code customers enter (generated when omitted)
    - **discount_type**: percentage or fixed
    - **discount_value**: Percent in (0, 100] or a fixed amount
    - **is_recurring** / **max_recurring_uses**: Apply to several consecutive billing events
    """
    authorize(authorizer, current_user, "discount_codes", "create")
    service = DiscountService(db)
    try:
        discount_code = await service.create_code(data, created_by=current_user.user_id)
        await db.commit()
        return discount_code
    except BillingError:
        await db.rollback()
        raise


@router.post("/bulk", response_model=list[DiscountCode], status_code=status.HTTP_201_CREATED)
async def generate_bulk_codes(
    data: DiscountCodeBulkCreate,
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> list[DiscountCode]:
    """Generate `count` codes with a common prefix from one template."""
    authorize(authorizer, current_user, "discount_codes", "create")
    service = DiscountService(db)
    try:
        codes = await service.generate_bulk_codes(data, created_by=current_user.user_id)
        await db.commit()
        return codes
    except BillingError:
        await db.rollback()
        raise


@router.get("", response_model=DiscountCodeList)
async def list_discount_codes(
    active_only: bool = Query(False, description="Only active codes"),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(100, ge=1, le=1000, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> DiscountCodeList:
    """List discount codes, newest first."""
    authorize(authorizer, current_user, "discount_codes", "read")
    codes, total = await DiscountService(db).list_codes(active_only=active_only, page=page, page_size=page_size)
    return DiscountCodeList(items=codes, total=total, page=page, page_size=page_size)


@router.get("/statistics", response_model=DiscountStatistics)
async def get_discount_statistics(
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> DiscountStatistics:
    """Totals across all codes: active, expired, redemptions and discount given."""
    authorize(authorizer, current_user, "discount_codes", "read")
    return await DiscountService(db).get_statistics()


@router.post("/validate", response_model=DiscountValidationResponse)
async def validate_discount_code(
    data: DiscountValidateRequest,
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> DiscountValidationResponse:
    """
    Check a code against a plan without redeeming it.

    Always returns 200; `valid` and `reason` describe the outcome. The amount
    defaults to the plan price.
    """
    authorize(authorizer, current_user, "discount_codes", "validate")
    plan = await PlanCatalog(db).get_active_plan(data.plan_id)
    amount = data.amount if data.amount is not None else plan.price

    validation = await DiscountService(db).validate(data.code, plan.id, amount, user_id=current_user.user_id)
    snapshot = validation.calculated_discount
    if not validation.valid:
        return DiscountValidationResponse(valid=False, reason=validation.reason, code=validation.code)
    return DiscountValidationResponse(
        valid=True,
        code=snapshot.code,
        discount_type=snapshot.discount_type,
        discount_value=snapshot.discount_value,
        original_amount=snapshot.original_amount,
        discount_amount=snapshot.discount_amount,
        final_amount=snapshot.final_amount,
    )


@router.get("/{code_id}", response_model=DiscountCode)
async def get_discount_code(
    code_id: UUID,
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> DiscountCode:
    """Get a discount code by ID."""
    authorize(authorizer, current_user, "discount_codes", "read")
    return await DiscountService(db).get_code(code_id)


@router.patch("/{code_id}", response_model=DiscountCode)
async def update_discount_code(
    code_id: UUID,
    data: DiscountCodeUpdate,
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> DiscountCode:
    """Update a code's definition. Snapshots already attached to subscriptions do not change."""
    authorize(authorizer, current_user, "discount_codes", "update")
    service = DiscountService(db)
    try:
        discount_code = await service.update_code(code_id, data)
        await db.commit()
        return discount_code
    except BillingError:
        await db.rollback()
        raise


@router.post("/{code_id}/deactivate", response_model=DiscountCode)
async def deactivate_discount_code(
    code_id: UUID,
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> DiscountCode:
    """Stop further redemptions of a code."""
    authorize(authorizer, current_user, "discount_codes", "update")
    service = DiscountService(db)
    try:
        discount_code = await service.deactivate_code(code_id)
        await db.commit()
        return discount_code
    except BillingError:
        await db.rollback()
        raise


@router.delete("/{code_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_discount_code(
    code_id: UUID,
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> Response:
    """Delete a code that was never redeemed or attached (409 otherwise)."""
    authorize(authorizer, current_user, "discount_codes", "delete")
    service = DiscountService(db)
    try:
        await service.delete_code(code_id)
        await db.commit()
    except BillingError:
        await db.rollback()
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{code_id}/usages", response_model=DiscountUsageList)
async def get_usage_history(
    code_id: UUID,
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(100, ge=1, le=1000, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> DiscountUsageList:
    """Redemption ledger of a code, newest first."""
    authorize(authorizer, current_user, "discount_codes", "read")
    usages, total = await DiscountService(db).get_usage_history(code_id, page=page, page_size=page_size)
    return DiscountUsageList(items=usages, total=total, page=page, page_size=page_size)
