"""Plan API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.api.deps import get_db
from booking_billing.models.plan import BillingInterval
from booking_billing.schemas.plan import Plan, PlanList
from booking_billing.services.plan_catalog import PlanCatalog

router = APIRouter(prefix="/plans", tags=["Plans"])


@router.get("", response_model=PlanList)
async def list_plans(
    interval: BillingInterval | None = Query(None, description="Filter by billing interval"),
    db: AsyncSession = Depends(get_db),
) -> PlanList:
    """List active plans in display order."""
    plans = await PlanCatalog(db).list_plans(interval=interval)
    return PlanList(items=plans, total=len(plans))


@router.get("/{plan_id}", response_model=Plan)
async def get_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Plan:
    """Get an active plan by ID."""
    return await PlanCatalog(db).get_active_plan(plan_id)
