"""Plan catalog lookups."""
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.exceptions import NotFoundError
from booking_billing.models.plan import Plan, BillingInterval


class PlanCatalog:
    """Read-only access to subscription plans."""

    def __init__(self, db: AsyncSession):
        """Initialize plan catalog with database session."""
        self.db = db

    async def find_by_id(self, plan_id: UUID) -> Plan | None:
        """
        Get plan by ID.

        Args:
            plan_id: Plan UUID

        Returns:
            Plan or None if not found
        """
        result = await self.db.execute(select(Plan).where(Plan.id == plan_id))
        return result.scalar_one_or_none()

    async def get_active_plan(self, plan_id: UUID) -> Plan:
        """
        Get a plan that can be subscribed to.

        Raises:
            NotFoundError: If plan doesn't exist or is inactive
        """
        plan = await self.find_by_id(plan_id)
        if not plan or not plan.is_active:
            raise NotFoundError(f"Plan {plan_id} not found", error_code="plan_not_found", context={"plan_id": str(plan_id)})
        return plan

    async def list_plans(
        self,
        interval: BillingInterval | None = None,
        active_only: bool = True,
    ) -> list[Plan]:
        """
        List plans ordered for display.

        Args:
            interval: Filter by billing interval (optional)
            active_only: Hide inactive plans

        Returns:
            Plans sorted by sort_order, then price
        """
        query = select(Plan)
        if interval:
            query = query.where(Plan.billing_interval == interval)
        if active_only:
            query = query.where(Plan.is_active.is_(True))
        query = query.order_by(Plan.sort_order, Plan.price)

        result = await self.db.execute(query)
        return list(result.scalars().all())
