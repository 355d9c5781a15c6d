"""Manual trigger for the renewal batch (normally run by the worker)."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.adapters.payment_gateway import PaymentGateway
from booking_billing.api.deps import get_authorizer, get_current_user, get_db, get_payment_gateway
from booking_billing.auth.rbac import AuthContext, Authorizer, authorize
from booking_billing.schemas.subscription import RenewalRunResult
from booking_billing.services.renewal_service import RenewalService

router = APIRouter(prefix="/renewals", tags=["Renewals"])


@router.post("/run", response_model=RenewalRunResult)
async def run_due_renewals(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    authorizer: Authorizer = Depends(get_authorizer),
    current_user: AuthContext = Depends(get_current_user),
) -> RenewalRunResult:
    """
    Run one pass of the renewal loop now.

    Safe to call while the scheduled worker runs: subscriptions are claimed
    individually and never processed twice.
    """
    authorize(authorizer, current_user, "renewals", "run")
    summary = await RenewalService(db, gateway).run_due_renewals()
    return RenewalRunResult(**summary.to_dict())
