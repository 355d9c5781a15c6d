"""FastAPI dependencies for database sessions, authentication and collaborators."""
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.adapters.payment_gateway import PaymentGateway
from booking_billing.adapters.stripe_adapter import StripePaymentGateway
from booking_billing.adapters.usage_client import HttpResourceUsageReader, ResourceUsageReader
from booking_billing.auth.jwt import jwt_auth
from booking_billing.auth.rbac import AuthContext, Authorizer, RoleBasedAuthorizer
from booking_billing.database import get_db
from booking_billing.services.subscription_service import SubscriptionService

logger = structlog.get_logger(__name__)

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)

_payment_gateway = StripePaymentGateway()
_usage_reader = HttpResourceUsageReader()
_authorizer = RoleBasedAuthorizer()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    """
    Authenticate the caller from the bearer token.

    Returns:
        AuthContext: user id, role and owned businesses from the token claims

    Raises:
        HTTPException: 401 if the token is missing, expired or invalid
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    try:
        payload = jwt_auth.verify_access_token(token)
        auth = jwt_auth.to_auth_context(payload)
    except jwt.ExpiredSignatureError:
        logger.warning("token_expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        logger.warning("invalid_token", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    structlog.contextvars.bind_contextvars(user_id=auth.user_id)
    return auth


def get_payment_gateway() -> PaymentGateway:
    """Payment gateway used for charges."""
    return _payment_gateway


def get_usage_reader() -> ResourceUsageReader:
    """Reader for a business's current resource usage."""
    return _usage_reader


def get_authorizer() -> Authorizer:
    """Authorization policy for billing operations."""
    return _authorizer


def get_subscription_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    authorizer: Authorizer = Depends(get_authorizer),
    usage_reader: ResourceUsageReader = Depends(get_usage_reader),
) -> SubscriptionService:
    """Subscription service wired to the request's session."""
    return SubscriptionService(db, gateway, authorizer=authorizer, usage_reader=usage_reader)
