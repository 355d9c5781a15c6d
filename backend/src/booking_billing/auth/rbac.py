"""Role-Based Access Control for billing operations.

Roles:
- Platform Admin: Full access to every business's billing and to discount codes
- Billing Admin: Manage subscriptions for any business, manage discount codes
- Business Owner: Manage the subscriptions of businesses they own
- Staff: Read-only access to their businesses' subscriptions
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol
from uuid import UUID

import structlog

from booking_billing.exceptions import AuthorizationError

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Caller roles."""

    PLATFORM_ADMIN = "Platform Admin"
    BILLING_ADMIN = "Billing Admin"
    BUSINESS_OWNER = "Business Owner"
    STAFF = "Staff"


# Permission mappings for each role
PERMISSIONS = {
    Role.PLATFORM_ADMIN: {
        "subscriptions": ["create", "read", "update", "cancel", "manage_all"],
        "discount_codes": ["create", "read", "update", "delete", "validate", "apply"],
        "plans": ["read"],
        "renewals": ["run"],
    },
    Role.BILLING_ADMIN: {
        "subscriptions": ["create", "read", "update", "cancel", "manage_all"],
        "discount_codes": ["create", "read", "update", "validate", "apply"],
        "plans": ["read"],
        "renewals": ["run"],
    },
    Role.BUSINESS_OWNER: {
        "subscriptions": ["create", "read", "update", "cancel"],
        "discount_codes": ["validate", "apply"],
        "plans": ["read"],
    },
    Role.STAFF: {
        "subscriptions": ["read"],
        "discount_codes": ["validate"],
        "plans": ["read"],
    },
}


@dataclass(frozen=True)
class AuthContext:
    """
    Who is calling.

    Passed explicitly into every billing operation instead of being looked up
    from ambient request state.
    """

    user_id: str
    role: str
    business_ids: frozenset[UUID] = field(default_factory=frozenset)

    def owns(self, business_id: UUID) -> bool:
        return business_id in self.business_ids


class Authorizer(Protocol):
    """Decides whether a caller may perform an action."""

    def is_allowed(self, auth: AuthContext, resource: str, action: str, business_id: UUID | None = None) -> bool:
        ...


def has_permission(role: str, resource: str, action: str) -> bool:
    """
    Check if role has permission for resource action.

    Args:
        role: User role
        resource: Resource type (e.g., "subscriptions", "discount_codes")
        action: Action to perform (e.g., "create", "read", "cancel")

    Returns:
        True if role has permission, False otherwise
    """
    try:
        role_enum = Role(role)
    except ValueError:
        logger.warning("invalid_role_check", role=role)
        return False

    role_perms = PERMISSIONS.get(role_enum, {})
    return action in role_perms.get(resource, [])


class RoleBasedAuthorizer:
    """Role permission map plus business ownership for business-scoped actions."""

    def is_allowed(self, auth: AuthContext, resource: str, action: str, business_id: UUID | None = None) -> bool:
        if not has_permission(auth.role, resource, action):
            return False
        # Platform-wide subscription management covers every business-scoped action
        if business_id is None or has_permission(auth.role, "subscriptions", "manage_all"):
            return True
        return auth.owns(business_id)


def authorize(
    authorizer: Authorizer,
    auth: AuthContext,
    resource: str,
    action: str,
    business_id: UUID | None = None,
) -> None:
    """
    Raise AuthorizationError unless the caller may perform the action.

    Raises:
        AuthorizationError: If permission or ownership is missing
    """
    if authorizer.is_allowed(auth, resource, action, business_id):
        return

    logger.warning(
        "rbac_permission_denied",
        user_id=auth.user_id,
        user_role=auth.role,
        required_permission=f"{resource}:{action}",
        business_id=str(business_id) if business_id else None,
    )
    raise AuthorizationError(
        f"Insufficient permissions. Required: {resource}:{action}",
        context={"resource": resource, "action": action},
    )
