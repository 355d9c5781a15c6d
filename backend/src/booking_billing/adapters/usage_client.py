"""Resource usage lookups against the booking platform."""
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

import httpx
import structlog

from booking_billing.config import settings
from booking_billing.exceptions import BillingError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResourceUsage:
    """Current resource counts owned by a business's account."""

    businesses: int
    staff: int


class ResourceUsageReader(Protocol):
    """Reports how many businesses and staff a subscriber currently uses."""

    async def get_usage(self, business_id: UUID) -> ResourceUsage:
        ...


class UsageLookupError(BillingError):
    """Booking platform could not report resource usage."""

    default_error_code = "usage_lookup_failed"
    default_status_code = 503


class HttpResourceUsageReader:
    """Reads usage counts from the booking platform's internal API."""

    def __init__(self, base_url: str | None = None, timeout_seconds: float | None = None):
        self.base_url = (base_url or settings.usage_service_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.usage_service_timeout_seconds

    async def get_usage(self, business_id: UUID) -> ResourceUsage:
        """
        Fetch usage for a business.

        Raises:
            UsageLookupError: If the platform is unreachable or replies with an error
        """
        url = f"{self.base_url}/internal/businesses/{business_id}/usage"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning("usage_lookup_timeout", business_id=str(business_id))
            raise UsageLookupError("Resource usage lookup timed out") from e
        except httpx.HTTPError as e:
            logger.error("usage_lookup_failed", business_id=str(business_id), error=str(e))
            raise UsageLookupError(f"Resource usage lookup failed: {e}") from e

        payload = response.json()
        return ResourceUsage(
            businesses=int(payload.get("business_count", 0)),
            staff=int(payload.get("staff_count", 0)),
        )
