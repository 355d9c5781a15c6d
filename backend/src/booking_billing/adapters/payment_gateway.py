"""Payment gateway contract used by the billing core."""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)

TIMEOUT_FAILURE_REASON = "gateway_timeout"


@dataclass(frozen=True)
class ChargeResult:
    """Outcome of a single charge."""

    succeeded: bool
    payment_id: str | None = None
    failure_reason: str | None = None


class PaymentGateway(Protocol):
    """Anything that can charge a stored payment method."""

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method_id: str | None,
        idempotency_key: str,
    ) -> ChargeResult:
        ...


async def charge_with_timeout(
    gateway: PaymentGateway,
    amount: Decimal,
    currency: str,
    payment_method_id: str | None,
    idempotency_key: str,
    timeout_seconds: float,
) -> ChargeResult:
    """
    Charge through the gateway, treating a timeout as a failed charge.

    The in-flight call is not reconciled here; the gateway's idempotency key
    makes the next attempt with the same key safe.

    Args:
        gateway: Payment gateway implementation
        amount: Amount in major units
        currency: ISO currency code
        payment_method_id: Stored payment method reference
        idempotency_key: Key the gateway uses to deduplicate retries
        timeout_seconds: Upper bound on the round trip

    Returns:
        ChargeResult (never raises on timeout)
    """
    try:
        return await asyncio.wait_for(
            gateway.charge(amount, currency, payment_method_id, idempotency_key),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "payment_gateway_timeout",
            idempotency_key=idempotency_key,
            timeout_seconds=timeout_seconds,
        )
        return ChargeResult(succeeded=False, failure_reason=TIMEOUT_FAILURE_REASON)
