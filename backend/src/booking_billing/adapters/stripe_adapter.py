"""Stripe payment gateway adapter."""
import asyncio
from decimal import Decimal
from typing import Any

import stripe
import structlog

from booking_billing.adapters.payment_gateway import ChargeResult
from booking_billing.config import settings
from booking_billing.utils.money import to_minor_units

logger = structlog.get_logger(__name__)


class StripePaymentGateway:
    """Charges stored payment methods with off-session Stripe PaymentIntents."""

    def __init__(self, api_key: str | None = None):
        """Initialize Stripe adapter with API key."""
        stripe.api_key = api_key or settings.stripe_secret_key

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method_id: str | None,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChargeResult:
        """
        Create and confirm a payment intent.

        The Stripe SDK is blocking, so the call runs in a worker thread.

        Args:
            amount: Amount in major units
            currency: ISO currency code
            payment_method_id: Stripe payment method ID
            idempotency_key: Idempotency key for retries
            metadata: Additional metadata

        Returns:
            ChargeResult with the payment intent ID on success
        """
        if not payment_method_id:
            return ChargeResult(succeeded=False, failure_reason="missing_payment_method")

        params: dict[str, Any] = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "payment_method": payment_method_id,
            "confirm": True,
            "off_session": True,
            "metadata": metadata or {},
            "idempotency_key": idempotency_key,
        }

        try:
            payment_intent = await asyncio.to_thread(stripe.PaymentIntent.create, **params)
        except stripe.CardError as e:
            # Card was declined
            logger.info("stripe_card_declined", idempotency_key=idempotency_key, code=e.code)
            return ChargeResult(succeeded=False, failure_reason=e.code or e.user_message)
        except stripe.StripeError as e:
            logger.warning("stripe_charge_error", idempotency_key=idempotency_key, error=str(e))
            return ChargeResult(succeeded=False, failure_reason=str(e))

        if payment_intent.status != "succeeded":
            return ChargeResult(
                succeeded=False,
                payment_id=payment_intent.id,
                failure_reason=f"payment_intent_{payment_intent.status}",
            )

        return ChargeResult(succeeded=True, payment_id=payment_intent.id)
