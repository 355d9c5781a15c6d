"""Unit tests for discount arithmetic and pending discount eligibility."""
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from booking_billing.models.discount import DiscountType
from booking_billing.models.payment import PaymentType
from booking_billing.models.pending_discount import PendingDiscount
from booking_billing.models.subscription import Subscription
from booking_billing.services.discount_service import CODE_ALPHABET, compute_discount, generate_code, normalize_code
from booking_billing.services.pending_discount_service import PendingDiscountService

VALIDATED_AT = datetime(2026, 3, 1, 12, 0)


def _subscription_with(**pending_fields) -> Subscription:
    fields = {
        "discount_code_id": uuid4(),
        "code": "WELCOME20",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("20"),
        "is_recurring": False,
        "remaining_uses": 1,
        "applied_payments": [],
        "validated_at": VALIDATED_AT,
    }
    fields.update(pending_fields)
    subscription = Subscription(id=uuid4(), business_id=uuid4())
    subscription.pending_discount = PendingDiscount(**fields)
    return subscription


@pytest.fixture
def pending_service() -> PendingDiscountService:
    return PendingDiscountService(db=None, validation_window=timedelta(hours=24))


@pytest.mark.parametrize(
    ("discount_type", "value", "amount", "expected"),
    [
        (DiscountType.PERCENTAGE, "20", "100", ("20.00", "80.00")),
        (DiscountType.PERCENTAGE, "35", "300", ("105.00", "195.00")),
        (DiscountType.PERCENTAGE, "100", "750", ("750.00", "0.00")),
        (DiscountType.PERCENTAGE, "33.33", "10", ("3.33", "6.67")),
        (DiscountType.FIXED, "50", "30", ("30.00", "0.00")),
        (DiscountType.FIXED, "12.5", "100", ("12.50", "87.50")),
    ],
)
def test_compute_discount(discount_type, value, amount, expected) -> None:
    discount, final = compute_discount(discount_type, Decimal(value), Decimal(amount))

    assert (discount, final) == (Decimal(expected[0]), Decimal(expected[1]))
    assert discount + final == Decimal(amount)


def test_codes_are_case_insensitive() -> None:
    assert normalize_code("  welcome20 ") == "WELCOME20"


def test_generated_codes_use_prefix_and_alphabet() -> None:
    code = generate_code(prefix="spring", length=12)

    assert code.startswith("SPRING")
    assert len(code) == 12
    assert all(ch in CODE_ALPHABET for ch in code[len("SPRING"):])


def test_generated_code_suffix_has_minimum_length() -> None:
    assert len(generate_code(prefix="LONGPREFIX", length=8)) == len("LONGPREFIX") + 4


def test_initial_payment_within_validation_window(pending_service: PendingDiscountService) -> None:
    subscription = _subscription_with()

    assert pending_service.can_apply_to_payment(subscription, PaymentType.INITIAL, VALIDATED_AT + timedelta(hours=23))


def test_initial_payment_after_validation_window(pending_service: PendingDiscountService) -> None:
    subscription = _subscription_with()

    assert not pending_service.can_apply_to_payment(
        subscription, PaymentType.INITIAL, VALIDATED_AT + timedelta(hours=24, minutes=1)
    )


def test_trial_conversion_is_not_bound_by_window(pending_service: PendingDiscountService) -> None:
    subscription = _subscription_with()

    assert pending_service.can_apply_to_payment(
        subscription, PaymentType.TRIAL_CONVERSION, VALIDATED_AT + timedelta(days=14)
    )


def test_each_one_time_payment_type_consumes_discount_once(pending_service: PendingDiscountService) -> None:
    subscription = _subscription_with(
        remaining_uses=2,
        is_recurring=True,
        applied_payments=[{"payment_id": str(uuid4()), "payment_type": "initial", "applied_at": VALIDATED_AT.isoformat()}],
    )

    assert not pending_service.can_apply_to_payment(subscription, PaymentType.INITIAL, VALIDATED_AT)
    assert pending_service.can_apply_to_payment(subscription, PaymentType.RENEWAL, VALIDATED_AT)


def test_renewals_only_take_recurring_discounts(pending_service: PendingDiscountService) -> None:
    one_time = _subscription_with(is_recurring=False)
    recurring = _subscription_with(is_recurring=True, remaining_uses=3)

    later = VALIDATED_AT + timedelta(days=60)
    assert not pending_service.can_apply_to_payment(one_time, PaymentType.RENEWAL, later)
    assert pending_service.can_apply_to_payment(recurring, PaymentType.RENEWAL, later)


def test_exhausted_discount_never_applies(pending_service: PendingDiscountService) -> None:
    subscription = _subscription_with(is_recurring=True, remaining_uses=0)

    assert subscription.pending_discount.is_exhausted
    for payment_type in PaymentType:
        assert not pending_service.can_apply_to_payment(subscription, payment_type, VALIDATED_AT)


def test_proration_charges_are_never_discounted(pending_service: PendingDiscountService) -> None:
    subscription = _subscription_with(is_recurring=True, remaining_uses=3)

    assert not pending_service.can_apply_to_payment(subscription, PaymentType.PRORATION, VALIDATED_AT)


def test_no_pending_discount(pending_service: PendingDiscountService) -> None:
    subscription = Subscription(id=uuid4(), business_id=uuid4())

    assert not pending_service.can_apply_to_payment(subscription, PaymentType.INITIAL, VALIDATED_AT)
    assert not pending_service.is_first_use(subscription)


def test_price_uses_frozen_snapshot(pending_service: PendingDiscountService) -> None:
    subscription = _subscription_with(discount_type=DiscountType.FIXED, discount_value=Decimal("25"))

    assert pending_service.price(subscription, Decimal("100")) == (Decimal("25.00"), Decimal("75.00"))
    assert pending_service.is_first_use(subscription)
