"""Integration tests for discount code validation and the usage ledger."""
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.exceptions import ConflictError, PolicyError, StateError, ValidationError
from booking_billing.models.discount import DiscountType
from booking_billing.models.plan import Plan
from booking_billing.schemas.discount import DiscountCodeBulkCreate, DiscountCodeCreate, DiscountCodeUpdate
from booking_billing.services.discount_service import DiscountService, RejectionReason
from utils.factories import DiscountCodeFactory

NOW = datetime(2026, 3, 1, 9, 0)


async def _create_code(db_session: AsyncSession, **overrides):
    service = DiscountService(db_session)
    discount_code = await service.create_code(DiscountCodeCreate(**DiscountCodeFactory.create(overrides)), created_by="admin-1")
    await db_session.commit()
    return discount_code


@pytest.mark.asyncio
async def test_usage_cap_never_exceeded(db_session: AsyncSession) -> None:
    """Five redemptions against a cap of three: exactly three succeed."""
    discount_code = await _create_code(db_session, code="LIMITED3", max_usages=3, max_usages_per_user=None)
    service = DiscountService(db_session)

    outcomes = []
    for i in range(5):
        try:
            await service.record_usage(
                discount_code.id,
                Decimal("100"),
                Decimal("20"),
                user_id=f"user-{i}",
                subscription_id=uuid4(),
                payment_type="initial",
                discount_type=DiscountType.PERCENTAGE,
                now=NOW,
            )
            outcomes.append("ok")
        except PolicyError as exc:
            assert exc.error_code == "discount_usage_limit_reached"
            outcomes.append("rejected")
    await db_session.commit()

    assert outcomes == ["ok", "ok", "ok", "rejected", "rejected"]
    await db_session.refresh(discount_code)
    assert discount_code.current_usages == 3

    usages, total = await service.get_usage_history(discount_code.id)
    assert total == 3
    assert all(usage.final_amount == Decimal("80.00") for usage in usages)

    validation = await service.validate("limited3", uuid4(), Decimal("100"), now=NOW)
    assert not validation.valid
    assert validation.reason == RejectionReason.USAGE_LIMIT_REACHED


@pytest.mark.asyncio
async def test_repeat_use_of_recurring_code_does_not_consume_cap(db_session: AsyncSession) -> None:
    discount_code = await _create_code(
        db_session, code="LOYAL35", discount_value=Decimal("35"), max_usages=1, is_recurring=True, max_recurring_uses=3
    )
    service = DiscountService(db_session)
    subscription_id = uuid4()

    await service.record_usage(discount_code.id, Decimal("300"), Decimal("105"), subscription_id=subscription_id, now=NOW)
    await service.record_usage(
        discount_code.id, Decimal("300"), Decimal("105"), subscription_id=subscription_id, counts_towards_cap=False, now=NOW
    )
    await db_session.commit()

    await db_session.refresh(discount_code)
    assert discount_code.current_usages == 1
    _, total = await service.get_usage_history(discount_code.id)
    assert total == 2


@pytest.mark.asyncio
async def test_validation_checks(db_session: AsyncSession, basic_plan: Plan, pro_plan: Plan) -> None:
    await _create_code(db_session, code="LATER", valid_from=NOW + timedelta(days=1))
    await _create_code(db_session, code="GONE", valid_from=NOW - timedelta(days=30), valid_until=NOW - timedelta(days=1))
    await _create_code(db_session, code="PROONLY", applicable_plans=[pro_plan.id])
    await _create_code(db_session, code="BIGSPEND", min_purchase_amount=Decimal("200"))
    inactive = await _create_code(db_session, code="PAUSED")
    service = DiscountService(db_session)
    await service.deactivate_code(inactive.id)
    await db_session.commit()

    async def reason(code: str) -> str | None:
        return (await service.validate(code, basic_plan.id, basic_plan.price, now=NOW)).reason

    assert await reason("nope") == RejectionReason.NOT_FOUND
    assert await reason("paused") == RejectionReason.INACTIVE
    assert await reason("later") == RejectionReason.NOT_YET_VALID
    assert await reason("gone") == RejectionReason.EXPIRED
    assert await reason("proonly") == RejectionReason.PLAN_NOT_APPLICABLE
    assert await reason("bigspend") == RejectionReason.BELOW_MINIMUM_AMOUNT

    valid = await service.validate("proonly", pro_plan.id, pro_plan.price, now=NOW)
    assert valid.valid
    assert valid.calculated_discount.final_amount == Decimal("240.00")


@pytest.mark.asyncio
async def test_per_user_cap_counts_subscriptions(db_session: AsyncSession, basic_plan: Plan) -> None:
    discount_code = await _create_code(db_session, code="ONCEEACH", max_usages_per_user=1)
    service = DiscountService(db_session)

    await service.record_usage(
        discount_code.id, Decimal("100"), Decimal("20"), user_id="owner-1", subscription_id=uuid4(), now=NOW
    )
    await db_session.commit()

    repeat = await service.validate("onceeach", basic_plan.id, basic_plan.price, user_id="owner-1", now=NOW)
    other_user = await service.validate("onceeach", basic_plan.id, basic_plan.price, user_id="owner-2", now=NOW)

    assert repeat.reason == RejectionReason.ALREADY_USED
    assert other_user.valid

    with pytest.raises(PolicyError) as exc_info:
        await service.require_valid("onceeach", basic_plan.id, basic_plan.price, user_id="owner-1", now=NOW)
    assert exc_info.value.error_code == "discount_already_used"


@pytest.mark.asyncio
async def test_code_definition_rules(db_session: AsyncSession) -> None:
    service = DiscountService(db_session)

    with pytest.raises(ValidationError):
        await service.create_code(DiscountCodeCreate(**DiscountCodeFactory.create({"discount_value": Decimal("120")})))
    with pytest.raises(ValidationError):
        await service.create_code(
            DiscountCodeCreate(**DiscountCodeFactory.create({"is_recurring": True, "max_recurring_uses": None}))
        )
    with pytest.raises(ValidationError):
        await service.create_code(
            DiscountCodeCreate(**DiscountCodeFactory.create({"valid_from": NOW, "valid_until": NOW - timedelta(days=1)}))
        )

    await _create_code(db_session, code="TWICE")
    with pytest.raises(ConflictError):
        await service.create_code(DiscountCodeCreate(**DiscountCodeFactory.create({"code": "twice"})))


@pytest.mark.asyncio
async def test_update_cannot_drop_cap_below_usages(db_session: AsyncSession) -> None:
    discount_code = await _create_code(db_session, code="CAPPED", max_usages=5, max_usages_per_user=None)
    service = DiscountService(db_session)
    for _ in range(2):
        await service.record_usage(discount_code.id, Decimal("100"), Decimal("20"), subscription_id=uuid4(), now=NOW)
    await db_session.commit()

    with pytest.raises(ValidationError):
        await service.update_code(discount_code.id, DiscountCodeUpdate(max_usages=1))

    updated = await service.update_code(discount_code.id, DiscountCodeUpdate(max_usages=2, name="Spring promo"))
    assert updated.max_usages == 2
    assert updated.name == "Spring promo"


@pytest.mark.asyncio
async def test_used_code_cannot_be_deleted(db_session: AsyncSession) -> None:
    used = await _create_code(db_session, code="USED")
    unused = await _create_code(db_session, code="UNUSED")
    service = DiscountService(db_session)
    await service.record_usage(used.id, Decimal("100"), Decimal("20"), subscription_id=uuid4(), now=NOW)
    await db_session.commit()

    with pytest.raises(StateError):
        await service.delete_code(used.id)

    await service.delete_code(unused.id)
    await db_session.commit()
    assert await service.get_by_code("UNUSED") is None


@pytest.mark.asyncio
async def test_bulk_generation_and_expiry_sweep(db_session: AsyncSession) -> None:
    service = DiscountService(db_session)
    codes = await service.generate_bulk_codes(
        DiscountCodeBulkCreate(
            count=5,
            prefix="fall",
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("50"),
            valid_until=NOW - timedelta(hours=1),
        ),
        created_by="admin-1",
    )
    await db_session.commit()

    assert len({c.code for c in codes}) == 5
    assert all(c.code.startswith("FALL") for c in codes)

    deactivated = await service.deactivate_expired_codes(now=NOW)
    await db_session.commit()
    assert deactivated == 5

    stats = await service.get_statistics(now=NOW)
    assert stats["total_codes"] == 5
    assert stats["active_codes"] == 0
    assert stats["expired_codes"] == 5
