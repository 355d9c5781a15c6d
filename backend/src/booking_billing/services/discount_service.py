"""Discount code validation, usage ledger and administration."""
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select, func, update, distinct, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from booking_billing.config import settings
from booking_billing.exceptions import ConflictError, NotFoundError, PolicyError, StateError, ValidationError
from booking_billing.metrics import discount_redemptions_total, discount_validations_rejected_total
from booking_billing.models.discount import DiscountCode, DiscountType, DiscountUsage
from booking_billing.models.pending_discount import PendingDiscount
from booking_billing.schemas.discount import DiscountCodeBulkCreate, DiscountCodeCreate, DiscountCodeUpdate
from booking_billing.utils.money import ZERO, clamp, round2, to_decimal

logger = structlog.get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_CODE_PREFIX = "SAVE"
DEFAULT_CODE_LENGTH = 8


class RejectionReason:
    """Machine-readable reasons a code does not apply."""

    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    PLAN_NOT_APPLICABLE = "plan_not_applicable"
    BELOW_MINIMUM_AMOUNT = "below_minimum_amount"
    ALREADY_USED = "already_used"


REJECTION_MESSAGES = {
    RejectionReason.NOT_FOUND: "Discount code not found",
    RejectionReason.INACTIVE: "Discount code is not active",
    RejectionReason.NOT_YET_VALID: "Discount code is not valid yet",
    RejectionReason.EXPIRED: "Discount code has expired",
    RejectionReason.USAGE_LIMIT_REACHED: "Discount code usage limit reached",
    RejectionReason.PLAN_NOT_APPLICABLE: "Discount code is not valid for this plan",
    RejectionReason.BELOW_MINIMUM_AMOUNT: "Amount is below the code's minimum purchase amount",
    RejectionReason.ALREADY_USED: "Discount code has already been used",
}


@dataclass(frozen=True)
class DiscountSnapshot:
    """
    A validated discount, frozen at validation time.

    Later edits to the code row do not change a snapshot that was already
    handed out.
    """

    discount_code_id: UUID
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    is_recurring: bool
    max_recurring_uses: int | None
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "discount_type": self.discount_type.value,
            "discount_value": str(self.discount_value),
            "original_amount": str(self.original_amount),
            "discount_amount": str(self.discount_amount),
            "final_amount": str(self.final_amount),
        }


@dataclass(frozen=True)
class DiscountValidation:
    """Outcome of DiscountService.validate."""

    valid: bool
    reason: str | None = None
    code: str | None = None
    calculated_discount: DiscountSnapshot | None = None

    @property
    def message(self) -> str | None:
        return REJECTION_MESSAGES.get(self.reason) if self.reason else None


def normalize_code(code: str) -> str:
    """Codes are matched case-insensitively and stored upper-case."""
    return code.strip().upper()


def compute_discount(discount_type: DiscountType, value: Decimal, amount: Decimal) -> tuple[Decimal, Decimal]:
    """
    Apply a discount to an amount.

    PERCENTAGE rounds to two places; FIXED takes at most the whole amount.
    The discount is always clamped into [0, amount].

    Args:
        discount_type: percentage or fixed
        value: Percent or fixed amount
        amount: Original amount

    Returns:
        (discount_amount, final_amount)

    Examples:
        >>> compute_discount(DiscountType.PERCENTAGE, Decimal("20"), Decimal("100"))
        (Decimal('20.00'), Decimal('80.00'))
        >>> compute_discount(DiscountType.FIXED, Decimal("50"), Decimal("30"))
        (Decimal('30.00'), Decimal('0.00'))
    """
    amount = round2(amount)
    value = to_decimal(value)
    if discount_type == DiscountType.PERCENTAGE:
        discount = round2(amount * value / Decimal(100))
    else:
        discount = round2(min(value, amount))
    discount = clamp(discount, ZERO, amount)
    return discount, round2(amount - discount)


def generate_code(prefix: str = DEFAULT_CODE_PREFIX, length: int = DEFAULT_CODE_LENGTH) -> str:
    """Random code: prefix followed by upper-case letters and digits (at least four)."""
    prefix = normalize_code(prefix)
    suffix_length = max(4, length - len(prefix))
    return prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(suffix_length))


class DiscountService:
    """Service layer for discount codes and their usage ledger."""

    def __init__(self, db: AsyncSession):
        """Initialize discount service with database session."""
        self.db = db

    async def get_by_code(self, code: str) -> DiscountCode | None:
        """Look up a code case-insensitively."""
        result = await self.db.execute(select(DiscountCode).where(DiscountCode.code == normalize_code(code)))
        return result.scalar_one_or_none()

    async def get_code(self, code_id: UUID) -> DiscountCode:
        """
        Get discount code by ID.

        Raises:
            NotFoundError: If code doesn't exist
        """
        result = await self.db.execute(select(DiscountCode).where(DiscountCode.id == code_id))
        discount_code = result.scalar_one_or_none()
        if not discount_code:
            raise NotFoundError(f"Discount code {code_id} not found", error_code="discount_code_not_found")
        return discount_code

    async def validate(
        self,
        code: str,
        plan_id: UUID,
        amount: Decimal,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> DiscountValidation:
        """
        Check whether a code applies to a plan and amount.

        Checks run in order and stop at the first failure: exists, active,
        validity window, global usage cap, applicable plans, minimum amount,
        per-user cap.

        Args:
            code: Code as entered by the customer
            plan_id: Plan being purchased
            amount: Amount the discount would apply to
            user_id: Redeeming user, enables the per-user cap
            now: Evaluation time (defaults to current UTC time)

        Returns:
            DiscountValidation with a frozen snapshot when valid
        """
        now = now or datetime.utcnow()
        amount = round2(amount)
        discount_code = await self.get_by_code(code)

        reason = await self._rejection_reason(discount_code, plan_id, amount, user_id, now)
        if reason:
            discount_validations_rejected_total.labels(reason=reason).inc()
            logger.info("discount_code_rejected", code=normalize_code(code), reason=reason, plan_id=str(plan_id))
            return DiscountValidation(valid=False, reason=reason, code=normalize_code(code))

        discount_amount, final_amount = compute_discount(
            discount_code.discount_type, discount_code.discount_value, amount
        )
        snapshot = DiscountSnapshot(
            discount_code_id=discount_code.id,
            code=discount_code.code,
            discount_type=discount_code.discount_type,
            discount_value=to_decimal(discount_code.discount_value),
            is_recurring=discount_code.is_recurring,
            max_recurring_uses=discount_code.max_recurring_uses,
            original_amount=amount,
            discount_amount=discount_amount,
            final_amount=final_amount,
        )
        return DiscountValidation(valid=True, code=discount_code.code, calculated_discount=snapshot)

    async def require_valid(
        self,
        code: str,
        plan_id: UUID,
        amount: Decimal,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> DiscountSnapshot:
        """
        Validate a code, raising instead of returning a negative result.

        Raises:
            PolicyError: If the code does not apply
        """
        validation = await self.validate(code, plan_id, amount, user_id=user_id, now=now)
        if not validation.valid:
            raise PolicyError(
                validation.message or "Discount code is not applicable",
                error_code=f"discount_{validation.reason}",
                context={"code": validation.code, "reason": validation.reason},
            )
        return validation.calculated_discount

    async def _rejection_reason(
        self,
        discount_code: DiscountCode | None,
        plan_id: UUID,
        amount: Decimal,
        user_id: str | None,
        now: datetime,
    ) -> str | None:
        if not discount_code:
            return RejectionReason.NOT_FOUND
        if not discount_code.is_active:
            return RejectionReason.INACTIVE
        if discount_code.valid_from and now < discount_code.valid_from:
            return RejectionReason.NOT_YET_VALID
        if discount_code.valid_until and now > discount_code.valid_until:
            return RejectionReason.EXPIRED
        if discount_code.max_usages is not None and discount_code.current_usages >= discount_code.max_usages:
            return RejectionReason.USAGE_LIMIT_REACHED
        if discount_code.applicable_plans and str(plan_id) not in discount_code.applicable_plans:
            return RejectionReason.PLAN_NOT_APPLICABLE
        if discount_code.min_purchase_amount is not None and amount < discount_code.min_purchase_amount:
            return RejectionReason.BELOW_MINIMUM_AMOUNT
        if user_id and discount_code.max_usages_per_user is not None:
            used = await self._count_user_redemptions(discount_code.id, user_id)
            if used >= discount_code.max_usages_per_user:
                return RejectionReason.ALREADY_USED
        return None

    async def _count_user_redemptions(self, code_id: UUID, user_id: str) -> int:
        # Repeat uses of a recurring code belong to one redemption
        result = await self.db.execute(
            select(func.count(distinct(DiscountUsage.subscription_id))).where(
                DiscountUsage.discount_code_id == code_id,
                DiscountUsage.user_id == user_id,
            )
        )
        return result.scalar_one()

    async def record_usage(
        self,
        discount_code_id: UUID,
        original_amount: Decimal,
        discount_amount: Decimal,
        user_id: str | None = None,
        business_id: UUID | None = None,
        subscription_id: UUID | None = None,
        payment_id: UUID | None = None,
        payment_type: str | None = None,
        counts_towards_cap: bool = True,
        discount_type: DiscountType | None = None,
        now: datetime | None = None,
    ) -> DiscountUsage:
        """
        Append a usage ledger entry and bump the redemption counter.

        The counter is incremented with a single conditional UPDATE so two
        concurrent redemptions can never push current_usages past max_usages.
        Nothing is written when the cap is already reached. Repeat uses of a
        recurring code pass counts_towards_cap=False: they are ledgered but
        do not consume another redemption.

        Raises:
            PolicyError: If the usage cap was reached concurrently
        """
        now = now or datetime.utcnow()

        if counts_towards_cap:
            result = await self.db.execute(
                update(DiscountCode)
                .where(
                    DiscountCode.id == discount_code_id,
                    or_(
                        DiscountCode.max_usages.is_(None),
                        DiscountCode.current_usages < DiscountCode.max_usages,
                    ),
                )
                .values(current_usages=DiscountCode.current_usages + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                discount_validations_rejected_total.labels(reason=RejectionReason.USAGE_LIMIT_REACHED).inc()
                logger.warning("discount_usage_cap_race_lost", discount_code_id=str(discount_code_id))
                raise PolicyError(
                    REJECTION_MESSAGES[RejectionReason.USAGE_LIMIT_REACHED],
                    error_code="discount_usage_limit_reached",
                    context={"discount_code_id": str(discount_code_id)},
                )

        original_amount = round2(original_amount)
        discount_amount = round2(discount_amount)
        usage = DiscountUsage(
            discount_code_id=discount_code_id,
            user_id=user_id,
            business_id=business_id,
            subscription_id=subscription_id,
            payment_id=payment_id,
            payment_type=payment_type,
            original_amount=original_amount,
            discount_amount=discount_amount,
            final_amount=round2(original_amount - discount_amount),
            applied_at=now,
        )
        self.db.add(usage)
        await self.db.flush()

        if counts_towards_cap:
            # Keep the in-session row in step with the UPDATE above
            discount_code = await self.db.get(DiscountCode, discount_code_id)
            await self.db.refresh(discount_code, attribute_names=["current_usages"])

        discount_redemptions_total.labels(
            discount_type=discount_type.value if discount_type else "unknown",
            payment_type=payment_type or "unknown",
        ).inc()
        logger.info(
            "discount_usage_recorded",
            discount_code_id=str(discount_code_id),
            subscription_id=str(subscription_id) if subscription_id else None,
            payment_type=payment_type,
            discount_amount=str(discount_amount),
        )
        return usage

    async def create_code(self, data: DiscountCodeCreate, created_by: str | None = None) -> DiscountCode:
        """
        Create a discount code.

        Raises:
            ValidationError: If the value or validity window is malformed
            ConflictError: If the code already exists
        """
        self._check_definition(
            data.discount_type,
            data.discount_value,
            data.valid_from,
            data.valid_until,
            data.is_recurring,
            data.max_recurring_uses,
        )

        code = normalize_code(data.code) if data.code else await self._unique_generated_code()
        if await self.get_by_code(code):
            raise ConflictError(f"Discount code {code} already exists", error_code="duplicate_resource")

        discount_code = DiscountCode(
            code=code,
            created_by=created_by,
            **self._definition_fields(data),
        )
        self.db.add(discount_code)
        await self.db.flush()
        await self.db.refresh(discount_code)

        logger.info("discount_code_created", code=code, discount_type=data.discount_type.value, created_by=created_by)
        return discount_code

    async def update_code(self, code_id: UUID, data: DiscountCodeUpdate) -> DiscountCode:
        """
        Update mutable fields of a discount code.

        Snapshots already attached to subscriptions are unaffected.

        Raises:
            NotFoundError: If code doesn't exist
            ValidationError: If the resulting definition is malformed
        """
        discount_code = await self.get_code(code_id)
        changes = data.model_dump(exclude_unset=True)

        if "applicable_plans" in changes and changes["applicable_plans"] is not None:
            changes["applicable_plans"] = [str(p) for p in changes["applicable_plans"]]

        self._check_definition(
            discount_code.discount_type,
            changes.get("discount_value", discount_code.discount_value),
            changes.get("valid_from", discount_code.valid_from),
            changes.get("valid_until", discount_code.valid_until),
            discount_code.is_recurring,
            discount_code.max_recurring_uses,
        )
        new_cap = changes.get("max_usages", discount_code.max_usages)
        if new_cap is not None and new_cap < discount_code.current_usages:
            raise ValidationError(
                f"max_usages cannot be lower than the {discount_code.current_usages} recorded usages",
                error_code="value_too_small",
            )

        for field, value in changes.items():
            setattr(discount_code, field, value)

        await self.db.flush()
        await self.db.refresh(discount_code)
        logger.info("discount_code_updated", code=discount_code.code, fields=sorted(changes))
        return discount_code

    async def deactivate_code(self, code_id: UUID) -> DiscountCode:
        """Stop a code from validating. Existing pending discounts keep their snapshot."""
        discount_code = await self.get_code(code_id)
        discount_code.is_active = False
        await self.db.flush()
        logger.info("discount_code_deactivated", code=discount_code.code)
        return discount_code

    async def delete_code(self, code_id: UUID) -> None:
        """
        Delete a code that was never used or attached.

        Raises:
            NotFoundError: If code doesn't exist
            StateError: If the code has usages or pending attachments
        """
        discount_code = await self.get_code(code_id)

        usage_count = (
            await self.db.execute(select(func.count(DiscountUsage.id)).where(DiscountUsage.discount_code_id == code_id))
        ).scalar_one()
        pending_count = (
            await self.db.execute(
                select(func.count(PendingDiscount.id)).where(PendingDiscount.discount_code_id == code_id)
            )
        ).scalar_one()
        if discount_code.current_usages > 0 or usage_count or pending_count:
            raise StateError(
                f"Discount code {discount_code.code} has been used; deactivate it instead",
                recovery_hint="Deactivate the code to stop further redemptions",
            )

        await self.db.delete(discount_code)
        await self.db.flush()
        logger.info("discount_code_deleted", code=discount_code.code)

    async def list_codes(
        self,
        active_only: bool = False,
        page: int = 1,
        page_size: int = 100,
    ) -> tuple[list[DiscountCode], int]:
        """
        List discount codes with pagination.

        Returns:
            Tuple of (codes list, total count)
        """
        query = select(DiscountCode)
        if active_only:
            query = query.where(DiscountCode.is_active.is_(True))

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()

        query = query.order_by(DiscountCode.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_usage_history(
        self,
        code_id: UUID,
        page: int = 1,
        page_size: int = 100,
    ) -> tuple[list[DiscountUsage], int]:
        """
        Usage ledger for one code, newest first.

        Raises:
            NotFoundError: If code doesn't exist
        """
        await self.get_code(code_id)

        total = (
            await self.db.execute(select(func.count(DiscountUsage.id)).where(DiscountUsage.discount_code_id == code_id))
        ).scalar_one()
        result = await self.db.execute(
            select(DiscountUsage)
            .where(DiscountUsage.discount_code_id == code_id)
            .order_by(DiscountUsage.applied_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def get_statistics(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Aggregate counts across all codes.

        Returns:
            dict with total_codes, active_codes, expired_codes, total_usages,
            total_discount_amount
        """
        now = now or datetime.utcnow()
        not_expired = or_(DiscountCode.valid_until.is_(None), DiscountCode.valid_until >= now)

        total_codes = (await self.db.execute(select(func.count(DiscountCode.id)))).scalar_one()
        active_codes = (
            await self.db.execute(
                select(func.count(DiscountCode.id)).where(and_(DiscountCode.is_active.is_(True), not_expired))
            )
        ).scalar_one()
        expired_codes = (
            await self.db.execute(select(func.count(DiscountCode.id)).where(DiscountCode.valid_until < now))
        ).scalar_one()
        usage_row = (
            await self.db.execute(select(func.count(DiscountUsage.id), func.sum(DiscountUsage.discount_amount)))
        ).one()

        return {
            "total_codes": total_codes,
            "active_codes": active_codes,
            "expired_codes": expired_codes,
            "total_usages": usage_row[0],
            "total_discount_amount": round2(usage_row[1] or ZERO),
        }

    async def generate_bulk_codes(self, data: DiscountCodeBulkCreate, created_by: str | None = None) -> list[DiscountCode]:
        """
        Generate many codes from one template.

        Raises:
            ValidationError: If count exceeds the configured maximum or the template is malformed
        """
        if data.count > settings.max_bulk_discount_codes:
            raise ValidationError(
                f"Cannot generate more than {settings.max_bulk_discount_codes} codes at once",
                error_code="value_too_large",
            )
        self._check_definition(
            data.discount_type,
            data.discount_value,
            data.valid_from,
            data.valid_until,
            data.is_recurring,
            data.max_recurring_uses,
        )

        fields = self._definition_fields(data)
        seen: set[str] = set()
        codes = []
        while len(codes) < data.count:
            code = generate_code(prefix=data.prefix)
            if code in seen or await self.get_by_code(code):
                continue
            seen.add(code)
            discount_code = DiscountCode(code=code, created_by=created_by, **fields)
            self.db.add(discount_code)
            codes.append(discount_code)

        await self.db.flush()
        logger.info("discount_codes_generated", count=len(codes), prefix=data.prefix, created_by=created_by)
        return codes

    async def deactivate_expired_codes(self, now: datetime | None = None) -> int:
        """
        Deactivate every active code whose validity window has ended.

        Returns:
            Number of codes deactivated
        """
        now = now or datetime.utcnow()
        result = await self.db.execute(
            update(DiscountCode)
            .where(DiscountCode.is_active.is_(True), DiscountCode.valid_until < now)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            logger.info("expired_discount_codes_deactivated", count=count)
        return count

    async def _unique_generated_code(self) -> str:
        while True:
            code = generate_code()
            if not await self.get_by_code(code):
                return code

    @staticmethod
    def _definition_fields(data: DiscountCodeCreate | DiscountCodeBulkCreate) -> dict[str, Any]:
        return {
            "name": data.name,
            "description": data.description,
            "discount_type": data.discount_type,
            "discount_value": data.discount_value,
            "valid_from": data.valid_from,
            "valid_until": data.valid_until,
            "max_usages": data.max_usages,
            "max_usages_per_user": data.max_usages_per_user,
            "min_purchase_amount": data.min_purchase_amount,
            "applicable_plans": [str(p) for p in data.applicable_plans],
            "is_recurring": data.is_recurring,
            "max_recurring_uses": data.max_recurring_uses if data.is_recurring else None,
            "current_usages": 0,
            "is_active": True,
        }

    @staticmethod
    def _check_definition(
        discount_type: DiscountType,
        value: Decimal,
        valid_from: datetime | None,
        valid_until: datetime | None,
        is_recurring: bool,
        max_recurring_uses: int | None,
    ) -> None:
        value = to_decimal(value)
        if value <= 0:
            raise ValidationError("Discount value must be positive", error_code="value_too_small")
        if discount_type == DiscountType.PERCENTAGE and value > 100:
            raise ValidationError("Percentage discount cannot exceed 100", error_code="value_too_large")
        if valid_from and valid_until and valid_until <= valid_from:
            raise ValidationError("valid_until must be after valid_from", error_code="invalid_date")
        if is_recurring and not max_recurring_uses:
            raise ValidationError(
                "Recurring discounts need max_recurring_uses",
                error_code="missing_required_field",
            )
