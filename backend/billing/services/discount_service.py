# Overview: Service-layer operations for discounts; pure evaluator plus usage bookkeeping.

"""
Discount Service

evaluate_discount() is a pure function: it reads a Discount and an amount
and returns either an amount or a RejectionReason. It never writes. The
only write to used_count is consume_usage(), which the sale coordinator
calls inside the same transaction that inserts the sale:

    UPDATE discounts SET used_count = used_count + 1
    WHERE id = :id AND (usage_limit IS NULL OR used_count < usage_limit)

Zero rows updated means another commit took the last use first.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, DiscountRejected, DiscountUsageExceeded, NotFound, ValidationError
from ..models import Discount, Sale
from ..models.discounts import DISCOUNT_PERCENTAGE, VALID_DISCOUNT_TYPES
from ..money import HUNDRED, ZERO, money_str, quantize
from ..time_utils import utcnow
from ..validation import UNSET, Patch, PayloadValidator
from .concurrency import unit_of_work


# =============================================================================
# EVALUATOR (pure)
# =============================================================================

class RejectionReason(str, enum.Enum):
    INACTIVE = "Inactive"
    NOT_STARTED = "NotStarted"
    EXPIRED = "Expired"
    BELOW_MINIMUM = "BelowMinimum"
    LIMIT_REACHED = "LimitReached"


@dataclass(frozen=True)
class DiscountEvaluation:
    discount_amount: Decimal | None = None
    reason: RejectionReason | None = None

    @property
    def applied(self) -> bool:
        return self.reason is None


def evaluate_discount(discount: Discount, purchase_amount: Decimal, now, *, check_usage: bool = True) -> DiscountEvaluation:
    """
    Rules in order, first failure wins: active, started, not expired,
    minimum purchase, usage limit. `now` may be a date or datetime; the
    validity window is compared by calendar date, both ends inclusive.

    check_usage=False skips the usage rule for a sale that already holds
    one of the discount's uses (amending it must not count itself twice).
    """
    on = now.date() if isinstance(now, datetime) else now

    if not discount.is_active:
        return DiscountEvaluation(reason=RejectionReason.INACTIVE)
    if discount.start_date is not None and on < discount.start_date:
        return DiscountEvaluation(reason=RejectionReason.NOT_STARTED)
    if discount.end_date is not None and on > discount.end_date:
        return DiscountEvaluation(reason=RejectionReason.EXPIRED)
    if purchase_amount < Decimal(discount.min_purchase_amount or 0):
        return DiscountEvaluation(reason=RejectionReason.BELOW_MINIMUM)
    if check_usage and discount.usage_limit is not None and discount.used_count >= discount.usage_limit:
        return DiscountEvaluation(reason=RejectionReason.LIMIT_REACHED)

    value = Decimal(discount.value)
    if discount.discount_type == DISCOUNT_PERCENTAGE:
        raw = purchase_amount * value / HUNDRED
        if discount.max_discount_amount is not None:
            raw = min(raw, Decimal(discount.max_discount_amount))
    else:
        raw = value

    # Never more than the amount it applies to
    amount = quantize(min(raw, purchase_amount))
    return DiscountEvaluation(discount_amount=max(amount, ZERO))


def rejection_message(discount: Discount, reason: RejectionReason) -> str:
    if reason is RejectionReason.INACTIVE:
        return "Discount is not active"
    if reason is RejectionReason.NOT_STARTED:
        return "Discount has not started yet"
    if reason is RejectionReason.EXPIRED:
        return "Discount has expired"
    if reason is RejectionReason.BELOW_MINIMUM:
        return f"Minimum purchase amount of {money_str(discount.min_purchase_amount)} required"
    return "Discount usage limit reached"


# =============================================================================
# PATCH / PAYLOAD
# =============================================================================

@dataclass
class DiscountPatch(Patch):
    code: str | None = UNSET
    name: str = UNSET
    description: str | None = UNSET
    discount_type: str = UNSET
    value: Decimal = UNSET
    min_purchase_amount: Decimal = UNSET
    max_discount_amount: Decimal | None = UNSET
    start_date: date | None = UNSET
    end_date: date | None = UNSET
    usage_limit: int | None = UNSET
    is_active: bool = UNSET

    @classmethod
    def from_payload(cls, payload, *, creating: bool = False) -> "DiscountPatch":
        v = PayloadValidator(payload)
        default = None if creating else UNSET
        patch = cls(
            code=v.string("code", max_length=64, default=default),
            name=v.string("name", required=creating, nullable=False, max_length=255, default=UNSET),
            description=v.string("description", default=default),
            discount_type=v.string("type", required=creating, nullable=False, choices=VALID_DISCOUNT_TYPES, default=UNSET),
            value=v.money("value", required=creating, positive=True, nullable=False, default=UNSET),
            min_purchase_amount=v.money("minPurchaseAmount", nullable=False, default=ZERO if creating else UNSET),
            max_discount_amount=v.money("maxDiscountAmount", positive=True, default=default),
            start_date=v.date("startDate", default=default),
            end_date=v.date("endDate", default=default),
            usage_limit=v.integer("usageLimit", minimum=1, default=default),
            is_active=v.boolean("isActive", default=True if creating else UNSET),
        )
        if patch.name == "":
            v.add("name", "name cannot be blank")
        if patch.code is not UNSET and patch.code is not None:
            patch.code = patch.code.upper() or None
        if (
            patch.discount_type == DISCOUNT_PERCENTAGE
            and isinstance(patch.value, Decimal)
            and patch.value > HUNDRED
        ):
            v.add("value", "Percentage discount cannot exceed 100")
        v.raise_if_errors()
        return patch


def _check_window(discount: Discount) -> None:
    if discount.start_date and discount.end_date and discount.end_date < discount.start_date:
        raise ValidationError("endDate must be on or after startDate", field="endDate")
    if discount.discount_type == DISCOUNT_PERCENTAGE and Decimal(discount.value) > HUNDRED:
        raise ValidationError("Percentage discount cannot exceed 100", field="value")


# =============================================================================
# SERVICE
# =============================================================================

class DiscountService:
    def __init__(self, session, *, clock=utcnow):
        self.session = session
        self.clock = clock

    def get(self, discount_id: int) -> Discount:
        discount = self.session.get(Discount, discount_id)
        if discount is None:
            raise NotFound(f"Discount {discount_id} not found", field="discountId")
        return discount

    def get_by_code(self, code: str) -> Discount:
        discount = self.session.execute(
            select(Discount).where(Discount.code == code.strip().upper())
        ).scalar_one_or_none()
        if discount is None:
            raise NotFound("Discount code not found", field="discountCode")
        return discount

    def resolve(self, *, code: str | None = None, discount_id: int | None = None) -> Discount:
        if discount_id is not None:
            return self.get(discount_id)
        if code:
            return self.get_by_code(code)
        raise ValidationError("Either discountCode or discountId is required", field="discountCode")

    def list(self, *, active_only: bool = False, search: str | None = None) -> list[Discount]:
        query = select(Discount)
        if active_only:
            query = query.where(Discount.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(Discount.name.ilike(pattern), Discount.code.ilike(pattern)))
        return list(self.session.execute(query.order_by(Discount.id.desc())).scalars())

    def preview(self, *, amount: Decimal, code: str | None = None, discount_id: int | None = None) -> tuple[Discount, Decimal]:
        """Evaluate without side effects; raises DiscountRejected on failure."""
        discount = self.resolve(code=code, discount_id=discount_id)
        result = evaluate_discount(discount, amount, self.clock())
        if not result.applied:
            raise DiscountRejected(rejection_message(discount, result.reason), result.reason)
        return discount, result.discount_amount

    def consume_usage(self, discount_id: int) -> None:
        """Take one use inside the caller's transaction (no commit)."""
        result = self.session.execute(
            update(Discount)
            .where(
                Discount.id == discount_id,
                or_(Discount.usage_limit.is_(None), Discount.used_count < Discount.usage_limit),
            )
            .values(used_count=Discount.used_count + 1)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise DiscountUsageExceeded(discount_id)

    # =========================================================================
    # CRUD
    # =========================================================================

    def create(self, patch: DiscountPatch) -> Discount:
        if patch.code:
            self._require_unique_code(patch.code)
        with unit_of_work(self.session):
            discount = Discount(used_count=0)
            patch.apply_to(discount)
            _check_window(discount)
            self.session.add(discount)
            try:
                self.session.flush()
            except IntegrityError:
                raise ConflictError("Discount code already exists", field="code")
        return discount

    def update(self, discount_id: int, patch: DiscountPatch) -> Discount:
        discount = self.get(discount_id)
        if patch.code and patch.code != discount.code:
            self._require_unique_code(patch.code)
        if patch.usage_limit not in (UNSET, None) and patch.usage_limit < discount.used_count:
            raise ValidationError(
                f"usageLimit cannot be below the {discount.used_count} uses already consumed",
                field="usageLimit",
            )
        with unit_of_work(self.session):
            patch.apply_to(discount)
            _check_window(discount)
            try:
                self.session.flush()
            except IntegrityError:
                raise ConflictError("Discount code already exists", field="code")
        return discount

    def delete(self, discount_id: int) -> bool:
        """
        Delete a discount, or deactivate it when committed sales reference it.
        Returns True if the row was removed.
        """
        discount = self.get(discount_id)
        referenced = self.session.execute(
            select(exists().where(Sale.discount_id == discount_id))
        ).scalar()
        with unit_of_work(self.session):
            if referenced:
                discount.is_active = False
            else:
                self.session.delete(discount)
        return not referenced

    def _require_unique_code(self, code: str) -> None:
        if self.session.execute(select(Discount.id).where(Discount.code == code)).first():
            raise ConflictError("Discount code already exists", field="code")
