# Overview: Turns a sale request into a priced, unpersisted SaleDraft.

"""
Sale Builder

Pure computation over catalog reads: nothing here reserves stock, consumes
discount usage, or writes a row. Per line:

    line_subtotal = quantity * unit_price
    line_tax      = line_subtotal * tax_rate / 100
    line_total    = line_subtotal - item_discount + line_tax

Sale level:

    subtotal        = sum(line_subtotal)
    tax_amount      = sum(line_tax)
    discount_amount = sum(item_discount) + order_discount
    total_amount    = subtotal + tax_amount - discount_amount   (>= 0)

An order-level discount comes from the discount evaluator (by code or id)
against `subtotal`, or from a flat `discountAmount`; not both. The
evaluator's amount is capped at what is still payable after item
discounts, which keeps total_amount at or above zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..errors import (
    DiscountRejected,
    EmptyCart,
    InvalidAmount,
    InvalidQuantity,
    NotFound,
    ValidationError,
)
from ..models import Customer
from ..models.sales import PAYMENT_METHODS
from ..money import MAX_AMOUNT, ZERO, money_sum, percent_of, quantize
from ..time_utils import utcnow
from ..validation import MAX_QUANTITY, PayloadValidator
from .catalog_service import CatalogService
from .discount_service import DiscountService, evaluate_discount, rejection_message


# =============================================================================
# REQUEST
# =============================================================================

@dataclass(frozen=True)
class CartItem:
    product_id: int
    quantity: int
    unit_price: Decimal | None = None
    discount_amount: Decimal = ZERO


@dataclass(frozen=True)
class PaymentRequest:
    amount: Decimal
    payment_method: str | None = None
    transaction_id: str | None = None


@dataclass(frozen=True)
class SaleRequest:
    items: tuple[CartItem, ...]
    customer_id: int | None = None
    discount_code: str | None = None
    discount_id: int | None = None
    discount_amount: Decimal | None = None
    payment_method: str | None = None
    notes: str | None = None
    payment: PaymentRequest | None = None

    @property
    def has_coded_discount(self) -> bool:
        return bool(self.discount_code) or self.discount_id is not None

    @classmethod
    def from_payload(cls, payload) -> "SaleRequest":
        v = PayloadValidator(payload)
        customer_id = v.integer("customerId")
        payment_method = v.string("paymentMethod", choices=PAYMENT_METHODS)
        notes = v.string("notes", max_length=500)
        discount_code = v.string("discountCode", max_length=64)
        discount_id = v.integer("discountId")
        discount_amount = v.money("discountAmount")
        items = tuple(parse_cart_items(v, v.list("items", default=[])))

        payment = None
        if v.payload.get("payment") is not None:
            p = v.child(v.payload["payment"], "payment.")
            amount = p.money("amount", required=True, positive=True)
            method = p.string("method", choices=PAYMENT_METHODS) or payment_method
            if method is None:
                p.add("method", "method is required when no paymentMethod is given")
            payment = PaymentRequest(
                amount=amount,
                payment_method=method,
                transaction_id=p.string("transactionId", max_length=128),
            )

        v.raise_if_errors()
        return cls(
            items=items,
            customer_id=customer_id,
            discount_code=discount_code or None,
            discount_id=discount_id,
            discount_amount=discount_amount,
            payment_method=payment_method,
            notes=notes,
            payment=payment,
        )


def parse_cart_items(v: PayloadValidator, raw_items) -> list[CartItem]:
    """Type-check items. Quantity <= 0 and an empty cart are left to the builder."""
    items = []
    for i, raw in enumerate(raw_items or []):
        iv = v.child(raw, f"items[{i}].")
        product_id = iv.integer("productId", required=True)
        quantity = iv.integer("quantity", required=True, maximum=MAX_QUANTITY)
        unit_price = iv.money("unitPrice")
        discount = iv.money("discountAmount", nullable=False, default=ZERO)
        if product_id is None or quantity is None:
            continue
        items.append(CartItem(
            product_id=product_id,
            quantity=quantity,
            unit_price=unit_price,
            discount_amount=discount if discount is not None else ZERO,
        ))
    return items


# =============================================================================
# DRAFT
# =============================================================================

@dataclass(frozen=True)
class DraftLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    line_subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class SaleDraft:
    lines: tuple[DraftLine, ...]
    subtotal: Decimal
    tax_amount: Decimal
    item_discount_amount: Decimal
    order_discount_amount: Decimal
    total_amount: Decimal
    customer_id: int | None = None
    discount_id: int | None = None
    payment_method: str | None = None
    notes: str | None = None
    # Quantity per product, used for all-or-nothing stock reservation
    quantities: dict = field(default_factory=dict, compare=False)

    @property
    def discount_amount(self) -> Decimal:
        return quantize(self.item_discount_amount + self.order_discount_amount)


# =============================================================================
# BUILDER
# =============================================================================

class SaleBuilder:
    def __init__(self, session, *, catalog=None, discounts=None, clock=utcnow):
        self.session = session
        self.catalog = catalog or CatalogService(session)
        self.discounts = discounts or DiscountService(session, clock=clock)
        self.clock = clock

    def build(self, request: SaleRequest, *, held_discount_id: int | None = None) -> SaleDraft:
        """
        Validate and price `request`.

        held_discount_id names a discount whose use the sale being amended
        already owns; its usage limit is not re-checked.
        """
        if not request.items:
            raise EmptyCart()
        for i, item in enumerate(request.items):
            if item.quantity <= 0:
                raise InvalidQuantity("quantity must be greater than 0", field=f"items[{i}].quantity")

        if request.customer_id is not None:
            self.require_customer(request.customer_id)

        lines = tuple(self._price_line(i, item) for i, item in enumerate(request.items))

        subtotal = money_sum(line.line_subtotal for line in lines)
        tax_amount = money_sum(line.tax_amount for line in lines)
        item_discount = money_sum(line.discount_amount for line in lines)
        if subtotal + tax_amount > MAX_AMOUNT:
            raise InvalidAmount(f"Sale total exceeds maximum of {MAX_AMOUNT}", field="items")
        payable = quantize(subtotal + tax_amount - item_discount)

        discount_id, order_discount = self._order_discount(request, subtotal, payable, held_discount_id)

        total = quantize(subtotal + tax_amount - item_discount - order_discount)
        if total < 0:
            raise InvalidAmount("totalAmount cannot be negative", field="discountAmount")

        quantities: dict[int, int] = {}
        for line in lines:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

        return SaleDraft(
            lines=lines,
            subtotal=subtotal,
            tax_amount=tax_amount,
            item_discount_amount=item_discount,
            order_discount_amount=order_discount,
            total_amount=total,
            customer_id=request.customer_id,
            discount_id=discount_id,
            payment_method=request.payment_method,
            notes=request.notes,
            quantities=quantities,
        )

    def _price_line(self, i: int, item: CartItem) -> DraftLine:
        try:
            snapshot = self.catalog.get_price_snapshot(item.product_id)
        except NotFound:
            raise NotFound(f"Product {item.product_id} not found", field=f"items[{i}].productId")

        unit_price = snapshot.unit_price
        if item.unit_price is not None:
            # Price override at the till
            if item.unit_price <= 0:
                raise InvalidAmount("unitPrice must be greater than 0", field=f"items[{i}].unitPrice")
            unit_price = item.unit_price

        line_subtotal = quantize(unit_price * item.quantity)
        discount = quantize(item.discount_amount or ZERO)
        if discount < 0:
            raise InvalidAmount("discountAmount cannot be negative", field=f"items[{i}].discountAmount")
        if discount > line_subtotal:
            raise InvalidAmount(
                "discountAmount cannot exceed the line subtotal",
                field=f"items[{i}].discountAmount",
            )
        line_tax = percent_of(line_subtotal, snapshot.tax_rate)

        return DraftLine(
            product_id=snapshot.product_id,
            product_name=snapshot.name,
            quantity=item.quantity,
            unit_price=quantize(unit_price),
            tax_rate=snapshot.tax_rate,
            line_subtotal=line_subtotal,
            discount_amount=discount,
            tax_amount=line_tax,
            line_total=quantize(line_subtotal - discount + line_tax),
        )

    def _order_discount(self, request: SaleRequest, subtotal: Decimal, payable: Decimal,
                        held_discount_id: int | None) -> tuple[int | None, Decimal]:
        if request.has_coded_discount:
            if request.discount_amount is not None:
                raise ValidationError(
                    "discountAmount cannot be combined with a discount code",
                    field="discountAmount",
                )
            discount = self.discounts.resolve(code=request.discount_code, discount_id=request.discount_id)
            result = evaluate_discount(
                discount,
                subtotal,
                self.clock(),
                check_usage=discount.id != held_discount_id,
            )
            if not result.applied:
                raise DiscountRejected(rejection_message(discount, result.reason), result.reason)
            return discount.id, min(result.discount_amount, payable)

        return None, self.manual_discount(request.discount_amount, payable)

    def manual_discount(self, amount: Decimal | None, payable: Decimal) -> Decimal:
        """A flat order-level discount; rejected rather than clamped when too large."""
        if amount is None or amount == 0:
            return ZERO
        if amount < 0:
            raise InvalidAmount("discountAmount cannot be negative", field="discountAmount")
        if amount > payable:
            raise InvalidAmount("discountAmount cannot exceed the amount payable", field="discountAmount")
        return quantize(amount)

    def require_customer(self, customer_id: int) -> None:
        customer = self.session.get(Customer, customer_id)
        if customer is None:
            raise NotFound(f"Customer {customer_id} not found", field="customerId")
        if not customer.is_active:
            raise ValidationError(f"Customer {customer_id} is inactive", field="customerId")
