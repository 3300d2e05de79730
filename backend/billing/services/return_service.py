# Overview: Service-layer operations for cancellations and partial returns.

"""
Cancellation / Return Handler

WHY: A committed sale is never edited back into shape. Stock comes back
through compensating `return` ledger rows and money through negative
Payment rows, so the ledger and payment history both still add up.

Cancellation:
- Restores whatever has not already been returned, line by line
- Flips completed payments to `reversed` (rows are kept for audit)
- Leaves discount usage consumed; a second cancel raises AlreadyCancelled

Partial return:
- Returned quantity per line = SUM of `return` ledger rows for that line
- Refund value is the line's net value (line total minus its share of the
  order discount) pro-rated by units, computed cumulatively so returning
  every unit of every line refunds exactly total_amount
- refunded_amount grows by that value; if net payments now exceed
  total_amount - refunded_amount, the excess is paid back as a negative
  Payment
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..errors import (
    AlreadyCancelled,
    ConflictError,
    InvalidItem,
    InvalidQuantity,
    NotFound,
    OverReturn,
    ValidationError,
)
from ..models import Payment, Sale, SaleReturn
from ..models.inventory import REF_SALE, REF_SALE_RETURN, TX_RETURN
from ..models.sales import PAYMENT_COMPLETED, PAYMENT_METHODS, PAYMENT_REVERSED, PAYMENT_STATUS_CANCELLED
from ..money import ZERO, money_str, quantize
from ..time_utils import utcnow
from ..validation import MAX_QUANTITY, PayloadValidator
from .catalog_service import CatalogService
from .concurrency import run_with_retry, unit_of_work
from .inventory_service import append_transaction, returned_quantities
from .payment_service import derive_payment_status, net_paid


@dataclass(frozen=True)
class ReturnLine:
    sale_item_id: int
    quantity: int


@dataclass(frozen=True)
class ReturnRequest:
    lines: tuple[ReturnLine, ...]
    refund_method: str
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload) -> "ReturnRequest":
        v = PayloadValidator(payload)
        refund_method = v.string("refundMethod", required=True, choices=PAYMENT_METHODS)
        notes = v.string("notes", max_length=500)
        lines = []
        for i, raw in enumerate(v.list("items", default=[]) or []):
            lv = v.child(raw, f"items[{i}].")
            item_id = lv.integer("saleItemId", required=True)
            quantity = lv.integer("quantity", required=True, maximum=MAX_QUANTITY)
            if item_id is not None and quantity is not None:
                lines.append(ReturnLine(sale_item_id=item_id, quantity=quantity))
        v.raise_if_errors()
        return cls(lines=tuple(lines), refund_method=refund_method, notes=notes)


def allocate_order_discount(items, order_discount: Decimal) -> dict[int, Decimal]:
    """
    Spread the order-level discount over lines by line subtotal.
    The last line takes the rounding remainder so shares sum exactly.
    """
    shares = {item.id: ZERO for item in items}
    if not items or order_discount <= 0:
        return shares
    base = sum((item.line_subtotal for item in items), ZERO)
    if base <= 0:
        shares[items[-1].id] = order_discount
        return shares
    allocated = ZERO
    for item in items[:-1]:
        share = quantize(order_discount * item.line_subtotal / base)
        shares[item.id] = share
        allocated += share
    shares[items[-1].id] = quantize(order_discount - allocated)
    return shares


def returned_value(net_line_value: Decimal, quantity: int, units: int) -> Decimal:
    """Value of the first `units` of a line; exact at units == quantity."""
    if units >= quantity:
        return net_line_value
    return quantize(net_line_value * units / quantity)


class ReturnService:
    def __init__(self, session, *, catalog=None, clock=utcnow, logger=None):
        self.session = session
        self.catalog = catalog or CatalogService(session)
        self.clock = clock
        self._log = logger or logging.getLogger(__name__)

    def _get_sale(self, sale_id: int) -> Sale:
        # populate_existing: a retry must see the winner's version_id
        sale = self.session.get(Sale, sale_id, populate_existing=True)
        if sale is None:
            raise NotFound(f"Sale {sale_id} not found")
        return sale

    # =========================================================================
    # FULL CANCELLATION
    # =========================================================================

    def cancel(self, sale_id: int, *, actor_id: int | None) -> Sale:
        def _op():
            with unit_of_work(self.session):
                sale = self._get_sale(sale_id)
                if sale.is_cancelled:
                    raise AlreadyCancelled(sale.id)

                now = self.clock()
                already = returned_quantities(self.session, [item.id for item in sale.items])
                for item in sale.items:
                    remaining = item.quantity - already.get(item.id, 0)
                    if remaining <= 0:
                        continue
                    self.catalog.release_stock(item.product_id, remaining)
                    append_transaction(
                        self.session,
                        product_id=item.product_id,
                        transaction_type=TX_RETURN,
                        quantity=remaining,
                        reference_type=REF_SALE,
                        reference_id=sale.id,
                        sale_item_id=item.id,
                        notes="Sale cancelled",
                        created_by=actor_id,
                    )

                for payment in sale.payments:
                    if payment.status == PAYMENT_COMPLETED:
                        payment.status = PAYMENT_REVERSED
                        payment.reversed_at = now

                sale.payment_status = PAYMENT_STATUS_CANCELLED
                sale.cancelled_at = now
                sale.cancelled_by = actor_id
            return sale

        sale = run_with_retry(_op, session=self.session)
        self._log.info("Cancelled sale %s (id=%s)", sale.invoice_number, sale.id)
        return sale

    # =========================================================================
    # PARTIAL RETURN
    # =========================================================================

    def process_return(self, sale_id: int, request: ReturnRequest, *, actor_id: int | None) -> SaleReturn:
        if not request.lines:
            raise ValidationError("At least one item is required", field="items")

        def _op():
            with unit_of_work(self.session):
                return self._write_return(sale_id, request, actor_id)

        sale_return = run_with_retry(_op, session=self.session)
        self._log.info(
            "Processed return %s on sale %s value=%s cash=%s",
            sale_return.id, sale_return.sale_id,
            money_str(sale_return.refund_amount), money_str(sale_return.cash_refunded),
        )
        return sale_return

    def _write_return(self, sale_id: int, request: ReturnRequest, actor_id: int | None) -> SaleReturn:
        sale = self._get_sale(sale_id)
        if sale.is_cancelled:
            raise ConflictError("Cannot return items from a cancelled sale")

        items = list(sale.items)
        by_id = {item.id: item for item in items}

        # Merge repeated lines so the over-return check sees the full request
        requested: dict[int, int] = {}
        for i, line in enumerate(request.lines):
            if line.sale_item_id not in by_id:
                raise InvalidItem(
                    f"Item {line.sale_item_id} does not belong to sale {sale.id}",
                    field=f"items[{i}].saleItemId",
                )
            if line.quantity <= 0:
                raise InvalidQuantity("quantity must be greater than 0", field=f"items[{i}].quantity")
            requested[line.sale_item_id] = requested.get(line.sale_item_id, 0) + line.quantity

        already = returned_quantities(self.session, requested.keys())
        for item_id, quantity in requested.items():
            item = by_id[item_id]
            available = item.quantity - already[item_id]
            if quantity > available:
                raise OverReturn(
                    f"Cannot return {quantity} of item {item_id}; {available} remaining",
                    field="items",
                )

        shares = allocate_order_discount(items, Decimal(sale.order_discount_amount))
        value = ZERO
        for item_id, quantity in requested.items():
            item = by_id[item_id]
            net_line = quantize(item.line_total - shares[item_id])
            before = already[item_id]
            value += (
                returned_value(net_line, item.quantity, before + quantity)
                - returned_value(net_line, item.quantity, before)
            )
        value = quantize(value)

        paid = net_paid(self.session, sale.id)
        sale.refunded_amount = quantize(sale.refunded_amount + value)
        cash_back = quantize(max(paid - sale.amount_due, ZERO))

        now = self.clock()
        sale_return = SaleReturn(
            sale_id=sale.id,
            refund_amount=value,
            cash_refunded=cash_back,
            refund_method=request.refund_method,
            notes=request.notes,
            created_by=actor_id,
            created_at=now,
        )
        self.session.add(sale_return)
        self.session.flush()

        for item_id, quantity in requested.items():
            item = by_id[item_id]
            self.catalog.release_stock(item.product_id, quantity)
            append_transaction(
                self.session,
                product_id=item.product_id,
                transaction_type=TX_RETURN,
                quantity=quantity,
                reference_type=REF_SALE_RETURN,
                reference_id=sale_return.id,
                sale_item_id=item.id,
                notes=request.notes,
                created_by=actor_id,
            )

        if cash_back > 0:
            self.session.add(Payment(
                sale_id=sale.id,
                payment_method=request.refund_method,
                amount=-cash_back,
                status=PAYMENT_COMPLETED,
                notes=f"Refund for return #{sale_return.id}",
                return_id=sale_return.id,
                payment_date=now,
                created_by=actor_id,
            ))

        sale.payment_status = derive_payment_status(quantize(paid - cash_back), sale.amount_due)
        sale.updated_at = now
        return sale_return
