# Overview: Commits SaleDrafts atomically and amends unpaid sales.

"""
Transaction Coordinator

commit() writes a SaleDraft as one unit of work:

1. Take a discount use (conditional UPDATE, race-safe recheck of the limit)
2. Reserve stock for every product, all-or-nothing
3. Allocate the invoice number from the sequence row
4. Insert Sale + SaleItems as `pending`
5. Append one negative `sale` ledger row per line
6. Record the optional initial payment and derive the status

Any failure rolls every step back; the caller sees the single error that
stopped the commit. OperationalError/StaleDataError are retried from
step 1 by run_with_retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import exists, select

from ..errors import BillingError, ConflictError, NotFound, ValidationError
from ..models import Payment, Sale, SaleItem, SaleReturn
from ..models.inventory import REF_SALE, TX_RETURN, TX_SALE
from ..models.sales import PAYMENT_COMPLETED, PAYMENT_METHODS, PAYMENT_STATUS_PAID, PAYMENT_STATUS_PENDING
from ..money import ZERO, money_str, quantize, subtract
from ..time_utils import utcnow
from ..validation import UNSET, Patch, PayloadValidator
from .catalog_service import CatalogService
from .concurrency import run_with_retry, unit_of_work
from .discount_service import DiscountService
from .document_service import next_invoice_number
from .inventory_service import append_transaction
from .payment_service import derive_payment_status, net_paid
from .sale_builder import PaymentRequest, SaleBuilder, SaleDraft, SaleRequest, parse_cart_items


@dataclass
class SalePatch(Patch):
    customer_id: int | None = UNSET
    notes: str | None = UNSET
    payment_method: str | None = UNSET
    items: tuple = UNSET
    discount_amount: Decimal | None = UNSET

    @classmethod
    def from_payload(cls, payload) -> "SalePatch":
        v = PayloadValidator(payload)
        items = UNSET
        if v.has("items"):
            items = tuple(parse_cart_items(v, v.list("items", default=[])))
        patch = cls(
            customer_id=v.integer("customerId", default=UNSET),
            notes=v.string("notes", max_length=500, default=UNSET),
            payment_method=v.string("paymentMethod", choices=PAYMENT_METHODS, default=UNSET),
            items=items,
            discount_amount=v.money("discountAmount", default=UNSET),
        )
        v.raise_if_errors()
        return patch


class TransactionCoordinator:
    def __init__(self, session, *, catalog=None, discounts=None, builder=None,
                 invoice_prefix: str = "INV", clock=utcnow, logger=None):
        self.session = session
        self.catalog = catalog or CatalogService(session)
        self.discounts = discounts or DiscountService(session, clock=clock)
        self.builder = builder or SaleBuilder(session, catalog=self.catalog, discounts=self.discounts, clock=clock)
        self.invoice_prefix = invoice_prefix
        self.clock = clock
        self._log = logger or logging.getLogger(__name__)

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_sale(self, request: SaleRequest, *, actor_id: int | None) -> Sale:
        """Build then commit; the usual entry point for POST /sales."""
        draft = self.builder.build(request)
        return self.commit(draft, actor_id, payment=request.payment)

    def commit(self, draft: SaleDraft, actor_id: int | None, *, payment: PaymentRequest | None = None) -> Sale:
        if payment is not None:
            if payment.amount <= 0:
                raise ValidationError("payment amount must be greater than 0", field="payment.amount")
            if payment.amount > draft.total_amount:
                raise ConflictError(
                    f"Payment amount exceeds sale total of {money_str(draft.total_amount)}",
                    field="payment.amount",
                )

        def _op():
            with unit_of_work(self.session):
                sale = self._write_sale(draft, actor_id, payment)
            return sale

        try:
            sale = run_with_retry(_op, session=self.session)
        except BillingError as e:
            self._log.warning("Sale commit rejected: %s", e.message)
            raise

        self._log.info(
            "Committed sale %s (id=%s) total=%s status=%s",
            sale.invoice_number, sale.id, money_str(sale.total_amount), sale.payment_status,
        )
        return sale

    def _write_sale(self, draft: SaleDraft, actor_id: int | None, payment: PaymentRequest | None) -> Sale:
        if draft.discount_id is not None:
            self.discounts.consume_usage(draft.discount_id)

        # Sorted so concurrent commits lock products in the same order
        for product_id, quantity in sorted(draft.quantities.items()):
            self.catalog.reserve_stock(product_id, quantity)

        now = self.clock()
        sale = Sale(
            invoice_number=next_invoice_number(self.session, self.invoice_prefix),
            customer_id=draft.customer_id,
            sale_date=now,
            subtotal=draft.subtotal,
            tax_amount=draft.tax_amount,
            discount_amount=draft.discount_amount,
            order_discount_amount=draft.order_discount_amount,
            total_amount=draft.total_amount,
            refunded_amount=ZERO,
            payment_status=PAYMENT_STATUS_PENDING,
            payment_method=draft.payment_method or (payment.payment_method if payment else None),
            notes=draft.notes,
            discount_id=draft.discount_id,
            created_by=actor_id,
        )
        sale.items = [_item_from_line(line) for line in draft.lines]
        self.session.add(sale)
        self.session.flush()

        for item in sale.items:
            append_transaction(
                self.session,
                product_id=item.product_id,
                transaction_type=TX_SALE,
                quantity=-item.quantity,
                reference_type=REF_SALE,
                reference_id=sale.id,
                created_by=actor_id,
            )

        paid = ZERO
        if payment is not None:
            self.session.add(Payment(
                sale_id=sale.id,
                payment_method=payment.payment_method or sale.payment_method,
                amount=payment.amount,
                transaction_id=payment.transaction_id,
                status=PAYMENT_COMPLETED,
                payment_date=now,
                created_by=actor_id,
            ))
            paid = payment.amount
        sale.payment_status = derive_payment_status(paid, sale.total_amount)
        self.session.flush()
        return sale

    # =========================================================================
    # AMEND
    # =========================================================================

    def amend(self, sale_id: int, patch: SalePatch, *, actor_id: int | None) -> Sale:
        """
        Apply `patch` to a sale that is neither paid nor cancelled.

        New items go through the same builder validation as creation; the
        old lines' stock is released and the new lines' stock reserved in
        the same transaction. A coded discount stays attached and is
        re-evaluated against the new subtotal without taking another use.
        """
        def _op():
            with unit_of_work(self.session):
                sale = self._get_amendable(sale_id)

                if patch.customer_id is not UNSET:
                    if patch.customer_id is not None:
                        self.builder.require_customer(patch.customer_id)
                    sale.customer_id = patch.customer_id
                if patch.notes is not UNSET:
                    sale.notes = patch.notes
                if patch.payment_method is not UNSET:
                    sale.payment_method = patch.payment_method

                if patch.items is not UNSET:
                    self._replace_items(sale, patch, actor_id)
                elif patch.discount_amount is not UNSET:
                    self._reprice_order_discount(sale, patch.discount_amount)

                paid = net_paid(self.session, sale.id)
                if paid > sale.amount_due:
                    raise ConflictError(
                        f"Sale total cannot drop below the {money_str(paid)} already paid",
                        field="items",
                    )
                sale.payment_status = derive_payment_status(paid, sale.amount_due)
                sale.updated_at = self.clock()
            return sale

        sale = run_with_retry(_op, session=self.session)
        self._log.info("Amended sale %s (id=%s)", sale.invoice_number, sale.id)
        return sale

    def _get_amendable(self, sale_id: int) -> Sale:
        sale = self.session.get(Sale, sale_id, populate_existing=True)
        if sale is None:
            raise NotFound(f"Sale {sale_id} not found")
        if sale.is_cancelled:
            raise ConflictError("Cannot update a cancelled sale")
        if sale.payment_status == PAYMENT_STATUS_PAID:
            raise ConflictError("Cannot update a paid sale")
        has_returns = self.session.execute(
            select(exists().where(SaleReturn.sale_id == sale.id))
        ).scalar()
        if has_returns:
            raise ConflictError("Cannot update a sale that has returns")
        return sale

    def _replace_items(self, sale: Sale, patch: SalePatch, actor_id: int | None) -> None:
        if sale.discount_id is not None and patch.discount_amount not in (UNSET, None):
            raise ValidationError("discountAmount cannot be combined with a discount code", field="discountAmount")

        manual = None
        if sale.discount_id is None:
            manual = sale.order_discount_amount if patch.discount_amount is UNSET else patch.discount_amount

        request = SaleRequest(
            items=tuple(patch.items),
            customer_id=sale.customer_id,
            discount_id=sale.discount_id,
            discount_amount=manual,
            payment_method=sale.payment_method,
            notes=sale.notes,
        )
        draft = self.builder.build(request, held_discount_id=sale.discount_id)

        # Put the old lines back on the shelf
        for item in sale.items:
            self.catalog.release_stock(item.product_id, item.quantity)
            append_transaction(
                self.session,
                product_id=item.product_id,
                transaction_type=TX_RETURN,
                quantity=item.quantity,
                reference_type=REF_SALE,
                reference_id=sale.id,
                notes="Sale amended",
                created_by=actor_id,
            )

        for product_id, quantity in sorted(draft.quantities.items()):
            self.catalog.reserve_stock(product_id, quantity)

        sale.items = [_item_from_line(line) for line in draft.lines]
        self.session.flush()
        for item in sale.items:
            append_transaction(
                self.session,
                product_id=item.product_id,
                transaction_type=TX_SALE,
                quantity=-item.quantity,
                reference_type=REF_SALE,
                reference_id=sale.id,
                notes="Sale amended",
                created_by=actor_id,
            )

        sale.subtotal = draft.subtotal
        sale.tax_amount = draft.tax_amount
        sale.discount_amount = draft.discount_amount
        sale.order_discount_amount = draft.order_discount_amount
        sale.total_amount = draft.total_amount

    def _reprice_order_discount(self, sale: Sale, amount: Decimal | None) -> None:
        if sale.discount_id is not None:
            raise ValidationError("discountAmount cannot be combined with a discount code", field="discountAmount")
        item_discount = quantize(sum((item.discount_amount for item in sale.items), ZERO))
        payable = quantize(sale.subtotal + sale.tax_amount - item_discount)
        order_discount = self.builder.manual_discount(amount, payable)
        sale.order_discount_amount = order_discount
        sale.discount_amount = quantize(item_discount + order_discount)
        sale.total_amount = subtract(payable, order_discount, field="discountAmount")


def _item_from_line(line) -> SaleItem:
    return SaleItem(
        product_id=line.product_id,
        product_name=line.product_name,
        quantity=line.quantity,
        unit_price=line.unit_price,
        tax_rate=line.tax_rate,
        discount_amount=line.discount_amount,
        tax_amount=line.tax_amount,
        line_total=line.line_total,
    )
