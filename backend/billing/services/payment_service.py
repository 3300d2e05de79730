# Overview: Service-layer operations for payments; recording, listing and status derivation.

"""
Payment Processing Service

- Payments are separate from sales (many-to-one relationship)
- Split and partial payments are allowed; overpayment is not: the net of
  completed payments may never exceed total_amount - refunded_amount
- Refunds are Payment rows with a negative amount
- Cancelled sales keep their payments, flipped to `reversed`
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select

from ..errors import ConflictError, InvalidAmount, NotFound
from ..models import Payment, Sale
from ..models.sales import (
    PAYMENT_COMPLETED,
    PAYMENT_METHODS,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PENDING,
)
from ..money import ZERO, money_str, quantize
from ..time_utils import utcnow
from ..validation import PayloadValidator
from .concurrency import run_with_retry, unit_of_work


def derive_payment_status(net_paid: Decimal, amount_due: Decimal) -> str:
    """pending / partial / paid from what was paid against what is owed."""
    if net_paid >= amount_due:
        return PAYMENT_STATUS_PAID
    if net_paid <= 0:
        return PAYMENT_STATUS_PENDING
    return PAYMENT_STATUS_PARTIAL


def net_paid(session, sale_id: int) -> Decimal:
    total = session.execute(
        select(func.coalesce(func.sum(Payment.amount), 0))
        .where(Payment.sale_id == sale_id, Payment.status == PAYMENT_COMPLETED)
    ).scalar_one()
    return quantize(Decimal(total))


class PaymentService:
    def __init__(self, session):
        self.session = session

    def list_for_sale(self, sale_id: int) -> list[Payment]:
        if self.session.get(Sale, sale_id) is None:
            raise NotFound(f"Sale {sale_id} not found")
        return list(self.session.execute(
            select(Payment).where(Payment.sale_id == sale_id).order_by(Payment.id.asc())
        ).scalars())

    def record_payment(self, payload, *, actor_id: int | None) -> Payment:
        v = PayloadValidator(payload)
        sale_id = v.integer("saleId", required=True)
        method = v.string("paymentMethod", required=True, choices=PAYMENT_METHODS)
        amount = v.money("amount", required=True, positive=True)
        transaction_id = v.string("transactionId", max_length=128)
        notes = v.string("notes", max_length=500)
        v.raise_if_errors()
        return self.add_payment(
            sale_id,
            amount=amount,
            payment_method=method,
            transaction_id=transaction_id,
            notes=notes,
            actor_id=actor_id,
        )

    def add_payment(self, sale_id: int, *, amount: Decimal, payment_method: str,
                    transaction_id: str | None = None, notes: str | None = None,
                    actor_id: int | None = None) -> Payment:
        """
        Record a payment and recompute the sale's status in one transaction.

        Sale.version_id turns two concurrent payments on the same sale into
        a StaleDataError for the loser, which is retried against fresh data.
        """
        if amount <= 0:
            raise InvalidAmount("amount must be greater than 0", field="amount")

        def _op():
            with unit_of_work(self.session):
                sale = self.session.get(Sale, sale_id, populate_existing=True)
                if sale is None:
                    raise NotFound(f"Sale {sale_id} not found", field="saleId")
                if sale.is_cancelled:
                    raise ConflictError("Cannot record a payment on a cancelled sale", field="saleId")

                paid = net_paid(self.session, sale.id)
                remaining = quantize(sale.amount_due - paid)
                if amount > remaining:
                    raise ConflictError(
                        f"Payment amount exceeds remaining balance of {money_str(max(remaining, ZERO))}",
                        field="amount",
                    )

                payment = Payment(
                    sale_id=sale.id,
                    payment_method=payment_method,
                    amount=amount,
                    transaction_id=transaction_id,
                    notes=notes,
                    status=PAYMENT_COMPLETED,
                    payment_date=utcnow(),
                    created_by=actor_id,
                )
                self.session.add(payment)
                sale.payment_status = derive_payment_status(quantize(paid + amount), sale.amount_due)
                if sale.payment_method is None:
                    sale.payment_method = payment_method
                # Always bump version_id, even when the status is unchanged
                sale.updated_at = utcnow()
            return payment

        return run_with_retry(_op, session=self.session)
