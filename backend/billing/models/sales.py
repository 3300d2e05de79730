from __future__ import annotations

from ..extensions import db
from ..money import ZERO, money_str, quantize
from ..time_utils import to_utc_z


PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_CANCELLED = "cancelled"
VALID_PAYMENT_STATUSES = (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_CANCELLED,
)

PAYMENT_METHODS = ("cash", "card", "upi", "credit", "other")

# Payment row lifecycle (cancelled sales keep their payments as reversed)
PAYMENT_COMPLETED = "completed"
PAYMENT_REVERSED = "reversed"


class Sale(db.Model):
    """
    Sale aggregate root (invoice).

    Totals are frozen at commit: total_amount = subtotal + tax_amount -
    discount_amount, where discount_amount covers both per-item discounts
    and the order-level discount. Only payment_status, refunded_amount and
    the cancellation fields change afterwards.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("total_amount >= 0", name="ck_sales_total_non_negative"),
        db.Index("ix_sales_status_date", "payment_status", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable invoice number (e.g., "INV-000123")
    invoice_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    order_discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    refunded_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=True)

    # Null for staff-mode (anonymous) sales
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
    )
    payments = db.relationship("Payment", back_populates="sale", order_by="Payment.id")
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    discount = db.relationship("Discount")
    creator = db.relationship("User", foreign_keys=[created_by])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_cancelled(self) -> bool:
        return self.payment_status == PAYMENT_STATUS_CANCELLED

    @property
    def amount_due(self):
        return quantize(self.total_amount - self.refunded_amount)

    @property
    def amount_paid(self):
        return quantize(sum(
            (p.amount for p in self.payments if p.status == PAYMENT_COMPLETED),
            ZERO,
        ))

    def to_dict(self, *, include_items: bool = True, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "customerId": self.customer_id,
            "customerName": self.customer.full_name if self.customer else None,
            "saleDate": to_utc_z(self.sale_date),
            "subtotal": money_str(self.subtotal),
            "taxAmount": money_str(self.tax_amount),
            "discountAmount": money_str(self.discount_amount),
            "orderDiscountAmount": money_str(self.order_discount_amount),
            "totalAmount": money_str(self.total_amount),
            "refundedAmount": money_str(self.refunded_amount),
            "amountPaid": money_str(self.amount_paid),
            "paymentStatus": self.payment_status,
            "paymentMethod": self.payment_method,
            "notes": self.notes,
            "discountId": self.discount_id,
            "createdBy": self.created_by,
            "createdByName": self.creator.full_name if self.creator else None,
            "cancelledAt": to_utc_z(self.cancelled_at),
            "createdAt": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_payments:
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleItem(db.Model):
    """
    Line item with a price/tax snapshot taken at sale time.

    line_total = quantity * unit_price - discount_amount + tax_amount
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Snapshot so receipts survive catalog renames
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    @property
    def line_subtotal(self):
        return quantize(self.unit_price * self.quantity)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "saleId": self.sale_id,
            "productId": self.product_id,
            "productName": self.product_name,
            "quantity": self.quantity,
            "unitPrice": money_str(self.unit_price),
            "taxRate": money_str(self.tax_rate),
            "discountAmount": money_str(self.discount_amount),
            "taxAmount": money_str(self.tax_amount),
            "lineTotal": money_str(self.line_total),
        }


class Payment(db.Model):
    """
    Money received against a sale. Refunds are rows with a negative amount.

    Rows are never deleted: cancelling a sale flips its payments to
    `reversed` so the audit trail survives.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount <> 0", name="ck_payments_amount_non_zero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    payment_method = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    transaction_id = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_COMPLETED)
    notes = db.Column(db.Text, nullable=True)

    # Set for refunds issued by a sale return
    return_id = db.Column(db.Integer, db.ForeignKey("sale_returns.id"), nullable=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sale = db.relationship("Sale", back_populates="payments")

    @property
    def is_refund(self) -> bool:
        return self.amount < 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "saleId": self.sale_id,
            "paymentMethod": self.payment_method,
            "amount": money_str(self.amount),
            "transactionId": self.transaction_id,
            "status": self.status,
            "isRefund": self.is_refund,
            "notes": self.notes,
            "returnId": self.return_id,
            "paymentDate": to_utc_z(self.payment_date),
            "createdBy": self.created_by,
            "reversedAt": to_utc_z(self.reversed_at),
        }


class SaleReturn(db.Model):
    """
    Header for a partial return. Returned quantities live in the inventory
    ledger (transaction_type=return, reference_type=sale_return).
    """
    __tablename__ = "sale_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    # Value of the goods taken back (reduces what the customer owes)
    refund_amount = db.Column(db.Numeric(12, 2), nullable=False)
    # Money actually handed back, as a negative Payment
    cash_refunded = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    refund_method = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True, order_by="SaleReturn.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "saleId": self.sale_id,
            "refundAmount": money_str(self.refund_amount),
            "cashRefunded": money_str(self.cash_refunded),
            "refundMethod": self.refund_method,
            "notes": self.notes,
            "createdBy": self.created_by,
            "createdAt": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Monotonic counter per document type. Allocation is an atomic
    UPDATE ... SET next_number = next_number + 1 inside the caller's
    transaction.
    """
    __tablename__ = "document_sequences"

    document_type = db.Column(db.String(32), primary_key=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
