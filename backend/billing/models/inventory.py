from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TX_SALE = "sale"
TX_RETURN = "return"
TX_ADJUSTMENT = "adjustment"
VALID_TRANSACTION_TYPES = (TX_SALE, TX_RETURN, TX_ADJUSTMENT)

REF_SALE = "sale"
REF_SALE_RETURN = "sale_return"
REF_ADJUSTMENT = "adjustment"
REF_PRODUCT = "product"


class InventoryTransaction(db.Model):
    """
    Append-only stock ledger.

    quantity is signed (negative for sales, positive for returns). For every
    product, SUM(quantity) equals stock_quantity; opening stock is recorded
    as an adjustment row when the product is created.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.CheckConstraint("quantity <> 0", name="ck_inventory_transactions_quantity_non_zero"),
        db.Index("ix_inventory_transactions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    # Set on return rows so returned quantity per line can be summed
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    product = db.relationship("Product", backref=db.backref("inventory_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "productName": self.product.name if self.product else None,
            "sku": self.product.sku if self.product else None,
            "transactionType": self.transaction_type,
            "quantity": self.quantity,
            "referenceType": self.reference_type,
            "referenceId": self.reference_id,
            "saleItemId": self.sale_item_id,
            "notes": self.notes,
            "createdBy": self.created_by,
            "createdAt": to_utc_z(self.created_at),
        }
