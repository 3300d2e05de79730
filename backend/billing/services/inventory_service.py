# Overview: Service-layer operations for the stock ledger; appends, adjustments, reconciliation.

"""
Inventory Ledger Invariants (authoritative)

- Product.stock_quantity is the live counter; InventoryTransaction is the
  append-only log that explains it.
- For every product: SUM(InventoryTransaction.quantity) == stock_quantity.
  Opening stock is an `adjustment` row written when the product is created.
- Sales write negative `sale` rows; cancellations and returns write
  positive `return` rows. Rows are never updated or deleted.
- Stock never goes negative. Decrements go through the conditional UPDATE
  in CatalogService.reserve_stock, never through read-modify-write.
- Returned quantity for a sale line is the sum of `return` rows carrying
  that sale_item_id.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select

from ..errors import InvalidQuantity, NotFound
from ..models import InventoryTransaction, Product
from ..models.inventory import (
    REF_ADJUSTMENT,
    TX_ADJUSTMENT,
    TX_RETURN,
    VALID_TRANSACTION_TYPES,
)
from ..time_utils import utcnow
from .concurrency import run_with_retry, unit_of_work


def append_transaction(
    session,
    *,
    product_id: int,
    transaction_type: str,
    quantity: int,
    reference_type: str | None = None,
    reference_id: int | None = None,
    sale_item_id: int | None = None,
    notes: str | None = None,
    created_by: int | None = None,
) -> InventoryTransaction:
    """Append one ledger row in the caller's transaction (no commit)."""
    if transaction_type not in VALID_TRANSACTION_TYPES:
        raise ValueError(f"Unknown transaction type: {transaction_type}")
    if quantity == 0:
        raise ValueError("Ledger rows must move stock")

    tx = InventoryTransaction(
        product_id=product_id,
        transaction_type=transaction_type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        sale_item_id=sale_item_id,
        notes=notes,
        created_by=created_by,
        created_at=utcnow(),
    )
    session.add(tx)
    return tx


def returned_quantities(session, sale_item_ids) -> dict[int, int]:
    """sale_item_id -> units already put back on the shelf."""
    ids = list(sale_item_ids)
    if not ids:
        return {}
    rows = session.execute(
        select(InventoryTransaction.sale_item_id, func.sum(InventoryTransaction.quantity))
        .where(
            InventoryTransaction.sale_item_id.in_(ids),
            InventoryTransaction.transaction_type == TX_RETURN,
        )
        .group_by(InventoryTransaction.sale_item_id)
    ).all()
    result = {item_id: 0 for item_id in ids}
    for item_id, qty in rows:
        result[item_id] = int(qty or 0)
    return result


@dataclass(frozen=True)
class ReconciliationIssue:
    product_id: int
    sku: str
    stock_quantity: int
    ledger_quantity: int

    @property
    def difference(self) -> int:
        return self.stock_quantity - self.ledger_quantity

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "sku": self.sku,
            "stockQuantity": self.stock_quantity,
            "ledgerQuantity": self.ledger_quantity,
            "difference": self.difference,
        }


class InventoryService:
    """Manual adjustments and read projections over the ledger."""

    def __init__(self, session, catalog=None):
        from .catalog_service import CatalogService

        self.session = session
        self.catalog = catalog or CatalogService(session)

    def adjust(self, product_id: int, quantity: int, *, actor_id: int | None, notes: str | None = None) -> InventoryTransaction:
        """
        Apply a signed stock adjustment and log it.

        Negative adjustments use the same conditional decrement as sales, so
        they fail with InsufficientStock instead of driving stock below zero.
        """
        if quantity == 0:
            raise InvalidQuantity("quantity must not be 0", field="quantity")

        def _op():
            with unit_of_work(self.session):
                if quantity < 0:
                    self.catalog.reserve_stock(product_id, -quantity)
                else:
                    self.catalog.release_stock(product_id, quantity)
                tx = append_transaction(
                    self.session,
                    product_id=product_id,
                    transaction_type=TX_ADJUSTMENT,
                    quantity=quantity,
                    reference_type=REF_ADJUSTMENT,
                    notes=notes,
                    created_by=actor_id,
                )
            return tx

        return run_with_retry(_op, session=self.session)

    def list_transactions(self, *, product_id: int | None = None, transaction_type: str | None = None,
                          limit: int = 100) -> list[InventoryTransaction]:
        query = select(InventoryTransaction)
        if product_id is not None:
            query = query.where(InventoryTransaction.product_id == product_id)
        if transaction_type:
            query = query.where(InventoryTransaction.transaction_type == transaction_type)
        query = query.order_by(InventoryTransaction.id.desc()).limit(limit)
        return list(self.session.execute(query).scalars())

    def low_stock(self, threshold: int | None = None) -> list[Product]:
        query = select(Product).where(Product.is_active.is_(True))
        if threshold is not None:
            query = query.where(Product.stock_quantity <= threshold)
        else:
            query = query.where(Product.stock_quantity <= Product.min_stock_level)
        query = query.order_by(Product.stock_quantity.asc(), Product.name.asc())
        return list(self.session.execute(query).scalars())

    def ledger_quantity(self, product_id: int) -> int:
        if self.session.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found")
        total = self.session.execute(
            select(func.coalesce(func.sum(InventoryTransaction.quantity), 0))
            .where(InventoryTransaction.product_id == product_id)
        ).scalar_one()
        return int(total)

    def reconcile(self) -> list[ReconciliationIssue]:
        """Every product whose stock counter disagrees with its ledger."""
        ledger = (
            select(
                InventoryTransaction.product_id.label("product_id"),
                func.sum(InventoryTransaction.quantity).label("qty"),
            )
            .group_by(InventoryTransaction.product_id)
            .subquery()
        )
        rows = self.session.execute(
            select(Product.id, Product.sku, Product.stock_quantity, func.coalesce(ledger.c.qty, 0))
            .outerjoin(ledger, ledger.c.product_id == Product.id)
            .order_by(Product.id)
        ).all()
        return [
            ReconciliationIssue(product_id=pid, sku=sku, stock_quantity=stock, ledger_quantity=int(qty))
            for pid, sku, stock, qty in rows
            if stock != int(qty)
        ]
