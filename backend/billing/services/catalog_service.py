# Overview: Service-layer operations for products; price snapshots and race-safe stock moves.

"""
Catalog Accessor

Stock changes are single conditional UPDATE statements:

    UPDATE products SET stock_quantity = stock_quantity - :q
    WHERE id = :id AND stock_quantity >= :q

The database evaluates the guard and the decrement atomically, so two
concurrent sales cannot both take the last unit. No SELECT ... FOR UPDATE
and no external lock manager are involved.

None of the stock methods commit; they run inside the caller's unit of
work so a later failure rolls the decrement back.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, InsufficientStock, InvalidQuantity, NotFound, ValidationError
from ..models import Category, InventoryTransaction, Product, SaleItem
from ..models.inventory import REF_PRODUCT, TX_ADJUSTMENT
from ..validation import MAX_QUANTITY, UNSET, Patch, PayloadValidator
from .concurrency import unit_of_work
from .inventory_service import append_transaction


@dataclass(frozen=True)
class PriceSnapshot:
    product_id: int
    name: str
    unit_price: Decimal
    tax_rate: Decimal


@dataclass
class ProductPatch(Patch):
    """Updatable product fields. stock_quantity is deliberately absent."""

    sku: str = UNSET
    barcode: str | None = UNSET
    name: str = UNSET
    description: str | None = UNSET
    category_id: int | None = UNSET
    unit_price: Decimal = UNSET
    cost_price: Decimal | None = UNSET
    tax_rate: Decimal = UNSET
    unit: str = UNSET
    min_stock_level: int = UNSET
    is_active: bool = UNSET

    @classmethod
    def from_payload(cls, payload) -> "ProductPatch":
        v = PayloadValidator(payload)
        if v.has("stockQuantity"):
            v.add("stockQuantity", "stockQuantity cannot be edited; use an inventory adjustment")
        patch = cls(
            sku=v.string("sku", nullable=False, max_length=64, default=UNSET),
            barcode=v.string("barcode", max_length=64, default=UNSET),
            name=v.string("name", nullable=False, max_length=255, default=UNSET),
            description=v.string("description", default=UNSET),
            category_id=v.integer("categoryId", default=UNSET),
            unit_price=v.money("unitPrice", positive=True, nullable=False, default=UNSET),
            cost_price=v.money("costPrice", default=UNSET),
            tax_rate=v.percentage("taxRate", default=UNSET),
            unit=v.string("unit", nullable=False, max_length=16, default=UNSET),
            min_stock_level=v.integer("minStockLevel", minimum=0, maximum=MAX_QUANTITY, nullable=False, default=UNSET),
            is_active=v.boolean("isActive", default=UNSET),
        )
        for key in ("sku", "name"):
            if getattr(patch, key) == "":
                v.add(key, f"{key} cannot be blank")
        v.raise_if_errors()
        return patch


class CatalogService:
    def __init__(self, session):
        self.session = session

    # =========================================================================
    # READS
    # =========================================================================

    def get_product(self, product_id: int) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise NotFound(f"Product {product_id} not found")
        return product

    def list_products(self, *, search: str | None = None, category_id: int | None = None,
                      active_only: bool = False, low_stock: bool = False,
                      page: int = 1, limit: int = 50) -> tuple[list[Product], int]:
        query = select(Product)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.barcode.ilike(pattern),
            ))
        if category_id is not None:
            query = query.where(Product.category_id == category_id)
        if active_only:
            query = query.where(Product.is_active.is_(True))
        if low_stock:
            query = query.where(Product.stock_quantity <= Product.min_stock_level)

        total = self.session.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()
        rows = self.session.execute(
            query.order_by(Product.name.asc(), Product.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return list(rows), total

    def get_price_snapshot(self, product_id: int) -> PriceSnapshot:
        """Current price and tax rate; inactive products are not for sale."""
        product = self.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFound(f"Product {product_id} not found")
        return PriceSnapshot(
            product_id=product.id,
            name=product.name,
            unit_price=Decimal(product.unit_price),
            tax_rate=Decimal(product.tax_rate),
        )

    # =========================================================================
    # STOCK MOVES (no commit)
    # =========================================================================

    def reserve_stock(self, product_id: int, quantity: int) -> None:
        """Decrement stock if and only if enough is on hand."""
        if quantity <= 0:
            raise InvalidQuantity("quantity must be greater than 0", field="quantity")

        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
        )
        if result.rowcount == 1:
            return

        available = self.session.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        ).scalar_one_or_none()
        if available is None:
            raise NotFound(f"Product {product_id} not found")
        raise InsufficientStock(product_id, quantity, available)

    def release_stock(self, product_id: int, quantity: int) -> None:
        if quantity <= 0:
            raise InvalidQuantity("quantity must be greater than 0", field="quantity")

        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity)
        )
        if result.rowcount != 1:
            raise NotFound(f"Product {product_id} not found")

    # =========================================================================
    # WRITES
    # =========================================================================

    def create_product(self, payload, *, actor_id: int | None = None) -> Product:
        v = PayloadValidator(payload)
        sku = v.string("sku", required=True, max_length=64)
        name = v.string("name", required=True, max_length=255)
        unit_price = v.money("unitPrice", required=True, positive=True)
        cost_price = v.money("costPrice")
        tax_rate = v.percentage("taxRate", default=Decimal("0"))
        stock = v.integer("stockQuantity", minimum=0, maximum=MAX_QUANTITY, nullable=False, default=0)
        min_stock = v.integer("minStockLevel", minimum=0, maximum=MAX_QUANTITY, nullable=False, default=0)
        category_id = v.integer("categoryId")
        barcode = v.string("barcode", max_length=64)
        description = v.string("description")
        unit = v.string("unit", max_length=16, nullable=False, default="pcs")
        v.raise_if_errors()

        if category_id is not None:
            self._require_category(category_id)
        self._require_unique_sku(sku)

        with unit_of_work(self.session):
            product = Product(
                sku=sku,
                name=name,
                description=description,
                barcode=barcode or None,
                category_id=category_id,
                unit_price=unit_price,
                cost_price=cost_price,
                tax_rate=tax_rate,
                unit=unit,
                stock_quantity=stock,
                min_stock_level=min_stock,
                is_active=True,
            )
            self.session.add(product)
            try:
                self.session.flush()
            except IntegrityError:
                raise ConflictError("Product with this SKU or barcode already exists", field="sku")

            # Opening balance so the ledger reconciles from the first row
            if stock > 0:
                append_transaction(
                    self.session,
                    product_id=product.id,
                    transaction_type=TX_ADJUSTMENT,
                    quantity=stock,
                    reference_type=REF_PRODUCT,
                    reference_id=product.id,
                    notes="Opening stock",
                    created_by=actor_id,
                )
        return product

    def update_product(self, product_id: int, patch: ProductPatch) -> Product:
        product = self.get_product(product_id)
        changes = patch.changes()
        if "sku" in changes and changes["sku"] != product.sku:
            self._require_unique_sku(changes["sku"])
        if changes.get("category_id") is not None:
            self._require_category(changes["category_id"])
        if "barcode" in changes and not changes["barcode"]:
            patch.barcode = None

        with unit_of_work(self.session):
            patch.apply_to(product)
            try:
                self.session.flush()
            except IntegrityError:
                raise ConflictError("Product with this SKU or barcode already exists", field="sku")
        return product

    def delete_product(self, product_id: int) -> bool:
        """
        Remove a product nothing refers to. Once a sale line or a ledger row
        names it, the product is deactivated instead. True if removed.
        """
        product = self.get_product(product_id)
        referenced = self.session.execute(select(or_(
            exists().where(SaleItem.product_id == product_id),
            exists().where(InventoryTransaction.product_id == product_id),
        ))).scalar()
        with unit_of_work(self.session):
            if referenced:
                product.is_active = False
            else:
                self.session.delete(product)
        return not referenced

    def _require_unique_sku(self, sku: str) -> None:
        exists = self.session.execute(select(Product.id).where(Product.sku == sku)).first()
        if exists:
            raise ConflictError("Product with this SKU already exists", field="sku")

    def _require_category(self, category_id: int) -> None:
        if self.session.get(Category, category_id) is None:
            raise ValidationError(f"Category {category_id} not found", field="categoryId")
