# Overview: Threaded commits against a file-backed database.

"""
Concurrent sale commits.

Each worker gets its own app context (and so its own session and
connection) on a shared SQLite file. The conditional stock and
discount-usage UPDATEs must hold no matter how the commits interleave.
"""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from billing import create_app
from billing.errors import DiscountRejected, DiscountUsageExceeded, InsufficientStock
from billing.extensions import db
from billing.models import Discount, Product, Sale
from billing.services.catalog_service import CatalogService
from billing.services.inventory_service import InventoryService
from billing.services.sale_builder import CartItem, SaleRequest
from billing.services.sale_coordinator import TransactionCoordinator
from billing.time_utils import today


WORKERS = 6


@pytest.fixture(scope='function')
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30}},
        'BCRYPT_ROUNDS': 4,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _seed_product(app, stock):
    with app.app_context():
        product = CatalogService(db.session).create_product({
            "sku": "LAST-1", "name": "Last one", "unitPrice": "50.00", "stockQuantity": stock,
        })
        return product.id


def _seed_discount(app):
    with app.app_context():
        discount = Discount(
            code="ONCE", name="Single use", discount_type="percentage", value=Decimal("10"),
            min_purchase_amount=Decimal("0"), start_date=today() - timedelta(days=1),
            end_date=today() + timedelta(days=1), usage_limit=1, used_count=0, is_active=True,
        )
        db.session.add(discount)
        db.session.commit()
        return discount.id


def _run_concurrently(app, request):
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(WORKERS)

    def worker():
        with app.app_context():
            try:
                barrier.wait()
                sale = TransactionCoordinator(db.session).create_sale(request, actor_id=None)
                with lock:
                    results.append(sale.invoice_number)
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_single_use_discount_consumed_once(file_app):
    product_id = _seed_product(file_app, stock=20)
    discount_id = _seed_discount(file_app)
    request = SaleRequest(items=(CartItem(product_id=product_id, quantity=1),), discount_code="ONCE")

    results = _run_concurrently(file_app, request)

    invoices = [r for r in results if isinstance(r, str)]
    failures = [r for r in results if not isinstance(r, str)]
    assert len(invoices) == 1
    assert all(isinstance(f, (DiscountUsageExceeded, DiscountRejected, OperationalError)) for f in failures)

    with file_app.app_context():
        assert db.session.get(Discount, discount_id).used_count == 1
        assert db.session.get(Product, product_id).stock_quantity == 19
        assert db.session.query(Sale).count() == 1
        assert InventoryService(db.session).reconcile() == []


def test_last_unit_sold_once(file_app):
    product_id = _seed_product(file_app, stock=1)
    request = SaleRequest(items=(CartItem(product_id=product_id, quantity=1),))

    results = _run_concurrently(file_app, request)

    invoices = [r for r in results if isinstance(r, str)]
    failures = [r for r in results if not isinstance(r, str)]
    assert len(invoices) == 1
    assert all(isinstance(f, (InsufficientStock, OperationalError)) for f in failures)

    with file_app.app_context():
        assert db.session.get(Product, product_id).stock_quantity == 0
        assert db.session.query(Sale).count() == 1
        assert InventoryService(db.session).reconcile() == []
