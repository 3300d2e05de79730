# Overview: Pytest coverage for cancellation, partial returns and payment recording.

from decimal import Decimal

import pytest

from billing.errors import (
    AlreadyCancelled,
    ConflictError,
    InvalidItem,
    InvalidQuantity,
    OverReturn,
    ValidationError,
)
from billing.models import Discount, Payment, Product, Sale
from billing.models.sales import PAYMENT_REVERSED
from billing.services.inventory_service import InventoryService, returned_quantities
from billing.services.payment_service import PaymentService, derive_payment_status
from billing.services.return_service import (
    ReturnLine,
    ReturnRequest,
    ReturnService,
    allocate_order_discount,
    returned_value,
)
from billing.services.sale_builder import CartItem, PaymentRequest, SaleRequest
from billing.services.sale_coordinator import TransactionCoordinator


def _sell(db_session, product, quantity, *, pay=None, **kwargs):
    payment = PaymentRequest(amount=Decimal(pay), payment_method="cash") if pay else None
    request = SaleRequest(
        items=(CartItem(product_id=product.id, quantity=quantity),),
        payment=payment,
        **kwargs,
    )
    return TransactionCoordinator(db_session).create_sale(request, actor_id=None)


def _return(item, quantity, method="cash"):
    return ReturnRequest(lines=(ReturnLine(sale_item_id=item.id, quantity=quantity),), refund_method=method)


def _stock(db_session, product_id):
    db_session.expire_all()
    return db_session.get(Product, product_id).stock_quantity


class TestHelpers:
    def test_derive_payment_status(self):
        assert derive_payment_status(Decimal("0"), Decimal("10")) == "pending"
        assert derive_payment_status(Decimal("4"), Decimal("10")) == "partial"
        assert derive_payment_status(Decimal("10"), Decimal("10")) == "paid"
        assert derive_payment_status(Decimal("0"), Decimal("0")) == "paid"

    def test_returned_value_is_exact_at_full_quantity(self):
        net = Decimal("100.00")
        parts = [returned_value(net, 3, n) - returned_value(net, 3, n - 1) for n in (1, 2, 3)]
        assert sum(parts) == net
        assert parts == [Decimal("33.33"), Decimal("33.34"), Decimal("33.33")]

    def test_order_discount_shares_sum_exactly(self):
        class Item:
            def __init__(self, id, line_subtotal):
                self.id = id
                self.line_subtotal = line_subtotal

        items = [Item(1, Decimal("100.00")), Item(2, Decimal("100.00")), Item(3, Decimal("100.00"))]
        shares = allocate_order_discount(items, Decimal("10.00"))
        assert sum(shares.values()) == Decimal("10.00")
        assert shares[3] == Decimal("3.34")


class TestCancelSale:
    def test_cancel_restores_stock_and_reverses_payments(self, db_session, product):
        sale = _sell(db_session, product, 3, pay="100")
        assert _stock(db_session, product.id) == 7

        cancelled = ReturnService(db_session).cancel(sale.id, actor_id=None)

        assert cancelled.payment_status == "cancelled"
        assert cancelled.cancelled_at is not None
        assert _stock(db_session, product.id) == 10
        assert [p.status for p in db_session.query(Payment).filter_by(sale_id=sale.id)] == [PAYMENT_REVERSED]
        assert InventoryService(db_session).reconcile() == []

    def test_cancel_twice_raises(self, db_session, product):
        sale = _sell(db_session, product, 2)
        service = ReturnService(db_session)
        service.cancel(sale.id, actor_id=None)

        with pytest.raises(AlreadyCancelled):
            service.cancel(sale.id, actor_id=None)
        assert _stock(db_session, product.id) == 10

    def test_cancel_keeps_discount_use(self, db_session, product, make_discount):
        discount = make_discount(usage_limit=5)
        sale = _sell(db_session, product, 1, discount_code="SAVE10")
        ReturnService(db_session).cancel(sale.id, actor_id=None)
        assert db_session.get(Discount, discount.id).used_count == 1

    def test_cancel_after_partial_return_restores_only_remainder(self, db_session, product):
        sale = _sell(db_session, product, 3)
        service = ReturnService(db_session)
        service.process_return(sale.id, _return(sale.items[0], 1), actor_id=None)
        assert _stock(db_session, product.id) == 8

        service.cancel(sale.id, actor_id=None)
        assert _stock(db_session, product.id) == 10
        assert InventoryService(db_session).reconcile() == []

    def test_payment_on_cancelled_sale_rejected(self, db_session, product):
        sale = _sell(db_session, product, 1)
        ReturnService(db_session).cancel(sale.id, actor_id=None)
        with pytest.raises(ConflictError):
            PaymentService(db_session).add_payment(sale.id, amount=Decimal("10"), payment_method="cash")


class TestPartialReturn:
    def test_return_on_paid_sale_refunds_cash(self, db_session, product):
        sale = _sell(db_session, product, 3, pay="330")

        sale_return = ReturnService(db_session).process_return(
            sale.id, _return(sale.items[0], 1), actor_id=None
        )

        assert sale_return.refund_amount == Decimal("110.00")
        assert sale_return.cash_refunded == Decimal("110.00")
        db_session.expire_all()
        sale = db_session.get(Sale, sale.id)
        assert sale.refunded_amount == Decimal("110.00")
        assert sale.amount_paid == Decimal("220.00")
        assert sale.payment_status == "paid"
        refund = [p for p in sale.payments if p.is_refund]
        assert [(p.amount, p.return_id) for p in refund] == [(Decimal("-110.00"), sale_return.id)]
        assert _stock(db_session, product.id) == 8

    def test_return_on_unpaid_sale_reduces_amount_due(self, db_session, product):
        sale = _sell(db_session, product, 2)
        sale_return = ReturnService(db_session).process_return(
            sale.id, _return(sale.items[0], 1), actor_id=None
        )
        assert sale_return.cash_refunded == Decimal("0.00")
        db_session.expire_all()
        sale = db_session.get(Sale, sale.id)
        assert sale.amount_due == Decimal("110.00")
        assert sale.payment_status == "pending"
        assert not [p for p in sale.payments if p.is_refund]

    def test_full_return_refunds_exactly_the_discounted_total(self, db_session, product, make_discount):
        make_discount(value=Decimal("10"), max_discount_amount=Decimal("20"))
        sale = _sell(db_session, product, 3, pay="310", discount_code="SAVE10")
        service = ReturnService(db_session)
        item = sale.items[0]

        service.process_return(sale.id, _return(item, 1), actor_id=None)
        service.process_return(sale.id, _return(item, 2), actor_id=None)

        db_session.expire_all()
        sale = db_session.get(Sale, sale.id)
        assert sale.refunded_amount == Decimal("310.00")
        assert sale.amount_paid == Decimal("0.00")
        assert _stock(db_session, product.id) == 10
        assert InventoryService(db_session).reconcile() == []

    def test_over_return_rejected(self, db_session, product):
        sale = _sell(db_session, product, 3)
        service = ReturnService(db_session)
        item = sale.items[0]
        service.process_return(sale.id, _return(item, 2), actor_id=None)

        with pytest.raises(OverReturn):
            service.process_return(sale.id, _return(item, 2), actor_id=None)
        assert returned_quantities(db_session, [item.id]) == {item.id: 2}
        assert _stock(db_session, product.id) == 9
        assert InventoryService(db_session).reconcile() == []

    def test_duplicate_lines_are_merged_for_over_return_check(self, db_session, product):
        sale = _sell(db_session, product, 3)
        item = sale.items[0]
        request = ReturnRequest(
            lines=(ReturnLine(item.id, 2), ReturnLine(item.id, 2)),
            refund_method="cash",
        )
        with pytest.raises(OverReturn):
            ReturnService(db_session).process_return(sale.id, request, actor_id=None)
        assert _stock(db_session, product.id) == 7

    def test_foreign_item_rejected(self, db_session, make_product):
        a = make_product()
        b = make_product()
        sale_a = _sell(db_session, a, 1)
        sale_b = _sell(db_session, b, 1)
        with pytest.raises(InvalidItem):
            ReturnService(db_session).process_return(sale_a.id, _return(sale_b.items[0], 1), actor_id=None)

    def test_zero_quantity_rejected(self, db_session, product):
        sale = _sell(db_session, product, 1)
        with pytest.raises(InvalidQuantity):
            ReturnService(db_session).process_return(sale.id, _return(sale.items[0], 0), actor_id=None)

    def test_return_from_cancelled_sale_rejected(self, db_session, product):
        sale = _sell(db_session, product, 2)
        service = ReturnService(db_session)
        service.cancel(sale.id, actor_id=None)
        with pytest.raises(ConflictError):
            service.process_return(sale.id, _return(sale.items[0], 1), actor_id=None)

    def test_return_request_from_payload(self):
        request = ReturnRequest.from_payload({
            "items": [{"saleItemId": 7, "quantity": 1}],
            "refundMethod": "upi",
            "notes": "Damaged",
        })
        assert request.lines == (ReturnLine(7, 1),)
        assert request.refund_method == "upi"

    def test_return_quantity_out_of_range(self):
        with pytest.raises(ValidationError) as exc:
            ReturnRequest.from_payload({
                "items": [{"saleItemId": 7, "quantity": 10**30}],
                "refundMethod": "cash",
            })
        assert exc.value.errors[0]["field"] == "items[0].quantity"


class TestPayments:
    def test_split_payments_reach_paid(self, db_session, product):
        sale = _sell(db_session, product, 1)
        service = PaymentService(db_session)

        service.add_payment(sale.id, amount=Decimal("60"), payment_method="cash")
        assert db_session.get(Sale, sale.id).payment_status == "partial"

        service.add_payment(sale.id, amount=Decimal("50"), payment_method="card", transaction_id="txn_1")
        sale = db_session.get(Sale, sale.id)
        assert sale.payment_status == "paid"
        assert sale.amount_paid == Decimal("110.00")
        assert [p.payment_method for p in service.list_for_sale(sale.id)] == ["cash", "card"]

    def test_overpayment_rejected(self, db_session, product):
        sale = _sell(db_session, product, 1, pay="100")
        with pytest.raises(ConflictError):
            PaymentService(db_session).add_payment(sale.id, amount=Decimal("10.01"), payment_method="cash")

    def test_payment_bumps_sale_version(self, db_session, product):
        sale = _sell(db_session, product, 1)
        before = sale.version_id
        PaymentService(db_session).add_payment(sale.id, amount=Decimal("1"), payment_method="cash")
        db_session.expire_all()
        assert db_session.get(Sale, sale.id).version_id == before + 1
