# Overview: Pytest coverage for the discount evaluator, discount CRUD and the preview endpoint.

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from billing.errors import DiscountUsageExceeded, ValidationError
from billing.models import Discount
from billing.services.discount_service import (
    DiscountPatch,
    DiscountService,
    RejectionReason,
    evaluate_discount,
)


def _discount(**overrides):
    fields = {
        "code": "X",
        "name": "X",
        "discount_type": "percentage",
        "value": Decimal("10"),
        "min_purchase_amount": Decimal("0"),
        "max_discount_amount": None,
        "start_date": date(2026, 1, 1),
        "end_date": date(2026, 12, 31),
        "usage_limit": None,
        "used_count": 0,
        "is_active": True,
    }
    fields.update(overrides)
    return Discount(**fields)


NOW = datetime(2026, 6, 15, 12, 0)


class TestEvaluateDiscount:
    def test_percentage_capped_by_max(self):
        d = _discount(value=Decimal("10"), max_discount_amount=Decimal("20"))
        result = evaluate_discount(d, Decimal("300.00"), NOW)
        assert result.applied
        assert result.discount_amount == Decimal("20.00")

    def test_percentage_without_cap(self):
        result = evaluate_discount(_discount(value=Decimal("15")), Decimal("200.00"), NOW)
        assert result.discount_amount == Decimal("30.00")

    def test_fixed_never_exceeds_purchase(self):
        d = _discount(discount_type="fixed", value=Decimal("500"))
        result = evaluate_discount(d, Decimal("120.00"), NOW)
        assert result.discount_amount == Decimal("120.00")

    def test_inactive_checked_first(self):
        d = _discount(is_active=False, end_date=date(2020, 1, 1))
        assert evaluate_discount(d, Decimal("100"), NOW).reason is RejectionReason.INACTIVE

    def test_not_started(self):
        d = _discount(start_date=date(2026, 6, 16))
        assert evaluate_discount(d, Decimal("100"), NOW).reason is RejectionReason.NOT_STARTED

    def test_expired(self):
        d = _discount(end_date=date(2026, 6, 14))
        assert evaluate_discount(d, Decimal("100"), NOW).reason is RejectionReason.EXPIRED

    def test_window_is_inclusive_by_calendar_date(self):
        d = _discount(start_date=date(2026, 6, 15), end_date=date(2026, 6, 15))
        late = datetime(2026, 6, 15, 23, 59, 59)
        assert evaluate_discount(d, Decimal("100"), late).applied
        assert evaluate_discount(d, Decimal("100"), date(2026, 6, 15)).applied

    def test_below_minimum(self):
        d = _discount(min_purchase_amount=Decimal("500"))
        result = evaluate_discount(d, Decimal("499.99"), NOW)
        assert result.reason is RejectionReason.BELOW_MINIMUM
        assert result.discount_amount is None

    def test_limit_reached(self):
        d = _discount(usage_limit=3, used_count=3)
        assert evaluate_discount(d, Decimal("100"), NOW).reason is RejectionReason.LIMIT_REACHED

    def test_limit_skipped_for_held_use(self):
        d = _discount(usage_limit=1, used_count=1)
        assert evaluate_discount(d, Decimal("100"), NOW, check_usage=False).applied

    def test_evaluation_is_pure(self):
        d = _discount(usage_limit=5, used_count=2)
        first = evaluate_discount(d, Decimal("100"), NOW)
        second = evaluate_discount(d, Decimal("100"), NOW)
        assert first == second
        assert d.used_count == 2


class TestDiscountPatch:
    def test_code_uppercased(self):
        patch = DiscountPatch.from_payload(
            {"code": "summer", "name": "Summer", "type": "fixed", "value": "50"}, creating=True
        )
        assert patch.code == "SUMMER"

    def test_percentage_over_100_rejected(self):
        with pytest.raises(ValidationError) as exc:
            DiscountPatch.from_payload({"name": "Bad", "type": "percentage", "value": "150"}, creating=True)
        assert exc.value.errors[0]["field"] == "value"

    def test_creating_requires_name_type_value(self):
        with pytest.raises(ValidationError) as exc:
            DiscountPatch.from_payload({}, creating=True)
        fields = {e["field"] for e in exc.value.errors}
        assert {"name", "type", "value"} <= fields

    def test_update_only_carries_supplied_fields(self):
        patch = DiscountPatch.from_payload({"isActive": False})
        assert patch.changes() == {"is_active": False}


class TestDiscountService:
    def test_consume_usage_respects_limit(self, db_session, make_discount):
        discount = make_discount(usage_limit=1)
        service = DiscountService(db_session)

        service.consume_usage(discount.id)
        db_session.commit()
        with pytest.raises(DiscountUsageExceeded):
            service.consume_usage(discount.id)
        db_session.rollback()

        assert db_session.get(Discount, discount.id).used_count == 1

    def test_end_before_start_rejected(self, db_session):
        patch = DiscountPatch.from_payload({
            "name": "Backwards", "type": "fixed", "value": "5",
            "startDate": "2026-05-02", "endDate": "2026-05-01",
        }, creating=True)
        with pytest.raises(ValidationError):
            DiscountService(db_session).create(patch)

    def test_usage_limit_cannot_drop_below_used(self, db_session, make_discount):
        discount = make_discount(usage_limit=10, used_count=4)
        with pytest.raises(ValidationError):
            DiscountService(db_session).update(discount.id, DiscountPatch.from_payload({"usageLimit": 3}))

    def test_delete_referenced_discount_deactivates(self, db_session, client, product, make_discount):
        discount = make_discount()
        resp = client.post("/api/v1/sales", json={
            "items": [{"productId": product.id, "quantity": 1}],
            "discountCode": "SAVE10",
        })
        assert resp.status_code == 201

        assert DiscountService(db_session).delete(discount.id) is False
        assert db_session.get(Discount, discount.id).is_active is False

    def test_delete_unused_discount_removes_row(self, db_session, make_discount):
        discount = make_discount()
        discount_id = discount.id
        assert DiscountService(db_session).delete(discount_id) is True
        assert db_session.get(Discount, discount_id) is None


class TestDiscountRoutes:
    def test_apply_preview_never_changes_used_count(self, client, db_session, make_discount):
        discount = make_discount(value=Decimal("10"), max_discount_amount=Decimal("20"), usage_limit=1)

        bodies = []
        for _ in range(3):
            resp = client.post("/api/v1/discounts/apply", json={"code": "save10", "amount": "300"})
            assert resp.status_code == 200
            bodies.append(resp.get_json()["data"])

        assert bodies[0] == bodies[1] == bodies[2]
        assert bodies[0]["discountAmount"] == "20.00"
        assert bodies[0]["finalAmount"] == "280.00"
        db_session.expire_all()
        assert db_session.get(Discount, discount.id).used_count == 0

    def test_apply_reports_rejection_reason(self, client, db_session, make_discount):
        make_discount(min_purchase_amount=Decimal("1000"))
        resp = client.post("/api/v1/discounts/apply", json={"code": "SAVE10", "amount": "10"})
        assert resp.status_code == 400
        assert resp.get_json()["reason"] == "BelowMinimum"

    def test_apply_requires_amount(self, client, db_session, make_discount):
        make_discount()
        resp = client.post("/api/v1/discounts/apply", json={"code": "SAVE10"})
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "amount"

    def test_apply_rejects_out_of_range_amount(self, client, db_session, make_discount):
        make_discount()
        resp = client.post("/api/v1/discounts/apply", json={"code": "SAVE10", "amount": "1e30"})
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "amount"

    def test_apply_unknown_code(self, client, db_session):
        resp = client.post("/api/v1/discounts/apply", json={"code": "NOPE", "amount": "10"})
        assert resp.status_code == 404

    def test_create_requires_manager_role(self, client, cashier_headers):
        resp = client.post("/api/v1/discounts", headers=cashier_headers, json={
            "name": "Staff", "type": "fixed", "value": "5",
        })
        assert resp.status_code == 403

    def test_create_requires_auth(self, client, db_session):
        resp = client.post("/api/v1/discounts", json={"name": "Staff", "type": "fixed", "value": "5"})
        assert resp.status_code == 401

    def test_admin_creates_and_lists(self, client, admin_headers):
        resp = client.post("/api/v1/discounts", headers=admin_headers, json={
            "code": "flat50", "name": "Fifty off", "type": "fixed", "value": "50",
            "minPurchaseAmount": "200", "usageLimit": 5,
        })
        assert resp.status_code == 201
        created = resp.get_json()["data"]
        assert created["code"] == "FLAT50"
        assert created["usedCount"] == 0

        dup = client.post("/api/v1/discounts", headers=admin_headers, json={
            "code": "FLAT50", "name": "Again", "type": "fixed", "value": "5",
        })
        assert dup.status_code == 409

        listed = client.get("/api/v1/discounts").get_json()["data"]
        assert [d["code"] for d in listed] == ["FLAT50"]

    def test_update_discount(self, client, admin_headers, make_discount):
        discount = make_discount()
        resp = client.put(f"/api/v1/discounts/{discount.id}", headers=admin_headers, json={
            "endDate": (date.today() + timedelta(days=90)).isoformat(),
            "isActive": False,
        })
        assert resp.status_code == 200
        assert resp.get_json()["data"]["isActive"] is False
