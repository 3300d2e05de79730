# Overview: Pytest coverage for categories, products and customers.

import pytest

from billing.errors import ConflictError, ValidationError
from billing.models import InventoryTransaction
from billing.services.category_service import CategoryArena, CategoryService


class TestCategoryService:
    def test_tree_nests_children_sorted_by_name(self, db_session):
        service = CategoryService(db_session)
        drinks = service.create({"name": "Drinks"})
        service.create({"name": "Tea", "parentId": drinks.id})
        service.create({"name": "Coffee", "parentId": drinks.id})
        service.create({"name": "Bakery"})

        tree = service.tree()
        assert [node["name"] for node in tree] == ["Bakery", "Drinks"]
        assert [node["name"] for node in tree[1]["children"]] == ["Coffee", "Tea"]

    def test_reparent_under_descendant_rejected(self, db_session):
        service = CategoryService(db_session)
        a = service.create({"name": "A"})
        b = service.create({"name": "B", "parentId": a.id})
        c = service.create({"name": "C", "parentId": b.id})

        with pytest.raises(ValidationError) as exc:
            service.update(a.id, {"parentId": c.id})
        assert exc.value.errors[0]["field"] == "parentId"

        with pytest.raises(ValidationError):
            service.update(a.id, {"parentId": a.id})

    def test_move_to_root_is_allowed(self, db_session):
        service = CategoryService(db_session)
        a = service.create({"name": "A"})
        b = service.create({"name": "B", "parentId": a.id})
        assert service.update(b.id, {"parentId": None}).parent_id is None

    def test_duplicate_root_name_conflicts(self, db_session):
        service = CategoryService(db_session)
        service.create({"name": "Snacks"})
        with pytest.raises(ConflictError):
            service.create({"name": "Snacks"})

    def test_same_name_under_different_parents(self, db_session):
        service = CategoryService(db_session)
        a = service.create({"name": "A"})
        b = service.create({"name": "B"})
        service.create({"name": "Misc", "parentId": a.id})
        assert service.create({"name": "Misc", "parentId": b.id}).parent_id == b.id

    def test_arena_descendants(self, db_session):
        service = CategoryService(db_session)
        a = service.create({"name": "A"})
        b = service.create({"name": "B", "parentId": a.id})
        c = service.create({"name": "C", "parentId": b.id})
        arena = CategoryArena(service.list_flat())
        assert arena.descendants(a.id) == {b.id, c.id}
        assert arena.descendants(c.id) == set()


class TestCategoryRoutes:
    def test_create_requires_auth(self, client, db_session):
        assert client.post("/api/v1/categories", json={"name": "X"}).status_code == 401

    def test_create_and_read(self, client, admin_headers):
        resp = client.post("/api/v1/categories", json={"name": "Dairy"}, headers=admin_headers)
        assert resp.status_code == 201
        category_id = resp.get_json()["data"]["id"]

        assert client.get(f"/api/v1/categories/{category_id}").get_json()["data"]["name"] == "Dairy"
        assert [c["name"] for c in client.get("/api/v1/categories/flat").get_json()["data"]] == ["Dairy"]
        assert client.get("/api/v1/categories").get_json()["data"][0]["children"] == []

    def test_cycle_is_400(self, client, admin_headers):
        parent = client.post("/api/v1/categories", json={"name": "P"}, headers=admin_headers).get_json()["data"]
        child = client.post("/api/v1/categories", json={"name": "C", "parentId": parent["id"]},
                            headers=admin_headers).get_json()["data"]

        resp = client.put(f"/api/v1/categories/{parent['id']}", json={"parentId": child["id"]},
                          headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "parentId"


class TestProducts:
    def test_opening_stock_is_on_the_ledger(self, db_session, product):
        rows = db_session.query(InventoryTransaction).filter_by(product_id=product.id).all()
        assert [(r.transaction_type, r.quantity) for r in rows] == [("adjustment", 10)]

    def test_create_requires_manager(self, client, cashier_headers):
        resp = client.post("/api/v1/products", headers=cashier_headers, json={
            "sku": "X-1", "name": "X", "unitPrice": "5",
        })
        assert resp.status_code == 403

    def test_create_and_duplicate_sku(self, client, admin_headers):
        body = {"sku": "MILK-1L", "name": "Milk 1L", "unitPrice": "1.20", "taxRate": "5", "stockQuantity": 24}
        resp = client.post("/api/v1/products", headers=admin_headers, json=body)
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["unitPrice"] == "1.20"
        assert data["stockQuantity"] == 24

        assert client.post("/api/v1/products", headers=admin_headers, json=body).status_code == 409

    def test_create_validates_fields(self, client, admin_headers):
        resp = client.post("/api/v1/products", headers=admin_headers, json={
            "sku": "B-1", "name": "Bad", "unitPrice": "0", "taxRate": "120",
        })
        assert resp.status_code == 400
        fields = {e["field"] for e in resp.get_json()["errors"]}
        assert fields == {"unitPrice", "taxRate"}

    def test_update_cannot_touch_stock(self, client, admin_headers, product):
        resp = client.put(f"/api/v1/products/{product.id}", headers=admin_headers, json={"stockQuantity": 99})
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "stockQuantity"

    def test_update_price(self, client, admin_headers, product):
        resp = client.put(f"/api/v1/products/{product.id}", headers=admin_headers, json={"unitPrice": "120.50"})
        assert resp.status_code == 200
        assert resp.get_json()["data"]["unitPrice"] == "120.50"

    def test_list_filters(self, client, db_session, make_product):
        make_product(name="Green Tea", minStockLevel=20)
        make_product(name="Black Coffee")

        found = client.get("/api/v1/products?search=tea").get_json()
        assert [p["name"] for p in found["data"]] == ["Green Tea"]
        assert found["pagination"]["limit"] == 50

        low = client.get("/api/v1/products?lowStock=true").get_json()["data"]
        assert [p["name"] for p in low] == ["Green Tea"]

    def test_unknown_product_404(self, client, db_session):
        assert client.get("/api/v1/products/4242").status_code == 404


class TestCustomers:
    def test_create_anonymously(self, client, db_session):
        resp = client.post("/api/v1/customers", json={"firstName": "Ravi", "email": "ravi@example.com"})
        assert resp.status_code == 201
        assert resp.get_json()["data"]["firstName"] == "Ravi"

    def test_duplicate_email_conflicts(self, client, customer):
        resp = client.post("/api/v1/customers", json={"firstName": "Other", "email": "asha@example.com"})
        assert resp.status_code == 409

    def test_invalid_email(self, client, db_session):
        resp = client.post("/api/v1/customers", json={"firstName": "X", "email": "nope"})
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "email"

    def test_detail_lists_customer_sales(self, client, customer, product):
        client.post("/api/v1/sales", json={
            "customerId": customer.id,
            "items": [{"productId": product.id, "quantity": 1}],
        })
        data = client.get(f"/api/v1/customers/{customer.id}").get_json()["data"]
        assert data["firstName"] == "Asha"
        assert [s["totalAmount"] for s in data["sales"]] == ["110.00"]

    def test_search(self, client, customer):
        found = client.get("/api/v1/customers?search=rao").get_json()["data"]
        assert [c["id"] for c in found] == [customer.id]
        assert client.get("/api/v1/customers?search=zzz").get_json()["data"] == []

    def test_customer_sales_endpoint(self, client, customer, product):
        client.post("/api/v1/sales", json={
            "customerId": customer.id,
            "items": [{"productId": product.id, "quantity": 2}],
        })
        body = client.get(f"/api/v1/customers/{customer.id}/sales").get_json()
        assert [s["totalAmount"] for s in body["data"]] == ["220.00"]
        assert body["pagination"]["total"] == 1

        assert client.get("/api/v1/customers/999/sales").status_code == 404


class TestCustomerMaintenance:
    def test_update_requires_auth(self, client, customer):
        assert client.put(f"/api/v1/customers/{customer.id}", json={"phone": "1"}).status_code == 401

    def test_update_fields(self, client, admin_headers, customer):
        resp = client.put(f"/api/v1/customers/{customer.id}", headers=admin_headers, json={
            "phone": "9000000000", "lastName": "",
        })
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["phone"] == "9000000000"
        assert data["lastName"] is None
        assert data["firstName"] == "Asha"

    def test_update_to_taken_email_conflicts(self, client, admin_headers, customer):
        other = client.post("/api/v1/customers", json={"firstName": "Ben", "email": "ben@example.com"})
        resp = client.put(f"/api/v1/customers/{other.get_json()['data']['id']}", headers=admin_headers,
                          json={"email": "asha@example.com"})
        assert resp.status_code == 409

    def test_update_rejects_bad_email(self, client, admin_headers, customer):
        resp = client.put(f"/api/v1/customers/{customer.id}", headers=admin_headers, json={"email": "nope"})
        assert resp.status_code == 400
        assert resp.get_json()["errors"][0]["field"] == "email"

    def test_delete_without_sales_removes_row(self, client, admin_headers, customer):
        resp = client.delete(f"/api/v1/customers/{customer.id}", headers=admin_headers)
        assert resp.get_json()["deleted"] is True
        assert client.get(f"/api/v1/customers/{customer.id}").status_code == 404

    def test_delete_with_sales_deactivates(self, client, admin_headers, customer, product):
        client.post("/api/v1/sales", json={
            "customerId": customer.id,
            "items": [{"productId": product.id, "quantity": 1}],
        })
        resp = client.delete(f"/api/v1/customers/{customer.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["deleted"] is False

        assert client.get("/api/v1/customers").get_json()["data"] == []
        listed = client.get("/api/v1/customers?includeInactive=true").get_json()["data"]
        assert [(c["id"], c["isActive"]) for c in listed] == [(customer.id, False)]

        again = client.post("/api/v1/sales", json={
            "customerId": customer.id,
            "items": [{"productId": product.id, "quantity": 1}],
        })
        assert again.status_code == 400
        assert again.get_json()["errors"][0]["field"] == "customerId"

    def test_delete_requires_manager(self, client, cashier_headers, customer):
        assert client.delete(f"/api/v1/customers/{customer.id}", headers=cashier_headers).status_code == 403


class TestCatalogDeletes:
    def test_product_with_history_is_deactivated(self, client, admin_headers, product):
        resp = client.delete(f"/api/v1/products/{product.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["deleted"] is False
        assert client.get(f"/api/v1/products/{product.id}").get_json()["data"]["isActive"] is False

        sale = client.post("/api/v1/sales", json={"items": [{"productId": product.id, "quantity": 1}]})
        assert sale.status_code == 404

    def test_product_without_history_is_removed(self, client, admin_headers, make_product):
        fresh = make_product(stockQuantity=0)
        resp = client.delete(f"/api/v1/products/{fresh.id}", headers=admin_headers)
        assert resp.get_json()["deleted"] is True
        assert client.get(f"/api/v1/products/{fresh.id}").status_code == 404

    def test_product_delete_requires_manager(self, client, cashier_headers, product):
        assert client.delete(f"/api/v1/products/{product.id}", headers=cashier_headers).status_code == 403

    def test_products_low_stock_endpoint(self, client, make_product):
        make_product(name="Nearly gone", stockQuantity=1, minStockLevel=3)
        make_product(name="Plenty", stockQuantity=50, minStockLevel=3)
        data = client.get("/api/v1/products/low-stock").get_json()["data"]
        assert [p["name"] for p in data] == ["Nearly gone"]

    def test_leaf_category_deleted(self, client, admin_headers):
        created = client.post("/api/v1/categories", json={"name": "Seasonal"}, headers=admin_headers)
        category_id = created.get_json()["data"]["id"]
        assert client.delete(f"/api/v1/categories/{category_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/v1/categories/{category_id}").status_code == 404

    def test_category_with_children_or_products_kept(self, client, admin_headers, make_product):
        parent = client.post("/api/v1/categories", json={"name": "Drinks"}, headers=admin_headers).get_json()["data"]
        child = client.post("/api/v1/categories", json={"name": "Tea", "parentId": parent["id"]},
                            headers=admin_headers).get_json()["data"]
        make_product(categoryId=child["id"])

        assert client.delete(f"/api/v1/categories/{parent['id']}", headers=admin_headers).status_code == 409
        assert client.delete(f"/api/v1/categories/{child['id']}", headers=admin_headers).status_code == 409
