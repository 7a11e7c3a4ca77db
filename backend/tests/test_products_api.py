"""
Product catalog API tests.

Verifies:
- Any authenticated user can read the catalog
- Create / update require admin or manager, delete requires admin
- Input validation, duplicate barcodes and deletion of sold products
"""

from marketpos.extensions import db
from marketpos.models import AuditLog


NEW_PRODUCT = {
    "name": "Milk 1L",
    "barcode": "3456789012345",
    "category": "Dairy",
    "price": "3.50",
    "stock": 30,
    "min_stock": 5,
    "expiry_date": "2030-02-10",
    "supplier": "Dairy Farm",
}


class TestProductReads:

    def test_list_and_search(self, client, cashier_headers, cola, bread):
        resp = client.get("/api/products", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 2

        resp = client.get("/api/products?search=bread", headers=cashier_headers)
        names = [p["name"] for p in resp.get_json()["products"]]
        assert names == ["White Bread"]

        resp = client.get("/api/products?category=Beverages", headers=cashier_headers)
        assert [p["id"] for p in resp.get_json()["products"]] == [cola.id]

    def test_low_stock_filter(self, client, cashier_headers, cola, bread):
        cola.stock = 3
        db.session.commit()
        resp = client.get("/api/products?low_stock=true", headers=cashier_headers)
        products = resp.get_json()["products"]
        assert [p["id"] for p in products] == [cola.id]
        assert products[0]["is_low_stock"] is True

    def test_get_by_id_and_barcode(self, client, cashier_headers, cola):
        resp = client.get(f"/api/products/{cola.id}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["product"]["price"] == "1.50"

        resp = client.get("/api/products/barcode/1234567890123", headers=cashier_headers)
        assert resp.get_json()["product"]["id"] == cola.id

        assert client.get("/api/products/999", headers=cashier_headers).status_code == 404
        assert client.get("/api/products/barcode/000", headers=cashier_headers).status_code == 404


class TestProductWrites:

    def test_manager_creates_product(self, client, manager_headers, manager_user):
        resp = client.post("/api/products", json=NEW_PRODUCT, headers=manager_headers)
        assert resp.status_code == 201
        product = resp.get_json()["product"]
        assert product["price"] == "3.50"
        assert product["expiry_date"] == "2030-02-10"

        entry = db.session.query(AuditLog).filter_by(action="CREATE_PRODUCT").one()
        assert entry.user_id == manager_user.id
        assert entry.record_id == product["id"]

    def test_cashier_cannot_create(self, client, cashier_headers):
        resp = client.post("/api/products", json=NEW_PRODUCT, headers=cashier_headers)
        assert resp.status_code == 403

    def test_duplicate_barcode(self, client, admin_headers, cola):
        payload = dict(NEW_PRODUCT, barcode=cola.barcode)
        resp = client.post("/api/products", json=payload, headers=admin_headers)
        assert resp.status_code == 409

    def test_validation_errors(self, client, admin_headers):
        for bad in (
            dict(NEW_PRODUCT, price="1.234"),
            dict(NEW_PRODUCT, price="-1"),
            dict(NEW_PRODUCT, stock=-5),
            dict(NEW_PRODUCT, stock=2.5),
            dict(NEW_PRODUCT, name=""),
            dict(NEW_PRODUCT, expiry_date="tomorrow"),
            dict(NEW_PRODUCT, owner="me"),
            {k: v for k, v in NEW_PRODUCT.items() if k != "category"},
        ):
            resp = client.post("/api/products", json=bad, headers=admin_headers)
            assert resp.status_code == 400, bad

    def test_update_product(self, client, manager_headers, cola):
        resp = client.put(
            f"/api/products/{cola.id}",
            json={"price": "1.75", "stock": 80},
            headers=manager_headers,
        )
        assert resp.status_code == 200
        product = resp.get_json()["product"]
        assert product["price"] == "1.75"
        assert product["stock"] == 80

        entry = db.session.query(AuditLog).filter_by(action="UPDATE_PRODUCT").one()
        assert entry.to_dict()["old_values"]["price"] == "1.50"
        assert entry.to_dict()["new_values"]["price"] == "1.75"

    def test_barcode_is_not_updatable(self, client, manager_headers, cola):
        resp = client.put(f"/api/products/{cola.id}", json={"barcode": "999"}, headers=manager_headers)
        assert resp.status_code == 400

    def test_update_missing(self, client, manager_headers):
        resp = client.put("/api/products/999", json={"stock": 1}, headers=manager_headers)
        assert resp.status_code == 404

    def test_delete_requires_admin(self, client, manager_headers, admin_headers, cola):
        assert client.delete(f"/api/products/{cola.id}", headers=manager_headers).status_code == 403
        assert client.delete(f"/api/products/{cola.id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/products/{cola.id}", headers=admin_headers).status_code == 404

    def test_cannot_delete_sold_product(self, client, admin_headers, cola):
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": cola.id, "quantity": 1}], "payment_method": "cash"},
            headers=admin_headers,
        )
        assert resp.status_code == 201

        resp = client.delete(f"/api/products/{cola.id}", headers=admin_headers)
        assert resp.status_code == 409
