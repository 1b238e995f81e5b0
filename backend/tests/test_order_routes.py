"""Order API tests through the HTTP layer."""

from fastapi.testclient import TestClient
from starlette.requests import Request

from grocery.core.errors import Unauthenticated
from grocery.core.rbac import Principal, UserRole
from grocery.db.session import get_db
from grocery.main import create_app
from grocery.models.audit import AuditLogEntry
from grocery.models.order import Order

from conftest import headers_for, make_courier

ADDRESS = "Springfield, ул. Ленина, дом 44"


def _fill_cart(client, headers, *lines):
    for product, qty in lines:
        response = client.post(
            "/api/cart/items", json={"product_id": product.id, "quantity": qty}, headers=headers
        )
        assert response.status_code == 201


class TestCreateOrderRoute:
    def test_requires_authentication(self, client):
        response = client.post("/api/orders", json={"delivery_address": ADDRESS})
        assert response.status_code == 401
        assert response.json()["code"] == "unauthenticated"

    def test_happy_path(self, client, customer_headers, courier, product_a, product_b):
        _fill_cart(client, customer_headers, (product_a, 3), (product_b, 2))

        response = client.post(
            "/api/orders", json={"delivery_address": ADDRESS}, headers=customer_headers
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "assigned"
        assert body["assigned_courier_id"] == courier.id
        assert body["total"] == "5.35"
        assert len(body["items"]) == 2

        cart = client.get("/api/cart", headers=customer_headers).json()
        assert cart["items"] == []

    def test_empty_cart(self, client, customer_headers):
        response = client.post("/api/orders", json={}, headers=customer_headers)
        assert response.status_code == 400
        assert response.json()["code"] == "empty_cart"

    def test_invalid_address(self, client, customer_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        response = client.post(
            "/api/orders", json={"delivery_address": "Springfield"}, headers=customer_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_address"

    def test_half_coordinates(self, client, customer_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        response = client.post(
            "/api/orders",
            json={"delivery_address": ADDRESS, "delivery_lat": 10.0},
            headers=customer_headers,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_coordinates"


class TestStatusRoute:
    def test_customer_cannot_mark_delivered(self, client, db_session, customer_headers, courier, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        order_id = client.post("/api/orders", json={}, headers=customer_headers).json()["id"]

        response = client.patch(
            f"/api/orders/{order_id}/status", json={"status": "delivered"}, headers=customer_headers
        )

        assert response.status_code == 403
        assert response.json()["code"] == "forbidden_transition"
        detail = client.get(f"/api/orders/{order_id}", headers=customer_headers).json()
        assert detail["status"] == "assigned"
        assert [e["status"] for e in detail["events"]] == ["pending", "assigned"]

    def test_courier_delivers(self, client, customer_headers, courier, courier_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        order_id = client.post("/api/orders", json={}, headers=customer_headers).json()["id"]

        for status in ("picked_up", "on_the_way", "delivered"):
            response = client.patch(
                f"/api/orders/{order_id}/status", json={"status": status}, headers=courier_headers
            )
            assert response.status_code == 200
            assert response.json()["status"] == status

        assigned = client.get("/api/orders/assigned", headers=courier_headers).json()
        assert assigned == {"items": [], "total": 0}

    def test_unknown_status_is_validation_error(self, client, customer_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        order_id = client.post("/api/orders", json={}, headers=customer_headers).json()["id"]
        response = client.patch(
            f"/api/orders/{order_id}/status", json={"status": "teleported"}, headers=customer_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_status"

    def test_admin_assign_is_audited(self, client, db_session, customer_headers, admin, admin_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        order_id = client.post("/api/orders", json={}, headers=customer_headers).json()["id"]
        courier = make_courier(db_session, "manual@example.com", status="offline")

        response = client.patch(
            f"/api/orders/{order_id}/status",
            json={"status": "assigned", "courier_id": courier.id},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["assigned_courier_id"] == courier.id

        entries = db_session.query(AuditLogEntry).filter(AuditLogEntry.action == "order_status").all()
        assert len(entries) == 1
        assert entries[0].user_id == admin.id
        assert entries[0].entity_id == str(order_id)

    def test_admin_assign_unknown_courier(self, client, customer_headers, admin_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        order_id = client.post("/api/orders", json={}, headers=customer_headers).json()["id"]

        response = client.patch(
            f"/api/orders/{order_id}/status",
            json={"status": "assigned", "courier_id": 9999},
            headers=admin_headers,
        )

        assert response.status_code == 404
        assert response.json()["courier_id"] == 9999
        detail = client.get(f"/api/orders/{order_id}", headers=admin_headers).json()
        assert detail["status"] == "pending"


class TestClaimRoute:
    def test_second_claim_conflicts(self, client, db_session, customer_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        order_id = client.post("/api/orders", json={}, headers=customer_headers).json()["id"]
        first = make_courier(db_session, "c1@example.com", status="offline")
        second = make_courier(db_session, "c2@example.com", status="offline")

        open_orders = client.get("/api/orders/open", headers=headers_for(first.user)).json()
        assert [o["id"] for o in open_orders["items"]] == [order_id]

        won = client.post(f"/api/orders/{order_id}/claim", headers=headers_for(first.user))
        lost = client.post(f"/api/orders/{order_id}/claim", headers=headers_for(second.user))

        assert won.status_code == 200
        assert won.json()["assigned_courier_id"] == first.id
        assert lost.status_code == 409
        assert lost.json()["code"] == "order_unavailable"

    def test_customer_cannot_claim(self, client, customer_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        order_id = client.post("/api/orders", json={}, headers=customer_headers).json()["id"]
        response = client.post(f"/api/orders/{order_id}/claim", headers=customer_headers)
        assert response.status_code == 403


class TestReads:
    def test_all_orders_needs_manage_orders(self, client, customer_headers, admin_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        client.post("/api/orders", json={}, headers=customer_headers)

        assert client.get("/api/orders/all", headers=customer_headers).status_code == 403
        response = client.get("/api/orders/all", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_my_orders(self, client, customer_headers, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        client.post("/api/orders", json={}, headers=customer_headers)

        body = client.get("/api/orders/my", headers=customer_headers).json()
        assert body["total"] == 1
        assert body["items"][0]["delivery_address"] == ADDRESS

    def test_other_customer_cannot_read_order(self, client, customer_headers, other_customer, product_a):
        _fill_cart(client, customer_headers, (product_a, 1))
        order_id = client.post("/api/orders", json={}, headers=customer_headers).json()["id"]
        response = client.get(f"/api/orders/{order_id}", headers=headers_for(other_customer))
        assert response.status_code == 403

    def test_missing_order(self, client, customer_headers):
        response = client.get("/api/orders/999", headers=customer_headers)
        assert response.status_code == 404


class TestPrincipalResolution:
    def test_stale_session_version_rejected(self, client, db_session, customer, product_a):
        headers = headers_for(customer)
        customer.session_version += 1
        db_session.commit()

        response = client.get("/api/orders/my", headers=headers)
        assert response.status_code == 401

    def test_blocked_user_rejected(self, client, db_session, customer):
        headers = headers_for(customer)
        customer.is_active = False
        db_session.commit()

        response = client.get("/api/orders/my", headers=headers)
        assert response.status_code == 403

    def test_custom_resolver(self, db_session, customer):
        class HeaderResolver:
            def resolve(self, request: Request, db):
                user_id = request.headers.get("X-User-Id")
                if not user_id:
                    raise Unauthenticated()
                return Principal(user_id=int(user_id), role=UserRole.CUSTOMER)

        app = create_app(principal_resolver=HeaderResolver())
        app.dependency_overrides[get_db] = lambda: db_session
        db_session.add(Order(
            user_id=customer.id, status="pending", total=1, delivery_address=ADDRESS,
        ))
        db_session.commit()

        with TestClient(app, raise_server_exceptions=False) as test_client:
            assert test_client.get("/api/orders/my").status_code == 401
            response = test_client.get("/api/orders/my", headers={"X-User-Id": str(customer.id)})

        assert response.status_code == 200
        assert response.json()["total"] == 1
