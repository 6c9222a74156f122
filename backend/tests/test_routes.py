"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Capabilities gate each area (403 with the missing capability)
- Service errors map to 400/404/409 JSON bodies
- End-to-end sale, return and cashbox flows over HTTP
"""

import pytest

from conftest import auth_headers, get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/customers"),
            ("POST", "/api/sales"),
            ("GET", "/api/cashbox"),
            ("GET", "/api/expenses"),
            ("GET", "/api/partners"),
            ("GET", "/api/finance/summary"),
            ("GET", "/api/reports/dashboard"),
            ("GET", "/api/settings"),
            ("GET", "/api/auth/users"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client, db_session):
        resp = client.get("/api/products", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401
        assert resp.json["error"] == "Invalid or expired token"


# =============================================================================
# LOGIN / SESSION
# =============================================================================


class TestAuthFlow:
    def test_login_returns_capabilities(self, client, cashier):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "Password123!"})
        assert resp.status_code == 200
        assert resp.json["user"]["role"] == "cashier"
        assert set(resp.json["capabilities"]) == {"sales", "customers", "view"}
        assert resp.json["token"]
        assert resp.json["expires_at"].endswith("Z")

    def test_wrong_password(self, client, cashier):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "Wrong123!"})
        assert resp.status_code == 401

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "cashier"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, cashier):
        headers = auth_headers(get_auth_token(client, "cashier"))
        assert client.get("/api/auth/me", headers=headers).status_code == 200

        assert client.post("/api/auth/logout", headers=headers).status_code == 200

        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_deactivated_user_loses_access(self, client, owner_headers, cashier):
        headers = auth_headers(get_auth_token(client, "cashier"))

        resp = client.delete(f"/api/auth/users/{cashier.id}", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.json["user"]["is_active"] is False

        assert client.get("/api/auth/me", headers=headers).status_code == 401
        assert get_auth_token(client, "cashier") is None

    def test_owner_cannot_deactivate_self(self, client, owner, owner_headers):
        resp = client.delete(f"/api/auth/users/{owner.id}", headers=owner_headers)
        assert resp.status_code == 400

    def test_create_user_weak_password(self, client, owner_headers):
        resp = client.post("/api/auth/users", headers=owner_headers, json={
            "username": "newbie", "password": "short", "first_name": "New", "last_name": "Bie",
        })
        assert resp.status_code == 400

    def test_change_password_keeps_current_session_only(self, client, cashier):
        current = auth_headers(get_auth_token(client, "cashier"))
        other = auth_headers(get_auth_token(client, "cashier"))

        resp = client.post("/api/auth/change-password", headers=current, json={
            "current_password": "Password123!", "new_password": "NewPass456!",
        })
        assert resp.status_code == 200

        assert client.get("/api/auth/me", headers=current).status_code == 200
        assert client.get("/api/auth/me", headers=other).status_code == 401
        assert get_auth_token(client, "cashier") is None
        assert get_auth_token(client, "cashier", "NewPass456!") is not None

    def test_change_password_wrong_current(self, client, cashier):
        headers = auth_headers(get_auth_token(client, "cashier"))
        resp = client.post("/api/auth/change-password", headers=headers, json={
            "current_password": "Nope123!", "new_password": "NewPass456!",
        })
        assert resp.status_code == 400
        assert resp.json["error"] == "Current password is incorrect"
        assert get_auth_token(client, "cashier") is not None

    def test_change_password_weak_new(self, client, cashier):
        headers = auth_headers(get_auth_token(client, "cashier"))
        resp = client.post("/api/auth/change-password", headers=headers, json={
            "current_password": "Password123!", "new_password": "short",
        })
        assert resp.status_code == 400

    def test_update_own_profile(self, client, stock_manager, stock_headers):
        resp = client.patch("/api/auth/profile", headers=stock_headers, json={
            "first_name": "Samir", "email": "samir@mdcars.ly",
        })
        assert resp.status_code == 200
        assert resp.json["user"]["first_name"] == "Samir"
        assert resp.json["user"]["email"] == "samir@mdcars.ly"
        assert resp.json["user"]["role"] == "stock_manager"

    def test_profile_cannot_change_role(self, client, cashier_headers):
        resp = client.patch("/api/auth/profile", headers=cashier_headers, json={"role": "owner"})
        assert resp.status_code == 400
        me = client.get("/api/auth/me", headers=cashier_headers).json
        assert me["user"]["role"] == "cashier"

    def test_profile_username_taken(self, client, owner, cashier_headers):
        resp = client.patch("/api/auth/profile", headers=cashier_headers, json={"username": "owner"})
        assert resp.status_code == 409

    def test_create_duplicate_user(self, client, owner_headers, cashier):
        resp = client.post("/api/auth/users", headers=owner_headers, json={
            "username": "cashier", "password": "Password123!", "first_name": "A", "last_name": "B",
        })
        assert resp.status_code == 409


# =============================================================================
# CAPABILITIES (403)
# =============================================================================


class TestCapabilities:
    def test_cashier_cannot_manage_stock(self, client, cashier_headers, make_product):
        product = make_product(stock=1)
        resp = client.post(f"/api/products/{product.id}/stock", headers=cashier_headers,
                           json={"type": "in", "quantity": 1})
        assert resp.status_code == 403
        assert resp.json["required_capability"] == "inventory"

    def test_cashier_cannot_see_finance(self, client, cashier_headers):
        assert client.get("/api/expenses", headers=cashier_headers).status_code == 403
        assert client.get("/api/cashbox", headers=cashier_headers).status_code == 403
        assert client.get("/api/finance/summary", headers=cashier_headers).status_code == 403

    def test_cashier_cannot_admin_users(self, client, cashier_headers):
        assert client.get("/api/auth/users", headers=cashier_headers).status_code == 403

    def test_stock_manager_cannot_sell(self, client, stock_headers, make_product):
        product = make_product(stock=1)
        resp = client.post("/api/sales", headers=stock_headers, json={
            "items": [{"product_id": product.id, "quantity": 1}], "amount_paid": "40",
        })
        assert resp.status_code == 403

    def test_stock_manager_can_adjust_stock(self, client, stock_headers, make_product):
        product = make_product(stock=1)
        resp = client.post(f"/api/products/{product.id}/stock", headers=stock_headers,
                           json={"type": "in", "quantity": 4})
        assert resp.status_code == 201
        assert resp.json["product"]["current_stock"] == 5

    def test_only_owner_changes_settings(self, client, cashier_headers, owner_headers):
        body = {"value": "5.00"}
        assert client.put("/api/settings/exchange_rate", headers=cashier_headers, json=body).status_code == 403
        resp = client.put("/api/settings/exchange_rate", headers=owner_headers, json=body)
        assert resp.status_code == 200
        assert resp.json["setting"]["value"] == "5.0000"

    def test_everyone_can_view_reports(self, client, cashier_headers, stock_headers):
        assert client.get("/api/reports/dashboard", headers=cashier_headers).status_code == 200
        assert client.get("/api/reports/best-sellers", headers=stock_headers).status_code == 200


# =============================================================================
# ERROR MAPPING
# =============================================================================


class TestErrorMapping:
    def test_validation_is_400(self, client, owner_headers):
        resp = client.post("/api/products", headers=owner_headers, json={"name": "X", "selling_price": "1.234"})
        assert resp.status_code == 400
        assert "error" in resp.json

    def test_not_found_is_404(self, client, owner_headers):
        resp = client.get("/api/products/98765", headers=owner_headers)
        assert resp.status_code == 404
        assert resp.json["details"]["product_id"] == 98765

    def test_unknown_treasury_segment_is_404(self, client, owner_headers):
        assert client.get("/api/finance/vaults", headers=owner_headers).status_code == 404

    def test_insufficient_stock_is_409(self, client, cashier_headers, make_product):
        product = make_product(stock=1)
        resp = client.post("/api/sales", headers=cashier_headers, json={
            "items": [{"product_id": product.id, "quantity": 5}], "amount_paid": "200",
        })
        assert resp.status_code == 409
        assert resp.json["details"]["available"] == 1

    def test_bad_report_month(self, client, owner_headers):
        resp = client.get("/api/reports/monthly?year=2025&month=13", headers=owner_headers)
        assert resp.status_code == 400


# =============================================================================
# END TO END
# =============================================================================


class TestSaleFlow:
    def test_sell_return_and_cashbox(self, client, cashier_headers, owner_headers, make_product):
        product = make_product(cost="10", price="20", stock=5)

        resp = client.post("/api/sales", headers=cashier_headers, json={
            "items": [{"product_id": product.id, "quantity": 2}],
            "amount_paid": "40",
            "currency": "LYD",
        })
        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["total_amount"] == "40.00"
        assert sale["items"][0]["profit"] == "20.00"

        box = client.get("/api/cashbox", headers=owner_headers).json["cashbox"]
        assert box["balance_lyd"] == "40.00"

        resp = client.post(f"/api/sales/{sale['id']}/return", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["sale"]["status"] == "returned"

        resp = client.post(f"/api/sales/{sale['id']}/return", headers=cashier_headers)
        assert resp.status_code == 409

        product_resp = client.get(f"/api/products/{product.id}", headers=cashier_headers)
        assert product_resp.json["product"]["current_stock"] == 5
        box = client.get("/api/cashbox", headers=owner_headers).json["cashbox"]
        assert box["balance_lyd"] == "0.00"

        txs = client.get("/api/cashbox/transactions", headers=owner_headers).json["transactions"]
        assert [t["type"] for t in txs] == ["refund", "sale"]

    def test_customer_debt_and_payment(self, client, cashier_headers, make_product):
        product = make_product(price="100", stock=2)
        customer = client.post("/api/customers", headers=cashier_headers,
                               json={"name": "Fatima", "phone": "0920000000"}).json["customer"]

        client.post("/api/sales", headers=cashier_headers, json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "amount_paid": "60",
            "customer_id": customer["id"],
        })
        resp = client.post(f"/api/customers/{customer['id']}/payments", headers=cashier_headers,
                           json={"amount": "40"})
        assert resp.status_code == 201
        assert resp.json["customer"]["balance_owed"] == "0.00"
        assert resp.json["customer"]["total_purchases"] == "100.00"

    def test_next_sale_number(self, client, cashier_headers):
        resp = client.get("/api/sales/next-number", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["sale_number"].endswith("-0001")


class TestFinanceRoutes:
    def test_expense_lifecycle(self, client, owner_headers):
        resp = client.post("/api/expenses", headers=owner_headers, json={
            "category": "salaries", "amount": "900", "description": "Wages", "person_name": "Ahmed",
        })
        assert resp.status_code == 201
        expense = resp.json["expense"]
        assert expense["expense_number"] == "EXP-00001"

        assert client.delete(f"/api/expenses/{expense['id']}", headers=owner_headers).status_code == 200
        box = client.get("/api/cashbox", headers=owner_headers).json["cashbox"]
        assert box["balance_lyd"] == "0.00"

    def test_treasury_transfer(self, client, owner_headers):
        safe = client.post("/api/finance/safes", headers=owner_headers,
                           json={"name": "Safe", "code": "S1"}).json["account"]
        bank = client.post("/api/finance/banks", headers=owner_headers,
                           json={"name": "Bank", "code": "B1"}).json["account"]
        client.post(f"/api/finance/safes/{safe['id']}/deposit", headers=owner_headers, json={"amount": "100"})

        resp = client.post("/api/finance/transfer", headers=owner_headers, json={
            "from_kind": "safe", "from_id": safe["id"], "to_kind": "bank", "to_id": bank["id"], "amount": "60",
        })
        assert resp.status_code == 201
        assert resp.json["transfer_out"]["type"] == "transfer_out"

        summary = client.get("/api/finance/summary", headers=owner_headers).json
        assert summary["total_safe_balance_lyd"] == "40.00"
        assert summary["total_bank_balance_lyd"] == "60.00"


class TestSystem:
    def test_health_reports_database(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"
