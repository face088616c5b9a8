"""
HTTP surface tests.

Verifies:
- Missing identity headers return 401, wrong role returns 403
- Domain errors map to 400 / 404 / 409 / 410
- Checkout -> claim -> shift close flow over JSON
"""

from datetime import timedelta

import pytest

from cashdesk.services import claim_token_service


# =============================================================================
# IDENTITY
# =============================================================================


class TestIdentity:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/sales"),
            ("GET", "/api/sales"),
            ("POST", "/api/sales/claim"),
            ("GET", "/api/shifts/current"),
            ("POST", "/api/shifts/open"),
            ("POST", "/api/shifts/close"),
            ("GET", "/api/shifts/export"),
            ("GET", "/api/staff/1/commissions"),
        ],
    )
    def test_requires_actor(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_rejects_unknown_role(self, client, db_session):
        resp = client.get("/api/sales", headers={"X-Actor-Id": "1", "X-Actor-Role": "owner"})
        assert resp.status_code == 401

    def test_cashier_cannot_open_shift(self, client, db_session, cashier_headers):
        resp = client.post("/api/shifts/open", json={"opening_float_cents": 100}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_supervisor_cannot_pay_commissions(self, client, db_session, supervisor_headers, make_staff):
        staff = make_staff()
        resp = client.post(f"/api/staff/{staff.id}/commissions/pay", json={}, headers=supervisor_headers)
        assert resp.status_code == 403

    def test_staff_cannot_redeem_claim_code(self, client, db_session, cashier_headers):
        resp = client.post("/api/sales/claim", json={"token": "x"}, headers=cashier_headers)
        assert resp.status_code == 403


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["checks"]["database"]["status"] == "healthy"


# =============================================================================
# SALES
# =============================================================================


class TestSalesRoutes:

    def test_checkout_returns_claim_code(self, client, db_session, cashier_headers, make_product, make_service, make_staff):
        product = make_product(price_cents=1500, quantity_on_hand=4)
        service = make_service(price_cents=2500)
        staff = make_staff()

        resp = client.post("/api/sales", json={
            "payment_method": "CASH",
            "lines": [
                {"product_id": product.id, "quantity": 2},
                {"service_id": service.id, "staff_id": staff.id},
            ],
        }, headers=cashier_headers)

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["sale"]["status"] == "PENDING"
        assert body["sale"]["total_cents"] == 5500
        assert len(body["sale"]["lines"]) == 2
        assert body["expires_in"] == 300
        assert claim_token_service.verify(body["claim_token"]) == body["sale"]["id"]

    def test_checkout_insufficient_stock(self, client, db_session, cashier_headers, make_product):
        product = make_product(quantity_on_hand=2)
        resp = client.post("/api/sales", json={
            "lines": [{"product_id": product.id, "quantity": 3}],
        }, headers=cashier_headers)

        assert resp.status_code == 409
        items = resp.get_json()["details"]["items"]
        assert items == [{"product_id": product.id, "requested_quantity": 3, "on_hand": 2}]

    def test_checkout_validation_error(self, client, db_session, cashier_headers):
        resp = client.post("/api/sales", json={"lines": []}, headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "lines"

    def test_confirm_cancel_flow(self, client, db_session, cashier_headers, make_product):
        product = make_product(quantity_on_hand=5)
        first = client.post("/api/sales", json={"lines": [{"product_id": product.id}]}, headers=cashier_headers)
        second = client.post("/api/sales", json={"lines": [{"product_id": product.id}]}, headers=cashier_headers)
        first_id = first.get_json()["sale"]["id"]
        second_id = second.get_json()["sale"]["id"]

        resp = client.post(f"/api/sales/{first_id}/confirm", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["already_completed"] is False

        resp = client.post(f"/api/sales/{first_id}/confirm", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["already_completed"] is True

        resp = client.post(f"/api/sales/{first_id}/cancel", headers=cashier_headers)
        assert resp.status_code == 409

        resp = client.post(f"/api/sales/{second_id}/cancel", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["status"] == "CANCELLED"

        resp = client.post(f"/api/sales/{second_id}/confirm", headers=cashier_headers)
        assert resp.status_code == 409

    def test_missing_sale(self, client, db_session, cashier_headers):
        assert client.get("/api/sales/999999", headers=cashier_headers).status_code == 404
        assert client.post("/api/sales/999999/confirm", headers=cashier_headers).status_code == 404
        assert client.post("/api/sales/999999/cancel", headers=cashier_headers).status_code == 404

    def test_list_and_summary(self, client, db_session, cashier_headers, make_product):
        product = make_product(price_cents=1000, quantity_on_hand=5)
        created = client.post("/api/sales", json={"lines": [{"product_id": product.id}]}, headers=cashier_headers)
        sale_id = created.get_json()["sale"]["id"]
        client.post("/api/sales", json={"lines": [{"product_id": product.id}]}, headers=cashier_headers)
        client.post(f"/api/sales/{sale_id}/confirm", headers=cashier_headers)

        listed = client.get("/api/sales", headers=cashier_headers).get_json()["sales"]
        assert [s["id"] for s in listed] == [sale_id]

        every = client.get("/api/sales?status=ALL", headers=cashier_headers).get_json()["sales"]
        assert len(every) == 2

        clamped = client.get("/api/sales?status=ALL&limit=-1", headers=cashier_headers).get_json()["sales"]
        assert len(clamped) == 1

        summary = client.get("/api/sales/summary/today", headers=cashier_headers).get_json()
        assert summary["sales_count"] == 1
        assert summary["by_payment_method"]["CASH"] == 1000

    def test_bad_date_filter(self, client, db_session, cashier_headers):
        resp = client.get("/api/sales?from=yesterday", headers=cashier_headers)
        assert resp.status_code == 400


class TestClaimRoute:

    def _checkout(self, client, headers, product):
        resp = client.post("/api/sales", json={"lines": [{"product_id": product.id}]}, headers=headers)
        return resp.get_json()

    def test_claim_confirms_and_stamps(self, client, db_session, cashier_headers, customer_headers, make_product):
        product = make_product()
        checkout = self._checkout(client, cashier_headers, product)

        resp = client.post("/api/sales/claim", json={"token": checkout["claim_token"]}, headers=customer_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["sale"]["status"] == "COMPLETED"
        assert body["already_completed"] is False
        assert body["loyalty"]["points"] == 1

        again = client.post("/api/sales/claim", json={"token": checkout["claim_token"]}, headers=customer_headers)
        assert again.status_code == 200
        assert again.get_json()["already_completed"] is True
        assert again.get_json()["loyalty"]["points"] == 1

    def test_expired_claim_is_410(self, client, db_session, customer_headers):
        token = claim_token_service.issue(1, ttl=timedelta(seconds=-1))
        resp = client.post("/api/sales/claim", json={"token": token}, headers=customer_headers)
        assert resp.status_code == 410
        assert resp.get_json()["expired"] is True

    def test_invalid_claim_is_400(self, client, db_session, customer_headers):
        resp = client.post("/api/sales/claim", json={"token": "garbage"}, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid code"

    def test_claim_without_loyalty_card_still_confirms(self, client, db_session, cashier_headers, make_product):
        product = make_product()
        checkout = self._checkout(client, cashier_headers, product)

        resp = client.post("/api/sales/claim", json={"token": checkout["claim_token"]},
                           headers={"X-Actor-Id": "4242", "X-Actor-Role": "customer"})

        assert resp.status_code == 200
        assert resp.get_json()["sale"]["status"] == "COMPLETED"
        assert resp.get_json()["loyalty"] is None

    def test_claim_cancelled_sale_is_409(self, client, db_session, cashier_headers, customer_headers, make_product):
        product = make_product()
        checkout = self._checkout(client, cashier_headers, product)
        client.post(f"/api/sales/{checkout['sale']['id']}/cancel", headers=cashier_headers)

        resp = client.post("/api/sales/claim", json={"token": checkout["claim_token"]}, headers=customer_headers)
        assert resp.status_code == 409


# =============================================================================
# SHIFTS
# =============================================================================


class TestShiftRoutes:

    def test_full_shift(self, client, db_session, supervisor_headers, cashier_headers, make_product):
        product = make_product(price_cents=250, quantity_on_hand=10)

        resp = client.get("/api/shifts/current", headers=cashier_headers)
        assert resp.get_json() == {"open": False, "shift": None}

        resp = client.post("/api/shifts/open", json={"opening_float_cents": 500}, headers=supervisor_headers)
        assert resp.status_code == 201

        resp = client.post("/api/shifts/open", json={"opening_float_cents": 500}, headers=supervisor_headers)
        assert resp.status_code == 409

        sale = client.post("/api/sales", json={"lines": [{"product_id": product.id}]}, headers=cashier_headers)
        client.post(f"/api/sales/{sale.get_json()['sale']['id']}/confirm", headers=cashier_headers)

        resp = client.post("/api/shifts/cash-out", json={"amount_cents": 50, "description": "Supplies"},
                           headers=supervisor_headers)
        assert resp.status_code == 201
        assert resp.get_json()["movement"]["direction"] == "OUT"

        status = client.get("/api/shifts/current", headers=cashier_headers).get_json()
        assert status["open"] is True
        assert status["totals"]["expected_cash_cents"] == 700

        breakdown = client.get("/api/shifts/current/breakdown", headers=supervisor_headers).get_json()
        assert breakdown["summary"]["total_sales_cents"] == 250

        resp = client.post("/api/shifts/close", json={"counted_cash_cents": 720, "notes": "Tip jar"},
                           headers=supervisor_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["expected_cash_cents"] == 700
        assert body["discrepancy_cents"] == 20
        assert body["shift"]["status"] == "CLOSED"

        resp = client.post("/api/shifts/close", json={"counted_cash_cents": 0}, headers=supervisor_headers)
        assert resp.status_code == 409

        history = client.get("/api/shifts/history", headers=supervisor_headers).get_json()["shifts"]
        assert len(history) == 1
        assert history[0]["discrepancy_cents"] == 20

    def test_blind_mode_hides_expected_and_its_parts(self, client, db_session, supervisor_headers):
        client.post("/api/shifts/open", json={"opening_float_cents": 500, "closing_mode": "BLIND"},
                    headers=supervisor_headers)
        client.post("/api/shifts/cash-out", json={"amount_cents": 30, "description": "Stamps"},
                    headers=supervisor_headers)

        status = client.get("/api/shifts/current", headers=supervisor_headers).get_json()
        assert status["totals"] == {"opening_float_cents": 500}

        breakdown = client.get("/api/shifts/current/breakdown", headers=supervisor_headers).get_json()
        assert "expected_cash_cents" not in breakdown["summary"]
        assert "cash_composition" not in breakdown
        assert "movements" not in breakdown
        assert "by_payment_method" not in breakdown

        closed = client.post("/api/shifts/close", json={"counted_cash_cents": 450}, headers=supervisor_headers)
        assert closed.get_json()["expected_cash_cents"] == 470
        assert closed.get_json()["discrepancy_cents"] == -20
        assert closed.get_json()["breakdown"]["cash_composition"]["cash_out_cents"] == 30

    def test_cash_in_without_shift(self, client, db_session, supervisor_headers):
        resp = client.post("/api/shifts/cash-in", json={"amount_cents": 100, "description": "Float"},
                           headers=supervisor_headers)
        assert resp.status_code == 409

    def test_cash_movement_validation(self, client, db_session, supervisor_headers):
        client.post("/api/shifts/open", json={"opening_float_cents": 0}, headers=supervisor_headers)
        resp = client.post("/api/shifts/cash-in", json={"amount_cents": 0, "description": "Float"},
                           headers=supervisor_headers)
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "amount_cents"

    def test_open_requires_float(self, client, db_session, supervisor_headers):
        resp = client.post("/api/shifts/open", json={}, headers=supervisor_headers)
        assert resp.status_code == 400

    def test_history_limit_is_at_least_one(self, client, db_session, supervisor_headers):
        for counted in (100, 200):
            client.post("/api/shifts/open", json={"opening_float_cents": 100}, headers=supervisor_headers)
            client.post("/api/shifts/close", json={"counted_cash_cents": counted}, headers=supervisor_headers)

        shifts = client.get("/api/shifts/history?limit=-5", headers=supervisor_headers).get_json()["shifts"]
        assert len(shifts) == 1

        export = client.get("/api/shifts/export?limit=-5", headers=supervisor_headers).get_data(as_text=True)
        assert len(export.strip().splitlines()) == 2

    def test_report_of_closed_shift(self, client, db_session, supervisor_headers):
        opened = client.post("/api/shifts/open", json={"opening_float_cents": 100}, headers=supervisor_headers)
        shift_id = opened.get_json()["shift"]["id"]

        still_open = client.get(f"/api/shifts/{shift_id}/report", headers=supervisor_headers)
        assert still_open.status_code == 409

        client.post("/api/shifts/close", json={"counted_cash_cents": 100}, headers=supervisor_headers)
        report = client.get(f"/api/shifts/{shift_id}/report", headers=supervisor_headers)
        assert report.status_code == 200
        assert report.get_json()["cash_composition"]["expected_cash_cents"] == 100

        assert client.get("/api/shifts/99999/report", headers=supervisor_headers).status_code == 404

    def test_export_csv(self, client, db_session, supervisor_headers):
        client.post("/api/shifts/open", json={"opening_float_cents": 100}, headers=supervisor_headers)
        client.post("/api/shifts/close", json={"counted_cash_cents": 100}, headers=supervisor_headers)

        resp = client.get("/api/shifts/export", headers=supervisor_headers)

        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        assert "shift_history.csv" in resp.headers["Content-Disposition"]
        lines = resp.get_data(as_text=True).strip().splitlines()
        assert lines[0].startswith("id,opened_at,closed_at")
        assert len(lines) == 2


# =============================================================================
# COMMISSIONS
# =============================================================================


class TestCommissionRoutes:

    def test_list_and_pay(self, client, db_session, cashier_headers, supervisor_headers, admin_headers,
                          make_service, make_staff):
        service = make_service(price_cents=2500)
        staff = make_staff(commission_rate_bps=4000)
        client.post("/api/sales", json={"lines": [{"service_id": service.id}], "staff_id": staff.id},
                    headers=cashier_headers)

        listing = client.get(f"/api/staff/{staff.id}/commissions", headers=supervisor_headers).get_json()
        assert listing["totals"] == {"pending_cents": 1000, "paid_cents": 0}

        resp = client.post(f"/api/staff/{staff.id}/commissions/pay", json={"notes": "Weekly"}, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.get_json()["payout"]["amount_cents"] == 1000

        resp = client.post(f"/api/staff/{staff.id}/commissions/pay", json={}, headers=admin_headers)
        assert resp.status_code == 409

    def test_unknown_staff(self, client, db_session, supervisor_headers):
        resp = client.get("/api/staff/424242/commissions", headers=supervisor_headers)
        assert resp.status_code == 404
