"""
HTTP API tests: status codes, error mapping and business scoping.
"""

import pytest

from stockledger.services import alert_service, return_service


def _url(business_id, path):
    return f"/api/businesses/{business_id}{path}"


def test_health(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json["checks"]["database"]["status"] == "healthy"


class TestInventoryRoutes:
    def test_record_transaction_and_read_stock(self, client, business, make_product):
        product = make_product("API-1", stock=5)

        response = client.post(_url(business.id, "/inventory/transactions"), json={
            "product_id": product.id,
            "transaction_type": "out",
            "quantity": 2,
            "reference_type": "sale",
            "reference_id": "S-9",
        })
        assert response.status_code == 201
        assert response.json["transaction"]["balance_after"] == 3
        assert response.json["transaction"]["reference_type"] == "sale"
        assert response.json["stock"]["current_stock"] == 3

        response = client.get(_url(business.id, f"/inventory/products/{product.id}/stock"))
        assert response.status_code == 200
        assert response.json["projected_stock"] == 3
        assert response.json["consistent"] is True

        response = client.get(_url(business.id, f"/inventory/products/{product.id}/transactions?limit=1"))
        assert response.status_code == 200
        assert response.json["count"] == 1
        assert response.json["items"][0]["transaction_type"] == "out"

    @pytest.mark.parametrize("payload,code", [
        ({"transaction_type": "in", "quantity": 1}, "validation_error"),
        ({"product_id": 1, "transaction_type": "in", "quantity": 1.5}, "validation_error"),
        ({"product_id": 1, "transaction_type": "in", "quantity": 1, "balance_after": 4}, "validation_error"),
        ({"product_id": 1, "transaction_type": "in", "quantity": 1, "reference_id": "X"}, "validation_error"),
    ])
    def test_bad_transaction_payloads(self, client, business, payload, code):
        response = client.post(_url(business.id, "/inventory/transactions"), json=payload)
        assert response.status_code == 400
        assert response.json["code"] == code

    def test_unknown_product_is_404(self, client, business):
        response = client.post(_url(business.id, "/inventory/transactions"), json={
            "product_id": 9999, "transaction_type": "in", "quantity": 1,
        })
        assert response.status_code == 404
        assert response.json["code"] == "not_found"

    def test_other_business_cannot_see_product(self, client, business, other_business, make_product):
        product = make_product("API-2", stock=5)
        response = client.get(_url(other_business.id, f"/inventory/products/{product.id}/stock"))
        assert response.status_code == 404

    def test_adjustment_and_preview(self, client, business, make_product):
        product = make_product("API-3", stock=2)

        preview = client.post(_url(business.id, "/inventory/adjustments/preview"), json={
            "product_id": product.id, "delta": -5,
        })
        assert preview.status_code == 200
        assert preview.json["new_stock"] == -3
        assert preview.json["negative_stock"] is True

        blocked = client.post(_url(business.id, "/inventory/adjustments"), json={
            "product_id": product.id, "delta": -5, "reason_code": "theft_loss", "allow_negative": False,
        })
        assert blocked.status_code == 400
        assert blocked.json["code"] == "negative_stock"

        response = client.post(_url(business.id, "/inventory/adjustments"), json={
            "product_id": product.id, "delta": -5, "reason_code": "theft_loss",
        })
        assert response.status_code == 201
        assert response.json["new_stock"] == -3
        assert response.json["transaction"]["reason_code"] == "theft_loss"

    def test_business_wide_history(self, client, business, other_business, make_product):
        soap = make_product("API-5", stock=4)
        rope = make_product("API-6", stock=9)
        make_product("API-7", stock=2, business_id=other_business.id)
        client.post(_url(business.id, "/inventory/transactions"), json={
            "product_id": soap.id, "transaction_type": "out", "quantity": 1,
        })

        response = client.get(_url(business.id, "/inventory/transactions"))
        assert response.status_code == 200
        assert response.json["count"] == 3
        assert {tx["product_id"] for tx in response.json["items"]} == {soap.id, rope.id}
        assert response.json["items"][0]["transaction_type"] == "out"

        response = client.get(_url(business.id, "/inventory/transactions?limit=2"))
        assert response.json["count"] == 2

        response = client.get(_url(business.id, "/inventory/transactions?since=2999-01-01T00:00:00Z"))
        assert response.json["count"] == 0

        assert client.get(_url(business.id, "/inventory/transactions?since=soon")).status_code == 400
        assert client.get(_url(9999, "/inventory/transactions")).status_code == 404

    def test_movement_summary(self, client, business, make_product):
        product = make_product("API-4", stock=8)
        response = client.get(_url(business.id, f"/inventory/products/{product.id}/summary?days=7"))
        assert response.status_code == 200
        assert response.json["total_in"] == 8
        assert response.json["days"] == 7


class TestAlertRoutes:
    def test_low_stock_and_settings(self, client, business, make_product):
        make_product("ALR-1", stock=2)
        make_product("ALR-2", stock=8)

        response = client.get(_url(business.id, "/alerts/low-stock"))
        assert response.status_code == 200
        assert [p["sku"] for p in response.json["critical"]] == ["ALR-1"]
        assert [p["sku"] for p in response.json["low"]] == ["ALR-2"]

        response = client.put(_url(business.id, "/alerts/settings"), json={"threshold": 5, "critical_threshold": 1})
        assert response.status_code == 200
        assert response.json["settings"]["threshold"] == 5

        response = client.get(_url(business.id, "/alerts/low-stock"))
        assert response.json["critical"] == []
        assert [p["sku"] for p in response.json["low"]] == ["ALR-1"]

    def test_settings_reject_unknown_fields(self, client, business):
        response = client.put(_url(business.id, "/alerts/settings"), json={"last_alert_at": "2026-01-01T00:00:00Z"})
        assert response.status_code == 400

    def test_dispatch_uses_configured_dispatcher(self, app, client, business, make_product):
        make_product("ALR-3", stock=0)
        dispatcher = alert_service.LoggingAlertDispatcher()
        app.config["ALERT_DISPATCHER"] = dispatcher
        try:
            first = client.post(_url(business.id, "/alerts/low-stock/dispatch"))
            second = client.post(_url(business.id, "/alerts/low-stock/dispatch"))
        finally:
            app.config["ALERT_DISPATCHER"] = None

        assert first.status_code == 200
        assert first.json["sent"] is True
        assert second.json["sent"] is False
        assert second.json["skipped_reason"] == "rate_limited"
        assert len(dispatcher.sent) == 1

    def test_unknown_business_is_404(self, client, db_session):
        response = client.get(_url(4242, "/alerts/low-stock"))
        assert response.status_code == 404


class TestReturnRoutes:
    @pytest.fixture
    def sold(self, business, make_product, make_sale):
        shirt = make_product("R-SHIRT", stock=10, price=300)
        belt = make_product("R-BELT", stock=10, price=200)
        jacket = make_product("R-JACKET", stock=5, price=650)
        sale = make_sale((shirt, 1, 300), (belt, 1, 200))
        return {"shirt": shirt.id, "belt": belt.id, "jacket": jacket.id, "sale": sale.id}

    def _submit(self, client, business_id, sold):
        return client.post(_url(business_id, "/returns/"), json={
            "original_sale_id": sold["sale"],
            "return_type": "exchange",
            "reason": "wrong_size",
            "returned_items": [
                {"product_id": sold["shirt"], "quantity": 1},
                {"product_id": sold["belt"], "quantity": 1},
            ],
            "exchange_items": [{"product_id": sold["jacket"], "quantity": 1}],
        })

    def test_full_exchange_flow(self, client, business, sold):
        response = self._submit(client, business.id, sold)
        assert response.status_code == 201
        doc = response.json["return"]
        assert doc["status"] == "pending"
        assert doc["exchange_difference_cents"] == 150

        rid = doc["id"]
        response = client.post(_url(business.id, f"/returns/{rid}/decision"), json={
            "approve": True, "decided_by": "mgr-1",
        })
        assert response.status_code == 200
        assert response.json["return"]["status"] == "approved"

        response = client.post(_url(business.id, f"/returns/{rid}/complete"), json={"processed_by": "clerk-1"})
        assert response.status_code == 200
        assert response.json["return"]["status"] == "completed"
        assert [t["transaction_type"] for t in response.json["transactions"]] == ["in", "in", "out"]

        response = client.post(_url(business.id, f"/returns/{rid}/payments"), json={
            "amount_cents": 150, "payment_method": "card", "reference_number": "AUTH-77",
        })
        assert response.status_code == 201
        assert response.json["payment"]["direction"] == "from_customer"
        assert response.json["summary"]["balance_remaining_cents"] == 0

        response = client.get(_url(business.id, f"/returns/{rid}"))
        assert response.status_code == 200
        assert len(response.json["transactions"]) == 3
        assert response.json["allowed_actions"] == []

    def test_illegal_transition_is_409(self, client, business, sold):
        rid = self._submit(client, business.id, sold).json["return"]["id"]

        response = client.post(_url(business.id, f"/returns/{rid}/complete"), json={})
        assert response.status_code == 409
        assert response.json["code"] == "illegal_transition"

    def test_reconciliation_error_is_422(self, client, business, sold, monkeypatch):
        rid = self._submit(client, business.id, sold).json["return"]["id"]
        client.post(_url(business.id, f"/returns/{rid}/decision"), json={"approve": True})

        def broken(_return_doc):
            raise return_service.ReconciliationError("amounts drifted")

        monkeypatch.setattr(return_service, "_verify_reconciliation", broken)
        response = client.post(_url(business.id, f"/returns/{rid}/complete"), json={})
        assert response.status_code == 422
        assert response.json["code"] == "reconciliation_error"

    def test_concurrency_conflict_is_retryable_409(self, client, business, sold, monkeypatch):
        from stockledger.validation import ConcurrencyConflictError

        def conflicted(**_kwargs):
            raise ConcurrencyConflictError("another operation changed the same records; retry the request")

        monkeypatch.setattr(return_service, "complete_return", conflicted)
        response = client.post(_url(business.id, "/returns/1/complete"), json={})
        assert response.status_code == 409
        assert response.json["retryable"] is True

    def test_over_claim_is_400(self, client, business, sold):
        assert self._submit(client, business.id, sold).status_code == 201
        response = self._submit(client, business.id, sold)
        assert response.status_code == 400
        assert "available: 0" in response.json["error"]

    def test_payment_reference_length_is_enforced(self, client, business, sold):
        rid = self._submit(client, business.id, sold).json["return"]["id"]
        client.post(_url(business.id, f"/returns/{rid}/decision"), json={"approve": True})
        client.post(_url(business.id, f"/returns/{rid}/complete"), json={})

        response = client.post(_url(business.id, f"/returns/{rid}/payments"), json={
            "amount_cents": 150, "payment_method": "card", "reference_number": "A" * 129,
        })
        assert response.status_code == 400
        assert "reference_number exceeds max length 128" in response.json["error"]

        response = client.post(_url(business.id, f"/returns/{rid}/payments"), json={
            "amount_cents": 150, "payment_method": "card", "reference_number": "A" * 128,
        })
        assert response.status_code == 201

    def test_decision_requires_boolean(self, client, business, sold):
        rid = self._submit(client, business.id, sold).json["return"]["id"]
        response = client.post(_url(business.id, f"/returns/{rid}/decision"), json={"approve": "yes"})
        assert response.status_code == 400

    def test_list_filters_by_status(self, client, business, sold):
        self._submit(client, business.id, sold)
        response = client.get(_url(business.id, "/returns/?status=pending"))
        assert response.status_code == 200
        assert response.json["count"] == 1

        response = client.get(_url(business.id, "/returns/?status=approved"))
        assert response.json["count"] == 0

    def test_missing_return_is_404(self, client, business):
        response = client.get(_url(business.id, "/returns/555"))
        assert response.status_code == 404
