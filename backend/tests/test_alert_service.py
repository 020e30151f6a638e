"""
Low-stock classification and alert dispatch tests.
"""

from datetime import timedelta

import pytest

from stockledger.extensions import db
from stockledger.models import NotificationSettings, Product
from stockledger.models.enums import StockLevel
from stockledger.services import alert_service
from stockledger.services.alert_service import LowStockThresholds, LoggingAlertDispatcher
from stockledger.time_utils import utcnow
from stockledger.validation import NotFoundError


THRESHOLDS = LowStockThresholds(threshold=10, critical_threshold=5)


class TestClassificationBoundaries:
    def test_at_critical_threshold_is_critical_not_low(self):
        product = {"id": 1, "current_stock": 5, "min_stock_level": 8}
        assert alert_service.classify_product(product, THRESHOLDS) is StockLevel.CRITICAL

    def test_at_min_stock_level_is_low(self):
        product = {"id": 1, "current_stock": 8, "min_stock_level": 8}
        assert alert_service.classify_product(product, THRESHOLDS) is StockLevel.LOW

    def test_one_above_min_stock_level_is_ok(self):
        product = {"id": 1, "current_stock": 9, "min_stock_level": 8}
        assert alert_service.classify_product(product, THRESHOLDS) is StockLevel.OK

    def test_missing_min_level_falls_back_to_threshold(self):
        assert alert_service.classify_product(
            {"id": 1, "current_stock": 10, "min_stock_level": None}, THRESHOLDS
        ) is StockLevel.LOW
        assert alert_service.classify_product(
            {"id": 1, "current_stock": 11, "min_stock_level": None}, THRESHOLDS
        ) is StockLevel.OK

    def test_negative_stock_is_critical(self):
        product = {"id": 1, "current_stock": -4, "min_stock_level": None}
        assert alert_service.classify_product(product, THRESHOLDS) is StockLevel.CRITICAL


def test_classification_is_idempotent():
    products = [
        {"id": 1, "current_stock": 0, "min_stock_level": None},
        {"id": 2, "current_stock": 7, "min_stock_level": None},
        {"id": 3, "current_stock": 50, "min_stock_level": None},
        {"id": 4, "current_stock": 12, "min_stock_level": 12},
    ]
    snapshot = [dict(p) for p in products]

    first = alert_service.classify_low_stock(products, THRESHOLDS)
    second = alert_service.classify_low_stock(products, THRESHOLDS)

    assert first == second
    assert [p["id"] for p in first.critical] == [1]
    assert [p["id"] for p in first.low] == [2, 4]
    assert products == snapshot


def test_evaluate_business_uses_saved_thresholds(business, make_product):
    make_product("LOW-1", stock=3)
    make_product("LOW-2", stock=6)
    make_product("LOW-3", stock=30)

    result = alert_service.evaluate_business(business.id)
    assert [p.sku for p in result.critical] == ["LOW-1"]
    assert [p.sku for p in result.low] == ["LOW-2"]

    thresholds = alert_service.update_thresholds(business.id, threshold=40, critical_threshold=2)
    assert thresholds == LowStockThresholds(40, 2)
    result = alert_service.evaluate_business(business.id)
    assert result.critical == ()
    assert [p.sku for p in result.low] == ["LOW-1", "LOW-2", "LOW-3"]


def test_inactive_products_are_ignored(business, make_product):
    product = make_product("GONE-1", stock=0)
    db.session.query(Product).filter_by(id=product.id).update({"is_active": False})
    db.session.commit()

    assert alert_service.evaluate_business(business.id).needs_alert is False


def test_unknown_business(db_session):
    with pytest.raises(NotFoundError):
        alert_service.evaluate_business(12345)


class TestDispatch:
    def test_nothing_to_report(self, business, make_product):
        make_product("OK-1", stock=100)
        dispatcher = LoggingAlertDispatcher()

        outcome = alert_service.dispatch_low_stock_alerts(business.id, dispatcher)

        assert outcome.sent is False
        assert outcome.skipped_reason == "nothing_to_report"
        assert dispatcher.sent == []

    def test_rate_limited_within_interval(self, business, make_product):
        make_product("RL-1", stock=1)
        dispatcher = LoggingAlertDispatcher()
        now = utcnow()

        first = alert_service.dispatch_low_stock_alerts(business.id, dispatcher, now=now)
        second = alert_service.dispatch_low_stock_alerts(
            business.id, dispatcher, now=now + timedelta(seconds=60)
        )
        third = alert_service.dispatch_low_stock_alerts(
            business.id, dispatcher, now=now + timedelta(seconds=301)
        )

        assert first.sent is True
        assert second.sent is False
        assert second.skipped_reason == "rate_limited"
        assert second.next_allowed_at == now + timedelta(seconds=300)
        assert third.sent is True
        assert len(dispatcher.sent) == 2

    def test_failed_delivery_does_not_start_the_interval(self, business, make_product):
        make_product("FAIL-1", stock=1)

        class BrokenDispatcher:
            def send_low_stock_alert(self, business, result):
                raise ConnectionError("smtp down")

        with pytest.raises(ConnectionError):
            alert_service.dispatch_low_stock_alerts(business.id, BrokenDispatcher())

        settings = db.session.query(NotificationSettings).filter_by(business_id=business.id).first()
        assert settings is None or settings.last_alert_at is None

        outcome = alert_service.dispatch_low_stock_alerts(business.id, LoggingAlertDispatcher())
        assert outcome.sent is True


def test_settings_defaults_and_update(app, business):
    settings = alert_service.get_notification_settings(business.id)
    assert settings["threshold"] == app.config["LOW_STOCK_THRESHOLD"]
    assert settings["critical_threshold"] == app.config["LOW_STOCK_CRITICAL_THRESHOLD"]

    alert_service.update_notification_settings(
        business.id, {"threshold": 20, "email_enabled": True, "email_address": "ops@example.com"}
    )
    settings = alert_service.get_notification_settings(business.id)
    assert settings["threshold"] == 20
    assert settings["critical_threshold"] == app.config["LOW_STOCK_CRITICAL_THRESHOLD"]
    assert settings["email_enabled"] is True
