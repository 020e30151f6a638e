# Overview: Low-stock classification and the rate-limited hand-off to an alert dispatcher.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Protocol

from flask import current_app

from ..extensions import db
from ..models import Business, NotificationSettings, Product
from ..models.enums import StockLevel
from ..time_utils import next_allowed_at, to_utc_z, utcnow
from ..validation import NotFoundError, ValidationError, coerce_int
from .concurrency import lock_for_update, run_with_retry
"""
Low-stock rules

Evaluated per product, first match wins:
1. current_stock <= critical_threshold            -> critical
2. current_stock <= min_stock_level (or threshold) -> low
3. otherwise                                        -> ok

critical_threshold < threshold is the expected configuration but is not
enforced. Classification is pure; rate limiting and delivery live in
dispatch_low_stock_alerts() and the AlertDispatcher it is given.
"""


@dataclass(frozen=True)
class LowStockThresholds:
    threshold: int = 10
    critical_threshold: int = 5

    def to_dict(self) -> dict:
        return {"threshold": self.threshold, "critical_threshold": self.critical_threshold}


@dataclass(frozen=True)
class LowStockResult:
    critical: tuple = ()
    low: tuple = ()

    @property
    def needs_alert(self) -> bool:
        return bool(self.critical or self.low)

    def to_dict(self) -> dict:
        return {
            "critical": [_product_summary(p) for p in self.critical],
            "low": [_product_summary(p) for p in self.low],
            "needs_alert": self.needs_alert,
        }


@dataclass
class DispatchOutcome:
    sent: bool
    result: LowStockResult
    skipped_reason: Optional[str] = None
    next_allowed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "sent": self.sent,
            "skipped_reason": self.skipped_reason,
            "next_allowed_at": to_utc_z(self.next_allowed_at),
            **self.result.to_dict(),
        }


class AlertDispatcher(Protocol):
    """Delivery seam: e-mail, SMS, retries and delivery logging live behind it."""

    def send_low_stock_alert(self, business: Business, result: LowStockResult) -> None:
        ...


@dataclass
class LoggingAlertDispatcher:
    """Default dispatcher: writes the batch to the application log."""
    sent: list = field(default_factory=list)

    def send_low_stock_alert(self, business: Business, result: LowStockResult) -> None:
        current_app.logger.info(
            "Low stock alert for business %s: %d critical, %d low",
            business.id, len(result.critical), len(result.low),
        )
        self.sent.append((business.id, result))


def _product_summary(product) -> dict:
    if isinstance(product, dict):
        return dict(product)
    return {
        "id": product.id,
        "sku": getattr(product, "sku", None),
        "name": getattr(product, "name", None),
        "current_stock": product.current_stock,
        "min_stock_level": product.min_stock_level,
    }


def _value(product, key):
    if isinstance(product, dict):
        return product.get(key)
    return getattr(product, key)


def classify_product(product, thresholds: LowStockThresholds) -> StockLevel:
    stock = _value(product, "current_stock")
    if stock <= thresholds.critical_threshold:
        return StockLevel.CRITICAL

    min_level = _value(product, "min_stock_level")
    if min_level is None:
        min_level = thresholds.threshold
    if stock <= min_level:
        return StockLevel.LOW
    return StockLevel.OK


def classify_low_stock(products: Iterable, thresholds: LowStockThresholds) -> LowStockResult:
    """Split products into critical and low tiers, preserving input order."""
    critical = []
    low = []
    for product in products:
        level = classify_product(product, thresholds)
        if level is StockLevel.CRITICAL:
            critical.append(product)
        elif level is StockLevel.LOW:
            low.append(product)
    return LowStockResult(critical=tuple(critical), low=tuple(low))


def _ensure_business(business_id: int) -> Business:
    business = db.session.get(Business, business_id)
    if business is None:
        raise NotFoundError(f"business {business_id} not found")
    return business


def _default_settings(business_id: int) -> NotificationSettings:
    return NotificationSettings(
        business_id=business_id,
        threshold=current_app.config.get("LOW_STOCK_THRESHOLD", 10),
        critical_threshold=current_app.config.get("LOW_STOCK_CRITICAL_THRESHOLD", 5),
        email_enabled=False,
        sms_enabled=False,
    )


def _get_or_create_settings(business_id: int, *, lock: bool = False) -> NotificationSettings:
    query = db.session.query(NotificationSettings).filter_by(business_id=business_id)
    if lock:
        query = lock_for_update(query)
    settings = query.first()
    if settings is None:
        settings = _default_settings(business_id)
        db.session.add(settings)
        db.session.flush()
    return settings


def get_thresholds(business_id: int) -> LowStockThresholds:
    _ensure_business(business_id)
    settings = db.session.query(NotificationSettings).filter_by(business_id=business_id).first()
    if settings is None:
        return LowStockThresholds(
            threshold=current_app.config.get("LOW_STOCK_THRESHOLD", 10),
            critical_threshold=current_app.config.get("LOW_STOCK_CRITICAL_THRESHOLD", 5),
        )
    return LowStockThresholds(settings.threshold, settings.critical_threshold)


def get_notification_settings(business_id: int) -> dict:
    _ensure_business(business_id)
    settings = db.session.query(NotificationSettings).filter_by(business_id=business_id).first()
    if settings is None:
        settings = _default_settings(business_id)
    return settings.to_dict()


def update_notification_settings(business_id: int, patch: dict) -> NotificationSettings:
    """
    Save thresholds and channel preferences.

    patch holds already-validated column values (see routes/alerts.py).
    """
    for key in ("threshold", "critical_threshold"):
        if key in patch:
            if patch[key] is None:
                raise ValidationError(f"{key} cannot be null")
            value = coerce_int(patch[key], key)
            if value < 0:
                raise ValidationError(f"{key} must be >= 0")
            patch[key] = value

    def _op():
        _ensure_business(business_id)
        settings = _get_or_create_settings(business_id, lock=True)
        for key, value in patch.items():
            setattr(settings, key, value)

        if settings.critical_threshold >= settings.threshold:
            current_app.logger.warning(
                "Business %s critical_threshold (%d) is not below threshold (%d)",
                business_id, settings.critical_threshold, settings.threshold,
            )
        db.session.commit()
        return settings

    return run_with_retry(_op)


def update_thresholds(
    business_id: int,
    *,
    threshold: int | None = None,
    critical_threshold: int | None = None,
) -> LowStockThresholds:
    patch = {}
    if threshold is not None:
        patch["threshold"] = threshold
    if critical_threshold is not None:
        patch["critical_threshold"] = critical_threshold
    settings = update_notification_settings(business_id, patch)
    return LowStockThresholds(settings.threshold, settings.critical_threshold)


def evaluate_business(business_id: int, thresholds: LowStockThresholds | None = None) -> LowStockResult:
    """Classify every active product of a business against its thresholds."""
    if thresholds is None:
        thresholds = get_thresholds(business_id)
    else:
        _ensure_business(business_id)

    products = db.session.query(Product).filter_by(
        business_id=business_id,
        is_active=True,
    ).order_by(Product.current_stock.asc(), Product.id.asc()).all()
    return classify_low_stock(products, thresholds)


def dispatch_low_stock_alerts(
    business_id: int,
    dispatcher: AlertDispatcher,
    *,
    now: datetime | None = None,
) -> DispatchOutcome:
    """
    Send one alert batch unless nothing is low or the last batch was too recent.

    The settings row is locked so concurrent pollers cannot both send.
    last_alert_at is only recorded after the dispatcher returns.
    """
    now = now or utcnow()
    interval_seconds = current_app.config.get("LOW_STOCK_ALERT_INTERVAL_SECONDS", 300)

    def _op():
        business = _ensure_business(business_id)
        settings = _get_or_create_settings(business_id, lock=True)
        thresholds = LowStockThresholds(settings.threshold, settings.critical_threshold)
        result = evaluate_business(business_id, thresholds)

        if not result.needs_alert:
            db.session.commit()
            return DispatchOutcome(sent=False, result=result, skipped_reason="nothing_to_report")

        next_allowed = next_allowed_at(settings.last_alert_at, interval_seconds)
        if next_allowed is not None and now < next_allowed:
            db.session.commit()
            return DispatchOutcome(
                sent=False,
                result=result,
                skipped_reason="rate_limited",
                next_allowed_at=next_allowed,
            )

        dispatcher.send_low_stock_alert(business, result)
        settings.last_alert_at = now
        db.session.commit()
        return DispatchOutcome(sent=True, result=result, next_allowed_at=next_allowed_at(now, interval_seconds))

    return run_with_retry(_op)
