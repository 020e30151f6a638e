# backend/stockledger/routes/alerts.py
"""
Low-stock alert routes.

GET  /low-stock           classification only, safe to poll
POST /low-stock/dispatch  hands a batch to the dispatcher, rate limited per business
GET/PUT /settings         thresholds and channel preferences
"""
from flask import Blueprint, current_app, request

from ..errors import HANDLED_ERRORS, error_response
from ..models import NotificationSettings
from ..services import alert_service
from ..validation import ModelValidationPolicy, validate_payload


alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/businesses/<int:business_id>/alerts")

SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={
        "threshold",
        "critical_threshold",
        "email_enabled",
        "sms_enabled",
        "email_address",
        "phone_number",
    },
    required_on_create=set(),
)


def get_dispatcher() -> alert_service.AlertDispatcher:
    """Dispatcher configured on the app (ALERT_DISPATCHER), else the logging one."""
    dispatcher = current_app.config.get("ALERT_DISPATCHER")
    if dispatcher is None:
        dispatcher = alert_service.LoggingAlertDispatcher()
    return dispatcher


@alerts_bp.get("/low-stock")
def low_stock_route(business_id: int):
    try:
        thresholds = alert_service.get_thresholds(business_id)
        result = alert_service.evaluate_business(business_id, thresholds)
    except HANDLED_ERRORS as e:
        return error_response(e)

    return {"thresholds": thresholds.to_dict(), **result.to_dict()}, 200


@alerts_bp.post("/low-stock/dispatch")
def dispatch_low_stock_route(business_id: int):
    try:
        outcome = alert_service.dispatch_low_stock_alerts(business_id, get_dispatcher())
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to dispatch low stock alerts")
        return {"error": "Internal server error"}, 500

    return outcome.to_dict(), 200


@alerts_bp.get("/settings")
def get_settings_route(business_id: int):
    try:
        settings = alert_service.get_notification_settings(business_id)
    except HANDLED_ERRORS as e:
        return error_response(e)

    return {"settings": settings}, 200


@alerts_bp.put("/settings")
def update_settings_route(business_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=NotificationSettings,
            payload=payload,
            policy=SETTINGS_POLICY,
            partial=True,
        )
        settings = alert_service.update_notification_settings(business_id, patch)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update notification settings")
        return {"error": "Internal server error"}, 500

    return {"settings": settings.to_dict()}, 200
