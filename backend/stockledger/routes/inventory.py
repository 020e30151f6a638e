# backend/stockledger/routes/inventory.py
"""
Inventory ledger routes.

Every route is scoped to one business through the URL. Stock is never set
directly: sales, purchases and manual corrections all append ledger entries,
and current_stock follows.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- as_of filtering is inclusive: timestamp <= as_of.
"""
from flask import Blueprint, current_app, request

from ..errors import HANDLED_ERRORS, error_response
from ..models import InventoryTransaction
from ..services import adjustment_service, inventory_service, ledger_service
from ..time_utils import parse_iso_datetime
from ..validation import ModelValidationPolicy, ValidationError, coerce_int, validate_payload


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/businesses/<int:business_id>/inventory")

TRANSACTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "transaction_type",
        "quantity",
        "reference_type",
        "reference_id",
        "unit_cost_cents",
        "notes",
        "reason_code",
        "created_by",
    },
    required_on_create={"product_id", "transaction_type", "quantity"},
)

ADJUSTMENT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "delta", "reason_code", "reason_text", "created_by", "allow_negative"},
    required_on_create={"product_id", "delta", "reason_code"},
)

PREVIEW_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "delta"},
    required_on_create={"product_id", "delta"},
)


def _query_datetime(name: str):
    raw = request.args.get(name)
    if raw is None:
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


def _query_int(name: str, default: int, *, minimum: int = 1, maximum: int | None = None) -> int:
    raw = request.args.get(name)
    if raw is None:
        return default
    value = coerce_int(raw, name)
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{name} cannot exceed {maximum}")
    return value


# =============================================================================
# LEDGER WRITES
# =============================================================================

@inventory_bp.post("/transactions")
def record_transaction_route(business_id: int):
    """
    Append one movement (sale, purchase, return or correction).

    Request body:
    {
        "product_id": 12,
        "transaction_type": "in" | "out" | "adjustment",
        "quantity": 5,                      (signed for adjustment)
        "reference_type": "purchase",       (optional)
        "reference_id": "PO-1001",          (optional)
        "unit_cost_cents": 450,             (optional)
        "notes": "...",                     (optional)
        "reason_code": "damaged_goods"      (adjustment only)
    }
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=InventoryTransaction,
            payload=payload,
            policy=TRANSACTION_POLICY,
            partial=False,
        )
        reference = None
        if patch.get("reference_type") is not None:
            reference = ledger_service.Reference.of(patch["reference_type"], patch.get("reference_id"))
        elif patch.get("reference_id") is not None:
            raise ValidationError("reference_id requires reference_type")

        tx = ledger_service.record_transaction(
            business_id=business_id,
            product_id=patch["product_id"],
            transaction_type=patch["transaction_type"],
            quantity=patch["quantity"],
            reference=reference,
            unit_cost_cents=patch.get("unit_cost_cents"),
            notes=patch.get("notes"),
            reason_code=patch.get("reason_code"),
            created_by=patch.get("created_by"),
        )
        status = inventory_service.get_stock_status(business_id=business_id, product_id=tx.product_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record inventory transaction")
        return {"error": "Internal server error"}, 500

    return {"transaction": tx.to_dict(), "stock": status}, 201


@inventory_bp.post("/adjustments")
def adjust_stock_route(business_id: int):
    """
    Manual stock correction with a mandatory reason code.

    Request body:
    {
        "product_id": 12,
        "delta": -3,
        "reason_code": "damaged_goods",
        "reason_text": "crushed in transit",   (required for "other")
        "allow_negative": false                (optional, overrides config)
    }

    Returns:
        201: adjustment recorded (negative_stock flags a below-zero result)
        400: invalid input, or negative result while blocking is enabled
        404: unknown product
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=InventoryTransaction,
            payload=payload,
            policy=ADJUSTMENT_POLICY,
            partial=False,
        )
        allow_negative = patch.get("allow_negative")
        if allow_negative is not None and not isinstance(allow_negative, bool):
            raise ValidationError("allow_negative must be a boolean")

        result = adjustment_service.adjust_stock(
            business_id=business_id,
            product_id=patch["product_id"],
            delta=patch["delta"],
            reason_code=patch["reason_code"],
            reason_text=patch.get("reason_text"),
            created_by=patch.get("created_by"),
            allow_negative=allow_negative,
        )
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500

    return result.to_dict(), 201


@inventory_bp.post("/adjustments/preview")
def preview_adjustment_route(business_id: int):
    """Dry run of an adjustment: previous and resulting stock, nothing written."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=InventoryTransaction,
            payload=payload,
            policy=PREVIEW_POLICY,
            partial=False,
        )
        preview = adjustment_service.preview_adjustment(
            business_id=business_id,
            product_id=patch["product_id"],
            delta=patch["delta"],
        )
    except HANDLED_ERRORS as e:
        return error_response(e)

    return preview.to_dict(), 200


# =============================================================================
# READS
# =============================================================================

@inventory_bp.get("/products/<int:product_id>/stock")
def get_stock_route(business_id: int, product_id: int):
    """
    Cached and projected stock side by side.

    ?as_of=ISO-8601 adds the projection at that instant.
    """
    try:
        as_of = _query_datetime("as_of")
        status = inventory_service.get_stock_status(business_id=business_id, product_id=product_id)
        if as_of is not None:
            status["as_of"] = request.args.get("as_of")
            status["projected_stock_as_of"] = inventory_service.get_projected_stock(
                business_id, product_id, as_of=as_of
            )
    except HANDLED_ERRORS as e:
        return error_response(e)

    return status, 200


@inventory_bp.get("/transactions")
def list_business_transactions_route(business_id: int):
    """Business-wide ledger history. ?limit= (default 200) and ?since=ISO-8601."""
    try:
        limit = _query_int("limit", 200, maximum=1000)
        since = _query_datetime("since")
        rows = inventory_service.list_business_transactions(business_id, limit=limit, since=since)
    except HANDLED_ERRORS as e:
        return error_response(e)

    return {"items": [tx.to_dict() for tx in rows], "count": len(rows)}, 200


@inventory_bp.get("/products/<int:product_id>/transactions")
def list_transactions_route(business_id: int, product_id: int):
    try:
        limit = _query_int("limit", 200, maximum=1000)
        since = _query_datetime("since")
        rows = inventory_service.list_inventory_transactions(
            business_id=business_id,
            product_id=product_id,
            limit=limit,
            since=since,
        )
    except HANDLED_ERRORS as e:
        return error_response(e)

    return {"items": [tx.to_dict() for tx in rows], "count": len(rows)}, 200


@inventory_bp.get("/products/<int:product_id>/summary")
def movement_summary_route(business_id: int, product_id: int):
    try:
        days = _query_int("days", 30, maximum=3650)
        summary = inventory_service.get_stock_movement_summary(
            business_id=business_id,
            product_id=product_id,
            days=days,
        )
    except HANDLED_ERRORS as e:
        return error_response(e)

    return summary, 200
