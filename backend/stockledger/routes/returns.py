# backend/stockledger/routes/returns.py
"""
Return / Exchange API Routes

WORKFLOW:
- Submit a return or exchange against a completed sale (status: pending)
- Manager approves or rejects it
- Completing an approved request moves stock through the ledger
- Refunds or exchange top-ups are recorded as payments afterwards

Amounts are always computed server-side from the original sale lines.
"""

from flask import Blueprint, current_app, request

from ..errors import HANDLED_ERRORS, error_response
from ..models import ReturnExchange, ReturnPayment
from ..services import return_service
from ..validation import ModelValidationPolicy, validate_payload


returns_bp = Blueprint("returns", __name__, url_prefix="/api/businesses/<int:business_id>/returns")

SUBMIT_POLICY = ModelValidationPolicy(
    writable_fields={
        "original_sale_id",
        "return_type",
        "reason",
        "reason_description",
        "returned_items",
        "exchange_items",
        "customer_id",
        "notes",
    },
    required_on_create={"original_sale_id", "return_type", "reason", "returned_items"},
)

DECISION_POLICY = ModelValidationPolicy(
    writable_fields={"approve", "decided_by", "rejection_reason"},
    required_on_create={"approve"},
)

COMPLETE_POLICY = ModelValidationPolicy(
    writable_fields={"processed_by"},
    required_on_create=set(),
)

PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields={"amount_cents", "payment_method", "reference_number", "notes"},
    required_on_create={"amount_cents", "payment_method"},
)


# =============================================================================
# SUBMISSION
# =============================================================================

@returns_bp.post("/")
def submit_return_route(business_id: int):
    """
    Submit a return or exchange (status: pending).

    Request body:
    {
        "original_sale_id": 123,
        "return_type": "return" | "exchange",
        "reason": "defective",
        "returned_items": [{"product_id": 7, "quantity": 1, "sale_line_id": 55}],
        "exchange_items": [{"product_id": 9, "quantity": 1, "unit_price_cents": 650}]
    }

    Returns:
        201: request created with computed amounts
        400: invalid items or over-claimed quantities
        404: sale or product not in this business
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=ReturnExchange,
            payload=payload,
            policy=SUBMIT_POLICY,
            partial=False,
        )
        return_doc = return_service.submit_return(
            business_id=business_id,
            sale_id=patch["original_sale_id"],
            return_type=patch["return_type"],
            reason=patch["reason"],
            returned_items=patch["returned_items"],
            exchange_items=patch.get("exchange_items"),
            customer_id=patch.get("customer_id"),
            reason_description=patch.get("reason_description"),
            notes=patch.get("notes"),
        )
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit return")
        return {"error": "Internal server error"}, 500

    return {"return": return_doc.to_dict()}, 201


@returns_bp.get("/")
def list_returns_route(business_id: int):
    """?status=pending|approved|rejected|completed"""
    try:
        rows = return_service.list_returns(business_id, status=request.args.get("status"))
    except HANDLED_ERRORS as e:
        return error_response(e)

    return {"items": [r.to_dict() for r in rows], "count": len(rows)}, 200


@returns_bp.get("/<int:return_id>")
def get_return_route(business_id: int, return_id: int):
    try:
        summary = return_service.get_return_summary(business_id, return_id)
    except HANDLED_ERRORS as e:
        return error_response(e)

    return summary, 200


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================

@returns_bp.post("/<int:return_id>/decision")
def decide_return_route(business_id: int, return_id: int):
    """
    Approve or reject a pending request (manager action).

    Request body:
    {
        "approve": true,
        "decided_by": "manager-7",
        "rejection_reason": "outside return window"   (reject only)
    }

    Returns:
        200: new status
        409: request is not pending
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=ReturnExchange,
            payload=payload,
            policy=DECISION_POLICY,
            partial=False,
        )
        return_doc = return_service.decide_return(
            business_id=business_id,
            return_id=return_id,
            approve=patch["approve"],
            decided_by=patch.get("decided_by"),
            rejection_reason=patch.get("rejection_reason"),
        )
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to decide return")
        return {"error": "Internal server error"}, 500

    return {"return": return_doc.to_dict()}, 200


@returns_bp.post("/<int:return_id>/complete")
def complete_return_route(business_id: int, return_id: int):
    """
    Complete an approved request and move stock.

    Returns:
        200: completed request and the ledger entries written
        409: request is not approved, or lost a concurrent race
        422: stored amounts no longer match the items
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=ReturnExchange,
            payload=payload,
            policy=COMPLETE_POLICY,
            partial=True,
        )
        result = return_service.complete_return(
            business_id=business_id,
            return_id=return_id,
            processed_by=patch.get("processed_by"),
        )
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete return")
        return {"error": "Internal server error"}, 500

    return result.to_dict(), 200


# =============================================================================
# SETTLEMENT
# =============================================================================

@returns_bp.post("/<int:return_id>/payments")
def record_payment_route(business_id: int, return_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=ReturnPayment,
            payload=payload,
            policy=PAYMENT_POLICY,
            partial=False,
        )
        payment = return_service.record_return_payment(
            business_id=business_id,
            return_id=return_id,
            amount_cents=patch["amount_cents"],
            payment_method=patch["payment_method"],
            reference_number=patch.get("reference_number"),
            notes=patch.get("notes"),
        )
        summary = return_service.get_return_summary(business_id, return_id)
    except HANDLED_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record return payment")
        return {"error": "Internal server error"}, 500

    return {"payment": payment.to_dict(), "summary": summary}, 201
