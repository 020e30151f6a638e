"""
Return / Exchange Reconciliation Service

Customers bring back items from a prior sale, either for a refund (return) or
for different items (exchange). Amounts are settled in cents and stock only
moves when the request is completed.

DESIGN PRINCIPLES:
- Every request references the original sale; returned quantities are
  checked against what was sold minus what other open or completed returns
  already claim for the same sale line
- Unit prices for returned items come from the sale line, never the client;
  line totals are always recomputed as unit_price * quantity
- Submissions lock the original sale row and bump its version, so two
  concurrent returns cannot jointly over-claim a line
- Completion writes the status change and every ledger entry in one DB
  transaction, or nothing

LIFECYCLE:
1. submit_return   -> pending
2. decide_return   -> approved | rejected (terminal)
3. complete_return -> completed (terminal, approved only)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryTransaction, ReturnExchange, ReturnPayment, ReturnSequence, SaleLine
from ..models.enums import (
    PaymentDirection,
    PaymentMethod,
    ReferenceType,
    ReturnAction,
    ReturnReason,
    ReturnStatus,
    ReturnType,
    TransactionType,
)
from ..time_utils import utcnow
from ..validation import (
    ConcurrencyConflictError,
    NotFoundError,
    ValidationError,
    coerce_enum,
    coerce_int,
    coerce_positive_quantity,
    coerce_price_cents,
)
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import get_product
from .ledger_service import Reference, _append_inner, list_reference_transactions
from .return_workflow import (
    IllegalTransitionError,
    ReconciliationError,
    ReturnError,
    allowed_actions,
    is_terminal,
    next_status,
)
from .sales_service import get_sale

__all__ = [
    "ReturnError",
    "IllegalTransitionError",
    "ReconciliationError",
    "Reconciliation",
    "CompletionResult",
    "reconcile",
    "submit_return",
    "decide_return",
    "complete_return",
    "record_return_payment",
    "get_return",
    "list_returns",
    "get_sale_returns",
    "get_return_summary",
]


# =============================================================================
# RECONCILIATION ARITHMETIC
# =============================================================================

@dataclass(frozen=True)
class Reconciliation:
    original_amount_cents: int
    exchange_amount_cents: int
    refund_amount_cents: int
    exchange_difference_cents: int

    def to_dict(self) -> dict:
        return {
            "original_amount_cents": self.original_amount_cents,
            "exchange_amount_cents": self.exchange_amount_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "exchange_difference_cents": self.exchange_difference_cents,
        }


@dataclass(frozen=True)
class CompletionResult:
    return_doc: ReturnExchange
    transactions: list

    def to_dict(self) -> dict:
        return {
            "return": self.return_doc.to_dict(),
            "transactions": [tx.to_dict() for tx in self.transactions],
        }


def reconcile(return_type, returned_items: list[dict], exchange_items: list[dict]) -> Reconciliation:
    """
    Settle a request into money.

    return:   refund = original, difference = 0
    exchange: difference = exchange - original (positive: customer pays more,
              negative: customer gets the gap back); refund = max(0, -difference)
    """
    kind = coerce_enum(ReturnType, return_type, "return_type")
    original = sum(item["total_price_cents"] for item in returned_items)

    if kind is ReturnType.RETURN:
        return Reconciliation(original, 0, original, 0)

    exchanged = sum(item["total_price_cents"] for item in exchange_items)
    difference = exchanged - original
    return Reconciliation(original, exchanged, max(0, -difference), difference)


def _verify_reconciliation(return_doc: ReturnExchange) -> Reconciliation:
    """Recompute amounts from the stored snapshots; any disagreement aborts completion."""
    for item in list(return_doc.returned_items or []) + list(return_doc.exchange_items or []):
        if item["unit_price_cents"] * item["quantity"] != item["total_price_cents"]:
            raise ReconciliationError(
                f"line total for product {item['product_id']} does not equal unit price x quantity"
            )

    expected = reconcile(return_doc.return_type, return_doc.returned_items, return_doc.exchange_items)
    stored = (
        return_doc.original_amount_cents,
        return_doc.refund_amount_cents,
        return_doc.exchange_difference_cents,
    )
    if stored != (expected.original_amount_cents, expected.refund_amount_cents, expected.exchange_difference_cents):
        raise ReconciliationError(f"return {return_doc.id} amounts do not match its items")
    return expected


# =============================================================================
# ITEM SNAPSHOTS
# =============================================================================

def _item_key(product_id, variant_id) -> tuple:
    return (product_id, None if variant_id in (None, "") else str(variant_id))


def _match_sale_line(raw: dict, lines: list[SaleLine]) -> SaleLine:
    sale_line_id = raw.get("sale_line_id")
    if sale_line_id is not None:
        sale_line_id = coerce_int(sale_line_id, "sale_line_id")
        for line in lines:
            if line.id == sale_line_id:
                return line
        raise ValidationError(f"sale line {sale_line_id} is not part of the original sale")

    product_id = coerce_int(raw.get("product_id"), "product_id")
    key = _item_key(product_id, raw.get("variant_id"))
    matches = [line for line in lines if _item_key(line.product_id, line.variant_id) == key]
    if not matches:
        raise ValidationError(
            f"product {product_id} (variant {key[1]}) was not sold on the original sale"
        )
    if len(matches) > 1:
        raise ValidationError(
            f"product {product_id} appears on several sale lines; pass sale_line_id"
        )
    return matches[0]


def _claimed_quantities(sale_id: int) -> dict[int, int]:
    """Quantity per sale line already claimed by non-rejected returns of the sale."""
    claimed: dict[int, int] = {}
    others = db.session.query(ReturnExchange).filter(
        ReturnExchange.original_sale_id == sale_id,
        ReturnExchange.status != ReturnStatus.REJECTED.value,
    ).all()
    for other in others:
        for item in other.returned_items or []:
            line_id = item.get("sale_line_id")
            claimed[line_id] = claimed.get(line_id, 0) + item["quantity"]
    return claimed


def _build_returned_items(sale, raw_items: list) -> list[dict]:
    lines = list(sale.lines)
    claimed = _claimed_quantities(sale.id)
    snapshots = []

    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("each returned item must be an object")
        line = _match_sale_line(raw, lines)
        quantity = coerce_positive_quantity(raw.get("quantity"))

        available = line.quantity - claimed.get(line.id, 0)
        if quantity > available:
            raise ValidationError(
                f"Cannot return {quantity} of product {line.product_id}. "
                f"Original quantity: {line.quantity}, already claimed: {line.quantity - available}, "
                f"available: {available}"
            )
        claimed[line.id] = claimed.get(line.id, 0) + quantity

        snapshots.append({
            "sale_line_id": line.id,
            "product_id": line.product_id,
            "product_name": line.product_name,
            "variant_id": line.variant_id,
            "quantity": quantity,
            "unit_price_cents": line.unit_price_cents,
            "total_price_cents": line.unit_price_cents * quantity,
            "reason": raw.get("reason"),
        })
    return snapshots


def _build_exchange_items(business_id: int, raw_items: list) -> list[dict]:
    snapshots = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("each exchange item must be an object")
        product = get_product(business_id, coerce_int(raw.get("product_id"), "product_id"), require_active=True)
        quantity = coerce_positive_quantity(raw.get("quantity"))

        unit_price = raw.get("unit_price_cents")
        if unit_price is None:
            unit_price = product.selling_price_cents
        if unit_price is None:
            raise ValidationError(f"unit_price_cents is required for product {product.id}")
        unit_price = coerce_price_cents(unit_price, "unit_price_cents")

        variant_id = raw.get("variant_id")
        snapshots.append({
            "product_id": product.id,
            "product_name": product.name,
            "variant_id": None if variant_id in (None, "") else str(variant_id),
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "total_price_cents": unit_price * quantity,
            "reason": raw.get("reason"),
        })
    return snapshots


def _next_return_number(business_id: int) -> str:
    """
    Claim the next RET number inside the caller's transaction.

    The UPDATE holds the counter row until commit, so concurrent submissions
    for the same business get distinct numbers. A business's first return
    creates the row; losing that insert race surfaces as a retryable conflict.
    """
    bump = (
        update(ReturnSequence)
        .where(ReturnSequence.business_id == business_id)
        .values(next_number=ReturnSequence.next_number + 1)
    )

    if db.session.execute(bump).rowcount:
        current = (
            db.session.query(ReturnSequence.next_number)
            .filter_by(business_id=business_id)
            .scalar()
        )
        number = current - 1
    else:
        db.session.add(ReturnSequence(business_id=business_id, next_number=2))
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                "another request is numbering returns for this business; retry the request"
            ) from exc
        number = 1

    return f"RET-{number:06d}"


# =============================================================================
# SUBMISSION
# =============================================================================

def submit_return(
    *,
    business_id: int,
    sale_id: int,
    return_type,
    reason,
    returned_items: list,
    exchange_items: Optional[list] = None,
    customer_id: str | None = None,
    reason_description: str | None = None,
    notes: str | None = None,
) -> ReturnExchange:
    """
    Create a pending return or exchange.

    Raises:
        ValidationError: empty or malformed items, over-claimed quantities,
            exchange items on a plain return, exchange without items
        NotFoundError: sale or exchange product not in the business
    """
    kind = coerce_enum(ReturnType, return_type, "return_type")
    reason = coerce_enum(ReturnReason, reason, "reason")

    if not isinstance(returned_items, list) or not returned_items:
        raise ValidationError("returned_items must contain at least one item")

    exchange_items = exchange_items or []
    if not isinstance(exchange_items, list):
        raise ValidationError("exchange_items must be a list")
    if kind is ReturnType.RETURN and exchange_items:
        raise ValidationError("exchange_items are only allowed when return_type is 'exchange'")
    if kind is ReturnType.EXCHANGE and not exchange_items:
        raise ValidationError("an exchange needs at least one exchange item")

    def _op():
        sale = get_sale(business_id, sale_id, lock=True)
        if sale.status != "completed":
            raise ValidationError(f"Can only return completed sales. Sale {sale_id} has status: {sale.status}")

        returned = _build_returned_items(sale, returned_items)
        exchanged = _build_exchange_items(business_id, exchange_items)
        amounts = reconcile(kind, returned, exchanged)

        return_doc = ReturnExchange(
            business_id=business_id,
            return_number=_next_return_number(business_id),
            original_sale_id=sale.id,
            customer_id=customer_id if customer_id is not None else sale.customer_id,
            return_type=kind.value,
            reason=reason.value,
            reason_description=reason_description,
            status=ReturnStatus.PENDING.value,
            returned_items=returned,
            exchange_items=exchanged,
            original_amount_cents=amounts.original_amount_cents,
            refund_amount_cents=amounts.refund_amount_cents,
            exchange_difference_cents=amounts.exchange_difference_cents,
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(return_doc)

        # Version bump on the sale: a concurrent submission that read the same
        # claims fails with StaleDataError and re-validates on retry.
        sale.last_return_at = utcnow()

        db.session.commit()
        current_app.logger.info(
            "Submitted %s %s for sale %s: original=%d difference=%d",
            kind.value, return_doc.return_number, sale.id,
            amounts.original_amount_cents, amounts.exchange_difference_cents,
        )
        return return_doc

    return run_with_retry(_op)


# =============================================================================
# APPROVAL / REJECTION
# =============================================================================

def _get_return(business_id: int, return_id: int, *, lock: bool = False) -> ReturnExchange:
    query = db.session.query(ReturnExchange).filter_by(id=return_id)
    if lock:
        query = lock_for_update(query)
    return_doc = query.first()
    if return_doc is None or return_doc.business_id != business_id:
        raise NotFoundError(f"Return {return_id} not found")
    return return_doc


def decide_return(
    *,
    business_id: int,
    return_id: int,
    approve: bool,
    decided_by: str | None = None,
    rejection_reason: str | None = None,
) -> ReturnExchange:
    """
    Approve or reject a pending request (manager action).

    Neither outcome moves stock. Rejection is terminal.
    """
    if not isinstance(approve, bool):
        raise ValidationError("approve must be true or false")
    action = ReturnAction.APPROVE if approve else ReturnAction.REJECT

    def _op():
        return_doc = _get_return(business_id, return_id, lock=True)
        target = next_status(return_doc.status, action)

        return_doc.status = target.value
        return_doc.decided_by = decided_by
        return_doc.decided_at = utcnow()
        if target is ReturnStatus.REJECTED:
            return_doc.rejection_reason = rejection_reason

        db.session.commit()
        current_app.logger.info("Return %s %s by %s", return_doc.return_number, target.value, decided_by)
        return return_doc

    return run_with_retry(_op)


# =============================================================================
# COMPLETION (STOCK MOVEMENTS)
# =============================================================================

def complete_return(
    *,
    business_id: int,
    return_id: int,
    processed_by: str | None = None,
) -> CompletionResult:
    """
    Complete an approved request: restore returned stock, remove exchanged stock.

    One IN entry per returned item and one OUT entry per exchange item, each
    referencing the return id. The entries and the status change commit
    together; if any of them fails nothing is written and the request stays
    approved.
    """
    def _op():
        return_doc = _get_return(business_id, return_id, lock=True)
        target = next_status(return_doc.status, ReturnAction.COMPLETE)
        _verify_reconciliation(return_doc)

        returned = list(return_doc.returned_items or [])
        exchanged = list(return_doc.exchange_items or [])

        products = {}
        for pid in sorted({item["product_id"] for item in returned + exchanged}):
            products[pid] = get_product(business_id, pid, lock=True)

        reference = Reference(ReferenceType(return_doc.return_type), str(return_doc.id))
        movements = [(TransactionType.IN, item) for item in returned]
        movements += [(TransactionType.OUT, item) for item in exchanged]

        transactions = []
        for transaction_type, item in movements:
            transactions.append(_append_inner(
                product=products[item["product_id"]],
                transaction_type=transaction_type,
                quantity=item["quantity"],
                reference=reference,
                notes=f"{return_doc.return_type.capitalize()} {return_doc.return_number}",
                created_by=processed_by,
            ))

        return_doc.status = target.value
        return_doc.processed_by = processed_by
        return_doc.processed_at = utcnow()

        db.session.commit()
        current_app.logger.info(
            "Completed %s %s with %d ledger entries",
            return_doc.return_type, return_doc.return_number, len(transactions),
        )
        return CompletionResult(return_doc, transactions)

    return run_with_retry(_op)


# =============================================================================
# SETTLEMENT PAYMENTS
# =============================================================================

def _amount_paid(return_id: int) -> int:
    total = db.session.query(func.coalesce(func.sum(ReturnPayment.amount_cents), 0)).filter_by(
        return_id=return_id
    ).scalar()
    return int(total or 0)


def _payment_direction(return_doc: ReturnExchange) -> PaymentDirection:
    if return_doc.return_type == ReturnType.EXCHANGE.value and return_doc.exchange_difference_cents > 0:
        return PaymentDirection.FROM_CUSTOMER
    return PaymentDirection.TO_CUSTOMER


def record_return_payment(
    *,
    business_id: int,
    return_id: int,
    amount_cents,
    payment_method,
    reference_number: str | None = None,
    notes: str | None = None,
) -> ReturnPayment:
    """
    Record money handed back (refund) or collected (exchange top-up).

    Only completed requests can be settled, and payments never exceed the
    balance due.
    """
    amount = coerce_int(amount_cents, "amount_cents")
    if amount <= 0:
        raise ValidationError("amount_cents must be > 0")
    method = coerce_enum(PaymentMethod, payment_method, "payment_method")

    def _op():
        return_doc = _get_return(business_id, return_id, lock=True)
        if return_doc.status != ReturnStatus.COMPLETED.value:
            raise ReturnError(
                f"Can only settle completed returns. Return {return_id} has status: {return_doc.status}"
            )

        due = return_doc.balance_due_cents
        paid = _amount_paid(return_doc.id)
        if paid + amount > due:
            raise ValidationError(
                f"payment of {amount} exceeds remaining balance {due - paid}"
            )

        payment = ReturnPayment(
            return_id=return_doc.id,
            amount_cents=amount,
            payment_method=method.value,
            direction=_payment_direction(return_doc).value,
            reference_number=reference_number,
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_return(business_id: int, return_id: int) -> ReturnExchange:
    return _get_return(business_id, return_id)


def list_returns(business_id: int, status=None, limit: int = 200) -> list[ReturnExchange]:
    q = db.session.query(ReturnExchange).filter_by(business_id=business_id)
    if status is not None:
        q = q.filter_by(status=coerce_enum(ReturnStatus, status, "status").value)
    return q.order_by(ReturnExchange.created_at.desc(), ReturnExchange.id.desc()).limit(limit).all()


def get_sale_returns(business_id: int, sale_id: int) -> list[ReturnExchange]:
    get_sale(business_id, sale_id)
    return db.session.query(ReturnExchange).filter_by(
        business_id=business_id,
        original_sale_id=sale_id,
    ).order_by(ReturnExchange.id).all()


def get_return_summary(business_id: int, return_id: int) -> dict:
    """
    Return details with the original sale, settlement state and ledger entries.
    """
    return_doc = _get_return(business_id, return_id)
    paid = _amount_paid(return_doc.id)
    payments = db.session.query(ReturnPayment).filter_by(return_id=return_doc.id).order_by(ReturnPayment.id).all()
    transactions: list[InventoryTransaction] = list_reference_transactions(
        business_id,
        Reference(ReferenceType(return_doc.return_type), str(return_doc.id)),
    )

    return {
        "return": return_doc.to_dict(),
        "original_sale": return_doc.original_sale.to_dict() if return_doc.original_sale else None,
        "allowed_actions": [a.value for a in allowed_actions(return_doc.status)],
        "terminal": is_terminal(return_doc.status),
        "balance_due_cents": return_doc.balance_due_cents,
        "amount_paid_cents": paid,
        "balance_remaining_cents": return_doc.balance_due_cents - paid,
        "payments": [p.to_dict() for p in payments],
        "transactions": [tx.to_dict() for tx in transactions],
    }
