# Overview: Transaction ledger; the only writer of inventory_transactions and of the stock cache.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from flask import current_app

from ..extensions import db
from ..models import InventoryTransaction, Product
from ..models.enums import AdjustmentReason, ReferenceType, TransactionType
from ..time_utils import utcnow
from ..validation import (
    MAX_QUANTITY,
    ValidationError,
    coerce_enum,
    coerce_int,
    coerce_positive_quantity,
    coerce_price_cents,
)
from .concurrency import run_with_retry
from .inventory_service import get_product, get_projected_stock, refresh_current_stock, signed_quantity
"""
Ledger invariants (authoritative)

- Append-only: entries are inserted, never updated or deleted. Corrections are
  new offsetting ADJUSTMENT entries.
- IN/OUT carry a positive magnitude; ADJUSTMENT carries a signed, non-zero delta.
- The product row is locked, the entry inserted and Product.current_stock
  refreshed in one DB transaction. Readers never see one without the other.
- The ledger does not enforce non-negative stock. A negative balance is logged
  as a warning and visible on the entry (balance_after < 0).
"""

MAX_NOTES_LENGTH = 500


@dataclass(frozen=True)
class Reference:
    """What caused a movement: a sale, purchase, return, exchange or manual adjustment."""
    reference_type: ReferenceType
    reference_id: str | None = None

    @classmethod
    def of(cls, reference_type, reference_id=None) -> "Reference":
        kind = coerce_enum(ReferenceType, reference_type, "reference_type")
        if reference_id is not None:
            reference_id = str(reference_id).strip() or None
            if reference_id is not None and len(reference_id) > 64:
                raise ValidationError("reference_id exceeds max length 64")
        return cls(kind, reference_id)


@dataclass(frozen=True)
class LedgerEntry:
    """One requested movement, as accepted by record_transactions()."""
    product_id: int
    transaction_type: TransactionType
    quantity: int
    reference: Optional[Reference] = None
    unit_cost_cents: Optional[int] = None
    notes: Optional[str] = None
    reason_code: Optional[AdjustmentReason] = None


def _normalize_quantity(kind: TransactionType, quantity) -> int:
    if kind is TransactionType.ADJUSTMENT:
        qty = coerce_int(quantity, "quantity")
        if qty == 0:
            raise ValidationError("quantity must be non-zero for adjustment")
        if abs(qty) > MAX_QUANTITY:
            raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")
        return qty
    return coerce_positive_quantity(quantity)


def _append_inner(
    *,
    product: Product,
    transaction_type,
    quantity,
    reference: Reference | None = None,
    unit_cost_cents=None,
    notes: str | None = None,
    reason_code=None,
    created_by: str | None = None,
) -> InventoryTransaction:
    """
    Core append without locking, retry or commit.

    The caller must hold the product row lock and own the unit of work; the
    return engine uses this to write several entries plus its status change
    in one transaction.
    """
    kind = coerce_enum(TransactionType, transaction_type, "transaction_type")
    qty = _normalize_quantity(kind, quantity)

    if unit_cost_cents is not None:
        unit_cost_cents = coerce_price_cents(unit_cost_cents, "unit_cost_cents")

    if reason_code is not None:
        reason_code = coerce_enum(AdjustmentReason, reason_code, "reason_code")
        if kind is not TransactionType.ADJUSTMENT:
            raise ValidationError("reason_code only applies to adjustment transactions")

    if notes is not None:
        notes = str(notes).strip() or None
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"notes exceeds max length {MAX_NOTES_LENGTH}")

    if reference is not None and not isinstance(reference, Reference):
        raise ValidationError("reference must be a Reference")

    before = get_projected_stock(product.business_id, product.id)
    if product.current_stock != before:
        current_app.logger.warning(
            "Stock cache drift on product %s: cached=%d projected=%d; refreshing",
            product.id, product.current_stock, before,
        )
    balance = before + signed_quantity(kind, qty)

    tx = InventoryTransaction(
        business_id=product.business_id,
        product_id=product.id,
        transaction_type=kind.value,
        quantity=qty,
        reference_type=reference.reference_type.value if reference else None,
        reference_id=reference.reference_id if reference else None,
        reason_code=reason_code.value if reason_code else None,
        unit_cost_cents=unit_cost_cents,
        notes=notes,
        balance_after=balance,
        created_by=created_by,
        timestamp=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    refresh_current_stock(product)
    db.session.flush()

    if balance < 0:
        current_app.logger.warning(
            "Product %s stock is negative (%d) after %s of %d",
            product.id, balance, kind.value, qty,
        )
    return tx


def record_transaction(
    *,
    business_id: int,
    product_id: int,
    transaction_type,
    quantity,
    reference: Reference | None = None,
    unit_cost_cents=None,
    notes: str | None = None,
    reason_code=None,
    created_by: str | None = None,
) -> InventoryTransaction:
    """
    Append one movement and refresh the product's cached stock.

    Sales and purchases call this with a SALE / PURCHASE reference. Raises
    ValidationError for malformed quantities and NotFoundError for products
    outside the business.
    """
    def _op():
        product = get_product(business_id, product_id, lock=True)
        tx = _append_inner(
            product=product,
            transaction_type=transaction_type,
            quantity=quantity,
            reference=reference,
            unit_cost_cents=unit_cost_cents,
            notes=notes,
            reason_code=reason_code,
            created_by=created_by,
        )
        db.session.commit()
        return tx

    return run_with_retry(_op)


def record_transactions(
    *,
    business_id: int,
    entries: Iterable[LedgerEntry],
    created_by: str | None = None,
) -> list[InventoryTransaction]:
    """
    Append several movements in one unit of work: all of them or none.

    Products are locked in id order so two bulk writers cannot deadlock.
    """
    entries = list(entries)
    if not entries:
        raise ValidationError("at least one entry is required")

    def _op():
        products = {}
        for pid in sorted({e.product_id for e in entries}):
            products[pid] = get_product(business_id, pid, lock=True)

        created = []
        for entry in entries:
            created.append(_append_inner(
                product=products[entry.product_id],
                transaction_type=entry.transaction_type,
                quantity=entry.quantity,
                reference=entry.reference,
                unit_cost_cents=entry.unit_cost_cents,
                notes=entry.notes,
                reason_code=entry.reason_code,
                created_by=created_by,
            ))
        db.session.commit()
        return created

    return run_with_retry(_op)


def list_reference_transactions(business_id: int, reference: Reference) -> list[InventoryTransaction]:
    """Every entry written for one sale, purchase or return."""
    return InventoryTransaction.query.filter_by(
        business_id=business_id,
        reference_type=reference.reference_type.value,
        reference_id=reference.reference_id,
    ).order_by(InventoryTransaction.id).all()
