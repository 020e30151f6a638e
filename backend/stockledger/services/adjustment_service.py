# Overview: Manual stock corrections (damage, counts, loss, found stock) with a mandatory reason code.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import InventoryTransaction
from ..models.enums import AdjustmentReason, ReferenceType, TransactionType
from ..validation import MAX_QUANTITY, NegativeStockError, ValidationError, coerce_enum, coerce_int
from .concurrency import run_with_retry
from .inventory_service import get_product, get_projected_stock
from .ledger_service import Reference, _append_inner


REASON_LABELS = {
    AdjustmentReason.PHYSICAL_COUNT_CORRECTION: "Physical count correction",
    AdjustmentReason.DAMAGED_GOODS: "Damaged goods",
    AdjustmentReason.EXPIRED: "Expired products",
    AdjustmentReason.THEFT_LOSS: "Theft/Loss",
    AdjustmentReason.FOUND_INVENTORY: "Found inventory",
    AdjustmentReason.SUPPLIER_RETURN: "Supplier return",
    AdjustmentReason.QUALITY_REJECTION: "Quality control rejection",
    AdjustmentReason.TRANSFER: "Transfer between locations",
    AdjustmentReason.OTHER: "Other",
}


@dataclass(frozen=True)
class AdjustmentPreview:
    product_id: int
    delta: int
    previous_stock: int
    new_stock: int

    @property
    def negative_stock(self) -> bool:
        return self.new_stock < 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "delta": self.delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "negative_stock": self.negative_stock,
        }


@dataclass(frozen=True)
class AdjustmentResult:
    transaction: InventoryTransaction
    preview: AdjustmentPreview

    @property
    def negative_stock(self) -> bool:
        return self.preview.negative_stock

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            **self.preview.to_dict(),
        }


def _normalize_delta(delta) -> int:
    value = coerce_int(delta, "delta")
    if value == 0:
        raise ValidationError("delta must be non-zero")
    if abs(value) > MAX_QUANTITY:
        raise ValidationError(f"delta cannot exceed {MAX_QUANTITY}")
    return value


def _build_notes(reason: AdjustmentReason, reason_text: str | None) -> str:
    text = (reason_text or "").strip()
    if reason is AdjustmentReason.OTHER:
        if not text:
            raise ValidationError("reason_text is required when reason_code is 'other'")
        return text
    label = REASON_LABELS[reason]
    return f"{label}: {text}" if text else label


def preview_adjustment(*, business_id: int, product_id: int, delta) -> AdjustmentPreview:
    """What the stock would become, without writing anything."""
    value = _normalize_delta(delta)
    get_product(business_id, product_id)
    current = get_projected_stock(business_id, product_id)
    return AdjustmentPreview(product_id, value, current, current + value)


def adjust_stock(
    *,
    business_id: int,
    product_id: int,
    delta,
    reason_code,
    reason_text: str | None = None,
    created_by: str | None = None,
    allow_negative: bool | None = None,
) -> AdjustmentResult:
    """
    Append a signed ADJUSTMENT to the ledger.

    A result below zero is a warning, not an error, unless the caller (or the
    ALLOW_NEGATIVE_ADJUSTMENTS setting) asks for it to be blocked.
    """
    value = _normalize_delta(delta)
    reason = coerce_enum(AdjustmentReason, reason_code, "reason_code")
    notes = _build_notes(reason, reason_text)
    if allow_negative is None:
        allow_negative = current_app.config.get("ALLOW_NEGATIVE_ADJUSTMENTS", True)

    def _op():
        product = get_product(business_id, product_id, lock=True)
        current = get_projected_stock(business_id, product_id)
        preview = AdjustmentPreview(product_id, value, current, current + value)

        if preview.negative_stock and not allow_negative:
            raise NegativeStockError(
                f"adjustment would make stock negative ({preview.new_stock})"
            )

        tx = _append_inner(
            product=product,
            transaction_type=TransactionType.ADJUSTMENT,
            quantity=value,
            reference=Reference(ReferenceType.MANUAL_ADJUSTMENT),
            notes=notes,
            reason_code=reason,
            created_by=created_by,
        )
        db.session.commit()

        current_app.logger.info(
            "Adjusted product %s by %d (%s): %d -> %d",
            product_id, value, reason.value, preview.previous_stock, preview.new_stock,
        )
        return AdjustmentResult(tx, preview)

    return run_with_retry(_op)
