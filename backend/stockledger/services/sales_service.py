# Overview: Sale records as consumed by the return engine, plus sale posting through the ledger.

from __future__ import annotations

from ..extensions import db
from ..models import Sale, SaleLine
from ..models.enums import ReferenceType, TransactionType
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, coerce_positive_quantity, coerce_price_cents
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import get_product
from .ledger_service import Reference, _append_inner


def get_sale(business_id: int, sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None or sale.business_id != business_id:
        raise NotFoundError(f"sale {sale_id} not found")
    return sale


def record_sale(
    *,
    business_id: int,
    invoice_number: str,
    lines: list[dict],
    customer_id: str | None = None,
    created_by: str | None = None,
) -> Sale:
    """
    Persist a completed sale and move its stock out through the ledger.

    Each line is {product_id, quantity, unit_price_cents, variant_id?}. The
    sale, its lines and one OUT entry per line are committed together.
    """
    invoice_number = (invoice_number or "").strip()
    if not invoice_number:
        raise ValidationError("invoice_number is required")
    if not lines:
        raise ValidationError("a sale needs at least one line")

    def _op():
        sale = Sale(
            business_id=business_id,
            invoice_number=invoice_number,
            customer_id=customer_id,
            status="completed",
            sale_date=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()

        total = 0
        for raw in lines:
            product = get_product(business_id, raw.get("product_id"), lock=True)
            quantity = coerce_positive_quantity(raw.get("quantity"))
            unit_price = coerce_price_cents(raw.get("unit_price_cents"), "unit_price_cents")
            line = SaleLine(
                sale_id=sale.id,
                product_id=product.id,
                variant_id=raw.get("variant_id"),
                product_name=product.name,
                quantity=quantity,
                unit_price_cents=unit_price,
                line_total_cents=unit_price * quantity,
            )
            db.session.add(line)
            total += line.line_total_cents

            _append_inner(
                product=product,
                transaction_type=TransactionType.OUT,
                quantity=quantity,
                reference=Reference(ReferenceType.SALE, str(sale.id)),
                notes=f"Sale {invoice_number}",
                created_by=created_by,
            )

        sale.total_cents = total
        db.session.commit()
        return sale

    return run_with_retry(_op)
