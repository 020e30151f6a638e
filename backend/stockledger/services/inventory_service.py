# Overview: Stock projector; derives on-hand quantity from the ledger and keeps the product cache honest.

# backend/stockledger/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..models import Business, Product, InventoryTransaction
from ..models.enums import TransactionType
from ..time_utils import to_utc_z, window_start
from ..validation import NotFoundError
from .concurrency import lock_for_update, run_with_retry
"""
Stock projection invariants (authoritative)

- projected_stock(P) = SUM(signed quantity) over every ledger entry of P.
    in         -> +quantity
    out        -> -quantity
    adjustment -> quantity (already signed)
- Product.current_stock is a cache of that sum. It is refreshed by the ledger
  inside the same DB transaction as the append and never written elsewhere,
  except by rebuild_stock_cache() when repairing detected drift.
- Negative projections are allowed and reported, never rejected here.
"""


@dataclass(frozen=True)
class StockDrift:
    product_id: int
    cached: int
    projected: int

    @property
    def delta(self) -> int:
        return self.projected - self.cached

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "cached_stock": self.cached,
            "projected_stock": self.projected,
            "delta": self.delta,
        }


def signed_quantity(transaction_type, quantity: int) -> int:
    kind = TransactionType(transaction_type)
    if kind is TransactionType.IN:
        return quantity
    if kind is TransactionType.OUT:
        return -quantity
    return quantity


def _signed_quantity_expr():
    return case(
        (InventoryTransaction.transaction_type == TransactionType.IN.value, InventoryTransaction.quantity),
        (InventoryTransaction.transaction_type == TransactionType.OUT.value, -InventoryTransaction.quantity),
        else_=InventoryTransaction.quantity,
    )


def get_product(
    business_id: int,
    product_id: int,
    *,
    require_active: bool = False,
    lock: bool = False,
) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None or product.business_id != business_id:
        raise NotFoundError(f"product {product_id} not found")
    if require_active and not product.is_active:
        raise NotFoundError(f"product {product_id} is inactive")
    return product


def get_projected_stock(business_id: int, product_id: int, as_of: datetime | None = None) -> int:
    """Sum of signed ledger quantities, optionally as-of (inclusive)."""
    q = db.session.query(
        func.coalesce(func.sum(_signed_quantity_expr()), 0)
    ).filter(
        InventoryTransaction.business_id == business_id,
        InventoryTransaction.product_id == product_id,
    )
    if as_of is not None:
        q = q.filter(InventoryTransaction.timestamp <= as_of)

    return int(q.scalar() or 0)


def refresh_current_stock(product: Product) -> int:
    """
    Recompute the cache from the ledger. Must run inside the caller's unit of
    work, after the new entry has been flushed.
    """
    projected = get_projected_stock(product.business_id, product.id)
    if product.current_stock != projected:
        product.current_stock = projected
    return projected


def verify_stock(business_id: int, product_id: int | None = None) -> list[StockDrift]:
    """Compare every cached current_stock with its ledger projection."""
    projected_q = db.session.query(
        InventoryTransaction.product_id,
        func.coalesce(func.sum(_signed_quantity_expr()), 0).label("projected"),
    ).filter(
        InventoryTransaction.business_id == business_id,
    ).group_by(InventoryTransaction.product_id)
    if product_id is not None:
        projected_q = projected_q.filter(InventoryTransaction.product_id == product_id)
    projected = {row.product_id: int(row.projected) for row in projected_q.all()}

    products_q = db.session.query(Product).filter_by(business_id=business_id)
    if product_id is not None:
        products_q = products_q.filter(Product.id == product_id)

    drift = []
    for product in products_q.order_by(Product.id).all():
        expected = projected.get(product.id, 0)
        if product.current_stock != expected:
            drift.append(StockDrift(product.id, product.current_stock, expected))
    return drift


def rebuild_stock_cache(business_id: int) -> list[StockDrift]:
    """Rewrite drifted caches from the ledger. Returns what was repaired."""
    def _op():
        drift = verify_stock(business_id)
        for row in drift:
            product = get_product(business_id, row.product_id, lock=True)
            refresh_current_stock(product)
            current_app.logger.warning(
                "Repaired stock cache for product %s: cached=%d projected=%d",
                row.product_id, row.cached, row.projected,
            )
        db.session.commit()
        return drift

    return run_with_retry(_op)


def get_stock_status(*, business_id: int, product_id: int) -> dict:
    product = get_product(business_id, product_id)
    projected = get_projected_stock(business_id, product_id)
    count = db.session.query(func.count(InventoryTransaction.id)).filter_by(
        business_id=business_id,
        product_id=product_id,
    ).scalar()

    return {
        "business_id": business_id,
        "product_id": product_id,
        "current_stock": product.current_stock,
        "projected_stock": projected,
        "consistent": product.current_stock == projected,
        "negative_stock": projected < 0,
        "min_stock_level": product.min_stock_level,
        "transaction_count": int(count or 0),
    }


def get_stock_movement_summary(
    *, business_id: int, product_id: int, days: int = 30, now: datetime | None = None
) -> dict:
    """
    Inbound/outbound totals over the last `days`.

    Positive adjustments count as inbound, negative ones as outbound.
    """
    get_product(business_id, product_id)

    start, end = window_start(days, now)

    rows = db.session.query(
        InventoryTransaction.transaction_type,
        InventoryTransaction.quantity,
    ).filter(
        InventoryTransaction.business_id == business_id,
        InventoryTransaction.product_id == product_id,
        InventoryTransaction.timestamp >= start,
        InventoryTransaction.timestamp <= end,
    ).all()

    total_in = 0
    total_out = 0
    for transaction_type, quantity in rows:
        delta = signed_quantity(transaction_type, quantity)
        if delta > 0:
            total_in += delta
        else:
            total_out += -delta

    return {
        "product_id": product_id,
        "days": days,
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "total_in": total_in,
        "total_out": total_out,
        "net_change": total_in - total_out,
        "transaction_count": len(rows),
    }


def list_inventory_transactions(
    *, business_id: int, product_id: int, limit: int = 200, since: datetime | None = None
):
    get_product(business_id, product_id)

    q = InventoryTransaction.query.filter_by(
        business_id=business_id,
        product_id=product_id,
    )
    if since is not None:
        q = q.filter(InventoryTransaction.timestamp >= since)

    q = q.order_by(
        InventoryTransaction.timestamp.desc(),
        InventoryTransaction.id.desc(),
    )
    return q.limit(limit).all()


def list_business_transactions(business_id: int, limit: int = 200, since: datetime | None = None):
    """Ledger entries across every product of a business, newest first."""
    if db.session.get(Business, business_id) is None:
        raise NotFoundError(f"business {business_id} not found")

    q = InventoryTransaction.query.filter_by(business_id=business_id)
    if since is not None:
        q = q.filter(InventoryTransaction.timestamp >= since)

    q = q.order_by(
        InventoryTransaction.timestamp.desc(),
        InventoryTransaction.id.desc(),
    )
    return q.limit(limit).all()
