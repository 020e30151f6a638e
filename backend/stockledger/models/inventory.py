from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import object_session

from ..extensions import db
from ..time_utils import to_utc_z


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to rewrite or delete an append-only record."""


class Product(db.Model):
    """
    Product master data plus the cached stock projection.

    current_stock is an index over inventory_transactions: it always equals the
    signed sum of the product's ledger entries and is written only by
    ledger_service inside the same DB transaction as the append.

    min_stock_level is the per-product reorder threshold. When it is NULL the
    business-wide threshold from NotificationSettings applies.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("business_id", "sku", name="uq_products_business_sku"),
        db.Index("ix_products_business_active", "business_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(128), nullable=True, index=True)

    # Authoritative storage in cents
    purchase_price_cents = db.Column(db.Integer, nullable=True)
    selling_price_cents = db.Column(db.Integer, nullable=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    business = db.relationship("Business", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "sku": self.sku,
            "name": self.name,
            "barcode": self.barcode,
            "purchase_price_cents": self.purchase_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "current_stock": self.current_stock,
            "min_stock_level": self.min_stock_level,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """
    One immutable stock movement.

    quantity is an unsigned magnitude for IN/OUT (direction comes from
    transaction_type) and the signed delta for ADJUSTMENT. Rows are never
    updated or deleted; a mistake is corrected by appending an offsetting
    adjustment.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_business_product_ts", "business_id", "product_id", "timestamp"),
        db.Index("ix_invtx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    reference_id = db.Column(db.String(64), nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)

    # Adjustments only
    reason_code = db.Column(db.String(32), nullable=True)

    unit_cost_cents = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    # Projected stock right after this entry was appended
    balance_after = db.Column(db.Integer, nullable=False)

    created_by = db.Column(db.String(64), nullable=True)

    timestamp = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product", backref=db.backref("transactions", lazy="dynamic"))

    @property
    def signed_quantity(self) -> int:
        from ..services.inventory_service import signed_quantity
        return signed_quantity(self.transaction_type, self.quantity)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "product_id": self.product_id,
            "transaction_type": self.transaction_type,
            "quantity": self.quantity,
            "signed_quantity": self.signed_quantity,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "reason_code": self.reason_code,
            "unit_cost_cents": self.unit_cost_cents,
            "notes": self.notes,
            "balance_after": self.balance_after,
            "created_by": self.created_by,
            "timestamp": to_utc_z(self.timestamp),
        }


@event.listens_for(InventoryTransaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise ImmutableRecordError(f"inventory transaction {target.id} is append-only")


@event.listens_for(InventoryTransaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target):
    raise ImmutableRecordError(f"inventory transaction {target.id} cannot be deleted")
