from __future__ import annotations

from sqlalchemy import event, inspect
from sqlalchemy.orm import object_session

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import ReturnStatus
from .inventory import ImmutableRecordError


TERMINAL_RETURN_STATUSES = frozenset({ReturnStatus.COMPLETED.value, ReturnStatus.REJECTED.value})


class ReturnSequence(db.Model):
    """
    Per-business counter behind RET-NNNNNN numbers.

    next_number is bumped with a single UPDATE, so two submissions can never
    be handed the same number.
    """
    __tablename__ = "return_sequences"

    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), primary_key=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)


class ReturnExchange(db.Model):
    """
    Return or exchange request against a prior sale.

    LIFECYCLE:
    1. pending: submitted by a clerk, amounts computed
    2. approved / rejected: manager decision
    3. completed: stock movements appended to the ledger (approved only)

    returned_items and exchange_items are JSON snapshots of line items:
    product_id, product_name, variant_id, quantity, unit_price_cents,
    total_price_cents, reason.

    Money is in cents. exchange_difference_cents is the only signed amount:
    positive means the customer owes more, negative means a partial refund.
    """
    __tablename__ = "returns_exchanges"
    __table_args__ = (
        db.UniqueConstraint("business_id", "return_number", name="uq_returns_business_number"),
        db.Index("ix_returns_business_status", "business_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    # Human-readable number, e.g. "RET-000012"
    return_number = db.Column(db.String(32), nullable=False)

    original_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    customer_id = db.Column(db.String(64), nullable=True)

    return_type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    reason_description = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ReturnStatus.PENDING.value, index=True)

    returned_items = db.Column(db.JSON, nullable=False, default=list)
    exchange_items = db.Column(db.JSON, nullable=False, default=list)

    original_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    exchange_difference_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    decided_by = db.Column(db.String(64), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    processed_by = db.Column(db.String(64), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    original_sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due_cents(self) -> int:
        """Amount that changes hands at the counter, regardless of direction."""
        if self.return_type == "return":
            return self.refund_amount_cents
        return abs(self.exchange_difference_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "return_number": self.return_number,
            "original_sale_id": self.original_sale_id,
            "customer_id": self.customer_id,
            "return_type": self.return_type,
            "reason": self.reason,
            "reason_description": self.reason_description,
            "status": self.status,
            "returned_items": list(self.returned_items or []),
            "exchange_items": list(self.exchange_items or []),
            "original_amount_cents": self.original_amount_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "exchange_difference_cents": self.exchange_difference_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "decided_by": self.decided_by,
            "decided_at": to_utc_z(self.decided_at),
            "rejection_reason": self.rejection_reason,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at),
            "version_id": self.version_id,
        }


@event.listens_for(ReturnExchange, "before_update")
def _freeze_terminal_returns(mapper, connection, target):
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous in TERMINAL_RETURN_STATUSES:
        raise ImmutableRecordError(f"return {target.id} is {previous} and can no longer change")


class ReturnPayment(db.Model):
    """
    Money settled against a completed return or exchange.

    direction follows the sign of the reconciliation: refunds go to the
    customer, positive exchange differences are collected from them.
    """
    __tablename__ = "return_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns_exchanges.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    direction = db.Column(db.String(16), nullable=False)

    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    return_doc = db.relationship("ReturnExchange", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "direction": self.direction,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
