"""
Ledger append and stock projection tests.

The cached Product.current_stock must always equal the signed sum of the
product's ledger entries, and entries are never rewritten.
"""

import pytest

from stockledger.extensions import db
from stockledger.models import ImmutableRecordError, InventoryTransaction, Product
from stockledger.models.enums import AdjustmentReason, ReferenceType, TransactionType
from stockledger.services import inventory_service, ledger_service
from stockledger.services.ledger_service import LedgerEntry, Reference
from stockledger.validation import NotFoundError, ValidationError


def _ledger_sum(product_id):
    rows = db.session.query(InventoryTransaction).filter_by(product_id=product_id).all()
    return sum(tx.signed_quantity for tx in rows)


class TestLedgerSumInvariant:
    def test_projection_matches_sum_after_mixed_appends(self, business, make_product):
        product = make_product("SUM-1", stock=10)

        ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type="out", quantity=3,
            reference=Reference(ReferenceType.SALE, "17"),
        )
        ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type="adjustment", quantity=-2,
            reason_code=AdjustmentReason.DAMAGED_GOODS,
        )
        ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type="in", quantity=7,
            reference=Reference(ReferenceType.PURCHASE, "PO-2"),
        )

        projected = inventory_service.get_projected_stock(business.id, product.id)
        assert projected == 12
        assert projected == _ledger_sum(product.id)
        assert db.session.get(Product, product.id).current_stock == projected

    def test_balance_after_tracks_running_total(self, business, make_product):
        product = make_product("RUN-1")

        balances = []
        for kind, qty in [("in", 5), ("out", 2), ("adjustment", 4), ("out", 10)]:
            tx = ledger_service.record_transaction(
                business_id=business.id, product_id=product.id,
                transaction_type=kind, quantity=qty,
                reason_code="physical_count_correction" if kind == "adjustment" else None,
            )
            balances.append(tx.balance_after)

        assert balances == [5, 3, 7, -3]

    def test_negative_stock_is_allowed_and_reported(self, business, make_product):
        product = make_product("NEG-1", stock=1)

        tx = ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type=TransactionType.OUT, quantity=3,
        )

        assert tx.balance_after == -2
        status = inventory_service.get_stock_status(business_id=business.id, product_id=product.id)
        assert status["negative_stock"] is True
        assert status["consistent"] is True

    def test_bulk_append_is_all_or_nothing(self, business, make_product):
        first = make_product("BULK-1", stock=5)
        second = make_product("BULK-2", stock=5)
        before = db.session.query(InventoryTransaction).count()

        with pytest.raises(ValidationError):
            ledger_service.record_transactions(
                business_id=business.id,
                entries=[
                    LedgerEntry(first.id, TransactionType.OUT, 1),
                    LedgerEntry(second.id, TransactionType.OUT, 0),
                ],
            )

        assert db.session.query(InventoryTransaction).count() == before
        assert db.session.get(Product, first.id).current_stock == 5

        created = ledger_service.record_transactions(
            business_id=business.id,
            entries=[
                LedgerEntry(first.id, TransactionType.OUT, 1),
                LedgerEntry(second.id, TransactionType.IN, 2),
            ],
        )
        assert len(created) == 2
        assert db.session.get(Product, first.id).current_stock == 4
        assert db.session.get(Product, second.id).current_stock == 7

    def test_single_append_owns_its_commit(self, business, make_product):
        product = make_product("OWN-1", stock=1)

        with pytest.raises(TypeError):
            ledger_service.record_transaction(
                business_id=business.id, product_id=product.id,
                transaction_type="in", quantity=1, commit=False,
            )

        ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type="in", quantity=1,
        )
        db.session.rollback()
        assert db.session.get(Product, product.id).current_stock == 2
        assert _ledger_sum(product.id) == 2


class TestHistoryIsImmutable:
    def test_updating_an_entry_is_rejected(self, business, make_product):
        product = make_product("IMM-1", stock=4)
        tx = db.session.query(InventoryTransaction).filter_by(product_id=product.id).first()

        tx.quantity = 40
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()

        assert db.session.get(InventoryTransaction, tx.id).quantity == 4

    def test_deleting_an_entry_is_rejected(self, business, make_product):
        product = make_product("IMM-2", stock=4)
        tx = db.session.query(InventoryTransaction).filter_by(product_id=product.id).first()

        db.session.delete(tx)
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()

    def test_correction_appends_and_count_grows(self, business, make_product):
        product = make_product("IMM-3", stock=4)
        counts = [db.session.query(InventoryTransaction).filter_by(product_id=product.id).count()]

        ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type="out", quantity=4,
        )
        counts.append(db.session.query(InventoryTransaction).filter_by(product_id=product.id).count())

        # wrong sale quantity, corrected with an offsetting entry
        ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type="adjustment", quantity=1,
            reason_code="physical_count_correction",
        )
        counts.append(db.session.query(InventoryTransaction).filter_by(product_id=product.id).count())

        assert counts == [1, 2, 3]
        assert db.session.get(Product, product.id).current_stock == 1


class TestLedgerValidation:
    @pytest.mark.parametrize("kind,qty", [
        ("in", 0),
        ("in", -1),
        ("out", 0),
        ("out", -5),
        ("adjustment", 0),
        ("in", 2.5),
        ("in", True),
        ("in", "1e3"),
    ])
    def test_rejects_bad_quantities(self, business, make_product, kind, qty):
        product = make_product("VAL-1")

        with pytest.raises(ValidationError):
            ledger_service.record_transaction(
                business_id=business.id, product_id=product.id,
                transaction_type=kind, quantity=qty,
            )
        assert db.session.query(InventoryTransaction).filter_by(product_id=product.id).count() == 0

    def test_rejects_unknown_transaction_type(self, business, make_product):
        product = make_product("VAL-2")
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(
                business_id=business.id, product_id=product.id,
                transaction_type="transfer", quantity=1,
            )

    def test_reason_code_only_on_adjustments(self, business, make_product):
        product = make_product("VAL-3")
        with pytest.raises(ValidationError):
            ledger_service.record_transaction(
                business_id=business.id, product_id=product.id,
                transaction_type="in", quantity=1, reason_code="expired",
            )

    def test_unknown_product(self, business):
        with pytest.raises(NotFoundError):
            ledger_service.record_transaction(
                business_id=business.id, product_id=9999,
                transaction_type="in", quantity=1,
            )

    def test_product_from_other_business_is_not_found(self, business, other_business, make_product):
        product = make_product("VAL-4", business_id=other_business.id)
        with pytest.raises(NotFoundError):
            ledger_service.record_transaction(
                business_id=business.id, product_id=product.id,
                transaction_type="in", quantity=1,
            )

    def test_reference_of_coerces_strings(self):
        ref = Reference.of("Purchase", 42)
        assert ref.reference_type is ReferenceType.PURCHASE
        assert ref.reference_id == "42"


class TestProjection:
    def test_verify_and_rebuild_repair_drift(self, business, make_product):
        product = make_product("DRIFT-1", stock=6)

        # simulate a cache written outside the ledger
        db.session.query(Product).filter_by(id=product.id).update({"current_stock": 99})
        db.session.commit()

        drift = inventory_service.verify_stock(business.id)
        assert [(d.product_id, d.cached, d.projected) for d in drift] == [(product.id, 99, 6)]

        repaired = inventory_service.rebuild_stock_cache(business.id)
        assert len(repaired) == 1
        assert inventory_service.verify_stock(business.id) == []
        assert db.session.get(Product, product.id).current_stock == 6

    def test_append_heals_drifted_cache(self, business, make_product, monkeypatch):
        product = make_product("DRIFT-2", stock=6)
        db.session.query(Product).filter_by(id=product.id).update({"current_stock": 0})
        db.session.commit()

        refreshed = []
        real_refresh = ledger_service.refresh_current_stock

        def spy(target):
            refreshed.append(target.id)
            return real_refresh(target)

        monkeypatch.setattr(ledger_service, "refresh_current_stock", spy)

        tx = ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type="in", quantity=1,
        )
        assert tx.balance_after == 7
        assert db.session.get(Product, product.id).current_stock == 7
        assert refreshed == [product.id]

    def test_movement_summary_splits_in_and_out(self, business, make_product):
        product = make_product("SUMM-1", stock=10)
        ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type="out", quantity=4,
        )
        ledger_service.record_transaction(
            business_id=business.id, product_id=product.id,
            transaction_type="adjustment", quantity=-1,
            reason_code="theft_loss",
        )

        summary = inventory_service.get_stock_movement_summary(
            business_id=business.id, product_id=product.id, days=7,
        )
        assert summary["total_in"] == 10
        assert summary["total_out"] == 5
        assert summary["net_change"] == 5
        assert summary["transaction_count"] == 3
