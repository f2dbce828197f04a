"""
Stock ledger tests.

Covers weighted-average costing, adjustments, the non-negative stock rule,
administrative movement edits and ledger verification.
"""

from decimal import Decimal

import pytest

from tradeledger.errors import InsufficientStock, InvalidState, NotFound, ValidationError
from tradeledger.extensions import db
from tradeledger.models import Product, StockMovement, Supplier
from tradeledger.services import invoice_service, product_service, stock_service

from conftest import ACTOR_ID, stock_of


def _movement_count(product_id):
    return db.session.query(StockMovement).filter_by(product_id=product_id).count()


class TestWeightedAverageCost:
    """Inbound receipts blend into the running average."""

    def test_first_receipt_sets_average_to_unit_cost(self, empty_product):
        """Zero stock and zero average take the receipt's cost as-is."""
        stock_service.receive_stock(empty_product.id, "10", "5.00", actor_id=ACTOR_ID)

        product = db.session.get(Product, empty_product.id)
        assert Decimal(product.current_stock) == Decimal("10")
        assert Decimal(product.average_cost) == Decimal("5")

    def test_second_receipt_blends_cost(self, empty_product):
        """10 @ 5.00 then 10 @ 6.00 averages to 5.50."""
        stock_service.receive_stock(empty_product.id, "10", "5.00")
        movement = stock_service.receive_stock(empty_product.id, "10", "6.00")

        db.session.expire_all()
        product = db.session.get(Product, empty_product.id)
        assert Decimal(product.current_stock) == Decimal("20")
        assert Decimal(product.average_cost) == Decimal("5.5")
        assert Decimal(movement.previous_average_cost) == Decimal("5")
        assert Decimal(movement.new_average_cost) == Decimal("5.5")
        assert Decimal(movement.total_cost) == Decimal("60")

    def test_weighted_average_helper(self):
        """Pure blend arithmetic, rounded to six places."""
        result = stock_service.weighted_average_cost(Decimal("3"), Decimal("10"), Decimal("1"), Decimal("11"))
        assert result == Decimal("10.250000")
        assert stock_service.weighted_average_cost(Decimal("0"), Decimal("9"), Decimal("4"), Decimal("2")) == Decimal("2")

    def test_receive_with_supplier_updates_supplier_totals(self, product, supplier):
        """Direct receipts count toward the supplier's total purchases."""
        stock_service.receive_stock(product.id, "4", "7.50", supplier_id=supplier.id, batch_number="B-17")

        db.session.expire_all()
        refreshed = db.session.get(Supplier, supplier.id)
        assert Decimal(refreshed.total_purchases) == Decimal("30")
        assert refreshed.last_purchase_date is not None
        assert db.session.get(Product, product.id).supplier_id == supplier.id
        assert Decimal(refreshed.outstanding_balance) == Decimal("0")

    def test_receive_requires_unit_cost(self, product):
        with pytest.raises(ValidationError):
            stock_service.receive_stock(product.id, "1", None)

    def test_receive_rejects_archived_product(self, product):
        """Archived products cannot take new stock."""
        product_service.archive_product(product.id)

        with pytest.raises(ValidationError):
            stock_service.receive_stock(product.id, "5", "5.00")
        assert stock_of(product.id) == Decimal("20")

    def test_receive_rejects_non_positive_quantity(self, product):
        with pytest.raises(ValidationError):
            stock_service.receive_stock(product.id, "0", "5.00")
        with pytest.raises(ValidationError):
            stock_service.receive_stock(product.id, "-3", "5.00")


class TestAdjustments:
    """Manual corrections in either direction."""

    def test_adjust_out_keeps_average_and_snapshots_cost(self, product):
        """Outbound adjustments are valued at the current average."""
        movement = stock_service.adjust_stock(product.id, "3", "out", "damage", notes="Torn bags")

        assert movement.type == "adjustment"
        assert movement.direction == "out"
        assert Decimal(movement.unit_cost) == Decimal("5")
        assert Decimal(movement.previous_stock) == Decimal("20")
        assert Decimal(movement.new_stock) == Decimal("17")
        assert stock_of(product.id) == Decimal("17")
        assert Decimal(db.session.get(Product, product.id).average_cost) == Decimal("5")

    def test_adjust_in_correction(self, product):
        stock_service.adjust_stock(product.id, "2", "in", "correction")
        assert stock_of(product.id) == Decimal("22")

    def test_adjust_out_beyond_stock_fails_without_side_effects(self, product):
        """Stock never goes negative; the failed attempt leaves no movement."""
        before = _movement_count(product.id)

        with pytest.raises(InsufficientStock) as excinfo:
            stock_service.adjust_stock(product.id, "25", "out", "loss")

        assert excinfo.value.details["available"] == Decimal("20")
        assert excinfo.value.details["required"] == Decimal("25")
        assert stock_of(product.id) == Decimal("20")
        assert _movement_count(product.id) == before

    def test_adjust_rejects_unknown_reason(self, product):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(product.id, "1", "out", "sale")

    def test_adjust_requires_direction(self, product):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(product.id, "1", "sideways", "damage")

    def test_adjust_unknown_product(self, db_session):
        with pytest.raises(NotFound):
            stock_service.adjust_stock(999, "1", "out", "damage")


class TestMovementAdministration:
    """Deletion and metadata edits stay within the ledger's rules."""

    def test_delete_latest_movement_reverts_aggregate(self, product):
        movement = stock_service.adjust_stock(product.id, "5", "out", "theft")
        assert stock_of(product.id) == Decimal("15")

        snapshot = stock_service.delete_movement(movement.id, actor_id=ACTOR_ID)

        assert snapshot["id"] == movement.id
        assert stock_of(product.id) == Decimal("20")
        assert db.session.get(StockMovement, movement.id) is None

    def test_delete_older_movement_is_rejected(self, product):
        """Only the newest movement can go, so the chain stays gap-free."""
        first = stock_service.list_movements(product_id=product.id)[0]
        stock_service.adjust_stock(product.id, "1", "out", "damage")

        with pytest.raises(InvalidState):
            stock_service.delete_movement(first.id)
        assert stock_of(product.id) == Decimal("19")

    def test_delete_document_movement_is_rejected(self, product, customer):
        """Invoice movements are undone by cancelling the invoice."""
        invoice = invoice_service.create_invoice(
            customer.id,
            [{"product_id": product.id, "quantity": "2", "unit_price": "9.00"}],
        )
        invoice_service.confirm_invoice(invoice.id)
        sale = stock_service.list_movements(product_id=product.id, reference_type="invoice")[0]

        with pytest.raises(InvalidState):
            stock_service.delete_movement(sale.id)
        assert stock_of(product.id) == Decimal("18")

    def test_update_metadata(self, product):
        movement = stock_service.list_movements(product_id=product.id)[0]

        updated = stock_service.update_movement_metadata(
            movement.id,
            {"notes": "Counted twice", "lot_number": "L-9", "expiry_date": "2027-01-31"},
        )

        assert updated.notes == "Counted twice"
        assert updated.lot_number == "L-9"
        assert updated.expiry_date.year == 2027

    def test_update_metadata_rejects_quantity(self, product):
        """Quantities and snapshots are immutable after insert."""
        movement = stock_service.list_movements(product_id=product.id)[0]

        with pytest.raises(ValidationError):
            stock_service.update_movement_metadata(movement.id, {"quantity": "100"})
        assert stock_of(product.id) == Decimal("20")


class TestLedgerVerification:
    """Aggregates agree with the movement history."""

    def test_consistent_ledger(self, product):
        stock_service.receive_stock(product.id, "5", "6.00")
        stock_service.adjust_stock(product.id, "2", "out", "expired")

        report = stock_service.verify_product_ledger(product.id)

        assert report["consistent"] is True
        assert Decimal(report["ledger_sum"]) == Decimal("23")
        assert report["breaks"] == []

    def test_drifted_aggregate_is_reported(self, product):
        """A stock value written outside the ledger is detected."""
        row = db.session.get(Product, product.id)
        row.current_stock = Decimal("99")
        db.session.commit()

        report = stock_service.verify_product_ledger(product.id)

        assert report["consistent"] is False
        assert Decimal(report["ledger_sum"]) == Decimal("20")

    def test_verify_all_products(self, product, empty_product):
        reports = stock_service.verify_all_products()
        assert {r["sku"] for r in reports} == {"CEM-50", "NAIL-1KG"}
        assert all(r["consistent"] for r in reports)


class TestApplyMovement:
    """The single-movement primitive used by every stock change."""

    def test_standalone_out_movement(self, product):
        movement = stock_service.apply_movement(
            product.id, "out", "sale", "3", reference_type="other", performed_by=ACTOR_ID,
        )

        assert Decimal(movement.previous_stock) == Decimal("20")
        assert Decimal(movement.new_stock) == Decimal("17")
        assert Decimal(movement.unit_cost) == Decimal("5")
        assert Decimal(movement.total_cost) == Decimal("15")
        assert stock_of(product.id) == Decimal("17")

    def test_direction_must_match_type(self, product):
        with pytest.raises(ValidationError):
            stock_service.apply_movement(product.id, "in", "purchase", "1", direction="out", unit_cost="5")
        assert _movement_count(product.id) == 1

    def test_unknown_reference_type(self, product):
        with pytest.raises(ValidationError):
            stock_service.apply_movement(product.id, "out", "sale", "1", reference_type="gift")
        assert stock_of(product.id) == Decimal("20")
