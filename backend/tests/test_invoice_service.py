"""
Invoice lifecycle tests.

Stock deduction and client balance side effects must fire exactly once and
be reversed exactly once; failed operations must leave no trace.
"""

import re
from decimal import Decimal

import pytest

from tradeledger.errors import (
    CannotCancelPaidDocument,
    InsufficientStock,
    InvalidState,
    PaymentExceedsBalance,
    ValidationError,
)
from tradeledger.extensions import db
from tradeledger.models import Client, Invoice, Product, StockMovement
from tradeledger.services import invoice_service, stock_service

from conftest import ACTOR_ID, stock_of


def _draft(customer, product, quantity="5", unit_price="100", tax_code="B", **fields):
    return invoice_service.create_invoice(
        customer.id,
        [{"product_id": product.id, "quantity": quantity, "unit_price": unit_price, "tax_code": tax_code}],
        actor_id=ACTOR_ID,
        **fields,
    )


def _client(customer_id) -> Client:
    db.session.expire_all()
    return db.session.get(Client, customer_id)


def _sale_movements(invoice_id):
    return (
        db.session.query(StockMovement)
        .filter_by(reference_type="invoice", reference_id=invoice_id)
        .order_by(StockMovement.id)
        .all()
    )


class TestInvoiceDrafts:
    """Draft creation, editing and deletion have no stock or balance effects."""

    def test_create_derives_totals(self, customer, product):
        invoice = _draft(customer, product)

        assert re.fullmatch(r"INV-\d{4}-00001", invoice.invoice_number)
        assert invoice.status == "draft"
        assert Decimal(invoice.subtotal) == Decimal("500")
        assert Decimal(invoice.total_b18) == Decimal("500")
        assert Decimal(invoice.total_tax_b) == Decimal("90")
        assert Decimal(invoice.rounded_amount) == Decimal("590")
        assert Decimal(invoice.balance) == Decimal("590")
        assert invoice.payment_terms == "credit_30"
        assert stock_of(product.id) == Decimal("20")
        assert Decimal(_client(customer.id).outstanding_balance) == Decimal("0")

    def test_amount_due_is_rounded_once(self, customer, product):
        """Three 10.03 lines at 18% bill 35.51, not the sum of rounded lines."""
        line = {"product_id": product.id, "quantity": "1", "unit_price": "10.03", "tax_code": "B"}
        invoice = invoice_service.create_invoice(customer.id, [dict(line) for _ in range(3)])

        assert Decimal(invoice.rounded_amount) == Decimal("35.51")
        assert Decimal(invoice.balance) == Decimal("35.51")
        assert Decimal(invoice.items[0].tax_amount) == Decimal("1.81")

        invoice_service.confirm_invoice(invoice.id)
        assert Decimal(_client(customer.id).outstanding_balance) == Decimal("35.51")

    def test_numbers_are_sequential(self, customer, product):
        first = _draft(customer, product, quantity="1")
        second = _draft(customer, product, quantity="1")
        assert int(first.invoice_number[-5:]) + 1 == int(second.invoice_number[-5:])

    def test_create_checks_stock(self, customer, product):
        with pytest.raises(InsufficientStock) as excinfo:
            _draft(customer, product, quantity="21")

        item = excinfo.value.details["items"][0]
        assert item["sku"] == "CEM-50"
        assert db.session.query(Invoice).count() == 0

    def test_create_requires_items(self, customer):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(customer.id, [])

    def test_create_rejects_unknown_header_field(self, customer, product):
        """Totals cannot be supplied by the caller."""
        with pytest.raises(ValidationError):
            _draft(customer, product, rounded_amount="1")

    def test_update_replaces_items_and_totals(self, customer, product):
        invoice = _draft(customer, product)

        updated = invoice_service.update_invoice(
            invoice.id,
            {"items": [{"product_id": product.id, "quantity": "2", "unit_price": "10", "tax_code": "A"}], "notes": "Revised"},
        )

        assert len(updated.items) == 1
        assert Decimal(updated.rounded_amount) == Decimal("20")
        assert Decimal(updated.total_tax) == Decimal("0")
        assert updated.notes == "Revised"

    def test_delete_draft(self, customer, product):
        invoice = _draft(customer, product)
        invoice_service.delete_invoice(invoice.id, actor_id=ACTOR_ID)
        assert db.session.get(Invoice, invoice.id) is None

    def test_confirmed_invoice_is_not_editable(self, customer, product):
        invoice = _draft(customer, product)
        invoice_service.confirm_invoice(invoice.id)

        with pytest.raises(InvalidState):
            invoice_service.update_invoice(invoice.id, {"notes": "late edit"})
        with pytest.raises(InvalidState):
            invoice_service.delete_invoice(invoice.id)


class TestInvoiceConfirmAndCancel:
    """Confirmation deducts stock once; cancellation returns it once."""

    def test_confirm_deducts_stock_and_raises_balance(self, customer, product):
        invoice = _draft(customer, product)

        confirmed = invoice_service.confirm_invoice(invoice.id, actor_id=ACTOR_ID)

        assert confirmed.status == "confirmed"
        assert confirmed.stock_deducted is True
        assert confirmed.confirmed_by == ACTOR_ID
        assert stock_of(product.id) == Decimal("15")
        movements = _sale_movements(invoice.id)
        assert [(m.type, m.reason) for m in movements] == [("out", "sale")]
        assert Decimal(movements[0].unit_cost) == Decimal("5")
        assert Decimal(_client(customer.id).outstanding_balance) == Decimal("590")
        assert db.session.get(Product, product.id).last_sale_date is not None

    def test_confirm_twice_is_rejected(self, customer, product):
        invoice = _draft(customer, product)
        invoice_service.confirm_invoice(invoice.id)

        with pytest.raises(InvalidState):
            invoice_service.confirm_invoice(invoice.id)
        assert stock_of(product.id) == Decimal("15")
        assert len(_sale_movements(invoice.id)) == 1

    def test_confirm_rechecks_stock(self, customer, product):
        """Stock consumed after drafting blocks confirmation atomically."""
        invoice = _draft(customer, product, quantity="15")
        stock_service.adjust_stock(product.id, "10", "out", "damage")

        with pytest.raises(InsufficientStock):
            invoice_service.confirm_invoice(invoice.id)

        db.session.expire_all()
        assert db.session.get(Invoice, invoice.id).status == "draft"
        assert stock_of(product.id) == Decimal("10")
        assert _sale_movements(invoice.id) == []
        assert Decimal(_client(customer.id).outstanding_balance) == Decimal("0")

    def test_cancel_confirmed_round_trip(self, customer, product):
        """Stock returns to 20 through an in/return movement at the same average."""
        invoice = _draft(customer, product)
        invoice_service.confirm_invoice(invoice.id)

        cancelled = invoice_service.cancel_invoice(invoice.id, actor_id=ACTOR_ID, reason="Client withdrew")

        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "Client withdrew"
        assert cancelled.stock_deducted is True
        assert stock_of(product.id) == Decimal("20")
        assert Decimal(db.session.get(Product, product.id).average_cost) == Decimal("5")
        movements = _sale_movements(invoice.id)
        assert [(m.type, m.reason) for m in movements] == [("out", "sale"), ("in", "return")]
        assert Decimal(_client(customer.id).outstanding_balance) == Decimal("0")
        assert stock_service.verify_product_ledger(product.id)["consistent"] is True

    def test_cancel_draft_has_no_side_effects(self, customer, product):
        invoice = _draft(customer, product)

        invoice_service.cancel_invoice(invoice.id)

        assert stock_of(product.id) == Decimal("20")
        assert _sale_movements(invoice.id) == []
        assert Decimal(_client(customer.id).outstanding_balance) == Decimal("0")

    def test_cancel_twice_is_rejected(self, customer, product):
        invoice = _draft(customer, product)
        invoice_service.confirm_invoice(invoice.id)
        invoice_service.cancel_invoice(invoice.id)

        with pytest.raises(InvalidState):
            invoice_service.cancel_invoice(invoice.id)
        assert stock_of(product.id) == Decimal("20")

    def test_cancel_partially_paid_releases_unpaid_remainder(self, customer, product):
        invoice = _draft(customer, product, quantity="10", tax_code="A")
        invoice_service.confirm_invoice(invoice.id)
        invoice_service.record_invoice_payment(invoice.id, "400", "cash")
        assert Decimal(_client(customer.id).outstanding_balance) == Decimal("600")

        invoice_service.cancel_invoice(invoice.id)

        client = _client(customer.id)
        assert Decimal(client.outstanding_balance) == Decimal("0")
        assert Decimal(client.total_purchases) == Decimal("400")


class TestInvoicePayments:
    """Payments accumulate and never exceed the rounded amount."""

    def test_partial_then_full_payment(self, customer, product):
        invoice = _draft(customer, product, quantity="10", tax_code="A")
        invoice_service.confirm_invoice(invoice.id)

        partial = invoice_service.record_invoice_payment(invoice.id, "400", "cash", actor_id=ACTOR_ID)
        assert partial.status == "partial"
        assert Decimal(partial.balance) == Decimal("600")

        paid = invoice_service.record_invoice_payment(invoice.id, "600", "bank_transfer", reference="TRX-1")
        assert paid.status == "paid"
        assert Decimal(paid.balance) == Decimal("0")
        assert [p.method for p in paid.payments] == ["cash", "bank_transfer"]

        client = _client(customer.id)
        assert Decimal(client.outstanding_balance) == Decimal("0")
        assert Decimal(client.total_purchases) == Decimal("1000")
        assert client.last_purchase_date is not None

    def test_overpayment_is_rejected_without_changes(self, customer, product):
        invoice = _draft(customer, product, quantity="10", tax_code="A")
        invoice_service.record_invoice_payment(invoice.id, "400", "cash")
        invoice_service.record_invoice_payment(invoice.id, "600", "cash")

        with pytest.raises(PaymentExceedsBalance):
            invoice_service.record_invoice_payment(invoice.id, "1", "cash")

        db.session.expire_all()
        stored = db.session.get(Invoice, invoice.id)
        assert stored.status == "paid"
        assert Decimal(stored.amount_paid) == Decimal("1000")
        assert len(stored.payments) == 2

    def test_single_overpayment_on_draft_changes_nothing(self, customer, product):
        """The check runs before auto-confirmation."""
        invoice = _draft(customer, product, quantity="1", unit_price="50", tax_code="A")

        with pytest.raises(PaymentExceedsBalance):
            invoice_service.record_invoice_payment(invoice.id, "50.01", "cash")

        db.session.expire_all()
        assert db.session.get(Invoice, invoice.id).status == "draft"
        assert stock_of(product.id) == Decimal("20")

    def test_payment_auto_confirms_draft(self, customer, product):
        """Any method confirms a draft and deducts stock exactly once."""
        invoice = _draft(customer, product, quantity="10", tax_code="A")

        updated = invoice_service.record_invoice_payment(invoice.id, "250", "mobile_money")

        assert updated.status == "partial"
        assert updated.stock_deducted is True
        assert stock_of(product.id) == Decimal("10")
        assert Decimal(_client(customer.id).outstanding_balance) == Decimal("750")

        invoice_service.record_invoice_payment(invoice.id, "250", "cash")
        assert stock_of(product.id) == Decimal("10")
        assert len(_sale_movements(invoice.id)) == 1

    def test_paid_invoice_cannot_be_cancelled(self, customer, product):
        invoice = _draft(customer, product, quantity="2", unit_price="10", tax_code="A")
        invoice_service.record_invoice_payment(invoice.id, "20", "card")

        with pytest.raises(CannotCancelPaidDocument):
            invoice_service.cancel_invoice(invoice.id)
        assert stock_of(product.id) == Decimal("18")

    def test_payment_on_cancelled_invoice_is_rejected(self, customer, product):
        invoice = _draft(customer, product)
        invoice_service.cancel_invoice(invoice.id)

        with pytest.raises(InvalidState):
            invoice_service.record_invoice_payment(invoice.id, "10", "cash")

    @pytest.mark.parametrize("amount, method", [("0", "cash"), ("-5", "cash"), ("10", "credit"), ("10", "barter")])
    def test_invalid_payment_input(self, customer, product, amount, method):
        invoice = _draft(customer, product)

        with pytest.raises(ValidationError):
            invoice_service.record_invoice_payment(invoice.id, amount, method)
