import re
from datetime import timedelta
from decimal import Decimal

import pytest

from tradeledger.errors import AlreadyConverted, InsufficientStock, InvalidState
from tradeledger.extensions import db
from tradeledger.models import Invoice, Quotation
from tradeledger.services import invoice_service, product_service, quotation_service
from tradeledger.time_utils import utcnow

from conftest import ACTOR_ID, stock_of


def _quotation(customer, product, quantity="4", **fields):
    return quotation_service.create_quotation(
        customer.id,
        [
            {"product_id": product.id, "quantity": quantity, "unit_price": "120", "discount": "20", "tax_code": "B"},
        ],
        actor_id=ACTOR_ID,
        **fields,
    )


def _approved(customer, product, **kwargs):
    quotation = _quotation(customer, product, **kwargs)
    quotation_service.send_quotation(quotation.id)
    quotation_service.approve_quotation(quotation.id, actor_id=ACTOR_ID)
    return quotation


class TestQuotationLifecycle:
    """draft -> sent -> approved/rejected, with expiry."""

    def test_create(self, customer, product):
        quotation = _quotation(customer, product, notes="Valid for site A")

        assert re.fullmatch(r"QUO-\d{4}-00001", quotation.quotation_number)
        assert quotation.status == "draft"
        assert Decimal(quotation.subtotal) == Decimal("480")
        assert Decimal(quotation.total_discount) == Decimal("20")
        assert Decimal(quotation.total_tax) == Decimal("82.80")
        assert Decimal(quotation.grand_total) == Decimal("542.80")
        assert quotation.items[0].tax_code == "B"

    def test_send_approve(self, customer, product):
        quotation = _approved(customer, product)

        db.session.expire_all()
        stored = db.session.get(Quotation, quotation.id)
        assert stored.status == "approved"
        assert stored.sent_at is not None
        assert stored.approved_by == ACTOR_ID

    def test_reject_is_terminal(self, customer, product):
        quotation = _quotation(customer, product)
        quotation_service.send_quotation(quotation.id)
        quotation_service.reject_quotation(quotation.id, actor_id=ACTOR_ID)

        with pytest.raises(InvalidState):
            quotation_service.approve_quotation(quotation.id)

    def test_draft_cannot_be_approved(self, customer, product):
        quotation = _quotation(customer, product)
        with pytest.raises(InvalidState):
            quotation_service.approve_quotation(quotation.id)

    def test_edit_while_sent_but_not_after_approval(self, customer, product):
        quotation = _quotation(customer, product)
        quotation_service.send_quotation(quotation.id)

        updated = quotation_service.update_quotation(
            quotation.id,
            {"items": [{"product_id": product.id, "quantity": "1", "unit_price": "100", "tax_code": "A"}]},
        )
        assert Decimal(updated.grand_total) == Decimal("100")

        quotation_service.approve_quotation(quotation.id)
        with pytest.raises(InvalidState):
            quotation_service.update_quotation(quotation.id, {"notes": "too late"})

    def test_delete_only_drafts(self, customer, product):
        draft = _quotation(customer, product)
        quotation_service.delete_quotation(draft.id)
        assert db.session.get(Quotation, draft.id) is None

        sent = _quotation(customer, product)
        quotation_service.send_quotation(sent.id)
        with pytest.raises(InvalidState):
            quotation_service.delete_quotation(sent.id)

    def test_expire_past_valid_until(self, customer, product):
        stale = _quotation(customer, product, valid_until=(utcnow() - timedelta(days=1)).isoformat())
        fresh = _quotation(customer, product, valid_until=(utcnow() + timedelta(days=10)).isoformat())
        approved = _approved(customer, product, valid_until=(utcnow() - timedelta(days=1)).isoformat())

        expired = quotation_service.expire_quotations()

        assert expired == [stale.quotation_number]
        db.session.expire_all()
        assert db.session.get(Quotation, stale.id).status == "expired"
        assert db.session.get(Quotation, fresh.id).status == "draft"
        assert db.session.get(Quotation, approved.id).status == "approved"


class TestQuotationConversion:
    """Approved quotations convert into one draft invoice, once."""

    def test_convert_creates_draft_invoice(self, customer, product):
        quotation = _approved(customer, product, terms="50% upfront")

        invoice = quotation_service.convert_quotation_to_invoice(quotation.id, actor_id=ACTOR_ID)

        assert invoice.status == "draft"
        assert invoice.quotation_id == quotation.id
        assert invoice.terms == "50% upfront"
        assert invoice.due_date is not None
        assert len(invoice.items) == 1
        line = invoice.items[0]
        assert Decimal(line.unit_price) == Decimal("120")
        assert Decimal(line.discount) == Decimal("20")
        assert line.tax_code == "B"
        assert Decimal(invoice.rounded_amount) == Decimal("542.80")
        assert stock_of(product.id) == Decimal("20")

        db.session.expire_all()
        stored = db.session.get(Quotation, quotation.id)
        assert stored.status == "converted"
        assert stored.converted_invoice_id == invoice.id

    def test_second_conversion_is_rejected(self, customer, product):
        quotation = _approved(customer, product)
        quotation_service.convert_quotation_to_invoice(quotation.id)

        with pytest.raises(AlreadyConverted) as excinfo:
            quotation_service.convert_quotation_to_invoice(quotation.id)

        assert isinstance(excinfo.value, InvalidState)
        assert db.session.query(Invoice).filter_by(quotation_id=quotation.id).count() == 1

    def test_unapproved_quotation_cannot_convert(self, customer, product):
        quotation = _quotation(customer, product)
        with pytest.raises(InvalidState):
            quotation_service.convert_quotation_to_invoice(quotation.id)
        assert db.session.query(Invoice).count() == 0

    def test_product_archived_after_approval_still_converts(self, customer, product):
        quotation = _approved(customer, product)
        product_service.archive_product(product.id)

        invoice = quotation_service.convert_quotation_to_invoice(quotation.id)

        assert invoice.items[0].product_id == product.id
        assert Decimal(invoice.rounded_amount) == Decimal("542.80")

    def test_explicit_due_date(self, customer, product):
        quotation = _approved(customer, product)
        due = utcnow() + timedelta(days=7)

        invoice = quotation_service.convert_quotation_to_invoice(quotation.id, due_date=due)

        assert abs(invoice.due_date - due) < timedelta(seconds=1)

    def test_conversion_skips_stock_check_until_confirmation(self, customer, product):
        """The converted invoice follows normal invoice rules from then on."""
        quotation = _approved(customer, product, quantity="50")
        invoice = quotation_service.convert_quotation_to_invoice(quotation.id)

        with pytest.raises(InsufficientStock):
            invoice_service.confirm_invoice(invoice.id)
        assert stock_of(product.id) == Decimal("20")
