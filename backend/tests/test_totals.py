from decimal import Decimal

import pytest

from tradeledger.errors import ValidationError
from tradeledger.services.totals import compute_document, compute_item, quotation_totals, tax_rate_for


class TestItemTotals:
    """Line arithmetic: subtotal, discount, tax, total."""

    def test_taxed_line(self, app):
        item = compute_item("2", "100", "10", "B")

        assert item.subtotal == Decimal("200.00")
        assert item.net_amount == Decimal("190.00")
        assert item.tax_rate == Decimal("18")
        assert item.tax_amount == Decimal("34.20")
        assert item.total_with_tax == Decimal("224.20")

    def test_line_tax_is_exact(self, app):
        """0.25 * 18% stays 0.045 until the document is rounded."""
        item = compute_item("1", "0.25", tax_code="B")
        assert item.tax_amount == Decimal("0.045")
        assert item.total_with_tax == Decimal("0.295")

    def test_exempt_codes(self, app):
        assert compute_item("3", "7", tax_code="A").tax_amount == Decimal("0.00")
        assert compute_item("3", "7", tax_code="None").tax_amount == Decimal("0.00")
        assert compute_item("3", "7", tax_code=None).tax_code == "None"

    def test_fractional_quantity(self, app):
        item = compute_item("2.5", "4.10", tax_code="A")
        assert item.subtotal == Decimal("10.25")

    def test_discount_above_subtotal_rejected(self, app):
        with pytest.raises(ValidationError) as excinfo:
            compute_item("1", "10", "10.01", "A")
        assert excinfo.value.field == "discount"

    @pytest.mark.parametrize("quantity", ["0", "-1", "abc", None])
    def test_bad_quantity_rejected(self, app, quantity):
        with pytest.raises(ValidationError):
            compute_item(quantity, "10")

    def test_negative_price_rejected(self, app):
        with pytest.raises(ValidationError):
            compute_item("1", "-5")

    def test_unknown_tax_code_rejected(self, app):
        with pytest.raises(ValidationError):
            tax_rate_for("C")

    def test_tax_rate_follows_config(self, app):
        app.config["TAX_RATE_B"] = "16"
        try:
            assert compute_item("1", "100", tax_code="B").tax_amount == Decimal("16.00")
        finally:
            app.config["TAX_RATE_B"] = "18"


class TestDocumentTotals:
    """Buckets and grand totals derived from lines."""

    def test_two_bucket_totals(self, app):
        totals = compute_document([
            compute_item("5", "100", "0", "B"),
            compute_item("2", "50", "10", "A"),
            compute_item("1", "20", "0", "None"),
        ])

        assert totals.subtotal == Decimal("620.00")
        assert totals.total_discount == Decimal("10.00")
        assert totals.total_b18 == Decimal("500.00")
        assert totals.total_tax_b == Decimal("90.00")
        assert totals.total_a_ex == Decimal("90.00")
        assert totals.total_tax_a == Decimal("0.00")
        assert totals.total_tax == Decimal("90.00")
        assert totals.grand_total == Decimal("700.00")
        assert totals.rounded_amount == Decimal("700.00")

    def test_grand_total_identity(self, app):
        """grand_total == subtotal - discount + tax for any mix of lines."""
        totals = compute_document([
            compute_item("3", "19.99", "1.50", "B"),
            compute_item("0.5", "33.33", "0", "B"),
        ])
        assert totals.grand_total == totals.subtotal - totals.total_discount + totals.total_tax

    def test_quotation_totals_have_no_buckets(self, app):
        columns = quotation_totals([compute_item("2", "100", "0", "B"), compute_item("1", "40", "5", "A")])

        assert set(columns) == {"subtotal", "total_discount", "total_tax", "grand_total"}
        assert columns["grand_total"] == Decimal("271.00")

    def test_rounding_happens_once_per_document(self, app):
        """Fractional line values are summed exactly, then rounded half-up."""
        single = compute_document([compute_item("1.5", "0.33", "0", "B")])
        assert single.grand_total == Decimal("0.5841")
        assert single.rounded_amount == Decimal("0.58")

        three = compute_document([compute_item("1", "10.03", "0", "B") for _ in range(3)])
        assert three.total_tax_b == Decimal("5.4162")
        assert three.rounded_amount == Decimal("35.51")

    def test_half_up_on_the_document(self, app):
        totals = compute_document([compute_item("1", "0.25", tax_code="B")])
        assert totals.rounded_amount == Decimal("0.30")

    def test_persisted_columns_are_two_places(self, app):
        totals = compute_document([compute_item("1", "10.03", "0", "B") for _ in range(3)])
        columns = totals.as_columns()

        assert columns["total_tax_b"] == Decimal("5.42")
        assert columns["grand_total"] == Decimal("35.51")
        assert columns["rounded_amount"] == Decimal("35.51")
