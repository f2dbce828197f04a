# Overview: Line-item and document totals; the only place amounts on documents are derived.

"""
Totals

Every create/update of an invoice, purchase or quotation funnels its lines
through this module. Caller-supplied subtotals, tax amounts and document
totals are never read; they are re-derived here from quantity, unit amount,
discount and tax code.

ITEM (exact; never rounded before aggregation):
    subtotal       = quantity * unit_amount
    net            = subtotal - discount
    tax_amount     = net * tax_rate / 100
    total_with_tax = net + tax_amount

DOCUMENT (two exclusive tax buckets, A and B; code "None" is in neither):
    total_a_ex / total_tax_a   net and tax of bucket A
    total_b18  / total_tax_b   net and tax of bucket B
    grand_total    = subtotal - total_discount + total_tax
    rounded_amount = grand_total to 2 d.p., half-up

ROUNDING:
    rounded_amount is the single rounding step and the amount billed, paid
    and posted to balances. The 2 d.p. columns on lines and documents hold
    half-up copies of the exact values (as_columns / apply_item_totals).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..errors import ValidationError
from ..models.documents import TAX_CODES
from ..money import ZERO, non_negative, positive_quantity, quantize_money


@dataclass(frozen=True)
class ItemTotals:
    quantity: Decimal
    unit_amount: Decimal
    discount: Decimal
    tax_code: str
    tax_rate: Decimal
    subtotal: Decimal
    net_amount: Decimal
    tax_amount: Decimal
    total_with_tax: Decimal


@dataclass
class DocumentTotals:
    subtotal: Decimal = ZERO
    total_discount: Decimal = ZERO
    total_a_ex: Decimal = ZERO
    total_tax_a: Decimal = ZERO
    total_b18: Decimal = ZERO
    total_tax_b: Decimal = ZERO
    total_tax: Decimal = ZERO
    grand_total: Decimal = ZERO
    rounded_amount: Decimal = ZERO
    items: list[ItemTotals] = field(default_factory=list)

    def as_columns(self) -> dict:
        return {
            "subtotal": quantize_money(self.subtotal),
            "total_discount": quantize_money(self.total_discount),
            "total_a_ex": quantize_money(self.total_a_ex),
            "total_tax_a": quantize_money(self.total_tax_a),
            "total_b18": quantize_money(self.total_b18),
            "total_tax_b": quantize_money(self.total_tax_b),
            "total_tax": quantize_money(self.total_tax),
            "grand_total": quantize_money(self.grand_total),
            "rounded_amount": self.rounded_amount,
        }


def tax_rate_for(tax_code: str) -> Decimal:
    if tax_code not in TAX_CODES:
        raise ValidationError(
            f"tax_code must be one of {', '.join(TAX_CODES)}",
            field="tax_code",
        )
    if tax_code == "A":
        return Decimal(str(current_app.config.get("TAX_RATE_A", "0")))
    if tax_code == "B":
        return Decimal(str(current_app.config.get("TAX_RATE_B", "18")))
    return ZERO


def compute_item(quantity, unit_amount, discount=0, tax_code="A", *, amount_field: str = "unit_price") -> ItemTotals:
    qty = positive_quantity(quantity)
    # Unit amount and discount are stored at 2 d.p.; normalise them first so
    # a line re-derived from its stored row gives the same totals.
    unit = quantize_money(non_negative(unit_amount, amount_field))
    disc = quantize_money(non_negative(discount if discount is not None else 0, "discount"))
    code = "None" if tax_code is None else str(tax_code)
    rate = tax_rate_for(code)

    subtotal = qty * unit
    if disc > subtotal:
        raise ValidationError("discount cannot exceed the line subtotal", field="discount")

    net = subtotal - disc
    tax_amount = net * rate / Decimal("100")
    return ItemTotals(
        quantity=qty,
        unit_amount=unit,
        discount=disc,
        tax_code=code,
        tax_rate=rate,
        subtotal=subtotal,
        net_amount=net,
        tax_amount=tax_amount,
        total_with_tax=net + tax_amount,
    )


def compute_document(items: list[ItemTotals]) -> DocumentTotals:
    totals = DocumentTotals(items=list(items))
    for item in items:
        totals.subtotal += item.subtotal
        totals.total_discount += item.discount
        if item.tax_code == "A":
            totals.total_a_ex += item.net_amount
            totals.total_tax_a += item.tax_amount
        elif item.tax_code == "B":
            totals.total_b18 += item.net_amount
            totals.total_tax_b += item.tax_amount

    totals.total_tax = totals.total_tax_a + totals.total_tax_b
    totals.grand_total = totals.subtotal - totals.total_discount + totals.total_tax
    totals.rounded_amount = quantize_money(totals.grand_total)
    return totals


def quotation_totals(items: list[ItemTotals]) -> dict:
    """Quotations carry no tax buckets: tax is summed across every line."""
    subtotal = sum((i.subtotal for i in items), ZERO)
    total_discount = sum((i.discount for i in items), ZERO)
    total_tax = sum((i.tax_amount for i in items), ZERO)
    return {
        "subtotal": quantize_money(subtotal),
        "total_discount": quantize_money(total_discount),
        "total_tax": quantize_money(total_tax),
        "grand_total": quantize_money(subtotal - total_discount + total_tax),
    }


def apply_item_totals(line, totals: ItemTotals) -> None:
    """Copy derived values onto a line-item row (money columns at 2 d.p.)."""
    line.quantity = totals.quantity
    line.discount = totals.discount
    line.tax_code = totals.tax_code
    line.tax_rate = totals.tax_rate
    line.subtotal = quantize_money(totals.subtotal)
    line.tax_amount = quantize_money(totals.tax_amount)
    line.total_with_tax = quantize_money(totals.total_with_tax)
