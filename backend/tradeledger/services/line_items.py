# Overview: Builds priced line-item rows from caller payloads for invoices, purchases and quotations.

from __future__ import annotations

from decimal import Decimal

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Product
from ..money import ZERO
from .totals import DocumentTotals, apply_item_totals, compute_document, compute_item


def _product_id(raw, index: int) -> int:
    if isinstance(raw, bool) or raw is None:
        raise ValidationError(f"items[{index}].product_id is required", field="product_id")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"items[{index}].product_id must be an integer", field="product_id")


def build_lines(items, line_cls, *, amount_field: str, allow_archived: bool = False) -> tuple[list, DocumentTotals]:
    """
    Turn item payloads into unsaved line rows plus the document totals.

    Archived products are rejected unless allow_archived is set (lines carried
    over from an already approved quotation).

    Only product_id, quantity, the unit amount (unit_price or unit_cost),
    discount, tax_code, description and unit are read; any caller-supplied
    subtotal/tax/total keys are ignored and re-derived.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required", field="items")

    lines = []
    item_totals = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object", field="items")

        product_id = _product_id(raw.get("product_id"), index)
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFound("product", product_id)
        if product.is_archived and not allow_archived:
            raise ValidationError(f"Product {product.sku} is archived", field="product_id")

        if raw.get(amount_field) is None:
            raise ValidationError(f"items[{index}].{amount_field} is required", field=amount_field)

        totals = compute_item(
            raw.get("quantity"),
            raw.get(amount_field),
            raw.get("discount", 0),
            raw.get("tax_code", "A"),
            amount_field=amount_field,
        )

        line = line_cls(
            position=index,
            product_id=product.id,
            item_code=product.sku,
            description=(raw.get("description") or product.name)[:255],
            unit=raw.get("unit") or product.unit,
        )
        setattr(line, amount_field, totals.unit_amount)
        apply_item_totals(line, totals)

        lines.append(line)
        item_totals.append(totals)

    return lines, compute_document(item_totals)


def copy_lines(source_lines, line_cls, *, amount_field: str, source_amount_field: str = "unit_price") -> tuple[list, DocumentTotals]:
    """
    Copy lines verbatim (same price, discount, tax code) onto another document
    type. The products were validated when the source was priced, so archiving
    one since then does not block the copy.
    """
    payload = [
        {
            "product_id": line.product_id,
            "description": line.description,
            "unit": line.unit,
            "quantity": line.quantity,
            amount_field: getattr(line, source_amount_field),
            "discount": line.discount,
            "tax_code": line.tax_code,
        }
        for line in source_lines
    ]
    return build_lines(payload, line_cls, amount_field=amount_field, allow_archived=True)


def stock_requirements(lines) -> dict[int, Decimal]:
    """Aggregate quantities per product (a product may appear on several lines)."""
    required: dict[int, Decimal] = {}
    for line in lines:
        required[line.product_id] = required.get(line.product_id, ZERO) + Decimal(line.quantity)
    return required
