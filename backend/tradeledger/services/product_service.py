# Overview: Product catalogue operations; stock and cost fields are only reachable through the ledger.

"""
Product Service

- create_product records any opening quantity as an in/initial_stock
  movement, so the ledger sum invariant holds from the first row.
- update_product uses an allow-list; SKU, stock and average cost are not
  writable after creation.
- Every product belongs to a category; an unknown category_id is NotFound.
- Archived products stay queryable and can still be reversed by document
  cancellations, but cannot be received or placed on new documents.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Category, Product, Supplier
from ..time_utils import utcnow
from ..validation import (
    PRODUCT_POLICY,
    PRODUCT_UPDATE_POLICY,
    enforce_rules_product,
    validate_payload,
)
from . import stock_service
from .concurrency import run_with_retry


logger = logging.getLogger(__name__)


def _check_supplier(supplier_id) -> None:
    if supplier_id is not None and db.session.get(Supplier, supplier_id) is None:
        raise NotFound("supplier", supplier_id)


def _check_category(category_id) -> None:
    if category_id is not None and db.session.get(Category, category_id) is None:
        raise NotFound("category", category_id)


def create_product(payload: dict, *, actor_id: int | None = None) -> Product:
    """
    Create a product.

    Optional payload keys initial_stock and unit_cost open the ledger with
    an in/initial_stock movement (unit_cost seeds the average cost).
    """
    payload = dict(payload or {})
    initial_stock = payload.pop("initial_stock", None)
    unit_cost = payload.pop("unit_cost", None)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op() -> Product:
        _check_supplier(patch.get("supplier_id"))
        _check_category(patch.get("category_id"))
        if db.session.query(Product.id).filter_by(sku=patch["sku"]).first() is not None:
            raise ValidationError(f"SKU {patch['sku']} already exists", field="sku")

        product = Product(current_stock=Decimal("0"), average_cost=Decimal("0"), **patch)
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            raise ValidationError(f"SKU {patch['sku']} already exists", field="sku")

        if initial_stock is not None and Decimal(str(initial_stock)) != 0:
            stock_service.apply_movement_locked(
                product,
                "in",
                "initial_stock",
                initial_stock,
                unit_cost=unit_cost,
                reference_type="other",
                notes="Opening stock",
                performed_by=actor_id,
            )
            product.last_supply_date = utcnow()

        db.session.commit()
        return product

    product = run_with_retry(_op)
    logger.info("Product %s created (stock %s)", product.sku, product.current_stock)
    return product


def update_product(product_id: int, payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op() -> Product:
        product = stock_service.get_product_locked(product_id)
        if "supplier_id" in patch:
            _check_supplier(patch["supplier_id"])
        if "category_id" in patch:
            _check_category(patch["category_id"])
        for key, value in patch.items():
            setattr(product, key, value)
        db.session.commit()
        return product

    return run_with_retry(_op)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("product", product_id)
    return product


def list_products(
    *,
    include_archived: bool = False,
    low_stock_only: bool = False,
    category_id: int | None = None,
) -> list[Product]:
    query = db.session.query(Product)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if not include_archived:
        query = query.filter(Product.is_archived.is_(False))
    if low_stock_only:
        query = query.filter(Product.current_stock <= Product.low_stock_threshold)
    return query.order_by(Product.name.asc()).all()


def list_low_stock_products() -> list[Product]:
    return list_products(low_stock_only=True)


def _set_archived(product_id: int, archived: bool) -> Product:
    def _op() -> Product:
        product = stock_service.get_product_locked(product_id)
        product.is_archived = archived
        product.archived_at = utcnow() if archived else None
        db.session.commit()
        return product

    product = run_with_retry(_op)
    logger.info("Product %s %s", product.sku, "archived" if archived else "restored")
    return product


def archive_product(product_id: int) -> Product:
    return _set_archived(product_id, True)


def restore_product(product_id: int) -> Product:
    return _set_archived(product_id, False)
