# Overview: Stock ledger and aggregate updater; every change to on-hand quantity and average cost goes through here.

"""
Stock Ledger & Aggregate Updater

INVARIANTS:
- Product.current_stock == sum of signed quantities of its movements.
- Movements of one product, ordered by id, form a chain: each
  previous_stock equals the prior movement's new_stock (the first starts at 0).
- average_cost is recomputed only by `in` movements that carry a cost:
      new_avg = (stock * avg + qty * unit_cost) / (stock + qty)
  and equals unit_cost when the previous stock or average was zero.
  Outbound and adjustment movements snapshot the current average as their
  unit_cost (valuation) without changing it.

ATOMICITY:
apply_movement_locked reads the locked product, inserts the ledger row and
writes the new aggregate in one flush. It never commits; public operations
wrap it in run_with_retry and commit once, and document transitions call it
inside their own transaction so the movement, the aggregate and the document
status persist together or not at all.

REVERSAL:
Compensating movements (type opposite to the original, reason `return` or
`correction`) are the normal undo. delete_movement is an administrative
escape hatch limited to the latest, non-document movement of a product.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import InsufficientStock, InvalidState, NotFound, ValidationError
from ..extensions import db
from ..models import Product, StockMovement, Supplier
from ..money import ZERO, non_negative, positive_quantity, quantize_cost, quantize_money, quantize_quantity
from ..time_utils import utcnow
from ..validation import MOVEMENT_METADATA_POLICY, validate_payload
from . import balance_service
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)

MOVEMENT_TYPES = ("in", "out", "adjustment")
DIRECTIONS = ("in", "out")
MOVEMENT_REASONS = (
    "purchase",
    "sale",
    "return",
    "damage",
    "loss",
    "theft",
    "expired",
    "transfer",
    "correction",
    "initial_stock",
)
ADJUSTMENT_REASONS = ("damage", "loss", "theft", "expired", "correction", "transfer")
REFERENCE_TYPES = ("purchase", "invoice", "adjustment", "return", "other")
DOCUMENT_REFERENCE_TYPES = ("purchase", "invoice")


# =============================================================================
# LOOKUPS
# =============================================================================

def get_product_locked(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFound("product", product_id)
    return product


def _get_supplier_locked(supplier_id: int) -> Supplier:
    supplier = lock_for_update(db.session.query(Supplier).filter_by(id=supplier_id)).first()
    if supplier is None:
        raise NotFound("supplier", supplier_id)
    return supplier


def lock_products(product_ids) -> dict[int, Product]:
    """Lock several products in id order so concurrent documents cannot deadlock."""
    products = {}
    for product_id in sorted(set(product_ids)):
        products[product_id] = get_product_locked(product_id)
    return products


def ensure_stock_available(requirements: dict[int, Decimal], products: dict[int, Product]) -> None:
    """
    Check aggregated per-product demand against on-hand stock.

    Reports every short product at once so the caller can render them all.
    """
    shortages = []
    for product_id, required in requirements.items():
        product = products[product_id]
        available = Decimal(product.current_stock or 0)
        if required > available:
            shortages.append({
                "product_id": product.id,
                "sku": product.sku,
                "available": str(available),
                "required": str(required),
            })
    if shortages:
        raise InsufficientStock(items=shortages)


def get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise NotFound("stock movement", movement_id)
    return movement


def weighted_average_cost(previous_stock: Decimal, previous_average: Decimal, quantity: Decimal, unit_cost: Decimal) -> Decimal:
    """Blend an inbound receipt into the running average cost."""
    if previous_stock <= 0 or previous_average == 0:
        return quantize_cost(unit_cost)
    total_value = previous_stock * previous_average + quantity * unit_cost
    return quantize_cost(total_value / (previous_stock + quantity))


def _resolve_direction(movement_type: str, direction: str | None) -> str:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(MOVEMENT_TYPES)}", field="type")
    if movement_type == "adjustment":
        if direction not in DIRECTIONS:
            raise ValidationError("direction must be 'in' or 'out' for adjustments", field="direction")
        return direction
    if direction is not None and direction != movement_type:
        raise ValidationError(f"direction {direction!r} contradicts movement type {movement_type!r}", field="direction")
    return movement_type


# =============================================================================
# CORE: ONE MOVEMENT
# =============================================================================

def apply_movement_locked(
    product: Product,
    movement_type: str,
    reason: str,
    quantity,
    *,
    direction: str | None = None,
    unit_cost=None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reference_number: str | None = None,
    supplier_id: int | None = None,
    batch_number: str | None = None,
    lot_number: str | None = None,
    expiry_date=None,
    notes: str | None = None,
    performed_by: int | None = None,
    movement_date=None,
) -> StockMovement:
    """
    Append one ledger entry and update the product aggregate (no commit).

    The caller must hold the product row (get_product_locked) within the
    current transaction.
    """
    resolved = _resolve_direction(movement_type, direction)
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"reason must be one of {', '.join(MOVEMENT_REASONS)}", field="reason")
    if reference_type is not None and reference_type not in REFERENCE_TYPES:
        raise ValidationError(f"reference_type must be one of {', '.join(REFERENCE_TYPES)}", field="reference_type")
    qty = positive_quantity(quantity)

    previous_stock = Decimal(product.current_stock or 0)
    previous_average = Decimal(product.average_cost or 0)

    if resolved == "out":
        if qty > previous_stock:
            raise InsufficientStock(
                product_id=product.id,
                sku=product.sku,
                available=previous_stock,
                required=qty,
            )
        new_stock = previous_stock - qty
    else:
        new_stock = previous_stock + qty

    cost = None if unit_cost is None else quantize_cost(non_negative(unit_cost, "unit_cost"))
    new_average = previous_average
    if movement_type == "in" and cost is not None:
        new_average = weighted_average_cost(previous_stock, previous_average, qty, cost)
    elif cost is None and (resolved == "out" or movement_type == "adjustment"):
        cost = previous_average

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        direction=resolved,
        reason=reason,
        quantity=qty,
        previous_stock=quantize_quantity(previous_stock),
        new_stock=quantize_quantity(new_stock),
        previous_average_cost=previous_average,
        new_average_cost=new_average,
        unit_cost=cost,
        total_cost=quantize_money(qty * cost) if cost is not None else None,
        supplier_id=supplier_id,
        batch_number=batch_number,
        lot_number=lot_number,
        expiry_date=expiry_date,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_number=reference_number,
        notes=notes,
        performed_by=performed_by,
        movement_date=movement_date or utcnow(),
    )
    db.session.add(movement)

    product.current_stock = quantize_quantity(new_stock)
    product.average_cost = new_average
    db.session.flush()
    return movement


def apply_movement(product_id: int, movement_type: str, reason: str, quantity, **kwargs) -> StockMovement:
    """Standalone movement in its own transaction (see apply_movement_locked)."""
    def _op() -> StockMovement:
        product = get_product_locked(product_id)
        movement = apply_movement_locked(product, movement_type, reason, quantity, **kwargs)
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    logger.info(
        "Movement %s: product %s %s/%s qty %s (%s -> %s)",
        movement.id,
        movement.product_id,
        movement.type,
        movement.reason,
        movement.quantity,
        movement.previous_stock,
        movement.new_stock,
    )
    return movement


# =============================================================================
# RECEIVE / ADJUST
# =============================================================================

def receive_stock(
    product_id: int,
    quantity,
    unit_cost,
    *,
    supplier_id: int | None = None,
    batch_number: str | None = None,
    lot_number: str | None = None,
    expiry_date=None,
    reference_number: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> StockMovement:
    """
    Receive stock outside a purchase document.

    Writes an in/purchase movement (blending unit_cost into the average),
    stamps last_supply_date and, when a supplier is given, links the product
    to it and adds the received value to the supplier's total purchases.
    """
    if unit_cost is None:
        raise ValidationError("unit_cost is required", field="unit_cost")

    def _op() -> StockMovement:
        product = get_product_locked(product_id)
        if product.is_archived:
            raise ValidationError(f"Product {product.sku} is archived", field="product_id")
        supplier = _get_supplier_locked(supplier_id) if supplier_id is not None else None

        now = utcnow()
        movement = apply_movement_locked(
            product,
            "in",
            "purchase",
            quantity,
            unit_cost=unit_cost,
            reference_type="purchase",
            reference_number=reference_number,
            supplier_id=supplier.id if supplier else None,
            batch_number=batch_number,
            lot_number=lot_number,
            expiry_date=expiry_date,
            notes=notes,
            performed_by=actor_id,
            movement_date=now,
        )
        product.last_supply_date = now
        if supplier is not None:
            product.supplier_id = supplier.id
            balance_service.record_direct_receipt(supplier, movement.total_cost or ZERO, when=now)

        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    logger.info(
        "Received %s of product %s at %s (stock %s, avg %s)",
        movement.quantity,
        movement.product_id,
        movement.unit_cost,
        movement.new_stock,
        movement.new_average_cost,
    )
    return movement


def adjust_stock(
    product_id: int,
    quantity,
    direction: str,
    reason: str,
    *,
    notes: str | None = None,
    actor_id: int | None = None,
) -> StockMovement:
    """Manual correction for damage, loss, theft, expiry, counts and transfers."""
    if reason not in ADJUSTMENT_REASONS:
        raise ValidationError(f"reason must be one of {', '.join(ADJUSTMENT_REASONS)}", field="reason")

    def _op() -> StockMovement:
        product = get_product_locked(product_id)
        movement = apply_movement_locked(
            product,
            "adjustment",
            reason,
            quantity,
            direction=direction,
            reference_type="adjustment",
            notes=notes,
            performed_by=actor_id,
        )
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    logger.info(
        "Adjusted product %s %s %s (%s): %s -> %s",
        movement.product_id,
        movement.direction,
        movement.quantity,
        movement.reason,
        movement.previous_stock,
        movement.new_stock,
    )
    return movement


# =============================================================================
# ADMINISTRATIVE EDITS
# =============================================================================

def delete_movement(movement_id: int, *, actor_id: int | None = None) -> dict:
    """
    Delete a movement and revert the product to its pre-movement state.

    Only the latest movement of a product may be deleted, so the chain stays
    gap-free, and never one produced by an invoice or purchase (those are
    undone by cancelling the document).
    """
    def _op() -> dict:
        movement = get_movement(movement_id)
        product = get_product_locked(movement.product_id)

        latest_id = (
            db.session.query(db.func.max(StockMovement.id))
            .filter(StockMovement.product_id == product.id)
            .scalar()
        )
        if movement.id != latest_id:
            raise InvalidState(
                "stock movement",
                "superseded",
                "delete",
                message=f"Only the latest movement of product {product.sku} can be deleted",
            )
        if movement.reference_type in DOCUMENT_REFERENCE_TYPES and movement.reference_id is not None:
            raise InvalidState(
                "stock movement",
                f"linked to {movement.reference_type}",
                "delete",
                message=f"Movement belongs to {movement.reference_type} {movement.reference_number}; cancel the document instead",
            )

        snapshot = movement.to_dict()
        product.current_stock = movement.previous_stock
        product.average_cost = movement.previous_average_cost
        db.session.delete(movement)
        db.session.commit()
        return snapshot

    snapshot = run_with_retry(_op)
    logger.warning(
        "Movement %s deleted by %s; product %s reverted to stock %s",
        snapshot["id"],
        actor_id,
        snapshot["product_id"],
        snapshot["previous_stock"],
    )
    return snapshot


def update_movement_metadata(movement_id: int, payload: dict) -> StockMovement:
    """Edit descriptive fields only; quantity, cost and snapshots stay as inserted."""
    patch = validate_payload(
        model=StockMovement,
        payload=payload,
        policy=MOVEMENT_METADATA_POLICY,
        partial=True,
    )

    def _op() -> StockMovement:
        movement = get_movement(movement_id)
        for key, value in patch.items():
            setattr(movement, key, value)
        db.session.commit()
        return movement

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type:
        query = query.filter(StockMovement.type == movement_type)
    if reason:
        query = query.filter(StockMovement.reason == reason)
    if reference_type:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockMovement.reference_id == reference_id)
    return query.order_by(StockMovement.id.asc()).all()


def verify_product_ledger(product_id: int) -> dict:
    """
    Check one product's ledger against its aggregate.

    Reports the ledger sum, the stored stock and every chain break
    (a movement whose previous_stock differs from the prior new_stock, or
    whose new_stock is not previous_stock +/- quantity).
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("product", product_id)

    ledger_sum = ZERO
    expected_previous = ZERO
    breaks = []
    for movement in list_movements(product_id=product_id):
        previous = Decimal(movement.previous_stock)
        if previous != expected_previous:
            breaks.append({
                "movement_id": movement.id,
                "problem": "gap",
                "expected_previous_stock": str(expected_previous),
                "previous_stock": str(previous),
            })
        if Decimal(movement.new_stock) != previous + movement.signed_quantity:
            breaks.append({
                "movement_id": movement.id,
                "problem": "arithmetic",
                "previous_stock": str(previous),
                "new_stock": str(movement.new_stock),
            })
        ledger_sum += movement.signed_quantity
        expected_previous = Decimal(movement.new_stock)

    current = Decimal(product.current_stock or 0)
    return {
        "product_id": product.id,
        "sku": product.sku,
        "current_stock": str(current),
        "ledger_sum": str(ledger_sum),
        "consistent": ledger_sum == current and not breaks,
        "breaks": breaks,
    }


def verify_all_products() -> list[dict]:
    product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]
    return [verify_product_ledger(pid) for pid in product_ids]
