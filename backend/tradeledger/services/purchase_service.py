# Overview: Purchase lifecycle; draft editing, ordering, receipt into stock, supplier payments and cancellation.

"""
Purchase Service

LIFECYCLE:
1. draft: created; editable; deletable
2. ordered: sent to the supplier (optional step); no longer editable
3. received: stock added (one in/purchase movement per line, blended into
   each product's average cost), supplier outstanding balance and total
   purchases raised by rounded_amount
4. partial / paid: derived from amount_paid after every payment, received or not
5. cancelled: terminal; reachable from any state except paid

AUTO-RECEIVE ASYMMETRY:
Unlike invoices, a payment only auto-receives a purchase when the purchase is
still draft and the method is cash or card. Other methods on a draft/ordered
purchase are prepayments: amount_paid, balance and status (partial / paid)
move at once, stock and the supplier outstanding balance wait for the receipt.
A prepaid purchase stays receivable until stock_added is set.

Cancelling a received purchase writes one out/return movement per line and
fails with InsufficientStock when the goods have already left the warehouse.
"""

from __future__ import annotations

import logging

from flask import current_app

from ..errors import CannotCancelPaidDocument, InvalidState, NotFound
from ..extensions import db
from ..models import Purchase, PurchaseItem, PurchasePayment, Supplier
from ..money import ZERO
from ..time_utils import utcnow
from ..validation import PURCHASE_HEADER_POLICY, validate_document_header
from . import balance_service, payment_service, stock_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .line_items import build_lines


logger = logging.getLogger(__name__)

STATUS_DRAFT = "draft"
STATUS_ORDERED = "ordered"
STATUS_RECEIVED = "received"
STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"
STATUS_CANCELLED = "cancelled"

PURCHASE_STATUSES = (
    STATUS_DRAFT,
    STATUS_ORDERED,
    STATUS_RECEIVED,
    STATUS_PARTIAL,
    STATUS_PAID,
    STATUS_CANCELLED,
)

# partial / paid before receipt only arise from prepayments
RECEIVABLE_STATUSES = (STATUS_DRAFT, STATUS_ORDERED, STATUS_PARTIAL, STATUS_PAID)

# Methods that prove intent to receive when paying a draft purchase
AUTO_RECEIVE_METHODS = (payment_service.METHOD_CASH, payment_service.METHOD_CARD)


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFound("purchase", purchase_id)
    return purchase


def _get_purchase_locked(purchase_id: int) -> Purchase:
    purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
    if purchase is None:
        raise NotFound("purchase", purchase_id)
    return purchase


def _get_supplier_locked(supplier_id: int) -> Supplier:
    supplier = lock_for_update(db.session.query(Supplier).filter_by(id=supplier_id)).first()
    if supplier is None:
        raise NotFound("supplier", supplier_id)
    return supplier


def list_purchases(*, supplier_id: int | None = None, status: str | None = None) -> list[Purchase]:
    query = db.session.query(Purchase)
    if supplier_id is not None:
        query = query.filter(Purchase.supplier_id == supplier_id)
    if status:
        query = query.filter(Purchase.status == status)
    return query.order_by(Purchase.id.desc()).all()


def _require_draft(purchase: Purchase, attempted: str) -> None:
    if purchase.status != STATUS_DRAFT:
        raise InvalidState("purchase", purchase.status, attempted)


def _apply_totals(purchase: Purchase, totals) -> None:
    for column, value in totals.as_columns().items():
        setattr(purchase, column, value)
    payment_service.refresh_balance(purchase)


# =============================================================================
# DRAFTS
# =============================================================================

def create_purchase(supplier_id: int, items: list, *, actor_id: int | None = None, **fields) -> Purchase:
    header = validate_document_header(Purchase, fields, PURCHASE_HEADER_POLICY)

    def _op() -> Purchase:
        supplier = db.session.get(Supplier, supplier_id)
        if supplier is None:
            raise NotFound("supplier", supplier_id)

        lines, totals = build_lines(items, PurchaseItem, amount_field="unit_cost")
        values = dict(header)
        purchase = Purchase(
            purchase_number=next_document_number("purchase"),
            supplier_id=supplier.id,
            status=STATUS_DRAFT,
            currency=values.pop("currency", None) or current_app.config.get("DEFAULT_CURRENCY", "FRW"),
            payment_terms=values.pop("payment_terms", None) or supplier.payment_terms,
            created_by=actor_id,
            stock_added=False,
            balance_posted=False,
            amount_paid=ZERO,
            **values,
        )
        purchase.items = lines
        _apply_totals(purchase, totals)

        db.session.add(purchase)
        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    logger.info("Purchase %s created for supplier %s: %s", purchase.purchase_number, purchase.supplier_id, purchase.rounded_amount)
    return purchase


def update_purchase(purchase_id: int, payload: dict, *, actor_id: int | None = None) -> Purchase:
    payload = dict(payload or {})
    items = payload.pop("items", None)
    supplier_id = payload.pop("supplier_id", None)
    header = validate_document_header(Purchase, payload, PURCHASE_HEADER_POLICY)

    def _op() -> Purchase:
        purchase = _get_purchase_locked(purchase_id)
        _require_draft(purchase, "update")

        if supplier_id is not None:
            supplier = db.session.get(Supplier, supplier_id)
            if supplier is None:
                raise NotFound("supplier", supplier_id)
            purchase.supplier_id = supplier.id

        for key, value in header.items():
            setattr(purchase, key, value)

        if items is not None:
            lines, totals = build_lines(items, PurchaseItem, amount_field="unit_cost")
            purchase.items = lines
            _apply_totals(purchase, totals)

        payment_service.refresh_balance(purchase)
        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    logger.info("Purchase %s updated by %s", purchase.purchase_number, actor_id)
    return purchase


def delete_purchase(purchase_id: int, *, actor_id: int | None = None) -> None:
    def _op() -> str:
        purchase = _get_purchase_locked(purchase_id)
        _require_draft(purchase, "delete")
        number = purchase.purchase_number
        db.session.delete(purchase)
        db.session.commit()
        return number

    number = run_with_retry(_op)
    logger.info("Purchase %s deleted by %s", number, actor_id)


def mark_purchase_ordered(purchase_id: int, actor_id: int | None = None) -> Purchase:
    def _op() -> Purchase:
        purchase = _get_purchase_locked(purchase_id)
        _require_draft(purchase, "order")
        purchase.status = STATUS_ORDERED
        purchase.ordered_at = utcnow()
        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    logger.info("Purchase %s ordered by %s", purchase.purchase_number, actor_id)
    return purchase


# =============================================================================
# RECEIVE
# =============================================================================

def _receive_locked(purchase: Purchase, supplier: Supplier, actor_id: int | None, now) -> None:
    """Add the goods to stock and post the supplier balance (no commit)."""
    if purchase.status not in RECEIVABLE_STATUSES or purchase.stock_added:
        raise InvalidState("purchase", purchase.status, "receive")

    products = stock_service.lock_products(line.product_id for line in purchase.items)
    for line in purchase.items:
        product = products[line.product_id]
        stock_service.apply_movement_locked(
            product,
            "in",
            "purchase",
            line.quantity,
            unit_cost=line.unit_cost,
            supplier_id=supplier.id,
            reference_type="purchase",
            reference_id=purchase.id,
            reference_number=purchase.purchase_number,
            performed_by=actor_id,
            movement_date=now,
        )
        product.last_supply_date = now
        product.supplier_id = supplier.id

    exposure_before = balance_service.document_exposure(purchase)
    purchase.stock_added = True
    purchase.balance_posted = True
    purchase.status = STATUS_RECEIVED
    purchase.received_at = now
    purchase.confirmed_at = now
    purchase.confirmed_by = actor_id
    payment_service.refresh_balance(purchase)
    # Prepayments recorded while draft/ordered take effect now
    payment_service.refresh_status(purchase)

    balance_service.apply_transition(
        purchase,
        supplier,
        event="receive",
        exposure_before=exposure_before,
        when=now,
    )


def receive_purchase(purchase_id: int, actor_id: int | None = None) -> Purchase:
    def _op() -> Purchase:
        purchase = _get_purchase_locked(purchase_id)
        if purchase.status not in RECEIVABLE_STATUSES or purchase.stock_added:
            raise InvalidState("purchase", purchase.status, "receive")
        supplier = _get_supplier_locked(purchase.supplier_id)
        _receive_locked(purchase, supplier, actor_id, utcnow())
        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    logger.info(
        "Purchase %s received by %s: stock added, supplier %s owed +%s",
        purchase.purchase_number,
        actor_id,
        purchase.supplier_id,
        purchase.rounded_amount,
    )
    return purchase


# =============================================================================
# PAYMENTS
# =============================================================================

def record_purchase_payment(
    purchase_id: int,
    amount,
    method: str,
    actor_id: int | None = None,
    *,
    reference: str | None = None,
    notes: str | None = None,
) -> Purchase:
    """
    Record a payment to the supplier.

    Cash or card on a draft purchase receives it first. Any other payment
    before receipt is a prepayment (see module docstring). Status is
    re-derived from amount_paid either way.
    """
    def _op() -> Purchase:
        purchase = _get_purchase_locked(purchase_id)
        if purchase.status == STATUS_CANCELLED:
            raise InvalidState("purchase", purchase.status, "record payment on")
        value = payment_service.validate_payment(
            purchase, amount, method, payment_service.PURCHASE_PAYMENT_METHODS
        )

        now = utcnow()
        supplier = _get_supplier_locked(purchase.supplier_id)
        if (
            purchase.status == STATUS_DRAFT
            and not purchase.stock_added
            and method in AUTO_RECEIVE_METHODS
        ):
            _receive_locked(purchase, supplier, actor_id, now)

        exposure_before = balance_service.document_exposure(purchase)
        payment_service.append_payment(
            purchase,
            PurchasePayment,
            value,
            method,
            reference=reference,
            notes=notes,
            recorded_by=actor_id,
            paid_at=now,
        )
        payment_service.refresh_status(purchase)
        balance_service.apply_transition(
            purchase,
            supplier,
            event="payment",
            exposure_before=exposure_before,
            amount=value,
            when=now,
        )
        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    logger.info(
        "Purchase %s payment %s via %s: paid %s, balance %s, status %s",
        purchase.purchase_number,
        amount,
        method,
        purchase.amount_paid,
        purchase.balance,
        purchase.status,
    )
    return purchase


# =============================================================================
# CANCEL
# =============================================================================

def cancel_purchase(purchase_id: int, actor_id: int | None = None, reason: str | None = None) -> Purchase:
    def _op() -> Purchase:
        purchase = _get_purchase_locked(purchase_id)
        if purchase.status == STATUS_PAID:
            raise CannotCancelPaidDocument("purchase", purchase.purchase_number)
        if purchase.status == STATUS_CANCELLED:
            raise InvalidState("purchase", purchase.status, "cancel")

        now = utcnow()
        supplier = _get_supplier_locked(purchase.supplier_id)
        exposure_before = balance_service.document_exposure(purchase)

        if purchase.stock_added:
            products = stock_service.lock_products(line.product_id for line in purchase.items)
            for line in purchase.items:
                stock_service.apply_movement_locked(
                    products[line.product_id],
                    "out",
                    "return",
                    line.quantity,
                    supplier_id=supplier.id,
                    reference_type="purchase",
                    reference_id=purchase.id,
                    reference_number=purchase.purchase_number,
                    notes=f"Cancellation of {purchase.purchase_number}",
                    performed_by=actor_id,
                    movement_date=now,
                )

        purchase.status = STATUS_CANCELLED
        purchase.cancelled_at = now
        purchase.cancelled_by = actor_id
        purchase.cancellation_reason = reason

        balance_service.apply_transition(
            purchase,
            supplier,
            event="cancel",
            exposure_before=exposure_before,
            stock_was_moved=purchase.stock_added,
            when=now,
        )
        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    logger.info("Purchase %s cancelled by %s: %s", purchase.purchase_number, actor_id, reason or "no reason given")
    return purchase
