# Overview: Invoice lifecycle; draft editing, confirmation, payments and cancellation with their stock and balance side effects.

"""
Invoice Service

LIFECYCLE:
1. draft: created (from scratch or from an approved quotation); items and
   header may be edited; may be deleted outright
2. confirmed: stock deducted (one out/sale movement per line), client
   outstanding balance raised by rounded_amount
3. partial / paid: derived from amount_paid after every payment
4. cancelled: terminal; reachable from any state except paid

SIDE EFFECTS FIRE ONCE:
stock_deducted flips on the transition that writes the sale movements,
whether that is confirm_invoice or the first payment on a draft
(auto-confirmation, any payment method). Cancellation writes one
compensating in/return movement per line only if stock_deducted is set.

Every public operation is a single transaction via run_with_retry; stock,
invoice, payments and client balance persist together or not at all.
"""

from __future__ import annotations

import logging

from flask import current_app

from ..errors import CannotCancelPaidDocument, InvalidState, NotFound
from ..extensions import db
from ..money import ZERO
from ..models import Client, Invoice, InvoiceItem, InvoicePayment, Product, Quotation
from ..time_utils import utcnow
from ..validation import INVOICE_HEADER_POLICY, validate_document_header
from . import balance_service, payment_service, stock_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .line_items import build_lines, stock_requirements


logger = logging.getLogger(__name__)

STATUS_DRAFT = "draft"
STATUS_CONFIRMED = "confirmed"
STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"
STATUS_CANCELLED = "cancelled"

INVOICE_STATUSES = (STATUS_DRAFT, STATUS_CONFIRMED, STATUS_PARTIAL, STATUS_PAID, STATUS_CANCELLED)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound("invoice", invoice_id)
    return invoice


def _get_invoice_locked(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFound("invoice", invoice_id)
    return invoice


def _get_client_locked(client_id: int) -> Client:
    client = lock_for_update(db.session.query(Client).filter_by(id=client_id)).first()
    if client is None:
        raise NotFound("client", client_id)
    return client


def list_invoices(*, client_id: int | None = None, status: str | None = None) -> list[Invoice]:
    query = db.session.query(Invoice)
    if client_id is not None:
        query = query.filter(Invoice.client_id == client_id)
    if status:
        query = query.filter(Invoice.status == status)
    return query.order_by(Invoice.id.desc()).all()


def _require_draft(invoice: Invoice, attempted: str) -> None:
    if invoice.status != STATUS_DRAFT:
        raise InvalidState("invoice", invoice.status, attempted)


def _check_stock_for_lines(lines) -> None:
    """Availability check at create/update time (no locks; confirmation re-checks under lock)."""
    requirements = stock_requirements(lines)
    products = {pid: db.session.get(Product, pid) for pid in requirements}
    stock_service.ensure_stock_available(requirements, products)


# =============================================================================
# DRAFTS
# =============================================================================

def create_invoice_inner(
    client: Client,
    lines: list,
    totals,
    *,
    header: dict,
    actor_id: int | None = None,
    quotation_id: int | None = None,
) -> Invoice:
    """Insert a draft invoice with pre-built lines (no commit)."""
    invoice = Invoice(
        invoice_number=next_document_number("invoice"),
        client_id=client.id,
        quotation_id=quotation_id,
        status=STATUS_DRAFT,
        currency=header.pop("currency", None) or current_app.config.get("DEFAULT_CURRENCY", "FRW"),
        payment_terms=header.pop("payment_terms", None) or client.payment_terms,
        created_by=actor_id,
        stock_deducted=False,
        balance_posted=False,
        **header,
    )
    invoice.items = lines
    for column, value in totals.as_columns().items():
        setattr(invoice, column, value)
    invoice.amount_paid = ZERO
    payment_service.refresh_balance(invoice)

    db.session.add(invoice)
    db.session.flush()
    return invoice


def create_invoice(client_id: int, items: list, *, actor_id: int | None = None, **fields) -> Invoice:
    """
    Create a draft invoice.

    Totals are derived from the items; every product must currently have
    enough stock for the quantities requested.
    """
    header = validate_document_header(Invoice, fields, INVOICE_HEADER_POLICY)

    def _op() -> Invoice:
        client = db.session.get(Client, client_id)
        if client is None:
            raise NotFound("client", client_id)

        lines, totals = build_lines(items, InvoiceItem, amount_field="unit_price")
        _check_stock_for_lines(lines)

        invoice = create_invoice_inner(client, lines, totals, header=dict(header), actor_id=actor_id)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info("Invoice %s created for client %s: %s", invoice.invoice_number, invoice.client_id, invoice.rounded_amount)
    return invoice


def update_invoice(invoice_id: int, payload: dict, *, actor_id: int | None = None) -> Invoice:
    """
    Edit a draft invoice.

    Only allow-listed header fields, client_id and items are accepted.
    Replacing items re-derives every total and re-checks stock.
    """
    payload = dict(payload or {})
    items = payload.pop("items", None)
    client_id = payload.pop("client_id", None)
    header = validate_document_header(Invoice, payload, INVOICE_HEADER_POLICY)

    def _op() -> Invoice:
        invoice = _get_invoice_locked(invoice_id)
        _require_draft(invoice, "update")

        if client_id is not None:
            client = db.session.get(Client, client_id)
            if client is None:
                raise NotFound("client", client_id)
            invoice.client_id = client.id

        for key, value in header.items():
            setattr(invoice, key, value)

        if items is not None:
            lines, totals = build_lines(items, InvoiceItem, amount_field="unit_price")
            _check_stock_for_lines(lines)
            invoice.items = lines
            for column, value in totals.as_columns().items():
                setattr(invoice, column, value)

        payment_service.refresh_balance(invoice)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info("Invoice %s updated by %s", invoice.invoice_number, actor_id)
    return invoice


def delete_invoice(invoice_id: int, *, actor_id: int | None = None) -> None:
    def _op() -> str:
        invoice = _get_invoice_locked(invoice_id)
        _require_draft(invoice, "delete")
        number = invoice.invoice_number
        db.session.delete(invoice)
        db.session.commit()
        return number

    number = run_with_retry(_op)
    logger.info("Invoice %s deleted by %s", number, actor_id)


# =============================================================================
# CONFIRM
# =============================================================================

def _confirm_locked(invoice: Invoice, client: Client, actor_id: int | None, now) -> None:
    """
    draft -> confirmed inside the caller's transaction.

    Locks every product, re-checks availability across all lines, writes one
    out/sale movement per line, then posts the invoice to the client balance
    and marks the source quotation converted.
    """
    _require_draft(invoice, "confirm")

    products = stock_service.lock_products(line.product_id for line in invoice.items)
    stock_service.ensure_stock_available(stock_requirements(invoice.items), products)

    for line in invoice.items:
        product = products[line.product_id]
        stock_service.apply_movement_locked(
            product,
            "out",
            "sale",
            line.quantity,
            reference_type="invoice",
            reference_id=invoice.id,
            reference_number=invoice.invoice_number,
            performed_by=actor_id,
            movement_date=now,
        )
        product.last_sale_date = now

    exposure_before = balance_service.document_exposure(invoice)
    invoice.stock_deducted = True
    invoice.balance_posted = True
    invoice.status = STATUS_CONFIRMED
    invoice.confirmed_at = now
    invoice.confirmed_by = actor_id
    payment_service.refresh_balance(invoice)
    payment_service.refresh_status(invoice)

    if invoice.quotation_id is not None:
        quotation = db.session.get(Quotation, invoice.quotation_id)
        if quotation is not None and quotation.status != "converted":
            quotation.status = "converted"
            quotation.converted_invoice_id = quotation.converted_invoice_id or invoice.id
            quotation.converted_at = quotation.converted_at or now

    balance_service.apply_transition(
        invoice,
        client,
        event="confirm",
        exposure_before=exposure_before,
        when=now,
    )


def confirm_invoice(invoice_id: int, actor_id: int | None = None) -> Invoice:
    def _op() -> Invoice:
        invoice = _get_invoice_locked(invoice_id)
        _require_draft(invoice, "confirm")
        client = _get_client_locked(invoice.client_id)
        _confirm_locked(invoice, client, actor_id, utcnow())
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info(
        "Invoice %s confirmed by %s: stock deducted, client %s owes +%s",
        invoice.invoice_number,
        actor_id,
        invoice.client_id,
        invoice.rounded_amount,
    )
    return invoice


# =============================================================================
# PAYMENTS
# =============================================================================

def record_invoice_payment(
    invoice_id: int,
    amount,
    method: str,
    actor_id: int | None = None,
    *,
    reference: str | None = None,
    notes: str | None = None,
) -> Invoice:
    """
    Record a payment against an invoice.

    A payment on a draft invoice confirms it first (any method), deducting
    stock exactly once. Overpayment is rejected before anything changes.
    """
    def _op() -> Invoice:
        invoice = _get_invoice_locked(invoice_id)
        if invoice.status == STATUS_CANCELLED:
            raise InvalidState("invoice", invoice.status, "record payment on")
        value = payment_service.validate_payment(
            invoice, amount, method, payment_service.INVOICE_PAYMENT_METHODS
        )

        now = utcnow()
        client = _get_client_locked(invoice.client_id)
        if invoice.status == STATUS_DRAFT and not invoice.stock_deducted:
            _confirm_locked(invoice, client, actor_id, now)

        exposure_before = balance_service.document_exposure(invoice)
        payment_service.append_payment(
            invoice,
            InvoicePayment,
            value,
            method,
            reference=reference,
            notes=notes,
            recorded_by=actor_id,
            paid_at=now,
        )
        payment_service.refresh_status(invoice)
        balance_service.apply_transition(
            invoice,
            client,
            event="payment",
            exposure_before=exposure_before,
            amount=value,
            when=now,
        )
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info(
        "Invoice %s payment %s via %s: paid %s, balance %s, status %s",
        invoice.invoice_number,
        amount,
        method,
        invoice.amount_paid,
        invoice.balance,
        invoice.status,
    )
    return invoice


# =============================================================================
# CANCEL
# =============================================================================

def cancel_invoice(invoice_id: int, actor_id: int | None = None, reason: str | None = None) -> Invoice:
    """
    Cancel an invoice (terminal).

    Paid invoices cannot be cancelled. If stock was deducted, each line is
    returned with a compensating in/return movement valued at the current
    average cost, so the average is unchanged. The client's outstanding
    balance drops by the unpaid remainder.
    """
    def _op() -> Invoice:
        invoice = _get_invoice_locked(invoice_id)
        if invoice.status == STATUS_PAID:
            raise CannotCancelPaidDocument("invoice", invoice.invoice_number)
        if invoice.status == STATUS_CANCELLED:
            raise InvalidState("invoice", invoice.status, "cancel")

        now = utcnow()
        client = _get_client_locked(invoice.client_id)
        exposure_before = balance_service.document_exposure(invoice)

        if invoice.stock_deducted:
            products = stock_service.lock_products(line.product_id for line in invoice.items)
            for line in invoice.items:
                product = products[line.product_id]
                stock_service.apply_movement_locked(
                    product,
                    "in",
                    "return",
                    line.quantity,
                    unit_cost=product.average_cost,
                    reference_type="invoice",
                    reference_id=invoice.id,
                    reference_number=invoice.invoice_number,
                    notes=f"Cancellation of {invoice.invoice_number}",
                    performed_by=actor_id,
                    movement_date=now,
                )

        invoice.status = STATUS_CANCELLED
        invoice.cancelled_at = now
        invoice.cancelled_by = actor_id
        invoice.cancellation_reason = reason

        balance_service.apply_transition(
            invoice,
            client,
            event="cancel",
            exposure_before=exposure_before,
            stock_was_moved=invoice.stock_deducted,
            when=now,
        )
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info("Invoice %s cancelled by %s: %s", invoice.invoice_number, actor_id, reason or "no reason given")
    return invoice
