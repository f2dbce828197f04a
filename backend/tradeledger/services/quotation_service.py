# Overview: Quotation lifecycle and one-way conversion of approved quotations into draft invoices.

"""
Quotation Service

LIFECYCLE:
draft -> sent -> approved -> converted
              -> rejected
draft/sent -> expired (valid_until in the past)

- Edits are allowed while draft or sent; deletion only while draft.
- Conversion is legal only from approved and only once. It seeds a draft
  invoice with the quotation's lines copied verbatim (same prices,
  discounts and tax codes) and never touches stock or payments; the
  invoice then follows its own lifecycle.
- A converted quotation is frozen.
"""

from __future__ import annotations

import logging

from flask import current_app

from ..errors import AlreadyConverted, InvalidState, NotFound
from ..extensions import db
from ..models import Client, InvoiceItem, Quotation, QuotationItem
from ..time_utils import add_days, utcnow
from ..validation import QUOTATION_HEADER_POLICY, validate_document_header
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .invoice_service import create_invoice_inner
from .line_items import build_lines, copy_lines
from .totals import quotation_totals


logger = logging.getLogger(__name__)

STATUS_DRAFT = "draft"
STATUS_SENT = "sent"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_CONVERTED = "converted"
STATUS_EXPIRED = "expired"

QUOTATION_STATUSES = (
    STATUS_DRAFT,
    STATUS_SENT,
    STATUS_APPROVED,
    STATUS_REJECTED,
    STATUS_CONVERTED,
    STATUS_EXPIRED,
)

EDITABLE_STATUSES = (STATUS_DRAFT, STATUS_SENT)
EXPIRABLE_STATUSES = (STATUS_DRAFT, STATUS_SENT)

# Valid state transitions: {from_status: [to_statuses]}
VALID_TRANSITIONS = {
    STATUS_DRAFT: [STATUS_SENT, STATUS_EXPIRED],
    STATUS_SENT: [STATUS_APPROVED, STATUS_REJECTED, STATUS_EXPIRED],
    STATUS_APPROVED: [STATUS_CONVERTED],
    STATUS_REJECTED: [],
    STATUS_CONVERTED: [],
    STATUS_EXPIRED: [],
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def get_quotation(quotation_id: int) -> Quotation:
    quotation = db.session.get(Quotation, quotation_id)
    if quotation is None:
        raise NotFound("quotation", quotation_id)
    return quotation


def _get_quotation_locked(quotation_id: int) -> Quotation:
    quotation = lock_for_update(db.session.query(Quotation).filter_by(id=quotation_id)).first()
    if quotation is None:
        raise NotFound("quotation", quotation_id)
    return quotation


def list_quotations(*, client_id: int | None = None, status: str | None = None) -> list[Quotation]:
    query = db.session.query(Quotation)
    if client_id is not None:
        query = query.filter(Quotation.client_id == client_id)
    if status:
        query = query.filter(Quotation.status == status)
    return query.order_by(Quotation.id.desc()).all()


def _apply_lines(quotation: Quotation, items: list) -> None:
    lines, totals = build_lines(items, QuotationItem, amount_field="unit_price")
    quotation.items = lines
    for column, value in quotation_totals(totals.items).items():
        setattr(quotation, column, value)


def _transition(quotation: Quotation, to_status: str, attempted: str) -> None:
    if not can_transition(quotation.status, to_status):
        raise InvalidState("quotation", quotation.status, attempted)
    quotation.status = to_status


# =============================================================================
# CRUD
# =============================================================================

def create_quotation(client_id: int, items: list, *, actor_id: int | None = None, **fields) -> Quotation:
    header = validate_document_header(Quotation, fields, QUOTATION_HEADER_POLICY)

    def _op() -> Quotation:
        client = db.session.get(Client, client_id)
        if client is None:
            raise NotFound("client", client_id)

        values = dict(header)
        quotation = Quotation(
            quotation_number=next_document_number("quotation"),
            client_id=client.id,
            status=STATUS_DRAFT,
            currency=values.pop("currency", None) or current_app.config.get("DEFAULT_CURRENCY", "FRW"),
            payment_terms=values.pop("payment_terms", None) or client.payment_terms,
            created_by=actor_id,
            **values,
        )
        _apply_lines(quotation, items)
        db.session.add(quotation)
        db.session.commit()
        return quotation

    quotation = run_with_retry(_op)
    logger.info("Quotation %s created for client %s: %s", quotation.quotation_number, quotation.client_id, quotation.grand_total)
    return quotation


def update_quotation(quotation_id: int, payload: dict, *, actor_id: int | None = None) -> Quotation:
    payload = dict(payload or {})
    items = payload.pop("items", None)
    client_id = payload.pop("client_id", None)
    header = validate_document_header(Quotation, payload, QUOTATION_HEADER_POLICY)

    def _op() -> Quotation:
        quotation = _get_quotation_locked(quotation_id)
        if quotation.status not in EDITABLE_STATUSES:
            raise InvalidState("quotation", quotation.status, "update")

        if client_id is not None:
            client = db.session.get(Client, client_id)
            if client is None:
                raise NotFound("client", client_id)
            quotation.client_id = client.id
        for key, value in header.items():
            setattr(quotation, key, value)
        if items is not None:
            _apply_lines(quotation, items)

        db.session.commit()
        return quotation

    quotation = run_with_retry(_op)
    logger.info("Quotation %s updated by %s", quotation.quotation_number, actor_id)
    return quotation


def delete_quotation(quotation_id: int, *, actor_id: int | None = None) -> None:
    def _op() -> str:
        quotation = _get_quotation_locked(quotation_id)
        if quotation.status != STATUS_DRAFT:
            raise InvalidState("quotation", quotation.status, "delete")
        number = quotation.quotation_number
        db.session.delete(quotation)
        db.session.commit()
        return number

    number = run_with_retry(_op)
    logger.info("Quotation %s deleted by %s", number, actor_id)


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def send_quotation(quotation_id: int, actor_id: int | None = None) -> Quotation:
    def _op() -> Quotation:
        quotation = _get_quotation_locked(quotation_id)
        _transition(quotation, STATUS_SENT, "send")
        quotation.sent_at = utcnow()
        db.session.commit()
        return quotation

    quotation = run_with_retry(_op)
    logger.info("Quotation %s sent by %s", quotation.quotation_number, actor_id)
    return quotation


def approve_quotation(quotation_id: int, actor_id: int | None = None) -> Quotation:
    def _op() -> Quotation:
        quotation = _get_quotation_locked(quotation_id)
        _transition(quotation, STATUS_APPROVED, "approve")
        quotation.approved_at = utcnow()
        quotation.approved_by = actor_id
        db.session.commit()
        return quotation

    quotation = run_with_retry(_op)
    logger.info("Quotation %s approved by %s", quotation.quotation_number, actor_id)
    return quotation


def reject_quotation(quotation_id: int, actor_id: int | None = None) -> Quotation:
    def _op() -> Quotation:
        quotation = _get_quotation_locked(quotation_id)
        _transition(quotation, STATUS_REJECTED, "reject")
        quotation.rejected_at = utcnow()
        quotation.rejected_by = actor_id
        db.session.commit()
        return quotation

    quotation = run_with_retry(_op)
    logger.info("Quotation %s rejected by %s", quotation.quotation_number, actor_id)
    return quotation


def expire_quotations(as_of=None) -> list[str]:
    """Mark draft/sent quotations whose valid_until has passed as expired."""
    as_of = as_of or utcnow()

    def _op() -> list[str]:
        due = lock_for_update(
            db.session.query(Quotation).filter(
                Quotation.status.in_(EXPIRABLE_STATUSES),
                Quotation.valid_until.isnot(None),
                Quotation.valid_until < as_of,
            )
        ).all()
        for quotation in due:
            quotation.status = STATUS_EXPIRED
        db.session.commit()
        return [q.quotation_number for q in due]

    expired = run_with_retry(_op)
    if expired:
        logger.info("Expired %s quotations: %s", len(expired), ", ".join(expired))
    return expired


# =============================================================================
# CONVERSION
# =============================================================================

def convert_quotation_to_invoice(quotation_id: int, due_date=None, actor_id: int | None = None):
    """
    Promote an approved quotation into a new draft invoice (once).

    The invoice copies client, lines, payment terms, currency, terms and
    notes; due_date defaults to INVOICE_DEFAULT_DUE_DAYS from now.
    Returns the new invoice.
    """
    def _op():
        quotation = _get_quotation_locked(quotation_id)
        if quotation.converted_invoice_id is not None:
            raise AlreadyConverted(quotation.id, quotation.converted_invoice_id)
        if quotation.status != STATUS_APPROVED:
            raise InvalidState("quotation", quotation.status, "convert")

        now = utcnow()
        client = db.session.get(Client, quotation.client_id)
        lines, totals = copy_lines(quotation.items, InvoiceItem, amount_field="unit_price")
        due_days = int(current_app.config.get("INVOICE_DEFAULT_DUE_DAYS", 30))
        invoice = create_invoice_inner(
            client,
            lines,
            totals,
            header={
                "currency": quotation.currency,
                "payment_terms": quotation.payment_terms,
                "terms": quotation.terms,
                "notes": quotation.notes,
                "due_date": due_date or add_days(now, due_days),
            },
            actor_id=actor_id,
            quotation_id=quotation.id,
        )

        quotation.status = STATUS_CONVERTED
        quotation.converted_invoice_id = invoice.id
        quotation.converted_at = now
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info(
        "Quotation %s converted to invoice %s by %s",
        quotation_id,
        invoice.invoice_number,
        actor_id,
    )
    return invoice
