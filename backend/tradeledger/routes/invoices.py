# Overview: Flask API routes for invoices; parses input and returns JSON responses.

"""
Invoice Routes

Write routes require the X-Actor-Id header. Domain errors (not found,
invalid state, insufficient stock, overpayment) are rendered by the
application-wide LedgerError handler.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import json_body, require_actor
from ..errors import ValidationError
from ..services import invoice_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
def list_invoices_route():
    """Query params: client_id, status."""
    invoices = invoice_service.list_invoices(
        client_id=request.args.get("client_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({
        "items": [i.to_dict(include_items=False) for i in invoices],
        "count": len(invoices),
    })


@invoices_bp.post("")
@require_actor
def create_invoice_route():
    """
    Create a draft invoice.

    Request body:
    {
        "client_id": 1,                        // required
        "items": [{"product_id": 1, "quantity": "2", "unit_price": "100",
                   "discount": "0", "tax_code": "B"}],
        "invoice_date": "ISO", "due_date": "ISO",
        "payment_terms": "credit_30", "currency": "FRW", "notes": "..", "terms": ".."
    }
    """
    data = json_body()
    client_id = data.pop("client_id", None)
    if client_id is None:
        raise ValidationError("client_id is required", field="client_id")
    items = data.pop("items", None)
    invoice = invoice_service.create_invoice(client_id, items, actor_id=g.actor_id, **data)
    return invoice.to_dict(), 201


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    return invoice_service.get_invoice(invoice_id).to_dict()


@invoices_bp.patch("/<int:invoice_id>")
@require_actor
def update_invoice_route(invoice_id: int):
    return invoice_service.update_invoice(invoice_id, json_body(), actor_id=g.actor_id).to_dict()


@invoices_bp.delete("/<int:invoice_id>")
@require_actor
def delete_invoice_route(invoice_id: int):
    invoice_service.delete_invoice(invoice_id, actor_id=g.actor_id)
    return "", 204


@invoices_bp.post("/<int:invoice_id>/confirm")
@require_actor
def confirm_invoice_route(invoice_id: int):
    return invoice_service.confirm_invoice(invoice_id, actor_id=g.actor_id).to_dict()


@invoices_bp.post("/<int:invoice_id>/payments")
@require_actor
def record_invoice_payment_route(invoice_id: int):
    """Request body: {"amount": "400", "method": "cash", "reference": "..", "notes": ".."}"""
    data = json_body()
    invoice = invoice_service.record_invoice_payment(
        invoice_id,
        data.get("amount"),
        data.get("method"),
        actor_id=g.actor_id,
        reference=data.get("reference"),
        notes=data.get("notes"),
    )
    return invoice.to_dict(), 201


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_actor
def cancel_invoice_route(invoice_id: int):
    data = json_body()
    invoice = invoice_service.cancel_invoice(invoice_id, actor_id=g.actor_id, reason=data.get("reason"))
    return invoice.to_dict()
