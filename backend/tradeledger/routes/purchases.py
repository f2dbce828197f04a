# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import json_body, require_actor
from ..errors import ValidationError
from ..services import purchase_service


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.get("")
def list_purchases_route():
    purchases = purchase_service.list_purchases(
        supplier_id=request.args.get("supplier_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({
        "items": [p.to_dict(include_items=False) for p in purchases],
        "count": len(purchases),
    })


@purchases_bp.post("")
@require_actor
def create_purchase_route():
    """
    Create a draft purchase.

    Request body:
    {
        "supplier_id": 1,                      // required
        "items": [{"product_id": 1, "quantity": "10", "unit_cost": "5.00", "tax_code": "A"}],
        "order_date": "ISO", "expected_delivery_date": "ISO",
        "supplier_invoice_number": "..", "payment_terms": "credit_30", "notes": ".."
    }
    """
    data = json_body()
    supplier_id = data.pop("supplier_id", None)
    if supplier_id is None:
        raise ValidationError("supplier_id is required", field="supplier_id")
    items = data.pop("items", None)
    purchase = purchase_service.create_purchase(supplier_id, items, actor_id=g.actor_id, **data)
    return purchase.to_dict(), 201


@purchases_bp.get("/<int:purchase_id>")
def get_purchase_route(purchase_id: int):
    return purchase_service.get_purchase(purchase_id).to_dict()


@purchases_bp.patch("/<int:purchase_id>")
@require_actor
def update_purchase_route(purchase_id: int):
    return purchase_service.update_purchase(purchase_id, json_body(), actor_id=g.actor_id).to_dict()


@purchases_bp.delete("/<int:purchase_id>")
@require_actor
def delete_purchase_route(purchase_id: int):
    purchase_service.delete_purchase(purchase_id, actor_id=g.actor_id)
    return "", 204


@purchases_bp.post("/<int:purchase_id>/order")
@require_actor
def order_purchase_route(purchase_id: int):
    return purchase_service.mark_purchase_ordered(purchase_id, actor_id=g.actor_id).to_dict()


@purchases_bp.post("/<int:purchase_id>/receive")
@require_actor
def receive_purchase_route(purchase_id: int):
    return purchase_service.receive_purchase(purchase_id, actor_id=g.actor_id).to_dict()


@purchases_bp.post("/<int:purchase_id>/payments")
@require_actor
def record_purchase_payment_route(purchase_id: int):
    """Request body: {"amount": "50", "method": "bank_transfer", "reference": "..", "notes": ".."}"""
    data = json_body()
    purchase = purchase_service.record_purchase_payment(
        purchase_id,
        data.get("amount"),
        data.get("method"),
        actor_id=g.actor_id,
        reference=data.get("reference"),
        notes=data.get("notes"),
    )
    return purchase.to_dict(), 201


@purchases_bp.post("/<int:purchase_id>/cancel")
@require_actor
def cancel_purchase_route(purchase_id: int):
    data = json_body()
    purchase = purchase_service.cancel_purchase(purchase_id, actor_id=g.actor_id, reason=data.get("reason"))
    return purchase.to_dict()
