# Overview: Flask API routes for quotations and their conversion into invoices.

from flask import Blueprint, g, jsonify, request

from ..decorators import json_body, require_actor
from ..errors import ValidationError
from ..services import quotation_service
from ..time_utils import parse_iso_datetime


quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/quotations")


@quotations_bp.get("")
def list_quotations_route():
    quotations = quotation_service.list_quotations(
        client_id=request.args.get("client_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({
        "items": [q.to_dict(include_items=False) for q in quotations],
        "count": len(quotations),
    })


@quotations_bp.post("")
@require_actor
def create_quotation_route():
    data = json_body()
    client_id = data.pop("client_id", None)
    if client_id is None:
        raise ValidationError("client_id is required", field="client_id")
    items = data.pop("items", None)
    quotation = quotation_service.create_quotation(client_id, items, actor_id=g.actor_id, **data)
    return quotation.to_dict(), 201


@quotations_bp.get("/<int:quotation_id>")
def get_quotation_route(quotation_id: int):
    return quotation_service.get_quotation(quotation_id).to_dict()


@quotations_bp.patch("/<int:quotation_id>")
@require_actor
def update_quotation_route(quotation_id: int):
    return quotation_service.update_quotation(quotation_id, json_body(), actor_id=g.actor_id).to_dict()


@quotations_bp.delete("/<int:quotation_id>")
@require_actor
def delete_quotation_route(quotation_id: int):
    quotation_service.delete_quotation(quotation_id, actor_id=g.actor_id)
    return "", 204


@quotations_bp.post("/<int:quotation_id>/send")
@require_actor
def send_quotation_route(quotation_id: int):
    return quotation_service.send_quotation(quotation_id, actor_id=g.actor_id).to_dict()


@quotations_bp.post("/<int:quotation_id>/approve")
@require_actor
def approve_quotation_route(quotation_id: int):
    return quotation_service.approve_quotation(quotation_id, actor_id=g.actor_id).to_dict()


@quotations_bp.post("/<int:quotation_id>/reject")
@require_actor
def reject_quotation_route(quotation_id: int):
    return quotation_service.reject_quotation(quotation_id, actor_id=g.actor_id).to_dict()


@quotations_bp.post("/<int:quotation_id>/convert")
@require_actor
def convert_quotation_route(quotation_id: int):
    """
    Convert an approved quotation into a draft invoice.

    Request body (optional): {"due_date": "ISO"}
    Returns the new invoice.
    """
    data = json_body()
    try:
        due_date = parse_iso_datetime(data.get("due_date"))
    except ValueError:
        raise ValidationError("due_date must be an ISO-8601 datetime", field="due_date")
    invoice = quotation_service.convert_quotation_to_invoice(quotation_id, due_date=due_date, actor_id=g.actor_id)
    return invoice.to_dict(), 201
