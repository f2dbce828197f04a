# Overview: Flask API routes for stock receipts, adjustments and ledger inspection.

from flask import Blueprint, g, jsonify, request

from ..decorators import json_body, require_actor
from ..errors import ValidationError
from ..services import stock_service
from ..time_utils import parse_iso_datetime


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _required(data: dict, field: str):
    if data.get(field) is None:
        raise ValidationError(f"{field} is required", field=field)
    return data[field]


def _optional_datetime(data: dict, field: str):
    try:
        return parse_iso_datetime(data.get(field))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)


@stock_bp.post("/receive")
@require_actor
def receive_stock_route():
    """
    Receive stock outside a purchase document.

    Request body:
    {
        "product_id": 1,        // required
        "quantity": "10",       // required, > 0
        "unit_cost": "5.00",    // required, >= 0
        "supplier_id": 1,       // optional
        "batch_number": "..", "lot_number": "..", "expiry_date": "ISO",
        "reference_number": "..", "notes": ".."
    }
    """
    data = json_body()
    movement = stock_service.receive_stock(
        _required(data, "product_id"),
        _required(data, "quantity"),
        _required(data, "unit_cost"),
        supplier_id=data.get("supplier_id"),
        batch_number=data.get("batch_number"),
        lot_number=data.get("lot_number"),
        expiry_date=_optional_datetime(data, "expiry_date"),
        reference_number=data.get("reference_number"),
        notes=data.get("notes"),
        actor_id=g.actor_id,
    )
    return movement.to_dict(), 201


@stock_bp.post("/adjust")
@require_actor
def adjust_stock_route():
    """
    Request body:
    {"product_id": 1, "quantity": "2", "direction": "out", "reason": "damage", "notes": ".."}
    """
    data = json_body()
    movement = stock_service.adjust_stock(
        _required(data, "product_id"),
        _required(data, "quantity"),
        _required(data, "direction"),
        _required(data, "reason"),
        notes=data.get("notes"),
        actor_id=g.actor_id,
    )
    return movement.to_dict(), 201


@stock_bp.get("/movements")
def list_movements_route():
    movements = stock_service.list_movements(
        product_id=request.args.get("product_id", type=int),
        movement_type=request.args.get("type"),
        reason=request.args.get("reason"),
        reference_type=request.args.get("reference_type"),
        reference_id=request.args.get("reference_id", type=int),
    )
    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)})


@stock_bp.patch("/movements/<int:movement_id>")
@require_actor
def update_movement_route(movement_id: int):
    return stock_service.update_movement_metadata(movement_id, json_body()).to_dict()


@stock_bp.delete("/movements/<int:movement_id>")
@require_actor
def delete_movement_route(movement_id: int):
    snapshot = stock_service.delete_movement(movement_id, actor_id=g.actor_id)
    return {"deleted": snapshot}


@stock_bp.get("/verify/<int:product_id>")
def verify_product_route(product_id: int):
    return stock_service.verify_product_ledger(product_id)
