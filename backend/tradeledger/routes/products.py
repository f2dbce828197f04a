# Overview: Flask API routes for the product catalogue; parses input and returns JSON responses.

"""
Product Routes

Stock and average cost are read-only here; they change only through
/api/stock and document transitions.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import json_body, require_actor
from ..services import product_service


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


@products_bp.get("")
def list_products_route():
    """
    Query params:
    - low_stock: 1 to return only products at or below their threshold
    - include_archived: 1 to include archived products
    - category_id: only products in this category
    """
    products = product_service.list_products(
        include_archived=_flag("include_archived"),
        low_stock_only=_flag("low_stock"),
        category_id=request.args.get("category_id", type=int),
    )
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})


@products_bp.post("")
@require_actor
def create_product_route():
    product = product_service.create_product(json_body(), actor_id=g.actor_id)
    return product.to_dict(), 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    return product_service.get_product(product_id).to_dict()


@products_bp.patch("/<int:product_id>")
@require_actor
def update_product_route(product_id: int):
    return product_service.update_product(product_id, json_body()).to_dict()


@products_bp.post("/<int:product_id>/archive")
@require_actor
def archive_product_route(product_id: int):
    return product_service.archive_product(product_id).to_dict()


@products_bp.post("/<int:product_id>/restore")
@require_actor
def restore_product_route(product_id: int):
    return product_service.restore_product(product_id).to_dict()
