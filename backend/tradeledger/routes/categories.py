# Overview: Flask API routes for product categories.

from flask import Blueprint, g, jsonify, request

from ..decorators import json_body, require_actor
from ..services import category_service


categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
def list_categories_route():
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    categories = category_service.list_categories(include_inactive=include_inactive)
    return jsonify({"items": [c.to_dict() for c in categories], "count": len(categories)})


@categories_bp.post("")
@require_actor
def create_category_route():
    category = category_service.create_category(json_body(), actor_id=g.actor_id)
    return category.to_dict(), 201


@categories_bp.get("/<int:category_id>")
def get_category_route(category_id: int):
    category, products_count = category_service.get_category_with_count(category_id)
    return category.to_dict(products_count=products_count)


@categories_bp.patch("/<int:category_id>")
@require_actor
def update_category_route(category_id: int):
    return category_service.update_category(category_id, json_body()).to_dict()


@categories_bp.delete("/<int:category_id>")
@require_actor
def delete_category_route(category_id: int):
    category_service.delete_category(category_id)
    return "", 204
