# Overview: Flask API routes for clients and suppliers.

from flask import Blueprint, jsonify, request

from ..decorators import json_body, require_actor
from ..services import party_service


clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


def _include_inactive() -> bool:
    return request.args.get("include_inactive", "").lower() in ("1", "true", "yes")


@clients_bp.get("")
def list_clients_route():
    clients = party_service.list_clients(include_inactive=_include_inactive())
    return jsonify({"items": [c.to_dict() for c in clients], "count": len(clients)})


@clients_bp.post("")
@require_actor
def create_client_route():
    return party_service.create_client(json_body()).to_dict(), 201


@clients_bp.get("/<int:client_id>")
def get_client_route(client_id: int):
    return party_service.get_client(client_id).to_dict()


@clients_bp.patch("/<int:client_id>")
@require_actor
def update_client_route(client_id: int):
    return party_service.update_client(client_id, json_body()).to_dict()


@suppliers_bp.get("")
def list_suppliers_route():
    suppliers = party_service.list_suppliers(include_inactive=_include_inactive())
    return jsonify({"items": [s.to_dict() for s in suppliers], "count": len(suppliers)})


@suppliers_bp.post("")
@require_actor
def create_supplier_route():
    return party_service.create_supplier(json_body()).to_dict(), 201


@suppliers_bp.get("/<int:supplier_id>")
def get_supplier_route(supplier_id: int):
    return party_service.get_supplier(supplier_id).to_dict()


@suppliers_bp.patch("/<int:supplier_id>")
@require_actor
def update_supplier_route(supplier_id: int):
    return party_service.update_supplier(supplier_id, json_body()).to_dict()
