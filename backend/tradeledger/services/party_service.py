# Overview: Client and supplier master data; balances stay owned by balance_service.

from __future__ import annotations

import logging

from ..errors import NotFound
from ..extensions import db
from ..models import Client, Supplier
from ..validation import CLIENT_POLICY, SUPPLIER_POLICY, enforce_rules_party, validate_payload
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number


logger = logging.getLogger(__name__)


def _create(model, policy, sequence: str, payload: dict):
    patch = validate_payload(model=model, payload=payload, policy=policy, partial=False)
    enforce_rules_party(patch)

    def _op():
        party = model(code=next_document_number(sequence), **patch)
        db.session.add(party)
        db.session.commit()
        return party

    party = run_with_retry(_op)
    logger.info("%s %s created: %s", model.__name__, party.code, party.name)
    return party


def _update(model, policy, entity: str, party_id: int, payload: dict):
    patch = validate_payload(model=model, payload=payload, policy=policy, partial=True)
    enforce_rules_party(patch)

    def _op():
        party = lock_for_update(db.session.query(model).filter_by(id=party_id)).first()
        if party is None:
            raise NotFound(entity, party_id)
        for key, value in patch.items():
            setattr(party, key, value)
        db.session.commit()
        return party

    return run_with_retry(_op)


# =============================================================================
# CLIENTS
# =============================================================================

def create_client(payload: dict) -> Client:
    return _create(Client, CLIENT_POLICY, "client", payload)


def update_client(client_id: int, payload: dict) -> Client:
    """Contact and terms only; outstanding_balance/total_purchases are rejected."""
    return _update(Client, CLIENT_POLICY, "client", client_id, payload)


def get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFound("client", client_id)
    return client


def list_clients(*, include_inactive: bool = False) -> list[Client]:
    query = db.session.query(Client)
    if not include_inactive:
        query = query.filter(Client.is_active.is_(True))
    return query.order_by(Client.name.asc()).all()


# =============================================================================
# SUPPLIERS
# =============================================================================

def create_supplier(payload: dict) -> Supplier:
    return _create(Supplier, SUPPLIER_POLICY, "supplier", payload)


def update_supplier(supplier_id: int, payload: dict) -> Supplier:
    return _update(Supplier, SUPPLIER_POLICY, "supplier", supplier_id, payload)


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFound("supplier", supplier_id)
    return supplier


def list_suppliers(*, include_inactive: bool = False) -> list[Supplier]:
    query = db.session.query(Supplier)
    if not include_inactive:
        query = query.filter(Supplier.is_active.is_(True))
    return query.order_by(Supplier.name.asc()).all()
